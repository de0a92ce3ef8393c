# app/api/v1/contracts.py
from __future__ import annotations

from datetime import date
from typing import List, Optional

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.content import SIGNATURE_ROLES
from app.core.deps import ContractServices, client_ip, get_services, user_agent
from app.core.errors import PermissionDenied
from app.db.session import get_db
from app.models.enums import SignerRole
from app.models.lease_contract import LeaseContract
from app.policies.contract_permissions import can_sign_as, require_capability, require_view
from app.policies.rbac import Principal
from app.schemas.contracts import (
    ClauseHistoryResponse,
    ClausesUpdateRequest,
    ContractCreateRequest,
    ContractDraftFields,
    ContractFields,
    ContractResponse,
    ImmutabilityResponse,
    InvitationRequest,
    LifecycleEventResponse,
    ReasonRequest,
    SignRequest,
    TerminationNoticeRequest,
    ValidationResponse,
)
from app.services.collaborators import SignatureParty
from app.services.rules_engine import contract_months, generate_automatic_clauses, validate_contract_type
from app.services.signing_service import SignaturePayload

router = APIRouter(prefix="/contracts")


def _signature_view(c: LeaseContract, role: str) -> Optional[dict]:
    if not c.signature_of(role):
        return None
    return {
        "signed_at": getattr(c, f"{role}_signed_at"),
        "signed_ip": getattr(c, f"{role}_signed_ip"),
        "has_geo": getattr(c, f"{role}_geo_lat") is not None,
        "geo_consent": getattr(c, f"{role}_geo_consent"),
    }


def _to_resp(c: LeaseContract) -> dict:
    # signature images are never echoed back
    return {
        "id": c.id,
        "contract_token": c.contract_token,
        "status": c.status,
        "amended_from_id": c.amended_from_id,
        "property_id": c.property_id,
        "tenant_id": c.tenant_id,
        "owner_id": c.owner_id,
        "agency_id": c.agency_id,
        "witness_name": c.witness_name,
        "contract_type": c.contract_type,
        "monthly_rent": c.monthly_rent,
        "deposit": c.deposit,
        "due_day": c.due_day,
        "start_date": c.start_date,
        "end_date": c.end_date,
        "readjustment_index": c.readjustment_index,
        "readjustment_month": c.readjustment_month,
        "late_fee_percent": c.late_fee_percent,
        "interest_rate_percent": c.interest_rate_percent,
        "early_termination_penalty_percent": c.early_termination_penalty_percent,
        "guarantee_type": c.guarantee_type,
        "jurisdiction": c.jurisdiction,
        "charges_json": c.charges_json,
        "notes": c.notes,
        "creci": c.creci,
        "clauses_json": c.clauses_json,
        "signatures": {role: _signature_view(c, role) for role in SIGNATURE_ROLES},
        "hash_final": c.hash_final,
        "hash_generated_at": c.hash_generated_at,
        "final_pdf_path": c.final_pdf_path,
        "final_pdf_sha256": c.final_pdf_sha256,
        "provisional_pdf_path": c.provisional_pdf_path,
        "created_by": c.created_by,
        "created_at": c.created_at,
        "updated_at": c.updated_at,
    }


def _visible(db: Session, services: ContractServices, contract_id: int, principal: Principal) -> LeaseContract:
    contract = services.contracts.get(db, contract_id=contract_id)
    require_view(principal, contract)
    return contract


def _signature_payload(body: SignRequest, request: Request) -> SignaturePayload:
    return SignaturePayload(
        signature=body.signature,
        ip=client_ip(request),
        user_agent=user_agent(request),
        geo_lat=body.geo_lat,
        geo_lng=body.geo_lng,
        geo_consent=body.geo_consent,
        witness_name=body.witness_name,
        witness_document=body.witness_document,
    )


# ─────────────────────────────────────────────
# PUBLIC VERIFICATION
# ─────────────────────────────────────────────

@router.get("/verify/{token}")
async def verify_contract(
    token: str,
    db: Session = Depends(get_db),
    services: ContractServices = Depends(get_services),
):
    return services.signing.verify_by_token(db, token=token)


# ─────────────────────────────────────────────
# CRUD
# ─────────────────────────────────────────────

@router.post("", response_model=ContractResponse, status_code=201)
async def create_contract(
    body: ContractCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "create")
    row = services.contracts.create(db, data=body.changes(), principal=principal)
    return _to_resp(row)


@router.get("/{contract_id}", response_model=ContractResponse)
async def get_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    return _to_resp(_visible(db, services, contract_id, principal))


@router.patch("/{contract_id}", response_model=ContractResponse)
async def update_contract(
    contract_id: int,
    body: ContractFields,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "edit")
    _visible(db, services, contract_id, principal)
    row = services.contracts.update(db, contract_id=contract_id, changes=body.changes(), principal=principal)
    return _to_resp(row)


@router.delete("/{contract_id}")
async def delete_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "delete")
    _visible(db, services, contract_id, principal)
    services.contracts.delete(db, contract_id=contract_id, principal=principal)
    return {"contract_id": contract_id, "deleted": True}


@router.get("/{contract_id}/immutability", response_model=ImmutabilityResponse)
async def get_immutability(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    status = services.contracts.get_immutability_status(db, contract_id=contract_id)
    return {
        "can_edit": status.can_edit,
        "can_delete": status.can_delete,
        "can_amend": status.can_amend,
        "reason": status.reason,
    }


@router.get("/{contract_id}/validate", response_model=ValidationResponse)
async def validate_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    result = services.validation.validate_contract(db, contract_id=contract_id)
    return {"valid": result.valid, "errors": result.errors}


# ─────────────────────────────────────────────
# AMENDMENTS / CLAUSES
# ─────────────────────────────────────────────

@router.post("/{contract_id}/amend", response_model=ContractResponse, status_code=201)
async def amend_contract(
    contract_id: int,
    body: ContractDraftFields,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "edit")
    _visible(db, services, contract_id, principal)
    row = services.contracts.create_amended_contract(
        db, contract_id=contract_id, amendments=body.changes(), principal=principal
    )
    return _to_resp(row)


@router.put("/{contract_id}/clauses", response_model=ContractResponse)
async def update_clauses(
    contract_id: int,
    body: ClausesUpdateRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "edit")
    _visible(db, services, contract_id, principal)
    row = services.contracts.update_clauses(
        db,
        contract_id=contract_id,
        clauses=body.clauses,
        principal=principal,
        ip=client_ip(request),
        user_agent=user_agent(request),
        change_note=body.change_note,
    )
    return _to_resp(row)


@router.get("/{contract_id}/clauses/history", response_model=List[ClauseHistoryResponse])
async def clause_history(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.contracts.get_clause_history(db, contract_id=contract_id)


@router.get("/{contract_id}/automatic-clauses")
async def automatic_clauses(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    contract = _visible(db, services, contract_id, principal)
    return {
        "contract_id": contract_id,
        "clauses": generate_automatic_clauses(contract),
        "contract_type": validate_contract_type(contract.contract_type, contract_months(contract)),
    }


# ─────────────────────────────────────────────
# SIGNING
# ─────────────────────────────────────────────

@router.post("/{contract_id}/prepare")
async def prepare_for_signing(
    contract_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "prepare_for_signing")
    _visible(db, services, contract_id, principal)
    return services.signing.prepare_for_signing(
        db, contract_id=contract_id, principal=principal, ip=client_ip(request)
    )


def _pdf_response(content: bytes, filename: str) -> Response:
    return Response(
        content=content,
        media_type="application/pdf",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )


@router.get("/{contract_id}/pdf/provisional")
async def get_provisional_pdf(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    contract = _visible(db, services, contract_id, principal)
    pdf = services.signing.get_provisional_pdf(db, contract_id=contract_id)
    return _pdf_response(pdf, f"{contract.contract_token}-provisional.pdf")


@router.get("/{contract_id}/pdf/final")
async def get_final_pdf(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    contract = _visible(db, services, contract_id, principal)
    pdf = services.signing.get_final_pdf(db, contract_id=contract_id)
    return _pdf_response(pdf, f"{contract.contract_token}.pdf")


async def _sign(
    contract_id: int,
    role: SignerRole,
    body: SignRequest,
    request: Request,
    db: Session,
    principal: Principal,
    services: ContractServices,
    *,
    legacy: bool,
) -> dict:
    if not can_sign_as(principal, role.value):
        raise PermissionDenied(f"Role {principal.role.value} cannot sign as {role.value}.")
    row = services.signing.sign(
        db,
        contract_id=contract_id,
        role=role.value,
        payload=_signature_payload(body, request),
        principal=principal,
        legacy=legacy,
    )
    return _to_resp(row)


@router.post("/{contract_id}/sign/{role}", response_model=ContractResponse)
async def sign_contract(
    contract_id: int,
    role: SignerRole,
    body: SignRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    return await _sign(contract_id, role, body, request, db, principal, services, legacy=False)


@router.post("/{contract_id}/sign-legacy/{role}", response_model=ContractResponse)
async def sign_contract_legacy(
    contract_id: int,
    role: SignerRole,
    body: SignRequest,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    return await _sign(contract_id, role, body, request, db, principal, services, legacy=True)


@router.post("/{contract_id}/finalize")
async def finalize_contract(
    contract_id: int,
    request: Request,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "prepare_for_signing")
    _visible(db, services, contract_id, principal)
    finalized = services.signing.finalize_if_complete(
        db, contract_id=contract_id, actor=principal.actor, ip=client_ip(request)
    )
    contract = services.contracts.get(db, contract_id=contract_id)
    return {"finalized": finalized, "status": contract.status, "hash_final": contract.hash_final}


@router.post("/{contract_id}/invitations")
async def create_invitations(
    contract_id: int,
    body: InvitationRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "prepare_for_signing")
    _visible(db, services, contract_id, principal)
    links = services.signing.create_signature_invitations(
        db,
        contract_id=contract_id,
        parties=[SignatureParty(role=p.role.value, email=p.email, name=p.name) for p in body.parties],
        principal=principal,
    )
    return {"contract_id": contract_id, "links": links}


# ─────────────────────────────────────────────
# STATUS TRANSITIONS
# ─────────────────────────────────────────────

@router.post("/{contract_id}/revoke", response_model=ContractResponse)
async def revoke_contract(
    contract_id: int,
    body: ReasonRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "revoke")
    _visible(db, services, contract_id, principal)
    row = services.signing.revoke(db, contract_id=contract_id, principal=principal, reason=body.reason)
    return _to_resp(row)


@router.post("/{contract_id}/activate", response_model=ContractResponse)
async def activate_contract(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "prepare_for_signing")
    _visible(db, services, contract_id, principal)
    return _to_resp(services.signing.activate(db, contract_id=contract_id, principal=principal))


@router.post("/{contract_id}/terminate", response_model=ContractResponse)
async def terminate_contract(
    contract_id: int,
    body: ReasonRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    require_capability(principal, "revoke")
    _visible(db, services, contract_id, principal)
    row = services.signing.terminate(db, contract_id=contract_id, principal=principal, reason=body.reason)
    return _to_resp(row)


# ─────────────────────────────────────────────
# LIFECYCLE
# ─────────────────────────────────────────────

@router.get("/{contract_id}/timeline", response_model=List[LifecycleEventResponse])
async def get_timeline(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.lifecycle.get_contract_timeline(db, contract_id=contract_id)


@router.get("/{contract_id}/timeline/verify")
async def verify_timeline(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return {"contract_id": contract_id, "valid": services.lifecycle.verify_chain(db, contract_id=contract_id)}


@router.get("/{contract_id}/rules")
async def applicable_rules(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.rules.apply_rules(db, contract_id=contract_id)


@router.get("/{contract_id}/judicial-readiness")
async def judicial_readiness(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.rules.check_judicial_readiness(db, contract_id=contract_id).as_dict()


@router.get("/{contract_id}/rent-adjustment")
async def rent_adjustment_due(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return {"contract_id": contract_id, "due": services.lifecycle.check_rent_adjustment(db, contract_id=contract_id)}


@router.get("/{contract_id}/tacit-renewal")
async def tacit_renewal_pending(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return {"contract_id": contract_id, "pending": services.lifecycle.check_tacit_renewal(db, contract_id=contract_id)}


@router.get("/{contract_id}/penalty")
async def termination_penalty(
    contract_id: int,
    termination_date: date = Query(...),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.lifecycle.calculate_proportional_penalty(
        db, contract_id=contract_id, termination_date=termination_date
    )


@router.post("/{contract_id}/termination-notice", response_model=LifecycleEventResponse, status_code=201)
async def termination_notice(
    contract_id: int,
    body: TerminationNoticeRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _visible(db, services, contract_id, principal)
    return services.lifecycle.generate_termination_notice(
        db,
        contract_id=contract_id,
        reason=body.reason,
        created_by=principal.actor,
        notice_date=body.notice_date,
    )
