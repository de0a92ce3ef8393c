# app/api/v1/contract_legal.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps import ContractServices, get_services
from app.db.session import get_db
from app.policies.contract_permissions import require_capability, require_view
from app.policies.rbac import Principal
from app.schemas.contracts import AgreementRequest, InspectionLinkRequest

router = APIRouter(prefix="/contracts/{contract_id}/legal")


def _authorize(
    db: Session,
    services: ContractServices,
    contract_id: int,
    principal: Principal,
    *,
    write: bool = False,
) -> None:
    if write:
        require_capability(principal, "run_legal_flow")
    require_view(principal, services.contracts.get(db, contract_id=contract_id))


# ─────────────────────────────────────────────
# READ-ONLY LEGAL VIEWS
# ─────────────────────────────────────────────

@router.get("/default-status")
async def default_status(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal)
    return services.legal.get_formal_default_status(db, contract_id=contract_id)


@router.get("/notice-basis")
async def notice_basis(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal)
    return services.legal.get_notification_legal_basis(db, contract_id=contract_id)


@router.get("/agreement-data")
async def agreement_data(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal)
    return services.legal.get_agreement_contract_data(db, contract_id=contract_id)


@router.get("/dossier")
async def judicial_dossier(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal)
    return services.legal.prepare_judicial_dossier(db, contract_id=contract_id)


# ─────────────────────────────────────────────
# FLOW STEPS
# ─────────────────────────────────────────────

@router.post("/detect-default")
async def detect_default(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.flow.detect_default(db, contract_id=contract_id)


@router.post("/notice")
async def generate_notice(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.flow.generate_notice(db, contract_id=contract_id)


@router.post("/agreement")
async def agreement_proposal(
    contract_id: int,
    body: AgreementRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.flow.create_agreement_proposal(
        db,
        contract_id=contract_id,
        created_by=principal.actor,
        installments=body.installments,
        discount_percent=body.discount_percent,
    )


@router.post("/judicial")
async def prepare_judicial(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.flow.prepare_judicial(db, contract_id=contract_id)


@router.post("/flow")
async def complete_flow(
    contract_id: int,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.flow.execute_complete_flow(db, contract_id=contract_id, created_by=principal.actor)


@router.post("/inspection")
async def link_inspection(
    contract_id: int,
    body: InspectionLinkRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    services: ContractServices = Depends(get_services),
):
    _authorize(db, services, contract_id, principal, write=True)
    return services.legal.link_inspection_to_contract(
        db, contract_id=contract_id, inspection_id=body.inspection_id
    )
