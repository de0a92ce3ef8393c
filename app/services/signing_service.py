#app/services/signing_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc, utc_now
from app.core.content import SIGNATURE_LABELS, SIGNATURE_ROLES, build_content_template, render_content
from app.core.errors import (
    Conflict,
    ExternalFailure,
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.core.hashing import generate_contract_hash, sha256_bytes_hex, verify_contract_hash
from app.models.enums import ContractStatus, LifecycleEventType, SignerRole, TERMINAL_STATUSES
from app.models.lease_contract import LeaseContract
from app.policies.contract_permissions import can_sign_as
from app.policies.rbac import Principal
from app.services.collaborators import Collaborators, SignatureLink, SignatureParty
from app.services.lifecycle_service import LifecycleService
from app.services.rules_engine import generate_automatic_clauses
from app.services.validation_service import ValidationService

logger = logging.getLogger(__name__)

FINALIZABLE_STATUSES = (ContractStatus.AWAITING_SIGNATURES.value,)

# legacy signatures may be collected before preparation, never after finalization
LEGACY_SIGNABLE_STATUSES = (ContractStatus.PENDING.value, ContractStatus.AWAITING_SIGNATURES.value)


@dataclass(frozen=True)
class SignaturePayload:
    signature: str
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    geo_lat: Optional[float] = None
    geo_lng: Optional[float] = None
    geo_consent: bool = False
    witness_name: Optional[str] = None
    witness_document: Optional[str] = None


def _money(value: Any) -> Optional[str]:
    return None if value is None else f"{Decimal(value):.2f}"


def contract_hash_data(contract: LeaseContract) -> Dict[str, Any]:
    """
    Canonical view of the signed contract that feeds the final hash.
    Money is fixed to two places so reloads from the database hash identically.
    """
    return {
        "contract_token": contract.contract_token,
        "property_id": contract.property_id,
        "tenant_id": contract.tenant_id,
        "owner_id": contract.owner_id,
        "agency_id": contract.agency_id,
        "contract_type": contract.contract_type,
        "monthly_rent": _money(contract.monthly_rent),
        "deposit": _money(contract.deposit),
        "due_day": contract.due_day,
        "start_date": contract.start_date.isoformat() if contract.start_date else None,
        "end_date": contract.end_date.isoformat() if contract.end_date else None,
        "jurisdiction": contract.jurisdiction,
        "clauses": contract.clauses_json,
        "content": contract.content_snapshot,
        "signed_at": {
            role: as_utc(getattr(contract, f"{role}_signed_at")).isoformat()
            for role in SIGNATURE_ROLES
            if getattr(contract, f"{role}_signed_at")
        },
    }


def _document_header(contract: LeaseContract) -> Dict[str, Any]:
    prop = contract.leased_property
    return {
        "Locador": contract.owner.name if contract.owner else None,
        "Locatário": contract.tenant.name if contract.tenant else None,
        "Imobiliária": contract.agency.name if contract.agency else None,
        "Imóvel": (prop.address or prop.name) if prop else None,
        "Aluguel mensal": f"R$ {Decimal(contract.monthly_rent):.2f}" if contract.monthly_rent is not None else None,
        "Início": contract.start_date.isoformat() if contract.start_date else None,
        "Término": contract.end_date.isoformat() if contract.end_date else None,
        "Foro": contract.jurisdiction,
    }


class SigningService:
    """
    Signature state machine:

      PENDING --prepare_for_signing--> AWAITING_SIGNATURES
      AWAITING_SIGNATURES --sign (per role)--> AWAITING_SIGNATURES
      AWAITING_SIGNATURES --last required signature--> SIGNED (final PDF + hash)
      PENDING --legacy sign--> PENDING (finalizes once prepared)
      SIGNED --activate--> ACTIVE (an activated amendment terminates the contract it amends)
      SIGNED/ACTIVE --terminate--> TERMINATED
      any non-terminal --revoke--> REVOKED

    Per-role writes and the finalization claim are conditional UPDATEs, so the
    database decides races: one writer per role, one finalizer per contract.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        clock: Clock = utc_now,
        lifecycle: Optional[LifecycleService] = None,
        validation: Optional[ValidationService] = None,
    ):
        self.collaborators = collaborators
        self.clock = clock
        self.lifecycle = lifecycle or LifecycleService(clock=clock)
        self.validation = validation or ValidationService()

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _now(self):
        return as_utc(self.clock())

    def _get_contract(self, db: Session, contract_id: int, *, fresh: bool = False) -> LeaseContract:
        if fresh:
            contract = db.execute(
                select(LeaseContract)
                .where(LeaseContract.id == contract_id)
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
        else:
            contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return contract

    def _notify(self, event: str, contract: LeaseContract, payload: Optional[Dict[str, Any]] = None) -> None:
        recipients = [uid for uid in (contract.tenant_id, contract.owner_id) if uid]
        try:
            self.collaborators.notifier.notify(event, recipients, payload or {})
        except Exception:
            logger.exception("notification failed", extra={"contract_id": contract.id, "event": event})

    def _check_signer(self, contract: LeaseContract, role: str, principal: Principal) -> None:
        if role == SignerRole.tenant.value:
            if contract.tenant_id is None or principal.user_id != contract.tenant_id:
                raise PermissionDenied("Você não está autorizado a assinar este contrato como locatário.")
        elif role == SignerRole.owner.value:
            prop = contract.leased_property
            allowed = {contract.owner_id}
            if prop is not None:
                allowed |= {prop.owner_id, prop.created_by}
            allowed.discard(None)
            if principal.user_id not in allowed:
                raise PermissionDenied("Você não está autorizado a assinar este contrato como proprietário.")
        elif role == SignerRole.agency.value:
            if not can_sign_as(principal, role):
                raise PermissionDenied(
                    "Apenas administradores ou gerentes da imobiliária podem assinar como imobiliária."
                )
            if contract.agency_id and principal.agency_id != contract.agency_id:
                raise PermissionDenied("Você não está autorizado a assinar este contrato como imobiliária.")

    def _render_final_pdf(self, contract: LeaseContract) -> tuple[bytes, str]:
        pdf = self.collaborators.pdf_renderer.render(
            contract.content_snapshot or "",
            {"contract_token": contract.contract_token, "stage": "final"},
        )
        path = self.collaborators.document_store.save(contract.id, "final", pdf)
        return pdf, path

    # ─────────────────────────────────────────────
    # PREPARE
    # ─────────────────────────────────────────────

    def prepare_for_signing(
        self,
        db: Session,
        *,
        contract_id: int,
        principal: Principal,
        ip: Optional[str] = None,
    ) -> Dict[str, Any]:
        contract = self._get_contract(db, contract_id)

        if contract.status != ContractStatus.PENDING.value:
            raise PreconditionFailed("Apenas contratos PENDENTES podem ser preparados para assinatura.")

        result = self.validation.validate_contract(db, contract_id=contract.id)
        if not result.valid:
            raise ValidationFailed(
                f"Contrato não pode ser preparado para assinatura: {result.summary}",
                result.errors,
            )

        clauses = contract.clauses_json or generate_automatic_clauses(contract)
        template = build_content_template(
            contract_token=contract.contract_token,
            clauses=clauses,
            header=_document_header(contract),
            include_agency=bool(contract.agency_id),
        )
        snapshot = render_content(template, contract.signatures())

        res = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.status == ContractStatus.PENDING.value,
                LeaseContract.deleted.is_(False),
            )
            .values(
                status=ContractStatus.AWAITING_SIGNATURES.value,
                clauses_json=clauses,
                content_template=template,
                content_snapshot=snapshot,
                updated_at=self._now(),
            )
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise PreconditionFailed("O status do contrato foi alterado por outra operação.")
        db.commit()

        contract = self._get_contract(db, contract_id, fresh=True)

        # provisional PDF is a convenience copy; the transition stands without it
        provisional_path = None
        try:
            pdf = self.collaborators.pdf_renderer.render(
                snapshot, {"contract_token": contract.contract_token, "stage": "provisional"}
            )
            provisional_path = self.collaborators.document_store.save(contract.id, "provisional", pdf)
            contract.provisional_pdf_path = provisional_path
            db.commit()
        except Exception:
            db.rollback()
            logger.exception("provisional PDF generation failed", extra={"contract_id": contract.id})

        self.lifecycle.record_event(
            db,
            contract_id=contract.id,
            event_type=LifecycleEventType.PREPARE_FOR_SIGNING,
            description="Contrato preparado para assinatura",
            metadata={"contractToken": contract.contract_token, "ip": ip},
            created_by=principal.actor,
        )
        self._notify("contract.awaiting_signatures", contract, {"contract_token": contract.contract_token})

        logger.info("contract prepared for signing", extra={"contract_id": contract.id})

        # signatures collected through the legacy path while PENDING complete here
        finalized = self.finalize_if_complete(db, contract_id=contract.id, actor=principal.actor, ip=ip)
        return {
            "message": "Contrato preparado para assinatura",
            "contract_token": contract.contract_token,
            "provisional_pdf_path": provisional_path,
            "finalized": finalized,
        }

    # ─────────────────────────────────────────────
    # SIGN
    # ─────────────────────────────────────────────

    def sign(
        self,
        db: Session,
        *,
        contract_id: int,
        role: str,
        payload: SignaturePayload,
        principal: Principal,
        legacy: bool = False,
    ) -> LeaseContract:
        role = SignerRole(getattr(role, "value", role)).value
        contract = self._get_contract(db, contract_id)

        if legacy:
            if contract.status not in LEGACY_SIGNABLE_STATUSES:
                raise PreconditionFailed(f"Contrato {contract.status} não aceita assinaturas.")
        elif contract.status != ContractStatus.AWAITING_SIGNATURES.value:
            raise PreconditionFailed("Contrato não está pronto para assinatura.")

        if not payload.signature:
            raise ValidationFailed("Assinatura obrigatória.", [{"field": "signature", "message": "Assinatura obrigatória."}])

        self._check_signer(contract, role, principal)

        if contract.signature_of(role):
            raise Conflict(f"Contrato já foi assinado por {SIGNATURE_LABELS[role]}.")

        if role == SignerRole.agency.value:
            if not contract.tenant_signature:
                raise PreconditionFailed("A imobiliária só pode assinar após o locatário assinar o contrato.")
            if not contract.owner_signature:
                raise PreconditionFailed("A imobiliária só pode assinar após o proprietário assinar o contrato.")

        values: Dict[str, Any] = {}
        if role == SignerRole.witness.value:
            missing = [f for f in ("witness_name", "witness_document") if not getattr(payload, f)]
            if missing:
                raise ValidationFailed(
                    "Nome e documento da testemunha são obrigatórios.",
                    [{"field": f, "message": "Campo obrigatório para testemunha."} for f in missing],
                )
            values.update(witness_name=payload.witness_name, witness_document=payload.witness_document)

        now = self._now()
        consent = bool(payload.geo_consent)
        values.update({
            f"{role}_signature": payload.signature,
            f"{role}_signed_at": now,
            f"{role}_signed_ip": payload.ip,
            f"{role}_signed_agent": payload.user_agent,
            f"{role}_geo_lat": payload.geo_lat if consent else None,
            f"{role}_geo_lng": payload.geo_lng if consent else None,
            f"{role}_geo_consent": consent,
        })

        conditions = [
            LeaseContract.id == contract.id,
            LeaseContract.deleted.is_(False),
            getattr(LeaseContract, f"{role}_signature").is_(None),
        ]
        if legacy:
            conditions.append(LeaseContract.status.in_(LEGACY_SIGNABLE_STATUSES))
        else:
            conditions.append(LeaseContract.status == ContractStatus.AWAITING_SIGNATURES.value)

        res = db.execute(
            update(LeaseContract)
            .where(*conditions)
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            current = self._get_contract(db, contract_id, fresh=True)
            if current.signature_of(role):
                raise Conflict(f"Contrato já foi assinado por {SIGNATURE_LABELS[role]}.")
            raise PreconditionFailed("O status do contrato foi alterado durante a assinatura.")
        db.commit()

        event_type = f"SIGNED_BY_{role.upper()}" if legacy else f"SIGNATURE_CAPTURED_{role.upper()}"
        geo = {"lat": payload.geo_lat, "lng": payload.geo_lng} if consent else None
        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=event_type,
            description=f"Assinatura coletada: {SIGNATURE_LABELS[role]}",
            metadata={
                "signedAt": now.isoformat(),
                "clientIP": payload.ip,
                "userAgent": payload.user_agent,
                "geo": geo,
                "geoConsent": consent,
            },
            created_by=principal.actor,
        )

        # best effort: finalization re-renders the snapshot anyway
        try:
            contract = self._get_contract(db, contract_id, fresh=True)
            contract.content_snapshot = render_content(contract.content_template, contract.signatures())
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            logger.exception("content snapshot refresh failed", extra={"contract_id": contract_id})

        logger.info("signature captured", extra={"contract_id": contract_id, "role": role})

        self.finalize_if_complete(db, contract_id=contract_id, actor=principal.actor, ip=payload.ip)
        return self._get_contract(db, contract_id, fresh=True)

    # ─────────────────────────────────────────────
    # FINALIZE
    # ─────────────────────────────────────────────

    def finalize_if_complete(
        self,
        db: Session,
        *,
        contract_id: int,
        actor: str,
        ip: Optional[str] = None,
    ) -> bool:
        """
        Move to SIGNED exactly once. Returns True only for the call that won the claim;
        every other call (incomplete signatures, already finalized, lost race) is a no-op.
        """
        contract = self._get_contract(db, contract_id, fresh=True)
        if contract.status not in FINALIZABLE_STATUSES or not contract.all_required_signed:
            return False

        now = self._now()
        claim = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.deleted.is_(False),
                LeaseContract.status.in_(FINALIZABLE_STATUSES),
                LeaseContract.tenant_signature.isnot(None),
                LeaseContract.owner_signature.isnot(None),
                (LeaseContract.agency_id.is_(None)) | (LeaseContract.agency_signature.isnot(None)),
            )
            .values(status=ContractStatus.SIGNED.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if claim.rowcount != 1:
            db.rollback()
            logger.info("finalization skipped; already claimed", extra={"contract_id": contract_id})
            return False

        contract = self._get_contract(db, contract_id, fresh=True)
        contract.content_snapshot = render_content(contract.content_template, contract.signatures())

        try:
            pdf, path = self._render_final_pdf(contract)
        except Exception as exc:
            db.rollback()
            logger.exception("final PDF generation failed", extra={"contract_id": contract_id})
            raise ExternalFailure("Falha ao gerar o PDF final do contrato.") from exc

        contract.final_pdf_path = path
        contract.final_pdf_sha256 = sha256_bytes_hex(pdf)
        contract.hash_generated_at = now
        contract.hash_generated_ip = ip or ""
        contract.hash_final = generate_contract_hash(contract_hash_data(contract), contract.hash_generated_ip, now)
        db.commit()

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_FINALIZED,
            description="Contrato finalizado com todas as assinaturas",
            metadata={
                "hashFinal": contract.hash_final,
                "finalPdfSize": len(pdf),
                "finalPdfSha256": contract.final_pdf_sha256,
            },
            created_by=actor,
        )
        self._notify("contract.signed", contract, {"contract_token": contract.contract_token})

        logger.info("contract finalized", extra={"contract_id": contract_id})
        return True

    def verify_final_hash(self, contract: LeaseContract) -> bool:
        if not contract.hash_final or not contract.hash_generated_at:
            return False
        return verify_contract_hash(
            contract_hash_data(contract),
            contract.hash_generated_ip or "",
            contract.hash_generated_at,
            contract.hash_final,
        )

    # ─────────────────────────────────────────────
    # DOCUMENTS
    # ─────────────────────────────────────────────

    def _load_document(self, path: Optional[str]) -> Optional[bytes]:
        if not path:
            return None
        try:
            return self.collaborators.document_store.load(path)
        except FileNotFoundError:
            logger.warning("stored document missing", extra={"path": path})
            return None

    def get_provisional_pdf(self, db: Session, *, contract_id: int) -> bytes:
        """
        Stored provisional PDF, rendered again from the current snapshot when it was never stored.
        """
        contract = self._get_contract(db, contract_id)
        pdf = self._load_document(contract.provisional_pdf_path)
        if pdf is not None:
            return pdf

        if not contract.content_snapshot:
            raise PreconditionFailed("Contrato ainda não foi preparado para assinatura.")

        try:
            pdf = self.collaborators.pdf_renderer.render(
                contract.content_snapshot, {"contract_token": contract.contract_token, "stage": "provisional"}
            )
            contract.provisional_pdf_path = self.collaborators.document_store.save(contract.id, "provisional", pdf)
        except Exception as exc:
            db.rollback()
            logger.exception("provisional PDF generation failed", extra={"contract_id": contract_id})
            raise ExternalFailure("Falha ao gerar o PDF provisório do contrato.") from exc
        db.commit()
        return pdf

    def get_final_pdf(self, db: Session, *, contract_id: int) -> bytes:
        contract = self._get_contract(db, contract_id)
        if contract.status not in (ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value):
            raise PreconditionFailed("Contrato ainda não foi finalizado.")

        pdf = self._load_document(contract.final_pdf_path)
        if pdf is None:
            raise NotFound("PDF final não encontrado.")
        return pdf

    # ─────────────────────────────────────────────
    # INVITATIONS / VERIFICATION
    # ─────────────────────────────────────────────

    def create_signature_invitations(
        self,
        db: Session,
        *,
        contract_id: int,
        parties: Sequence[SignatureParty],
        principal: Principal,
    ) -> List[SignatureLink]:
        contract = self._get_contract(db, contract_id)
        if contract.status != ContractStatus.AWAITING_SIGNATURES.value:
            raise PreconditionFailed("Contrato deve estar aguardando assinaturas para enviar convites.")

        try:
            links = self.collaborators.signature_links.create_links(contract.id, parties)
        except Exception as exc:
            logger.exception("signature link creation failed", extra={"contract_id": contract.id})
            raise ExternalFailure("Falha ao criar links de assinatura.") from exc

        self.lifecycle.record_event(
            db,
            contract_id=contract.id,
            event_type=LifecycleEventType.SIGNATURE_LINKS_CREATED,
            description="Convites de assinatura enviados",
            metadata={"parties": [{"signerType": p.role, "email": p.email} for p in parties]},
            created_by=principal.actor,
        )
        return links

    def verify_by_token(self, db: Session, *, token: str) -> Dict[str, Any]:
        """
        Public verification view. Exposes status and signature timestamps, never signature images.
        """
        contract = db.execute(
            select(LeaseContract).where(LeaseContract.contract_token == token)
        ).scalar_one_or_none()
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")

        prop = contract.leased_property
        signatures: Dict[str, Any] = {}
        for role in SIGNATURE_ROLES:
            if contract.signature_of(role):
                signed_at = getattr(contract, f"{role}_signed_at")
                signatures[role] = {
                    "signed_at": as_utc(signed_at).isoformat() if signed_at else None,
                    "has_geo": getattr(contract, f"{role}_geo_lat") is not None,
                }
            else:
                signatures[role] = None

        return {
            "token": contract.contract_token,
            "status": contract.status,
            "hash_final": contract.hash_final,
            "hash_valid": self.verify_final_hash(contract) if contract.hash_final else None,
            "created_at": as_utc(contract.created_at).isoformat() if contract.created_at else None,
            "property": {"city": prop.city if prop else None},
            "signatures": signatures,
        }

    # ─────────────────────────────────────────────
    # STATUS TRANSITIONS
    # ─────────────────────────────────────────────

    def _transition(
        self,
        db: Session,
        contract: LeaseContract,
        *,
        from_statuses: Sequence[str],
        to_status: str,
        message: str,
    ) -> None:
        res = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.deleted.is_(False),
                LeaseContract.status.in_(list(from_statuses)),
            )
            .values(status=to_status, updated_at=self._now())
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise PreconditionFailed(message)
        db.commit()

    def revoke(
        self,
        db: Session,
        *,
        contract_id: int,
        principal: Principal,
        reason: Optional[str] = None,
    ) -> LeaseContract:
        contract = self._get_contract(db, contract_id)
        if contract.is_terminal:
            raise PreconditionFailed(f"Contrato {contract.status} não pode ser revogado.")

        non_terminal = [s.value for s in ContractStatus if s.value not in TERMINAL_STATUSES]
        self._transition(
            db,
            contract,
            from_statuses=non_terminal,
            to_status=ContractStatus.REVOKED.value,
            message="O status do contrato foi alterado por outra operação.",
        )

        try:
            self.collaborators.signature_links.revoke_all(contract_id)
        except Exception:
            logger.exception("signature link revocation failed", extra={"contract_id": contract_id})

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_REVOKED,
            description="Contrato revogado",
            metadata={"reason": reason or "No reason provided"},
            created_by=principal.actor,
        )
        logger.info("contract revoked", extra={"contract_id": contract_id})
        return self._get_contract(db, contract_id, fresh=True)

    def activate(self, db: Session, *, contract_id: int, principal: Principal) -> LeaseContract:
        """
        SIGNED -> ACTIVE. Activating an amendment terminates the contract it amends
        in the same transaction, so the property keeps a single contract in force.
        """
        contract = self._get_contract(db, contract_id)
        if contract.status != ContractStatus.SIGNED.value:
            raise PreconditionFailed("Apenas contratos ASSINADOS podem ser ativados.")

        now = self._now()
        res = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.deleted.is_(False),
                LeaseContract.status == ContractStatus.SIGNED.value,
            )
            .values(status=ContractStatus.ACTIVE.value, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise PreconditionFailed("O status do contrato foi alterado por outra operação.")

        superseded_id = None
        if contract.amended_from_id is not None:
            sup = db.execute(
                update(LeaseContract)
                .where(
                    LeaseContract.id == contract.amended_from_id,
                    LeaseContract.deleted.is_(False),
                    LeaseContract.status.in_([ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value]),
                )
                .values(status=ContractStatus.TERMINATED.value, updated_at=now)
                .execution_options(synchronize_session=False)
            )
            if sup.rowcount == 1:
                superseded_id = contract.amended_from_id
        db.commit()

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_ACTIVATED,
            description="Contrato ativado",
            metadata={"supersedes": superseded_id} if superseded_id else {},
            created_by=principal.actor,
        )
        if superseded_id:
            self.lifecycle.record_event(
                db,
                contract_id=superseded_id,
                event_type=LifecycleEventType.CONTRACT_SUPERSEDED,
                description="Contrato substituído por aditivo ativado",
                metadata={"supersededBy": contract_id},
                created_by=principal.actor,
            )
            logger.info("contract superseded", extra={"contract_id": superseded_id, "amended_id": contract_id})
        return self._get_contract(db, contract_id, fresh=True)

    def terminate(
        self,
        db: Session,
        *,
        contract_id: int,
        principal: Principal,
        reason: Optional[str] = None,
    ) -> LeaseContract:
        contract = self._get_contract(db, contract_id)
        active = [ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value]
        if contract.status not in active:
            raise PreconditionFailed("Apenas contratos assinados ou ativos podem ser encerrados.")

        self._transition(
            db,
            contract,
            from_statuses=active,
            to_status=ContractStatus.TERMINATED.value,
            message="O status do contrato foi alterado por outra operação.",
        )
        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_TERMINATED,
            description="Contrato encerrado",
            metadata={"reason": reason or "No reason provided"},
            created_by=principal.actor,
        )
        return self._get_contract(db, contract_id, fresh=True)
