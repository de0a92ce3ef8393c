#app/services/contract_service.py
from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy import select, update, desc
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc, utc_now
from app.core.errors import Conflict, NotFound, PreconditionFailed, ValidationFailed
from app.core.hashing import generate_contract_token
from app.core.content import SIGNATURE_ROLES
from app.models.clause_history import ContractClauseHistory
from app.models.enums import ContractStatus, LifecycleEventType, TERMINAL_STATUSES
from app.models.lease_contract import LeaseContract
from app.models.party import Property, User
from app.policies.immutability import (
    ADMINISTRATIVE_FIELDS,
    CLAUSE_FIELDS,
    DRAFT_FIELDS,
    EDITABLE_FIELDS,
    ImmutabilityStatus,
    check_immutability,
    enforce_delete,
    enforce_immutability,
)
from app.policies.rbac import Principal
from app.services.lifecycle_service import LifecycleService

logger = logging.getLogger(__name__)

class ContractService:
    """
    Contract management: create, edit while editable, amend once signed,
    clause negotiation with history, soft delete.
    """

    TOKEN_ATTEMPTS = 5

    def __init__(
        self,
        *,
        clock: Clock = utc_now,
        lifecycle: Optional[LifecycleService] = None,
        token_prefix: str = "MR3X",
    ):
        self.clock = clock
        self.lifecycle = lifecycle or LifecycleService(clock=clock)
        self.token_prefix = token_prefix

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _now(self):
        return as_utc(self.clock())

    def _new_token(self, db: Session) -> str:
        year = self._now().year
        for _ in range(self.TOKEN_ATTEMPTS):
            token = generate_contract_token(year, "CTR", prefix=self.token_prefix)
            taken = db.execute(
                select(LeaseContract.id).where(LeaseContract.contract_token == token)
            ).scalar_one_or_none()
            if taken is None:
                return token
        raise Conflict("Não foi possível gerar um token de contrato único.")

    def _open_contract_for_property(self, db: Session, property_id: int) -> Optional[LeaseContract]:
        # amendments count here; the partial unique index covers originals only
        return db.execute(
            select(LeaseContract)
            .where(
                LeaseContract.property_id == property_id,
                LeaseContract.status.notin_(list(TERMINAL_STATUSES)),
                LeaseContract.deleted.is_(False),
            )
            .limit(1)
        ).scalar_one_or_none()

    def _check_parties(self, db: Session, data: Dict[str, Any]) -> None:
        if "property_id" in data:
            prop = db.get(Property, data["property_id"])
            if not prop or prop.deleted:
                raise NotFound("Property not found.")
        for key in ("tenant_id", "owner_id"):
            if data.get(key) is not None and db.get(User, data[key]) is None:
                raise NotFound(f"User referenced by {key} not found.")

    @staticmethod
    def _unknown_fields(data: Dict[str, Any], allowed=DRAFT_FIELDS) -> List[Dict[str, str]]:
        return [
            {"field": k, "message": "Campo desconhecido ou não editável."}
            for k in sorted(set(data) - allowed)
        ]

    # ─────────────────────────────────────────────
    # READ
    # ─────────────────────────────────────────────

    def get(self, db: Session, *, contract_id: int) -> LeaseContract:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return contract

    def get_immutability_status(self, db: Session, *, contract_id: int) -> ImmutabilityStatus:
        return check_immutability(self.get(db, contract_id=contract_id))

    def get_clause_history(self, db: Session, *, contract_id: int) -> List[ContractClauseHistory]:
        self.get(db, contract_id=contract_id)
        return (
            db.execute(
                select(ContractClauseHistory)
                .where(ContractClauseHistory.contract_id == contract_id)
                .order_by(desc(ContractClauseHistory.edited_at), desc(ContractClauseHistory.id))
            )
            .scalars()
            .all()
        )

    # ─────────────────────────────────────────────
    # CREATE
    # ─────────────────────────────────────────────

    def create(self, db: Session, *, data: Dict[str, Any], principal: Principal) -> LeaseContract:
        errors = self._unknown_fields(data)
        if "property_id" not in data:
            errors.append({"field": "property_id", "message": "Imóvel é obrigatório."})
        if errors:
            raise ValidationFailed("Dados do contrato inválidos.", errors)

        self._check_parties(db, data)

        if self._open_contract_for_property(db, data["property_id"]):
            raise Conflict("Este imóvel já possui um contrato em aberto.")

        fields = dict(data)
        fields.setdefault("agency_id", principal.agency_id)

        contract = LeaseContract(
            **fields,
            contract_token=self._new_token(db),
            status=ContractStatus.PENDING.value,
            created_by=principal.actor,
            created_at=self._now(),
        )
        db.add(contract)
        try:
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict("Este imóvel já possui um contrato em aberto.") from exc
        db.refresh(contract)

        self.lifecycle.record_event(
            db,
            contract_id=contract.id,
            event_type=LifecycleEventType.CONTRACT_CREATED,
            description="Contrato criado",
            metadata={"contractToken": contract.contract_token, "propertyId": contract.property_id},
            created_by=principal.actor,
        )
        logger.info("contract created", extra={"contract_id": contract.id})
        return contract

    # ─────────────────────────────────────────────
    # UPDATE / DELETE
    # ─────────────────────────────────────────────

    def update(
        self,
        db: Session,
        *,
        contract_id: int,
        changes: Dict[str, Any],
        principal: Principal,
    ) -> LeaseContract:
        contract = self.get(db, contract_id=contract_id)

        errors = self._unknown_fields(changes, EDITABLE_FIELDS)
        if errors:
            raise ValidationFailed("Campos não editáveis; cláusulas são alteradas pelo editor de cláusulas.", errors)

        check = enforce_immutability(contract, changes)
        if not check.allowed:
            raise PreconditionFailed(check.message or "Alteração não permitida.")
        if not changes:
            return contract

        self._check_parties(db, changes)

        conditions = [
            LeaseContract.id == contract.id,
            LeaseContract.deleted.is_(False),
            LeaseContract.status == contract.status,
        ]
        if set(changes) - ADMINISTRATIVE_FIELDS:
            # a signature landing between the check and the write must win
            conditions += [getattr(LeaseContract, f"{role}_signature").is_(None) for role in SIGNATURE_ROLES]

        try:
            res = db.execute(
                update(LeaseContract)
                .where(*conditions)
                .values(**changes, updated_at=self._now())
                .execution_options(synchronize_session=False)
            )
            if res.rowcount != 1:
                db.rollback()
                raise PreconditionFailed("O contrato foi alterado por outra operação; recarregue e tente novamente.")
            db.commit()
        except IntegrityError as exc:
            db.rollback()
            raise Conflict("Este imóvel já possui um contrato em aberto.") from exc

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_UPDATED,
            description="Contrato atualizado",
            metadata={"fields": sorted(changes)},
            created_by=principal.actor,
        )
        return self.get(db, contract_id=contract_id)

    def delete(self, db: Session, *, contract_id: int, principal: Principal) -> None:
        contract = self.get(db, contract_id=contract_id)

        check = enforce_delete(contract)
        if not check.allowed:
            raise PreconditionFailed(check.message or "Exclusão não permitida.")

        now = self._now()
        res = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.deleted.is_(False),
                LeaseContract.status == ContractStatus.PENDING.value,
                *[getattr(LeaseContract, f"{role}_signature").is_(None) for role in SIGNATURE_ROLES],
            )
            .values(deleted=True, deleted_at=now, deleted_by=principal.actor, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise PreconditionFailed("O contrato foi alterado por outra operação; recarregue e tente novamente.")
        db.commit()

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CONTRACT_DELETED,
            description="Contrato excluído",
            metadata={},
            created_by=principal.actor,
        )
        logger.info("contract deleted", extra={"contract_id": contract_id})

    # ─────────────────────────────────────────────
    # AMEND
    # ─────────────────────────────────────────────

    def create_amended_contract(
        self,
        db: Session,
        *,
        contract_id: int,
        amendments: Dict[str, Any],
        principal: Principal,
    ) -> LeaseContract:
        """
        New PENDING contract carrying the original terms plus `amendments`.
        The original row is left untouched.
        """
        original = self.get(db, contract_id=contract_id)
        status = check_immutability(original)

        if status.can_edit:
            raise PreconditionFailed("Contrato original pode ser editado diretamente. Use o método update.")
        if not status.can_amend:
            raise PreconditionFailed(status.reason or "Contrato não pode ser aditado.")

        errors = self._unknown_fields(amendments)
        if errors:
            raise ValidationFailed("Campos de aditivo inválidos.", errors)
        if "property_id" in amendments and amendments["property_id"] != original.property_id:
            raise ValidationFailed(
                "Aditivo não pode trocar o imóvel.",
                [{"field": "property_id", "message": "Aditivo não pode trocar o imóvel."}],
            )
        self._check_parties(db, amendments)

        open_amendment = db.execute(
            select(LeaseContract.id).where(
                LeaseContract.amended_from_id == original.id,
                LeaseContract.status.in_([ContractStatus.PENDING.value, ContractStatus.AWAITING_SIGNATURES.value]),
                LeaseContract.deleted.is_(False),
            ).limit(1)
        ).scalar_one_or_none()
        if open_amendment is not None:
            raise Conflict("Já existe um aditivo em andamento para este contrato.")

        # rendered content is rebuilt at prepare_for_signing, never copied
        fields = {name: getattr(original, name) for name in DRAFT_FIELDS}
        fields.update(amendments)

        amended = LeaseContract(
            **fields,
            amended_from_id=original.id,
            contract_token=self._new_token(db),
            status=ContractStatus.PENDING.value,
            created_by=principal.actor,
            created_at=self._now(),
        )
        db.add(amended)
        db.commit()
        db.refresh(amended)

        self.lifecycle.record_event(
            db,
            contract_id=amended.id,
            event_type=LifecycleEventType.CONTRACT_CREATED,
            description="Aditivo criado",
            metadata={"amendedFromId": original.id, "fields": sorted(amendments)},
            created_by=principal.actor,
        )
        self.lifecycle.record_event(
            db,
            contract_id=original.id,
            event_type=LifecycleEventType.CONTRACT_AMENDED,
            description="Aditivo gerado a partir deste contrato",
            metadata={"amendedContractId": amended.id, "fields": sorted(amendments)},
            created_by=principal.actor,
        )
        logger.info("amended contract created", extra={"contract_id": original.id, "amended_id": amended.id})
        return amended

    # ─────────────────────────────────────────────
    # CLAUSES
    # ─────────────────────────────────────────────

    def update_clauses(
        self,
        db: Session,
        *,
        contract_id: int,
        clauses: Any,
        principal: Principal,
        ip: Optional[str] = None,
        user_agent: Optional[str] = None,
        change_note: Optional[str] = None,
    ) -> LeaseContract:
        contract = self.get(db, contract_id=contract_id)

        if contract.status != ContractStatus.PENDING.value:
            raise PreconditionFailed("Cláusulas só podem ser editadas quando o contrato está com status PENDENTE.")
        check = enforce_immutability(contract, {"clauses_json": clauses}, editable=CLAUSE_FIELDS)
        if not check.allowed:
            raise PreconditionFailed(check.message or "Alteração não permitida.")

        now = self._now()
        db.add(ContractClauseHistory(
            contract_id=contract.id,
            clauses_json=contract.clauses_json,
            edited_by=principal.actor,
            edited_at=now,
            ip=ip,
            user_agent=user_agent,
            change_note=change_note,
        ))
        res = db.execute(
            update(LeaseContract)
            .where(
                LeaseContract.id == contract.id,
                LeaseContract.status == ContractStatus.PENDING.value,
                LeaseContract.deleted.is_(False),
                *[getattr(LeaseContract, f"{role}_signature").is_(None) for role in SIGNATURE_ROLES],
            )
            .values(clauses_json=clauses, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        if res.rowcount != 1:
            db.rollback()
            raise PreconditionFailed("O contrato foi alterado por outra operação; recarregue e tente novamente.")
        db.commit()

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.CLAUSES_UPDATED,
            description="Cláusulas atualizadas",
            metadata={"ip": ip, "changeNote": change_note},
            created_by=principal.actor,
        )
        return self.get(db, contract_id=contract_id)
