#app/policies/immutability.py
from __future__ import annotations

from dataclasses import dataclass
from typing import AbstractSet, Any, Mapping, Optional

from app.models.enums import ContractStatus, TERMINAL_STATUSES
from app.models.lease_contract import LeaseContract


# Fields that stay editable while the contract is out for signature
ADMINISTRATIVE_FIELDS = frozenset({"notes", "creci"})

# Commercial terms, frozen once signing starts
PROTECTED_FIELDS = frozenset({
    "property_id",
    "tenant_id",
    "owner_id",
    "agency_id",
    "witness_name",
    "witness_document",
    "contract_type",
    "monthly_rent",
    "deposit",
    "due_day",
    "start_date",
    "end_date",
    "readjustment_index",
    "readjustment_month",
    "late_fee_percent",
    "interest_rate_percent",
    "early_termination_penalty_percent",
    "guarantee_type",
    "jurisdiction",
    "charges_json",
})

# Written at creation, then only through the clause editor so every version lands in the history
CLAUSE_FIELDS = frozenset({"clauses_json"})

# Generic update path
EDITABLE_FIELDS = ADMINISTRATIVE_FIELDS | PROTECTED_FIELDS

# New contracts and amendments
DRAFT_FIELDS = EDITABLE_FIELDS | CLAUSE_FIELDS


@dataclass(frozen=True)
class ImmutabilityStatus:
    can_edit: bool
    can_delete: bool
    can_amend: bool
    reason: Optional[str] = None


@dataclass(frozen=True)
class MutationCheck:
    allowed: bool
    message: Optional[str] = None


def can_edit(status: str, has_any_signature: bool, deleted: bool) -> bool:
    return not deleted and status == ContractStatus.PENDING.value and not has_any_signature


def can_delete(status: str, has_any_signature: bool, deleted: bool) -> bool:
    return can_edit(status, has_any_signature, deleted)


def can_amend(status: str, has_any_signature: bool, deleted: bool) -> bool:
    return not deleted and status in {ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value}


def check_immutability(contract: LeaseContract) -> ImmutabilityStatus:
    status = contract.status
    signed = contract.has_any_signature
    deleted = bool(contract.deleted)

    if deleted:
        reason = "Contrato excluído."
    elif status in TERMINAL_STATUSES:
        reason = f"Contrato {status} não pode ser alterado."
    elif status in {ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value}:
        reason = "Contrato assinado é imutável; utilize um aditivo (novo contrato)."
    elif status == ContractStatus.AWAITING_SIGNATURES.value or signed:
        reason = "Contrato em processo de assinatura; apenas metadados administrativos podem ser alterados."
    else:
        reason = None

    return ImmutabilityStatus(
        can_edit=can_edit(status, signed, deleted),
        can_delete=can_delete(status, signed, deleted),
        can_amend=can_amend(status, signed, deleted),
        reason=reason,
    )


def enforce_immutability(
    contract: LeaseContract,
    changes: Mapping[str, Any],
    *,
    editable: AbstractSet[str] = EDITABLE_FIELDS,
) -> MutationCheck:
    """
    Decide whether `changes` may be written to `contract`.
    Callers must show `message` verbatim and skip the write when not allowed.
    """
    unknown = sorted(set(changes) - editable)
    if unknown:
        return MutationCheck(False, f"Campos não editáveis: {', '.join(unknown)}.")

    status = check_immutability(contract)
    if status.can_edit:
        return MutationCheck(True)

    if contract.deleted or contract.is_terminal:
        return MutationCheck(False, status.reason)

    if contract.status == ContractStatus.AWAITING_SIGNATURES.value or (
        contract.status == ContractStatus.PENDING.value and contract.has_any_signature
    ):
        protected = sorted(k for k in changes if k not in ADMINISTRATIVE_FIELDS)
        if protected:
            return MutationCheck(
                False,
                f"{status.reason} Campos bloqueados: {', '.join(protected)}.",
            )
        return MutationCheck(True)

    # SIGNED / ACTIVE
    return MutationCheck(False, status.reason)


def enforce_delete(contract: LeaseContract) -> MutationCheck:
    status = check_immutability(contract)
    if status.can_delete:
        return MutationCheck(True)
    return MutationCheck(False, f"Não é possível excluir este contrato: {status.reason}")
