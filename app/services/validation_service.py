#app/services/validation_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import Dict, List

from sqlalchemy.orm import Session

from app.core.errors import NotFound
from app.models.enums import NON_CASH_GUARANTEES
from app.models.lease_contract import LeaseContract


@dataclass
class ValidationResult:
    valid: bool
    errors: List[Dict[str, str]] = field(default_factory=list)

    @property
    def summary(self) -> str:
        return "; ".join(e["message"] for e in self.errors)


def has_valid_guarantee(contract: LeaseContract) -> bool:
    """
    A guarantee counts when its type is set and it is backed either by a
    positive cash deposit or by a non-cash instrument (guarantor, insurance, bond).
    """
    if not contract.guarantee_type:
        return False
    if contract.guarantee_type in NON_CASH_GUARANTEES:
        return True
    return contract.deposit is not None and Decimal(contract.deposit) > 0


def validate_snapshot(contract: LeaseContract) -> ValidationResult:
    errors: List[Dict[str, str]] = []

    def fail(field_name: str, message: str) -> None:
        errors.append({"field": field_name, "message": message})

    # parties
    if not contract.tenant_id or contract.tenant is None:
        fail("tenant_id", "Locatário não informado.")
    if not contract.owner_id or contract.owner is None:
        fail("owner_id", "Locador não informado.")
    prop = contract.leased_property
    if prop is None or prop.deleted:
        fail("property_id", "Imóvel não informado ou excluído.")

    # guarantee
    if not contract.guarantee_type:
        fail("guarantee_type", "Tipo de garantia não informado.")
    elif not has_valid_guarantee(contract):
        fail("deposit", "Caução deve ser maior que zero para garantia em dinheiro.")

    # commercial terms
    if contract.monthly_rent is None or Decimal(contract.monthly_rent) <= 0:
        fail("monthly_rent", "Valor do aluguel não informado.")
    if not contract.start_date:
        fail("start_date", "Data de início não informada.")
    if not contract.end_date:
        fail("end_date", "Data de término não informada.")
    if contract.start_date and contract.end_date and contract.end_date <= contract.start_date:
        fail("end_date", "Data de término deve ser posterior à data de início.")

    if not (contract.jurisdiction or "").strip():
        fail("jurisdiction", "Foro (jurisdição) não informado.")

    return ValidationResult(valid=not errors, errors=errors)


class ValidationService:
    """
    Pre-signing checklist. Every item is evaluated; nothing short-circuits.
    """

    def validate_contract(self, db: Session, *, contract_id: int) -> ValidationResult:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return validate_snapshot(contract)
