from datetime import date
from decimal import Decimal

import pytest

from app.core.errors import NotFound
from app.models.enums import GuaranteeType
from app.models.lease_contract import LeaseContract
from app.services.validation_service import has_valid_guarantee


def fields_of(result):
    return [e["field"] for e in result.errors]


def test_complete_contract_is_valid(world):
    c = world.new_contract()
    result = world.services.validation.validate_contract(world.db, contract_id=c.id)
    assert result.valid is True
    assert result.errors == []


def test_every_failing_item_is_reported(world):
    c = world.new_contract(
        tenant_id=None,
        monthly_rent=None,
        guarantee_type=None,
        jurisdiction="  ",
    )
    result = world.services.validation.validate_contract(world.db, contract_id=c.id)

    assert result.valid is False
    assert fields_of(result) == ["tenant_id", "guarantee_type", "monthly_rent", "jurisdiction"]
    assert "Locatário" in result.summary


def test_end_date_must_follow_start_date(world):
    c = world.new_contract(end_date=date(2024, 12, 31))
    result = world.services.validation.validate_contract(world.db, contract_id=c.id)
    assert "end_date" in fields_of(result)


def test_cash_deposit_needs_positive_amount(world):
    c = world.new_contract(deposit=Decimal("0"))
    result = world.services.validation.validate_contract(world.db, contract_id=c.id)
    assert fields_of(result) == ["deposit"]


@pytest.mark.parametrize(
    "guarantee,deposit,expected",
    [
        (GuaranteeType.CASH_DEPOSIT.value, Decimal("100"), True),
        (GuaranteeType.CASH_DEPOSIT.value, None, False),
        (GuaranteeType.GUARANTOR.value, None, True),
        (GuaranteeType.RENT_INSURANCE.value, Decimal("0"), True),
        (None, Decimal("100"), False),
    ],
)
def test_guarantee_instruments(guarantee, deposit, expected):
    c = LeaseContract(guarantee_type=guarantee, deposit=deposit)
    assert has_valid_guarantee(c) is expected


def test_unknown_contract(world):
    with pytest.raises(NotFound):
        world.services.validation.validate_contract(world.db, contract_id=9999)
