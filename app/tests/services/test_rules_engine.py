from datetime import date
from decimal import Decimal

import pytest

from app.core.errors import NotFound
from app.models.lease_contract import LeaseContract
from app.services.rules_engine import (
    calculate_penalty,
    contract_months,
    generate_automatic_clauses,
    validate_contract_type,
)


def rule_ids(result):
    return [r["rule_id"] for r in result["applicable_rules"]]


def test_pending_long_term_contract_only_gets_forum_rule(world):
    c = world.new_contract()
    result = world.services.rules.apply_rules(world.db, contract_id=c.id)

    assert rule_ids(result) == ["forum-selection"]
    assert result["applicable_rules"][0]["result"]["valid_forum"] == "São Paulo/SP"
    assert result["timestamp"].startswith("2025-06-15T12:00:00")


def test_active_contract_rules_in_fixed_order(world):
    c = world.signed_contract(readjustment_month=6, end_date=date(2026, 1, 1))
    world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)

    result = world.services.rules.apply_rules(world.db, contract_id=c.id)
    assert rule_ids(result) == [
        "residential-short-term",
        "rent-adjustment",
        "grace-period",
        "acceleration-clause",
        "forum-selection",
    ]
    adjust = result["applicable_rules"][1]["result"]
    assert adjust == {"should_adjust": True, "adjustment_index": "IGPM", "event_type": "RENT_ADJUSTMENT"}


def test_rent_rule_follows_the_clock(world):
    c = world.signed_contract(readjustment_month=7)
    world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)

    assert "rent-adjustment" not in rule_ids(world.services.rules.apply_rules(world.db, contract_id=c.id))
    world.clock.advance(days=30)
    assert "rent-adjustment" in rule_ids(world.services.rules.apply_rules(world.db, contract_id=c.id))


def test_apply_rules_writes_nothing(world):
    c = world.new_contract()
    before = len(world.services.lifecycle.get_contract_timeline(world.db, contract_id=c.id))
    world.services.rules.apply_rules(world.db, contract_id=c.id)
    assert len(world.services.lifecycle.get_contract_timeline(world.db, contract_id=c.id)) == before


# ─────────────────────────────────────────────
# JUDICIAL READINESS
# ─────────────────────────────────────────────

def test_signed_contract_is_judicially_ready(world):
    c = world.signed_contract()
    readiness = world.services.rules.check_judicial_readiness(world.db, contract_id=c.id)

    assert readiness.overall_ready is True
    assert readiness.missing_items == []


def test_missing_jurisdiction_is_the_only_gap(world):
    c = world.signed_contract()
    row = world.db.get(LeaseContract, c.id)
    row.jurisdiction = None
    world.db.commit()

    readiness = world.services.rules.check_judicial_readiness(world.db, contract_id=c.id)
    assert readiness.overall_ready is False
    assert readiness.missing_items == ["Legal basis documented"]

    body = readiness.as_dict()
    assert body["legal_basis_documented"] is False
    assert body["hash_generated"] is True


def test_unsigned_contract_readiness(world):
    c = world.new_contract(charges_json=None)
    readiness = world.services.rules.check_judicial_readiness(world.db, contract_id=c.id)

    assert readiness.missing_items == [
        "Completed signatures",
        "Essential clauses included",
        "Charges defined",
        "Hash generated",
    ]


def test_readiness_of_unknown_contract(world):
    with pytest.raises(NotFound):
        world.services.rules.check_judicial_readiness(world.db, contract_id=9999)


# ─────────────────────────────────────────────
# PURE HELPERS
# ─────────────────────────────────────────────

def test_calculate_penalty():
    c = LeaseContract(monthly_rent=Decimal("1000"))
    assert calculate_penalty(c, 6, 12) == Decimal("1500.00")
    assert calculate_penalty(c, 1, 3) == Decimal("1000.00")


def test_calculate_penalty_rejects_zero_total():
    with pytest.raises(ValueError):
        calculate_penalty(LeaseContract(monthly_rent=Decimal("1000")), 1, 0)


def test_automatic_clauses():
    without = generate_automatic_clauses(LeaseContract(jurisdiction=None))
    assert len(without) == 4
    assert "Lei Geral de Proteção de Dados" in without[3]

    with_forum = generate_automatic_clauses(LeaseContract(jurisdiction="Campinas/SP"))
    assert len(with_forum) == 5
    assert with_forum[-1] == (
        "Fica eleito o foro da comarca de Campinas/SP para dirimir questões oriundas deste contrato."
    )


def test_contract_months_is_raw_difference():
    assert contract_months(LeaseContract(start_date=date(2025, 1, 31), end_date=date(2025, 2, 1))) == 1
    assert contract_months(LeaseContract(start_date=None, end_date=date(2025, 2, 1))) == 0


@pytest.mark.parametrize(
    "contract_type,months,framework,warnings",
    [
        ("RESIDENTIAL", 12, "Lei do Inquilinato (Lei 8.245/91)", 1),
        ("RESIDENTIAL", 30, "Lei do Inquilinato (Lei 8.245/91)", 0),
        ("NON_RESIDENTIAL", 12, "Código Civil (Lei 10.406/2002)", 0),
        ("COMMERCIAL_FIXED", 12, "Código Civil + Lei do Inquilinato (commercial provisions)", 0),
        (None, 12, "", 1),
    ],
)
def test_validate_contract_type(contract_type, months, framework, warnings):
    result = validate_contract_type(contract_type, months)
    assert result["valid"] is True
    assert result["legal_framework"] == framework
    assert len(result["warnings"]) == warnings
