from datetime import date, datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError, OperationalError

from app.core.errors import PreconditionFailed
from app.models.enums import FinancialEffectKind, LifecycleEventType
from app.models.lifecycle_event import ContractLifecycleEvent
from app.services.lifecycle_service import financial_effect, months_between, proportional_penalty


def active_contract(world, **overrides):
    c = world.signed_contract(**overrides)
    return world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)


def test_events_are_chained_in_sequence(world):
    c = world.new_contract()
    svc = world.services.lifecycle

    e2 = svc.create_event(
        world.db,
        contract_id=c.id,
        event_type=LifecycleEventType.RENT_REVIEW,
        description="Revisão solicitada",
        created_by=world.as_owner.actor,
        metadata={"requested": Decimal("1700.00")},
    )
    e3 = svc.create_event(
        world.db,
        contract_id=c.id,
        event_type="KEY_RETURN",
        description="Chaves devolvidas",
        created_by="SYSTEM",
    )

    assert (e2.seq, e3.seq) == (2, 3)
    assert e3.prev_hash == e2.entry_hash
    assert e2.metadata_json == {"requested": "1700.00"}
    assert svc.verify_chain(world.db, contract_id=c.id) is True


def test_tampering_breaks_the_chain(world):
    c = world.new_contract()
    svc = world.services.lifecycle
    svc.create_event(world.db, contract_id=c.id, event_type="KEY_RETURN", description="x", created_by="SYSTEM")

    first = world.db.query(ContractLifecycleEvent).filter_by(contract_id=c.id, seq=1).one()
    first.description = "editado"
    world.db.commit()

    assert svc.verify_chain(world.db, contract_id=c.id) is False


def test_timeline_is_chronological_and_keeps_financial_effect(world):
    c = world.new_contract()
    svc = world.services.lifecycle
    effect = financial_effect(FinancialEffectKind.PENALTY, Decimal("450.00"))

    world.clock.advance(days=1)
    svc.create_event(
        world.db,
        contract_id=c.id,
        event_type=LifecycleEventType.PROPORTIONAL_TERMINATION_PENALTY,
        description="Multa",
        created_by="SYSTEM",
        financial_effect=effect,
    )

    timeline = svc.get_contract_timeline(world.db, contract_id=c.id)
    assert [e.event_type for e in timeline] == ["CONTRACT_CREATED", "PROPORTIONAL_TERMINATION_PENALTY"]
    assert timeline[0].financial_effect_json is None
    assert timeline[1].financial_effect_json == {"kind": "PENALTY", "amount": 450.0, "currency": "BRL"}


def test_append_retries_when_a_concurrent_writer_took_the_seq(world, session_factory, monkeypatch):
    c = world.new_contract()
    svc = world.services.lifecycle
    stale_head = svc._get_last_event(world.db, c.id)

    # another session appends between our head read and our commit
    other = session_factory()
    try:
        svc.create_event(other, contract_id=c.id, event_type="SIGNATURE_CAPTURED_OWNER",
                         description="owner", created_by="owner")
    finally:
        other.close()

    real_head = svc._get_last_event
    reads = []

    def head(db, contract_id):
        reads.append(contract_id)
        return stale_head if len(reads) == 1 else real_head(db, contract_id)

    monkeypatch.setattr(svc, "_get_last_event", head)
    event = svc.record_event(world.db, contract_id=c.id, event_type="SIGNATURE_CAPTURED_TENANT",
                             description="tenant", created_by="tenant")

    assert event is not None
    assert event.seq == 3
    assert len(reads) == 2
    monkeypatch.undo()

    timeline = svc.get_contract_timeline(world.db, contract_id=c.id)
    assert [e.event_type for e in timeline] == [
        "CONTRACT_CREATED", "SIGNATURE_CAPTURED_OWNER", "SIGNATURE_CAPTURED_TENANT",
    ]
    assert svc.verify_chain(world.db, contract_id=c.id) is True


def test_append_gives_up_after_bounded_attempts(world, monkeypatch):
    c = world.new_contract()
    svc = world.services.lifecycle
    svc.create_event(world.db, contract_id=c.id, event_type="KEY_RETURN", description="x", created_by="SYSTEM")
    genesis_head = world.db.query(ContractLifecycleEvent).filter_by(contract_id=c.id, seq=1).one()

    monkeypatch.setattr(svc, "_get_last_event", lambda db, contract_id: genesis_head)
    with pytest.raises(IntegrityError):
        svc.create_event(world.db, contract_id=c.id, event_type="KEY_RETURN", description="y", created_by="SYSTEM")
    monkeypatch.undo()

    assert [e.seq for e in svc.get_contract_timeline(world.db, contract_id=c.id)] == [1, 2]


def test_failed_audit_write_is_swallowed(world, monkeypatch):
    c = world.new_contract()
    svc = world.services.lifecycle

    def boom(*args, **kwargs):
        raise OperationalError("INSERT", {}, Exception("disk full"))

    monkeypatch.setattr(svc, "create_event", boom)
    assert svc.record_event(world.db, contract_id=c.id, event_type="KEY_RETURN",
                            description="x", created_by="SYSTEM") is None


def test_termination_notice_requires_signed_or_active(world):
    c = world.new_contract()
    with pytest.raises(PreconditionFailed):
        world.services.lifecycle.generate_termination_notice(
            world.db, contract_id=c.id, reason="mudança", created_by=world.as_tenant.actor
        )

    signed = world.signed_contract(property_id=world.other_prop.id)
    event = world.services.lifecycle.generate_termination_notice(
        world.db, contract_id=signed.id, reason="mudança", created_by=world.as_tenant.actor
    )
    assert event.event_type == "TERMINATION_NOTICE"
    assert event.metadata_json["noticeDate"] == "2025-06-15"


# ─────────────────────────────────────────────
# RENT ADJUSTMENT / TACIT RENEWAL
# ─────────────────────────────────────────────

def test_rent_adjustment_due_in_configured_month_once_per_year(world):
    c = active_contract(world, readjustment_month=6)
    svc = world.services.lifecycle

    assert svc.check_rent_adjustment(world.db, contract_id=c.id) is True

    svc.create_event(
        world.db, contract_id=c.id, event_type=LifecycleEventType.RENT_ADJUSTMENT,
        description="Reajuste IGPM", created_by="SYSTEM",
    )
    assert svc.check_rent_adjustment(world.db, contract_id=c.id) is False


def test_rent_adjustment_not_due_outside_month_or_when_not_active(world):
    c = world.signed_contract(readjustment_month=6)
    assert world.services.lifecycle.check_rent_adjustment(world.db, contract_id=c.id) is False

    other = active_contract(world, property_id=world.other_prop.id, readjustment_month=7)
    assert world.services.lifecycle.check_rent_adjustment(world.db, contract_id=other.id) is False


def test_tacit_renewal_window(world):
    c = world.new_contract(end_date=date(2025, 7, 10))
    svc = world.services.lifecycle

    assert svc.check_tacit_renewal(world.db, contract_id=c.id) is True

    world.clock.now = datetime(2025, 5, 1, tzinfo=timezone.utc)
    assert svc.check_tacit_renewal(world.db, contract_id=c.id) is False

    world.clock.now = datetime(2025, 7, 10, tzinfo=timezone.utc)
    assert svc.check_tacit_renewal(world.db, contract_id=c.id) is False


def test_recent_termination_notice_blocks_tacit_renewal(world):
    c = world.new_contract(end_date=date(2025, 7, 10))
    svc = world.services.lifecycle
    svc.create_event(
        world.db, contract_id=c.id, event_type=LifecycleEventType.UNMOTIVATED_TERMINATION,
        description="Denúncia vazia", created_by=world.as_owner.actor,
    )
    assert svc.check_tacit_renewal(world.db, contract_id=c.id) is False


# ─────────────────────────────────────────────
# PROPORTIONAL PENALTY
# ─────────────────────────────────────────────

def test_proportional_penalty_reference_case(world):
    c = world.new_contract(
        monthly_rent=Decimal("1000"), start_date=date(2024, 1, 1), end_date=date(2025, 1, 1)
    )
    result = world.services.lifecycle.calculate_proportional_penalty(
        world.db, contract_id=c.id, termination_date=date(2024, 7, 1)
    )

    assert result.base_penalty == Decimal("3000.00")
    assert result.remaining_months == 6
    assert result.total_months == 12
    assert result.amount == Decimal("1500.00")
    assert result.calculation == "Base: R$ 1000.00 × 3 = R$ 3000.00 × 50.00% = R$ 1500.00"


def test_month_counts_never_drop_below_one():
    assert months_between(date(2024, 1, 1), date(2024, 1, 20)) == 1
    p = proportional_penalty(Decimal("1000"), date(2024, 1, 1), date(2024, 1, 20), date(2024, 1, 10))
    assert p.amount == Decimal("3000.00")


def test_penalty_needs_rent_and_dates(world):
    c = world.new_contract(monthly_rent=None)
    with pytest.raises(PreconditionFailed):
        world.services.lifecycle.calculate_proportional_penalty(
            world.db, contract_id=c.id, termination_date=date(2025, 3, 1)
        )
