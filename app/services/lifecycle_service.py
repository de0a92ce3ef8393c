#app/services/lifecycle_service.py
from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc, utc_now
from app.core.errors import NotFound, PreconditionFailed
from app.core.hashing import canonical_dumps, hash_chain
from app.models.enums import (
    ContractStatus,
    FinancialEffectKind,
    LifecycleEventType,
    TERMINATION_NOTICE_FAMILY,
)
from app.models.lease_contract import LeaseContract
from app.models.lifecycle_event import ContractLifecycleEvent

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
BASE_PENALTY_MONTHS = 3
DEFAULT_READJUSTMENT_MONTH = 12
TACIT_RENEWAL_WINDOW_DAYS = 30
TERMINATION_LOOKBACK_DAYS = 90
TERMINATION_LEGAL_BASIS = "Lei do Inquilinato, Art. 9º"


def jsonable(obj: Any) -> Any:
    # Decimal / date / datetime -> JSON primitives, the form stored and hashed
    return json.loads(canonical_dumps({"v": obj}))["v"]


def financial_effect(kind: FinancialEffectKind, amount: Any, currency: str = "BRL") -> Dict[str, Any]:
    return {"kind": kind.value, "amount": float(amount), "currency": currency}


def months_between(start: date, end: date) -> int:
    """
    Calendar month difference, never below 1.
    """
    months = (end.year - start.year) * 12 + (end.month - start.month)
    return max(1, months)


@dataclass(frozen=True)
class ProportionalPenalty:
    amount: Decimal
    base_penalty: Decimal
    remaining_months: int
    total_months: int
    proportional_factor: Decimal
    calculation: str


def proportional_penalty(
    monthly_rent: Decimal,
    start_date: date,
    end_date: date,
    termination_date: date,
) -> ProportionalPenalty:
    rent = Decimal(monthly_rent)
    total = months_between(start_date, end_date)
    remaining = months_between(termination_date, end_date)

    base = (rent * BASE_PENALTY_MONTHS).quantize(CENTS, rounding=ROUND_HALF_UP)
    factor = Decimal(remaining) / Decimal(total)
    amount = (base * factor).quantize(CENTS, rounding=ROUND_HALF_UP)

    calculation = (
        f"Base: R$ {rent:.2f} × {BASE_PENALTY_MONTHS} = R$ {base:.2f} "
        f"× {factor * 100:.2f}% = R$ {amount:.2f}"
    )
    return ProportionalPenalty(
        amount=amount,
        base_penalty=base,
        remaining_months=remaining,
        total_months=total,
        proportional_factor=factor,
        calculation=calculation,
    )


class LifecycleService:
    """
    Append-only, hash-chained lifecycle log of a lease contract.

    Also answers the date-driven questions (rent adjustment due, tacit renewal
    pending, early termination penalty) against an injected clock.
    """

    GENESIS_HASH = "0" * 64
    APPEND_ATTEMPTS = 3

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _get_contract(self, db: Session, contract_id: int) -> LeaseContract:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return contract

    def _get_last_event(self, db: Session, contract_id: int) -> Optional[ContractLifecycleEvent]:
        return db.execute(
            select(ContractLifecycleEvent)
            .where(ContractLifecycleEvent.contract_id == contract_id)
            .order_by(ContractLifecycleEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    @staticmethod
    def _payload(e: ContractLifecycleEvent) -> Dict[str, Any]:
        return {
            "contract_id": e.contract_id,
            "seq": e.seq,
            "event_type": e.event_type,
            "description": e.description,
            "metadata": e.metadata_json,
            "financial_effect": e.financial_effect_json,
            "created_by": e.created_by,
            "created_at": as_utc(e.created_at).isoformat(),
        }

    def _events_of_type(self, db: Session, contract_id: int, types) -> List[ContractLifecycleEvent]:
        return (
            db.execute(
                select(ContractLifecycleEvent).where(
                    ContractLifecycleEvent.contract_id == contract_id,
                    ContractLifecycleEvent.event_type.in_(list(types)),
                )
            )
            .scalars()
            .all()
        )

    # ─────────────────────────────────────────────
    # WRITE PATH
    # ─────────────────────────────────────────────

    def create_event(
        self,
        db: Session,
        *,
        contract_id: int,
        event_type: str,
        description: str,
        created_by: str,
        metadata: Optional[Dict[str, Any]] = None,
        financial_effect: Optional[Dict[str, Any]] = None,
    ) -> ContractLifecycleEvent:
        """
        Append one immutable event. There is no update or delete counterpart.

        A concurrent writer taking the same seq trips uq_lifecycle_event_seq;
        the append is then rebuilt on the new chain head, up to APPEND_ATTEMPTS times.
        """
        event_type = getattr(event_type, "value", event_type)

        for attempt in range(1, self.APPEND_ATTEMPTS + 1):
            last = self._get_last_event(db, contract_id)
            prev_hash = last.entry_hash if last else self.GENESIS_HASH
            seq = 1 if not last else last.seq + 1

            row = ContractLifecycleEvent(
                contract_id=contract_id,
                seq=seq,
                event_type=event_type,
                description=description,
                metadata_json=jsonable(metadata or {}),
                financial_effect_json=jsonable(financial_effect) if financial_effect else None,
                created_by=str(created_by),
                created_at=as_utc(self.clock()),
                prev_hash=prev_hash,
                entry_hash="",
            )
            row.entry_hash = hash_chain(prev_hash, self._payload(row))

            db.add(row)
            try:
                db.commit()
            except IntegrityError:
                db.rollback()
                if attempt == self.APPEND_ATTEMPTS:
                    raise
                logger.warning(
                    "lifecycle seq taken; retrying on new chain head",
                    extra={"contract_id": contract_id, "seq": seq, "attempt": attempt},
                )
                continue
            db.refresh(row)
            return row

    def record_event(self, db: Session, **kwargs: Any) -> Optional[ContractLifecycleEvent]:
        """
        Best-effort append used after a primary transition has committed.
        A failed audit write is logged and never undoes the transition.
        """
        try:
            return self.create_event(db, **kwargs)
        except SQLAlchemyError:
            db.rollback()
            logger.exception(
                "lifecycle event write failed",
                extra={"contract_id": kwargs.get("contract_id"), "event_type": str(kwargs.get("event_type"))},
            )
            return None

    def generate_termination_notice(
        self,
        db: Session,
        *,
        contract_id: int,
        reason: str,
        created_by: str,
        notice_date: Optional[date] = None,
    ) -> ContractLifecycleEvent:
        contract = self._get_contract(db, contract_id)
        if contract.status not in {ContractStatus.SIGNED.value, ContractStatus.ACTIVE.value}:
            raise PreconditionFailed("Termination notice requires a SIGNED or ACTIVE contract.")

        notice_date = notice_date or as_utc(self.clock()).date()
        return self.create_event(
            db,
            contract_id=contract.id,
            event_type=LifecycleEventType.TERMINATION_NOTICE,
            description=f"Aviso de rescisão: {reason}",
            metadata={
                "reason": reason,
                "noticeDate": notice_date.isoformat(),
                "legalBasis": TERMINATION_LEGAL_BASIS,
            },
            created_by=created_by,
        )

    # ─────────────────────────────────────────────
    # READ PATH
    # ─────────────────────────────────────────────

    def get_contract_timeline(self, db: Session, *, contract_id: int) -> List[ContractLifecycleEvent]:
        self._get_contract(db, contract_id)
        return (
            db.execute(
                select(ContractLifecycleEvent)
                .where(ContractLifecycleEvent.contract_id == contract_id)
                .order_by(ContractLifecycleEvent.created_at.asc(), ContractLifecycleEvent.seq.asc())
            )
            .scalars()
            .all()
        )

    def verify_chain(self, db: Session, *, contract_id: int) -> bool:
        """
        Recompute every entry hash in seq order. False on the first mismatch.
        """
        entries = (
            db.execute(
                select(ContractLifecycleEvent)
                .where(ContractLifecycleEvent.contract_id == contract_id)
                .order_by(ContractLifecycleEvent.seq.asc())
            )
            .scalars()
            .all()
        )

        prev_hash = self.GENESIS_HASH
        for e in entries:
            if e.prev_hash != prev_hash:
                return False
            if e.entry_hash != hash_chain(prev_hash, self._payload(e)):
                return False
            prev_hash = e.entry_hash
        return True

    def check_rent_adjustment(self, db: Session, *, contract_id: int) -> bool:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted or contract.status != ContractStatus.ACTIVE.value:
            return False

        now = as_utc(self.clock())
        if now.month != (contract.readjustment_month or DEFAULT_READJUSTMENT_MONTH):
            return False

        adjustments = self._events_of_type(db, contract_id, [LifecycleEventType.RENT_ADJUSTMENT.value])
        return not any(as_utc(e.created_at).year == now.year for e in adjustments)

    def check_tacit_renewal(self, db: Session, *, contract_id: int) -> bool:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted or not contract.end_date:
            return False

        now = as_utc(self.clock())
        days_until_end = (contract.end_date - now.date()).days
        if not (0 < days_until_end <= TACIT_RENEWAL_WINDOW_DAYS):
            return False

        since = now - timedelta(days=TERMINATION_LOOKBACK_DAYS)
        notices = self._events_of_type(db, contract_id, TERMINATION_NOTICE_FAMILY)
        return not any(as_utc(e.created_at) >= since for e in notices)

    def calculate_proportional_penalty(
        self,
        db: Session,
        *,
        contract_id: int,
        termination_date: date,
    ) -> ProportionalPenalty:
        contract = self._get_contract(db, contract_id)
        if contract.monthly_rent is None or not contract.start_date or not contract.end_date:
            raise PreconditionFailed("Contract rent and dates are required to compute the penalty.")

        return proportional_penalty(
            contract.monthly_rent,
            contract.start_date,
            contract.end_date,
            termination_date,
        )
