#app/models/lifecycle_event.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, Optional

from sqlalchemy import String, Text, DateTime, Integer, BigInteger, ForeignKey, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, BigIntPK, JSONType


class ContractLifecycleEvent(Base):
    """
    Append-only, hash-chained lifecycle/audit events of a lease contract.

    entry_hash = SHA256(prev_hash + canonical(payload))
    No UPDATE or DELETE path exists for these rows.
    """

    __tablename__ = "contract_lifecycle_events"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    contract_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("lease_contracts.id", ondelete="RESTRICT"),
        nullable=False,
    )
    seq: Mapped[int] = mapped_column(Integer, nullable=False)  # monotonic per contract

    event_type: Mapped[str] = mapped_column(String(64), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    metadata_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    financial_effect_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    created_by: Mapped[str] = mapped_column(String(64), nullable=False)  # user id or "SYSTEM"
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    prev_hash: Mapped[str] = mapped_column(String(64), nullable=False)
    entry_hash: Mapped[str] = mapped_column(String(64), nullable=False)

    __table_args__ = (
        UniqueConstraint("contract_id", "seq", name="uq_lifecycle_event_seq"),
        Index("ix_lifecycle_event_contract", "contract_id"),
        Index("ix_lifecycle_event_type", "contract_id", "event_type"),
    )
