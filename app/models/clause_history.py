#app/models/clause_history.py
from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from sqlalchemy import String, Text, DateTime, BigInteger, ForeignKey, Index
from sqlalchemy.orm import Mapped, mapped_column

from app.db.base import Base, BigIntPK, JSONType


class ContractClauseHistory(Base):
    """
    Snapshot of the clauses as they were right before an edit.
    Only written while the contract is PENDING; never updated.
    """

    __tablename__ = "contract_clause_history"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)

    contract_id: Mapped[int] = mapped_column(
        BigInteger,
        ForeignKey("lease_contracts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    clauses_json: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    edited_by: Mapped[str] = mapped_column(String(64), nullable=False)
    edited_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    user_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    change_note: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    __table_args__ = (
        Index("ix_clause_history_contract", "contract_id", "edited_at"),
    )
