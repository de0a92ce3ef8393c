#app/models/lease_contract.py
from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Optional

from sqlalchemy import (
    String,
    Text,
    Date,
    DateTime,
    Integer,
    BigInteger,
    Boolean,
    Numeric,
    Float,
    ForeignKey,
    Index,
    text,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.db.base import Base, BigIntPK, JSONType
from app.models.enums import ContractStatus, TERMINAL_STATUSES
from app.models.party import Agency, Property, User

# Amendments stay outside the one-open-contract rule while drafted and signed;
# activating one terminates the contract it amends (SigningService.activate).
OPEN_CONTRACT_PREDICATE = (
    "status NOT IN ('REVOKED', 'TERMINATED') AND deleted = false AND amended_from_id IS NULL"
)

class LeaseContract(Base):
    """
    Residential lease contract.

    Immutability rule:
      - Once any party signature exists, terms and content are frozen.
      - Changes after signing create a new contract row linked through amended_from_id.
      - hash_final is written once, at finalization.
    """

    __tablename__ = "lease_contracts"

    id: Mapped[int] = mapped_column(BigIntPK, primary_key=True, autoincrement=True)
    contract_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)

    # Parties
    property_id: Mapped[int] = mapped_column(
        BigInteger, ForeignKey("properties.id", ondelete="RESTRICT"), nullable=False
    )
    tenant_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    owner_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("users.id", ondelete="SET NULL"), nullable=True
    )
    agency_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("agencies.id", ondelete="SET NULL"), nullable=True
    )
    witness_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    witness_document: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    amended_from_id: Mapped[Optional[int]] = mapped_column(
        BigInteger, ForeignKey("lease_contracts.id", ondelete="SET NULL"), nullable=True
    )

    # Commercial terms
    contract_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    monthly_rent: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    deposit: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    due_day: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    start_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    end_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    readjustment_index: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    readjustment_month: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    late_fee_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    interest_rate_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    early_termination_penalty_percent: Mapped[Optional[Decimal]] = mapped_column(Numeric(6, 2), nullable=True)
    guarantee_type: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)
    jurisdiction: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    charges_json: Mapped[Optional[Dict[str, Any]]] = mapped_column(JSONType, nullable=True)

    # Administrative metadata (editable until terminal)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    creci: Mapped[Optional[str]] = mapped_column(String(32), nullable=True)

    # Content
    clauses_json: Mapped[Optional[Any]] = mapped_column(JSONType, nullable=True)
    content_template: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    content_snapshot: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Signatures: tenant
    tenant_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    tenant_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    tenant_signed_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    tenant_signed_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    tenant_geo_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tenant_geo_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    tenant_geo_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Signatures: owner
    owner_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    owner_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    owner_signed_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    owner_signed_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    owner_geo_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    owner_geo_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    owner_geo_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Signatures: agency
    agency_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    agency_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    agency_signed_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    agency_signed_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    agency_geo_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    agency_geo_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    agency_geo_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Signatures: witness
    witness_signature: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    witness_signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    witness_signed_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    witness_signed_agent: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    witness_geo_lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    witness_geo_lng: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    witness_geo_consent: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)

    # Status
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=ContractStatus.PENDING.value, server_default=text("'PENDING'")
    )

    # Integrity / documents
    hash_final: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    hash_generated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    hash_generated_ip: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    provisional_pdf_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    final_pdf_path: Mapped[Optional[str]] = mapped_column(String(512), nullable=True)
    final_pdf_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Soft delete
    deleted: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False, server_default=text("false"))
    deleted_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    deleted_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    created_by: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, server_default=text("CURRENT_TIMESTAMP"))
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    leased_property: Mapped[Property] = relationship(Property, foreign_keys=[property_id])
    tenant: Mapped[Optional[User]] = relationship(User, foreign_keys=[tenant_id])
    owner: Mapped[Optional[User]] = relationship(User, foreign_keys=[owner_id])
    agency: Mapped[Optional[Agency]] = relationship(Agency, foreign_keys=[agency_id])

    __table_args__ = (
        Index("ix_lease_contract_property_status", "property_id", "status"),
        Index("ix_lease_contract_tenant", "tenant_id"),
        Index("ix_lease_contract_owner", "owner_id"),
        Index("ix_lease_contract_agency", "agency_id"),
        # at most one open (non-terminal, not deleted) root contract per property
        Index(
            "uq_lease_contract_open_property",
            "property_id",
            unique=True,
            postgresql_where=text(OPEN_CONTRACT_PREDICATE),
            sqlite_where=text(OPEN_CONTRACT_PREDICATE),
        ),
    )

    # ─────────────────────────────────────────────
    # SIGNATURE HELPERS
    # ─────────────────────────────────────────────

    def signature_of(self, role: str) -> Optional[str]:
        return getattr(self, f"{role}_signature")

    def signatures(self) -> Dict[str, Optional[str]]:
        return {role: self.signature_of(role) for role in ("tenant", "owner", "agency", "witness")}

    @property
    def has_any_signature(self) -> bool:
        return any(self.signatures().values())

    @property
    def required_signer_roles(self) -> tuple[str, ...]:
        if self.agency_id:
            return ("tenant", "owner", "agency")
        return ("tenant", "owner")

    @property
    def all_required_signed(self) -> bool:
        return all(self.signature_of(r) for r in self.required_signer_roles)

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_STATUSES
