from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import ContractType, GuaranteeType, SignerRole


# --- Numeric primitives ---
Money = Annotated[Decimal, Field(ge=0, max_digits=14, decimal_places=2)]
Percent = Annotated[Decimal, Field(ge=0, le=100, max_digits=6, decimal_places=2)]


class ContractFields(BaseModel):
    """
    Fields accepted by the generic update. Only the fields actually sent are applied.
    """
    model_config = ConfigDict(extra="forbid", use_enum_values=True)

    property_id: Optional[int] = None
    tenant_id: Optional[int] = None
    owner_id: Optional[int] = None
    agency_id: Optional[int] = None
    witness_name: Optional[str] = Field(default=None, max_length=255)
    witness_document: Optional[str] = Field(default=None, max_length=32)

    contract_type: Optional[ContractType] = None
    monthly_rent: Optional[Money] = None
    deposit: Optional[Money] = None
    due_day: Optional[int] = Field(default=None, ge=1, le=31)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    readjustment_index: Optional[str] = Field(default=None, max_length=16)
    readjustment_month: Optional[int] = Field(default=None, ge=1, le=12)
    late_fee_percent: Optional[Percent] = None
    interest_rate_percent: Optional[Percent] = None
    early_termination_penalty_percent: Optional[Percent] = None
    guarantee_type: Optional[GuaranteeType] = None
    jurisdiction: Optional[str] = Field(default=None, max_length=255)
    charges_json: Optional[Dict[str, Any]] = None

    notes: Optional[str] = None
    creci: Optional[str] = Field(default=None, max_length=32)

    def changes(self) -> Dict[str, Any]:
        return self.model_dump(exclude_unset=True)


class ContractDraftFields(ContractFields):
    # initial clauses for a new contract or amendment; later edits use ClausesUpdateRequest
    clauses_json: Optional[Any] = None


class ContractCreateRequest(ContractDraftFields):
    property_id: int


class ClausesUpdateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    clauses: Any
    change_note: Optional[str] = None


class SignRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    signature: str = Field(..., min_length=1, description="Signature image (data URL or storage reference)")
    geo_lat: Optional[float] = Field(default=None, ge=-90, le=90)
    geo_lng: Optional[float] = Field(default=None, ge=-180, le=180)
    geo_consent: bool = False
    witness_name: Optional[str] = Field(default=None, max_length=255)
    witness_document: Optional[str] = Field(default=None, max_length=32)


class ReasonRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = None


class InvitationParty(BaseModel):
    role: SignerRole
    email: str = Field(..., min_length=3, max_length=255)
    name: Optional[str] = None


class InvitationRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    parties: List[InvitationParty] = Field(..., min_length=1)


class AgreementRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    installments: int = Field(default=1, ge=1, le=120)
    discount_percent: Percent = Decimal("0")


class TerminationNoticeRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1)
    notice_date: Optional[date] = None


class InspectionLinkRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    inspection_id: int


# --- Responses ---

class SignatureView(BaseModel):
    signed_at: Optional[datetime] = None
    signed_ip: Optional[str] = None
    has_geo: bool = False
    geo_consent: Optional[bool] = None


class ContractResponse(BaseModel):
    id: int
    contract_token: str
    status: str
    amended_from_id: Optional[int] = None

    property_id: int
    tenant_id: Optional[int] = None
    owner_id: Optional[int] = None
    agency_id: Optional[int] = None
    witness_name: Optional[str] = None

    contract_type: Optional[str] = None
    monthly_rent: Optional[Decimal] = None
    deposit: Optional[Decimal] = None
    due_day: Optional[int] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    readjustment_index: Optional[str] = None
    readjustment_month: Optional[int] = None
    late_fee_percent: Optional[Decimal] = None
    interest_rate_percent: Optional[Decimal] = None
    early_termination_penalty_percent: Optional[Decimal] = None
    guarantee_type: Optional[str] = None
    jurisdiction: Optional[str] = None
    charges_json: Optional[Dict[str, Any]] = None
    notes: Optional[str] = None
    creci: Optional[str] = None
    clauses_json: Optional[Any] = None

    signatures: Dict[str, Optional[SignatureView]]

    hash_final: Optional[str] = None
    hash_generated_at: Optional[datetime] = None
    final_pdf_path: Optional[str] = None
    final_pdf_sha256: Optional[str] = None
    provisional_pdf_path: Optional[str] = None

    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ImmutabilityResponse(BaseModel):
    can_edit: bool
    can_delete: bool
    can_amend: bool
    reason: Optional[str] = None


class ValidationResponse(BaseModel):
    valid: bool
    errors: List[Dict[str, str]]


class LifecycleEventResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    contract_id: int
    seq: int
    event_type: str
    description: str
    metadata_json: Dict[str, Any]
    financial_effect_json: Optional[Dict[str, Any]] = None
    created_by: str
    created_at: datetime
    entry_hash: str


class ClauseHistoryResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    clauses_json: Optional[Any] = None
    edited_by: str
    edited_at: datetime
    ip: Optional[str] = None
    user_agent: Optional[str] = None
    change_note: Optional[str] = None
