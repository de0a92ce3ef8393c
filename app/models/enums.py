#app/models/enums.py
from __future__ import annotations
from enum import Enum


class UserRole(str, Enum):
    PLATFORM_ADMIN = "PLATFORM_ADMIN"
    AUDITOR = "AUDITOR"
    AGENCY_ADMIN = "AGENCY_ADMIN"
    AGENCY_MANAGER = "AGENCY_MANAGER"
    BROKER = "BROKER"
    OWNER = "OWNER"
    INDEPENDENT_OWNER = "INDEPENDENT_OWNER"
    TENANT = "TENANT"
    BUILDING_MANAGER = "BUILDING_MANAGER"


class ContractStatus(str, Enum):
    PENDING = "PENDING"
    AWAITING_SIGNATURES = "AWAITING_SIGNATURES"
    SIGNED = "SIGNED"
    ACTIVE = "ACTIVE"
    TERMINATED = "TERMINATED"
    REVOKED = "REVOKED"


TERMINAL_STATUSES = frozenset({ContractStatus.TERMINATED.value, ContractStatus.REVOKED.value})


class SignerRole(str, Enum):
    tenant = "tenant"
    owner = "owner"
    agency = "agency"
    witness = "witness"


class ContractType(str, Enum):
    RESIDENTIAL = "RESIDENTIAL"
    NON_RESIDENTIAL = "NON_RESIDENTIAL"
    SHORT_TERM = "SHORT_TERM"
    COMMERCIAL_FIXED = "COMMERCIAL_FIXED"
    COMMERCIAL_INDEFINITE = "COMMERCIAL_INDEFINITE"


class GuaranteeType(str, Enum):
    CASH_DEPOSIT = "CASH_DEPOSIT"
    GUARANTOR = "GUARANTOR"
    RENT_INSURANCE = "RENT_INSURANCE"
    CAPITALIZATION_BOND = "CAPITALIZATION_BOND"


# instruments that stand in for a cash deposit
NON_CASH_GUARANTEES = frozenset({
    GuaranteeType.GUARANTOR.value,
    GuaranteeType.RENT_INSURANCE.value,
    GuaranteeType.CAPITALIZATION_BOND.value,
})


class LifecycleEventType(str, Enum):
    RENT_ADJUSTMENT = "RENT_ADJUSTMENT"
    RENT_REVIEW = "RENT_REVIEW"
    TACIT_RENEWAL = "TACIT_RENEWAL"
    EXPRESS_EXTENSION = "EXPRESS_EXTENSION"
    TERMINATION_NOTICE = "TERMINATION_NOTICE"
    UNMOTIVATED_TERMINATION = "UNMOTIVATED_TERMINATION"
    KEY_RETURN = "KEY_RETURN"
    PROPORTIONAL_TERMINATION_PENALTY = "PROPORTIONAL_TERMINATION_PENALTY"
    DEFAULT_DECLARED = "DEFAULT_DECLARED"
    AGREEMENT_REACHED = "AGREEMENT_REACHED"
    JUDICIAL_PREPARATION = "JUDICIAL_PREPARATION"

    # contract workflow / audit
    CONTRACT_CREATED = "CONTRACT_CREATED"
    CONTRACT_UPDATED = "CONTRACT_UPDATED"
    CONTRACT_AMENDED = "CONTRACT_AMENDED"
    CONTRACT_DELETED = "CONTRACT_DELETED"
    CLAUSES_UPDATED = "CLAUSES_UPDATED"
    PREPARE_FOR_SIGNING = "PREPARE_FOR_SIGNING"
    SIGNATURE_LINKS_CREATED = "SIGNATURE_LINKS_CREATED"
    CONTRACT_FINALIZED = "CONTRACT_FINALIZED"
    CONTRACT_ACTIVATED = "CONTRACT_ACTIVATED"
    CONTRACT_TERMINATED = "CONTRACT_TERMINATED"
    CONTRACT_SUPERSEDED = "CONTRACT_SUPERSEDED"
    CONTRACT_REVOKED = "CONTRACT_REVOKED"


TERMINATION_NOTICE_FAMILY = frozenset({
    LifecycleEventType.TERMINATION_NOTICE.value,
    LifecycleEventType.UNMOTIVATED_TERMINATION.value,
})


class FinancialEffectKind(str, Enum):
    PENALTY = "PENALTY"
    ADJUSTMENT = "ADJUSTMENT"
    DISCOUNT = "DISCOUNT"
    PAYMENT = "PAYMENT"


class ChargeResponsibility(str, Enum):
    OWNER = "OWNER"
    TENANT = "TENANT"
    SHARED = "SHARED"
