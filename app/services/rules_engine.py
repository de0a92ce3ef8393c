#app/services/rules_engine.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Callable, Dict, List, Optional, Tuple

from sqlalchemy import select, func
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc, utc_now
from app.core.errors import NotFound
from app.models.enums import ContractStatus, ContractType
from app.models.lease_contract import LeaseContract
from app.models.lifecycle_event import ContractLifecycleEvent
from app.services.lifecycle_service import BASE_PENALTY_MONTHS, CENTS, DEFAULT_READJUSTMENT_MONTH
from app.services.validation_service import has_valid_guarantee

SHORT_TERM_RESIDENTIAL_MONTHS = 30
GRACE_PERIOD_DAYS = 5
DEFAULT_READJUSTMENT_INDEX = "IGPM"
CHARGE_KEYS = ("iptu", "condominium", "water", "electricity")


@dataclass(frozen=True)
class ContractRule:
    id: str
    name: str
    condition: Callable[[LeaseContract, datetime], bool]
    action: Callable[[LeaseContract], Dict[str, Any]]
    legal_basis: str
    description: str


@dataclass
class JudicialReadiness:
    checks: List[Tuple[str, str, bool]] = field(default_factory=list)  # (key, label, passed)

    @property
    def overall_ready(self) -> bool:
        return all(passed for _, _, passed in self.checks)

    @property
    def missing_items(self) -> List[str]:
        return [label for _, label, passed in self.checks if not passed]

    def as_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {key: passed for key, _, passed in self.checks}
        out["overall_ready"] = self.overall_ready
        out["missing_items"] = self.missing_items
        return out


def contract_months(contract: LeaseContract) -> int:
    # Unclamped here: short-term classification compares the raw difference
    if not contract.start_date or not contract.end_date:
        return 0
    s, e = contract.start_date, contract.end_date
    return (e.year - s.year) * 12 + (e.month - s.month)


def _is_active(contract: LeaseContract) -> bool:
    return contract.status == ContractStatus.ACTIVE.value


def _charges_defined(contract: LeaseContract) -> bool:
    charges = contract.charges_json
    if not charges:
        return False
    return any(k in charges for k in CHARGE_KEYS)


# ─────────────────────────────────────────────
# RULE SET (fixed order)
# ─────────────────────────────────────────────

RULES: Tuple[ContractRule, ...] = (
    ContractRule(
        id="residential-short-term",
        name="Residential Short-Term Contract Rule",
        condition=lambda c, now: (
            c.contract_type == ContractType.RESIDENTIAL.value
            and contract_months(c) < SHORT_TERM_RESIDENTIAL_MONTHS
        ),
        action=lambda c: {
            "repossession_rules": "Article 47 of Brazilian Tenancy Law (Law 8,245/91)",
            "requires_court_order": True,
            "notice_period": 30,
        },
        legal_basis="Lei do Inquilinato, Art. 47",
        description="Residential contracts under 30 months are subject to Article 47 repossession rules",
    ),
    ContractRule(
        id="rent-adjustment",
        name="Automatic Rent Adjustment Rule",
        condition=lambda c, now: (
            _is_active(c) and now.month == (c.readjustment_month or DEFAULT_READJUSTMENT_MONTH)
        ),
        action=lambda c: {
            "should_adjust": True,
            "adjustment_index": c.readjustment_index or DEFAULT_READJUSTMENT_INDEX,
            "event_type": "RENT_ADJUSTMENT",
        },
        legal_basis="Lei do Inquilinato, Art. 7º",
        description="Automatic rent adjustment based on index and month",
    ),
    # grace-period and acceleration-clause disclose for every ACTIVE contract
    ContractRule(
        id="grace-period",
        name="Grace Period Rule",
        condition=lambda c, now: _is_active(c),
        action=lambda c: {
            "grace_period_days": GRACE_PERIOD_DAYS,
            "event_type": "GRACE_PERIOD",
            "applies_penalty": False,
        },
        legal_basis="Lei do Inquilinato, Art. 22",
        description="Grace period before applying late fees",
    ),
    ContractRule(
        id="acceleration-clause",
        name="Acceleration Clause Rule",
        condition=lambda c, now: _is_active(c),
        action=lambda c: {
            "acceleration_trigger": "MULTIPLE_OVERDUE_PAYMENTS",
            "event_type": "ACCELERATION",
            "makes_all_payments_due": True,
        },
        legal_basis="Código Civil, Art. 333",
        description="Acceleration clause for multiple defaults",
    ),
    ContractRule(
        id="forum-selection",
        name="Forum Selection Clause Rule",
        condition=lambda c, now: bool((c.jurisdiction or "").strip()),
        action=lambda c: {
            "valid_forum": c.jurisdiction,
            "event_type": "FORUM_SELECTION",
            "legal_basis": "Código de Processo Civil, Art. 63",
        },
        legal_basis="CPC, Art. 63",
        description="Valid forum selection clause",
    ),
)


# ─────────────────────────────────────────────
# PURE HELPERS
# ─────────────────────────────────────────────

def calculate_penalty(contract: LeaseContract, remaining_months: int, total_months: int) -> Decimal:
    """
    monthly_rent * 3 * remaining / total, rounded to cents.
    """
    if not total_months:
        raise ValueError("total_months must be greater than zero.")
    if contract.monthly_rent is None:
        raise ValueError("Contract has no monthly rent.")
    base = Decimal(contract.monthly_rent) * BASE_PENALTY_MONTHS
    return (base * Decimal(remaining_months) / Decimal(total_months)).quantize(CENTS, rounding=ROUND_HALF_UP)


def generate_automatic_clauses(contract: LeaseContract) -> List[str]:
    clauses = [
        "As partes estabelecem prazo de 5 (cinco) dias corridos após o vencimento para pagamento sem aplicação de multa.",
        "Em caso de inadimplemento de 2 (duas) ou mais parcelas, todas as parcelas vincendas tornar-se-ão imediatamente exigíveis.",
        "As comunicações entre as partes poderão ser realizadas por meio eletrônico, sendo válidas as notificações enviadas por e-mail cadastrado.",
        "O tratamento de dados pessoais será realizado em conformidade com a Lei Geral de Proteção de Dados (Lei 13.709/2018), sendo os dados utilizados exclusivamente para execução deste contrato.",
    ]
    if contract.jurisdiction:
        clauses.append(
            f"Fica eleito o foro da comarca de {contract.jurisdiction} para dirimir questões oriundas deste contrato."
        )
    return clauses


def validate_contract_type(contract_type: Optional[str], term_months: int) -> Dict[str, Any]:
    warnings: List[str] = []
    articles: List[str] = []
    framework = ""

    if contract_type == ContractType.RESIDENTIAL.value:
        framework = "Lei do Inquilinato (Lei 8.245/91)"
        articles = ["Art. 7º", "Art. 22", "Art. 47"]
        if term_months < SHORT_TERM_RESIDENTIAL_MONTHS:
            warnings.append("Residential contracts under 30 months are subject to Article 47 repossession rules")
    elif contract_type == ContractType.NON_RESIDENTIAL.value:
        framework = "Código Civil (Lei 10.406/2002)"
        articles = ["Art. 565", "Art. 571"]
    elif contract_type == ContractType.COMMERCIAL_FIXED.value:
        framework = "Código Civil + Lei do Inquilinato (commercial provisions)"
        articles = ["Art. 565 CC", "Art. 7º Lei 8.245/91"]
    else:
        warnings.append("Contract type not fully defined")

    return {
        "valid": True,
        "legal_framework": framework,
        "applicable_articles": articles,
        "warnings": warnings,
    }


class RulesEngine:
    """
    Advisory rule evaluation. Nothing here writes to the database.
    """

    def __init__(self, clock: Clock = utc_now):
        self.clock = clock

    def _get_contract(self, db: Session, contract_id: int) -> LeaseContract:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return contract

    def apply_rules(self, db: Session, *, contract_id: int) -> Dict[str, Any]:
        contract = self._get_contract(db, contract_id)
        now = as_utc(self.clock())

        applicable = [
            {
                "rule_id": rule.id,
                "rule_name": rule.name,
                "legal_basis": rule.legal_basis,
                "description": rule.description,
                "result": rule.action(contract),
            }
            for rule in RULES
            if rule.condition(contract, now)
        ]
        return {
            "contract_id": contract.id,
            "applicable_rules": applicable,
            "timestamp": now.isoformat(),
        }

    def check_judicial_readiness(self, db: Session, *, contract_id: int) -> JudicialReadiness:
        c = self._get_contract(db, contract_id)

        event_count = db.execute(
            select(func.count(ContractLifecycleEvent.id)).where(ContractLifecycleEvent.contract_id == c.id)
        ).scalar_one()

        prop = c.leased_property
        checks = [
            ("proper_party_qualification", "Proper party qualification",
             c.tenant is not None and c.owner is not None and prop is not None and not prop.deleted),
            ("defined_contract_type", "Defined contract type", bool(c.contract_type)),
            ("valid_lease_guarantee", "Valid lease guarantee", has_valid_guarantee(c)),
            ("completed_signatures", "Completed signatures",
             bool(c.tenant_signed_at and c.owner_signed_at and c.hash_final)),
            ("complete_logs", "Complete audit logs", event_count > 0),
            ("essential_clauses_included", "Essential clauses included", bool(c.clauses_json)),
            ("charges_defined", "Charges defined", _charges_defined(c)),
            ("penalties_parameterized", "Penalties parameterized",
             bool(c.late_fee_percent and c.interest_rate_percent and c.early_termination_penalty_percent)),
            ("legal_basis_documented", "Legal basis documented", bool((c.jurisdiction or "").strip())),
            ("hash_generated", "Hash generated", bool(c.hash_final)),
        ]
        return JudicialReadiness(checks=checks)
