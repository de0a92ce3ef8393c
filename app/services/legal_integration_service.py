#app/services/legal_integration_service.py
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import Clock, as_utc, utc_now
from app.core.errors import NotFound
from app.models.enums import ContractType
from app.models.lease_contract import LeaseContract
from app.models.lifecycle_event import ContractLifecycleEvent
from app.services.collaborators import Collaborators, InvoiceRecord
from app.services.lifecycle_service import CENTS

DEFAULT_LATE_FEE_PERCENT = Decimal("2.0")
DEFAULT_INTEREST_RATE_PERCENT = Decimal("1.0")

TENANCY_LAW = "Lei do Inquilinato (Lei 8.245/1991)"
CIVIL_CODE = "Código Civil (Lei 10.406/2002)"


def _q(value: Decimal) -> Decimal:
    return value.quantize(CENTS, rounding=ROUND_HALF_UP)


def _sort_key(value: Any) -> datetime:
    if isinstance(value, datetime):
        return as_utc(value)
    if isinstance(value, date):
        return datetime.combine(value, time.min, tzinfo=timezone.utc)
    return datetime.min.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class FormalDefaultStatus:
    is_in_default: bool
    default_amount: Decimal
    overdue_invoices: int
    legal_basis: str
    default_date: Optional[date] = None


@dataclass(frozen=True)
class NotificationLegalBasis:
    contract: Dict[str, Any]
    legal_basis: List[str]
    default_status: str  # PROVEN | ALLEGED
    applicable_articles: List[str]


@dataclass(frozen=True)
class DebtCalculation:
    base_value: Decimal
    fines: Decimal
    interest: Decimal
    total: Decimal


@dataclass(frozen=True)
class AgreementContractData:
    contract: Dict[str, Any]
    debt_origin: str
    original_amount: Decimal
    calculated_debt: DebtCalculation


@dataclass(frozen=True)
class JudicialDossier:
    contract: Dict[str, Any]
    timeline: List[Dict[str, Any]]
    documents: List[Dict[str, Any]]
    financial_summary: Dict[str, Any]
    legal_basis: List[str]
    ready: bool
    missing_items: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class InspectionLink:
    linked: bool
    automatic_clauses: List[str]


class LegalIntegrationService:
    """
    Carries the contract's legal basis into default, notice, agreement and
    judicial work. Invoices, payments and notices come from collaborators.
    """

    def __init__(self, collaborators: Collaborators, *, clock: Clock = utc_now):
        self.collaborators = collaborators
        self.clock = clock

    # ─────────────────────────────────────────────
    # INTERNAL HELPERS
    # ─────────────────────────────────────────────

    def _get_contract(self, db: Session, contract_id: int) -> LeaseContract:
        contract = db.get(LeaseContract, contract_id)
        if not contract or contract.deleted:
            raise NotFound("Contract not found.")
        return contract

    def _overdue(self, contract_id: int) -> List[InvoiceRecord]:
        invoices = self.collaborators.invoices.list_overdue_invoices(contract_id)
        return sorted(invoices, key=lambda inv: inv.due_date)

    @staticmethod
    def _contract_type(contract: LeaseContract) -> str:
        return contract.contract_type or ContractType.RESIDENTIAL.value

    @staticmethod
    def _summary(contract: LeaseContract) -> Dict[str, Any]:
        return {
            "id": contract.id,
            "token": contract.contract_token,
            "monthly_rent": contract.monthly_rent,
            "start_date": contract.start_date,
            "end_date": contract.end_date,
        }

    # ─────────────────────────────────────────────
    # DEFAULT / NOTICE
    # ─────────────────────────────────────────────

    def get_formal_default_status(self, db: Session, *, contract_id: int) -> FormalDefaultStatus:
        contract = self._get_contract(db, contract_id)
        overdue = self._overdue(contract.id)

        if not overdue:
            return FormalDefaultStatus(
                is_in_default=False,
                default_amount=Decimal("0.00"),
                overdue_invoices=0,
                legal_basis="Contrato em situação regular",
            )

        return FormalDefaultStatus(
            is_in_default=True,
            default_amount=_q(sum((Decimal(inv.original_value) for inv in overdue), Decimal("0"))),
            overdue_invoices=len(overdue),
            legal_basis="Inadimplemento contratual nos termos do Art. 22 da Lei do Inquilinato",
            default_date=overdue[0].due_date,
        )

    def get_notification_legal_basis(self, db: Session, *, contract_id: int) -> NotificationLegalBasis:
        contract = self._get_contract(db, contract_id)
        overdue = self._overdue(contract.id)

        if self._contract_type(contract) == ContractType.RESIDENTIAL.value:
            legal_basis = [TENANCY_LAW]
            articles = ["Art. 22", "Art. 23"]
        else:
            legal_basis = [CIVIL_CODE]
            articles = ["Art. 389", "Art. 397"]

        if overdue:
            total = _q(sum((Decimal(inv.original_value) for inv in overdue), Decimal("0")))
            legal_basis.append("Inadimplemento contratual comprovado")
            legal_basis.append(f"Valor em atraso: R$ {total:.2f}")

        return NotificationLegalBasis(
            contract=self._summary(contract),
            legal_basis=legal_basis,
            default_status="PROVEN" if overdue else "ALLEGED",
            applicable_articles=articles,
        )

    # ─────────────────────────────────────────────
    # AGREEMENT
    # ─────────────────────────────────────────────

    def get_agreement_contract_data(self, db: Session, *, contract_id: int) -> AgreementContractData:
        """
        Debt = open invoice value, plus late fee and pro-rata monthly interest on
        the overdue ones: value * rate% * days_overdue / 30.
        """
        contract = self._get_contract(db, contract_id)
        today = as_utc(self.clock()).date()

        late_fee = Decimal(contract.late_fee_percent or DEFAULT_LATE_FEE_PERCENT)
        rate = Decimal(contract.interest_rate_percent or DEFAULT_INTEREST_RATE_PERCENT)

        base = fines = interest = Decimal("0")
        for inv in self.collaborators.invoices.list_open_invoices(contract.id):
            value = Decimal(inv.original_value)
            base += value
            if inv.status != "OVERDUE":
                continue
            days_overdue = (today - inv.due_date).days
            if days_overdue > 0:
                fines += value * late_fee / 100
                interest += value * rate / 100 * Decimal(days_overdue) / 30

        debt = DebtCalculation(
            base_value=_q(base),
            fines=_q(fines),
            interest=_q(interest),
            total=_q(base + fines + interest),
        )
        return AgreementContractData(
            contract={"id": contract.id, "token": contract.contract_token, "monthly_rent": contract.monthly_rent},
            debt_origin=f"Contrato {contract.contract_token or contract.id}",
            original_amount=debt.base_value,
            calculated_debt=debt,
        )

    # ─────────────────────────────────────────────
    # JUDICIAL DOSSIER
    # ─────────────────────────────────────────────

    def prepare_judicial_dossier(self, db: Session, *, contract_id: int) -> JudicialDossier:
        contract = self._get_contract(db, contract_id)
        now = as_utc(self.clock())

        events = (
            db.execute(
                select(ContractLifecycleEvent)
                .where(ContractLifecycleEvent.contract_id == contract.id)
                .order_by(ContractLifecycleEvent.seq.asc())
            )
            .scalars()
            .all()
        )
        overdue = self._overdue(contract.id)
        notices = self.collaborators.legal_records.list_notices(contract.id)
        agreements = self.collaborators.legal_records.list_agreements(contract.id)

        missing: List[str] = []
        if not contract.hash_final:
            missing.append("PDF final assinado")
        if not contract.tenant_signed_at or not contract.owner_signed_at:
            missing.append("Assinaturas completas")
        if not events:
            missing.append("Logs de auditoria")

        timeline: List[Dict[str, Any]] = []
        if contract.start_date:
            timeline.append({"date": contract.start_date, "event": "Início do contrato", "type": "CONTRACT_START"})
        for e in events:
            timeline.append({
                "date": as_utc(e.created_at),
                "event": e.event_type,
                "type": "AUDIT",
                "details": e.metadata_json,
                "financial_effect": e.financial_effect_json,
            })
        for inv in overdue:
            timeline.append({
                "date": inv.due_date,
                "event": f"Vencimento de fatura - R$ {Decimal(inv.original_value):.2f}",
                "type": "INVOICE_OVERDUE",
            })
        for n in notices:
            timeline.append({
                "date": n.created_at,
                "event": f"Notificação extrajudicial - {n.status}",
                "type": "NOTIFICATION",
            })
        timeline.sort(key=lambda item: _sort_key(item["date"]))

        rent = Decimal(contract.monthly_rent or 0)
        months_elapsed = 0
        if contract.start_date:
            months_elapsed = max(0, (now.date() - contract.start_date).days // 30)
        total_rent = _q(rent * months_elapsed)
        total_paid = _q(Decimal(self.collaborators.invoices.total_confirmed_payments(contract.id)))
        total_overdue = _q(sum((Decimal(inv.original_value) for inv in overdue), Decimal("0")))

        if self._contract_type(contract) == ContractType.RESIDENTIAL.value:
            legal_basis = [TENANCY_LAW, CIVIL_CODE]
        else:
            legal_basis = [CIVIL_CODE]

        documents: List[Dict[str, Any]] = []
        if contract.final_pdf_path:
            documents.append({"type": "CONTRACT_PDF", "path": contract.final_pdf_path})
        documents += [{"type": "NOTIFICATION", "id": n.id, "path": n.document_path} for n in notices]
        documents += [{"type": "AGREEMENT", "id": a.id, "path": a.document_path} for a in agreements]

        return JudicialDossier(
            contract=self._summary(contract),
            timeline=timeline,
            documents=documents,
            financial_summary={
                "monthly_rent": _q(rent),
                "months_elapsed": months_elapsed,
                "total_rent": total_rent,
                "total_paid": total_paid,
                "total_overdue": total_overdue,
                "balance": _q(total_rent - total_paid),
            },
            legal_basis=legal_basis,
            ready=not missing,
            missing_items=missing,
        )

    # ─────────────────────────────────────────────
    # INSPECTION
    # ─────────────────────────────────────────────

    def link_inspection_to_contract(self, db: Session, *, contract_id: int, inspection_id: int) -> InspectionLink:
        self._get_contract(db, contract_id)
        inspection = self.collaborators.legal_records.get_inspection(inspection_id)
        if inspection is None:
            raise NotFound("Inspection not found.")

        clauses: List[str] = []
        if inspection.status == "APPROVED":
            clauses.append(
                "As partes reconhecem o relatório de vistoria como representação fiel do estado de conservação do imóvel."
            )
            clauses.append(
                "O locatário assume responsabilidade pela manutenção do imóvel no estado verificado na vistoria."
            )
        return InspectionLink(linked=True, automatic_clauses=clauses)
