#app/services/legal_flow_service.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import Clock, utc_now
from app.core.errors import ValidationFailed
from app.models.enums import FinancialEffectKind, LifecycleEventType
from app.models.lifecycle_event import ContractLifecycleEvent
from app.policies.rbac import SYSTEM_ACTOR
from app.services.collaborators import Collaborators
from app.services.legal_integration_service import (
    DebtCalculation,
    FormalDefaultStatus,
    JudicialDossier,
    LegalIntegrationService,
    NotificationLegalBasis,
)
from app.services.lifecycle_service import CENTS, LifecycleService, jsonable, financial_effect

logger = logging.getLogger(__name__)

NOTICE_DEADLINE_DAYS = 15


@dataclass(frozen=True)
class DefaultDetection:
    default_detected: bool
    default_status: FormalDefaultStatus
    event_created: bool


@dataclass(frozen=True)
class NoticeResult:
    notice_created: bool
    legal_basis: NotificationLegalBasis
    notice_data: Optional[Dict[str, Any]] = None


@dataclass(frozen=True)
class AgreementProposal:
    agreement_created: bool
    debt_calculation: DebtCalculation
    agreement_data: Optional[Dict[str, Any]] = None
    event_created: bool = False


@dataclass(frozen=True)
class JudicialPreparation:
    dossier: JudicialDossier
    ready: bool
    recommendations: List[str]


@dataclass(frozen=True)
class FlowSummary:
    current_step: str
    next_action: str
    recommendations: List[str] = field(default_factory=list)


@dataclass(frozen=True)
class CompleteFlow:
    step1: DefaultDetection
    step2: Optional[NoticeResult]
    step3: Optional[AgreementProposal]
    step4: Optional[JudicialPreparation]
    summary: FlowSummary


def summarize_flow(
    step1: DefaultDetection,
    step2: Optional[NoticeResult],
    step3: Optional[AgreementProposal],
    step4: Optional[JudicialPreparation],
) -> FlowSummary:
    """
    Where the contract stands in its legal journey, derived only from the four step results.
    """
    current_step = "CONTRACT_ACTIVE"
    next_action = "Aguardando inadimplemento"

    if step1.default_detected:
        current_step = "DEFAULT_DETECTED"
        next_action = "Gerar notificação extrajudicial"

        if step2 is not None and step2.notice_created:
            current_step = "NOTICE_SENT"
            next_action = "Aguardar resposta ou criar proposta de acordo"

            if step3 is not None and step3.agreement_created:
                current_step = "AGREEMENT_PROPOSED"
                next_action = "Aguardar assinatura do acordo ou preparar para ação judicial"

    recommendations: List[str] = []
    if step4 is not None and not step4.ready:
        recommendations.extend(step4.recommendations)

    return FlowSummary(current_step=current_step, next_action=next_action, recommendations=recommendations)


class LegalFlowService:
    """
    Contract -> default -> extrajudicial notice -> agreement -> judicial.

    Steps can run on their own; execute_complete_flow chains them and stops
    as soon as a step has nothing to hand to the next.
    """

    def __init__(
        self,
        collaborators: Collaborators,
        *,
        clock: Clock = utc_now,
        lifecycle: Optional[LifecycleService] = None,
        legal: Optional[LegalIntegrationService] = None,
        currency: str = "BRL",
    ):
        self.clock = clock
        self.lifecycle = lifecycle or LifecycleService(clock=clock)
        self.legal = legal or LegalIntegrationService(collaborators, clock=clock)
        self.currency = currency

    def _latest_metadata(self, db: Session, contract_id: int, event_type: str) -> Optional[Dict[str, Any]]:
        return db.execute(
            select(ContractLifecycleEvent.metadata_json)
            .where(
                ContractLifecycleEvent.contract_id == contract_id,
                ContractLifecycleEvent.event_type == event_type,
            )
            .order_by(ContractLifecycleEvent.seq.desc())
            .limit(1)
        ).scalar_one_or_none()

    # ─────────────────────────────────────────────
    # STEP 1
    # ─────────────────────────────────────────────

    def detect_default(self, db: Session, *, contract_id: int) -> DefaultDetection:
        status = self.legal.get_formal_default_status(db, contract_id=contract_id)
        if not status.is_in_default:
            return DefaultDetection(default_detected=False, default_status=status, event_created=False)

        metadata = jsonable({
            "defaultAmount": status.default_amount,
            "overdueInvoices": status.overdue_invoices,
            "defaultDate": status.default_date,
        })
        # same default already on record: nothing new to declare
        if self._latest_metadata(db, contract_id, LifecycleEventType.DEFAULT_DECLARED.value) == metadata:
            return DefaultDetection(default_detected=True, default_status=status, event_created=False)

        event = self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.DEFAULT_DECLARED,
            description=f"Inadimplemento detectado: R$ {status.default_amount:.2f}",
            metadata=metadata,
            created_by=SYSTEM_ACTOR,
            financial_effect=financial_effect(FinancialEffectKind.PENALTY, status.default_amount, self.currency),
        )
        logger.info("default detected", extra={"contract_id": contract_id, "amount": str(status.default_amount)})
        return DefaultDetection(default_detected=True, default_status=status, event_created=event is not None)

    # ─────────────────────────────────────────────
    # STEP 2
    # ─────────────────────────────────────────────

    def generate_notice(self, db: Session, *, contract_id: int) -> NoticeResult:
        """
        Builds the notice payload only; delivery belongs to the notification collaborator.
        """
        basis = self.legal.get_notification_legal_basis(db, contract_id=contract_id)
        if basis.default_status != "PROVEN":
            return NoticeResult(notice_created=False, legal_basis=basis, notice_data=None)

        return NoticeResult(
            notice_created=True,
            legal_basis=basis,
            notice_data={
                "contract_id": contract_id,
                "legal_basis": list(basis.legal_basis),
                "applicable_articles": list(basis.applicable_articles),
                "deadline": NOTICE_DEADLINE_DAYS,
                "status": "PENDING",
            },
        )

    # ─────────────────────────────────────────────
    # STEP 3
    # ─────────────────────────────────────────────

    def create_agreement_proposal(
        self,
        db: Session,
        *,
        contract_id: int,
        created_by: str,
        installments: Optional[int] = 1,
        discount_percent: Optional[Decimal] = Decimal("0"),
    ) -> AgreementProposal:
        installments = 1 if installments is None else installments
        discount = Decimal("0") if discount_percent is None else Decimal(discount_percent)
        errors = []
        if installments < 1:
            errors.append({"field": "installments", "message": "Número de parcelas deve ser ao menos 1."})
        if not (Decimal("0") <= discount <= Decimal("100")):
            errors.append({"field": "discount_percent", "message": "Desconto deve estar entre 0 e 100%."})
        if errors:
            raise ValidationFailed("Parâmetros do acordo inválidos.", errors)

        debt_data = self.legal.get_agreement_contract_data(db, contract_id=contract_id)
        total = debt_data.calculated_debt.total

        negotiated = (total * (1 - discount / 100)).quantize(CENTS, rounding=ROUND_HALF_UP)
        installment_value = (negotiated / installments).quantize(CENTS, rounding=ROUND_HALF_UP)
        token = debt_data.contract["token"]

        agreement_data = {
            "contract_id": contract_id,
            "type": "PAYMENT_SETTLEMENT",
            "title": f"Acordo de Pagamento - Contrato {token}",
            "description": f"Acordo para quitação de débito originado do contrato {token}",
            "original_amount": total,
            "negotiated_amount": negotiated,
            "installments": installments,
            "installment_value": installment_value,
            "fine_amount": debt_data.calculated_debt.fines,
            "discount_percent": discount,
            "discount_amount": total - negotiated,
        }

        metadata = jsonable(agreement_data)
        if self._latest_metadata(db, contract_id, LifecycleEventType.AGREEMENT_REACHED.value) == metadata:
            return AgreementProposal(
                agreement_created=True,
                debt_calculation=debt_data.calculated_debt,
                agreement_data=agreement_data,
                event_created=False,
            )

        event = self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.AGREEMENT_REACHED,
            description=f"Proposta de acordo criada: R$ {negotiated:.2f} em {installments}x",
            metadata=metadata,
            created_by=created_by,
            financial_effect=financial_effect(FinancialEffectKind.ADJUSTMENT, -discount if discount else 0, "PERCENT"),
        )
        return AgreementProposal(
            agreement_created=True,
            debt_calculation=debt_data.calculated_debt,
            agreement_data=agreement_data,
            event_created=event is not None,
        )

    # ─────────────────────────────────────────────
    # STEP 4
    # ─────────────────────────────────────────────

    def prepare_judicial(self, db: Session, *, contract_id: int) -> JudicialPreparation:
        dossier = self.legal.prepare_judicial_dossier(db, contract_id=contract_id)

        if dossier.ready:
            recommendations = [
                "Dossiê completo e pronto para uso judicial",
                "Todos os documentos necessários estão presentes",
                "Timeline completa disponível",
            ]
        else:
            recommendations = ["Complete os seguintes itens antes de prosseguir:", *dossier.missing_items]

        self.lifecycle.record_event(
            db,
            contract_id=contract_id,
            event_type=LifecycleEventType.JUDICIAL_PREPARATION,
            description="Preparação para ação judicial",
            metadata={
                "ready": dossier.ready,
                "missingItems": dossier.missing_items,
                "documentsCount": len(dossier.documents),
                "timelineEvents": len(dossier.timeline),
            },
            created_by=SYSTEM_ACTOR,
        )
        return JudicialPreparation(dossier=dossier, ready=dossier.ready, recommendations=recommendations)

    # ─────────────────────────────────────────────
    # COMPLETE FLOW
    # ─────────────────────────────────────────────

    def execute_complete_flow(self, db: Session, *, contract_id: int, created_by: str) -> CompleteFlow:
        step1 = self.detect_default(db, contract_id=contract_id)
        step2: Optional[NoticeResult] = None
        step3: Optional[AgreementProposal] = None
        step4: Optional[JudicialPreparation] = None

        if step1.default_detected:
            step2 = self.generate_notice(db, contract_id=contract_id)
            if step2.notice_created:
                step3 = self.create_agreement_proposal(db, contract_id=contract_id, created_by=created_by)
                step4 = self.prepare_judicial(db, contract_id=contract_id)

        return CompleteFlow(
            step1=step1,
            step2=step2,
            step3=step3,
            step4=step4,
            summary=summarize_flow(step1, step2, step3, step4),
        )
