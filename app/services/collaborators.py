#app/services/collaborators.py
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from pathlib import Path
from typing import Any, Dict, List, Optional, Protocol, Sequence

from app.services.pdf_renderer import ReportLabPdfRenderer

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# RECORDS EXCHANGED WITH COLLABORATORS
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class InvoiceRecord:
    due_date: date
    original_value: Decimal
    status: str = "OVERDUE"  # OVERDUE | PENDING | PAID


@dataclass(frozen=True)
class NoticeRecord:
    id: int
    title: str
    created_at: datetime
    status: str = "SENT"
    document_path: Optional[str] = None


@dataclass(frozen=True)
class AgreementRecord:
    id: int
    title: str
    created_at: datetime
    status: str = "PROPOSED"
    document_path: Optional[str] = None


@dataclass(frozen=True)
class InspectionRecord:
    id: int
    status: str
    inspection_date: Optional[date] = None
    summary: Optional[str] = None


@dataclass(frozen=True)
class SignatureParty:
    role: str
    email: str
    name: Optional[str] = None


@dataclass(frozen=True)
class SignatureLink:
    role: str
    email: str
    token: str
    expires_at: Optional[datetime] = None


# ─────────────────────────────────────────────
# CONTRACTS
# ─────────────────────────────────────────────

class PdfRenderer(Protocol):
    def render(self, template: str, data: Dict[str, Any]) -> bytes: ...


class DocumentStore(Protocol):
    def save(self, contract_id: int, kind: str, content: bytes) -> str: ...

    def load(self, path: str) -> bytes: ...


class InvoiceProvider(Protocol):
    def list_overdue_invoices(self, contract_id: int) -> List[InvoiceRecord]: ...

    def list_open_invoices(self, contract_id: int) -> List[InvoiceRecord]: ...

    def total_confirmed_payments(self, contract_id: int) -> Decimal: ...


class NotificationDispatcher(Protocol):
    def notify(self, event: str, recipients: Sequence[int], payload: Optional[Dict[str, Any]] = None) -> None: ...


class SignatureLinkService(Protocol):
    def create_links(self, contract_id: int, parties: Sequence[SignatureParty]) -> List[SignatureLink]: ...

    def revoke_all(self, contract_id: int) -> int: ...


class LegalRecordsProvider(Protocol):
    def list_notices(self, contract_id: int) -> List[NoticeRecord]: ...

    def list_agreements(self, contract_id: int) -> List[AgreementRecord]: ...

    def get_inspection(self, inspection_id: int) -> Optional[InspectionRecord]: ...


# ─────────────────────────────────────────────
# DEFAULT WIRING
# ─────────────────────────────────────────────

class LocalDocumentStore:
    def __init__(self, root: str):
        self.root = Path(root)

    def save(self, contract_id: int, kind: str, content: bytes) -> str:
        folder = self.root / str(contract_id)
        folder.mkdir(parents=True, exist_ok=True)
        path = folder / f"{kind}.pdf"
        path.write_bytes(content)
        return str(path)

    def load(self, path: str) -> bytes:
        return Path(path).read_bytes()


class LoggingNotificationDispatcher:
    def notify(self, event: str, recipients: Sequence[int], payload: Optional[Dict[str, Any]] = None) -> None:
        logger.info(
            "contract notification",
            extra={"event": event, "recipients": list(recipients), "payload": payload or {}},
        )


class EmptyInvoiceProvider:
    def list_overdue_invoices(self, contract_id: int) -> List[InvoiceRecord]:
        return []

    def list_open_invoices(self, contract_id: int) -> List[InvoiceRecord]:
        return []

    def total_confirmed_payments(self, contract_id: int) -> Decimal:
        return Decimal("0")


class NullSignatureLinkService:
    def create_links(self, contract_id: int, parties: Sequence[SignatureParty]) -> List[SignatureLink]:
        return []

    def revoke_all(self, contract_id: int) -> int:
        return 0


class EmptyLegalRecordsProvider:
    def list_notices(self, contract_id: int) -> List[NoticeRecord]:
        return []

    def list_agreements(self, contract_id: int) -> List[AgreementRecord]:
        return []

    def get_inspection(self, inspection_id: int) -> Optional[InspectionRecord]:
        return None


@dataclass
class Collaborators:
    pdf_renderer: PdfRenderer = field(default_factory=ReportLabPdfRenderer)
    document_store: DocumentStore = field(default_factory=lambda: LocalDocumentStore("./storage/contracts"))
    invoices: InvoiceProvider = field(default_factory=EmptyInvoiceProvider)
    notifier: NotificationDispatcher = field(default_factory=LoggingNotificationDispatcher)
    signature_links: SignatureLinkService = field(default_factory=NullSignatureLinkService)
    legal_records: LegalRecordsProvider = field(default_factory=EmptyLegalRecordsProvider)


def default_collaborators(document_storage_dir: str) -> Collaborators:
    return Collaborators(document_store=LocalDocumentStore(document_storage_dir))
