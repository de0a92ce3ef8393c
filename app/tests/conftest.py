from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from types import SimpleNamespace

import pytest
from sqlalchemy.pool import StaticPool

# FORCE model registration
import app.models  # noqa
from app.core.config import get_settings
from app.core.deps import build_services
from app.db.base import Base
from app.db.session import build_engine, build_session_factory
from app.models.enums import UserRole
from app.models.party import Agency, Property, User
from app.policies.rbac import Principal
from app.services.collaborators import (
    Collaborators,
    EmptyLegalRecordsProvider,
    SignatureLink,
)
from app.services.signing_service import SignaturePayload


VALID_TERMS = {
    "contract_type": "RESIDENTIAL",
    "monthly_rent": Decimal("1500.00"),
    "deposit": Decimal("4500.00"),
    "due_day": 5,
    "start_date": date(2025, 1, 1),
    "end_date": date(2027, 12, 31),
    "readjustment_index": "IGPM",
    "readjustment_month": 1,
    "late_fee_percent": Decimal("2.00"),
    "interest_rate_percent": Decimal("1.00"),
    "early_termination_penalty_percent": Decimal("10.00"),
    "guarantee_type": "CASH_DEPOSIT",
    "jurisdiction": "São Paulo/SP",
    "charges_json": {"iptu": "TENANT", "condominium": "TENANT"},
}


# ─────────────────────────────────────────────
# FAKE COLLABORATORS
# ─────────────────────────────────────────────

class FixedClock:
    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class RecordingPdfRenderer:
    def __init__(self):
        self.stages = []
        self.fail_final = False

    def render(self, template, data):
        stage = data.get("stage")
        if self.fail_final and stage == "final":
            raise RuntimeError("renderer unavailable")
        self.stages.append(stage)
        return f"PDF[{stage}]:{template}".encode("utf-8")

    def count(self, stage: str) -> int:
        return self.stages.count(stage)


class MemoryDocumentStore:
    def __init__(self):
        self.files = {}

    def save(self, contract_id, kind, content):
        path = f"memory://{contract_id}/{kind}.pdf"
        self.files[path] = content
        return path

    def load(self, path):
        if path not in self.files:
            raise FileNotFoundError(path)
        return self.files[path]


class FakeInvoices:
    def __init__(self):
        self.overdue = []
        self.open = []
        self.paid = Decimal("0")

    def list_overdue_invoices(self, contract_id):
        return list(self.overdue)

    def list_open_invoices(self, contract_id):
        return list(self.open)

    def total_confirmed_payments(self, contract_id):
        return self.paid


class RecordingNotifier:
    def __init__(self):
        self.sent = []
        self.fail = False

    def notify(self, event, recipients, payload=None):
        if self.fail:
            raise RuntimeError("notification channel down")
        self.sent.append((event, list(recipients), payload or {}))


class RecordingSignatureLinks:
    def __init__(self):
        self.created = []
        self.revoked = []
        self.fail_revoke = False

    def create_links(self, contract_id, parties):
        links = [
            SignatureLink(role=p.role, email=p.email, token=f"link-{contract_id}-{i}")
            for i, p in enumerate(parties, start=1)
        ]
        self.created.extend(links)
        return links

    def revoke_all(self, contract_id):
        self.revoked.append(contract_id)
        if self.fail_revoke:
            raise RuntimeError("link service unavailable")
        return len(self.created)


# ─────────────────────────────────────────────
# DATABASE
# ─────────────────────────────────────────────

@pytest.fixture(scope="function")
def engine():
    eng = build_engine("sqlite+pysqlite://", poolclass=StaticPool)
    Base.metadata.create_all(eng)
    try:
        yield eng
    finally:
        Base.metadata.drop_all(eng)
        eng.dispose()


@pytest.fixture(scope="function")
def session_factory(engine):
    return build_session_factory(engine)


@pytest.fixture(scope="function")
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


# ─────────────────────────────────────────────
# WORLD: parties, principals, wired services
# ─────────────────────────────────────────────

@pytest.fixture()
def clock():
    return FixedClock(datetime(2025, 6, 15, 12, 0, tzinfo=timezone.utc))


@pytest.fixture()
def collaborators():
    return Collaborators(
        pdf_renderer=RecordingPdfRenderer(),
        document_store=MemoryDocumentStore(),
        invoices=FakeInvoices(),
        notifier=RecordingNotifier(),
        signature_links=RecordingSignatureLinks(),
        legal_records=EmptyLegalRecordsProvider(),
    )


@pytest.fixture()
def services(collaborators, clock):
    return build_services(get_settings(), collaborators, clock=clock)


def _user(db, name, role, agency_id=None):
    u = User(name=name, email=f"{name.lower()}@example.com", role=role.value, agency_id=agency_id)
    db.add(u)
    db.commit()
    return u


@pytest.fixture()
def world(db, services, collaborators, clock):
    agency = Agency(name="Imobiliária Central")
    db.add(agency)
    db.commit()

    tenant = _user(db, "Tenant", UserRole.TENANT)
    owner = _user(db, "Owner", UserRole.INDEPENDENT_OWNER)
    manager = _user(db, "Manager", UserRole.AGENCY_MANAGER, agency_id=agency.id)
    outsider = _user(db, "Outsider", UserRole.TENANT)

    prop = Property(name="Apto 101", city="São Paulo", owner_id=owner.id, created_by=owner.id)
    other_prop = Property(name="Casa 7", city="Campinas", owner_id=owner.id, created_by=owner.id)
    db.add_all([prop, other_prop])
    db.commit()

    w = SimpleNamespace(
        db=db,
        services=services,
        collaborators=collaborators,
        clock=clock,
        agency=agency,
        tenant=tenant,
        owner=owner,
        manager=manager,
        prop=prop,
        other_prop=other_prop,
        as_tenant=Principal(user_id=tenant.id, role=UserRole.TENANT, display_name="Tenant"),
        as_owner=Principal(user_id=owner.id, role=UserRole.INDEPENDENT_OWNER, display_name="Owner"),
        as_manager=Principal(
            user_id=manager.id, role=UserRole.AGENCY_MANAGER, agency_id=agency.id, display_name="Manager"
        ),
        as_outsider=Principal(user_id=outsider.id, role=UserRole.TENANT, display_name="Outsider"),
    )

    def new_contract(creator=None, **overrides):
        data = {"property_id": prop.id, "tenant_id": tenant.id, "owner_id": owner.id, **VALID_TERMS}
        data.update(overrides)
        return services.contracts.create(db, data=data, principal=creator or w.as_owner)

    def prepared_contract(creator=None, **overrides):
        c = new_contract(creator=creator, **overrides)
        services.signing.prepare_for_signing(db, contract_id=c.id, principal=creator or w.as_owner, ip="10.0.0.1")
        return services.contracts.get(db, contract_id=c.id)

    def sign(contract_id, role, principal, legacy=False, **payload):
        payload.setdefault("signature", f"data:image/png;base64,{role.upper()}SIG")
        payload.setdefault("ip", "10.0.0.2")
        payload.setdefault("user_agent", "pytest")
        return services.signing.sign(
            db,
            contract_id=contract_id,
            role=role,
            payload=SignaturePayload(**payload),
            principal=principal,
            legacy=legacy,
        )

    def signed_contract(**overrides):
        c = prepared_contract(**overrides)
        sign(c.id, "tenant", w.as_tenant)
        return sign(c.id, "owner", w.as_owner)

    w.new_contract = new_contract
    w.prepared_contract = prepared_contract
    w.sign = sign
    w.signed_contract = signed_contract
    return w
