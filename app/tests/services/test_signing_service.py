from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import (
    Conflict,
    ExternalFailure,
    NotFound,
    PermissionDenied,
    PreconditionFailed,
    ValidationFailed,
)
from app.core.hashing import sha256_bytes_hex
from app.models.enums import ContractStatus, UserRole
from app.models.lease_contract import LeaseContract
from app.models.lifecycle_event import ContractLifecycleEvent
from app.policies.rbac import Principal
from app.services.collaborators import SignatureParty
from app.services.signing_service import SignaturePayload


def count_events(db, contract_id, event_type):
    return db.execute(
        select(func.count(ContractLifecycleEvent.id)).where(
            ContractLifecycleEvent.contract_id == contract_id,
            ContractLifecycleEvent.event_type == event_type,
        )
    ).scalar_one()


def reload(db, contract_id):
    db.expire_all()
    return db.get(LeaseContract, contract_id)


# ─────────────────────────────────────────────
# PREPARE
# ─────────────────────────────────────────────

def test_prepare_moves_to_awaiting_and_renders_provisional_pdf(world):
    c = world.new_contract()
    out = world.services.signing.prepare_for_signing(
        world.db, contract_id=c.id, principal=world.as_owner, ip="10.0.0.1"
    )

    c = reload(world.db, c.id)
    assert c.status == ContractStatus.AWAITING_SIGNATURES.value
    assert out["contract_token"] == c.contract_token
    assert out["provisional_pdf_path"] == f"memory://{c.id}/provisional.pdf"
    assert c.provisional_pdf_path == out["provisional_pdf_path"]
    assert world.collaborators.pdf_renderer.count("provisional") == 1
    # empty clauses are filled with the automatic set
    assert any("foro da comarca" in clause for clause in c.clauses_json)
    assert "${signature_tenant}" in c.content_template
    assert count_events(world.db, c.id, "PREPARE_FOR_SIGNING") == 1


def test_prepare_invalid_contract_changes_nothing(world):
    c = world.new_contract(jurisdiction=None)

    with pytest.raises(ValidationFailed) as exc:
        world.services.signing.prepare_for_signing(world.db, contract_id=c.id, principal=world.as_owner)

    assert [e["field"] for e in exc.value.errors] == ["jurisdiction"]
    c = reload(world.db, c.id)
    assert c.status == ContractStatus.PENDING.value
    assert c.content_template is None
    assert world.collaborators.pdf_renderer.stages == []


def test_prepare_only_from_pending(world):
    c = world.prepared_contract()
    with pytest.raises(PreconditionFailed):
        world.services.signing.prepare_for_signing(world.db, contract_id=c.id, principal=world.as_owner)


def test_provisional_pdf_failure_does_not_block_transition(world):
    renderer = world.collaborators.pdf_renderer

    def broken(template, data):
        raise RuntimeError("renderer down")

    renderer.render = broken
    c = world.new_contract()
    out = world.services.signing.prepare_for_signing(world.db, contract_id=c.id, principal=world.as_owner)

    assert out["provisional_pdf_path"] is None
    assert reload(world.db, c.id).status == ContractStatus.AWAITING_SIGNATURES.value


# ─────────────────────────────────────────────
# SIGN
# ─────────────────────────────────────────────

def test_sign_before_prepare_is_rejected(world):
    c = world.new_contract()
    with pytest.raises(PreconditionFailed):
        world.sign(c.id, "tenant", world.as_tenant)


def test_signing_records_metadata_and_event(world):
    c = world.prepared_contract()
    signed = world.sign(c.id, "tenant", world.as_tenant, geo_lat=-23.55, geo_lng=-46.63, geo_consent=True)

    assert signed.status == ContractStatus.AWAITING_SIGNATURES.value
    assert signed.tenant_signed_ip == "10.0.0.2"
    assert signed.tenant_signed_agent == "pytest"
    assert signed.tenant_geo_lat == -23.55
    assert signed.tenant_geo_consent is True
    assert count_events(world.db, c.id, "SIGNATURE_CAPTURED_TENANT") == 1
    # rendered snapshot carries the image in the tenant slot only
    assert signed.content_snapshot.count("TENANTSIG") == 1
    assert "${signature_tenant}" not in signed.content_snapshot


def test_geolocation_dropped_without_consent(world):
    c = world.prepared_contract()
    signed = world.sign(c.id, "tenant", world.as_tenant, geo_lat=-23.55, geo_lng=-46.63, geo_consent=False)
    assert signed.tenant_geo_lat is None
    assert signed.tenant_geo_lng is None
    assert signed.tenant_geo_consent is False


def test_signing_twice_is_a_conflict_and_keeps_first_timestamp(world):
    c = world.prepared_contract()
    first = world.sign(c.id, "tenant", world.as_tenant)
    first_at = first.tenant_signed_at

    world.clock.advance(minutes=5)
    with pytest.raises(Conflict):
        world.sign(c.id, "tenant", world.as_tenant, signature="data:image/png;base64,OTHER")

    stored = reload(world.db, c.id)
    assert stored.tenant_signed_at == first_at
    assert "OTHER" not in stored.tenant_signature
    assert count_events(world.db, c.id, "SIGNATURE_CAPTURED_TENANT") == 1


def test_signer_identity_must_match(world):
    c = world.prepared_contract()
    with pytest.raises(PermissionDenied):
        world.sign(c.id, "tenant", world.as_outsider)
    with pytest.raises(PermissionDenied):
        world.sign(c.id, "owner", world.as_tenant)


def test_agency_signs_only_after_tenant_and_owner(world):
    c = world.prepared_contract(creator=world.as_manager)
    assert c.agency_id == world.agency.id

    with pytest.raises(PreconditionFailed):
        world.sign(c.id, "agency", world.as_manager)

    world.sign(c.id, "tenant", world.as_tenant)
    with pytest.raises(PreconditionFailed):
        world.sign(c.id, "agency", world.as_manager)

    after_owner = world.sign(c.id, "owner", world.as_owner)
    # agency still required
    assert after_owner.status == ContractStatus.AWAITING_SIGNATURES.value

    signed = world.sign(c.id, "agency", world.as_manager)
    assert signed.status == ContractStatus.SIGNED.value


def test_agency_signer_must_belong_to_contract_agency(world):
    c = world.prepared_contract(creator=world.as_manager)
    world.sign(c.id, "tenant", world.as_tenant)
    world.sign(c.id, "owner", world.as_owner)

    stranger = Principal(user_id=world.manager.id, role=UserRole.AGENCY_ADMIN, agency_id=world.agency.id + 1)
    with pytest.raises(PermissionDenied):
        world.sign(c.id, "agency", stranger)


def test_witness_requires_name_and_document(world):
    c = world.prepared_contract()
    with pytest.raises(ValidationFailed):
        world.sign(c.id, "witness", world.as_owner, witness_name="Maria")

    signed = world.sign(c.id, "witness", world.as_owner, witness_name="Maria", witness_document="123.456.789-00")
    assert signed.witness_name == "Maria"
    # witness never gates finalization
    assert signed.status == ContractStatus.AWAITING_SIGNATURES.value


def test_legacy_signing_uses_signed_by_event(world):
    c = world.new_contract()
    world.sign(c.id, "tenant", world.as_tenant, legacy=True)
    assert count_events(world.db, c.id, "SIGNED_BY_TENANT") == 1
    assert count_events(world.db, c.id, "SIGNATURE_CAPTURED_TENANT") == 0


def test_legacy_signing_after_finalization_is_rejected(world):
    c = world.signed_contract()
    snapshot = c.content_snapshot

    with pytest.raises(PreconditionFailed):
        world.sign(
            c.id, "witness", world.as_manager, legacy=True,
            witness_name="Maria", witness_document="123.456.789-00",
        )

    stored = reload(world.db, c.id)
    assert stored.status == ContractStatus.SIGNED.value
    assert stored.witness_signature is None
    assert stored.content_snapshot == snapshot
    assert world.services.signing.verify_final_hash(stored) is True
    assert count_events(world.db, c.id, "SIGNED_BY_WITNESS") == 0


def test_legacy_signing_on_active_contract_is_rejected(world):
    c = world.signed_contract()
    world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)

    with pytest.raises(PreconditionFailed):
        world.sign(
            c.id, "witness", world.as_manager, legacy=True,
            witness_name="Maria", witness_document="123.456.789-00",
        )
    assert reload(world.db, c.id).witness_signature is None


def test_legacy_signatures_on_pending_wait_for_preparation(world):
    c = world.new_contract()
    world.sign(c.id, "tenant", world.as_tenant, legacy=True)
    world.sign(c.id, "owner", world.as_owner, legacy=True)

    pending = reload(world.db, c.id)
    assert pending.status == ContractStatus.PENDING.value
    assert pending.hash_final is None
    assert world.collaborators.pdf_renderer.count("final") == 0

    out = world.services.signing.prepare_for_signing(
        world.db, contract_id=c.id, principal=world.as_owner, ip="10.0.0.1"
    )

    signed = reload(world.db, c.id)
    assert out["finalized"] is True
    assert signed.status == ContractStatus.SIGNED.value
    assert "${signature_tenant}" in signed.content_template
    assert signed.content_snapshot.count("TENANTSIG") == 1
    assert signed.content_snapshot.count("OWNERSIG") == 1
    assert world.services.signing.verify_final_hash(signed) is True
    assert count_events(world.db, c.id, "CONTRACT_FINALIZED") == 1


def test_concurrent_same_role_signatures_keep_the_first(world, session_factory):
    c = world.prepared_contract()
    other = session_factory()
    try:
        # both sessions hold the contract unsigned before either writes
        assert other.get(LeaseContract, c.id).tenant_signature is None
        assert world.db.get(LeaseContract, c.id).tenant_signature is None

        first = world.sign(c.id, "tenant", world.as_tenant, signature="data:image/png;base64,FIRST")
        first_at = first.tenant_signed_at

        world.clock.advance(minutes=5)
        with pytest.raises(Conflict):
            world.services.signing.sign(
                other,
                contract_id=c.id,
                role="tenant",
                payload=SignaturePayload(signature="data:image/png;base64,SECOND", ip="10.0.0.9"),
                principal=world.as_tenant,
            )
    finally:
        other.close()

    stored = reload(world.db, c.id)
    assert stored.tenant_signature == "data:image/png;base64,FIRST"
    assert stored.tenant_signed_at == first_at
    assert count_events(world.db, c.id, "SIGNATURE_CAPTURED_TENANT") == 1


# ─────────────────────────────────────────────
# FINALIZE
# ─────────────────────────────────────────────

def test_last_required_signature_finalizes(world):
    c = world.signed_contract()

    assert c.status == ContractStatus.SIGNED.value
    assert c.final_pdf_path == f"memory://{c.id}/final.pdf"
    assert len(c.hash_final) == 64
    assert c.hash_generated_at is not None
    assert c.content_snapshot.count("TENANTSIG") == 1
    assert c.content_snapshot.count("OWNERSIG") == 1

    pdf = world.collaborators.document_store.files[c.final_pdf_path]
    assert c.final_pdf_sha256 == sha256_bytes_hex(pdf)
    assert world.services.signing.verify_final_hash(c) is True
    assert count_events(world.db, c.id, "CONTRACT_FINALIZED") == 1
    assert ("contract.signed", [world.tenant.id, world.owner.id], {"contract_token": c.contract_token}) in (
        world.collaborators.notifier.sent
    )


def test_finalize_twice_is_a_noop(world):
    c = world.signed_contract()

    again = world.services.signing.finalize_if_complete(world.db, contract_id=c.id, actor="SYSTEM")

    assert again is False
    assert count_events(world.db, c.id, "CONTRACT_FINALIZED") == 1
    assert world.collaborators.pdf_renderer.count("final") == 1


def test_second_session_loses_the_finalization_claim(world, session_factory):
    c = world.prepared_contract()
    world.sign(c.id, "tenant", world.as_tenant)

    # owner signature lands without triggering finalization
    world.db.execute(
        LeaseContract.__table__.update()
        .where(LeaseContract.__table__.c.id == c.id)
        .values(owner_signature="data:image/png;base64,OWNERSIG", owner_signed_at=world.clock())
    )
    world.db.commit()

    other = session_factory()
    try:
        first = world.services.signing.finalize_if_complete(world.db, contract_id=c.id, actor="SYSTEM")
        second = world.services.signing.finalize_if_complete(other, contract_id=c.id, actor="SYSTEM")
    finally:
        other.close()

    assert [first, second] == [True, False]
    assert count_events(world.db, c.id, "CONTRACT_FINALIZED") == 1
    assert world.collaborators.pdf_renderer.count("final") == 1


def test_final_pdf_failure_keeps_contract_awaiting(world):
    c = world.prepared_contract()
    world.sign(c.id, "tenant", world.as_tenant)
    world.collaborators.pdf_renderer.fail_final = True

    with pytest.raises(ExternalFailure):
        world.sign(c.id, "owner", world.as_owner)

    stored = reload(world.db, c.id)
    assert stored.owner_signature is not None
    assert stored.status == ContractStatus.AWAITING_SIGNATURES.value
    assert stored.hash_final is None

    world.collaborators.pdf_renderer.fail_final = False
    assert world.services.signing.finalize_if_complete(world.db, contract_id=c.id, actor="SYSTEM") is True


def test_notification_failure_is_swallowed(world):
    world.collaborators.notifier.fail = True
    c = world.signed_contract()
    assert c.status == ContractStatus.SIGNED.value


# ─────────────────────────────────────────────
# REVOKE / ACTIVATE / TERMINATE
# ─────────────────────────────────────────────

def test_revoke_calls_link_service_once_and_logs_reason(world):
    c = world.prepared_contract()
    revoked = world.services.signing.revoke(
        world.db, contract_id=c.id, principal=world.as_owner, reason="Locatário desistiu"
    )

    assert revoked.status == ContractStatus.REVOKED.value
    assert world.collaborators.signature_links.revoked == [c.id]

    events = [
        e for e in world.services.lifecycle.get_contract_timeline(world.db, contract_id=c.id)
        if e.event_type == "CONTRACT_REVOKED"
    ]
    assert len(events) == 1
    assert events[0].metadata_json == {"reason": "Locatário desistiu"}


def test_revoke_survives_link_service_failure(world):
    world.collaborators.signature_links.fail_revoke = True
    c = world.prepared_contract()
    revoked = world.services.signing.revoke(world.db, contract_id=c.id, principal=world.as_owner)
    assert revoked.status == ContractStatus.REVOKED.value


def test_revoke_terminal_contract_is_rejected(world):
    c = world.new_contract()
    world.services.signing.revoke(world.db, contract_id=c.id, principal=world.as_owner)
    with pytest.raises(PreconditionFailed):
        world.services.signing.revoke(world.db, contract_id=c.id, principal=world.as_owner)
    assert world.collaborators.signature_links.revoked == [c.id]


def test_activate_then_terminate(world):
    c = world.signed_contract()
    active = world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)
    assert active.status == ContractStatus.ACTIVE.value

    with pytest.raises(PreconditionFailed):
        world.services.signing.activate(world.db, contract_id=c.id, principal=world.as_owner)

    done = world.services.signing.terminate(world.db, contract_id=c.id, principal=world.as_owner, reason="fim")
    assert done.status == ContractStatus.TERMINATED.value
    assert count_events(world.db, c.id, "CONTRACT_TERMINATED") == 1


def test_activating_an_amendment_terminates_the_original(world):
    original = world.signed_contract()
    world.services.signing.activate(world.db, contract_id=original.id, principal=world.as_owner)

    amended = world.services.contracts.create_amended_contract(
        world.db, contract_id=original.id, amendments={"monthly_rent": Decimal("1700.00")}, principal=world.as_owner
    )
    world.services.signing.prepare_for_signing(world.db, contract_id=amended.id, principal=world.as_owner)
    world.sign(amended.id, "tenant", world.as_tenant)
    world.sign(amended.id, "owner", world.as_owner)

    # signed but not yet in force: the original still governs
    assert reload(world.db, original.id).status == ContractStatus.ACTIVE.value

    active = world.services.signing.activate(world.db, contract_id=amended.id, principal=world.as_owner)

    assert active.status == ContractStatus.ACTIVE.value
    superseded = reload(world.db, original.id)
    assert superseded.status == ContractStatus.TERMINATED.value
    assert world.services.signing.verify_final_hash(superseded) is True
    assert count_events(world.db, original.id, "CONTRACT_SUPERSEDED") == 1
    assert count_events(world.db, amended.id, "CONTRACT_ACTIVATED") == 1

    # the amendment now holds the property
    with pytest.raises(Conflict):
        world.new_contract()


def test_amendment_activation_leaves_a_revoked_original_alone(world):
    original = world.signed_contract()
    amended = world.services.contracts.create_amended_contract(
        world.db, contract_id=original.id, amendments={"due_day": 10}, principal=world.as_owner
    )
    world.services.signing.prepare_for_signing(world.db, contract_id=amended.id, principal=world.as_owner)
    world.sign(amended.id, "tenant", world.as_tenant)
    world.sign(amended.id, "owner", world.as_owner)
    world.services.signing.revoke(world.db, contract_id=original.id, principal=world.as_owner, reason="erro")

    world.services.signing.activate(world.db, contract_id=amended.id, principal=world.as_owner)

    assert reload(world.db, original.id).status == ContractStatus.REVOKED.value
    assert count_events(world.db, original.id, "CONTRACT_SUPERSEDED") == 0


# ─────────────────────────────────────────────
# INVITATIONS / VERIFICATION
# ─────────────────────────────────────────────

def test_invitations_require_awaiting_status(world):
    c = world.new_contract()
    parties = [SignatureParty(role="tenant", email="t@example.com")]
    with pytest.raises(PreconditionFailed):
        world.services.signing.create_signature_invitations(
            world.db, contract_id=c.id, parties=parties, principal=world.as_owner
        )

    world.services.signing.prepare_for_signing(world.db, contract_id=c.id, principal=world.as_owner)
    links = world.services.signing.create_signature_invitations(
        world.db, contract_id=c.id, parties=parties, principal=world.as_owner
    )
    assert [link.role for link in links] == ["tenant"]
    assert count_events(world.db, c.id, "SIGNATURE_LINKS_CREATED") == 1


def test_public_verification_hides_signature_images(world):
    c = world.signed_contract()
    view = world.services.signing.verify_by_token(world.db, token=c.contract_token)

    assert view["status"] == ContractStatus.SIGNED.value
    assert view["hash_valid"] is True
    assert view["signatures"]["tenant"]["signed_at"] is not None
    assert view["signatures"]["agency"] is None
    assert "TENANTSIG" not in str(view)

    with pytest.raises(NotFound):
        world.services.signing.verify_by_token(world.db, token="MR3X-CTR-2025-00000-00000")
