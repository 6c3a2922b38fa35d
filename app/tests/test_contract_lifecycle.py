from datetime import timedelta
from decimal import Decimal

import pytest
from sqlalchemy import select, update

from conftest import OPPORTUNITY, TENANT, two_signers

from app.core.clock import as_utc, utcnow
from app.core.config import get_settings
from app.core.errors import AlreadyFinalized, InvalidEvidence, InvalidState, NotFound, TokenExpired
from app.models.audit_log import ContractAuditLogEntry
from app.models.contract import Contract
from app.models.enums import (
    ActorRole,
    ActorType,
    AuditAction,
    ContractStatus,
    ContractType,
    SignatureMethod,
    SignatureStatus,
)
from app.models.signature_request import SignatureRequest
from app.policies.rbac import Principal
from app.services.signature_ledger import SignatureEvidence, SignTokenExpired


def typed(name="Signer Name"):
    return SignatureEvidence(type=SignatureMethod.TYPED_NAME, typed_name=name)


def create(service, db, principal, contract_type=ContractType.NDA, title="Mutual NDA", **fields):
    return service.create_contract(
        db,
        principal=principal,
        opportunity_id=OPPORTUNITY,
        contract_type=contract_type,
        title=title,
        fields=fields,
    )


def create_and_send(service, db, principal, signers=None, **fields):
    contract = create(service, db, principal, **fields)
    contract = service.send_for_signatures(
        db,
        principal=principal,
        opportunity_id=OPPORTUNITY,
        contract_id=contract.id,
        signers=signers or two_signers(),
    )
    tokens = [r.sign_token for r in contract.signature_requests]
    return contract, tokens


def actions(db, contract_id):
    rows = db.execute(
        select(ContractAuditLogEntry)
        .where(ContractAuditLogEntry.contract_id == contract_id)
        .order_by(ContractAuditLogEntry.created_at, ContractAuditLogEntry.id)
    ).scalars().all()
    return [r.action for r in rows]


def status_changes_to(db, contract_id, status):
    return db.execute(
        select(ContractAuditLogEntry).where(
            ContractAuditLogEntry.contract_id == contract_id,
            ContractAuditLogEntry.to_status == status.value,
        )
    ).scalars().all()


# ─────────────────────────────────────────────
# CREATE / EDIT / DELETE
# ─────────────────────────────────────────────

def test_create_contract_starts_as_draft_with_template_content(db, service, admin):
    contract = create(service, db, admin)

    assert contract.status == ContractStatus.DRAFT.value
    assert contract.version == 1
    assert contract.contract_number == f"CTR-{utcnow().year}-0001"
    assert contract.lock_version == 1
    sections = contract.content_json["sections"]
    assert sections[0] == {"id": "parties", "title": "Parties", "content": "[Parties content to be added]"}
    assert contract.content_json["metadata"]["generatedBy"] == "TEMPLATE"
    assert actions(db, contract.id) == [AuditAction.CREATED.value]


def test_contract_numbers_are_sequential_per_tenant(db, service, admin):
    first = create(service, db, admin)
    second = create(service, db, admin, title="Second NDA")
    other = create(
        service,
        db,
        Principal(user_id="u2", tenant_id="tenant-b", role=ActorRole.ADMIN, display_name="Bo"),
    )

    year = utcnow().year
    assert first.contract_number == f"CTR-{year}-0001"
    assert second.contract_number == f"CTR-{year}-0002"
    assert other.contract_number == f"CTR-{year}-0001"


def test_update_draft_replaces_snapshot_and_audits_changed_fields(db, service, admin):
    contract = create(service, db, admin)
    old_hash = contract.content_hash

    updated = service.update_contract(
        db,
        principal=admin,
        opportunity_id=OPPORTUNITY,
        contract_id=contract.id,
        changes={
            "title": "Mutual NDA (final)",
            "total_value": Decimal("1200.00"),
            "content": [{"id": "parties", "title": "Parties", "content": "Acme and Initech"}],
        },
    )

    assert updated.title == "Mutual NDA (final)"
    assert updated.content_hash != old_hash
    assert updated.content_json["sections"] == [{"id": "parties", "title": "Parties", "content": "Acme and Initech"}]
    assert updated.content_json["metadata"]["generatedBy"] == "MANUAL"

    entry = db.execute(
        select(ContractAuditLogEntry).where(ContractAuditLogEntry.action == AuditAction.UPDATED.value)
    ).scalar_one()
    assert set(entry.metadata_json["fields"]) == {"title", "total_value", "content"}


def test_update_without_changes_writes_no_entry(db, service, admin):
    contract = create(service, db, admin)
    service.update_contract(
        db,
        principal=admin,
        opportunity_id=OPPORTUNITY,
        contract_id=contract.id,
        changes={"title": "Mutual NDA"},
    )
    assert actions(db, contract.id) == [AuditAction.CREATED.value]


def test_sent_contract_content_is_frozen(db, service, admin):
    contract, _ = create_and_send(service, db, admin)

    with pytest.raises(InvalidState):
        service.update_contract(
            db,
            principal=admin,
            opportunity_id=OPPORTUNITY,
            contract_id=contract.id,
            changes={"title": "Sneaky edit"},
        )


def test_delete_draft_keeps_audit_trail(db, service, admin):
    contract = create(service, db, admin)
    contract_id = contract.id

    service.delete_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract_id)

    assert db.get(Contract, contract_id) is None
    assert actions(db, contract_id) == [AuditAction.CREATED.value, AuditAction.DELETED.value]


def test_sent_contract_cannot_be_deleted(db, service, admin):
    contract, _ = create_and_send(service, db, admin)

    with pytest.raises(InvalidState):
        service.delete_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)


def test_viewer_cannot_create(db, service, viewer):
    with pytest.raises(PermissionError):
        create(service, db, viewer)


def test_other_tenant_sees_not_found(db, service, admin):
    contract = create(service, db, admin)
    outsider = Principal(user_id="x", tenant_id="tenant-b", role=ActorRole.ADMIN, display_name="X")

    with pytest.raises(NotFound):
        service.get_contract(db, principal=outsider, opportunity_id=OPPORTUNITY, contract_id=contract.id)


# ─────────────────────────────────────────────
# SEND
# ─────────────────────────────────────────────

def test_send_creates_requests_share_link_and_emails(db, service, admin, outbox):
    contract, tokens = create_and_send(service, db, admin)

    assert contract.status == ContractStatus.PENDING_SIGNATURE.value
    assert contract.sent_by_id == admin.user_id
    assert contract.sent_by_email == admin.email
    assert [r.signer_order for r in contract.signature_requests] == [0, 1]
    assert [r.status for r in contract.signature_requests] == ["PENDING", "PENDING"]
    assert contract.signature_requests[1].signer_email == "pat@client.test"
    assert len(set(tokens)) == 2
    assert len(contract.share_links) == 1

    expected_expiry = utcnow() + timedelta(days=get_settings().sign_token_valid_days)
    assert abs(as_utc(contract.signature_requests[0].token_expires_at) - expected_expiry) < timedelta(minutes=1)

    assert [m["to"] for m in outbox] == ["carla@consultancy.test", "pat@client.test"]
    assert f"/contracts/sign/{tokens[0]}" in outbox[0]["body"]

    assert actions(db, contract.id) == [
        AuditAction.CREATED.value,
        AuditAction.SENT.value,
        AuditAction.SENT.value,
        AuditAction.STATUS_CHANGED.value,
        AuditAction.SHARED.value,
    ]


def test_send_requires_total_for_statement_of_work(db, service, admin):
    contract = create(service, db, admin, contract_type=ContractType.SOW, title="SOW 1")

    with pytest.raises(InvalidState):
        service.send_for_signatures(
            db,
            principal=admin,
            opportunity_id=OPPORTUNITY,
            contract_id=contract.id,
            signers=two_signers(),
        )

    db.expire_all()
    assert db.get(Contract, contract.id).status == ContractStatus.DRAFT.value
    assert db.execute(select(SignatureRequest)).first() is None


def test_send_requires_a_signer(db, service, admin):
    contract = create(service, db, admin)

    with pytest.raises(InvalidState):
        service.send_for_signatures(
            db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id, signers=[]
        )


def test_send_twice_is_rejected(db, service, admin):
    contract, _ = create_and_send(service, db, admin)

    with pytest.raises(InvalidState):
        service.send_for_signatures(
            db,
            principal=admin,
            opportunity_id=OPPORTUNITY,
            contract_id=contract.id,
            signers=two_signers(),
        )


# ─────────────────────────────────────────────
# SIGN
# ─────────────────────────────────────────────

def test_two_signers_complete_the_contract(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)

    first = service.sign_contract(db, token=tokens[0], evidence=typed("Carla Consultant"), context=context)
    assert first.contract_status == ContractStatus.PARTIALLY_SIGNED
    assert first.signature_status == SignatureStatus.SIGNED.value
    assert first.message == "Signature recorded. Waiting for other parties."

    second = service.sign_contract(db, token=tokens[1], evidence=typed("Pat Client"), context=context)
    assert second.contract_status == ContractStatus.SIGNED
    assert second.message == "Contract fully signed"

    db.expire_all()
    contract = db.get(Contract, contract.id)
    assert contract.status == ContractStatus.SIGNED.value
    assert contract.signed_at is not None

    req = contract.signature_requests[0]
    assert req.typed_name == "Carla Consultant"
    assert req.evidence_type == SignatureMethod.TYPED_NAME.value
    assert req.evidence_sha256
    assert req.signer_ip == "203.0.113.7"
    assert req.signer_user_agent == "pytest-agent"

    assert actions(db, contract.id)[-5:] == [
        AuditAction.SHARED.value,
        AuditAction.SIGNED.value,
        AuditAction.STATUS_CHANGED.value,
        AuditAction.SIGNED.value,
        AuditAction.STATUS_CHANGED.value,
    ]
    signed_entry = status_changes_to(db, contract.id, ContractStatus.SIGNED)
    assert len(signed_entry) == 1
    assert signed_entry[0].from_status == ContractStatus.PARTIALLY_SIGNED.value
    assert signed_entry[0].actor_type == ActorType.SYSTEM.value

    summary = service.signature_status(
        db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id
    )
    assert (summary["total"], summary["signed"], summary["pending"]) == (2, 2, 0)
    assert summary["contractStatus"] == ContractStatus.SIGNED.value


def test_signing_twice_with_the_same_token_is_rejected(db, service, admin, context):
    _, tokens = create_and_send(service, db, admin)
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)

    with pytest.raises(AlreadyFinalized):
        service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)


def test_unknown_sign_token_is_not_found(db, service, context):
    with pytest.raises(NotFound):
        service.sign_contract(db, token="nope", evidence=typed(), context=context)


def test_viewing_is_idempotent(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)

    first = service.view_for_signing(db, token=tokens[0], context=context)
    assert first["signer"]["status"] == SignatureStatus.VIEWED.value
    assert first["contract"]["title"] == "Mutual NDA"

    db.expire_all()
    viewed_at = db.get(Contract, contract.id).signature_requests[0].viewed_at
    service.view_for_signing(db, token=tokens[0], context=context)

    db.expire_all()
    req = db.get(Contract, contract.id).signature_requests[0]
    assert req.status == SignatureStatus.VIEWED.value
    assert req.viewed_at == viewed_at
    assert actions(db, contract.id).count(AuditAction.VIEWED_SIGNING.value) == 1

    summary = service.signature_status(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)
    assert summary["pending"] == 2


def test_token_is_valid_strictly_before_its_expiry(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    contract = db.get(Contract, contract.id)
    expires = as_utc(contract.signature_requests[0].token_expires_at)

    with pytest.raises(SignTokenExpired):
        service.ledger.record_signature(db, contract, tokens[0], typed(), context, now=expires)
    db.rollback()

    contract = db.get(Contract, contract.id)
    req = service.ledger.record_signature(
        db, contract, tokens[0], typed(), context, now=expires - timedelta(microseconds=1)
    )
    assert req.status == SignatureStatus.SIGNED.value
    db.rollback()


def test_expired_tokens_expire_the_contract_lazily(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    db.execute(
        update(SignatureRequest)
        .where(SignatureRequest.contract_id == contract.id)
        .values(token_expires_at=utcnow() - timedelta(seconds=1))
    )
    db.commit()

    with pytest.raises(TokenExpired):
        service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)

    db.expire_all()
    contract = db.get(Contract, contract.id)
    assert contract.status == ContractStatus.EXPIRED.value
    assert [r.status for r in contract.signature_requests] == ["EXPIRED", "EXPIRED"]
    assert len(status_changes_to(db, contract.id, ContractStatus.EXPIRED)) == 1


def test_reads_apply_due_expiry(db, service, admin):
    contract, _ = create_and_send(service, db, admin)
    db.execute(
        update(SignatureRequest)
        .where(SignatureRequest.contract_id == contract.id)
        .values(token_expires_at=utcnow() - timedelta(minutes=5))
    )
    db.commit()

    fetched = service.get_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)
    assert fetched.status == ContractStatus.EXPIRED.value


def test_signing_order_guard_when_enabled(db, service, admin, context, monkeypatch):
    monkeypatch.setattr(get_settings(), "enforce_signing_order", True)
    _, tokens = create_and_send(service, db, admin)

    with pytest.raises(InvalidState):
        service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)

    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)
    result = service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)
    assert result.contract_status == ContractStatus.SIGNED


def test_evidence_must_match_contract_method(db, service, admin, context):
    _, tokens = create_and_send(service, db, admin)
    with pytest.raises(InvalidEvidence):
        service.sign_contract(
            db,
            token=tokens[0],
            evidence=SignatureEvidence(type=SignatureMethod.EXTERNAL, external_reference="docusign:123"),
            context=context,
        )


# ─────────────────────────────────────────────
# DECLINE / VOID
# ─────────────────────────────────────────────

def test_decline_voids_the_contract_and_notifies_sender(db, service, admin, context, outbox):
    contract, tokens = create_and_send(service, db, admin)
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)
    outbox.clear()

    result = service.decline_contract(db, token=tokens[1], reason="Terms changed", context=context)
    assert result.contract_status == ContractStatus.VOIDED
    assert result.signature_status == SignatureStatus.DECLINED.value

    db.expire_all()
    contract = db.get(Contract, contract.id)
    assert contract.status == ContractStatus.VOIDED.value
    assert contract.void_reason == "Declined by Pat Client"
    assert contract.signature_requests[1].decline_reason == "Terms changed"
    assert status_changes_to(db, contract.id, ContractStatus.SIGNED) == []

    voided = status_changes_to(db, contract.id, ContractStatus.VOIDED)
    assert len(voided) == 1
    assert voided[0].action == AuditAction.VOIDED.value
    assert voided[0].actor_type == ActorType.SYSTEM.value
    assert voided[0].metadata_json["reason"] == "SIGNER_DECLINED"
    assert voided[0].metadata_json["signerName"] == "Pat Client"

    assert [m["to"] for m in outbox] == [admin.email]
    assert "Pat Client declined to sign Mutual NDA" == outbox[0]["subject"]


def test_decline_after_a_signature_blocks_completion(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)
    service.decline_contract(db, token=tokens[1], reason="No longer needed", context=context)

    with pytest.raises(AlreadyFinalized):
        service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)
    with pytest.raises(AlreadyFinalized):
        service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)

    db.expire_all()
    contract = db.get(Contract, contract.id)
    assert contract.status == ContractStatus.VOIDED.value
    assert status_changes_to(db, contract.id, ContractStatus.SIGNED) == []


def test_decline_blocks_remaining_signers(db, service, admin, context):
    _, tokens = create_and_send(service, db, admin)
    service.decline_contract(db, token=tokens[0], reason=None, context=context)

    with pytest.raises(AlreadyFinalized):
        service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)


def test_void_after_partial_signing(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)

    voided = service.void_contract(
        db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id, reason="Scope changed"
    )
    assert voided.status == ContractStatus.VOIDED.value
    assert voided.voided_by_id == admin.user_id
    assert [r.status for r in voided.signature_requests] == ["SIGNED", "EXPIRED"]

    entry = status_changes_to(db, contract.id, ContractStatus.VOIDED)[0]
    assert entry.from_status == ContractStatus.PARTIALLY_SIGNED.value
    assert entry.metadata_json["reason"] == "Scope changed"

    with pytest.raises(AlreadyFinalized):
        service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)


# ─────────────────────────────────────────────
# ACTIVATE / TERMINATE / REVISE
# ─────────────────────────────────────────────

def test_signed_contract_with_reached_effective_date_activates(db, service, admin, context):
    _, tokens = create_and_send(service, db, admin, effective_date=utcnow().date())
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)
    result = service.sign_contract(db, token=tokens[1], evidence=typed(), context=context)

    assert result.contract_status == ContractStatus.ACTIVE
    assert result.message == "Contract fully signed"


def test_activation_happens_on_read_once_effective_date_arrives(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin, effective_date=utcnow().date() + timedelta(days=3))
    for token in tokens:
        service.sign_contract(db, token=token, evidence=typed(), context=context)

    with pytest.raises(InvalidState):
        service.activate_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)

    db.execute(update(Contract).where(Contract.id == contract.id).values(effective_date=utcnow().date()))
    db.commit()

    fetched = service.get_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)
    assert fetched.status == ContractStatus.ACTIVE.value
    assert fetched.activated_at is not None


def test_activate_terminate_and_revise(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    for token in tokens:
        service.sign_contract(db, token=token, evidence=typed(), context=context)

    active = service.activate_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)
    assert active.status == ContractStatus.ACTIVE.value

    with pytest.raises(InvalidState):
        service.void_contract(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)

    terminated = service.terminate_contract(
        db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id, reason="Client exit"
    )
    assert terminated.status == ContractStatus.TERMINATED.value
    assert terminated.termination_reason == "Client exit"

    revision = service.create_revision(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)
    assert revision.status == ContractStatus.DRAFT.value
    assert revision.version == 2
    assert revision.contract_number == terminated.contract_number
    assert revision.parent_contract_id == contract.id
    assert revision.content_hash == terminated.content_hash

    db.expire_all()
    assert db.get(Contract, contract.id).status == ContractStatus.TERMINATED.value
    assert actions(db, revision.id) == [AuditAction.VERSION_CREATED.value]

    # Only the newest version can be revised.
    with pytest.raises(InvalidState):
        service.create_revision(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)


def test_member_cannot_terminate(db, service, admin, context):
    member = Principal(user_id="m1", tenant_id=TENANT, role=ActorRole.MEMBER, display_name="Mo")
    contract = create(service, db, admin)

    with pytest.raises(PermissionError):
        service.terminate_contract(
            db, principal=member, opportunity_id=OPPORTUNITY, contract_id=contract.id, reason="x"
        )


def test_pending_contract_cannot_be_revised(db, service, admin):
    contract, _ = create_and_send(service, db, admin)

    with pytest.raises(InvalidState):
        service.create_revision(db, principal=admin, opportunity_id=OPPORTUNITY, contract_id=contract.id)


# ─────────────────────────────────────────────
# RESEND
# ─────────────────────────────────────────────

def test_resend_keeps_token_and_extends_expiry(db, service, admin, context, outbox):
    contract, tokens = create_and_send(service, db, admin)
    req_id = contract.signature_requests[1].id
    db.execute(
        update(SignatureRequest)
        .where(SignatureRequest.id == req_id)
        .values(token_expires_at=utcnow() + timedelta(days=1))
    )
    db.commit()
    outbox.clear()

    result = service.resend_signature_request(
        db,
        principal=admin,
        opportunity_id=OPPORTUNITY,
        contract_id=contract.id,
        signature_request_id=req_id,
    )
    assert result["reminderCount"] == 1

    db.expire_all()
    req = db.get(SignatureRequest, req_id)
    assert req.sign_token == tokens[1]
    assert as_utc(req.token_expires_at) > utcnow() + timedelta(days=get_settings().sign_token_valid_days - 1)
    assert outbox[0]["to"] == "pat@client.test"
    assert outbox[0]["subject"].startswith("Reminder: please sign")


def test_resend_of_signed_request_is_rejected(db, service, admin, context):
    contract, tokens = create_and_send(service, db, admin)
    req_id = contract.signature_requests[0].id
    service.sign_contract(db, token=tokens[0], evidence=typed(), context=context)

    with pytest.raises(AlreadyFinalized):
        service.resend_signature_request(
            db,
            principal=admin,
            opportunity_id=OPPORTUNITY,
            contract_id=contract.id,
            signature_request_id=req_id,
        )
