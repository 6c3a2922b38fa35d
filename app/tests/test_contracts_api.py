import logging
import uuid

from sqlalchemy import select

from conftest import OPPORTUNITY, bearer

from app.db.session import SessionLocal
from app.models.signature_request import SignatureRequest

BASE = f"/api/v1/opportunities/{OPPORTUNITY}/contracts"

SIGNERS = [
    {"name": "Carla Consultant", "email": "carla@consultancy.com", "signerType": "CONSULTANT"},
    {"name": "Pat Client", "email": "pat@client.com", "signerType": "CLIENT_PRIMARY"},
]


def sign_tokens(contract_id):
    with SessionLocal() as s:
        rows = s.execute(
            select(SignatureRequest)
            .where(SignatureRequest.contract_id == uuid.UUID(contract_id))
            .order_by(SignatureRequest.signer_order)
        ).scalars().all()
        return [r.sign_token for r in rows]


def create(client, headers=None, **body):
    payload = {"type": "NDA", "title": "Mutual NDA"}
    payload.update(body)
    return client.post(BASE, json=payload, headers=headers or bearer())


def test_create_and_fetch(client):
    r = create(client, accountName="Acme")
    assert r.status_code == 201
    body = r.json()
    assert body["status"] == "DRAFT"
    assert body["version"] == 1
    assert body["accountName"] == "Acme"
    assert body["shareLink"] is None
    assert body["signatures"] == []
    assert body["content"]["metadata"]["generatedBy"] == "TEMPLATE"

    fetched = client.get(f"{BASE}/{body['id']}", headers=bearer())
    assert fetched.status_code == 200
    assert fetched.json()["contractNumber"] == body["contractNumber"]

    listed = client.get(BASE, headers=bearer(), params={"status": "DRAFT"})
    assert [c["id"] for c in listed.json()["contracts"]] == [body["id"]]


def test_patch_and_delete(client):
    contract_id = create(client).json()["id"]

    r = client.patch(f"{BASE}/{contract_id}", json={"title": "Renamed NDA"}, headers=bearer())
    assert r.status_code == 200
    assert r.json()["title"] == "Renamed NDA"

    assert client.delete(f"{BASE}/{contract_id}", headers=bearer()).status_code == 204
    assert client.get(f"{BASE}/{contract_id}", headers=bearer()).status_code == 404


def test_send_then_sign_through_public_routes(client, outbox):
    contract_id = create(client).json()["id"]

    sent = client.post(f"{BASE}/{contract_id}/send", json={"signers": SIGNERS}, headers=bearer())
    assert sent.status_code == 200
    body = sent.json()
    assert body["status"] == "PENDING_SIGNATURE"
    assert [s["status"] for s in body["signatures"]] == ["PENDING", "PENDING"]
    assert body["shareLink"]["passwordProtected"] is False
    assert len(outbox) == 2

    shared = client.get(f"/api/v1/public/contracts/{body['shareLink']['token']}")
    assert shared.status_code == 200
    assert shared.json()["contractNumber"] == body["contractNumber"]
    assert shared.json()["collectingSignatures"] is True

    first, second = sign_tokens(contract_id)

    view = client.get(f"/api/v1/public/contracts/sign/{first}")
    assert view.status_code == 200
    assert view.json()["signer"]["email"] == "carla@consultancy.com"

    r = client.post(f"/api/v1/public/contracts/sign/{first}", json={"type": "TYPED_NAME", "typedName": "Carla"})
    assert r.status_code == 200
    assert r.json()["contractStatus"] == "PARTIALLY_SIGNED"
    assert r.json()["message"] == "Signature recorded. Waiting for other parties."

    r = client.post(f"/api/v1/public/contracts/sign/{second}", json={"type": "TYPED_NAME", "typedName": "Pat"})
    assert r.json() == {
        "success": True,
        "message": "Contract fully signed",
        "contractNumber": body["contractNumber"],
        "contractStatus": "SIGNED",
        "signatureStatus": "SIGNED",
    }

    status = client.get(f"{BASE}/{contract_id}/signatures", headers=bearer()).json()
    assert status["contractStatus"] == "SIGNED"
    assert status["signed"] == 2

    audit = client.get(f"{BASE}/{contract_id}/audit", headers=bearer(), params={"limit": 100}).json()
    assert audit["hasMore"] is False
    assert audit["entries"][0]["action"] == "CREATED"
    assert audit["entries"][-1]["toStatus"] == "SIGNED"


def test_public_errors_are_terse(client):
    contract_id = create(client).json()["id"]
    client.post(f"{BASE}/{contract_id}/send", json={"signers": SIGNERS[:1]}, headers=bearer())
    (token,) = sign_tokens(contract_id)

    client.post(f"/api/v1/public/contracts/sign/{token}", json={"type": "TYPED_NAME", "typedName": "Carla"})
    again = client.post(f"/api/v1/public/contracts/sign/{token}", json={"type": "TYPED_NAME", "typedName": "Carla"})
    assert again.status_code == 409
    assert again.json() == {"detail": "This signature request is no longer open."}

    unknown = client.get("/api/v1/public/contracts/sign/not-a-real-token")
    assert unknown.status_code == 404
    assert unknown.json() == {"detail": "Link invalid or expired."}


def test_rejected_public_calls_never_log_the_token(client, caplog):
    contract_id = create(client).json()["id"]
    client.post(f"{BASE}/{contract_id}/send", json={"signers": SIGNERS[:1]}, headers=bearer())
    (token,) = sign_tokens(contract_id)
    client.post(f"/api/v1/public/contracts/sign/{token}", json={"type": "TYPED_NAME", "typedName": "Carla"})

    with caplog.at_level(logging.INFO):
        again = client.post(f"/api/v1/public/contracts/sign/{token}", json={"type": "TYPED_NAME", "typedName": "Carla"})
        declined = client.post(f"/api/v1/public/contracts/sign/{token}/decline", json={})
    assert again.status_code == 409
    assert declined.status_code == 409

    errors = [r for r in caplog.records if r.getMessage() == "contract_error"]
    assert len(errors) == 2
    assert errors[0].route == "/api/v1/public/contracts/sign/{sign_token}"
    # httpx (the test client transport) logs full URLs; only the service's own loggers matter.
    service_records = [r for r in caplog.records if r.name.startswith("app")]
    assert service_records
    for record in service_records:
        assert token not in record.getMessage()
        assert all(token not in str(v) for v in record.__dict__.values())


def test_decline_through_public_route_voids(client):
    contract_id = create(client).json()["id"]
    client.post(f"{BASE}/{contract_id}/send", json={"signers": SIGNERS}, headers=bearer())
    _, client_token = sign_tokens(contract_id)

    r = client.post(f"/api/v1/public/contracts/sign/{client_token}/decline", json={"reason": "Wrong scope"})
    assert r.status_code == 200
    assert r.json()["contractStatus"] == "VOIDED"
    assert r.json()["signatureStatus"] == "DECLINED"


def test_authenticated_errors_carry_kind(client):
    contract_id = create(client).json()["id"]

    r = client.post(f"{BASE}/{contract_id}/activate", headers=bearer())
    assert r.status_code == 409
    assert r.json()["kind"] == "InvalidState"
    assert r.json()["retryable"] is False
    assert r.json()["message"]

    missing = client.get(f"{BASE}/{uuid.uuid4()}", headers=bearer())
    assert missing.status_code == 404
    assert missing.json()["kind"] == "NotFound"


def test_share_link_validation_errors(client):
    contract_id = create(client).json()["id"]
    client.post(f"{BASE}/{contract_id}/send", json={"signers": SIGNERS[:1]}, headers=bearer())

    r = client.post(f"{BASE}/{contract_id}/share", json={"password": "short"}, headers=bearer())
    assert r.status_code == 422

    r = client.post(f"{BASE}/{contract_id}/share", json={"expiresInDays": 7, "password": "hunter22"}, headers=bearer())
    assert r.status_code == 201
    token = r.json()["token"]

    locked = client.get(f"/api/v1/public/contracts/{token}")
    assert locked.json() == {"passwordRequired": True}

    bad = client.post(f"/api/v1/public/contracts/{token}/verify", json={"password": "nope"})
    assert bad.status_code == 401
    assert bad.json() == {"detail": "Invalid password."}

    ok = client.post(f"/api/v1/public/contracts/{token}/verify", json={"password": "hunter22"})
    assert ok.status_code == 200
    assert ok.json()["title"] == "Mutual NDA"


def test_viewer_cannot_write(client):
    r = create(client, headers=bearer(user_id="user-viewer", role="VIEWER"))
    assert r.status_code == 403


def test_other_tenant_sees_nothing(client):
    contract_id = create(client).json()["id"]
    r = client.get(f"{BASE}/{contract_id}", headers=bearer(tenant_id="tenant-b"))
    assert r.status_code == 404


def test_missing_or_bad_token(client):
    assert client.get(BASE).status_code in (401, 403)
    r = client.get(BASE, headers={"Authorization": "Bearer garbage"})
    assert r.status_code == 401


def test_request_validation(client):
    assert create(client, type="NOT_A_TYPE").status_code == 422
    assert create(client, unexpected="field").status_code == 422
    contract_id = create(client).json()["id"]
    r = client.post(f"{BASE}/{contract_id}/send", json={"signers": []}, headers=bearer())
    assert r.status_code == 422
