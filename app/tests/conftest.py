import os
import tempfile

# Settings are read once at import time; point them at a throwaway SQLite file.
_TMP_DIR = tempfile.mkdtemp(prefix="contracts-tests-")
os.environ["DATABASE_URL"] = f"sqlite:///{os.path.join(_TMP_DIR, 'contracts.db')}"
os.environ.setdefault("JWT_SECRET_KEY", "test-secret-key")
os.environ["SHARE_PASSWORD_BCRYPT_ROUNDS"] = "4"
os.environ["GENERATION_ENDPOINT"] = ""
os.environ["SMTP_HOST"] = ""

import pytest
from fastapi.testclient import TestClient

# FORCE model registration
from app.models.contract import Contract  # noqa: F401
from app.models.signature_request import SignatureRequest  # noqa: F401
from app.models.share_link import ShareLink  # noqa: F401
from app.models.audit_log import ContractAuditLogEntry  # noqa: F401

from app.core.security import create_access_token
from app.db.base import Base
from app.db.session import SessionLocal, engine
from app.main import app
from app.models.enums import ActorRole, ActorType, SignerType
from app.policies.rbac import Principal
from app.services import notification_service
from app.services.audit_service import AuditActor
from app.services.contract_service import ContractService
from app.services.signature_ledger import SignerSpec

TENANT = "tenant-a"
OPPORTUNITY = 42


@pytest.fixture(autouse=True)
def _schema():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture(autouse=True)
def outbox(monkeypatch):
    """Captured emails instead of SMTP / log stub."""
    sent = []

    def fake_send_email(to, subject, body, sender_name=None):
        sent.append({"to": to, "subject": subject, "body": body, "sender_name": sender_name})

    monkeypatch.setattr(notification_service, "send_email", fake_send_email)
    return sent


@pytest.fixture()
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture()
def service():
    return ContractService()


@pytest.fixture()
def admin():
    return Principal(
        user_id="user-admin",
        tenant_id=TENANT,
        role=ActorRole.ADMIN,
        display_name="Ada Admin",
        email="ada@consultancy.test",
    )


@pytest.fixture()
def viewer():
    return Principal(
        user_id="user-viewer",
        tenant_id=TENANT,
        role=ActorRole.VIEWER,
        display_name="Vic Viewer",
    )


@pytest.fixture()
def context():
    return AuditActor(
        actor_type=ActorType.ANONYMOUS,
        ip_address="203.0.113.7",
        user_agent="pytest-agent",
        request_id="req-test",
    )


@pytest.fixture()
def client():
    with TestClient(app) as c:
        yield c


def bearer(user_id="user-admin", tenant_id=TENANT, role="ADMIN", email="ada@consultancy.test"):
    token = create_access_token(
        user_id,
        {"tenant_id": tenant_id, "role": role, "display_name": user_id, "email": email},
    )
    return {"Authorization": f"Bearer {token}"}


def two_signers():
    return [
        SignerSpec(name="Carla Consultant", email="carla@consultancy.test", signer_type=SignerType.CONSULTANT),
        SignerSpec(name="Pat Client", email="Pat@Client.test", signer_type=SignerType.CLIENT_PRIMARY),
    ]
