#app/models/enums.py
from __future__ import annotations
from enum import Enum


class ContractType(str, Enum):
    MSA = "MSA"
    SOW = "SOW"
    MSA_WITH_SOW = "MSA_WITH_SOW"
    NDA = "NDA"
    CONSULTING_AGREEMENT = "CONSULTING_AGREEMENT"
    RETAINER_AGREEMENT = "RETAINER_AGREEMENT"
    AMENDMENT = "AMENDMENT"
    OTHER = "OTHER"


class ContractStatus(str, Enum):
    DRAFT = "DRAFT"
    PENDING_SIGNATURE = "PENDING_SIGNATURE"
    PARTIALLY_SIGNED = "PARTIALLY_SIGNED"
    SIGNED = "SIGNED"
    ACTIVE = "ACTIVE"
    VOIDED = "VOIDED"
    TERMINATED = "TERMINATED"
    EXPIRED = "EXPIRED"


class SignatureMethod(str, Enum):
    TYPED_NAME = "TYPED_NAME"
    DRAWN = "DRAWN"
    UPLOAD = "UPLOAD"
    EXTERNAL = "EXTERNAL"


class SignerType(str, Enum):
    CONSULTANT = "CONSULTANT"
    CLIENT_PRIMARY = "CLIENT_PRIMARY"
    CLIENT_SECONDARY = "CLIENT_SECONDARY"
    WITNESS = "WITNESS"


class SignatureStatus(str, Enum):
    PENDING = "PENDING"
    VIEWED = "VIEWED"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"
    EXPIRED = "EXPIRED"


class AuditAction(str, Enum):
    CREATED = "CREATED"
    GENERATED = "GENERATED"
    UPDATED = "UPDATED"
    DELETED = "DELETED"
    VERSION_CREATED = "VERSION_CREATED"
    SHARED = "SHARED"
    SENT = "SENT"
    VIEWED_PUBLIC = "VIEWED_PUBLIC"
    VIEWED_SIGNING = "VIEWED_SIGNING"
    SIGNED = "SIGNED"
    DECLINED = "DECLINED"
    REMINDER_SENT = "REMINDER_SENT"
    VOIDED = "VOIDED"
    TERMINATED = "TERMINATED"
    STATUS_CHANGED = "STATUS_CHANGED"
    PASSWORD_VERIFY_FAILED = "PASSWORD_VERIFY_FAILED"
    PASSWORD_VERIFY_SUCCEEDED = "PASSWORD_VERIFY_SUCCEEDED"


class ActorType(str, Enum):
    USER = "USER"
    SIGNER = "SIGNER"
    ANONYMOUS = "ANONYMOUS"
    SYSTEM = "SYSTEM"


class ActorRole(str, Enum):
    ADMIN = "ADMIN"
    MEMBER = "MEMBER"
    VIEWER = "VIEWER"


FINALIZED_SIGNATURE_STATUSES = frozenset(
    {SignatureStatus.SIGNED, SignatureStatus.DECLINED, SignatureStatus.EXPIRED}
)
OUTSTANDING_SIGNATURE_STATUSES = frozenset({SignatureStatus.PENDING, SignatureStatus.VIEWED})
