# app/services/signature_ledger.py
from __future__ import annotations

import base64
import binascii
import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import as_utc, iso, utcnow
from app.core.config import get_settings
from app.core.contract_status_graph import COLLECTING_SIGNATURES
from app.core.hashing import sha256_bytes, sha256_hex
from app.core.security import new_sign_token
from app.models.contract import Contract
from app.models.enums import (
    AuditAction,
    ActorType,
    ContractStatus,
    SignatureMethod,
    SignatureStatus,
    SignerType,
)
from app.models.signature_request import SignatureRequest
from app.services.audit_service import AuditActor, AuditRecorder

logger = logging.getLogger(__name__)


# ─────────────────────────────────────────────
# ERRORS
# ─────────────────────────────────────────────

class SignTokenUnknown(Exception):
    pass


class SignTokenExpired(Exception):
    pass


class SignatureFinalized(Exception):
    pass


class EvidenceMismatch(Exception):
    pass


class SigningOutOfOrder(Exception):
    pass


class SignatureRequestUnknown(Exception):
    pass


class NotCollectingSignatures(Exception):
    pass


# ─────────────────────────────────────────────
# INPUT TYPES
# ─────────────────────────────────────────────

@dataclass(frozen=True)
class SignerSpec:
    name: str
    email: str
    signer_type: SignerType
    title: Optional[str] = None
    company: Optional[str] = None


@dataclass(frozen=True)
class SignatureEvidence:
    type: SignatureMethod
    typed_name: Optional[str] = None
    drawn_signature: Optional[str] = None
    uploaded_signature: Optional[str] = None
    external_reference: Optional[str] = None


_PNG_MAGIC = b"\x89PNG\r\n\x1a\n"
_JPEG_MAGIC = b"\xff\xd8\xff"


def decode_signature_image(data: str, *, max_bytes: int) -> bytes:
    """
    Accepts raw base64 or a data URL ("data:image/png;base64,....").
    Only PNG and JPEG payloads are accepted.
    """
    if "," in data:
        data = data.split(",", 1)[1]
    data = data.strip()
    # base64 inflates by 4/3; refuse oversize payloads before decoding them.
    if len(data) > max_bytes * 4 // 3 + 4:
        raise EvidenceMismatch(f"Signature image exceeds {max_bytes} bytes.")
    try:
        raw = base64.b64decode(data, validate=True)
    except (binascii.Error, ValueError):
        raise EvidenceMismatch("Signature image is not valid base64.")

    if not raw:
        raise EvidenceMismatch("Signature image is empty.")
    if len(raw) > max_bytes:
        raise EvidenceMismatch(f"Signature image exceeds {max_bytes} bytes.")
    if not (raw.startswith(_PNG_MAGIC) or raw.startswith(_JPEG_MAGIC)):
        raise EvidenceMismatch("Signature image must be PNG or JPEG.")
    return raw


def validate_evidence(method: SignatureMethod, evidence: SignatureEvidence, *, max_bytes: int) -> Dict[str, Any]:
    """
    Checks evidence shape against the contract's signature method and returns
    the columns to store on the signature request.
    """
    method = SignatureMethod(method)
    if SignatureMethod(evidence.type) != method:
        raise EvidenceMismatch(
            f"Signature type {SignatureMethod(evidence.type).value} does not match contract method {method.value}."
        )

    if method == SignatureMethod.TYPED_NAME:
        name = (evidence.typed_name or "").strip()
        if not name:
            raise EvidenceMismatch("typedName is required.")
        return {"typed_name": name, "evidence_sha256": sha256_hex(name)}

    if method == SignatureMethod.DRAWN:
        if not evidence.drawn_signature:
            raise EvidenceMismatch("drawnSignature is required.")
        image = decode_signature_image(evidence.drawn_signature, max_bytes=max_bytes)
        return {"signature_image": image, "evidence_sha256": sha256_bytes(image)}

    if method == SignatureMethod.UPLOAD:
        uploaded = (evidence.uploaded_signature or "").strip()
        if not uploaded:
            raise EvidenceMismatch("uploadedSignature is required.")
        if uploaded.startswith(("http://", "https://")):
            return {"signature_reference": uploaded[:1024], "evidence_sha256": sha256_hex(uploaded)}
        image = decode_signature_image(uploaded, max_bytes=max_bytes)
        return {"signature_image": image, "evidence_sha256": sha256_bytes(image)}

    reference = (evidence.external_reference or "").strip()
    if not reference:
        raise EvidenceMismatch("externalReference is required.")
    return {"signature_reference": reference[:1024], "evidence_sha256": sha256_hex(reference)}


def signer_actor(req: SignatureRequest, context: AuditActor) -> AuditActor:
    return AuditActor(
        actor_type=ActorType.SIGNER,
        actor_id=str(req.id),
        name=req.signer_name,
        email=req.signer_email,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        request_id=context.request_id,
    )


# ─────────────────────────────────────────────
# LEDGER
# ─────────────────────────────────────────────

class SignatureLedger:
    """
    Ordered signature requests of one contract.

    The ledger never writes Contract.status. Every mutation touches the contract
    row (updated_at) so its lock_version compare-and-set serializes concurrent
    signers; the caller re-evaluates contract status right after.
    """

    def __init__(self, audit: Optional[AuditRecorder] = None):
        self.audit = audit or AuditRecorder()

    # ---------- lookups ----------

    def contract_id_for_token(self, db: Session, token: str) -> uuid.UUID:
        contract_id = db.execute(
            select(SignatureRequest.contract_id).where(SignatureRequest.sign_token == token)
        ).scalar_one_or_none()
        if contract_id is None:
            raise SignTokenUnknown("Unknown signing token.")
        return contract_id

    def request_for_token(self, contract: Contract, token: str) -> SignatureRequest:
        for req in contract.signature_requests:
            if req.sign_token == token:
                return req
        raise SignTokenUnknown("Unknown signing token.")

    # ---------- writes ----------

    def add_signers(
        self,
        db: Session,
        contract: Contract,
        signers: List[SignerSpec],
        actor: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> List[SignatureRequest]:
        if ContractStatus(contract.status) != ContractStatus.DRAFT:
            raise NotCollectingSignatures("Signers can only be added to a DRAFT contract.")

        now = now or utcnow()
        expires_at = now + timedelta(days=get_settings().sign_token_valid_days)

        created: List[SignatureRequest] = []
        for order, spec in enumerate(signers):
            req = SignatureRequest(
                id=uuid.uuid4(),
                contract=contract,
                signer_type=SignerType(spec.signer_type).value,
                signer_order=order,
                signer_name=spec.name.strip(),
                signer_email=spec.email.strip().lower(),
                signer_title=spec.title,
                signer_company=spec.company,
                sign_token=new_sign_token(),
                token_expires_at=expires_at,
                status=SignatureStatus.PENDING.value,
                reminder_count=0,
                created_at=now,
            )
            db.add(req)
            created.append(req)

        contract.updated_at = now

        for req in created:
            self.audit.record(
                db,
                contract,
                AuditAction.SENT,
                actor,
                metadata={
                    "signatureRequestId": str(req.id),
                    "signerName": req.signer_name,
                    "signerEmail": req.signer_email,
                    "signerType": req.signer_type,
                    "signerOrder": req.signer_order,
                    "tokenExpiresAt": iso(expires_at),
                },
            )

        return created

    def record_view(
        self,
        db: Session,
        contract: Contract,
        token: str,
        context: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        """PENDING -> VIEWED once. Expired, finalized and repeat views are no-ops."""
        now = now or utcnow()
        req = self.request_for_token(contract, token)

        if req.status != SignatureStatus.PENDING.value:
            return req
        if as_utc(req.token_expires_at) <= now:
            logger.info(
                "signing_view_ignored_expired_token",
                extra={"contract_id": str(contract.id), "signature_request_id": str(req.id)},
            )
            return req

        req.status = SignatureStatus.VIEWED.value
        req.viewed_at = now
        contract.updated_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.VIEWED_SIGNING,
            signer_actor(req, context),
            metadata={"signatureRequestId": str(req.id), "signerName": req.signer_name},
        )
        return req

    def _open_request(self, contract: Contract, token: str, now: datetime) -> SignatureRequest:
        req = self.request_for_token(contract, token)
        status = SignatureStatus(req.status)

        if status in (SignatureStatus.SIGNED, SignatureStatus.DECLINED):
            raise SignatureFinalized(f"Signature request already {status.value}.")
        if as_utc(req.token_expires_at) <= now:
            raise SignTokenExpired("Signing token has expired.")
        if status == SignatureStatus.EXPIRED:
            raise SignatureFinalized("Signature request is no longer open.")
        if ContractStatus(contract.status) not in COLLECTING_SIGNATURES:
            raise SignatureFinalized("Contract is not collecting signatures.")
        return req

    def record_signature(
        self,
        db: Session,
        contract: Contract,
        token: str,
        evidence: SignatureEvidence,
        context: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        now = now or utcnow()
        settings = get_settings()
        req = self._open_request(contract, token, now)

        fields = validate_evidence(
            SignatureMethod(contract.signature_method),
            evidence,
            max_bytes=settings.max_signature_image_bytes,
        )

        if settings.enforce_signing_order:
            blocking = [
                r for r in contract.signature_requests
                if r.signer_order < req.signer_order and r.status != SignatureStatus.SIGNED.value
            ]
            if blocking:
                raise SigningOutOfOrder(f"{blocking[0].signer_name} must sign first.")

        for key, value in fields.items():
            setattr(req, key, value)
        req.evidence_type = SignatureMethod(evidence.type).value
        req.status = SignatureStatus.SIGNED.value
        req.signed_at = now
        req.signer_ip = context.ip_address
        req.signer_user_agent = context.user_agent
        if req.viewed_at is None:
            req.viewed_at = now
        contract.updated_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.SIGNED,
            signer_actor(req, context),
            metadata={
                "signatureRequestId": str(req.id),
                "signerName": req.signer_name,
                "signatureType": req.evidence_type,
                "evidenceSha256": req.evidence_sha256,
            },
        )
        return req

    def record_decline(
        self,
        db: Session,
        contract: Contract,
        token: str,
        reason: Optional[str],
        context: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        now = now or utcnow()
        req = self._open_request(contract, token, now)

        req.status = SignatureStatus.DECLINED.value
        req.declined_at = now
        req.decline_reason = reason
        req.signer_ip = context.ip_address
        req.signer_user_agent = context.user_agent
        contract.updated_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.DECLINED,
            signer_actor(req, context),
            metadata={"signatureRequestId": str(req.id), "signerName": req.signer_name, "reason": reason},
        )
        return req

    def resend(
        self,
        db: Session,
        contract: Contract,
        signature_request_id: uuid.UUID,
        actor: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> SignatureRequest:
        """
        Re-notify a signer with the same token.
        The token validity window restarts from now; the token itself is kept.
        """
        now = now or utcnow()
        req = next((r for r in contract.signature_requests if r.id == signature_request_id), None)
        if req is None:
            raise SignatureRequestUnknown("Signature request not found.")

        status = SignatureStatus(req.status)
        if status in (SignatureStatus.SIGNED, SignatureStatus.DECLINED, SignatureStatus.EXPIRED):
            raise SignatureFinalized(f"Signature request already {status.value}.")
        if ContractStatus(contract.status) not in COLLECTING_SIGNATURES:
            raise NotCollectingSignatures("Contract is not collecting signatures.")

        req.token_expires_at = now + timedelta(days=get_settings().sign_token_valid_days)
        req.reminder_sent_at = now
        req.reminder_count = (req.reminder_count or 0) + 1
        contract.updated_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.REMINDER_SENT,
            actor,
            metadata={
                "signatureRequestId": str(req.id),
                "signerEmail": req.signer_email,
                "reminderCount": req.reminder_count,
                "tokenExpiresAt": iso(req.token_expires_at),
            },
        )
        return req

    # ---------- reads ----------

    def status_summary(self, contract: Contract) -> Dict[str, Any]:
        requests = sorted(contract.signature_requests, key=lambda r: r.signer_order)
        counts = {s: 0 for s in SignatureStatus}
        for r in requests:
            counts[SignatureStatus(r.status)] += 1

        return {
            "total": len(requests),
            "signed": counts[SignatureStatus.SIGNED],
            "declined": counts[SignatureStatus.DECLINED],
            "pending": counts[SignatureStatus.PENDING] + counts[SignatureStatus.VIEWED],
            "expired": counts[SignatureStatus.EXPIRED],
            "perSigner": [
                {
                    "id": str(r.id),
                    "signerOrder": r.signer_order,
                    "signerType": r.signer_type,
                    "name": r.signer_name,
                    "email": r.signer_email,
                    "title": r.signer_title,
                    "company": r.signer_company,
                    "status": r.status,
                    "viewedAt": iso(r.viewed_at),
                    "signedAt": iso(r.signed_at),
                    "declinedAt": iso(r.declined_at),
                    "declineReason": r.decline_reason,
                    "tokenExpiresAt": iso(r.token_expires_at),
                    "reminderSentAt": iso(r.reminder_sent_at),
                    "reminderCount": r.reminder_count,
                }
                for r in requests
            ],
        }
