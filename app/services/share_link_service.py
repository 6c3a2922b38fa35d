# app/services/share_link_service.py
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from sqlalchemy import select
from sqlalchemy.orm import Session

from app.core.clock import as_utc, iso, utcnow
from app.core.config import get_settings
from app.core.security import hash_password, new_share_token, verify_password
from app.models.contract import Contract
from app.models.enums import ActorType, AuditAction, ContractStatus
from app.models.share_link import ShareLink
from app.services.audit_service import AuditActor, AuditRecorder

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 6


class ShareLinkUnknown(Exception):
    pass


class ShareLinkExpired(Exception):
    pass


class SharePasswordMismatch(Exception):
    pass


class ShareNotAllowed(Exception):
    pass


@dataclass(frozen=True)
class ShareResolution:
    link: ShareLink
    password_required: bool


def anonymous_actor(context: AuditActor) -> AuditActor:
    return AuditActor(
        actor_type=ActorType.ANONYMOUS,
        ip_address=context.ip_address,
        user_agent=context.user_agent,
        request_id=context.request_id,
    )


def share_url(token: str) -> str:
    return f"{get_settings().public_base_url.rstrip('/')}/contracts/view/{token}"


class ShareLinkService:
    """
    Public read-only links.

    Rules:
    - A DRAFT contract cannot be shared.
    - Links are never deleted; only the newest link of a contract resolves.
    - Passwords are stored as bcrypt hashes and checked in constant time.
    - Repeated wrong passwords lock the link for a while.
    """

    def __init__(self, audit: Optional[AuditRecorder] = None):
        self.audit = audit or AuditRecorder()

    # ---------- helpers ----------

    def latest_for(self, contract: Contract) -> Optional[ShareLink]:
        links = list(contract.share_links)
        if not links:
            return None
        return max(links, key=lambda l: as_utc(l.created_at))

    def active_for(self, contract: Contract, now: Optional[datetime] = None) -> Optional[ShareLink]:
        now = now or utcnow()
        link = self.latest_for(contract)
        if link is None or as_utc(link.expires_at) <= now:
            return None
        return link

    def contract_id_for_token(self, db: Session, token: str) -> uuid.UUID:
        contract_id = db.execute(
            select(ShareLink.contract_id).where(ShareLink.token == token)
        ).scalar_one_or_none()
        if contract_id is None:
            raise ShareLinkUnknown("Unknown share token.")
        return contract_id

    def describe(self, link: ShareLink) -> Dict[str, Any]:
        return {
            "token": link.token,
            "url": share_url(link.token),
            "expiresAt": iso(link.expires_at),
            "passwordProtected": link.password_hash is not None,
        }

    # ---------- writes ----------

    def create(
        self,
        db: Session,
        contract: Contract,
        actor: AuditActor,
        *,
        expires_in_days: Optional[int] = None,
        password: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> ShareLink:
        settings = get_settings()
        now = now or utcnow()

        if ContractStatus(contract.status) == ContractStatus.DRAFT:
            raise ShareNotAllowed("A DRAFT contract cannot be shared.")

        days = settings.share_default_expires_days if expires_in_days is None else int(expires_in_days)
        if days < 1 or days > settings.share_max_expires_days:
            raise ValueError(f"expiresInDays must be between 1 and {settings.share_max_expires_days}.")
        if password is not None and len(password) < MIN_PASSWORD_LENGTH:
            raise ValueError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")

        link = ShareLink(
            id=uuid.uuid4(),
            contract=contract,
            token=new_share_token(),
            password_hash=hash_password(password) if password else None,
            expires_at=now + timedelta(days=days),
            viewed=False,
            failed_attempts=0,
            created_by_id=actor.actor_id,
            created_at=now,
        )
        db.add(link)
        contract.updated_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.SHARED,
            actor,
            metadata={
                "shareLinkId": str(link.id),
                "expiresAt": iso(link.expires_at),
                "passwordProtected": link.password_hash is not None,
            },
        )
        return link

    def resolve(self, contract: Contract, token: str, *, now: Optional[datetime] = None) -> ShareResolution:
        now = now or utcnow()
        link = self.latest_for(contract)
        if link is None or link.token != token:
            # Superseded links resolve like unknown ones.
            raise ShareLinkUnknown("Share link is not active.")
        if as_utc(link.expires_at) <= now:
            raise ShareLinkExpired("Share link has expired.")
        return ShareResolution(link=link, password_required=link.password_hash is not None)

    def verify_password(
        self,
        db: Session,
        contract: Contract,
        token: str,
        candidate: str,
        context: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> ShareLink:
        settings = get_settings()
        now = now or utcnow()
        link = self.resolve(contract, token, now=now).link

        if link.password_hash is None:
            return link

        locked_until = as_utc(link.locked_until)
        if locked_until is not None and locked_until > now:
            self.audit.record(
                db,
                contract,
                AuditAction.PASSWORD_VERIFY_FAILED,
                anonymous_actor(context),
                metadata={"shareLinkId": str(link.id), "locked": True},
            )
            raise SharePasswordMismatch("Share link is temporarily locked.")

        if not verify_password(candidate or "", link.password_hash):
            link.failed_attempts = (link.failed_attempts or 0) + 1
            if link.failed_attempts >= settings.share_max_failed_attempts:
                link.locked_until = now + timedelta(minutes=settings.share_lockout_minutes)
                link.failed_attempts = 0
                logger.warning(
                    "share_link_locked",
                    extra={"contract_id": str(contract.id), "share_link_id": str(link.id)},
                )
            self.audit.record(
                db,
                contract,
                AuditAction.PASSWORD_VERIFY_FAILED,
                anonymous_actor(context),
                metadata={"shareLinkId": str(link.id), "locked": link.locked_until is not None and as_utc(link.locked_until) > now},
            )
            raise SharePasswordMismatch("Invalid password.")

        link.failed_attempts = 0
        link.locked_until = None
        self.audit.record(
            db,
            contract,
            AuditAction.PASSWORD_VERIFY_SUCCEEDED,
            anonymous_actor(context),
            metadata={"shareLinkId": str(link.id)},
        )
        return link

    def record_view(
        self,
        db: Session,
        contract: Contract,
        link: ShareLink,
        context: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> None:
        """Every disclosure is audited; the viewed flag only flips once."""
        now = now or utcnow()
        first_view = not link.viewed
        if first_view:
            link.viewed = True
            link.viewed_at = now

        self.audit.record(
            db,
            contract,
            AuditAction.VIEWED_PUBLIC,
            anonymous_actor(context),
            metadata={"shareLinkId": str(link.id), "firstView": first_view},
        )
