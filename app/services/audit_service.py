from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, replace
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session
from starlette.requests import Request

from app.core.clock import iso, utcnow
from app.core.config import get_settings
from app.core.hashing import payload_hash
from app.models.audit_log import ContractAuditLogEntry
from app.models.contract import Contract
from app.models.enums import ActorType, AuditAction, ContractStatus

logger = logging.getLogger(__name__)

# Entries that could not be persisted land here with their full payload.
fallback_logger = logging.getLogger("app.audit.fallback")


@dataclass(frozen=True)
class AuditActor:
    """Who triggered an entry, plus the request context it came in on."""

    actor_type: ActorType
    actor_id: Optional[str] = None
    name: Optional[str] = None
    email: Optional[str] = None
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None
    request_id: Optional[str] = None

    def as_system(self) -> "AuditActor":
        # Automatic transitions keep the request context of the call that caused them.
        return replace(self, actor_type=ActorType.SYSTEM, actor_id="system", name="System", email=None)

    def with_request(self, request: Optional[Request]) -> "AuditActor":
        if request is None:
            return self
        return replace(
            self,
            ip_address=request.client.host if request.client else None,
            user_agent=(request.headers.get("user-agent") or "")[:500] or None,
            request_id=getattr(request.state, "request_id", None),
        )


def _status_value(status: Optional[ContractStatus | str]) -> Optional[str]:
    if status is None:
        return None
    return ContractStatus(status).value


class AuditRecorder:
    """
    Append-only contract audit trail.

    Rules:
    - record() writes inside the caller's transaction, under a SAVEPOINT.
    - An insert failure rolls back to the savepoint and goes to the fallback log;
      it never aborts the business transition that triggered it.
    """

    def record(
        self,
        db: Session,
        contract: Contract,
        action: AuditAction,
        actor: AuditActor,
        *,
        from_status: Optional[ContractStatus | str] = None,
        to_status: Optional[ContractStatus | str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> Optional[ContractAuditLogEntry]:
        # Pending business changes go out first so a stale-version error surfaces
        # to the caller instead of being swallowed below.
        db.flush()

        created_at = utcnow()
        meta = dict(metadata or {})
        payload = {
            "contractId": str(contract.id),
            "tenantId": contract.tenant_id,
            "action": AuditAction(action).value,
            "actorType": actor.actor_type.value,
            "actorId": actor.actor_id,
            "fromStatus": _status_value(from_status),
            "toStatus": _status_value(to_status),
            "metadata": meta,
            "createdAt": iso(created_at),
        }

        entry = ContractAuditLogEntry(
            contract_id=contract.id,
            tenant_id=contract.tenant_id,
            action=payload["action"],
            actor_type=payload["actorType"],
            actor_id=actor.actor_id,
            actor_name=actor.name,
            actor_email=actor.email,
            ip_address=actor.ip_address,
            user_agent=actor.user_agent,
            request_id=actor.request_id,
            from_status=payload["fromStatus"],
            to_status=payload["toStatus"],
            metadata_json=meta,
            payload_hash=payload_hash(payload),
            created_at=created_at,
        )

        try:
            with db.begin_nested():
                db.add(entry)
        except SQLAlchemyError:
            fallback_logger.exception(
                "audit_write_failed",
                extra={"audit_payload": payload, "request_id": actor.request_id},
            )
            return None

        return entry

    def query(
        self,
        db: Session,
        contract_id: uuid.UUID,
        *,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ContractAuditLogEntry], bool]:
        """
        Entries for one contract, oldest first.

        Returns (entries, has_more). limit falls back to the configured default
        and is capped at audit_query_max_limit.
        """
        settings = get_settings()
        if limit is None or limit <= 0:
            limit = settings.audit_query_default_limit
        limit = min(limit, settings.audit_query_max_limit)
        offset = max(offset, 0)

        rows = db.execute(
            select(ContractAuditLogEntry)
            .where(ContractAuditLogEntry.contract_id == contract_id)
            .order_by(ContractAuditLogEntry.created_at.asc(), ContractAuditLogEntry.id.asc())
            .offset(offset)
            .limit(limit + 1)
        ).scalars().all()

        has_more = len(rows) > limit
        return list(rows[:limit]), has_more
