from __future__ import annotations
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, Field

from app.core.clock import iso
from app.models.audit_log import ContractAuditLogEntry
from app.models.enums import ActorType, AuditAction


class AuditEntryResponse(BaseModel):
    id: int
    contractId: str
    createdAtIso: str
    action: AuditAction

    actorType: ActorType
    actorId: Optional[str] = None
    actorName: Optional[str] = None
    actorEmail: Optional[str] = None
    ipAddress: Optional[str] = None
    userAgent: Optional[str] = None
    requestId: Optional[str] = None

    fromStatus: Optional[str] = None
    toStatus: Optional[str] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)
    payloadHash: str

    @classmethod
    def from_entry(cls, e: ContractAuditLogEntry) -> "AuditEntryResponse":
        return cls(
            id=e.id,
            contractId=str(e.contract_id),
            createdAtIso=iso(e.created_at),
            action=AuditAction(e.action),
            actorType=ActorType(e.actor_type),
            actorId=e.actor_id,
            actorName=e.actor_name,
            actorEmail=e.actor_email,
            ipAddress=e.ip_address,
            userAgent=e.user_agent,
            requestId=e.request_id,
            fromStatus=e.from_status,
            toStatus=e.to_status,
            metadata=e.metadata_json or {},
            payloadHash=e.payload_hash,
        )


class AuditLogResponse(BaseModel):
    contractId: str
    limit: int
    offset: int
    hasMore: bool
    entries: List[AuditEntryResponse]
