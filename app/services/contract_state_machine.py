# app/services/contract_state_machine.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.clock import as_utc, utcnow
from app.core.contract_status_graph import COLLECTING_SIGNATURES, is_allowed
from app.core.contract_templates import template_for
from app.core.snapshot import DocumentSnapshot
from app.models.contract import Contract
from app.models.enums import (
    AuditAction,
    ContractStatus,
    ContractType,
    OUTSTANDING_SIGNATURE_STATUSES,
    SignatureStatus,
)
from app.models.signature_request import SignatureRequest
from app.services.audit_service import AuditActor, AuditRecorder

logger = logging.getLogger(__name__)


class IllegalTransition(Exception):
    def __init__(self, current: ContractStatus, target: ContractStatus, detail: Optional[str] = None):
        super().__init__(detail or f"Contract cannot move from {current.value} to {target.value}.")
        self.current = current
        self.target = target


class SendPreconditionFailed(Exception):
    pass


class ContractStateMachine:
    """
    Single owner of Contract.status.

    Rules:
    - Every edge must be in ALLOWED_STATUS_TRANSITIONS.
    - Every applied transition writes exactly one audit entry carrying from/to.
    - A transition to the current status is a no-op (duplicate triggers converge).
    - reevaluate() is the only place that derives status from the signature ledger.
    """

    def __init__(self, audit: Optional[AuditRecorder] = None):
        self.audit = audit or AuditRecorder()

    # ─────────────────────────────────────────────
    # CORE
    # ─────────────────────────────────────────────

    def transition(
        self,
        db: Session,
        contract: Contract,
        target: ContractStatus,
        actor: AuditActor,
        *,
        action: AuditAction = AuditAction.STATUS_CHANGED,
        metadata: Optional[Dict[str, Any]] = None,
        now: Optional[datetime] = None,
    ) -> bool:
        now = now or utcnow()
        current = ContractStatus(contract.status)
        target = ContractStatus(target)

        if current == target:
            return False
        if not is_allowed(current, target):
            raise IllegalTransition(current, target)

        contract.status = target.value
        contract.updated_at = now

        if target == ContractStatus.SIGNED:
            contract.signed_at = now
        elif target == ContractStatus.ACTIVE:
            contract.activated_at = now
        elif target == ContractStatus.VOIDED:
            contract.voided_at = now
        elif target == ContractStatus.TERMINATED:
            contract.terminated_at = now

        self.audit.record(
            db,
            contract,
            action,
            actor,
            from_status=current,
            to_status=target,
            metadata=metadata,
        )

        logger.info(
            "contract_status_changed",
            extra={
                "contract_id": str(contract.id),
                "from_status": current.value,
                "to_status": target.value,
                "actor_type": actor.actor_type.value,
            },
        )
        return True

    # ─────────────────────────────────────────────
    # SEND
    # ─────────────────────────────────────────────

    def assert_can_send(self, contract: Contract, signer_count: int) -> None:
        current = ContractStatus(contract.status)
        if current != ContractStatus.DRAFT:
            raise IllegalTransition(current, ContractStatus.PENDING_SIGNATURE)
        if signer_count < 1:
            raise SendPreconditionFailed("At least one signer is required.")

        snapshot = DocumentSnapshot.from_json(ContractType(contract.type), contract.content_json)
        if snapshot.is_empty():
            raise SendPreconditionFailed("Contract has no content to sign.")

        if template_for(ContractType(contract.type)).requires_total and contract.total_value is None:
            raise SendPreconditionFailed(f"A total value is required for {contract.type} contracts.")

    def mark_sent(self, db: Session, contract: Contract, actor: AuditActor, *, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        contract.sent_at = now
        contract.sent_by_id = actor.actor_id
        self.transition(db, contract, ContractStatus.PENDING_SIGNATURE, actor, now=now)

    # ─────────────────────────────────────────────
    # DERIVED TRANSITIONS
    # ─────────────────────────────────────────────

    def reevaluate(
        self,
        db: Session,
        contract: Contract,
        actor: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> ContractStatus:
        """
        Re-derive status after a signature ledger mutation.

        - any decline            -> VOIDED (cites the declining signer)
        - all signed             -> SIGNED (then ACTIVE if effective date reached)
        - some signed            -> PARTIALLY_SIGNED
        """
        now = now or utcnow()
        system = actor.as_system()
        requests: List[SignatureRequest] = list(contract.signature_requests)
        current = ContractStatus(contract.status)

        if current in COLLECTING_SIGNATURES and requests:
            declined = [r for r in requests if r.status == SignatureStatus.DECLINED.value]
            signed = sum(1 for r in requests if r.status == SignatureStatus.SIGNED.value)

            if declined:
                first = declined[0]
                expire_outstanding(contract, now)
                contract.voided_at = now
                contract.voided_by_id = system.actor_id
                contract.void_reason = f"Declined by {first.signer_name}"
                self.transition(
                    db,
                    contract,
                    ContractStatus.VOIDED,
                    system,
                    action=AuditAction.VOIDED,
                    metadata={
                        "reason": "SIGNER_DECLINED",
                        "signatureRequestId": str(first.id),
                        "signerName": first.signer_name,
                        "signerEmail": first.signer_email,
                        "declineReason": first.decline_reason,
                    },
                    now=now,
                )
            elif signed == len(requests):
                self.transition(db, contract, ContractStatus.SIGNED, system, now=now)
            elif signed > 0 and current == ContractStatus.PENDING_SIGNATURE:
                self.transition(db, contract, ContractStatus.PARTIALLY_SIGNED, system, now=now)

        self.refresh_time_based(db, contract, actor, now=now)
        return ContractStatus(contract.status)

    def refresh_time_based(
        self,
        db: Session,
        contract: Contract,
        actor: AuditActor,
        *,
        now: Optional[datetime] = None,
    ) -> bool:
        """
        Lazy time-driven transitions, evaluated on read/resolve:
        - PENDING_SIGNATURE / PARTIALLY_SIGNED -> EXPIRED once every outstanding token is past expiry
        - SIGNED -> ACTIVE once effective_date is reached
        Returns True when something changed.
        """
        now = now or utcnow()
        target = self.due_time_transition(contract, now)
        if target is None:
            return False

        system = actor.as_system()
        if target == ContractStatus.EXPIRED:
            expired = expire_outstanding(contract, now)
            return self.transition(
                db,
                contract,
                ContractStatus.EXPIRED,
                system,
                metadata={"expiredSignatureRequestIds": [str(r.id) for r in expired]},
                now=now,
            )
        return self.transition(db, contract, target, system, now=now)

    def due_time_transition(self, contract: Contract, now: datetime) -> Optional[ContractStatus]:
        """Pure check: which time-driven transition, if any, is due right now."""
        current = ContractStatus(contract.status)

        if current in COLLECTING_SIGNATURES:
            outstanding = [
                r for r in contract.signature_requests
                if SignatureStatus(r.status) in OUTSTANDING_SIGNATURE_STATUSES
            ]
            if outstanding and all(as_utc(r.token_expires_at) <= now for r in outstanding):
                return ContractStatus.EXPIRED
            return None

        if current == ContractStatus.SIGNED and effective_date_reached(contract, now):
            return ContractStatus.ACTIVE

        return None

    # ─────────────────────────────────────────────
    # EXPLICIT ACTOR ACTIONS
    # ─────────────────────────────────────────────

    def void(
        self,
        db: Session,
        contract: Contract,
        actor: AuditActor,
        *,
        reason: Optional[str] = None,
        now: Optional[datetime] = None,
    ) -> None:
        now = now or utcnow()
        current = ContractStatus(contract.status)
        if not is_allowed(current, ContractStatus.VOIDED):
            raise IllegalTransition(current, ContractStatus.VOIDED)

        expired = expire_outstanding(contract, now)
        contract.voided_by_id = actor.actor_id
        contract.void_reason = reason
        self.transition(
            db,
            contract,
            ContractStatus.VOIDED,
            actor,
            action=AuditAction.VOIDED,
            metadata={"reason": reason, "expiredSignatureRequestIds": [str(r.id) for r in expired]},
            now=now,
        )

    def terminate(
        self,
        db: Session,
        contract: Contract,
        actor: AuditActor,
        *,
        reason: str,
        now: Optional[datetime] = None,
    ) -> None:
        current = ContractStatus(contract.status)
        if not is_allowed(current, ContractStatus.TERMINATED):
            raise IllegalTransition(current, ContractStatus.TERMINATED)

        contract.termination_reason = reason
        self.transition(
            db,
            contract,
            ContractStatus.TERMINATED,
            actor,
            action=AuditAction.TERMINATED,
            metadata={"reason": reason},
            now=now,
        )

    def activate(self, db: Session, contract: Contract, actor: AuditActor, *, now: Optional[datetime] = None) -> None:
        now = now or utcnow()
        current = ContractStatus(contract.status)
        if current != ContractStatus.SIGNED:
            raise IllegalTransition(current, ContractStatus.ACTIVE)
        if contract.effective_date is not None and not effective_date_reached(contract, now):
            raise IllegalTransition(
                current,
                ContractStatus.ACTIVE,
                f"Contract cannot be activated before its effective date {contract.effective_date.isoformat()}."
            )
        self.transition(db, contract, ContractStatus.ACTIVE, actor, now=now)


def effective_date_reached(contract: Contract, now: datetime) -> bool:
    return contract.effective_date is not None and contract.effective_date <= now.date()


def expire_outstanding(contract: Contract, now: datetime) -> List[SignatureRequest]:
    """Marks every PENDING / VIEWED request EXPIRED; returns the ones it touched."""
    touched = []
    for req in contract.signature_requests:
        if SignatureStatus(req.status) in OUTSTANDING_SIGNATURE_STATUSES:
            req.status = SignatureStatus.EXPIRED.value
            touched.append(req)
    if touched:
        contract.updated_at = now
    return touched
