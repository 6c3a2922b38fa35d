from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional, Tuple, TypeVar

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from app.core.clock import as_utc, iso, utcnow
from app.core.config import get_settings
from app.core.contract_status_graph import COLLECTING_SIGNATURES
from app.core.contract_templates import template_for
from app.core.errors import (
    AlreadyFinalized,
    Conflict,
    ContractError,
    InvalidEvidence,
    InvalidPassword,
    InvalidState,
    NotFound,
    TokenExpired,
    UpstreamGenerationFailure,
)
from app.core.snapshot import DocumentSnapshot
from app.models.audit_log import ContractAuditLogEntry
from app.models.contract import Contract
from app.models.enums import ActorType, AuditAction, ContractStatus, ContractType, SignatureMethod
from app.policies.rbac import (
    ACTION_ACTIVATE,
    ACTION_READ,
    ACTION_SEND,
    ACTION_SHARE,
    ACTION_TERMINATE,
    ACTION_VOID,
    ACTION_WRITE,
    Principal,
    require_action,
)
from app.services.audit_service import AuditActor, AuditRecorder
from app.services.contract_state_machine import (
    ContractStateMachine,
    IllegalTransition,
    SendPreconditionFailed,
)
from app.services.generation_client import GenerationClient, GenerationRequest, GenerationUnavailable
from app.services.notification_service import NotificationService, SignerNotice
from app.services.share_link_service import (
    ShareLinkExpired,
    ShareLinkService,
    ShareLinkUnknown,
    ShareNotAllowed,
    SharePasswordMismatch,
)
from app.services.signature_ledger import (
    EvidenceMismatch,
    NotCollectingSignatures,
    SignatureEvidence,
    SignatureFinalized,
    SignatureLedger,
    SignatureRequestUnknown,
    SignerSpec,
    SigningOutOfOrder,
    SignTokenExpired,
    SignTokenUnknown,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Internal failure -> public taxonomy. Nothing else crosses the facade.
ERROR_MAP: Dict[type, type] = {
    SignTokenUnknown: NotFound,
    SignatureRequestUnknown: NotFound,
    ShareLinkUnknown: NotFound,
    SignTokenExpired: TokenExpired,
    ShareLinkExpired: TokenExpired,
    SignatureFinalized: AlreadyFinalized,
    EvidenceMismatch: InvalidEvidence,
    SharePasswordMismatch: InvalidPassword,
    SigningOutOfOrder: InvalidState,
    NotCollectingSignatures: InvalidState,
    ShareNotAllowed: InvalidState,
    IllegalTransition: InvalidState,
    SendPreconditionFailed: InvalidState,
    GenerationUnavailable: UpstreamGenerationFailure,
}

_INTERNAL_ERRORS = tuple(ERROR_MAP)

# Statuses a new version may be cut from.
REVISABLE_STATUSES = frozenset(
    {
        ContractStatus.VOIDED,
        ContractStatus.EXPIRED,
        ContractStatus.SIGNED,
        ContractStatus.ACTIVE,
        ContractStatus.TERMINATED,
    }
)

# PATCH-able columns (content is handled separately).
EDITABLE_FIELDS = (
    "title",
    "total_value",
    "currency",
    "payment_terms",
    "effective_date",
    "expiration_date",
    "auto_renewal",
    "renewal_terms",
    "signature_method",
    "account_name",
)


def translate(exc: Exception) -> ContractError:
    for internal, public in ERROR_MAP.items():
        if isinstance(exc, internal):
            return public(str(exc))
    raise TypeError(f"No mapping for {type(exc).__name__}")


def user_actor(principal: Principal, context: Optional[AuditActor] = None) -> AuditActor:
    return AuditActor(
        actor_type=ActorType.USER,
        actor_id=principal.user_id,
        name=principal.display_name,
        email=principal.email,
        ip_address=context.ip_address if context else None,
        user_agent=context.user_agent if context else None,
        request_id=context.request_id if context else None,
    )


@dataclass(frozen=True)
class SignContractResult:
    success: bool
    message: str
    contract_number: str
    contract_status: ContractStatus
    signature_status: str


class ContractService:
    """
    Facade over the contract lifecycle.

    Rules:
    - Every write runs in one transaction: status + ledger rows + audit entries.
    - The contract row is loaded FOR UPDATE; a stale lock_version rolls back and
      retries up to conflict_retries, then surfaces Conflict.
    - Status is re-evaluated after every signature ledger mutation.
    - Only this layer maps internal failures to app.core.errors.
    - Emails go out after commit.
    """

    def __init__(
        self,
        *,
        audit: Optional[AuditRecorder] = None,
        state_machine: Optional[ContractStateMachine] = None,
        ledger: Optional[SignatureLedger] = None,
        shares: Optional[ShareLinkService] = None,
        generator: Optional[GenerationClient] = None,
        notifier: Optional[NotificationService] = None,
    ):
        self.audit = audit or AuditRecorder()
        self.state_machine = state_machine or ContractStateMachine(self.audit)
        self.ledger = ledger or SignatureLedger(self.audit)
        self.shares = shares or ShareLinkService(self.audit)
        self.generator = generator or GenerationClient()
        self.notifier = notifier or NotificationService()

    # ─────────────────────────────────────────────
    # TRANSACTION PLUMBING
    # ─────────────────────────────────────────────

    def _execute(
        self,
        db: Session,
        op: Callable[[], T],
        *,
        retry_on: Tuple[type, ...] = (StaleDataError,),
        commit_on: Tuple[type, ...] = (),
    ) -> T:
        """
        Runs op and commits. commit_on lists internal failures whose side
        effects (audit entries, lazy expiry, lockout counters) must persist
        even though the caller gets an error.
        """
        retries = get_settings().conflict_retries
        attempt = 0
        while True:
            try:
                result = op()
                db.commit()
                return result
            except retry_on as e:
                db.rollback()
                attempt += 1
                if attempt > retries:
                    logger.warning("contract_conflict_exhausted", extra={"attempts": attempt, "error": type(e).__name__})
                    raise Conflict("The contract was modified concurrently. Please retry.") from e
                logger.info("contract_conflict_retry", extra={"attempt": attempt, "error": type(e).__name__})
            except commit_on as e:
                db.commit()
                raise translate(e) from e
            except _INTERNAL_ERRORS as e:
                db.rollback()
                raise translate(e) from e
            except Exception:
                db.rollback()
                raise

    def _scoped(
        self,
        db: Session,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        *,
        lock: bool = False,
    ) -> Contract:
        stmt = select(Contract).where(
            Contract.id == contract_id,
            Contract.tenant_id == principal.tenant_id,
            Contract.opportunity_id == opportunity_id,
        )
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        contract = db.execute(stmt).scalar_one_or_none()
        if contract is None:
            raise NotFound("Contract not found.")
        return contract

    def _lock(self, db: Session, contract_id: uuid.UUID) -> Contract:
        contract = db.execute(
            select(Contract)
            .where(Contract.id == contract_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if contract is None:
            raise NotFound("Contract not found.")
        return contract

    def _refresh(self, db: Session, contract: Contract, actor: AuditActor) -> Contract:
        """Applies a due time-driven transition (expiry / activation) before a read."""
        if self.state_machine.due_time_transition(contract, utcnow()) is None:
            return contract

        contract_id = contract.id

        def op() -> Contract:
            locked = self._lock(db, contract_id)
            self.state_machine.refresh_time_based(db, locked, actor)
            return locked

        return self._execute(db, op)

    def _next_contract_number(self, db: Session, tenant_id: str, now: datetime) -> str:
        prefix = f"CTR-{now.year}-"
        numbers = db.execute(
            select(Contract.contract_number)
            .where(Contract.tenant_id == tenant_id, Contract.contract_number.like(f"{prefix}%"))
            .distinct()
        ).scalars().all()
        seq = max((int(n[len(prefix):]) for n in numbers if n[len(prefix):].isdigit()), default=0)
        return f"{prefix}{seq + 1:04d}"

    def _notify_signers(self, contract: Contract, notices: List[SignerNotice]) -> None:
        for notice in notices:
            if not self.notifier.notify_signer(notice):
                logger.warning(
                    "signer_notification_failed",
                    extra={"contract_id": str(contract.id), "signer_email": notice.to},
                )

    @staticmethod
    def _notice(contract: Contract, req, sender_name: Optional[str], *, reminder: bool = False) -> SignerNotice:
        return SignerNotice(
            to=req.signer_email,
            signer_name=req.signer_name,
            contract_title=contract.title,
            contract_number=contract.contract_number,
            sign_token=req.sign_token,
            token_expires_at=req.token_expires_at,
            sender_name=sender_name,
            reminder=reminder,
        )

    # ─────────────────────────────────────────────
    # AUTHENTICATED: READS
    # ─────────────────────────────────────────────

    def list_contracts(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        status: Optional[ContractStatus] = None,
        context: Optional[AuditActor] = None,
    ) -> List[Contract]:
        require_action(principal, ACTION_READ)
        actor = user_actor(principal, context)

        stmt = select(Contract).where(
            Contract.tenant_id == principal.tenant_id,
            Contract.opportunity_id == opportunity_id,
        )
        rows = db.execute(stmt).scalars().all()
        for contract in rows:
            self._refresh(db, contract, actor)

        if status is not None:
            stmt = stmt.where(Contract.status == ContractStatus(status).value)
        return list(
            db.execute(stmt.order_by(Contract.created_at.desc(), Contract.version.desc())).scalars().all()
        )

    def get_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_READ)
        contract = self._scoped(db, principal, opportunity_id, contract_id)
        return self._refresh(db, contract, user_actor(principal, context))

    def signature_status(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> Dict[str, Any]:
        require_action(principal, ACTION_READ)
        contract = self.get_contract(
            db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
        )
        summary = self.ledger.status_summary(contract)
        summary["contractId"] = str(contract.id)
        summary["contractStatus"] = contract.status
        return summary

    def audit_log(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> Tuple[List[ContractAuditLogEntry], bool]:
        require_action(principal, ACTION_READ)
        contract = self._scoped(db, principal, opportunity_id, contract_id)
        return self.audit.query(db, contract.id, limit=limit, offset=offset)

    # ─────────────────────────────────────────────
    # AUTHENTICATED: DRAFTING
    # ─────────────────────────────────────────────

    def _insert_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_type: ContractType,
        title: str,
        snapshot: DocumentSnapshot,
        fields: Dict[str, Any],
        action: AuditAction,
        actor: AuditActor,
    ) -> Contract:
        now = utcnow()
        contract = Contract(
            id=uuid.uuid4(),
            tenant_id=principal.tenant_id,
            opportunity_id=opportunity_id,
            contract_number=self._next_contract_number(db, principal.tenant_id, now),
            version=1,
            type=ContractType(contract_type).value,
            title=title,
            status=ContractStatus.DRAFT.value,
            content_json=snapshot.to_json(),
            content_hash=snapshot.content_hash(),
            currency=fields.get("currency") or "USD",
            signature_method=SignatureMethod(fields.get("signature_method") or SignatureMethod.TYPED_NAME).value,
            auto_renewal=bool(fields.get("auto_renewal") or False),
            created_by_id=principal.user_id,
            created_at=now,
            updated_at=now,
        )
        for key in (
            "sow_id",
            "estimate_id",
            "account_name",
            "total_value",
            "payment_terms",
            "effective_date",
            "expiration_date",
            "renewal_terms",
        ):
            if fields.get(key) is not None:
                setattr(contract, key, fields[key])

        db.add(contract)
        self.audit.record(
            db,
            contract,
            action,
            actor,
            metadata={
                "contractNumber": contract.contract_number,
                "type": contract.type,
                "generatedBy": snapshot.generated_by,
                "contentHash": contract.content_hash,
            },
        )
        return contract

    def create_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_type: ContractType,
        title: str,
        fields: Optional[Dict[str, Any]] = None,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_WRITE)
        actor = user_actor(principal, context)

        def op() -> Contract:
            return self._insert_contract(
                db,
                principal=principal,
                opportunity_id=opportunity_id,
                contract_type=contract_type,
                title=title,
                snapshot=DocumentSnapshot.from_template(contract_type),
                fields=fields or {},
                action=AuditAction.CREATED,
                actor=actor,
            )

        # Two creates racing for the same contract number: retry picks the next one.
        return self._execute(db, op, retry_on=(StaleDataError, IntegrityError))

    def generate_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        request: GenerationRequest,
        fields: Optional[Dict[str, Any]] = None,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        """
        Calls the generation service first; nothing is written unless it succeeds.
        """
        require_action(principal, ACTION_WRITE)
        actor = user_actor(principal, context)

        try:
            sections = self.generator.generate_sections(request)
        except GenerationUnavailable as e:
            logger.warning(
                "contract_generation_failed",
                extra={"opportunity_id": opportunity_id, "contract_type": ContractType(request.contract_type).value},
            )
            raise translate(e) from e

        snapshot = DocumentSnapshot.from_sections(request.contract_type, sections, generated_by="AI")
        display = template_for(request.contract_type).display_name
        subject = request.opportunity_name or request.account_name or f"Opportunity {opportunity_id}"
        fields = dict(fields or {})
        fields.setdefault("account_name", request.account_name)
        fields.setdefault("total_value", request.total_value)

        def op() -> Contract:
            return self._insert_contract(
                db,
                principal=principal,
                opportunity_id=opportunity_id,
                contract_type=request.contract_type,
                title=f"{display} - {subject}"[:200],
                snapshot=snapshot,
                fields=fields,
                action=AuditAction.GENERATED,
                actor=actor,
            )

        return self._execute(db, op, retry_on=(StaleDataError, IntegrityError))

    def update_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        changes: Dict[str, Any],
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_WRITE)
        actor = user_actor(principal, context)

        def op() -> Contract:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            if ContractStatus(contract.status) != ContractStatus.DRAFT:
                raise InvalidState("Only DRAFT contracts can be edited.")

            changed: List[str] = []
            for key in EDITABLE_FIELDS:
                if key not in changes:
                    continue
                value = changes[key]
                if key == "signature_method" and value is not None:
                    value = SignatureMethod(value).value
                if key in ("title", "currency", "signature_method", "auto_renewal") and value is None:
                    continue
                if getattr(contract, key) != value:
                    setattr(contract, key, value)
                    changed.append(key)

            if changes.get("content") is not None:
                snapshot = DocumentSnapshot.from_sections(
                    ContractType(contract.type), changes["content"], generated_by="MANUAL"
                )
                if snapshot.content_hash() != contract.content_hash:
                    contract.content_json = snapshot.to_json()
                    contract.content_hash = snapshot.content_hash()
                    changed.append("content")

            if not changed:
                return contract

            contract.updated_at = utcnow()
            self.audit.record(
                db,
                contract,
                AuditAction.UPDATED,
                actor,
                metadata={"fields": changed, "contentHash": contract.content_hash},
            )
            return contract

        return self._execute(db, op)

    def delete_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> None:
        require_action(principal, ACTION_WRITE)
        actor = user_actor(principal, context)

        def op() -> None:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            if ContractStatus(contract.status) != ContractStatus.DRAFT:
                raise InvalidState("Only DRAFT contracts can be deleted.")
            if contract.share_links or contract.signature_requests:
                raise InvalidState("A contract that was shared or sent cannot be deleted.")

            # Audit entries have no FK, so this one outlives the row.
            self.audit.record(
                db,
                contract,
                AuditAction.DELETED,
                actor,
                metadata={"contractNumber": contract.contract_number, "version": contract.version},
            )
            db.delete(contract)

        self._execute(db, op)

    def create_revision(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        """
        New DRAFT version of a closed-out contract: same number, version + 1,
        parent_contract_id pointing at the source. The source row is untouched.
        """
        require_action(principal, ACTION_WRITE)
        actor = user_actor(principal, context)

        def op() -> Contract:
            source = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            self.state_machine.refresh_time_based(db, source, actor)

            if ContractStatus(source.status) not in REVISABLE_STATUSES:
                raise InvalidState(f"A {source.status} contract cannot be revised.")

            newer = db.execute(
                select(Contract.id).where(
                    Contract.tenant_id == source.tenant_id,
                    Contract.contract_number == source.contract_number,
                    Contract.version > source.version,
                )
            ).first()
            if newer is not None:
                raise InvalidState("Only the latest version of a contract can be revised.")

            now = utcnow()
            revision = Contract(
                id=uuid.uuid4(),
                tenant_id=source.tenant_id,
                opportunity_id=source.opportunity_id,
                contract_number=source.contract_number,
                version=source.version + 1,
                parent_contract_id=source.id,
                type=source.type,
                title=source.title,
                status=ContractStatus.DRAFT.value,
                sow_id=source.sow_id,
                estimate_id=source.estimate_id,
                account_name=source.account_name,
                content_json=dict(source.content_json or {}),
                content_hash=source.content_hash,
                total_value=source.total_value,
                currency=source.currency,
                payment_terms=source.payment_terms,
                effective_date=source.effective_date,
                expiration_date=source.expiration_date,
                auto_renewal=source.auto_renewal,
                renewal_terms=source.renewal_terms,
                signature_method=source.signature_method,
                created_by_id=principal.user_id,
                created_at=now,
                updated_at=now,
            )
            db.add(revision)
            self.audit.record(
                db,
                revision,
                AuditAction.VERSION_CREATED,
                actor,
                metadata={
                    "parentContractId": str(source.id),
                    "parentVersion": source.version,
                    "parentStatus": source.status,
                    "version": revision.version,
                },
            )
            return revision

        return self._execute(db, op, retry_on=(StaleDataError, IntegrityError))

    # ─────────────────────────────────────────────
    # AUTHENTICATED: SHARING & SIGNING
    # ─────────────────────────────────────────────

    def create_share_link(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        expires_in_days: Optional[int] = None,
        password: Optional[str] = None,
        context: Optional[AuditActor] = None,
    ) -> Dict[str, Any]:
        require_action(principal, ACTION_SHARE)
        actor = user_actor(principal, context)

        def op() -> Dict[str, Any]:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            link = self.shares.create(db, contract, actor, expires_in_days=expires_in_days, password=password)
            return self.shares.describe(link)

        return self._execute(db, op)

    def send_for_signatures(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        signers: List[SignerSpec],
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_SEND)
        actor = user_actor(principal, context)

        def op() -> Tuple[Contract, List[SignerNotice]]:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            self.state_machine.assert_can_send(contract, len(signers))

            now = utcnow()
            requests = self.ledger.add_signers(db, contract, signers, actor, now=now)
            contract.sent_by_email = principal.email
            self.state_machine.mark_sent(db, contract, actor, now=now)

            if self.shares.active_for(contract, now) is None:
                self.shares.create(db, contract, actor, now=now)

            notices = [self._notice(contract, r, principal.display_name) for r in requests]
            return contract, notices

        contract, notices = self._execute(db, op)
        self._notify_signers(contract, notices)
        return contract

    def resend_signature_request(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        signature_request_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> Dict[str, Any]:
        require_action(principal, ACTION_SEND)
        actor = user_actor(principal, context)

        def op() -> Tuple[Contract, SignerNotice, Dict[str, Any]]:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            self.state_machine.refresh_time_based(db, contract, actor)
            req = self.ledger.resend(db, contract, signature_request_id, actor)
            result = {
                "signatureRequestId": str(req.id),
                "reminderSentAt": iso(req.reminder_sent_at),
                "reminderCount": req.reminder_count,
                "tokenExpiresAt": iso(req.token_expires_at),
            }
            return contract, self._notice(contract, req, principal.display_name, reminder=True), result

        contract, notice, result = self._execute(db, op)
        self._notify_signers(contract, [notice])
        return result

    def void_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        reason: Optional[str] = None,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_VOID)
        actor = user_actor(principal, context)

        def op() -> Contract:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            self.state_machine.refresh_time_based(db, contract, actor)
            self.state_machine.void(db, contract, actor, reason=reason)
            return contract

        return self._execute(db, op)

    def terminate_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        reason: str,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_TERMINATE)
        actor = user_actor(principal, context)

        def op() -> Contract:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            self.state_machine.refresh_time_based(db, contract, actor)
            self.state_machine.terminate(db, contract, actor, reason=reason)
            return contract

        return self._execute(db, op)

    def activate_contract(
        self,
        db: Session,
        *,
        principal: Principal,
        opportunity_id: int,
        contract_id: uuid.UUID,
        context: Optional[AuditActor] = None,
    ) -> Contract:
        require_action(principal, ACTION_ACTIVATE)
        actor = user_actor(principal, context)

        def op() -> Contract:
            contract = self._scoped(db, principal, opportunity_id, contract_id, lock=True)
            if self.state_machine.refresh_time_based(db, contract, actor) and contract.status == ContractStatus.ACTIVE.value:
                return contract
            self.state_machine.activate(db, contract, actor)
            return contract

        return self._execute(db, op)

    # ─────────────────────────────────────────────
    # ANONYMOUS: SHARE LINKS
    # ─────────────────────────────────────────────

    def view_shared_contract(self, db: Session, *, token: str, context: AuditActor) -> Dict[str, Any]:
        def op() -> Dict[str, Any]:
            contract = self._lock(db, self.shares.contract_id_for_token(db, token))
            self.state_machine.refresh_time_based(db, contract, context)
            resolution = self.shares.resolve(contract, token)
            if resolution.password_required:
                return {"passwordRequired": True}
            self.shares.record_view(db, contract, resolution.link, context)
            return public_view(contract)

        return self._execute(db, op)

    def verify_share_password(
        self,
        db: Session,
        *,
        token: str,
        password: str,
        context: AuditActor,
    ) -> Dict[str, Any]:
        def op() -> Dict[str, Any]:
            contract = self._lock(db, self.shares.contract_id_for_token(db, token))
            self.state_machine.refresh_time_based(db, contract, context)
            link = self.shares.verify_password(db, contract, token, password, context)
            self.shares.record_view(db, contract, link, context)
            return public_view(contract)

        # Failed attempts are audited and counted even though the caller gets 401.
        return self._execute(db, op, commit_on=(SharePasswordMismatch,))

    # ─────────────────────────────────────────────
    # ANONYMOUS: SIGNING
    # ─────────────────────────────────────────────

    def view_for_signing(self, db: Session, *, token: str, context: AuditActor) -> Dict[str, Any]:
        def op() -> Dict[str, Any]:
            contract = self._lock(db, self.ledger.contract_id_for_token(db, token))
            self.state_machine.refresh_time_based(db, contract, context)
            req = self.ledger.request_for_token(contract, token)
            if as_utc(req.token_expires_at) <= utcnow():
                raise SignTokenExpired("Signing token has expired.")
            self.ledger.record_view(db, contract, token, context)
            return {
                "contract": public_view(contract),
                "signer": {
                    "id": str(req.id),
                    "name": req.signer_name,
                    "email": req.signer_email,
                    "title": req.signer_title,
                    "company": req.signer_company,
                    "signerType": req.signer_type,
                    "signerOrder": req.signer_order,
                    "status": req.status,
                    "signedAt": iso(req.signed_at),
                    "tokenExpiresAt": iso(req.token_expires_at),
                },
            }

        return self._execute(db, op, commit_on=(SignTokenExpired,))

    def sign_contract(
        self,
        db: Session,
        *,
        token: str,
        evidence: SignatureEvidence,
        context: AuditActor,
    ) -> SignContractResult:
        def op() -> SignContractResult:
            contract = self._lock(db, self.ledger.contract_id_for_token(db, token))
            self.state_machine.refresh_time_based(db, contract, context)
            req = self.ledger.record_signature(db, contract, token, evidence, context)
            status = self.state_machine.reevaluate(db, contract, context)

            fully_signed = status in (ContractStatus.SIGNED, ContractStatus.ACTIVE)
            return SignContractResult(
                success=True,
                message="Contract fully signed" if fully_signed else "Signature recorded. Waiting for other parties.",
                contract_number=contract.contract_number,
                contract_status=status,
                signature_status=req.status,
            )

        result = self._execute(db, op, commit_on=(SignTokenExpired, SignatureFinalized))
        logger.info(
            "contract_signed",
            extra={"contract_number": result.contract_number, "contract_status": result.contract_status.value},
        )
        return result

    def decline_contract(
        self,
        db: Session,
        *,
        token: str,
        reason: Optional[str],
        context: AuditActor,
    ) -> SignContractResult:
        def op() -> Tuple[SignContractResult, Optional[Dict[str, Any]]]:
            contract = self._lock(db, self.ledger.contract_id_for_token(db, token))
            self.state_machine.refresh_time_based(db, contract, context)
            req = self.ledger.record_decline(db, contract, token, reason, context)
            status = self.state_machine.reevaluate(db, contract, context)

            notice = None
            if contract.sent_by_email:
                notice = {
                    "to": contract.sent_by_email,
                    "contract_title": contract.title,
                    "signer_name": req.signer_name,
                    "reason": reason,
                }
            result = SignContractResult(
                success=True,
                message="Contract declined. The sender has been notified.",
                contract_number=contract.contract_number,
                contract_status=status,
                signature_status=req.status,
            )
            return result, notice

        result, notice = self._execute(db, op, commit_on=(SignTokenExpired, SignatureFinalized))
        if notice is not None:
            self.notifier.notify_decline(**notice)
        return result


def public_view(contract: Contract) -> Dict[str, Any]:
    """What an anonymous link holder may see."""
    return {
        "passwordRequired": False,
        "contractNumber": contract.contract_number,
        "version": contract.version,
        "title": contract.title,
        "type": contract.type,
        "status": contract.status,
        "content": contract.content_json or {},
        "totalValue": str(contract.total_value) if contract.total_value is not None else None,
        "currency": contract.currency,
        "paymentTerms": contract.payment_terms,
        "effectiveDate": contract.effective_date.isoformat() if contract.effective_date else None,
        "expirationDate": contract.expiration_date.isoformat() if contract.expiration_date else None,
        "accountName": contract.account_name,
        "signatureMethod": contract.signature_method,
        "collectingSignatures": ContractStatus(contract.status) in COLLECTING_SIGNATURES,
    }
