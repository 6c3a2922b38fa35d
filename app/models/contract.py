#app/models/contract.py
from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.db.base import Base, JSONType
from app.models.enums import ContractStatus, SignatureMethod


class Contract(Base):
    """
    One version of a logical contract (tenant_id, contract_number).

    Versioning rule:
      - A revision is a new row with version+1 and parent_contract_id set.
      - The prior version is never deleted or rewritten.

    lock_version is the optimistic-concurrency column: every status change and
    every signature ledger mutation bumps it, so two writers that loaded the
    same version cannot both commit.
    """

    __tablename__ = "contracts"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    # Scope
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    opportunity_id: Mapped[int] = mapped_column(Integer, nullable=False)

    # Identity
    contract_number: Mapped[str] = mapped_column(String(32), nullable=False)
    version: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    parent_contract_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contracts.id", ondelete="SET NULL"),
        nullable=True,
    )

    type: Mapped[str] = mapped_column(String(32), nullable=False)
    title: Mapped[str] = mapped_column(String(200), nullable=False)
    status: Mapped[str] = mapped_column(String(32), nullable=False, default=ContractStatus.DRAFT.value)

    # Read-only references to upstream documents (not owned here)
    sow_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    estimate_id: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    account_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    # Document snapshot (sections + markdown + metadata)
    content_json: Mapped[Dict[str, Any]] = mapped_column(JSONType, nullable=False, default=dict)
    content_hash: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)

    # Commercial terms
    total_value: Mapped[Optional[Decimal]] = mapped_column(Numeric(14, 2), nullable=True)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="USD")
    payment_terms: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)
    effective_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    expiration_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    auto_renewal: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    renewal_terms: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    signature_method: Mapped[str] = mapped_column(
        String(16), nullable=False, default=SignatureMethod.TYPED_NAME.value
    )

    # Lifecycle bookkeeping
    created_by_id: Mapped[str] = mapped_column(String(128), nullable=False)
    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    sent_by_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    sent_by_email: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    activated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    voided_by_id: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    void_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    terminated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    termination_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    lock_version: Mapped[int] = mapped_column(Integer, nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    signature_requests: Mapped[List["SignatureRequest"]] = relationship(
        "SignatureRequest",
        back_populates="contract",
        order_by="SignatureRequest.signer_order",
        cascade="save-update, merge",
    )
    share_links: Mapped[List["ShareLink"]] = relationship(
        "ShareLink",
        back_populates="contract",
        order_by="ShareLink.created_at",
        cascade="save-update, merge",
    )

    __mapper_args__ = {"version_id_col": lock_version}

    __table_args__ = (
        UniqueConstraint("tenant_id", "contract_number", "version", name="uq_contract_number_version"),
        Index("ix_contracts_scope", "tenant_id", "opportunity_id"),
        Index("ix_contracts_status", "status"),
    )
