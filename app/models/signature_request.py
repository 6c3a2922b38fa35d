#app/models/signature_request.py
from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from sqlalchemy import (
    DateTime,
    ForeignKey,
    Index,
    Integer,
    LargeBinary,
    String,
    Text,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.core.clock import utcnow
from app.db.base import Base
from app.models.enums import SignatureStatus


class SignatureRequest(Base):
    """
    One signer's progress within a contract's signing workflow.

    - sign_token is single-use for sign/decline, reusable for viewing.
    - SIGNED / DECLINED rows are never modified again.
    - Rows are never deleted: they are part of the audit trail.
    """

    __tablename__ = "contract_signature_requests"

    id: Mapped[uuid.UUID] = mapped_column(Uuid(as_uuid=True), primary_key=True, default=uuid.uuid4)

    contract_id: Mapped[uuid.UUID] = mapped_column(
        Uuid(as_uuid=True),
        ForeignKey("contracts.id", ondelete="RESTRICT"),
        nullable=False,
    )

    signer_type: Mapped[str] = mapped_column(String(32), nullable=False)
    signer_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    signer_name: Mapped[str] = mapped_column(String(200), nullable=False)
    signer_email: Mapped[str] = mapped_column(String(255), nullable=False)
    signer_title: Mapped[Optional[str]] = mapped_column(String(100), nullable=True)
    signer_company: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)

    sign_token: Mapped[str] = mapped_column(String(64), nullable=False, unique=True)
    token_expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    status: Mapped[str] = mapped_column(String(16), nullable=False, default=SignatureStatus.PENDING.value)

    # Captured evidence
    evidence_type: Mapped[Optional[str]] = mapped_column(String(16), nullable=True)
    typed_name: Mapped[Optional[str]] = mapped_column(String(200), nullable=True)
    signature_image: Mapped[Optional[bytes]] = mapped_column(LargeBinary, nullable=True)
    signature_reference: Mapped[Optional[str]] = mapped_column(String(1024), nullable=True)
    evidence_sha256: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    signed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    signer_ip: Mapped[Optional[str]] = mapped_column(String(45), nullable=True)  # IPv6 max length
    signer_user_agent: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    viewed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    declined_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    decline_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    reminder_sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    reminder_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, default=utcnow, server_default=func.now()
    )

    contract = relationship("Contract", back_populates="signature_requests")

    __table_args__ = (
        Index("ix_signature_requests_contract", "contract_id", "signer_order"),
    )
