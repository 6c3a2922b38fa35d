from __future__ import annotations
from typing import List, Optional
from pydantic import BaseModel

from app.models.enums import ContractStatus, SignatureStatus, SignerType


class SignerStatusResponse(BaseModel):
    id: str
    signerOrder: int
    signerType: SignerType
    name: str
    email: str
    title: Optional[str] = None
    company: Optional[str] = None
    status: SignatureStatus
    viewedAt: Optional[str] = None
    signedAt: Optional[str] = None
    declinedAt: Optional[str] = None
    declineReason: Optional[str] = None
    tokenExpiresAt: Optional[str] = None
    reminderSentAt: Optional[str] = None
    reminderCount: int = 0


class SignatureStatusResponse(BaseModel):
    contractId: str
    contractStatus: ContractStatus
    total: int
    signed: int
    declined: int
    pending: int
    expired: int
    perSigner: List[SignerStatusResponse]


class ResendResponse(BaseModel):
    signatureRequestId: str
    reminderSentAt: str
    reminderCount: int
    tokenExpiresAt: str
