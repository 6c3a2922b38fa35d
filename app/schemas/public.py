from __future__ import annotations
from typing import Any, Dict, Optional
from pydantic import BaseModel, ConfigDict, Field

from app.models.enums import SignatureMethod

# Base64 data URL of a max_signature_image_bytes (512 KiB) image, with headroom.
MAX_SIGNATURE_PAYLOAD_CHARS = 1_000_000


# -----------------------
# Requests
# -----------------------


class VerifyPasswordRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    password: str = Field(..., min_length=1, max_length=128)


class SignContractRequest(BaseModel):
    """Exactly one evidence field is expected, matching the contract's signature method."""

    model_config = ConfigDict(extra="forbid")

    type: SignatureMethod
    typedName: Optional[str] = Field(default=None, max_length=200)
    drawnSignature: Optional[str] = Field(default=None, max_length=MAX_SIGNATURE_PAYLOAD_CHARS)
    uploadedSignature: Optional[str] = Field(default=None, max_length=MAX_SIGNATURE_PAYLOAD_CHARS)
    externalReference: Optional[str] = Field(default=None, max_length=1024)


class DeclineContractRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(default=None, max_length=2000)


# -----------------------
# Responses
# -----------------------


class PublicContractResponse(BaseModel):
    passwordRequired: bool
    contractNumber: Optional[str] = None
    version: Optional[int] = None
    title: Optional[str] = None
    type: Optional[str] = None
    status: Optional[str] = None
    content: Optional[Dict[str, Any]] = None
    totalValue: Optional[str] = None
    currency: Optional[str] = None
    paymentTerms: Optional[str] = None
    effectiveDate: Optional[str] = None
    expirationDate: Optional[str] = None
    accountName: Optional[str] = None
    signatureMethod: Optional[str] = None
    collectingSignatures: Optional[bool] = None


class SignerInfoResponse(BaseModel):
    id: str
    name: str
    email: str
    title: Optional[str] = None
    company: Optional[str] = None
    signerType: str
    signerOrder: int
    status: str
    signedAt: Optional[str] = None
    tokenExpiresAt: Optional[str] = None


class SigningViewResponse(BaseModel):
    contract: PublicContractResponse
    signer: SignerInfoResponse


class SignResultResponse(BaseModel):
    success: bool
    message: str
    contractNumber: str
    contractStatus: str
    signatureStatus: str
