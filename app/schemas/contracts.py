from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, condecimal, constr

from app.core.clock import iso
from app.models.contract import Contract
from app.models.enums import ContractStatus, ContractType, SignatureMethod, SignerType

Money = condecimal(ge=0, max_digits=14, decimal_places=2)
CurrencyCode = constr(pattern=r"^[A-Z]{3}$")


# -----------------------
# Requests
# -----------------------


class ContractSectionIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1, max_length=64)
    title: str = Field(..., min_length=1, max_length=200)
    content: str = ""


class ContractCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ContractType
    title: str = Field(..., min_length=1, max_length=200)
    sowId: Optional[int] = None
    estimateId: Optional[int] = None
    totalValue: Optional[Money] = None
    currency: CurrencyCode = "USD"
    paymentTerms: Optional[str] = Field(default=None, max_length=500)
    effectiveDate: Optional[date] = None
    expirationDate: Optional[date] = None
    autoRenewal: bool = False
    renewalTerms: Optional[str] = None
    signatureMethod: SignatureMethod = SignatureMethod.TYPED_NAME
    accountName: Optional[str] = Field(default=None, max_length=200)

    def service_fields(self) -> Dict[str, Any]:
        return {
            "sow_id": self.sowId,
            "estimate_id": self.estimateId,
            "total_value": self.totalValue,
            "currency": self.currency,
            "payment_terms": self.paymentTerms,
            "effective_date": self.effectiveDate,
            "expiration_date": self.expirationDate,
            "auto_renewal": self.autoRenewal,
            "renewal_terms": self.renewalTerms,
            "signature_method": self.signatureMethod,
            "account_name": self.accountName,
        }


class ContractGenerateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    type: ContractType
    sowId: Optional[int] = None
    estimateId: Optional[int] = None
    opportunityName: Optional[str] = Field(default=None, max_length=200)
    opportunityDescription: Optional[str] = Field(default=None, max_length=4000)
    customInstructions: Optional[str] = Field(default=None, max_length=4000)
    companyName: Optional[str] = Field(default=None, max_length=200)
    companyAddress: Optional[str] = Field(default=None, max_length=500)
    accountName: Optional[str] = Field(default=None, max_length=200)
    totalValue: Optional[Money] = None
    signatureMethod: SignatureMethod = SignatureMethod.TYPED_NAME


UPDATE_FIELD_MAP = {
    "title": "title",
    "totalValue": "total_value",
    "currency": "currency",
    "paymentTerms": "payment_terms",
    "effectiveDate": "effective_date",
    "expirationDate": "expiration_date",
    "autoRenewal": "auto_renewal",
    "renewalTerms": "renewal_terms",
    "signatureMethod": "signature_method",
    "accountName": "account_name",
}


class ContractUpdateRequest(BaseModel):
    """Only the fields present in the body are applied."""

    model_config = ConfigDict(extra="forbid")

    title: Optional[str] = Field(default=None, min_length=1, max_length=200)
    content: Optional[List[ContractSectionIn]] = Field(default=None, min_length=1)
    totalValue: Optional[Money] = None
    currency: Optional[CurrencyCode] = None
    paymentTerms: Optional[str] = Field(default=None, max_length=500)
    effectiveDate: Optional[date] = None
    expirationDate: Optional[date] = None
    autoRenewal: Optional[bool] = None
    renewalTerms: Optional[str] = None
    signatureMethod: Optional[SignatureMethod] = None
    accountName: Optional[str] = Field(default=None, max_length=200)

    def service_changes(self) -> Dict[str, Any]:
        changes: Dict[str, Any] = {}
        for name in self.model_fields_set:
            if name == "content":
                if self.content is not None:
                    changes["content"] = [s.model_dump() for s in self.content]
                continue
            changes[UPDATE_FIELD_MAP[name]] = getattr(self, name)
        return changes


class ShareLinkCreateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    expiresInDays: Optional[int] = Field(default=None, ge=1, le=365)
    password: Optional[str] = Field(default=None, min_length=6, max_length=128)


class SignerIn(BaseModel):
    model_config = ConfigDict(extra="forbid")

    name: str = Field(..., min_length=1, max_length=200)
    email: EmailStr
    title: Optional[str] = Field(default=None, max_length=100)
    company: Optional[str] = Field(default=None, max_length=200)
    signerType: SignerType


class SendForSignaturesRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    signers: List[SignerIn] = Field(..., min_length=1, max_length=10)


class VoidRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: Optional[str] = Field(default=None, max_length=2000)


class TerminateRequest(BaseModel):
    model_config = ConfigDict(extra="forbid")

    reason: str = Field(..., min_length=1, max_length=2000)


# -----------------------
# Responses
# -----------------------


class ShareLinkResponse(BaseModel):
    token: str
    url: str
    expiresAt: str
    passwordProtected: bool


class ContractResponse(BaseModel):
    id: str
    tenantId: str
    opportunityId: int
    contractNumber: str
    version: int
    parentContractId: Optional[str] = None
    type: ContractType
    title: str
    status: ContractStatus

    content: Dict[str, Any]
    contentHash: Optional[str] = None

    sowId: Optional[int] = None
    estimateId: Optional[int] = None
    accountName: Optional[str] = None
    totalValue: Optional[Decimal] = None
    currency: str
    paymentTerms: Optional[str] = None
    effectiveDate: Optional[date] = None
    expirationDate: Optional[date] = None
    autoRenewal: bool
    renewalTerms: Optional[str] = None
    signatureMethod: SignatureMethod

    createdById: str
    sentAt: Optional[str] = None
    sentById: Optional[str] = None
    signedAt: Optional[str] = None
    activatedAt: Optional[str] = None
    voidedAt: Optional[str] = None
    voidedById: Optional[str] = None
    voidReason: Optional[str] = None
    terminatedAt: Optional[str] = None
    terminationReason: Optional[str] = None
    createdAt: str
    updatedAt: str
    lockVersion: int

    @classmethod
    def from_contract(cls, c: Contract) -> "ContractResponse":
        return cls(
            id=str(c.id),
            tenantId=c.tenant_id,
            opportunityId=c.opportunity_id,
            contractNumber=c.contract_number,
            version=c.version,
            parentContractId=str(c.parent_contract_id) if c.parent_contract_id else None,
            type=ContractType(c.type),
            title=c.title,
            status=ContractStatus(c.status),
            content=c.content_json or {},
            contentHash=c.content_hash,
            sowId=c.sow_id,
            estimateId=c.estimate_id,
            accountName=c.account_name,
            totalValue=c.total_value,
            currency=c.currency,
            paymentTerms=c.payment_terms,
            effectiveDate=c.effective_date,
            expirationDate=c.expiration_date,
            autoRenewal=c.auto_renewal,
            renewalTerms=c.renewal_terms,
            signatureMethod=SignatureMethod(c.signature_method),
            createdById=c.created_by_id,
            sentAt=iso(c.sent_at),
            sentById=c.sent_by_id,
            signedAt=iso(c.signed_at),
            activatedAt=iso(c.activated_at),
            voidedAt=iso(c.voided_at),
            voidedById=c.voided_by_id,
            voidReason=c.void_reason,
            terminatedAt=iso(c.terminated_at),
            terminationReason=c.termination_reason,
            createdAt=iso(c.created_at),
            updatedAt=iso(c.updated_at),
            lockVersion=c.lock_version,
        )


class ContractListResponse(BaseModel):
    opportunityId: int
    contracts: List[ContractResponse]


class ContractDetailResponse(ContractResponse):
    shareLink: Optional[ShareLinkResponse] = None
    signatures: List[Dict[str, Any]] = []
