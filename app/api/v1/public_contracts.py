# app/api/v1/public_contracts.py
from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from app.core.deps import get_contract_service, request_context
from app.db.session import get_db
from app.schemas.public import (
    DeclineContractRequest,
    PublicContractResponse,
    SignContractRequest,
    SigningViewResponse,
    SignResultResponse,
    VerifyPasswordRequest,
)
from app.services.audit_service import AuditActor
from app.services.contract_service import ContractService, SignContractResult
from app.services.signature_ledger import SignatureEvidence

# No bearer token here: possession of the share / sign token is the credential.
router = APIRouter(prefix="/public/contracts")


def _sign_result(result: SignContractResult) -> SignResultResponse:
    return SignResultResponse(
        success=result.success,
        message=result.message,
        contractNumber=result.contract_number,
        contractStatus=result.contract_status.value,
        signatureStatus=result.signature_status,
    )


# ─────────────────────────────────────────────────────────────
# SIGNING (declared before the share routes)
# ─────────────────────────────────────────────────────────────

@router.get("/sign/{sign_token}", response_model=SigningViewResponse)
def view_for_signing(
    sign_token: str,
    db: Session = Depends(get_db),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    return service.view_for_signing(db, token=sign_token, context=context)


@router.post("/sign/{sign_token}", response_model=SignResultResponse)
def sign_contract(
    sign_token: str,
    payload: SignContractRequest,
    db: Session = Depends(get_db),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    result = service.sign_contract(
        db,
        token=sign_token,
        evidence=SignatureEvidence(
            type=payload.type,
            typed_name=payload.typedName,
            drawn_signature=payload.drawnSignature,
            uploaded_signature=payload.uploadedSignature,
            external_reference=payload.externalReference,
        ),
        context=context,
    )
    return _sign_result(result)


@router.post("/sign/{sign_token}/decline", response_model=SignResultResponse)
def decline_contract(
    sign_token: str,
    payload: DeclineContractRequest,
    db: Session = Depends(get_db),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    result = service.decline_contract(db, token=sign_token, reason=payload.reason, context=context)
    return _sign_result(result)


# ─────────────────────────────────────────────────────────────
# SHARE LINKS
# ─────────────────────────────────────────────────────────────

@router.get("/{share_token}", response_model=PublicContractResponse, response_model_exclude_none=True)
def view_shared_contract(
    share_token: str,
    db: Session = Depends(get_db),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    return service.view_shared_contract(db, token=share_token, context=context)


@router.post("/{share_token}/verify", response_model=PublicContractResponse)
def verify_share_password(
    share_token: str,
    payload: VerifyPasswordRequest,
    db: Session = Depends(get_db),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    return service.verify_share_password(db, token=share_token, password=payload.password, context=context)
