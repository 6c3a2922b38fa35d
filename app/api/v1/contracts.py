# app/api/v1/contracts.py
from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Response
from sqlalchemy.orm import Session

from app.core.auth_deps import get_current_principal
from app.core.deps import get_contract_service, request_context
from app.db.session import get_db
from app.models.contract import Contract
from app.models.enums import ContractStatus
from app.policies.rbac import Principal
from app.schemas.audit import AuditEntryResponse, AuditLogResponse
from app.schemas.contracts import (
    ContractCreateRequest,
    ContractDetailResponse,
    ContractGenerateRequest,
    ContractListResponse,
    ContractResponse,
    ContractUpdateRequest,
    SendForSignaturesRequest,
    ShareLinkCreateRequest,
    ShareLinkResponse,
    TerminateRequest,
    VoidRequest,
)
from app.schemas.signatures import ResendResponse, SignatureStatusResponse
from app.services.audit_service import AuditActor
from app.services.contract_service import ContractService
from app.services.generation_client import GenerationRequest
from app.services.signature_ledger import SignerSpec

router = APIRouter(prefix="/opportunities/{opportunity_id}/contracts")


# ─────────────────────────────────────────────────────────────
# Helpers
# ─────────────────────────────────────────────────────────────

def _detail(service: ContractService, contract: Contract) -> ContractDetailResponse:
    base = ContractResponse.from_contract(contract)
    link = service.shares.active_for(contract)
    return ContractDetailResponse(
        **base.model_dump(),
        shareLink=ShareLinkResponse(**service.shares.describe(link)) if link else None,
        signatures=service.ledger.status_summary(contract)["perSigner"],
    )


# ─────────────────────────────────────────────────────────────
# LIST / CREATE / GENERATE
# ─────────────────────────────────────────────────────────────

@router.get("", response_model=ContractListResponse)
def list_contracts(
    opportunity_id: int,
    status: Optional[ContractStatus] = Query(default=None),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    rows = service.list_contracts(
        db, principal=principal, opportunity_id=opportunity_id, status=status, context=context
    )
    return ContractListResponse(
        opportunityId=opportunity_id,
        contracts=[ContractResponse.from_contract(c) for c in rows],
    )


@router.post("", response_model=ContractDetailResponse, status_code=201)
def create_contract(
    opportunity_id: int,
    payload: ContractCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.create_contract(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_type=payload.type,
        title=payload.title,
        fields=payload.service_fields(),
        context=context,
    )
    return _detail(service, contract)


@router.post("/generate", response_model=ContractDetailResponse, status_code=201)
def generate_contract(
    opportunity_id: int,
    payload: ContractGenerateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.generate_contract(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        request=GenerationRequest(
            contract_type=payload.type,
            opportunity_name=payload.opportunityName,
            opportunity_description=payload.opportunityDescription,
            account_name=payload.accountName,
            company_name=payload.companyName,
            company_address=payload.companyAddress,
            total_value=payload.totalValue,
            custom_instructions=payload.customInstructions,
        ),
        fields={
            "sow_id": payload.sowId,
            "estimate_id": payload.estimateId,
            "signature_method": payload.signatureMethod,
        },
        context=context,
    )
    return _detail(service, contract)


# ─────────────────────────────────────────────────────────────
# SINGLE CONTRACT
# ─────────────────────────────────────────────────────────────

@router.get("/{contract_id}", response_model=ContractDetailResponse)
def get_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.get_contract(
        db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
    )
    return _detail(service, contract)


@router.patch("/{contract_id}", response_model=ContractDetailResponse)
def update_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    payload: ContractUpdateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.update_contract(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        changes=payload.service_changes(),
        context=context,
    )
    return _detail(service, contract)


@router.delete("/{contract_id}", status_code=204)
def delete_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    service.delete_contract(
        db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
    )
    return Response(status_code=204)


# ─────────────────────────────────────────────────────────────
# SHARE / SEND
# ─────────────────────────────────────────────────────────────

@router.post("/{contract_id}/share", response_model=ShareLinkResponse, status_code=201)
def create_share_link(
    opportunity_id: int,
    contract_id: uuid.UUID,
    payload: ShareLinkCreateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    try:
        link = service.create_share_link(
            db,
            principal=principal,
            opportunity_id=opportunity_id,
            contract_id=contract_id,
            expires_in_days=payload.expiresInDays,
            password=payload.password,
            context=context,
        )
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return ShareLinkResponse(**link)


@router.post("/{contract_id}/send", response_model=ContractDetailResponse)
def send_for_signatures(
    opportunity_id: int,
    contract_id: uuid.UUID,
    payload: SendForSignaturesRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.send_for_signatures(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        signers=[
            SignerSpec(
                name=s.name,
                email=str(s.email),
                signer_type=s.signerType,
                title=s.title,
                company=s.company,
            )
            for s in payload.signers
        ],
        context=context,
    )
    return _detail(service, contract)


@router.post("/{contract_id}/signatures/{signature_id}/resend", response_model=ResendResponse)
def resend_signature_request(
    opportunity_id: int,
    contract_id: uuid.UUID,
    signature_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    return service.resend_signature_request(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        signature_request_id=signature_id,
        context=context,
    )


@router.get("/{contract_id}/signatures", response_model=SignatureStatusResponse)
def signature_status(
    opportunity_id: int,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    return service.signature_status(
        db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
    )


# ─────────────────────────────────────────────────────────────
# LIFECYCLE
# ─────────────────────────────────────────────────────────────

@router.post("/{contract_id}/void", response_model=ContractDetailResponse)
def void_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    payload: VoidRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.void_contract(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        reason=payload.reason,
        context=context,
    )
    return _detail(service, contract)


@router.post("/{contract_id}/terminate", response_model=ContractDetailResponse)
def terminate_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    payload: TerminateRequest,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.terminate_contract(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        reason=payload.reason,
        context=context,
    )
    return _detail(service, contract)


@router.post("/{contract_id}/activate", response_model=ContractDetailResponse)
def activate_contract(
    opportunity_id: int,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.activate_contract(
        db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
    )
    return _detail(service, contract)


@router.post("/{contract_id}/revise", response_model=ContractDetailResponse, status_code=201)
def create_revision(
    opportunity_id: int,
    contract_id: uuid.UUID,
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    context: AuditActor = Depends(request_context),
    service: ContractService = Depends(get_contract_service),
):
    contract = service.create_revision(
        db, principal=principal, opportunity_id=opportunity_id, contract_id=contract_id, context=context
    )
    return _detail(service, contract)


# ─────────────────────────────────────────────────────────────
# AUDIT
# ─────────────────────────────────────────────────────────────

@router.get("/{contract_id}/audit", response_model=AuditLogResponse)
def get_audit_log(
    opportunity_id: int,
    contract_id: uuid.UUID,
    limit: Optional[int] = Query(default=None, ge=1),
    offset: int = Query(default=0, ge=0),
    db: Session = Depends(get_db),
    principal: Principal = Depends(get_current_principal),
    service: ContractService = Depends(get_contract_service),
):
    entries, has_more = service.audit_log(
        db,
        principal=principal,
        opportunity_id=opportunity_id,
        contract_id=contract_id,
        limit=limit,
        offset=offset,
    )
    return AuditLogResponse(
        contractId=str(contract_id),
        limit=len(entries) if limit is None else limit,
        offset=offset,
        hasMore=has_more,
        entries=[AuditEntryResponse.from_entry(e) for e in entries],
    )
