# /app/core/deps.py
from fastapi import Request

from app.models.enums import ActorType
from app.services.audit_service import AuditActor
from app.services.contract_service import ContractService

_contract_service = ContractService()


def get_contract_service() -> ContractService:
    return _contract_service


def request_context(request: Request) -> AuditActor:
    """
    Anonymous actor carrying ip / user-agent / request-id of the current call.
    Authenticated routes upgrade it to the principal inside the service.
    """
    return AuditActor(actor_type=ActorType.ANONYMOUS).with_request(request)
