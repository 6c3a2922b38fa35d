# app/core/errors.py
from __future__ import annotations


class ContractError(Exception):
    """
    Base of the error taxonomy surfaced by the contract service facade.

    kind        stable machine-readable name returned to authenticated callers
    http_status status code used by the API layer
    retryable   whether repeating the same request may succeed
    public_message terse text shown to anonymous token holders
    """

    kind = "ContractError"
    http_status = 400
    retryable = False
    public_message = "Link invalid or expired."

    def __init__(self, message: str | None = None):
        super().__init__(message or self.kind)
        self.message = message or self.kind


class NotFound(ContractError):
    kind = "NotFound"
    http_status = 404


class InvalidState(ContractError):
    kind = "InvalidState"
    http_status = 409
    public_message = "This contract is no longer available for this action."


class TokenExpired(ContractError):
    kind = "TokenExpired"
    http_status = 410


class AlreadyFinalized(ContractError):
    kind = "AlreadyFinalized"
    http_status = 409
    public_message = "This signature request is no longer open."


class InvalidEvidence(ContractError):
    kind = "InvalidEvidence"
    http_status = 422
    public_message = "Signature data is not valid for this contract."


class InvalidPassword(ContractError):
    kind = "InvalidPassword"
    http_status = 401
    public_message = "Invalid password."


class UpstreamGenerationFailure(ContractError):
    kind = "UpstreamGenerationFailure"
    http_status = 502
    retryable = True


class Conflict(ContractError):
    kind = "Conflict"
    http_status = 409
    retryable = True
    public_message = "Please try again."
