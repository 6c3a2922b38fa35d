# app/core/contract_status_graph.py
from app.models.enums import ContractStatus

ALLOWED_STATUS_TRANSITIONS = {
    ContractStatus.DRAFT: {
        ContractStatus.PENDING_SIGNATURE,
        ContractStatus.VOIDED,
    },

    ContractStatus.PENDING_SIGNATURE: {
        ContractStatus.PARTIALLY_SIGNED,
        ContractStatus.SIGNED,
        ContractStatus.VOIDED,
        ContractStatus.EXPIRED,
    },

    ContractStatus.PARTIALLY_SIGNED: {
        ContractStatus.SIGNED,
        ContractStatus.VOIDED,
        ContractStatus.EXPIRED,
    },

    # An active agreement is terminated, never voided.
    ContractStatus.SIGNED: {
        ContractStatus.ACTIVE,
        ContractStatus.VOIDED,
    },

    ContractStatus.ACTIVE: {
        ContractStatus.TERMINATED,
    },

    ContractStatus.VOIDED: set(),
    ContractStatus.TERMINATED: set(),
    ContractStatus.EXPIRED: set(),
}

TERMINAL_STATUSES = frozenset(s for s, targets in ALLOWED_STATUS_TRANSITIONS.items() if not targets)

COLLECTING_SIGNATURES = frozenset({ContractStatus.PENDING_SIGNATURE, ContractStatus.PARTIALLY_SIGNED})


def is_allowed(current: ContractStatus | str, target: ContractStatus | str) -> bool:
    return ContractStatus(target) in ALLOWED_STATUS_TRANSITIONS[ContractStatus(current)]
