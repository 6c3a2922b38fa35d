#app/policies/rbac.py
from __future__ import annotations
from dataclasses import dataclass
from typing import Optional, Set

from app.models.enums import ActorRole


@dataclass(frozen=True)
class Principal:
    user_id: str
    tenant_id: str
    role: ActorRole
    display_name: str
    email: Optional[str] = None


# --- Core action constants ---
ACTION_READ = "READ"
ACTION_WRITE = "WRITE"          # create / edit / delete drafts, generate, revise
ACTION_SHARE = "SHARE"
ACTION_SEND = "SEND"            # send for signature, resend reminders
ACTION_VOID = "VOID"
ACTION_TERMINATE = "TERMINATE"
ACTION_ACTIVATE = "ACTIVATE"


def allowed_actions(role: ActorRole) -> Set[str]:
    """
    Pure RBAC: which actions a role may attempt.
    """

    if role == ActorRole.ADMIN:
        return {
            ACTION_READ,
            ACTION_WRITE,
            ACTION_SHARE,
            ACTION_SEND,
            ACTION_VOID,
            ACTION_TERMINATE,
            ACTION_ACTIVATE,
        }

    if role == ActorRole.MEMBER:
        return {
            ACTION_READ,
            ACTION_WRITE,
            ACTION_SHARE,
            ACTION_SEND,
            ACTION_VOID,
            ACTION_ACTIVATE,
        }

    if role == ActorRole.VIEWER:
        return {ACTION_READ}

    return set()


def require_action(principal: Principal, action: str) -> None:
    if action not in allowed_actions(principal.role):
        raise PermissionError(
            f"Role {principal.role.value} not permitted for action {action}."
        )
