# Overview: Explicit tenant/actor context threaded through every core call.

from __future__ import annotations

from dataclasses import dataclass

from .errors import UnauthorizedActionError
from .validation import ValidationError


ROLE_WORKER = "worker"
ROLE_MANAGER = "manager"
ROLE_ADMIN = "admin"

VALID_ROLES = {ROLE_WORKER, ROLE_MANAGER, ROLE_ADMIN}
APPROVER_ROLES = {ROLE_MANAGER, ROLE_ADMIN}


@dataclass(frozen=True)
class ActorContext:
    """
    Already-authenticated caller identity.

    The upstream auth layer owns identity; this core only authorizes the
    role-gated actions (approve/reject).
    """
    tenant_id: str
    actor_id: str
    role: str = ROLE_WORKER

    def __post_init__(self):
        if not self.tenant_id or not str(self.tenant_id).strip():
            raise ValidationError("tenant_id is required")
        if not self.actor_id or not str(self.actor_id).strip():
            raise ValidationError("actor_id is required")
        if self.role not in VALID_ROLES:
            raise ValidationError(
                f"Invalid role '{self.role}'. Must be one of: {', '.join(sorted(VALID_ROLES))}"
            )

    @property
    def can_approve(self) -> bool:
        return self.role in APPROVER_ROLES


def require_approver(ctx: ActorContext, action: str) -> None:
    if not ctx.can_approve:
        raise UnauthorizedActionError(
            f"Role '{ctx.role}' cannot {action}; manager or admin required"
        )
