"""roster_etl.gate

Authorization for bulk and destructive operations. Checks are pure and
synchronous and must run before the store is touched: a denied call reads
nothing, writes nothing and emits no progress.
"""

from __future__ import annotations

import logging
from enum import Enum

from roster_etl.policy import DEFAULT_POLICY, RolePolicy
from roster_etl.shared import PermissionDenied

log = logging.getLogger(__name__)


class Operation(str, Enum):
    IMPORT = "import"
    REASSIGN_ROLES = "reassign_roles"
    DEACTIVATE = "deactivate"   # logical clear: every member set Inactive
    CLEAR = "clear"             # physical clear: every document deleted


def authorize(
    caller_level: int,
    operation: Operation | str,
    policy: RolePolicy = DEFAULT_POLICY,
) -> None:
    """Raise PermissionDenied unless ``caller_level`` meets the operation's level."""
    op = Operation(operation)
    required = policy.required_level(op.value)
    if caller_level < required:
        log.warning(
            "Denied %s: caller level %s < required level %s", op.value, caller_level, required
        )
        raise PermissionDenied(op.value, caller_level, required)


class AccessGate:
    """Policy-bound authorizer passed into the pipeline."""

    def __init__(self, policy: RolePolicy = DEFAULT_POLICY) -> None:
        self.policy = policy

    def authorize(self, caller_level: int, operation: Operation | str) -> None:
        authorize(caller_level, operation, self.policy)

    def check(self, caller_level: int, operation: Operation | str) -> bool:
        try:
            authorize(caller_level, operation, self.policy)
        except PermissionDenied:
            return False
        return True

    def level_for_role(self, role: str) -> int:
        return self.policy.level_for(role)
