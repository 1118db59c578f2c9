"""roster_etl.policy

Role and permission policy: the fixed role vocabulary, the role → security
level table, the status → default role table, per-member leadership
overrides and the minimum level for each gated operation.

The policy is an immutable value built once (``DEFAULT_POLICY`` or
``load_role_policy``) and passed into the normalizer, the access gate and
the pipeline. Nothing reads it as ambient module state.

Usage:
    from pathlib import Path
    from roster_etl.policy import load_role_policy

    policy = load_role_policy(Path("config/role_policy.yml"))
    policy.level_for("governor")          # 4
    policy.required_level("clear")        # 5
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Mapping

import yaml

from roster_etl.shared import PolicyValidationError

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

MIN_SECURITY_LEVEL = 0
MAX_SECURITY_LEVEL = 5

REQUIRED_YAML_KEYS = frozenset({
    "version",
    "admin_role",
    "role_levels",
    "status_roles",
    "operation_levels",
})

REQUIRED_STATUSES = frozenset({"Active", "Inactive", "Unknown"})

REQUIRED_OPERATIONS = frozenset({"import", "reassign_roles", "deactivate", "clear"})

_DEFAULT_POLICY_DATA: dict[str, Any] = {
    "version": "1.0.0",
    "admin_role": "sudo_admin",
    "role_levels": {
        "guest": 0,
        "candidate": 1,
        "initiate": 1,
        "member": 2,
        "assistant_governor": 3,
        "keyman": 3,
        "assistant_keyman": 3,
        "beam_man": 3,
        "governor": 4,
        "historian": 4,
        "sudo_admin": 5,
    },
    "status_roles": {
        "Active": "member",
        "Inactive": "member",
        "Unknown": "guest",
    },
    "leadership_overrides": {},
    "operation_levels": {
        "import": 4,
        "reassign_roles": 4,
        "deactivate": 4,
        "clear": 5,
    },
}


# ---------------------------------------------------------------------------
# RolePolicy dataclass
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RolePolicy:
    """Validated, read-only role/permission tables."""

    version: str
    admin_role: str
    role_levels: Mapping[str, int]
    status_roles: Mapping[str, str]
    leadership_overrides: Mapping[str, str]
    operation_levels: Mapping[str, int]
    yaml_hash: str = field(default="", compare=False)

    @property
    def roles(self) -> frozenset[str]:
        return frozenset(self.role_levels)

    def level_for(self, role: str | None) -> int:
        """Security level for ``role``; unknown or blank roles get the lowest level."""
        if not role:
            return MIN_SECURITY_LEVEL
        return self.role_levels.get(role, MIN_SECURITY_LEVEL)

    def default_role_for_status(self, status: str) -> str:
        return self.status_roles.get(status, self.status_roles["Unknown"])

    def role_for(self, membership_number: str, status: str) -> str:
        """Leadership override by membership number first, else the status default."""
        override = self.leadership_overrides.get(membership_number)
        if override:
            return override
        return self.default_role_for_status(status)

    def required_level(self, operation: str) -> int:
        try:
            return self.operation_levels[operation]
        except KeyError:
            raise PolicyValidationError(f"No level configured for operation '{operation}'.")

    def is_known_role(self, role: str) -> bool:
        return role in self.role_levels


# ---------------------------------------------------------------------------
# Loader + validator
# ---------------------------------------------------------------------------

def _is_level(value: Any) -> bool:
    return (
        isinstance(value, int)
        and not isinstance(value, bool)
        and MIN_SECURITY_LEVEL <= value <= MAX_SECURITY_LEVEL
    )


def validate_role_policy(data: Mapping[str, Any]) -> None:
    """Raise PolicyValidationError if ``data`` does not describe a usable policy.

    Validates:
      - required top-level keys present
      - every role level is an int in [0, 5]
      - status defaults and leadership overrides name known roles
      - every gated operation has a level
      - the physical clear level is strictly above every non-admin role
        and reachable by the admin role
    """
    if not isinstance(data, Mapping):
        raise PolicyValidationError("Policy root must be a mapping.")

    missing_keys = REQUIRED_YAML_KEYS - set(data.keys())
    if missing_keys:
        raise PolicyValidationError(f"Missing required policy keys: {sorted(missing_keys)}")

    role_levels = data.get("role_levels") or {}
    if not isinstance(role_levels, Mapping) or not role_levels:
        raise PolicyValidationError("'role_levels' must be a non-empty mapping.")
    for role, level in role_levels.items():
        if not _is_level(level):
            raise PolicyValidationError(
                f"Role '{role}' level {level!r} must be an integer in "
                f"[{MIN_SECURITY_LEVEL}, {MAX_SECURITY_LEVEL}]."
            )

    admin_role = data.get("admin_role")
    if admin_role not in role_levels:
        raise PolicyValidationError(f"admin_role '{admin_role}' is not a known role.")

    status_roles = data.get("status_roles") or {}
    missing_statuses = REQUIRED_STATUSES - set(status_roles.keys())
    if missing_statuses:
        raise PolicyValidationError(f"Missing status_roles entries: {sorted(missing_statuses)}")
    for status, role in status_roles.items():
        if role not in role_levels:
            raise PolicyValidationError(
                f"status_roles['{status}'] names unknown role '{role}'."
            )

    overrides = data.get("leadership_overrides") or {}
    if not isinstance(overrides, Mapping):
        raise PolicyValidationError("'leadership_overrides' must be a mapping.")
    for number, role in overrides.items():
        if not str(number).strip():
            raise PolicyValidationError("leadership_overrides contains a blank membership number.")
        if role not in role_levels:
            raise PolicyValidationError(
                f"leadership_overrides['{number}'] names unknown role '{role}'."
            )

    operation_levels = data.get("operation_levels") or {}
    missing_ops = REQUIRED_OPERATIONS - set(operation_levels.keys())
    if missing_ops:
        raise PolicyValidationError(f"Missing operation_levels entries: {sorted(missing_ops)}")
    for op, level in operation_levels.items():
        if not _is_level(level):
            raise PolicyValidationError(
                f"Operation '{op}' level {level!r} must be an integer in "
                f"[{MIN_SECURITY_LEVEL}, {MAX_SECURITY_LEVEL}]."
            )

    clear_level = operation_levels["clear"]
    organizational = [lvl for role, lvl in role_levels.items() if role != admin_role]
    if organizational and clear_level <= max(organizational):
        raise PolicyValidationError(
            f"'clear' level ({clear_level}) must be greater than every "
            f"non-admin role level (max {max(organizational)})."
        )
    if clear_level > role_levels[admin_role]:
        raise PolicyValidationError(
            f"'clear' level ({clear_level}) is above the admin role's level "
            f"({role_levels[admin_role]}); nobody could clear the store."
        )


def build_role_policy(data: Mapping[str, Any], yaml_hash: str = "") -> RolePolicy:
    """Validate ``data`` and freeze it into a RolePolicy."""
    validate_role_policy(data)
    return RolePolicy(
        version=str(data["version"]),
        admin_role=str(data["admin_role"]),
        role_levels=MappingProxyType({str(k): int(v) for k, v in data["role_levels"].items()}),
        status_roles=MappingProxyType({str(k): str(v) for k, v in data["status_roles"].items()}),
        leadership_overrides=MappingProxyType({
            str(k).strip(): str(v)
            for k, v in (data.get("leadership_overrides") or {}).items()
        }),
        operation_levels=MappingProxyType({
            str(k): int(v) for k, v in data["operation_levels"].items()
        }),
        yaml_hash=yaml_hash,
    )


def load_role_policy(yaml_path: Path) -> RolePolicy:
    """Load, validate, and return a RolePolicy from a YAML file.

    Raises:
        PolicyValidationError: If any required field is missing or invalid.
        FileNotFoundError: If the YAML file does not exist.
        yaml.YAMLError: If the file is not well-formed YAML.
    """
    raw = yaml_path.read_text(encoding="utf-8")
    data = yaml.safe_load(raw)
    yaml_hash = hashlib.sha256(raw.encode("utf-8")).hexdigest()
    return build_role_policy(data, yaml_hash=yaml_hash)


DEFAULT_POLICY = build_role_policy(_DEFAULT_POLICY_DATA)
