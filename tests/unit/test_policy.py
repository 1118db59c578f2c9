"""Unit tests for roster_etl.policy."""

from __future__ import annotations

import copy
import hashlib
import textwrap
from pathlib import Path

import pytest

from roster_etl.policy import (
    DEFAULT_POLICY,
    _DEFAULT_POLICY_DATA,
    build_role_policy,
    load_role_policy,
    validate_role_policy,
)
from roster_etl.shared import PolicyValidationError

PROJECT_ROOT = Path(__file__).parent.parent.parent

POLICY_YAML = textwrap.dedent("""\
    version: "2.0.0"
    admin_role: root
    role_levels:
      visitor: 0
      member: 2
      chair: 4
      root: 5
    status_roles:
      Active: member
      Inactive: member
      Unknown: visitor
    leadership_overrides:
      "100": chair
    operation_levels:
      import: 4
      reassign_roles: 4
      deactivate: 4
      clear: 5
""")


def _data(**overrides):
    data = copy.deepcopy(_DEFAULT_POLICY_DATA)
    data.update(overrides)
    return data


# ---------------------------------------------------------------------------
# DEFAULT_POLICY
# ---------------------------------------------------------------------------

class TestDefaultPolicy:
    def test_role_levels(self):
        assert DEFAULT_POLICY.level_for("guest") == 0
        assert DEFAULT_POLICY.level_for("member") == 2
        assert DEFAULT_POLICY.level_for("governor") == 4
        assert DEFAULT_POLICY.level_for("sudo_admin") == 5

    def test_unknown_role_is_lowest_level(self):
        assert DEFAULT_POLICY.level_for("pharaoh") == 0
        assert DEFAULT_POLICY.level_for("") == 0
        assert DEFAULT_POLICY.level_for(None) == 0

    def test_status_defaults(self):
        assert DEFAULT_POLICY.default_role_for_status("Active") == "member"
        assert DEFAULT_POLICY.default_role_for_status("Inactive") == "member"
        assert DEFAULT_POLICY.default_role_for_status("Unknown") == "guest"
        assert DEFAULT_POLICY.default_role_for_status("Suspended") == "guest"

    def test_operation_levels(self):
        assert DEFAULT_POLICY.required_level("import") == 4
        assert DEFAULT_POLICY.required_level("reassign_roles") == 4
        assert DEFAULT_POLICY.required_level("deactivate") == 4
        assert DEFAULT_POLICY.required_level("clear") == 5

    def test_unknown_operation_raises(self):
        with pytest.raises(PolicyValidationError, match="promote"):
            DEFAULT_POLICY.required_level("promote")

    def test_tables_are_read_only(self):
        with pytest.raises(TypeError):
            DEFAULT_POLICY.role_levels["guest"] = 5  # type: ignore[index]

    def test_clear_is_above_every_organizational_role(self):
        clear = DEFAULT_POLICY.required_level("clear")
        for role, level in DEFAULT_POLICY.role_levels.items():
            if role != DEFAULT_POLICY.admin_role:
                assert level < clear


# ---------------------------------------------------------------------------
# validate_role_policy
# ---------------------------------------------------------------------------

class TestValidateRolePolicy:
    def test_default_data_is_valid(self):
        validate_role_policy(_DEFAULT_POLICY_DATA)

    def test_not_a_mapping(self):
        with pytest.raises(PolicyValidationError, match="mapping"):
            validate_role_policy(["nope"])  # type: ignore[arg-type]

    def test_missing_key(self):
        data = _data()
        del data["operation_levels"]
        with pytest.raises(PolicyValidationError, match="operation_levels"):
            validate_role_policy(data)

    def test_level_out_of_range(self):
        data = _data(role_levels={**_DEFAULT_POLICY_DATA["role_levels"], "guest": 9})
        with pytest.raises(PolicyValidationError, match="guest"):
            validate_role_policy(data)

    def test_bool_level_rejected(self):
        data = _data(role_levels={**_DEFAULT_POLICY_DATA["role_levels"], "guest": True})
        with pytest.raises(PolicyValidationError):
            validate_role_policy(data)

    def test_status_role_must_be_known(self):
        data = _data(status_roles={"Active": "member", "Inactive": "member", "Unknown": "ghost"})
        with pytest.raises(PolicyValidationError, match="ghost"):
            validate_role_policy(data)

    def test_missing_status(self):
        data = _data(status_roles={"Active": "member", "Inactive": "member"})
        with pytest.raises(PolicyValidationError, match="Unknown"):
            validate_role_policy(data)

    def test_override_role_must_be_known(self):
        data = _data(leadership_overrides={"1": "emperor"})
        with pytest.raises(PolicyValidationError, match="emperor"):
            validate_role_policy(data)

    def test_clear_must_exceed_organizational_roles(self):
        data = _data(operation_levels={"import": 4, "reassign_roles": 4, "deactivate": 4, "clear": 4})
        with pytest.raises(PolicyValidationError, match="clear"):
            validate_role_policy(data)

    def test_clear_must_be_reachable_by_admin(self):
        levels = {**_DEFAULT_POLICY_DATA["role_levels"], "sudo_admin": 4, "governor": 3, "historian": 3}
        data = _data(role_levels=levels)
        with pytest.raises(PolicyValidationError, match="admin"):
            validate_role_policy(data)

    def test_missing_operation(self):
        data = _data(operation_levels={"import": 4, "reassign_roles": 4, "clear": 5})
        with pytest.raises(PolicyValidationError, match="deactivate"):
            validate_role_policy(data)


# ---------------------------------------------------------------------------
# load_role_policy
# ---------------------------------------------------------------------------

class TestLoadRolePolicy:
    def test_loads_and_hashes(self, tmp_path):
        path = tmp_path / "policy.yml"
        path.write_text(POLICY_YAML, encoding="utf-8")
        policy = load_role_policy(path)
        assert policy.version == "2.0.0"
        assert policy.admin_role == "root"
        assert policy.role_for("100", "Unknown") == "chair"
        assert policy.role_for("200", "Unknown") == "visitor"
        assert policy.yaml_hash == hashlib.sha256(POLICY_YAML.encode("utf-8")).hexdigest()

    def test_missing_file(self, tmp_path):
        with pytest.raises(FileNotFoundError):
            load_role_policy(tmp_path / "absent.yml")

    def test_shipped_config_is_valid(self):
        policy = load_role_policy(PROJECT_ROOT / "config" / "role_policy.yml")
        assert policy.role_for("39764", "Active") == "governor"
        assert policy.required_level("clear") == 5

    def test_hash_ignored_in_equality(self):
        a = build_role_policy(_DEFAULT_POLICY_DATA, yaml_hash="abc")
        b = build_role_policy(_DEFAULT_POLICY_DATA, yaml_hash="def")
        assert a == b
