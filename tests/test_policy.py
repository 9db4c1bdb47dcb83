"""
Tests for access policy validation and loading.

Run with: pytest tests/test_policy.py -v
"""

import json

import pytest

from proxyable import AccessPolicy, InvalidArgumentError, PolicyValidator, load_policy, validate_policy_file
from proxyable.policy import PolicyIssue, read_policy_file


@pytest.fixture
def validator():
    return PolicyValidator()


class TestPolicyValidator:
    """Tests for PolicyValidator.validate()."""

    def test_valid_policy(self, validator):
        result = validator.validate({
            "version": "1.0",
            "read": ["name", "profile_*"],
            "write": ["email"],
            "invoke": True,
        })
        assert result.valid
        assert result.errors == []

    def test_missing_version(self, validator):
        result = validator.validate({"read": ["name"]})
        assert not result.valid
        assert result.errors[0].path == "version"

    def test_unknown_version_warns(self, validator):
        result = validator.validate({"version": "2.0", "read": ["name"]})
        assert result.valid
        assert "Unknown version: 2.0" in result.warnings[0].message

    def test_unknown_section_warns(self, validator):
        result = validator.validate({"version": "1.0", "read": ["a"], "execute": True})
        assert result.valid
        assert any(m.path == "execute" for m in result.warnings)

    def test_non_dict_policy(self, validator):
        result = validator.validate(["read"])
        assert not result.valid

    def test_patterns_must_be_a_list_of_strings(self, validator):
        result = validator.validate({"version": "1.0", "read": "name", "write": [1, ""]})
        assert not result.valid
        paths = [m.path for m in result.errors]
        assert paths == ["read", "write[0]", "write[1]"]

    def test_wildcard_write_warns(self, validator):
        result = validator.validate({"version": "1.0", "read": ["*"], "delete": ["*"]})
        assert result.valid
        assert [m.path for m in result.warnings] == ["delete[0]"]

    def test_flags_must_be_booleans(self, validator):
        result = validator.validate({"version": "1.0", "invoke": "yes"})
        assert not result.valid
        assert result.errors[0].message == "invoke must be true or false"

    def test_empty_policy_warns(self, validator):
        result = validator.validate({"version": "1.0"})
        assert result.valid
        assert result.warnings == [
            PolicyIssue("", "Policy grants no permissions", "every mediated operation will be denied"),
        ]

    def test_rendering(self, validator):
        result = validator.validate({"read": ["a"]})
        assert str(result.errors[0]) == 'version: Missing required field: version (add "version": "1.0")'
        assert str(result).startswith("[ERROR] version: Missing required field")


class TestPolicyFiles:
    """Tests for reading JSON and TOML policy files."""

    def test_json_file(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text(json.dumps({"version": "1.0", "read": ["name"]}))
        assert read_policy_file(path) == {"version": "1.0", "read": ["name"]}
        assert validate_policy_file(path).valid

    def test_toml_file(self, tmp_path):
        path = tmp_path / "policy.toml"
        path.write_text('version = "1.0"\nread = ["name", "email"]\ninvoke = true\n')
        policy = load_policy(path)
        assert policy.read == ["name", "email"]
        assert policy.invoke is True

    def test_missing_file(self, tmp_path):
        result = validate_policy_file(tmp_path / "nope.json")
        assert not result.valid
        assert "File not found" in result.errors[0].message

    def test_bad_json(self, tmp_path):
        path = tmp_path / "policy.json"
        path.write_text("{not json")
        with pytest.raises(InvalidArgumentError, match="JSON parse error"):
            read_policy_file(path)

    def test_unknown_extension(self, tmp_path):
        path = tmp_path / "policy.yaml"
        path.write_text("read: [name]")
        with pytest.raises(InvalidArgumentError, match="Unknown file format"):
            read_policy_file(path)


class TestAccessPolicy:
    """Tests for AccessPolicy and load_policy()."""

    def test_load_from_dict(self):
        policy = load_policy({"version": "1.0", "read": ["name"], "write": ["email"]})
        assert policy == AccessPolicy(read=["name"], write=["email"])

    def test_load_passes_through_policy_objects(self):
        policy = AccessPolicy(read=["a"])
        assert load_policy(policy) is policy

    def test_load_rejects_invalid_policy(self):
        with pytest.raises(InvalidArgumentError) as exc_info:
            load_policy({"read": "name"})
        assert exc_info.value.message.startswith("Invalid access policy:")
        assert len(exc_info.value.context["errors"]) == 2

    def test_wildcard_matching(self):
        policy = AccessPolicy(read=["profile_*", "name"])
        assert policy.can_read("profile_photo")
        assert policy.can_read("name")
        assert not policy.can_read("Name")
        assert not policy.can_read(42)

    def test_round_trip_dict(self):
        policy = AccessPolicy(read=["a"], delete=["b"], construct=True)
        assert AccessPolicy.from_dict(policy.to_dict()) == policy
