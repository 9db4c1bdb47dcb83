"""
Access policy documents.

An access policy is a small JSON or TOML document describing which properties
of a mediated object may be read, written and deleted, and whether it may be
invoked or constructed:

    {
        "version": "1.0",
        "read": ["name", "email", "profile_*"],
        "write": ["email"],
        "delete": [],
        "invoke": false,
        "construct": false
    }

Property patterns use shell-style wildcards (``fnmatch``). This module
validates such documents and turns them into an AccessPolicy that
``AccessControlCapability.from_policy`` consumes.

Example:
    validator = PolicyValidator()
    result = validator.validate_file("policy.json")
    if not result.valid:
        for msg in result.errors:
            print(f"  - {msg}")
"""

import json
import logging
from dataclasses import dataclass, field
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Any, Callable, Dict, List, Mapping, Union

from proxyable.exceptions import InvalidArgumentError

logger = logging.getLogger(__name__)


# ============================================================================
# Policy Schema and Constants
# ============================================================================

POLICY_VERSION = "1.0"

# Valid top-level sections in a policy
VALID_SECTIONS = {"version", "read", "write", "delete", "invoke", "construct"}

# Sections holding property patterns
PATTERN_SECTIONS = ("read", "write", "delete")

# Sections holding a single permission flag
FLAG_SECTIONS = ("invoke", "construct")


# ============================================================================
# Validation Results
# ============================================================================

@dataclass(frozen=True)
class PolicyIssue:
    """One problem found in a policy document.

    Attributes:
        path: Where in the document, e.g. ``"write[0]"`` (empty for the whole document)
        message: What is wrong
        suggestion: How to fix it, if there is an obvious fix
    """
    path: str
    message: str
    suggestion: str = ""

    def __str__(self) -> str:
        text = f"{self.path}: {self.message}" if self.path else self.message
        if self.suggestion:
            text += f" ({self.suggestion})"
        return text


@dataclass
class ValidationResult:
    """Errors make a policy unusable; warnings are logged when it is loaded."""
    errors: List[PolicyIssue] = field(default_factory=list)
    warnings: List[PolicyIssue] = field(default_factory=list)

    @property
    def valid(self) -> bool:
        return not self.errors

    def error(self, message: str, path: str = "", suggestion: str = "") -> None:
        self.errors.append(PolicyIssue(path, message, suggestion))

    def warn(self, message: str, path: str = "", suggestion: str = "") -> None:
        self.warnings.append(PolicyIssue(path, message, suggestion))

    def __str__(self) -> str:
        lines = [f"[ERROR] {issue}" for issue in self.errors]
        lines += [f"[WARN] {issue}" for issue in self.warnings]
        return "\n".join(lines)


@dataclass
class AccessPolicy:
    """A validated access policy.

    Attributes:
        read: Patterns of readable properties
        write: Patterns of writable properties
        delete: Patterns of deletable properties
        invoke: Whether the target may be called
        construct: Whether the target may be instantiated
    """
    read: List[str] = field(default_factory=list)
    write: List[str] = field(default_factory=list)
    delete: List[str] = field(default_factory=list)
    invoke: bool = False
    construct: bool = False

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> "AccessPolicy":
        return cls(
            read=list(data.get("read", [])),
            write=list(data.get("write", [])),
            delete=list(data.get("delete", [])),
            invoke=bool(data.get("invoke", False)),
            construct=bool(data.get("construct", False)),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "version": POLICY_VERSION,
            "read": list(self.read),
            "write": list(self.write),
            "delete": list(self.delete),
            "invoke": self.invoke,
            "construct": self.construct,
        }

    @staticmethod
    def matcher(patterns: List[str]) -> Callable[[Any], bool]:
        """Build a ``key -> bool`` predicate from property patterns."""
        frozen = tuple(patterns)

        def matches(key: Any) -> bool:
            return isinstance(key, str) and any(fnmatchcase(key, p) for p in frozen)

        return matches

    def can_read(self, key: Any) -> bool:
        return self.matcher(self.read)(key)

    def can_write(self, key: Any) -> bool:
        return self.matcher(self.write)(key)

    def can_delete(self, key: Any) -> bool:
        return self.matcher(self.delete)(key)


# ============================================================================
# PolicyValidator Class
# ============================================================================

class PolicyValidator:
    """Checks policy documents before they become an AccessPolicy.

    Structural problems (missing version, wrong types, empty patterns) are
    errors. Rules that are legal but probably unintended, such as a ``*``
    write pattern or a policy that grants nothing, are warnings.

    Example:
        result = PolicyValidator().validate({"version": "1.0", "write": ["*"]})
        print(result)   # [WARN] write[0]: Wildcard write access is dangerous (...)
    """

    def validate_file(self, path: Union[str, Path]) -> ValidationResult:
        """Validate a JSON or TOML file; unreadable files yield a single error."""
        try:
            data = read_policy_file(path)
        except InvalidArgumentError as e:
            result = ValidationResult()
            result.error(e.message, suggestion=e.suggestion or "")
            return result
        return self.validate(data)

    def validate(self, policy: Any) -> ValidationResult:
        result = ValidationResult()
        if not isinstance(policy, dict):
            result.error("Policy must be a JSON object/dictionary")
            return result

        if "version" not in policy:
            result.error("Missing required field: version", "version", f'add "version": "{POLICY_VERSION}"')
        elif policy["version"] != POLICY_VERSION:
            result.warn(f"Unknown version: {policy['version']}", "version", f"expected {POLICY_VERSION}")

        for key in policy:
            if key not in VALID_SECTIONS:
                result.warn(f"Unknown section: {key}", key, f"valid sections: {', '.join(sorted(VALID_SECTIONS))}")

        for section in PATTERN_SECTIONS:
            if section in policy:
                self._check_patterns(section, policy[section], result)
        for section in FLAG_SECTIONS:
            if section in policy and not isinstance(policy[section], bool):
                result.error(f"{section} must be true or false", section)

        if not any(policy.get(section) for section in PATTERN_SECTIONS + FLAG_SECTIONS):
            result.warn("Policy grants no permissions", suggestion="every mediated operation will be denied")
        return result

    def _check_patterns(self, section: str, patterns: Any, result: ValidationResult) -> None:
        if not isinstance(patterns, list):
            result.error(f"{section} must be an array", section)
            return
        for i, pattern in enumerate(patterns):
            path = f"{section}[{i}]"
            if not isinstance(pattern, str):
                result.error("Property pattern must be a string", path)
            elif not pattern:
                result.error("Property pattern must not be empty", path)
            elif pattern == "*" and section != "read":
                result.warn(f"Wildcard {section} access is dangerous", path, "list the properties to allow")


# ============================================================================
# Loading
# ============================================================================

def read_policy_file(path: Union[str, Path]) -> Dict[str, Any]:
    """Parse a JSON or TOML policy file without validating it.

    Raises:
        InvalidArgumentError: Missing file, unknown extension or parse error
    """
    path = Path(path)
    if not path.exists():
        raise InvalidArgumentError(f"File not found: {path}", parameter="path")

    suffix = path.suffix.lower()
    if suffix == ".json":
        try:
            with open(path, "r") as f:
                return json.load(f)
        except json.JSONDecodeError as e:
            raise InvalidArgumentError(f"JSON parse error: {e}", parameter="path") from e
    if suffix == ".toml":
        try:
            import tomllib
        except ImportError:
            import tomli as tomllib
        try:
            with open(path, "rb") as f:
                return tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise InvalidArgumentError(f"TOML parse error: {e}", parameter="path") from e

    raise InvalidArgumentError(
        f"Unknown file format: {suffix}",
        parameter="path",
        suggestion="Use .json or .toml file extension",
    )


def load_policy(source: Union[str, Path, Mapping[str, Any], AccessPolicy]) -> AccessPolicy:
    """
    Load and validate an access policy.

    Args:
        source: An AccessPolicy, a policy dict, or a path to a JSON/TOML file

    Returns:
        The validated AccessPolicy

    Raises:
        InvalidArgumentError: If the document cannot be read or has errors
    """
    if isinstance(source, AccessPolicy):
        return source

    data = dict(source) if isinstance(source, Mapping) else read_policy_file(source)
    result = PolicyValidator().validate(data)
    for issue in result.warnings:
        logger.warning(f"Policy: {issue}")
    if not result.valid:
        details = "; ".join(str(issue) for issue in result.errors)
        raise InvalidArgumentError(
            f"Invalid access policy: {details}",
            parameter="policy",
            context={"errors": [issue.message for issue in result.errors]},
        )
    return AccessPolicy.from_dict(data)


def validate_policy_file(path: Union[str, Path]) -> ValidationResult:
    """Convenience wrapper around PolicyValidator().validate_file()."""
    return PolicyValidator().validate_file(path)
