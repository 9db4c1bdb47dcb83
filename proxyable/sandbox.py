"""
Sandboxing for untrusted code.

Inside ``sandbox.call(body)`` restricted keys are invisible and unusable and
restricted operation kinds are refused. Deletion and construction are off
unless the policy turns them on. Outside ``call`` the sandbox defers, so
trusted code keeps full access through the same handle.

Reads, descriptor lookups, invocations and constructions are refused by
raising SandboxViolationError. Writes, deletes and existence checks are
refused with a ``Deny`` decision. Enumeration lists only unrestricted keys.

Example:
    kernel = Kernel({"name": "Alice", "api_key": "secret"})
    sandbox = create_sandbox_context(kernel.target, restricted_keys={"api_key"})
    sandbox.register(kernel)

    sandbox.call(lambda: keys(kernel.handle))        # ["name"]
    sandbox.call(lambda: kernel.handle["api_key"])   # raises SandboxViolationError
    kernel.handle["api_key"]                         # "secret"
"""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Collection, Mapping, Optional, TypeVar, Union

from proxyable import reflect
from proxyable.acl import FlagRule, PropertyRule, _flag_rule, _property_rule
from proxyable.context import ContextSlot
from proxyable.exceptions import SandboxViolationError
from proxyable.kernel import _coerce_kind
from proxyable.operations import UNDECIDED, Deny, Operation, OperationKind, Value

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class SandboxPolicy:
    """What sandboxed code may do.

    Attributes:
        restricted_keys: Keys sandboxed code may not touch, as a collection or
            a ``key -> bool`` predicate
        restricted_operations: Operation kinds (or their names) refused outright
        allow_construction: Whether construction is allowed, or an
            ``Operation -> bool`` predicate
        allow_enumeration: False makes every enumeration empty
        allow_delete: Whether unrestricted keys may be deleted
        allow_invoke: Whether calls are allowed, or a predicate
    """
    restricted_keys: PropertyRule = frozenset()
    restricted_operations: Collection[Union[OperationKind, str]] = frozenset()
    allow_construction: FlagRule = False
    allow_enumeration: bool = True
    allow_delete: bool = False
    allow_invoke: FlagRule = True

    def __post_init__(self):
        # Unknown kind names raise InvalidArgumentError here, not on first use.
        kinds = frozenset(_coerce_kind(kind) for kind in self.restricted_operations)
        object.__setattr__(self, "restricted_operations", kinds)
        object.__setattr__(self, "_key_check", _property_rule(self.restricted_keys, "restricted_keys"))

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "SandboxPolicy":
        """Build a policy from a mapping plus keyword overrides; unknown keys are ignored."""
        merged = dict(options or {})
        merged.update(overrides)
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in merged.items() if k in known and v is not None})

    def is_restricted(self, key: Any) -> bool:
        return self._key_check(key)

    def restricts(self, kind: OperationKind) -> bool:
        return kind in self.restricted_operations

    def allows_invoke(self, op: Operation) -> bool:
        return _flag_rule(self.allow_invoke)(op)

    def allows_construction(self, op: Operation) -> bool:
        return _flag_rule(self.allow_construction)(op)


class SandboxCapability:
    """Restricts what code running inside ``call`` can reach.

    Args:
        target: The mediated target (kept for reference)
        policy: A SandboxPolicy or a mapping of its fields
        **overrides: Individual policy fields
    """

    def __init__(self, target: Any, policy: Union[None, SandboxPolicy, Mapping[str, Any]] = None, **overrides: Any):
        self.target = target
        if isinstance(policy, SandboxPolicy):
            self.policy = dataclasses.replace(policy, **overrides)
        else:
            self.policy = SandboxPolicy.from_mapping(policy, **overrides)
        self.context = ContextSlot("sandbox")

    def __repr__(self) -> str:
        return f"SandboxCapability(active={self.is_active()})"

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` inside the sandbox."""
        return self.context.call(self, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        return await self.context.acall(self, body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def register(self, kernel: Any) -> None:
        register_sandbox_handlers(kernel, self)

    def is_restricted(self, key: Any) -> bool:
        return self.policy.is_restricted(key)

    def get_policy(self) -> SandboxPolicy:
        return self.policy

    def update_policy(self, changes: Optional[Mapping[str, Any]] = None, **overrides: Any) -> None:
        """Replace individual policy fields; takes effect immediately, also inside an active ``call``."""
        merged = dict(changes or {})
        merged.update(overrides)
        known = {f.name for f in dataclasses.fields(SandboxPolicy)}
        self.policy = dataclasses.replace(self.policy, **{k: v for k, v in merged.items() if k in known})
        logger.debug(f"Updated sandbox policy: {sorted(merged)}")

    # ========================================================================
    # HANDLERS
    # ========================================================================

    def _refused(self, op: Operation) -> bool:
        return self.policy.restricts(op.kind) or (op.kind.is_property_scoped and self.is_restricted(op.key))

    def on_read(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self.policy.restricts(op.kind):
            raise _violation(op, f'read operation is restricted for property "{op.key!s}"')
        if self.is_restricted(op.key):
            raise _violation(op, f'property "{op.key!s}" is restricted')
        return UNDECIDED

    def on_write(self, op: Operation):
        if self.is_active() and self._refused(op):
            return Deny(f'sandbox refuses writing property "{op.key!s}"')
        return UNDECIDED

    def on_has(self, op: Operation):
        if self.is_active() and self._refused(op):
            return Deny(f'property "{op.key!s}" is hidden by the sandbox')
        return UNDECIDED

    def on_delete(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self._refused(op) or not self.policy.allow_delete:
            return Deny(f'sandbox refuses deleting property "{op.key!s}"')
        return UNDECIDED

    def on_enumerate(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self.policy.restricts(op.kind) or not self.policy.allow_enumeration:
            return Value([])
        return Value([key for key in reflect.own_keys(op.target) if not self.is_restricted(key)])

    def on_describe(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self.policy.restricts(op.kind):
            raise _violation(op, "describe operation is restricted")
        if self.is_restricted(op.key):
            raise _violation(op, f'descriptor access denied for restricted property "{op.key!s}"')
        return UNDECIDED

    def on_invoke(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self.policy.restricts(op.kind):
            raise _violation(op, "invoke operation is restricted")
        if not self.policy.allows_invoke(op):
            raise _violation(op, "function application is not allowed")
        return UNDECIDED

    def on_construct(self, op: Operation):
        if not self.is_active():
            return UNDECIDED
        if self.policy.restricts(op.kind):
            raise _violation(op, "construct operation is restricted")
        if not self.policy.allows_construction(op):
            raise _violation(op, "construction is not allowed")
        return UNDECIDED


def _violation(op: Operation, reason: str) -> SandboxViolationError:
    logger.debug(f"Sandbox refused {op.kind.value}: {reason}")
    return SandboxViolationError(reason, kind=op.kind, key=op.key)


def register_sandbox_handlers(kernel: Any, sandbox: SandboxCapability) -> None:
    """Register the sandbox's handler for every operation kind on ``kernel``."""
    for kind in OperationKind:
        kernel.add_handler(kind, getattr(sandbox, f"on_{kind.value}"))


def create_sandbox_context(target: Any, policy: Optional[Mapping[str, Any]] = None, **overrides: Any) -> SandboxCapability:
    """Shorthand for ``SandboxCapability(target, policy, **overrides)``."""
    return SandboxCapability(target, policy, **overrides)
