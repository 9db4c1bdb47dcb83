"""
Capability-based access control.

Possessing an active capability context is what grants authority: inside
``acl.call(body)`` operations are checked against the granted permissions,
and outside of it every mediated operation is refused (fail-closed).

Reads, invocations and constructions are refused by raising
OperationDeniedError. Writes, deletes and existence checks are refused with a
``Deny`` decision, so a strict handle raises and the explicit kernel API
returns False. Enumeration only lists readable keys.

Example:
    kernel = Kernel({"name": "Alice", "ssn": "123-45-6789"})
    acl = AccessControlCapability(kernel.target, can_read={"name"})
    acl.register(kernel)

    acl.call(lambda: kernel.handle["name"])     # "Alice"
    acl.call(lambda: kernel.handle["ssn"])      # raises OperationDeniedError
"""

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Awaitable, Callable, Collection, Mapping, Optional, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import InvalidArgumentError, OperationDeniedError
from proxyable.operations import UNDECIDED, Deny, Operation, OperationKind, Value
from proxyable.policy import AccessPolicy, load_policy

logger = logging.getLogger(__name__)

T = TypeVar("T")

PropertyRule = Union[None, Collection[Any], Callable[[Any], bool]]
FlagRule = Union[bool, Callable[[Operation], bool]]


def _property_rule(rule: PropertyRule, name: str) -> Callable[[Any], bool]:
    if rule is None:
        return lambda key: False
    if callable(rule):
        return lambda key: bool(rule(key))
    if isinstance(rule, (str, bytes)):
        raise InvalidArgumentError(
            f"{name} must be a collection of keys or a predicate, not a string",
            parameter=name,
            suggestion=f"Use {name}={{{rule!r}}}",
        )
    allowed = frozenset(rule)
    return lambda key: key in allowed


def _flag_rule(rule: FlagRule) -> Callable[[Operation], bool]:
    if callable(rule):
        return lambda op: bool(rule(op))
    granted = bool(rule)
    return lambda op: granted


@dataclass(frozen=True)
class Permissions:
    """Normalized permission checks held in the active capability context."""
    can_read: Callable[[Any], bool]
    can_write: Callable[[Any], bool]
    can_delete: Callable[[Any], bool]
    can_invoke: Callable[[Operation], bool]
    can_construct: Callable[[Operation], bool]


class AccessControlCapability:
    """Fail-closed, possession-based access control over one target.

    Args:
        target: The mediated target (kept for reference)
        can_read: Readable keys, as a collection or a ``key -> bool`` predicate
        can_write: Writable keys, as a collection or predicate
        can_delete: Deletable keys, as a collection or predicate
        can_invoke: Whether calls are allowed, or an ``Operation -> bool`` predicate
        can_construct: Whether construction is allowed, or a predicate
    """

    def __init__(
        self,
        target: Any,
        can_read: PropertyRule = None,
        can_write: PropertyRule = None,
        can_delete: PropertyRule = None,
        can_invoke: FlagRule = False,
        can_construct: FlagRule = False,
    ):
        self.target = target
        self.permissions = Permissions(
            can_read=_property_rule(can_read, "can_read"),
            can_write=_property_rule(can_write, "can_write"),
            can_delete=_property_rule(can_delete, "can_delete"),
            can_invoke=_flag_rule(can_invoke),
            can_construct=_flag_rule(can_construct),
        )
        self.context = ContextSlot("acl")

    @classmethod
    def from_policy(
        cls,
        target: Any,
        policy: Union[str, Path, Mapping[str, Any], AccessPolicy],
    ) -> "AccessControlCapability":
        """Build a capability from an access policy document.

        Raises:
            InvalidArgumentError: If the policy cannot be loaded or is invalid
        """
        loaded = load_policy(policy)
        return cls(
            target,
            can_read=AccessPolicy.matcher(loaded.read),
            can_write=AccessPolicy.matcher(loaded.write),
            can_delete=AccessPolicy.matcher(loaded.delete),
            can_invoke=loaded.invoke,
            can_construct=loaded.construct,
        )

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` holding this capability."""
        return self.context.call(self.permissions, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        return await self.context.acall(self.permissions, body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def register(self, kernel: Any) -> None:
        register_acl_handlers(kernel, self)

    # ========================================================================
    # HANDLERS
    # ========================================================================

    def _active(self) -> Optional[Permissions]:
        return self.context.current_or_none()

    def on_read(self, op: Operation):
        perms = self._active()
        if perms is None:
            raise _denied(op, f'no capability context for reading property "{op.key!s}"')
        if not perms.can_read(op.key):
            raise _denied(op, f'no read capability for property "{op.key!s}"')
        return UNDECIDED

    def on_write(self, op: Operation):
        perms = self._active()
        if perms is None:
            return Deny(f'no capability context for writing property "{op.key!s}"')
        if not perms.can_write(op.key):
            return Deny(f'no write capability for property "{op.key!s}"')
        return UNDECIDED

    def on_has(self, op: Operation):
        perms = self._active()
        if perms is None or not perms.can_read(op.key):
            return Deny(f'no read capability for property "{op.key!s}"')
        return UNDECIDED

    def on_delete(self, op: Operation):
        perms = self._active()
        if perms is None:
            return Deny(f'no capability context for deleting property "{op.key!s}"')
        if not perms.can_delete(op.key):
            return Deny(f'no delete capability for property "{op.key!s}"')
        return UNDECIDED

    def on_enumerate(self, op: Operation):
        perms = self._active()
        if perms is None:
            return Value([])
        return Value([key for key in reflect.own_keys(op.target) if perms.can_read(key)])

    def on_describe(self, op: Operation):
        perms = self._active()
        if perms is None or not perms.can_read(op.key):
            return Value(None)
        return UNDECIDED

    def on_invoke(self, op: Operation):
        perms = self._active()
        if perms is None:
            raise _denied(op, "no capability context for invocation")
        if not perms.can_invoke(op):
            raise _denied(op, "no invoke capability")
        return UNDECIDED

    def on_construct(self, op: Operation):
        perms = self._active()
        if perms is None:
            raise _denied(op, "no capability context for construction")
        if not perms.can_construct(op):
            raise _denied(op, "no construct capability")
        return UNDECIDED


def _denied(op: Operation, reason: str) -> OperationDeniedError:
    logger.debug(f"ACL denied {op.kind.value}: {reason}")
    return OperationDeniedError(f"Access denied: {reason}", kind=op.kind, key=op.key, reason=reason)


def register_acl_handlers(kernel: Any, acl: AccessControlCapability) -> None:
    """Register the capability's handler for every operation kind on ``kernel``."""
    handlers = {
        OperationKind.READ: acl.on_read,
        OperationKind.WRITE: acl.on_write,
        OperationKind.HAS: acl.on_has,
        OperationKind.DELETE: acl.on_delete,
        OperationKind.ENUMERATE: acl.on_enumerate,
        OperationKind.DESCRIBE: acl.on_describe,
        OperationKind.INVOKE: acl.on_invoke,
        OperationKind.CONSTRUCT: acl.on_construct,
    }
    for kind, handler in handlers.items():
        kernel.add_handler(kind, handler)


def create_capability_context(target: Any, **permissions: Any) -> AccessControlCapability:
    """Shorthand for ``AccessControlCapability(target, **permissions)``."""
    return AccessControlCapability(target, **permissions)
