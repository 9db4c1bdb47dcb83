"""
Operation payloads and handler decisions.

An Operation describes one mediated action against the wrapped target. Handlers
receive it, never mutate it, and answer with a Decision:

- ``UNDECIDED``       defer to the next handler (or the default behaviour)
- ``Value(v)``        short-circuit a read/enumerate/describe/invoke/construct with ``v``
- ``ALLOW``           let a write/has/delete continue down the chain
- ``Deny(reason)``    stop a write/has/delete; the outcome is ``False``
- ``Throw(error)``    abort any operation by raising ``error``
- ``Extend(keys)``    contribute extra keys to an enumeration and continue

A handler that returns ``None`` is treated as ``UNDECIDED``.
"""

from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Callable, Iterable, Mapping, Optional, Tuple, Union


# ============================================================================
# OPERATION KINDS
# ============================================================================

class OperationKind(str, Enum):
    """Kinds of operation the kernel mediates."""
    READ = "read"
    WRITE = "write"
    HAS = "has"
    DELETE = "delete"
    ENUMERATE = "enumerate"
    DESCRIBE = "describe"
    INVOKE = "invoke"
    CONSTRUCT = "construct"

    def __str__(self) -> str:
        return self.value

    @property
    def is_boolean_gated(self) -> bool:
        """True for kinds whose outcome is an allow/deny boolean."""
        return self in BOOLEAN_KINDS

    @property
    def is_property_scoped(self) -> bool:
        """True for kinds that carry a property key."""
        return self in PROPERTY_KINDS


BOOLEAN_KINDS = frozenset({OperationKind.WRITE, OperationKind.HAS, OperationKind.DELETE})
VALUE_KINDS = frozenset({
    OperationKind.READ,
    OperationKind.ENUMERATE,
    OperationKind.DESCRIBE,
    OperationKind.INVOKE,
    OperationKind.CONSTRUCT,
})
PROPERTY_KINDS = frozenset({
    OperationKind.READ,
    OperationKind.WRITE,
    OperationKind.HAS,
    OperationKind.DELETE,
    OperationKind.DESCRIBE,
})


# ============================================================================
# OPERATION
# ============================================================================

@dataclass(frozen=True)
class Operation:
    """One mediated action.

    Attributes:
        kind: Which operation is being performed
        target: The raw wrapped object (referenced, never copied)
        handle: The mediated handle the caller used
        key: Property key for property-scoped kinds
        value: Value being written (write only)
        args: Positional arguments (invoke/construct)
        kwargs: Keyword arguments (invoke/construct), as a read-only mapping
    """
    kind: OperationKind
    target: Any = field(repr=False)
    handle: Any = field(default=None, repr=False)
    key: Any = None
    value: Any = None
    args: Tuple[Any, ...] = ()
    kwargs: Mapping[str, Any] = field(default_factory=dict)

    def __post_init__(self):
        object.__setattr__(self, "args", tuple(self.args))
        object.__setattr__(self, "kwargs", MappingProxyType(dict(self.kwargs)))

    @property
    def construction_target(self) -> Any:
        """The class being instantiated, for construct operations."""
        return self.target if self.kind is OperationKind.CONSTRUCT else None


# ============================================================================
# DECISIONS
# ============================================================================

class Decision:
    """Base class of every handler decision."""

    __slots__ = ()


class Undecided(Decision):
    """Defer to the next handler."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "UNDECIDED"


class Allow(Decision):
    """Let a boolean-gated operation continue."""

    __slots__ = ()

    def __repr__(self) -> str:
        return "ALLOW"


@dataclass(frozen=True)
class Value(Decision):
    """Short-circuit with ``value`` as the operation's result."""
    value: Any


@dataclass(frozen=True)
class Deny(Decision):
    """Stop a boolean-gated operation; the outcome becomes False."""
    reason: Optional[str] = None


@dataclass(frozen=True)
class Throw(Decision):
    """Abort the chain by raising ``error``."""
    error: BaseException


@dataclass(frozen=True)
class Extend(Decision):
    """Contribute extra keys to an enumeration without short-circuiting."""
    keys: Tuple[Any, ...]

    def __init__(self, keys: Iterable[Any]):
        object.__setattr__(self, "keys", tuple(keys))


UNDECIDED = Undecided()
ALLOW = Allow()
DENY = Deny()

Handler = Callable[[Operation], Union[Decision, None]]
