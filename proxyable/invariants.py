"""
Invariant enforcement.

While an InvariantCapability is active, every write, delete, invocation and
construction is checked against a set of named predicates *before* it is
applied. The first failing invariant aborts the operation with an
InvariantViolationError; the target is left untouched.

A predicate receives ``(target, operation)`` and returns:

- ``True`` or ``None`` to pass,
- ``False`` to fail with a generic reason,
- a string to fail with that string as the reason.

Example:
    kernel = Kernel({"balance": 100})
    invariants = InvariantCapability(kernel.target, {
        "non_negative": range_invariant("balance", 0, float("inf")),
    })
    invariants.register(kernel)

    def withdraw():
        kernel.handle["balance"] = -50

    invariants.call(withdraw)   # raises InvariantViolationError
"""

import copy
import logging
import re
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Collection, Dict, List, Mapping, Optional, Pattern, Sequence, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import InvalidArgumentError, InvariantViolationError
from proxyable.operations import UNDECIDED, Operation, OperationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

Invariant = Callable[[Any, Operation], Union[bool, str, None]]

#: Kinds an active InvariantCapability checks
CHECKED_KINDS = (
    OperationKind.WRITE,
    OperationKind.DELETE,
    OperationKind.INVOKE,
    OperationKind.CONSTRUCT,
)


@dataclass
class InvariantReport:
    """Outcome of checking one operation against every invariant.

    Attributes:
        valid: True when no invariant failed
        errors: Failure reasons, in invariant registration order
        failed: Names of the failing invariants, parallel to ``errors``
    """
    valid: bool
    errors: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


class InvariantCapability:
    """Named, ordered set of invariants enforced inside ``call`` blocks.

    Args:
        target: The guarded target, passed to every predicate
        invariants: A mapping of name to predicate, or a sequence of
            predicates (named ``invariant_0``, ``invariant_1``, ...)
    """

    def __init__(
        self,
        target: Any,
        invariants: Union[Mapping[str, Invariant], Sequence[Invariant], None] = None,
    ):
        self.target = target
        self.context = ContextSlot("invariants")
        self._invariants: Dict[str, Invariant] = {}

        if isinstance(invariants, Mapping):
            for name, fn in invariants.items():
                self.add_invariant(name, fn)
        elif invariants is not None:
            for i, fn in enumerate(invariants):
                self.add_invariant(f"invariant_{i}", fn)

    def __repr__(self) -> str:
        return f"InvariantCapability(invariants={list(self._invariants)})"

    def add_invariant(self, name: str, invariant: Invariant) -> None:
        """Register a new invariant.

        Raises:
            InvalidArgumentError: If ``invariant`` is not callable or ``name`` is taken
        """
        if not callable(invariant):
            raise InvalidArgumentError("Invariant must be a function", parameter="invariant")
        if name in self._invariants:
            raise InvalidArgumentError(
                f'Invariant "{name}" already exists',
                parameter="name",
                suggestion="Remove the existing invariant first or pick another name.",
            )
        self._invariants[name] = invariant
        logger.debug(f"Added invariant {name!r}")

    def remove_invariant(self, name: str) -> bool:
        """Remove an invariant; returns False if it was not registered."""
        return self._invariants.pop(name, None) is not None

    def get_invariants(self) -> Dict[str, Invariant]:
        return dict(self._invariants)

    def validate(self, operation: Operation) -> InvariantReport:
        """Check ``operation`` against every invariant without raising."""
        report = InvariantReport(valid=True)
        for name, invariant in self._invariants.items():
            try:
                result = invariant(self.target, operation)
            except Exception as e:
                reason = f'Invariant "{name}" threw error: {e}'
            else:
                if result is True or result is None:
                    continue
                if result is False:
                    reason = f'Invariant "{name}" failed'
                elif isinstance(result, str):
                    reason = result
                else:
                    reason = f'Invariant "{name}" returned invalid result: {result!r}'
            report.valid = False
            report.errors.append(reason)
            report.failed.append(name)
        return report

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` with invariant enforcement active."""
        return self.context.call(self, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        return await self.context.acall(self, body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def register(self, kernel: Any) -> None:
        """Register the enforcing handler for write, delete, invoke and construct."""
        for kind in CHECKED_KINDS:
            kernel.add_handler(kind, self.enforce)

    def enforce(self, op: Operation):
        """Handler: raise InvariantViolationError if ``op`` breaks an invariant."""
        if not self.is_active():
            return UNDECIDED
        report = self.validate(op)
        if not report.valid:
            logger.debug(f"Invariant {report.failed[0]!r} rejected {op.kind.value} {op.key!r}")
            raise InvariantViolationError(
                report.errors[0],
                invariant=report.failed[0],
                kind=op.kind,
                key=op.key,
                errors=report.errors,
            )
        return UNDECIDED


def create_invariant_context(
    target: Any,
    invariants: Union[Mapping[str, Invariant], Sequence[Invariant], None] = None,
) -> InvariantCapability:
    return InvariantCapability(target, invariants)


# ============================================================================
# COMMON INVARIANT PATTERNS
# ============================================================================

def _is_write_to(op: Operation, key: Any) -> bool:
    return op.kind is OperationKind.WRITE and op.key == key


def type_invariant(key: Any, expected: Union[type, tuple]) -> Invariant:
    """Writes to ``key`` must be instances of ``expected``.

    Example:
        type_invariant("age", int)
        type_invariant("name", str)
    """
    names = expected.__name__ if isinstance(expected, type) else " or ".join(t.__name__ for t in expected)

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if _is_write_to(op, key) and not isinstance(op.value, expected):
            return f'Property "{key!s}" must be of type {names}'
        return True

    return check


def range_invariant(key: Any, minimum: float, maximum: float) -> Invariant:
    """Writes to ``key`` must be numbers within ``[minimum, maximum]``."""

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if not _is_write_to(op, key):
            return True
        value = op.value
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            return f'Property "{key!s}" must be a number'
        if value < minimum or value > maximum:
            return f'Property "{key!s}" must be between {minimum} and {maximum}'
        return True

    return check


def immutable_invariant(keys: Collection[Any]) -> Invariant:
    """``keys`` may be initialised once but never changed or deleted."""
    frozen = frozenset(keys)

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if op.key not in frozen:
            return True
        if op.kind is OperationKind.WRITE and reflect.has(target, op.key):
            return f'Property "{op.key!s}" is immutable'
        if op.kind is OperationKind.DELETE:
            return f'Property "{op.key!s}" is immutable and cannot be deleted'
        return True

    return check


def _next_state(target: Any, op: Operation) -> Any:
    state = dict(target) if reflect.is_mapping(target) else copy.copy(target)
    if op.kind is OperationKind.WRITE:
        reflect.set(state, op.key, op.value)
    elif op.kind is OperationKind.DELETE and reflect.has(state, op.key):
        reflect.delete(state, op.key)
    return state


def dependency_invariant(name: str, predicate: Callable[[Any], bool]) -> Invariant:
    """``predicate`` must hold for the state the operation would produce.

    The predicate sees a shallow copy of the target with the pending write or
    delete applied.

    Example:
        dependency_invariant("balance", lambda s: s["balance"] >= 0)
    """

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if not predicate(_next_state(target, op)):
            return f'Dependency invariant "{name}" failed'
        return True

    return check


def uniqueness_invariant(key: Any, existing: Collection[Any]) -> Invariant:
    """Writes to ``key`` must not reuse a value in ``existing`` (other than the current one).

    The caller owns ``existing`` and keeps it up to date.
    """

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if not _is_write_to(op, key):
            return True
        current = reflect.get(target, key) if reflect.has(target, key) else None
        if op.value in existing and op.value != current:
            return f'Property "{key!s}" must be unique, "{op.value}" already exists'
        return True

    return check


def required_invariant(keys: Collection[Any]) -> Invariant:
    """``keys`` can never be deleted."""
    frozen = frozenset(keys)

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if op.kind is OperationKind.DELETE and op.key in frozen:
            return f'Property "{op.key!s}" is required and cannot be deleted'
        return True

    return check


def pattern_invariant(key: Any, pattern: Union[str, Pattern], message: Optional[str] = None) -> Invariant:
    """Writes to ``key`` must be strings matching ``pattern`` (``re.search`` semantics).

    Example:
        pattern_invariant("phone", r"^\\d{3}-\\d{3}-\\d{4}$")
    """
    compiled = re.compile(pattern) if isinstance(pattern, str) else pattern

    def check(target: Any, op: Operation) -> Union[bool, str]:
        if not _is_write_to(op, key):
            return True
        if not isinstance(op.value, str):
            return f'Property "{key!s}" must be a string'
        if not compiled.search(op.value):
            return message or f'Property "{key!s}" does not match required pattern'
        return True

    return check
