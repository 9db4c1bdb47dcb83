"""
The interception kernel.

A Kernel wraps one target object and owns one InterceptorChain per operation
kind. Every operation performed on the kernel's mediated handle is dispatched
through the matching chain:

- value-producing kinds (read, enumerate, describe, invoke, construct): the
  first ``Value`` wins, a ``Throw`` (or a raised exception) aborts, and when
  every handler defers the default reflective operation runs;
- boolean-gated kinds (write, has, delete): the first ``Deny`` stops the
  operation with outcome ``False``, ``Allow``/``UNDECIDED`` continue, and when
  nobody denies the default operation runs;
- enumeration additionally unions keys contributed through ``Extend``.

Handlers run strictly in registration order, so the earliest-registered
capability has the final say on denials while purely observational
capabilities (such as audit logging) always defer.

Example:
    from proxyable import Kernel, Value, UNDECIDED

    kernel = Kernel({"name": "Alice", "age": 30})
    kernel.on_read(lambda op: UNDECIDED)
    kernel.on_read(lambda op: Value("Bob") if op.key == "name" else UNDECIDED)

    kernel.handle["name"]   # "Bob"
    kernel.handle.age       # 30
"""

import logging
from dataclasses import dataclass
from typing import Any, Callable, Dict, Iterator, List, Optional, Tuple, Union

from proxyable import reflect
from proxyable.exceptions import (
    InvalidArgumentError,
    InvalidDecisionError,
    OperationDeniedError,
)
from proxyable.operations import (
    BOOLEAN_KINDS,
    Allow,
    Decision,
    Deny,
    Extend,
    Handler,
    Operation,
    OperationKind,
    Throw,
    UNDECIDED,
    Undecided,
    Value,
)

logger = logging.getLogger(__name__)


# ============================================================================
# INTERCEPTOR CHAIN
# ============================================================================

class InterceptorChain:
    """Ordered, append-only collection of handlers for one operation kind."""

    def __init__(self, kind: OperationKind):
        self.kind = kind
        self._handlers: List[Handler] = []

    def append(self, handler: Handler) -> None:
        if not callable(handler):
            raise InvalidArgumentError(
                f"Handler for {self.kind} must be callable, got {type(handler).__name__}",
                parameter="handler",
            )
        self._handlers.append(handler)

    @property
    def handlers(self) -> Tuple[Handler, ...]:
        return tuple(self._handlers)

    def __iter__(self) -> Iterator[Handler]:
        # Snapshot so a handler registered mid-dispatch does not join the running pass
        return iter(tuple(self._handlers))

    def __len__(self) -> int:
        return len(self._handlers)

    def __repr__(self) -> str:
        return f"InterceptorChain(kind={self.kind.value!r}, handlers={len(self._handlers)})"


# ============================================================================
# DENIAL INFO
# ============================================================================

@dataclass
class DenialInfo:
    """Information about the most recent boolean denial.

    Attributes:
        kind: Denied operation kind
        key: Property key of the denied operation
        reason: Human-readable denial reason, if the handler gave one
        handler: Qualified name of the handler that denied
    """
    kind: OperationKind
    key: Any
    reason: Optional[str] = None
    handler: Optional[str] = None

    def describe(self) -> str:
        text = f"{self.kind.value} of {self.key!r} denied"
        if self.reason:
            text += f": {self.reason}"
        return text


def _handler_name(handler: Any) -> str:
    return getattr(handler, "__qualname__", None) or repr(handler)


def _coerce_kind(kind: Union[OperationKind, str]) -> OperationKind:
    if isinstance(kind, OperationKind):
        return kind
    try:
        return OperationKind(kind)
    except ValueError:
        valid = ", ".join(k.value for k in OperationKind)
        raise InvalidArgumentError(
            f"Unknown operation kind: {kind!r}",
            parameter="kind",
            suggestion=f"Valid kinds: {valid}",
        ) from None


# ============================================================================
# KERNEL
# ============================================================================

class Kernel:
    """Mediates every operation on one target through per-kind handler chains.

    Attributes:
        strict: When True, the mediated handle raises OperationDeniedError for
            denied writes and deletes; when False it silently does nothing.
            The explicit ``write``/``delete`` methods always return the bare
            boolean outcome.

    Args:
        target: The object to mediate (an empty dict if omitted)
        strict: See above
        reflector: Provider of the default operations (``get``, ``set``,
            ``has``, ``delete``, ``own_keys``, ``describe``, ``invoke``,
            ``construct``); defaults to ``proxyable.reflect``
    """

    def __init__(self, target: Any = None, strict: bool = True, reflector: Any = None):
        self._target = {} if target is None else target
        self._reflect = reflector if reflector is not None else reflect
        self.strict = strict
        self._chains: Dict[OperationKind, InterceptorChain] = {
            kind: InterceptorChain(kind) for kind in OperationKind
        }
        self._last_denial: Optional[DenialInfo] = None
        self._handle = MediatedHandle(self)
        logger.debug(f"Kernel created for {type(self._target).__name__} target")

    def __repr__(self) -> str:
        counts = {k.value: len(c) for k, c in self._chains.items() if len(c)}
        return f"Kernel(target={type(self._target).__name__}, strict={self.strict}, handlers={counts})"

    @property
    def target(self) -> Any:
        """The raw wrapped object."""
        return self._target

    @property
    def handle(self) -> "MediatedHandle":
        """The mediated handle through which callers interact with the target."""
        return self._handle

    def chain(self, kind: Union[OperationKind, str]) -> InterceptorChain:
        return self._chains[_coerce_kind(kind)]

    # ========================================================================
    # REGISTRATION
    # ========================================================================

    def add_handler(self, kind: Union[OperationKind, str], handler: Handler) -> None:
        """Append ``handler`` to the chain for ``kind``.

        Handlers accumulate; registering never replaces an earlier handler.

        Raises:
            InvalidArgumentError: Unknown kind or non-callable handler
        """
        kind = _coerce_kind(kind)
        self._chains[kind].append(handler)
        logger.debug(f"Registered {kind.value} handler #{len(self._chains[kind])}: {_handler_name(handler)}")

    def on_read(self, handler: Handler) -> None:
        self.add_handler(OperationKind.READ, handler)

    def on_write(self, handler: Handler) -> None:
        self.add_handler(OperationKind.WRITE, handler)

    def on_has(self, handler: Handler) -> None:
        self.add_handler(OperationKind.HAS, handler)

    def on_delete(self, handler: Handler) -> None:
        self.add_handler(OperationKind.DELETE, handler)

    def on_enumerate(self, handler: Handler) -> None:
        self.add_handler(OperationKind.ENUMERATE, handler)

    def on_describe(self, handler: Handler) -> None:
        self.add_handler(OperationKind.DESCRIBE, handler)

    def on_invoke(self, handler: Handler) -> None:
        self.add_handler(OperationKind.INVOKE, handler)

    def on_construct(self, handler: Handler) -> None:
        self.add_handler(OperationKind.CONSTRUCT, handler)

    # ========================================================================
    # DISPATCH
    # ========================================================================

    def read(self, key: Any) -> Any:
        op = self._operation(OperationKind.READ, key=key)
        return self._run_value_chain(op, lambda: self._reflect.get(self._target, key))

    def write(self, key: Any, value: Any) -> bool:
        return self._write(key, value) is None

    def has(self, key: Any) -> bool:
        op = self._operation(OperationKind.HAS, key=key)
        if self._run_gate(op) is not None:
            return False
        return self._reflect.has(self._target, key)

    def delete(self, key: Any) -> bool:
        return self._delete(key) is None

    def enumerate(self) -> List[Any]:
        """Return the visible key set.

        Default keys come first, then keys contributed by ``Extend`` decisions
        in registration order, duplicates dropped. A ``Value`` decision
        replaces the whole answer.
        """
        op = self._operation(OperationKind.ENUMERATE)
        contributed: List[Any] = []
        for handler in self._chains[OperationKind.ENUMERATE]:
            decision = self._decide(handler, op)
            if isinstance(decision, Undecided):
                continue
            if isinstance(decision, Extend):
                contributed.extend(decision.keys)
                continue
            if isinstance(decision, Value):
                logger.debug(f"enumerate answered by {_handler_name(handler)}")
                return list(decision.value)
            raise decision.error  # Throw

        keys = list(self._reflect.own_keys(self._target)) + contributed
        return list(dict.fromkeys(keys))

    def describe(self, key: Any) -> Optional[reflect.Descriptor]:
        op = self._operation(OperationKind.DESCRIBE, key=key)
        return self._run_value_chain(op, lambda: self._reflect.describe(self._target, key))

    def invoke(self, *args: Any, **kwargs: Any) -> Any:
        op = self._operation(OperationKind.INVOKE, args=args, kwargs=kwargs)
        return self._run_value_chain(op, lambda: self._reflect.invoke(self._target, *args, **kwargs))

    def construct(self, *args: Any, **kwargs: Any) -> Any:
        op = self._operation(OperationKind.CONSTRUCT, args=args, kwargs=kwargs)
        return self._run_value_chain(op, lambda: self._reflect.construct(self._target, *args, **kwargs))

    def get_last_denial(self) -> Optional[DenialInfo]:
        """Return details of the most recent Deny decision, if any."""
        return self._last_denial

    # ========================================================================
    # INTERNALS
    # ========================================================================

    def _write(self, key: Any, value: Any) -> Optional[DenialInfo]:
        op = self._operation(OperationKind.WRITE, key=key, value=value)
        denial = self._run_gate(op)
        if denial is None:
            self._reflect.set(self._target, key, value)
        return denial

    def _delete(self, key: Any) -> Optional[DenialInfo]:
        op = self._operation(OperationKind.DELETE, key=key)
        denial = self._run_gate(op)
        if denial is None:
            self._reflect.delete(self._target, key)
        return denial

    def _operation(self, kind: OperationKind, **fields: Any) -> Operation:
        return Operation(kind=kind, target=self._target, handle=self._handle, **fields)

    def _decide(self, handler: Handler, op: Operation) -> Decision:
        decision = handler(op)
        if decision is None:
            return UNDECIDED
        if not isinstance(decision, Decision):
            raise InvalidDecisionError(
                f"Handler {_handler_name(handler)} returned {type(decision).__name__} "
                f"for {op.kind.value}; expected a Decision",
                kind=op.kind,
                handler=handler,
            )

        if op.kind in BOOLEAN_KINDS:
            legal = (Undecided, Allow, Deny, Throw)
        elif op.kind is OperationKind.ENUMERATE:
            legal = (Undecided, Value, Throw, Extend)
        else:
            legal = (Undecided, Value, Throw)
        if not isinstance(decision, legal):
            raise InvalidDecisionError(
                f"Handler {_handler_name(handler)} returned {decision!r}, "
                f"which is not valid for {op.kind.value}",
                kind=op.kind,
                handler=handler,
            )
        return decision

    def _run_value_chain(self, op: Operation, default: Callable[[], Any]) -> Any:
        for handler in self._chains[op.kind]:
            decision = self._decide(handler, op)
            if isinstance(decision, Undecided):
                continue
            if isinstance(decision, Value):
                logger.debug(f"{op.kind.value} {op.key!r} answered by {_handler_name(handler)}")
                return decision.value
            logger.debug(f"{op.kind.value} {op.key!r} aborted by {_handler_name(handler)}")
            raise decision.error  # Throw
        return default()

    def _run_gate(self, op: Operation) -> Optional[DenialInfo]:
        for handler in self._chains[op.kind]:
            decision = self._decide(handler, op)
            if isinstance(decision, (Undecided, Allow)):
                continue
            if isinstance(decision, Deny):
                denial = DenialInfo(
                    kind=op.kind,
                    key=op.key,
                    reason=decision.reason,
                    handler=_handler_name(handler),
                )
                self._last_denial = denial
                logger.debug(f"{denial.describe()} (by {denial.handler})")
                return denial
            logger.debug(f"{op.kind.value} {op.key!r} aborted by {_handler_name(handler)}")
            raise decision.error  # Throw
        return None


# ============================================================================
# MEDIATED HANDLE
# ============================================================================

class MediatedHandle:
    """The object callers use in place of the raw target.

    Attribute and item syntax both map onto the kernel's property operations;
    ``in``, ``del``, iteration and calling map onto has, delete, enumerate and
    invoke/construct. With no handler deciding otherwise, the handle behaves
    like the unmediated target.

    The handle defines no ``__len__``, so ``list(handle)`` dispatches a single
    enumerate; count keys with ``len(keys(handle))``.
    """

    __slots__ = ("_proxyable_kernel",)

    def __init__(self, kernel: Kernel):
        object.__setattr__(self, "_proxyable_kernel", kernel)

    # Attribute protocol

    def __getattr__(self, name: str) -> Any:
        if name.startswith("__") and name.endswith("__"):
            raise AttributeError(name)
        kernel = object.__getattribute__(self, "_proxyable_kernel")
        try:
            return kernel.read(name)
        except KeyError as exc:
            if reflect.is_mapping(kernel.target):
                raise AttributeError(name) from exc
            raise

    def __setattr__(self, name: str, value: Any) -> None:
        _apply_gate(self, object.__getattribute__(self, "_proxyable_kernel")._write(name, value))

    def __delattr__(self, name: str) -> None:
        _apply_gate(self, object.__getattribute__(self, "_proxyable_kernel")._delete(name))

    # Item protocol

    def __getitem__(self, key: Any) -> Any:
        return object.__getattribute__(self, "_proxyable_kernel").read(key)

    def __setitem__(self, key: Any, value: Any) -> None:
        _apply_gate(self, object.__getattribute__(self, "_proxyable_kernel")._write(key, value))

    def __delitem__(self, key: Any) -> None:
        _apply_gate(self, object.__getattribute__(self, "_proxyable_kernel")._delete(key))

    def __contains__(self, key: Any) -> bool:
        return object.__getattribute__(self, "_proxyable_kernel").has(key)

    # Enumeration

    def __iter__(self) -> Iterator[Any]:
        return iter(object.__getattribute__(self, "_proxyable_kernel").enumerate())

    def __bool__(self) -> bool:
        return True

    def __dir__(self) -> List[str]:
        keys = object.__getattribute__(self, "_proxyable_kernel").enumerate()
        return [k for k in keys if isinstance(k, str)]

    # Invocation

    def __call__(self, *args: Any, **kwargs: Any) -> Any:
        kernel = object.__getattribute__(self, "_proxyable_kernel")
        if reflect.is_constructible(kernel.target):
            return kernel.construct(*args, **kwargs)
        return kernel.invoke(*args, **kwargs)

    def __repr__(self) -> str:
        kernel = object.__getattribute__(self, "_proxyable_kernel")
        return f"<MediatedHandle of {type(kernel.target).__name__} at {id(self):#x}>"


def _apply_gate(handle: MediatedHandle, denial: Optional[DenialInfo]) -> None:
    kernel = object.__getattribute__(handle, "_proxyable_kernel")
    if denial is None or not kernel.strict:
        return
    raise OperationDeniedError(
        denial.describe(),
        kind=denial.kind,
        key=denial.key,
        reason=denial.reason,
        suggestion="A registered capability refused this operation.",
    )


# ============================================================================
# MODULE HELPERS
# ============================================================================

def create_kernel(target: Any = None, strict: bool = True, reflector: Any = None) -> Kernel:
    """Create a Kernel for ``target``; see Kernel."""
    return Kernel(target, strict=strict, reflector=reflector)


def kernel_of(handle: MediatedHandle) -> Kernel:
    """Return the Kernel that owns ``handle``.

    Raises:
        InvalidArgumentError: If ``handle`` is not a MediatedHandle
    """
    if not isinstance(handle, MediatedHandle):
        raise InvalidArgumentError(
            f"Expected a MediatedHandle, got {type(handle).__name__}",
            parameter="handle",
        )
    return object.__getattribute__(handle, "_proxyable_kernel")


def keys(handle: MediatedHandle) -> List[Any]:
    """Enumerate a handle's visible keys (the enumerate operation)."""
    return kernel_of(handle).enumerate()


def describe(handle: MediatedHandle, key: Any) -> Optional[reflect.Descriptor]:
    """Describe one property of a handle (the describe operation)."""
    return kernel_of(handle).describe(key)
