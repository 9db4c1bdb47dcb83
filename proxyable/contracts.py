"""
Call-level contracts.

A ContractCapability enforces per-callable contracts on invocations and
constructions while it is active. Contracts are looked up by the callable's
``__name__`` and may require:

- ``validate``: ``args -> True | False | str`` argument check
- ``max_args``: an upper bound on positional arguments
- ``sequence``: names that must have been called (through any kernel this
  capability is registered on) before
- ``rate_limit``: ``(calls, window_seconds)``
- ``return_type``: a type (or tuple of types) the result must be an instance of
- ``pure``: the call must not change the shallow state of its receiver

Any violation raises ContractViolationError. When a contract applies, the
capability performs the call itself and answers with its result.

Example:
    def withdraw(amount):
        ...

    kernel = Kernel(withdraw)
    contracts = ContractCapability(kernel.target, {
        "withdraw": {"validate": lambda args: args[0] > 0 or "amount must be positive"},
    })
    contracts.register(kernel)

    contracts.call(lambda: kernel.handle(-5))   # raises ContractViolationError
"""

import dataclasses
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Tuple, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import ContractViolationError, InvalidArgumentError
from proxyable.operations import UNDECIDED, Operation, OperationKind, Value

logger = logging.getLogger(__name__)

T = TypeVar("T")


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass
class Contract:
    """Rules for one callable.

    Attributes:
        validate: ``args -> True | False | str``; False or a string fails
        max_args: Maximum number of positional arguments
        sequence: Ordered names; calling one requires every earlier name
            to have been called first
        rate_limit: ``(calls, window_seconds)``
        return_type: Required type (or tuple of types) of the result
        pure: The receiver's shallow state must be unchanged by the call
    """
    validate: Optional[Callable[[Tuple[Any, ...]], Union[bool, str]]] = None
    max_args: Optional[int] = None
    sequence: List[str] = field(default_factory=list)
    rate_limit: Optional[Tuple[int, float]] = None
    return_type: Optional[Union[type, Tuple[type, ...]]] = None
    pure: bool = False

    def __post_init__(self) -> None:
        if self.rate_limit is not None:
            calls, window = self.rate_limit
            if calls < 1 or window <= 0:
                raise InvalidArgumentError(
                    f"Invalid rate limit: {self.rate_limit!r}",
                    parameter="rate_limit",
                    suggestion="Use (calls >= 1, window_seconds > 0)",
                )
            self.rate_limit = (int(calls), float(window))
        self.sequence = list(self.sequence)

    @classmethod
    def from_mapping(cls, options: Union["Contract", Mapping[str, Any]]) -> "Contract":
        """Build a contract from a mapping; unknown keys are ignored."""
        if isinstance(options, Contract):
            return options
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in options.items() if k in known})


@dataclass
class SequenceState:
    call_sequence: List[str]
    total_calls: int


@dataclass
class RateLimitStats:
    """Rate limit usage for one callable.

    ``reset_in`` is the number of seconds until the oldest counted call
    leaves the window.
    """
    has_limit: bool
    max_calls: int = 0
    window: float = 0.0
    current_calls: int = 0
    remaining: int = 0
    reset_in: float = 0.0


def _callable_name(target: Any, default: str) -> str:
    return getattr(target, "__name__", None) or default


def _receiver(target: Any) -> Any:
    return getattr(target, "__self__", target)


def _capture_state(obj: Any) -> Optional[Dict[Any, Any]]:
    if reflect.is_mapping(obj):
        return dict(obj)
    if isinstance(obj, list):
        return dict(enumerate(obj))
    state = getattr(obj, "__dict__", None)
    return dict(state) if isinstance(state, dict) else None


def _states_equal(before: Dict[Any, Any], after: Dict[Any, Any]) -> bool:
    if before.keys() != after.keys():
        return False
    return all(before[k] is after[k] or before[k] == after[k] for k in before)


# ============================================================================
# CONTRACT CAPABILITY
# ============================================================================

class ContractCapability:
    """Enforces call-level contracts on a mediated callable.

    Args:
        target: The mediated callable (or class)
        contracts: Mapping of callable name to Contract (or contract mapping)
        clock: Monotonic time source in seconds, used for rate limiting
    """

    def __init__(
        self,
        target: Any,
        contracts: Optional[Mapping[str, Union[Contract, Mapping[str, Any]]]] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.target = target
        self.context = ContextSlot("contracts")
        self._clock = clock
        self._contracts: Dict[str, Contract] = {
            name: Contract.from_mapping(c) for name, c in (contracts or {}).items()
        }
        self._call_sequence: List[str] = []
        self._rate_tracking: Dict[str, List[float]] = {}

    def __repr__(self) -> str:
        return f"ContractCapability(contracts={list(self._contracts)})"

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` with contract enforcement active."""
        return self.context.call(self, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        return await self.context.acall(self, body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def register(self, kernel: Any) -> None:
        kernel.on_invoke(self.enforce)
        kernel.on_construct(self.enforce)

    # ========================================================================
    # CONTRACT MANAGEMENT
    # ========================================================================

    def get_contract(self, name: str) -> Optional[Contract]:
        return self._contracts.get(name)

    def set_contract(self, name: str, contract: Union[Contract, Mapping[str, Any]]) -> None:
        self._contracts[name] = Contract.from_mapping(contract)

    def remove_contract(self, name: str) -> bool:
        return self._contracts.pop(name, None) is not None

    def get_sequence_state(self) -> SequenceState:
        return SequenceState(call_sequence=list(self._call_sequence), total_calls=len(self._call_sequence))

    def reset_sequence(self) -> None:
        self._call_sequence.clear()

    def get_rate_limit_stats(self, name: str) -> RateLimitStats:
        contract = self._contracts.get(name)
        if contract is None or contract.rate_limit is None:
            return RateLimitStats(has_limit=False)

        max_calls, window = contract.rate_limit
        now = self._clock()
        recent = [ts for ts in self._rate_tracking.get(name, []) if now - ts < window]
        reset_at = recent[0] + window if recent else now
        return RateLimitStats(
            has_limit=True,
            max_calls=max_calls,
            window=window,
            current_calls=len(recent),
            remaining=max(0, max_calls - len(recent)),
            reset_in=max(0.0, reset_at - now),
        )

    def validate_call(self, name: str, args: Sequence[Any]) -> Tuple[bool, Optional[str]]:
        """Check arguments, sequence and rate limit without calling or recording anything.

        Returns:
            ``(valid, reason)``; reason explains a failure, or notes that no
            contract exists
        """
        contract = self._contracts.get(name)
        if contract is None:
            return True, "No contract defined for method"
        try:
            self._check_arguments(name, tuple(args), contract)
            self._check_sequence(name, contract)
            self._check_rate_limit(name, contract, dry_run=True)
        except ContractViolationError as e:
            return False, e.reason
        return True, None

    # ========================================================================
    # CHECKS
    # ========================================================================

    def _check_arguments(self, name: str, args: Tuple[Any, ...], contract: Contract) -> None:
        if contract.max_args is not None and len(args) > contract.max_args:
            raise ContractViolationError(
                f"{name} accepts maximum {contract.max_args} arguments, got {len(args)}",
                method=name,
            )
        if contract.validate is not None:
            result = contract.validate(args)
            if result is False:
                raise ContractViolationError(f"{name} argument validation failed", method=name)
            if isinstance(result, str):
                raise ContractViolationError(result, method=name)

    def _check_sequence(self, name: str, contract: Contract) -> None:
        if name not in contract.sequence:
            return
        position = contract.sequence.index(name)
        for required in contract.sequence[:position]:
            if required not in self._call_sequence:
                raise ContractViolationError(
                    f"{name} requires {required} to be called first. "
                    f"Required sequence: [{' -> '.join(contract.sequence)}]",
                    method=name,
                )

    def _check_rate_limit(self, name: str, contract: Contract, dry_run: bool = False) -> None:
        if contract.rate_limit is None:
            return
        max_calls, window = contract.rate_limit
        now = self._clock()
        recent = [ts for ts in self._rate_tracking.get(name, []) if now - ts < window]
        if not dry_run:
            self._rate_tracking[name] = recent

        if len(recent) >= max_calls:
            wait = recent[0] + window - now
            raise ContractViolationError(
                f"Rate limit exceeded for {name}. Maximum {max_calls} calls per {window}s. "
                f"Try again in {wait:.1f}s.",
                method=name,
            )
        if not dry_run:
            recent.append(now)

    def _check_return_type(self, name: str, result: Any, contract: Contract) -> None:
        if contract.return_type is None or isinstance(result, contract.return_type):
            return
        expected = contract.return_type
        names = expected.__name__ if isinstance(expected, type) else " or ".join(t.__name__ for t in expected)
        raise ContractViolationError(
            f"{name} must return {names}, got {type(result).__name__}",
            method=name,
        )

    def _record_call(self, name: str) -> None:
        if name not in self._call_sequence:
            self._call_sequence.append(name)

    # ========================================================================
    # HANDLER
    # ========================================================================

    def enforce(self, op: Operation):
        """Handler for invoke and construct: check the contract, then perform the call."""
        if not self.is_active():
            return UNDECIDED

        constructing = op.kind is OperationKind.CONSTRUCT
        name = _callable_name(op.target, "Constructor" if constructing else "anonymous")
        contract = self._contracts.get(name)
        if contract is None:
            self._record_call(name)
            return UNDECIDED

        self._check_arguments(name, op.args, contract)
        self._check_sequence(name, contract)
        self._check_rate_limit(name, contract)
        self._record_call(name)

        receiver = _receiver(op.target)
        before = _capture_state(receiver) if contract.pure and not constructing else None

        call_error: Optional[BaseException] = None
        result = None
        try:
            if constructing:
                result = reflect.construct(op.target, *op.args, **op.kwargs)
            else:
                result = reflect.invoke(op.target, *op.args, **op.kwargs)
        except Exception as e:
            call_error = e

        if before is not None:
            after = _capture_state(receiver)
            if after is None or not _states_equal(before, after):
                raise ContractViolationError(f"{name} is marked as pure but caused side effects", method=name)

        if call_error is not None:
            raise call_error

        self._check_return_type(name, result, contract)
        logger.debug(f"Contract for {name} satisfied")
        return Value(result)


def create_contract_context(
    target: Any,
    contracts: Optional[Mapping[str, Union[Contract, Mapping[str, Any]]]] = None,
) -> ContractCapability:
    return ContractCapability(target, contracts)
