"""
Speculative (counterfactual) execution.

A SimulationContext runs code against a copy of its target. Inside
``speculate(body)`` every write and delete made through the simulation's
handle lands on the speculative copy, and reads see that copy; the real target
is untouched. After ``speculate`` returns, the outcome stays pending so it can
be inspected with ``get_change_set()`` and then applied with ``commit()`` or
dropped with ``abort()``.

Speculations nest: an inner ``speculate`` starts from the outer speculative
state and its changes are discarded when it returns. Every speculation is
recorded as a node in an execution tree.

The simulation owns its Kernel, whose default operations are redirected to
the speculative state while a speculation is running. Other capabilities can
be registered on ``simulation.kernel``; their handlers receive the real target
as ``op.target`` and can read speculative values through ``op.handle``.

Example:
    account = {"balance": 100}
    sim = create_simulation_context(account)

    def withdraw():
        sim.handle["balance"] = sim.handle["balance"] - 30

    sim.speculate(withdraw)
    sim.get_change_set().modified      # {"balance": (100, 70)}
    account["balance"]                 # 100
    sim.commit()
    account["balance"]                 # 70
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import CheckpointNotFoundError, ConfigurationError, SimulationStateError
from proxyable.kernel import Kernel, MediatedHandle
from proxyable.operations import OperationKind

logger = logging.getLogger(__name__)

T = TypeVar("T")

STATUS_ACTIVE = "active"
STATUS_COMPLETED = "completed"
STATUS_ERROR = "error"
STATUS_COMMITTED = "committed"
STATUS_ABORTED = "aborted"


# ============================================================================
# RECORDS
# ============================================================================

@dataclass(frozen=True)
class Mutation:
    """One operation performed during a speculation.

    Attributes:
        kind: write, delete, invoke or construct
        key: Property key (write/delete)
        value: Value written (write)
        previous_value: Value the key held in the speculative state before
        had_key: Whether the key existed in the speculative state before
        args: Call arguments (invoke/construct)
        result: Call result (invoke/construct)
        timestamp: Seconds since the epoch
    """
    kind: OperationKind
    key: Any = None
    value: Any = None
    previous_value: Any = None
    had_key: bool = False
    args: Tuple[Any, ...] = ()
    result: Any = None
    timestamp: float = 0.0


@dataclass(frozen=True)
class Speculation:
    """Outcome of one ``speculate`` call."""
    status: str
    mutations: Tuple[Mutation, ...]
    result: Any = None
    error: Optional[str] = None
    timestamp: float = 0.0


@dataclass
class ExecutionNode:
    """A node of the execution tree; nested speculations point at their parent."""
    id: str
    parent_id: Optional[str]
    depth: int
    timestamp: float
    status: str = STATUS_ACTIVE  # then completed or error; committed or aborted once closed
    speculations: List[Speculation] = field(default_factory=list)


@dataclass(frozen=True)
class ExecutionTree:
    root_id: Optional[str]
    current_id: Optional[str]
    nodes: Tuple[ExecutionNode, ...]


@dataclass(frozen=True)
class ChangeSet:
    """Difference between the speculative state and the real target.

    Attributes:
        added: New keys and their values
        modified: ``key -> (real value, speculative value)``
        deleted: Removed keys and the values they hold on the real target
    """
    added: Dict[Any, Any] = field(default_factory=dict)
    modified: Dict[Any, Tuple[Any, Any]] = field(default_factory=dict)
    deleted: Dict[Any, Any] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not (self.added or self.modified or self.deleted)


@dataclass(frozen=True)
class Checkpoint:
    id: str
    state: Any
    mutations: Tuple[Mutation, ...]
    timestamp: float


@dataclass
class _Frame:
    state: Any
    mutations: List[Mutation]
    node_id: str
    depth: int


def _new_id(prefix: str) -> str:
    return f"{prefix}_{uuid.uuid4().hex[:12]}"


# ============================================================================
# DEFAULT OPERATIONS
# ============================================================================

class SimulationReflector:
    """Default operations of a simulation's kernel.

    While a speculation runs, property operations act on its speculative
    state and writes, deletes and calls are recorded as mutations. Otherwise
    every operation goes to the real target.
    """

    def __init__(self, simulation: "SimulationContext"):
        self._simulation = simulation

    def _frame(self) -> Optional[_Frame]:
        return self._simulation.context.current_or_none()

    def _record(self, frame: _Frame, kind: OperationKind, **fields: Any) -> None:
        frame.mutations.append(Mutation(kind=kind, timestamp=time.time(), **fields))

    def get(self, target: Any, key: Any) -> Any:
        frame = self._frame()
        return reflect.get(target if frame is None else frame.state, key)

    def set(self, target: Any, key: Any, value: Any) -> None:  # noqa: A003
        frame = self._frame()
        if frame is None:
            reflect.set(target, key, value)
            return
        had_key = reflect.has(frame.state, key)
        previous = reflect.get(frame.state, key) if had_key else None
        self._record(frame, OperationKind.WRITE, key=key, value=value, previous_value=previous, had_key=had_key)
        reflect.set(frame.state, key, value)

    def has(self, target: Any, key: Any) -> bool:
        frame = self._frame()
        return reflect.has(target if frame is None else frame.state, key)

    def delete(self, target: Any, key: Any) -> None:
        frame = self._frame()
        if frame is None:
            reflect.delete(target, key)
            return
        had_key = reflect.has(frame.state, key)
        previous = reflect.get(frame.state, key) if had_key else None
        reflect.delete(frame.state, key)
        self._record(frame, OperationKind.DELETE, key=key, previous_value=previous, had_key=had_key)

    def own_keys(self, target: Any) -> List[Any]:
        frame = self._frame()
        return reflect.own_keys(target if frame is None else frame.state)

    def describe(self, target: Any, key: Any) -> Optional[reflect.Descriptor]:
        frame = self._frame()
        return reflect.describe(target if frame is None else frame.state, key)

    def invoke(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        result = reflect.invoke(target, *args, **kwargs)
        frame = self._frame()
        if frame is not None:
            self._record(frame, OperationKind.INVOKE, args=args, result=result)
        return result

    def construct(self, target: Any, *args: Any, **kwargs: Any) -> Any:
        result = reflect.construct(target, *args, **kwargs)
        frame = self._frame()
        if frame is not None:
            self._record(frame, OperationKind.CONSTRUCT, args=args, result=result)
        return result


# ============================================================================
# SIMULATION CONTEXT
# ============================================================================

class SimulationContext:
    """Speculative execution over one target.

    Args:
        target: The real target
        shallow: Copy the target with ``copy.copy`` instead of ``copy.deepcopy``
        nested: Whether ``speculate`` may be called inside a running speculation
        checkpoints: Whether ``checkpoint``/``restore`` are available
        strict: Strictness of the simulation's handle (see Kernel)
    """

    def __init__(
        self,
        target: Any,
        shallow: bool = False,
        nested: bool = True,
        checkpoints: bool = True,
        strict: bool = True,
    ):
        self.target = target
        self.shallow = shallow
        self.nested = nested
        self.checkpoints_enabled = checkpoints
        self.context = ContextSlot("simulation")
        self.kernel = Kernel(target, strict=strict, reflector=SimulationReflector(self))
        self._pending: Optional[_Frame] = None
        self._checkpoints: Dict[str, Checkpoint] = {}
        self._nodes: Dict[str, ExecutionNode] = {}
        self._root_id: Optional[str] = None
        self._current_id: Optional[str] = None

    def __repr__(self) -> str:
        return f"SimulationContext(target={type(self.target).__name__}, active={self.is_active()})"

    @property
    def handle(self) -> MediatedHandle:
        return self.kernel.handle

    def _clone(self, value: Any) -> Any:
        return copy.copy(value) if self.shallow else copy.deepcopy(value)

    # ========================================================================
    # SPECULATION
    # ========================================================================

    def speculate(self, body: Callable[[], T]) -> T:
        """Run ``body`` against a speculative copy of the target.

        A top-level speculation replaces any pending, uncommitted one. Errors
        raised by ``body`` are recorded on the execution tree and re-raised.

        Raises:
            ConfigurationError: Nested call while ``nested`` is False
        """
        frame, outer = self._begin()
        try:
            with self.context.activate(frame):
                result = body()
        except Exception as e:
            self._end(frame, outer, STATUS_ERROR, error=str(e))
            raise
        self._end(frame, outer, STATUS_COMPLETED, result=result)
        return result

    async def aspeculate(self, body: Callable[[], Awaitable[T]]) -> T:
        frame, outer = self._begin()
        try:
            with self.context.activate(frame):
                result = await body()
        except Exception as e:
            self._end(frame, outer, STATUS_ERROR, error=str(e))
            raise
        self._end(frame, outer, STATUS_COMPLETED, result=result)
        return result

    def _begin(self) -> Tuple[_Frame, Optional[_Frame]]:
        outer = self.context.current_or_none()
        if outer is not None and not self.nested:
            raise ConfigurationError(
                "Nested simulations are not allowed",
                suggestion="Create the SimulationContext with nested=True",
            )
        if outer is None and self._pending is not None:
            logger.info("Discarding uncommitted speculation")
            self._close_pending(STATUS_ABORTED)

        node = ExecutionNode(
            id=_new_id("sim"),
            parent_id=outer.node_id if outer else None,
            depth=outer.depth + 1 if outer else 0,
            timestamp=time.time(),
        )
        self._nodes[node.id] = node
        self._current_id = node.id
        if self._root_id is None:
            self._root_id = node.id

        source = outer.state if outer else self.target
        frame = _Frame(state=self._clone(source), mutations=[], node_id=node.id, depth=node.depth)
        logger.debug(f"Speculation {node.id} started at depth {node.depth}")
        return frame, outer

    def _end(self, frame: _Frame, outer: Optional[_Frame], status: str, result: Any = None,
             error: Optional[str] = None) -> None:
        node = self._nodes[frame.node_id]
        node.speculations.append(Speculation(
            status=status,
            mutations=tuple(frame.mutations),
            result=result,
            error=error,
            timestamp=time.time(),
        ))
        node.status = status
        if outer is None:
            self._pending = frame
        logger.debug(f"Speculation {node.id} {status} with {len(frame.mutations)} mutations")

    def _frame(self, action: str) -> _Frame:
        frame = self.context.current_or_none() or self._pending
        if frame is None:
            raise SimulationStateError(f"Cannot {action} without an active simulation")
        return frame

    def _close_pending(self, status: str) -> None:
        node = self._nodes.get(self._pending.node_id) if self._pending else None
        if node is not None and node.status != STATUS_ERROR:
            node.status = status
        self._pending = None
        self._checkpoints.clear()

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def is_active(self) -> bool:
        """True while a speculation runs or its outcome is pending."""
        return self.context.is_active() or self._pending is not None

    def get_speculative_state(self) -> Any:
        """A copy of what the target would look like after commit().

        Raises:
            SimulationStateError: No speculation is running or pending
        """
        return self._clone(self._frame("read the speculative state").state)

    def get_mutations(self) -> List[Mutation]:
        frame = self.context.current_or_none() or self._pending
        return list(frame.mutations) if frame else []

    def get_change_set(self) -> ChangeSet:
        """Compare the speculative state with the real target.

        Values are compared with ``==``. Returns an empty ChangeSet when there
        is nothing to compare.
        """
        frame = self.context.current_or_none() or self._pending
        if frame is None:
            return ChangeSet()

        state = frame.state
        real_keys = reflect.own_keys(self.target)
        spec_keys = reflect.own_keys(state)
        added: Dict[Any, Any] = {}
        modified: Dict[Any, Tuple[Any, Any]] = {}
        for key in spec_keys:
            value = reflect.get(state, key)
            if key not in real_keys:
                added[key] = value
            else:
                before = reflect.get(self.target, key)
                if before != value:
                    modified[key] = (before, value)
        deleted = {key: reflect.get(self.target, key) for key in real_keys if key not in spec_keys}
        return ChangeSet(added=added, modified=modified, deleted=deleted)

    def get_execution_tree(self) -> ExecutionTree:
        return ExecutionTree(
            root_id=self._root_id,
            current_id=self._current_id,
            nodes=tuple(self._nodes.values()),
        )

    # ========================================================================
    # COMMIT / ABORT
    # ========================================================================

    def commit(self) -> ChangeSet:
        """Apply the pending speculation to the real target.

        Deletions are applied first, then additions and modifications, directly
        on the target.

        Returns:
            The ChangeSet that was applied

        Raises:
            SimulationStateError: No speculation is pending
        """
        if self._pending is None:
            raise SimulationStateError("No active simulation to commit")
        changes = self.get_change_set()
        for key in changes.deleted:
            reflect.delete(self.target, key)
        for key, value in changes.added.items():
            reflect.set(self.target, key, value)
        for key, (_, value) in changes.modified.items():
            reflect.set(self.target, key, value)
        self._close_pending(STATUS_COMMITTED)
        logger.info(
            f"Simulation committed: {len(changes.added)} added, "
            f"{len(changes.modified)} modified, {len(changes.deleted)} deleted"
        )
        return changes

    def abort(self) -> None:
        """Discard the pending speculation.

        Raises:
            SimulationStateError: No speculation is pending
        """
        if self._pending is None:
            raise SimulationStateError("No active simulation to abort")
        self._close_pending(STATUS_ABORTED)
        logger.info("Simulation aborted")

    # ========================================================================
    # CHECKPOINTS
    # ========================================================================

    def checkpoint(self) -> str:
        """Snapshot the current speculative state and return the checkpoint id."""
        if not self.checkpoints_enabled:
            raise ConfigurationError("Checkpoints are disabled", suggestion="Use checkpoints=True")
        frame = self._frame("create a checkpoint")
        ckpt = Checkpoint(
            id=_new_id("ckpt"),
            state=self._clone(frame.state),
            mutations=tuple(frame.mutations),
            timestamp=time.time(),
        )
        self._checkpoints[ckpt.id] = ckpt
        logger.debug(f"Checkpoint {ckpt.id} created")
        return ckpt.id

    def restore(self, checkpoint_id: str) -> None:
        """Reset the speculative state and mutation list to a checkpoint.

        Raises:
            ConfigurationError: Checkpoints are disabled
            SimulationStateError: No speculation is running or pending
            CheckpointNotFoundError: Unknown checkpoint id
        """
        if not self.checkpoints_enabled:
            raise ConfigurationError("Checkpoints are disabled", suggestion="Use checkpoints=True")
        frame = self._frame("restore a checkpoint")
        ckpt = self._checkpoints.get(checkpoint_id)
        if ckpt is None:
            raise CheckpointNotFoundError(checkpoint_id)
        frame.state = self._clone(ckpt.state)
        frame.mutations = list(ckpt.mutations)
        logger.debug(f"Restored checkpoint {checkpoint_id}")


def create_simulation_context(target: Any, **options: Any) -> SimulationContext:
    """Shorthand for ``SimulationContext(target, **options)``."""
    return SimulationContext(target, **options)
