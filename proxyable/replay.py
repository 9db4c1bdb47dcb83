"""
Deterministic recording and replay.

``recorder.record(body)`` captures, in order, every operation performed
through the kernel while ``body`` runs, together with a snapshot of the target
taken when recording started. ``recorder.replay(recording_id)`` re-issues the
captured sequence against a fresh, unmediated kernel over a copy of that
snapshot, so replays never observe or touch the live target.

Invocations and constructions are executed by the recording handler itself
(their results are part of the recording); register the recorder after any
enforcing capability.

Example:
    kernel = Kernel({"count": 0})
    recorder = ReplayRecorder(kernel.target)
    recorder.register(kernel)

    def body():
        kernel.handle["count"] = kernel.handle["count"] + 1

    rec_id = recorder.record(body)
    result = recorder.replay(rec_id)
    result.final_state      # {"count": 1}
"""

import copy
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Tuple

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import ConfigurationError, RecordingNotFoundError
from proxyable.kernel import Kernel
from proxyable.operations import UNDECIDED, Operation, OperationKind, Value

logger = logging.getLogger(__name__)


# ============================================================================
# DATA CLASSES
# ============================================================================

@dataclass(frozen=True)
class Invocation:
    """One recorded operation.

    Attributes:
        index: Position within the recording
        kind: Operation kind
        key: Property key, for property-scoped kinds
        args: Written value (write) or call arguments (invoke/construct)
        kwargs: Call keyword arguments
        return_value: What the operation returned while recording
        timestamp: Seconds since the epoch
    """
    index: int
    kind: OperationKind
    key: Any = None
    args: Tuple[Any, ...] = ()
    kwargs: Dict[str, Any] = field(default_factory=dict)
    return_value: Any = None
    timestamp: float = 0.0


@dataclass
class Recording:
    """Ordered invocations captured by one ``record`` call."""
    recording_id: str
    start_time: float
    snapshot: Any
    invocations: List[Invocation] = field(default_factory=list)
    end_time: Optional[float] = None


@dataclass(frozen=True)
class ReplayedInvocation:
    """Outcome of re-issuing one invocation.

    Exactly one of ``replay_result`` / ``replay_error`` is meaningful;
    ``replay_error`` is the error message when the replayed operation raised.
    """
    invocation: Invocation
    replay_result: Any = None
    replay_error: Optional[str] = None
    replay_timestamp: float = 0.0
    replay_duration: float = 0.0

    @property
    def failed(self) -> bool:
        return self.replay_error is not None


@dataclass
class ReplayResult:
    """Result of replaying one recording."""
    recording_id: str
    original_invocations: List[Invocation]
    replayed_invocations: List[ReplayedInvocation] = field(default_factory=list)
    final_state: Any = None
    start_time: float = 0.0
    end_time: float = 0.0

    @property
    def duration(self) -> float:
        return self.end_time - self.start_time


def _generate_id() -> str:
    return f"rec_{uuid.uuid4().hex[:12]}"


# ============================================================================
# RECORDER
# ============================================================================

class ReplayRecorder:
    """Records kernel operations on one target and replays them in isolation."""

    def __init__(self, target: Any):
        self.target = target
        self.context = ContextSlot("replay")
        self._recordings: Dict[str, Recording] = {}
        self._current: Optional[Recording] = None

    def __repr__(self) -> str:
        return f"ReplayRecorder(recordings={len(self._recordings)}, recording={self.is_recording()})"

    def record(self, body: Callable[[], Any]) -> str:
        """Run ``body`` while recording and return the new recording's id.

        The recording is stored even if ``body`` raises; the error still
        propagates.

        Raises:
            ConfigurationError: If a recording is already in progress
        """
        if self._current is not None:
            raise ConfigurationError(
                "Already recording. Nested recordings are not supported.",
                suggestion="Finish the current record() call first.",
            )

        recording = Recording(
            recording_id=_generate_id(),
            start_time=time.time(),
            snapshot=copy.copy(self.target),
        )
        self._current = recording
        logger.info(f"Recording {recording.recording_id} started")
        try:
            self.context.call(recording, body)
        finally:
            recording.end_time = time.time()
            self._recordings[recording.recording_id] = recording
            self._current = None
            logger.info(f"Recording {recording.recording_id} stopped ({len(recording.invocations)} invocations)")
        return recording.recording_id

    def replay(self, recording_id: str) -> ReplayResult:
        """Re-issue a recording against a copy of its snapshot.

        Raises:
            RecordingNotFoundError: If ``recording_id`` is unknown
        """
        recording = self._recordings.get(recording_id)
        if recording is None:
            raise RecordingNotFoundError(recording_id)

        kernel = Kernel(copy.copy(recording.snapshot))
        result = ReplayResult(
            recording_id=recording_id,
            original_invocations=list(recording.invocations),
            start_time=time.time(),
        )

        for invocation in recording.invocations:
            started = time.time()
            replay_result, replay_error = None, None
            try:
                replay_result = _reissue(kernel, invocation)
            except Exception as e:
                replay_error = str(e)
            finished = time.time()
            result.replayed_invocations.append(
                ReplayedInvocation(
                    invocation,
                    replay_result=replay_result,
                    replay_error=replay_error,
                    replay_timestamp=finished,
                    replay_duration=finished - started,
                )
            )

        result.final_state = kernel.target
        result.end_time = time.time()
        logger.debug(f"Replayed {recording_id}: {len(result.replayed_invocations)} invocations")
        return result

    def get_recording(self, recording_id: Optional[str] = None) -> Optional[Recording]:
        """Return a stored recording, or the one in progress when no id is given."""
        if recording_id is None:
            return self._current
        return self._recordings.get(recording_id)

    def get_recording_ids(self) -> List[str]:
        return list(self._recordings)

    def clear_recording(self, recording_id: Optional[str] = None) -> None:
        """Remove one recording, or every stored recording when no id is given."""
        if recording_id is None:
            self._recordings.clear()
        else:
            self._recordings.pop(recording_id, None)

    def is_recording(self) -> bool:
        return self._current is not None

    # ========================================================================
    # HANDLERS
    # ========================================================================

    def register(self, kernel: Any) -> None:
        for kind in OperationKind:
            kernel.add_handler(kind, self.record_handler)

    def record_handler(self, op: Operation):
        """Handler: append ``op`` to the active recording."""
        recording = self.context.current_or_none()
        if recording is None:
            return UNDECIDED

        args: Tuple[Any, ...] = ()
        decision = UNDECIDED
        if op.kind is OperationKind.READ:
            try:
                return_value = reflect.get(op.target, op.key)
            except (LookupError, AttributeError):
                return_value = None
        elif op.kind is OperationKind.WRITE:
            args, return_value = (op.value,), True
        elif op.kind is OperationKind.DELETE:
            return_value = True
        elif op.kind is OperationKind.HAS:
            return_value = reflect.has(op.target, op.key)
        elif op.kind is OperationKind.ENUMERATE:
            return_value = reflect.own_keys(op.target)
        elif op.kind is OperationKind.DESCRIBE:
            return_value = reflect.describe(op.target, op.key)
        else:
            args = op.args
            if op.kind is OperationKind.INVOKE:
                return_value = reflect.invoke(op.target, *op.args, **op.kwargs)
            else:
                return_value = reflect.construct(op.target, *op.args, **op.kwargs)
            decision = Value(return_value)

        recording.invocations.append(
            Invocation(
                index=len(recording.invocations),
                kind=op.kind,
                key=op.key,
                args=args,
                kwargs=dict(op.kwargs),
                return_value=return_value,
                timestamp=time.time(),
            )
        )
        return decision


def _reissue(kernel: Kernel, invocation: Invocation) -> Any:
    kind = invocation.kind
    if kind is OperationKind.READ:
        return kernel.read(invocation.key)
    if kind is OperationKind.WRITE:
        return kernel.write(invocation.key, invocation.args[0])
    if kind is OperationKind.HAS:
        return kernel.has(invocation.key)
    if kind is OperationKind.DELETE:
        return kernel.delete(invocation.key)
    if kind is OperationKind.ENUMERATE:
        return kernel.enumerate()
    if kind is OperationKind.DESCRIBE:
        return kernel.describe(invocation.key)
    if kind is OperationKind.INVOKE:
        return kernel.invoke(*invocation.args, **invocation.kwargs)
    return kernel.construct(*invocation.args, **invocation.kwargs)


def create_replay_context(target: Any) -> ReplayRecorder:
    return ReplayRecorder(target)
