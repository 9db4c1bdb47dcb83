"""
Audit capability.

Logs the *intent* of every mediated operation performed inside an audited
block. Audit handlers always defer (return ``UNDECIDED``), so capabilities
registered after them keep full control over the outcome; register the audit
capability first to see every attempt.

Entries are kept in an ordered in-memory log and, subject to the configured
level, written to an output sink. The log can be exported as JSON, CSV or text.

Example:
    from proxyable import Kernel, create_audit_context

    kernel = Kernel({"balance": 100})
    audit = create_audit_context(kernel.target, include_timestamp=False)
    audit.register(kernel)

    def body():
        kernel.handle["balance"] = 50
        return kernel.handle["balance"]

    audit.call(body)                # 50
    audit.export_log("text")
    # [0] write "balance" -> allowed
    # [1] read "balance" -> allowed
"""

import dataclasses
import json
import logging
import traceback
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, TypeVar, Union

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import InvalidArgumentError, UnsupportedFormatError
from proxyable.operations import UNDECIDED, Handler, Operation, OperationKind

logger = logging.getLogger(__name__)

#: Default sink: formatted lines go to this logger at the entry's severity
audit_logger = logging.getLogger("proxyable.audit")

T = TypeVar("T")


# ============================================================================
# LEVELS, INTENTS, FORMATS
# ============================================================================

class LogLevel(str, Enum):
    """Entry severities, lowest first."""
    DEBUG = "debug"
    INFO = "info"
    WARN = "warn"
    ERROR = "error"

    @property
    def priority(self) -> int:
        return _LEVEL_PRIORITY[self]

    @property
    def logging_level(self) -> int:
        return _LEVEL_TO_LOGGING[self]

    @classmethod
    def parse(cls, level: Union["LogLevel", str]) -> "LogLevel":
        """Return the LogLevel for ``level``.

        Raises:
            InvalidArgumentError: If ``level`` is not a recognised severity
        """
        if isinstance(level, LogLevel):
            return level
        try:
            return cls(level)
        except ValueError:
            raise InvalidArgumentError(
                f"Invalid log level: {level}",
                parameter="log_level",
                suggestion=f"Use one of: {', '.join(lvl.value for lvl in cls)}",
            ) from None


_LEVEL_PRIORITY = {LogLevel.DEBUG: 0, LogLevel.INFO: 1, LogLevel.WARN: 2, LogLevel.ERROR: 3}
_LEVEL_TO_LOGGING = {
    LogLevel.DEBUG: logging.DEBUG,
    LogLevel.INFO: logging.INFO,
    LogLevel.WARN: logging.WARNING,
    LogLevel.ERROR: logging.ERROR,
}

INTENTS: Dict[OperationKind, str] = {
    OperationKind.READ: "read",
    OperationKind.HAS: "read",
    OperationKind.ENUMERATE: "read",
    OperationKind.DESCRIBE: "read",
    OperationKind.WRITE: "write",
    OperationKind.DELETE: "delete",
    OperationKind.INVOKE: "call",
    OperationKind.CONSTRUCT: "construct",
}

SINK_FORMATS = ("json", "text")
EXPORT_FORMATS = ("json", "csv", "text")

STATUS_ALLOWED = "allowed"
STATUS_DENIED = "denied"
STATUS_ERROR = "error"


def derive_intent(kind: Union[OperationKind, str]) -> str:
    """Map an operation kind to its audit intent ("unknown" for anything else)."""
    try:
        return INTENTS[OperationKind(kind)]
    except ValueError:
        return "unknown"


# ============================================================================
# ENTRY
# ============================================================================

@dataclass(frozen=True)
class AuditEntry:
    """One immutable audit log record.

    ``index`` is None only on the draft entry handed to filters; stored
    entries always carry their position in the log.
    """
    index: Optional[int] = None
    timestamp: Optional[str] = None
    kind: str = ""
    key: Any = None
    intent: str = "unknown"
    status: str = STATUS_ALLOWED
    value: Any = None
    result: Any = None
    args: Optional[List[Any]] = None
    kwargs: Optional[Dict[str, Any]] = None
    reason: Optional[str] = None
    error: Optional[str] = None
    stack_trace: Optional[str] = None

    @property
    def severity(self) -> LogLevel:
        if self.error is not None:
            return LogLevel.ERROR
        if self.status == STATUS_DENIED:
            return LogLevel.WARN
        return LogLevel.INFO

    def to_dict(self) -> Dict[str, Any]:
        """Return the entry as a plain dict, omitting unset fields."""
        return {
            f.name: _plain(getattr(self, f.name))
            for f in dataclasses.fields(self)
            if getattr(self, f.name) is not None
        }


def _plain(value: Any) -> Any:
    if dataclasses.is_dataclass(value) and not isinstance(value, type):
        return {k: _plain(v) for k, v in dataclasses.asdict(value).items()}
    if isinstance(value, Mapping):
        return {k: _plain(v) for k, v in value.items()}
    if isinstance(value, (list, tuple, set, frozenset)):
        return [_plain(v) for v in value]
    return value


def _json_default(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    return repr(value)


# ============================================================================
# OPTIONS
# ============================================================================

EntryFilter = Callable[[AuditEntry], bool]


@dataclass
class AuditOptions:
    """Audit configuration.

    Attributes:
        log_level: Minimum severity written to the sink
        format: Sink format, "json" or "text"
        output: Sink; a logging.Logger, a callable receiving each AuditEntry,
            or an object with a ``log(str)`` method. None selects the
            ``proxyable.audit`` logger.
        include_timestamp: Stamp entries with an ISO 8601 UTC timestamp
        include_stack_trace: Attach the caller's stack to every entry
        filters: Predicate (or list of predicates) over the draft entry;
            entries failing any of them are neither stored nor emitted
    """
    log_level: LogLevel = LogLevel.INFO
    format: str = "json"
    output: Any = None
    include_timestamp: bool = True
    include_stack_trace: bool = False
    filters: Any = None

    def __post_init__(self) -> None:
        self.log_level = LogLevel.parse(self.log_level)
        if self.format not in SINK_FORMATS:
            raise InvalidArgumentError(
                f"Invalid audit format: {self.format}",
                parameter="format",
                suggestion=f"Use one of: {', '.join(SINK_FORMATS)}",
            )
        if self.filters is not None and not callable(self.filters):
            self.filters = list(self.filters)
            if not all(callable(f) for f in self.filters):
                raise InvalidArgumentError("Audit filters must be callables", parameter="filters")

    @classmethod
    def from_mapping(cls, options: Optional[Mapping[str, Any]] = None, **overrides: Any) -> "AuditOptions":
        """Build options from a mapping plus keyword overrides; unknown keys are ignored."""
        merged = dict(options or {})
        merged.update(overrides)
        known = {f.name for f in dataclasses.fields(cls)}
        return cls(**{k: v for k, v in merged.items() if k in known and v is not None})

    def accepts(self, entry: AuditEntry) -> bool:
        if self.filters is None:
            return True
        if callable(self.filters):
            return bool(self.filters(entry))
        return all(f(entry) for f in self.filters)


# ============================================================================
# AUDIT CAPABILITY
# ============================================================================

class AuditCapability:
    """Ordered, append-only intent log scoped to ``call`` blocks.

    Outside ``call`` the capability is inactive and its handlers record
    nothing, so activity from unrelated code never enters the log.
    """

    def __init__(self, target: Any, options: Optional[AuditOptions] = None):
        self.target = target
        self.options = options or AuditOptions()
        self.context = ContextSlot("audit")
        self._log: List[AuditEntry] = []
        self._next_index = 0

    def __repr__(self) -> str:
        return f"AuditCapability(entries={len(self._log)}, level={self.options.log_level.value!r})"

    # ========================================================================
    # ACTIVATION
    # ========================================================================

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` with auditing active and return its result."""
        return self.context.call(self, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        """Await ``body()`` with auditing active and return its result."""
        return await self.context.acall(self, body)

    def is_active(self) -> bool:
        return self.context.is_active()

    def register(self, kernel: Any) -> None:
        """Register one audit handler per operation kind on ``kernel``."""
        register_audit_handlers(kernel, self)

    # ========================================================================
    # LOG ACCESS
    # ========================================================================

    def get_audit_log(self) -> List[AuditEntry]:
        """Return a snapshot copy of the stored entries in append order."""
        return list(self._log)

    def clear_log(self) -> None:
        """Empty the log and reset the index counter to zero."""
        self._log.clear()
        self._next_index = 0
        logger.debug("Audit log cleared")

    def set_log_level(self, level: Union[LogLevel, str]) -> None:
        """Change the sink threshold.

        Raises:
            InvalidArgumentError: If ``level`` is not debug, info, warn or error
        """
        self.options.log_level = LogLevel.parse(level)

    # ========================================================================
    # RECORDING
    # ========================================================================

    def record(
        self,
        operation: Operation,
        status: str = STATUS_ALLOWED,
        **details: Any,
    ) -> Optional[AuditEntry]:
        """Append an entry for ``operation`` if auditing is active.

        This is the shared append routine used by every audit handler; other
        capabilities may call it to log a denial or error outcome. Filters run
        first, then the entry is stored, then written to the sink if its
        severity reaches ``log_level``.

        Args:
            operation: The operation being logged
            status: "allowed", "denied" or "error"
            **details: Extra entry fields (result, reason, error)

        Returns:
            The stored entry, or None if inactive or filtered out
        """
        if not self.is_active():
            return None

        draft = self._build_entry(operation, status, details)
        if not self.options.accepts(draft):
            return None

        entry = dataclasses.replace(draft, index=self._next_index)
        self._next_index += 1
        self._log.append(entry)

        if entry.severity.priority >= self.options.log_level.priority:
            self._emit(entry)
        return entry

    def _build_entry(self, operation: Operation, status: str, details: Dict[str, Any]) -> AuditEntry:
        fields: Dict[str, Any] = {
            "kind": operation.kind.value,
            "key": operation.key,
            "intent": derive_intent(operation.kind),
            "status": status,
            "value": operation.value,
        }
        if operation.kind in (OperationKind.INVOKE, OperationKind.CONSTRUCT):
            fields["args"] = list(operation.args)
            fields["kwargs"] = dict(operation.kwargs) or None
        if self.options.include_timestamp:
            fields["timestamp"] = datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")
        if self.options.include_stack_trace:
            fields["stack_trace"] = "".join(traceback.format_stack()[:-2])

        error = details.pop("error", None)
        if isinstance(error, BaseException):
            error = str(error)
        fields["error"] = error
        fields.update(details)
        return AuditEntry(**fields)

    def _emit(self, entry: AuditEntry) -> None:
        sink = self.options.output if self.options.output is not None else audit_logger
        if isinstance(sink, logging.Logger):
            sink.log(entry.severity.logging_level, format_entry(entry, self.options.format))
        elif callable(sink):
            sink(entry)
        elif callable(getattr(sink, "log", None)):
            sink.log(format_entry(entry, self.options.format))
        else:
            logger.warning(f"Audit output {sink!r} is neither callable nor has a log() method")

    # ========================================================================
    # EXPORT
    # ========================================================================

    def export_log(self, format: str = "json") -> str:
        """Serialize every stored entry.

        Args:
            format: "json" (2-space indented array), "csv" or "text"

        Returns:
            The serialized log ("" for an empty CSV or text export)

        Raises:
            UnsupportedFormatError: For any other format
        """
        if format == "json":
            return json.dumps([e.to_dict() for e in self._log], indent=2, default=_json_default)
        if format == "csv":
            return export_csv(self._log)
        if format == "text":
            return "\n".join(format_entry(e, "text") for e in self._log)
        raise UnsupportedFormatError(format, EXPORT_FORMATS)


# ============================================================================
# FORMATTING
# ============================================================================

def format_entry(entry: AuditEntry, format: str = "json") -> str:
    """Render one entry as a single JSON object or a single text line.

    Text lines read ``[timestamp] [index] kind "key" -> status (reason) ERROR: msg``
    with absent parts left out.
    """
    if format == "json":
        return json.dumps(entry.to_dict(), default=_json_default)

    parts = []
    if entry.timestamp:
        parts.append(f"[{entry.timestamp}]")
    parts.append(f"[{entry.index}]")
    parts.append(entry.kind)
    if entry.key is not None:
        parts.append(f'"{entry.key!s}"')
    parts.append(f"-> {entry.status}")
    if entry.reason:
        parts.append(f"({entry.reason})")
    if entry.error:
        parts.append(f"ERROR: {entry.error}")
    return " ".join(parts)


def _csv_cell(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (int, float)):
        return str(value)
    if not isinstance(value, str):
        value = json.dumps(value, default=_json_default)
    return '"' + value.replace('"', '""') + '"'


def export_csv(entries: List[AuditEntry]) -> str:
    """CSV with a header of every key seen across entries, in first-seen order."""
    if not entries:
        return ""

    rows = [e.to_dict() for e in entries]
    headers: List[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)

    lines = [",".join(headers)]
    for row in rows:
        lines.append(",".join(_csv_cell(row.get(h)) for h in headers))
    return "\n".join(lines)


# ============================================================================
# HANDLERS
# ============================================================================

def _observe(op: Operation) -> Dict[str, Any]:
    """Current underlying value for read-intent kinds, as seen before any decision.

    Observation never affects the operation: if the target raises while being
    inspected, the entry is recorded without a result.
    """
    try:
        if op.kind is OperationKind.READ:
            return {"result": reflect.get(op.target, op.key)}
        if op.kind is OperationKind.HAS:
            return {"result": reflect.has(op.target, op.key)}
        if op.kind is OperationKind.ENUMERATE:
            return {"result": reflect.own_keys(op.target)}
        if op.kind is OperationKind.DESCRIBE:
            return {"result": reflect.describe(op.target, op.key)}
    except Exception as e:
        logger.debug(f"Could not observe {op.kind.value} {op.key!r}: {e!r}")
    return {}


def _audit_handler(audit: AuditCapability, kind: OperationKind) -> Handler:
    def handler(op: Operation):
        if not audit.is_active():
            return UNDECIDED
        audit.record(op, STATUS_ALLOWED, **_observe(op))
        return UNDECIDED

    handler.__name__ = handler.__qualname__ = f"audit_{kind.value}_handler"
    return handler


def audit_read_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.READ)


def audit_write_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.WRITE)


def audit_has_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.HAS)


def audit_delete_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.DELETE)


def audit_enumerate_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.ENUMERATE)


def audit_describe_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.DESCRIBE)


def audit_invoke_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.INVOKE)


def audit_construct_handler(audit: AuditCapability) -> Handler:
    return _audit_handler(audit, OperationKind.CONSTRUCT)


def register_audit_handlers(kernel: Any, audit: AuditCapability) -> None:
    """Register one audit handler per kind on ``kernel``.

    Register these before any enforcing capability so every attempt is seen.
    """
    for kind in OperationKind:
        kernel.add_handler(kind, _audit_handler(audit, kind))
    logger.debug(f"Registered audit handlers on {kernel!r}")


def create_audit_context(
    target: Any,
    options: Optional[Mapping[str, Any]] = None,
    **overrides: Any,
) -> AuditCapability:
    """Create an AuditCapability.

    Args:
        target: The audited target (kept for reference)
        options: Mapping of AuditOptions fields; unknown keys are ignored
        **overrides: Individual option overrides

    Returns:
        A new, inactive AuditCapability

    Raises:
        InvalidArgumentError: If an option value is invalid
    """
    return AuditCapability(target, AuditOptions.from_mapping(options, **overrides))
