"""
Exception hierarchy for Proxyable.

This module defines all exception types raised by the interception kernel and
the capabilities built on it. Every error carries a stable code, a
human-readable message, a context dict and an optional suggestion, so a denial
can be logged or displayed without inspecting internal state.
"""

from typing import Any, Dict, Optional

# Error code constants
ERROR_CODE_UNKNOWN = "PX_ERR_UNKNOWN"
ERROR_CODE_DENIED = "PX_ERR_DENIED"
ERROR_CODE_INVARIANT = "PX_ERR_INVARIANT"
ERROR_CODE_CONTRACT = "PX_ERR_CONTRACT"
ERROR_CODE_NOT_VISIBLE = "PX_ERR_NOT_VISIBLE"
ERROR_CODE_CONFIG = "PX_ERR_CONFIG"
ERROR_CODE_INVALID_ARGUMENT = "PX_ERR_INVALID_ARGUMENT"
ERROR_CODE_UNSUPPORTED_FORMAT = "PX_ERR_UNSUPPORTED_FORMAT"
ERROR_CODE_NO_CONTEXT = "PX_ERR_NO_CONTEXT"
ERROR_CODE_INVALID_DECISION = "PX_ERR_INVALID_DECISION"
ERROR_CODE_NOT_FOUND = "PX_ERR_NOT_FOUND"
ERROR_CODE_TRANSACTION = "PX_ERR_TRANSACTION"
ERROR_CODE_SANDBOX = "PX_ERR_SANDBOX"
ERROR_CODE_SIMULATION = "PX_ERR_SIMULATION"


class ProxyableError(Exception):
    """
    Base exception class for all Proxyable errors.

    Attributes:
        code: The error code identifying the type of error
        message: Human-readable error description
        context: Additional context information about the error
        suggestion: A suggested remediation action for the error
    """

    def __init__(
        self,
        message: str,
        code: str = ERROR_CODE_UNKNOWN,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize a ProxyableError instance.

        Args:
            message: A human-readable description of the error
            code: An error code identifying the type of error
            context: Additional context information relevant to the error
            suggestion: A suggested action to resolve the error
        """
        super().__init__(message)
        self.code = code
        self.message = message
        self.context = context or {}
        self.suggestion = suggestion

    def __str__(self) -> str:
        """Return a formatted string representation of the error."""
        result = f"[{self.code}] {self.message}"
        if self.suggestion:
            result += f"\nSuggestion: {self.suggestion}"
        return result

    def __repr__(self) -> str:
        """Return a detailed string representation for debugging."""
        return (
            f"{self.__class__.__name__}(code={self.code!r}, message={self.message!r}, "
            f"context={self.context!r}, suggestion={self.suggestion!r})"
        )


# ============================================================================
# DENIALS
# ============================================================================

class OperationDeniedError(ProxyableError):
    """
    Raised when a capability denies a mediated operation.

    This is the deny-by-exception channel used for reads, invocations and
    constructions, and the error a strict handle raises when a write or delete
    is denied through the boolean channel.

    Attributes:
        kind: The operation kind that was denied (e.g. "read", "write")
        key: The property key involved, if any
        reason: Why the operation was denied
    """

    def __init__(
        self,
        message: str,
        kind: Optional[str] = None,
        key: Any = None,
        reason: Optional[str] = None,
        code: str = ERROR_CODE_DENIED,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        """
        Initialize an OperationDeniedError instance.

        Args:
            message: A human-readable description of the denial
            kind: The operation kind that was denied
            key: The property key involved, if any
            reason: Why the operation was denied
            code: Error code (subclasses override it)
            context: Additional context information
            suggestion: A suggested action to resolve the error
        """
        ctx = context or {}
        if kind is not None:
            ctx["kind"] = str(kind)
        if key is not None:
            ctx["key"] = key
        if reason is not None:
            ctx["reason"] = reason
        super().__init__(message, code=code, context=ctx, suggestion=suggestion)
        self.kind = kind
        self.key = key
        self.reason = reason if reason is not None else message


class InvariantViolationError(OperationDeniedError):
    """
    Raised when a write, delete, invocation or construction would break an
    invariant.

    Attributes:
        invariant: Name of the first failing invariant, if known
    """

    def __init__(
        self,
        reason: str,
        invariant: Optional[str] = None,
        kind: Optional[str] = None,
        key: Any = None,
        errors: Optional[list] = None,
    ) -> None:
        ctx: Dict[str, Any] = {}
        if invariant:
            ctx["invariant"] = invariant
        if errors:
            ctx["errors"] = list(errors)
        super().__init__(
            f"Invariant violation: {reason}",
            kind=kind,
            key=key,
            reason=reason,
            code=ERROR_CODE_INVARIANT,
            context=ctx,
            suggestion="Adjust the value so every registered invariant holds.",
        )
        self.invariant = invariant
        self.errors = list(errors or [reason])


class ContractViolationError(OperationDeniedError):
    """
    Raised when a call breaks its call-level contract (arguments, sequence,
    rate limit, return type or purity).

    Attributes:
        method: Name of the callable whose contract was violated
    """

    def __init__(self, reason: str, method: Optional[str] = None, kind: Optional[str] = None) -> None:
        super().__init__(
            f"Contract violation: {reason}",
            kind=kind,
            reason=reason,
            code=ERROR_CODE_CONTRACT,
            context={"method": method} if method else None,
        )
        self.method = method


class PropertyNotVisibleError(OperationDeniedError, LookupError):
    """Raised when a tenant view touches a key it cannot see."""

    def __init__(self, key: Any, tenant_id: str, kind: Optional[str] = None) -> None:
        super().__init__(
            f"Property not visible to tenant {tenant_id!r}: {key!s}",
            kind=kind,
            key=key,
            reason="not visible",
            code=ERROR_CODE_NOT_VISIBLE,
            context={"tenant_id": tenant_id},
        )
        self.tenant_id = tenant_id


class SandboxViolationError(OperationDeniedError):
    """Raised when sandboxed code reaches for a restricted property or operation."""

    def __init__(self, reason: str, kind: Optional[str] = None, key: Any = None) -> None:
        super().__init__(
            f"Sandbox violation: {reason}",
            kind=kind,
            key=key,
            reason=reason,
            code=ERROR_CODE_SANDBOX,
            suggestion="Relax the sandbox policy or run the code outside sandbox.call().",
        )


# ============================================================================
# CONFIGURATION ERRORS
# ============================================================================

class ConfigurationError(ProxyableError):
    """
    Raised synchronously when a capability or kernel is misconfigured.

    Configuration errors are never deferred: they surface at the call that
    supplied the bad value.
    """

    def __init__(
        self,
        message: str,
        code: str = ERROR_CODE_CONFIG,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        super().__init__(message, code=code, context=context, suggestion=suggestion)


class InvalidArgumentError(ConfigurationError, ValueError):
    """
    Raised when an invalid option or argument value is supplied.

    Attributes:
        parameter: The name of the invalid parameter, if applicable
    """

    def __init__(
        self,
        message: str,
        parameter: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        ctx = context or {}
        if parameter:
            ctx["parameter"] = parameter

        default_suggestion = suggestion or "Check the format and values of your input parameters."
        super().__init__(
            message,
            code=ERROR_CODE_INVALID_ARGUMENT,
            context=ctx,
            suggestion=default_suggestion,
        )
        self.parameter = parameter


class UnsupportedFormatError(ConfigurationError):
    """Raised when an export or sink format is not recognised."""

    def __init__(self, fmt: str, supported: tuple) -> None:
        super().__init__(
            f"Unsupported export format: {fmt}",
            code=ERROR_CODE_UNSUPPORTED_FORMAT,
            context={"format": fmt, "supported": list(supported)},
            suggestion=f"Use one of: {', '.join(supported)}",
        )
        self.format = fmt


class ContextNotActiveError(ConfigurationError):
    """Raised by ContextSlot.current() outside any activation."""

    def __init__(self, slot_name: str) -> None:
        super().__init__(
            f"Context {slot_name!r} is not active",
            code=ERROR_CODE_NO_CONTEXT,
            context={"slot": slot_name},
            suggestion="Run the code inside the capability's call() block.",
        )
        self.slot_name = slot_name


class InvalidDecisionError(ConfigurationError, TypeError):
    """Raised when a handler returns something that is not a legal decision for its kind."""

    def __init__(self, message: str, kind: Optional[str] = None, handler: Any = None) -> None:
        ctx: Dict[str, Any] = {}
        if kind is not None:
            ctx["kind"] = str(kind)
        if handler is not None:
            ctx["handler"] = getattr(handler, "__qualname__", repr(handler))
        super().__init__(
            message,
            code=ERROR_CODE_INVALID_DECISION,
            context=ctx,
            suggestion="Return UNDECIDED, Value(...), ALLOW, Deny(...), Throw(...) or Extend(...).",
        )


# ============================================================================
# STATE / LOOKUP ERRORS
# ============================================================================

class NotFoundError(ProxyableError, LookupError):
    """
    Raised when a requested resource is not found.

    Attributes:
        resource_type: The type of resource that was not found
        resource_id: The ID of the resource that was not found
    """

    def __init__(
        self,
        message: str,
        resource_type: Optional[str] = None,
        resource_id: Optional[str] = None,
        context: Optional[Dict[str, Any]] = None,
        suggestion: Optional[str] = None,
    ) -> None:
        ctx = context or {}
        if resource_type:
            ctx["resource_type"] = resource_type
        if resource_id:
            ctx["resource_id"] = resource_id

        default_suggestion = suggestion or "Verify that the resource ID is correct and the resource exists."
        super().__init__(
            message,
            code=ERROR_CODE_NOT_FOUND,
            context=ctx,
            suggestion=default_suggestion,
        )
        self.resource_type = resource_type
        self.resource_id = resource_id


class RecordingNotFoundError(NotFoundError):
    """Raised when replaying or fetching an unknown recording."""

    def __init__(self, recording_id: str) -> None:
        super().__init__(
            f"Recording {recording_id!r} not found",
            resource_type="recording",
            resource_id=recording_id,
            suggestion="Use get_recording_ids() to list stored recordings.",
        )


class TransactionStateError(ProxyableError):
    """Raised when commit() or rollback() is called with no open transaction."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            code=ERROR_CODE_TRANSACTION,
            suggestion="Open a transaction with call() before committing or rolling back.",
        )


class SimulationStateError(ProxyableError):
    """Raised when a simulation operation needs a pending speculation and there is none."""

    def __init__(self, message: str) -> None:
        super().__init__(
            message,
            code=ERROR_CODE_SIMULATION,
            suggestion="Run speculate() first, then commit() or abort() its changes.",
        )


class CheckpointNotFoundError(NotFoundError):
    """Raised when restoring an unknown simulation checkpoint."""

    def __init__(self, checkpoint_id: str) -> None:
        super().__init__(
            f"Checkpoint {checkpoint_id!r} not found",
            resource_type="checkpoint",
            resource_id=checkpoint_id,
            suggestion="Checkpoints belong to one speculation and are dropped on commit() or abort().",
        )
