"""
Proxyable.

A small interception kernel for Python objects, plus a set of capabilities
built on it.

A Kernel wraps one target and hands out a mediated handle. Every read, write,
membership test, deletion, enumeration, description, call and construction
made through the handle is dispatched to ordered handler chains, one per
operation kind. Capabilities register handlers on the chains and switch
themselves on only inside their own dynamically-scoped ``call`` block:

- **Audit logging** (``proxyable.audit``)
- **Access control** with file-based policies (``proxyable.acl``, ``proxyable.policy``)
- **Invariants** (``proxyable.invariants``)
- **Multi-tenant views** (``proxyable.tenancy``)
- **Transactions** with rollback (``proxyable.transactions``)
- **Record / replay** (``proxyable.replay``)
- **Call contracts** (``proxyable.contracts``)
- **Speculative execution** with commit / abort (``proxyable.simulation``)
- **Sandboxing** of untrusted code (``proxyable.sandbox``)
- **Virtual fields** (``proxyable.virtualization``)

Typical usage:

    from proxyable import Kernel, AccessControlCapability

    kernel = Kernel({"name": "Alice", "ssn": "123-45-6789"})
    acl = AccessControlCapability(kernel.target, can_read={"name"}, can_write=set(), can_delete=set())
    acl.register(kernel)

    def body():
        print(kernel.handle["name"])     # "Alice"
        kernel.handle["ssn"]             # raises OperationDeniedError

    acl.call(body)

Access control is fail-closed: once registered, its handlers refuse reads,
calls and constructions (and deny writes and deletes) outside ``acl.call``.
"""

import logging

from proxyable.exceptions import (
    ProxyableError,
    OperationDeniedError,
    InvariantViolationError,
    ContractViolationError,
    PropertyNotVisibleError,
    SandboxViolationError,
    ConfigurationError,
    InvalidArgumentError,
    UnsupportedFormatError,
    ContextNotActiveError,
    InvalidDecisionError,
    NotFoundError,
    RecordingNotFoundError,
    TransactionStateError,
    SimulationStateError,
    CheckpointNotFoundError,
)

from proxyable.context import ContextSlot

from proxyable.operations import (
    OperationKind,
    Operation,
    Decision,
    Undecided,
    Allow,
    Value,
    Deny,
    Throw,
    Extend,
    UNDECIDED,
    ALLOW,
    DENY,
    Handler,
)

from proxyable.reflect import Descriptor

from proxyable.kernel import (
    Kernel,
    MediatedHandle,
    InterceptorChain,
    DenialInfo,
    create_kernel,
    kernel_of,
    keys,
    describe,
)

# Capabilities
from proxyable.audit import (
    AuditCapability,
    AuditEntry,
    AuditOptions,
    LogLevel,
    create_audit_context,
    register_audit_handlers,
)
from proxyable.acl import (
    AccessControlCapability,
    Permissions,
    create_capability_context,
    register_acl_handlers,
)
from proxyable.policy import (
    AccessPolicy,
    PolicyValidator,
    ValidationResult,
    PolicyIssue,
    load_policy,
    validate_policy_file,
)
from proxyable.invariants import (
    InvariantCapability,
    InvariantReport,
    create_invariant_context,
    type_invariant,
    range_invariant,
    immutable_invariant,
    dependency_invariant,
    uniqueness_invariant,
    required_invariant,
    pattern_invariant,
)
from proxyable.tenancy import (
    TenantConfig,
    TenantView,
    create_tenant_view,
    create_tenant_views,
    current_tenant,
)
from proxyable.transactions import (
    JournalEntry,
    TransactionManager,
    create_transaction_context,
)
from proxyable.replay import (
    Invocation,
    Recording,
    ReplayResult,
    ReplayRecorder,
    create_replay_context,
)
from proxyable.contracts import (
    Contract,
    ContractCapability,
    RateLimitStats,
    create_contract_context,
)
from proxyable.simulation import (
    ChangeSet,
    Mutation,
    SimulationContext,
    create_simulation_context,
)
from proxyable.sandbox import (
    SandboxCapability,
    SandboxPolicy,
    create_sandbox_context,
    register_sandbox_handlers,
)
from proxyable.virtualization import (
    VirtualContext,
    VirtualField,
    create_virtual_context,
)

logging.getLogger(__name__).addHandler(logging.NullHandler())

# Read version from version.txt to ensure consistency with packaging
import os

_version_file = os.path.join(os.path.dirname(__file__), "version.txt")
try:
    with open(_version_file, "r") as f:
        __version__ = f.read().strip()
except (IOError, OSError):
    # Fallback if version.txt is missing (e.g., in development)
    __version__ = "0.1.0"

__author__ = "Proxyable Contributors"
__license__ = "MIT"

__all__ = [
    # Version info
    "__version__",
    "__author__",
    "__license__",
    # Exceptions
    "ProxyableError",
    "OperationDeniedError",
    "InvariantViolationError",
    "ContractViolationError",
    "PropertyNotVisibleError",
    "SandboxViolationError",
    "ConfigurationError",
    "InvalidArgumentError",
    "UnsupportedFormatError",
    "ContextNotActiveError",
    "InvalidDecisionError",
    "NotFoundError",
    "RecordingNotFoundError",
    "TransactionStateError",
    "SimulationStateError",
    "CheckpointNotFoundError",
    # Context
    "ContextSlot",
    # Operations and decisions
    "OperationKind",
    "Operation",
    "Decision",
    "Undecided",
    "Allow",
    "Value",
    "Deny",
    "Throw",
    "Extend",
    "UNDECIDED",
    "ALLOW",
    "DENY",
    "Handler",
    "Descriptor",
    # Kernel
    "Kernel",
    "MediatedHandle",
    "InterceptorChain",
    "DenialInfo",
    "create_kernel",
    "kernel_of",
    "keys",
    "describe",
    # Audit
    "AuditCapability",
    "AuditEntry",
    "AuditOptions",
    "LogLevel",
    "create_audit_context",
    "register_audit_handlers",
    # Access control
    "AccessControlCapability",
    "Permissions",
    "create_capability_context",
    "register_acl_handlers",
    "AccessPolicy",
    "PolicyValidator",
    "ValidationResult",
    "PolicyIssue",
    "load_policy",
    "validate_policy_file",
    # Invariants
    "InvariantCapability",
    "InvariantReport",
    "create_invariant_context",
    "type_invariant",
    "range_invariant",
    "immutable_invariant",
    "dependency_invariant",
    "uniqueness_invariant",
    "required_invariant",
    "pattern_invariant",
    # Tenancy
    "TenantConfig",
    "TenantView",
    "create_tenant_view",
    "create_tenant_views",
    "current_tenant",
    # Transactions
    "JournalEntry",
    "TransactionManager",
    "create_transaction_context",
    # Replay
    "Invocation",
    "Recording",
    "ReplayResult",
    "ReplayRecorder",
    "create_replay_context",
    # Contracts
    "Contract",
    "ContractCapability",
    "RateLimitStats",
    "create_contract_context",
    # Simulation
    "ChangeSet",
    "Mutation",
    "SimulationContext",
    "create_simulation_context",
    # Sandbox
    "SandboxCapability",
    "SandboxPolicy",
    "create_sandbox_context",
    "register_sandbox_handlers",
    # Virtualization
    "VirtualContext",
    "VirtualField",
    "create_virtual_context",
]
