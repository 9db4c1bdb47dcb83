"""
Transactional mutations with rollback.

Inside ``tx.call(body)`` every write and delete performed through the kernel
is applied immediately (later reads see it) and journaled together with the
value it replaced. ``rollback()`` walks the journal backwards and restores the
previous state; ``commit()`` keeps the changes and discards the journal.

Invocations and constructions are executed by the transaction handler and
journaled with their results for inspection; they cannot be rolled back.
Register the transaction manager after enforcing capabilities (ACL,
invariants) so a refused operation never reaches the journal.

Example:
    kernel = Kernel({"balance": 100})
    tx = TransactionManager(kernel.target)
    tx.register(kernel)

    def transfer():
        kernel.handle["balance"] = 0

    tx.call(transfer)
    tx.rollback()
    kernel.target["balance"]    # 100
"""

import logging
import time
from dataclasses import asdict, dataclass
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar

from proxyable import reflect
from proxyable.context import ContextSlot
from proxyable.exceptions import TransactionStateError
from proxyable.operations import UNDECIDED, Operation, OperationKind, Value

logger = logging.getLogger(__name__)

T = TypeVar("T")

REVERSIBLE_KINDS = (OperationKind.WRITE, OperationKind.DELETE)
JOURNALED_KINDS = REVERSIBLE_KINDS + (OperationKind.INVOKE, OperationKind.CONSTRUCT)


@dataclass(frozen=True)
class JournalEntry:
    """One journaled operation.

    Attributes:
        index: Position in the journal
        kind: The operation kind
        key: Property key (write/delete)
        value: Value written (write)
        previous_value: Value the key held before the operation
        had_property: Whether the key existed before the operation
        args: Call arguments (invoke/construct)
        result: Call result (invoke/construct)
        timestamp: Seconds since the epoch when the entry was journaled
    """
    index: int
    kind: OperationKind
    key: Any = None
    value: Any = None
    previous_value: Any = None
    had_property: bool = False
    args: Tuple[Any, ...] = ()
    result: Any = None
    timestamp: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        data = asdict(self)
        data["kind"] = self.kind.value
        return data


class TransactionManager:
    """Journal of mutations on one target, with commit and rollback."""

    def __init__(self, target: Any):
        self.target = target
        self.context = ContextSlot("transaction")
        self._journal: List[JournalEntry] = []
        self._open = False

    def __repr__(self) -> str:
        return f"TransactionManager(open={self._open}, entries={len(self._journal)})"

    # ========================================================================
    # LIFECYCLE
    # ========================================================================

    def call(self, body: Callable[[], T]) -> T:
        """Run ``body`` with journaling active, opening a transaction if none is open.

        The transaction stays open after ``body`` returns (or raises) until
        ``commit()`` or ``rollback()`` is called, and further ``call`` blocks
        join it.
        """
        self._begin()
        return self.context.call(self, body)

    async def acall(self, body: Callable[[], Awaitable[T]]) -> T:
        self._begin()
        return await self.context.acall(self, body)

    def _begin(self) -> None:
        if not self._open:
            self._open = True
            logger.info("Transaction opened")

    def commit(self) -> bool:
        """Keep every journaled change and close the transaction.

        Raises:
            TransactionStateError: If no transaction is open
        """
        if not self._open:
            raise TransactionStateError("No active transaction to commit")
        logger.info(f"Transaction committed ({len(self._journal)} journal entries)")
        self._close()
        return True

    def rollback(self) -> None:
        """Undo every journaled write and delete, newest first, and close the transaction.

        Keys that did not exist before the transaction are removed again.

        Raises:
            TransactionStateError: If no transaction is open
        """
        if not self._open:
            raise TransactionStateError("No active transaction to rollback")

        for entry in reversed(self._journal):
            if entry.kind is OperationKind.WRITE:
                if entry.had_property:
                    reflect.set(self.target, entry.key, entry.previous_value)
                elif reflect.has(self.target, entry.key):
                    reflect.delete(self.target, entry.key)
            elif entry.kind is OperationKind.DELETE and entry.had_property:
                reflect.set(self.target, entry.key, entry.previous_value)

        logger.info(f"Transaction rolled back ({len(self._journal)} journal entries)")
        self._close()

    def _close(self) -> None:
        self._journal = []
        self._open = False

    def is_active(self) -> bool:
        """True while a transaction is open (between ``call`` and commit/rollback)."""
        return self._open

    # ========================================================================
    # INSPECTION
    # ========================================================================

    def get_journal(self) -> List[JournalEntry]:
        """Return a copy of every journal entry."""
        return list(self._journal)

    def get_dry_run(self) -> List[JournalEntry]:
        """Return the pending writes and deletes that ``commit()`` would keep."""
        return [e for e in self._journal if e.kind in REVERSIBLE_KINDS]

    # ========================================================================
    # HANDLERS
    # ========================================================================

    def register(self, kernel: Any) -> None:
        for kind in JOURNALED_KINDS:
            kernel.add_handler(kind, self.journal_handler)

    def _append(self, kind: OperationKind, **fields: Any) -> JournalEntry:
        entry = JournalEntry(index=len(self._journal), kind=kind, timestamp=time.time(), **fields)
        self._journal.append(entry)
        logger.debug(f"Journaled {kind.value} #{entry.index}")
        return entry

    def journal_handler(self, op: Operation):
        """Handler: journal ``op`` while journaling is active."""
        if self.context.current_or_none() is not self:
            return UNDECIDED

        if op.kind in REVERSIBLE_KINDS:
            had_property = reflect.has(op.target, op.key)
            previous: Optional[Any] = reflect.get(op.target, op.key) if had_property else None
            self._append(
                op.kind,
                key=op.key,
                value=op.value,
                previous_value=previous,
                had_property=had_property,
            )
            return UNDECIDED

        if op.kind is OperationKind.INVOKE:
            result = reflect.invoke(op.target, *op.args, **op.kwargs)
        else:
            result = reflect.construct(op.target, *op.args, **op.kwargs)
        self._append(op.kind, args=op.args, result=result)
        return Value(result)


def create_transaction_context(target: Any) -> TransactionManager:
    return TransactionManager(target)
