"""
Dynamically-scoped context slots.

A ContextSlot is a single named storage cell whose value is visible only during
the dynamic extent of an activation. Capabilities use one slot each to decide
whether they are currently active, so nested or concurrent activations never
leak into each other's activity window.

Slots are backed by ``contextvars``: each thread and each asyncio task sees its
own value, and an ``await`` inside an activation resumes with the same state.

Example:
    from proxyable import ContextSlot

    slot = ContextSlot("audit")

    with slot.activate({"log": []}):
        state = slot.current()      # {"log": []}

    slot.current_or_none()          # None
"""

import contextvars
import itertools
import logging
from contextlib import contextmanager
from typing import Any, Awaitable, Callable, Iterator, Optional, TypeVar

from proxyable.exceptions import ContextNotActiveError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_INACTIVE = object()
_slot_ids = itertools.count()


class ContextSlot:
    """A named, dynamically-scoped storage cell.

    Attributes:
        name: Human-readable slot name (used in errors and logs)
    """

    def __init__(self, name: str = "context"):
        self.name = name
        self._var: contextvars.ContextVar = contextvars.ContextVar(
            f"proxyable.{name}.{next(_slot_ids)}", default=_INACTIVE
        )

    def __repr__(self) -> str:
        return f"ContextSlot(name={self.name!r}, active={self.is_active()})"

    @contextmanager
    def activate(self, state: Any) -> Iterator[Any]:
        """Make ``state`` current for the body of the ``with`` block.

        The previous state (possibly "inactive") is restored on every exit
        path, including when the body raises. Re-activating an active slot
        nests: the outer state comes back when the inner block ends.
        """
        token = self._var.set(state)
        logger.debug(f"Activated context slot {self.name!r}")
        try:
            yield state
        finally:
            self._var.reset(token)
            logger.debug(f"Restored context slot {self.name!r}")

    def call(self, state: Any, body: Callable[..., T], *args: Any, **kwargs: Any) -> T:
        """Run ``body(*args, **kwargs)`` with ``state`` active and return its result."""
        with self.activate(state):
            return body(*args, **kwargs)

    async def acall(self, state: Any, body: Callable[..., Awaitable[T]], *args: Any, **kwargs: Any) -> T:
        """Await ``body(*args, **kwargs)`` with ``state`` active and return its result."""
        with self.activate(state):
            return await body(*args, **kwargs)

    def current(self) -> Any:
        """Return the active state.

        Raises:
            ContextNotActiveError: If no activation encloses the caller
        """
        value = self._var.get()
        if value is _INACTIVE:
            raise ContextNotActiveError(self.name)
        return value

    def current_or_none(self) -> Optional[Any]:
        """Return the active state, or None outside any activation."""
        value = self._var.get()
        return None if value is _INACTIVE else value

    def is_active(self) -> bool:
        return self._var.get() is not _INACTIVE
