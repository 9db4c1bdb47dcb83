"""
Tests for ContextSlot activation semantics.

Run with: pytest tests/test_context.py -v
"""

import asyncio
import threading

import pytest

from proxyable import ContextNotActiveError, ContextSlot


class TestContextSlot:
    """Tests for activation, nesting and restoration."""

    def test_inactive_by_default(self):
        slot = ContextSlot("test")
        assert slot.current_or_none() is None
        assert not slot.is_active()

    def test_current_raises_outside_activation(self):
        slot = ContextSlot("test")
        with pytest.raises(ContextNotActiveError) as exc_info:
            slot.current()
        assert exc_info.value.slot_name == "test"

    def test_activate_exposes_state(self):
        slot = ContextSlot("test")
        state = {"log": []}
        with slot.activate(state) as active:
            assert active is state
            assert slot.current() is state
            assert slot.is_active()
        assert slot.current_or_none() is None

    def test_call_returns_body_result(self):
        slot = ContextSlot()
        assert slot.call("state", lambda: slot.current() + "!") == "state!"

    def test_call_passes_arguments(self):
        slot = ContextSlot()
        assert slot.call("s", lambda a, b=0: a + b, 1, b=2) == 3

    def test_restored_after_error(self):
        slot = ContextSlot()

        def boom():
            raise RuntimeError("body failed")

        with pytest.raises(RuntimeError):
            slot.call("state", boom)
        assert slot.current_or_none() is None

    def test_nested_activation_restores_outer(self):
        slot = ContextSlot()
        seen = []

        def inner():
            seen.append(slot.current())

        def outer():
            seen.append(slot.current())
            slot.call("inner", inner)
            seen.append(slot.current())

        slot.call("outer", outer)
        assert seen == ["outer", "inner", "outer"]

    def test_nested_restore_after_inner_error(self):
        slot = ContextSlot()

        def inner():
            raise ValueError("inner failed")

        def outer():
            with pytest.raises(ValueError):
                slot.call("inner", inner)
            return slot.current()

        assert slot.call("outer", outer) == "outer"

    def test_slots_are_independent(self):
        a = ContextSlot("a")
        b = ContextSlot("a")
        with a.activate(1):
            assert b.current_or_none() is None

    def test_none_is_a_valid_state(self):
        slot = ContextSlot()
        with slot.activate(None):
            assert slot.is_active()
            assert slot.current() is None


class TestContextSlotConcurrency:
    """Tests for thread and asyncio isolation."""

    def test_threads_do_not_share_activation(self):
        slot = ContextSlot()
        seen = []

        def worker():
            seen.append(slot.current_or_none())

        with slot.activate("main"):
            t = threading.Thread(target=worker)
            t.start()
            t.join()

        assert seen == [None]

    def test_acall_survives_await(self):
        slot = ContextSlot()

        async def body():
            await asyncio.sleep(0)
            return slot.current()

        assert asyncio.run(slot.acall("async-state", body)) == "async-state"
        assert slot.current_or_none() is None

    def test_concurrent_tasks_see_their_own_state(self):
        slot = ContextSlot()

        async def body(name):
            await asyncio.sleep(0)
            return slot.current() == name

        async def main():
            return await asyncio.gather(
                slot.acall("first", body, "first"),
                slot.acall("second", body, "second"),
            )

        assert asyncio.run(main()) == [True, True]
