"""
Tests for speculative execution.

Run with: pytest tests/test_simulation.py -v
"""

import asyncio
from unittest.mock import Mock

import pytest

from proxyable import (
    CheckpointNotFoundError,
    ConfigurationError,
    Deny,
    OperationDeniedError,
    OperationKind,
    SimulationContext,
    SimulationStateError,
    UNDECIDED,
    create_audit_context,
    create_simulation_context,
    keys,
)


@pytest.fixture
def wallet():
    return {"balance": 100, "owner": "Alice"}


@pytest.fixture
def sim(wallet):
    return create_simulation_context(wallet)


class TestSpeculate:
    """Tests for speculate() isolation."""

    def test_writes_land_on_copy(self, sim, wallet):
        def withdraw():
            sim.handle["balance"] = sim.handle["balance"] - 30
            return sim.handle["balance"]

        assert sim.speculate(withdraw) == 70
        assert wallet["balance"] == 100
        assert sim.get_speculative_state() == {"balance": 70, "owner": "Alice"}

    def test_handle_outside_speculation_uses_target(self, sim, wallet):
        sim.handle["owner"] = "Bob"
        assert wallet["owner"] == "Bob"

    def test_delete_and_enumerate_see_speculative_state(self, sim, wallet):
        def body():
            del sim.handle["owner"]
            sim.handle["note"] = "x"
            return keys(sim.handle)

        assert sim.speculate(body) == ["balance", "note"]
        assert keys(sim.handle) == ["balance", "owner"]
        assert "owner" in wallet

    def test_mutations_recorded(self, sim):
        def body():
            sim.handle["balance"] = 90
            sim.handle["balance"] = 80

        sim.speculate(body)
        mutations = sim.get_mutations()
        assert [m.kind for m in mutations] == [OperationKind.WRITE, OperationKind.WRITE]
        assert (mutations[1].previous_value, mutations[1].value) == (90, 80)
        assert mutations[0].had_key is True

    def test_deep_copy_by_default(self):
        target = {"items": [1, 2]}
        sim = SimulationContext(target)
        sim.speculate(lambda: sim.handle["items"].append(3))
        assert target["items"] == [1, 2]

    def test_shallow_copy_shares_nested_values(self):
        target = {"items": [1, 2]}
        sim = SimulationContext(target, shallow=True)
        sim.speculate(lambda: sim.handle["items"].append(3))
        assert target["items"] == [1, 2, 3]

    def test_error_is_recorded_and_reraised(self, sim, wallet):
        def body():
            sim.handle["balance"] = 0
            raise RuntimeError("boom")

        with pytest.raises(RuntimeError, match="boom"):
            sim.speculate(body)

        node = sim.get_execution_tree().nodes[0]
        assert node.status == "error"
        assert node.speculations[0].error == "boom"
        assert wallet["balance"] == 100

    def test_async_speculation(self, sim, wallet):
        async def body():
            await asyncio.sleep(0)
            sim.handle["balance"] = 1
            return "done"

        assert asyncio.run(sim.aspeculate(body)) == "done"
        assert sim.get_change_set().modified == {"balance": (100, 1)}
        assert wallet["balance"] == 100

    def test_invocations_run_on_real_target(self):
        calls = []
        sim = SimulationContext(lambda x: calls.append(x) or x * 2)

        assert sim.speculate(lambda: sim.handle(4)) == 8
        assert calls == [4]
        mutation = sim.get_mutations()[0]
        assert mutation.kind is OperationKind.INVOKE
        assert (mutation.args, mutation.result) == ((4,), 8)


class TestNesting:
    """Tests for nested speculations and the execution tree."""

    def test_nested_changes_are_discarded(self, sim):
        def inner():
            sim.handle["balance"] = 0
            return sim.handle["balance"]

        def outer():
            sim.handle["balance"] = 50
            seen = sim.speculate(inner)
            return seen, sim.handle["balance"]

        assert sim.speculate(outer) == (0, 50)
        assert sim.get_speculative_state()["balance"] == 50

    def test_execution_tree(self, sim):
        sim.speculate(lambda: sim.speculate(lambda: None))
        tree = sim.get_execution_tree()

        root, child = tree.nodes
        assert tree.root_id == root.id
        assert tree.current_id == child.id
        assert child.parent_id == root.id
        assert (root.depth, child.depth) == (0, 1)
        assert root.id.startswith("sim_")

    def test_nesting_can_be_disabled(self, wallet):
        sim = SimulationContext(wallet, nested=False)
        with pytest.raises(ConfigurationError):
            sim.speculate(lambda: sim.speculate(lambda: None))

    def test_new_speculation_replaces_pending(self, sim):
        sim.speculate(lambda: sim.handle.__setitem__("balance", 1))
        sim.speculate(lambda: sim.handle.__setitem__("owner", "Bob"))

        assert sim.get_change_set().modified == {"owner": ("Alice", "Bob")}
        assert sim.get_execution_tree().nodes[0].status == "aborted"


class TestCommitAbort:
    """Tests for change sets, commit() and abort()."""

    def test_change_set(self, sim):
        def body():
            sim.handle["balance"] = 70
            sim.handle["currency"] = "EUR"
            del sim.handle["owner"]

        sim.speculate(body)
        changes = sim.get_change_set()
        assert changes.added == {"currency": "EUR"}
        assert changes.modified == {"balance": (100, 70)}
        assert changes.deleted == {"owner": "Alice"}

    def test_rewriting_same_value_is_not_a_change(self, sim):
        sim.speculate(lambda: sim.handle.__setitem__("balance", 100))
        assert sim.get_change_set().is_empty

    def test_change_set_empty_without_simulation(self, sim):
        assert sim.get_change_set().is_empty

    def test_commit_applies_changes(self, sim, wallet):
        def body():
            sim.handle["balance"] = 70
            del sim.handle["owner"]

        sim.speculate(body)
        changes = sim.commit()

        assert wallet == {"balance": 70}
        assert changes.modified == {"balance": (100, 70)}
        assert not sim.is_active()
        assert sim.get_execution_tree().nodes[0].status == "committed"

    def test_abort_discards(self, sim, wallet):
        sim.speculate(lambda: sim.handle.__setitem__("balance", 0))
        sim.abort()

        assert wallet["balance"] == 100
        assert not sim.is_active()
        with pytest.raises(SimulationStateError):
            sim.get_speculative_state()

    def test_commit_and_abort_need_pending_speculation(self, sim):
        with pytest.raises(SimulationStateError):
            sim.commit()
        with pytest.raises(SimulationStateError):
            sim.abort()

    def test_is_active(self, sim):
        assert not sim.is_active()
        assert sim.speculate(sim.is_active) is True
        assert sim.is_active()


class TestCheckpoints:
    """Tests for checkpoint() and restore()."""

    def test_restore_rewinds_state_and_mutations(self, sim):
        def body():
            sim.handle["balance"] = 90
            ckpt = sim.checkpoint()
            sim.handle["balance"] = 10
            sim.restore(ckpt)
            return sim.handle["balance"]

        assert sim.speculate(body) == 90
        assert len(sim.get_mutations()) == 1

    def test_unknown_checkpoint(self, sim):
        sim.speculate(lambda: None)
        with pytest.raises(CheckpointNotFoundError):
            sim.restore("ckpt_missing")

    def test_checkpoint_needs_simulation(self, sim):
        with pytest.raises(SimulationStateError):
            sim.checkpoint()

    def test_checkpoints_can_be_disabled(self, wallet):
        sim = SimulationContext(wallet, checkpoints=False)
        with pytest.raises(ConfigurationError):
            sim.speculate(sim.checkpoint)


class TestComposition:
    """Other capabilities registered on the simulation's kernel."""

    def test_gate_applies_inside_speculation(self, sim):
        sim.kernel.on_write(lambda op: Deny("negative") if op.value < 0 else UNDECIDED)

        def body():
            sim.handle["balance"] = -1

        with pytest.raises(OperationDeniedError):
            sim.speculate(body)
        assert sim.get_change_set().is_empty

    def test_audit_sees_speculative_reads(self, sim):
        audit = create_audit_context(sim.target, include_timestamp=False, output=Mock())
        audit.register(sim.kernel)

        def body():
            sim.handle["balance"] = 5
            return sim.handle["balance"]

        assert audit.call(lambda: sim.speculate(body)) == 5
        assert [e.kind for e in audit.get_audit_log()] == ["write", "read"]
