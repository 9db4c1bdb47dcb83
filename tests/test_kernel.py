"""
Tests for the Kernel, its interceptor chains and the mediated handle.

Run with: pytest tests/test_kernel.py -v
"""

from unittest.mock import Mock

import pytest

from proxyable import (
    ALLOW,
    UNDECIDED,
    Deny,
    Descriptor,
    Extend,
    InvalidArgumentError,
    InvalidDecisionError,
    Kernel,
    MediatedHandle,
    OperationDeniedError,
    OperationKind,
    Throw,
    Value,
    create_kernel,
    describe,
    kernel_of,
    keys,
)


class TestDefaultBehaviour:
    """With no deciding handler, the handle behaves like the target."""

    def test_item_and_attribute_read(self, kernel):
        assert kernel.handle["name"] == "Alice"
        assert kernel.handle.age == 30

    def test_write(self, kernel, person):
        kernel.handle["age"] = 31
        kernel.handle.email = "alice@example.com"
        assert person == {"name": "Alice", "age": 31, "email": "alice@example.com"}

    def test_has_and_delete(self, kernel, person):
        assert "name" in kernel.handle
        del kernel.handle["name"]
        assert "name" not in kernel.handle
        assert "name" not in person

    def test_enumerate(self, kernel):
        assert list(kernel.handle) == ["name", "age"]
        assert keys(kernel.handle) == ["name", "age"]

    def test_iteration_enumerates_once(self, kernel):
        seen = []
        kernel.on_enumerate(lambda op: seen.append(op.kind))

        assert list(kernel.handle) == ["name", "age"]
        assert seen == [OperationKind.ENUMERATE]
        assert bool(kernel.handle)

    def test_describe(self, kernel):
        assert describe(kernel.handle, "name") == Descriptor(value="Alice", writable=True, enumerable=True)
        assert describe(kernel.handle, "missing") is None

    def test_missing_item_raises_key_error(self, kernel):
        with pytest.raises(KeyError):
            kernel.handle["missing"]

    def test_missing_attribute_on_mapping_raises_attribute_error(self, kernel):
        with pytest.raises(AttributeError):
            kernel.handle.missing
        assert getattr(kernel.handle, "missing", "fallback") == "fallback"

    def test_object_target(self, account_kernel, account):
        handle = account_kernel.handle
        assert handle.owner == "Alice"
        handle.balance = 150
        assert account.balance == 150
        assert keys(handle) == ["owner", "balance"]
        assert handle.deposit(10) == 160

    def test_object_target_class_attribute_describe(self, account_kernel):
        descriptor = describe(account_kernel.handle, "kind")
        assert descriptor.value == "checking"
        assert descriptor.enumerable is False

    def test_invoke_function(self):
        kernel = Kernel(lambda a, b=1: a + b)
        assert kernel.handle(2, b=3) == 5

    def test_construct_class(self):
        class Point:
            def __init__(self, x, y):
                self.x, self.y = x, y

        kernel = Kernel(Point)
        point = kernel.handle(1, 2)
        assert isinstance(point, Point)
        assert (point.x, point.y) == (1, 2)

    def test_default_target_is_empty_dict(self):
        kernel = create_kernel()
        assert kernel.target == {}
        kernel.handle["k"] = "v"
        assert kernel.target == {"k": "v"}

    def test_handle_is_truthy_even_when_empty(self):
        assert bool(Kernel({}).handle) is True

    def test_explicit_api(self, kernel, person):
        assert kernel.read("name") == "Alice"
        assert kernel.write("age", 40) is True
        assert kernel.has("age") is True
        assert kernel.delete("age") is True
        assert kernel.enumerate() == ["name"]
        assert person == {"name": "Alice"}


class TestDispatchOrder:
    """Tests for first-definitive-decision-wins dispatch."""

    def test_undecided_then_value(self, kernel):
        first = Mock(return_value=UNDECIDED)
        kernel.on_read(first)
        assert kernel.handle["name"] == "Alice"

        second = Mock(side_effect=lambda op: Value("Bob") if op.key == "name" else UNDECIDED)
        kernel.on_read(second)

        assert kernel.handle["name"] == "Bob"
        assert kernel.handle["age"] == 30
        assert first.call_count == 3
        assert second.call_count == 2

    def test_later_handlers_skipped_after_definitive_decision(self, kernel):
        first = Mock(return_value=Value("first"))
        second = Mock(return_value=Value("second"))
        kernel.on_read(first)
        kernel.on_read(second)

        assert kernel.handle["name"] == "first"
        second.assert_not_called()

    def test_deny_stops_gate_chain(self, kernel):
        later = Mock(return_value=ALLOW)
        kernel.on_write(lambda op: Deny("no"))
        kernel.on_write(later)

        assert kernel.write("age", 1) is False
        later.assert_not_called()

    def test_allow_continues_to_later_deny(self, kernel, person):
        kernel.on_write(lambda op: ALLOW)
        kernel.on_write(lambda op: Deny("later handler"))

        assert kernel.write("age", 1) is False
        assert person["age"] == 30

    def test_default_runs_exactly_once(self):
        target = Mock(return_value="result")
        kernel = Kernel(target)
        kernel.on_invoke(lambda op: UNDECIDED)
        kernel.on_invoke(lambda op: None)

        assert kernel.handle("x") == "result"
        target.assert_called_once_with("x")

    def test_operation_payload(self, kernel):
        seen = []
        kernel.on_write(lambda op: seen.append(op))
        kernel.handle["age"] = 31

        op = seen[0]
        assert op.kind is OperationKind.WRITE
        assert op.key == "age"
        assert op.value == 31
        assert op.target is kernel.target
        assert op.handle is kernel.handle

    def test_operation_kwargs_are_read_only(self):
        target = Mock(return_value="sent")
        kernel = Kernel(target)

        def tamper(op):
            with pytest.raises(TypeError):
                op.kwargs["to"] = "mallory"

        kernel.on_invoke(tamper)
        assert kernel.handle("hello", to="bob") == "sent"
        target.assert_called_once_with("hello", to="bob")

    def test_handler_added_during_dispatch_waits_for_next_operation(self, kernel):
        late = Mock(return_value=Value("late"))

        def register_late(op):
            kernel.on_read(late)
            return UNDECIDED

        kernel.on_read(register_late)
        assert kernel.handle["name"] == "Alice"
        late.assert_not_called()
        assert kernel.handle["name"] == "late"

    def test_registration_by_kind_name(self, kernel):
        kernel.add_handler("read", lambda op: Value("via name"))
        assert kernel.handle["name"] == "via name"
        assert len(kernel.chain("read")) == 1


class TestBooleanGates:
    """Tests for write/has/delete denial."""

    def test_balance_scenario(self):
        account = {"balance": 100}
        kernel = Kernel(account)
        kernel.on_write(
            lambda op: Deny("negative balance") if op.key == "balance" and op.value < 0 else UNDECIDED
        )

        assert kernel.write("balance", -50) is False
        assert account["balance"] == 100

        assert kernel.write("balance", 50) is True
        assert account["balance"] == 50

    def test_strict_handle_raises_on_deny(self, kernel, person):
        kernel.on_write(lambda op: Deny("read-only"))

        with pytest.raises(OperationDeniedError) as exc_info:
            kernel.handle["age"] = 99

        assert exc_info.value.reason == "read-only"
        assert exc_info.value.key == "age"
        assert person["age"] == 30

    def test_non_strict_handle_is_silent(self, person):
        kernel = Kernel(person, strict=False)
        kernel.on_delete(lambda op: Deny())

        del kernel.handle["name"]
        assert person["name"] == "Alice"

    def test_denied_has_is_false(self, kernel):
        kernel.on_has(lambda op: Deny("hidden") if op.key == "age" else UNDECIDED)
        assert "age" not in kernel.handle
        assert "name" in kernel.handle

    def test_last_denial(self, kernel):
        assert kernel.get_last_denial() is None

        def no_deletes(op):
            return Deny("deletes disabled")

        kernel.on_delete(no_deletes)
        kernel.delete("name")

        denial = kernel.get_last_denial()
        assert denial.kind is OperationKind.DELETE
        assert denial.key == "name"
        assert denial.reason == "deletes disabled"
        assert "no_deletes" in denial.handler
        assert denial.describe() == "delete of 'name' denied: deletes disabled"


class TestThrowAndErrors:
    """Tests for deny-by-exception and error propagation."""

    def test_throw_decision_raises(self, kernel):
        error = OperationDeniedError("nope", kind="read", key="name")
        kernel.on_read(lambda op: Throw(error))

        with pytest.raises(OperationDeniedError) as exc_info:
            kernel.handle["name"]
        assert exc_info.value is error

    def test_throw_on_gate_raises(self, kernel):
        kernel.on_write(lambda op: Throw(RuntimeError("broken")))
        with pytest.raises(RuntimeError, match="broken"):
            kernel.write("age", 1)

    def test_handler_exception_propagates_unchanged(self, kernel):
        def explode(op):
            raise KeyError("from handler")

        kernel.on_read(explode)
        with pytest.raises(KeyError, match="from handler"):
            kernel.handle["name"]

    def test_value_not_legal_for_write(self, kernel):
        kernel.on_write(lambda op: Value(1))
        with pytest.raises(InvalidDecisionError):
            kernel.write("age", 1)

    def test_deny_not_legal_for_read(self, kernel):
        kernel.on_read(lambda op: Deny())
        with pytest.raises(InvalidDecisionError):
            kernel.handle["name"]

    def test_non_decision_return_rejected(self, kernel):
        kernel.on_read(lambda op: "Bob")
        with pytest.raises(InvalidDecisionError):
            kernel.handle["name"]

    def test_extend_not_legal_outside_enumerate(self, kernel):
        kernel.on_read(lambda op: Extend(["x"]))
        with pytest.raises(InvalidDecisionError):
            kernel.handle["name"]

    def test_unknown_kind_rejected(self, kernel):
        with pytest.raises(InvalidArgumentError):
            kernel.add_handler("teleport", lambda op: UNDECIDED)

    def test_non_callable_handler_rejected(self, kernel):
        with pytest.raises(InvalidArgumentError):
            kernel.on_read("not a function")


class TestEnumerate:
    """Tests for Extend unions and Value replacement."""

    def test_extend_appends_after_default_keys(self, kernel):
        kernel.on_enumerate(lambda op: Extend(["computed"]))
        kernel.on_enumerate(lambda op: Extend(["name", "extra"]))
        assert keys(kernel.handle) == ["name", "age", "computed", "extra"]

    def test_value_replaces_answer(self, kernel):
        kernel.on_enumerate(lambda op: Extend(["ignored"]))
        kernel.on_enumerate(lambda op: Value(["only"]))
        assert list(kernel.handle) == ["only"]

    def test_dir_lists_string_keys(self):
        kernel = Kernel({"a": 1, 2: "b"})
        assert dir(kernel.handle) == ["a"]


class TestModuleHelpers:
    def test_kernel_of(self, kernel):
        assert kernel_of(kernel.handle) is kernel

    def test_kernel_of_rejects_other_objects(self):
        with pytest.raises(InvalidArgumentError):
            kernel_of({"not": "a handle"})

    def test_handle_type_and_repr(self, kernel):
        assert isinstance(kernel.handle, MediatedHandle)
        assert "MediatedHandle of dict" in repr(kernel.handle)

    def test_reflector_override(self, person):
        reflector = Mock()
        reflector.get.return_value = "reflected"
        kernel = Kernel(person, reflector=reflector)

        assert kernel.handle["name"] == "reflected"
        reflector.get.assert_called_once_with(person, "name")
