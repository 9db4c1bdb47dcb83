"""
Tests for the audit capability.

Run with: pytest tests/test_audit.py -v
"""

import asyncio
import json
import logging
from unittest.mock import Mock

import pytest

from proxyable import (
    AuditEntry,
    AuditOptions,
    InvalidArgumentError,
    Kernel,
    LogLevel,
    Operation,
    OperationKind,
    UnsupportedFormatError,
    Value,
    create_audit_context,
    keys,
)
from proxyable.audit import STATUS_DENIED, STATUS_ERROR, derive_intent, format_entry


class Sensor:
    """Object whose property getter fails."""

    @property
    def reading(self):
        raise ValueError("hardware offline")


class LineCollector:
    """Sink object exposing only a log(str) method."""

    def __init__(self):
        self.lines = []

    def log(self, line):
        self.lines.append(line)


@pytest.fixture
def audited():
    kernel = Kernel({"balance": 100})
    audit = create_audit_context(kernel.target, include_timestamp=False, output=Mock())
    audit.register(kernel)
    return kernel, audit


def read_and_write(kernel):
    def body():
        kernel.handle["balance"] = 50
        return kernel.handle["balance"]
    return body


class TestAuditLog:
    """Tests for log contents, ordering and activation scope."""

    def test_records_intents_in_order(self, audited):
        kernel, audit = audited
        assert audit.call(read_and_write(kernel)) == 50

        log = audit.get_audit_log()
        assert [(e.index, e.kind, e.intent) for e in log] == [(0, "write", "write"), (1, "read", "read")]
        assert log[0].value == 50
        assert log[1].result == 50

    def test_nothing_recorded_outside_call(self, audited):
        kernel, audit = audited
        kernel.handle["balance"] = 10
        assert audit.get_audit_log() == []
        assert not audit.is_active()

    def test_indices_are_contiguous(self, audited):
        kernel, audit = audited

        def body():
            for i in range(5):
                kernel.handle["balance"] = i

        audit.call(body)
        audit.call(body)
        assert [e.index for e in audit.get_audit_log()] == list(range(10))

    def test_clear_log_resets_index(self, audited):
        kernel, audit = audited
        audit.call(read_and_write(kernel))
        audit.clear_log()
        assert audit.get_audit_log() == []

        audit.call(lambda: kernel.handle["balance"])
        assert audit.get_audit_log()[0].index == 0

    def test_get_audit_log_returns_copy(self, audited):
        kernel, audit = audited
        audit.call(read_and_write(kernel))
        snapshot = audit.get_audit_log()
        snapshot.clear()
        assert len(audit.get_audit_log()) == 2

    def test_every_kind_is_recorded(self):
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, include_timestamp=False, output=Mock())
        audit.register(kernel)

        def body():
            kernel.handle["a"]
            kernel.handle["b"] = 2
            "a" in kernel.handle
            del kernel.handle["b"]
            keys(kernel.handle)
            kernel.describe("a")

        audit.call(body)
        kinds = [e.kind for e in audit.get_audit_log()]
        assert kinds == ["read", "write", "has", "delete", "enumerate", "describe"]

    def test_invoke_records_call_intent_and_args(self):
        kernel = Kernel(lambda a, b: a * b)
        audit = create_audit_context(kernel.target, include_timestamp=False, output=Mock())
        audit.register(kernel)

        assert audit.call(lambda: kernel.handle(6, 7)) == 42
        entry = audit.get_audit_log()[0]
        assert entry.intent == "call"
        assert entry.args == [6, 7]

    def test_audit_handlers_defer(self, audited):
        kernel, audit = audited
        later = Mock(return_value=None)
        kernel.on_read(later)

        audit.call(lambda: kernel.handle["balance"])
        later.assert_called_once()

    def test_raising_property_does_not_stop_later_handlers(self):
        kernel = Kernel(Sensor())
        audit = create_audit_context(kernel.target, include_timestamp=False, output=Mock())
        audit.register(kernel)
        kernel.on_read(lambda op: Value(42) if op.key == "reading" else None)

        assert audit.call(lambda: kernel.handle.reading) == 42
        entry = audit.get_audit_log()[0]
        assert entry.key == "reading"
        assert entry.result is None

    def test_list_of_handle_records_one_enumerate(self, audited):
        kernel, audit = audited
        assert audit.call(lambda: list(kernel.handle)) == ["balance"]
        assert [e.kind for e in audit.get_audit_log()] == ["enumerate"]

    def test_acall(self, audited):
        kernel, audit = audited

        async def body():
            await asyncio.sleep(0)
            return kernel.handle["balance"]

        assert asyncio.run(audit.acall(body)) == 100
        assert len(audit.get_audit_log()) == 1

    def test_timestamp_and_stack_trace(self):
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, include_stack_trace=True, output=Mock())
        audit.register(kernel)

        audit.call(lambda: kernel.handle["a"])
        entry = audit.get_audit_log()[0]
        assert entry.timestamp.endswith("Z")
        assert "test_audit.py" in entry.stack_trace


class TestFilters:
    """Tests for filter predicates over draft entries."""

    def test_only_writes_scenario(self):
        kernel = Kernel({"balance": 100})
        audit = create_audit_context(
            kernel.target, filters=lambda e: e.kind == "write", output=Mock()
        )
        audit.register(kernel)

        audit.call(read_and_write(kernel))
        log = audit.get_audit_log()
        assert len(log) == 1
        assert log[0].kind == "write"
        assert log[0].index == 0

    def test_filter_list_requires_every_predicate(self):
        kernel = Kernel({"a": 1, "b": 2})
        audit = create_audit_context(
            kernel.target,
            filters=[lambda e: e.intent == "read", lambda e: e.key == "b"],
            output=Mock(),
        )
        audit.register(kernel)

        audit.call(lambda: (kernel.handle["a"], kernel.handle["b"]))
        assert [e.key for e in audit.get_audit_log()] == ["b"]

    def test_filtered_entries_are_not_emitted(self):
        sink = Mock()
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, filters=lambda e: False, output=sink)
        audit.register(kernel)

        audit.call(lambda: kernel.handle["a"])
        sink.assert_not_called()

    def test_non_callable_filter_rejected(self):
        with pytest.raises(InvalidArgumentError):
            AuditOptions(filters=["not callable"])


class TestSinks:
    """Tests for sink dispatch and the level gate."""

    def test_callable_sink_receives_entries(self):
        sink = Mock()
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, output=sink)
        audit.register(kernel)

        audit.call(lambda: kernel.handle["a"])
        (entry,), _ = sink.call_args
        assert isinstance(entry, AuditEntry)
        assert entry.key == "a"

    def test_log_method_sink_receives_text(self):
        sink = LineCollector()
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, output=sink, format="text", include_timestamp=False)
        audit.register(kernel)

        audit.call(lambda: kernel.handle["a"])
        assert sink.lines == ['[0] read "a" -> allowed']

    def test_default_sink_is_audit_logger(self, caplog):
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, include_timestamp=False)
        audit.register(kernel)

        with caplog.at_level(logging.INFO, logger="proxyable.audit"):
            audit.call(lambda: kernel.handle["a"])

        records = [r for r in caplog.records if r.name == "proxyable.audit"]
        assert len(records) == 1
        assert json.loads(records[0].getMessage())["key"] == "a"

    def test_level_gate_suppresses_sink_but_keeps_log(self):
        sink = Mock()
        kernel = Kernel({"a": 1})
        audit = create_audit_context(kernel.target, output=sink, log_level="warn")
        audit.register(kernel)

        audit.call(lambda: kernel.handle["a"])
        sink.assert_not_called()
        assert len(audit.get_audit_log()) == 1

    def test_denied_and_error_entries_pass_warn_gate(self):
        sink = Mock()
        audit = create_audit_context({}, output=sink, log_level="warn")
        op = Operation(kind=OperationKind.WRITE, target={}, key="x", value=1)

        def body():
            audit.record(op, STATUS_DENIED, reason="policy")
            audit.record(op, STATUS_ERROR, error=RuntimeError("boom"))

        audit.call(body)
        denied, errored = audit.get_audit_log()
        assert denied.severity is LogLevel.WARN
        assert errored.severity is LogLevel.ERROR
        assert errored.error == "boom"
        assert sink.call_count == 2

    def test_record_outside_call_is_ignored(self):
        audit = create_audit_context({}, output=Mock())
        op = Operation(kind=OperationKind.READ, target={}, key="x")
        assert audit.record(op) is None


class TestConfiguration:
    """Tests for option validation."""

    def test_unknown_option_keys_ignored(self):
        audit = create_audit_context({}, {"log_level": "debug", "colour": "blue"})
        assert audit.options.log_level is LogLevel.DEBUG

    def test_set_log_level(self):
        audit = create_audit_context({})
        audit.set_log_level("error")
        assert audit.options.log_level is LogLevel.ERROR

    def test_set_log_level_rejects_unknown(self):
        audit = create_audit_context({})
        with pytest.raises(InvalidArgumentError) as exc_info:
            audit.set_log_level("verbose")
        assert exc_info.value.message == "Invalid log level: verbose"

    def test_invalid_level_in_options(self):
        with pytest.raises(InvalidArgumentError):
            create_audit_context({}, log_level="loud")

    def test_invalid_sink_format(self):
        with pytest.raises(InvalidArgumentError):
            create_audit_context({}, format="xml")

    def test_derive_intent(self):
        assert derive_intent("has") == "read"
        assert derive_intent(OperationKind.CONSTRUCT) == "construct"
        assert derive_intent("teleport") == "unknown"


class TestExport:
    """Tests for JSON, CSV and text export."""

    def test_json_round_trip(self, audited):
        kernel, audit = audited
        audit.call(read_and_write(kernel))

        exported = audit.export_log("json")
        assert json.loads(exported) == [e.to_dict() for e in audit.get_audit_log()]
        assert exported.startswith("[\n  {")

    def test_text_export(self, audited):
        kernel, audit = audited
        audit.call(read_and_write(kernel))
        assert audit.export_log("text") == '[0] write "balance" -> allowed\n[1] read "balance" -> allowed'

    def test_csv_export(self, audited):
        kernel, audit = audited
        audit.call(read_and_write(kernel))

        lines = audit.export_log("csv").split("\n")
        assert lines[0] == "index,kind,key,intent,status,value,result"
        assert lines[1] == '0,"write","balance","write","allowed",50,'
        assert lines[2] == '1,"read","balance","read","allowed",,50'

    def test_csv_quotes_embedded_quotes_and_objects(self):
        kernel = Kernel({})
        audit = create_audit_context(kernel.target, include_timestamp=False, output=Mock())
        audit.register(kernel)

        def body():
            kernel.handle["note"] = 'say "hi"'
            kernel.handle["tags"] = ["a", "b"]

        audit.call(body)
        lines = audit.export_log("csv").split("\n")
        assert lines[1].endswith('"say ""hi"""')
        assert lines[2].endswith('"[""a"", ""b""]"')

    def test_empty_exports(self):
        audit = create_audit_context({})
        assert audit.export_log("json") == "[]"
        assert audit.export_log("csv") == ""
        assert audit.export_log("text") == ""

    def test_unsupported_format(self):
        audit = create_audit_context({})
        with pytest.raises(UnsupportedFormatError) as exc_info:
            audit.export_log("xml")
        assert exc_info.value.message == "Unsupported export format: xml"

    def test_format_entry_text_with_reason_and_error(self):
        entry = AuditEntry(index=3, kind="write", key="x", status="denied", reason="policy", error="boom")
        assert format_entry(entry, "text") == '[3] write "x" -> denied (policy) ERROR: boom'
