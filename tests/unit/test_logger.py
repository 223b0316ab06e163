"""Tests for the structured logger."""

import json
import logging

from querypilot.utils.logger import StructuredLogger


def _events(caplog):
    return [json.loads(record.getMessage()) for record in caplog.records]


class TestStructuredLogger:
    """Test trace bookkeeping and log content."""

    def test_trace_counts_calls_and_retries(self, caplog) -> None:
        structured = StructuredLogger(name="querypilot.test.trace", level=logging.DEBUG)
        trace_id = structured.start_trace("total sales")

        structured.log_node_start(trace_id, "GenerateQuery")
        structured.log_llm_call("generate_sql", "prompt", "response", 5, "m", trace_id)
        structured.log_node_end(trace_id, "GenerateQuery")
        structured.log_retry(trace_id, 1, 2, "bad column")
        trace = structured.end_trace(trace_id, "success")

        assert trace.llm_calls == 1
        assert trace.retries == 1
        assert [node.node for node in trace.nodes_executed] == ["GenerateQuery"]
        assert structured.end_trace(trace_id) is None

    def test_finished_traces_are_released(self) -> None:
        structured = StructuredLogger(name="querypilot.test.release")

        for _ in range(5):
            structured.end_trace(structured.start_trace("prompt"))

        assert structured._traces == {}
        assert structured._contexts == {}

    def test_prompt_is_not_logged(self, caplog) -> None:
        structured = StructuredLogger(name="querypilot.test.prompt", level=logging.DEBUG)
        caplog.set_level(logging.DEBUG, logger="querypilot.test.prompt")

        trace_id = structured.start_trace("secret question")
        structured.log_llm_call("generate_sql", "secret question", "SELECT 1", 3, trace_id=trace_id)

        text = caplog.text
        assert "secret question" not in text
        assert any(event["event"] == "llm_call" for event in _events(caplog))

    def test_long_sql_is_truncated(self, caplog) -> None:
        structured = StructuredLogger(name="querypilot.test.sql", level=logging.DEBUG)
        caplog.set_level(logging.DEBUG, logger="querypilot.test.sql")

        structured.log_sql_execution("SELECT " + "x, " * 400 + "1", 0, 1)

        event = _events(caplog)[-1]
        assert event["sql_preview"].endswith("...")
        assert len(event["sql_preview"]) == 503

    def test_failed_source_logged_as_warning(self, caplog) -> None:
        structured = StructuredLogger(name="querypilot.test.source")
        caplog.set_level(logging.INFO, logger="querypilot.test.source")

        structured.log_source_event("abc", "failed", message="unsupported type")

        assert caplog.records[-1].levelno == logging.WARNING
        assert _events(caplog)[-1]["event"] == "source_failed"
