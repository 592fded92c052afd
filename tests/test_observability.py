"""Test logging, tracing and environment configuration."""
import pytest
import json
import logging

from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from board.models.records import TaskPriority
from board.observability import JsonFormatter, setup_logging, setup_otel
from board.observability.logging_setup import LOGGER_NAMES
from workflow.config import BoardConfig


@pytest.fixture
def restore_loggers():
    saved = {
        name: (logging.getLogger(name).handlers[:], logging.getLogger(name).propagate, logging.getLogger(name).level)
        for name in LOGGER_NAMES
    }
    yield
    for name, (handlers, propagate, level) in saved.items():
        logger = logging.getLogger(name)
        logger.handlers[:] = handlers
        logger.propagate = propagate
        logger.setLevel(level)


def test_json_formatter_fields():
    record = logging.LogRecord("board.workspace", logging.WARNING, __file__, 10, "blocked %s", ("t1",), None)
    record.extra_fields = {"task_id": "t1"}
    entry = json.loads(JsonFormatter().format(record))
    assert entry["level"] == "WARNING"
    assert entry["logger"] == "board.workspace"
    assert entry["message"] == "blocked t1"
    assert entry["task_id"] == "t1"
    assert "trace_id" not in entry


def test_setup_logging_writes_json_file(tmp_path, restore_loggers):
    log_file = tmp_path / "taskflow.log"
    setup_logging("DEBUG", log_file=log_file)
    setup_logging("DEBUG", log_file=log_file)

    logger = logging.getLogger("workflow.gate")
    logger.debug("gate checked")
    assert len(logging.getLogger("workflow").handlers) == 2

    for handler in logging.getLogger("workflow").handlers:
        handler.flush()
    lines = [json.loads(line) for line in log_file.read_text().splitlines()]
    assert lines[-1]["message"] == "gate checked"
    assert lines[-1]["logger"] == "workflow.gate"


def test_workspace_actions_are_traced(open_workspace, seed_task):
    exporter = InMemorySpanExporter()
    setup_otel("taskflow-test", processor=SimpleSpanProcessor(exporter))

    task = seed_task("Traced", status="review", priority=TaskPriority.HIGH)
    open_workspace("alice").move_task(task.id, "done")

    spans = {span.name: span for span in exporter.get_finished_spans()}
    assert spans["gate.plan_move"].attributes["gate.outcome"] == "approval_required"
    assert spans["workspace.move_task"].attributes["workspace.blocked"] == "ApprovalRequired"


def test_config_from_env(monkeypatch):
    monkeypatch.setenv("TASKFLOW_UNDO_LIMIT", "5")
    monkeypatch.setenv("TASKFLOW_ESTIMATION_THRESHOLD", "1.5")
    monkeypatch.setenv("TASKFLOW_REALTIME", "off")
    monkeypatch.setenv("TASKFLOW_WEBHOOK_URL", "https://hooks.example.com")
    monkeypatch.setenv("TASKFLOW_AI_MODEL", "test")

    config = BoardConfig.from_env()

    assert config.history.undo_limit == 5
    assert config.estimation.approval_threshold == 1.5
    assert not config.enable_realtime
    assert config.enable_ai_suggestions
    assert config.notifications.webhook_url == "https://hooks.example.com"
    assert config.ai_model == "test"


def test_config_defaults():
    config = BoardConfig.default()
    assert config.history.undo_limit == 50
    assert config.presence.ttl_seconds == 15.0
    assert config.estimation.approval_threshold == 1.35
