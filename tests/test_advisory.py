"""Test the circuit breaker, AI advisory service and notification sinks."""
import pytest
import json

import httpx
from pydantic_ai.models.test import TestModel

from board.advisory.ai import AIAdvisoryService, RiskAssessment, TaskBreakdown, create_agent
from board.advisory.breaker import CircuitBreaker, CircuitOpenError, CircuitState
from board.advisory.notifications import (
    InMemoryNotificationSink,
    NotificationDeliveryError,
    NotificationKind,
    WebhookNotificationSink,
    sign_payload,
)
from board.models.records import Task, TaskPriority
from tests.helpers import ORG, FakeClock


def _breaker(**kwargs) -> CircuitBreaker:
    kwargs.setdefault("max_retries", 0)
    kwargs.setdefault("backoff_base", 0)
    return CircuitBreaker(name="test", **kwargs)


async def _fail():
    raise ConnectionError("provider down")


# ---------------------------------------------------------------------------
# Circuit breaker
# ---------------------------------------------------------------------------

@pytest.mark.asyncio
async def test_breaker_passes_results_through():
    breaker = _breaker()

    async def ok(x):
        return x * 2

    assert await breaker.call(ok, 21) == 42
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_breaker_opens_after_threshold():
    breaker = _breaker(failure_threshold=2)
    for _ in range(2):
        assert await breaker.call(_fail, fallback=lambda: "degraded") == "degraded"
    assert breaker.state == CircuitState.OPEN
    assert breaker.failure_count == 2

    with pytest.raises(CircuitOpenError):
        await breaker.call(_fail)


@pytest.mark.asyncio
async def test_breaker_half_opens_after_recovery_window():
    clock = FakeClock()
    breaker = _breaker(failure_threshold=1, recovery_timeout=30, clock=clock)
    await breaker.call(_fail, fallback=lambda: None)
    assert breaker.state == CircuitState.OPEN

    clock.advance(seconds=31)
    assert breaker.state == CircuitState.HALF_OPEN

    async def ok():
        return "back"

    assert await breaker.call(ok) == "back"
    assert breaker.state == CircuitState.CLOSED


@pytest.mark.asyncio
async def test_breaker_retries_then_serves_cache():
    breaker = _breaker(max_retries=1)
    attempts = []

    async def flaky():
        attempts.append(1)
        if len(attempts) == 1:
            raise TimeoutError("slow")
        return "fresh"

    assert await breaker.call(flaky, cache_key="k") == "fresh"
    assert len(attempts) == 2
    assert await breaker.call(_fail, cache_key="k") == "fresh"


@pytest.mark.asyncio
async def test_breaker_raises_without_fallback():
    with pytest.raises(ConnectionError):
        await _breaker().call(_fail)


# ---------------------------------------------------------------------------
# AI advisory
# ---------------------------------------------------------------------------

def _test_model_factory(outputs: dict):
    def factory(name, output_type, prompt):
        return create_agent(name, output_type, prompt, model=TestModel(custom_output_args=outputs[name]))
    return factory


class BrokenAgent:
    async def run(self, prompt):
        raise ConnectionError("provider down")


def _task(**fields) -> Task:
    data = {"org_id": ORG, "project_id": "web", "created_by": "olivia", "title": "Launch site"}
    data.update(fields)
    return Task(**data)


@pytest.mark.asyncio
async def test_predict_risk_with_test_model():
    service = AIAdvisoryService(
        agent_factory=_test_model_factory({"risk": {"is_at_risk": True, "reason": "Due tomorrow"}}),
        breaker=_breaker(),
    )
    assessment = await service.predict_risk(_task(priority=TaskPriority.HIGH))
    assert assessment == RiskAssessment(is_at_risk=True, reason="Due tomorrow")


@pytest.mark.asyncio
async def test_breakdown_and_tags_are_cleaned():
    service = AIAdvisoryService(
        agent_factory=_test_model_factory({
            "breakdown": {"steps": ["Draft copy", "  ", " Review copy "]},
            "tags": {"tags": ["web", "web", " launch ", "a", "b", "c", "d"]},
        }),
        breaker=_breaker(),
    )
    assert await service.breakdown("Launch site") == ["Draft copy", "Review copy"]
    assert await service.suggest_tags("Launch site") == ["web", "launch", "a", "b", "c"]


@pytest.mark.asyncio
async def test_failures_degrade_to_neutral_answers():
    service = AIAdvisoryService(agent_factory=lambda *args: BrokenAgent(), breaker=_breaker())
    assert await service.predict_risk(_task()) == RiskAssessment()
    assert await service.breakdown("Launch site") == []
    assert await service.suggest_tags("Launch site") == []


def test_agents_are_built_once_per_kind():
    built = []

    def factory(name, output_type, prompt):
        built.append(name)
        return BrokenAgent()

    service = AIAdvisoryService(agent_factory=factory)
    service._agent("risk", RiskAssessment, "p")
    service._agent("risk", RiskAssessment, "p")
    service._agent("breakdown", TaskBreakdown, "p")
    assert built == ["risk", "breakdown"]


# ---------------------------------------------------------------------------
# Notifications
# ---------------------------------------------------------------------------

def test_in_memory_inbox():
    sink = InMemoryNotificationSink()
    first = sink.notify("alice", "New assignment", "Assigned: Launch", NotificationKind.ASSIGNMENT, "t1")
    sink.notify("alice", "New comment", "Bob commented")
    assert [n.title for n in sink.inbox("alice")] == ["New comment", "New assignment"]
    assert sink.mark_read("alice", first.id) == 1
    assert [n.title for n in sink.inbox("alice", unread_only=True)] == ["New comment"]
    assert sink.mark_read("alice") == 1
    assert sink.inbox("bob") == []


def test_webhook_signs_payload():
    seen = []

    def handler(request: httpx.Request) -> httpx.Response:
        seen.append(request)
        return httpx.Response(204)

    sink = WebhookNotificationSink("https://hooks.example.com/taskflow", secret="s3cret", transport=httpx.MockTransport(handler))
    notification = sink.notify("alice", "Task approved", "Ready", NotificationKind.APPROVAL, "t1")

    request = seen[0]
    body = request.content.decode()
    assert json.loads(body)["id"] == notification.id
    assert request.headers["X-Taskflow-Event"] == "notification.approval"
    assert request.headers["X-Taskflow-Signature"] == f"sha256={sign_payload(body, 's3cret')}"
    assert sink.deliveries[0].success
    assert sink.deliveries[0].status_code == 204


def test_webhook_retries_then_raises(monkeypatch):
    monkeypatch.setattr(WebhookNotificationSink, "BACKOFF_BASE", 0)
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(503)

    sink = WebhookNotificationSink("https://hooks.example.com/taskflow", transport=httpx.MockTransport(handler))
    with pytest.raises(NotificationDeliveryError):
        sink.notify("alice", "Due soon", "Soon")
    assert len(calls) == WebhookNotificationSink.MAX_ATTEMPTS
    assert "X-Taskflow-Signature" not in calls[0].headers
    assert sink.deliveries[-1].error == "HTTP 503"
    assert not sink.deliveries[-1].success
