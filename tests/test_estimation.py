"""Test estimation bias profiles and previews."""
import pytest
from datetime import timedelta

from board.advisory.estimation import (
    Confidence,
    ContextType,
    EstimationContext,
    ProfileEstimationService,
    actual_minutes_for,
    completion_preview,
    confidence_for,
    weighted_median,
)
from board.models.records import Project, Task
from tests.helpers import ORG, FakeClock
from workflow.config import EstimationConfig


def _history(clock, count: int, estimate: int = 60, actual: int = 120, **fields) -> list[Task]:
    tasks = []
    for i in range(count):
        data = {
            "id": f"h{i}",
            "org_id": ORG,
            "project_id": "web",
            "created_by": "alice",
            "title": f"Done {i}",
            "status": "done",
            "estimate_minutes": estimate,
            "actual_minutes": actual,
            "completed_at": clock.now - timedelta(days=count - i),
        }
        data.update(fields)
        tasks.append(Task(**data))
    return tasks


def test_weighted_median():
    assert weighted_median([]) == 1.0
    assert weighted_median([(1.0, 1), (2.0, 1), (3.0, 1)]) == 2.0
    assert weighted_median([(1.0, 0.2), (3.0, 1.0)]) == 3.0


def test_confidence_levels():
    assert confidence_for(5, 0.0) == Confidence.LOW
    assert confidence_for(15, 0.1) == Confidence.MEDIUM
    assert confidence_for(30, 0.1) == Confidence.HIGH
    assert confidence_for(10, 0.9) == Confidence.LOW


def test_actual_minutes_falls_back_to_logged_time():
    task = Task(org_id=ORG, project_id="web", created_by="alice", title="x", time_logged_seconds=5430)
    assert actual_minutes_for(task) == 91


def test_profiles_from_completed_history():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    profiles = service.recompute_org_profiles(ORG, _history(clock, 16))
    kinds = {(p.context_type, p.context_key) for p in profiles}
    assert (ContextType.GLOBAL, "global") in kinds
    assert (ContextType.PROJECT, "web") in kinds
    overall = next(p for p in profiles if p.context_type == ContextType.GLOBAL)
    assert overall.bias_factor == 2.0
    assert overall.sample_size == 16
    assert overall.confidence == Confidence.MEDIUM


def test_ratios_are_clamped():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    profiles = service.recompute_org_profiles(ORG, _history(clock, 10, estimate=10, actual=600))
    assert all(p.bias_factor == 2.5 for p in profiles)


def test_preview_requires_approval_for_confident_overrun():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    service.recompute_org_profiles(ORG, _history(clock, 16))
    preview = service.preview_adjustment(ORG, "alice", 50, EstimationContext(project_id="web", status="todo"))
    assert preview.bias_factor_used == 2.0
    assert preview.adjusted_minutes == 105
    assert preview.requires_approval
    assert "+100%" in preview.explanation


def test_preview_is_neutral_without_enough_history():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    service.recompute_org_profiles(ORG, _history(clock, 3))
    preview = service.preview_adjustment(ORG, "alice", 50)
    assert preview.bias_factor_used == 1.0
    assert preview.adjusted_minutes == 45
    assert not preview.requires_approval
    assert preview.explanation == "Not enough historical data yet"


def test_preview_not_applicable_without_estimate():
    service = ProfileEstimationService()
    preview = service.preview_adjustment(ORG, "alice", None)
    assert not preview.applicable
    assert not preview.requires_approval


def test_calibration_can_be_disabled():
    clock = FakeClock()
    service = ProfileEstimationService(EstimationConfig(enable_calibration=False), clock=clock)
    service.recompute_org_profiles(ORG, _history(clock, 16))
    preview = service.preview_adjustment(ORG, "alice", 60)
    assert preview.adjusted_minutes == 60
    assert not preview.applicable


def test_completion_preview_uses_estimator():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    service.recompute_org_profiles(ORG, _history(clock, 16))
    task = Task(org_id=ORG, project_id="web", created_by="olivia", title="x", estimate_minutes=60, estimate_provided_by="alice")
    assert completion_preview(service, task).requires_approval
    assert completion_preview(None, task) is None
    assert completion_preview(service, task.model_copy(update={"estimate_minutes": None})) is None


def test_portfolio_risk():
    clock = FakeClock()
    service = ProfileEstimationService(clock=clock)
    service.recompute_org_profiles(ORG, _history(clock, 16))
    open_task = Task(org_id=ORG, project_id="web", created_by="alice", title="open", estimate_minutes=60)
    rows = service.portfolio_risk(ORG, [Project(id="web", org_id=ORG, name="Website")], [open_task])
    assert rows[0].estimated_minutes == 60
    assert rows[0].adjusted_minutes == 120
    assert rows[0].inflation_factor == 2.0
