"""
Taskflow Estimation — planned-vs-actual bias profiles and risk previews.

Each estimator gets bias profiles built from their completed tasks: one
global profile, plus one per project, stage and tag once a context has
enough samples. A profile's bias factor is the recency-weighted median of
``actual / estimate`` ratios (clamped to [0.5, 2.5]) over the most recent
window of tasks.

A preview blends the profiles matching a task's context, weighted by sample
count, and scales the planned minutes by the blended factor. A preview
requires approval when confidence is not low and the factor reaches the
configured threshold; the Stage Transition Gate uses that to decide whether
completion needs risk sign-off.

The gate consumes the ``EstimationService`` protocol only. Profiles are
computed ahead of time by ``recompute_org_profiles`` so previews never hit
storage or the network.
"""
from __future__ import annotations
from collections import defaultdict
from datetime import datetime
from enum import Enum
from typing import Callable, Iterable, Optional, Protocol, Sequence
import math

from pydantic import BaseModel, Field

from board.models.records import Project, Task, new_id, utcnow
from workflow.config import EstimationConfig


class Confidence(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ContextType(str, Enum):
    GLOBAL = "global"
    PROJECT = "project"
    STAGE = "stage"
    TAG = "tag"


class EstimationContext(BaseModel):
    project_id: Optional[str] = None
    status: Optional[str] = None
    tags: list[str] = Field(default_factory=list)


class EstimationProfile(BaseModel):
    id: str = Field(default_factory=new_id)
    org_id: str
    user_id: str
    context_type: ContextType
    context_key: str
    bias_factor: float
    confidence: Confidence
    sample_size: int
    variance_score: float
    trend_delta: float = 0.0
    window_start: Optional[datetime] = None
    window_end: Optional[datetime] = None
    updated_at: datetime = Field(default_factory=utcnow)


class EstimationPreview(BaseModel):
    estimated_minutes: int
    adjusted_minutes: int
    bias_factor_used: float = 1.0
    confidence: Confidence = Confidence.LOW
    sample_size: int = 0
    explanation: str = ""
    requires_approval: bool = False
    applicable: bool = True


class PortfolioRiskRow(BaseModel):
    project_id: str
    project_name: str
    estimated_minutes: int
    adjusted_minutes: int
    inflation_factor: float
    delta_minutes: int
    task_count: int


class EstimationService(Protocol):
    def preview_adjustment(
        self,
        org_id: str,
        user_id: str,
        planned_minutes: Optional[int],
        context: Optional[EstimationContext] = None,
    ) -> EstimationPreview:
        ...


def neutral_preview(planned_minutes: Optional[int], explanation: str) -> EstimationPreview:
    minutes = planned_minutes or 0
    return EstimationPreview(
        estimated_minutes=minutes,
        adjusted_minutes=minutes,
        explanation=explanation,
        applicable=False,
    )


def completion_preview(service: Optional[EstimationService], task: Task) -> Optional[EstimationPreview]:
    """Preview for the task's own estimate, or None when there is nothing to assess."""
    if service is None or not task.estimate_minutes:
        return None
    estimator = task.estimate_provided_by or task.created_by
    return service.preview_adjustment(
        task.org_id,
        estimator,
        task.estimate_minutes,
        EstimationContext(project_id=task.project_id, status=task.status, tags=list(task.tags)),
    )


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def _round_half_up(value: float) -> int:
    return int(math.floor(value + 0.5))


def actual_minutes_for(task: Task) -> int:
    if task.actual_minutes:
        return task.actual_minutes
    return _round_half_up(task.time_logged_seconds / 60) if task.time_logged_seconds else 0


def variance(values: Sequence[float]) -> float:
    if not values:
        return 0.0
    mean = sum(values) / len(values)
    return round(sum((v - mean) ** 2 for v in values) / len(values), 4)


def weighted_median(entries: Sequence[tuple[float, float]]) -> float:
    """Median of ``(value, weight)`` pairs: first value whose cumulative weight reaches half."""
    if not entries:
        return 1.0
    ordered = sorted(entries, key=lambda e: e[0])
    half = sum(w for _, w in ordered) / 2
    cumulative = 0.0
    for value, weight in ordered:
        cumulative += weight
        if cumulative >= half:
            return value
    return ordered[-1][0]


def confidence_for(sample_size: int, spread: float, min_samples: int = 8) -> Confidence:
    if sample_size < min_samples:
        return Confidence.LOW
    if sample_size >= 30 and spread <= 0.18:
        return Confidence.HIGH
    if sample_size >= 15 and spread <= 0.35:
        return Confidence.MEDIUM
    return Confidence.MEDIUM if sample_size >= 20 else Confidence.LOW


# ---------------------------------------------------------------------------
# Reference implementation
# ---------------------------------------------------------------------------

class ProfileEstimationService:
    """Estimation service over cached per-user bias profiles."""

    def __init__(self, config: Optional[EstimationConfig] = None, clock: Callable[[], datetime] = utcnow):
        self.config = config or EstimationConfig()
        self.clock = clock
        self._profiles: dict[str, list[EstimationProfile]] = {}

    # -- Profile building --

    def _is_completed(self, task: Task) -> bool:
        if task.completed_at is not None:
            return True
        status = (task.status or "").lower()
        return status in ("done", "completed") or "done" in status

    def calibratable(self, org_id: str, tasks: Iterable[Task]) -> list[Task]:
        return [
            t for t in tasks
            if t.org_id == org_id
            and self._is_completed(t)
            and (t.estimate_minutes or 0) > 0
            and actual_minutes_for(t) > 0
            and (t.estimate_provided_by or t.created_by)
        ]

    def _profile(
        self,
        tasks: Sequence[Task],
        org_id: str,
        user_id: str,
        context_type: ContextType,
        context_key: str,
    ) -> Optional[EstimationProfile]:
        cfg = self.config
        relevant = [t for t in tasks if (t.estimate_provided_by or t.created_by) == user_id][-cfg.window_tasks:]
        if not relevant:
            return None

        now = self.clock()
        ratios: list[tuple[float, float]] = []
        for task in relevant:
            estimate, actual = task.estimate_minutes or 0, actual_minutes_for(task)
            if not estimate or not actual:
                continue
            finished = task.completed_at or task.updated_at or now
            age_days = max(0.0, (now - finished).total_seconds() / 86400)
            weight = max(0.2, 1 - age_days / 180)
            ratio = min(cfg.max_ratio, max(cfg.min_ratio, actual / estimate))
            ratios.append((ratio, weight))
        if not ratios:
            return None

        values = [r for r, _ in ratios]
        bias = weighted_median(ratios)
        spread = variance(values)
        midpoint = len(relevant) // 2
        older, newer = values[:midpoint], values[midpoint:]
        older_avg = sum(older) / len(older) if older else bias
        newer_avg = sum(newer) / len(newer) if newer else bias

        return EstimationProfile(
            org_id=org_id,
            user_id=user_id,
            context_type=context_type,
            context_key=context_key,
            bias_factor=round(bias, 3),
            confidence=confidence_for(len(ratios), spread, cfg.min_samples),
            sample_size=len(ratios),
            variance_score=spread,
            trend_delta=round(newer_avg - older_avg, 3),
            window_start=relevant[0].completed_at or relevant[0].updated_at,
            window_end=relevant[-1].completed_at or relevant[-1].updated_at,
            updated_at=now,
        )

    def recompute_org_profiles(self, org_id: str, tasks: Iterable[Task]) -> list[EstimationProfile]:
        """Rebuild and cache every profile for the organization."""
        calibratable = sorted(
            self.calibratable(org_id, tasks),
            key=lambda t: t.completed_at or t.updated_at,
        )
        profiles: list[EstimationProfile] = []
        estimators = list(dict.fromkeys(t.estimate_provided_by or t.created_by for t in calibratable))

        for user_id in estimators:
            mine = [t for t in calibratable if (t.estimate_provided_by or t.created_by) == user_id]
            overall = self._profile(mine, org_id, user_id, ContextType.GLOBAL, "global")
            if overall:
                profiles.append(overall)

            contexts: dict[tuple[ContextType, str], list[Task]] = defaultdict(list)
            for task in mine:
                contexts[(ContextType.PROJECT, task.project_id)].append(task)
                contexts[(ContextType.STAGE, task.status or "unknown")].append(task)
                for tag in task.tags:
                    contexts[(ContextType.TAG, tag)].append(task)

            for (context_type, key), bucket in contexts.items():
                if len(bucket) < self.config.context_min_samples:
                    continue
                profile = self._profile(bucket, org_id, user_id, context_type, key)
                if profile:
                    profiles.append(profile)

        self._profiles[org_id] = profiles
        return profiles

    def profiles_for(self, org_id: str, user_id: str) -> list[EstimationProfile]:
        return [p for p in self._profiles.get(org_id, []) if p.user_id == user_id]

    # -- Previews --

    @staticmethod
    def blend(profiles: Sequence[EstimationProfile]) -> tuple[float, Confidence, int]:
        if not profiles:
            return 1.0, Confidence.LOW, 0
        samples = sum(p.sample_size for p in profiles)
        factor = sum(p.bias_factor * p.sample_size for p in profiles) / max(1, samples)
        levels = {p.confidence for p in profiles}
        if Confidence.HIGH in levels:
            confidence = Confidence.HIGH
        elif Confidence.MEDIUM in levels:
            confidence = Confidence.MEDIUM
        else:
            confidence = Confidence.LOW
        return round(factor, 3), confidence, samples

    def preview_adjustment(
        self,
        org_id: str,
        user_id: str,
        planned_minutes: Optional[int],
        context: Optional[EstimationContext] = None,
    ) -> EstimationPreview:
        cfg = self.config
        if not cfg.enable_calibration:
            return neutral_preview(planned_minutes, "Forecast calibration is turned off")
        if not planned_minutes or planned_minutes <= 0:
            return neutral_preview(planned_minutes, "No estimate to calibrate")

        context = context or EstimationContext()
        profiles = self.profiles_for(org_id, user_id)
        lookup = {(p.context_type, p.context_key): p for p in profiles}
        wanted = [(ContextType.GLOBAL, "global")]
        if context.project_id:
            wanted.append((ContextType.PROJECT, context.project_id))
        if context.status:
            wanted.append((ContextType.STAGE, context.status))
        wanted.extend((ContextType.TAG, tag) for tag in context.tags)
        candidates = [lookup[key] for key in wanted if key in lookup]

        factor, confidence, samples = self.blend(candidates)
        enough = samples >= cfg.min_samples
        if not enough:
            factor = 1.0
        step = cfg.rounding_minutes
        adjusted = max(step, _round_half_up(planned_minutes * factor / step) * step)
        requires_approval = (
            cfg.require_approval
            and confidence != Confidence.LOW
            and factor >= cfg.approval_threshold
        )
        delta = _round_half_up((factor - 1) * 100)
        explanation = (
            f"Adjusted from your historical pattern ({'+' if delta > 0 else ''}{delta}% across {samples} completed tasks)"
            if enough
            else "Not enough historical data yet"
        )
        return EstimationPreview(
            estimated_minutes=planned_minutes,
            adjusted_minutes=adjusted,
            bias_factor_used=round(factor, 3),
            confidence=confidence,
            sample_size=samples,
            explanation=explanation,
            requires_approval=requires_approval,
        )

    def portfolio_risk(self, org_id: str, projects: Iterable[Project], tasks: Sequence[Task]) -> list[PortfolioRiskRow]:
        """Estimated vs. calibrated minutes per project."""
        rows = []
        for project in projects:
            with_estimate = [
                t for t in tasks
                if t.project_id == project.id and (t.estimate_minutes or 0) > 0
            ]
            estimated = sum(t.estimate_minutes for t in with_estimate)
            adjusted = sum(
                self.preview_adjustment(
                    org_id,
                    t.estimate_provided_by or t.created_by,
                    t.estimate_minutes,
                    EstimationContext(project_id=project.id, status=t.status, tags=list(t.tags)),
                ).adjusted_minutes
                for t in with_estimate
            )
            rows.append(PortfolioRiskRow(
                project_id=project.id,
                project_name=project.name,
                estimated_minutes=estimated,
                adjusted_minutes=adjusted,
                inflation_factor=round(adjusted / estimated, 3) if estimated else 1.0,
                delta_minutes=adjusted - estimated,
                task_count=len(with_estimate),
            ))
        return rows
