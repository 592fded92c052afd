"""
Stage model helpers.

A project's stages are an ordered list; the last one is terminal. Tasks whose
project cannot be resolved are validated against the default workflow.
"""
from __future__ import annotations
import re
from typing import Any, Iterable, Optional

from board.models.records import Project, Stage, default_stages
from workflow.config import DEFAULT_TERMINAL_STAGE
from workflow.errors import InvalidStage, StageListError

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def stages_for(project: Optional[Project]) -> list[Stage]:
    """The project's stages, or the default workflow when it has none."""
    if project is None or not project.stages:
        return default_stages()
    return list(project.stages)


def stage_ids_for(project: Optional[Project]) -> list[str]:
    """Stage ids in board order."""
    return [s.id for s in stages_for(project)]


def terminal_stage_for(project: Optional[Project]) -> str:
    """Id of the last stage, where tasks count as done."""
    stages = stages_for(project)
    return stages[-1].id if stages else DEFAULT_TERMINAL_STAGE


def first_stage_for(project: Optional[Project]) -> str:
    """Id of the stage new tasks start in."""
    return stages_for(project)[0].id


def stage_name(project: Optional[Project], stage_id: str) -> str:
    """Display name for a stage id, falling back to the id itself."""
    for stage in stages_for(project):
        if stage.id == stage_id:
            return stage.name
    return stage_id


def validate_stage(project: Optional[Project], stage_id: str, task_id: Optional[str] = None) -> str:
    """Return ``stage_id`` if the project has it, else raise InvalidStage."""
    if stage_id not in stage_ids_for(project):
        where = f"project {project.name!r}" if project else "the default workflow"
        raise InvalidStage(f"Stage {stage_id!r} is not part of {where}.", task_id=task_id)
    return stage_id


def slugify_stage(name: str, existing: Iterable[str] = ()) -> str:
    """Lowercase-hyphenated id, suffixed ``-2``, ``-3``... until unique."""
    base = _SLUG_STRIP.sub("-", name.strip().lower()).strip("-") or "stage"
    taken = set(existing)
    candidate, n = base, 2
    while candidate in taken:
        candidate = f"{base}-{n}"
        n += 1
    return candidate


def sanitize_stages(stages: Iterable[Any]) -> list[Stage]:
    """Trim names, drop blank entries, give id-less stages a slug and dedupe ids.

    Raises StageListError when nothing usable remains.
    """
    cleaned: list[Stage] = []
    seen: set[str] = set()
    for raw in stages:
        data = raw.model_dump() if isinstance(raw, Stage) else dict(raw)
        name = str(data.get("name") or "").strip()
        if not name:
            continue
        stage_id = str(data.get("id") or "").strip() or slugify_stage(name, seen)
        if stage_id in seen:
            stage_id = slugify_stage(stage_id, seen)
        seen.add(stage_id)
        cleaned.append(Stage(id=stage_id, name=name))
    if not cleaned:
        raise StageListError("A project needs at least one stage.")
    return cleaned
