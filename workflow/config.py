"""Dataclass-based board configuration.

Thresholds, limits, and feature flags for the task lifecycle engine live in
frozen dataclasses. Each section has sensible defaults; ``from_env`` applies
overrides from environment variables so deployments can tune a board without
code changes.
"""

import os
from dataclasses import dataclass, field


# ---------------------------------------------------------------------------
# Nested config sections
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class HistoryConfig:
    """Undo/redo bounds."""

    undo_limit: int = 50


@dataclass(frozen=True)
class PresenceConfig:
    """Presence heartbeat timing."""

    ttl_seconds: float = 15.0
    heartbeat_interval_seconds: float = 5.0


@dataclass(frozen=True)
class EstimationConfig:
    """Estimate calibration and risk sign-off thresholds."""

    enable_calibration: bool = True
    require_approval: bool = True
    approval_threshold: float = 1.35
    min_samples: int = 8
    context_min_samples: int = 5
    window_tasks: int = 40
    min_ratio: float = 0.5
    max_ratio: float = 2.5
    rounding_minutes: int = 15


@dataclass(frozen=True)
class NotificationConfig:
    """Outbound notification settings."""

    enabled: bool = True
    webhook_url: str = ""
    webhook_secret: str = ""
    timeout_seconds: float = 5.0


# ---------------------------------------------------------------------------
# Top-level config
# ---------------------------------------------------------------------------

DEFAULT_STAGES: tuple[tuple[str, str], ...] = (
    ("todo", "To Do"),
    ("in-progress", "In Progress"),
    ("done", "Done"),
)

DEFAULT_TERMINAL_STAGE = "done"
GENERAL_PROJECT_ID = "general"


@dataclass(frozen=True)
class BoardConfig:
    """Complete configuration for a task board.

    Usage::

        config = BoardConfig.from_env()
        history = HistoryManager(config.history)
    """

    history: HistoryConfig = field(default_factory=HistoryConfig)
    presence: PresenceConfig = field(default_factory=PresenceConfig)
    estimation: EstimationConfig = field(default_factory=EstimationConfig)
    notifications: NotificationConfig = field(default_factory=NotificationConfig)

    # Feature flags
    enable_realtime: bool = True
    enable_ai_suggestions: bool = True
    ai_model: str = "anthropic:claude-sonnet-4-20250514"

    @classmethod
    def default(cls) -> "BoardConfig":
        """Create config with all defaults."""
        return cls()

    @classmethod
    def from_env(cls, prefix: str = "TASKFLOW_") -> "BoardConfig":
        """Create config from environment variables.

        Example: TASKFLOW_UNDO_LIMIT=100 TASKFLOW_ESTIMATION_THRESHOLD=1.5
        """
        history = HistoryConfig(
            undo_limit=int(os.getenv(f"{prefix}UNDO_LIMIT", HistoryConfig.undo_limit)),
        )
        presence = PresenceConfig(
            ttl_seconds=float(os.getenv(f"{prefix}PRESENCE_TTL", PresenceConfig.ttl_seconds)),
            heartbeat_interval_seconds=float(
                os.getenv(f"{prefix}HEARTBEAT_INTERVAL", PresenceConfig.heartbeat_interval_seconds)
            ),
        )
        estimation = EstimationConfig(
            enable_calibration=_env_flag(f"{prefix}ESTIMATION_CALIBRATION", True),
            require_approval=_env_flag(f"{prefix}ESTIMATION_REQUIRE_APPROVAL", True),
            approval_threshold=float(
                os.getenv(f"{prefix}ESTIMATION_THRESHOLD", EstimationConfig.approval_threshold)
            ),
        )
        notifications = NotificationConfig(
            enabled=_env_flag(f"{prefix}NOTIFICATIONS", True),
            webhook_url=os.getenv(f"{prefix}WEBHOOK_URL", ""),
            webhook_secret=os.getenv(f"{prefix}WEBHOOK_SECRET", ""),
        )

        overrides = {}
        model = os.getenv(f"{prefix}AI_MODEL")
        if model:
            overrides["ai_model"] = model

        return cls(
            history=history,
            presence=presence,
            estimation=estimation,
            notifications=notifications,
            enable_realtime=_env_flag(f"{prefix}REALTIME", True),
            enable_ai_suggestions=_env_flag(f"{prefix}AI_SUGGESTIONS", True),
            **overrides,
        )


def _env_flag(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")
