import importlib.metadata

try:
    _detected_version = importlib.metadata.version("koi-engine")
    __version__ = _detected_version if _detected_version else "0.0.0-dev"
except importlib.metadata.PackageNotFoundError:
    __version__ = "0.0.0-dev"

from koi_engine.settings import (
    Settings,
    IterationSettings,
    RetrySettings,
    EvaluationSettings,
    PathSettings,
    LoggingSettings,
    get_settings,
    clear_settings_cache,
)
from koi_engine.core.collaborators import SessionContext, IterationContext
from koi_engine.core.decision import Continue, Stop, StopReason, decide
from koi_engine.core.orchestrator import IterationEngine
from koi_engine.core.task_manager import TaskManager
from koi_engine.core.types import (
    Artifact,
    Finding,
    Severity,
    Task,
    TaskOutcome,
    TaskStatus,
    TaskSubmission,
)
from koi_engine.evaluator.aggregator import EvaluationAggregator
from koi_engine.evaluator.skills import EvaluatorSkill, DimensionDef, SkillRegistry

__all__ = [
    "__version__",
    # Settings
    "Settings",
    "IterationSettings",
    "RetrySettings",
    "EvaluationSettings",
    "PathSettings",
    "LoggingSettings",
    "get_settings",
    "clear_settings_cache",
    # Engine
    "IterationEngine",
    "TaskManager",
    "SessionContext",
    "IterationContext",
    "EvaluationAggregator",
    "EvaluatorSkill",
    "DimensionDef",
    "SkillRegistry",
    # Decisions
    "Continue",
    "Stop",
    "StopReason",
    "decide",
    # Data model
    "Artifact",
    "Finding",
    "Severity",
    "Task",
    "TaskOutcome",
    "TaskStatus",
    "TaskSubmission",
]
