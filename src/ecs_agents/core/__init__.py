"""Core configuration, data model and logging."""

from ecs_agents.core.config import (
    ElasticProfile,
    JobIdentifier,
    LaunchMode,
    LogConfig,
    Platform,
    PluginSettings,
    StopPolicy,
)
from ecs_agents.core.models import (
    BackingTarget,
    RegisteredDefinition,
    RunningContainer,
    ScheduledTask,
    ScheduleRequest,
    TargetKind,
    TaskSpecification,
)

__all__ = [
    "BackingTarget",
    "ElasticProfile",
    "JobIdentifier",
    "LaunchMode",
    "LogConfig",
    "Platform",
    "PluginSettings",
    "RegisteredDefinition",
    "RunningContainer",
    "ScheduleRequest",
    "ScheduledTask",
    "StopPolicy",
    "TargetKind",
    "TaskSpecification",
]
