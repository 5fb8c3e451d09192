"""Scheduling: specification building, instance selection, launch orchestration."""

from ecs_agents.scheduling.builder import TaskSpecificationBuilder
from ecs_agents.scheduling.collaborators import (
    ConsoleLogAppender,
    InstanceProvisioner,
    InstanceSelector,
    SpotCapacityService,
)
from ecs_agents.scheduling.orchestrator import LaunchOrchestrator, stop_and_cleanup_task
from ecs_agents.scheduling.selection import InstanceSelectionStrategyFactory

__all__ = [
    "ConsoleLogAppender",
    "InstanceProvisioner",
    "InstanceSelectionStrategyFactory",
    "InstanceSelector",
    "LaunchOrchestrator",
    "SpotCapacityService",
    "TaskSpecificationBuilder",
    "stop_and_cleanup_task",
]
