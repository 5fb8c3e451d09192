"""Interfaces of the collaborators the orchestrator drives.

Instance creation and the spot-capacity lifecycle live outside this
package; the orchestrator only needs the narrow protocols below.
"""

from __future__ import annotations

from collections.abc import Callable
from typing import TYPE_CHECKING, Protocol

from ecs_agents.core.logging import get_logger

if TYPE_CHECKING:
    from ecs_agents.core.config import ElasticProfile, PluginSettings
    from ecs_agents.core.models import BackingTarget, TaskSpecification

_logger = get_logger("console")

# User-facing progress sink (job console). Best-effort only.
ConsoleLogAppender = Callable[[str], None]


class InstanceSelector(Protocol):
    """Finds an existing container instance able to run a task."""

    def instance_for_scheduling(
        self,
        settings: PluginSettings,
        profile: ElasticProfile,
        spec: TaskSpecification,
    ) -> BackingTarget | None: ...


class InstanceProvisioner(Protocol):
    """Creates (or restarts) one container instance, blocking until it joins."""

    def create_instance(
        self,
        settings: PluginSettings,
        profile: ElasticProfile,
        console: ConsoleLogAppender,
    ) -> BackingTarget: ...


class SpotCapacityService(Protocol):
    """Requests spot capacity; the agent task is scheduled later, out of band."""

    def create(
        self,
        settings: PluginSettings,
        profile: ElasticProfile,
        console: ConsoleLogAppender,
    ) -> None: ...


class SafeConsole:
    """Console wrapper whose failures are logged, never raised.

    A broken console stream must not abort a scheduling attempt.
    """

    def __init__(self, sink: ConsoleLogAppender | None) -> None:
        self._sink = sink

    def __call__(self, message: str) -> None:
        if self._sink is None:
            return
        try:
            self._sink(message)
        except Exception as e:
            _logger.warning("console_append_failed", error=str(e), message=message)


__all__ = [
    "ConsoleLogAppender",
    "InstanceProvisioner",
    "InstanceSelector",
    "SafeConsole",
    "SpotCapacityService",
]
