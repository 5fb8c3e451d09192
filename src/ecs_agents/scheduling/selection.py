"""Instance selection strategies, keyed by the idle-instance stop policy.

StopIdleInstance clusters keep instances around (stopped when idle), so
any connected instance with room is reused, packed best-fit.

TerminateIdleInstance clusters treat instances as disposable: a task may
only claim an instance that is fully idle (and would otherwise be
terminated). Busy instances are left alone, so the orchestrator
provisions a fresh one instead.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator
from typing import Any

from ecs_agents.backend.client import EcsClient, ecs_client
from ecs_agents.core.config import ElasticProfile, Platform, PluginSettings, StopPolicy
from ecs_agents.core.logging import get_logger
from ecs_agents.core.models import BackingTarget, TaskSpecification
from ecs_agents.scheduling.collaborators import InstanceSelector

_logger = get_logger("selection")

OS_TYPE_ATTRIBUTE = "ecs.os-type"


def _remaining(instance: dict[str, Any], resource: str) -> int:
    for item in instance.get("remainingResources", []):
        if item.get("name") == resource:
            return int(item.get("integerValue", 0))
    return 0


def _os_type(instance: dict[str, Any]) -> str | None:
    for attribute in instance.get("attributes", []):
        if attribute.get("name") == OS_TYPE_ATTRIBUTE:
            value: str | None = attribute.get("value")
            return value
    return None


def _required(spec: TaskSpecification) -> tuple[int, int]:
    container = spec.container
    cpu = int(container.get("cpu", 0))
    memory = int(container.get("memoryReservation") or container.get("memory") or 0)
    return cpu, memory


class _ClusterInstanceSelection:
    """Shared lookup of connected, platform-matching instances with room."""

    def __init__(self, client_factory: Callable[[PluginSettings], EcsClient] = ecs_client) -> None:
        self._client_factory = client_factory

    def _candidates(
        self, settings: PluginSettings, profile: ElasticProfile, spec: TaskSpecification,
    ) -> Iterator[dict[str, Any]]:
        client = self._client_factory(settings)
        arns: list[str] = []
        paginator = client.get_paginator("list_container_instances")
        for page in paginator.paginate(cluster=settings.cluster_name, status="ACTIVE"):
            arns.extend(page.get("containerInstanceArns", []))
        if not arns:
            return

        wanted_os = "linux" if profile.platform is Platform.LINUX else "windows"
        cpu, memory = _required(spec)
        for start in range(0, len(arns), 100):
            response = client.describe_container_instances(
                cluster=settings.cluster_name, containerInstances=arns[start:start + 100],
            )
            for instance in response.get("containerInstances", []):
                if not instance.get("agentConnected", False):
                    continue
                if (_os_type(instance) or "linux") != wanted_os:
                    continue
                if _remaining(instance, "CPU") < cpu or _remaining(instance, "MEMORY") < memory:
                    continue
                yield instance

    @staticmethod
    def _target(instance: dict[str, Any]) -> BackingTarget:
        return BackingTarget.real(instance.get("ec2InstanceId"), instance["containerInstanceArn"])


class RunningInstanceReuse(_ClusterInstanceSelection):
    """Reuse any instance with room, preferring the tightest fit."""

    def instance_for_scheduling(
        self, settings: PluginSettings, profile: ElasticProfile, spec: TaskSpecification,
    ) -> BackingTarget | None:
        candidates = list(self._candidates(settings, profile, spec))
        if not candidates:
            return None
        best = min(candidates, key=lambda instance: _remaining(instance, "MEMORY"))
        _logger.debug("instance_selected", instance_id=best.get("ec2InstanceId"), strategy="reuse")
        return self._target(best)


class OnDemandCreate(_ClusterInstanceSelection):
    """Claim only a fully idle instance; otherwise ask for a new one."""

    def instance_for_scheduling(
        self, settings: PluginSettings, profile: ElasticProfile, spec: TaskSpecification,
    ) -> BackingTarget | None:
        for instance in self._candidates(settings, profile, spec):
            if instance.get("runningTasksCount", 0) == 0 and instance.get("pendingTasksCount", 0) == 0:
                _logger.debug(
                    "instance_selected", instance_id=instance.get("ec2InstanceId"), strategy="idle",
                )
                return self._target(instance)
        return None


class InstanceSelectionStrategyFactory:
    """Maps a stop policy to its selection strategy."""

    def __init__(self, client_factory: Callable[[PluginSettings], EcsClient] = ecs_client) -> None:
        self._strategies: dict[StopPolicy, InstanceSelector] = {
            StopPolicy.STOP_IDLE_INSTANCE: RunningInstanceReuse(client_factory),
            StopPolicy.TERMINATE_IDLE_INSTANCE: OnDemandCreate(client_factory),
        }

    def strategy_for(self, stop_policy: StopPolicy) -> InstanceSelector:
        try:
            return self._strategies[stop_policy]
        except KeyError:
            raise ValueError(f"No instance selection strategy for {stop_policy!r}") from None


__all__ = [
    "InstanceSelectionStrategyFactory",
    "OnDemandCreate",
    "RunningInstanceReuse",
]
