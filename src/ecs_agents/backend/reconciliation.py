"""Reconciliation reader: rebuilds scheduled-task state from ECS.

ECS plus the ownership labels on each task definition is the only record
of what the scheduler launched. Callers poll these reads to rebuild their
in-memory view, and they are the only way tasks that materialize later
(e.g. after spot capacity arrives) are discovered.

Reads that fail propagate as ReconciliationError. A task ECS no longer
knows about is reported as absent instead.
"""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from contextlib import contextmanager
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ecs_agents.backend.client import EcsClient, ecs_client
from ecs_agents.core.config import PluginSettings
from ecs_agents.core.labels import OwnershipLabels, is_owned_by
from ecs_agents.core.logging import get_logger
from ecs_agents.core.models import (
    BackingTarget,
    RegisteredDefinition,
    RunningContainer,
    ScheduledTask,
    TargetKind,
)
from ecs_agents.exceptions import LabelDecodeError, ReconciliationError

_logger = get_logger("reconciliation")

# DescribeTasks / DescribeContainerInstances accept at most 100 ids per call
DESCRIBE_BATCH_SIZE = 100

TaskWithDefinition = tuple[dict[str, Any], dict[str, Any]]


@contextmanager
def _translate_errors(operation: str) -> Iterator[None]:
    try:
        yield
    except (ClientError, BotoCoreError) as e:
        raise ReconciliationError(f"{operation} failed: {e}") from e


def _batches(items: list[str], size: int = DESCRIBE_BATCH_SIZE) -> Iterator[list[str]]:
    for start in range(0, len(items), size):
        yield items[start:start + size]


class ReconciliationReader:
    """Reads tasks, definitions and container instances back from ECS."""

    def __init__(
        self,
        client_factory: Callable[[PluginSettings], EcsClient] = ecs_client,
    ) -> None:
        self._client_factory = client_factory

    # ─── Raw reads ─────────────────────────────────────────────────

    def list_all_tasks(self, settings: PluginSettings) -> dict[str, TaskWithDefinition]:
        """Map every task arn in the cluster to ``(task, task_definition)``.

        An empty cluster yields ``{}`` without any describe calls.
        """
        return self._tasks_with_definitions(settings, desired_status=None)

    def all_running_containers(self, settings: PluginSettings) -> list[RunningContainer]:
        """Container views of tasks whose desired status is RUNNING."""
        tasks = self._tasks_with_definitions(settings, desired_status="RUNNING")
        return [
            RunningContainer.from_ecs(task, definition)
            for task, definition in tasks.values()
        ]

    def refresh_task(self, settings: PluginSettings, task_arn: str) -> dict[str, Any] | None:
        """Describe one task; ``None`` if ECS reports no such task."""
        client = self._client_factory(settings)
        with _translate_errors("DescribeTasks"):
            response = client.describe_tasks(cluster=settings.cluster_name, tasks=[task_arn])
        tasks = response.get("tasks", [])
        if not tasks:
            _logger.debug("task_not_found", task_arn=task_arn)
            return None
        task: dict[str, Any] = tasks[0]
        return task

    def container_instance_map(self, settings: PluginSettings) -> dict[str, str]:
        """Map container instance arn to EC2 instance id for the cluster."""
        client = self._client_factory(settings)
        arns: list[str] = []
        with _translate_errors("ListContainerInstances"):
            paginator = client.get_paginator("list_container_instances")
            for page in paginator.paginate(cluster=settings.cluster_name):
                arns.extend(page.get("containerInstanceArns", []))

        mapping: dict[str, str] = {}
        for batch in _batches(arns):
            with _translate_errors("DescribeContainerInstances"):
                response = client.describe_container_instances(
                    cluster=settings.cluster_name, containerInstances=batch,
                )
            for instance in response.get("containerInstances", []):
                mapping[instance["containerInstanceArn"]] = instance.get("ec2InstanceId", "")
        return mapping

    # ─── Reconstruction ────────────────────────────────────────────

    @staticmethod
    def from_task_info(
        task: dict[str, Any],
        task_definition: dict[str, Any],
        arn_to_instance_id: Mapping[str, str],
        server_id: str,
    ) -> ScheduledTask | None:
        """Rebuild a ScheduledTask from a raw task and its definition.

        Returns ``None`` when the labels name another server: that task
        belongs to a different scheduler sharing the cluster.

        Raises:
            LabelDecodeError: If an owned task carries a malformed label.
        """
        definition = RegisteredDefinition.from_ecs(task_definition)
        labels = definition.labels
        if not is_owned_by(labels, server_id):
            _logger.debug(
                "ignoring_foreign_task",
                task_arn=task.get("taskArn"),
                owner=labels.get("server-id"),
                server_id=server_id,
            )
            return None

        ownership = OwnershipLabels.from_docker_labels(labels, default_server_id=server_id)
        container_instance_arn = task.get("containerInstanceArn")
        if container_instance_arn:
            target = BackingTarget.real(
                arn_to_instance_id.get(container_instance_arn), container_instance_arn,
            )
        else:
            target = BackingTarget(TargetKind.SYNTHETIC, None)

        return ScheduledTask.from_ecs(
            task,
            definition,
            ownership.profile,
            ownership.job_identifier,
            ownership.environment,
            target,
        )

    def scheduled_task(self, settings: PluginSettings, task_arn: str) -> ScheduledTask | None:
        """Rebuild one task by arn; ``None`` if it is gone or not ours."""
        task = self.refresh_task(settings, task_arn)
        if task is None:
            return None
        client = self._client_factory(settings)
        with _translate_errors("DescribeTaskDefinition"):
            response = client.describe_task_definition(taskDefinition=task["taskDefinitionArn"])
        return self.from_task_info(task, response["taskDefinition"], {}, settings.server_id)

    def owned_tasks(self, settings: PluginSettings) -> list[ScheduledTask]:
        """Every task in the cluster that this server owns.

        Unlabelled tasks of other services sharing the cluster count as
        owned but cannot be decoded; they are skipped, not fatal.
        """
        tasks = self.list_all_tasks(settings)
        if not tasks:
            return []
        instance_ids = self.container_instance_map(settings)
        owned: list[ScheduledTask] = []
        for task, definition in tasks.values():
            try:
                scheduled = self.from_task_info(task, definition, instance_ids, settings.server_id)
            except LabelDecodeError as e:
                _logger.warning(
                    "skipping_undecodable_task", task_arn=task.get("taskArn"), error=str(e),
                )
                continue
            if scheduled is not None:
                owned.append(scheduled)
        return owned

    # ─── Internals ─────────────────────────────────────────────────

    def _tasks_with_definitions(
        self, settings: PluginSettings, desired_status: str | None,
    ) -> dict[str, TaskWithDefinition]:
        client = self._client_factory(settings)
        cluster = settings.cluster_name

        list_kwargs: dict[str, Any] = {"cluster": cluster}
        if desired_status is not None:
            list_kwargs["desiredStatus"] = desired_status
        task_arns: list[str] = []
        with _translate_errors("ListTasks"):
            for page in client.get_paginator("list_tasks").paginate(**list_kwargs):
                task_arns.extend(page.get("taskArns", []))

        if not task_arns:
            return {}

        tasks: list[dict[str, Any]] = []
        for batch in _batches(task_arns):
            with _translate_errors("DescribeTasks"):
                response = client.describe_tasks(cluster=cluster, tasks=batch)
            tasks.extend(response.get("tasks", []))

        definitions: dict[str, dict[str, Any]] = {}
        result: dict[str, TaskWithDefinition] = {}
        for task in tasks:
            definition_arn = task["taskDefinitionArn"]
            if definition_arn not in definitions:
                with _translate_errors("DescribeTaskDefinition"):
                    response = client.describe_task_definition(taskDefinition=definition_arn)
                definitions[definition_arn] = response["taskDefinition"]
            result[task["taskArn"]] = (task, definitions[definition_arn])
        _logger.debug("tasks_listed", cluster=cluster, count=len(result))
        return result


__all__ = ["DESCRIBE_BATCH_SIZE", "ReconciliationReader", "TaskWithDefinition"]
