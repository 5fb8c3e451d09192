"""Data model for one scheduling attempt and its durable result.

ECS payloads (tasks, task definitions) are the plain dicts boto3 returns;
the types here wrap the parts the scheduler reasons about.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ecs_agents.core.config import (
    ElasticProfile,
    JobIdentifier,
    LaunchMode,
    Platform,
    StopPolicy,
)


class TargetKind(str, Enum):
    """Whether a backing target names real infrastructure."""

    REAL = "real"
    SYNTHETIC = "synthetic"


@dataclass(frozen=True)
class ScheduleRequest:
    """Request to provision one build agent. Immutable once submitted."""

    job_identifier: JobIdentifier
    profile: ElasticProfile
    environment: str | None = None
    auto_register_key: str | None = None


@dataclass(frozen=True)
class TaskSpecification:
    """Container run specification for one request. Never mutated."""

    name: str
    container: dict[str, Any]
    platform: Platform
    launch_mode: LaunchMode
    stop_policy: StopPolicy
    task_cpu: str | None = None
    task_memory: str | None = None
    task_role_arn: str | None = None
    execution_role_arn: str | None = None

    @property
    def labels(self) -> dict[str, str]:
        labels: dict[str, str] = self.container.get("dockerLabels", {})
        return labels

    def to_register_request(self) -> dict[str, Any]:
        """Keyword arguments for ``ecs.register_task_definition``."""
        request: dict[str, Any] = {
            "family": self.name,
            "containerDefinitions": [self.container],
        }
        if self.task_role_arn:
            request["taskRoleArn"] = self.task_role_arn
        if self.launch_mode is LaunchMode.FARGATE:
            request["requiresCompatibilities"] = ["FARGATE"]
            request["networkMode"] = "awsvpc"
            request["cpu"] = self.task_cpu
            request["memory"] = self.task_memory
            request["runtimePlatform"] = {
                "operatingSystemFamily": (
                    "LINUX" if self.platform is Platform.LINUX
                    else "WINDOWS_SERVER_2019_CORE"
                ),
            }
            if self.execution_role_arn:
                request["executionRoleArn"] = self.execution_role_arn
        else:
            request["requiresCompatibilities"] = ["EC2"]
        return request


@dataclass(frozen=True)
class BackingTarget:
    """Where a task runs.

    REAL targets are container instances and may be addressed. SYNTHETIC
    targets stand in for Fargate capacity: their ``instance_id`` is a
    display-only placeholder and they carry no container instance.
    """

    kind: TargetKind
    instance_id: str | None
    container_instance_arn: str | None = None

    @classmethod
    def real(cls, instance_id: str | None, container_instance_arn: str) -> BackingTarget:
        return cls(TargetKind.REAL, instance_id, container_instance_arn)

    @classmethod
    def fargate_placeholder(cls, spot: bool) -> BackingTarget:
        prefix = "FargateSpot" if spot else "Fargate"
        return cls(TargetKind.SYNTHETIC, f"{prefix}{uuid.uuid4().hex}")

    @property
    def is_real(self) -> bool:
        return self.kind is TargetKind.REAL

    def address(self) -> str:
        """Container instance ARN to launch on.

        Raises:
            ValueError: If the target is synthetic or has no instance ARN.
        """
        if not self.is_real or not self.container_instance_arn:
            raise ValueError(f"Backing target {self.instance_id!r} is not addressable")
        return self.container_instance_arn


@dataclass(frozen=True)
class RegisteredDefinition:
    """A task definition ECS accepted for one scheduling attempt."""

    arn: str
    family: str
    revision: int
    container_definitions: list[dict[str, Any]] = field(default_factory=list)

    @classmethod
    def from_ecs(cls, task_definition: dict[str, Any]) -> RegisteredDefinition:
        return cls(
            arn=task_definition["taskDefinitionArn"],
            family=task_definition.get("family", ""),
            revision=int(task_definition.get("revision", 0)),
            container_definitions=list(task_definition.get("containerDefinitions", [])),
        )

    @property
    def labels(self) -> dict[str, str]:
        """Docker labels of the first container (the agent)."""
        if not self.container_definitions:
            return {}
        labels: dict[str, str] = self.container_definitions[0].get("dockerLabels", {})
        return labels


@dataclass(frozen=True)
class ScheduledTask:
    """A launched agent task, owned by the caller after ``create`` returns."""

    task_arn: str
    definition: RegisteredDefinition
    profile: ElasticProfile
    job_identifier: JobIdentifier
    backing_target: BackingTarget
    environment: str | None = None
    last_status: str | None = None
    created_at: datetime | None = None

    @classmethod
    def from_ecs(
        cls,
        task: dict[str, Any],
        definition: RegisteredDefinition,
        profile: ElasticProfile,
        job_identifier: JobIdentifier,
        environment: str | None,
        backing_target: BackingTarget,
    ) -> ScheduledTask:
        return cls(
            task_arn=task["taskArn"],
            definition=definition,
            profile=profile,
            job_identifier=job_identifier,
            backing_target=backing_target,
            environment=environment,
            last_status=task.get("lastStatus"),
            created_at=task.get("createdAt"),
        )

    @property
    def name(self) -> str:
        return self.definition.family

    @property
    def task_definition_arn(self) -> str:
        return self.definition.arn

    @property
    def container_instance_arn(self) -> str | None:
        """Container instance the task runs on; ``None`` on Fargate."""
        return self.backing_target.container_instance_arn


@dataclass(frozen=True)
class RunningContainer:
    """Container-facing view of a running task."""

    task_arn: str
    name: str
    image: str
    last_status: str | None
    created_at: datetime | None
    container_instance_arn: str | None
    labels: dict[str, str] = field(default_factory=dict)

    @classmethod
    def from_ecs(cls, task: dict[str, Any], task_definition: dict[str, Any]) -> RunningContainer:
        containers = task_definition.get("containerDefinitions") or [{}]
        container = containers[0]
        return cls(
            task_arn=task["taskArn"],
            name=container.get("name", task_definition.get("family", "")),
            image=container.get("image", ""),
            last_status=task.get("lastStatus"),
            created_at=task.get("createdAt"),
            container_instance_arn=task.get("containerInstanceArn"),
            labels=dict(container.get("dockerLabels", {})),
        )


__all__ = [
    "BackingTarget",
    "RegisteredDefinition",
    "RunningContainer",
    "ScheduleRequest",
    "ScheduledTask",
    "TargetKind",
    "TaskSpecification",
]
