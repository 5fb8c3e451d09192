"""Task specification builder.

Turns a schedule request and plugin settings into the container run
specification registered with ECS. Pure construction: the only input not
taken from the arguments is the freshly generated task name.
"""

from __future__ import annotations

import uuid
from typing import Any

from ecs_agents.core.config import PluginSettings
from ecs_agents.core.labels import OwnershipLabels
from ecs_agents.core.models import ScheduleRequest, TaskSpecification

# Variables the agent process reads to register itself with the server
AGENT_SERVER_URL = "ELASTIC_AGENT_SERVER_URL"
AGENT_AUTO_REGISTER_KEY = "ELASTIC_AGENT_AUTO_REGISTER_KEY"
AGENT_ENVIRONMENT = "ELASTIC_AGENT_ENVIRONMENT"
AGENT_ID = "ELASTIC_AGENT_ID"
AGENT_PLUGIN_ID = "ELASTIC_AGENT_PLUGIN_ID"

# ECS needs some memory figure for EC2 containers without a task-level limit
DEFAULT_EC2_MEMORY_MB = 512
# Smallest valid Fargate size
DEFAULT_FARGATE_CPU = 256
DEFAULT_FARGATE_MEMORY_MB = 512


class TaskSpecificationBuilder:
    """Builds one TaskSpecification per schedule request."""

    def build(self, request: ScheduleRequest, settings: PluginSettings) -> TaskSpecification:
        profile = request.profile
        name = f"{settings.task_name_prefix}{uuid.uuid4().hex}"

        labels = OwnershipLabels(
            server_id=settings.server_id,
            job_identifier=request.job_identifier,
            profile=profile,
            environment=request.environment,
        ).to_docker_labels()

        container: dict[str, Any] = {
            "name": name,
            "image": profile.image,
            "essential": True,
            "environment": self._environment(name, request, settings),
            "dockerLabels": labels,
        }
        if profile.command:
            container["command"] = list(profile.command)
        if profile.cpu:
            container["cpu"] = profile.cpu
        if profile.max_memory_mb is not None:
            container["memory"] = profile.max_memory_mb
        if profile.reserved_memory_mb is not None:
            container["memoryReservation"] = profile.reserved_memory_mb
        if settings.log_driver:
            container["logConfiguration"] = {
                "logDriver": settings.log_driver,
                "options": dict(settings.log_options),
            }

        if profile.is_fargate:
            return TaskSpecification(
                name=name,
                container=container,
                platform=profile.platform,
                launch_mode=profile.launch_mode,
                stop_policy=settings.stop_policy_for(profile.platform),
                task_cpu=str(profile.cpu or DEFAULT_FARGATE_CPU),
                task_memory=str(profile.max_memory_mb or DEFAULT_FARGATE_MEMORY_MB),
                task_role_arn=profile.task_role_arn,
                execution_role_arn=settings.execution_role_arn,
            )

        if "memory" not in container and "memoryReservation" not in container:
            container["memory"] = DEFAULT_EC2_MEMORY_MB
        if profile.privileged:
            container["privileged"] = True
        return TaskSpecification(
            name=name,
            container=container,
            platform=profile.platform,
            launch_mode=profile.launch_mode,
            stop_policy=settings.stop_policy_for(profile.platform),
            task_role_arn=profile.task_role_arn,
        )

    @staticmethod
    def _environment(
        name: str, request: ScheduleRequest, settings: PluginSettings,
    ) -> list[dict[str, str]]:
        env = dict(request.profile.environment)
        env[AGENT_SERVER_URL] = settings.server_url
        env[AGENT_ID] = name
        env[AGENT_PLUGIN_ID] = settings.plugin_id
        if request.auto_register_key:
            env[AGENT_AUTO_REGISTER_KEY] = request.auto_register_key
        if request.environment:
            env[AGENT_ENVIRONMENT] = request.environment
        return [{"name": key, "value": value} for key, value in sorted(env.items())]


__all__ = ["TaskSpecificationBuilder"]
