"""Task definition registry client.

Thin wrapper over the three ECS task definition calls the scheduler
needs. ``cleanup`` is the rollback/teardown path and never raises: it
runs while another failure is already propagating, or after the task it
served is gone, and must not replace that outcome with its own error.
"""

from __future__ import annotations

from botocore.exceptions import BotoCoreError, ClientError

from ecs_agents.backend.client import EcsClient
from ecs_agents.core.logging import get_logger
from ecs_agents.core.models import RegisteredDefinition, TaskSpecification
from ecs_agents.exceptions import DefinitionRegistrationError

_logger = get_logger("registry")


class TaskDefinitionRegistry:
    """Registers, deregisters and deletes agent task definitions."""

    def __init__(self, client: EcsClient) -> None:
        self._client = client

    def register(self, spec: TaskSpecification) -> RegisteredDefinition:
        """Register ``spec`` as a new task definition family revision.

        Raises:
            DefinitionRegistrationError: If ECS rejects the registration.
        """
        _logger.debug("registering_task_definition", family=spec.name)
        try:
            response = self._client.register_task_definition(**spec.to_register_request())
        except (ClientError, BotoCoreError) as e:
            raise DefinitionRegistrationError(
                f"Failed to register task definition {spec.name}: {e}"
            ) from e
        definition = RegisteredDefinition.from_ecs(response["taskDefinition"])
        _logger.debug("task_definition_registered", arn=definition.arn)
        return definition

    def deregister(self, arn: str) -> None:
        """Mark a task definition revision INACTIVE."""
        _logger.info("deregistering_task_definition", arn=arn)
        self._client.deregister_task_definition(taskDefinition=arn)

    def delete(self, arn: str) -> None:
        """Permanently delete an (inactive) task definition revision."""
        _logger.info("deleting_task_definition", arn=arn)
        response = self._client.delete_task_definitions(taskDefinitions=[arn])
        for failure in response.get("failures", []):
            _logger.warning(
                "task_definition_delete_failure",
                arn=failure.get("arn", arn),
                reason=failure.get("reason"),
                detail=failure.get("detail"),
            )

    def cleanup(self, arn: str) -> None:
        """Deregister then delete ``arn``, logging instead of raising.

        Either step may already have happened on the backend side.
        """
        try:
            self.deregister(arn)
        except (ClientError, BotoCoreError) as e:
            _logger.warning("task_definition_deregister_failed", arn=arn, error=str(e))
        try:
            self.delete(arn)
        except (ClientError, BotoCoreError) as e:
            _logger.warning("task_definition_delete_failed", arn=arn, error=str(e))


__all__ = ["TaskDefinitionRegistry"]
