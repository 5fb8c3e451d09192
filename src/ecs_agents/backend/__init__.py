"""ECS backend access: client, task definition registry, reconciliation reads."""

from ecs_agents.backend.client import ecs_client
from ecs_agents.backend.reconciliation import ReconciliationReader
from ecs_agents.backend.registry import TaskDefinitionRegistry

__all__ = ["ReconciliationReader", "TaskDefinitionRegistry", "ecs_client"]
