"""Launch orchestrator: turns a schedule request into a running ECS task.

One call to ``create`` walks a single attempt through

    BUILDING → TARGET_RESOLUTION → DEFINITION_REGISTERED → LAUNCHING
        → SCHEDULED | ROLLED_BACK

EC2 profiles first resolve a container instance (reuse, fresh instance,
or hand-off to spot provisioning, which ends the attempt with no task).
Fargate profiles skip target resolution and launch through a
capacity-provider strategy, falling back once to the FARGATE launch type
when ECS rejects the strategy.

Both paths share one register → launch → rollback skeleton: a definition
registered by an attempt that does not start a task is deregistered and
deleted before the error reaches the caller.

The orchestrator is synchronous, holds no locks and no timeouts; callers
run it off latency-sensitive paths and bound it themselves.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from enum import Enum
from typing import Any

from botocore.exceptions import BotoCoreError, ClientError

from ecs_agents.backend.client import EcsClient, ecs_client
from ecs_agents.backend.registry import TaskDefinitionRegistry
from ecs_agents.core.config import ElasticProfile, PluginSettings
from ecs_agents.core.logging import SchedulingContext, get_logger, with_context
from ecs_agents.core.models import (
    BackingTarget,
    RegisteredDefinition,
    ScheduledTask,
    ScheduleRequest,
    TaskSpecification,
)
from ecs_agents.exceptions import (
    CapacityStrategyRejected,
    InstanceProvisioningError,
    TaskLaunchError,
)
from ecs_agents.scheduling.builder import TaskSpecificationBuilder
from ecs_agents.scheduling.collaborators import (
    ConsoleLogAppender,
    InstanceProvisioner,
    SafeConsole,
    SpotCapacityService,
)
from ecs_agents.scheduling.selection import InstanceSelectionStrategyFactory

_logger = get_logger("orchestrator")

FARGATE = "FARGATE"
FARGATE_SPOT = "FARGATE_SPOT"
STOP_REASON = "Stopped by elastic agent scheduler."


class AttemptState(str, Enum):
    """Progress of one scheduling attempt."""

    BUILDING = "building"
    TARGET_RESOLUTION = "target_resolution"
    DEFINITION_REGISTERED = "definition_registered"
    LAUNCHING = "launching"
    SCHEDULED = "scheduled"
    ROLLED_BACK = "rolled_back"


@dataclass(frozen=True)
class InstanceBackedPlan:
    """Start the task on a resolved container instance."""

    target: BackingTarget


@dataclass(frozen=True)
class ServerlessPlan:
    """Run the task on Fargate capacity."""

    network: dict[str, Any]
    capacity_provider: str
    spot: bool


LaunchPlan = InstanceBackedPlan | ServerlessPlan


def _error_code(error: ClientError) -> str:
    code: str = error.response.get("Error", {}).get("Code", "")
    return code


def _is_started(response: dict[str, Any]) -> bool:
    """A launch started iff ECS reports no failures and at least one task."""
    return not response.get("failures") and bool(response.get("tasks"))


def network_configuration(settings: PluginSettings, profile: ElasticProfile) -> dict[str, Any]:
    """awsvpc attachment from the profile, falling back to plugin settings."""
    subnets = profile.subnet_ids or settings.subnet_ids
    security_groups = profile.security_group_ids or settings.security_group_ids
    vpc: dict[str, Any] = {
        "subnets": list(subnets),
        "assignPublicIp": "ENABLED" if settings.assign_public_ip else "DISABLED",
    }
    if security_groups:
        vpc["securityGroups"] = list(security_groups)
    return {"awsvpcConfiguration": vpc}


def stop_and_cleanup_task(client: EcsClient, settings: PluginSettings, task: ScheduledTask) -> None:
    """Stop a scheduled task, then deregister and delete its definition.

    Both steps are best effort: failures are logged, never raised.
    """
    _logger.info("stopping_task", task_arn=task.task_arn)
    try:
        client.stop_task(cluster=settings.cluster_name, task=task.task_arn, reason=STOP_REASON)
    except (ClientError, BotoCoreError) as e:
        _logger.warning("task_stop_failed", task_arn=task.task_arn, error=str(e))
    _logger.info("cleaning_up_task_definition", arn=task.task_definition_arn)
    TaskDefinitionRegistry(client).cleanup(task.task_definition_arn)


class LaunchOrchestrator:
    """Schedules build agents as ECS tasks and tears them down again."""

    def __init__(
        self,
        provisioner: InstanceProvisioner,
        spot_service: SpotCapacityService,
        *,
        builder: TaskSpecificationBuilder | None = None,
        strategies: InstanceSelectionStrategyFactory | None = None,
        client_factory: Callable[[PluginSettings], EcsClient] = ecs_client,
    ) -> None:
        self._provisioner = provisioner
        self._spot_service = spot_service
        self._builder = builder or TaskSpecificationBuilder()
        self._strategies = strategies or InstanceSelectionStrategyFactory(client_factory)
        self._client_factory = client_factory

    # ─── Public API ────────────────────────────────────────────────

    def create(
        self,
        request: ScheduleRequest,
        settings: PluginSettings,
        console: ConsoleLogAppender | None = None,
    ) -> ScheduledTask | None:
        """Schedule one agent task for ``request``.

        Returns:
            The scheduled task, or ``None`` when the request was handed to
            spot provisioning (the task appears later via reconciliation).

        Raises:
            InstanceProvisioningError: No container instance could be found
                or created. Nothing was registered.
            DefinitionRegistrationError: ECS refused the task definition.
            TaskLaunchError: The task did not start. Its definition has
                already been rolled back.
        """
        log_sink = SafeConsole(console)
        spec = self._builder.build(request, settings)
        ctx = SchedulingContext(
            task_name=spec.name,
            job_id=request.job_identifier.represent(),
            component="orchestrator",
        )
        with with_context(ctx):
            _logger.debug("attempt_state", state=AttemptState.BUILDING.value)
            profile = request.profile
            if profile.is_fargate:
                log_sink("This is an ECS Fargate task request. Not creating an EC2 instance.")
                _logger.info("fargate_request", image=profile.image, spot=profile.run_as_spot_instance)
                return self._register_and_launch(
                    request, settings, spec, log_sink, self._serverless_plan(settings, profile),
                )

            _logger.debug("attempt_state", state=AttemptState.TARGET_RESOLUTION.value)
            target = self._find_instance(settings, profile, spec)
            if target is None:
                log_sink("No running instance(s) found to build the ECS Task to perform current job.")
                _logger.info("no_running_instance", image=profile.image, platform=profile.platform.value)
                if profile.run_as_spot_instance:
                    self._spot_service.create(settings, profile, log_sink)
                    _logger.info("deferred_to_spot_provisioning")
                    return None
                target = self._create_instance(settings, profile, log_sink)
            else:
                log_sink(
                    "Found existing running container instance platform matching ECS Task "
                    "instance configuration. Not starting a new EC2 instance..."
                )
            return self._register_and_launch(
                request, settings, spec, log_sink, InstanceBackedPlan(target),
            )

    def stop_and_cleanup_task(self, settings: PluginSettings, task: ScheduledTask) -> None:
        """Stop ``task`` then remove its task definition. Failures are logged only."""
        stop_and_cleanup_task(self._client_factory(settings), settings, task)

    def cleanup_task_definition(self, settings: PluginSettings, arn: str) -> None:
        """Deregister and delete one task definition, best effort."""
        TaskDefinitionRegistry(self._client_factory(settings)).cleanup(arn)

    # ─── Target resolution ─────────────────────────────────────────

    def _find_instance(
        self, settings: PluginSettings, profile: ElasticProfile, spec: TaskSpecification,
    ) -> BackingTarget | None:
        strategy = self._strategies.strategy_for(spec.stop_policy)
        try:
            return strategy.instance_for_scheduling(settings, profile, spec)
        except (ClientError, BotoCoreError) as e:
            raise InstanceProvisioningError(
                f"Could not look up container instances in {settings.cluster_name}: {e}"
            ) from e

    def _create_instance(
        self, settings: PluginSettings, profile: ElasticProfile, log_sink: SafeConsole,
    ) -> BackingTarget:
        try:
            target = self._provisioner.create_instance(settings, profile, log_sink)
        except InstanceProvisioningError:
            raise
        except Exception as e:
            raise InstanceProvisioningError(f"Failed to create container instance: {e}") from e
        if not target.is_real:
            raise InstanceProvisioningError(
                f"Provisioner returned a non-addressable target {target.instance_id!r}"
            )
        return target

    @staticmethod
    def _serverless_plan(settings: PluginSettings, profile: ElasticProfile) -> ServerlessPlan:
        spot = profile.run_as_spot_instance
        return ServerlessPlan(
            network=network_configuration(settings, profile),
            capacity_provider=FARGATE_SPOT if spot else FARGATE,
            spot=spot,
        )

    # ─── Register → launch → rollback ──────────────────────────────

    def _register_and_launch(
        self,
        request: ScheduleRequest,
        settings: PluginSettings,
        spec: TaskSpecification,
        log_sink: SafeConsole,
        plan: LaunchPlan,
    ) -> ScheduledTask:
        client = self._client_factory(settings)
        registry = TaskDefinitionRegistry(client)

        log_sink("Registering ECS Task definition with cluster...")
        definition = registry.register(spec)
        log_sink("Done registering ECS Task definition with cluster.")
        _logger.debug("attempt_state", state=AttemptState.DEFINITION_REGISTERED.value,
                      arn=definition.arn)

        _logger.debug("attempt_state", state=AttemptState.LAUNCHING.value)
        try:
            if isinstance(plan, InstanceBackedPlan):
                log_sink("Starting ECS Task to perform current job...")
                response = self._start_on_instance(client, settings, definition, plan)
            else:
                log_sink(f"Starting ECS {plan.capacity_provider} Task to perform current job...")
                response = self._run_on_fargate(client, settings, definition, plan)
        except (ClientError, BotoCoreError) as e:
            self._roll_back(registry, definition)
            raise TaskLaunchError(spec.name, detail=str(e)) from e
        except Exception:
            self._roll_back(registry, definition)
            raise

        if not _is_started(response):
            self._roll_back(registry, definition)
            raise TaskLaunchError(spec.name, response.get("failures", []))

        if isinstance(plan, InstanceBackedPlan):
            target = plan.target
            if request.profile.run_as_spot_instance:
                log_sink(
                    "[WARNING] The ECS task is scheduled on a Spot Instance. "
                    "A spot instance termination would re-schedule the job."
                )
            else:
                log_sink(f"ECS Task {spec.name} scheduled on container instance {target.instance_id}.")
        else:
            target = BackingTarget.fargate_placeholder(plan.spot)
            log_sink(f"ECS Task {spec.name} scheduled on Fargate")

        task = response["tasks"][0]
        _logger.info(
            "task_scheduled",
            state=AttemptState.SCHEDULED.value,
            task_arn=task.get("taskArn"),
            instance_id=target.instance_id,
        )
        return ScheduledTask.from_ecs(
            task,
            definition,
            request.profile,
            request.job_identifier,
            request.environment,
            target,
        )

    @staticmethod
    def _start_on_instance(
        client: EcsClient,
        settings: PluginSettings,
        definition: RegisteredDefinition,
        plan: InstanceBackedPlan,
    ) -> dict[str, Any]:
        response: dict[str, Any] = client.start_task(
            cluster=settings.cluster_name,
            taskDefinition=definition.arn,
            containerInstances=[plan.target.address()],
        )
        return response

    def _run_on_fargate(
        self,
        client: EcsClient,
        settings: PluginSettings,
        definition: RegisteredDefinition,
        plan: ServerlessPlan,
    ) -> dict[str, Any]:
        common = {
            "cluster": settings.cluster_name,
            "taskDefinition": definition.arn,
            "networkConfiguration": plan.network,
        }
        try:
            return self._run_with_capacity_provider(client, plan, common)
        except CapacityStrategyRejected as e:
            # Never falls back to spot: the launch type path is on-demand only
            _logger.info("capacity_strategy_rejected", provider=plan.capacity_provider,
                         error=str(e.__cause__))
        response: dict[str, Any] = client.run_task(launchType=FARGATE, **common)
        return response

    @staticmethod
    def _run_with_capacity_provider(
        client: EcsClient, plan: ServerlessPlan, common: dict[str, Any],
    ) -> dict[str, Any]:
        _logger.info("running_task_with_capacity_provider", provider=plan.capacity_provider)
        try:
            response: dict[str, Any] = client.run_task(
                capacityProviderStrategy=[{"capacityProvider": plan.capacity_provider}],
                **common,
            )
        except ClientError as e:
            if _error_code(e) == "InvalidParameterException":
                raise CapacityStrategyRejected(plan.capacity_provider) from e
            raise
        return response

    @staticmethod
    def _roll_back(registry: TaskDefinitionRegistry, definition: RegisteredDefinition) -> None:
        registry.cleanup(definition.arn)
        _logger.info("attempt_state", state=AttemptState.ROLLED_BACK.value, arn=definition.arn)


__all__ = [
    "AttemptState",
    "FARGATE",
    "FARGATE_SPOT",
    "InstanceBackedPlan",
    "LaunchOrchestrator",
    "LaunchPlan",
    "ServerlessPlan",
    "network_configuration",
    "stop_and_cleanup_task",
]
