"""Tests for ecs_agents.scheduling.orchestrator.

Covers both launch paths: instance reuse and provisioning, spot hand-off,
Fargate capacity-provider strategy and its launch-type fallback, launch
failure interpretation, synchronous rollback, and task teardown.
"""

from __future__ import annotations

from collections.abc import Callable
from unittest.mock import MagicMock

import pytest

from ecs_agents.core.config import ElasticProfile, PluginSettings
from ecs_agents.core.models import BackingTarget, ScheduleRequest, TargetKind
from ecs_agents.exceptions import (
    DefinitionRegistrationError,
    InstanceProvisioningError,
    TaskLaunchError,
)
from ecs_agents.scheduling.orchestrator import (
    FARGATE,
    FARGATE_SPOT,
    LaunchOrchestrator,
    network_configuration,
)
from tests.helpers import client_error, definition_arn, instance_arn, task_arn

RequestFactory = Callable[..., ScheduleRequest]


def _call_names(client: MagicMock) -> list[str]:
    return [name for name, _args, _kwargs in client.method_calls]


@pytest.fixture
def running_target() -> BackingTarget:
    return BackingTarget.real("i-running", instance_arn("ci-running"))


@pytest.fixture
def strategies() -> MagicMock:
    """Selection factory whose strategy finds nothing unless told otherwise."""
    factory = MagicMock(name="strategies")
    factory.strategy_for.return_value.instance_for_scheduling.return_value = None
    return factory


@pytest.fixture
def provisioner() -> MagicMock:
    provisioner = MagicMock(name="provisioner")
    provisioner.create_instance.return_value = BackingTarget.real("i-new", instance_arn("ci-new"))
    return provisioner


@pytest.fixture
def spot_service() -> MagicMock:
    return MagicMock(name="spot_service")


@pytest.fixture
def orchestrator(
    ecs: MagicMock, strategies: MagicMock, provisioner: MagicMock, spot_service: MagicMock,
) -> LaunchOrchestrator:
    return LaunchOrchestrator(
        provisioner,
        spot_service,
        strategies=strategies,
        client_factory=lambda _settings: ecs,
    )


# ─── Instance-backed path ─────────────────────────────────────────────


class TestInstanceBackedCreate:
    """EC2 launch path."""

    def test_reuses_running_instance(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        strategies: MagicMock,
        provisioner: MagicMock,
        running_target: BackingTarget,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        strategies.strategy_for.return_value.instance_for_scheduling.return_value = running_target

        task = orchestrator.create(make_request(ec2_profile), settings)

        assert task is not None
        assert task.task_arn == task_arn("t-1")
        assert task.backing_target == running_target
        provisioner.create_instance.assert_not_called()
        ecs.start_task.assert_called_once_with(
            cluster=settings.cluster_name,
            taskDefinition=task.task_definition_arn,
            containerInstances=[running_target.container_instance_arn],
        )

    def test_success_leaves_exactly_one_definition_owned_by_task(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        strategies: MagicMock,
        running_target: BackingTarget,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        strategies.strategy_for.return_value.instance_for_scheduling.return_value = running_target

        task = orchestrator.create(make_request(ec2_profile), settings)

        assert task is not None
        assert ecs.register_task_definition.call_count == 1
        family = ecs.register_task_definition.call_args.kwargs["family"]
        assert task.task_definition_arn == definition_arn(family)
        assert task.name == family
        ecs.deregister_task_definition.assert_not_called()
        ecs.delete_task_definitions.assert_not_called()

    def test_strategy_chosen_by_platform_stop_policy(
        self,
        orchestrator: LaunchOrchestrator,
        strategies: MagicMock,
        running_target: BackingTarget,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        strategies.strategy_for.return_value.instance_for_scheduling.return_value = running_target

        orchestrator.create(make_request(ec2_profile), settings)

        strategies.strategy_for.assert_called_once_with(settings.linux_stop_policy)

    def test_provisions_one_instance_before_registering(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        provisioner: MagicMock,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        order: list[str] = []
        provisioner.create_instance.side_effect = lambda *_args: (
            order.append("create_instance")
            or BackingTarget.real("i-new", instance_arn("ci-new"))
        )
        register = ecs.register_task_definition.side_effect
        ecs.register_task_definition.side_effect = lambda **kw: (order.append("register") or register(**kw))

        task = orchestrator.create(make_request(ec2_profile), settings)

        assert task is not None
        assert order == ["create_instance", "register"]
        assert provisioner.create_instance.call_count == 1
        assert task.backing_target.instance_id == "i-new"

    def test_spot_without_target_defers_and_registers_nothing(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        provisioner: MagicMock,
        spot_service: MagicMock,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        profile = ec2_profile.model_copy(update={"run_as_spot_instance": True})

        result = orchestrator.create(make_request(profile), settings)

        assert result is None
        spot_service.create.assert_called_once()
        assert spot_service.create.call_args.args[:2] == (settings, profile)
        provisioner.create_instance.assert_not_called()
        ecs.register_task_definition.assert_not_called()

    def test_spot_with_target_schedules_and_warns(
        self,
        orchestrator: LaunchOrchestrator,
        strategies: MagicMock,
        spot_service: MagicMock,
        running_target: BackingTarget,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        strategies.strategy_for.return_value.instance_for_scheduling.return_value = running_target
        profile = ec2_profile.model_copy(update={"run_as_spot_instance": True})
        messages: list[str] = []

        task = orchestrator.create(make_request(profile), settings, messages.append)

        assert task is not None
        spot_service.create.assert_not_called()
        assert any(message.startswith("[WARNING]") for message in messages)

    def test_provisioning_failure_is_typed_and_registers_nothing(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        provisioner: MagicMock,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        provisioner.create_instance.side_effect = RuntimeError("instance never joined the cluster")

        with pytest.raises(InstanceProvisioningError, match="never joined"):
            orchestrator.create(make_request(ec2_profile), settings)

        ecs.register_task_definition.assert_not_called()

    def test_provisioner_returning_placeholder_is_rejected(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        provisioner: MagicMock,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        provisioner.create_instance.return_value = BackingTarget.fargate_placeholder(spot=False)

        with pytest.raises(InstanceProvisioningError):
            orchestrator.create(make_request(ec2_profile), settings)

        ecs.register_task_definition.assert_not_called()

    def test_instance_lookup_error_is_provisioning_failure(
        self,
        orchestrator: LaunchOrchestrator,
        strategies: MagicMock,
        settings: PluginSettings,
        ec2_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        strategies.strategy_for.return_value.instance_for_scheduling.side_effect = client_error(
            "ClusterNotFoundException", "ListContainerInstances",
        )

        with pytest.raises(InstanceProvisioningError, match="agents"):
            orchestrator.create(make_request(ec2_profile), settings)


# ─── Serverless path ──────────────────────────────────────────────────


class TestServerlessCreate:
    """Fargate launch path."""

    def test_on_demand_uses_fargate_capacity_provider(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        strategies: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        task = orchestrator.create(make_request(fargate_profile), settings)

        assert task is not None
        strategies.strategy_for.assert_not_called()
        ecs.start_task.assert_not_called()
        kwargs = ecs.run_task.call_args.kwargs
        assert kwargs["capacityProviderStrategy"] == [{"capacityProvider": FARGATE}]
        assert "launchType" not in kwargs
        assert kwargs["networkConfiguration"] == {
            "awsvpcConfiguration": {
                "subnets": ["subnet-a", "subnet-b"],
                "securityGroups": ["sg-a"],
                "assignPublicIp": "DISABLED",
            },
        }

    def test_spot_uses_fargate_spot_capacity_provider(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        spot_service: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        profile = fargate_profile.model_copy(update={"run_as_spot_instance": True})

        task = orchestrator.create(make_request(profile), settings)

        assert task is not None
        assert ecs.run_task.call_args.kwargs["capacityProviderStrategy"] == [
            {"capacityProvider": FARGATE_SPOT},
        ]
        spot_service.create.assert_not_called()

    def test_rejected_strategy_falls_back_once_to_on_demand_launch_type(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        profile = fargate_profile.model_copy(update={"run_as_spot_instance": True})
        started = ecs.run_task.return_value
        ecs.run_task.side_effect = [client_error("InvalidParameterException"), started]

        task = orchestrator.create(make_request(profile), settings)

        assert task is not None
        assert ecs.run_task.call_count == 2
        fallback = ecs.run_task.call_args_list[1].kwargs
        assert fallback["launchType"] == FARGATE
        assert "capacityProviderStrategy" not in fallback

    def test_fallback_failure_is_not_retried_again(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        ecs.run_task.side_effect = [
            client_error("InvalidParameterException"),
            client_error("InvalidParameterException"),
            AssertionError("third attempt"),
        ]

        with pytest.raises(TaskLaunchError):
            orchestrator.create(make_request(fargate_profile), settings)

        assert ecs.run_task.call_count == 2
        ecs.deregister_task_definition.assert_called_once()

    def test_other_errors_do_not_trigger_fallback(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        ecs.run_task.side_effect = client_error("AccessDeniedException")

        with pytest.raises(TaskLaunchError, match="AccessDeniedException"):
            orchestrator.create(make_request(fargate_profile), settings)

        assert ecs.run_task.call_count == 1

    def test_placeholder_target_names_capacity_kind(
        self,
        orchestrator: LaunchOrchestrator,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        on_demand = orchestrator.create(make_request(fargate_profile), settings)
        spot = orchestrator.create(
            make_request(fargate_profile.model_copy(update={"run_as_spot_instance": True})),
            settings,
        )

        assert on_demand is not None and spot is not None
        assert on_demand.backing_target.kind is TargetKind.SYNTHETIC
        assert on_demand.backing_target.instance_id.startswith("Fargate")
        assert not on_demand.backing_target.instance_id.startswith("FargateSpot")
        assert spot.backing_target.instance_id.startswith("FargateSpot")
        with pytest.raises(ValueError):
            spot.backing_target.address()


class TestNetworkConfiguration:
    """awsvpc attachment resolution."""

    def test_falls_back_to_settings(
        self, settings: PluginSettings, fargate_profile: ElasticProfile,
    ) -> None:
        profile = fargate_profile.model_copy(update={"subnet_ids": [], "security_group_ids": []})

        network = network_configuration(settings, profile)

        assert network["awsvpcConfiguration"]["subnets"] == ["subnet-default"]
        assert network["awsvpcConfiguration"]["securityGroups"] == ["sg-default"]

    def test_public_ip_follows_settings(
        self, settings: PluginSettings, fargate_profile: ElasticProfile,
    ) -> None:
        public = settings.model_copy(update={"assign_public_ip": True})

        network = network_configuration(public, fargate_profile)

        assert network["awsvpcConfiguration"]["assignPublicIp"] == "ENABLED"


# ─── Failure interpretation and rollback ──────────────────────────────


class TestLaunchFailureRollback:
    """A failed launch never leaves its task definition behind."""

    @pytest.fixture(params=["ec2", "fargate"])
    def any_request(
        self,
        request: pytest.FixtureRequest,
        strategies: MagicMock,
        running_target: BackingTarget,
        ec2_profile: ElasticProfile,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> ScheduleRequest:
        strategies.strategy_for.return_value.instance_for_scheduling.return_value = running_target
        profile = ec2_profile if request.param == "ec2" else fargate_profile
        return make_request(profile)

    @staticmethod
    def _launch_mock(ecs: MagicMock, schedule_request: ScheduleRequest) -> MagicMock:
        launch: MagicMock = ecs.run_task if schedule_request.profile.is_fargate else ecs.start_task
        return launch

    def test_reported_failures_roll_back_and_aggregate_reasons(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        self._launch_mock(ecs, any_request).return_value = {
            "tasks": [],
            "failures": [
                {"arn": "arn:one", "reason": "RESOURCE:MEMORY"},
                {"arn": "arn:two", "reason": "AGENT"},
            ],
        }

        with pytest.raises(TaskLaunchError) as exc_info:
            orchestrator.create(any_request, settings)

        message = str(exc_info.value)
        assert "    arn:one failed with reason :RESOURCE:MEMORY" in message
        assert "    arn:two failed with reason :AGENT" in message
        assert len(exc_info.value.failures) == 2

        family = ecs.register_task_definition.call_args.kwargs["family"]
        assert exc_info.value.task_name == family
        ecs.deregister_task_definition.assert_called_once_with(taskDefinition=definition_arn(family))
        ecs.delete_task_definitions.assert_called_once_with(taskDefinitions=[definition_arn(family)])
        names = _call_names(ecs)
        assert names.index("deregister_task_definition") < names.index("delete_task_definitions")

    def test_empty_task_list_without_failures_is_a_failure(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        self._launch_mock(ecs, any_request).return_value = {"tasks": [], "failures": []}

        with pytest.raises(TaskLaunchError):
            orchestrator.create(any_request, settings)

        ecs.deregister_task_definition.assert_called_once()
        ecs.delete_task_definitions.assert_called_once()

    def test_failures_alongside_tasks_is_a_failure(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        self._launch_mock(ecs, any_request).return_value = {
            "tasks": [{"taskArn": task_arn("t-9")}],
            "failures": [{"arn": "arn:one", "reason": "MISSING"}],
        }

        with pytest.raises(TaskLaunchError):
            orchestrator.create(any_request, settings)

        ecs.deregister_task_definition.assert_called_once()

    def test_launch_exception_rolls_back_before_raising(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        self._launch_mock(ecs, any_request).side_effect = client_error("ServerException")

        with pytest.raises(TaskLaunchError, match="ServerException"):
            orchestrator.create(any_request, settings)

        ecs.deregister_task_definition.assert_called_once()
        ecs.delete_task_definitions.assert_called_once()

    def test_cleanup_errors_do_not_mask_launch_failure(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        self._launch_mock(ecs, any_request).return_value = {
            "tasks": [], "failures": [{"arn": "arn:one", "reason": "AGENT"}],
        }
        ecs.deregister_task_definition.side_effect = client_error(
            "ClientException", "DeregisterTaskDefinition",
        )
        ecs.delete_task_definitions.side_effect = client_error(
            "ClientException", "DeleteTaskDefinitions",
        )

        with pytest.raises(TaskLaunchError, match="AGENT"):
            orchestrator.create(any_request, settings)

        ecs.delete_task_definitions.assert_called_once()

    def test_registration_failure_is_typed_and_launches_nothing(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        any_request: ScheduleRequest,
    ) -> None:
        ecs.register_task_definition.side_effect = client_error(
            "ClientException", "RegisterTaskDefinition",
        )

        with pytest.raises(DefinitionRegistrationError):
            orchestrator.create(any_request, settings)

        ecs.start_task.assert_not_called()
        ecs.run_task.assert_not_called()
        ecs.deregister_task_definition.assert_not_called()


# ─── Console sink ─────────────────────────────────────────────────────


class TestConsole:
    """Progress messages are best effort."""

    def test_broken_console_does_not_abort(
        self,
        orchestrator: LaunchOrchestrator,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        def broken(_message: str) -> None:
            raise OSError("console stream closed")

        task = orchestrator.create(make_request(fargate_profile), settings, broken)

        assert task is not None

    def test_progress_messages(
        self,
        orchestrator: LaunchOrchestrator,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        messages: list[str] = []

        task = orchestrator.create(make_request(fargate_profile), settings, messages.append)

        assert task is not None
        assert "Registering ECS Task definition with cluster..." in messages
        assert messages[-1] == f"ECS Task {task.name} scheduled on Fargate"


# ─── Teardown ─────────────────────────────────────────────────────────


class TestStopAndCleanup:
    """stop_and_cleanup_task."""

    def test_stops_then_removes_definition(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        task = orchestrator.create(make_request(fargate_profile), settings)
        assert task is not None
        ecs.reset_mock()

        orchestrator.stop_and_cleanup_task(settings, task)

        assert _call_names(ecs) == [
            "stop_task", "deregister_task_definition", "delete_task_definitions",
        ]
        assert ecs.stop_task.call_args.kwargs["task"] == task.task_arn
        ecs.deregister_task_definition.assert_called_once_with(
            taskDefinition=task.task_definition_arn,
        )

    def test_stop_failure_still_cleans_up(
        self,
        orchestrator: LaunchOrchestrator,
        ecs: MagicMock,
        settings: PluginSettings,
        fargate_profile: ElasticProfile,
        make_request: RequestFactory,
    ) -> None:
        task = orchestrator.create(make_request(fargate_profile), settings)
        assert task is not None
        ecs.stop_task.side_effect = client_error("InvalidParameterException", "StopTask")

        orchestrator.stop_and_cleanup_task(settings, task)

        ecs.deregister_task_definition.assert_called_once()
        ecs.delete_task_definitions.assert_called_once()

    def test_cleanup_task_definition(
        self, orchestrator: LaunchOrchestrator, ecs: MagicMock, settings: PluginSettings,
    ) -> None:
        """Test that a definition is deregistered before it is deleted."""
        arn = definition_arn("ElasticAgentab")

        orchestrator.cleanup_task_definition(settings, arn)

        assert _call_names(ecs) == ["deregister_task_definition", "delete_task_definitions"]
        ecs.deregister_task_definition.assert_called_once_with(taskDefinition=arn)
        ecs.delete_task_definitions.assert_called_once_with(taskDefinitions=[arn])
