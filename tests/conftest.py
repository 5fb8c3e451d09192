"""Pytest fixtures for ECS agent scheduler tests."""

from __future__ import annotations

import logging
from collections.abc import Callable, Generator
from typing import Any
from unittest.mock import MagicMock

import pytest
import structlog

from ecs_agents.core.config import (
    ElasticProfile,
    JobIdentifier,
    LaunchMode,
    Platform,
    PluginSettings,
)
from ecs_agents.core.models import ScheduleRequest
from tests.helpers import CLUSTER, REGION, definition_arn, task_arn


@pytest.fixture(autouse=True)
def reset_logging_state() -> Generator[None, None, None]:
    """Reset structlog and root handlers around each test."""
    structlog.reset_defaults()
    root_logger = logging.getLogger()
    original_handlers = root_logger.handlers[:]

    yield

    structlog.reset_defaults()
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)
    for handler in original_handlers:
        root_logger.addHandler(handler)


@pytest.fixture
def settings() -> PluginSettings:
    return PluginSettings(
        cluster_name=CLUSTER,
        aws_region=REGION,
        server_id="server-A",
        server_url="https://ci.example.com/go",
        subnet_ids=["subnet-default"],
        security_group_ids=["sg-default"],
    )


@pytest.fixture
def job_identifier() -> JobIdentifier:
    return JobIdentifier(
        pipeline_name="build",
        pipeline_counter=42,
        pipeline_label="42",
        stage_name="test",
        stage_counter="1",
        job_name="unit",
        job_id=1001,
    )


@pytest.fixture
def ec2_profile() -> ElasticProfile:
    return ElasticProfile(
        image="builder/agent:latest",
        platform=Platform.LINUX,
        launch_mode=LaunchMode.EC2,
        cpu=512,
        max_memory_mb=1024,
    )


@pytest.fixture
def fargate_profile() -> ElasticProfile:
    return ElasticProfile(
        image="builder/agent:latest",
        launch_mode=LaunchMode.FARGATE,
        cpu=512,
        max_memory_mb=1024,
        subnet_ids=["subnet-a", "subnet-b"],
        security_group_ids=["sg-a"],
    )


@pytest.fixture
def make_request(job_identifier: JobIdentifier) -> Callable[..., ScheduleRequest]:
    def _make(profile: ElasticProfile, environment: str | None = "production") -> ScheduleRequest:
        return ScheduleRequest(
            job_identifier=job_identifier,
            profile=profile,
            environment=environment,
            auto_register_key="auto-key",
        )

    return _make


@pytest.fixture
def ecs() -> MagicMock:
    """ECS client double that registers definitions and starts tasks successfully."""
    client = MagicMock(name="ecs")

    def _register(**kwargs: Any) -> dict[str, Any]:
        family = kwargs["family"]
        return {
            "taskDefinition": {
                "taskDefinitionArn": definition_arn(family),
                "family": family,
                "revision": 1,
                "containerDefinitions": kwargs["containerDefinitions"],
            },
        }

    started = {"tasks": [{"taskArn": task_arn("t-1"), "lastStatus": "PROVISIONING"}], "failures": []}
    client.register_task_definition.side_effect = _register
    client.start_task.return_value = started
    client.run_task.return_value = started
    client.delete_task_definitions.return_value = {"taskDefinitions": [], "failures": []}
    return client
