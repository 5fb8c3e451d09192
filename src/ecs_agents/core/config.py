"""Configuration models for the ECS agent scheduler.

Defines Pydantic v2 models for plugin-wide settings (cluster, networking,
stop policies, logging) and for the per-profile elastic agent
configuration. ``ElasticProfile`` and ``JobIdentifier`` are also embedded
as JSON in task definition labels, so their JSON form is a persistence
contract: field names must stay stable.
"""

from __future__ import annotations

from enum import Enum
from pathlib import Path
from typing import Literal

import yaml
from pydantic import BaseModel, ConfigDict, Field, model_validator


class Platform(str, Enum):
    """Operating system family of the build agent container."""

    LINUX = "LINUX"
    WINDOWS = "WINDOWS"


class LaunchMode(str, Enum):
    """How the task obtains compute: on a container instance or on Fargate."""

    EC2 = "EC2"
    FARGATE = "FARGATE"


class StopPolicy(str, Enum):
    """What happens to an idle container instance."""

    STOP_IDLE_INSTANCE = "StopIdleInstance"
    TERMINATE_IDLE_INSTANCE = "TerminateIdleInstance"


class JobIdentifier(BaseModel):
    """Identity of the build job a scheduled agent serves."""

    model_config = ConfigDict(frozen=True)

    pipeline_name: str
    pipeline_counter: int = Field(ge=0)
    pipeline_label: str
    stage_name: str
    stage_counter: str
    job_name: str
    job_id: int

    def represent(self) -> str:
        """Short path-like form used in console output and log context."""
        return (
            f"{self.pipeline_name}/{self.pipeline_counter}/"
            f"{self.stage_name}/{self.stage_counter}/{self.job_name}"
        )


class ElasticProfile(BaseModel):
    """Per-profile elastic agent configuration.

    Example YAML:
        image: "builder/agent:latest"
        platform: LINUX
        launch_mode: FARGATE
        run_as_spot_instance: true
        cpu: 512
        max_memory_mb: 1024
    """

    model_config = ConfigDict(frozen=True)

    image: str = Field(
        min_length=1,
        description="Docker image the agent container runs",
    )
    platform: Platform = Field(
        default=Platform.LINUX,
        description="Operating system family of the agent container",
    )
    launch_mode: LaunchMode = Field(
        default=LaunchMode.EC2,
        description="EC2 runs on a container instance, FARGATE is serverless",
    )
    run_as_spot_instance: bool = Field(
        default=False,
        description="Allow preemptible capacity (spot instances or FARGATE_SPOT)",
    )
    cpu: int = Field(
        default=0,
        ge=0,
        description="CPU units reserved for the container (1024 = one vCPU)",
    )
    max_memory_mb: int | None = Field(
        default=None,
        gt=0,
        description="Hard memory limit in MiB",
    )
    reserved_memory_mb: int | None = Field(
        default=None,
        gt=0,
        description="Soft memory reservation in MiB",
    )
    environment: dict[str, str] = Field(
        default_factory=dict,
        description="Extra environment variables for the agent container",
    )
    command: list[str] = Field(
        default_factory=list,
        description="Overrides the image's default command when non-empty",
    )
    privileged: bool = Field(
        default=False,
        description="Run the container in privileged mode (EC2 only)",
    )
    task_role_arn: str | None = Field(
        default=None,
        description="IAM role assumed by the task's containers",
    )
    subnet_ids: list[str] = Field(
        default_factory=list,
        description="Subnets for the task or instance; falls back to plugin settings",
    )
    security_group_ids: list[str] = Field(
        default_factory=list,
        description="Security groups; falls back to plugin settings",
    )
    instance_type: str | None = Field(
        default=None,
        description="EC2 instance type used when a new instance is provisioned",
    )
    ami_id: str | None = Field(
        default=None,
        description="AMI used when a new instance is provisioned",
    )

    @model_validator(mode="after")
    def _check_memory_bounds(self) -> ElasticProfile:
        """Reject a soft reservation above the hard limit."""
        if (
            self.max_memory_mb is not None
            and self.reserved_memory_mb is not None
            and self.reserved_memory_mb > self.max_memory_mb
        ):
            raise ValueError(
                f"reserved_memory_mb ({self.reserved_memory_mb}) must not exceed "
                f"max_memory_mb ({self.max_memory_mb})"
            )
        return self

    @property
    def is_fargate(self) -> bool:
        return self.launch_mode is LaunchMode.FARGATE


class LogConfig(BaseModel):
    """Configuration for structured logging."""

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Minimum log level to capture",
    )
    format: Literal["json", "console"] = Field(
        default="console",
        description="json for structured output, console for human-readable",
    )
    file_path: Path | None = Field(
        default=None,
        description="Rotating log file for json output (stdout when unset)",
    )


class PluginSettings(BaseModel):
    """Top-level settings for scheduling agents on one ECS cluster."""

    cluster_name: str = Field(
        min_length=1,
        description="ECS cluster tasks are scheduled on",
    )
    aws_region: str | None = Field(
        default=None,
        description="AWS region; boto3's default resolution applies when unset",
    )
    server_id: str = Field(
        min_length=1,
        description="Identity of the owning server, stamped on every task definition",
    )
    server_url: str = Field(
        default="https://localhost:8154/go",
        description="URL agents use to register back with the server",
    )
    plugin_id: str = Field(
        default="ecs-elastic-agents",
        description="Plugin id passed to agents for auto-registration",
    )
    task_name_prefix: str = Field(
        default="ElasticAgent",
        pattern=r"^[A-Za-z][A-Za-z0-9_-]*$",
        description="Prefix of generated task definition families",
    )
    linux_stop_policy: StopPolicy = Field(
        default=StopPolicy.STOP_IDLE_INSTANCE,
        description="Idle-instance policy for LINUX profiles",
    )
    windows_stop_policy: StopPolicy = Field(
        default=StopPolicy.STOP_IDLE_INSTANCE,
        description="Idle-instance policy for every non-LINUX profile",
    )
    subnet_ids: list[str] = Field(
        default_factory=list,
        description="Default subnets when a profile sets none",
    )
    security_group_ids: list[str] = Field(
        default_factory=list,
        description="Default security groups when a profile sets none",
    )
    assign_public_ip: bool = Field(
        default=False,
        description="Give Fargate tasks a public IP",
    )
    execution_role_arn: str | None = Field(
        default=None,
        description="Task execution role (image pulls, log delivery) for Fargate tasks",
    )
    log_driver: str | None = Field(
        default=None,
        description="Container log driver, e.g. awslogs",
    )
    log_options: dict[str, str] = Field(
        default_factory=dict,
        description="Options for the container log driver",
    )
    logging: LogConfig = Field(
        default_factory=LogConfig,
        description="Scheduler's own structured logging",
    )

    def stop_policy_for(self, platform: Platform) -> StopPolicy:
        """LINUX uses the linux policy; every other platform the windows one."""
        if platform is Platform.LINUX:
            return self.linux_stop_policy
        return self.windows_stop_policy

    @classmethod
    def from_yaml(cls, path: Path) -> PluginSettings:
        """Load plugin settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.model_validate(data)


__all__ = [
    "ElasticProfile",
    "JobIdentifier",
    "LaunchMode",
    "LogConfig",
    "Platform",
    "PluginSettings",
    "StopPolicy",
]
