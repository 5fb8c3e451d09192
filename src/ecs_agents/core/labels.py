"""Ownership labels stamped on every agent task definition.

The labels are the scheduler's only persisted state: ECS is the system of
record, and reconciliation rebuilds scheduled tasks from these docker
labels alone. The key names and the JSON payloads below are therefore a
compatibility contract with every task already running in a cluster.

Schema:
    server-id       owning server identity (plain string)
    job-identifier  JobIdentifier as JSON
    environment     environment name (omitted when the job has none)
    configuration   ElasticProfile as JSON
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass

from pydantic import ValidationError

from ecs_agents.core.config import ElasticProfile, JobIdentifier
from ecs_agents.exceptions import LabelDecodeError

LABEL_SERVER_ID = "server-id"
LABEL_JOB_IDENTIFIER = "job-identifier"
LABEL_ENVIRONMENT = "environment"
LABEL_CONFIGURATION = "configuration"


@dataclass(frozen=True)
class OwnershipLabels:
    """Decoded form of the ownership label set."""

    server_id: str
    job_identifier: JobIdentifier
    profile: ElasticProfile
    environment: str | None = None

    def to_docker_labels(self) -> dict[str, str]:
        """Encode as ECS docker labels (string values only)."""
        labels = {
            LABEL_SERVER_ID: self.server_id,
            LABEL_JOB_IDENTIFIER: self.job_identifier.model_dump_json(),
            LABEL_CONFIGURATION: self.profile.model_dump_json(),
        }
        if self.environment is not None:
            labels[LABEL_ENVIRONMENT] = self.environment
        return labels

    @classmethod
    def from_docker_labels(
        cls, labels: Mapping[str, str], *, default_server_id: str,
    ) -> OwnershipLabels:
        """Decode labels read back from a task definition.

        Args:
            labels: Docker labels of the task's first container.
            default_server_id: Used when the server-id label is absent.

        Raises:
            LabelDecodeError: If the job identity or profile label is
                missing or does not hold a valid JSON payload.
        """
        raw_job = labels.get(LABEL_JOB_IDENTIFIER)
        raw_profile = labels.get(LABEL_CONFIGURATION)
        if raw_job is None or raw_profile is None:
            missing = LABEL_JOB_IDENTIFIER if raw_job is None else LABEL_CONFIGURATION
            raise LabelDecodeError(f"Missing ownership label {missing!r}")
        try:
            job_identifier = JobIdentifier.model_validate_json(raw_job)
            profile = ElasticProfile.model_validate_json(raw_profile)
        except ValidationError as e:
            raise LabelDecodeError(f"Invalid ownership label payload: {e}") from e
        return cls(
            server_id=labels.get(LABEL_SERVER_ID, default_server_id),
            job_identifier=job_identifier,
            profile=profile,
            environment=labels.get(LABEL_ENVIRONMENT),
        )


def is_owned_by(labels: Mapping[str, str], server_id: str) -> bool:
    """Whether labels mark a task as owned by ``server_id``.

    Comparison is case-insensitive. A task without a server-id label is
    treated as owned.
    """
    return labels.get(LABEL_SERVER_ID, server_id).casefold() == server_id.casefold()


__all__ = [
    "LABEL_CONFIGURATION",
    "LABEL_ENVIRONMENT",
    "LABEL_JOB_IDENTIFIER",
    "LABEL_SERVER_ID",
    "OwnershipLabels",
    "is_owned_by",
]
