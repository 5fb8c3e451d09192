"""Exception hierarchy for the ECS agent scheduler.

All scheduler exceptions inherit from SchedulingError, enabling callers
to catch broad (SchedulingError) or narrow (e.g., TaskLaunchError).
boto3/botocore errors are translated into these at the backend boundary
and chained via ``raise ... from``.
"""

from __future__ import annotations


class SchedulingError(Exception):
    """Base exception for all scheduler errors."""


class InstanceProvisioningError(SchedulingError):
    """Raised when a backing container instance could not be created.

    Only the instance-backed path provisions instances, and it does so
    before any task definition is registered, so nothing needs rollback.
    """


class DefinitionRegistrationError(SchedulingError):
    """Raised when ECS refuses to register a task definition."""


class TaskLaunchError(SchedulingError):
    """Raised when a task failed to start.

    Either ECS reported failures, returned no task at all, or the launch
    call itself errored. The task definition registered for the attempt
    has already been deregistered and deleted when this is raised.
    """

    def __init__(self, task_name: str, failures: list[dict[str, str]] | None = None,
                 detail: str | None = None) -> None:
        self.task_name = task_name
        self.failures = failures or []
        lines = [
            f"    {failure.get('arn')} failed with reason :{failure.get('reason')}"
            for failure in self.failures
        ]
        if detail:
            lines.append(f"    {detail}")
        super().__init__(f"Fail to start task {task_name}:\n" + "\n".join(lines))


class CapacityStrategyRejected(SchedulingError):
    """ECS rejected a capacity-provider strategy as an invalid parameter.

    Recovered inside the orchestrator by one launch-type fallback; never
    surfaced to callers.
    """


class ReconciliationError(SchedulingError):
    """Raised when reading task state back from ECS fails."""


class LabelDecodeError(ReconciliationError):
    """Raised when an ownership label does not hold a valid payload."""
