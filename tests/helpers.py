"""Shared test helpers for ECS agent scheduler tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import MagicMock

from botocore.exceptions import ClientError

CLUSTER = "agents"
REGION = "us-east-1"
ACCOUNT = "123456789012"


def client_error(code: str, operation: str = "RunTask", message: str = "boom") -> ClientError:
    """Build a botocore ClientError carrying an ECS error code."""
    return ClientError({"Error": {"Code": code, "Message": message}}, operation)


def definition_arn(family: str, revision: int = 1) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:task-definition/{family}:{revision}"


def task_arn(task_id: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:task/{CLUSTER}/{task_id}"


def instance_arn(instance_id: str) -> str:
    return f"arn:aws:ecs:{REGION}:{ACCOUNT}:container-instance/{CLUSTER}/{instance_id}"


def paginator_for(pages: dict[str, list[dict[str, Any]]]) -> Callable[[str], MagicMock]:
    """``get_paginator`` side effect returning canned pages per operation."""

    def _get_paginator(operation: str) -> MagicMock:
        paginator = MagicMock()
        paginator.paginate.return_value = pages.get(operation, [{}])
        return paginator

    return _get_paginator
