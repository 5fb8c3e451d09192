"""boto3 ECS client construction.

Clients are thread-safe and expensive to build, so one is kept per region.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Any

import boto3
from botocore.config import Config

from ecs_agents.core.config import PluginSettings

# boto3 ships no static types for its clients
EcsClient = Any

_RETRY_CONFIG = Config(retries={"max_attempts": 5, "mode": "standard"})


@lru_cache(maxsize=None)
def _client_for_region(region: str | None) -> EcsClient:
    return boto3.client("ecs", region_name=region, config=_RETRY_CONFIG)


def ecs_client(settings: PluginSettings) -> EcsClient:
    """Return the shared ECS client for the settings' region."""
    return _client_for_region(settings.aws_region)


__all__ = ["EcsClient", "ecs_client"]
