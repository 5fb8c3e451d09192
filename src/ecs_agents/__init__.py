"""Elastic build agents on Amazon ECS.

Schedules build agents as ECS tasks (on container instances or Fargate),
rolls back partial launches, and rebuilds task state from ECS labels.
"""

__version__ = "0.1.0"
