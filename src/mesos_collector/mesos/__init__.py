"""Mesos agent operator API client and typed responses."""

from .client import OperatorClient, get_agent_hostname, GET_STATE, GET_TASKS
from .types import GetState, GetTasks, Task, TaskStatus, simplify_labels

__all__ = [
    "OperatorClient",
    "get_agent_hostname",
    "GET_STATE",
    "GET_TASKS",
    "GetState",
    "GetTasks",
    "Task",
    "TaskStatus",
    "simplify_labels",
]
