"""Errors raised by the lifecycle controller.

All of them are recoverable: callers (tool server, CLI) turn them into
status results instead of letting them take the manager down.
"""

from __future__ import annotations


class LifecycleError(Exception):
    """Base class for start/stop failures reported to the caller."""

    status = "error"


class InstanceNotFoundError(LifecycleError, KeyError):
    status = "not_found"

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"No server instance '{instance_id}'")
        self.instance_id = instance_id

    def __str__(self) -> str:
        return self.args[0]


class NoRuntimeError(LifecycleError):
    status = "no_runtime"


class AlreadyRunningError(LifecycleError):
    status = "already_running"

    def __init__(self, instance_id: str) -> None:
        super().__init__(f"Server '{instance_id}' is already running")
        self.instance_id = instance_id


class SpawnError(LifecycleError):
    status = "spawn_failed"
