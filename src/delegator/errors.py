"""
Exceptions raised by the delegator core.

Validation and lookup errors are reported to the caller as-is; storage
failures surface as ConsistencyError after the transaction is rolled back.
"""

from __future__ import annotations


class DelegatorError(Exception):
    """Base exception for all delegator errors."""


class ValidationError(DelegatorError):
    """Raised when a submission is missing required fields or has bad values."""


class InvalidTransitionError(ValidationError):
    """Raised when a task cannot move from its current status to the requested one."""

    def __init__(self, task_id: str, current: str, target: str) -> None:
        super().__init__(f"Task {task_id} cannot move from '{current}' to '{target}'")
        self.task_id = task_id
        self.current = current
        self.target = target


class ConfigurationError(ValidationError):
    """Raised when config.toml or a DELEGATOR_* variable holds a bad value."""


class NotFoundError(DelegatorError):
    """Raised when a task or agent id is unknown."""


class NoAgentAvailableError(DelegatorError):
    """
    Raised when no active agent can take a task.

    The task stays pending; ``task_id`` lets callers retry delegation later.
    """

    def __init__(self, message: str, task_id: str | None = None) -> None:
        super().__init__(message)
        self.task_id = task_id


class ConsistencyError(DelegatorError):
    """Raised when a store transaction fails and has been rolled back."""
