"""Fangwen · Unified Error Hierarchy.

All custom exceptions inherit from FangwenError, which carries an error_code
and optional details dict for programmatic handling.

Usage::

    from fangwen.errors import InvalidTaskConfig, UnknownTask

    raise InvalidTaskConfig("missing url", details={"task_id": "t1"})
    raise UnknownTask("t9")
"""

from __future__ import annotations


class FangwenError(Exception):
    """Base exception for all Fangwen errors."""

    def __init__(
        self,
        message: str,
        error_code: str = "FANGWEN_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message)
        self.error_code = error_code
        self.details = details or {}


class ConfigError(FangwenError):
    """Configuration-related errors (missing target file, unparsable YAML/JSON)."""

    def __init__(
        self,
        message: str,
        error_code: str = "CONFIG_ERROR",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class InvalidTaskConfig(FangwenError, ValueError):
    """A task definition lacks a required field or carries a malformed value.

    Raised synchronously by ``add_task``; the task is not stored.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "INVALID_TASK_CONFIG",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)


class UnknownTask(FangwenError, LookupError):
    """Enable/disable/trigger on a task id that is not registered."""

    def __init__(
        self,
        task_id: str,
        error_code: str = "UNKNOWN_TASK",
        details: dict | None = None,
    ) -> None:
        super().__init__(
            f"Task '{task_id}' existiert nicht",
            error_code=error_code,
            details={"task_id": task_id, **(details or {})},
        )
        self.task_id = task_id


class ExecutionFailure(FangwenError):
    """Network error, timeout or 5xx during a single task run.

    Never propagated out of the scheduler chain; only used to carry the
    failure into the run's outcome and log entry.
    """

    def __init__(
        self,
        message: str,
        error_code: str = "EXECUTION_FAILURE",
        details: dict | None = None,
    ) -> None:
        super().__init__(message, error_code=error_code, details=details)
