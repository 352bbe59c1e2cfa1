"""Exceptions raised by the worker pool and the session manager."""

from typing import Optional


class PoolError(Exception):
    pass


class PoolClosingError(PoolError):
    """The pool is shutting down; the task was never run or was force-terminated."""


class TaskFailedError(PoolError):
    """
    Terminal failure of a task.

    Wraps the error from the final attempt together with how many attempts
    were made.
    """

    def __init__(self, task_id: int, original_error: Optional[BaseException], attempts: int):
        self.task_id = task_id
        self.original_error = original_error
        self.attempts = attempts
        retries = attempts - 1
        super().__init__(
            f"Task {task_id} failed after {retries} retries ({attempts} attempts): {original_error}"
        )


class TaskProtocolError(PoolError):
    """A task's run() returned something other than an Outcome."""


class SessionError(Exception):
    """Browser launch failure or an unusable session configuration."""
