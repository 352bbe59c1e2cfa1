"""
Task interface for the worker pool.

A task is run once per attempt with a fresh browser session and an
AttemptContext, and returns an Outcome:

- Success(result): the task is done, the pool resolves its future
- Retry(error): tear the session down and run the task again in the same slot
- Fatal(error): the task is done, the pool rejects its future

Whether a failure is retryable is entirely the task's call; the pool has
no retry budget of its own.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Optional, Union


@dataclass
class SessionConfig:
    """
    How to build the browser session for one task.

    Attributes:
        proxy: ``scheme://[user:pass@]host:port`` or None for a direct connection
        user_agent: Fixed user agent; None lets the session manager pick one
        viewport: ``{"width": ..., "height": ...}`` or None for the browser default
        cookies: ``name=value; ...`` string or a list of cookie dicts/strings
        cookie_domain: Domain for cookies given as strings (e.g. ".amazon.com")
        locale: Browser locale
        zip_code: Delivery location the cookies were harvested for
    """

    proxy: Optional[str] = None
    user_agent: Optional[str] = None
    viewport: Optional[dict] = None
    cookies: Union[str, list, None] = None
    cookie_domain: Optional[str] = None
    locale: str = "en-US"
    zip_code: str = ""


@dataclass(frozen=True)
class Success:
    result: Any = None


@dataclass(frozen=True)
class Retry:
    error: BaseException


@dataclass(frozen=True)
class Fatal:
    error: BaseException


Outcome = Union[Success, Retry, Fatal]
OUTCOME_TYPES = (Success, Retry, Fatal)


@dataclass(frozen=True)
class AttemptContext:
    """What a task sees about the attempt it is running in."""

    task_id: int
    attempt: int = 0

    @property
    def label(self) -> str:
        return f"[Task {self.task_id}] "

    def complete(self, result: Any = None) -> Success:
        return Success(result)

    def fail(self, error: BaseException, can_retry: bool = False) -> Union[Retry, Fatal]:
        return Retry(error) if can_retry else Fatal(error)


class Task(ABC):
    """
    Unit of work for the pool.

    Subclasses set ``session_config`` and implement ``run``. Raising from
    ``run`` is treated as a non-retryable failure.
    """

    name: str = "task"
    session_config: SessionConfig

    @abstractmethod
    async def run(self, session, ctx: AttemptContext) -> Outcome:
        """Run one attempt in ``session`` and say how it went."""

    def describe(self) -> str:
        return self.name


Driver = Callable[[Any, AttemptContext, dict], Awaitable[Outcome]]


@dataclass
class FunctionTask(Task):
    """Wrap a plain ``async def driver(session, ctx, params) -> Outcome`` as a Task."""

    driver: Driver
    session_config: SessionConfig = field(default_factory=SessionConfig)
    params: dict = field(default_factory=dict)
    name: str = "function"

    async def run(self, session, ctx: AttemptContext) -> Outcome:
        return await self.driver(session, ctx, self.params)


class TaskState(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"
