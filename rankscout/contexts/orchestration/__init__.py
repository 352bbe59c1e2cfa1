"""
Orchestration context for rankscout.

Runs browser tasks under bounded concurrency: the worker pool, the session
lifecycle manager, the task/outcome interface and pool status observers.
"""

from rankscout.contexts.orchestration.errors import (
    PoolError,
    PoolClosingError,
    TaskFailedError,
    TaskProtocolError,
    SessionError,
)
from rankscout.contexts.orchestration.events import (
    PoolStatus,
    PoolObserver,
    LoggingObserver,
    JsonlStatusObserver,
    ProgressObserver,
)
from rankscout.contexts.orchestration.pool import WorkerPool
from rankscout.contexts.orchestration.sessions import (
    Session,
    SessionManager,
    should_block_request,
    random_desktop_user_agent,
    DEFAULT_USER_AGENT,
)
from rankscout.contexts.orchestration.tasks import (
    SessionConfig,
    AttemptContext,
    Task,
    FunctionTask,
    TaskState,
    Outcome,
    Success,
    Retry,
    Fatal,
)

__all__ = [
    # Pool
    "WorkerPool",
    # Sessions
    "Session",
    "SessionManager",
    "SessionConfig",
    "should_block_request",
    "random_desktop_user_agent",
    "DEFAULT_USER_AGENT",
    # Tasks
    "AttemptContext",
    "Task",
    "FunctionTask",
    "TaskState",
    "Outcome",
    "Success",
    "Retry",
    "Fatal",
    # Events
    "PoolStatus",
    "PoolObserver",
    "LoggingObserver",
    "JsonlStatusObserver",
    "ProgressObserver",
    # Errors
    "PoolError",
    "PoolClosingError",
    "TaskFailedError",
    "TaskProtocolError",
    "SessionError",
]
