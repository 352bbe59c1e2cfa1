"""
Bounded-concurrency worker pool for browser tasks.

Tasks wait in a FIFO queue and get a slot once fewer than
``concurrency_limit`` slots are busy. The slot is taken before the browser
session is opened, so the limit bounds work in progress rather than open
sessions. Each attempt gets a fresh session that is closed exactly once
when the attempt ends. A task that asks for a retry keeps its slot and is
run again straight away; it never goes back on the queue.

Typical use::

    pool = WorkerPool(SessionManager(), concurrency_limit=3)
    futures = [pool.submit(task) for task in tasks]
    results = await pool.wait_completed()
    await pool.close()
"""

import asyncio
import itertools
from collections import deque
from dataclasses import dataclass, field
from typing import Any, Optional

from loguru import logger

from rankscout.contexts.orchestration.errors import (
    PoolClosingError,
    TaskFailedError,
    TaskProtocolError,
)
from rankscout.contexts.orchestration.events import PoolObserver, PoolStatus
from rankscout.contexts.orchestration.tasks import (
    OUTCOME_TYPES,
    AttemptContext,
    Fatal,
    Outcome,
    Retry,
    Success,
    Task,
    TaskState,
)


@dataclass(eq=False)
class _Entry:
    task_id: int
    task: Task
    future: asyncio.Future
    attempts: int = 0
    state: TaskState = TaskState.QUEUED
    session: Any = field(default=None, repr=False)


class WorkerPool:
    """
    Queue tasks and run them with at most ``concurrency_limit`` in flight.

    Args:
        session_manager: Opens and closes sessions (``open``, ``close``, ``shutdown``)
        concurrency_limit: Maximum number of tasks holding a slot at once
        close_grace_period: Seconds ``close()`` waits for running tasks before cancelling them
    """

    def __init__(self, session_manager, concurrency_limit: int = 3, close_grace_period: float = 10.0):
        if concurrency_limit < 1:
            raise ValueError("concurrency_limit must be at least 1")

        self.session_manager = session_manager
        self.concurrency_limit = concurrency_limit
        self.close_grace_period = close_grace_period

        self._queue: deque[_Entry] = deque()
        self._active: dict[int, _Entry] = {}
        self._runners: dict[int, asyncio.Task] = {}
        self._ids = itertools.count(1)

        self._observers: list[PoolObserver] = []
        self._last_status: Optional[tuple[int, int]] = None

        # One completion signal per round; a round ends when the pool goes idle
        self._results: list[Any] = []
        self._completed: Optional[asyncio.Future] = None

        self._closing = False
        self._closed = False

        self.succeeded = 0
        self.failed = 0

    @classmethod
    def from_config(cls, session_manager, pool_config) -> "WorkerPool":
        return cls(
            session_manager,
            concurrency_limit=pool_config.get("concurrency_limit", 3),
            close_grace_period=pool_config.get("close_grace_period", 10.0),
        )

    # ------------------------------------------------------------------
    # Observers
    # ------------------------------------------------------------------

    def subscribe(self, observer: PoolObserver) -> None:
        if observer not in self._observers:
            self._observers.append(observer)

    def unsubscribe(self, observer: PoolObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def _notify(self, hook: str, *args) -> None:
        for observer in list(self._observers):
            try:
                getattr(observer, hook)(*args)
            except Exception as e:
                logger.warning(f"Pool observer {type(observer).__name__}.{hook} failed: {e}")

    def _emit_status(self) -> None:
        snapshot = (len(self._active), len(self._queue))
        if snapshot == self._last_status:
            return
        self._last_status = snapshot
        self._notify("on_status", self.status())

    # ------------------------------------------------------------------
    # State
    # ------------------------------------------------------------------

    @property
    def active_slots(self) -> int:
        return len(self._active)

    @property
    def queue_length(self) -> int:
        return len(self._queue)

    @property
    def is_closing(self) -> bool:
        return self._closing

    def status(self) -> PoolStatus:
        return PoolStatus(
            active_slots=len(self._active),
            queue_length=len(self._queue),
            concurrency_limit=self.concurrency_limit,
        )

    # ------------------------------------------------------------------
    # Submission and scheduling
    # ------------------------------------------------------------------

    def submit(self, task: Task) -> asyncio.Future:
        """
        Queue a task. No session is opened until the task gets a slot.

        Returns:
            Future resolved with the task's result, or rejected with
            TaskFailedError / PoolClosingError

        Raises:
            PoolClosingError: If the pool is closing or closed
        """
        if self._closing:
            raise PoolClosingError("Pool is closing, not accepting new tasks")

        loop = asyncio.get_running_loop()
        if self._completed is None or self._completed.done():
            self._completed = loop.create_future()
            self._results = []

        entry = _Entry(task_id=next(self._ids), task=task, future=loop.create_future())
        self._queue.append(entry)
        logger.debug(f"[Task {entry.task_id}] Queued {task.describe()}")

        self._emit_status()
        self._drain_queue()
        return entry.future

    def _drain_queue(self) -> None:
        while not self._closing and self._queue and len(self._active) < self.concurrency_limit:
            entry = self._queue.popleft()
            if entry.future.done():
                # Cancelled by the caller while queued
                entry.state = TaskState.CANCELLED
                continue

            entry.state = TaskState.RUNNING
            self._active[entry.task_id] = entry
            self._emit_status()
            self._runners[entry.task_id] = asyncio.create_task(
                self._run_entry(entry), name=f"rankscout-task-{entry.task_id}"
            )
        self._emit_status()

    async def _run_entry(self, entry: _Entry) -> None:
        try:
            while True:
                outcome = await self._run_attempt(entry)
                if not isinstance(outcome, Retry):
                    break
                logger.warning(
                    f"[Task {entry.task_id}] Attempt {entry.attempts} failed, retrying: {outcome.error}"
                )
        except asyncio.CancelledError:
            self._finish(
                entry,
                TaskState.CANCELLED,
                error=PoolClosingError(f"Task {entry.task_id} was terminated by pool shutdown"),
            )
            raise

        if isinstance(outcome, Success):
            self._finish(entry, TaskState.COMPLETED, result=outcome.result)
        else:
            self._finish(
                entry,
                TaskState.FAILED,
                error=TaskFailedError(entry.task_id, outcome.error, entry.attempts),
            )

    async def _run_attempt(self, entry: _Entry) -> Outcome:
        """One attempt: open a session, run the task, close the session."""
        ctx = AttemptContext(task_id=entry.task_id, attempt=entry.attempts)
        entry.attempts += 1
        session = None
        try:
            session = await self.session_manager.open(entry.task.session_config)
            entry.session = session
            outcome = await entry.task.run(session, ctx)
            if not isinstance(outcome, OUTCOME_TYPES):
                outcome = Fatal(
                    TaskProtocolError(
                        f"{entry.task.describe()} returned {type(outcome).__name__}, expected an Outcome"
                    )
                )
        except Exception as e:
            logger.error(f"[Task {entry.task_id}] Execution failed: {e}")
            outcome = Fatal(e)
        finally:
            if session is not None:
                entry.session = None
                await self._close_session(entry, session)
        return outcome

    async def _close_session(self, entry: _Entry, session) -> None:
        try:
            await self.session_manager.close(session)
        except Exception as e:
            logger.warning(f"[Task {entry.task_id}] Error closing session: {e}")

    def _finish(
        self,
        entry: _Entry,
        state: TaskState,
        result: Any = None,
        error: Optional[BaseException] = None,
    ) -> None:
        """Release the slot, settle the future and let the next task in."""
        if entry.state in (TaskState.COMPLETED, TaskState.FAILED, TaskState.CANCELLED):
            return

        self._active.pop(entry.task_id, None)
        self._runners.pop(entry.task_id, None)
        entry.state = state

        if state is TaskState.COMPLETED:
            self.succeeded += 1
            self._results.append(result)
            if not entry.future.done():
                entry.future.set_result(result)
            logger.success(f"[Task {entry.task_id}] Completed after {entry.attempts} attempt(s)")
        else:
            self.failed += 1
            if not entry.future.done():
                entry.future.set_exception(error)
            logger.error(f"[Task {entry.task_id}] {error}")

        self._notify("on_task_finished", entry.task_id, state, entry.attempts)
        self._emit_status()
        self._drain_queue()

        # Let callbacks on the settled future run before announcing completion
        asyncio.get_running_loop().call_soon(self._check_completed)

    def _check_completed(self) -> None:
        if self._queue or self._active:
            return
        if self._completed is None or self._completed.done():
            return

        results = list(self._results)
        self._completed.set_result(results)
        self._notify("on_completed", results)

    async def wait_completed(self) -> list[Any]:
        """
        Wait until the queue is empty and no slot is busy.

        Returns:
            Results of every successful task of this round, in completion order
        """
        if self._completed is None:
            return []
        return await asyncio.shield(self._completed)

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def close(self) -> None:
        """
        Shut the pool down.

        Queued tasks are rejected with PoolClosingError immediately. Running
        tasks get ``close_grace_period`` seconds to finish; the rest are
        cancelled and rejected with PoolClosingError. Finally the session
        manager is shut down.
        """
        if self._closing:
            return
        self._closing = True

        while self._queue:
            entry = self._queue.popleft()
            entry.state = TaskState.CANCELLED
            if not entry.future.done():
                entry.future.set_exception(PoolClosingError(f"Task {entry.task_id} cancelled: pool is closing"))
            self.failed += 1
            self._notify("on_task_finished", entry.task_id, TaskState.CANCELLED, 0)
        self._emit_status()

        runners = list(self._runners.values())
        if runners:
            logger.info(f"Waiting up to {self.close_grace_period}s for {len(runners)} running task(s)")
            _, pending = await asyncio.wait(runners, timeout=self.close_grace_period)
            if pending:
                logger.warning(f"Force-terminating {len(pending)} task(s) still running")
                for runner in pending:
                    runner.cancel()
                await asyncio.gather(*pending, return_exceptions=True)

        # Runners cancelled before their first step never reach _finish
        for entry in list(self._active.values()):
            if entry.session is not None:
                await self._close_session(entry, entry.session)
                entry.session = None
            self._finish(
                entry,
                TaskState.CANCELLED,
                error=PoolClosingError(f"Task {entry.task_id} was terminated by pool shutdown"),
            )

        self._check_completed()

        try:
            await self.session_manager.shutdown()
        finally:
            self._observers.clear()
            self._closed = True
            logger.info(f"Pool closed ({self.succeeded} succeeded, {self.failed} failed)")
