"""
Pool status events and their observers.

The pool pushes a PoolStatus to every subscribed observer whenever its
active-slot count or queue length changes, tells observers when a task
reaches a terminal state, and hands over the aggregated results once it is
idle. Observers subscribe and unsubscribe explicitly on the pool.
"""

import json
import os
from dataclasses import asdict, dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from loguru import logger
from tqdm import tqdm

from rankscout.contexts.orchestration.tasks import TaskState

load_dotenv()
LOGS_PATH = Path(os.getenv("LOGS_PATH", "outs/logs"))


@dataclass(frozen=True)
class PoolStatus:
    active_slots: int
    queue_length: int
    concurrency_limit: int
    timestamp: str = field(default_factory=lambda: datetime.now().isoformat())

    def to_dict(self) -> dict:
        return asdict(self)


class PoolObserver:
    """Base observer; override the hooks you care about."""

    def on_status(self, status: PoolStatus) -> None:
        pass

    def on_task_finished(self, task_id: int, state: TaskState, attempts: int) -> None:
        pass

    def on_completed(self, results: list[Any]) -> None:
        pass


class LoggingObserver(PoolObserver):
    def on_status(self, status: PoolStatus) -> None:
        logger.debug(
            f"Pool: {status.active_slots}/{status.concurrency_limit} active, {status.queue_length} queued"
        )

    def on_completed(self, results: list[Any]) -> None:
        logger.info(f"=== All tasks finished ({len(results)} succeeded) ===")


class JsonlStatusObserver(PoolObserver):
    """
    Append every status transition to ``pool_status.txt`` in JSON Lines.

    One JSON object per line so dashboards can tail the file.
    """

    def __init__(self, log_dir: Path = LOGS_PATH, filename: str = "pool_status.txt"):
        self.log_path = Path(log_dir) / filename

    def _write(self, event: dict) -> None:
        self.log_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.log_path, "a", encoding="utf-8") as handle:
            handle.write(json.dumps(event) + "\n")

    def on_status(self, status: PoolStatus) -> None:
        self._write({"event": "status", **status.to_dict()})

    def on_completed(self, results: list[Any]) -> None:
        self._write(
            {
                "event": "completed",
                "timestamp": datetime.now().isoformat(),
                "succeeded": len(results),
            }
        )


class ProgressObserver(PoolObserver):
    """tqdm progress bar advancing once per terminal task."""

    def __init__(self, total: int, desc: str = "Tasks", disable: Optional[bool] = None):
        self.bar = tqdm(total=total, desc=desc, unit="task", disable=disable)
        self.failed = 0

    def on_task_finished(self, task_id: int, state: TaskState, attempts: int) -> None:
        if state is not TaskState.COMPLETED:
            self.failed += 1
            self.bar.set_postfix(failed=self.failed)
        self.bar.update(1)

    def on_completed(self, results: list[Any]) -> None:
        self.bar.close()
