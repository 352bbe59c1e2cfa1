"""
Task store: persistence of crawl tasks and their listings.

The store is an explicitly constructed service with its own connect/close
lifecycle, handed to the tasks that need it. Scraping never depends on the
store being reachable: ``safe_store_call`` runs a store method off the
event loop and turns any failure into a logged warning.
"""

import asyncio
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Optional

import pandas as pd
from loguru import logger
from sqlalchemy import create_engine, insert, select, update
from sqlalchemy.engine import Engine

from rankscout.contexts.storage.database import DatabaseConfig, ensure_database
from rankscout.contexts.storage.schema import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_PENDING,
    STATUS_RUNNING,
    crawl_tasks,
    listing_rankings,
    metadata,
)


class TaskStore(ABC):
    """Interface the scraping tasks use to record their progress."""

    def connect(self) -> None:
        pass

    def close(self) -> None:
        pass

    @abstractmethod
    def create_task(self, keyword: str, locale: str) -> Optional[int]:
        """Create a pending crawl task and return its id."""

    @abstractmethod
    def mark_running(self, task_id: int) -> None:
        pass

    @abstractmethod
    def mark_completed(self, task_id: int, page_count: int, item_count: int, paid_count: int) -> None:
        pass

    @abstractmethod
    def mark_failed(self, task_id: int, error_message: str) -> None:
        pass

    @abstractmethod
    def save_listings(self, task_id: int, rows: list[dict]) -> int:
        """Append listing rows; returns the number written."""


class NullTaskStore(TaskStore):
    """Store that only logs. Used when no database is configured."""

    def __init__(self):
        self._next_id = 0

    def create_task(self, keyword: str, locale: str) -> int:
        self._next_id += 1
        logger.debug(f"Crawl task {self._next_id} created for '{keyword}' ({locale})")
        return self._next_id

    def mark_running(self, task_id: int) -> None:
        logger.debug(f"Crawl task {task_id} running")

    def mark_completed(self, task_id: int, page_count: int, item_count: int, paid_count: int) -> None:
        logger.debug(f"Crawl task {task_id} completed: {page_count} pages, {item_count} items, {paid_count} ads")

    def mark_failed(self, task_id: int, error_message: str) -> None:
        logger.debug(f"Crawl task {task_id} failed: {error_message}")

    def save_listings(self, task_id: int, rows: list[dict]) -> int:
        return len(rows)


class SQLTaskStore(TaskStore):
    """
    SQLAlchemy-backed store.

    Tables are created on connect if missing. Listings are bulk-appended
    through a pandas DataFrame.

    Args:
        connection_string: SQLAlchemy URL
        create_database: Create the PostgreSQL database first if it does not exist
    """

    def __init__(self, connection_string: str, create_database: bool = False, db_config: Optional[DatabaseConfig] = None):
        self.connection_string = connection_string
        self.create_database = create_database
        self.db_config = db_config
        self.engine: Optional[Engine] = None

    @classmethod
    def from_config(cls, config: DatabaseConfig, create_database: bool = True) -> "SQLTaskStore":
        return cls(config.connection_string, create_database=create_database, db_config=config)

    @classmethod
    def from_env(cls) -> "SQLTaskStore":
        return cls.from_config(DatabaseConfig.from_env())

    def connect(self) -> None:
        if self.engine is not None:
            return
        if self.create_database and self.db_config is not None:
            ensure_database(self.db_config)
        self.engine = create_engine(self.connection_string, pool_pre_ping=True)
        metadata.create_all(self.engine)
        logger.info(f"Task store connected ({self.engine.url.render_as_string(hide_password=True)})")

    def close(self) -> None:
        if self.engine is not None:
            self.engine.dispose()
            self.engine = None

    def _require_engine(self) -> Engine:
        if self.engine is None:
            self.connect()
        return self.engine

    def create_task(self, keyword: str, locale: str) -> int:
        now = datetime.now()
        with self._require_engine().begin() as conn:
            result = conn.execute(
                insert(crawl_tasks).values(
                    keyword=keyword,
                    locale=locale or "",
                    status=STATUS_PENDING,
                    created_at=now,
                    updated_at=now,
                )
            )
            return result.inserted_primary_key[0]

    def mark_running(self, task_id: int) -> None:
        now = datetime.now()
        with self._require_engine().begin() as conn:
            conn.execute(
                update(crawl_tasks)
                .where(crawl_tasks.c.id == task_id)
                .values(status=STATUS_RUNNING, crawl_start_time=now, error_message=None, updated_at=now)
            )

    def _duration_since_start(self, conn, task_id: int, now: datetime) -> Optional[int]:
        start = conn.execute(
            select(crawl_tasks.c.crawl_start_time).where(crawl_tasks.c.id == task_id)
        ).scalar_one_or_none()
        if start is None:
            return None
        return int((now - start).total_seconds())

    def mark_completed(self, task_id: int, page_count: int, item_count: int, paid_count: int) -> None:
        now = datetime.now()
        with self._require_engine().begin() as conn:
            duration = self._duration_since_start(conn, task_id, now)
            conn.execute(
                update(crawl_tasks)
                .where(crawl_tasks.c.id == task_id)
                .values(
                    status=STATUS_COMPLETED,
                    pages_crawled=page_count,
                    products_found=item_count,
                    ads_found=paid_count,
                    duration_seconds=duration,
                    updated_at=now,
                )
            )

    def mark_failed(self, task_id: int, error_message: str) -> None:
        now = datetime.now()
        with self._require_engine().begin() as conn:
            duration = self._duration_since_start(conn, task_id, now)
            conn.execute(
                update(crawl_tasks)
                .where(crawl_tasks.c.id == task_id)
                .values(
                    status=STATUS_FAILED,
                    error_message=error_message,
                    duration_seconds=duration,
                    updated_at=now,
                )
            )

    def save_listings(self, task_id: int, rows: list[dict]) -> int:
        if not rows:
            return 0

        columns = [column.name for column in listing_rankings.columns if column.name != "id"]
        df = pd.DataFrame(rows)
        df["crawl_task_id"] = task_id
        df = df[[column for column in columns if column in df.columns]]

        df.to_sql(listing_rankings.name, self._require_engine(), if_exists="append", index=False)
        return len(df)

    def get_task(self, task_id: int) -> Optional[dict]:
        with self._require_engine().connect() as conn:
            row = conn.execute(select(crawl_tasks).where(crawl_tasks.c.id == task_id)).mappings().first()
        return dict(row) if row is not None else None

    def export_listings_df(self, task_id: Optional[int] = None) -> pd.DataFrame:
        """Stored listings as a DataFrame, optionally for one crawl task."""
        query = select(listing_rankings)
        if task_id is not None:
            query = query.where(listing_rankings.c.crawl_task_id == task_id)
        with self._require_engine().connect() as conn:
            return pd.read_sql(query, conn)


async def safe_store_call(store: Optional[TaskStore], method: str, *args, label: str = "") -> Any:
    """
    Call ``store.<method>(*args)`` in a worker thread.

    Returns:
        The method's return value, or None if there is no store or the call failed
    """
    if store is None:
        return None
    try:
        return await asyncio.to_thread(getattr(store, method), *args)
    except Exception as e:
        logger.warning(f"{label}Task store {method} failed: {e}")
        return None
