from datetime import datetime

import pytest

from rankscout.contexts.scraping.listings import ListingRecord, PlacementType
from rankscout.contexts.storage import (
    DatabaseConfig,
    NullTaskStore,
    SQLTaskStore,
    safe_store_call,
)


@pytest.fixture
def store(tmp_path):
    store = SQLTaskStore(f"sqlite:///{tmp_path / 'rankscout.db'}")
    store.connect()
    yield store
    store.close()


def listing_row(rank, placement=PlacementType.ORGANIC, **overrides):
    record = ListingRecord(
        placement=placement,
        position_on_page=rank,
        rank=rank,
        item_id=f"B0ROW{rank:05d}",
        title=f"Row {rank}",
        price=9.99,
    )
    row = record.to_dict()
    row.update(page_number=1, keyword="usb c hub", crawl_time=datetime(2026, 1, 2, 3, 4, 5))
    row.update(overrides)
    return row


class TestSQLTaskStore:
    def test_task_lifecycle(self, store):
        task_id = store.create_task("usb c hub", "W1B 4DG")
        task = store.get_task(task_id)
        assert task["status"] == "pending"
        assert task["keyword"] == "usb c hub"
        assert task["locale"] == "W1B 4DG"
        assert task["crawl_start_time"] is None

        store.mark_running(task_id)
        assert store.get_task(task_id)["status"] == "running"
        assert store.get_task(task_id)["crawl_start_time"] is not None

        store.mark_completed(task_id, page_count=3, item_count=148, paid_count=12)
        task = store.get_task(task_id)
        assert task["status"] == "completed"
        assert task["pages_crawled"] == 3
        assert task["products_found"] == 148
        assert task["ads_found"] == 12
        assert task["duration_seconds"] >= 0

    def test_mark_failed(self, store):
        task_id = store.create_task("hdmi 90 degree", "10008")
        store.mark_running(task_id)
        store.mark_failed(task_id, "Search results did not load")

        task = store.get_task(task_id)
        assert task["status"] == "failed"
        assert task["error_message"] == "Search results did not load"

    def test_retry_clears_previous_error(self, store):
        task_id = store.create_task("hdmi 90 degree", "10008")
        store.mark_failed(task_id, "first attempt failed")
        store.mark_running(task_id)

        assert store.get_task(task_id)["error_message"] is None

    def test_failed_without_start_has_no_duration(self, store):
        task_id = store.create_task("hdmi", "")
        store.mark_failed(task_id, "never started")

        assert store.get_task(task_id)["duration_seconds"] is None

    def test_save_and_export_listings(self, store):
        first = store.create_task("usb c hub", "")
        second = store.create_task("hdmi", "")

        rows = [
            listing_row(1),
            listing_row(1, placement=PlacementType.PAID_STANDARD, ad_campaign_id="c-1"),
            listing_row(2, not_a_column="dropped"),
        ]
        assert store.save_listings(first, rows) == 3
        assert store.save_listings(second, [listing_row(1)]) == 1

        df = store.export_listings_df(first)
        assert len(df) == 3
        assert set(df["crawl_task_id"]) == {first}
        assert sorted(df["placement"]) == ["organic", "organic", "sp"]
        assert "not_a_column" not in df.columns
        assert df.loc[df["placement"] == "sp", "ad_campaign_id"].iloc[0] == "c-1"

        assert len(store.export_listings_df()) == 4

    def test_save_no_listings(self, store):
        assert store.save_listings(store.create_task("x", ""), []) == 0

    def test_unknown_task(self, store):
        assert store.get_task(999) is None


def test_null_store_hands_out_ids():
    store = NullTaskStore()

    assert store.create_task("a", "") == 1
    assert store.create_task("b", "") == 2
    assert store.save_listings(1, [{"rank": 1}, {"rank": 2}]) == 2


class TestSafeStoreCall:
    @pytest.mark.asyncio
    async def test_without_store(self):
        assert await safe_store_call(None, "create_task", "kw", "") is None

    @pytest.mark.asyncio
    async def test_returns_result(self):
        assert await safe_store_call(NullTaskStore(), "create_task", "kw", "") == 1

    @pytest.mark.asyncio
    async def test_failures_are_swallowed(self, tmp_path):
        # Directory that does not exist: every call fails to connect
        store = SQLTaskStore(f"sqlite:///{tmp_path / 'missing' / 'db.sqlite'}")

        assert await safe_store_call(store, "create_task", "kw", "", label="[Task 1] ") is None


class TestDatabaseConfig:
    def test_database_url_wins(self, monkeypatch):
        monkeypatch.setenv("DATABASE_URL", "sqlite:///local.db")
        config = DatabaseConfig.from_env()

        assert config.connection_string == "sqlite:///local.db"
        assert not config.is_postgres

    def test_postgres_from_env(self, monkeypatch):
        monkeypatch.delenv("DATABASE_URL", raising=False)
        monkeypatch.setenv("POSTGRES_HOST", "db.internal")
        monkeypatch.setenv("POSTGRES_PORT", "6543")
        monkeypatch.setenv("POSTGRES_USER", "scout")
        monkeypatch.setenv("POSTGRES_PASSWORD", "pw")
        monkeypatch.setenv("POSTGRES_DB", "ranks")
        config = DatabaseConfig.from_env()

        assert config.is_postgres
        assert config.connection_string == "postgresql+psycopg2://scout:pw@db.internal:6543/ranks"
