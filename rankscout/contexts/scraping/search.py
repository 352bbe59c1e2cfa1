"""
Keyword search task: search a keyword and extract several result pages.

Each attempt opens the start URL, searches for the keyword and walks up to
``max_pages`` result pages, running the quality-gated extraction on each.
Any error ends the attempt; the task asks the pool for a retry until
``max_retries`` is used up.
"""

import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional

from loguru import logger

from rankscout.contexts.orchestration.tasks import AttemptContext, Outcome, SessionConfig, Task
from rankscout.contexts.scraping.browsing import (
    PageTimings,
    go_to_next_page,
    goto,
    handle_interstitial,
    perform_search,
    scroll_to_bottom,
    wait_for_results,
)
from rankscout.contexts.scraping.quality import (
    ExhaustionPolicy,
    PageExtraction,
    QualityGate,
    extract_with_refresh,
)
from rankscout.contexts.storage.task_store import TaskStore, safe_store_call
from rankscout.utils.helpers import format_duration


@dataclass
class SearchOptions:
    """Per-run settings shared by every search task."""

    max_pages: int = 3
    max_retries: int = 30
    max_refreshes: int = 30
    timings: PageTimings = field(default_factory=PageTimings)
    gate: QualityGate = field(default_factory=QualityGate)
    on_exhausted: ExhaustionPolicy = ExhaustionPolicy.BEST_EFFORT
    snapshot_dir: Optional[Path] = None

    @classmethod
    def from_config(cls, config) -> "SearchOptions":
        search = config.search
        snapshot_dir = search.get("snapshot_dir")
        return cls(
            max_pages=search.get("max_pages", 3),
            max_retries=search.get("max_retries", 30),
            max_refreshes=search.get("max_refreshes", 30),
            timings=PageTimings.from_config(search),
            gate=QualityGate.from_config(config.quality_gate),
            on_exhausted=ExhaustionPolicy(config.quality_gate.get("on_exhausted", "best_effort")),
            snapshot_dir=Path(snapshot_dir) if snapshot_dir else None,
        )


@dataclass
class SearchResult:
    keyword: str
    url: str
    pages: list[PageExtraction]
    attempts: int
    crawl_task_id: Optional[int] = None
    elapsed: float = 0.0

    @property
    def total_pages(self) -> int:
        return len(self.pages)

    @property
    def total_products(self) -> int:
        return sum(len(page.records) for page in self.pages)

    @property
    def total_paid_standard(self) -> int:
        return sum(page.paid_standard_count for page in self.pages)

    @property
    def total_organic(self) -> int:
        return sum(page.organic_count for page in self.pages)

    def totals(self) -> dict:
        return {
            "pages": self.total_pages,
            "products": self.total_products,
            "paid_standard": self.total_paid_standard,
            "organic": self.total_organic,
        }

    def listing_rows(self) -> list[dict]:
        """Flat rows for the ``listing_rankings`` table."""
        rows = []
        for page in self.pages:
            for record in page.records:
                row = record.to_dict()
                row.update(
                    page_number=page.page_number,
                    keyword=self.keyword,
                    crawl_time=page.extracted_at,
                )
                rows.append(row)
        return rows


def _slug(text: str) -> str:
    return "_".join(str(text).split())


class SearchTask(Task):
    """
    Search ``keyword`` starting from ``url`` and extract the result pages.

    The crawl-task id created in the store on the first attempt is kept on
    the task and reused by retries.
    """

    name = "search"

    def __init__(
        self,
        keyword: str,
        url: str,
        session_config: Optional[SessionConfig] = None,
        options: Optional[SearchOptions] = None,
        store: Optional[TaskStore] = None,
    ):
        self.keyword = keyword
        self.url = url
        self.session_config = session_config or SessionConfig()
        self.options = options or SearchOptions()
        self.store = store
        self.crawl_task_id: Optional[int] = None

    def describe(self) -> str:
        return f"search '{self.keyword}' ({self.url})"

    async def run(self, session, ctx: AttemptContext) -> Outcome:
        if not self.url or not self.keyword:
            return ctx.fail(ValueError("Both url and keyword are required"), can_retry=False)

        label = ctx.label
        started = time.time()

        if self.crawl_task_id is None:
            self.crawl_task_id = await safe_store_call(
                self.store, "create_task", self.keyword, self.session_config.zip_code, label=label
            )
        if self.crawl_task_id is not None:
            await safe_store_call(self.store, "mark_running", self.crawl_task_id, label=label)

        try:
            pages = await self._crawl(session.page, label)
        except Exception as e:
            can_retry = ctx.attempt < self.options.max_retries
            if not can_retry and self.crawl_task_id is not None:
                await safe_store_call(self.store, "mark_failed", self.crawl_task_id, str(e), label=label)
            return ctx.fail(e, can_retry=can_retry)

        result = SearchResult(
            keyword=self.keyword,
            url=self.url,
            pages=pages,
            attempts=ctx.attempt + 1,
            crawl_task_id=self.crawl_task_id,
            elapsed=time.time() - started,
        )
        logger.info(
            f"{label}'{self.keyword}': {result.total_pages} pages, {result.total_products} listings "
            f"(sp: {result.total_paid_standard}, organic: {result.total_organic}) "
            f"in {format_duration(result.elapsed)}, retries: {ctx.attempt}"
        )

        if self.crawl_task_id is not None:
            await safe_store_call(
                self.store,
                "mark_completed",
                self.crawl_task_id,
                result.total_pages,
                result.total_products,
                result.total_paid_standard,
                label=label,
            )
            await safe_store_call(self.store, "save_listings", self.crawl_task_id, result.listing_rows(), label=label)

        return ctx.complete(result)

    async def _crawl(self, page, label: str) -> list[PageExtraction]:
        options = self.options
        timings = options.timings

        await goto(page, self.url, timings)
        await handle_interstitial(page, timings, label)
        await perform_search(page, self.keyword, timings, label)

        pages = []
        for page_number in range(1, options.max_pages + 1):
            await wait_for_results(page, timings)
            await scroll_to_bottom(page, timings, label)

            extraction = await extract_with_refresh(
                page,
                options.gate,
                page_number=page_number,
                keyword=self.keyword,
                url=self.url,
                timings=timings,
                max_refreshes=options.max_refreshes,
                policy=options.on_exhausted,
                label=label,
            )
            pages.append(extraction)
            self._write_snapshot(extraction, label)

            if page_number < options.max_pages and not await go_to_next_page(page, timings, label):
                logger.info(f"{label}No more result pages after page {page_number}")
                break

        return pages

    def _write_snapshot(self, extraction: PageExtraction, label: str) -> Optional[Path]:
        snapshot_dir = self.options.snapshot_dir
        if snapshot_dir is None or not extraction.html:
            return None

        snapshot_dir.mkdir(parents=True, exist_ok=True)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S_%f")
        path = snapshot_dir / (
            f"{self.crawl_task_id or 'local'}-{_slug(self.session_config.zip_code) or 'default'}-"
            f"{extraction.page_number}-{_slug(self.keyword)}-{timestamp}.html"
        )
        try:
            path.write_text(extraction.html, encoding="utf-8")
        except OSError as e:
            logger.warning(f"{label}Could not write snapshot {path}: {e}")
            return None
        return path
