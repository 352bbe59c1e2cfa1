"""
Quality-gated extraction of a single results page.

A freshly loaded results page is often missing its sponsored placements.
The attempt loop classifies the page, asks the QualityGate whether the
result is good enough, and otherwise reloads, re-waits, re-scrolls and
tries again until the refresh budget runs out.
"""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import Page

from rankscout.contexts.scraping.browsing import (
    PageTimings,
    refresh_page,
    scroll_to_bottom,
    wait_for_results,
)
from rankscout.contexts.scraping.classifier import classify
from rankscout.contexts.scraping.errors import (
    MarkupError,
    QualityGateError,
    TransientPageError,
)
from rankscout.contexts.scraping.listings import (
    ListingRecord,
    PlacementType,
    count_by_placement,
)

# Raised anywhere inside one extraction attempt and recovered by refreshing
TRANSIENT_ERRORS = (PlaywrightError, TransientPageError, MarkupError)


class ExhaustionPolicy(str, Enum):
    """What to do when the refresh budget runs out with the gate unsatisfied."""

    BEST_EFFORT = "best_effort"
    RAISE = "raise"


@dataclass
class QualityGate:
    """
    Acceptance predicate for one extraction attempt.

    Attributes:
        require_paid_standard: Need at least one sponsored product result
        organic_threshold: Organic count must exceed this (None disables the check)
    """

    require_paid_standard: bool = True
    organic_threshold: Optional[int] = None

    @classmethod
    def from_config(cls, gate_config) -> "QualityGate":
        return cls(
            require_paid_standard=gate_config.get("require_paid_standard", True),
            organic_threshold=gate_config.get("organic_threshold"),
        )

    def is_satisfied(self, counts: dict[PlacementType, int]) -> bool:
        if self.require_paid_standard and counts.get(PlacementType.PAID_STANDARD, 0) < 1:
            return False
        if self.organic_threshold is not None:
            return counts.get(PlacementType.ORGANIC, 0) > self.organic_threshold
        return True


@dataclass
class PageExtraction:
    """Accepted result of one page."""

    page_number: int
    keyword: str
    url: str
    records: list[ListingRecord]
    gate_satisfied: bool
    refreshes: int
    html: str = ""
    extracted_at: datetime = field(default_factory=datetime.now)

    @property
    def counts(self) -> dict[PlacementType, int]:
        return count_by_placement(self.records)

    @property
    def paid_standard_count(self) -> int:
        return self.counts.get(PlacementType.PAID_STANDARD, 0)

    @property
    def organic_count(self) -> int:
        return self.counts.get(PlacementType.ORGANIC, 0)

    def summary(self) -> dict:
        return {
            "page_number": self.page_number,
            "total": len(self.records),
            "paid_standard": self.paid_standard_count,
            "organic": self.organic_count,
            "gate_satisfied": self.gate_satisfied,
            "refreshes": self.refreshes,
        }


async def reload_results(page: Page, timings: PageTimings, label: str = "") -> None:
    """Refresh, wait for the result items again and scroll the whole page."""
    await refresh_page(page, timings, label)
    await wait_for_results(page, timings)
    await scroll_to_bottom(page, timings, label)


async def extract_with_refresh(
    page: Page,
    gate: QualityGate,
    page_number: int,
    keyword: str = "",
    url: str = "",
    timings: Optional[PageTimings] = None,
    max_refreshes: int = 30,
    policy: ExhaustionPolicy = ExhaustionPolicy.BEST_EFFORT,
    label: str = "",
) -> PageExtraction:
    """
    Extract the current page, refreshing until the quality gate is satisfied.

    The page is expected to be loaded and scrolled already. Up to
    ``max_refreshes`` reloads are made; errors during an attempt use up
    refreshes the same way an unsatisfied gate does.

    Args:
        page: Page showing search results
        gate: Acceptance predicate
        page_number: 1-based results page number, for records and logs
        keyword: Search keyword, for the result
        url: Start URL, for the result
        timings: Timeouts and scroll pacing
        max_refreshes: Refresh budget for this page
        policy: Behaviour when the budget runs out with the gate unsatisfied
        label: Prefix for log lines (e.g. "[Task 3] ")

    Returns:
        PageExtraction, with ``gate_satisfied=False`` if accepted on an exhausted budget

    Raises:
        QualityGateError: Budget exhausted with the gate unsatisfied under ExhaustionPolicy.RAISE
        PlaywrightError, TransientPageError, MarkupError: The last attempt errored with no budget left
    """
    timings = timings or PageTimings()
    refreshes = 0

    while True:
        try:
            if refreshes:
                await reload_results(page, timings, label)
            html = await page.content()
            records = classify(html)
        except TRANSIENT_ERRORS as e:
            if refreshes >= max_refreshes:
                logger.error(f"{label}Page {page_number}: giving up after {refreshes} refreshes: {e}")
                raise
            refreshes += 1
            logger.warning(
                f"{label}Page {page_number}: attempt failed ({e}), refreshing ({refreshes}/{max_refreshes})"
            )
            continue

        counts = count_by_placement(records)
        satisfied = gate.is_satisfied(counts)

        if satisfied or refreshes >= max_refreshes:
            if not satisfied:
                if policy is ExhaustionPolicy.RAISE:
                    raise QualityGateError(page_number, refreshes)
                logger.warning(
                    f"{label}Page {page_number}: quality gate not satisfied after {refreshes} refreshes, "
                    f"keeping best-effort result"
                )

            extraction = PageExtraction(
                page_number=page_number,
                keyword=keyword,
                url=url,
                records=records,
                gate_satisfied=satisfied,
                refreshes=refreshes,
                html=html,
            )
            logger.info(
                f"{label}Page {page_number}: {len(records)} listings "
                f"(sp: {extraction.paid_standard_count}, organic: {extraction.organic_count})"
            )
            return extraction

        refreshes += 1
        logger.info(
            f"{label}Page {page_number}: quality gate not satisfied, refreshing ({refreshes}/{max_refreshes})"
        )
