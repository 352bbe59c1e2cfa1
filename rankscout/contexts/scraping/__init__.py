"""
Search-page scraping domain.

Classifies the listings of marketplace search result pages into organic and
paid placements, drives the browser through keyword searches with a
quality gate, and keeps the delivery-location cookies searches depend on.
"""

from rankscout.contexts.scraping.listings import (
    PlacementType,
    BrandSlot,
    ListingRecord,
    count_by_placement,
)
from rankscout.contexts.scraping.classifier import classify
from rankscout.contexts.scraping.errors import (
    ScrapeError,
    MarkupError,
    TransientPageError,
    SelectorNotFoundError,
    ResultsTimeoutError,
    QualityGateError,
)
from rankscout.contexts.scraping.quality import (
    ExhaustionPolicy,
    QualityGate,
    PageExtraction,
    extract_with_refresh,
)
from rankscout.contexts.scraping.search import (
    SearchOptions,
    SearchResult,
    SearchTask,
)
from rankscout.contexts.scraping.cookies import (
    DomainCookieConfig,
    CookieEntry,
    CookieStore,
    CookieProvider,
    CookieHarvestTask,
    refresh_cookies,
)
from rankscout.contexts.scraping.identity import ProxySettings, IPCheckTask
from rankscout.contexts.scraping.notify import notify_completed_tasks
from rankscout.contexts.scraping.orchestration import (
    KeywordJob,
    run_keyword_scrapes,
    run_scrapers,
    run_cookie_refresh,
    run_identity_check,
)

__all__ = [
    # Listings and classification
    "PlacementType",
    "BrandSlot",
    "ListingRecord",
    "count_by_placement",
    "classify",
    # Quality gate
    "ExhaustionPolicy",
    "QualityGate",
    "PageExtraction",
    "extract_with_refresh",
    # Search
    "SearchOptions",
    "SearchResult",
    "SearchTask",
    # Cookies and identity
    "DomainCookieConfig",
    "CookieEntry",
    "CookieStore",
    "CookieProvider",
    "CookieHarvestTask",
    "refresh_cookies",
    "ProxySettings",
    "IPCheckTask",
    # Orchestration
    "KeywordJob",
    "run_keyword_scrapes",
    "run_scrapers",
    "run_cookie_refresh",
    "run_identity_check",
    "notify_completed_tasks",
    # Errors
    "ScrapeError",
    "MarkupError",
    "TransientPageError",
    "SelectorNotFoundError",
    "ResultsTimeoutError",
    "QualityGateError",
]
