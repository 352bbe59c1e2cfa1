"""
Delivery-location cookies.

Search results depend on the delivery location the site thinks the visitor
has. A CookieHarvestTask sets a zip code on a marketplace's home page and
keeps the resulting cookies; the CookieStore persists them per domain in a
JSON file and the CookieProvider hands them out together with a freshness
flag. Sessions only consume cookies; deciding freshness happens here.
"""

import json
import time
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Optional, Union

from loguru import logger
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rankscout.contexts.orchestration.pool import WorkerPool
from rankscout.contexts.orchestration.tasks import AttemptContext, Outcome, SessionConfig, Task
from rankscout.contexts.scraping.browsing import PageTimings, goto, handle_interstitial
from rankscout.contexts.scraping.errors import SelectorNotFoundError
from rankscout.utils.helpers import cookies_to_header

DEFAULT_EXPIRY_HOURS = 20
DEFAULT_STORAGE_PATH = Path("cookies_storage.json")

NAVBAR_SELECTOR = "header#navbar-main"
LOCATION_BUTTON_SELECTORS = ("#nav-global-location-popover-link", "#glow-ingress-block")
ZIP_INPUT_SELECTOR = "#GLUXZipUpdateInput"
SPLIT_ZIP_SECTION_SELECTOR = "#GLUXZipInputSection"
SPLIT_ZIP_INPUT_SELECTORS = ("#GLUXZipUpdateInput_0", "#GLUXZipUpdateInput_1")
CONFIRM_BUTTON_SELECTOR = "#GLUXZipUpdate"


@dataclass(frozen=True)
class DomainCookieConfig:
    """
    Where to harvest cookies and with which zip code.

    ``zip_separator`` is set for marketplaces whose zip form has two inputs
    (e.g. "K1A 0A9" on amazon.ca is split on " ").
    """

    domain: str
    zip_code: str
    zip_separator: Optional[str] = None

    @classmethod
    def from_dict(cls, data) -> "DomainCookieConfig":
        return cls(
            domain=data["domain"],
            zip_code=str(data["zip_code"]),
            zip_separator=data.get("zip_separator") or None,
        )


DEFAULT_DOMAINS = (
    DomainCookieConfig("amazon.com", "10008"),
    DomainCookieConfig("amazon.co.uk", "W1B 4DG"),
    DomainCookieConfig("amazon.ca", "K1A 0A9", zip_separator=" "),
    DomainCookieConfig("amazon.co.jp", "110-0008", zip_separator="-"),
    DomainCookieConfig("amazon.de", "20099"),
    DomainCookieConfig("amazon.fr", "75000"),
    DomainCookieConfig("amazon.it", "20123"),
    DomainCookieConfig("amazon.es", "28028"),
)


@dataclass
class CookieEntry:
    """Stored cookies of one domain. ``timestamp`` is seconds since the epoch."""

    domain: str
    zip_code: str
    cookie: str
    timestamp: float

    def age_hours(self, now: Optional[float] = None) -> float:
        now = time.time() if now is None else now
        return (now - self.timestamp) / 3600

    def is_fresh(self, expiry_hours: float = DEFAULT_EXPIRY_HOURS, now: Optional[float] = None) -> bool:
        return self.age_hours(now) <= expiry_hours


@dataclass(frozen=True)
class DomainCookies:
    """What the provider hands out: the cookie string and whether it is still fresh."""

    cookie: str
    fresh: bool
    zip_code: str = ""


class CookieStore:
    """
    JSON file of cookie entries, ``{"cookies": [{domain, zip_code, cookie, timestamp}, ...]}``.

    The file is only re-read when its modification time changes.
    """

    def __init__(self, path: Union[str, Path] = DEFAULT_STORAGE_PATH):
        self.path = Path(path)
        self._entries: dict[str, CookieEntry] = {}
        self._loaded_mtime: Optional[float] = None

    def load(self) -> dict[str, CookieEntry]:
        if not self.path.exists():
            if self._loaded_mtime is not None:
                self._entries = {}
                self._loaded_mtime = None
            return self._entries

        mtime = self.path.stat().st_mtime
        if mtime == self._loaded_mtime:
            return self._entries

        with open(self.path, "r", encoding="utf-8") as handle:
            data = json.load(handle)

        self._entries = {}
        for item in data.get("cookies", []):
            entry = CookieEntry(
                domain=item["domain"],
                zip_code=str(item.get("zip_code", "")),
                cookie=item.get("cookie", ""),
                timestamp=float(item.get("timestamp", 0)),
            )
            self._entries[entry.domain] = entry
        self._loaded_mtime = mtime
        return self._entries

    def get(self, domain: str) -> Optional[CookieEntry]:
        return self.load().get(domain)

    def entries(self) -> list[CookieEntry]:
        return list(self.load().values())

    def save_entry(self, entry: CookieEntry) -> None:
        """Insert or replace the entry for ``entry.domain`` and write the file."""
        entries = dict(self.load())
        entries[entry.domain] = entry

        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, "w", encoding="utf-8") as handle:
            json.dump({"cookies": [asdict(e) for e in entries.values()]}, handle, indent=2)

        self._entries = entries
        self._loaded_mtime = self.path.stat().st_mtime
        logger.info(f"{entry.domain} cookies saved to {self.path}")


class CookieProvider:
    """Per-domain cookies with a freshness flag."""

    def __init__(self, store: CookieStore, expiry_hours: float = DEFAULT_EXPIRY_HOURS):
        self.store = store
        self.expiry_hours = expiry_hours

    def cookies_for(self, domains) -> dict[str, DomainCookies]:
        now = time.time()
        found = {}
        for domain in domains:
            entry = self.store.get(domain)
            if entry is None:
                found[domain] = DomainCookies(cookie="", fresh=False)
            else:
                found[domain] = DomainCookies(
                    cookie=entry.cookie,
                    fresh=entry.is_fresh(self.expiry_hours, now),
                    zip_code=entry.zip_code,
                )
        return found

    def stale_domains(self, configs) -> list[DomainCookieConfig]:
        status = self.cookies_for([config.domain for config in configs])
        stale = []
        for config in configs:
            if status[config.domain].fresh:
                logger.info(f"{config.domain} cookies are still fresh, skipping")
            else:
                stale.append(config)
        return stale


class CookieHarvestTask(Task):
    """Set the delivery zip code on a marketplace home page and collect the cookies."""

    name = "cookies"

    def __init__(
        self,
        config: DomainCookieConfig,
        session_config: Optional[SessionConfig] = None,
        max_retries: int = 50,
        timings: Optional[PageTimings] = None,
    ):
        self.config = config
        self.session_config = session_config or SessionConfig()
        self.max_retries = max_retries
        self.timings = timings or PageTimings(page_load_timeout=30000)

    def describe(self) -> str:
        return f"cookies for {self.config.domain} ({self.config.zip_code})"

    async def _visible(self, page, selector: str):
        return await page.wait_for_selector(selector, timeout=self.timings.selector_timeout, state="visible")

    async def _first_visible(self, page, selectors):
        for selector in selectors:
            try:
                return await self._visible(page, selector)
            except PlaywrightTimeoutError:
                continue
        return None

    async def _enter_zip_code(self, page) -> None:
        config = self.config
        if config.zip_separator:
            await self._visible(page, SPLIT_ZIP_SECTION_SELECTOR)
            inputs = [await page.query_selector(selector) for selector in SPLIT_ZIP_INPUT_SELECTORS]
            if any(element is None for element in inputs):
                raise SelectorNotFoundError("Split zip code inputs not found")

            parts = config.zip_code.split(config.zip_separator, 1)
            if len(parts) != 2:
                raise ValueError(f"Zip code '{config.zip_code}' has no '{config.zip_separator}' separator")
            for element, part in zip(inputs, parts):
                await element.fill(part)
        else:
            zip_input = await self._visible(page, ZIP_INPUT_SELECTOR)
            await zip_input.fill(config.zip_code)

    async def run(self, session, ctx: AttemptContext) -> Outcome:
        page = session.page
        domain = self.config.domain
        label = f"{ctx.label}[{domain}] "

        try:
            await goto(page, f"https://www.{domain}", self.timings)
            try:
                await page.wait_for_load_state("networkidle", timeout=self.timings.page_load_timeout)
            except PlaywrightTimeoutError:
                logger.debug(f"{label}Home page never went idle, continuing")

            await handle_interstitial(page, self.timings, label)

            try:
                await self._visible(page, NAVBAR_SELECTOR)
            except PlaywrightTimeoutError as e:
                raise SelectorNotFoundError("Navigation bar did not appear") from e

            location_button = await self._first_visible(page, LOCATION_BUTTON_SELECTORS)
            if location_button is None:
                raise SelectorNotFoundError("Location button not found")
            await location_button.click()

            await self._enter_zip_code(page)

            confirm_button = await self._first_visible(page, (CONFIRM_BUTTON_SELECTOR,))
            if confirm_button is None:
                raise SelectorNotFoundError("Zip code confirm button not found")
            await confirm_button.click()

            try:
                await page.wait_for_load_state("networkidle", timeout=self.timings.selector_timeout)
            except PlaywrightTimeoutError:
                logger.debug(f"{label}Page did not settle after zip update, reading cookies anyway")

            cookies = await session.context.cookies()
        except (PlaywrightError, SelectorNotFoundError, ValueError) as e:
            can_retry = ctx.attempt < self.max_retries
            logger.warning(f"{label}Cookie harvest failed: {e}")
            return ctx.fail(e, can_retry=can_retry)

        logger.info(f"{label}Collected {len(cookies)} cookies")
        return ctx.complete(
            CookieEntry(
                domain=domain,
                zip_code=self.config.zip_code,
                cookie=cookies_to_header(cookies),
                timestamp=time.time(),
            )
        )


async def refresh_cookies(
    configs,
    store: CookieStore,
    session_manager,
    proxy: Optional[str] = None,
    concurrency_limit: int = 5,
    expiry_hours: float = DEFAULT_EXPIRY_HOURS,
    force: bool = False,
    max_retries: int = 50,
    timings: Optional[PageTimings] = None,
) -> list[dict]:
    """
    Harvest cookies for every domain whose stored cookies are missing or stale.

    Harvesting runs through its own WorkerPool, which is closed afterwards
    (shutting ``session_manager`` down with it).

    Returns:
        One dict per domain: ``domain``, ``status`` (fresh|updated|failed), ``error``
    """
    configs = list(configs)
    provider = CookieProvider(store, expiry_hours)
    stale = configs if force else provider.stale_domains(configs)

    results = [
        {"domain": config.domain, "status": "fresh", "error": None}
        for config in configs
        if config not in stale
    ]
    if not stale:
        logger.info("All cookies are fresh, nothing to update")
        await session_manager.shutdown()
        return results

    pool = WorkerPool(session_manager, concurrency_limit=concurrency_limit)
    try:
        futures = {
            config.domain: pool.submit(
                CookieHarvestTask(config, SessionConfig(proxy=proxy), max_retries=max_retries, timings=timings)
            )
            for config in stale
        }
        for domain, future in futures.items():
            try:
                entry = await future
            except Exception as e:
                logger.error(f"{domain} cookie update failed: {e}")
                results.append({"domain": domain, "status": "failed", "error": str(e)})
                continue
            store.save_entry(entry)
            results.append({"domain": domain, "status": "updated", "error": None})
    finally:
        await pool.close()

    updated = sum(1 for r in results if r["status"] == "updated")
    failed = sum(1 for r in results if r["status"] == "failed")
    logger.info(f"Cookie refresh done: {updated} updated, {failed} failed")
    return results
