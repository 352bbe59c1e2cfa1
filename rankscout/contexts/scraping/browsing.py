"""
Page-level browser actions used by the search and cookie tasks.

Every navigation and wait carries an explicit timeout. Timeouts and missing
elements surface as TransientPageError subclasses so the attempt loop can
refresh and try again.
"""

import asyncio
from dataclasses import dataclass
from typing import Iterable, Optional

from loguru import logger
from playwright.async_api import ElementHandle, Page
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from rankscout.contexts.scraping.errors import (
    ResultsTimeoutError,
    SelectorNotFoundError,
)

CAPTCHA_FORM_SELECTOR = 'form[action="/errors/validateCaptcha"]'
CAPTCHA_BUTTON_SELECTOR = 'button, input[type="submit"]'
SEARCH_BOX_SELECTORS = ("#twotabsearchtextbox", "#nav-bb-search")
SEARCH_BUTTON_SELECTORS = (
    "#nav-search-submit-button",
    'input.nav-bb-button[type="submit"]',
    ".nav-search-submit input",
)
RESULT_ITEM_SELECTOR = '.s-result-item[role="listitem"]'
NEXT_PAGE_SELECTOR = ".s-pagination-next"


@dataclass
class PageTimings:
    """Timeouts in milliseconds (Playwright's unit) and scroll pacing in seconds."""

    page_load_timeout: int = 60000
    search_timeout: int = 60000
    selector_timeout: int = 10000
    scroll_delay: float = 1.0
    max_scrolls: int = 50

    @classmethod
    def from_config(cls, search_config) -> "PageTimings":
        return cls(
            page_load_timeout=search_config.get("page_load_timeout", 60000),
            search_timeout=search_config.get("search_timeout", 60000),
            selector_timeout=search_config.get("selector_timeout", 10000),
            scroll_delay=search_config.get("scroll_delay", 1.0),
            max_scrolls=search_config.get("max_scrolls", 50),
        )


async def first_element(page: Page, selectors: Iterable[str]) -> Optional[ElementHandle]:
    """First element matching any selector, tried in order."""
    for selector in selectors:
        element = await page.query_selector(selector)
        if element is not None:
            return element
    return None


async def goto(page: Page, url: str, timings: PageTimings) -> None:
    await page.goto(url, wait_until="domcontentloaded", timeout=timings.page_load_timeout)


async def handle_interstitial(page: Page, timings: PageTimings, label: str = "") -> bool:
    """
    Click through a challenge form if one is showing.

    Best effort: failures are logged and swallowed since the challenge may
    disappear on the next navigation anyway.

    Returns:
        True if a challenge button was clicked
    """
    try:
        form = await page.query_selector(CAPTCHA_FORM_SELECTOR)
        if form is None:
            return False

        button = await form.query_selector(CAPTCHA_BUTTON_SELECTOR)
        if button is None:
            logger.warning(f"{label}Challenge form has no button")
            return False

        await button.click()
        await page.wait_for_load_state("domcontentloaded", timeout=timings.page_load_timeout)
        logger.info(f"{label}Dismissed challenge page")
        return True
    except PlaywrightError as e:
        logger.warning(f"{label}Could not dismiss challenge page: {e}")
        return False


async def perform_search(page: Page, keyword: str, timings: PageTimings, label: str = "") -> None:
    """
    Type ``keyword`` into the search box and submit.

    Raises:
        SelectorNotFoundError: If no search box or submit button is present
    """
    search_box = await first_element(page, SEARCH_BOX_SELECTORS)
    if search_box is None:
        raise SelectorNotFoundError("Search box not found")

    await search_box.fill("")
    await search_box.fill(keyword)

    search_button = await first_element(page, SEARCH_BUTTON_SELECTORS)
    if search_button is None:
        raise SelectorNotFoundError("Search button not found")

    await search_button.click()
    try:
        await page.wait_for_load_state("domcontentloaded", timeout=timings.search_timeout)
    except PlaywrightTimeoutError:
        # Results often render before the load event fires
        logger.debug(f"{label}Search load timed out, continuing")


async def wait_for_results(page: Page, timings: PageTimings) -> None:
    """
    Wait until at least one result item is in the DOM.

    Raises:
        ResultsTimeoutError: If none appear within the page load timeout
    """
    try:
        await page.wait_for_function(
            f"() => document.querySelectorAll('{RESULT_ITEM_SELECTOR}').length > 0",
            timeout=timings.page_load_timeout,
        )
    except PlaywrightTimeoutError as e:
        raise ResultsTimeoutError("Search results did not load") from e


async def scroll_to_bottom(page: Page, timings: PageTimings, label: str = "") -> int:
    """
    Scroll one viewport at a time until the page height stops growing.

    Lazy-loaded placements (recommendation rails, brand footers) only render
    once scrolled into view. Scroll errors are logged and ignored.

    Returns:
        Number of scroll steps taken
    """
    steps = 0
    try:
        scrolled = 0
        while steps < timings.max_scrolls:
            previous_height = await page.evaluate("document.body.scrollHeight")
            if scrolled >= previous_height:
                break

            viewport_height = await page.evaluate("window.innerHeight")
            await page.evaluate("h => window.scrollBy(0, h)", viewport_height)
            scrolled += viewport_height
            steps += 1

            await asyncio.sleep(timings.scroll_delay)
            if await page.evaluate("document.body.scrollHeight") == previous_height:
                break

        await page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
    except PlaywrightError as e:
        logger.debug(f"{label}Scroll interrupted: {e}")

    return steps


async def refresh_page(page: Page, timings: PageTimings, label: str = "") -> None:
    """Reload the page; a reload timeout is tolerated, the results wait decides."""
    try:
        await page.reload(wait_until="domcontentloaded", timeout=timings.page_load_timeout)
    except PlaywrightError as e:
        logger.debug(f"{label}Reload did not settle: {e}")


async def go_to_next_page(page: Page, timings: PageTimings, label: str = "") -> bool:
    """
    Click the pagination "next" control.

    Returns:
        False when there is no next page (control absent or disabled) or the click failed
    """
    try:
        next_button = await page.query_selector(NEXT_PAGE_SELECTOR)
        if next_button is None:
            return False
        if await next_button.get_attribute("aria-disabled") == "true":
            return False

        await next_button.click()
        try:
            await page.wait_for_load_state("domcontentloaded", timeout=timings.page_load_timeout)
        except PlaywrightTimeoutError:
            logger.debug(f"{label}Next page load timed out, continuing")
        return True
    except PlaywrightError as e:
        logger.warning(f"{label}Could not go to next page: {e}")
        return False
