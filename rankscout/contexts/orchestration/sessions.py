"""
Browser session lifecycle.

One Playwright browser is shared by every session; each session is its own
BrowserContext (cookie jar, proxy, user agent, viewport) with a single page.
The browser is launched lazily on first use, and concurrent first callers
all wait on the same launch.
"""

import asyncio
import itertools
from dataclasses import dataclass, field
from typing import Optional

from fake_useragent import UserAgent
from loguru import logger
from playwright.async_api import Browser, BrowserContext, Page, Playwright, async_playwright
from playwright.async_api import Error as PlaywrightError

from rankscout.contexts.orchestration.errors import SessionError
from rankscout.contexts.orchestration.tasks import SessionConfig
from rankscout.utils.helpers import browser_proxy_settings, normalize_cookies

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/140.0.0.0 Safari/537.36"
)

DEFAULT_LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-web-security",
    "--disable-features=VizDisplayCompositor",
    "--no-sandbox",
    "--start-maximized",
    "--start-fullscreen",
]

BLOCKED_RESOURCE_TYPES = frozenset({"stylesheet", "image", "font", "media"})
BLOCKED_EXTENSIONS = (
    ".css", ".png", ".jpg", ".jpeg", ".gif", ".svg", ".webp", ".ico", ".woff", ".woff2", ".ttf",
)
BROWSER_TYPES = ("chromium", "firefox", "webkit")


def should_block_request(resource_type: str, url: str) -> bool:
    """Sub-resources that do not affect the markup we classify."""
    return resource_type in BLOCKED_RESOURCE_TYPES or url.endswith(BLOCKED_EXTENSIONS)


def random_desktop_user_agent() -> str:
    """A random desktop Chrome user agent, or DEFAULT_USER_AGENT if none is available."""
    try:
        return UserAgent(browsers=["Chrome"], platforms=["desktop"], fallback=DEFAULT_USER_AGENT).random
    except Exception as e:
        logger.debug(f"fake-useragent unavailable, using default user agent: {e}")
        return DEFAULT_USER_AGENT


async def _route_filter(route, request):
    if should_block_request(request.resource_type, request.url):
        await route.abort()
    else:
        await route.continue_()


@dataclass
class Session:
    """One isolated browsing session handed to a task attempt."""

    session_id: int
    context: BrowserContext
    page: Page
    user_agent: str
    proxy: Optional[str] = None
    viewport: Optional[dict] = None
    closed: bool = field(default=False, repr=False)


class SessionManager:
    """
    Owns the browser handle and opens/closes sessions on it.

    Args:
        browser_type: "chromium", "firefox" or "webkit"
        headless: Run without a visible window
        launch_args: Extra browser command-line flags (default: DEFAULT_LAUNCH_ARGS)
        use_random_user_agent: Pick a random desktop UA when the config has none
        block_resources: Abort stylesheet/image/font/media requests
        locale: Default locale for new contexts
    """

    def __init__(
        self,
        browser_type: str = "chromium",
        headless: bool = True,
        launch_args: Optional[list[str]] = None,
        use_random_user_agent: bool = True,
        block_resources: bool = True,
        locale: str = "en-US",
    ):
        if browser_type not in BROWSER_TYPES:
            raise ValueError(f"Unknown browser type '{browser_type}', expected one of {BROWSER_TYPES}")

        self.browser_type = browser_type
        self.headless = headless
        self.launch_args = list(DEFAULT_LAUNCH_ARGS if launch_args is None else launch_args)
        self.use_random_user_agent = use_random_user_agent
        self.block_resources = block_resources
        self.locale = locale

        self._playwright: Optional[Playwright] = None
        self._browser: Optional[Browser] = None
        self._launching: Optional[asyncio.Future] = None
        self._sessions: dict[int, Session] = {}
        self._ids = itertools.count(1)

        self.opened_count = 0
        self.closed_count = 0

    @classmethod
    def from_config(cls, browser_config) -> "SessionManager":
        return cls(
            browser_type=browser_config.get("browser_type", "chromium"),
            headless=browser_config.get("headless", True),
            launch_args=browser_config.get("launch_args"),
            use_random_user_agent=browser_config.get("use_random_user_agent", True),
            block_resources=browser_config.get("block_resources", True),
            locale=browser_config.get("locale", "en-US"),
        )

    @property
    def is_initialized(self) -> bool:
        return self._browser is not None

    @property
    def open_sessions(self) -> int:
        return len(self._sessions)

    async def init(self) -> Browser:
        """
        Launch the browser if it is not running yet.

        Concurrent callers share one in-flight launch. A failed launch is not
        cached, so the next call tries again.

        Raises:
            SessionError: If the browser fails to launch
        """
        if self._browser is not None:
            return self._browser

        if self._launching is None:
            self._launching = asyncio.ensure_future(self._launch_browser())
            self._launching.add_done_callback(self._clear_launch)

        return await asyncio.shield(self._launching)

    def _clear_launch(self, future: asyncio.Future) -> None:
        self._launching = None
        # Retrieve the exception so it is not reported as never retrieved
        if not future.cancelled():
            future.exception()

    async def _launch_browser(self) -> Browser:
        playwright = None
        try:
            playwright = await async_playwright().start()
            engine = getattr(playwright, self.browser_type)
            browser = await engine.launch(headless=self.headless, args=self.launch_args)
        except Exception as e:
            if playwright is not None:
                await playwright.stop()
            raise SessionError(f"Failed to launch {self.browser_type} browser: {e}") from e

        self._playwright = playwright
        self._browser = browser
        logger.info(f"{self.browser_type} browser launched (headless={self.headless})")
        return browser

    def _user_agent_for(self, config: SessionConfig) -> str:
        if config.user_agent:
            return config.user_agent
        if self.use_random_user_agent:
            return random_desktop_user_agent()
        return DEFAULT_USER_AGENT

    def _cookies_for(self, config: SessionConfig) -> list[dict]:
        if not config.cookies:
            return []

        has_strings = isinstance(config.cookies, str) or any(
            isinstance(cookie, str) for cookie in config.cookies
        )
        if has_strings and not config.cookie_domain:
            raise SessionError("A cookie domain is required when cookies are given as strings")
        return normalize_cookies(config.cookies, config.cookie_domain)

    async def open(self, config: Optional[SessionConfig] = None) -> Session:
        """
        Open an isolated session: new context, one page, cookies applied.

        Raises:
            SessionError: On launch failure or an unusable config (bad proxy,
                cookie strings without a domain)
        """
        config = config or SessionConfig()
        browser = await self.init()

        context_options = {"locale": config.locale or self.locale}
        if config.proxy:
            try:
                context_options["proxy"] = browser_proxy_settings(config.proxy)
            except ValueError as e:
                raise SessionError(str(e)) from e

        user_agent = self._user_agent_for(config)
        context_options["user_agent"] = user_agent
        if config.viewport:
            context_options["viewport"] = config.viewport

        cookies = self._cookies_for(config)

        context = await browser.new_context(**context_options)
        try:
            page = await context.new_page()
            if self.block_resources:
                await page.route("**/*", _route_filter)
            if cookies:
                await context.add_cookies(cookies)
        except BaseException:
            # Also on cancellation, so an interrupted open never leaks its context
            await context.close()
            raise

        session = Session(
            session_id=next(self._ids),
            context=context,
            page=page,
            user_agent=user_agent,
            proxy=config.proxy,
            viewport=config.viewport,
        )
        self._sessions[session.session_id] = session
        self.opened_count += 1
        logger.debug(f"Opened session {session.session_id} (proxy={bool(config.proxy)}, cookies={len(cookies)})")
        return session

    async def close(self, session: Session) -> None:
        """Close a session's context. Safe to call more than once."""
        if session.closed:
            logger.debug(f"Session {session.session_id} already closed")
            return

        session.closed = True
        self._sessions.pop(session.session_id, None)
        self.closed_count += 1
        try:
            await session.context.close()
        except PlaywrightError as e:
            logger.warning(f"Error closing session {session.session_id}: {e}")

    async def shutdown(self) -> None:
        """Close any sessions still open, then the browser and Playwright."""
        for session in list(self._sessions.values()):
            await self.close(session)

        if self._launching is not None:
            self._launching.cancel()

        if self._browser is not None:
            try:
                await self._browser.close()
            except PlaywrightError as e:
                logger.warning(f"Error closing browser: {e}")
            self._browser = None

        if self._playwright is not None:
            await self._playwright.stop()
            self._playwright = None
            logger.info(f"{self.browser_type} browser shut down")
