"""
Browser identity: proxy settings from the environment and an IP check task.

User agents are picked by the session manager (random desktop Chrome via
fake-useragent unless a task fixes one).
"""

import os
import re
from dataclasses import dataclass
from typing import Optional

from dotenv import load_dotenv
from loguru import logger
from playwright.async_api import Error as PlaywrightError

from rankscout.contexts.orchestration.tasks import AttemptContext, Outcome, SessionConfig, Task
from rankscout.utils.helpers import parse_proxy

load_dotenv()

IP_ECHO_URL = "https://httpbin.org/ip"


@dataclass
class ProxySettings:
    server: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    @classmethod
    def from_env(cls) -> "ProxySettings":
        return cls(
            server=os.getenv("PROXY_SERVER") or None,
            username=os.getenv("PROXY_USERNAME") or None,
            password=os.getenv("PROXY_PASSWORD") or None,
        )

    def proxy_url(self) -> Optional[str]:
        """
        ``scheme://[user:pass@]host:port`` or None when no server is set.

        A server without a scheme is taken as HTTP. The result is validated
        with ``parse_proxy``.

        Raises:
            ValueError: If the server is not ``host:port`` shaped
        """
        if not self.server:
            return None

        server = self.server.strip().rstrip("/")
        if not re.match(r"^[a-z0-9]+://", server):
            server = f"http://{server}"

        info = parse_proxy(server)
        if self.username and self.password:
            info.username = self.username
            info.password = self.password
        return info.url


class IPCheckTask(Task):
    """Load an IP echo endpoint and return its body, to check proxy wiring."""

    name = "ip-check"

    def __init__(
        self,
        session_config: Optional[SessionConfig] = None,
        url: str = IP_ECHO_URL,
        max_retries: int = 3,
        timeout: int = 30000,
    ):
        self.session_config = session_config or SessionConfig()
        self.url = url
        self.max_retries = max_retries
        self.timeout = timeout

    def describe(self) -> str:
        return f"ip check ({self.url})"

    async def run(self, session, ctx: AttemptContext) -> Outcome:
        try:
            await session.page.goto(self.url, wait_until="networkidle", timeout=self.timeout)
            body = await session.page.evaluate("document.body ? document.body.textContent.trim() : ''")
        except PlaywrightError as e:
            logger.warning(f"{ctx.label}IP check failed: {e}")
            return ctx.fail(e, can_retry=ctx.attempt < self.max_retries)

        logger.info(f"{ctx.label}IP info: {body}")
        return ctx.complete(body)
