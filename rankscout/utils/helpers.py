"""
General utility functions for rankscout.

Contains helper functions used across different modules: proxy strings,
cookie strings, domains and durations.
"""

import re
from dataclasses import dataclass
from typing import Optional, Union
from urllib.parse import urlsplit

# scheme://[user:pass@]host:port with an optional trailing slash
PROXY_PATTERN = re.compile(
    r"^(https?|socks[45]?)://(?:([^:]+):([^@]+)@)?([^:/]+):(\d+)/?$"
)


@dataclass
class ProxyInfo:
    """A parsed proxy string."""

    scheme: str
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def server(self) -> str:
        return f"{self.scheme}://{self.host}:{self.port}"

    @property
    def url(self) -> str:
        if self.username:
            return f"{self.scheme}://{self.username}:{self.password}@{self.host}:{self.port}"
        return self.server


def parse_proxy(proxy: str) -> ProxyInfo:
    """
    Parse a proxy string of the form ``scheme://[user:pass@]host:port``.

    Raises:
        ValueError: If the string does not match the expected format
    """
    match = PROXY_PATTERN.match(proxy.strip())
    if not match:
        raise ValueError(f"Invalid proxy format: {proxy}")

    scheme, username, password, host, port = match.groups()
    return ProxyInfo(
        scheme=scheme,
        host=host,
        port=int(port),
        username=username,
        password=password,
    )


def browser_proxy_settings(proxy: Union[str, ProxyInfo]) -> dict:
    """
    Convert a proxy into the dict Playwright expects for ``new_context(proxy=...)``.

    Playwright only supports credentials on HTTP(S) proxies, so SOCKS
    credentials are dropped.
    """
    info = parse_proxy(proxy) if isinstance(proxy, str) else proxy
    settings = {"server": info.server}
    if info.username and info.password and info.scheme in ("http", "https"):
        settings["username"] = info.username
        settings["password"] = info.password
    return settings


def parse_cookie_string(cookie_string: str, domain: Optional[str] = None) -> list[dict]:
    """
    Split a ``name=value; name2=value2`` header string into cookie dicts.

    Values may contain ``=``. When a domain is given every cookie is scoped
    to it with path ``/``.

    Example:
        >>> parse_cookie_string("a=1; b=x=y", domain=".example.com")
        [{'name': 'a', 'value': '1', 'domain': '.example.com', 'path': '/'},
         {'name': 'b', 'value': 'x=y', 'domain': '.example.com', 'path': '/'}]
    """
    cookies = []
    if not cookie_string:
        return cookies

    for pair in cookie_string.split(";"):
        name, sep, value = pair.strip().partition("=")
        if not name.strip() or not sep:
            continue
        cookie = {"name": name.strip(), "value": value.strip()}
        if domain:
            cookie["domain"] = domain
            cookie["path"] = "/"
        cookies.append(cookie)

    return cookies


def normalize_cookies(cookies: Union[str, list, None], domain: Optional[str] = None) -> list[dict]:
    """Accept a cookie string, or a list mixing strings and cookie dicts."""
    if not cookies:
        return []
    if isinstance(cookies, str):
        return parse_cookie_string(cookies, domain)

    normalized = []
    for cookie in cookies:
        if isinstance(cookie, str):
            normalized.extend(parse_cookie_string(cookie, domain))
        else:
            normalized.append(dict(cookie))
    return normalized


def cookies_to_header(cookies: list[dict]) -> str:
    """Join cookie dicts back into a ``name=value; ...`` string."""
    return "; ".join(f"{cookie['name']}={cookie['value']}" for cookie in cookies)


def extract_domain(url: str) -> str:
    """Hostname of a URL without a leading ``www.``."""
    hostname = urlsplit(url).hostname or ""
    return re.sub(r"^www\.", "", hostname)


def format_duration(seconds: float) -> str:
    """Human readable duration, e.g. ``42s`` or ``3m 05s``."""
    total = int(seconds)
    if total < 60:
        return f"{total}s"
    minutes, secs = divmod(total, 60)
    return f"{minutes}m {secs:02d}s"
