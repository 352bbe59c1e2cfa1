"""
Shared utility functions.
"""

from rankscout.utils.config_helpers import merge_configs, load_scrape_config
from rankscout.utils.helpers import (
    ProxyInfo,
    parse_proxy,
    browser_proxy_settings,
    parse_cookie_string,
    normalize_cookies,
    cookies_to_header,
    extract_domain,
    format_duration,
)
from rankscout.utils.text_processing import (
    clean_text,
    parse_price,
    parse_rating,
    parse_count,
    query_param,
)

__all__ = [
    # Misc utilities
    "format_duration",
    "extract_domain",
    # Proxies and cookies
    "ProxyInfo",
    "parse_proxy",
    "browser_proxy_settings",
    "parse_cookie_string",
    "normalize_cookies",
    "cookies_to_header",
    # Text processing
    "clean_text",
    "parse_price",
    "parse_rating",
    "parse_count",
    "query_param",
    # Configuration utilities
    "merge_configs",
    "load_scrape_config",
]
