"""
Decoding of the ad metadata embedded in sponsored listings.

Campaign, ad and sku identifiers live inside a URL-encoded JSON blob on the
"preload" popover trigger; qualifier, ad index and widget name live in the
query string of the impression logger component. Every decoder here returns
empty strings rather than raising when a payload is missing or malformed.
"""

import json
import re
from dataclasses import dataclass
from urllib.parse import unquote

from bs4 import Tag
from loguru import logger

from rankscout.utils.text_processing import query_param

EMBEDDED_JSON = re.compile(r"\{.+\}", re.DOTALL)


@dataclass(frozen=True)
class AdParams:
    campaign_id: str = ""
    ad_id: str = ""
    sku: str = ""


@dataclass(frozen=True)
class ImpressionParams:
    qualifier: str = ""
    ad_index: str = ""
    widget_name: str = ""


def _as_str(value) -> str:
    return "" if value is None else str(value)


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _creative_details(payload) -> list[dict]:
    """``adCreativeMetaData.adCreativeDetails`` entries that are objects."""
    details = _as_dict(_as_dict(payload).get("adCreativeMetaData")).get("adCreativeDetails")
    if not isinstance(details, list):
        return []
    return [detail for detail in details if isinstance(detail, dict)]


def _params_from_detail(detail: dict) -> AdParams:
    return AdParams(
        campaign_id=_as_str(detail.get("campaignId")),
        ad_id=_as_str(detail.get("adId")),
        sku=_as_str(detail.get("sku")),
    )


def extract_ad_params(element: Tag) -> AdParams:
    """Campaign id, ad id and sku from the preload trigger's ajax URL."""
    trigger = element.select_one(".a-popover-preload .a-declarative")
    if trigger is None:
        return AdParams()

    raw = trigger.get("data-s-safe-ajax-modal-trigger")
    if not raw:
        return AdParams()

    try:
        ajax_url = _as_dict(json.loads(raw)).get("ajaxUrl")
        if not isinstance(ajax_url, str) or not ajax_url:
            return AdParams()
        match = EMBEDDED_JSON.search(unquote(ajax_url))
        if not match:
            return AdParams()
        details = _creative_details(json.loads(match.group(0)))
    except (ValueError, TypeError) as e:
        logger.debug(f"Could not decode ad params: {e}")
        return AdParams()

    return _params_from_detail(details[0]) if details else AdParams()


def extract_impression_params(element: Tag) -> ImpressionParams:
    """Qualifier, ad index and widget name from the impression logger URL."""
    impression_logger = element.select_one('[data-component-type="s-impression-logger"]')
    if impression_logger is None:
        return ImpressionParams()

    raw = impression_logger.get("data-component-props")
    if not raw:
        return ImpressionParams()

    try:
        url = _as_dict(json.loads(raw)).get("url")
    except ValueError as e:
        logger.debug(f"Could not decode impression logger props: {e}")
        return ImpressionParams()

    if not isinstance(url, str):
        return ImpressionParams()
    return ImpressionParams(
        qualifier=query_param(url, "qualifier"),
        ad_index=query_param(url, "adIndex"),
        widget_name=query_param(url, "widgetName"),
    )


def extract_recommendation_ad_data(container: Tag) -> dict[str, AdParams]:
    """
    Ad params for every item in a recommendation rail, keyed by item id.

    The rail carries one feedback form trigger whose ``multiAdfPayload`` is
    itself a JSON string; it is decoded once for the whole rail.
    """
    trigger = container.select_one("[data-multi-ad-feedback-form-trigger]")
    if trigger is None:
        return {}

    raw = trigger.get("data-multi-ad-feedback-form-trigger")
    if not raw:
        return {}

    try:
        payload_str = _as_dict(json.loads(raw)).get("multiAdfPayload")
        if not isinstance(payload_str, str) or not payload_str:
            return {}
        details = _creative_details(json.loads(payload_str))
    except ValueError as e:
        logger.debug(f"Could not decode recommendation feedback payload: {e}")
        return {}

    ad_data = {}
    for detail in details:
        asin = detail.get("asin")
        if not asin or not isinstance(asin, (str, int)):
            continue
        ad_data[str(asin)] = _params_from_detail(detail)
    return ad_data


def decode_json_attribute(element: Tag, attribute: str) -> dict:
    """JSON object stored in an attribute, or {} when absent or malformed."""
    raw = element.get(attribute)
    if not raw:
        return {}
    try:
        data = json.loads(raw)
    except ValueError as e:
        logger.debug(f"Could not decode {attribute}: {e}")
        return {}
    return data if isinstance(data, dict) else {}
