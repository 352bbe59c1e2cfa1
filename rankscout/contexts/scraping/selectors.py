"""
Field extraction strategies for listing markup.

Each listing field has an ordered tuple of strategies. A strategy looks at
one result element and returns a value, or None when its markup is not
there. The first strategy returning something other than None wins, which
lets one extractor cope with several page layouts without branching on
page version.
"""

import re
from typing import Any, Callable, Iterable, Optional

from bs4 import Tag

from rankscout.utils.text_processing import (
    clean_text,
    parse_count,
    parse_price,
    parse_rating,
)

Strategy = Callable[[Tag], Any]

ITEM_ID_IN_URL = re.compile(r"/(?:dp|gp/product)/([A-Z0-9]{10})")
RATED_PATTERN = re.compile(r"Rated (\d+\.?\d*) out of")
REVIEWS_PATTERN = re.compile(r"from ([\d,]+) reviews")


def first_present(element: Tag, strategies: Iterable[Strategy]) -> Any:
    """Run strategies in order and return the first non-None value."""
    for strategy in strategies:
        value = strategy(element)
        if value is not None:
            return value
    return None


def text_of(selector: str) -> Strategy:
    """Stripped text of the first match; "" counts as present."""

    def strategy(element: Tag) -> Optional[str]:
        found = element.select_one(selector)
        if found is None:
            return None
        return clean_text(found.get_text())

    return strategy


def attr_of(selector: str, attribute: str, prefix: str = "") -> Strategy:
    """Attribute of the first match, only if set (and starting with ``prefix``)."""

    def strategy(element: Tag) -> Optional[str]:
        found = element.select_one(selector)
        if found is None:
            return None
        value = found.get(attribute)
        if not value or not value.startswith(prefix):
            return None
        return value

    return strategy


def price_of(selector: str) -> Strategy:
    def strategy(element: Tag) -> Optional[float]:
        found = element.select_one(selector)
        if found is None:
            return None
        return parse_price(found.get_text())

    return strategy


def rating_from_icon(element: Tag) -> Optional[float]:
    found = element.select_one(".a-icon-alt")
    if found is None:
        return None
    return parse_rating(found.get_text())


def rating_from_review_link(element: Tag) -> Optional[float]:
    """Video-creative layout: ``aria-label="Rated 4.5 out of 5 ..."``."""
    found = element.select_one('a[data-type="productReviews"]')
    if found is None:
        return None
    match = RATED_PATTERN.search(found.get("aria-label", ""))
    return float(match.group(1)) if match else None


def review_count_from_block(element: Tag) -> Optional[int]:
    block = element.select_one('[data-cy="reviews-block"]')
    if block is None:
        return None
    for candidate in block.select(".a-size-base.s-underline-text, .a-size-base.a-color-base"):
        count = parse_count(candidate.get_text())
        if count is not None:
            return count
    return None


def review_count_from_review_link(element: Tag) -> Optional[int]:
    found = element.select_one('a[data-type="productReviews"]')
    if found is None:
        return None

    match = REVIEWS_PATTERN.search(found.get("aria-label", ""))
    if match:
        return int(match.group(1).replace(",", ""))

    # Text like "4.51,478": rating glued to the count
    text = clean_text(found.get_text())
    if "," in text:
        return parse_count(text.split(",")[-1])
    return None


def bought_text(element: Tag) -> Optional[str]:
    found = element.select_one('[data-cy="reviews-block"] .a-size-base.a-color-secondary')
    if found is None:
        return None
    return clean_text(found.get_text()) or None


def price_block(strategies: Iterable[Strategy]) -> Strategy:
    """Scope price strategies to the ``price-recipe`` block."""
    strategies = tuple(strategies)

    def strategy(element: Tag) -> Optional[float]:
        recipe = element.select_one('[data-cy="price-recipe"]')
        if recipe is None:
            return None
        return first_present(recipe, strategies)

    return strategy


URL_STRATEGIES = (
    attr_of("h2 a", "href"),
    attr_of(".a-link-normal", "href"),
    attr_of("a.a-text-normal", "href"),
)

TITLE_STRATEGIES = (
    text_of("h2"),
    text_of('a[data-type="productTitle"]'),
    text_of("span.a-truncate-full"),
)

PRICE_STRATEGIES = (
    price_block((
        price_of(".a-price-current .a-offscreen"),
        price_of(".a-price .a-offscreen"),
        price_of(".a-price-whole"),
    )),
)

ORIGINAL_PRICE_STRATEGIES = (
    price_block((
        price_of(".a-price ~ .a-offscreen"),
        price_of('span[data-a-strike="true"] .a-offscreen'),
    )),
)

RATING_STRATEGIES = (
    rating_from_icon,
    rating_from_review_link,
)

REVIEW_COUNT_STRATEGIES = (
    review_count_from_block,
    review_count_from_review_link,
)

IMAGE_STRATEGIES = (
    attr_of("img.s-image", "src", prefix="http"),
    attr_of('[data-type="productImage"]', "src", prefix="http"),
    attr_of("img._c2Itd_image_pQREQ", "src", prefix="http"),
)

AD_TYPE_TEXT_STRATEGIES = (
    text_of("span.puis-label-popover-default"),
    text_of("a.puis-sponsored-label-text > .puis-label-popover-default > span"),
    text_of("a.puis-sponsored-label-text .puis-label-popover-default span"),
    text_of(".s-sponsored-label-text"),
)


def item_id_from_url(url: Optional[str]) -> Optional[str]:
    """Pull a 10-character product identifier out of a ``/dp/`` or ``/gp/product/`` URL."""
    if not url:
        return None
    match = ITEM_ID_IN_URL.search(url)
    return match.group(1) if match else None


def clean_item_id(raw_id: Optional[str]) -> str:
    """
    Strip the namespace from an internal id.

    ``amzn1.asin.B00EXAMPLE1:extra`` -> ``B00EXAMPLE1``. Ids already in
    clean form come back unchanged (apart from surrounding whitespace).
    """
    if not raw_id:
        return ""
    marker = "amzn1.asin."
    if marker in raw_id:
        id_part = raw_id.split(marker, 1)[1]
        return id_part.split(":", 1)[0].strip()
    return raw_id.strip()
