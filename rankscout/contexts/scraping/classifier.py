"""
Listing classifier: search-results markup -> ordered list of ListingRecords.

Pure and deterministic. Passes run in a fixed order and only ever append:

1. Primary results (organic and sponsored product ads)
2. Sponsored recommendation rails
3. Brand placements: video creatives, lifestyle-image cards, multi-brand cards

Per-type ranks are page-wide: every placement type has its own counter
that starts at 1 and advances only when a valid record of that type is
emitted.
"""

from collections import Counter
from dataclasses import replace
from typing import Callable, Optional

from bs4 import BeautifulSoup, Tag
from loguru import logger

from rankscout.contexts.scraping.ad_params import (
    decode_json_attribute,
    extract_ad_params,
    extract_impression_params,
    extract_recommendation_ad_data,
)
from rankscout.contexts.scraping.errors import MarkupError
from rankscout.contexts.scraping.listings import (
    BRAND_PLACEMENTS,
    BRAND_PRODUCT_PLACEMENTS,
    BRAND_SLOT_POSITIONS,
    RECOMMENDATION_POSITION,
    BrandSlot,
    ListingRecord,
    PlacementType,
)
from rankscout.contexts.scraping.selectors import (
    AD_TYPE_TEXT_STRATEGIES,
    IMAGE_STRATEGIES,
    ORIGINAL_PRICE_STRATEGIES,
    PRICE_STRATEGIES,
    RATING_STRATEGIES,
    REVIEW_COUNT_STRATEGIES,
    TITLE_STRATEGIES,
    URL_STRATEGIES,
    bought_text,
    clean_item_id,
    first_present,
    item_id_from_url,
)

PRIMARY_RESULT_SELECTOR = '.s-result-item[role="listitem"]'
SPONSORED_MARKER_CLASS = "AdHolder"

RECOMMENDATION_RAIL_SELECTOR = ".s-include-content-margin.s-widget-padding-bottom"
RECOMMENDATION_HEADING_SELECTOR = ".a-section.a-spacing-none.a-text-bold h2"
RECOMMENDATION_LABEL_SELECTOR = ".s-widget-sponsored-label-text"
RECOMMENDATION_HEADINGS = {
    "loom-desktop-inline-slot_featuredasins-heading": PlacementType.PAID_RECOMMENDATION_TOP,
    "loom-desktop-bottom-slot_featuredasins-heading": PlacementType.PAID_RECOMMENDATION_BOTTOM,
}

VIDEO_CREATIVE_SELECTOR = ".sb-video-creative"
LIFESTYLE_CREATIVE_SELECTOR = '[data-csa-c-painter="lifestyle-image-v4-creative-desktop-cards"]'
MULTI_BRAND_SELECTOR = '[data-csa-c-painter="multi-brand-creative-desktop-cards"]'

# Checked in this order; the first marker found in the container wins
SLOT_MARKERS = (
    ("top-slot", BrandSlot.TOP),
    ("inline-slot", BrandSlot.MIDDLE),
    ("bottom-slot", BrandSlot.BOTTOM),
    ("footer-slot", BrandSlot.FOOTER),
)

VIDEO_ELEMENT_SELECTOR = 'video.sbv-video-player, video, [data-type="videoContainer"] video'


class _PageRanks:
    """One running counter per placement type."""

    def __init__(self):
        self._counters = Counter()

    def next(self, placement: PlacementType) -> int:
        self._counters[placement] += 1
        return self._counters[placement]


def classify(markup: str) -> list[ListingRecord]:
    """
    Classify every listing on a search-results page.

    Args:
        markup: Full page HTML

    Returns:
        Valid records in pass order (primary results in document order first)

    Raises:
        MarkupError: If markup is not a non-empty string
    """
    if not isinstance(markup, str):
        raise MarkupError(f"Expected page markup as str, got {type(markup).__name__}")
    if not markup.strip():
        raise MarkupError("Page markup is empty")

    soup = BeautifulSoup(markup, "html.parser")
    ranks = _PageRanks()

    records = []
    records.extend(_primary_pass(soup, ranks))
    records.extend(_recommendation_pass(soup, ranks))
    for container in soup.select(VIDEO_CREATIVE_SELECTOR):
        records.extend(_brand_creative_records(container, ranks, is_video_creative=True))
    for container in soup.select(LIFESTYLE_CREATIVE_SELECTOR):
        records.extend(_brand_creative_records(container, ranks, is_video_creative=False))
    for container in soup.select(MULTI_BRAND_SELECTOR):
        records.extend(_multi_brand_records(container, ranks))

    logger.debug(f"Classified {len(records)} listings")
    return records


# ---------------------------------------------------------------------------
# Field extraction
# ---------------------------------------------------------------------------


def is_sponsored_container(element: Tag) -> bool:
    return SPONSORED_MARKER_CLASS in (element.get("class") or [])


def _ad_fields(element: Tag) -> dict:
    ad = extract_ad_params(element)
    impression = extract_impression_params(element)
    return {
        "ad_campaign_id": ad.campaign_id,
        "ad_id": ad.ad_id,
        "sku": ad.sku,
        "qualifier": impression.qualifier,
        "ad_index": impression.ad_index,
        "widget_name": impression.widget_name,
    }


def extract_listing_fields(element: Tag) -> dict:
    """
    Product fields of one result element, keyed by ListingRecord field name.

    Sponsored elements additionally get their ad label and decoded ad params.
    """
    url = first_present(element, URL_STRATEGIES) or ""
    fields = {
        "item_id": element.get("data-asin") or item_id_from_url(url),
        "title": first_present(element, TITLE_STRATEGIES) or "",
        "url": url,
        "price": first_present(element, PRICE_STRATEGIES),
        "original_price": first_present(element, ORIGINAL_PRICE_STRATEGIES),
        "rating": first_present(element, RATING_STRATEGIES),
        "review_count": first_present(element, REVIEW_COUNT_STRATEGIES),
        "bought": bought_text(element) or "",
        "image_url": first_present(element, IMAGE_STRATEGIES) or "",
    }

    if is_sponsored_container(element):
        fields["ad_type_text"] = first_present(element, AD_TYPE_TEXT_STRATEGIES) or ""
        fields.update(_ad_fields(element))

    return fields


def _emit(
    ranks: _PageRanks,
    placement: PlacementType,
    position: int,
    fields: dict,
) -> Optional[ListingRecord]:
    """Build a record and assign its rank, or None if it is not valid."""
    candidate = ListingRecord(placement=placement, position_on_page=position, rank=0, **fields)
    if not candidate.is_valid:
        return None
    return replace(candidate, rank=ranks.next(placement))


def _emit_item(
    ranks: _PageRanks,
    placement: PlacementType,
    position: int,
    build_fields: Callable[..., dict],
    *args,
) -> Optional[ListingRecord]:
    """
    ``_emit`` over ``build_fields(*args)``.

    An item whose markup breaks field extraction is logged and skipped; it
    takes no rank and no position, and the rest of the page is unaffected.
    """
    try:
        return _emit(ranks, placement, position, build_fields(*args))
    except Exception as e:
        logger.debug(f"Skipping {placement.value} item that failed to parse: {type(e).__name__}: {e}")
        return None


# ---------------------------------------------------------------------------
# Passes
# ---------------------------------------------------------------------------


def _primary_pass(soup: BeautifulSoup, ranks: _PageRanks) -> list[ListingRecord]:
    records = []
    for element in soup.select(PRIMARY_RESULT_SELECTOR):
        placement = (
            PlacementType.PAID_STANDARD
            if is_sponsored_container(element)
            else PlacementType.ORGANIC
        )
        # Position only advances for records that survive validation
        record = _emit_item(ranks, placement, len(records) + 1, extract_listing_fields, element)
        if record is not None:
            records.append(record)
    return records


def _recommendation_fields(element: Tag, section_title: str, ad_type_text: str, rail_ad_data: dict) -> dict:
    fields = extract_listing_fields(element)
    impression = extract_impression_params(element)
    fields.update(
        ad_section_title=section_title,
        ad_type_text=ad_type_text,
        qualifier=impression.qualifier,
        ad_index=impression.ad_index,
        widget_name=impression.widget_name,
    )

    ad = rail_ad_data.get(fields["item_id"] or "")
    if ad is not None:
        fields["ad_campaign_id"] = ad.campaign_id or fields.get("ad_campaign_id", "")
        fields["ad_id"] = ad.ad_id or fields.get("ad_id", "")
        fields["sku"] = ad.sku or fields.get("sku", "")
    return fields


def _recommendation_pass(soup: BeautifulSoup, ranks: _PageRanks) -> list[ListingRecord]:
    records = []
    for rail in soup.select(RECOMMENDATION_RAIL_SELECTOR):
        heading = rail.select_one(RECOMMENDATION_HEADING_SELECTOR)
        if heading is None:
            continue
        placement = RECOMMENDATION_HEADINGS.get(heading.get("id", ""))
        if placement is None:
            continue

        section_title = heading.get_text(strip=True)
        label = rail.select_one(RECOMMENDATION_LABEL_SELECTOR)
        ad_type_text = label.get_text(strip=True) if label is not None else ""
        rail_ad_data = extract_recommendation_ad_data(rail)

        for element in rail.select(".s-result-item"):
            record = _emit_item(
                ranks,
                placement,
                RECOMMENDATION_POSITION,
                _recommendation_fields,
                element,
                section_title,
                ad_type_text,
                rail_ad_data,
            )
            if record is not None:
                records.append(record)
    return records


def brand_slot(container: Tag) -> BrandSlot:
    """Slot of a brand container, from the slot markers in its inner markup."""
    inner = container.decode_contents()
    for marker, slot in SLOT_MARKERS:
        if marker in inner:
            return slot
    return BrandSlot.UNKNOWN


def _brand_container_fields(container: Tag) -> dict:
    """Container-level fields: ad ids, video, brand name and imagery."""
    fields = {
        "ad_campaign_id": "",
        "ad_id": "",
        "video_source_url": "",
        "video_poster_url": "",
        "video_title": "",
        "brand": "",
        "brand_image": "",
        "brand_logo": "",
    }

    if container.get("data-component-type") == "sbv-video-single-product":
        props = decode_json_attribute(container, "data-component-props")
        fields["ad_campaign_id"] = str(props.get("campaignId") or "")
        fields["ad_id"] = str(props.get("adId") or "")
        fields["video_source_url"] = props.get("videoSrc") or ""
        fields["video_poster_url"] = props.get("videoPreviewImageSrc") or ""

    if not fields["video_source_url"]:
        video = container.select_one(VIDEO_ELEMENT_SELECTOR)
        if video is not None:
            fields["video_source_url"] = video.get("src") or video.get("data-video-source") or ""
            fields["video_poster_url"] = video.get("poster") or video.get("data-poster") or ""
            fields["video_title"] = (video.get("aria-label") or "").strip()

    if not fields["ad_campaign_id"]:
        props = decode_json_attribute(container, "data-properties")
        if props:
            fields["ad_campaign_id"] = str(props.get("campaignId") or "")
            fields["ad_id"] = str(props.get("adId") or "")
            fields["brand"] = props.get("headline") or ""
            fields["video_source_url"] = fields["video_source_url"] or props.get("videoSrc") or ""
            fields["video_poster_url"] = (
                fields["video_poster_url"] or props.get("videoPreviewImageSrc") or ""
            )

    logo = container.select_one('[data-type="brandLogo"] img')
    if logo is not None and logo.get("src"):
        fields["brand_logo"] = logo["src"]

    # Image creatives: the first picture that is not the logo is the brand cover
    if not fields["video_source_url"]:
        for image in container.select("img"):
            if image.find_parent(attrs={"data-type": "brandLogo"}) is not None:
                continue
            if image.get("src"):
                fields["brand_image"] = image["src"]
                break

    return fields


def _brand_product_fields(element: Tag, container_fields: dict, is_video_creative: bool) -> dict:
    fields = extract_listing_fields(element)

    if not fields["item_id"] and is_video_creative and element.get("data-csa-c-type") == "item":
        fields["item_id"] = clean_item_id(element.get("data-csa-c-item-id")) or None

    if not fields.get("ad_campaign_id"):
        fields["ad_campaign_id"] = container_fields["ad_campaign_id"]
    if not fields.get("ad_id"):
        fields["ad_id"] = container_fields["ad_id"]

    if not fields["image_url"]:
        image = element.select_one("img")
        if image is not None and image.get("src"):
            fields["image_url"] = image["src"]
            if not fields["title"]:
                fields["title"] = image.get("alt") or ""

    return fields


def _brand_only_fields(element: Tag) -> dict:
    fields = {"item_id": None}
    image = element.select_one("img[alt]")
    if image is not None:
        fields["brand"] = image.get("alt") or ""
        fields["title"] = fields["brand"]
        if image.get("src"):
            fields["image_url"] = image["src"]
            fields["brand_image"] = image["src"]

    if element.get("data-ad-id"):
        fields["ad_id"] = element["data-ad-id"]
    if element.get("data-campaign-id"):
        fields["ad_campaign_id"] = element["data-campaign-id"]
    return fields


def _brand_creative_records(
    container: Tag,
    ranks: _PageRanks,
    is_video_creative: bool,
) -> list[ListingRecord]:
    """Container record, nested product records and brand-only entries of one creative."""
    slot = brand_slot(container)
    position = BRAND_SLOT_POSITIONS[slot]
    records = []

    try:
        container_fields = _brand_container_fields(container)
    except Exception as e:
        logger.debug(f"Skipping brand creative that failed to parse: {type(e).__name__}: {e}")
        return records

    record = _emit(ranks, BRAND_PLACEMENTS[slot], position, container_fields)
    if record is not None:
        records.append(record)

    product_elements = container.select("[data-asin]")
    if not product_elements and is_video_creative:
        product_elements = container.select('.a-declarative[data-csa-c-type="item"]')

    product_placement = BRAND_PRODUCT_PLACEMENTS[slot]
    for element in product_elements:
        record = _emit_item(
            ranks, product_placement, position, _brand_product_fields, element, container_fields, is_video_creative
        )
        if record is not None:
            records.append(record)

    for element in container.select(".s-result-item:not([data-asin])"):
        if element.select_one("img[alt], [data-brand], [data-ad-id]") is None:
            continue
        record = _emit_item(ranks, BRAND_PLACEMENTS[slot], position, _brand_only_fields, element)
        if record is not None:
            records.append(record)

    return records


def _multi_brand_card_fields(card: Tag) -> dict:
    fields = _ad_fields(card)

    image = card.select_one("a.a-spacing-none.a-link-normal > img")
    if image is not None and image.get("data-src"):
        fields["brand_image"] = image["data-src"]

    logo = card.select_one("div.a-section.a-spacing-none > img")
    if logo is not None and logo.get("data-src"):
        fields["brand_logo"] = logo["data-src"]

    link = card.select_one("a.a-spacing-none.a-link-normal[href]")
    if link is not None:
        fields["url"] = link.get("href") or ""
    return fields


def _multi_brand_records(container: Tag, ranks: _PageRanks) -> list[ListingRecord]:
    """One brand record per card in a multi-brand creative."""
    slot = brand_slot(container)
    placement = BRAND_PLACEMENTS[slot]
    records = []

    for card in container.select(".sbx-desktop"):
        record = _emit_item(ranks, placement, BRAND_SLOT_POSITIONS[slot], _multi_brand_card_fields, card)
        if record is not None:
            records.append(record)

    return records
