"""
Listing records produced by the classifier.

Every placement variant shares one flat record type; the placement tag
says which kind of listing it is.
"""

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Optional


class PlacementType(str, Enum):
    """
    Closed set of placement tags.

    Values are the short codes stored in the ``listing_rankings.placement`` column.
    """

    ORGANIC = "organic"
    PAID_STANDARD = "sp"
    PAID_RECOMMENDATION_TOP = "sp_rec_top"
    PAID_RECOMMENDATION_BOTTOM = "sp_rec_bottom"
    PAID_BRAND_TOP = "sb_top"
    PAID_BRAND_MIDDLE = "sb_middle"
    PAID_BRAND_BOTTOM = "sb_bottom"
    PAID_BRAND_FOOTER = "sb_footer"
    PAID_BRAND_UNKNOWN = "sb_unknown"
    PAID_BRAND_PRODUCT_TOP = "sb_top_product"
    PAID_BRAND_PRODUCT_MIDDLE = "sb_middle_product"
    PAID_BRAND_PRODUCT_BOTTOM = "sb_bottom_product"
    PAID_BRAND_PRODUCT_FOOTER = "sb_footer_product"
    PAID_BRAND_PRODUCT_UNKNOWN = "sb_unknown_product"

    @property
    def is_paid(self) -> bool:
        return self is not PlacementType.ORGANIC

    @property
    def is_brand(self) -> bool:
        return self.value.startswith("sb_")

    @property
    def is_recommendation(self) -> bool:
        return self.value.startswith("sp_rec_")


class BrandSlot(str, Enum):
    """Where on the page a brand placement sits."""

    TOP = "top"
    MIDDLE = "middle"
    BOTTOM = "bottom"
    FOOTER = "footer"
    UNKNOWN = "unknown"


BRAND_PLACEMENTS = {
    BrandSlot.TOP: PlacementType.PAID_BRAND_TOP,
    BrandSlot.MIDDLE: PlacementType.PAID_BRAND_MIDDLE,
    BrandSlot.BOTTOM: PlacementType.PAID_BRAND_BOTTOM,
    BrandSlot.FOOTER: PlacementType.PAID_BRAND_FOOTER,
    BrandSlot.UNKNOWN: PlacementType.PAID_BRAND_UNKNOWN,
}

BRAND_PRODUCT_PLACEMENTS = {
    BrandSlot.TOP: PlacementType.PAID_BRAND_PRODUCT_TOP,
    BrandSlot.MIDDLE: PlacementType.PAID_BRAND_PRODUCT_MIDDLE,
    BrandSlot.BOTTOM: PlacementType.PAID_BRAND_PRODUCT_BOTTOM,
    BrandSlot.FOOTER: PlacementType.PAID_BRAND_PRODUCT_FOOTER,
    BrandSlot.UNKNOWN: PlacementType.PAID_BRAND_PRODUCT_UNKNOWN,
}

# Out-of-band page positions. Primary results count up from 1, so these
# never collide with a real position.
RECOMMENDATION_POSITION = 9999
BRAND_SLOT_POSITIONS = {
    BrandSlot.TOP: 9990,
    BrandSlot.MIDDLE: 9991,
    BrandSlot.BOTTOM: 9992,
    BrandSlot.FOOTER: 9993,
    BrandSlot.UNKNOWN: 9999,
}


@dataclass(frozen=True)
class ListingRecord:
    """One extracted listing."""

    placement: PlacementType
    position_on_page: int
    rank: int
    item_id: Optional[str] = None
    title: str = ""
    url: str = ""
    price: Optional[float] = None
    original_price: Optional[float] = None
    rating: Optional[float] = None
    review_count: Optional[int] = None
    bought: str = ""
    image_url: str = ""

    # Ad metadata
    ad_campaign_id: str = ""
    ad_id: str = ""
    sku: str = ""
    qualifier: str = ""
    widget_name: str = ""
    ad_index: str = ""
    ad_type_text: str = ""
    ad_section_title: str = ""

    # Brand / video creative
    video_title: str = ""
    video_poster_url: str = ""
    video_source_url: str = ""
    brand: str = ""
    brand_image: str = ""
    brand_logo: str = ""

    @property
    def is_sponsored(self) -> bool:
        return self.placement.is_paid

    @property
    def is_valid(self) -> bool:
        """Media-bearing records are kept as-is; everything else needs an id and a title."""
        if self.video_source_url or self.brand_image:
            return True
        return bool(self.item_id and self.title)

    def to_dict(self) -> dict:
        """Flat snake_case dict with the placement code and ``is_sponsored``."""
        data = asdict(self)
        data["placement"] = self.placement.value
        data["is_sponsored"] = self.is_sponsored
        return data


def count_by_placement(records) -> dict[PlacementType, int]:
    """Number of records per placement type, in first-seen order."""
    counts: dict[PlacementType, int] = {}
    for record in records:
        counts[record.placement] = counts.get(record.placement, 0) + 1
    return counts
