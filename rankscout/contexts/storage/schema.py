"""Relational schema for crawl tasks and the listings they found."""

from sqlalchemy import (
    Boolean,
    Column,
    DateTime,
    Float,
    ForeignKey,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    func,
)

# Crawl task lifecycle
STATUS_PENDING = "pending"
STATUS_RUNNING = "running"
STATUS_COMPLETED = "completed"
STATUS_FAILED = "failed"

metadata = MetaData()

crawl_tasks = Table(
    "crawl_tasks",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("keyword", String(255), nullable=False),
    Column("locale", String(64), nullable=False, default=""),
    Column("status", String(16), nullable=False, default=STATUS_PENDING),
    Column("crawl_start_time", DateTime),
    Column("pages_crawled", Integer, default=0),
    Column("products_found", Integer, default=0),
    Column("ads_found", Integer, default=0),
    Column("duration_seconds", Integer),
    Column("error_message", Text),
    Column("created_at", DateTime, server_default=func.now()),
    Column("updated_at", DateTime, server_default=func.now()),
)

listing_rankings = Table(
    "listing_rankings",
    metadata,
    Column("id", Integer, primary_key=True, autoincrement=True),
    Column("crawl_task_id", Integer, ForeignKey("crawl_tasks.id"), nullable=False, index=True),
    Column("page_number", Integer, nullable=False),
    Column("keyword", String(255)),
    Column("crawl_time", DateTime),
    Column("placement", String(32), nullable=False),
    Column("is_sponsored", Boolean, nullable=False),
    Column("position_on_page", Integer, nullable=False),
    Column("rank", Integer, nullable=False),
    Column("item_id", String(32), index=True),
    Column("title", Text),
    Column("url", Text),
    Column("price", Float),
    Column("original_price", Float),
    Column("rating", Float),
    Column("review_count", Integer),
    Column("bought", String(255)),
    Column("image_url", Text),
    Column("ad_campaign_id", String(64)),
    Column("ad_id", String(64)),
    Column("sku", String(128)),
    Column("qualifier", String(255)),
    Column("widget_name", String(255)),
    Column("ad_index", String(32)),
    Column("ad_type_text", String(255)),
    Column("ad_section_title", String(255)),
    Column("video_title", Text),
    Column("video_poster_url", Text),
    Column("video_source_url", Text),
    Column("brand", String(255)),
    Column("brand_image", Text),
    Column("brand_logo", Text),
)
