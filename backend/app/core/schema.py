"""
Database Schema

Tables are declared with SQLAlchemy Core so the same metadata drives
PostgreSQL in production and SQLite in local runs and tests.
"""

from sqlalchemy import (
    JSON,
    Boolean,
    Column,
    DateTime,
    ForeignKey,
    Integer,
    MetaData,
    Numeric,
    String,
    Table,
    Text,
)

metadata = MetaData()

referral_settings = Table(
    "referral_settings",
    metadata,
    Column("id", Integer, primary_key=True),
    Column("discount_fraction", Numeric(5, 4), nullable=False),
    Column("cashback_amount", Numeric(12, 2), nullable=False),
    Column("code_validity_days", Integer, nullable=False),
    Column("applies_once_per_customer", Boolean, nullable=False),
    Column("max_usages_per_code", Integer, nullable=False),
    Column("max_refund_fraction", Numeric(5, 4), nullable=False),
    Column("eligible_segment_ids", JSON, nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

referrers = Table(
    "referrers",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("shopify_customer_id", String(64), nullable=False, unique=True),
    Column("email", String(320)),
    Column("first_name", String(255)),
    Column("last_name", String(255)),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

codes = Table(
    "codes",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("referrer_id", String(36), ForeignKey("referrers.id"), nullable=False, index=True),
    Column("code", String(32), nullable=False, unique=True),
    Column("shopify_discount_id", String(255)),
    Column("usage_count", Integer, nullable=False, default=0),
    Column("max_usage", Integer, nullable=False, default=0),
    Column("active", Boolean, nullable=False, default=True),
    Column("expires_at", DateTime),
    Column("origin_order_id", String(64)),
    Column("origin_order_gid", String(255), index=True),
    Column("workshop_product_id", String(64)),
    Column("workshop_product_title", String(255)),
    Column("workshop_quantity", Integer),
    Column("discount_snapshot", Numeric(5, 4), nullable=False),
    Column("cashback_snapshot", Numeric(12, 2), nullable=False),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

referrals = Table(
    "referrals",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("referrer_id", String(36), ForeignKey("referrers.id"), nullable=False, index=True),
    Column("code_id", String(36), ForeignKey("codes.id")),
    Column("referee_customer_id", String(64)),
    Column("referee_email", String(320)),
    Column("referee_first_name", String(255)),
    Column("referee_last_name", String(255)),
    Column("order_id", String(64), nullable=False, unique=True),
    Column("workshop_product_id", String(64)),
    Column("workshop_product_title", String(255)),
    Column("workshop_quantity", Integer),
    Column("created_at", DateTime, nullable=False),
)

rewards = Table(
    "rewards",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("referrer_id", String(36), ForeignKey("referrers.id"), nullable=False, index=True),
    Column("referral_id", String(36), ForeignKey("referrals.id"), nullable=False, unique=True),
    Column("amount", Numeric(12, 2), nullable=False),
    Column("currency", String(3), nullable=False),
    Column("status", String(16), nullable=False, index=True),
    Column("notes", Text),
    Column("workshop_product_id", String(64)),
    Column("workshop_product_title", String(255)),
    Column("workshop_quantity", Integer),
    Column("created_at", DateTime, nullable=False),
    Column("paid_at", DateTime),
)

email_logs = Table(
    "email_logs",
    metadata,
    Column("id", String(36), primary_key=True),
    Column("referrer_id", String(36), ForeignKey("referrers.id"), index=True),
    Column("recipient", String(320), nullable=False),
    Column("template", String(64), nullable=False),
    Column("subject", String(255), nullable=False),
    Column("status", String(16), nullable=False),
    Column("provider_id", String(255)),
    Column("error_message", Text),
    Column("created_at", DateTime, nullable=False),
    Column("sent_at", DateTime),
)

email_templates = Table(
    "email_templates",
    metadata,
    Column("template", String(64), primary_key=True),
    Column("subject", String(255), nullable=False),
    Column("html", Text, nullable=False),
    Column("text", Text),
    Column("created_at", DateTime, nullable=False),
    Column("updated_at", DateTime, nullable=False),
)

# One row per reward or order being settled; rows past expires_at are stale
settlement_locks = Table(
    "settlement_locks",
    metadata,
    Column("key", String(300), primary_key=True),
    Column("token", String(36), nullable=False),
    Column("acquired_at", DateTime, nullable=False),
    Column("expires_at", DateTime, nullable=False),
)
