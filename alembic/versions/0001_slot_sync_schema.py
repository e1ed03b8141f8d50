from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

revision = "0001_slot_sync_schema"
down_revision = None
branch_labels = None
depends_on = None


def _audit():
    return [
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
    ]


def upgrade():
    op.create_table(
        "subscription_plans",
        sa.Column("plan_name", sa.String(length=80), primary_key=True),
        sa.Column("display_name", sa.String(length=200), nullable=False),
        sa.Column("max_listings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("billing_period", sa.String(length=20), nullable=False, server_default="MONTHLY"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit(),
    )

    op.create_table(
        "plan_products",
        sa.Column("external_product_id", sa.String(length=120), primary_key=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("plan_name", sa.String(length=80), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit(),
    )

    op.create_table(
        "plan_prices",
        sa.Column("external_price_id", sa.String(length=120), primary_key=True),
        sa.Column("external_product_id", sa.String(length=120), nullable=False),
        sa.Column("plan_name", sa.String(length=80), nullable=True),
        sa.Column("amount", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("currency", sa.String(length=3), nullable=False, server_default="eur"),
        sa.Column("billing_period", sa.String(length=20), nullable=False, server_default="MONTHLY"),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit(),
    )
    op.create_index("ix_plan_prices_external_product_id", "plan_prices", ["external_product_id"])

    op.create_table(
        "host_subscriptions",
        sa.Column("host_id", sa.String(), primary_key=True),
        sa.Column("plan_name", sa.String(length=80), nullable=True),
        sa.Column("external_price_id", sa.String(length=120), nullable=True),
        sa.Column("max_listings", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("status", sa.String(length=20), nullable=False),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("current_period_start", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("trial_ends_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("past_due_since", sa.DateTime(timezone=True), nullable=True),
        sa.Column("external_customer_id", sa.String(length=120), nullable=True, unique=True),
        sa.Column("external_subscription_id", sa.String(length=120), nullable=True),
        sa.Column("status_as_of", sa.DateTime(timezone=True), nullable=True),
        sa.Column("plan_as_of", sa.DateTime(timezone=True), nullable=True),
        sa.Column("slot_version", sa.Integer(), nullable=False, server_default="0"),
        *_audit(),
    )

    op.create_table(
        "locations",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("location_type", sa.String(length=20), nullable=False, server_default="PLACE"),
        sa.Column("parent_id", sa.String(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("region_name", sa.String(length=200), nullable=True),
        sa.Column("country_code", sa.String(length=2), nullable=True),
        sa.Column("slug", sa.String(length=240), nullable=False),
        sa.Column("listings_count", sa.Integer(), nullable=False, server_default="0"),
        *_audit(),
    )
    op.create_index("ix_locations_slug", "locations", ["slug"])

    op.create_table(
        "location_names",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("location_id", sa.String(), sa.ForeignKey("locations.id"), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("search_name", sa.String(length=400), nullable=False),
        *_audit(),
        sa.UniqueConstraint("location_id", "name", name="uq_location_name_variant"),
    )
    op.create_index("ix_location_names_search_name", "location_names", ["search_name"])

    op.create_table(
        "listings",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("host_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("description", sa.Text(), nullable=False, server_default=""),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="DRAFT"),
        sa.Column("place_id", sa.String(length=120), nullable=True),
        sa.Column("place_name", sa.String(length=200), nullable=True),
        sa.Column("region_name", sa.String(length=200), nullable=True),
        sa.Column("country_name", sa.String(length=200), nullable=True),
        sa.Column("country_code", sa.String(length=2), nullable=True),
        sa.Column("location_id", sa.String(), sa.ForeignKey("locations.id"), nullable=True),
        sa.Column("max_guests", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("bedrooms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("submitted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("first_reviewed_at", sa.DateTime(timezone=True), nullable=True),
        *_audit(),
    )
    op.create_index("ix_listings_host_id", "listings", ["host_id"])
    op.create_index("ix_listings_location_id", "listings", ["location_id"])

    op.create_table(
        "listing_images",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("thumbnail_url", sa.Text(), nullable=False),
        sa.Column("caption", sa.String(length=500), nullable=True),
        sa.Column("display_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_primary", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("is_ready", sa.Boolean(), nullable=False, server_default=sa.true()),
        *_audit(),
    )
    op.create_index("ix_listing_images_listing_id", "listing_images", ["listing_id"])

    op.create_table(
        "advertising_slots",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), nullable=False),
        sa.Column("host_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="ACTIVE"),
        sa.Column("plan_name_at_creation", sa.String(length=80), nullable=True),
        sa.Column("activated_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("renewal_count", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("review_compensation_days", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("is_past_due", sa.Boolean(), nullable=False, server_default=sa.false()),
        sa.Column("warned_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("expired_at", sa.DateTime(timezone=True), nullable=True),
        *_audit(),
    )
    op.create_index("ix_advertising_slots_listing_id", "advertising_slots", ["listing_id"])
    op.create_index("ix_advertising_slots_host_activated", "advertising_slots", ["host_id", "activated_at"])
    op.create_index("ix_advertising_slots_expiry", "advertising_slots", ["expires_at", "listing_id", "id"])
    op.create_index(
        "uq_advertising_slots_live_listing",
        "advertising_slots",
        ["listing_id"],
        unique=True,
        postgresql_where=sa.text("status IN ('ACTIVE', 'EXPIRING_SOON', 'DO_NOT_RENEW')"),
    )

    op.create_table(
        "public_listings",
        sa.Column("location_id", sa.String(), sa.ForeignKey("locations.id"), primary_key=True),
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), primary_key=True),
        sa.Column("host_id", sa.String(), nullable=False),
        sa.Column("name", sa.String(length=200), nullable=False),
        sa.Column("short_description", sa.String(length=120), nullable=False, server_default=""),
        sa.Column("place_name", sa.String(length=200), nullable=True),
        sa.Column("region_name", sa.String(length=200), nullable=True),
        sa.Column("max_guests", sa.Integer(), nullable=False, server_default="1"),
        sa.Column("bedrooms", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("thumbnail_url", sa.Text(), nullable=False),
        sa.Column("instant_book", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_audit(),
    )

    op.create_table(
        "public_listing_media",
        sa.Column("listing_id", sa.String(), sa.ForeignKey("listings.id"), primary_key=True),
        sa.Column("image_index", sa.Integer(), primary_key=True),
        sa.Column("url", sa.Text(), nullable=False),
        sa.Column("thumbnail_url", sa.Text(), nullable=False),
        sa.Column("caption", sa.String(length=500), nullable=True),
        sa.Column("is_cover_image", sa.Boolean(), nullable=False, server_default=sa.false()),
        *_audit(),
    )

    op.create_table(
        "processed_events",
        sa.Column("external_event_id", sa.String(length=200), primary_key=True),
        sa.Column("event_type", sa.String(length=200), nullable=False),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )

    op.create_table(
        "billing_event_inbox",
        sa.Column("id", sa.String(), primary_key=True),
        sa.Column("external_event_id", sa.String(length=200), nullable=True),
        sa.Column("event_type", sa.String(length=200), nullable=True),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False, server_default=sa.text("'{}'::jsonb")),
        sa.Column("status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("attempts", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("last_error", sa.Text(), nullable=True),
        sa.Column("lease_id", sa.String(length=64), nullable=True),
        sa.Column("lease_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("visible_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
        sa.Column("processing_started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("processed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("dead_lettered_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False, server_default=sa.func.now()),
    )
    op.create_index("ix_billing_event_inbox_external_event_id", "billing_event_inbox", ["external_event_id"])
    op.create_index("ix_billing_event_inbox_status_visible", "billing_event_inbox", ["status", "visible_at"])


def downgrade():
    op.drop_index("ix_billing_event_inbox_status_visible", table_name="billing_event_inbox")
    op.drop_index("ix_billing_event_inbox_external_event_id", table_name="billing_event_inbox")
    op.drop_table("billing_event_inbox")
    op.drop_table("processed_events")
    op.drop_table("public_listing_media")
    op.drop_table("public_listings")
    op.drop_index("uq_advertising_slots_live_listing", table_name="advertising_slots")
    op.drop_index("ix_advertising_slots_expiry", table_name="advertising_slots")
    op.drop_index("ix_advertising_slots_host_activated", table_name="advertising_slots")
    op.drop_index("ix_advertising_slots_listing_id", table_name="advertising_slots")
    op.drop_table("advertising_slots")
    op.drop_index("ix_listing_images_listing_id", table_name="listing_images")
    op.drop_table("listing_images")
    op.drop_index("ix_listings_location_id", table_name="listings")
    op.drop_index("ix_listings_host_id", table_name="listings")
    op.drop_table("listings")
    op.drop_index("ix_location_names_search_name", table_name="location_names")
    op.drop_table("location_names")
    op.drop_index("ix_locations_slug", table_name="locations")
    op.drop_table("locations")
    op.drop_table("host_subscriptions")
    op.drop_index("ix_plan_prices_external_product_id", table_name="plan_prices")
    op.drop_table("plan_prices")
    op.drop_table("plan_products")
    op.drop_table("subscription_plans")
