"""create rooms, bookings, blocked_dates, calendar_settings tables"""

from alembic import op
import sqlalchemy as sa


# revision identifiers, used by Alembic.
revision = "20261001_01"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    op.create_table(
        "rooms",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(length=255), nullable=False),
        sa.Column("room_number", sa.String(length=32), nullable=True),
        sa.Column("check_in_time", sa.String(length=32), nullable=True),
        sa.Column("check_out_time", sa.String(length=32), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )

    op.create_table(
        "bookings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("check_in_date", sa.Date(), nullable=False),
        sa.Column("check_out_date", sa.Date(), nullable=False),
        sa.Column("check_in_time", sa.String(length=32), nullable=True),
        sa.Column("check_out_time", sa.String(length=32), nullable=True),
        sa.Column("guest_name", sa.String(length=200), nullable=False),
        sa.Column("email", sa.String(length=255), nullable=True),
        sa.Column("phone", sa.String(length=64), nullable=True),
        sa.Column("num_guests", sa.Integer(), nullable=False, server_default="2"),
        sa.Column("special_requests", sa.Text(), nullable=True),
        sa.Column("total_amount", sa.Numeric(12, 2), nullable=False, server_default="0"),
        sa.Column("booking_status", sa.String(length=20), nullable=False, server_default="confirmed"),
        sa.Column("payment_status", sa.String(length=20), nullable=False, server_default="pending"),
        sa.Column("booking_source", sa.String(length=20), nullable=False, server_default="website"),
        sa.Column("external_booking_id", sa.String(length=255), nullable=True),
        sa.Column("external_platform_data", sa.JSON(), nullable=True),
        sa.Column("sync_status", sa.String(length=20), nullable=True),
        sa.Column("last_sync_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_bookings_room_id", "bookings", ["room_id"])
    op.create_index(
        "idx_bookings_room_dates",
        "bookings",
        ["room_id", "check_in_date", "check_out_date"],
    )
    op.create_index(
        "idx_bookings_room_external",
        "bookings",
        ["room_id", "booking_source", "external_booking_id"],
    )

    op.create_table(
        "blocked_dates",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("room_id", sa.Integer(), nullable=False),
        sa.Column("start_date", sa.Date(), nullable=False),
        sa.Column("end_date", sa.Date(), nullable=False),
        sa.Column("reason", sa.String(length=255), nullable=True),
        sa.Column("notes", sa.Text(), nullable=True),
        sa.Column("source", sa.String(length=32), nullable=False, server_default="manual"),
        sa.Column("external_id", sa.String(length=255), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index("ix_blocked_dates_room_id", "blocked_dates", ["room_id"])
    op.create_index(
        "idx_blocked_dates_room_range",
        "blocked_dates",
        ["room_id", "start_date", "end_date"],
    )

    op.create_table(
        "calendar_settings",
        sa.Column("id", sa.Integer(), primary_key=True, autoincrement=True),
        sa.Column("setting_key", sa.String(length=128), nullable=False),
        sa.Column("setting_value", sa.Text(), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), nullable=False),
    )
    op.create_index(
        "ix_calendar_settings_setting_key",
        "calendar_settings",
        ["setting_key"],
        unique=True,
    )


def downgrade() -> None:
    op.drop_index("ix_calendar_settings_setting_key", table_name="calendar_settings")
    op.drop_table("calendar_settings")

    op.drop_index("idx_blocked_dates_room_range", table_name="blocked_dates")
    op.drop_index("ix_blocked_dates_room_id", table_name="blocked_dates")
    op.drop_table("blocked_dates")

    op.drop_index("idx_bookings_room_external", table_name="bookings")
    op.drop_index("idx_bookings_room_dates", table_name="bookings")
    op.drop_index("ix_bookings_room_id", table_name="bookings")
    op.drop_table("bookings")

    op.drop_table("rooms")
