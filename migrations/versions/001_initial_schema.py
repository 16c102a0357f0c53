"""Initial schema: riders, drivers, ride requests and declines.

Revision ID: 001
Create Date: 2026-10-17
"""

from alembic import op
import sqlalchemy as sa


revision = "001"
down_revision = None
branch_labels = None
depends_on = None

VEHICLE_TYPES = ("BIKE", "AUTO", "MINI", "PRIME", "PINK")
REQUEST_STATUSES = (
    "SEARCHING",
    "ACCEPTED",
    "ARRIVED",
    "STARTED",
    "COMPLETED",
    "CANCELLED",
)


def upgrade() -> None:
    vehicle_type = sa.Enum(*VEHICLE_TYPES, name="vehicletype")

    # ── riders ────────────────────────────────────────────────────────
    op.create_table(
        "riders",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("email", sa.String(255), unique=True, nullable=True),
        sa.Column("rating", sa.Float, default=5.0),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )

    # ── drivers ───────────────────────────────────────────────────────
    op.create_table(
        "drivers",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("phone", sa.String(32), nullable=True),
        sa.Column("avatar_url", sa.String(512), nullable=True),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("vehicle_model", sa.String(120), nullable=True),
        sa.Column("vehicle_number", sa.String(32), nullable=True),
        sa.Column("rating", sa.Float, nullable=False, server_default="5.0"),
        sa.Column("is_online", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("is_approved", sa.Boolean, nullable=False, server_default=sa.false()),
        sa.Column("current_lat", sa.Float, nullable=True),
        sa.Column("current_lng", sa.Float, nullable=True),
        sa.Column("last_location_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("wallet_balance", sa.Float, nullable=False, server_default="0"),
        sa.Column("completed_trips", sa.Integer, nullable=False, server_default="0"),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_drivers_dispatchable",
        "drivers",
        ["is_online", "is_approved", "vehicle_type"],
    )

    # ── ride_requests ─────────────────────────────────────────────────
    op.create_table(
        "ride_requests",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "rider_id", sa.Integer, sa.ForeignKey("riders.id"), nullable=False
        ),
        sa.Column("pickup_lat", sa.Float, nullable=False),
        sa.Column("pickup_lng", sa.Float, nullable=False),
        sa.Column("dropoff_lat", sa.Float, nullable=False),
        sa.Column("dropoff_lng", sa.Float, nullable=False),
        sa.Column("pickup_address", sa.String(512), nullable=False, server_default=""),
        sa.Column("dropoff_address", sa.String(512), nullable=False, server_default=""),
        sa.Column("pickup_h3_cell", sa.String(20), nullable=False),
        sa.Column("pickup_sequence", sa.Integer, nullable=False, server_default="0"),
        sa.Column("vehicle_type", vehicle_type, nullable=False),
        sa.Column("fare", sa.Float, nullable=False, server_default="0"),
        sa.Column("payment_method", sa.String(16), nullable=False, server_default="CASH"),
        sa.Column(
            "status",
            sa.Enum(*REQUEST_STATUSES, name="requeststatus"),
            nullable=False,
            server_default="SEARCHING",
        ),
        sa.Column(
            "target_driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True
        ),
        sa.Column("target_expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=True),
        sa.Column("driver_name", sa.String(120), nullable=True),
        sa.Column("driver_phone", sa.String(32), nullable=True),
        sa.Column("driver_avatar_url", sa.String(512), nullable=True),
        sa.Column("driver_vehicle_model", sa.String(120), nullable=True),
        sa.Column("driver_vehicle_number", sa.String(32), nullable=True),
        sa.Column("driver_rating", sa.Float, nullable=True),
        sa.Column("version", sa.Integer, nullable=False),
        sa.Column("idempotency_key", sa.String(64), unique=True, nullable=True),
        sa.Column("cancellation_reason", sa.String(255), nullable=True),
        sa.Column(
            "cancelled_by",
            sa.Enum("RIDER", "DRIVER", "SYSTEM", name="cancelledby"),
            nullable=True,
        ),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.Column("accepted_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("arrived_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("started_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("completed_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("cancelled_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
    )
    op.create_index(
        "idx_requests_open_cell",
        "ride_requests",
        ["status", "vehicle_type", "pickup_h3_cell"],
    )
    op.create_index(
        "idx_requests_target", "ride_requests", ["status", "target_driver_id"]
    )
    op.create_index("idx_requests_driver", "ride_requests", ["driver_id"])
    op.create_index("idx_requests_rider", "ride_requests", ["rider_id"])

    # ── request_declines ──────────────────────────────────────────────
    op.create_table(
        "request_declines",
        sa.Column("id", sa.Integer, primary_key=True, autoincrement=True),
        sa.Column(
            "request_id",
            sa.Integer,
            sa.ForeignKey("ride_requests.id"),
            nullable=False,
        ),
        sa.Column(
            "driver_id", sa.Integer, sa.ForeignKey("drivers.id"), nullable=False
        ),
        sa.Column("reason", sa.String(255), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.func.now(),
        ),
        sa.UniqueConstraint(
            "request_id", "driver_id", name="uq_decline_request_driver"
        ),
    )
    op.create_index("idx_declines_driver", "request_declines", ["driver_id"])


def downgrade() -> None:
    op.drop_table("request_declines")
    op.drop_table("ride_requests")
    op.drop_table("drivers")
    op.drop_table("riders")
    op.execute("DROP TYPE IF EXISTS cancelledby")
    op.execute("DROP TYPE IF EXISTS requeststatus")
    op.execute("DROP TYPE IF EXISTS vehicletype")
