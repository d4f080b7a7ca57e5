"""Initial queue schema

Revision ID: 0001_initial
Revises:
Create Date: 2026-10-19 00:00:00
"""

from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "0001_initial"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None

registration_truck_type = postgresql.ENUM(
    "heavy",
    "light",
    name="registration_truck_type",
    create_type=False,
)
registration_job_type = postgresql.ENUM(
    "FG",
    "RETURN",
    "READY",
    "REPAIR",
    name="registration_job_type",
    create_type=False,
)
registration_time_slot = postgresql.ENUM(
    "morning",
    "afternoon",
    name="registration_time_slot",
    create_type=False,
)
registration_status = postgresql.ENUM(
    "pending",
    "confirmed",
    "in_progress",
    "completed",
    "cancelled",
    name="registration_status",
    create_type=False,
)
audit_actor_type = postgresql.ENUM(
    "DRIVER",
    "STAFF",
    "SYSTEM",
    name="audit_actor_type",
    create_type=False,
)

ASSIGN_QUEUE_NUMBER_FUNCTION = """
CREATE OR REPLACE FUNCTION registrations_assign_queue_number() RETURNS trigger AS $$
DECLARE
    slot_prefix text;
    next_seq integer;
BEGIN
    slot_prefix := CASE NEW.time_slot::text
        WHEN 'morning' THEN 'M'
        WHEN 'afternoon' THEN 'A'
        ELSE 'Q'
    END;

    -- Serializes numbering per (shift, slot) until the inserting transaction ends.
    PERFORM pg_advisory_xact_lock(
        hashtext('registrations_queue_number'),
        hashtext(NEW.shift_start_utc::text || ':' || COALESCE(NEW.time_slot::text, ''))
    );

    SELECT COALESCE(MAX(NULLIF(regexp_replace(queue_number, '[^0-9]', '', 'g'), '')::integer), 0) + 1
      INTO next_seq
      FROM registrations
     WHERE shift_start_utc = NEW.shift_start_utc
       AND time_slot IS NOT DISTINCT FROM NEW.time_slot;

    NEW.queue_number := slot_prefix || CASE
        WHEN next_seq > 999 THEN next_seq::text
        ELSE lpad(next_seq::text, 3, '0')
    END;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""

GUARD_IMMUTABLE_FUNCTION = """
CREATE OR REPLACE FUNCTION registrations_guard_immutable() RETURNS trigger AS $$
BEGIN
    IF NEW.queue_number IS DISTINCT FROM OLD.queue_number THEN
        RAISE EXCEPTION 'queue_number is immutable' USING ERRCODE = 'check_violation';
    END IF;
    IF NEW.created_at IS DISTINCT FROM OLD.created_at THEN
        RAISE EXCEPTION 'created_at is immutable' USING ERRCODE = 'check_violation';
    END IF;
    RETURN NEW;
END;
$$ LANGUAGE plpgsql;
"""


def upgrade() -> None:
    bind = op.get_bind()
    registration_truck_type.create(bind, checkfirst=True)
    registration_job_type.create(bind, checkfirst=True)
    registration_time_slot.create(bind, checkfirst=True)
    registration_status.create(bind, checkfirst=True)
    audit_actor_type.create(bind, checkfirst=True)

    op.create_table(
        "registrations",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column("queue_number", sa.String(length=32), nullable=False),
        sa.Column("line_user_id", sa.String(length=64), nullable=False),
        sa.Column("driver_name", sa.String(length=255), nullable=False),
        sa.Column("vehicle_plate", sa.String(length=64), nullable=False),
        sa.Column("carrier", sa.String(length=255), nullable=False),
        sa.Column("truck_type", registration_truck_type, nullable=False),
        sa.Column("job_type", registration_job_type, nullable=False),
        sa.Column("trip_number", sa.String(length=64), nullable=True),
        sa.Column("time_slot", registration_time_slot, nullable=False),
        sa.Column("status", registration_status, nullable=False, server_default=sa.text("'pending'")),
        sa.Column("shift_start_utc", sa.DateTime(timezone=True), nullable=False),
        sa.Column("check_in_lat", sa.Float(), nullable=True),
        sa.Column("check_in_lon", sa.Float(), nullable=True),
        sa.Column("check_in_accuracy_m", sa.Float(), nullable=True),
        sa.Column("notes", sa.String(length=1000), nullable=True),
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
    )
    op.create_index(
        "uq_registrations_active_identity_slot_shift",
        "registrations",
        ["line_user_id", "time_slot", "shift_start_utc"],
        unique=True,
        postgresql_where=sa.text("status <> 'cancelled'"),
    )
    op.create_index("ix_registrations_created_at", "registrations", ["created_at"], unique=False)

    op.execute(ASSIGN_QUEUE_NUMBER_FUNCTION)
    op.execute(GUARD_IMMUTABLE_FUNCTION)
    op.execute(
        """
        CREATE TRIGGER registrations_assign_queue_number
        BEFORE INSERT ON registrations
        FOR EACH ROW EXECUTE FUNCTION registrations_assign_queue_number()
        """
    )
    op.execute(
        """
        CREATE TRIGGER registrations_guard_immutable
        BEFORE UPDATE ON registrations
        FOR EACH ROW EXECUTE FUNCTION registrations_guard_immutable()
        """
    )

    op.create_table(
        "audit_logs",
        sa.Column("id", sa.Integer(), primary_key=True, nullable=False),
        sa.Column(
            "ts_utc",
            sa.DateTime(timezone=True),
            nullable=False,
            server_default=sa.text("CURRENT_TIMESTAMP"),
        ),
        sa.Column("actor_type", audit_actor_type, nullable=False),
        sa.Column("actor_id", sa.String(length=255), nullable=False),
        sa.Column("action", sa.String(length=255), nullable=False),
        sa.Column("entity_type", sa.String(length=255), nullable=True),
        sa.Column("entity_id", sa.String(length=255), nullable=True),
        sa.Column("ip", sa.String(length=128), nullable=True),
        sa.Column("user_agent", sa.String(length=1024), nullable=True),
        sa.Column("success", sa.Boolean(), nullable=False, server_default=sa.text("true")),
        sa.Column(
            "details",
            postgresql.JSONB(astext_type=sa.Text()),
            nullable=False,
            server_default=sa.text("'{}'::jsonb"),
        ),
    )
    op.create_index("ix_audit_logs_ts_utc", "audit_logs", ["ts_utc"], unique=False)


def downgrade() -> None:
    op.drop_index("ix_audit_logs_ts_utc", table_name="audit_logs")
    op.drop_table("audit_logs")

    op.execute("DROP TRIGGER IF EXISTS registrations_guard_immutable ON registrations")
    op.execute("DROP TRIGGER IF EXISTS registrations_assign_queue_number ON registrations")
    op.execute("DROP FUNCTION IF EXISTS registrations_guard_immutable()")
    op.execute("DROP FUNCTION IF EXISTS registrations_assign_queue_number()")
    op.drop_index("ix_registrations_created_at", table_name="registrations")
    op.drop_index("uq_registrations_active_identity_slot_shift", table_name="registrations")
    op.drop_table("registrations")

    bind = op.get_bind()
    audit_actor_type.drop(bind, checkfirst=True)
    registration_status.drop(bind, checkfirst=True)
    registration_time_slot.drop(bind, checkfirst=True)
    registration_job_type.drop(bind, checkfirst=True)
    registration_truck_type.drop(bind, checkfirst=True)
