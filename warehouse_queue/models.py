from __future__ import annotations

import enum
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import (
    Boolean,
    DateTime,
    Enum,
    FetchedValue,
    Float,
    Index,
    Integer,
    String,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from warehouse_queue.db import Base

ACTIVE_REGISTRATION_INDEX = "uq_registrations_active_identity_slot_shift"


def _enum_values(enum_cls: type[enum.Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class TimeSlot(str, enum.Enum):
    MORNING = "morning"
    AFTERNOON = "afternoon"


class TruckType(str, enum.Enum):
    HEAVY = "heavy"
    LIGHT = "light"


class JobType(str, enum.Enum):
    FG = "FG"
    RETURN = "RETURN"
    READY = "READY"
    REPAIR = "REPAIR"

    @property
    def truck_type(self) -> TruckType:
        if self in (JobType.FG, JobType.RETURN):
            return TruckType.HEAVY
        return TruckType.LIGHT

    @property
    def requires_trip_number(self) -> bool:
        return self == JobType.FG


HEAVY_JOB_TYPES: tuple[JobType, ...] = (JobType.FG, JobType.RETURN)
LIGHT_JOB_TYPES: tuple[JobType, ...] = (JobType.READY, JobType.REPAIR)

JOB_TYPE_LABELS: dict[JobType, str] = {
    JobType.FG: "งาน FG",
    JobType.RETURN: "งาน Return",
    JobType.READY: "พร้อมรับงาน",
    JobType.REPAIR: "ซ่อมรถ",
}

TIME_SLOT_LABELS: dict[TimeSlot, str] = {
    TimeSlot.MORNING: "เช้า",
    TimeSlot.AFTERNOON: "บ่าย",
}


class RegistrationStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (RegistrationStatus.COMPLETED, RegistrationStatus.CANCELLED)


class AuditActorType(str, enum.Enum):
    DRIVER = "DRIVER"
    STAFF = "STAFF"
    SYSTEM = "SYSTEM"


class Registration(Base):
    __tablename__ = "registrations"
    __table_args__ = (
        # At most one live registration per identity, slot and shift.
        Index(
            ACTIVE_REGISTRATION_INDEX,
            "line_user_id",
            "time_slot",
            "shift_start_utc",
            unique=True,
            postgresql_where=text("status <> 'cancelled'"),
        ),
        Index("ix_registrations_created_at", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    # Filled by the registrations_assign_queue_number trigger.
    queue_number: Mapped[str] = mapped_column(
        String(32),
        nullable=False,
        server_default=FetchedValue(),
    )
    line_user_id: Mapped[str] = mapped_column(String(64), nullable=False)
    driver_name: Mapped[str] = mapped_column(String(255), nullable=False)
    vehicle_plate: Mapped[str] = mapped_column(String(64), nullable=False)
    carrier: Mapped[str] = mapped_column(String(255), nullable=False)
    truck_type: Mapped[TruckType] = mapped_column(
        Enum(TruckType, name="registration_truck_type", values_callable=_enum_values),
        nullable=False,
    )
    job_type: Mapped[JobType] = mapped_column(
        Enum(JobType, name="registration_job_type", values_callable=_enum_values),
        nullable=False,
    )
    trip_number: Mapped[str | None] = mapped_column(String(64), nullable=True)
    time_slot: Mapped[TimeSlot] = mapped_column(
        Enum(TimeSlot, name="registration_time_slot", values_callable=_enum_values),
        nullable=False,
    )
    status: Mapped[RegistrationStatus] = mapped_column(
        Enum(RegistrationStatus, name="registration_status", values_callable=_enum_values),
        nullable=False,
        default=RegistrationStatus.PENDING,
        server_default=text("'pending'"),
    )
    shift_start_utc: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    check_in_lat: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_lon: Mapped[float | None] = mapped_column(Float, nullable=True)
    check_in_accuracy_m: Mapped[float | None] = mapped_column(Float, nullable=True)
    notes: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        onupdate=lambda: datetime.now(timezone.utc),
    )


class AuditLog(Base):
    __tablename__ = "audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True)
    ts_utc: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=text("CURRENT_TIMESTAMP"),
        index=True,
    )
    actor_type: Mapped[AuditActorType] = mapped_column(
        Enum(AuditActorType, name="audit_actor_type"),
        nullable=False,
    )
    actor_id: Mapped[str] = mapped_column(String(255), nullable=False)
    action: Mapped[str] = mapped_column(String(255), nullable=False)
    entity_type: Mapped[str | None] = mapped_column(String(255), nullable=True)
    entity_id: Mapped[str | None] = mapped_column(String(255), nullable=True)
    ip: Mapped[str | None] = mapped_column(String(128), nullable=True)
    user_agent: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    success: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True, server_default=text("true"))
    details: Mapped[dict[str, Any]] = mapped_column(
        JSONB,
        nullable=False,
        default=dict,
        server_default=text("'{}'::jsonb"),
    )
