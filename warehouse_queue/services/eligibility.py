from __future__ import annotations

from dataclasses import dataclass

from sqlalchemy import select
from sqlalchemy.orm import Session

from warehouse_queue.models import Registration, RegistrationStatus, TimeSlot
from warehouse_queue.services.shift_window import ShiftWindow


@dataclass(frozen=True, slots=True)
class DuplicateCheck:
    duplicate: bool
    existing_queue_number: str | None = None
    existing_id: int | None = None


def check_duplicate(
    db: Session,
    *,
    identity: str,
    time_slot: TimeSlot | None,
    window: ShiftWindow,
) -> DuplicateCheck:
    stmt = (
        select(Registration)
        .where(
            Registration.line_user_id == identity,
            Registration.status != RegistrationStatus.CANCELLED,
            Registration.created_at >= window.start_utc,
            Registration.created_at < window.end_utc,
        )
        .order_by(Registration.created_at.desc(), Registration.id.desc())
        .limit(1)
    )
    if time_slot is not None:
        stmt = stmt.where(Registration.time_slot == time_slot)

    existing = db.scalar(stmt)
    if existing is None:
        return DuplicateCheck(duplicate=False)
    return DuplicateCheck(
        duplicate=True,
        existing_queue_number=existing.queue_number,
        existing_id=existing.id,
    )
