from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime

from sqlalchemy import delete
from sqlalchemy.orm import Session

from warehouse_queue.models import Registration
from warehouse_queue.services.shift_window import current_window, normalize_utc

logger = logging.getLogger("app.cleanup")


@dataclass(frozen=True, slots=True)
class CleanupResult:
    deleted_count: int
    cutoff_utc: datetime


def clear_past_registrations(db: Session, *, now_utc: datetime) -> CleanupResult:
    """Delete registrations created before the current shift window."""
    cutoff_utc = current_window(normalize_utc(now_utc)).start_utc
    result = db.execute(
        delete(Registration)
        .where(Registration.created_at < cutoff_utc)
        .execution_options(synchronize_session=False)
    )
    db.commit()

    deleted_count = int(result.rowcount or 0)
    logger.info(
        "registrations_cleared",
        extra={"deleted_count": deleted_count, "cutoff_utc": cutoff_utc.isoformat()},
    )
    return CleanupResult(deleted_count=deleted_count, cutoff_utc=cutoff_utc)
