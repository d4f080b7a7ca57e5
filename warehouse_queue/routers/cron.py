from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from warehouse_queue.audit import log_request_audit
from warehouse_queue.db import get_db
from warehouse_queue.models import AuditActorType
from warehouse_queue.schemas import CleanupResponse
from warehouse_queue.security import require_cron_secret
from warehouse_queue.services.cleanup import clear_past_registrations

router = APIRouter(tags=["cron"])


@router.api_route(
    "/api/cron/clear-queues",
    methods=["GET", "POST"],
    response_model=CleanupResponse,
    dependencies=[Depends(require_cron_secret)],
)
def clear_queues(request: Request, db: Session = Depends(get_db)) -> CleanupResponse:
    request.state.actor = "system"
    request.state.actor_id = "cron"
    now_utc = datetime.now(timezone.utc)
    result = clear_past_registrations(db, now_utc=now_utc)

    log_request_audit(
        db,
        request,
        actor_type=AuditActorType.SYSTEM,
        actor_id="cron",
        action="QUEUE_CLEANUP",
        success=True,
        entity_type="registration",
        details={"deleted_count": result.deleted_count, "cutoff_utc": result.cutoff_utc.isoformat()},
    )
    return CleanupResponse(
        success=True,
        message=f"Cleared {result.deleted_count} registrations created before {result.cutoff_utc.isoformat()}",
        deleted_count=result.deleted_count,
        cutoff_utc=result.cutoff_utc,
        timestamp=now_utc,
    )
