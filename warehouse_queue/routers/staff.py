from collections import Counter
from datetime import date, datetime, timezone

from fastapi import APIRouter, Depends, Query, Request, Response
from sqlalchemy.orm import Session

from warehouse_queue.audit import client_ip, log_request_audit
from warehouse_queue.db import get_db
from warehouse_queue.errors import ApiError
from warehouse_queue.models import AuditActorType, RegistrationStatus, TimeSlot
from warehouse_queue.schemas import (
    RegistrationRead,
    ShiftWindowRead,
    StaffAuthResponse,
    StaffLoginRequest,
    StaffQueueListResponse,
)
from warehouse_queue.security import (
    create_access_token,
    ensure_login_attempt_allowed,
    register_login_failure,
    register_login_success,
    require_staff,
    verify_staff_credentials,
)
from warehouse_queue.services.exports import build_queue_xlsx_bytes
from warehouse_queue.services.registrations import list_registrations
from warehouse_queue.services.shift_window import ShiftWindow, current_window, window_for_shift_date

router = APIRouter(tags=["staff"])

XLSX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.spreadsheetml.sheet"


def _window_for(shift_date: date | None) -> ShiftWindow:
    if shift_date is None:
        return current_window(datetime.now(timezone.utc))
    return window_for_shift_date(shift_date)


@router.post("/api/staff/auth/login", response_model=StaffAuthResponse)
def staff_login(
    payload: StaffLoginRequest,
    request: Request,
    db: Session = Depends(get_db),
) -> StaffAuthResponse:
    username = payload.username.strip()
    ip = client_ip(request)
    request.state.actor = "system"
    request.state.actor_id = "system"

    if ip:
        try:
            ensure_login_attempt_allowed(ip)
        except ApiError:
            log_request_audit(
                db,
                request,
                actor_type=AuditActorType.SYSTEM,
                actor_id=username,
                action="STAFF_LOGIN_FAIL",
                success=False,
                details={"reason": "TOO_MANY_ATTEMPTS"},
            )
            raise

    if not verify_staff_credentials(username, payload.password):
        if ip:
            register_login_failure(ip)
        log_request_audit(
            db,
            request,
            actor_type=AuditActorType.SYSTEM,
            actor_id=username,
            action="STAFF_LOGIN_FAIL",
            success=False,
            details={"reason": "INVALID_CREDENTIALS"},
        )
        raise ApiError(status_code=401, code="INVALID_CREDENTIALS", message="Invalid credentials.")

    token, expires_in = create_access_token(username=username)
    if ip:
        register_login_success(ip)
    request.state.actor = "staff"
    request.state.actor_id = username
    log_request_audit(
        db,
        request,
        actor_type=AuditActorType.STAFF,
        actor_id=username,
        action="STAFF_LOGIN_SUCCESS",
        success=True,
    )
    return StaffAuthResponse(access_token=token, expires_in=expires_in)


@router.get("/api/staff/registrations", response_model=StaffQueueListResponse)
def staff_registrations(
    shift_date: date | None = Query(default=None),
    time_slot: TimeSlot | None = Query(default=None),
    status: RegistrationStatus | None = Query(default=None),
    db: Session = Depends(get_db),
    _staff: dict = Depends(require_staff),
) -> StaffQueueListResponse:
    window = _window_for(shift_date)
    items = list_registrations(
        db,
        window=window,
        time_slot=time_slot,
        status=status,
        newest_first=False,
    )
    slot_counts = Counter(item.time_slot.value for item in items)
    status_counts = Counter(item.status.value for item in items)
    return StaffQueueListResponse(
        shift_window=ShiftWindowRead(**window.to_dict()),
        total=len(items),
        counts_by_slot={slot.value: slot_counts.get(slot.value, 0) for slot in TimeSlot},
        counts_by_status={item.value: status_counts.get(item.value, 0) for item in RegistrationStatus},
        items=[RegistrationRead.model_validate(item) for item in items],
    )


@router.get("/api/staff/exports/queue.xlsx")
def export_queue_xlsx(
    request: Request,
    shift_date: date | None = Query(default=None),
    db: Session = Depends(get_db),
    staff: dict = Depends(require_staff),
) -> Response:
    window = _window_for(shift_date)
    registrations = list_registrations(db, window=window, newest_first=False)
    payload = build_queue_xlsx_bytes(registrations, window)

    log_request_audit(
        db,
        request,
        actor_type=AuditActorType.STAFF,
        actor_id=str(staff.get("username") or "staff"),
        action="QUEUE_EXPORT_XLSX",
        success=True,
        entity_type="export",
        entity_id=window.shift_date.isoformat(),
        details={"shift_date": window.shift_date.isoformat(), "rows": len(registrations)},
    )

    return Response(
        content=payload,
        media_type=XLSX_MEDIA_TYPE,
        headers={
            "Content-Disposition": f'attachment; filename="queue-{window.shift_date.isoformat()}.xlsx"',
        },
    )
