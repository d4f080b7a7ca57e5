import logging
from datetime import datetime, timezone
from typing import Literal

from fastapi import APIRouter, Depends, Query, Request, status
from sqlalchemy.orm import Session

from warehouse_queue.audit import log_request_audit
from warehouse_queue.db import get_db
from warehouse_queue.errors import ApiError, RegistrationValidationError
from warehouse_queue.models import JOB_TYPE_LABELS, AuditActorType, JobType, TimeSlot
from warehouse_queue.schemas import (
    GeofenceCheckResponse,
    JobOption,
    LocationFixPayload,
    LocationReading,
    QueueConfigResponse,
    QueueListResponse,
    RegistrationRead,
    RegistrationSubmitRequest,
    RegistrationSubmitResponse,
    ShiftWindowRead,
)
from warehouse_queue.security import optional_bearer_token
from warehouse_queue.services.geofence import configured_area, evaluate
from warehouse_queue.services.line_identity import LineProfile, fetch_line_profile
from warehouse_queue.services.registrations import (
    RegistrationRequest,
    list_registrations,
    submit_registration,
)
from warehouse_queue.services.shift_window import current_window
from warehouse_queue.settings import get_carriers, get_settings

router = APIRouter(tags=["queue"])
logger = logging.getLogger("app.registration")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@router.get("/api/queue/config", response_model=QueueConfigResponse)
def queue_config() -> QueueConfigResponse:
    settings = get_settings()
    return QueueConfigResponse(
        liff_id=settings.liff_id,
        geofence=configured_area(settings).to_dict(),
        max_accuracy_m=settings.geofence_max_accuracy_m,
        location_timeout_ms=settings.location_timeout_seconds * 1000,
        time_slots=list(TimeSlot),
        job_options=[
            JobOption(
                value=job_type,
                label=JOB_TYPE_LABELS[job_type],
                truck_type=job_type.truck_type,
                requires_trip_number=job_type.requires_trip_number,
            )
            for job_type in JobType
        ],
        carriers=get_carriers(),
        shift_window=ShiftWindowRead(**current_window(_utcnow()).to_dict()),
    )


@router.get("/api/queue/shift-window", response_model=ShiftWindowRead)
def shift_window() -> ShiftWindowRead:
    return ShiftWindowRead(**current_window(_utcnow()).to_dict())


@router.post("/api/queue/geofence/check", response_model=GeofenceCheckResponse)
def geofence_check(payload: LocationFixPayload) -> GeofenceCheckResponse:
    result = evaluate(payload.lat, payload.lon, payload.accuracy_m)
    return GeofenceCheckResponse(
        within_area=result.within_area,
        distance_m=result.distance_m,
        message=result.message,
        location=LocationReading(**result.reading(payload.lat, payload.lon)),
    )


@router.post(
    "/api/queue/registrations",
    response_model=RegistrationSubmitResponse,
    status_code=status.HTTP_201_CREATED,
)
def submit(
    payload: RegistrationSubmitRequest,
    request: Request,
    db: Session = Depends(get_db),
    access_token: str | None = Depends(optional_bearer_token),
) -> RegistrationSubmitResponse:
    request.state.actor = "driver"

    def _resolve_identity() -> LineProfile:
        profile = fetch_line_profile(access_token)
        request.state.actor_id = profile.user_id
        return profile

    try:
        outcome = submit_registration(
            db,
            RegistrationRequest.from_payload(payload),
            now_utc=_utcnow(),
            resolve_identity=_resolve_identity,
        )
    except RegistrationValidationError as exc:
        request.state.flags = {"code": exc.code}
        logger.info("registration_invalid", extra={"code": exc.code})
        raise
    except ApiError as exc:
        request.state.flags = {"code": exc.code}
        logger.warning(
            "registration_rejected",
            extra={"code": exc.code, "status_code": exc.status_code, "details": exc.details or {}},
        )
        log_request_audit(
            db,
            request,
            actor_type=AuditActorType.DRIVER,
            actor_id=str(getattr(request.state, "actor_id", "unknown")),
            action="REGISTRATION_REJECTED",
            success=False,
            entity_type="registration",
            details={"code": exc.code, "time_slot": payload.time_slot, "details": exc.details or {}},
        )
        raise

    registration = outcome.registration
    request.state.registration_id = registration.id
    log_request_audit(
        db,
        request,
        actor_type=AuditActorType.DRIVER,
        actor_id=outcome.identity.user_id,
        action="REGISTRATION_CREATED",
        success=True,
        entity_type="registration",
        entity_id=str(registration.id),
        details={
            "queue_number": registration.queue_number,
            "time_slot": registration.time_slot.value,
            "distance_m": outcome.geofence.distance_m,
        },
    )
    return RegistrationSubmitResponse(
        ok=True,
        registration_id=registration.id,
        queue_number=registration.queue_number,
        time_slot=registration.time_slot,
        message=outcome.message,
        shift_window=ShiftWindowRead(**outcome.window.to_dict()),
        location=LocationReading(**outcome.geofence.reading(outcome.location.lat, outcome.location.lon)),
    )


@router.get("/api/queue/registrations", response_model=QueueListResponse)
def list_queue(
    scope: Literal["mine", "all"] = Query(default="mine"),
    db: Session = Depends(get_db),
    access_token: str | None = Depends(optional_bearer_token),
) -> QueueListResponse:
    window = current_window(_utcnow())
    identity: str | None = None
    if scope == "mine":
        identity = fetch_line_profile(access_token).user_id

    items = list_registrations(db, window=window, identity=identity)
    return QueueListResponse(
        scope=scope,
        shift_window=ShiftWindowRead(**window.to_dict()),
        items=[RegistrationRead.model_validate(item) for item in items],
    )
