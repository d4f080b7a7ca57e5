from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from typing import Any, Callable

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from warehouse_queue.errors import (
    DuplicateRegistration,
    GeofenceRejection,
    LocationError,
    RegistrationValidationError,
    StorageError,
)
from warehouse_queue.models import (
    ACTIVE_REGISTRATION_INDEX,
    TIME_SLOT_LABELS,
    JobType,
    Registration,
    RegistrationStatus,
    TimeSlot,
)
from warehouse_queue.schemas import RegistrationSubmitRequest
from warehouse_queue.services.eligibility import check_duplicate
from warehouse_queue.services.geofence import GeofenceArea, GeofenceResult, evaluate
from warehouse_queue.services.line_identity import LineProfile
from warehouse_queue.services.shift_window import ShiftWindow, current_window, normalize_utc
from warehouse_queue.settings import get_carriers, get_settings

logger = logging.getLogger("app.registration")

GENERIC_LOCATION_MESSAGE = "ไม่สามารถตรวจสอบตำแหน่งได้ กรุณาเปิดใช้งาน GPS และอนุญาตการเข้าถึงตำแหน่ง"
GENERIC_STORAGE_MESSAGE = "เกิดข้อผิดพลาดในการลงทะเบียน กรุณาลองใหม่อีกครั้ง"

_LOCATION_ERROR_CODES = {
    "PERMISSION_DENIED": "LOCATION_PERMISSION_DENIED",
    "POSITION_UNAVAILABLE": "LOCATION_UNAVAILABLE",
    "TIMEOUT": "LOCATION_TIMEOUT",
    "UNSUPPORTED": "LOCATION_UNSUPPORTED",
}


class SubmissionStage(str, enum.Enum):
    IDLE = "IDLE"
    LOCATION_ACQUIRED = "LOCATION_ACQUIRED"
    GEOFENCE_CHECKED = "GEOFENCE_CHECKED"
    IDENTITY_VERIFIED = "IDENTITY_VERIFIED"
    ELIGIBILITY_CHECKED = "ELIGIBILITY_CHECKED"
    PERSISTED = "PERSISTED"


@dataclass(frozen=True, slots=True)
class LocationFix:
    lat: float
    lon: float
    accuracy_m: float | None = None
    captured_at: datetime | None = None


@dataclass(frozen=True, slots=True)
class LocationFailure:
    code: str
    message: str | None = None


@dataclass(frozen=True, slots=True)
class RegistrationRequest:
    driver_name: str
    vehicle_plate: str
    carrier: str
    time_slot: TimeSlot | None
    heavy_truck_job: JobType | None = None
    light_truck_job: JobType | None = None
    trip_number: str | None = None
    location: LocationFix | None = None
    location_error: LocationFailure | None = None

    @classmethod
    def from_payload(cls, payload: RegistrationSubmitRequest) -> RegistrationRequest:
        location = None
        if payload.location is not None:
            location = LocationFix(
                lat=payload.location.lat,
                lon=payload.location.lon,
                accuracy_m=payload.location.accuracy_m,
                captured_at=payload.location.captured_at,
            )
        location_error = None
        if payload.location_error is not None:
            location_error = LocationFailure(
                code=payload.location_error.code,
                message=payload.location_error.message,
            )
        return cls(
            driver_name=payload.driver_name.strip(),
            vehicle_plate=payload.vehicle_plate.strip(),
            carrier=payload.carrier.strip(),
            time_slot=payload.time_slot,
            heavy_truck_job=JobType(payload.heavy_truck_job) if payload.heavy_truck_job else None,
            light_truck_job=JobType(payload.light_truck_job) if payload.light_truck_job else None,
            trip_number=(payload.trip_number or "").strip() or None,
            location=location,
            location_error=location_error,
        )


@dataclass(frozen=True, slots=True)
class SubmissionState:
    request: RegistrationRequest
    now_utc: datetime
    stage: SubmissionStage = SubmissionStage.IDLE
    job_type: JobType | None = None
    geofence: GeofenceResult | None = None
    identity: LineProfile | None = None
    window: ShiftWindow | None = None
    registration: Registration | None = None

    def advance(self, stage: SubmissionStage, **changes: Any) -> SubmissionState:
        return replace(self, stage=stage, **changes)


@dataclass(frozen=True, slots=True)
class SubmissionOutcome:
    registration: Registration
    window: ShiftWindow
    geofence: GeofenceResult
    identity: LineProfile
    location: LocationFix
    message: str


def slot_label(time_slot: TimeSlot) -> str:
    return TIME_SLOT_LABELS.get(time_slot, time_slot.value)


def validate_request(request: RegistrationRequest, *, carriers: list[str] | None = None) -> JobType:
    if request.time_slot is None:
        raise RegistrationValidationError("TIME_SLOT_REQUIRED", "กรุณาเลือกช่วงเวลา (เช้า หรือ บ่าย)")

    if request.heavy_truck_job is not None and request.light_truck_job is not None:
        raise RegistrationValidationError(
            "JOB_TYPE_CONFLICT",
            "เลือกได้เพียงประเภทงานเดียว (รถหนัก หรือ รถเบา)",
        )
    job_type = request.heavy_truck_job or request.light_truck_job
    if job_type is None:
        raise RegistrationValidationError("JOB_TYPE_REQUIRED", "กรุณาเลือกประเภทงาน (รถหนัก หรือ รถเบา)")

    if job_type.requires_trip_number and not request.trip_number:
        raise RegistrationValidationError("TRIP_NUMBER_REQUIRED", "กรุณาระบุเที่ยวรับงาน")

    for value, label in (
        (request.driver_name, "ชื่อ-นามสกุล"),
        (request.vehicle_plate, "ทะเบียนรถ"),
        (request.carrier, "แหล่งพาหนะ"),
    ):
        if not value:
            raise RegistrationValidationError("FIELD_REQUIRED", f"กรุณากรอก{label}")

    if carriers and request.carrier not in carriers:
        raise RegistrationValidationError("UNKNOWN_CARRIER", "แหล่งพาหนะไม่ถูกต้อง")

    return job_type


def acquire_location(state: SubmissionState, *, max_age_seconds: int | None = None) -> SubmissionState:
    request = state.request
    if request.location_error is not None:
        code = _LOCATION_ERROR_CODES.get(request.location_error.code, "LOCATION_UNAVAILABLE")
        message = (request.location_error.message or "").strip() or GENERIC_LOCATION_MESSAGE
        raise LocationError(code, message)

    fix = request.location
    if fix is None:
        raise LocationError("LOCATION_REQUIRED", GENERIC_LOCATION_MESSAGE)

    if max_age_seconds is None:
        max_age_seconds = get_settings().location_max_age_seconds
    if fix.captured_at is not None and max_age_seconds > 0:
        age = normalize_utc(state.now_utc) - normalize_utc(fix.captured_at)
        if age > timedelta(seconds=max_age_seconds):
            raise LocationError("STALE_FIX", "ตำแหน่งที่ได้รับเก่าเกินไป กรุณาลองใหม่อีกครั้ง")

    return state.advance(SubmissionStage.LOCATION_ACQUIRED)


def check_geofence(
    state: SubmissionState,
    *,
    area: GeofenceArea | None = None,
    max_accuracy_m: float | None = None,
) -> SubmissionState:
    fix = state.request.location
    assert fix is not None
    result = evaluate(fix.lat, fix.lon, fix.accuracy_m, area=area, max_accuracy_m=max_accuracy_m)
    if not result.within_area:
        code = "LOW_ACCURACY" if result.reason == "LOW_ACCURACY" else "OUTSIDE_AREA"
        raise GeofenceRejection(code, result.message, result.reading(fix.lat, fix.lon))
    return state.advance(SubmissionStage.GEOFENCE_CHECKED, geofence=result)


def verify_identity(state: SubmissionState, resolve_identity: Callable[[], LineProfile]) -> SubmissionState:
    profile = resolve_identity()
    return state.advance(SubmissionStage.IDENTITY_VERIFIED, identity=profile)


def _duplicate_message(time_slot: TimeSlot, queue_number: str | None) -> str:
    return (
        f"คุณได้ลงทะเบียนคิวช่วง{slot_label(time_slot)}วันนี้แล้ว ({queue_number or '-'}) "
        "ไม่สามารถลงทะเบียนซ้ำได้"
    )


def check_eligibility(db: Session, state: SubmissionState) -> SubmissionState:
    assert state.identity is not None
    time_slot = state.request.time_slot
    assert time_slot is not None
    window = current_window(state.now_utc)
    result = check_duplicate(db, identity=state.identity.user_id, time_slot=time_slot, window=window)
    if result.duplicate:
        raise DuplicateRegistration(_duplicate_message(time_slot, result.existing_queue_number), result.existing_queue_number)
    return state.advance(SubmissionStage.ELIGIBILITY_CHECKED, window=window)


def _storage_diagnostics(exc: SQLAlchemyError) -> dict[str, Any]:
    origin = getattr(exc, "orig", None) or exc
    diag = getattr(origin, "diag", None)
    diagnostics: dict[str, Any] = {"message": str(getattr(diag, "message_primary", None) or origin).strip()}
    detail = getattr(diag, "message_detail", None)
    if detail:
        diagnostics["details"] = detail
    hint = getattr(diag, "message_hint", None)
    if hint:
        diagnostics["hint"] = hint
    code = getattr(origin, "sqlstate", None) or getattr(exc, "code", None)
    if code:
        diagnostics["code"] = code
    return diagnostics


def _storage_message(diagnostics: dict[str, Any]) -> str:
    lines = [f"Database Error: {diagnostics.get('message') or GENERIC_STORAGE_MESSAGE}"]
    if diagnostics.get("details"):
        lines.append(f"Details: {diagnostics['details']}")
    if diagnostics.get("hint"):
        lines.append(f"Hint: {diagnostics['hint']}")
    if diagnostics.get("code"):
        lines.append(f"Code: {diagnostics['code']}")
    return "\n".join(lines)


def _is_active_slot_violation(exc: IntegrityError) -> bool:
    origin = getattr(exc, "orig", None)
    diag = getattr(origin, "diag", None)
    constraint_name = getattr(diag, "constraint_name", None)
    if constraint_name:
        return constraint_name == ACTIVE_REGISTRATION_INDEX
    return ACTIVE_REGISTRATION_INDEX in str(origin or exc)


def persist_registration(db: Session, state: SubmissionState) -> SubmissionState:
    request = state.request
    fix = request.location
    assert state.identity is not None and state.window is not None
    assert state.job_type is not None and request.time_slot is not None and fix is not None

    registration = Registration(
        line_user_id=state.identity.user_id,
        driver_name=request.driver_name,
        vehicle_plate=request.vehicle_plate,
        carrier=request.carrier,
        truck_type=state.job_type.truck_type,
        job_type=state.job_type,
        trip_number=request.trip_number if state.job_type.requires_trip_number else None,
        time_slot=request.time_slot,
        status=RegistrationStatus.PENDING,
        shift_start_utc=state.window.start_utc,
        check_in_lat=fix.lat,
        check_in_lon=fix.lon,
        check_in_accuracy_m=fix.accuracy_m,
        created_at=normalize_utc(state.now_utc),
    )
    db.add(registration)
    try:
        db.flush()
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        if _is_active_slot_violation(exc):
            # Lost the race against a concurrent submission for the same slot.
            existing = check_duplicate(
                db,
                identity=state.identity.user_id,
                time_slot=request.time_slot,
                window=state.window,
            )
            raise DuplicateRegistration(
                _duplicate_message(request.time_slot, existing.existing_queue_number),
                existing.existing_queue_number,
            ) from exc
        diagnostics = _storage_diagnostics(exc)
        logger.error("registration_persist_failed", extra={"diagnostics": diagnostics})
        raise StorageError(_storage_message(diagnostics), diagnostics) from exc
    except SQLAlchemyError as exc:
        db.rollback()
        diagnostics = _storage_diagnostics(exc)
        logger.error("registration_persist_failed", extra={"diagnostics": diagnostics})
        raise StorageError(_storage_message(diagnostics), diagnostics) from exc

    db.refresh(registration)
    return state.advance(SubmissionStage.PERSISTED, registration=registration)


def submit_registration(
    db: Session,
    request: RegistrationRequest,
    *,
    now_utc: datetime,
    resolve_identity: Callable[[], LineProfile],
    area: GeofenceArea | None = None,
    max_accuracy_m: float | None = None,
) -> SubmissionOutcome:
    """Run one registration attempt through every gate, in order.

    Validation runs before any I/O. The location fix is checked against the
    geofence before the LINE identity is resolved, and nothing is written
    unless every earlier stage passed. Each failure raises the matching
    ``ApiError`` subclass; nothing is retried.
    """
    job_type = validate_request(request, carriers=get_carriers())
    state = SubmissionState(request=request, now_utc=normalize_utc(now_utc), job_type=job_type)

    state = acquire_location(state)
    state = check_geofence(state, area=area, max_accuracy_m=max_accuracy_m)
    state = verify_identity(state, resolve_identity)
    state = check_eligibility(db, state)
    state = persist_registration(db, state)

    registration = state.registration
    assert registration is not None and state.window is not None
    assert state.geofence is not None and state.identity is not None and request.location is not None
    logger.info(
        "registration_created",
        extra={
            "registration_id": registration.id,
            "queue_number": registration.queue_number,
            "time_slot": registration.time_slot.value,
            "shift_start_utc": state.window.start_utc.isoformat(),
            "distance_m": state.geofence.distance_m,
        },
    )
    return SubmissionOutcome(
        registration=registration,
        window=state.window,
        geofence=state.geofence,
        identity=state.identity,
        location=request.location,
        message=(
            f"ลงทะเบียนสำเร็จ! หมายเลขคิวของคุณคือ {registration.queue_number} "
            f"(ช่วง{slot_label(registration.time_slot)})"
        ),
    )


def list_registrations(
    db: Session,
    *,
    window: ShiftWindow,
    identity: str | None = None,
    time_slot: TimeSlot | None = None,
    status: RegistrationStatus | None = None,
    newest_first: bool = True,
) -> list[Registration]:
    stmt = select(Registration).where(
        Registration.created_at >= window.start_utc,
        Registration.created_at < window.end_utc,
    )
    if identity is not None:
        stmt = stmt.where(Registration.line_user_id == identity)
    if time_slot is not None:
        stmt = stmt.where(Registration.time_slot == time_slot)
    if status is not None:
        stmt = stmt.where(Registration.status == status)
    if newest_first:
        stmt = stmt.order_by(Registration.created_at.desc(), Registration.id.desc())
    else:
        stmt = stmt.order_by(Registration.created_at.asc(), Registration.id.asc())
    return list(db.scalars(stmt).all())
