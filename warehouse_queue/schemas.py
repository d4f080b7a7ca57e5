from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field

from warehouse_queue.models import (
    JobType,
    RegistrationStatus,
    TimeSlot,
    TruckType,
)

HeavyJobLiteral = Literal["FG", "RETURN"]
LightJobLiteral = Literal["READY", "REPAIR"]
LocationErrorCode = Literal["PERMISSION_DENIED", "POSITION_UNAVAILABLE", "TIMEOUT", "UNSUPPORTED"]


class LocationFixPayload(BaseModel):
    lat: float = Field(ge=-90, le=90)
    lon: float = Field(ge=-180, le=180)
    accuracy_m: float | None = Field(default=None, ge=0)
    captured_at: datetime | None = None


class LocationErrorPayload(BaseModel):
    code: LocationErrorCode
    message: str | None = Field(default=None, max_length=500)


class RegistrationSubmitRequest(BaseModel):
    driver_name: str = Field(default="", max_length=255)
    vehicle_plate: str = Field(default="", max_length=64)
    carrier: str = Field(default="", max_length=255)
    time_slot: TimeSlot | None = None
    heavy_truck_job: HeavyJobLiteral | None = None
    light_truck_job: LightJobLiteral | None = None
    trip_number: str | None = Field(default=None, max_length=64)
    location: LocationFixPayload | None = None
    location_error: LocationErrorPayload | None = None


class ShiftWindowRead(BaseModel):
    policy: Literal["rolling", "calendar_day"]
    shift_date: date
    start_utc: datetime
    end_utc: datetime
    start_local: datetime
    end_local: datetime
    timezone: str


class LocationReading(BaseModel):
    lat: float
    lon: float
    accuracy_m: float | None = None
    distance_m: float
    within_area: bool
    reason: Literal["INSIDE", "OUTSIDE", "LOW_ACCURACY"]


class GeofenceCheckResponse(BaseModel):
    within_area: bool
    distance_m: float
    message: str
    location: LocationReading


class RegistrationRead(BaseModel):
    id: int
    queue_number: str
    driver_name: str
    vehicle_plate: str
    carrier: str
    truck_type: TruckType
    job_type: JobType
    trip_number: str | None = None
    time_slot: TimeSlot
    status: RegistrationStatus
    notes: str | None = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RegistrationSubmitResponse(BaseModel):
    ok: bool
    registration_id: int
    queue_number: str
    time_slot: TimeSlot
    message: str
    shift_window: ShiftWindowRead
    location: LocationReading


class QueueListResponse(BaseModel):
    scope: Literal["mine", "all"]
    shift_window: ShiftWindowRead
    items: list[RegistrationRead]


class StaffQueueListResponse(BaseModel):
    shift_window: ShiftWindowRead
    total: int
    counts_by_slot: dict[str, int]
    counts_by_status: dict[str, int]
    items: list[RegistrationRead]


class JobOption(BaseModel):
    value: JobType
    label: str
    truck_type: TruckType
    requires_trip_number: bool


class QueueConfigResponse(BaseModel):
    liff_id: str
    geofence: dict[str, Any]
    max_accuracy_m: float
    location_timeout_ms: int
    location_maximum_age_ms: int = 0
    enable_high_accuracy: bool = True
    time_slots: list[TimeSlot]
    job_options: list[JobOption]
    carriers: list[str]
    shift_window: ShiftWindowRead


class StaffLoginRequest(BaseModel):
    username: str = Field(min_length=1, max_length=255)
    password: str = Field(min_length=1, max_length=255)


class StaffAuthResponse(BaseModel):
    access_token: str
    token_type: Literal["bearer"] = "bearer"
    expires_in: int


class CleanupResponse(BaseModel):
    success: bool
    message: str
    deleted_count: int
    cutoff_utc: datetime
    timestamp: datetime
