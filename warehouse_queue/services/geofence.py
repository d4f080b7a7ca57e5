from __future__ import annotations

from dataclasses import dataclass
from math import asin, cos, radians, sin, sqrt
from typing import Any, Literal, Protocol

from warehouse_queue.settings import Settings, get_settings

GeofenceReason = Literal["INSIDE", "OUTSIDE", "LOW_ACCURACY"]


def distance_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    earth_radius_m = 6371000.0

    lat1_rad = radians(lat1)
    lon1_rad = radians(lon1)
    lat2_rad = radians(lat2)
    lon2_rad = radians(lon2)

    delta_lat = lat2_rad - lat1_rad
    delta_lon = lon2_rad - lon1_rad

    a = sin(delta_lat / 2) ** 2 + cos(lat1_rad) * cos(lat2_rad) * sin(delta_lon / 2) ** 2
    c = 2 * asin(sqrt(a))
    return earth_radius_m * c


class GeofenceArea(Protocol):
    @property
    def center(self) -> tuple[float, float]: ...

    def contains(self, lat: float, lon: float) -> bool: ...

    def to_dict(self) -> dict[str, Any]: ...


@dataclass(frozen=True, slots=True)
class RectangleArea:
    """Axis-aligned lat/lon box. Bounds are inclusive.

    Only valid for a small site away from the poles and the antimeridian.
    """

    south: float
    west: float
    north: float
    east: float

    def __post_init__(self) -> None:
        if self.south > self.north or self.west > self.east:
            raise ValueError("Rectangle bounds must satisfy south <= north and west <= east.")

    @classmethod
    def from_corners(cls, corner_a: tuple[float, float], corner_b: tuple[float, float]) -> RectangleArea:
        return cls(
            south=min(corner_a[0], corner_b[0]),
            west=min(corner_a[1], corner_b[1]),
            north=max(corner_a[0], corner_b[0]),
            east=max(corner_a[1], corner_b[1]),
        )

    @property
    def center(self) -> tuple[float, float]:
        return (self.south + self.north) / 2, (self.west + self.east) / 2

    def contains(self, lat: float, lon: float) -> bool:
        return self.south <= lat <= self.north and self.west <= lon <= self.east

    def to_dict(self) -> dict[str, Any]:
        return {
            "shape": "rectangle",
            "south": self.south,
            "west": self.west,
            "north": self.north,
            "east": self.east,
        }


@dataclass(frozen=True, slots=True)
class CircleArea:
    center_lat: float
    center_lon: float
    radius_m: float

    @property
    def center(self) -> tuple[float, float]:
        return self.center_lat, self.center_lon

    def contains(self, lat: float, lon: float) -> bool:
        return distance_m(self.center_lat, self.center_lon, lat, lon) <= self.radius_m

    def to_dict(self) -> dict[str, Any]:
        return {
            "shape": "circle",
            "center_lat": self.center_lat,
            "center_lon": self.center_lon,
            "radius_m": self.radius_m,
        }


@dataclass(frozen=True, slots=True)
class GeofenceResult:
    within_area: bool
    distance_m: float
    message: str
    reason: GeofenceReason
    accuracy_m: float | None = None

    def reading(self, lat: float, lon: float) -> dict[str, Any]:
        return {
            "lat": lat,
            "lon": lon,
            "accuracy_m": self.accuracy_m,
            "distance_m": self.distance_m,
            "within_area": self.within_area,
            "reason": self.reason,
        }


def configured_area(settings: Settings | None = None) -> GeofenceArea:
    settings = settings or get_settings()
    if settings.geofence_shape == "circle":
        rectangle = RectangleArea(
            south=settings.geofence_south,
            west=settings.geofence_west,
            north=settings.geofence_north,
            east=settings.geofence_east,
        )
        default_lat, default_lon = rectangle.center
        return CircleArea(
            center_lat=settings.geofence_center_lat if settings.geofence_center_lat is not None else default_lat,
            center_lon=settings.geofence_center_lon if settings.geofence_center_lon is not None else default_lon,
            radius_m=settings.geofence_radius_m,
        )
    return RectangleArea(
        south=settings.geofence_south,
        west=settings.geofence_west,
        north=settings.geofence_north,
        east=settings.geofence_east,
    )


def _validate_coordinate(lat: float, lon: float, accuracy_m: float | None) -> None:
    if not -90.0 <= lat <= 90.0:
        raise ValueError(f"Latitude out of range: {lat}")
    if not -180.0 <= lon <= 180.0:
        raise ValueError(f"Longitude out of range: {lon}")
    if accuracy_m is not None and accuracy_m < 0:
        raise ValueError(f"Accuracy must be non-negative: {accuracy_m}")


def evaluate(
    lat: float,
    lon: float,
    accuracy_m: float | None = None,
    *,
    area: GeofenceArea | None = None,
    max_accuracy_m: float | None = None,
) -> GeofenceResult:
    _validate_coordinate(lat, lon, accuracy_m)
    if area is None:
        area = configured_area()
    if max_accuracy_m is None:
        max_accuracy_m = get_settings().geofence_max_accuracy_m

    center_lat, center_lon = area.center
    # Informational only; membership below decides.
    distance_value = round(distance_m(center_lat, center_lon, lat, lon), 1)

    if accuracy_m is not None and accuracy_m > max_accuracy_m:
        return GeofenceResult(
            within_area=False,
            distance_m=distance_value,
            message=(
                f"สัญญาณ GPS ไม่แม่นยำพอ (±{round(accuracy_m)} เมตร เกิน {round(max_accuracy_m)} เมตร) "
                "กรุณาลองใหม่ในที่โล่ง"
            ),
            reason="LOW_ACCURACY",
            accuracy_m=accuracy_m,
        )

    if area.contains(lat, lon):
        return GeofenceResult(
            within_area=True,
            distance_m=distance_value,
            message=f"คุณอยู่ในพื้นที่โกดัง (ห่างจากจุดกลาง {distance_value} เมตร)",
            reason="INSIDE",
            accuracy_m=accuracy_m,
        )

    return GeofenceResult(
        within_area=False,
        distance_m=distance_value,
        message=(
            f"คุณอยู่นอกพื้นที่โกดัง (ห่างจากจุดกลาง {distance_value} เมตร) "
            "กรุณาเข้ามาในพื้นที่โกดังก่อนลงทะเบียน"
        ),
        reason="OUTSIDE",
        accuracy_m=accuracy_m,
    )
