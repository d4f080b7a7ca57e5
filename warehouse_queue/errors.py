from __future__ import annotations

from typing import Any

from fastapi import Request
from fastapi.responses import JSONResponse


class ApiError(Exception):
    def __init__(
        self,
        status_code: int,
        code: str,
        message: str,
        details: dict[str, Any] | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.code = code
        self.message = message
        self.details = details


class RegistrationValidationError(ApiError):
    def __init__(self, code: str, message: str):
        super().__init__(status_code=422, code=code, message=message)


class LocationError(ApiError):
    """The device could not produce a usable position fix."""

    def __init__(self, code: str, message: str):
        super().__init__(status_code=400, code=code, message=message)


class GeofenceRejection(ApiError):
    """Position is known but outside the site, or too imprecise to trust."""

    def __init__(self, code: str, message: str, reading: dict[str, Any]):
        super().__init__(status_code=403, code=code, message=message, details={"location": reading})


class AuthenticationRequired(ApiError):
    def __init__(self, message: str = "กรุณาเข้าสู่ระบบผ่าน LINE ก่อนลงทะเบียน"):
        super().__init__(status_code=401, code="LINE_LOGIN_REQUIRED", message=message)


class DuplicateRegistration(ApiError):
    def __init__(self, message: str, existing_queue_number: str | None):
        super().__init__(
            status_code=409,
            code="DUPLICATE_REGISTRATION",
            message=message,
            details={"existing_queue_number": existing_queue_number},
        )
        self.existing_queue_number = existing_queue_number


class StorageError(ApiError):
    def __init__(self, message: str, diagnostics: dict[str, Any] | None = None):
        super().__init__(status_code=500, code="STORAGE_ERROR", message=message, details=diagnostics)


def get_request_id(request: Request) -> str:
    request_id = getattr(request.state, "request_id", None)
    if request_id:
        return str(request_id)
    return "unknown"


def error_response(
    request: Request,
    *,
    status_code: int,
    code: str,
    message: str,
    details: dict[str, Any] | None = None,
) -> JSONResponse:
    error: dict[str, Any] = {
        "code": code,
        "message": message,
        "request_id": get_request_id(request),
    }
    if details:
        error["details"] = details
    return JSONResponse(status_code=status_code, content={"error": error})
