from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from typing import Any
from urllib import error as urllib_error
from urllib import request as urllib_request
from urllib.parse import urlencode

from warehouse_queue.errors import ApiError, AuthenticationRequired
from warehouse_queue.settings import get_settings

logger = logging.getLogger("app.line")


@dataclass(frozen=True, slots=True)
class LineProfile:
    user_id: str
    display_name: str
    picture_url: str | None = None


def _get_json(url: str, *, headers: dict[str, str] | None = None) -> dict[str, Any]:
    settings = get_settings()
    request = urllib_request.Request(url=url, method="GET", headers={"Accept": "application/json"})
    for key, value in (headers or {}).items():
        request.add_header(key, value)

    try:
        with urllib_request.urlopen(request, timeout=max(1, settings.line_api_timeout_seconds)) as response:
            body = response.read().decode("utf-8", errors="replace")
    except urllib_error.HTTPError as exc:
        error_body = exc.read(512).decode("utf-8", errors="ignore")
        if exc.code in (400, 401, 403):
            logger.info("line_token_rejected", extra={"status_code": exc.code, "body": error_body})
            raise AuthenticationRequired() from exc
        logger.error("line_api_http_error", extra={"status_code": exc.code, "body": error_body})
        raise ApiError(
            status_code=502,
            code="IDENTITY_PROVIDER_UNAVAILABLE",
            message="LINE login service returned an error. Please try again.",
        ) from exc
    except (urllib_error.URLError, TimeoutError, OSError) as exc:
        logger.error("line_api_unreachable", extra={"error": str(exc)})
        raise ApiError(
            status_code=502,
            code="IDENTITY_PROVIDER_UNAVAILABLE",
            message="LINE login service is unreachable. Please try again.",
        ) from exc

    try:
        payload = json.loads(body)
    except ValueError as exc:
        raise ApiError(
            status_code=502,
            code="IDENTITY_PROVIDER_UNAVAILABLE",
            message="LINE login service returned an unreadable response.",
        ) from exc
    if not isinstance(payload, dict):
        raise ApiError(
            status_code=502,
            code="IDENTITY_PROVIDER_UNAVAILABLE",
            message="LINE login service returned an unreadable response.",
        )
    return payload


def verify_access_token(access_token: str) -> dict[str, Any]:
    settings = get_settings()
    base_url = settings.line_api_base_url.rstrip("/")
    payload = _get_json(f"{base_url}/oauth2/v2.1/verify?{urlencode({'access_token': access_token})}")

    channel_id = settings.line_channel_id.strip()
    if channel_id and str(payload.get("client_id") or "") != channel_id:
        logger.warning("line_token_wrong_channel", extra={"client_id": payload.get("client_id")})
        raise AuthenticationRequired()

    try:
        expires_in = int(payload.get("expires_in") or 0)
    except (TypeError, ValueError):
        expires_in = 0
    if expires_in <= 0:
        raise AuthenticationRequired()
    return payload


def fetch_line_profile(access_token: str | None) -> LineProfile:
    token = (access_token or "").strip()
    if not token:
        raise AuthenticationRequired()

    verify_access_token(token)
    base_url = get_settings().line_api_base_url.rstrip("/")
    payload = _get_json(f"{base_url}/v2/profile", headers={"Authorization": f"Bearer {token}"})

    user_id = str(payload.get("userId") or "").strip()
    if not user_id:
        raise AuthenticationRequired()
    return LineProfile(
        user_id=user_id,
        display_name=str(payload.get("displayName") or ""),
        picture_url=payload.get("pictureUrl"),
    )
