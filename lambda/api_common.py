from __future__ import annotations

import base64
import json
import time
from datetime import datetime, timezone
from typing import Any
from urllib.parse import urlencode

from board_model import BoardError
from board_model import ConflictError
from board_model import ForbiddenError
from board_model import NotFoundError
from board_model import ValidationError
from botocore.exceptions import ClientError
from doc_ids import random_request_id
from document_store import StoreError
from github_client import GitHubError
from identity import IdentityError
from identity import InvalidTokenError
from verification_codes import VerificationError


JSON_HEADERS = {
    "content-type": "application/json",
    "cache-control": "no-store",
}

_OUTCOMES = {
    400: "bad_request",
    401: "unauthorized",
    403: "forbidden",
    404: "not_found",
    409: "conflict",
}


def now_iso() -> str:
    return datetime.now(timezone.utc).strftime("%Y-%m-%dT%H:%M:%S.%fZ")


def request_id_of(event: dict[str, Any]) -> str:
    rc = event.get("requestContext") or {}
    if isinstance(rc, dict):
        rid = str(rc.get("requestId") or "").strip()
        if rid:
            return rid
    return random_request_id()


def response(status_code: int, body: dict[str, Any], request_id: str) -> dict[str, Any]:
    payload = dict(body)
    payload.setdefault("requestId", request_id)
    return {
        "statusCode": int(status_code),
        "headers": dict(JSON_HEADERS),
        "body": json.dumps(payload),
    }


def ok(status_code: int, data: Any, request_id: str, *, message: str = "") -> dict[str, Any]:
    body: dict[str, Any] = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return response(status_code, body, request_id)


def fail(status_code: int, code: str, error: str, request_id: str) -> dict[str, Any]:
    return response(
        status_code,
        {"success": False, "errorCode": code, "error": error},
        request_id,
    )


def no_content() -> dict[str, Any]:
    return {"statusCode": 204, "headers": {"cache-control": "no-store"}, "body": ""}


def redirect(base_url: str, params: dict[str, str] | None = None) -> dict[str, Any]:
    location = base_url
    if params:
        location = f"{base_url}?{urlencode(params)}"
    return {
        "statusCode": 302,
        "headers": {"location": location, "cache-control": "no-store"},
        "body": "",
    }


def parse_body(event: dict[str, Any]) -> tuple[dict[str, Any] | None, str | None]:
    raw = event.get("body")
    if raw is None:
        return {}, None
    if not isinstance(raw, str):
        return None, "request body must be a JSON object"
    if bool(event.get("isBase64Encoded")):
        try:
            raw = base64.b64decode(raw.encode("utf-8")).decode("utf-8")
        except Exception:
            return None, "request body base64 decode failed"
    if not raw.strip():
        return {}, None
    try:
        parsed = json.loads(raw)
    except Exception:
        return None, "request body must be valid JSON"
    if not isinstance(parsed, dict):
        return None, "request body must be a JSON object"
    return parsed, None


def route_segments(event: dict[str, Any]) -> list[str]:
    p = str(event.get("path") or "").strip()
    # Custom domains may prefix the stage name.
    idx = p.find("/api/")
    if idx >= 0:
        p = p[idx:]
    return [s for s in p.split("/") if s]


def query_param(event: dict[str, Any], key: str) -> str:
    qs = event.get("queryStringParameters") or {}
    if not isinstance(qs, dict):
        return ""
    val = qs.get(key)
    return str(val).strip() if val is not None else ""


def exception_response(exc: Exception, request_id: str, *, expose_internal: bool) -> dict[str, Any]:
    """Translate a raised error into the JSON error envelope."""
    if isinstance(exc, ValidationError):
        return fail(400, exc.code, str(exc), request_id)
    if isinstance(exc, NotFoundError):
        return fail(404, exc.code, str(exc), request_id)
    if isinstance(exc, ForbiddenError):
        return fail(403, exc.code, str(exc), request_id)
    if isinstance(exc, ConflictError):
        return fail(409, exc.code, str(exc), request_id)
    if isinstance(exc, BoardError):
        return fail(400, exc.code, str(exc), request_id)
    if isinstance(exc, VerificationError):
        return fail(exc.status_code, exc.code, str(exc), request_id)
    if isinstance(exc, InvalidTokenError):
        return fail(401, "UNAUTHORIZED", str(exc), request_id)

    if isinstance(exc, GitHubError):
        code, generic = "GITHUB_ERROR", "GitHub request failed"
    elif isinstance(exc, ClientError):
        code, generic = "AWS_ERROR", "Upstream service error"
    elif isinstance(exc, StoreError):
        code, generic = "STORE_ERROR", "Storage error"
    elif isinstance(exc, IdentityError):
        code, generic = "IDENTITY_ERROR", "Identity provider error"
    else:
        code, generic = "INTERNAL_ERROR", "Internal server error"
    return fail(500, code, str(exc) if expose_internal else generic, request_id)


def new_wide_event(name: str, event: dict[str, Any], request_id: str, schema_version: str) -> dict[str, Any]:
    return {
        "event": name,
        "schema_version": schema_version,
        "request_id": request_id,
        "ts": now_iso(),
        "method": str(event.get("httpMethod") or "").upper(),
        "path": str(event.get("path") or ""),
    }


def record_error(wide_event: dict[str, Any], exc: Exception) -> None:
    wide_event["error"] = {"type": type(exc).__name__, "message": str(exc)}


def emit_wide_event(wide_event: dict[str, Any], start: float, resp: dict[str, Any] | None) -> None:
    status = int((resp or {}).get("statusCode") or 500)
    wide_event["status_code"] = status
    if "outcome" not in wide_event:
        if status < 400:
            wide_event["outcome"] = "success"
        else:
            wide_event["outcome"] = _OUTCOMES.get(status, "error")
    wide_event["duration_ms"] = int((time.time() - start) * 1000)
    print(json.dumps(wide_event, separators=(",", ":"), sort_keys=True, default=str))
