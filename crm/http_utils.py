from __future__ import annotations

from typing import Any

from flask import jsonify, request

from crm.domain.contracts import Actor, ServiceOutput
from crm.observability import current_request_id


def _optional_int(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(str(value).strip())
    except (TypeError, ValueError):
        return None


def current_actor() -> Actor:
    """Acting user forwarded by the authentication layer in request headers."""
    return Actor(
        user_id=_optional_int(request.headers.get("X-User-Id")),
        user_name=(request.headers.get("X-User-Name") or "").strip() or None,
        ip_address=request.headers.get("X-Forwarded-For", request.remote_addr),
        user_agent=request.headers.get("User-Agent"),
        request_id=current_request_id(),
    )


def arg_int(name: str, default: int | None = None) -> int | None:
    value = _optional_int(request.args.get(name))
    return default if value is None else value


def arg_bool(name: str) -> bool | None:
    raw = request.args.get(name)
    if raw is None or raw == "":
        return None
    return raw.strip().lower() in {"1", "true", "yes", "on"}


def json_body() -> dict:
    payload = request.get_json(silent=True)
    return payload if isinstance(payload, dict) else {}


def respond(result: ServiceOutput):
    return jsonify(result.payload), result.status_code
