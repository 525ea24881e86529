from __future__ import annotations

import json
import logging
import os
import ssl
import urllib.error
import urllib.request
from typing import Any, Dict, List, Tuple

from flask import current_app


LOGGER = logging.getLogger("crm.pricing_api")

CALCULATE_DEFAULTS = {
    "payment_term": "standard",
    "installments": 1,
    "stock_level": "normal",
    "machine_curve": "A",
}


class PricingApiError(RuntimeError):
    """Failure talking to the external pricing service.

    ``status_code`` is the upstream HTTP status when the service answered, ``None``
    when it never did.
    """

    def __init__(self, message: str, *, status_code: int | None = None, details: Any = None) -> None:
        super().__init__(message)
        self.status_code = status_code
        self.details = details


def _is_int(value: Any) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) or (
        isinstance(value, str) and value.strip().lstrip("-").isdigit()
    )


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def validate_calculate_payload(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    errors: List[str] = []
    value: Dict[str, Any] = {}

    for field in ("org_id", "brand_id", "customer_id", "sku_id"):
        raw = payload.get(field)
        if raw is None:
            errors.append(f'"{field}" is required')
        elif not _is_int(raw):
            errors.append(f'"{field}" must be an integer')
        else:
            value[field] = int(raw)

    sku_qty = _as_number(payload.get("sku_qty"))
    if payload.get("sku_qty") is None:
        errors.append('"sku_qty" is required')
    elif sku_qty is None or sku_qty <= 0:
        errors.append('"sku_qty" must be a positive number')
    else:
        value["sku_qty"] = sku_qty

    order_value = _as_number(payload.get("order_value"))
    if payload.get("order_value") is None:
        errors.append('"order_value" is required')
    elif order_value is None or order_value < 0:
        errors.append('"order_value" must be greater than or equal to 0')
    else:
        value["order_value"] = order_value

    value["product_brand"] = str(payload.get("product_brand") or "")
    value["product_model"] = str(payload.get("product_model") or "")
    for field, default in CALCULATE_DEFAULTS.items():
        value[field] = payload.get(field) if payload.get(field) not in (None, "") else default
    if not _is_int(value["installments"]) or int(value["installments"]) < 0:
        errors.append('"installments" must be an integer greater than or equal to 0')
    else:
        value["installments"] = int(value["installments"])

    order_items = payload.get("order_items") or []
    if not isinstance(order_items, list):
        errors.append('"order_items" must be an array')
        order_items = []
    items: List[Dict[str, Any]] = []
    for index, item in enumerate(order_items):
        if not isinstance(item, dict):
            errors.append(f'"order_items[{index}]" must be an object')
            continue
        quantity = _as_number(item.get("quantity"))
        if not _is_int(item.get("sku_id")):
            errors.append(f'"order_items[{index}].sku_id" must be an integer')
        elif quantity is None or quantity <= 0:
            errors.append(f'"order_items[{index}].quantity" must be a positive number')
        else:
            items.append({"sku_id": int(item["sku_id"]), "quantity": quantity, "model": item.get("model") or ""})
    value["order_items"] = items
    return value, errors


def calculate_price(payload: Dict[str, Any]) -> object:
    return _request_json("POST", _run_url(), payload=payload)


def _run_url() -> str:
    base_url = str(_get_config("PRICING_API_URL") or "").strip()
    if not base_url:
        raise PricingApiError("PRICING_API_URL nao configurado.")
    base_url = base_url.rstrip("/")
    return base_url if base_url.endswith("/run") else f"{base_url}/run"


def _request_json(method: str, url: str, payload: dict | None = None) -> object:
    timeout = _int_config("PRICING_API_TIMEOUT_SECONDS", 30)
    headers = {"Accept": "application/json"}

    api_key = _get_config("PRICING_API_KEY")
    if api_key:
        headers["X-API-Key"] = api_key

    data = None
    if payload is not None:
        headers["Content-Type"] = "application/json"
        data = json.dumps(payload, separators=(",", ":"), ensure_ascii=True).encode("utf-8")

    request = urllib.request.Request(url, data=data, headers=headers, method=method.upper())

    context = None
    if not _bool_config("PRICING_API_VERIFY_SSL", True):
        context = ssl._create_unverified_context()

    LOGGER.debug("pricing_api_request", extra={"method": method.upper(), "url": url})
    try:
        with urllib.request.urlopen(request, timeout=timeout, context=context) as response:
            body = response.read().decode("utf-8")
            if not body:
                return {}
            return json.loads(body)
    except urllib.error.HTTPError as exc:  # noqa: PERF203
        error_body = exc.read().decode("utf-8") if exc.fp else ""
        LOGGER.error("pricing_api_http_error", extra={"status": exc.code, "url": url})
        raise PricingApiError(
            "Pricing API error",
            status_code=exc.code,
            details=_decode_details(error_body) or str(exc),
        ) from exc
    except urllib.error.URLError as exc:
        LOGGER.error("pricing_api_unreachable", extra={"url": url, "reason": str(exc.reason)})
        raise PricingApiError("Pricing API unavailable", details="The pricing service did not respond") from exc
    except TimeoutError as exc:
        LOGGER.error("pricing_api_timeout", extra={"url": url, "timeout": timeout})
        raise PricingApiError("Pricing API unavailable", details="The pricing service did not respond") from exc
    except json.JSONDecodeError as exc:
        raise PricingApiError("Pricing API error", status_code=502, details="Invalid JSON from pricing service") from exc


def _decode_details(body: str) -> object:
    if not body:
        return None
    try:
        return json.loads(body)
    except json.JSONDecodeError:
        return body[:200]


def _get_config(key: str, default: str | None = None) -> str | None:
    try:
        value = current_app.config.get(key)
    except RuntimeError:
        value = None
    if value is None:
        value = os.environ.get(key, default)
    return value


def _int_config(key: str, default: int) -> int:
    raw = _get_config(key)
    if raw is None:
        return default
    try:
        return int(raw)
    except (TypeError, ValueError):
        return default


def _bool_config(key: str, default: bool) -> bool:
    raw = _get_config(key)
    if raw is None:
        return default
    if isinstance(raw, bool):
        return raw
    return str(raw).strip().lower() in {"1", "true", "yes", "on"}
