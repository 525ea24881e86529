from __future__ import annotations

from typing import Any, List

from flask import Blueprint, jsonify

from crm.db import get_db
from crm.domain.contracts import Actor, PricingItem, PricingRequest
from crm.errors import validation_failed
from crm.http_utils import current_actor, json_body
from crm.pricing_api import calculate_price, validate_calculate_payload
from crm.services import current_services


pricing_v2_bp = Blueprint("pricing_v2", __name__, url_prefix="/api/v2/pricing")
pricing_api_bp = Blueprint("pricing_api", __name__, url_prefix="/api/pricing")


def _int_field(payload: dict, name: str, errors: List[str], *, required: bool = False) -> int | None:
    raw = payload.get(name)
    if raw in (None, ""):
        if required:
            errors.append(f'"{name}" is required')
        return None
    try:
        return int(raw)
    except (TypeError, ValueError):
        errors.append(f'"{name}" must be an integer')
        return None


def _float_or_none(value: Any) -> float | None:
    if value in (None, ""):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def pricing_request_from_payload(payload: dict, action: str, actor: Actor) -> PricingRequest:
    errors: List[str] = []
    customer_id = _int_field(payload, "customer_id", errors, required=True)
    seller_id = _int_field(payload, "seller_id", errors)
    lead_id = _int_field(payload, "lead_id", errors)
    cart_id = _int_field(payload, "cart_id", errors)
    seller_level = _int_field(payload, "seller_level", errors)

    raw_items = payload.get("items")
    items: List[PricingItem] = []
    if not isinstance(raw_items, list) or not raw_items:
        errors.append('"items" must be a non-empty array')
        raw_items = []
    for index, raw in enumerate(raw_items):
        if not isinstance(raw, dict):
            errors.append(f'"items[{index}]" must be an object')
            continue
        product_id = _int_field(raw, "product_id", errors, required=True)
        quantity = _float_or_none(raw.get("quantity"))
        if quantity is not None and quantity <= 0:
            errors.append(f'"items[{index}].quantity" must be a positive number')
            continue
        if product_id is None:
            continue
        items.append(
            PricingItem(
                product_id=product_id,
                quantity=quantity or 1,
                unit_price=_float_or_none(raw.get("unit_price")),
                unit_price_list=_float_or_none(raw.get("unit_price_list")),
            )
        )
    if errors:
        raise validation_failed(errors)

    return PricingRequest(
        customer_id=customer_id,
        seller_id=seller_id or actor.user_id,
        items=items,
        lead_id=lead_id,
        cart_id=cart_id,
        seller_level=seller_level,
        source=str(payload.get("source") or "CRM"),
        action=action,
        previous_event_id=(payload.get("previous_event_id") or None),
        created_by=actor.user_id,
        ip_address=actor.ip_address,
    )


def _run_pipeline(action: str):
    actor = current_actor()
    request_obj = pricing_request_from_payload(json_body(), action, actor)
    result = current_services().pricing_agent.calculate(get_db(), request_obj)
    return jsonify({"success": True, "data": result})


@pricing_v2_bp.route("/calculate", methods=["POST"])
def calculate():
    return _run_pipeline("CALCULATE")


@pricing_v2_bp.route("/discount", methods=["POST"])
def apply_discount():
    return _run_pipeline("APPLY_DISCOUNT")


@pricing_v2_bp.route("/simulate", methods=["POST"])
def simulate():
    return _run_pipeline("SIMULATE")


@pricing_v2_bp.route("/freeze", methods=["POST"])
def freeze():
    payload = json_body()
    event_id = str(payload.get("event_id") or "").strip()
    if not event_id:
        raise validation_failed(['"event_id" is required'])
    return jsonify({"success": True, "data": current_services().pricing_agent.freeze(get_db(), event_id)})


@pricing_v2_bp.route("/exception/request", methods=["POST"])
def request_exception():
    payload = json_body()
    event_id = str(payload.get("event_id") or "").strip()
    if not event_id:
        raise validation_failed(['"event_id" is required'])
    errors: List[str] = []
    seller_id = _int_field(payload, "seller_id", errors)
    if errors:
        raise validation_failed(errors)
    result = current_services().pricing_agent.request_exception(
        get_db(),
        event_id,
        payload.get("reason"),
        seller_id or current_actor().user_id,
    )
    return jsonify({"success": True, "data": result})


@pricing_v2_bp.route("/exception/<exception_id>/decide", methods=["POST"])
def decide_exception(exception_id: str):
    payload = json_body()
    errors: List[str] = []
    approver_id = _int_field(payload, "approver_id", errors)
    if errors:
        raise validation_failed(errors)
    result = current_services().pricing_agent.decide_exception(
        get_db(),
        exception_id,
        payload.get("status"),
        approver_id or current_actor().user_id,
        payload.get("notes"),
    )
    return jsonify({"success": True, "data": result})


@pricing_v2_bp.route("/metrics", methods=["GET"])
def metrics():
    return jsonify({"success": True, "data": current_services().pricing_agent.metrics(get_db())})


@pricing_api_bp.route("/calculate", methods=["POST"])
def external_calculate():
    value, errors = validate_calculate_payload(json_body())
    if errors:
        raise validation_failed(errors)
    return jsonify({"success": True, "data": calculate_price(value)})
