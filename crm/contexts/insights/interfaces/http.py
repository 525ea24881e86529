from __future__ import annotations

from flask import Blueprint

from crm.db import get_db, get_read_db
from crm.http_utils import arg_bool, arg_int, current_actor, respond
from crm.services import current_services


alerts_bp = Blueprint("alerts", __name__, url_prefix="/api/alerts")


@alerts_bp.route("/my-alerts", methods=["GET"])
def my_alerts():
    limit = min(max(1, arg_int("limit", 50)), 200)
    return respond(
        current_services().alert_service.my_alerts(get_db(), current_actor(), is_read=arg_bool("isRead"), limit=limit)
    )


@alerts_bp.route("/<int:alert_id>/read", methods=["POST"])
def mark_read(alert_id: int):
    return respond(current_services().alert_service.mark_read(get_db(), alert_id, current_actor()))


@alerts_bp.route("/at-risk-customers", methods=["GET"])
def at_risk_customers():
    limit = min(max(1, arg_int("limit", 5)), 100)
    return respond(current_services().alert_service.at_risk_customers(get_read_db(), limit=limit))
