from __future__ import annotations

from flask import Blueprint, Response, request

from crm.db import get_db, get_read_db
from crm.domain.contracts import LeadListQuery
from crm.http_utils import arg_int, current_actor, json_body, respond
from crm.services import current_services


leads_bp = Blueprint("leads", __name__, url_prefix="/api/leads")
orders_bp = Blueprint("orders", __name__, url_prefix="/api/orders")

_LIST_FILTER_ARGS = {
    "customerId": "customerId",
    "q": "search",
    "search": "search",
    "cSegment": "segment",
    "segment": "segment",
    "status": "status",
    "dateFrom": "dateFrom",
    "dateTo": "dateTo",
}


def _leads():
    return current_services().lead_service


def _list_filters() -> dict:
    filters: dict = {}
    for arg, key in _LIST_FILTER_ARGS.items():
        if arg in request.args:
            filters[key] = request.args.get(arg)
    for arg in ("userId", "sellerId", "type"):
        value = arg_int(arg)
        if value is not None:
            filters[arg] = value
    if request.args.get("strictUserSeller") in ("1", "true"):
        filters["strictUserSeller"] = True
    return filters


@leads_bp.route("", methods=["GET"])
def list_leads():
    query = LeadListQuery(
        filters=_list_filters(),
        page=arg_int("page", 1),
        limit=arg_int("limit", _leads().page_size_default),
        sort_by=request.args.get("sort") or "date",
        sort_dir=request.args.get("sortDir") or "desc",
    )
    return respond(_leads().list_leads(get_read_db(), query))


@leads_bp.route("/export", methods=["GET"])
def export_leads():
    result = _leads().export_csv(get_read_db(), _list_filters(), lead_id=arg_int("leadId"))
    return Response(
        result.payload["content"],
        mimetype="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{result.payload["filename"]}"'},
    )


@leads_bp.route("/segments", methods=["GET"])
def segments():
    return respond(_leads().segments(get_read_db()))


@leads_bp.route("/metadata/<name>", methods=["GET"])
def metadata(name: str):
    return respond(_leads().metadata(get_read_db(), name))


@leads_bp.route("/<int:lead_id>", methods=["GET"])
def get_lead(lead_id: int):
    return respond(_leads().get_lead(get_db(), lead_id))


@leads_bp.route("", methods=["POST"])
def create_lead():
    return respond(_leads().create_lead(get_db(), json_body(), current_actor()))


@leads_bp.route("/<int:lead_id>", methods=["PUT"])
def update_lead(lead_id: int):
    return respond(_leads().update_lead(get_db(), lead_id, json_body(), current_actor()))


@leads_bp.route("/<int:lead_id>", methods=["DELETE"])
def delete_lead(lead_id: int):
    return respond(_leads().delete_lead(get_db(), lead_id, current_actor()))


@leads_bp.route("/<int:lead_id>/items", methods=["GET"])
def list_items(lead_id: int):
    return respond(_leads().list_items(get_db(), lead_id))


@leads_bp.route("/<int:lead_id>/items", methods=["POST"])
def add_item(lead_id: int):
    return respond(_leads().add_item(get_db(), lead_id, json_body(), current_actor()))


@leads_bp.route("/<int:lead_id>/items/<int:item_id>", methods=["PUT"])
def update_item(lead_id: int, item_id: int):
    return respond(_leads().update_item(get_db(), lead_id, item_id, json_body(), current_actor()))


@leads_bp.route("/<int:lead_id>/items/<int:item_id>", methods=["DELETE"])
def remove_item(lead_id: int, item_id: int):
    return respond(_leads().remove_item(get_db(), lead_id, item_id, current_actor()))


@leads_bp.route("/<int:lead_id>/totals", methods=["GET"])
def totals(lead_id: int):
    return respond(_leads().calculate_totals(get_db(), lead_id, current_actor()))


@leads_bp.route("/<int:lead_id>/taxes", methods=["POST"])
def taxes(lead_id: int):
    return respond(_leads().calculate_taxes(get_db(), lead_id))


@leads_bp.route("/<int:lead_id>/convert", methods=["POST"])
def convert(lead_id: int):
    return respond(_leads().convert(get_db(), lead_id, json_body(), current_actor()))


@leads_bp.route("/<int:lead_id>/history", methods=["GET"])
def history(lead_id: int):
    return respond(_leads().history(get_db(), lead_id))


@orders_bp.route("/<int:order_id>", methods=["GET"])
def get_order(order_id: int):
    return respond(_leads().get_order(get_db(), order_id))
