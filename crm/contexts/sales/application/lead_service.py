from __future__ import annotations

import csv
import io
import logging
import time
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping

from crm.contexts.platform.application import audit_log
from crm.contexts.platform.application.audit_log import AuditLogService
from crm.contexts.pricing.application.agent import PricingAgent
from crm.contexts.sales.domain import schemas
from crm.contexts.sales.domain.lead import (
    DEFAULT_PAYMENT_TERMS,
    LEAD_TYPE_DELETED,
    LEAD_TYPE_OPEN,
    accessory_ids_for,
    is_converted,
    item_to_json,
    lead_to_json,
    order_to_json,
    required_accessory_quantity,
)
from crm.contexts.sales.domain.tax import compute_item_taxes
from crm.contexts.sales.infrastructure.repositories.cart_item_repository import CartItemRepository
from crm.contexts.sales.infrastructure.repositories.catalog_repository import CatalogRepository
from crm.contexts.sales.infrastructure.repositories.lead_repository import LeadRepository
from crm.contexts.sales.infrastructure.repositories.order_repository import OrderRepository
from crm.contexts.sales.infrastructure.repositories.tax_repository import TaxRepository
from crm.core import (
    CartItemsChanged,
    EventBus,
    LeadConverted,
    LeadCreated,
    LeadDeleted,
    LeadUpdated,
    TtlCache,
    get_event_bus,
)
from crm.domain.contracts import (
    Actor,
    CartItemInput,
    CartItemUpdateInput,
    ConvertLeadInput,
    LeadListQuery,
    PricingItem,
    PricingRequest,
    ServiceOutput,
)
from crm.errors import (
    AppError,
    EmptyCartError,
    FrozenPriceError,
    ItemNotFoundError,
    LeadAlreadyConvertedError,
    LeadNotFoundError,
    NotFoundError,
    OrderNotFoundError,
    ValidationError,
    validation_failed,
)
from crm.observability import observe_order_conversion
from crm.ui_strings import success_message


LOGGER = logging.getLogger("crm.leads")

FED_TAX_RATE = 0.082
ICMS_TAX_RATE = 0.088
METADATA_TTL_SECONDS = 3600
EXPORT_LIMIT = 1000

EXPORT_COLUMNS = (
    ("id", "Lead"),
    ("createdAt", "Data"),
    ("customerId", "Cliente"),
    ("customerName", "Nome do Cliente"),
    ("sellerId", "Vendedor"),
    ("segment", "Segmento"),
    ("paymentTerms", "Condicoes"),
    ("freight", "Frete"),
    ("itemCount", "Itens"),
    ("totalValue", "Valor Total"),
    ("orderWeb", "Pedido"),
)
EXPORT_ITEM_COLUMNS = (
    ("id", "Item"),
    ("productId", "Produto"),
    ("quantity", "Quantidade"),
    ("price", "Preco"),
    ("consumerPrice", "Preco Consumidor"),
    ("ipi", "IPI"),
    ("st", "ST"),
    ("subtotal", "Subtotal"),
)


def _totals_key(lead_id: int) -> str:
    return f"cart_totals:{lead_id}"


def _num(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


class LeadService:
    def __init__(
        self,
        lead_repository: LeadRepository | None = None,
        cart_item_repository: CartItemRepository | None = None,
        catalog_repository: CatalogRepository | None = None,
        order_repository: OrderRepository | None = None,
        tax_repository: TaxRepository | None = None,
        pricing_agent: PricingAgent | None = None,
        audit_service: AuditLogService | None = None,
        cache: TtlCache | None = None,
        event_bus: EventBus | None = None,
        *,
        page_size_default: int = 20,
        page_size_max: int = 100,
        totals_ttl_seconds: int = 300,
    ) -> None:
        self.leads = lead_repository or LeadRepository()
        self.items = cart_item_repository or CartItemRepository()
        self.catalog = catalog_repository or CatalogRepository()
        self.orders = order_repository or OrderRepository(lead_repository=self.leads)
        self.taxes = tax_repository or TaxRepository()
        self.pricing_agent = pricing_agent or PricingAgent(catalog=self.catalog)
        self.audit = audit_service or AuditLogService()
        self.cache = cache or TtlCache(totals_ttl_seconds)
        self.event_bus = event_bus or get_event_bus()
        self.page_size_default = max(1, int(page_size_default))
        self.page_size_max = max(self.page_size_default, int(page_size_max))
        self.totals_ttl_seconds = int(totals_ttl_seconds)

    # -- leads ---------------------------------------------------------

    def _require_lead(self, db, lead_id: int) -> dict:
        lead = self.leads.find_by_id(db, lead_id)
        if lead is None or int(lead.get("cType") or 0) == LEAD_TYPE_DELETED:
            raise LeadNotFoundError(lead_id)
        return lead

    def _require_open_lead(self, db, lead_id: int) -> dict:
        lead = self._require_lead(db, lead_id)
        if is_converted(lead):
            raise LeadAlreadyConvertedError(lead_id, lead.get("cOrderWeb"))
        return lead

    def list_leads(self, db, query: LeadListQuery) -> ServiceOutput:
        filters = dict(query.filters or {})
        if filters.get("type") is None:
            filters["type"] = LEAD_TYPE_OPEN
        limit = min(max(1, int(query.limit or self.page_size_default)), self.page_size_max)
        result = self.leads.find_all(
            db,
            filters,
            page=query.page,
            limit=limit,
            sort_by=query.sort_by,
            sort_dir=query.sort_dir,
        )
        return ServiceOutput(
            payload={
                "success": True,
                "data": [lead_to_json(row) for row in result["data"]],
                "pagination": result["pagination"],
                "metrics": result["metrics"],
            }
        )

    def get_lead(self, db, lead_id: int) -> ServiceOutput:
        lead = self._require_lead(db, lead_id)
        data = lead_to_json(lead)
        data["items"] = [item_to_json(row) for row in self.items.find_by_lead(db, lead_id)]
        data["itemCount"] = len(data["items"])
        return ServiceOutput(payload={"success": True, "data": data})

    def _payment_terms(self, db, raw: Any) -> tuple[str, int]:
        if raw is None or str(raw).strip() == "":
            return DEFAULT_PAYMENT_TERMS, 0
        text = str(raw).strip()
        if text.isdigit():
            label = self.catalog.payment_term_label(db, int(text))
            return (label or DEFAULT_PAYMENT_TERMS), int(text)
        return text, 0

    @staticmethod
    def _remark_columns(remarks: Mapping[str, str] | None) -> Dict[str, str]:
        if not remarks:
            return {}
        return {schemas.REMARK_COLUMNS[key]: value for key, value in remarks.items() if key in schemas.REMARK_COLUMNS}

    def create_lead(self, db, payload: Dict[str, Any], actor: Actor) -> ServiceOutput:
        value, errors = schemas.validate_lead_create(payload)
        if errors:
            raise validation_failed(errors)

        terms_label, terms_id = self._payment_terms(db, value.get("paymentTerms"))
        if value.get("vPaymentTerms") not in (None, "") and str(value["vPaymentTerms"]).strip().isdigit():
            terms_id = int(str(value["vPaymentTerms"]).strip())
        record: Dict[str, Any] = {
            schemas.LEAD_FIELD_COLUMNS[field]: value[field]
            for field in schemas.LEAD_FIELD_COLUMNS
            if field in value
        }
        record.update(
            {
                "cSegment": schemas.normalize_segment(value.get("cSegment")),
                "cUser": value["userId"],
                "cSeller": value.get("sellerId") or value["userId"],
                "cLogUnity": value.get("cLogUnity") or value.get("cEmitUnity"),
                "cPaymentTerms": terms_label,
                "vPaymentTerms": terms_id,
                "cCC": 0,
                "cType": LEAD_TYPE_OPEN,
                "cUpdated": 0,
                "cAuthorized": 0,
                "cSource": 0,
            }
        )
        record.update(self._remark_columns(value.get("remarks")))

        with db.transaction():
            lead_id = self.leads.create(db, record)
        lead = self.leads.find_by_id(db, lead_id)
        data = lead_to_json(lead)

        self.audit.log(db, audit_log.LEAD_CREATE, actor, resource_id=lead_id, new_value=data)
        self.event_bus.publish(LeadCreated(lead_id=lead_id, customer_id=int(value["customerId"]), user_id=actor.user_id))
        return ServiceOutput(
            payload={"success": True, "data": data, "message": success_message("lead_created")},
            status_code=201,
        )

    def update_lead(self, db, lead_id: int, payload: Dict[str, Any], actor: Actor) -> ServiceOutput:
        value, errors = schemas.validate_lead_update(payload)
        if errors:
            raise validation_failed(errors)
        if not value:
            raise ValidationError(code="NO_CHANGES", message_key="no_changes")

        existing = self._require_lead(db, lead_id)
        changes: Dict[str, Any] = {
            schemas.LEAD_FIELD_COLUMNS[field]: value[field]
            for field in schemas.LEAD_FIELD_COLUMNS
            if field in value
        }
        if "cSegment" in value:
            changes["cSegment"] = schemas.normalize_segment(value["cSegment"])
        if "paymentTerms" in value:
            changes["cPaymentTerms"], changes["vPaymentTerms"] = self._payment_terms(db, value["paymentTerms"])
        changes.update(self._remark_columns(value.get("remarks")))
        changes["cUpdated"] = 1

        with db.transaction():
            self.leads.update(db, lead_id, changes)
        updated = self.leads.find_by_id(db, lead_id)
        self._invalidate_totals(lead_id)

        old_data = lead_to_json(existing)
        new_data = lead_to_json(updated)
        self.audit.log(db, audit_log.LEAD_UPDATE, actor, resource_id=lead_id, old_value=old_data, new_value=new_data)
        self.event_bus.publish(LeadUpdated(lead_id=lead_id))
        return ServiceOutput(payload={"success": True, "data": new_data, "message": success_message("lead_updated")})

    def delete_lead(self, db, lead_id: int, actor: Actor) -> ServiceOutput:
        existing = self._require_open_lead(db, lead_id)
        with db.transaction():
            self.leads.soft_delete(db, lead_id)
        self._invalidate_totals(lead_id)
        self.audit.log(
            db,
            audit_log.LEAD_DELETE,
            actor,
            resource_id=lead_id,
            old_value=lead_to_json(existing),
            metadata={"customerId": existing.get("cCustomer")},
        )
        self.event_bus.publish(LeadDeleted(lead_id=lead_id))
        return ServiceOutput(payload={"success": True, "message": success_message("lead_deleted")})

    # -- cart items ----------------------------------------------------

    def list_items(self, db, lead_id: int) -> ServiceOutput:
        self._require_lead(db, lead_id)
        items = [item_to_json(row) for row in self.items.find_by_lead(db, lead_id)]
        return ServiceOutput(payload={"success": True, "data": items})

    def _pricing_request(
        self,
        lead: Mapping[str, Any],
        items: Iterable[Mapping[str, Any]],
        actor: Actor,
        *,
        source: str,
        previous_event_id: str | None = None,
    ) -> PricingRequest:
        return PricingRequest(
            customer_id=lead.get("cCustomer"),
            seller_id=actor.user_id or lead.get("cUser"),
            lead_id=int(lead["cSCart"]),
            cart_id=int(lead["cSCart"]),
            items=[
                PricingItem(
                    product_id=int(item["productId"]),
                    quantity=_num(item.get("quantity")) or 1,
                    unit_price=_num(item.get("price")),
                    unit_price_list=_num(item.get("originalPrice")),
                )
                for item in items
            ],
            source=source,
            previous_event_id=previous_event_id,
            created_by=actor.user_id,
            ip_address=actor.ip_address,
        )

    def _sync_accessories(
        self,
        db,
        lead_id: int,
        accessory_ids: List[int],
        *,
        template: Mapping[str, Any] | None = None,
    ) -> tuple[List[dict], List[dict], List[dict]]:
        """Bring each accessory line to the sum of the machines still referencing it.

        Returns (added, updated, removed) descriptions.
        """
        added: List[dict] = []
        updated: List[dict] = []
        removed: List[dict] = []
        if not accessory_ids:
            return added, updated, removed

        cart = self.items.find_by_lead(db, lead_id)
        products = self.catalog.find_products(db, [row["cProduct"] for row in cart])
        accessories = self.catalog.find_products(db, accessory_ids)
        for accessory_id in accessory_ids:
            required = required_accessory_quantity(accessory_id, cart, products)
            existing = self.items.find_by_lead_and_product(db, lead_id, accessory_id)
            if existing is None:
                if required <= 0 or template is None or accessory_id not in accessories:
                    continue
                price = _num(accessories[accessory_id].get("revenda"))
                new_id = self.items.create(
                    db,
                    lead_id,
                    {
                        "cProduct": accessory_id,
                        "qProduct": required,
                        "vProduct": price,
                        "vProductCC": price,
                        "vProductOriginal": price,
                        "tProduct": template.get("tProduct", 1),
                        "vIPI": 0,
                        "vCST": 0,
                        "TTD": template.get("TTD", 0),
                    },
                )
                added.append({"id": new_id, "productId": accessory_id, "quantity": required})
                continue

            current = _num(existing.get("qProduct"))
            if required <= 0:
                self.items.delete(db, existing["cCart"])
                removed.append({"id": existing["cCart"], "productId": accessory_id, "quantity": current})
            elif required != current:
                self.items.set_quantity(db, existing["cCart"], required)
                updated.append(
                    {"id": existing["cCart"], "productId": accessory_id, "oldQuantity": current, "newQuantity": required}
                )
        return added, updated, removed

    def add_item(self, db, lead_id: int, payload: Dict[str, Any], actor: Actor) -> ServiceOutput:
        item_input, errors = schemas.validate_item_add(payload)
        if errors:
            raise validation_failed(errors)
        return self._add_item(db, lead_id, item_input, actor)

    def _add_item(self, db, lead_id: int, item_input: CartItemInput, actor: Actor) -> ServiceOutput:
        lead = self._require_open_lead(db, lead_id)
        product = self.catalog.find_product(db, item_input.product_id)
        if product is None:
            raise NotFoundError(
                code="PRODUCT_NOT_FOUND",
                message_key="product_not_found",
                payload={"productId": item_input.product_id},
            )
        original_price = _num(product.get("revenda"))
        consumer_price = item_input.consumer_price if item_input.consumer_price is not None else item_input.price

        check = self.pricing_agent.check(
            db,
            self._pricing_request(
                lead,
                [{"productId": item_input.product_id, "quantity": item_input.quantity, "price": item_input.price, "originalPrice": original_price}],
                actor,
                source="CRM_ADD_ITEM",
            ),
        )
        if check.kind != "ok":
            LOGGER.warning("cart_item_pricing_warning", extra={"lead_id": lead_id, "reason": check.reason})

        values = {
            "cProduct": item_input.product_id,
            "qProduct": item_input.quantity,
            "vProduct": item_input.price,
            "vProductCC": consumer_price,
            "vProductOriginal": original_price,
            "tProduct": item_input.times,
            "vIPI": item_input.ipi,
            "vCST": item_input.st,
            "TTD": item_input.ttd,
            "ai_decision_id": item_input.decision_id,
        }
        with db.transaction():
            item_id = self.items.create(db, lead_id, values)

        added: List[dict] = []
        updated: List[dict] = []
        try:
            with db.transaction():
                added, updated, _ = self._sync_accessories(
                    db,
                    lead_id,
                    accessory_ids_for(product, item_input.product_id),
                    template=values,
                )
        except Exception:  # noqa: BLE001
            LOGGER.exception("cart_accessory_sync_failed", extra={"lead_id": lead_id, "item_id": item_id})

        self._invalidate_totals(lead_id)
        item = self.items.find_by_id(db, item_id)
        data = item_to_json(item)
        self.audit.log(
            db,
            audit_log.ITEM_ADD,
            actor,
            resource_id=lead_id,
            new_value=data,
            metadata={"itemId": item_id, "productId": item_input.product_id},
        )
        self.event_bus.publish(
            CartItemsChanged(lead_id=lead_id, action="add", item_ids=(item_id, *[row["id"] for row in added]))
        )
        return ServiceOutput(
            payload={
                "success": True,
                "data": data,
                "addedAccessories": added,
                "updatedAccessories": updated,
                "pricing": {"status": check.kind, "reason": check.reason},
                "message": success_message("item_added"),
            },
            status_code=201,
        )

    def update_item(self, db, lead_id: int, item_id: int, payload: Dict[str, Any], actor: Actor) -> ServiceOutput:
        changes, errors = schemas.validate_item_update(payload)
        if errors:
            raise validation_failed(errors)
        if not changes:
            raise ValidationError(code="NO_CHANGES", message_key="no_changes")
        return self._update_item(db, lead_id, CartItemUpdateInput(item_id=item_id, changes=changes), actor)

    def _update_item(self, db, lead_id: int, update: CartItemUpdateInput, actor: Actor) -> ServiceOutput:
        lead = self._require_open_lead(db, lead_id)
        existing = self.items.find_by_id(db, update.item_id)
        if existing is None or int(existing.get("cSCart") or 0) != lead_id:
            raise ItemNotFoundError(update.item_id, lead_id)

        current = item_to_json(existing)
        merged = {**current, **update.changes}
        merged["originalPrice"] = current["originalPrice"]

        check = self.pricing_agent.check(
            db,
            self._pricing_request(
                lead,
                [merged],
                actor,
                source="CRM_UPDATE_ITEM",
                previous_event_id=self.pricing_agent.latest_event_id(db, lead_id),
            ),
        )
        if check.is_blocking:
            raise FrozenPriceError((check.details or {}).get("eventId"))
        if check.kind != "ok":
            LOGGER.warning("cart_item_pricing_warning", extra={"lead_id": lead_id, "reason": check.reason})

        values = {
            "cProduct": merged["productId"],
            "qProduct": merged["quantity"],
            "vProduct": merged["price"],
            "vProductCC": merged.get("consumerPrice") if "consumerPrice" in update.changes else (current["consumerPrice"] or merged["price"]),
            "vProductOriginal": current["originalPrice"],
            "tProduct": merged["times"],
            "vIPI": merged["ipi"],
            "vCST": merged["st"],
            "TTD": merged["ttd"],
            "ai_decision_id": merged.get("decisionId", current.get("aiDecisionId")),
        }
        product = self.catalog.find_product(db, int(merged["productId"]))
        accessory_ids = accessory_ids_for(product, int(merged["productId"]))

        updated_accessories: List[dict] = []
        with db.transaction():
            self.items.update(db, update.item_id, values)
            if "times" in update.changes and update.changes["times"] != current["times"]:
                for accessory_id in accessory_ids:
                    accessory = self.items.find_by_lead_and_product(db, lead_id, accessory_id)
                    if accessory is not None:
                        self.items.set_times(db, accessory["cCart"], update.changes["times"])
                        updated_accessories.append({"id": accessory["cCart"], "productId": accessory_id, "times": update.changes["times"]})
            if "quantity" in update.changes and _num(update.changes["quantity"]) != current["quantity"]:
                added, resynced, removed = self._sync_accessories(db, lead_id, accessory_ids, template=values)
                updated_accessories.extend(added + resynced + removed)

        self._invalidate_totals(lead_id)
        data = item_to_json(self.items.find_by_id(db, update.item_id))
        self.audit.log(
            db,
            audit_log.ITEM_UPDATE,
            actor,
            resource_id=lead_id,
            old_value=current,
            new_value=data,
            metadata={"itemId": update.item_id},
        )
        self.event_bus.publish(CartItemsChanged(lead_id=lead_id, action="update", item_ids=(update.item_id,)))
        return ServiceOutput(
            payload={
                "success": True,
                "data": data,
                "updatedAccessories": updated_accessories,
                "pricing": {"status": check.kind, "reason": check.reason},
                "message": success_message("item_updated"),
            }
        )

    def remove_item(self, db, lead_id: int, item_id: int, actor: Actor) -> ServiceOutput:
        self._require_open_lead(db, lead_id)
        existing = self.items.find_by_id(db, item_id)
        if existing is None or int(existing.get("cSCart") or 0) != lead_id:
            raise ItemNotFoundError(item_id, lead_id)

        product_id = int(existing["cProduct"])
        product = self.catalog.find_product(db, product_id)
        with db.transaction():
            self.items.delete(db, item_id)
            _, updated, removed = self._sync_accessories(db, lead_id, accessory_ids_for(product, product_id))

        self._invalidate_totals(lead_id)
        self.audit.log(
            db,
            audit_log.ITEM_DELETE,
            actor,
            resource_id=lead_id,
            old_value=item_to_json(existing),
            metadata={"itemId": item_id, "productId": product_id},
        )
        self.event_bus.publish(
            CartItemsChanged(lead_id=lead_id, action="remove", item_ids=(item_id, *[row["id"] for row in removed]))
        )
        return ServiceOutput(
            payload={
                "success": True,
                "removedAccessories": removed,
                "updatedAccessories": updated,
                "message": success_message("item_removed"),
            }
        )

    # -- totals, taxes and conversion ----------------------------------

    def _invalidate_totals(self, lead_id: int) -> None:
        self.cache.invalidate(_totals_key(lead_id))

    def calculate_totals(self, db, lead_id: int, actor: Actor) -> ServiceOutput:
        lead = self._require_lead(db, lead_id)
        cached = self.cache.get(_totals_key(lead_id))
        if cached is not None:
            return ServiceOutput(payload={"success": True, "data": cached})

        totals = self.items.calculate_totals(db, lead_id)
        freight = _num(lead.get("vFreight"))
        totals["freight"] = freight
        totals["grandTotal"] = totals["total"] + freight
        totals["consumerGrandTotal"] = totals["consumerTotal"] + freight
        totals["profitability"] = None

        if int(lead.get("cCC") or 0) > 0:
            overcharge = self.catalog.payment_overcharge(db, lead.get("cPaymentType"))
            margin = totals["consumerGrandTotal"] - totals["grandTotal"]
            desc_fp = totals["consumerGrandTotal"] * overcharge / 100
            desc_fed = margin * FED_TAX_RATE
            desc_icms = margin * ICMS_TAX_RATE
            commission = margin - desc_fed - desc_fp - desc_icms
            margin_percent = commission / totals["consumerGrandTotal"] * 100 if totals["consumerGrandTotal"] > 0 else 0.0
            totals["profitability"] = {
                "margin": margin,
                "descFP": desc_fp,
                "descFed": desc_fed,
                "descIcms": desc_icms,
                "commission": round(commission, 2),
                "marginPercent": round(margin_percent, 2),
            }

        items = [item_to_json(row) for row in self.items.find_by_lead(db, lead_id)]
        if items and not is_converted(lead):
            try:
                totals["v2Evaluation"] = self.pricing_agent.calculate(
                    db, self._pricing_request(lead, items, actor, source="CRM_TOTALS")
                )
            except Exception as exc:  # noqa: BLE001
                LOGGER.warning("totals_pricing_evaluation_skipped", extra={"lead_id": lead_id, "error": str(exc)})

        self.cache.set(_totals_key(lead_id), totals, self.totals_ttl_seconds)
        return ServiceOutput(payload={"success": True, "data": totals})

    def calculate_taxes(self, db, lead_id: int) -> ServiceOutput:
        lead = self._require_open_lead(db, lead_id)
        items = self.items.find_by_lead(db, lead_id)
        if not items:
            return ServiceOutput(payload={"success": True, "data": [], "message": "Nenhum item para calcular."})

        emitter_state = self.taxes.emitter_state(db, lead.get("cEmitUnity") or 1)
        customer = {"isento_st": lead.get("customer_isento_st")}
        results = []
        with db.transaction():
            for item in items:
                rule = self.taxes.resolve_rule(
                    db,
                    state=str(lead.get("customer_estado") or "SP").upper(),
                    people_type=str(lead.get("customer_tipo_pessoa") or "J").upper(),
                    ncm=str(item.get("product_ncm") or ""),
                    origin=1,
                    emitter_state=emitter_state,
                )
                if rule is None:
                    continue
                taxes = compute_item_taxes(item, customer, rule)
                self.items.set_taxes(db, item["cCart"], taxes["ipi"], taxes["st"])
                results.append(
                    {
                        "itemId": item["cCart"],
                        "product": item.get("product_model"),
                        "ipi": taxes["ipi"],
                        "st": taxes["st"],
                        "rules": taxes["rules"],
                    }
                )

        self._invalidate_totals(lead_id)
        LOGGER.info("lead_taxes_calculated", extra={"lead_id": lead_id, "items": len(results)})
        return ServiceOutput(payload={"success": True, "data": results, "message": success_message("taxes_calculated")})

    def convert(self, db, lead_id: int, payload: Dict[str, Any] | None, actor: Actor) -> ServiceOutput:
        convert_input, errors = schemas.validate_convert(lead_id, payload)
        if errors:
            raise validation_failed(errors)
        return self._convert(db, convert_input, actor)

    def _convert(self, db, convert_input: ConvertLeadInput, actor: Actor) -> ServiceOutput:
        started = time.perf_counter()
        lead_id = convert_input.lead_id
        try:
            lead = self.leads.find_by_id(db, lead_id)
            if lead is None:
                raise LeadNotFoundError(lead_id)
            if int(lead.get("cType") or 0) != LEAD_TYPE_OPEN or is_converted(lead):
                raise LeadAlreadyConvertedError(lead_id, lead.get("cOrderWeb"))

            updates = self._remark_columns(convert_input.remarks)
            if convert_input.transporter_id is not None:
                updates["cTransporter"] = convert_input.transporter_id

            items = self.items.find_by_lead(db, lead_id)
            if not items:
                raise EmptyCartError()

            with db.transaction():
                if updates:
                    updates["cUpdated"] = 1
                    self.leads.update(db, lead_id, updates)
                    lead = {**lead, **updates}
                order_id = self.orders.create_from_lead(db, lead, items, actor.user_id)
        except AppError as exc:
            observe_order_conversion(exc.code.lower(), (time.perf_counter() - started) * 1000)
            raise

        try:
            self.pricing_agent.freeze_lead(db, lead_id, order_id)
        except Exception:  # noqa: BLE001
            LOGGER.exception("order_price_freeze_failed", extra={"lead_id": lead_id, "order_id": order_id})

        self.audit.log(
            db,
            audit_log.LEAD_CONVERT,
            actor,
            resource_id=lead_id,
            new_value={"orderId": order_id},
            metadata={"orderId": order_id},
        )
        self._invalidate_totals(lead_id)
        self.event_bus.publish(LeadConverted(lead_id=lead_id, order_id=order_id, user_id=actor.user_id))
        observe_order_conversion("converted", (time.perf_counter() - started) * 1000)
        return ServiceOutput(
            payload={
                "success": True,
                "data": {"orderId": order_id},
                "message": success_message("lead_converted", order_id=order_id),
            }
        )

    # -- read side -----------------------------------------------------

    def history(self, db, lead_id: int) -> ServiceOutput:
        self._require_lead(db, lead_id)
        return ServiceOutput(payload={"success": True, "data": self.audit.lead_history(db, lead_id)})

    def get_order(self, db, order_id: int) -> ServiceOutput:
        found = self.orders.find_by_id(db, order_id)
        if found is None:
            raise OrderNotFoundError(order_id)
        header, lines = found
        return ServiceOutput(payload={"success": True, "data": order_to_json(header, lines)})

    def _cached(self, key: str, loader):
        value = self.cache.get(key)
        if value is None:
            value = loader()
            self.cache.set(key, value, METADATA_TTL_SECONDS)
        return value

    def segments(self, db) -> ServiceOutput:
        data = self._cached("metadata:segments", lambda: self.leads.segments(db))
        return ServiceOutput(payload={"success": True, "data": data})

    def metadata(self, db, name: str) -> ServiceOutput:
        loaders = {
            "payment-types": self.catalog.list_payment_types,
            "transporters": self.catalog.list_transporters,
            "units": self.catalog.list_units,
        }
        loader = loaders.get(name)
        if loader is None:
            raise NotFoundError(code="METADATA_NOT_FOUND", message_key="not_found", payload={"name": name})
        data = self._cached(f"metadata:{name}", lambda: loader(db))
        return ServiceOutput(payload={"success": True, "data": data})

    def export_csv(self, db, filters: Dict[str, Any], lead_id: int | None = None) -> ServiceOutput:
        buffer = io.StringIO()
        writer = csv.writer(buffer, delimiter=";")
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")

        if lead_id is not None:
            lead = self._require_lead(db, lead_id)
            data = lead_to_json(lead)
            writer.writerow([label for _, label in EXPORT_COLUMNS])
            writer.writerow([_csv_value(data.get(key)) for key, _ in EXPORT_COLUMNS])
            writer.writerow([])
            writer.writerow([label for _, label in EXPORT_ITEM_COLUMNS])
            for row in self.items.find_by_lead(db, lead_id):
                item = item_to_json(row)
                writer.writerow([_csv_value(item.get(key)) for key, _ in EXPORT_ITEM_COLUMNS])
            filename = f"lead_{lead_id}.csv"
        else:
            filters = dict(filters or {})
            if filters.get("type") is None:
                filters["type"] = LEAD_TYPE_OPEN
            result = self.leads.find_all(db, filters, page=1, limit=EXPORT_LIMIT)
            writer.writerow([label for _, label in EXPORT_COLUMNS])
            for row in result["data"]:
                data = lead_to_json(row)
                writer.writerow([_csv_value(data.get(key)) for key, _ in EXPORT_COLUMNS])
            filename = f"leads_export_{today}.csv"

        return ServiceOutput(payload={"filename": filename, "content": buffer.getvalue()})


def _csv_value(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, float):
        return f"{value:.2f}"
    return value
