from __future__ import annotations

import re
from typing import Any, Dict, Iterable, List, Mapping

LEAD_TYPE_OPEN = 1
LEAD_TYPE_CONVERTED = 2
LEAD_TYPE_DELETED = 99

DEFAULT_PAYMENT_TERMS = "n:30:30"
DEFAULT_PAYMENT_TERM_DAYS = 204
LOGISTIC_UNIT_PLACEHOLDER = 99

_ACCESSORY_SEPARATORS = re.compile(r"[\s,;|]+")


def _float(value: Any) -> float:
    try:
        return float(value or 0)
    except (TypeError, ValueError):
        return 0.0


def _int_or_none(value: Any) -> int | None:
    if value in (None, ""):
        return None
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


def is_converted(lead: Mapping[str, Any]) -> bool:
    return _int_or_none(lead.get("cType")) == LEAD_TYPE_CONVERTED or bool(lead.get("cOrderWeb"))


def logistic_unit(lead: Mapping[str, Any]) -> int | None:
    unit = _int_or_none(lead.get("cLogUnity"))
    if unit == LOGISTIC_UNIT_PLACEHOLDER:
        return 1
    return unit


def parse_accessory_ids(raw: Any) -> List[int]:
    if raw is None:
        return []
    text = str(raw).strip()
    if not text or text.lower() == "null":
        return []
    ids: List[int] = []
    for token in _ACCESSORY_SEPARATORS.split(text):
        if not token:
            continue
        try:
            number = float(token)
        except ValueError:
            continue
        if number != number or number in (float("inf"), float("-inf")):
            continue
        if number > 0:
            ids.append(int(number))
    return ids


def accessory_ids_for(product: Mapping[str, Any] | None, product_id: int) -> List[int]:
    """Accessories linked to a machine through its motor/tampo codes, without duplicates."""
    if not product:
        return []
    ordered: List[int] = []
    for accessory_id in parse_accessory_ids(product.get("motor")) + parse_accessory_ids(product.get("tampo")):
        if accessory_id and accessory_id != product_id and accessory_id not in ordered:
            ordered.append(accessory_id)
    return ordered


def required_accessory_quantity(
    accessory_id: int,
    items: Iterable[Mapping[str, Any]],
    products: Mapping[int, Mapping[str, Any]],
) -> float:
    """Sum of the quantities of every machine in the cart that references the accessory."""
    total = 0.0
    for item in items:
        product_id = _int_or_none(item.get("cProduct"))
        if product_id is None or product_id == accessory_id:
            continue
        if accessory_id in accessory_ids_for(products.get(product_id), product_id):
            total += _float(item.get("qProduct"))
    return total


def lead_to_json(row: Mapping[str, Any]) -> Dict[str, Any]:
    customer = None
    if row.get("customer_nome"):
        customer = {
            "nome": row.get("customer_nome"),
            "ender": row.get("customer_ender"),
            "cidade": row.get("customer_cidade"),
            "estado": row.get("customer_estado"),
        }
    commission = row.get("vComission")
    total_value = row.get("total_value")
    return {
        "id": row.get("cSCart"),
        "createdAt": row.get("dCart"),
        "customerId": row.get("cCustomer"),
        "customer": customer,
        "customerName": row.get("customer_nome"),
        "userId": row.get("cUser"),
        "sellerId": row.get("cSeller"),
        "paymentType": row.get("cPaymentType"),
        "paymentTerms": row.get("cPaymentTerms"),
        "vPaymentTerms": row.get("vPaymentTerms"),
        "freight": _float(row.get("vFreight")),
        "freightType": row.get("vFreightType"),
        "deliveryDate": row.get("dDelivery"),
        "remarks": {
            "finance": row.get("xRemarksFinance") or "",
            "logistic": row.get("xRemarksLogistic") or "",
            "nfe": row.get("xRemarksNFE") or "",
            "obs": row.get("xRemarksOBS") or "",
            "manager": row.get("xRemarksManager") or "",
        },
        "type": row.get("cType"),
        "buyer": row.get("xBuyer"),
        "purchaseOrder": row.get("cPurchaseOrder"),
        "orderWeb": row.get("cOrderWeb"),
        "authorized": _int_or_none(row.get("cAuthorized")) == 1,
        "commission": _float(commission) if commission else None,
        "totalValue": _float(total_value) if total_value is not None else None,
        "cLogUnity": row.get("cLogUnity"),
        "cEmitUnity": row.get("cEmitUnity"),
        "cTransporter": row.get("cTransporter"),
        "cNatOp": row.get("cNatOp"),
        "segment": row.get("cSegment") or None,
        "itemCount": int(row.get("item_count") or 0),
        "pricedItemCount": int(row.get("priced_item_count") or 0),
    }


def item_to_json(row: Mapping[str, Any]) -> Dict[str, Any]:
    quantity = _float(row.get("qProduct"))
    price = _float(row.get("vProduct"))
    product = None
    if row.get("product_id"):
        product = {
            "id": row.get("product_id"),
            "model": row.get("product_model"),
            "brand": row.get("product_brand"),
            "name": row.get("product_name"),
            "ncm": row.get("product_ncm"),
        }
    times = row.get("tProduct")
    return {
        "id": row.get("cCart"),
        "leadId": row.get("cSCart"),
        "productId": row.get("cProduct"),
        "quantity": quantity,
        "price": price,
        "consumerPrice": _float(row.get("vProductCC")),
        "originalPrice": _float(row.get("vProductOriginal")),
        "times": 1 if times is None else times,
        "ipi": _float(row.get("vIPI")),
        "st": _float(row.get("vCST")),
        "ttd": row.get("TTD") or 0,
        "inquiryDate": row.get("dInquiry"),
        "aiDecisionId": row.get("ai_decision_id") or None,
        "product": product,
        "subtotal": quantity * price,
    }


def order_to_json(header: Mapping[str, Any], lines: Iterable[Mapping[str, Any]]) -> Dict[str, Any]:
    items = []
    for line in lines:
        base = _float(line.get("valor_base"))
        unit_price = _float(line.get("vProduct")) or base
        items.append(
            {
                "id": line.get("id"),
                "productId": line.get("isbn"),
                "quantity": _float(line.get("quant")),
                "price": unit_price,
                "consumerPrice": _float(line.get("vProductCC")) or unit_price,
                "originalPrice": _float(line.get("tabela")) or base,
                "times": line.get("vezes") or 1,
                "ipi": _float(line.get("valor_ipi")),
                "st": _float(line.get("valor_st")),
                "ttd": line.get("TTD") or 0,
                "product": {
                    "id": line.get("isbn"),
                    "model": line.get("product_model"),
                    "brand": line.get("product_brand"),
                    "name": line.get("product_name"),
                },
            }
        )

    order: Dict[str, Any] = {
        "id": header.get("id"),
        "date": header.get("data"),
        "natOp": header.get("nop"),
        "customerId": header.get("idcli"),
        "resellerId": header.get("idcom"),
        "userId": header.get("emissor"),
        "sellerId": header.get("vendedor"),
        "paymentType": header.get("pg"),
        "paymentTerms": header.get("fprazo"),
        "transporterId": header.get("idtr"),
        "freight": _float(header.get("frete")),
        "emitUnitId": header.get("EmissorPOID"),
        "logisticUnitId": header.get("UnidadeLogistica"),
        "deliveryDate": header.get("datae"),
        "remarks": header.get("obs") or "",
        "totals": {
            "base": _float(header.get("valor_base")),
            "st": _float(header.get("valor_st")),
            "ipi": _float(header.get("valor_ipi")),
            "total": _float(header.get("valor")),
        },
        "customer": None,
        "transporter": None,
        "emitUnity": None,
        "items": items,
    }
    if header.get("customer_nome") is not None:
        order["customer"] = {
            "id": header.get("idcli"),
            "nome": header.get("customer_nome"),
            "cidade": header.get("customer_cidade"),
            "estado": header.get("customer_estado"),
        }
    if header.get("transporter_name") is not None:
        order["transporter"] = {"id": header.get("idtr"), "name": header.get("transporter_name")}
    if header.get("emit_name") is not None:
        order["emitUnity"] = {"id": header.get("EmissorPOID"), "name": header.get("emit_name")}
    return order
