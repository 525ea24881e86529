from __future__ import annotations

from typing import Any, Dict, List, Tuple

from crm.domain.contracts import CartItemInput, ConvertLeadInput


REMARK_KEYS = ("finance", "logistic", "nfe", "obs", "manager")
REMARK_COLUMNS = {
    "finance": "xRemarksFinance",
    "logistic": "xRemarksLogistic",
    "nfe": "xRemarksNFE",
    "obs": "xRemarksOBS",
    "manager": "xRemarksManager",
}

SEGMENT_SLUGS = {
    "machines": "1",
    "bearings": "2",
    "parts": "3",
    "auto": "5",
    "moto": "6",
}

LEAD_DEFAULTS = {
    "cNatOp": 27,
    "cEmitUnity": 1,
    "cLogUnity": 1,
    "cTransporter": 9,
    "paymentType": 2,
    "freight": 0.0,
    "freightType": 1,
}

# campo da API -> coluna de mak.sCart
LEAD_FIELD_COLUMNS = {
    "customerId": "cCustomer",
    "cNatOp": "cNatOp",
    "cEmitUnity": "cEmitUnity",
    "cLogUnity": "cLogUnity",
    "cTransporter": "cTransporter",
    "paymentType": "cPaymentType",
    "freight": "vFreight",
    "freightType": "vFreightType",
    "deliveryDate": "dDelivery",
    "buyer": "xBuyer",
    "purchaseOrder": "cPurchaseOrder",
}

_INT_FIELDS = ("customerId", "userId", "sellerId", "cNatOp", "cEmitUnity", "cLogUnity", "cTransporter", "paymentType", "freightType")


def _is_int(value: Any) -> bool:
    if isinstance(value, bool):
        return False
    if isinstance(value, int):
        return True
    if isinstance(value, float):
        return value.is_integer()
    return isinstance(value, str) and value.strip().lstrip("-").isdigit()


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _remarks(raw: Any, errors: List[str]) -> Dict[str, str] | None:
    if raw is None:
        return None
    if not isinstance(raw, dict):
        errors.append('"remarks" must be an object')
        return None
    remarks: Dict[str, str] = {}
    for key in REMARK_KEYS:
        if key not in raw:
            continue
        value = raw[key]
        if value is not None and not isinstance(value, str):
            errors.append(f'"remarks.{key}" must be a string')
            continue
        remarks[key] = value or ""
    return remarks


def normalize_segment(raw: Any) -> str | None:
    if raw is None:
        return None
    text = str(raw).strip()
    if not text:
        return None
    return SEGMENT_SLUGS.get(text.lower(), text)


def _lead_fields(payload: Dict[str, Any], errors: List[str]) -> Dict[str, Any]:
    value: Dict[str, Any] = {}
    for field in _INT_FIELDS:
        if field not in payload or payload[field] is None:
            continue
        if not _is_int(payload[field]):
            errors.append(f'"{field}" must be an integer')
        else:
            value[field] = int(float(payload[field]))

    if payload.get("freight") is not None:
        freight = _as_number(payload["freight"])
        if freight is None:
            errors.append('"freight" must be a number')
        else:
            value["freight"] = freight

    for field in ("cSegment", "paymentTerms", "vPaymentTerms"):
        if field in payload:
            raw = payload[field]
            if raw is not None and not isinstance(raw, (str, int, float)):
                errors.append(f'"{field}" must be a string or a number')
            else:
                value[field] = raw

    for field in ("buyer", "purchaseOrder", "deliveryDate"):
        if field in payload:
            raw = payload[field]
            if raw is not None and not isinstance(raw, str):
                errors.append(f'"{field}" must be a string')
            else:
                value[field] = raw or None

    if "remarks" in payload:
        remarks = _remarks(payload["remarks"], errors)
        if remarks is not None:
            value["remarks"] = remarks
    return value


def validate_lead_create(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    payload = dict(payload or {})
    errors: List[str] = []
    for field in ("customerId", "userId"):
        if payload.get(field) is None:
            errors.append(f'"{field}" is required')
    value = _lead_fields(payload, errors)
    for field, default in LEAD_DEFAULTS.items():
        value.setdefault(field, default)
    return value, errors


def validate_lead_update(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    payload = dict(payload or {})
    errors: List[str] = []
    for forbidden in ("userId", "sellerId"):
        payload.pop(forbidden, None)
    return _lead_fields(payload, errors), errors


def validate_item_add(payload: Dict[str, Any]) -> Tuple[CartItemInput | None, List[str]]:
    payload = dict(payload or {})
    errors: List[str] = []

    product_id = payload.get("productId")
    if product_id is None:
        errors.append('"productId" is required')
    elif not _is_int(product_id) or int(float(product_id)) <= 0:
        errors.append('"productId" must be a positive integer')

    quantity = _as_number(payload.get("quantity"))
    if payload.get("quantity") is None:
        errors.append('"quantity" is required')
    elif quantity is None or quantity <= 0:
        errors.append('"quantity" must be a positive number')

    price = _as_number(payload.get("price"))
    if payload.get("price") is None:
        errors.append('"price" is required')
    elif price is None or price < 0:
        errors.append('"price" must be greater than or equal to 0')

    optional = _item_optionals(payload, errors)
    if errors:
        return None, errors
    return (
        CartItemInput(
            product_id=int(float(product_id)),
            quantity=float(quantity),
            price=float(price),
            times=optional.get("times", 1),
            consumer_price=optional.get("consumerPrice"),
            ipi=optional.get("ipi", 0.0),
            st=optional.get("st", 0.0),
            ttd=optional.get("ttd", 0),
            decision_id=optional.get("decisionId"),
        ),
        [],
    )


def validate_item_update(payload: Dict[str, Any]) -> Tuple[Dict[str, Any], List[str]]:
    payload = dict(payload or {})
    errors: List[str] = []
    changes: Dict[str, Any] = {}

    if payload.get("productId") is not None:
        if not _is_int(payload["productId"]) or int(float(payload["productId"])) <= 0:
            errors.append('"productId" must be a positive integer')
        else:
            changes["productId"] = int(float(payload["productId"]))
    if payload.get("quantity") is not None:
        quantity = _as_number(payload["quantity"])
        if quantity is None or quantity <= 0:
            errors.append('"quantity" must be a positive number')
        else:
            changes["quantity"] = quantity
    if payload.get("price") is not None:
        price = _as_number(payload["price"])
        if price is None or price < 0:
            errors.append('"price" must be greater than or equal to 0')
        else:
            changes["price"] = price
    changes.update(_item_optionals(payload, errors))
    return changes, errors


def _item_optionals(payload: Dict[str, Any], errors: List[str]) -> Dict[str, Any]:
    value: Dict[str, Any] = {}
    for field in ("consumerPrice", "ipi", "st"):
        if payload.get(field) is None:
            continue
        number = _as_number(payload[field])
        if number is None or number < 0:
            errors.append(f'"{field}" must be greater than or equal to 0')
        else:
            value[field] = number
    if payload.get("times") is not None:
        if not _is_int(payload["times"]) or int(float(payload["times"])) < 0:
            errors.append('"times" must be an integer greater than or equal to 0')
        else:
            value["times"] = int(float(payload["times"]))
    if payload.get("ttd") is not None:
        if not _is_int(payload["ttd"]):
            errors.append('"ttd" must be an integer')
        else:
            value["ttd"] = int(float(payload["ttd"]))
    if "decisionId" in payload:
        decision_id = payload["decisionId"]
        if decision_id is not None and not isinstance(decision_id, str):
            errors.append('"decisionId" must be a string')
        else:
            value["decisionId"] = decision_id or None
    return value


def validate_convert(lead_id: int, payload: Dict[str, Any] | None) -> Tuple[ConvertLeadInput | None, List[str]]:
    payload = dict(payload or {})
    errors: List[str] = []
    remarks = _remarks(payload.get("remarks"), errors)
    transporter = payload.get("cTransporter")
    if transporter is not None and not _is_int(transporter):
        errors.append('"cTransporter" must be an integer')
    if errors:
        return None, errors
    return (
        ConvertLeadInput(
            lead_id=lead_id,
            remarks=remarks,
            transporter_id=int(float(transporter)) if transporter is not None else None,
        ),
        [],
    )
