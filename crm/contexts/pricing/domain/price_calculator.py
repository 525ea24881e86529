from __future__ import annotations

from typing import Any, Dict, List, Mapping, Sequence


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _percent(part: float, whole: float) -> float:
    if not whole:
        return 0.0
    return part / whole * 100


def calculate(
    items: Sequence[Mapping[str, Any]],
    customer_context: Mapping[str, Any] | None,
    policy_evaluation: Mapping[str, Any],
) -> Dict[str, Any]:
    """Gross, net, discount and margin per item and in aggregate, validated against the policy limits.

    Each item carries ``unit_price_list`` and ``unit_cost`` (catalog values) and an optional
    ``unit_price_applied`` chosen by the seller; without it the list price is used.
    Percentages over a zero base are reported as 0.
    """
    limits = policy_evaluation.get("limits") or {}

    subtotal_gross = 0.0
    total_discounts = 0.0
    total_cost = 0.0
    processed: List[Dict[str, Any]] = []

    for item in items:
        unit_price_list = _as_float(item.get("unit_price_list"))
        unit_cost = _as_float(item.get("unit_cost"))
        quantity = _as_float(item.get("quantity")) or 1.0
        unit_price_applied = _as_float(item.get("unit_price_applied")) or unit_price_list

        gross = unit_price_list * quantity
        net = unit_price_applied * quantity
        discount_absolute = gross - net
        margin_absolute = net - unit_cost * quantity

        processed.append(
            {
                **dict(item),
                "unit_price_list": unit_price_list,
                "unit_price_applied": unit_price_applied,
                "unit_cost": unit_cost,
                "quantity": quantity,
                "total_gross": gross,
                "total_net": net,
                "discount_percent": round(_percent(discount_absolute, gross), 2),
                "margin_percent": round(_percent(margin_absolute, net), 2),
            }
        )
        subtotal_gross += gross
        total_discounts += discount_absolute
        total_cost += unit_cost * quantity

    subtotal_net = subtotal_gross - total_discounts
    margin_absolute = subtotal_net - total_cost
    margin_percent = _percent(margin_absolute, subtotal_net)
    discount_percent = _percent(total_discounts, subtotal_gross)

    min_margin = _as_float(limits.get("min_margin_percent"))
    max_discount = _as_float(limits.get("max_discount_percent")) or 100.0
    margin_ok = margin_percent >= min_margin
    discount_ok = discount_percent <= max_discount
    credit_ok = not bool(limits.get("credit_restricted"))
    is_within_policy = margin_ok and discount_ok and credit_ok

    return {
        "price_base": subtotal_gross,
        "price_final": subtotal_net,
        "discount_total": total_discounts,
        "discount_percent": round(discount_percent, 2),
        "margin_absolute": margin_absolute,
        "margin_percent": round(margin_percent, 2),
        "total_cost": total_cost,
        "items": processed,
        "is_within_policy": is_within_policy,
        "requires_approval": not is_within_policy,
        "validation_details": {
            "margin_ok": margin_ok,
            "discount_ok": discount_ok,
            "credit_ok": credit_ok,
            "min_margin_required": limits.get("min_margin_percent"),
            "max_discount_allowed": limits.get("max_discount_percent"),
        },
    }
