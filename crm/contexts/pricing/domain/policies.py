from __future__ import annotations

import copy
from typing import Any, Dict, List, Mapping, Sequence


POLICY_VERSION = "v1-2026"

POLICY_MINIMUM_MARGIN = "MINIMUM_MARGIN"
POLICY_DISCOUNT_LIMIT = "DISCOUNT_LIMIT"
POLICY_CREDIT_RESTRICTION = "CREDIT_RESTRICTION"

CREDIT_APPROVED = "APPROVED"
CREDIT_RESTRICTED = "RESTRICTED"
CREDIT_BLOCKED = "BLOCKED"
CREDIT_UNKNOWN = "UNKNOWN"

DEFAULT_LIMITS: Dict[str, Any] = {
    "min_margin_percent": 20.0,
    "max_discount_percent": 5.0,
    "requires_approval_above": 5.0,
    "credit_restricted": False,
}

DEFAULT_POLICIES: List[Dict[str, Any]] = [
    {
        "policy_id": "POL-Q1-MARGIN-001",
        "policy_name": "Margem Minima Q1 2026",
        "policy_type": POLICY_MINIMUM_MARGIN,
        "priority": 10,
        "config": {"value": 20},
    },
    {
        "policy_id": "POL-Q1-DISCOUNT-001",
        "policy_name": "Limites de Desconto por Nivel Q1",
        "policy_type": POLICY_DISCOUNT_LIMIT,
        "priority": 20,
        "config": {"levels": {"1": 5, "2": 7, "3": 10, "4": 12, "5": 15, "6": 20}},
    },
]

SAFETY_NET_CREDIT_POLICY: Dict[str, Any] = {
    "policy_id": "SAFETY_NET_CREDIT",
    "policy_name": "Bloqueio de Credito Compulsorio",
    "policy_type": POLICY_CREDIT_RESTRICTION,
    "priority": 0,
    "reason": "Cliente com status BLOCKED no sistema",
}


def default_policies() -> List[Dict[str, Any]]:
    return copy.deepcopy(DEFAULT_POLICIES)


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def _level_limit(levels: Mapping[Any, Any] | None, seller_level: Any) -> float | None:
    if not levels:
        return None
    for key in (seller_level, str(seller_level)):
        if key in levels and levels[key] not in (None, ""):
            return _as_float(levels[key])
    return None


def check_conditions(policy: Mapping[str, Any], context: Mapping[str, Any]) -> bool:
    # Conditions stored with a policy are not interpreted yet: every active policy applies.
    return True


def apply_policy_effect(policy: Mapping[str, Any], limits: Dict[str, Any], context: Mapping[str, Any]) -> None:
    policy_type = policy.get("policy_type")
    config = policy.get("config") or {}

    if policy_type == POLICY_MINIMUM_MARGIN:
        limits["min_margin_percent"] = max(
            _as_float(limits.get("min_margin_percent")),
            _as_float(config.get("value")),
        )
    elif policy_type == POLICY_DISCOUNT_LIMIT:
        seller_level = (context.get("seller_context") or {}).get("level") or 1
        limit = _level_limit(config.get("levels"), seller_level)
        if limit:
            limits["max_discount_percent"] = limit
            limits["requires_approval_above"] = limit
    elif policy_type == POLICY_CREDIT_RESTRICTION:
        if (context.get("customer_context") or {}).get("credit_status") == CREDIT_RESTRICTED:
            limits["credit_restricted"] = True


def evaluate_policies(
    policies: Sequence[Mapping[str, Any]],
    context: Mapping[str, Any],
    *,
    version: str = POLICY_VERSION,
) -> Dict[str, Any]:
    """Fold every applicable policy into the commercial limits for one pricing context.

    Policies are applied in the given order (priority ascending). A customer whose
    credit status is BLOCKED is always credit restricted, whatever the loaded policies say.
    """
    limits = dict(DEFAULT_LIMITS)
    applied: List[Dict[str, Any]] = []

    for policy in policies:
        if not check_conditions(policy, context):
            continue
        applied.append(
            {
                "policy_id": policy.get("policy_id"),
                "policy_name": policy.get("policy_name"),
                "policy_type": policy.get("policy_type"),
                "priority": policy.get("priority"),
                "reason": f"Aplicada via regra: {policy.get('policy_name')}",
            }
        )
        apply_policy_effect(policy, limits, context)

    if (context.get("customer_context") or {}).get("credit_status") == CREDIT_BLOCKED:
        limits["credit_restricted"] = True
        applied.append(dict(SAFETY_NET_CREDIT_POLICY))

    return {
        "policy_version": version,
        "applied_policies": applied,
        "limits": limits,
    }
