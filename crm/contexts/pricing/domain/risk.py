from __future__ import annotations

from typing import Any, Mapping


RISK_LOW = "LOW"
RISK_MEDIUM = "MEDIUM"
RISK_HIGH = "HIGH"
RISK_CRITICAL = "CRITICAL"

RISK_ACTIONS = {
    RISK_CRITICAL: "BLOQUEAR: Margem inviavel ou risco extremo de churn. Requer intervencao da diretoria.",
    RISK_HIGH: "REVISAR: Margem abaixo da politica ou situacao financeira instavel. Requer aprovacao da gerencia.",
    RISK_MEDIUM: "MONITORAR: Leve desvio da politica. Aprovacao automatica permitida com acompanhamento.",
    RISK_LOW: "APROVAR: Operacao saudavel e dentro das politicas.",
}


def _as_float(value: Any, default: float = 0.0) -> float:
    try:
        return float(value)
    except (TypeError, ValueError):
        return default


def classify(pricing_result: Mapping[str, Any], customer_context: Mapping[str, Any] | None) -> str:
    """First matching rule wins, from CRITICAL down to LOW."""
    customer_context = customer_context or {}
    margin = _as_float(pricing_result.get("margin_percent"))
    within_policy = bool(pricing_result.get("is_within_policy"))
    details = pricing_result.get("validation_details") or {}
    churn = _as_float(customer_context.get("churn_score"))

    if margin < 0:
        return RISK_CRITICAL
    if churn >= 80 and margin < 10:
        return RISK_CRITICAL

    if details.get("credit_ok") is False:
        return RISK_HIGH
    if churn >= 60 and not within_policy:
        return RISK_HIGH
    if details.get("min_margin_required") is not None and margin < _as_float(details["min_margin_required"]) - 5:
        return RISK_HIGH

    if not within_policy:
        return RISK_MEDIUM
    if customer_context.get("credit_status") == "RESTRICTED":
        return RISK_MEDIUM
    if churn >= 40:
        return RISK_MEDIUM

    return RISK_LOW


def suggest_action(risk_level: str) -> str:
    return RISK_ACTIONS.get(risk_level, RISK_ACTIONS[RISK_LOW])
