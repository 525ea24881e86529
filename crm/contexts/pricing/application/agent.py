from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List

from crm.contexts.insights.infrastructure.repositories.alert_repository import AlertRepository
from crm.contexts.insights.infrastructure.repositories.churn_repository import ChurnRepository
from crm.contexts.pricing.application.governance import DecisionLogger, ExceptionHandler, FreezeManager
from crm.contexts.pricing.application.policy_engine import PolicyEngine
from crm.contexts.pricing.domain import price_calculator, risk
from crm.contexts.pricing.domain.policies import CREDIT_APPROVED, CREDIT_RESTRICTED, CREDIT_UNKNOWN
from crm.contexts.pricing.infrastructure.repositories.decision_repository import DecisionRepository
from crm.contexts.sales.infrastructure.repositories.catalog_repository import CatalogRepository
from crm.core import EventBus, PricingDecisionLogged, get_event_bus
from crm.db import utc_timestamp
from crm.domain.contracts import PriceCheckResult, PricingItem, PricingRequest
from crm.errors import DecisionNotFoundError, FrozenPriceError
from crm.observability import observe_pricing_decision


LOGGER = logging.getLogger("crm.pricing")

FROZEN_PRICE_REASON = "ESTE_PRECO_ESTA_CONGELADO"
METRICS_WINDOW_DAYS = 30


class PricingAgent:
    """Single authority for price decisions: policy, calculation, risk, decision trail and freeze."""

    def __init__(
        self,
        policy_engine: PolicyEngine | None = None,
        decision_logger: DecisionLogger | None = None,
        freeze_manager: FreezeManager | None = None,
        exception_handler: ExceptionHandler | None = None,
        catalog: CatalogRepository | None = None,
        churn_repository: ChurnRepository | None = None,
        alert_repository: AlertRepository | None = None,
        decisions: DecisionRepository | None = None,
        event_bus: EventBus | None = None,
        seller_level_default: int = 1,
    ) -> None:
        self.decisions = decisions or DecisionRepository()
        self.policy_engine = policy_engine or PolicyEngine()
        self.decision_logger = decision_logger or DecisionLogger(self.decisions)
        self.freeze_manager = freeze_manager or FreezeManager(self.decisions)
        self.exception_handler = exception_handler or ExceptionHandler(decisions=self.decisions)
        self.catalog = catalog or CatalogRepository()
        self.churn_repository = churn_repository or ChurnRepository()
        self.alert_repository = alert_repository or AlertRepository()
        self.event_bus = event_bus or get_event_bus()
        self.seller_level_default = int(seller_level_default or 1)

    def build_context(self, db, request: PricingRequest) -> Dict[str, Any]:
        customer = self.catalog.find_customer(db, request.customer_id)
        churn = self.churn_repository.find_score(db, request.customer_id)

        if customer is None:
            credit_status = CREDIT_UNKNOWN
        elif float(customer.get("limite") or 0) > 0:
            credit_status = CREDIT_APPROVED
        else:
            credit_status = CREDIT_RESTRICTED

        return {
            "customer_context": {
                "customer_id": request.customer_id,
                "name": customer.get("nome") if customer else "Unknown",
                "credit_status": credit_status,
                "segment": (customer.get("segmento") if customer else None) or "GERAL",
                "churn_risk": churn["risk_level"] if churn else "UNKNOWN",
                "churn_score": int(churn["score"] or 0) if churn else 0,
            },
            "seller_context": {
                "seller_id": request.seller_id,
                "level": request.seller_level or self.seller_level_default,
            },
            "transaction_context": {
                "items_count": len(request.items),
            },
        }

    def enrich_items(self, db, items: List[PricingItem]) -> List[Dict[str, Any]]:
        products = self.catalog.find_products(db, [item.product_id for item in items])
        enriched = []
        for item in items:
            product = products.get(int(item.product_id))
            enriched.append(
                {
                    "product_id": item.product_id,
                    "quantity": item.quantity,
                    "unit_price_applied": item.unit_price,
                    "unit_price_list": float(product.get("revenda") or 0) if product else float(item.unit_price_list or 0),
                    "unit_cost": float(product.get("custo") or 0) if product else 0.0,
                    "name": product.get("nome") if product else "Produto Desconhecido",
                }
            )
        return enriched

    def calculate(self, db, request: PricingRequest) -> Dict[str, Any]:
        LOGGER.info(
            "pricing_calculation_started",
            extra={"customer_id": request.customer_id, "lead_id": request.lead_id, "action": request.action},
        )
        context = self.build_context(db, request)

        if request.previous_event_id and self.freeze_manager.check_is_frozen(db, request.previous_event_id):
            LOGGER.warning("pricing_frozen_violation", extra={"event_id": request.previous_event_id})
            raise FrozenPriceError(request.previous_event_id)

        policy_evaluation = self.policy_engine.evaluate(db, context)
        enriched_items = self.enrich_items(db, request.items)
        pricing_result = price_calculator.calculate(enriched_items, context["customer_context"], policy_evaluation)
        risk_level = risk.classify(pricing_result, context["customer_context"])

        event = self.decision_logger.log(
            db,
            {
                "source": request.source or "CRM",
                "action": request.action or "CALCULATE",
                "customer_context": context["customer_context"],
                "seller_context": context["seller_context"],
                "transaction_context": {
                    **context["transaction_context"],
                    "lead_id": request.lead_id,
                    "cart_id": request.cart_id,
                    "items": enriched_items,
                },
                "policy_context": policy_evaluation,
                "pricing_result": pricing_result,
                "risk_level": risk_level,
                "compliance_status": "APPROVED" if pricing_result["is_within_policy"] else "PENDING_APPROVAL",
                "is_within_policy": pricing_result["is_within_policy"],
                "requires_approval": pricing_result["requires_approval"],
                "metadata": {
                    "created_by": request.created_by if request.created_by is not None else request.seller_id,
                    "ip_address": request.ip_address,
                    "previous_event_id": request.previous_event_id,
                },
            },
        )
        observe_pricing_decision(risk_level)

        if risk_level in (risk.RISK_HIGH, risk.RISK_CRITICAL):
            self._create_risk_alert(db, request, risk_level, pricing_result, event["event_id"])

        self.event_bus.publish(
            PricingDecisionLogged(
                decision_event_id=event["event_id"],
                risk_level=risk_level,
                lead_id=request.lead_id,
                is_within_policy=bool(pricing_result["is_within_policy"]),
            )
        )
        return {**event, "risk_action": risk.suggest_action(risk_level)}

    def _create_risk_alert(
        self,
        db,
        request: PricingRequest,
        risk_level: str,
        pricing_result: Dict[str, Any],
        event_id: str,
    ) -> None:
        margin = float(pricing_result.get("margin_percent") or 0)
        try:
            self.alert_repository.create(
                db,
                user_id=request.seller_id,
                type="danger" if risk_level == risk.RISK_CRITICAL else "warning",
                category="PRICING_RISK",
                title=f"Risco {risk_level} em simulacao",
                description=(
                    f"Uma simulacao de preco para o cliente #{request.customer_id} resultou em risco "
                    f"{risk_level}. Margem: {margin:.1f}%."
                ),
                reference_id=event_id,
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception("pricing_risk_alert_failed", extra={"event_id": event_id})

    def check(self, db, request: PricingRequest) -> PriceCheckResult:
        """Run the pipeline as an auxiliary step; only a frozen price is blocking."""
        try:
            event = self.calculate(db, request)
        except FrozenPriceError as exc:
            return PriceCheckResult(
                kind="blocking",
                reason=FROZEN_PRICE_REASON,
                details={"eventId": exc.event_id},
            )
        except Exception as exc:  # noqa: BLE001
            LOGGER.warning("pricing_check_failed", extra={"lead_id": request.lead_id, "error": str(exc)})
            return PriceCheckResult(kind="warning", reason=str(exc) or type(exc).__name__)

        if event.get("is_within_policy"):
            return PriceCheckResult(kind="ok", event=event)
        return PriceCheckResult(
            kind="warning",
            reason="requires_approval",
            event=event,
            details={"riskLevel": event.get("risk_level"), "riskAction": event.get("risk_action")},
        )

    def freeze(self, db, event_id: str) -> Dict[str, Any]:
        return self.freeze_manager.freeze(db, event_id)

    def freeze_lead(self, db, lead_id: int, order_id: int | None = None) -> int:
        return self.freeze_manager.freeze_lead(db, lead_id, order_id)

    def latest_event_id(self, db, lead_id: int) -> str | None:
        event = self.decisions.latest_for_lead(db, lead_id)
        return event["event_id"] if event else None

    def request_exception(self, db, event_id: str, reason: str | None, seller_id: int | None = None) -> Dict[str, Any]:
        event = self.decisions.find_by_event_id(db, event_id)
        if event is None:
            raise DecisionNotFoundError(event_id)
        metadata = dict(event.get("metadata") or {})
        if not metadata.get("created_by") and seller_id:
            metadata["created_by"] = seller_id
        return self.exception_handler.request(db, {**event, "metadata": metadata}, reason)

    def decide_exception(
        self,
        db,
        exception_id: str,
        status: str,
        approver_id: int | None,
        notes: str | None,
    ) -> Dict[str, Any]:
        return self.exception_handler.decide(db, exception_id, status, approver_id, notes)

    def metrics(self, db) -> Dict[str, Any]:
        since = utc_timestamp(datetime.now(timezone.utc) - timedelta(days=METRICS_WINDOW_DAYS))
        return self.decisions.metrics_since(db, since)
