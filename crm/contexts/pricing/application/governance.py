"""Decision trail of the pricing pipeline: logging, price freeze and policy exceptions."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Mapping

from crm.contexts.pricing.infrastructure.repositories.decision_repository import DecisionRepository
from crm.contexts.pricing.infrastructure.repositories.exception_repository import ExceptionRepository
from crm.db import utc_timestamp
from crm.errors import PricingExceptionNotFoundError, ValidationError
from crm.ui_strings import success_message


LOGGER = logging.getLogger("crm.pricing")

EVENT_VERSION = "1.0"
EXCEPTION_TTL_HOURS = 24
EXCEPTION_STATUSES = ("APPROVED", "REJECTED")


def _int_or(value: Any, default: int | None) -> int | None:
    try:
        return int(value) if value not in (None, "") else default
    except (TypeError, ValueError):
        return default


class DecisionLogger:
    def __init__(self, repository: DecisionRepository | None = None) -> None:
        self.repository = repository or DecisionRepository()

    def log(self, db, event_data: Mapping[str, Any]) -> Dict[str, Any]:
        """Persist one decision event and return it.

        Persistence is best-effort: a storage failure is logged and the in-memory
        event is still returned so the caller's flow goes on.
        """
        event: Dict[str, Any] = {
            "event_id": str(uuid.uuid4()),
            "event_version": EVENT_VERSION,
            "event_timestamp": utc_timestamp(),
            "is_frozen": False,
            **dict(event_data),
        }
        customer_context = event.get("customer_context") or {}
        seller_context = event.get("seller_context") or {}
        transaction_context = event.get("transaction_context") or {}
        policy_context = event.get("policy_context") or {}
        pricing_result = event.get("pricing_result") or {}
        metadata = event.get("metadata") or {}

        record = {
            **event,
            "customer_id": _int_or(customer_context.get("customer_id"), 0),
            "seller_id": _int_or(seller_context.get("seller_id"), 0),
            "lead_id": _int_or(transaction_context.get("lead_id"), None),
            "order_id": _int_or(transaction_context.get("order_id"), None),
            "cart_id": _int_or(transaction_context.get("cart_id"), 0),
            "policy_version": policy_context.get("policy_version") or EVENT_VERSION,
            "price_base": pricing_result.get("price_base") or 0,
            "price_final": pricing_result.get("price_final") or 0,
            "discount_total": pricing_result.get("discount_total") or 0,
            "discount_percent": pricing_result.get("discount_percent") or 0,
            "margin_absolute": pricing_result.get("margin_absolute") or 0,
            "margin_percent": pricing_result.get("margin_percent") or 0,
            "risk_level": event.get("risk_level") or "LOW",
            "compliance_status": event.get("compliance_status") or "APPROVED",
            "is_within_policy": 1 if event.get("is_within_policy") else 0,
            "requires_approval": 1 if event.get("requires_approval") else 0,
            "is_frozen": 1 if event.get("is_frozen") else 0,
            "created_by": _int_or(metadata.get("created_by"), 0),
        }

        try:
            self.repository.insert(db, record)
            LOGGER.info("pricing_decision_logged", extra={"event_id": event["event_id"], "action": event.get("action")})
        except Exception:  # noqa: BLE001
            LOGGER.exception("pricing_decision_log_failed", extra={"event_id": event["event_id"]})
        return event


class FreezeManager:
    def __init__(self, repository: DecisionRepository | None = None) -> None:
        self.repository = repository or DecisionRepository()

    def freeze(self, db, event_id: str, order_id: int | None = None) -> Dict[str, Any]:
        LOGGER.info("pricing_event_freeze", extra={"event_id": event_id, "order_id": order_id})
        updated = self.repository.freeze(db, event_id, order_id)
        return {"success": updated > 0, "event_id": event_id, "is_frozen": True}

    def freeze_lead(self, db, lead_id: int, order_id: int | None = None) -> int:
        frozen = self.repository.freeze_by_lead(db, lead_id, order_id)
        LOGGER.info("pricing_lead_frozen", extra={"lead_id": lead_id, "order_id": order_id, "events": frozen})
        return frozen

    def check_is_frozen(self, db, event_id: str) -> bool:
        try:
            return self.repository.is_frozen(db, event_id)
        except Exception:  # noqa: BLE001 - falha de leitura e tratada como nao congelado
            LOGGER.warning("pricing_freeze_check_failed", extra={"event_id": event_id}, exc_info=True)
            return False


class ExceptionHandler:
    def __init__(self, repository: ExceptionRepository | None = None, decisions: DecisionRepository | None = None) -> None:
        self.repository = repository or ExceptionRepository()
        self.decisions = decisions or DecisionRepository()

    def request(self, db, decision_event: Mapping[str, Any], reason: str | None) -> Dict[str, Any]:
        exception_id = str(uuid.uuid4())
        pricing_result = decision_event.get("pricing_result") or {}
        metadata = decision_event.get("metadata") or {}
        expires_at = utc_timestamp(datetime.now(timezone.utc) + timedelta(hours=EXCEPTION_TTL_HOURS))

        LOGGER.info(
            "pricing_exception_requested",
            extra={"exception_id": exception_id, "event_id": decision_event.get("event_id")},
        )
        self.repository.insert(
            db,
            {
                "exception_id": exception_id,
                "event_id": decision_event.get("event_id"),
                "status": "PENDING",
                "requested_by": _int_or(metadata.get("created_by"), 0),
                "requested_discount": pricing_result.get("discount_percent") or 0,
                "requested_reason": (reason or "").strip() or "Nao informada",
                "margin_impact": pricing_result.get("margin_absolute") or 0,
                "expires_at": expires_at,
            },
        )
        return {
            "success": True,
            "exception_id": exception_id,
            "status": "PENDING",
            "expires_at": expires_at,
            "message": success_message("exception_requested"),
        }

    def decide(self, db, exception_id: str, status: str, approver_id: int | None, notes: str | None) -> Dict[str, Any]:
        normalized = str(status or "").strip().upper()
        if normalized not in EXCEPTION_STATUSES:
            raise ValidationError(
                code="EXCEPTION_STATUS_INVALID",
                message_key="exception_status_invalid",
                payload={"allowed": list(EXCEPTION_STATUSES)},
            )
        existing = self.repository.find(db, exception_id)
        if existing is None:
            raise PricingExceptionNotFoundError(payload={"exceptionId": exception_id})

        LOGGER.info(
            "pricing_exception_decided",
            extra={"exception_id": exception_id, "status": normalized, "approver_id": approver_id},
        )
        self.repository.decide(db, exception_id, status=normalized, approver_id=approver_id, notes=notes)
        if normalized == "APPROVED":
            self.decisions.set_compliance_status(db, existing["event_id"], "APPROVED_BY_EXCEPTION")
        return {"success": True, "exception_id": exception_id, "new_status": normalized}
