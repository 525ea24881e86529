from __future__ import annotations

from typing import Any, Dict

from crm.ui_strings import error_message


class AppError(Exception):
    default_code = "INTERNAL_ERROR"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True

    def __init__(
        self,
        code: str | None = None,
        message_key: str | None = None,
        http_status: int | None = None,
        critical: bool | None = None,
        details: str | None = None,
        payload: Dict[str, Any] | None = None,
        message: str | None = None,
    ) -> None:
        self.code = (code or self.default_code).strip()
        self.message_key = (message_key or self.default_message_key).strip()
        self.http_status = int(http_status or self.default_http_status)
        self.critical = bool(self.default_critical if critical is None else critical)
        self.details = (details or "").strip() or None
        self.payload = dict(payload or {})
        self.message = (message or "").strip() or None
        super().__init__(self.message or self.details or self.code)

    def user_message(self) -> str:
        if self.message:
            return self.message
        fallback = error_message("unexpected_error", "Nao foi possivel concluir a operacao.")
        return error_message(self.message_key, fallback)

    def to_response_payload(self, request_id: str) -> Dict[str, Any]:
        error: Dict[str, Any] = {
            "code": self.code,
            "message": self.user_message(),
        }
        if self.payload:
            error.update(self.payload)
        return {
            "success": False,
            "error": error,
            "request_id": request_id,
        }


class UserActionError(AppError):
    default_code = "ACTION_INVALID"
    default_message_key = "action_invalid"
    default_http_status = 400
    default_critical = False


class ValidationError(UserActionError):
    default_code = "VALIDATION_ERROR"
    default_message_key = "validation_error"
    default_http_status = 400
    default_critical = False


class NotFoundError(UserActionError):
    default_code = "NOT_FOUND"
    default_message_key = "not_found"
    default_http_status = 404


class ConflictError(UserActionError):
    default_code = "CONFLICT"
    default_message_key = "action_invalid"
    default_http_status = 409


class BusinessRuleError(UserActionError):
    default_code = "BUSINESS_RULE_VIOLATION"
    default_message_key = "action_invalid"
    default_http_status = 422


class PermissionError(UserActionError):
    default_code = "FORBIDDEN"
    default_message_key = "permission_denied"
    default_http_status = 403
    default_critical = False


class IntegrationError(AppError):
    default_code = "EXTERNAL_SERVICE_ERROR"
    default_message_key = "pricing_api_unavailable"
    default_http_status = 502
    default_critical = False


class SystemError(AppError):
    default_code = "INTERNAL_ERROR"
    default_message_key = "unexpected_error"
    default_http_status = 500
    default_critical = True


class LeadNotFoundError(NotFoundError):
    default_code = "LEAD_NOT_FOUND"
    default_message_key = "lead_not_found"

    def __init__(self, lead_id: int | None = None) -> None:
        label = f"Lead #{lead_id} nao encontrado" if lead_id else None
        super().__init__(message=label, payload={"leadId": lead_id} if lead_id else None)


class ItemNotFoundError(NotFoundError):
    default_code = "ITEM_NOT_FOUND"
    default_message_key = "item_not_found"

    def __init__(self, item_id: int | None = None, lead_id: int | None = None) -> None:
        payload = {key: value for key, value in (("itemId", item_id), ("leadId", lead_id)) if value}
        super().__init__(payload=payload)


class OrderNotFoundError(NotFoundError):
    default_code = "ORDER_NOT_FOUND"
    default_message_key = "order_not_found"

    def __init__(self, order_id: int | None = None) -> None:
        label = f"Pedido #{order_id} nao encontrado" if order_id else None
        super().__init__(message=label)


class LeadAlreadyConvertedError(ConflictError):
    default_code = "LEAD_ALREADY_CONVERTED"
    default_message_key = "lead_already_converted"

    def __init__(self, lead_id: int, order_id: int | None = None) -> None:
        payload: Dict[str, Any] = {"leadId": lead_id}
        if order_id:
            payload["orderId"] = order_id
        super().__init__(payload=payload)


class EmptyCartError(BusinessRuleError):
    default_code = "EMPTY_CART"
    default_message_key = "empty_cart"


class InsufficientStockError(BusinessRuleError):
    default_code = "INSUFFICIENT_STOCK"
    default_message_key = "insufficient_stock"

    def __init__(self, product_id: int, requested: float | None = None) -> None:
        self.product_id = int(product_id)
        payload: Dict[str, Any] = {"productId": self.product_id}
        if requested is not None:
            payload["requested"] = requested
        super().__init__(message=f"Produto {self.product_id} sem estoque disponivel", payload=payload)


class StockUnitNotFoundError(NotFoundError):
    default_code = "STOCK_UNIT_NOT_FOUND"
    default_message_key = "stock_unit_not_found"


class InvalidStockUnitError(SystemError):
    default_code = "STOCK_UNIT_INVALID"
    default_message_key = "stock_unit_invalid"


class InvalidTaxStateError(ValidationError):
    default_code = "TAX_STATE_INVALID"
    default_message_key = "tax_state_invalid"


class FrozenPriceError(UserActionError):
    """Pricing recalculation attempted against a frozen decision event."""

    default_code = "PRICE_FROZEN"
    default_message_key = "price_frozen"
    default_http_status = 400

    def __init__(self, event_id: str | None = None) -> None:
        self.event_id = event_id
        super().__init__(payload={"eventId": event_id} if event_id else None)


def invalid_id(resource: str = "recurso") -> ValidationError:
    return ValidationError(code="INVALID_ID", message_key="invalid_id", message=f"ID de {resource} invalido")


def validation_failed(details: list[str]) -> ValidationError:
    return ValidationError(payload={"details": list(details)})


class DecisionNotFoundError(NotFoundError):
    default_code = "DECISION_NOT_FOUND"
    default_message_key = "decision_not_found"

    def __init__(self, event_id: str | None = None) -> None:
        super().__init__(payload={"eventId": event_id} if event_id else None)


class PricingExceptionNotFoundError(NotFoundError):
    default_code = "EXCEPTION_NOT_FOUND"
    default_message_key = "exception_not_found"


class AlertNotFoundError(NotFoundError):
    default_code = "ALERT_NOT_FOUND"
    default_message_key = "alert_not_found"
