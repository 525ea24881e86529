from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Dict, List


@dataclass(frozen=True)
class ServiceOutput:
    payload: Dict[str, Any]
    status_code: int = 200


@dataclass(frozen=True)
class Actor:
    """Acting user as forwarded by the authentication layer."""

    user_id: int | None = None
    user_name: str | None = None
    ip_address: str | None = None
    user_agent: str | None = None
    request_id: str | None = None


@dataclass(frozen=True)
class LeadListQuery:
    filters: Dict[str, Any]
    page: int = 1
    limit: int = 20
    sort_by: str = "date"
    sort_dir: str = "desc"


@dataclass(frozen=True)
class CartItemInput:
    product_id: int
    quantity: float
    price: float
    times: int = 1
    consumer_price: float | None = None
    ipi: float = 0.0
    st: float = 0.0
    ttd: int = 0
    decision_id: str | None = None


@dataclass(frozen=True)
class CartItemUpdateInput:
    item_id: int
    changes: Dict[str, Any]


@dataclass(frozen=True)
class ConvertLeadInput:
    lead_id: int
    remarks: Dict[str, str] | None = None
    transporter_id: int | None = None


@dataclass(frozen=True)
class PricingItem:
    product_id: int
    quantity: float
    unit_price: float | None = None
    unit_price_list: float | None = None


@dataclass(frozen=True)
class PricingRequest:
    customer_id: int | None
    seller_id: int | None
    items: List[PricingItem]
    lead_id: int | None = None
    cart_id: int | None = None
    seller_level: int | None = None
    source: str = "CRM"
    action: str = "CALCULATE"
    previous_event_id: str | None = None
    created_by: int | None = None
    ip_address: str | None = None


@dataclass(frozen=True)
class PriceCheckResult:
    """Outcome of an auxiliary pricing check: ``ok``, ``warning`` or ``blocking``."""

    kind: str
    reason: str | None = None
    event: Dict[str, Any] | None = None
    details: Dict[str, Any] = field(default_factory=dict)

    @property
    def is_blocking(self) -> bool:
        return self.kind == "blocking"
