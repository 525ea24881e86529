from __future__ import annotations

from dataclasses import dataclass

from flask import current_app

from crm.contexts.insights.application.alert_service import AlertService
from crm.contexts.insights.application.churn_service import ChurnService
from crm.contexts.insights.application.deviation_service import DeviationService
from crm.contexts.insights.infrastructure.repositories.alert_repository import AlertRepository
from crm.contexts.insights.infrastructure.repositories.churn_repository import ChurnRepository
from crm.contexts.platform.application.audit_log import AuditLogService
from crm.contexts.pricing.application.agent import PricingAgent
from crm.contexts.sales.application.lead_service import LeadService
from crm.contexts.sales.infrastructure.repositories.catalog_repository import CatalogRepository
from crm.contexts.sales.infrastructure.repositories.lead_repository import LeadRepository
from crm.contexts.sales.infrastructure.repositories.order_repository import OrderRepository
from crm.contexts.sales.infrastructure.repositories.stock_repository import StockRepository
from crm.core import TtlCache, get_event_bus
from crm.db import parse_stock_suffixes


@dataclass
class ServiceGraph:
    lead_service: LeadService
    pricing_agent: PricingAgent
    alert_service: AlertService
    churn_service: ChurnService
    deviation_service: DeviationService
    cache: TtlCache


def build_services(config) -> ServiceGraph:
    """Wire one set of services per application from its config mapping."""
    event_bus = get_event_bus()
    cache = TtlCache(int(config.get("CART_TOTALS_CACHE_TTL_SECONDS", 300)))
    catalog = CatalogRepository()
    alerts = AlertRepository()
    churn_repository = ChurnRepository()
    leads = LeadRepository()
    stock = StockRepository(
        allowed_suffixes=parse_stock_suffixes(config.get("STOCK_UNIT_SUFFIXES")),
        allow_negative_stock=bool(config.get("ALLOW_NEGATIVE_STOCK", False)),
    )

    pricing_agent = PricingAgent(
        catalog=catalog,
        churn_repository=churn_repository,
        alert_repository=alerts,
        event_bus=event_bus,
        seller_level_default=int(config.get("PRICING_SELLER_LEVEL_DEFAULT", 1)),
    )
    churn_service = ChurnService(churn_repository, alerts)
    lead_service = LeadService(
        lead_repository=leads,
        catalog_repository=catalog,
        order_repository=OrderRepository(stock_repository=stock, lead_repository=leads),
        pricing_agent=pricing_agent,
        audit_service=AuditLogService(),
        cache=cache,
        event_bus=event_bus,
        page_size_default=int(config.get("LEADS_PAGE_SIZE_DEFAULT", 20)),
        page_size_max=int(config.get("LEADS_PAGE_SIZE_MAX", 100)),
        totals_ttl_seconds=int(config.get("CART_TOTALS_CACHE_TTL_SECONDS", 300)),
    )
    return ServiceGraph(
        lead_service=lead_service,
        pricing_agent=pricing_agent,
        alert_service=AlertService(alerts, churn_service),
        churn_service=churn_service,
        deviation_service=DeviationService(alert_repository=alerts),
        cache=cache,
    )


def register_services(app) -> ServiceGraph:
    graph = build_services(app.config)
    app.extensions["crm"] = graph
    return graph


def current_services() -> ServiceGraph:
    return current_app.extensions["crm"]
