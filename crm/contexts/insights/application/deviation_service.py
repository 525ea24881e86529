from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

from crm.contexts.insights.infrastructure.repositories.alert_repository import AlertRepository
from crm.contexts.insights.infrastructure.repositories.sales_history_repository import SalesHistoryRepository
from crm.db import utc_timestamp


LOGGER = logging.getLogger("crm.insights.deviation")

WINDOW_DAYS = 7
ATTENTION_THRESHOLD_PERCENT = 20.0


def _baseline_window(date_from: date, date_to: date) -> tuple[date, date]:
    # mesma janela um ano antes
    return date_from - timedelta(days=364), date_to - timedelta(days=364)


def analyze(actual: float, expected: float) -> Dict[str, Any]:
    if expected <= 0:
        return {
            "total_actual": actual,
            "total_expected": expected,
            "deviation_percent": None,
            "requires_attention": False,
        }
    deviation = (actual - expected) / expected * 100
    return {
        "total_actual": actual,
        "total_expected": expected,
        "deviation_percent": round(deviation, 2),
        "requires_attention": abs(deviation) > ATTENTION_THRESHOLD_PERCENT,
    }


def _money(value: float) -> str:
    return f"{value:,.2f}".replace(",", "X").replace(".", ",").replace("X", ".")


class DeviationService:
    def __init__(
        self,
        history_repository: SalesHistoryRepository | None = None,
        alert_repository: AlertRepository | None = None,
    ) -> None:
        self.history = history_repository or SalesHistoryRepository()
        self.alert_repository = alert_repository or AlertRepository()

    def analyze_sellers(self, db, *, today: date | None = None) -> List[Dict[str, Any]]:
        today = today or datetime.now(timezone.utc).date()
        date_to = today
        date_from = today - timedelta(days=WINDOW_DAYS - 1)
        base_from, base_to = _baseline_window(date_from, date_to)

        actual = self.history.revenue_by_seller(db, date_from.isoformat(), date_to.isoformat())
        expected = self.history.revenue_by_seller(db, base_from.isoformat(), base_to.isoformat())

        results = []
        for seller_id in sorted(set(actual) | set(expected)):
            analysis = analyze(actual.get(seller_id, 0.0), expected.get(seller_id, 0.0))
            results.append({"seller_id": seller_id, **analysis})
        return results

    def run(self, db, *, today: date | None = None) -> Dict[str, Any]:
        today = today or datetime.now(timezone.utc).date()
        day_start = utc_timestamp(datetime.combine(today, datetime.min.time(), timezone.utc))
        created = 0
        analyses = self.analyze_sellers(db, today=today)
        for analysis in analyses:
            if not analysis["requires_attention"]:
                continue
            seller_id = analysis["seller_id"]
            reference_id = f"DEV_{seller_id}_{today.isoformat()}"
            if self.alert_repository.exists_since(db, reference_id, day_start):
                continue
            deviation = analysis["deviation_percent"]
            direction = "acima" if deviation > 0 else "abaixo"
            self.alert_repository.create(
                db,
                user_id=seller_id,
                type="danger" if deviation < -ATTENTION_THRESHOLD_PERCENT else "warning",
                category="GENERAL",
                title=f"Vendas {abs(deviation):.0f}% {direction} do previsto",
                description=(
                    f"Nos ultimos {WINDOW_DAYS} dias, suas vendas (R$ {_money(analysis['total_actual'])}) "
                    f"ficaram {direction} da previsao (R$ {_money(analysis['total_expected'])})."
                ),
                reference_id=reference_id,
            )
            created += 1
            LOGGER.info("deviation_alert_created", extra={"seller_id": seller_id, "deviation_percent": deviation})
        return {"success": True, "sellers": len(analyses), "alerts": created}
