from __future__ import annotations

import logging
from datetime import date, datetime, timedelta, timezone
from typing import Any, Dict, List

from crm.contexts.insights.infrastructure.repositories.alert_repository import AlertRepository
from crm.contexts.insights.infrastructure.repositories.churn_repository import ChurnRepository
from crm.db import utc_timestamp


LOGGER = logging.getLogger("crm.insights.churn")

RECENT_WINDOW_DAYS = 90
INTERACTION_WINDOW_DAYS = 30
ACTIVE_WINDOW_DAYS = 365
ALERT_COOLDOWN_DAYS = 1
AT_RISK_LEVELS = ("HIGH", "CRITICAL")


def risk_level_for(score: int) -> str:
    if score >= 80:
        return "CRITICAL"
    if score >= 60:
        return "HIGH"
    if score >= 30:
        return "MEDIUM"
    return "LOW"


def score_customer(
    days_since_last: int | None,
    recent_revenue: float,
    previous_revenue: float,
    recent_interactions: int,
) -> Dict[str, Any]:
    """Churn score from recency, revenue trend and engagement, clamped to 0..100."""
    score = 0
    days = days_since_last if days_since_last is not None else 0

    if days > 180:
        score += 60
    elif days > 90:
        score += 40
    elif days > 45:
        score += 20

    variation = 0.0
    if previous_revenue > 0:
        variation = recent_revenue / previous_revenue - 1
        if variation < -0.5:
            score += 30
        elif variation < -0.2:
            score += 15
    elif recent_revenue == 0 and days < ACTIVE_WINDOW_DAYS:
        score += 20

    if recent_interactions > 2:
        score -= 20
    elif recent_interactions > 0:
        score -= 10

    score = max(0, min(100, score))
    return {"score": score, "risk_level": risk_level_for(score), "variation": variation}


def _as_date(value: Any) -> date | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


class ChurnService:
    def __init__(
        self,
        repository: ChurnRepository | None = None,
        alert_repository: AlertRepository | None = None,
        *,
        default_alert_user_id: int = 1,
    ) -> None:
        self.repository = repository or ChurnRepository()
        self.alert_repository = alert_repository or AlertRepository()
        self.default_alert_user_id = default_alert_user_id

    def calculate_scores(self, db, customer_id: int | None = None, *, today: date | None = None) -> Dict[str, Any]:
        today = today or datetime.now(timezone.utc).date()
        LOGGER.info("churn_calculation_started", extra={"customer_id": customer_id})

        stats = self.repository.customer_order_stats(
            db,
            recent_from=(today - timedelta(days=RECENT_WINDOW_DAYS)).isoformat(),
            previous_from=(today - timedelta(days=2 * RECENT_WINDOW_DAYS)).isoformat(),
            customer_id=customer_id,
        )
        interactions = self.repository.interaction_counts(
            db,
            utc_timestamp(datetime.combine(today - timedelta(days=INTERACTION_WINDOW_DAYS), datetime.min.time(), timezone.utc)),
        )

        levels: Dict[str, int] = {}
        with db.transaction():
            for row in stats:
                cid = int(row["customer_id"])
                last_order = _as_date(row.get("last_order_date"))
                days = (today - last_order).days if last_order else None
                result = score_customer(
                    days,
                    float(row.get("recent_revenue") or 0),
                    float(row.get("previous_revenue") or 0),
                    interactions.get(cid, 0),
                )
                self.repository.upsert_score(
                    db,
                    customer_id=cid,
                    score=result["score"],
                    risk_level=result["risk_level"],
                    days_since_last_order=days,
                    avg_ticket_variation=round(result["variation"], 4),
                )
                levels[result["risk_level"]] = levels.get(result["risk_level"], 0) + 1

        LOGGER.info("churn_scores_updated", extra={"count": len(stats), "levels": levels})
        return {"success": True, "count": len(stats), "levels": levels}

    def alert_critical_customers(self, db, *, now: datetime | None = None) -> int:
        """One CRITICAL churn alert per customer per day, sent to the customer's last seller."""
        now = now or datetime.now(timezone.utc)
        since = utc_timestamp(now - timedelta(days=ALERT_COOLDOWN_DAYS))
        created = 0
        for row in self.repository.customers_at_risk(db, risk_levels=("CRITICAL",), limit=500):
            customer_id = int(row["id"])
            reference_id = f"CHURN_{customer_id}"
            if self.alert_repository.exists_since(db, reference_id, since):
                continue
            seller_id = self.repository.last_seller(db, customer_id) or self.default_alert_user_id
            self.alert_repository.create(
                db,
                user_id=seller_id,
                type="danger",
                category="CHURN",
                title=f"Cliente {row.get('name') or customer_id} em risco critico",
                description=(
                    f"Score de churn {int(row.get('score') or 0)}. "
                    f"Ultimo pedido ha {row.get('days_since_last_order') or '?'} dias."
                ),
                reference_id=reference_id,
            )
            created += 1
        if created:
            LOGGER.info("churn_alerts_created", extra={"count": created})
        return created

    def run(self, db) -> Dict[str, Any]:
        result = self.calculate_scores(db)
        result["alerts"] = self.alert_critical_customers(db)
        return result

    def at_risk_customers(self, db, limit: int = 5) -> List[Dict[str, Any]]:
        return self.repository.customers_at_risk(db, risk_levels=AT_RISK_LEVELS, limit=limit)
