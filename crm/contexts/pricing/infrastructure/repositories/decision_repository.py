from __future__ import annotations

from typing import Any, Dict, Mapping

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


_JSON_COLUMNS = (
    "customer_context",
    "seller_context",
    "transaction_context",
    "policy_context",
    "pricing_result",
    "metadata",
)

_INSERT_COLUMNS = (
    "event_id",
    "event_version",
    "event_timestamp",
    "source",
    "action",
    "customer_id",
    "seller_id",
    "lead_id",
    "order_id",
    "cart_id",
    "policy_version",
    "price_base",
    "price_final",
    "discount_total",
    "discount_percent",
    "margin_absolute",
    "margin_percent",
    "risk_level",
    "compliance_status",
    "is_within_policy",
    "requires_approval",
    "is_frozen",
    *_JSON_COLUMNS,
    "created_by",
)


class DecisionRepository(BaseRepository):
    """Append-only store of pricing decision events."""

    def insert(self, db, record: Mapping[str, Any]) -> None:
        values = []
        for column in _INSERT_COLUMNS:
            value = record.get(column)
            if column in _JSON_COLUMNS:
                value = self.to_json(value or {})
            values.append(value)
        placeholders = ", ".join("?" for _ in _INSERT_COLUMNS)
        db.execute(
            f"INSERT INTO csuite_pricing.pricing_decision_events ({', '.join(_INSERT_COLUMNS)}) VALUES ({placeholders})",
            values,
        )
        db.commit()

    def _hydrate(self, row) -> Dict[str, Any] | None:
        if row is None:
            return None
        event = dict(row)
        for column in _JSON_COLUMNS:
            event[column] = self.from_json(event.get(column), {})
        for column in ("is_within_policy", "requires_approval", "is_frozen"):
            event[column] = bool(event.get(column))
        return event

    def find_by_event_id(self, db, event_id: str) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM csuite_pricing.pricing_decision_events WHERE event_id = ?",
            (event_id,),
        ).fetchone()
        return self._hydrate(row)

    def is_frozen(self, db, event_id: str) -> bool:
        row = db.execute(
            "SELECT is_frozen FROM csuite_pricing.pricing_decision_events WHERE event_id = ?",
            (event_id,),
        ).fetchone()
        return bool(row and int(row["is_frozen"] or 0) == 1)

    def freeze(self, db, event_id: str, order_id: int | None = None) -> int:
        cursor = db.execute(
            """
            UPDATE csuite_pricing.pricing_decision_events
            SET is_frozen = 1,
                compliance_status = 'FROZEN',
                frozen_at = COALESCE(frozen_at, ?),
                order_id = COALESCE(?, order_id)
            WHERE event_id = ?
            """,
            (utc_timestamp(), order_id, event_id),
        )
        db.commit()
        return int(cursor.rowcount or 0)

    def freeze_by_lead(self, db, lead_id: int, order_id: int | None = None) -> int:
        cursor = db.execute(
            """
            UPDATE csuite_pricing.pricing_decision_events
            SET is_frozen = 1,
                compliance_status = 'FROZEN',
                frozen_at = COALESCE(frozen_at, ?),
                order_id = COALESCE(?, order_id)
            WHERE lead_id = ? AND is_frozen = 0
            """,
            (utc_timestamp(), order_id, lead_id),
        )
        db.commit()
        return int(cursor.rowcount or 0)

    def latest_for_lead(self, db, lead_id: int) -> Dict[str, Any] | None:
        row = db.execute(
            """
            SELECT *
            FROM csuite_pricing.pricing_decision_events
            WHERE lead_id = ?
            ORDER BY id DESC
            LIMIT 1
            """,
            (lead_id,),
        ).fetchone()
        return self._hydrate(row)

    def set_compliance_status(self, db, event_id: str, status: str) -> None:
        db.execute(
            """
            UPDATE csuite_pricing.pricing_decision_events
            SET compliance_status = ?
            WHERE event_id = ? AND is_frozen = 0
            """,
            (status, event_id),
        )
        db.commit()

    def metrics_since(self, db, since: str) -> Dict[str, Any]:
        row = db.execute(
            """
            SELECT
                COUNT(*) AS total_events,
                COALESCE(SUM(CASE WHEN is_within_policy = 1 THEN 1 ELSE 0 END), 0) AS within_policy,
                COALESCE(SUM(CASE WHEN is_within_policy = 0 THEN 1 ELSE 0 END), 0) AS violations,
                AVG(margin_percent) AS avg_margin,
                COALESCE(SUM(discount_total), 0) AS total_discounts
            FROM csuite_pricing.pricing_decision_events
            WHERE event_timestamp >= ?
            """,
            (since,),
        ).fetchone()
        avg_margin = row["avg_margin"] if row else None
        return {
            "total_events": int(row["total_events"] or 0) if row else 0,
            "within_policy": int(row["within_policy"] or 0) if row else 0,
            "violations": int(row["violations"] or 0) if row else 0,
            "avg_margin": round(float(avg_margin), 2) if avg_margin is not None else None,
            "total_discounts": float(row["total_discounts"] or 0) if row else 0.0,
        }
