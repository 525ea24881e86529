from __future__ import annotations

from typing import Any, Dict, List

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


class ChurnRepository(BaseRepository):
    def customer_order_stats(
        self,
        db,
        *,
        recent_from: str,
        previous_from: str,
        customer_id: int | None = None,
    ) -> List[Dict[str, Any]]:
        """Per-customer last order date plus revenue of the recent and previous windows.

        ``recent_from`` and ``previous_from`` are ``YYYY-MM-DD`` bounds; the previous window
        ends where the recent one starts.
        """
        customer_clause = "AND idcli = ?" if customer_id else ""
        params: List[Any] = [recent_from, previous_from, recent_from]
        if customer_id:
            params.append(int(customer_id))
        rows = db.execute(
            f"""
            SELECT
                idcli AS customer_id,
                MAX(data) AS last_order_date,
                COALESCE(SUM(CASE WHEN SUBSTR(data, 1, 10) >= ? THEN valor ELSE 0 END), 0) AS recent_revenue,
                COALESCE(SUM(CASE WHEN SUBSTR(data, 1, 10) >= ? AND SUBSTR(data, 1, 10) < ? THEN valor ELSE 0 END), 0)
                    AS previous_revenue
            FROM mak.hoje
            WHERE valor > 0 AND idcli IS NOT NULL
            {customer_clause}
            GROUP BY idcli
            """,
            params,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def interaction_counts(self, db, since: str) -> Dict[int, int]:
        rows = db.execute(
            """
            SELECT customer_id, COUNT(*) AS total
            FROM staging.customer_interactions
            WHERE created_at >= ?
            GROUP BY customer_id
            """,
            (since,),
        ).fetchall()
        return {int(row["customer_id"]): int(row["total"] or 0) for row in rows}

    def upsert_score(
        self,
        db,
        *,
        customer_id: int,
        score: int,
        risk_level: str,
        days_since_last_order: int | None,
        avg_ticket_variation: float,
    ) -> None:
        db.execute(
            """
            INSERT INTO staging.customer_churn_scores (
                customer_id, score, risk_level, days_since_last_order, avg_ticket_variation, last_calculated
            ) VALUES (?, ?, ?, ?, ?, ?)
            ON CONFLICT (customer_id) DO UPDATE SET
                score = excluded.score,
                risk_level = excluded.risk_level,
                days_since_last_order = excluded.days_since_last_order,
                avg_ticket_variation = excluded.avg_ticket_variation,
                last_calculated = excluded.last_calculated
            """,
            (customer_id, score, risk_level, days_since_last_order, avg_ticket_variation, utc_timestamp()),
        )

    def find_score(self, db, customer_id: int | None) -> Dict[str, Any] | None:
        if not customer_id:
            return None
        row = db.execute(
            """
            SELECT customer_id, score, risk_level, days_since_last_order, avg_ticket_variation, last_calculated
            FROM staging.customer_churn_scores
            WHERE customer_id = ?
            """,
            (customer_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def customers_at_risk(self, db, *, risk_levels: tuple[str, ...], limit: int = 5) -> List[Dict[str, Any]]:
        placeholders = ", ".join("?" for _ in risk_levels)
        rows = db.execute(
            f"""
            SELECT
                s.customer_id AS id,
                c.nome AS name,
                c.cidade AS city,
                c.estado AS state,
                s.score,
                s.risk_level,
                s.days_since_last_order,
                (SELECT MAX(h.data) FROM mak.hoje h WHERE h.idcli = s.customer_id AND h.valor > 0) AS last_order_date
            FROM staging.customer_churn_scores s
            LEFT JOIN mak.clientes c ON c.id = s.customer_id
            WHERE s.risk_level IN ({placeholders})
            ORDER BY s.score DESC, s.customer_id ASC
            LIMIT ?
            """,
            [*risk_levels, int(limit)],
        ).fetchall()
        return self.rows_to_dicts(rows)

    def last_seller(self, db, customer_id: int) -> int | None:
        row = db.execute(
            """
            SELECT vendedor
            FROM mak.hoje
            WHERE idcli = ? AND vendedor IS NOT NULL
            ORDER BY data DESC, id DESC
            LIMIT 1
            """,
            (customer_id,),
        ).fetchone()
        if row is None or row["vendedor"] is None:
            return None
        return int(row["vendedor"])
