from __future__ import annotations

from typing import Dict

from crm.infrastructure.repositories.base import BaseRepository


class SalesHistoryRepository(BaseRepository):
    def revenue_by_seller(self, db, date_from: str, date_to: str) -> Dict[int, float]:
        rows = db.execute(
            """
            SELECT vendedor AS seller_id, COALESCE(SUM(valor), 0) AS revenue
            FROM mak.hoje
            WHERE valor > 0
              AND vendedor IS NOT NULL
              AND SUBSTR(data, 1, 10) >= ?
              AND SUBSTR(data, 1, 10) <= ?
            GROUP BY vendedor
            """,
            (date_from, date_to),
        ).fetchall()
        return {int(row["seller_id"]): float(row["revenue"] or 0) for row in rows}
