from __future__ import annotations

from typing import Any, Dict, List

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


class AlertRepository(BaseRepository):
    def create(
        self,
        db,
        *,
        user_id: int | None,
        type: str,
        category: str,
        title: str,
        description: str | None = None,
        reference_id: str | None = None,
    ) -> int:
        row = db.execute(
            """
            INSERT INTO staging.alerts (user_id, type, category, title, description, reference_id, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (user_id, type, category, title, description, reference_id, utc_timestamp()),
        ).fetchone()
        db.commit()
        return self.inserted_id(row)

    def find_by_user(self, db, user_id: int, *, is_read: bool | None = None, limit: int = 50) -> List[Dict[str, Any]]:
        clauses = ["user_id = ?"]
        params: List[Any] = [user_id]
        if is_read is not None:
            clauses.append("is_read = ?")
            params.append(1 if is_read else 0)
        params.append(int(limit))
        rows = db.execute(
            f"""
            SELECT id, user_id, type, category, title, description, reference_id, is_read, created_at
            FROM staging.alerts
            WHERE {" AND ".join(clauses)}
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            params,
        ).fetchall()
        return self.rows_to_dicts(rows)

    def mark_read(self, db, alert_id: int, user_id: int | None = None) -> int:
        if user_id:
            cursor = db.execute(
                "UPDATE staging.alerts SET is_read = 1 WHERE id = ? AND user_id = ?",
                (alert_id, user_id),
            )
        else:
            cursor = db.execute("UPDATE staging.alerts SET is_read = 1 WHERE id = ?", (alert_id,))
        db.commit()
        return int(cursor.rowcount or 0)

    def exists_since(self, db, reference_id: str, since: str) -> bool:
        row = db.execute(
            """
            SELECT 1 AS found
            FROM staging.alerts
            WHERE reference_id = ? AND created_at >= ?
            LIMIT 1
            """,
            (reference_id, since),
        ).fetchone()
        return row is not None
