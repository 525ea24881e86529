from __future__ import annotations

from typing import Any, Dict, Mapping

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


class ExceptionRepository(BaseRepository):
    def insert(self, db, record: Mapping[str, Any]) -> None:
        db.execute(
            """
            INSERT INTO csuite_pricing.pricing_exceptions (
                exception_id, event_id, status, requested_by, requested_discount,
                requested_reason, margin_impact, expires_at, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record["exception_id"],
                record["event_id"],
                record.get("status") or "PENDING",
                record.get("requested_by"),
                record.get("requested_discount") or 0,
                record.get("requested_reason"),
                record.get("margin_impact") or 0,
                record.get("expires_at"),
                record.get("created_at") or utc_timestamp(),
            ),
        )
        db.commit()

    def find(self, db, exception_id: str) -> Dict[str, Any] | None:
        row = db.execute(
            "SELECT * FROM csuite_pricing.pricing_exceptions WHERE exception_id = ?",
            (exception_id,),
        ).fetchone()
        return self.row_to_dict(row)

    def decide(self, db, exception_id: str, *, status: str, approver_id: int | None, notes: str | None) -> int:
        cursor = db.execute(
            """
            UPDATE csuite_pricing.pricing_exceptions
            SET status = ?, approved_by = ?, approved_at = ?, approval_notes = ?
            WHERE exception_id = ?
            """,
            (status, approver_id, utc_timestamp(), notes, exception_id),
        )
        db.commit()
        return int(cursor.rowcount or 0)
