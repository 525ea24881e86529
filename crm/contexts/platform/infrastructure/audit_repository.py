from __future__ import annotations

from typing import Any, Dict, List, Mapping

from crm.db import utc_timestamp
from crm.infrastructure.repositories.base import BaseRepository


class AuditRepository(BaseRepository):
    def insert(self, db, entry: Mapping[str, Any]) -> None:
        db.execute(
            """
            INSERT INTO staging.audit_log (
                action, user_id, user_name, resource_type, resource_id, old_value, new_value,
                ip_address, user_agent, request_id, metadata, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                entry["action"],
                entry.get("user_id"),
                entry.get("user_name"),
                entry.get("resource_type"),
                str(entry["resource_id"]) if entry.get("resource_id") is not None else None,
                self.to_json(entry.get("old_value")),
                self.to_json(entry.get("new_value")),
                entry.get("ip_address"),
                (entry.get("user_agent") or "")[:500] or None,
                entry.get("request_id"),
                self.to_json(entry.get("metadata")),
                utc_timestamp(),
            ),
        )
        db.commit()

    def find_by_resource(self, db, resource_type: str, resource_id: str, limit: int = 100) -> List[Dict[str, Any]]:
        rows = db.execute(
            """
            SELECT *
            FROM staging.audit_log
            WHERE resource_type = ? AND resource_id = ?
            ORDER BY created_at DESC, id DESC
            LIMIT ?
            """,
            (resource_type, str(resource_id), int(limit)),
        ).fetchall()
        return self.rows_to_dicts(rows)
