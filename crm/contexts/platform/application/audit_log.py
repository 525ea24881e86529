from __future__ import annotations

import json
import logging
from typing import Any, Dict, List, Mapping

from crm.contexts.platform.infrastructure.audit_repository import AuditRepository
from crm.domain.contracts import Actor
from crm.ui_strings import TRACKED_LEAD_FIELDS, history_label


LOGGER = logging.getLogger("crm.audit")

LEAD_CREATE = "LEAD_CREATE"
LEAD_UPDATE = "LEAD_UPDATE"
LEAD_DELETE = "LEAD_DELETE"
LEAD_CONVERT = "LEAD_CONVERT"
ITEM_ADD = "ITEM_ADD"
ITEM_UPDATE = "ITEM_UPDATE"
ITEM_DELETE = "ITEM_DELETE"

HISTORY_LIMIT = 100


def _dump(value: Any) -> str:
    return json.dumps(value, sort_keys=True, default=str)


def field_changes(old_value: Mapping[str, Any] | None, new_value: Mapping[str, Any] | None) -> List[Dict[str, Any]]:
    if not old_value or not new_value:
        return []
    changes = []
    for key, label in TRACKED_LEAD_FIELDS:
        before = old_value.get(key)
        after = new_value.get(key)
        if _dump(before) != _dump(after):
            changes.append({"field": label, "oldValue": before, "newValue": after})
    return changes


class AuditLogService:
    """Audit trail of lead and cart actions.

    Every entry goes to the application log; the database row is written on a
    best-effort basis and never fails the calling operation.
    """

    def __init__(self, repository: AuditRepository | None = None) -> None:
        self.repository = repository or AuditRepository()

    def log(
        self,
        db,
        action: str,
        actor: Actor | None,
        *,
        resource_type: str = "lead",
        resource_id: Any = None,
        old_value: Any = None,
        new_value: Any = None,
        metadata: Mapping[str, Any] | None = None,
    ) -> None:
        actor = actor or Actor()
        LOGGER.info(
            "audit_entry",
            extra={
                "action": action,
                "user_id": actor.user_id,
                "resource_type": resource_type,
                "resource_id": resource_id,
            },
        )
        try:
            self.repository.insert(
                db,
                {
                    "action": action,
                    "user_id": actor.user_id,
                    "user_name": actor.user_name,
                    "resource_type": resource_type,
                    "resource_id": resource_id,
                    "old_value": old_value,
                    "new_value": new_value,
                    "ip_address": actor.ip_address,
                    "user_agent": actor.user_agent,
                    "request_id": actor.request_id,
                    "metadata": dict(metadata) if metadata else None,
                },
            )
        except Exception:  # noqa: BLE001
            LOGGER.exception("audit_entry_failed", extra={"action": action, "resource_id": resource_id})

    def lead_history(self, db, lead_id: int) -> List[Dict[str, Any]]:
        logs = self.repository.find_by_resource(db, "lead", str(lead_id), limit=HISTORY_LIMIT)
        history = []
        for entry in logs:
            info = history_label(entry["action"])
            old_value = self.repository.from_json(entry.get("old_value"))
            new_value = self.repository.from_json(entry.get("new_value"))
            metadata = self.repository.from_json(entry.get("metadata"))
            changes = field_changes(old_value, new_value) if entry["action"] == LEAD_UPDATE else []
            history.append(
                {
                    "id": entry.get("id"),
                    "action": entry["action"],
                    "label": info["label"],
                    "icon": info["icon"],
                    "color": info["color"],
                    "userName": entry.get("user_name"),
                    "userId": entry.get("user_id"),
                    "createdAt": entry.get("created_at"),
                    "ipAddress": entry.get("ip_address"),
                    "changes": changes,
                    "metadata": metadata,
                    "hasDetails": bool(changes) or metadata is not None,
                }
            )
        return history
