from __future__ import annotations

from typing import Any, Dict, List

from crm.infrastructure.repositories.base import BaseRepository


class PolicyRepository(BaseRepository):
    def find_active(self, db, today: str) -> List[Dict[str, Any]]:
        rows = db.execute(
            """
            SELECT policy_id, policy_name, policy_type, priority, config, conditions
            FROM csuite_pricing.pricing_policies
            WHERE is_active = 1
              AND (effective_from IS NULL OR effective_from = '' OR SUBSTR(effective_from, 1, 10) <= ?)
              AND (effective_until IS NULL OR effective_until = '' OR SUBSTR(effective_until, 1, 10) >= ?)
            ORDER BY priority ASC, id ASC
            """,
            (today, today),
        ).fetchall()
        policies = []
        for row in rows:
            policy = dict(row)
            policy["config"] = self.from_json(policy.get("config"), {})
            policy["conditions"] = self.from_json(policy.get("conditions"), None)
            policies.append(policy)
        return policies
