from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Mapping

from crm.contexts.pricing.domain.policies import POLICY_VERSION, default_policies, evaluate_policies
from crm.contexts.pricing.infrastructure.repositories.policy_repository import PolicyRepository


LOGGER = logging.getLogger("crm.pricing")


class PolicyEngine:
    def __init__(self, repository: PolicyRepository | None = None, version: str = POLICY_VERSION) -> None:
        self.repository = repository or PolicyRepository()
        self.version = version
        self.policies: List[Dict[str, Any]] = []

    def load_policies(self, db) -> List[Dict[str, Any]]:
        today = datetime.now(timezone.utc).strftime("%Y-%m-%d")
        try:
            policies = self.repository.find_active(db, today)
        except Exception:  # noqa: BLE001 - tabela ausente cai nas politicas padrao
            LOGGER.warning("pricing_policies_unavailable", exc_info=True)
            policies = []
        if not policies:
            policies = default_policies()
        self.policies = policies
        return policies

    def evaluate(self, db, context: Mapping[str, Any]) -> Dict[str, Any]:
        policies = self.load_policies(db)
        evaluation = evaluate_policies(policies, context, version=self.version)
        LOGGER.info(
            "pricing_policies_evaluated",
            extra={
                "applied": [policy["policy_id"] for policy in evaluation["applied_policies"]],
                "limits": evaluation["limits"],
            },
        )
        return evaluation
