from __future__ import annotations

from crm.contexts.insights.application.churn_service import ChurnService
from crm.contexts.insights.infrastructure.repositories.alert_repository import AlertRepository
from crm.domain.contracts import Actor, ServiceOutput
from crm.errors import AlertNotFoundError
from crm.ui_strings import success_message


class AlertService:
    def __init__(self, repository: AlertRepository | None = None, churn_service: ChurnService | None = None) -> None:
        self.repository = repository or AlertRepository()
        self.churn_service = churn_service or ChurnService(alert_repository=self.repository)

    def my_alerts(self, db, actor: Actor, *, is_read: bool | None = None, limit: int = 50) -> ServiceOutput:
        if not actor.user_id:
            return ServiceOutput(payload={"success": True, "data": []})
        alerts = self.repository.find_by_user(db, actor.user_id, is_read=is_read, limit=limit)
        for alert in alerts:
            alert["is_read"] = bool(alert.get("is_read"))
        return ServiceOutput(payload={"success": True, "data": alerts})

    def mark_read(self, db, alert_id: int, actor: Actor) -> ServiceOutput:
        if self.repository.mark_read(db, alert_id, actor.user_id) == 0:
            raise AlertNotFoundError(payload={"alertId": alert_id})
        return ServiceOutput(payload={"success": True, "message": success_message("alert_read")})

    def at_risk_customers(self, db, limit: int = 5) -> ServiceOutput:
        return ServiceOutput(payload={"success": True, "data": self.churn_service.at_risk_customers(db, limit=limit)})
