import unittest

from crm import create_app
from crm.config import Config
from crm.core import PricingDecisionLogged, get_event_bus, reset_event_bus_for_tests
from crm.db import close_db, get_db
from crm.domain.contracts import PricingItem, PricingRequest
from crm.errors import FrozenPriceError, PricingExceptionNotFoundError, ValidationError
from crm.observability import metrics_snapshot, reset_metrics_for_tests
from crm.services import current_services
from tests.helpers.seed import CUSTOMER_RJ, CUSTOMER_SP, MACHINE_ID, STOCK_SUFFIX, count_rows, seed_catalog
from tests.helpers.temp_db import TempDbSandbox


SELLER_ID = 7


def _request(price: float, *, customer_id: int = CUSTOMER_SP, lead_id: int | None = None, previous: str | None = None):
    return PricingRequest(
        customer_id=customer_id,
        seller_id=SELLER_ID,
        lead_id=lead_id,
        cart_id=lead_id,
        items=[PricingItem(product_id=MACHINE_ID, quantity=1, unit_price=price)],
        previous_event_id=previous,
    )


class PricingAgentTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_event_bus_for_tests()
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="pricing_agent")
        self.app = create_app(
            self._temp_db.make_config(Config, TESTING=True, STOCK_UNIT_SUFFIXES=STOCK_SUFFIX)
        )
        with self.app.app_context():
            seed_catalog(get_db())

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_event_bus_for_tests()
        reset_metrics_for_tests()

    def test_calculation_is_logged_as_decision_event(self) -> None:
        received = []
        get_event_bus().subscribe(PricingDecisionLogged, received.append)

        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            event = agent.calculate(db, _request(1000, lead_id=5))
            stored = agent.decisions.find_by_event_id(db, event["event_id"])

        self.assertEqual(event["risk_level"], "LOW")
        self.assertTrue(event["is_within_policy"])
        self.assertEqual(event["compliance_status"], "APPROVED")
        self.assertTrue(event["risk_action"].startswith("APROVAR"))
        self.assertEqual(event["customer_context"]["credit_status"], "APPROVED")
        self.assertIsNotNone(stored)
        self.assertEqual(stored["lead_id"], 5)
        self.assertEqual(stored["margin_percent"], 40.0)
        self.assertEqual(stored["pricing_result"]["price_final"], 1000.0)
        self.assertFalse(stored["is_frozen"])
        self.assertEqual([item.decision_event_id for item in received], [event["event_id"]])
        self.assertEqual(metrics_snapshot()["pricing_decisions"]["by_risk_level"], {"LOW": 1})

    def test_high_risk_creates_pricing_alert_for_seller(self) -> None:
        with self.app.app_context():
            db = get_db()
            event = current_services().pricing_agent.calculate(db, _request(700))
            alerts = current_services().alert_service.repository.find_by_user(db, SELLER_ID)

        self.assertEqual(event["risk_level"], "HIGH")
        self.assertEqual(event["compliance_status"], "PENDING_APPROVAL")
        self.assertEqual(len(alerts), 1)
        self.assertEqual(alerts[0]["category"], "PRICING_RISK")
        self.assertEqual(alerts[0]["type"], "warning")
        self.assertEqual(alerts[0]["reference_id"], event["event_id"])

    def test_negative_margin_is_critical_danger_alert(self) -> None:
        with self.app.app_context():
            db = get_db()
            event = current_services().pricing_agent.calculate(db, _request(500))
            alerts = current_services().alert_service.repository.find_by_user(db, SELLER_ID)

        self.assertEqual(event["risk_level"], "CRITICAL")
        self.assertEqual(alerts[0]["type"], "danger")

    def test_customer_without_credit_limit_is_restricted(self) -> None:
        with self.app.app_context():
            db = get_db()
            event = current_services().pricing_agent.calculate(db, _request(1000, customer_id=CUSTOMER_RJ))
            unknown = current_services().pricing_agent.calculate(db, _request(1000, customer_id=None))

        self.assertEqual(event["customer_context"]["credit_status"], "RESTRICTED")
        self.assertEqual(event["risk_level"], "MEDIUM")
        self.assertEqual(unknown["customer_context"]["credit_status"], "UNKNOWN")
        self.assertEqual(unknown["customer_context"]["name"], "Unknown")

    def test_frozen_event_blocks_recalculation(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            event = agent.calculate(db, _request(1000, lead_id=9))
            frozen = agent.freeze(db, event["event_id"])

            with self.assertRaises(FrozenPriceError) as ctx:
                agent.calculate(db, _request(950, lead_id=9, previous=event["event_id"]))
            check = agent.check(db, _request(950, lead_id=9, previous=event["event_id"]))
            stored = agent.decisions.find_by_event_id(db, event["event_id"])

        self.assertTrue(frozen["success"])
        self.assertEqual(ctx.exception.code, "PRICE_FROZEN")
        self.assertTrue(check.is_blocking)
        self.assertEqual(check.reason, "ESTE_PRECO_ESTA_CONGELADO")
        self.assertEqual(check.details["eventId"], event["event_id"])
        self.assertTrue(stored["is_frozen"])
        self.assertEqual(stored["compliance_status"], "FROZEN")

    def test_check_reports_warning_outside_policy(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            ok = agent.check(db, _request(1000))
            warning = agent.check(db, _request(900))

        self.assertEqual(ok.kind, "ok")
        self.assertEqual(warning.kind, "warning")
        self.assertEqual(warning.reason, "requires_approval")

    def test_freeze_lead_marks_every_event_of_the_lead(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            agent.calculate(db, _request(1000, lead_id=11))
            agent.calculate(db, _request(990, lead_id=11))
            frozen = agent.freeze_lead(db, 11, order_id=300)
            latest = agent.decisions.latest_for_lead(db, 11)
            self.assertEqual(count_rows(db, "csuite_pricing.pricing_decision_events", "is_frozen = 1"), 2)

        self.assertEqual(frozen, 2)
        self.assertEqual(latest["order_id"], 300)

    def test_exception_approval_flow(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            event = agent.calculate(db, _request(900))
            requested = agent.request_exception(db, event["event_id"], "Cliente estrategico")
            decided = agent.decide_exception(db, requested["exception_id"], "approved", 1, "Liberado")
            stored = agent.decisions.find_by_event_id(db, event["event_id"])
            exception = agent.exception_handler.repository.find(db, requested["exception_id"])

        self.assertEqual(requested["status"], "PENDING")
        self.assertEqual(decided["new_status"], "APPROVED")
        self.assertEqual(stored["compliance_status"], "APPROVED_BY_EXCEPTION")
        self.assertEqual(exception["approved_by"], 1)
        self.assertEqual(exception["requested_by"], SELLER_ID)
        self.assertEqual(exception["requested_discount"], 10.0)

    def test_invalid_exception_decision(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            with self.assertRaises(ValidationError) as ctx:
                agent.decide_exception(db, "whatever", "MAYBE", 1, None)
            with self.assertRaises(PricingExceptionNotFoundError):
                agent.decide_exception(db, "missing", "REJECTED", 1, None)

        self.assertEqual(ctx.exception.code, "EXCEPTION_STATUS_INVALID")

    def test_metrics_over_recent_events(self) -> None:
        with self.app.app_context():
            db = get_db()
            agent = current_services().pricing_agent
            agent.calculate(db, _request(1000))
            agent.calculate(db, _request(900))
            metrics = agent.metrics(db)

        self.assertEqual(metrics["total_events"], 2)
        self.assertEqual(metrics["within_policy"], 1)
        self.assertEqual(metrics["violations"], 1)
        self.assertEqual(metrics["total_discounts"], 100.0)


if __name__ == "__main__":
    unittest.main()
