import io
import json
import unittest
import urllib.error
from unittest.mock import MagicMock, patch

from crm import create_app
from crm.config import Config
from crm.core import reset_event_bus_for_tests
from crm.db import close_db, get_db
from crm.observability import reset_metrics_for_tests
from tests.helpers.seed import CUSTOMER_SP, MACHINE_ID, STOCK_SUFFIX, seed_catalog
from tests.helpers.temp_db import TempDbSandbox


EXTERNAL_PAYLOAD = {
    "org_id": 1,
    "brand_id": 3,
    "customer_id": CUSTOMER_SP,
    "sku_id": MACHINE_ID,
    "sku_qty": 2,
    "order_value": 2000,
}


class PricingApiTest(unittest.TestCase):
    pricing_api_url = ""

    def setUp(self) -> None:
        reset_event_bus_for_tests()
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="pricing_api")
        self.app = create_app(
            self._temp_db.make_config(
                Config,
                TESTING=True,
                STOCK_UNIT_SUFFIXES=STOCK_SUFFIX,
                PRICING_API_URL=self.pricing_api_url,
                PRICING_API_KEY="chave-teste",
            )
        )
        self.client = self.app.test_client()
        self.headers = {"X-User-Id": "7"}
        with self.app.app_context():
            seed_catalog(get_db())

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_event_bus_for_tests()
        reset_metrics_for_tests()

    def _calculate(self, price: float, **extra):
        body = {
            "customer_id": CUSTOMER_SP,
            "items": [{"product_id": MACHINE_ID, "quantity": 1, "unit_price": price}],
            **extra,
        }
        return self.client.post("/api/v2/pricing/calculate", headers=self.headers, json=body)


class PricingGovernanceRoutesTest(PricingApiTest):
    def test_calculate_returns_decision_event(self) -> None:
        response = self._calculate(1000)
        payload = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["data"]["risk_level"], "LOW")
        self.assertTrue(payload["data"]["event_id"])

    def test_calculate_validates_payload(self) -> None:
        response = self.client.post(
            "/api/v2/pricing/calculate",
            headers=self.headers,
            json={"items": [{"quantity": 0}]},
        )
        details = response.get_json()["error"]["details"]

        self.assertEqual(response.status_code, 400)
        self.assertIn('"customer_id" is required', details)
        self.assertIn('"items[0].quantity" must be a positive number', details)

    def test_freeze_then_recalculate_is_blocked(self) -> None:
        event_id = self._calculate(1000, lead_id=3).get_json()["data"]["event_id"]

        frozen = self.client.post("/api/v2/pricing/freeze", headers=self.headers, json={"event_id": event_id})
        blocked = self._calculate(950, lead_id=3, previous_event_id=event_id)
        missing = self.client.post("/api/v2/pricing/freeze", headers=self.headers, json={})

        self.assertEqual(frozen.status_code, 200)
        self.assertEqual(blocked.status_code, 400)
        self.assertEqual(blocked.get_json()["error"]["code"], "PRICE_FROZEN")
        self.assertEqual(blocked.get_json()["error"]["eventId"], event_id)
        self.assertEqual(missing.status_code, 400)

    def test_exception_request_and_decision(self) -> None:
        event_id = self._calculate(900).get_json()["data"]["event_id"]

        requested = self.client.post(
            "/api/v2/pricing/exception/request",
            headers=self.headers,
            json={"event_id": event_id, "reason": "Concorrencia"},
        ).get_json()
        exception_id = requested["data"]["exception_id"]
        decided = self.client.post(
            f"/api/v2/pricing/exception/{exception_id}/decide",
            headers={"X-User-Id": "1"},
            json={"status": "REJECTED", "notes": "Margem baixa"},
        )
        unknown = self.client.post(
            "/api/v2/pricing/exception/nao-existe/decide",
            headers=self.headers,
            json={"status": "APPROVED"},
        )

        self.assertEqual(decided.status_code, 200)
        self.assertEqual(decided.get_json()["data"]["new_status"], "REJECTED")
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.get_json()["error"]["code"], "EXCEPTION_NOT_FOUND")

    def test_metrics_endpoint(self) -> None:
        self._calculate(1000)
        metrics = self.client.get("/api/v2/pricing/metrics", headers=self.headers).get_json()

        self.assertEqual(metrics["data"]["total_events"], 1)


class ExternalPricingUnavailableTest(PricingApiTest):
    def test_missing_url_maps_to_service_unavailable(self) -> None:
        response = self.client.post("/api/pricing/calculate", json=EXTERNAL_PAYLOAD)
        payload = response.get_json()

        self.assertEqual(response.status_code, 503)
        self.assertEqual(payload["error"]["code"], "PRICING_API_UNAVAILABLE")

    def test_payload_validation_happens_before_any_call(self) -> None:
        response = self.client.post("/api/pricing/calculate", json={"sku_qty": 0, "installments": "x"})
        details = response.get_json()["error"]["details"]

        self.assertEqual(response.status_code, 400)
        self.assertIn('"org_id" is required', details)
        self.assertIn('"sku_qty" must be a positive number', details)
        self.assertIn('"installments" must be an integer greater than or equal to 0', details)


class ExternalPricingConfiguredTest(PricingApiTest):
    pricing_api_url = "https://pricing.example.test/api/"

    def test_forwards_payload_with_defaults(self) -> None:
        upstream = MagicMock()
        upstream.read.return_value = json.dumps({"price": 1850.0}).encode("utf-8")
        with patch("crm.pricing_api.urllib.request.urlopen") as urlopen:
            urlopen.return_value.__enter__.return_value = upstream
            response = self.client.post("/api/pricing/calculate", json=EXTERNAL_PAYLOAD)

        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.get_json()["data"], {"price": 1850.0})
        sent = urlopen.call_args[0][0]
        self.assertEqual(sent.full_url, "https://pricing.example.test/api/run")
        self.assertEqual(sent.get_header("X-api-key"), "chave-teste")
        body = json.loads(sent.data.decode("utf-8"))
        self.assertEqual(body["payment_term"], "standard")
        self.assertEqual(body["machine_curve"], "A")
        self.assertEqual(body["sku_qty"], 2.0)

    def test_upstream_error_status_is_propagated(self) -> None:
        error = urllib.error.HTTPError(
            "https://pricing.example.test/api/run",
            422,
            "Unprocessable",
            None,
            io.BytesIO(b'{"detail": "sku invalido"}'),
        )
        with patch("crm.pricing_api.urllib.request.urlopen", side_effect=error):
            response = self.client.post("/api/pricing/calculate", json=EXTERNAL_PAYLOAD)
        payload = response.get_json()

        self.assertEqual(response.status_code, 422)
        self.assertEqual(payload["error"]["code"], "PRICING_API_ERROR")
        self.assertEqual(payload["error"]["details"], {"detail": "sku invalido"})

    def test_unreachable_service(self) -> None:
        with patch(
            "crm.pricing_api.urllib.request.urlopen",
            side_effect=urllib.error.URLError("connection refused"),
        ):
            response = self.client.post("/api/pricing/calculate", json=EXTERNAL_PAYLOAD)

        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.get_json()["error"]["code"], "PRICING_API_UNAVAILABLE")


if __name__ == "__main__":
    unittest.main()
