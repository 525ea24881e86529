import unittest

from crm import create_app
from crm.config import Config
from crm.core import reset_event_bus_for_tests
from crm.db import close_db, get_db
from crm.observability import reset_metrics_for_tests
from tests.helpers.seed import CUSTOMER_RJ, CUSTOMER_SP, MACHINE_ID, PLAIN_ID, STOCK_SUFFIX, seed_catalog, seed_stock
from tests.helpers.temp_db import TempDbSandbox


class LeadsApiTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_event_bus_for_tests()
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="leads_api")
        self.app = create_app(
            self._temp_db.make_config(Config, TESTING=True, STOCK_UNIT_SUFFIXES=STOCK_SUFFIX)
        )
        self.client = self.app.test_client()
        self.headers = {"X-User-Id": "7", "X-User-Name": "Vendedor Teste"}
        with self.app.app_context():
            db = get_db()
            seed_catalog(db)
            seed_stock(db, PLAIN_ID, normal=10)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_event_bus_for_tests()
        reset_metrics_for_tests()

    def _create_lead(self, customer_id: int = CUSTOMER_SP, **extra) -> int:
        response = self.client.post(
            "/api/leads",
            headers=self.headers,
            json={"customerId": customer_id, "userId": 7, **extra},
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()["data"]["id"]

    def _add_plain(self, lead_id: int, quantity: int = 2) -> dict:
        response = self.client.post(
            f"/api/leads/{lead_id}/items",
            headers=self.headers,
            json={"productId": PLAIN_ID, "quantity": quantity, "price": 100},
        )
        self.assertEqual(response.status_code, 201)
        return response.get_json()

    def test_create_and_fetch_lead(self) -> None:
        lead_id = self._create_lead(freight=25)
        response = self.client.get(f"/api/leads/{lead_id}", headers=self.headers)
        payload = response.get_json()

        self.assertEqual(response.status_code, 200)
        self.assertTrue(payload["success"])
        self.assertEqual(payload["data"]["customer"]["nome"], "Confeccoes Aurora")
        self.assertEqual(payload["data"]["freight"], 25.0)
        self.assertEqual(payload["data"]["items"], [])
        self.assertTrue(response.headers.get("X-Request-Id"))

    def test_validation_errors_use_error_envelope(self) -> None:
        response = self.client.post("/api/leads", headers=self.headers, json={"freight": -1})
        payload = response.get_json()

        self.assertEqual(response.status_code, 400)
        self.assertFalse(payload["success"])
        self.assertEqual(payload["error"]["code"], "VALIDATION_ERROR")
        self.assertIn('"customerId" is required', payload["error"]["details"])
        self.assertEqual(payload["request_id"], response.headers["X-Request-Id"])

    def test_missing_lead_is_404(self) -> None:
        response = self.client.get("/api/leads/4040", headers=self.headers)
        payload = response.get_json()

        self.assertEqual(response.status_code, 404)
        self.assertEqual(payload["error"]["code"], "LEAD_NOT_FOUND")
        self.assertEqual(payload["error"]["leadId"], 4040)

    def test_list_filters_by_customer_and_paginates(self) -> None:
        self._create_lead()
        self._create_lead()
        self._create_lead(CUSTOMER_RJ)

        everything = self.client.get("/api/leads?limit=2", headers=self.headers).get_json()
        only_rj = self.client.get(f"/api/leads?customerId={CUSTOMER_RJ}", headers=self.headers).get_json()

        self.assertEqual(everything["pagination"]["total"], 3)
        self.assertEqual(len(everything["data"]), 2)
        self.assertEqual([lead["customerId"] for lead in only_rj["data"]], [CUSTOMER_RJ])

    def test_item_lifecycle_over_http(self) -> None:
        lead_id = self._create_lead()
        added = self._add_plain(lead_id)
        item_id = added["data"]["id"]

        updated = self.client.put(
            f"/api/leads/{lead_id}/items/{item_id}",
            headers=self.headers,
            json={"quantity": 5},
        )
        totals = self.client.get(f"/api/leads/{lead_id}/totals", headers=self.headers).get_json()
        removed = self.client.delete(f"/api/leads/{lead_id}/items/{item_id}", headers=self.headers)
        missing = self.client.delete(f"/api/leads/{lead_id}/items/{item_id}", headers=self.headers)

        self.assertEqual(updated.status_code, 200)
        self.assertEqual(updated.get_json()["data"]["quantity"], 5.0)
        self.assertEqual(totals["data"]["subtotal"], 500.0)
        self.assertEqual(removed.status_code, 200)
        self.assertEqual(missing.status_code, 404)
        self.assertEqual(missing.get_json()["error"]["code"], "ITEM_NOT_FOUND")

    def test_convert_and_read_order(self) -> None:
        lead_id = self._create_lead()
        self._add_plain(lead_id)

        converted = self.client.post(f"/api/leads/{lead_id}/convert", headers=self.headers, json={})
        order_id = converted.get_json()["data"]["orderId"]
        again = self.client.post(f"/api/leads/{lead_id}/convert", headers=self.headers, json={})
        order = self.client.get(f"/api/orders/{order_id}", headers=self.headers).get_json()
        missing = self.client.get("/api/orders/999", headers=self.headers)

        self.assertEqual(converted.status_code, 200)
        self.assertEqual(again.status_code, 409)
        self.assertEqual(again.get_json()["error"]["code"], "LEAD_ALREADY_CONVERTED")
        self.assertEqual(again.get_json()["error"]["orderId"], order_id)
        self.assertEqual(order["data"]["items"][0]["quantity"], 2.0)
        self.assertEqual(missing.status_code, 404)

    def test_convert_reports_insufficient_stock(self) -> None:
        lead_id = self._create_lead()
        self.client.post(
            f"/api/leads/{lead_id}/items",
            headers=self.headers,
            json={"productId": MACHINE_ID, "quantity": 1, "price": 1000},
        )
        response = self.client.post(f"/api/leads/{lead_id}/convert", headers=self.headers, json={})
        payload = response.get_json()

        self.assertEqual(response.status_code, 422)
        self.assertEqual(payload["error"]["code"], "INSUFFICIENT_STOCK")
        self.assertEqual(payload["error"]["productId"], MACHINE_ID)

    def test_history_uses_actor_headers(self) -> None:
        lead_id = self._create_lead()
        self.client.put(f"/api/leads/{lead_id}", headers=self.headers, json={"freight": 10})
        history = self.client.get(f"/api/leads/{lead_id}/history", headers=self.headers).get_json()

        self.assertTrue(history["success"])
        self.assertEqual({entry["userName"] for entry in history["data"]}, {"Vendedor Teste"})

    def test_delete_lead(self) -> None:
        lead_id = self._create_lead()
        deleted = self.client.delete(f"/api/leads/{lead_id}", headers=self.headers)
        fetched = self.client.get(f"/api/leads/{lead_id}", headers=self.headers)

        self.assertEqual(deleted.status_code, 200)
        self.assertEqual(fetched.status_code, 404)

    def test_csv_export(self) -> None:
        lead_id = self._create_lead()
        self._add_plain(lead_id)

        listing = self.client.get("/api/leads/export", headers=self.headers)
        single = self.client.get(f"/api/leads/export?leadId={lead_id}", headers=self.headers)

        self.assertEqual(listing.status_code, 200)
        self.assertTrue(listing.mimetype.startswith("text/csv"))
        self.assertIn("leads_export_", listing.headers["Content-Disposition"])
        lines = listing.get_data(as_text=True).splitlines()
        self.assertTrue(lines[0].startswith("Lead;Data;Cliente"))
        self.assertEqual(len(lines), 2)
        self.assertIn(f'filename="lead_{lead_id}.csv"', single.headers["Content-Disposition"])
        self.assertIn("Produto", single.get_data(as_text=True))

    def test_metadata_and_segments(self) -> None:
        self._create_lead(cSegment="machines")

        units = self.client.get("/api/leads/metadata/units", headers=self.headers).get_json()
        transporters = self.client.get("/api/leads/metadata/transporters", headers=self.headers).get_json()
        unknown = self.client.get("/api/leads/metadata/colors", headers=self.headers)
        segments = self.client.get("/api/leads/segments", headers=self.headers).get_json()

        self.assertEqual(len(units["data"]), 2)
        self.assertIn("Rodonaves", [row["name"] for row in transporters["data"]])
        self.assertEqual(unknown.status_code, 404)
        self.assertEqual(unknown.get_json()["error"]["code"], "METADATA_NOT_FOUND")
        self.assertEqual(segments["data"], ["1"])


if __name__ == "__main__":
    unittest.main()
