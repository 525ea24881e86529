import unittest

from crm import create_app
from crm.config import Config
from crm.contexts.sales.domain.tax import apply_interstate_override, compute_item_taxes
from crm.contexts.sales.infrastructure.repositories.tax_repository import TaxRepository
from crm.core import reset_event_bus_for_tests
from crm.db import close_db, get_db
from crm.domain.contracts import Actor
from crm.errors import InvalidTaxStateError
from crm.observability import reset_metrics_for_tests
from crm.services import current_services
from tests.helpers.seed import CUSTOMER_SP, MACHINE_ID, STOCK_SUFFIX, seed_catalog, seed_tax_rule
from tests.helpers.temp_db import TempDbSandbox


BASE_RULE = {
    "ncm": "8452",
    "ipi": 10.0,
    "indice_st": 40.0,
    "aliquota_st": 18.0,
    "icms": 18.0,
    "indice_st_mva4": 0.0,
    "indice_st_mva_orig": 0.0,
}


class ItemTaxComputationTest(unittest.TestCase):
    def test_ipi_with_default_reduction_and_st_over_ipi_base(self) -> None:
        taxes = compute_item_taxes({"vProduct": 1000, "qProduct": 2}, {"isento_st": 0}, BASE_RULE)

        self.assertEqual(taxes["ipi"], 130.0)
        self.assertEqual(taxes["st"], 176.76)
        self.assertEqual(taxes["rules"]["ipiRate"], 10.0)

    def test_ncm_reduction_override(self) -> None:
        rule = dict(BASE_RULE, ncm="7326.90.90", indice_st=0)
        taxes = compute_item_taxes({"vProduct": 100, "qProduct": 1}, {}, rule)

        self.assertEqual(taxes["ipi"], 10.0)
        self.assertEqual(taxes["st"], 0.0)

    def test_exempt_customer_pays_no_st(self) -> None:
        taxes = compute_item_taxes({"vProduct": 1000, "qProduct": 1}, {"isento_st": 1}, BASE_RULE)

        self.assertEqual(taxes["st"], 0.0)
        self.assertEqual(taxes["ipi"], 65.0)

    def test_exemption_ignored_for_always_taxed_ncm(self) -> None:
        rule = dict(BASE_RULE, ncm="2710.19.32", ipi=0)
        taxes = compute_item_taxes({"vProduct": 100, "qProduct": 1}, {"isento_st": 1}, rule)

        self.assertGreater(taxes["st"], 0.0)

    def test_no_rule_means_no_taxes(self) -> None:
        self.assertEqual(compute_item_taxes({"vProduct": 10, "qProduct": 1}, {}, None), {"ipi": 0.0, "st": 0.0})

    def test_interstate_imported_goods_use_four_percent_icms(self) -> None:
        rule = dict(BASE_RULE, indice_st_mva4=55.0, reducao_icms=10.0)
        resolved = apply_interstate_override(rule, state="RJ", people_type="J", origin=1, emitter_state="SP")

        self.assertEqual(resolved["icms"], 4.0)
        self.assertEqual(resolved["reducao_icms"], 0.0)
        self.assertEqual(resolved["indice_st"], 55.0)

    def test_interstate_override_skipped_for_individuals_and_same_state(self) -> None:
        same_state = apply_interstate_override(BASE_RULE, state="SP", people_type="J", origin=1, emitter_state="SP")
        individual = apply_interstate_override(BASE_RULE, state="RJ", people_type="F", origin=1, emitter_state="SP")
        national = apply_interstate_override(BASE_RULE, state="RJ", people_type="J", origin=0, emitter_state="SP")

        self.assertEqual(same_state["icms"], 18.0)
        self.assertEqual(individual["icms"], 18.0)
        self.assertEqual(national["icms"], 18.0)


class TaxRuleResolutionTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_event_bus_for_tests()
        reset_metrics_for_tests()
        self._temp_db = TempDbSandbox(prefix="tax_rules")
        self.app = create_app(
            self._temp_db.make_config(Config, TESTING=True, STOCK_UNIT_SUFFIXES=STOCK_SUFFIX)
        )
        self.repository = TaxRepository()
        with self.app.app_context():
            db = get_db()
            seed_catalog(db)
            seed_tax_rule(db)
            seed_tax_rule(db, state="RJ", icms=12.0, indice_st_mva4=50.0)

    def tearDown(self) -> None:
        with self.app.app_context():
            close_db()
        self._temp_db.cleanup()
        reset_event_bus_for_tests()
        reset_metrics_for_tests()

    def test_longest_ncm_prefix_wins(self) -> None:
        with self.app.app_context():
            seed_tax_rule(get_db(), ncm="8452.10", ipi=15.0)
            rule = self.repository.resolve_rule(
                get_db(), state="SP", people_type="J", ncm="8452.10.00", emitter_state="SP"
            )

        self.assertEqual(rule["ncm"], "8452.10")
        self.assertEqual(rule["ipi"], 15.0)

    def test_state_specific_rule_beats_national_rule(self) -> None:
        with self.app.app_context():
            rule = self.repository.resolve_rule(
                get_db(), state="RJ", people_type="J", ncm="8452.90.00", origin=0, emitter_state="SP"
            )

        self.assertEqual(rule["state"], "RJ")
        self.assertEqual(rule["icms"], 12.0)

    def test_interstate_override_applied_on_resolution(self) -> None:
        with self.app.app_context():
            rule = self.repository.resolve_rule(
                get_db(), state="RJ", people_type="J", ncm="8452.90.00", origin=1, emitter_state="SP"
            )

        self.assertEqual(rule["icms"], 4.0)
        self.assertEqual(rule["indice_st"], 50.0)

    def test_unknown_ncm_has_no_rule(self) -> None:
        with self.app.app_context():
            rule = self.repository.resolve_rule(get_db(), state="SP", people_type="J", ncm="9999.00.00")
        self.assertIsNone(rule)

    def test_invalid_emitter_state_is_rejected(self) -> None:
        with self.app.app_context():
            with self.assertRaises(InvalidTaxStateError):
                self.repository.resolve_rule(get_db(), state="SP", people_type="J", ncm="8452", emitter_state="XX")

    def test_emitter_state_from_unit(self) -> None:
        with self.app.app_context():
            db = get_db()
            self.assertEqual(self.repository.emitter_state(db, 2), "SC")
            self.assertEqual(self.repository.emitter_state(db, 404), "SP")

    def test_lead_taxes_written_to_cart_lines(self) -> None:
        actor = Actor(user_id=7)
        with self.app.app_context():
            db = get_db()
            service = current_services().lead_service
            lead = service.create_lead(db, {"customerId": CUSTOMER_SP, "userId": 7}, actor).payload["data"]
            service.add_item(db, lead["id"], {"productId": MACHINE_ID, "quantity": 2, "price": 1000}, actor)

            result = service.calculate_taxes(db, lead["id"]).payload
            items = service.list_items(db, lead["id"]).payload["data"]

        self.assertTrue(result["success"])
        self.assertEqual(len(result["data"]), 1)
        machine = next(item for item in items if item["productId"] == MACHINE_ID)
        self.assertEqual(machine["ipi"], 130.0)
        self.assertEqual(machine["st"], 176.76)


if __name__ == "__main__":
    unittest.main()
