import time
import unittest
from unittest.mock import patch

from crm.core import EventBus, LeadConverted, LeadCreated, TtlCache
from crm.observability import metrics_snapshot, reset_metrics_for_tests


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def tearDown(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        def first_handler(_event):
            execution_trace.append("first")

        def second_handler(_event):
            execution_trace.append("second")

        bus.subscribe(LeadCreated, first_handler)
        bus.subscribe(LeadCreated, second_handler)
        bus.subscribe(LeadCreated, first_handler)
        bus.publish(LeadCreated(lead_id=1, customer_id=10))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_failing_handler_does_not_stop_the_others(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("falha no handler")

        bus.subscribe(LeadConverted, broken)
        bus.subscribe(LeadConverted, received.append)
        with self.assertLogs("crm", level="ERROR"):
            bus.publish(LeadConverted(lead_id=3, order_id=70))

        self.assertEqual([event.order_id for event in received], [70])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        created = []
        bus.subscribe(LeadCreated, created.append)
        bus.publish(LeadConverted(lead_id=3, order_id=70))

        self.assertEqual(created, [])
        self.assertEqual(metrics_snapshot()["domain_events"]["by_type"], {"LeadConverted": 1})

    def test_events_get_identity_and_utc_timestamp(self) -> None:
        event = LeadCreated(lead_id=1, customer_id=10, event_id=" ")

        self.assertTrue(event.event_id.strip())
        self.assertIsNotNone(event.occurred_at.tzinfo)


class TtlCacheTest(unittest.TestCase):
    def test_values_are_copied_in_and_out(self) -> None:
        cache = TtlCache(60)
        value = {"subtotal": 10.0, "items": [1]}
        cache.set("cart_totals:1", value)
        value["items"].append(2)

        cached = cache.get("cart_totals:1")
        cached["items"].append(3)

        self.assertEqual(cache.get("cart_totals:1"), {"subtotal": 10.0, "items": [1]})

    def test_entries_expire(self) -> None:
        cache = TtlCache(60)
        cache.set("metadata:units", [1], ttl_seconds=5)
        with patch("crm.core.cache.time.time", return_value=time.time() + 10):
            self.assertIsNone(cache.get("metadata:units"))
        self.assertEqual(len(cache), 0)

    def test_invalidation_by_key_and_prefix(self) -> None:
        cache = TtlCache(60)
        cache.set("cart_totals:1", 1)
        cache.set("cart_totals:2", 2)
        cache.set("metadata:units", 3)

        self.assertTrue(cache.invalidate("cart_totals:1"))
        self.assertFalse(cache.invalidate("cart_totals:1"))
        self.assertEqual(cache.invalidate_prefix("cart_totals:"), 1)
        self.assertEqual(cache.get("metadata:units"), 3)


if __name__ == "__main__":
    unittest.main()
