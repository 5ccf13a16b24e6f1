import unittest

from app.core import CategoryCreated, CategoryDeleted, EventBus
from app.observability import metrics_snapshot, reset_metrics_for_tests


class EventBusTest(unittest.TestCase):
    def setUp(self) -> None:
        reset_metrics_for_tests()

    def test_handler_execution_order_is_predictable(self) -> None:
        bus = EventBus()
        execution_trace = []

        bus.subscribe(CategoryCreated, lambda _event: execution_trace.append("first"))
        bus.subscribe(CategoryCreated, lambda _event: execution_trace.append("second"))
        bus.publish(CategoryCreated(category_id=1, parent_id=None, path="Bebidas"))

        self.assertEqual(execution_trace, ["first", "second"])

    def test_handlers_only_receive_their_event_type(self) -> None:
        bus = EventBus()
        created = []
        bus.subscribe(CategoryCreated, created.append)

        bus.publish(CategoryDeleted(category_id=3, forced=True, reparented_children=2))

        self.assertEqual(created, [])

    def test_failing_handler_does_not_stop_the_others(self) -> None:
        bus = EventBus()
        received = []

        def broken(_event):
            raise RuntimeError("handler quebrado")

        bus.subscribe(CategoryDeleted, broken)
        bus.subscribe(CategoryDeleted, received.append)
        with self.assertLogs("app", level="ERROR") as logs:
            bus.publish(CategoryDeleted(category_id=3))

        self.assertEqual(len(received), 1)
        self.assertIn("event_handler_failed", logs.output[0])

    def test_events_are_normalized_and_counted(self) -> None:
        event = CategoryCreated(event_id="  ", category_id=9, parent_id=1, path="A > B")
        self.assertTrue(event.event_id)
        self.assertIsNotNone(event.occurred_at.tzinfo)

        EventBus().publish(event)
        snapshot = metrics_snapshot()
        self.assertEqual(snapshot["domain_events"]["by_type"], {"CategoryCreated": 1})


if __name__ == "__main__":
    unittest.main()
