import asyncio
import unittest
from datetime import datetime

from core.aggregation.aggregator import ResultAggregator, consume, dedupe_results, group_results
from core.aggregation.events import BatchEvent, CompleteEvent, FailedEvent, StatusEvent, StoreErrorEvent
from core.models import MatchedResult

NOW = datetime(2024, 5, 1, 12, 0, 0)


def _result(name, store, target, price_value, link=None):
    return MatchedResult(
        product_name=name,
        store=store,
        price_text="" if price_value is None else f"€{price_value}",
        target_product=target,
        link=link or f"https://{store.lower()}.example/{name}",
        price_value=price_value,
        timestamp=NOW,
    )


class TestGrouping(unittest.TestCase):
    def test_groups_sort_cheapest_first_with_unpriced_last(self) -> None:
        results = [
            _result("Jupiler bak", "Colruyt", "Jupiler", 17.49),
            _result("Maes bak", "Delhaize", "Maes", None),
            _result("Jupiler krat", "Delhaize", "Jupiler", None),
            _result("Maes krat", "Colruyt", "Maes", 15.99),
            _result("Jupiler 24x25", "Carrefour", "Jupiler", 16.29),
        ]

        grouped = group_results(results)

        self.assertEqual(list(grouped), ["Jupiler", "Maes"])
        self.assertEqual([r.price_value for r in grouped["Jupiler"]], [16.29, 17.49, None])
        self.assertEqual([r.price_value for r in grouped["Maes"]], [15.99, None])

    def test_equal_prices_keep_arrival_order(self) -> None:
        first = _result("A", "Colruyt", "Jupiler", 16.0)
        second = _result("B", "Delhaize", "Jupiler", 16.0)

        self.assertEqual(group_results([first, second])["Jupiler"], [first, second])

    def test_missing_target_falls_back_to_product_name(self) -> None:
        grouped = group_results([_result("Huismerk pils", "Colruyt", "", 9.99)])

        self.assertEqual(list(grouped), ["Huismerk pils"])

    def test_dedupe_keeps_first_of_identical_triples(self) -> None:
        original = _result("Jupiler bak", "Colruyt", "Jupiler", 17.49, link="https://c/1")
        repeat = _result("Jupiler bak", "Colruyt", "Jupiler", 17.99, link="https://c/1")

        self.assertEqual(dedupe_results([original, repeat]), [original])


class TestResultAggregator(unittest.IsolatedAsyncioTestCase):
    async def test_batch_event_published_only_for_new_results(self) -> None:
        aggregator = ResultAggregator()
        jupiler = _result("Jupiler bak", "Colruyt", "Jupiler", 17.49)

        aggregator.on_batch("Colruyt", [jupiler], [jupiler])
        aggregator.on_batch("Colruyt", [jupiler], [jupiler])
        aggregator.close()

        events = []
        handled = await consume(aggregator.queue, events.append)

        self.assertEqual(handled, 1)
        self.assertIsInstance(events[0], BatchEvent)
        self.assertEqual(events[0].total_count, 1)
        self.assertEqual(aggregator.results, [jupiler])

    async def test_callback_binds_store_name(self) -> None:
        aggregator = ResultAggregator()
        callback = aggregator.callback_for("Delhaize")
        maes = _result("Maes bak", "Delhaize", "Maes", 15.99)

        callback([maes], [maes])

        event = aggregator.queue.get_nowait()
        self.assertEqual(event.store, "Delhaize")
        message = event.to_message()
        self.assertEqual(message["type"], "progress")
        self.assertEqual(message["supermarket"], "Delhaize")
        self.assertEqual(message["results"]["Maes"][0]["price_value"], 15.99)

    async def test_consume_awaits_coroutine_handlers(self) -> None:
        queue = asyncio.Queue()
        seen = []

        async def handler(event):
            seen.append(event.status)

        queue.put_nowait(StatusEvent("started", "Scraping started..."))
        queue.put_nowait(None)

        self.assertEqual(await consume(queue, handler), 1)
        self.assertEqual(seen, ["started"])


class TestEventMessages(unittest.TestCase):
    def test_status_message_includes_store_when_set(self) -> None:
        self.assertEqual(
            StatusEvent("processing", "Processing Colruyt...", "Colruyt").to_message(),
            {"type": "status", "status": "processing", "message": "Processing Colruyt...", "supermarket": "Colruyt"},
        )
        self.assertNotIn("supermarket", StatusEvent("started", "Scraping started...").to_message())

    def test_error_messages(self) -> None:
        store_error = StoreErrorEvent("Colruyt", "browser crashed").to_message()
        failed = FailedEvent("boom").to_message()

        self.assertEqual(store_error["type"], "error")
        self.assertEqual(store_error["message"], "Failed to scrape Colruyt")
        self.assertEqual(failed["status"], "error")

    def test_complete_message_serializes_groups(self) -> None:
        result = _result("Jupiler bak", "Colruyt", "Jupiler", 17.49)
        message = CompleteEvent(1, group_results([result]), "run-1").to_message()

        self.assertEqual(message["type"], "complete")
        self.assertEqual(message["total_count"], 1)
        self.assertEqual(message["results"]["Jupiler"][0]["supermarket"], "Colruyt")
        self.assertEqual(message["results"]["Jupiler"][0]["timestamp"], NOW.isoformat())


if __name__ == "__main__":
    unittest.main()
