import asyncio
import inspect
import logging
from typing import Any, Callable, Iterable, List, Optional

from core.aggregation.events import BatchEvent, GroupedResults
from core.models import MatchedResult

logger = logging.getLogger(__name__)


def _price_sort_key(result: MatchedResult):
    # unpriced results sort after every priced one
    return (result.price_value is None, result.price_value or 0.0)


def group_results(results: Iterable[MatchedResult]) -> GroupedResults:
    """Group results by target product, cheapest first within each group.

    The group key falls back to the listing name when no target product is set.
    The sort is stable, so equal prices keep their arrival order.
    """
    grouped: GroupedResults = {}
    for result in results:
        key = result.target_product or result.product_name
        grouped.setdefault(key, []).append(result)

    for key in grouped:
        grouped[key].sort(key=_price_sort_key)
    return grouped


def dedupe_results(results: Iterable[MatchedResult]) -> List[MatchedResult]:
    """Drop repeats of (product name, store, link), keeping the first."""
    seen = set()
    unique = []
    for result in results:
        key = result.dedupe_key()
        if key in seen:
            continue
        seen.add(key)
        unique.append(result)
    return unique


class ResultAggregator:
    """Collects matches across stores and publishes them as events.

    on_batch() is the synchronous callback handed to the session controller.
    Events go onto an asyncio.Queue; whoever transports them (WebSocket
    broadcast, CLI echo) reads the queue in its own task.
    """

    def __init__(self, queue: Optional[asyncio.Queue] = None):
        self.queue: asyncio.Queue = queue if queue is not None else asyncio.Queue()
        self.results: List[MatchedResult] = []
        self._seen = set()

    def add(self, matches: Iterable[MatchedResult]) -> List[MatchedResult]:
        """Record matches not seen before and return them."""
        added = []
        for match in matches:
            key = match.dedupe_key()
            if key in self._seen:
                continue
            self._seen.add(key)
            self.results.append(match)
            added.append(match)
        return added

    def grouped(self) -> GroupedResults:
        return group_results(self.results)

    def publish(self, event: Any) -> None:
        self.queue.put_nowait(event)

    def on_batch(self, store: str, new_matches: List[MatchedResult],
                 all_for_store: List[MatchedResult]) -> None:
        added = self.add(new_matches)
        if not added:
            return

        self.publish(BatchEvent(
            store=store,
            target_product=added[0].target_product,
            new_results=added,
            total_count=len(self.results),
            grouped=self.grouped(),
        ))
        logger.info("Broadcasting %d new result(s) from %s (total: %d)",
                    len(added), store, len(self.results))

    def callback_for(self, store: str) -> Callable[[List[MatchedResult], List[MatchedResult]], None]:
        """Bind on_batch to a store name for one controller run."""
        def callback(new_matches: List[MatchedResult], all_for_store: List[MatchedResult]) -> None:
            self.on_batch(store, new_matches, all_for_store)
        return callback

    def close(self) -> None:
        """Signal consumers that no more events follow."""
        self.queue.put_nowait(None)


async def consume(queue: asyncio.Queue, handler: Callable[[Any], Any]) -> int:
    """Feed every event to handler until the closing sentinel arrives.

    handler may be a plain function or a coroutine function. Returns the
    number of events handled.
    """
    handled = 0
    while True:
        event = await queue.get()
        if event is None:
            break
        outcome = handler(event)
        if inspect.isawaitable(outcome):
            await outcome
        handled += 1
    return handled
