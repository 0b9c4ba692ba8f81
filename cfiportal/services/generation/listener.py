from __future__ import annotations

import logging
import time
from typing import Any, AsyncIterator, Awaitable, Callable

from cfiportal.services.generation.progress import TERMINAL_EVENTS, ProgressTracker
from cfiportal.services.pubsub import PubSub


logger = logging.getLogger(__name__)

TIMEOUT_MESSAGE = "Generation is still running in the background, check back later."


async def listen_progress(
    pubsub: PubSub,
    topic: str,
    *,
    timeout_s: float,
    poll_s: float = 1.0,
    time_source: Callable[[], float] = time.monotonic,
    stored_final: Callable[[], Awaitable[dict[str, Any] | None]] | None = None,
) -> AsyncIterator[dict[str, Any]]:
    """Yield progress snapshots until a terminal event or the timeout.

    Giving up only stops listening; the job itself keeps running and its
    final state is read from the task endpoint.

    ``stored_final`` is awaited once the subscription is live; a snapshot it
    returns ends the stream, covering a terminal event published before
    the subscription existed.
    """
    tracker = ProgressTracker()
    deadline = time_source() + timeout_s
    async with pubsub.subscribe(topic) as subscription:
        if stored_final is not None:
            final = await stored_final()
            if final is not None:
                logger.info("progress_listener_already_final topic=%s status=%s", topic, final.get("status"))
                yield final
                return
        while True:
            remaining = deadline - time_source()
            if remaining <= 0:
                logger.info("progress_listener_timeout topic=%s completed=%s", topic, tracker.completed)
                yield tracker.mark_timeout(TIMEOUT_MESSAGE)
                return
            event = await subscription.get(min(poll_s, remaining))
            if event is None:
                continue
            snapshot = tracker.apply(event)
            yield {**snapshot, "event": event.get("type")}
            if event.get("type") in TERMINAL_EVENTS:
                return
