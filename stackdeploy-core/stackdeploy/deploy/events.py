import logging
import threading
from collections.abc import Callable, Iterator
from datetime import datetime
from typing import Optional

from stackdeploy import config
from stackdeploy.deploy.models import StackEvent, StackIdentity
from stackdeploy.deploy.provider import StackProvider
from stackdeploy.utils.time import Clock

LOG = logging.getLogger(__name__)


class StackEventReader:
    """
    Reads the events of one stack operation. Call ``start()`` before the operation is issued, so that events
    of earlier operations are not replayed. Every event is emitted exactly once, in temporal order.
    """

    def __init__(
        self,
        provider: StackProvider,
        stack: StackIdentity,
        clock: Optional[Clock] = None,
        interval: Optional[float] = None,
    ):
        self.provider = provider
        self.stack = stack
        self.clock = clock or Clock()
        self.interval = config.EVENT_POLL_INTERVAL if interval is None else interval
        self.cursor: Optional[str] = None
        self.seen_ids: set[str] = set()
        self.history: list[StackEvent] = []
        self._last_timestamp: Optional[datetime] = None

    def start(self) -> "StackEventReader":
        """Moves the cursor to the newest existing event."""
        latest = self.provider.describe_stack_events(self.stack, limit=1)
        if latest:
            self.cursor = latest[0].event_id
            self.seen_ids.add(self.cursor)
            self._last_timestamp = latest[0].timestamp
        return self

    def poll(self) -> list[StackEvent]:
        """Fetches the events newer than the cursor and returns the ones not emitted yet, oldest first."""
        events = self.provider.describe_stack_events(self.stack, since_event_id=self.cursor)
        if not events:
            return []
        self.cursor = events[0].event_id

        result = []
        # the provider lists newest first, reversing keeps the provider order for equal timestamps
        for event in sorted(reversed(events), key=lambda e: e.timestamp):
            if event.event_id in self.seen_ids:
                continue
            self.seen_ids.add(event.event_id)
            if self._last_timestamp and event.timestamp < self._last_timestamp:
                LOG.debug("Dropping late event %s of stack %s", event.event_id, self.stack.name)
                continue
            self._last_timestamp = event.timestamp
            result.append(event)

        self.history.extend(result)
        return result

    def stream(
        self,
        until: Callable[[], bool],
        interval: Optional[float] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> Iterator[StackEvent]:
        """
        Lazily yields new events until ``until()`` returns True. The events up to that point are flushed before
        the stream ends. Exceptions raised by ``until`` end the stream.
        """
        interval = self.interval if interval is None else interval
        while True:
            done = until()
            yield from self.poll()
            if done:
                return
            self.clock.sleep(interval, cancel_event)

    def failed_events(self) -> list[StackEvent]:
        return [e for e in self.history if e.failed]
