"""Push-based live queries.

``ChangeBus`` fans store mutations out to the subscriptions registered for the
owner. Each ``Subscription`` recomputes its query and hands the result to its
callback. Bursts of events collapse into a single recompute, results are
delivered strictly in request order, and a failed recompute against an
unavailable store is retried on a timer until it succeeds.
"""

from __future__ import annotations

import itertools
import threading
from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import Callable, Generic, Iterable, Optional, TypeVar

from ..errors import StoreUnavailable
from ..logging_config import get_logger

logger = get_logger("services.live")

T = TypeVar("T")


class Topic(str, Enum):
    RECORDS = "records"
    BUDGETS = "budgets"
    AGGREGATE = "aggregate"


@dataclass(frozen=True)
class ChangeEvent:
    """One committed mutation for one owner."""

    owner_id: str
    topic: Topic
    revision: int
    action: str = ""
    # occurred_on dates touched by the mutation (old and new for edits)
    dates: frozenset[date] = field(default_factory=frozenset)

    def touches(self, start: Optional[date], end: Optional[date]) -> bool:
        """True if any touched date falls in [start, end); unknown dates always match."""
        if not self.dates:
            return True
        return any(
            (start is None or day >= start) and (end is None or day < end) for day in self.dates
        )


class ChangeBus:
    """In-process change notification keyed by owner id."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscriptions: dict[str, list[Subscription]] = {}
        self._revisions = itertools.count(1)

    def publish(
        self,
        owner_id: str,
        topic: Topic,
        *,
        action: str = "",
        dates: Iterable[date] = (),
    ) -> ChangeEvent:
        """Notify every subscription of ``owner_id``; returns the event sent."""
        with self._lock:
            event = ChangeEvent(
                owner_id=owner_id,
                topic=topic,
                revision=next(self._revisions),
                action=action,
                dates=frozenset(dates),
            )
            targets = list(self._subscriptions.get(owner_id, ()))
        logger.debug(
            "Change published",
            extra={"owner_id": owner_id, "topic": topic.value, "revision": event.revision},
        )
        for subscription in targets:
            subscription.notify(event)
        return event

    def attach(self, subscription: "Subscription") -> None:
        with self._lock:
            self._subscriptions.setdefault(subscription.owner_id, []).append(subscription)

    def detach(self, subscription: "Subscription") -> None:
        with self._lock:
            owned = self._subscriptions.get(subscription.owner_id)
            if not owned:
                return
            if subscription in owned:
                owned.remove(subscription)
            if not owned:
                del self._subscriptions[subscription.owner_id]

    def subscriber_count(self, owner_id: Optional[str] = None) -> int:
        with self._lock:
            if owner_id is not None:
                return len(self._subscriptions.get(owner_id, ()))
            return sum(len(subs) for subs in self._subscriptions.values())


class Subscription(Generic[T]):
    """A registered live query. Calling the object (or ``unsubscribe``) stops it."""

    def __init__(
        self,
        bus: ChangeBus,
        owner_id: str,
        *,
        compute: Callable[[], T],
        callback: Callable[[T], None],
        relevant: Callable[[ChangeEvent], bool] = lambda event: True,
        resume_interval: float = 1.0,
        name: str = "live query",
    ) -> None:
        self.bus = bus
        self.owner_id = owner_id
        self.name = name
        self._compute = compute
        self._callback = callback
        self._relevant = relevant
        self._resume_interval = resume_interval
        self._lock = threading.RLock()
        self._requested = 0
        self._delivered = 0
        self._draining = False
        self._closed = False
        self._resume_timer: Optional[threading.Timer] = None
        self._close_hooks: list[Callable[[], None]] = []

    @property
    def active(self) -> bool:
        return not self._closed

    @property
    def delivered_generation(self) -> int:
        return self._delivered

    def start(self) -> "Subscription[T]":
        """Register on the bus and deliver the current result."""
        self.bus.attach(self)
        self._request()
        return self

    def notify(self, event: ChangeEvent) -> None:
        if self._closed or event.owner_id != self.owner_id:
            return
        if not self._relevant(event):
            return
        self._request()

    def refresh(self) -> None:
        """Recompute and deliver even though no store event arrived."""
        self._request()

    def on_close(self, hook: Callable[[], None]) -> None:
        """Run ``hook`` once when the subscription is closed."""
        with self._lock:
            if not self._closed:
                self._close_hooks.append(hook)
                return
        hook()

    def unsubscribe(self) -> None:
        """Stop all further callbacks; safe to call more than once."""
        with self._lock:
            if self._closed:
                return
            self._closed = True
            timer, self._resume_timer = self._resume_timer, None
            hooks, self._close_hooks = self._close_hooks, []
        if timer is not None:
            timer.cancel()
        for hook in hooks:
            hook()
        self.bus.detach(self)
        logger.debug("Subscription closed", extra={"owner_id": self.owner_id, "query": self.name})

    __call__ = unsubscribe

    def _request(self) -> None:
        with self._lock:
            if self._closed:
                return
            self._requested += 1
            if self._draining:
                # The active drainer picks this generation up.
                return
            self._draining = True
        self._drain()

    def _resume(self) -> None:
        with self._lock:
            self._resume_timer = None
            if self._closed or self._draining:
                return
            self._draining = True
        logger.info("Resuming live query", extra={"owner_id": self.owner_id, "query": self.name})
        self._drain()

    def _drain(self) -> None:
        while True:
            with self._lock:
                if self._closed or self._delivered >= self._requested:
                    self._draining = False
                    return
                generation = self._requested
            try:
                result = self._compute()
            except StoreUnavailable:
                logger.error(
                    "Live query failed; store unavailable, will retry",
                    extra={"owner_id": self.owner_id, "query": self.name},
                )
                with self._lock:
                    self._draining = False
                    self._schedule_resume()
                return
            except Exception:
                logger.exception(
                    "Live query failed", extra={"owner_id": self.owner_id, "query": self.name}
                )
                with self._lock:
                    self._draining = False
                return

            with self._lock:
                if self._closed:
                    self._draining = False
                    return
                self._delivered = generation
                try:
                    self._callback(result)
                except Exception:
                    logger.exception(
                        "Live query callback raised",
                        extra={"owner_id": self.owner_id, "query": self.name},
                    )

    def _schedule_resume(self) -> None:
        if self._closed or self._resume_timer is not None:
            return
        timer = threading.Timer(self._resume_interval, self._resume)
        timer.daemon = True
        self._resume_timer = timer
        timer.start()


class DayRollover:
    """Refreshes a subscription whose window is relative to today when the day changes."""

    def __init__(
        self,
        subscription: Subscription,
        today: Callable[[], date],
        *,
        interval: float = 60.0,
    ) -> None:
        self.subscription = subscription
        self._today = today
        self._interval = interval
        self._stopped = threading.Event()
        self._seen: Optional[date] = None
        self._thread = threading.Thread(
            target=self._run, name=f"pocketledger-rollover-{subscription.name}", daemon=True
        )

    def start(self) -> "DayRollover":
        self._seen = self._today()
        self.subscription.on_close(self.stop)
        self._thread.start()
        return self

    def stop(self) -> None:
        self._stopped.set()

    def _run(self) -> None:
        while not self._stopped.wait(self._interval):
            current = self._today()
            if current == self._seen:
                continue
            self._seen = current
            logger.info(
                "Day rolled over; refreshing live query",
                extra={"owner_id": self.subscription.owner_id, "query": self.subscription.name},
            )
            self.subscription.refresh()
