"""Fire-and-forget "bay changed" notifications."""

import logging
import threading
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

BayListener = Callable[[int, int], None]


class BayChangeNotifier(Protocol):
    def notify_bay_changed(self, location_id: int, bay_number: int) -> None: ...


class LoggingNotifier:
    """Default sink: records the event in the log only."""

    def notify_bay_changed(self, location_id: int, bay_number: int) -> None:
        logger.info(
            "Bay changed",
            extra={"location_id": location_id, "bay": bay_number},
        )


class BroadcastNotifier:
    """Fans events out to registered listeners; a failing listener never reaches the caller."""

    def __init__(self) -> None:
        self._listeners: list[BayListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: BayListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def notify_bay_changed(self, location_id: int, bay_number: int) -> None:
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(location_id, bay_number)
            except Exception:
                logger.exception(
                    "Bay change listener failed",
                    extra={"location_id": location_id, "bay": bay_number},
                )


default_notifier = BroadcastNotifier()
default_notifier.subscribe(LoggingNotifier().notify_bay_changed)


def notify_bays(notifier: BayChangeNotifier, targets: set[tuple[int, int]]) -> None:
    """Emit one notification per distinct (location, bay)."""
    for location_id, bay_number in sorted(targets):
        notifier.notify_bay_changed(location_id, bay_number)
