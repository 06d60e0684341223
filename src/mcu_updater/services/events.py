"""Observer interface for upgrade events."""

from datetime import datetime
import logging
from typing import Iterable

from mcu_updater.models.status import UpgradeState


class UpgradeObserver:
    """Receives the events of an upgrade run.

    All methods are no-ops; subclasses override what they need. Events of
    one run are delivered in order on the event loop that started it, and
    exactly one of on_complete, on_fail or on_cancel ends every run.
    """

    def on_start(self) -> None:
        pass

    def on_state_change(self, previous: UpgradeState, new: UpgradeState) -> None:
        pass

    def on_progress(self, bytes_sent: int, image_size: int, timestamp: datetime) -> None:
        pass

    def on_complete(self) -> None:
        pass

    def on_fail(self, state: UpgradeState, error: Exception) -> None:
        pass

    def on_cancel(self, state: UpgradeState) -> None:
        pass


class CompositeObserver(UpgradeObserver):
    """Fans events out to several observers in registration order.

    A failing observer is logged and does not prevent delivery to the rest.
    """

    def __init__(self, observers: Iterable[UpgradeObserver] = ()):
        self.logger = logging.getLogger("mcu_updater.events")
        self.observers: list[UpgradeObserver] = list(observers)

    def add(self, observer: UpgradeObserver) -> None:
        self.observers.append(observer)

    def remove(self, observer: UpgradeObserver) -> None:
        self.observers.remove(observer)

    def _dispatch(self, event: str, *args) -> None:
        for observer in list(self.observers):
            try:
                getattr(observer, event)(*args)
            except Exception as e:
                self.logger.error(
                    f"Observer {type(observer).__name__}.{event} failed: {e}",
                    exc_info=True,
                )

    def on_start(self) -> None:
        self._dispatch("on_start")

    def on_state_change(self, previous: UpgradeState, new: UpgradeState) -> None:
        self._dispatch("on_state_change", previous, new)

    def on_progress(self, bytes_sent: int, image_size: int, timestamp: datetime) -> None:
        self._dispatch("on_progress", bytes_sent, image_size, timestamp)

    def on_complete(self) -> None:
        self._dispatch("on_complete")

    def on_fail(self, state: UpgradeState, error: Exception) -> None:
        self._dispatch("on_fail", state, error)

    def on_cancel(self, state: UpgradeState) -> None:
        self._dispatch("on_cancel", state)
