"""Publish/subscribe event stream."""

from typing import Callable, Generic, List, TypeVar

from ..utils.logging import get_logger


T = TypeVar("T")

Listener = Callable[[T], None]


class EventStream(Generic[T]):
    """One producer, many independent listeners.

    Listeners receive only events emitted after they subscribe. A failing
    listener is logged and does not affect the others or the producer.
    """

    def __init__(self, name: str):
        self.name = name
        self._listeners: List[Listener] = []
        self.logger = get_logger(self.__class__.__name__)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Register ``listener``; returns a callable that unsubscribes it."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def clear(self) -> None:
        self._listeners.clear()

    @property
    def listener_count(self) -> int:
        return len(self._listeners)

    def emit(self, payload: T) -> None:
        for listener in list(self._listeners):
            try:
                listener(payload)
            except Exception as e:
                self.logger.warning("Event listener failed", stream=self.name, error=str(e))
