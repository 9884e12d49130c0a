"""Request observability: a small in-process event bus.

The orchestrator emits ``llm.*`` events around every model call, the tool
executor emits ``tool.*`` events per call and the provider emits
``models.discovered`` after bootstrap.  Listeners are notified in the
order they subscribed; one that raises is logged and skipped.
"""

from __future__ import annotations

import inspect
import logging
from typing import Any, Callable

from open_harness_litellm.types import EventType, ProviderEvent

_logger = logging.getLogger(__name__)

ALL_EVENTS = "*"

Listener = Callable[[ProviderEvent], Any]


class EventBus:
    """Fan ``ProviderEvent`` objects out to sync or async listeners.

    Usage::

        bus = EventBus()
        unsubscribe = bus.subscribe(EventType.TOOL_ERROR, on_tool_error)
        provider = LiteLLMProvider(settings, event_bus=bus)
    """

    def __init__(self) -> None:
        self._listeners: list[tuple[str, Listener]] = []

    def subscribe(
        self, event_type: EventType | str, listener: Listener,
    ) -> Callable[[], None]:
        """Register *listener* for one event type, or ``"*"`` for all.

        Returns a callable that removes the subscription again.
        """
        entry = (_topic(event_type), listener)
        self._listeners.append(entry)

        def _unsubscribe() -> None:
            if entry in self._listeners:
                self._listeners.remove(entry)

        return _unsubscribe

    def unsubscribe(self, event_type: EventType | str, listener: Listener) -> None:
        topic = _topic(event_type)
        self._listeners = [
            (t, fn) for t, fn in self._listeners if not (t == topic and fn is listener)
        ]

    async def emit(self, event: ProviderEvent) -> None:
        topic = _topic(event.type)
        for wanted, listener in list(self._listeners):
            if wanted != topic and wanted != ALL_EVENTS:
                continue
            try:
                outcome = listener(event)
                if inspect.isawaitable(outcome):
                    await outcome
            except Exception:
                _logger.exception("Listener for %s failed", topic)


def _topic(event_type: EventType | str) -> str:
    return event_type.value if isinstance(event_type, EventType) else str(event_type)
