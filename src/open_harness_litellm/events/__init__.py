"""Event bus for request observability."""

from open_harness_litellm.events.bus import EventBus

__all__ = ["EventBus"]
