"""Status event bus fanning deployment progress out to observers."""

from stackyard.events.bus import StatusEventBus, Subscription

__all__ = ["StatusEventBus", "Subscription"]
