"""
Update channel for runtime policy changes.

The interactive layer publishes a PolicyUpdate when the user chooses
"always allow" for a tool. Listeners (normally the PolicyEngine) are
subscribed explicitly, usually once at construction.

Delivery is fire-and-forget: publish() returns nothing, and a listener
that raises is logged without affecting the publisher or other listeners.

Usage:
    channel = UpdateChannel()
    engine = PolicyEngine(config, updates=channel)
    channel.publish(PolicyUpdate(tool_name="replace"))
"""

import logging
import threading
from typing import Protocol, runtime_checkable

from warden.schema import PolicyUpdate

logger = logging.getLogger(__name__)


@runtime_checkable
class PolicyUpdateListener(Protocol):
    """Receives policy update events."""

    def on_policy_update(self, update: PolicyUpdate) -> None:
        """Handle one update event."""
        ...


class UpdateChannel:
    """
    Thread-safe publish/subscribe point for PolicyUpdate events.

    Attributes:
        _listeners: Subscribed listeners, in subscription order
    """

    def __init__(self) -> None:
        """Initialize a channel with no listeners."""
        self._listeners: tuple[PolicyUpdateListener, ...] = ()
        self._lock = threading.Lock()

    def subscribe(self, listener: PolicyUpdateListener) -> None:
        """
        Subscribe a listener. Subscribing the same listener twice is a no-op.

        Raises:
            TypeError: If listener does not implement on_policy_update
        """
        if not isinstance(listener, PolicyUpdateListener):
            msg = f"{type(listener).__name__} does not implement on_policy_update"
            raise TypeError(msg)

        with self._lock:
            if listener not in self._listeners:
                self._listeners = (*self._listeners, listener)

    def publish(self, update: PolicyUpdate) -> None:
        """Deliver an update to every listener subscribed at call time."""
        for listener in self._listeners:
            try:
                listener.on_policy_update(update)
            except Exception:
                logger.exception(
                    "Policy update listener %r failed for %s",
                    listener,
                    update.tool_name,
                )
