"""Per-session broadcast of inbound transport frames.

Delivery is synchronous and unbuffered: a listener only sees frames that
arrive while it is subscribed. Backlog is fetched through the REST layer,
never replayed here.
"""

from __future__ import annotations

from collections.abc import Callable

from structlog import get_logger

from kanbanterm.api_models import ServerFrame

logger = get_logger(__name__)

FrameListener = Callable[[ServerFrame], None]


class Subscription:
    """Handle returned by EventHub.subscribe. Calling it unsubscribes."""

    def __init__(self, hub: EventHub, session_id: str, listener: FrameListener) -> None:
        self._hub = hub
        self.session_id = session_id
        self.listener = listener
        self.active = True

    def __call__(self) -> None:
        self.unsubscribe()

    def unsubscribe(self) -> None:
        if not self.active:
            return
        self.active = False
        self._hub.unsubscribe(self.session_id, self.listener)


class EventHub:
    """Publish/subscribe channel keyed by session id."""

    def __init__(self) -> None:
        self._listeners: dict[str, list[FrameListener]] = {}

    def subscribe(self, session_id: str, listener: FrameListener) -> Subscription:
        """Register a listener for a session's frames."""
        self._listeners.setdefault(session_id, []).append(listener)
        logger.debug("frame_listener_added", session_id=session_id, total=len(self._listeners[session_id]))
        return Subscription(self, session_id, listener)

    def unsubscribe(self, session_id: str, listener: FrameListener) -> None:
        """Remove a listener. Unknown listeners are ignored."""
        listeners = self._listeners.get(session_id)
        if not listeners:
            return
        try:
            listeners.remove(listener)
        except ValueError:
            return
        if not listeners:
            del self._listeners[session_id]

    def listener_count(self, session_id: str) -> int:
        return len(self._listeners.get(session_id, ()))

    def publish(self, session_id: str, frame: ServerFrame) -> None:
        """Deliver a frame to every current listener of the session, in subscription order."""
        # Copy so listeners may unsubscribe while being notified
        for listener in list(self._listeners.get(session_id, ())):
            try:
                listener(frame)
            except Exception as e:
                logger.error(
                    "frame_listener_failed",
                    session_id=session_id,
                    frame_type=frame.type,
                    error=str(e),
                    exc_info=True,
                )

    def clear(self) -> None:
        """Drop all listeners (primarily for teardown and tests)."""
        self._listeners.clear()
