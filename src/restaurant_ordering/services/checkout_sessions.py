"""In-memory registry of open checkout sessions."""

import logging
import time
from collections.abc import Callable

from restaurant_ordering.services.checkout_flow import CheckoutFlow

logger = logging.getLogger(__name__)

DEFAULT_IDLE_TTL_SECONDS = 30 * 60
DEFAULT_FINISHED_TTL_SECONDS = 2 * 60


class CheckoutSessionStore:
    """Holds checkout flows between requests and evicts the ones nobody uses.

    A session is evicted once it has not been accessed for ``idle_ttl``
    seconds, or for ``finished_ttl`` seconds after its order was confirmed or
    cancelled. Every eviction closes the flow so it stops listening for
    order status changes. Expired sessions are swept on each access.
    """

    def __init__(
        self,
        idle_ttl: float = DEFAULT_IDLE_TTL_SECONDS,
        finished_ttl: float = DEFAULT_FINISHED_TTL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        """Initialize the store.

        Args:
            idle_ttl: Seconds an open session survives without being accessed
            finished_ttl: Seconds a confirmed or cancelled session is kept around
            clock: Monotonic time source in seconds
        """
        self.idle_ttl = idle_ttl
        self.finished_ttl = finished_ttl
        self._clock = clock
        self._sessions: dict[str, CheckoutFlow] = {}
        self._last_access: dict[str, float] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def add(self, flow: CheckoutFlow) -> None:
        self.evict_expired()
        self._sessions[flow.session_id] = flow
        self._last_access[flow.session_id] = self._clock()

    def get(self, session_id: str) -> CheckoutFlow | None:
        """Look up a session and mark it as used.

        Returns:
            The flow, or None if it never existed or was evicted
        """
        self.evict_expired()
        flow = self._sessions.get(session_id)
        if flow is not None:
            self._last_access[session_id] = self._clock()
        return flow

    def remove(self, session_id: str) -> CheckoutFlow | None:
        """Close and forget a session."""
        flow = self._sessions.pop(session_id, None)
        self._last_access.pop(session_id, None)
        if flow is not None:
            flow.close()
        return flow

    def evict_expired(self) -> int:
        """Remove every session past its time to live.

        Returns:
            Number of sessions evicted
        """
        now = self._clock()
        expired = [
            session_id
            for session_id, flow in self._sessions.items()
            if now - self._last_access[session_id]
            > (self.finished_ttl if flow.is_finished else self.idle_ttl)
        ]

        for session_id in expired:
            self.remove(session_id)

        if expired:
            logger.info(f"Evicted {len(expired)} checkout sessions, {len(self._sessions)} open")
        return len(expired)
