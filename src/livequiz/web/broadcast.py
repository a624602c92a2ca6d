"""Live event fan-out to audience connections.

Each connected audience client holds a Subscription registered under its
session. publish() never suspends: frames go into a bounded per-handle
buffer, and a handle that cannot keep up (full buffer, or oldest frame
older than send_timeout) is dropped instead of delaying the others.

Single process only: the registry lives in memory.
"""

from __future__ import annotations

import asyncio
import json
import threading
import time
import uuid
from collections import deque
from typing import Any, AsyncGenerator, Callable

import structlog

from livequiz.config.app_config import BroadcastConfig
from livequiz.core.errors import ConnectionLossError

logger = structlog.get_logger(__name__)

KEEPALIVE_FRAME = ": keepalive\n\n"
CONNECTED_FRAME = ": connected\n\n"


def format_sse(event: dict[str, Any]) -> str:
    """Format an event as one SSE data frame."""
    return f"data: {json.dumps(event, ensure_ascii=False)}\n\n"


class Subscription:
    """One live audience connection."""

    def __init__(
        self,
        channel: BroadcastChannel,
        session_id: str,
        max_pending: int,
        heartbeat_interval: float,
    ):
        self.subscription_id = uuid.uuid4().hex[:12]
        self.session_id = session_id
        self._channel = channel
        self._max_pending = max_pending
        self._heartbeat_interval = heartbeat_interval
        self._pending: deque[tuple[float, str]] = deque()
        self._wakeup = asyncio.Event()
        self._closed = False
        self.close_reason: str | None = None

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def pending(self) -> int:
        return len(self._pending)

    def offer(self, frame: str, now: float, send_timeout: float) -> None:
        """Queue a frame without waiting.

        Raises:
            ConnectionLossError: If the handle is closed or not keeping up
        """
        if self._closed:
            raise ConnectionLossError("subscription closed")
        if len(self._pending) >= self._max_pending:
            raise ConnectionLossError("send buffer full")
        if self._pending and now - self._pending[0][0] > send_timeout:
            raise ConnectionLossError("oldest frame exceeded send timeout")

        self._pending.append((now, frame))
        self._wakeup.set()

    def close(self, reason: str) -> None:
        """Stop the stream after any frames already queued."""
        if self._closed:
            return
        self._closed = True
        self.close_reason = reason
        self._wakeup.set()

    async def stream(self) -> AsyncGenerator[str, None]:
        """Yield SSE frames until closed; keepalive comments while idle.

        The subscription is always deregistered when the generator exits.
        """
        try:
            yield CONNECTED_FRAME
            while True:
                while self._pending:
                    _, frame = self._pending.popleft()
                    yield frame

                if self._closed:
                    return

                self._wakeup.clear()
                try:
                    await asyncio.wait_for(self._wakeup.wait(), timeout=self._heartbeat_interval)
                except asyncio.TimeoutError:
                    yield KEEPALIVE_FRAME
        finally:
            self._channel.unsubscribe(self)


class BroadcastChannel:
    """Per-session registry of subscriptions with non-blocking publish."""

    def __init__(
        self,
        config: BroadcastConfig | None = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.config = config or BroadcastConfig()
        self._clock = clock
        self._sessions: dict[str, dict[str, Subscription]] = {}
        self._lock = threading.Lock()

    def subscribe(self, session_id: str) -> Subscription:
        """Register a new handle for a session."""
        subscription = Subscription(
            self,
            session_id,
            max_pending=self.config.queue_size,
            heartbeat_interval=self.config.heartbeat_interval,
        )
        with self._lock:
            self._sessions.setdefault(session_id, {})[subscription.subscription_id] = subscription
            count = len(self._sessions[session_id])

        logger.info(
            "broadcast.subscribed",
            session_id=session_id,
            subscription_id=subscription.subscription_id,
            recipients=count,
        )
        return subscription

    def unsubscribe(self, subscription: Subscription) -> bool:
        """Deregister a handle. Safe to call more than once."""
        with self._lock:
            handles = self._sessions.get(subscription.session_id)
            removed = handles is not None and handles.pop(subscription.subscription_id, None) is not None
            if handles is not None and not handles:
                del self._sessions[subscription.session_id]

        subscription.close("unsubscribed")
        if removed:
            logger.info(
                "broadcast.unsubscribed",
                session_id=subscription.session_id,
                subscription_id=subscription.subscription_id,
            )
        return removed

    def recipient_count(self, session_id: str) -> int:
        """Number of live handles for a session."""
        with self._lock:
            return len(self._sessions.get(session_id, {}))

    def publish(self, session_id: str, event: dict[str, Any]) -> int:
        """Queue an event to every handle of a session.

        Returns:
            Number of handles the event was queued to
        """
        frame = format_sse(event)
        now = self._clock()

        with self._lock:
            handles = list(self._sessions.get(session_id, {}).values())

        delivered = 0
        dropped: list[tuple[Subscription, str]] = []
        for subscription in handles:
            try:
                subscription.offer(frame, now, self.config.send_timeout)
                delivered += 1
            except ConnectionLossError as e:
                dropped.append((subscription, str(e)))

        for subscription, reason in dropped:
            subscription.close(f"dropped: {reason}")
            self.unsubscribe(subscription)
            logger.warning(
                "broadcast.dropped",
                session_id=session_id,
                subscription_id=subscription.subscription_id,
                reason=reason,
            )

        logger.debug(
            "broadcast.published",
            session_id=session_id,
            event_type=event.get("type"),
            delivered=delivered,
            dropped=len(dropped),
        )
        return delivered

    def close_session(self, session_id: str) -> int:
        """Force-close every handle of a session. Returns how many were closed."""
        with self._lock:
            handles = list(self._sessions.pop(session_id, {}).values())

        for subscription in handles:
            subscription.close("session_ended")

        if handles:
            logger.info("broadcast.session_closed", session_id=session_id, closed=len(handles))
        return len(handles)

    def close_all(self) -> int:
        """Close every handle of every session (application shutdown)."""
        with self._lock:
            session_ids = list(self._sessions)

        return sum(self.close_session(session_id) for session_id in session_ids)
