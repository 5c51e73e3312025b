"""
Connection state and linear backoff for the message stream.
"""

import logging
import threading
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class CloseReason(str, Enum):
    """Why a stream reached its terminal state."""

    RETRIES_EXHAUSTED = "retries_exhausted"
    CLOSED = "closed"


class ConnectionState:
    """
    Tracks one stream connection: closed flag, retry counter and the live
    response handle.

    Shared between the listen task and whoever calls ``mark_closed``, so
    every access goes through a lock. Nothing awaits while the lock is held.

    ``closed`` starts out True (nothing opened yet). Once ``mark_closed``
    has run the state is terminal: later connects are refused and their
    responses released.

    Backoff grows linearly: the wait before retry ``n`` is ``wait * n``.
    """

    def __init__(self, wait: float = 3.0, max_retries: int = 5):
        """
        Initialize connection state.

        Args:
            wait: Backoff unit in seconds
            max_retries: Consecutive failed attempts before giving up
        """
        if max_retries < 1:
            raise ValueError("max_retries must be at least 1")
        if wait < 0:
            raise ValueError("wait must not be negative")

        self._lock = threading.Lock()
        self._wait = wait
        self._max_retries = max_retries

        self._closed = True
        self._terminal = False
        self._retries = 0
        self._response: Optional[Any] = None
        self._close_reason: Optional[CloseReason] = None

    @property
    def closed(self) -> bool:
        with self._lock:
            return self._closed

    @property
    def terminal(self) -> bool:
        with self._lock:
            return self._terminal

    @property
    def close_reason(self) -> Optional[CloseReason]:
        with self._lock:
            return self._close_reason

    @property
    def retries(self) -> int:
        with self._lock:
            return self._retries

    @property
    def response(self) -> Optional[Any]:
        with self._lock:
            return self._response

    @property
    def wait(self) -> float:
        return self._wait

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def exhausted(self) -> bool:
        """True once the retry counter has reached the limit."""
        with self._lock:
            return self._retries >= self._max_retries

    def backoff(self, attempt: int) -> float:
        """Seconds to wait before retry number ``attempt``."""
        return self._wait * attempt

    def record_failure(self) -> int:
        """Count a failed attempt and return the new retry count."""
        with self._lock:
            self._retries += 1
            retries = self._retries

        logger.info(
            f"Reconnection attempt {retries}/{self._max_retries} "
            f"in {self.backoff(retries):.1f}s"
        )
        return retries

    def record_connected(self, response: Any) -> bool:
        """
        Store a freshly opened response and reset the retry counter.

        Returns False, and releases ``response``, if the state was closed
        for good while the request was in flight.
        """
        with self._lock:
            if self._terminal:
                stale = response
            else:
                stale = self._response
                if self._retries > 0:
                    logger.info(
                        f"Connection established after {self._retries} failed attempts, "
                        "resetting reconnection state"
                    )
                self._closed = False
                self._retries = 0
                self._response = response
            accepted = not self._terminal

        if stale is not None and (stale is not response or not accepted):
            _release(stale)

        return accepted

    def release_response(self, response: Any) -> None:
        """Release a dead response before reconnecting; flags stay as they are."""
        with self._lock:
            if self._response is response:
                self._response = None

        _release(response)

    def mark_closed(
        self,
        reason: CloseReason = CloseReason.CLOSED,
        release: Optional[Callable[[Any], Any]] = None,
    ) -> bool:
        """
        Close for good and release the response handle.

        Idempotent. Returns True only for the call that made the state
        terminal; that call's ``reason`` is the one kept.

        ``release`` replaces the direct ``response.close()`` call, for
        callers that must hand the release to another thread's loop.
        """
        with self._lock:
            first = not self._terminal
            if first:
                self._close_reason = reason
            response = self._response
            self._closed = True
            self._terminal = True
            self._response = None
            self._retries = 0

        if response is not None:
            logger.info("Stream connection was closed")
            (release or _release)(response)

        return first


def _release(response: Any) -> None:
    try:
        response.close()
    except Exception as e:
        logger.warning(f"Error closing stream response: {e}")
