"""
Shared types for the Cast control session.
"""

import itertools
import threading
from dataclasses import dataclass
from enum import Enum
from typing import Optional


class StreamType(str, Enum):
    """Media stream types accepted by LOAD."""

    BUFFERED = "BUFFERED"
    LIVE = "LIVE"
    OTHER = "OTHER"


class ClientState(Enum):
    """Protocol client lifecycle."""

    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"  # No application launched
    APP_LAUNCHING = "app_launching"
    APP_READY = "app_ready"  # Application running, no media
    MEDIA_LOADING = "media_loading"
    MEDIA_READY = "media_ready"


class RequestIdCounter:
    """
    Monotonic request id source.

    One instance is shared by every client that must draw from the same
    sequence. Ids start at 1 and are never reused.
    """

    def __init__(self, start: int = 1):
        self._counter = itertools.count(start)
        self._lock = threading.Lock()

    def next(self) -> int:
        """Allocate the next request id."""
        with self._lock:
            return next(self._counter)


# Process-wide sequence used when a client is created without one
PROCESS_REQUEST_IDS = RequestIdCounter()


@dataclass
class Session:
    """Control session state for one connected receiver."""

    transport_id: Optional[str] = None  # Set by RECEIVER_STATUS after launch
    session_id: Optional[str] = None  # Receiver application session
    media_session_id: Optional[int] = None  # Set by first MEDIA_STATUS
    connected: bool = False

    @property
    def has_app(self) -> bool:
        """Check if an application transport is known."""
        return bool(self.session_id and self.transport_id)

    def reset(self) -> None:
        """Forget everything learned from the receiver."""
        self.transport_id = None
        self.session_id = None
        self.media_session_id = None
        self.connected = False
