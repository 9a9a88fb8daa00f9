"""
castctl Controller.

Core-facing boundary: wires discovery to protocol clients and tracks the
open sessions by id.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Optional, Union

from castctl.config import Config
from castctl.connect import CastClient, RequestIdCounter, StreamType
from castctl.discovery import DeviceDescriptor, DiscoveryBrowser
from castctl.events import (
    CONNECTION_CLOSED,
    DEVICE_FOUND,
    DEVICE_LOST,
    ERROR,
    MEDIA_STATUS,
    EventBus,
)
from castctl.exceptions import UnknownDevice, UnknownSession

logger = logging.getLogger(__name__)


@dataclass
class CastSession:
    """An open control session with one device."""

    id: str
    device_id: str
    client: CastClient
    _unsubscribers: list[Callable[[], None]] = field(default_factory=list, repr=False)

    @property
    def session_id(self) -> Optional[str]:
        return self.client.session.session_id

    @property
    def transport_id(self) -> Optional[str]:
        return self.client.session.transport_id

    @property
    def media_session_id(self) -> Optional[int]:
        return self.client.session.media_session_id


SessionRef = Union[CastSession, str]


class CastController:
    """
    Main castctl API.

    Emits on self.events:
    - device-found(DeviceDescriptor)
    - device-lost(device_id)
    - media-status(session_id, message)
    - connection-closed(session_id)
    - error(detail)

    Usage:
        controller = CastController(config)
        await controller.start_discovery()
        device = await controller.wait_for_device("Living Room", timeout=5.0)
        session = await controller.connect(device.id)
        await controller.load_media(session, url, "audio/mpeg")
        await controller.close()
    """

    def __init__(self, config: Optional[Config] = None, events: Optional[EventBus] = None):
        """
        Initialize controller.

        Args:
            config: Configuration (defaults if omitted)
            events: Bus for outbound notifications
        """
        self._config = config or Config()
        self.events = events or EventBus()

        self._browser: Optional[DiscoveryBrowser] = None
        self._devices: dict[str, DeviceDescriptor] = {}
        self._sessions: dict[str, CastSession] = {}

        # One sequence for every client this controller opens
        self._request_ids = RequestIdCounter()

        self.events.subscribe(DEVICE_FOUND, self._on_device_found)
        self.events.subscribe(DEVICE_LOST, self._on_device_lost)

    # -------------------------------------------------------------------------
    # Discovery
    # -------------------------------------------------------------------------

    @property
    def is_discovering(self) -> bool:
        return self._browser is not None and self._browser.is_running

    async def start_discovery(self) -> None:
        """Start the mDNS browser. No-op if already running."""
        if self._browser:
            return

        browser = DiscoveryBrowser(self.events, expiry=self._config.discovery.expiry)
        await browser.start()
        self._browser = browser

    async def stop_discovery(self) -> None:
        """Stop the mDNS browser. Known devices are kept."""
        if not self._browser:
            return

        browser = self._browser
        self._browser = None
        await browser.stop()

    def list_devices(self) -> list[DeviceDescriptor]:
        return list(self._devices.values())

    def find_device(self, query: str) -> Optional[DeviceDescriptor]:
        """Find a device by id, then by friendly name (case-insensitive)."""
        if query in self._devices:
            return self._devices[query]

        lowered = query.lower()
        for device in self._devices.values():
            if device.name.lower() == lowered or device.id.lower() == lowered:
                return device
        return None

    async def wait_for_device(self, query: str, timeout: float) -> DeviceDescriptor:
        """
        Wait until a device matching query is discovered.

        Raises:
            UnknownDevice: If no match appears within timeout
        """
        device = self.find_device(query)
        if device:
            return device

        found = asyncio.Event()
        unsubscribe = self.events.subscribe(
            DEVICE_FOUND, lambda _: found.set() if self.find_device(query) else None
        )
        try:
            await self.start_discovery()
            await asyncio.wait_for(found.wait(), timeout=timeout)
        except asyncio.TimeoutError:
            raise UnknownDevice(f"Device not found within {timeout}s: {query}") from None
        finally:
            unsubscribe()

        device = self.find_device(query)
        assert device is not None
        return device

    def _on_device_found(self, device: DeviceDescriptor) -> None:
        self._devices[device.id] = device

    def _on_device_lost(self, device_id: str) -> None:
        self._devices.pop(device_id, None)

    # -------------------------------------------------------------------------
    # Sessions
    # -------------------------------------------------------------------------

    async def connect(self, device_id: str) -> CastSession:
        """
        Connect to a device and launch the default media receiver.

        Raises:
            UnknownDevice: If device_id is not in the device table
            ConnectError: If the connection fails
            LaunchTimeout: If the receiver does not answer LAUNCH
        """
        device = self._devices.get(device_id)
        if not device:
            raise UnknownDevice(f"Device not found: {device_id}")

        client = CastClient(
            device.address,
            device.port,
            request_ids=self._request_ids,
            verify_tls=self._config.connection.verify_tls,
            sender_id=self._config.connection.sender_id,
        )
        await client.connect()
        try:
            await client.launch_default_media_receiver()
        except Exception:
            await client.close()
            raise

        millis = int(time.time() * 1000)
        while f"{device_id}:{millis}" in self._sessions:
            millis += 1

        session = CastSession(id=f"{device_id}:{millis}", device_id=device_id, client=client)
        session._unsubscribers = [
            client.events.subscribe(
                MEDIA_STATUS, lambda msg, s=session: self._on_media_status(s, msg)
            ),
            client.events.subscribe(
                CONNECTION_CLOSED, lambda s=session: self._on_connection_closed(s)
            ),
            client.events.subscribe(ERROR, lambda e: self.events.emit(ERROR, e)),
        ]
        self._sessions[session.id] = session

        logger.info(f"Session {session.id} opened with {device.name}")
        return session

    def get_session(self, session: SessionRef) -> CastSession:
        """
        Resolve a session object or id.

        Raises:
            UnknownSession: If the session is not tracked
        """
        session_id = session if isinstance(session, str) else session.id
        found = self._sessions.get(session_id)
        if not found:
            raise UnknownSession(f"Unknown session: {session_id}")
        return found

    def sessions(self) -> list[CastSession]:
        return list(self._sessions.values())

    async def load_media(
        self,
        session: SessionRef,
        content_id: str,
        content_type: str,
        stream_type: StreamType = StreamType.BUFFERED,
        autoplay: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """Load media in a session. See CastClient.load_media."""
        s = self.get_session(session)
        return await s.client.load_media(
            content_id,
            content_type,
            stream_type=stream_type,
            autoplay=autoplay,
            metadata=metadata,
        )

    def play(self, session: SessionRef) -> bool:
        return self.get_session(session).client.play()

    def pause(self, session: SessionRef) -> bool:
        return self.get_session(session).client.pause()

    def stop(self, session: SessionRef) -> bool:
        return self.get_session(session).client.stop()

    def seek(self, session: SessionRef, seconds: float) -> bool:
        return self.get_session(session).client.seek(seconds)

    async def get_media_status(self, session: SessionRef) -> dict[str, Any]:
        return await self.get_session(session).client.get_media_status()

    async def disconnect(self, session: SessionRef) -> None:
        """Close a session and stop tracking it."""
        s = self.get_session(session)
        self._forget(s)
        try:
            await s.client.close()
        except Exception as e:
            logger.warning(f"Error closing session {s.id}: {e}")
        self.events.emit(CONNECTION_CLOSED, s.id)

    async def close(self) -> None:
        """Disconnect every session and stop discovery."""
        for session in list(self._sessions.values()):
            await self.disconnect(session)
        await self.stop_discovery()

    def _forget(self, session: CastSession) -> None:
        for unsubscribe in session._unsubscribers:
            unsubscribe()
        session._unsubscribers = []
        self._sessions.pop(session.id, None)

    def _on_media_status(self, session: CastSession, message: dict[str, Any]) -> None:
        self.events.emit(MEDIA_STATUS, session.id, message)

    def _on_connection_closed(self, session: CastSession) -> None:
        if session.id not in self._sessions:
            return
        logger.info(f"Session {session.id} closed by receiver")
        self._forget(session)
        self.events.emit(CONNECTION_CLOSED, session.id)
