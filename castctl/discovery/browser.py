"""
mDNS browser for cast receivers.

Periodically queries the local segment for the cast service type and keeps
a table of receivers keyed by device id.
"""

import asyncio
import logging
import socket
from typing import Optional

from castctl.events import DEVICE_FOUND, DEVICE_LOST, ERROR, EventBus
from castctl.exceptions import TruncatedMessage

from .dns import CAST_SERVICE, assemble_devices, build_query, parse_response
from .types import DeviceDescriptor

logger = logging.getLogger(__name__)

# mDNS constants
MDNS_ADDR = "224.0.0.251"
MDNS_PORT = 5353
MULTICAST_TTL = 255
QUERY_INTERVAL = 5.0  # seconds


class _BrowserProtocol(asyncio.DatagramProtocol):
    """Forwards datagrams and socket errors to the browser."""

    def __init__(self, browser: "DiscoveryBrowser"):
        self._browser = browser

    def datagram_received(self, data: bytes, addr: tuple) -> None:
        self._browser._on_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        self._browser._on_socket_error(exc)


class DiscoveryBrowser:
    """
    Live table of cast receivers on the local network.

    Re-discovery of a known id replaces the stored descriptor. Devices are
    never removed unless an expiry is configured.

    Usage:
        browser = DiscoveryBrowser(events)
        events.subscribe(DEVICE_FOUND, lambda d: print(d))
        await browser.start()
        ...
        await browser.stop()
    """

    def __init__(
        self,
        events: Optional[EventBus] = None,
        expiry: float = 0.0,
        service_name: str = CAST_SERVICE,
    ):
        """
        Initialize browser.

        Args:
            events: Bus receiving device-found / device-lost / error
            expiry: Seconds after which an unseen device is removed (0 = never)
            service_name: DNS-SD service type to browse
        """
        self.events = events or EventBus()
        self.expiry = expiry
        self.service_name = service_name

        self._devices: dict[str, DeviceDescriptor] = {}
        self._last_seen: dict[str, float] = {}

        self._transport: Optional[asyncio.DatagramTransport] = None
        self._query_handle: Optional[asyncio.TimerHandle] = None
        self._query = build_query(service_name)

    @property
    def is_running(self) -> bool:
        return self._transport is not None

    def devices(self) -> list[DeviceDescriptor]:
        """Snapshot of the device table."""
        return list(self._devices.values())

    def get(self, device_id: str) -> Optional[DeviceDescriptor]:
        return self._devices.get(device_id)

    async def start(self) -> None:
        """Open the multicast socket and start querying. No-op if running."""
        if self.is_running:
            return

        sock = self._create_socket()
        loop = asyncio.get_running_loop()
        try:
            transport, _ = await loop.create_datagram_endpoint(
                lambda: _BrowserProtocol(self), sock=sock
            )
        except OSError:
            sock.close()
            raise

        self._transport = transport
        logger.info(f"Discovery started for {self.service_name}")
        self._send_query()

    async def stop(self) -> None:
        """Stop querying and close the socket. Safe when not running."""
        if self._query_handle:
            self._query_handle.cancel()
            self._query_handle = None

        if self._transport is None:
            return

        self._transport.close()
        self._transport = None
        logger.info("Discovery stopped")

    def _create_socket(self) -> socket.socket:
        """Create an ephemeral-port UDP socket joined to the mDNS group."""
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        sock.setblocking(False)
        sock.bind(("", 0))

        try:
            mreq = socket.inet_aton(MDNS_ADDR) + socket.inet_aton("0.0.0.0")
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_ADD_MEMBERSHIP, mreq)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_TTL, MULTICAST_TTL)
            sock.setsockopt(socket.IPPROTO_IP, socket.IP_MULTICAST_LOOP, 1)
        except OSError as e:
            # Unicast replies to our queries still arrive without the group
            logger.warning(f"Failed to configure multicast options: {e}")

        return sock

    def _send_query(self) -> None:
        """Send one query and schedule the next."""
        if self._transport is None:
            return

        try:
            self._transport.sendto(self._query, (MDNS_ADDR, MDNS_PORT))
            logger.debug(f"Sent mDNS query for {self.service_name}")
        except OSError as e:
            self._on_socket_error(e)

        if self.expiry > 0:
            self._expire_devices()

        loop = asyncio.get_running_loop()
        self._query_handle = loop.call_later(QUERY_INTERVAL, self._send_query)

    def _on_datagram(self, data: bytes, addr: tuple) -> None:
        """Parse one inbound packet and upsert any devices it describes."""
        try:
            records = parse_response(data)
        except TruncatedMessage as e:
            logger.debug(f"Dropping malformed mDNS packet from {addr[0]}: {e}")
            return
        except Exception as e:
            logger.warning(f"Dropping unparseable mDNS packet from {addr[0]}: {e}", exc_info=True)
            return

        for device in assemble_devices(records, self.service_name):
            self._upsert(device)

    def _upsert(self, device: DeviceDescriptor) -> None:
        if device.id not in self._devices:
            logger.info(f"Found device: {device}")
        else:
            logger.debug(f"Refreshed device: {device}")

        self._devices[device.id] = device
        self._last_seen[device.id] = asyncio.get_running_loop().time()
        self.events.emit(DEVICE_FOUND, device)

    def _expire_devices(self) -> None:
        """Remove devices not seen within the expiry window."""
        now = asyncio.get_running_loop().time()
        for device_id, seen in list(self._last_seen.items()):
            if now - seen < self.expiry:
                continue
            del self._last_seen[device_id]
            device = self._devices.pop(device_id, None)
            if device:
                logger.info(f"Lost device: {device}")
                self.events.emit(DEVICE_LOST, device_id)

    def _on_socket_error(self, exc: Exception) -> None:
        logger.warning(f"mDNS socket error: {exc}")
        self.events.emit(ERROR, exc)
