"""Tests for the mDNS discovery browser."""

import asyncio
import struct
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from castctl.discovery.browser import (
    MDNS_ADDR,
    MDNS_PORT,
    MULTICAST_TTL,
    QUERY_INTERVAL,
    DiscoveryBrowser,
    _BrowserProtocol,
)
from castctl.discovery.dns import CAST_SERVICE, HEADER, TYPE_A, TYPE_PTR, TYPE_SRV, TYPE_TXT, encode_name
from castctl.discovery.types import DeviceDescriptor
from castctl.events import DEVICE_FOUND, DEVICE_LOST, ERROR, EventBus

INSTANCE = "Living-Room-abc._googlecast._tcp.local"
ADDR = ("192.168.1.20", 5353)


def _rr(name: str, rtype: int, rdata: bytes) -> bytes:
    return encode_name(name) + struct.pack(">HHIH", rtype, 1, 120, len(rdata)) + rdata


def _response(device_id: str = "abc", address: bytes = bytes([192, 168, 1, 20])) -> bytes:
    """Build a cast response for one device."""
    txt = b"".join(bytes([len(e)]) + e for e in (f"id={device_id}".encode(), b"fn=Living Room"))
    records = [
        _rr(CAST_SERVICE, TYPE_PTR, encode_name(INSTANCE)),
        _rr(INSTANCE, TYPE_SRV, struct.pack(">HHH", 0, 0, 8009) + encode_name("abc.local")),
        _rr(INSTANCE, TYPE_TXT, txt),
        _rr("abc.local", TYPE_A, address),
    ]
    return HEADER.pack(0, 0x8400, 0, 1, 0, 3) + b"".join(records)


@pytest.fixture
def events() -> EventBus:
    """Create an event bus."""
    return EventBus()


@pytest.fixture
def browser(events: EventBus) -> DiscoveryBrowser:
    """Create a DiscoveryBrowser instance."""
    return DiscoveryBrowser(events)


class TestDeviceTable:
    """Tests for the device table."""

    @pytest.mark.asyncio
    async def test_response_adds_device(self, browser: DiscoveryBrowser, events: EventBus) -> None:
        """Test a response upserts and emits device-found."""
        found: list[DeviceDescriptor] = []
        events.subscribe(DEVICE_FOUND, found.append)

        browser._on_datagram(_response(), ADDR)

        assert [d.id for d in browser.devices()] == ["abc"]
        assert browser.get("abc").name == "Living Room"
        assert len(found) == 1

    @pytest.mark.asyncio
    async def test_rediscovery_replaces(self, browser: DiscoveryBrowser, events: EventBus) -> None:
        """Test the same id with new addresses keeps one entry with the latest data."""
        found: list[DeviceDescriptor] = []
        events.subscribe(DEVICE_FOUND, found.append)

        browser._on_datagram(_response(address=bytes([192, 168, 1, 20])), ADDR)
        browser._on_datagram(_response(address=bytes([192, 168, 1, 99])), ADDR)

        devices = browser.devices()
        assert len(devices) == 1
        assert devices[0].addresses == ["192.168.1.99"]
        assert len(found) == 2

    @pytest.mark.asyncio
    async def test_two_devices(self, browser: DiscoveryBrowser) -> None:
        """Test different ids produce separate entries."""
        browser._on_datagram(_response("abc"), ADDR)
        browser._on_datagram(_response("def"), ADDR)

        assert sorted(d.id for d in browser.devices()) == ["abc", "def"]

    @pytest.mark.asyncio
    async def test_malformed_packet_dropped(self, browser: DiscoveryBrowser, events: EventBus) -> None:
        """Test a truncated packet is ignored without side effects."""
        listener = MagicMock()
        events.subscribe(DEVICE_FOUND, listener)
        events.subscribe(ERROR, listener)

        browser._on_datagram(_response()[:40], ADDR)

        assert browser.devices() == []
        listener.assert_not_called()

    @pytest.mark.asyncio
    async def test_unrelated_packet_ignored(self, browser: DiscoveryBrowser) -> None:
        """Test a response with no cast records adds nothing."""
        browser._on_datagram(HEADER.pack(0, 0x8400, 0, 0, 0, 0), ADDR)
        assert browser.devices() == []

    def test_get_unknown(self, browser: DiscoveryBrowser) -> None:
        """Test lookup of an unknown id."""
        assert browser.get("missing") is None


class TestExpiry:
    """Tests for the optional expiry policy."""

    @pytest.mark.asyncio
    async def test_no_expiry_by_default(self, browser: DiscoveryBrowser) -> None:
        """Test devices are never removed when expiry is off."""
        browser._on_datagram(_response(), ADDR)
        browser._last_seen["abc"] -= 3600
        browser._transport = MagicMock()

        browser._send_query()
        await browser.stop()

        assert [d.id for d in browser.devices()] == ["abc"]

    @pytest.mark.asyncio
    async def test_stale_device_removed(self, events: EventBus) -> None:
        """Test a device unseen past the expiry window is dropped."""
        browser = DiscoveryBrowser(events, expiry=30.0)
        lost: list[str] = []
        events.subscribe(DEVICE_LOST, lost.append)

        browser._on_datagram(_response("abc"), ADDR)
        browser._on_datagram(_response("def"), ADDR)
        browser._last_seen["abc"] -= 60

        browser._expire_devices()

        assert [d.id for d in browser.devices()] == ["def"]
        assert lost == ["abc"]

    @pytest.mark.asyncio
    async def test_refresh_keeps_device(self, events: EventBus) -> None:
        """Test a refreshed device survives expiry."""
        browser = DiscoveryBrowser(events, expiry=30.0)
        browser._on_datagram(_response(), ADDR)
        browser._last_seen["abc"] -= 60
        browser._on_datagram(_response(), ADDR)

        browser._expire_devices()

        assert [d.id for d in browser.devices()] == ["abc"]


class TestLifecycle:
    """Tests for start()/stop()."""

    @pytest.mark.asyncio
    async def test_stop_when_not_running(self, browser: DiscoveryBrowser) -> None:
        """Test stop before start is a no-op."""
        await browser.stop()
        await browser.stop()
        assert browser.is_running is False

    @pytest.mark.asyncio
    async def test_start_sends_query(self, browser: DiscoveryBrowser) -> None:
        """Test start opens the endpoint and sends a PTR query."""
        transport = MagicMock()
        loop = asyncio.get_running_loop()

        with (
            patch.object(browser, "_create_socket", return_value=MagicMock()),
            patch.object(
                loop, "create_datagram_endpoint", AsyncMock(return_value=(transport, None))
            ) as endpoint,
        ):
            await browser.start()
            await browser.start()

            endpoint.assert_awaited_once()

        assert browser.is_running is True
        transport.sendto.assert_called_once_with(browser._query, (MDNS_ADDR, MDNS_PORT))

        await browser.stop()
        transport.close.assert_called_once()
        assert browser.is_running is False
        assert browser._query_handle is None

    @pytest.mark.asyncio
    async def test_next_query_scheduled_on_interval(self, browser: DiscoveryBrowser) -> None:
        """Test the repeat query is armed five seconds out."""
        transport = MagicMock()
        loop = asyncio.get_running_loop()

        with (
            patch.object(browser, "_create_socket", return_value=MagicMock()),
            patch.object(
                loop, "create_datagram_endpoint", AsyncMock(return_value=(transport, None))
            ),
        ):
            await browser.start()

        assert QUERY_INTERVAL == 5.0
        assert browser._query_handle is not None
        remaining = browser._query_handle.when() - loop.time()
        assert QUERY_INTERVAL - 0.5 < remaining <= QUERY_INTERVAL
        assert (MDNS_ADDR, MDNS_PORT, MULTICAST_TTL) == ("224.0.0.251", 5353, 255)

        await browser.stop()

    @pytest.mark.asyncio
    async def test_query_repeats(self, browser: DiscoveryBrowser) -> None:
        """Test queries are re-sent on the interval."""
        transport = MagicMock()
        loop = asyncio.get_running_loop()

        with (
            patch("castctl.discovery.browser.QUERY_INTERVAL", 0.01),
            patch.object(browser, "_create_socket", return_value=MagicMock()),
            patch.object(
                loop, "create_datagram_endpoint", AsyncMock(return_value=(transport, None))
            ),
        ):
            await browser.start()
            await asyncio.sleep(0.05)

        assert transport.sendto.call_count >= 3
        await browser.stop()

        calls = transport.sendto.call_count
        await asyncio.sleep(0.03)
        assert transport.sendto.call_count == calls

    @pytest.mark.asyncio
    async def test_endpoint_failure_closes_socket(self, browser: DiscoveryBrowser) -> None:
        """Test the socket is closed when the endpoint cannot be created."""
        sock = MagicMock()
        loop = asyncio.get_running_loop()

        with (
            patch.object(browser, "_create_socket", return_value=sock),
            patch.object(loop, "create_datagram_endpoint", AsyncMock(side_effect=OSError("busy"))),
        ):
            with pytest.raises(OSError):
                await browser.start()

        sock.close.assert_called_once()
        assert browser.is_running is False

    @pytest.mark.asyncio
    async def test_send_error_reported(self, browser: DiscoveryBrowser, events: EventBus) -> None:
        """Test a failing sendto is emitted as error and querying continues."""
        errors: list[Exception] = []
        events.subscribe(ERROR, errors.append)
        browser._transport = MagicMock()
        browser._transport.sendto.side_effect = OSError("network unreachable")

        browser._send_query()

        assert len(errors) == 1
        assert browser._query_handle is not None
        await browser.stop()


class TestBrowserProtocol:
    """Tests for the datagram protocol adapter."""

    def test_forwards_datagrams_and_errors(self) -> None:
        """Test callbacks reach the browser."""
        browser = MagicMock()
        protocol = _BrowserProtocol(browser)

        protocol.datagram_received(b"data", ADDR)
        error = OSError("boom")
        protocol.error_received(error)

        browser._on_datagram.assert_called_once_with(b"data", ADDR)
        browser._on_socket_error.assert_called_once_with(error)
