"""
Cast control-channel client.

Owns one TLS connection to one receiver and drives the
connect -> heartbeat -> launch -> load -> transport-control sequence.
"""

import asyncio
import logging
import ssl
from typing import Any, Callable, Optional

from castctl.events import (
    CONNECTION_CLOSED,
    ERROR,
    MEDIA_STATUS,
    RECEIVER_STATUS,
    STATE_CHANGED,
    EventBus,
)
from castctl.exceptions import (
    ConnectError,
    LaunchError,
    LaunchTimeout,
    LoadTimeout,
    MalformedEnvelope,
)

from .correlator import NextEventCorrelator
from .protocol import (
    DEFAULT_SENDER_ID,
    PLATFORM_RECEIVER_ID,
    CastCodec,
    CastEnvelope,
    FrameBuffer,
    Namespace,
)
from .types import PROCESS_REQUEST_IDS, ClientState, RequestIdCounter, Session, StreamType

logger = logging.getLogger(__name__)

# Connection constants
CONTROL_PORT = 8009
CONNECT_TIMEOUT = 10.0  # seconds
HEARTBEAT_INTERVAL = 5.0  # seconds
LAUNCH_TIMEOUT = 8.0  # seconds
LOAD_TIMEOUT = 10.0  # seconds
READ_CHUNK_SIZE = 4096

DEFAULT_MEDIA_RECEIVER_APP_ID = "CC1AD845"

# Receiver replies to LOAD that do not qualify as a load result
MEDIA_ERROR_TYPES = {"LOAD_FAILED", "LOAD_CANCELLED", "INVALID_REQUEST", "INVALID_PLAYER_STATE"}

CorrelatorFactory = Callable[[], NextEventCorrelator]


class CastClient:
    """
    Manages one receiver's control session.

    Handles:
    - TLS connection and streaming frame decode
    - Virtual connection and heartbeat on the platform receiver
    - Launching the default media receiver
    - Loading media and fire-and-forget transport commands

    Emits on self.events:
    - state-changed(old_state, new_state)
    - receiver-status(status)
    - media-status(message)
    - connection-closed()
    - error(exception)

    Usage:
        client = CastClient("192.168.1.20")
        await client.connect()
        await client.load_media("http://host/song.mp3", "audio/mpeg")
        client.pause()
        await client.close()
    """

    def __init__(
        self,
        host: str,
        port: int = CONTROL_PORT,
        request_ids: Optional[RequestIdCounter] = None,
        verify_tls: bool = False,
        sender_id: str = DEFAULT_SENDER_ID,
        correlator_factory: CorrelatorFactory = NextEventCorrelator,
    ):
        """
        Initialize client.

        Args:
            host: Receiver address
            port: Control-channel port
            request_ids: Shared request id sequence (process-wide if omitted)
            verify_tls: Verify the receiver certificate. Receivers present
                self-signed certificates, so this is off by default.
            sender_id: Source id stamped on outbound messages
            correlator_factory: Builds the launch/load reply correlators
        """
        self.host = host
        self.port = port
        self.events = EventBus()
        self.session = Session()

        self._codec = CastCodec(sender_id)
        self._frames = FrameBuffer()
        self._request_ids = request_ids or PROCESS_REQUEST_IDS
        self._verify_tls = verify_tls

        self._state = ClientState.DISCONNECTED
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None

        # Tasks
        self._read_task: Optional[asyncio.Task[None]] = None
        self._heartbeat_task: Optional[asyncio.Task[None]] = None

        self._receiver_replies = correlator_factory()
        self._media_replies = correlator_factory()

    @property
    def state(self) -> ClientState:
        return self._state

    @property
    def is_connected(self) -> bool:
        """Check if the control connection is open."""
        return self.session.connected

    def _set_state(self, state: ClientState) -> None:
        if state == self._state:
            return
        old = self._state
        self._state = state
        logger.debug(f"{self.host}: {old.value} -> {state.value}")
        self.events.emit(STATE_CHANGED, old, state)

    # -------------------------------------------------------------------------
    # Connection
    # -------------------------------------------------------------------------

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        if not self._verify_tls:
            context.check_hostname = False
            context.verify_mode = ssl.CERT_NONE
        return context

    async def _open_stream(self) -> tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        return await asyncio.wait_for(
            asyncio.open_connection(self.host, self.port, ssl=self._ssl_context()),
            timeout=CONNECT_TIMEOUT,
        )

    async def connect(self) -> None:
        """
        Open the TLS connection and start the virtual connection.

        Raises:
            ConnectError: If the connection or TLS handshake fails
        """
        if self._state != ClientState.DISCONNECTED:
            logger.debug(f"Already connected to {self.host}:{self.port}")
            return

        self._set_state(ClientState.CONNECTING)
        logger.info(f"Connecting to {self.host}:{self.port}...")

        try:
            self._reader, self._writer = await self._open_stream()
        except (OSError, asyncio.TimeoutError) as e:
            self._set_state(ClientState.DISCONNECTED)
            raise ConnectError(f"Failed to connect to {self.host}:{self.port}: {e}") from e

        self._frames.clear()
        self.session.connected = True
        self._set_state(ClientState.CONNECTED)

        self._read_task = asyncio.create_task(self._read_loop())

        self._send(Namespace.CONNECTION, PLATFORM_RECEIVER_ID, {"type": "CONNECT"})
        self._send(Namespace.HEARTBEAT, PLATFORM_RECEIVER_ID, {"type": "PING"})
        self._heartbeat_task = asyncio.create_task(self._heartbeat_loop())

        logger.info(f"Connected to {self.host}:{self.port}")

    async def close(self) -> None:
        """Close the session. Safe to call more than once."""
        writer = self._writer
        if writer is None:
            return

        destinations = [PLATFORM_RECEIVER_ID]
        if self.session.transport_id:
            destinations.insert(0, self.session.transport_id)
        for destination in destinations:
            try:
                self._send(Namespace.CONNECTION, destination, {"type": "CLOSE"})
            except (ConnectError, OSError) as e:
                logger.debug(f"Failed to send CLOSE to {destination}: {e}")

        tasks = self._teardown()
        writer.close()
        try:
            await writer.wait_closed()
        except (OSError, ssl.SSLError) as e:
            logger.debug(f"Error closing stream: {e}")
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        logger.info(f"Disconnected from {self.host}:{self.port}")
        self.events.emit(CONNECTION_CLOSED)

    def _teardown(self) -> list[asyncio.Task[None]]:
        """Reset connection state and cancel background tasks."""
        self._reader = None
        self._writer = None
        self._frames.clear()
        self.session.reset()

        cancelled = []
        current = asyncio.current_task()
        for task in (self._heartbeat_task, self._read_task):
            if task and not task.done() and task is not current:
                task.cancel()
                cancelled.append(task)
        self._heartbeat_task = None
        self._read_task = None

        self._set_state(ClientState.DISCONNECTED)
        return cancelled

    def _on_transport_closed(self, error: Optional[BaseException]) -> None:
        """Handle the stream ending without close()."""
        writer = self._writer
        if writer is None:
            return

        if error:
            logger.warning(f"Connection to {self.host}:{self.port} failed: {error}")
            self.events.emit(ERROR, error)
        else:
            logger.info(f"Connection to {self.host}:{self.port} closed by receiver")

        self._teardown()
        writer.close()
        self.events.emit(CONNECTION_CLOSED)

    # -------------------------------------------------------------------------
    # Receive / send
    # -------------------------------------------------------------------------

    async def _read_loop(self) -> None:
        """Read the stream and dispatch complete frames in arrival order."""
        assert self._reader is not None
        reader = self._reader
        error: Optional[BaseException] = None

        try:
            while True:
                data = await reader.read(READ_CHUNK_SIZE)
                if not data:
                    break
                for body in self._frames.feed(data):
                    self._handle_frame(body)
        except OSError as e:
            error = e
        except Exception as e:
            # Includes oversized frames, after which the stream cannot be resynchronized
            logger.error(f"Read loop for {self.host}:{self.port} failed: {e}", exc_info=True)
            error = e

        self._on_transport_closed(error)

    async def _heartbeat_loop(self) -> None:
        while True:
            await asyncio.sleep(HEARTBEAT_INTERVAL)
            try:
                self._send(Namespace.HEARTBEAT, PLATFORM_RECEIVER_ID, {"type": "PING"})
            except ConnectError:
                return

    def _send(self, namespace: Namespace, destination_id: str, message: dict[str, Any]) -> None:
        """
        Encode and write one message.

        Raises:
            ConnectError: If not connected
        """
        if self._writer is None or not self.session.connected:
            raise ConnectError(f"Not connected to {self.host}:{self.port}")

        frame = self._codec.encode(namespace, destination_id, message)
        self._writer.write(frame)
        logger.debug(f"Sent {message.get('type')} to {destination_id} on {namespace.value}")

    def _handle_frame(self, body: bytes) -> None:
        """Decode one frame body and route it by namespace."""
        try:
            envelope = self._codec.decode(body)
        except MalformedEnvelope as e:
            logger.warning(f"Dropping malformed frame from {self.host}: {e}")
            self.events.emit(ERROR, e)
            return

        try:
            message = envelope.message()
            if message is None:
                return

            if envelope.namespace == Namespace.HEARTBEAT.value:
                self._handle_heartbeat(envelope, message)
            elif envelope.namespace == Namespace.RECEIVER.value:
                self._handle_receiver(message)
            elif envelope.namespace == Namespace.MEDIA.value:
                self._handle_media(message)
            else:
                logger.debug(f"Ignoring message on {envelope.namespace}")
        except Exception as e:
            logger.error(f"Error handling message on {envelope.namespace}: {e}", exc_info=True)
            self.events.emit(ERROR, e)

    def _handle_heartbeat(self, envelope: CastEnvelope, message: dict[str, Any]) -> None:
        if message.get("type") == "PING":
            # Answer whoever pinged; receivers ping from receiver-0 and from app transports
            destination = envelope.source_id or PLATFORM_RECEIVER_ID
            self._send(Namespace.HEARTBEAT, destination, {"type": "PONG"})

    def _handle_receiver(self, message: dict[str, Any]) -> None:
        """Capture the running application from RECEIVER_STATUS."""
        if message.get("type") != "RECEIVER_STATUS":
            return

        status = message.get("status")
        if not isinstance(status, dict):
            return

        applications = status.get("applications") or []
        if not applications:
            # No application running
            return

        app = applications[0]
        self.session.session_id = app.get("sessionId")
        self.session.transport_id = app.get("transportId") or app.get("sessionId")
        logger.debug(
            f"Receiver status: app={app.get('appId')} "
            f"session={self.session.session_id} transport={self.session.transport_id}"
        )

        self.events.emit(RECEIVER_STATUS, status)
        self._receiver_replies.resolve(message)

    def _handle_media(self, message: dict[str, Any]) -> None:
        msg_type = message.get("type")

        if msg_type == "MEDIA_STATUS":
            entries = message.get("status")
            if isinstance(entries, list) and entries and isinstance(entries[0], dict):
                media_session_id = entries[0].get("mediaSessionId")
                if media_session_id is not None:
                    self.session.media_session_id = media_session_id
            self._media_replies.resolve(message)
        elif msg_type in MEDIA_ERROR_TYPES:
            logger.warning(f"Receiver reported {msg_type}: {message.get('reason', '')}")

        self.events.emit(MEDIA_STATUS, message)

    # -------------------------------------------------------------------------
    # Application and media
    # -------------------------------------------------------------------------

    def _restore_state(self, expected: ClientState, previous: ClientState) -> None:
        # Transport may have closed while waiting
        if self._state == expected:
            self._set_state(previous)

    async def launch_default_media_receiver(self) -> dict[str, Any]:
        """
        Launch the default media receiver and connect to its transport.

        Returns:
            Receiver status that completed the launch

        Raises:
            LaunchTimeout: If no RECEIVER_STATUS arrives in time
            LaunchError: If the status carries no transport id
            ConnectError: If not connected
        """
        request_id = self._request_ids.next()
        previous = self._state
        waiter = self._receiver_replies.expect(request_id)
        self._set_state(ClientState.APP_LAUNCHING)

        try:
            self._send(
                Namespace.RECEIVER,
                PLATFORM_RECEIVER_ID,
                {
                    "type": "LAUNCH",
                    "requestId": request_id,
                    "appId": DEFAULT_MEDIA_RECEIVER_APP_ID,
                },
            )
            reply = await asyncio.wait_for(waiter, timeout=LAUNCH_TIMEOUT)
        except asyncio.TimeoutError:
            self._restore_state(ClientState.APP_LAUNCHING, previous)
            raise LaunchTimeout(f"No RECEIVER_STATUS within {LAUNCH_TIMEOUT}s") from None
        except ConnectError:
            self._restore_state(ClientState.APP_LAUNCHING, previous)
            raise
        finally:
            self._receiver_replies.discard(waiter)

        if not self.session.transport_id:
            self._restore_state(ClientState.APP_LAUNCHING, previous)
            raise LaunchError("No transport id after launch")

        self._send(Namespace.CONNECTION, self.session.transport_id, {"type": "CONNECT"})
        self._set_state(ClientState.APP_READY)
        logger.info(f"Default media receiver ready (session {self.session.session_id})")
        return reply.get("status", {})

    async def load_media(
        self,
        content_id: str,
        content_type: str,
        stream_type: StreamType = StreamType.BUFFERED,
        autoplay: bool = True,
        metadata: Optional[dict[str, Any]] = None,
    ) -> dict[str, Any]:
        """
        Load media on the receiver, launching the media receiver if needed.

        Args:
            content_id: Media URL
            content_type: MIME type
            stream_type: BUFFERED, LIVE or OTHER
            autoplay: Start playback once loaded
            metadata: Optional receiver metadata object

        Returns:
            MEDIA_STATUS message that completed the load

        Raises:
            LoadTimeout: If no MEDIA_STATUS arrives in time
        """
        if not self.session.has_app:
            await self.launch_default_media_receiver()

        media: dict[str, Any] = {
            "contentId": content_id,
            "contentType": content_type,
            "streamType": StreamType(stream_type).value,
        }
        if metadata is not None:
            media["metadata"] = metadata

        request_id = self._request_ids.next()
        previous = self._state
        waiter = self._media_replies.expect(request_id)
        self._set_state(ClientState.MEDIA_LOADING)

        try:
            self._send(
                Namespace.MEDIA,
                self.session.transport_id or PLATFORM_RECEIVER_ID,
                {
                    "type": "LOAD",
                    "requestId": request_id,
                    "sessionId": self.session.session_id,
                    "media": media,
                    "autoplay": autoplay,
                },
            )
            reply = await asyncio.wait_for(waiter, timeout=LOAD_TIMEOUT)
        except asyncio.TimeoutError:
            self._restore_state(ClientState.MEDIA_LOADING, previous)
            raise LoadTimeout(f"No MEDIA_STATUS within {LOAD_TIMEOUT}s") from None
        except ConnectError:
            self._restore_state(ClientState.MEDIA_LOADING, previous)
            raise
        finally:
            self._media_replies.discard(waiter)

        self._set_state(ClientState.MEDIA_READY)
        logger.info(f"Loaded {content_id} (media session {self.session.media_session_id})")
        return reply

    async def get_media_status(self) -> dict[str, Any]:
        """
        Ask the media receiver for its current status.

        Returns:
            MEDIA_STATUS message

        Raises:
            LaunchError: If no application is running
            LoadTimeout: If no MEDIA_STATUS arrives in time
        """
        if not self.session.has_app:
            raise LaunchError("No application running")

        request_id = self._request_ids.next()
        waiter = self._media_replies.expect(request_id)
        try:
            self._send(
                Namespace.MEDIA,
                self.session.transport_id or PLATFORM_RECEIVER_ID,
                {"type": "GET_STATUS", "requestId": request_id},
            )
            return await asyncio.wait_for(waiter, timeout=LOAD_TIMEOUT)
        except asyncio.TimeoutError:
            raise LoadTimeout(f"No MEDIA_STATUS within {LOAD_TIMEOUT}s") from None
        finally:
            self._media_replies.discard(waiter)

    def _media_command(
        self, command: str, media_session_id: Optional[int], **extra: Any
    ) -> bool:
        """
        Send a fire-and-forget media command.

        Returns:
            True if sent, False if there is no media session to control
        """
        if media_session_id is None:
            media_session_id = self.session.media_session_id
        if media_session_id is None:
            logger.debug(f"Skipping {command}: no media session")
            return False

        message: dict[str, Any] = {
            "type": command,
            "requestId": self._request_ids.next(),
            "mediaSessionId": media_session_id,
        }
        message.update(extra)
        self._send(Namespace.MEDIA, self.session.transport_id or PLATFORM_RECEIVER_ID, message)
        return True

    def play(self, media_session_id: Optional[int] = None) -> bool:
        return self._media_command("PLAY", media_session_id)

    def pause(self, media_session_id: Optional[int] = None) -> bool:
        return self._media_command("PAUSE", media_session_id)

    def stop(self, media_session_id: Optional[int] = None) -> bool:
        return self._media_command("STOP", media_session_id)

    def seek(self, seconds: float, media_session_id: Optional[int] = None) -> bool:
        """Seek to an absolute position in seconds."""
        return self._media_command("SEEK", media_session_id, currentTime=seconds)
