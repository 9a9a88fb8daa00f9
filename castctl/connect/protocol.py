"""
Cast control-channel message encoding and decoding.

Handles the length-prefixed CastMessage frame carried over the TLS
control connection.
"""

import json
import logging
import struct
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from google.protobuf.message import DecodeError

from castctl.exceptions import MalformedEnvelope
from castctl.proto import cast_channel

logger = logging.getLogger(__name__)

PROTOCOL_VERSION = cast_channel.CastMessage.CASTV2_1_0

LENGTH_PREFIX_SIZE = 4
MAX_FRAME_SIZE = 64 * 1024  # Largest CastMessage a receiver sends or accepts

# Fixed endpoint identifiers
DEFAULT_SENDER_ID = "sender-0"
PLATFORM_RECEIVER_ID = "receiver-0"


class Namespace(str, Enum):
    """Sub-protocols multiplexed over one control connection."""

    CONNECTION = "urn:x-cast:com.google.cast.tp.connection"
    HEARTBEAT = "urn:x-cast:com.google.cast.tp.heartbeat"
    RECEIVER = "urn:x-cast:com.google.cast.receiver"
    MEDIA = "urn:x-cast:com.google.cast.media"


@dataclass
class CastEnvelope:
    """One framed control-channel message."""

    source_id: str
    destination_id: str
    namespace: str
    payload: str = ""
    protocol_version: int = PROTOCOL_VERSION

    def message(self) -> Optional[dict[str, Any]]:
        """
        Parse the JSON payload.

        Returns:
            Payload object, or None if empty or not a JSON object
        """
        if not self.payload:
            return None
        try:
            data = json.loads(self.payload)
        except (ValueError, RecursionError):
            logger.debug(f"Dropping non-JSON payload on {self.namespace}")
            return None
        return data if isinstance(data, dict) else None


# -------------------------------------------------------------------------
# Envelope codec
# -------------------------------------------------------------------------


def _pack_frame(body: bytes) -> bytes:
    return struct.pack(">I", len(body)) + body


def encode_envelope(envelope: CastEnvelope) -> bytes:
    """
    Encode an envelope into a wire frame.

    Format: [length: uint32 big-endian][CastMessage]
    """
    msg = cast_channel.CastMessage()
    msg.protocol_version = envelope.protocol_version
    msg.source_id = envelope.source_id
    msg.destination_id = envelope.destination_id
    msg.namespace = envelope.namespace
    msg.payload_type = cast_channel.CastMessage.STRING
    msg.payload_utf8 = envelope.payload

    return _pack_frame(msg.SerializeToString())


def decode_envelope(body: bytes) -> CastEnvelope:
    """
    Decode a CastMessage (without the length prefix).

    Unknown fields are skipped.

    Raises:
        MalformedEnvelope: If the message cannot be parsed
    """
    msg = cast_channel.CastMessage()
    try:
        msg.ParseFromString(body)
        return CastEnvelope(
            source_id=msg.source_id,
            destination_id=msg.destination_id,
            namespace=msg.namespace,
            payload=msg.payload_utf8,
            protocol_version=msg.protocol_version,
        )
    except (DecodeError, UnicodeDecodeError) as e:
        raise MalformedEnvelope(f"Failed to decode CastMessage: {e}") from e


def decode_frame(frame: bytes) -> CastEnvelope:
    """
    Decode a complete length-prefixed frame.

    Raises:
        MalformedEnvelope: If the prefix does not match the frame size
    """
    if len(frame) < LENGTH_PREFIX_SIZE:
        raise MalformedEnvelope(f"Frame too short: {len(frame)} bytes")
    (length,) = struct.unpack_from(">I", frame)
    body = frame[LENGTH_PREFIX_SIZE:]
    if length != len(body):
        raise MalformedEnvelope(f"Length prefix {length} does not match body of {len(body)}")
    return decode_envelope(body)


class FrameBuffer:
    """
    Re-entrant stream framer.

    Accumulates inbound bytes and yields complete frame bodies in the
    order their length prefixes complete. One read may carry a partial
    frame or several frames.
    """

    def __init__(self) -> None:
        self._buffer = bytearray()

    def __len__(self) -> int:
        return len(self._buffer)

    def feed(self, data: bytes) -> list[bytes]:
        """
        Append data and extract every complete frame body.

        Returns:
            Frame bodies (length prefix stripped), possibly empty

        Raises:
            MalformedEnvelope: If a frame declares more than MAX_FRAME_SIZE
                bytes. The stream cannot be resynchronized after this.
        """
        self._buffer.extend(data)
        bodies: list[bytes] = []

        while len(self._buffer) >= LENGTH_PREFIX_SIZE:
            (length,) = struct.unpack_from(">I", self._buffer)
            if length > MAX_FRAME_SIZE:
                raise MalformedEnvelope(f"Frame declares {length} bytes, limit is {MAX_FRAME_SIZE}")
            end = LENGTH_PREFIX_SIZE + length
            if len(self._buffer) < end:
                break
            bodies.append(bytes(self._buffer[LENGTH_PREFIX_SIZE:end]))
            del self._buffer[:end]

        return bodies

    def clear(self) -> None:
        self._buffer.clear()


class CastCodec:
    """
    Encodes JSON control messages from one sender.

    Frame format: [length: 4 bytes big-endian][CastMessage]
    """

    def __init__(self, source_id: str = DEFAULT_SENDER_ID):
        """
        Initialize codec.

        Args:
            source_id: Sender identifier stamped on every outbound envelope
        """
        self.source_id = source_id

    def encode(self, namespace: str, destination_id: str, message: dict[str, Any]) -> bytes:
        """
        Encode a JSON message.

        Args:
            namespace: Namespace URN
            destination_id: Platform receiver id or transport id
            message: JSON-serializable payload

        Returns:
            Encoded frame bytes
        """
        envelope = CastEnvelope(
            source_id=self.source_id,
            destination_id=destination_id,
            namespace=str(namespace.value if isinstance(namespace, Namespace) else namespace),
            payload=json.dumps(message, separators=(",", ":")),
        )
        return encode_envelope(envelope)

    def decode(self, body: bytes) -> CastEnvelope:
        """Decode one frame body produced by FrameBuffer."""
        return decode_envelope(body)
