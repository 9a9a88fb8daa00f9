"""
Cast control-channel module.

Handles envelope framing and the TLS control session with one receiver.
"""

from .client import CastClient
from .correlator import NextEventCorrelator, RequestIdCorrelator
from .protocol import (
    CastCodec,
    CastEnvelope,
    FrameBuffer,
    Namespace,
    decode_envelope,
    decode_frame,
    encode_envelope,
)
from .types import ClientState, RequestIdCounter, Session, StreamType

__all__ = [
    "CastClient",
    "CastCodec",
    "CastEnvelope",
    "ClientState",
    "FrameBuffer",
    "Namespace",
    "NextEventCorrelator",
    "RequestIdCorrelator",
    "RequestIdCounter",
    "Session",
    "StreamType",
    "decode_envelope",
    "decode_frame",
    "encode_envelope",
]
