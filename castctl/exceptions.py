"""
castctl exception hierarchy.

Codec errors (MalformedEnvelope, TruncatedMessage) are non-fatal by
contract: stream and socket owners log them and drop the offending unit.
Everything else is surfaced to the caller.
"""


class CastError(Exception):
    """Base class for all castctl errors."""

    pass


class MalformedEnvelope(CastError):
    """A control-channel frame could not be decoded."""

    pass


class TruncatedMessage(CastError):
    """A DNS packet declares more data than it carries."""

    pass


class ConnectError(CastError):
    """TLS or socket failure before the control session was established."""

    pass


class LaunchError(CastError):
    """The receiver reported a launch without a usable transport."""

    pass


class CastTimeout(CastError):
    """No qualifying reply arrived within the fixed window."""

    pass


class LaunchTimeout(CastTimeout):
    """No RECEIVER_STATUS arrived after LAUNCH."""

    pass


class LoadTimeout(CastTimeout):
    """No MEDIA_STATUS arrived after LOAD."""

    pass


class UnknownSession(CastError):
    """Command issued against a session id that is not tracked."""

    pass


class UnknownDevice(CastError):
    """Device id or name is not in the device table."""

    pass
