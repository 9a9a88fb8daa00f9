"""
Compiled Protocol Buffer modules for the cast control channel.

Compile protos with:
    protoc --python_out=castctl/proto -I protos protos/cast_channel.proto
"""

from . import cast_channel_pb2 as cast_channel

__all__ = ["cast_channel"]
