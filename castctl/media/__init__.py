"""
Local media serving module.
"""

from .server import MediaServer, RegisteredFile, guess_content_type

__all__ = [
    "MediaServer",
    "RegisteredFile",
    "guess_content_type",
]
