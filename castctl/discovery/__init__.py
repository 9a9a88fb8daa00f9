"""
Cast receiver discovery module.

Handles mDNS packet encoding/decoding and the multicast browser.
"""

from .browser import MDNS_ADDR, MDNS_PORT, DiscoveryBrowser
from .dns import (
    CAST_SERVICE,
    ResourceRecord,
    SrvData,
    assemble_devices,
    build_query,
    parse_response,
)
from .types import DeviceDescriptor

__all__ = [
    "CAST_SERVICE",
    "MDNS_ADDR",
    "MDNS_PORT",
    "DeviceDescriptor",
    "DiscoveryBrowser",
    "ResourceRecord",
    "SrvData",
    "assemble_devices",
    "build_query",
    "parse_response",
]
