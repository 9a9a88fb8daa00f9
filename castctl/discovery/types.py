"""
Discovered receiver types.
"""

from dataclasses import dataclass, field
from typing import Any

DEFAULT_CONTROL_PORT = 8009


@dataclass
class DeviceDescriptor:
    """A cast receiver assembled from one mDNS response."""

    id: str  # TXT "id", or the instance name
    name: str  # TXT "fn", or the instance label
    host: str  # SRV target without trailing dot
    port: int = DEFAULT_CONTROL_PORT
    addresses: list[str] = field(default_factory=list)  # A then AAAA, in packet order
    attributes: dict[str, str] = field(default_factory=dict)  # Raw TXT key/values

    @property
    def address(self) -> str:
        """Preferred address to connect to."""
        return self.addresses[0] if self.addresses else self.host

    @property
    def model(self) -> str:
        return self.attributes.get("md", "")

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "host": self.host,
            "port": self.port,
            "addresses": list(self.addresses),
            "attributes": dict(self.attributes),
        }

    def __str__(self) -> str:
        return f"{self.name} @ {self.address}:{self.port}"
