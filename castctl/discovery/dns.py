"""
Multicast DNS message encoding and decoding.

Builds DNS-SD PTR queries and parses responses restricted to the record
types cast receivers advertise (PTR, SRV, TXT, A, AAAA).
"""

import logging
import struct
from dataclasses import dataclass
from typing import Any, NamedTuple, Optional, Tuple

from castctl.exceptions import TruncatedMessage

from .types import DEFAULT_CONTROL_PORT, DeviceDescriptor

logger = logging.getLogger(__name__)

CAST_SERVICE = "_googlecast._tcp.local"

# Record types
TYPE_A = 1
TYPE_PTR = 12
TYPE_TXT = 16
TYPE_AAAA = 28
TYPE_SRV = 33

CLASS_IN = 1
CLASS_MASK = 0x7FFF  # Strip the mDNS cache-flush / unicast-response bit

HEADER = struct.Struct(">HHHHHH")  # id, flags, qdcount, ancount, nscount, arcount
RR_FIXED = struct.Struct(">HHIH")  # type, class, ttl, rdlength

POINTER_MASK = 0xC0
MAX_LABEL_LENGTH = 63


class SrvData(NamedTuple):
    """SRV record data."""

    priority: int
    weight: int
    port: int
    target: str


@dataclass
class ResourceRecord:
    """
    One parsed resource record.

    data by type: PTR -> str, SRV -> SrvData, TXT -> dict[str, str],
    A / AAAA -> address literal, anything else -> raw bytes.
    """

    name: str
    rtype: int
    rclass: int
    ttl: int
    data: Any


def name_key(name: str) -> str:
    """Normalize a DNS name for comparison."""
    return name.rstrip(".").lower()


# -------------------------------------------------------------------------
# Encoding
# -------------------------------------------------------------------------


def encode_name(name: str) -> bytes:
    """Encode a dotted name as uncompressed labels."""
    out = bytearray()
    for label in name.split("."):
        if not label:
            continue
        raw = label.encode("utf-8")
        if len(raw) > MAX_LABEL_LENGTH:
            raise ValueError(f"DNS label too long: {label}")
        out.append(len(raw))
        out.extend(raw)
    out.append(0)
    return bytes(out)


def build_query(service_name: str = CAST_SERVICE) -> bytes:
    """
    Build a PTR query for a service type.

    Transaction id is always zero; responses are matched by content.
    """
    header = HEADER.pack(0, 0, 1, 0, 0, 0)
    return header + encode_name(service_name) + struct.pack(">HH", TYPE_PTR, CLASS_IN)


# -------------------------------------------------------------------------
# Decoding
# -------------------------------------------------------------------------


def read_name(data: bytes, offset: int) -> Tuple[str, int]:
    """
    Read a possibly compressed name.

    Each compression pointer target is followed at most once per name, so
    pointer loops fail instead of spinning.

    Returns:
        (name without trailing dot, offset after the name at its original position)

    Raises:
        TruncatedMessage: If the name runs past the buffer or loops
    """
    labels: list[str] = []
    pos = offset
    end_offset: Optional[int] = None
    visited: set[int] = set()

    while True:
        if pos >= len(data):
            raise TruncatedMessage(f"Name at offset {offset} runs past end of packet")

        length = data[pos]
        if length == 0:
            pos += 1
            break

        if length & POINTER_MASK == POINTER_MASK:
            if pos + 1 >= len(data):
                raise TruncatedMessage(f"Truncated compression pointer at offset {pos}")
            pointer = ((length & 0x3F) << 8) | data[pos + 1]
            if end_offset is None:
                end_offset = pos + 2
            if pointer in visited:
                raise TruncatedMessage(f"Compression loop in name at offset {offset}")
            visited.add(pointer)
            pos = pointer
            continue

        if length & POINTER_MASK:
            raise TruncatedMessage(f"Unsupported label type 0x{length:02x} at offset {pos}")

        start = pos + 1
        end = start + length
        if end > len(data):
            raise TruncatedMessage(f"Label at offset {pos} runs past end of packet")
        labels.append(data[start:end].decode("utf-8", errors="replace"))
        pos = end

    return ".".join(labels), end_offset if end_offset is not None else pos


def _parse_txt(rdata: bytes) -> dict[str, str]:
    """Parse TXT strings into key/value attributes."""
    attributes: dict[str, str] = {}
    i = 0
    while i < len(rdata):
        length = rdata[i]
        i += 1
        if i + length > len(rdata):
            raise TruncatedMessage("TXT string runs past record data")
        entry = rdata[i : i + length].decode("utf-8", errors="replace")
        i += length
        if not entry:
            continue
        key, sep, value = entry.partition("=")
        attributes[key] = value if sep else ""
    return attributes


def _read_record(data: bytes, offset: int) -> Tuple[ResourceRecord, int]:
    name, offset = read_name(data, offset)
    if offset + RR_FIXED.size > len(data):
        raise TruncatedMessage(f"Record header for {name} runs past end of packet")

    rtype, rclass, ttl, rdlength = RR_FIXED.unpack_from(data, offset)
    offset += RR_FIXED.size
    end = offset + rdlength
    if end > len(data):
        raise TruncatedMessage(f"Record data for {name} declares {rdlength} bytes")

    rdata = data[offset:end]
    value: Any

    if rtype == TYPE_PTR:
        value, _ = read_name(data, offset)
    elif rtype == TYPE_SRV:
        if rdlength < 7:
            raise TruncatedMessage(f"SRV record for {name} too short")
        priority, weight, port = struct.unpack_from(">HHH", data, offset)
        target, _ = read_name(data, offset + 6)
        value = SrvData(priority, weight, port, target)
    elif rtype == TYPE_TXT:
        value = _parse_txt(rdata)
    elif rtype == TYPE_A and rdlength == 4:
        value = ".".join(str(b) for b in rdata)
    elif rtype == TYPE_AAAA and rdlength == 16:
        value = ":".join(f"{group:x}" for group in struct.unpack(">8H", rdata))
    else:
        value = bytes(rdata)

    return ResourceRecord(name, rtype, rclass & CLASS_MASK, ttl, value), end


def parse_response(data: bytes) -> list[ResourceRecord]:
    """
    Parse answer, authority and additional records of a DNS packet.

    Raises:
        TruncatedMessage: If any declared length runs past the buffer. Callers
            on a multicast socket should drop the packet and carry on.
    """
    if len(data) < HEADER.size:
        raise TruncatedMessage(f"Packet too short for DNS header: {len(data)} bytes")

    _, _, qdcount, ancount, nscount, arcount = HEADER.unpack_from(data)
    offset = HEADER.size

    for _ in range(qdcount):
        _, offset = read_name(data, offset)
        offset += 4  # qtype, qclass
        if offset > len(data):
            raise TruncatedMessage("Question section runs past end of packet")

    records: list[ResourceRecord] = []
    for _ in range(ancount + nscount + arcount):
        record, offset = _read_record(data, offset)
        records.append(record)

    return records


# -------------------------------------------------------------------------
# Device assembly
# -------------------------------------------------------------------------


def _instance_label(instance: str, service_name: str) -> str:
    suffix = "." + name_key(service_name)
    if name_key(instance).endswith(suffix):
        return instance.rstrip(".")[: -len(suffix)]
    return instance


def assemble_devices(
    records: list[ResourceRecord], service_name: str = CAST_SERVICE
) -> list[DeviceDescriptor]:
    """
    Correlate records from one response into devices.

    PTR target -> SRV owner -> TXT owner; A/AAAA owners match the SRV target.
    Instances without an SRV record are skipped.
    """
    service_key = name_key(service_name)
    srv_by_name: dict[str, ResourceRecord] = {}
    txt_by_name: dict[str, ResourceRecord] = {}
    addresses_by_host: dict[str, list[str]] = {}
    pointers: list[ResourceRecord] = []

    for record in records:
        key = name_key(record.name)
        if record.rtype == TYPE_PTR and key == service_key:
            pointers.append(record)
        elif record.rtype == TYPE_SRV:
            srv_by_name.setdefault(key, record)
        elif record.rtype == TYPE_TXT:
            txt_by_name.setdefault(key, record)

    # A before AAAA, each in packet order
    for rtype in (TYPE_A, TYPE_AAAA):
        for record in records:
            if record.rtype == rtype and isinstance(record.data, str):
                addresses_by_host.setdefault(name_key(record.name), []).append(record.data)

    devices: dict[str, DeviceDescriptor] = {}
    for ptr in pointers:
        instance = ptr.data if isinstance(ptr.data, str) else ""
        if not instance:
            continue

        srv = srv_by_name.get(name_key(instance))
        if srv is None:
            logger.debug(f"No SRV record for {instance}, waiting for a later response")
            continue

        txt = txt_by_name.get(name_key(instance))
        attributes = dict(txt.data) if txt is not None else {}

        host = srv.data.target.rstrip(".")
        addresses = list(dict.fromkeys(addresses_by_host.get(name_key(host), [])))

        device = DeviceDescriptor(
            id=attributes.get("id") or instance,
            name=attributes.get("fn") or _instance_label(instance, service_name),
            host=host,
            port=srv.data.port or DEFAULT_CONTROL_PORT,
            addresses=addresses,
            attributes=attributes,
        )
        devices[device.id] = device

    return list(devices.values())
