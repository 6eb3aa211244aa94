"""
Packet building and parsing for the status ("server list ping") exchange.

Every packet on the wire is ``VarInt(length) || VarInt(packet_id) || payload``
where ``length`` covers the packet id and the payload.
"""

import json
import struct
from typing import Optional, Tuple

from pydantic import ValidationError

from app.errors import (
    FramingError,
    IncompletePacketError,
    IncompleteVarIntError,
    PayloadParseError,
)
from app.models.status import StatusResponseBody
from app.protocol.varint import decode_varint, encode_varint

HANDSHAKE_PACKET_ID = 0x00
STATUS_REQUEST_PACKET_ID = 0x00
STATUS_RESPONSE_PACKET_ID = 0x00

DEFAULT_PROTOCOL_VERSION = 763  # 1.20.1
NEXT_STATE_STATUS = 1

# Upper bound for a status response; favicons are the bulk of it
MAX_PACKET_BYTES = 2 * 1024 * 1024


def build_handshake(
    host: str, port: int, protocol_version: int = DEFAULT_PROTOCOL_VERSION
) -> bytes:
    """Handshake payload declaring protocol version, host, port and next state."""
    host_bytes = host.encode("utf-8")
    return b"".join(
        [
            encode_varint(protocol_version),
            encode_varint(len(host_bytes)),
            host_bytes,
            struct.pack(">H", port),
            encode_varint(NEXT_STATE_STATUS),
        ]
    )


def build_status_request() -> bytes:
    return b""


def frame(packet_id: int, payload: bytes) -> bytes:
    body = encode_varint(packet_id) + payload
    return encode_varint(len(body)) + body


def envelope_size(buffer: bytes) -> Optional[int]:
    """
    Total size in bytes of the first packet in ``buffer``, prefix included.

    Returns None while the length prefix itself is still incomplete. Raises
    FramingError for a malformed prefix or a declared length over
    MAX_PACKET_BYTES.
    """
    try:
        length, offset = decode_varint(buffer)
    except IncompleteVarIntError:
        return None
    if length > MAX_PACKET_BYTES:
        raise FramingError(f"declared packet length {length} exceeds {MAX_PACKET_BYTES}")
    return offset + length


def parse_envelope(data: bytes) -> Tuple[int, bytes]:
    """Inverse of frame(): return ``(packet_id, payload)`` of the first packet."""
    length, offset = decode_varint(data)
    end = offset + length
    if end > len(data):
        raise IncompletePacketError(
            f"packet declares {length} bytes but only {len(data) - offset} are available"
        )
    packet_id, payload_start = decode_varint(data[:end], offset)
    return packet_id, bytes(data[payload_start:end])


def parse_status_response(data: bytes) -> StatusResponseBody:
    """
    Parse a complete status response packet into a StatusResponseBody.

    Framing problems (truncated VarInts, wrong packet id, a JSON length that
    does not fit the packet) raise FramingError. Undecodable or unusable JSON
    raises PayloadParseError.
    """
    packet_id, payload = parse_envelope(data)
    if packet_id != STATUS_RESPONSE_PACKET_ID:
        raise FramingError(f"unexpected packet id 0x{packet_id:02x} in status response")

    json_length, offset = decode_varint(payload)
    if offset + json_length > len(payload):
        raise FramingError(
            f"JSON length {json_length} exceeds packet payload of {len(payload) - offset} bytes"
        )
    raw = payload[offset : offset + json_length]

    try:
        document = json.loads(raw.decode("utf-8"))
    except UnicodeDecodeError as exc:
        raise PayloadParseError(f"status JSON is not valid UTF-8: {exc}") from exc
    except json.JSONDecodeError as exc:
        raise PayloadParseError(f"status JSON could not be decoded: {exc}") from exc

    if not isinstance(document, dict):
        raise PayloadParseError(
            f"status JSON must be an object, got {type(document).__name__}"
        )

    try:
        return StatusResponseBody.model_validate(document)
    except ValidationError as exc:
        raise PayloadParseError(f"status JSON has an unexpected shape: {exc}") from exc
