from typing import Tuple

from app.errors import FramingError, IncompleteVarIntError

# A 32-bit value needs at most five 7-bit groups
MAX_VARINT_BYTES = 5
MAX_VARINT_VALUE = 2**31 - 1


def encode_varint(value: int) -> bytes:
    """
    Encode a non-negative integer as a protocol VarInt.

    Each byte carries 7 data bits, least significant group first. The high
    bit is set on every byte except the last one.
    """
    if value < 0 or value > MAX_VARINT_VALUE:
        raise ValueError(f"VarInt value out of range: {value}")

    out = bytearray()
    while True:
        group = value & 0x7F
        value >>= 7
        if value:
            out.append(group | 0x80)
        else:
            out.append(group)
            return bytes(out)


def decode_varint(data: bytes, offset: int = 0) -> Tuple[int, int]:
    """
    Decode a VarInt starting at ``offset``.

    Returns ``(value, offset_after_varint)``. Raises IncompleteVarIntError if
    the buffer ends before the terminating byte, and FramingError if the
    VarInt is longer than five bytes or overflows 32 bits.
    """
    result = 0
    shift = 0
    position = offset

    for _ in range(MAX_VARINT_BYTES):
        if position >= len(data):
            raise IncompleteVarIntError(
                f"VarInt at offset {offset} is truncated after {position - offset} byte(s)"
            )
        byte = data[position]
        position += 1
        result |= (byte & 0x7F) << shift
        if not byte & 0x80:
            if result > 0xFFFFFFFF:
                raise FramingError(f"VarInt at offset {offset} overflows 32 bits")
            return result, position
        shift += 7

    raise FramingError(
        f"VarInt at offset {offset} is longer than {MAX_VARINT_BYTES} bytes"
    )
