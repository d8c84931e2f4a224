"""OpenPGP packet framing and multiprecision integer helpers."""

from __future__ import annotations

import struct
from collections.abc import Iterator
from dataclasses import dataclass

from pgpsign.errors import KeyRingFormatError


@dataclass(frozen=True, slots=True)
class Packet:
    """A decoded packet: its tag and the raw body bytes."""

    tag: int
    body: bytes


class Reader:
    """Cursor over a byte string raising :class:`KeyRingFormatError` on truncation."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self.data = data
        self.offset = offset

    def at_end(self) -> bool:
        return self.offset >= len(self.data)

    def read(self, count: int) -> bytes:
        end = self.offset + count
        if count < 0 or end > len(self.data):
            raise KeyRingFormatError("Truncated OpenPGP data")
        chunk = self.data[self.offset : end]
        self.offset = end
        return chunk

    def read_byte(self) -> int:
        return self.read(1)[0]

    def read_uint16(self) -> int:
        return struct.unpack(">H", self.read(2))[0]

    def read_uint32(self) -> int:
        return struct.unpack(">I", self.read(4))[0]

    def read_mpi_bytes(self) -> bytes:
        bits = self.read_uint16()
        return self.read((bits + 7) // 8)

    def read_mpi(self) -> int:
        return int.from_bytes(self.read_mpi_bytes(), "big")

    def remaining(self) -> bytes:
        chunk = self.data[self.offset :]
        self.offset = len(self.data)
        return chunk


def encode_mpi(value: int | bytes) -> bytes:
    """Encode ``value`` as an OpenPGP MPI (bit count + big-endian magnitude)."""
    if isinstance(value, bytes):
        value = int.from_bytes(value, "big")
    bit_length = value.bit_length()
    return struct.pack(">H", bit_length) + value.to_bytes((bit_length + 7) // 8, "big")


def _read_new_format_body(reader: Reader) -> bytes:
    chunks: list[bytes] = []
    while True:
        first = reader.read_byte()
        if first < 192:
            chunks.append(reader.read(first))
            break
        if first < 224:
            second = reader.read_byte()
            chunks.append(reader.read(((first - 192) << 8) + second + 192))
            break
        if first == 255:
            chunks.append(reader.read(reader.read_uint32()))
            break
        # Partial body length: another length header follows this chunk.
        chunks.append(reader.read(1 << (first & 0x1F)))
    return b"".join(chunks)


def iter_packets(data: bytes) -> Iterator[Packet]:
    """Yield packets from binary OpenPGP data (old and new header formats).

    Raises:
        KeyRingFormatError: On malformed headers or truncated bodies
    """
    reader = Reader(data)
    while not reader.at_end():
        header = reader.read_byte()
        if not header & 0x80:
            raise KeyRingFormatError(
                f"Invalid OpenPGP packet header 0x{header:02x} at offset {reader.offset - 1}"
            )

        if header & 0x40:
            tag = header & 0x3F
            body = _read_new_format_body(reader)
        else:
            tag = (header >> 2) & 0x0F
            length_type = header & 0x03
            if length_type == 0:
                length = reader.read_byte()
            elif length_type == 1:
                length = reader.read_uint16()
            elif length_type == 2:
                length = reader.read_uint32()
            else:
                length = len(reader.data) - reader.offset
            body = reader.read(length)

        yield Packet(tag=tag, body=body)


def write_packet(tag: int, body: bytes) -> bytes:
    """Frame ``body`` with an old-format header, the form GnuPG emits for signatures."""
    length = len(body)
    if tag > 0x0F:
        raise ValueError(f"Packet tag {tag} needs a new-format header")
    if length < 0x100:
        header = bytes([0x80 | (tag << 2), length])
    elif length < 0x10000:
        header = bytes([0x80 | (tag << 2) | 0x01]) + struct.pack(">H", length)
    else:
        header = bytes([0x80 | (tag << 2) | 0x02]) + struct.pack(">I", length)
    return header + body
