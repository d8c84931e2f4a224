"""ASCII armor (radix-64 with CRC-24 checksum)."""

from __future__ import annotations

import base64
import binascii
import re

from pgpsign.errors import KeyRingFormatError

_CRC24_INIT = 0xB704CE
_CRC24_POLY = 0x1864CFB
_LINE_WIDTH = 64

_BEGIN_LINE = re.compile(r"^-----BEGIN PGP (?P<block>[A-Z0-9 ,/]+)-----$")
_END_LINE = re.compile(r"^-----END PGP (?P<block>[A-Z0-9 ,/]+)-----$")


def crc24(data: bytes) -> int:
    """Compute the OpenPGP CRC-24 of ``data``."""
    crc = _CRC24_INIT
    for byte in data:
        crc ^= byte << 16
        for _ in range(8):
            crc <<= 1
            if crc & 0x1000000:
                crc ^= _CRC24_POLY
    return crc & 0xFFFFFF


def armor(data: bytes, block: str = "SIGNATURE", headers: dict[str, str] | None = None) -> str:
    """Wrap binary OpenPGP ``data`` in an armored text block."""
    encoded = base64.b64encode(data).decode("ascii")
    lines = [f"-----BEGIN PGP {block}-----"]
    for key, value in (headers or {}).items():
        lines.append(f"{key}: {value}")
    lines.append("")
    lines.extend(
        encoded[index : index + _LINE_WIDTH] for index in range(0, len(encoded), _LINE_WIDTH)
    )
    checksum = base64.b64encode(crc24(data).to_bytes(3, "big")).decode("ascii")
    lines.append(f"={checksum}")
    lines.append(f"-----END PGP {block}-----")
    return "\n".join(lines) + "\n"


def is_armored(data: bytes) -> bool:
    return data.lstrip().startswith(b"-----BEGIN PGP ")


def dearmor(data: bytes | str) -> bytes:
    """Decode every armored block in ``data`` and concatenate the payloads.

    Raises:
        KeyRingFormatError: If no block is found, a block is unterminated,
            the base64 body is invalid or the CRC-24 checksum does not match.
    """
    text = data.decode("utf-8", errors="replace") if isinstance(data, bytes) else data

    payloads: list[bytes] = []
    state = "outside"
    body_lines: list[str] = []
    checksum: str | None = None

    for raw_line in text.splitlines():
        line = raw_line.strip()
        if state == "outside":
            if _BEGIN_LINE.match(line):
                state = "headers"
                body_lines = []
                checksum = None
            continue

        if _END_LINE.match(line):
            payloads.append(_decode_block(body_lines, checksum))
            state = "outside"
            continue

        if state == "headers":
            if not line:
                state = "body"
                continue
            if ": " in line:
                continue
            # Tolerate emitters that omit the blank separator line.
            state = "body"

        if not line:
            continue
        if line.startswith("=") and len(line) == 5:
            checksum = line[1:]
        else:
            body_lines.append(line)

    if state != "outside":
        raise KeyRingFormatError("Unterminated armored block")
    if not payloads:
        raise KeyRingFormatError("No armored OpenPGP block found")
    return b"".join(payloads)


def _decode_block(body_lines: list[str], checksum: str | None) -> bytes:
    try:
        payload = base64.b64decode("".join(body_lines), validate=True)
    except (binascii.Error, ValueError) as exc:
        raise KeyRingFormatError("Invalid base64 in armored block") from exc

    if checksum is not None:
        try:
            expected = int.from_bytes(base64.b64decode(checksum, validate=True), "big")
        except (binascii.Error, ValueError) as exc:
            raise KeyRingFormatError("Invalid armor checksum line") from exc
        if crc24(payload) != expected:
            raise KeyRingFormatError("Armor checksum mismatch")
    return payload
