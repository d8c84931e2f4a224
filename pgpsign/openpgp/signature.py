"""Streaming creation of detached version 4 signatures."""

from __future__ import annotations

import struct
import time
from collections.abc import Sequence
from dataclasses import dataclass

from pgpsign.errors import SignatureGenerationError
from pgpsign.openpgp.armor import armor
from pgpsign.openpgp.constants import HashAlgorithm, PacketTag, SignatureType, SubpacketType
from pgpsign.openpgp.keys import PrivateKeyHandle, new_hash
from pgpsign.openpgp.packets import write_packet


def encode_subpacket(kind: int, payload: bytes, *, critical: bool = False) -> bytes:
    """Encode one signature subpacket with its variable-length header."""
    body = bytes([kind | 0x80 if critical else kind]) + payload
    length = len(body)
    if length < 192:
        header = bytes([length])
    elif length < 8384:
        length -= 192
        header = bytes([(length >> 8) + 192, length & 0xFF])
    else:
        header = b"\xff" + struct.pack(">I", length)
    return header + body


def creation_time_subpacket(timestamp: int) -> bytes:
    return encode_subpacket(SubpacketType.SIGNATURE_CREATION_TIME, struct.pack(">I", timestamp))


def issuer_fingerprint_subpacket(fingerprint: bytes) -> bytes:
    if len(fingerprint) != 20:
        raise ValueError("A v4 fingerprint is 20 bytes long")
    return encode_subpacket(SubpacketType.ISSUER_FINGERPRINT, b"\x04" + fingerprint)


@dataclass(frozen=True, slots=True)
class DetachedSignature:
    """A finished signature packet."""

    packet: bytes
    created: int

    def armored(self) -> str:
        return armor(self.packet, "SIGNATURE")


class SignatureGenerator:
    """Accumulate data and produce a detached signature over it.

    Usage::

        generator = SignatureGenerator(handle, hashed_subpackets=[issuer])
        for chunk in chunks:
            generator.update(chunk)
        signature = generator.finish()
    """

    def __init__(
        self,
        handle: PrivateKeyHandle,
        *,
        signature_type: int = SignatureType.BINARY_DOCUMENT,
        hash_algorithm: int = HashAlgorithm.SHA512,
        hashed_subpackets: Sequence[bytes] = (),
    ) -> None:
        self._handle = handle
        self._signature_type = signature_type
        self._hash_algorithm = hash_algorithm
        self._hashed_subpackets = tuple(hashed_subpackets)
        self._context = new_hash(hash_algorithm)

    def update(self, data: bytes) -> None:
        self._context.update(data)

    def finish(self, created: int | None = None) -> DetachedSignature:
        """Finalize the signature; ``created`` defaults to the current time.

        Raises:
            SignatureGenerationError: If the private key operation fails
        """
        if created is None:
            created = int(time.time())
        hashed = creation_time_subpacket(created) + b"".join(self._hashed_subpackets)
        header = (
            bytes([4, self._signature_type, self._handle.algorithm, self._hash_algorithm])
            + struct.pack(">H", len(hashed))
            + hashed
        )

        context = self._context.copy()
        context.update(header)
        context.update(b"\x04\xff" + struct.pack(">I", len(header)))
        digest = context.digest()

        try:
            fields = self._handle.sign(digest, self._hash_algorithm)
        except (ValueError, TypeError) as exc:
            raise SignatureGenerationError(f"Failed to compute signature: {exc}") from exc

        # Empty unhashed area: no issuer key ID subpacket.
        body = header + struct.pack(">H", 0) + digest[:2] + fields
        return DetachedSignature(packet=write_packet(PacketTag.SIGNATURE, body), created=created)
