"""Signer adapter using the built-in OpenPGP implementation."""

from __future__ import annotations

import logging
from pathlib import Path

from pgpsign.app.credentials import CredentialResolver, ResolvedKey
from pgpsign.errors import UnsupportedAlgorithmError
from pgpsign.openpgp.signature import SignatureGenerator, issuer_fingerprint_subpacket
from pgpsign.utils.files import atomic_write_text

logger = logging.getLogger(__name__)

CHUNK_SIZE = 8192


class EmbeddedSigner:
    """Sign files without any external tool.

    ``prepare`` resolves and unlocks the key once; every ``sign_file`` call
    then streams the file through SHA-512 and writes an armored v4 signature
    carrying the creation time and issuer fingerprint subpackets.
    """

    NAME = "embedded"

    def __init__(self, resolver: CredentialResolver) -> None:
        self._resolver = resolver
        self._resolved: ResolvedKey | None = None
        self._hashed_subpackets: tuple[bytes, ...] = ()

    @property
    def signer_name(self) -> str:
        return self.NAME

    @property
    def resolved_key(self) -> ResolvedKey | None:
        return self._resolved

    def prepare(self) -> None:
        resolved = self._resolver.resolve()
        self._resolved = resolved
        self._hashed_subpackets = (issuer_fingerprint_subpacket(resolved.fingerprint),)
        logger.debug("Embedded signer ready with key %s", resolved.key.fingerprint_hex)

    def get_key_info(self) -> str:
        if self._resolved is None:
            self.prepare()
        assert self._resolved is not None
        return self._resolved.describe()

    def sign_file(self, source: Path, destination: Path | None = None) -> Path:
        """Sign ``source`` into ``destination`` (default ``<source>.asc``).

        Raises:
            UnsupportedAlgorithmError: If the selected key cannot sign
            SignatureGenerationError: If the signature computation fails
            OSError: If reading the source or writing the signature fails
        """
        if self._resolved is None:
            self.prepare()
        assert self._resolved is not None

        source = Path(source)
        if destination is None:
            destination = source.with_name(source.name + ".asc")
        destination = Path(destination)

        key = self._resolved.key
        if not key.can_sign:
            raise UnsupportedAlgorithmError(
                f"Key {key.fingerprint_hex} ({key.algorithm_name}) cannot create signatures"
            )

        generator = SignatureGenerator(
            self._resolved.handle, hashed_subpackets=self._hashed_subpackets
        )
        with source.open("rb") as handle:
            for chunk in iter(lambda: handle.read(CHUNK_SIZE), b""):
                generator.update(chunk)

        signature = generator.finish()

        atomic_write_text(destination, signature.armored())
        logger.debug("Signed %s -> %s", source, destination)
        return destination
