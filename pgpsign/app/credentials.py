"""Credential resolution for the embedded signer.

A :class:`CredentialResolver` walks an ordered chain of loaders and takes,
independently for each credential, the first value any loader provides:
key ring material, the fingerprint of the key to use and the passphrase.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import TypeVar

from pgpsign.app.ports.credentials import CredentialLoaderPort
from pgpsign.errors import ConfigurationError, CredentialNotFoundError, ExpiredKeyError
from pgpsign.openpgp.keys import (
    PrivateKeyHandle,
    SecretKey,
    parse_secret_key_rings,
    select_secret_key,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")


def parse_fingerprint(value: str | None) -> bytes | None:
    """Decode a 40 hex character fingerprint (spaces allowed) into 20 bytes.

    Raises:
        ConfigurationError: If the value is not exactly 40 hex characters
    """
    if value is None:
        return None
    cleaned = "".join(value.split())
    if len(cleaned) != 40:
        raise ConfigurationError(
            f"Key fingerprint must be 40 hex characters, got {len(cleaned)}"
        )
    try:
        return bytes.fromhex(cleaned)
    except ValueError as exc:
        raise ConfigurationError("Key fingerprint is not valid hex") from exc


@dataclass(frozen=True)
class ResolvedKey:
    """The selected secret key together with its unlocked private key."""

    key: SecretKey
    handle: PrivateKeyHandle

    @property
    def fingerprint(self) -> bytes:
        return self.key.fingerprint

    def describe(self) -> str:
        if self.key.user_ids:
            return self.key.user_ids[0]
        return self.key.fingerprint_hex


class CredentialResolver:
    """Resolve and unlock the signing key from a chain of loaders."""

    def __init__(
        self,
        loaders: Sequence[CredentialLoaderPort],
        *,
        interactive: bool,
        passphrase: str | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self._loaders = list(loaders)
        self._interactive = interactive
        self._passphrase = passphrase
        self._clock = clock

    @property
    def active_loaders(self) -> list[CredentialLoaderPort]:
        """Loaders that may be consulted in the current mode."""
        if self._interactive:
            return list(self._loaders)
        return [loader for loader in self._loaders if not loader.interactive]

    def resolve(self) -> ResolvedKey:
        """Load, select, check and unlock the signing key.

        Returns:
            The selected key and its private key handle

        Raises:
            CredentialNotFoundError: If material, the key, its private part or
                a required passphrase is missing
            ExpiredKeyError: If the selected key is past its validity period
            KeyRingFormatError: If the material cannot be parsed
            KeyDecryptionError: If the passphrase does not decrypt the key
        """
        loaders = self.active_loaders

        material = self._first(loaders, "key ring material", lambda l: l.load_key_ring_material())
        if material is None:
            raise CredentialNotFoundError("Key ring material not found")

        fingerprint = self._first(loaders, "key fingerprint", lambda l: l.load_key_fingerprint())

        rings = parse_secret_key_rings(material)
        key = select_secret_key(rings, fingerprint)
        if key is None:
            raise CredentialNotFoundError("Secret key not found")
        if not key.has_private_key:
            raise CredentialNotFoundError("Private key not found in secret key")

        self._check_expiry(key)

        passphrase: str | None = None
        if key.is_encrypted:
            passphrase = self._passphrase
            if passphrase is None:
                passphrase = self._first(loaders, "passphrase", lambda l: l.load_passphrase(key))
            if passphrase is None:
                raise CredentialNotFoundError(
                    "Secret key is encrypted but no key passphrase provided"
                )

        handle = key.unlock(passphrase)
        logger.debug(
            "Selected %s key %s for signing", key.algorithm_name, key.fingerprint_hex
        )
        return ResolvedKey(key=key, handle=handle)

    def _check_expiry(self, key: SecretKey) -> None:
        validity = key.valid_seconds
        if validity <= 0:
            return
        expires = key.created + validity
        if expires < self._clock():
            raise ExpiredKeyError(datetime.fromtimestamp(expires, tz=timezone.utc))

    @staticmethod
    def _first(
        loaders: Sequence[CredentialLoaderPort],
        what: str,
        load: Callable[[CredentialLoaderPort], T | None],
    ) -> T | None:
        for loader in loaders:
            value = load(loader)
            if value is not None:
                logger.debug("Using %s from %s", what, type(loader).__name__)
                return value
        return None
