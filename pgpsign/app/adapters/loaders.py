"""Credential loaders feeding the embedded signer.

Order matters: the resolver asks environment, key file and gpg-agent in that
order and keeps the first value each of them yields.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping, Sequence
from pathlib import Path

from pgpsign.app.credentials import parse_fingerprint
from pgpsign.errors import (
    AgentConnectionError,
    AgentProtocolError,
    AgentRefusalError,
    KeyFileTooLargeError,
)
from pgpsign.gpg.agent import AgentClient
from pgpsign.openpgp.keys import SecretKey

logger = logging.getLogger(__name__)

ENV_SIGNING_KEY = "PGPSIGN_SIGNING_KEY"
ENV_SIGNING_KEY_FINGERPRINT = "PGPSIGN_SIGNING_KEY_FINGERPRINT"
ENV_SIGNING_KEY_PASS = "PGPSIGN_SIGNING_KEY_PASS"

# Large keys stay well below this; see https://wiki.gnupg.org/LargeKeys
MAX_KEY_FILE_SIZE = 5 * 1024 + 1

CACHE_ID_KEY_ID = "keyid"
CACHE_ID_FINGERPRINT = "fingerprint"


class EnvironmentLoader:
    """Read key material, fingerprint and passphrase from environment variables."""

    interactive = False

    def __init__(
        self,
        environ: Mapping[str, str] | None = None,
        *,
        key_variable: str = ENV_SIGNING_KEY,
        fingerprint_variable: str = ENV_SIGNING_KEY_FINGERPRINT,
        passphrase_variable: str = ENV_SIGNING_KEY_PASS,
    ) -> None:
        self._environ = environ if environ is not None else os.environ
        self.key_variable = key_variable
        self.fingerprint_variable = fingerprint_variable
        self.passphrase_variable = passphrase_variable

    def load_key_ring_material(self) -> bytes | None:
        value = self._environ.get(self.key_variable)
        if not value:
            return None
        return value.encode("utf-8")

    def load_key_fingerprint(self) -> bytes | None:
        return parse_fingerprint(self._environ.get(self.fingerprint_variable) or None)

    def load_passphrase(self, key: SecretKey) -> str | None:
        return self._environ.get(self.passphrase_variable)


class KeyFileLoader:
    """Read key material from a file and the fingerprint from configuration."""

    interactive = False

    def __init__(self, key_file: Path, *, fingerprint: str | None = None) -> None:
        self.key_file = Path(key_file)
        self.fingerprint = fingerprint

    def load_key_ring_material(self) -> bytes | None:
        """Return the key file contents, or None when there is no such file.

        Raises:
            KeyFileTooLargeError: If the file is larger than 5 KiB
        """
        if not self.key_file.is_file():
            logger.debug("No key file at %s", self.key_file)
            return None
        if self.key_file.stat().st_size >= MAX_KEY_FILE_SIZE:
            raise KeyFileTooLargeError(
                f"Refusing to load key {self.key_file}; is larger than 5KB"
            )
        return self.key_file.read_bytes()

    def load_key_fingerprint(self) -> bytes | None:
        return parse_fingerprint(self.fingerprint)

    def load_passphrase(self, key: SecretKey) -> str | None:
        return None


def agent_cache_id(key: SecretKey, style: str = CACHE_ID_KEY_ID) -> str:
    """Return the agent cache id for ``key``.

    ``keyid`` yields the lowercase hex of the low 32 bits of the key ID,
    ``fingerprint`` the uppercase hex fingerprint (the keygrip-less form
    ``gpg-preset-passphrase`` users tend to cache under).
    """
    if style == CACHE_ID_FINGERPRINT:
        return key.fingerprint_hex
    return format(key.key_id_int & 0xFFFFFFFF, "x")


class AgentPassphraseLoader:
    """Ask gpg-agent for the passphrase of the selected key.

    When prompting is allowed the agent may pop up pinentry, which makes this
    the interactive source. Otherwise the request carries ``--no-ask`` so only
    an already cached passphrase is returned.
    """

    def __init__(
        self,
        socket_locations: Sequence[str],
        *,
        home: Path | None = None,
        interactive: bool = True,
        timeout: float | None = None,
        environ: Mapping[str, str] | None = None,
        cache_id_style: str = CACHE_ID_KEY_ID,
    ) -> None:
        self.socket_locations = [location for location in socket_locations if location]
        self.home = home if home is not None else Path.home()
        self.interactive = interactive
        self.timeout = timeout
        self._environ = environ
        self.cache_id_style = cache_id_style

    def socket_paths(self) -> list[Path]:
        return [self.home / location for location in self.socket_locations]

    def load_key_ring_material(self) -> bytes | None:
        return None

    def load_key_fingerprint(self) -> bytes | None:
        return None

    def load_passphrase(self, key: SecretKey) -> str | None:
        cache_id = agent_cache_id(key, self.cache_id_style)
        for socket_path in self.socket_paths():
            client = AgentClient(socket_path, timeout=self.timeout, environ=self._environ)
            try:
                return client.get_passphrase(cache_id, no_ask=not self.interactive)
            except (AgentConnectionError, AgentProtocolError) as exc:
                logger.debug("gpg-agent at %s unusable: %s", socket_path, exc)
                continue
            except AgentRefusalError as exc:
                logger.debug("gpg-agent at %s gave no passphrase: %s", socket_path, exc)
                return None
        return None
