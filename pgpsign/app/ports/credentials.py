"""Credential loader port used by the embedded signer."""

from typing import Protocol

from pgpsign.openpgp.keys import SecretKey


class CredentialLoaderPort(Protocol):
    """A single source of signing credentials.

    Every method may return ``None`` when the source has nothing to offer;
    the resolver then asks the next loader.
    """

    interactive: bool

    def load_key_ring_material(self) -> bytes | None:
        """Return armored or binary secret key ring material."""
        ...

    def load_key_fingerprint(self) -> bytes | None:
        """Return the 20-byte fingerprint of the key to use."""
        ...

    def load_passphrase(self, key: SecretKey) -> str | None:
        """Return the passphrase protecting ``key``."""
        ...
