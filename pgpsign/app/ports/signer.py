"""Signer port interface for detached artifact signatures."""

from pathlib import Path
from typing import Protocol


class SignerPort(Protocol):
    """Port interface for producing detached OpenPGP signatures.

    Implementations are prepared once and then sign any number of files.
    Side effects: reads the source file, writes the signature file.
    """

    @property
    def signer_name(self) -> str:
        """Short backend name (``gpg`` or ``embedded``)."""
        ...

    def prepare(self) -> None:
        """Resolve everything needed for signing (tool version, key material).

        Raises:
            SigningError: If the signer cannot be made ready
        """
        ...

    def sign_file(self, source: Path, destination: Path | None = None) -> Path:
        """Create an armored detached signature of ``source``.

        Args:
            source: File to sign
            destination: Signature path (defaults to ``<source>.asc``)

        Returns:
            Path of the written signature
        """
        ...

    def get_key_info(self) -> str:
        """Human-readable description of the signing key."""
        ...
