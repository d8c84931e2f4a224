"""Exception hierarchy shared by the signer backends.

Messages never carry passphrases or key material; they name the missing or
malformed credential instead.
"""

from __future__ import annotations

from datetime import datetime


class SigningError(Exception):
    """Base class for every failure raised by pgpsign."""

    pass


class ConfigurationError(SigningError, ValueError):
    """Raised for malformed or conflicting configuration values."""

    pass


class CredentialNotFoundError(SigningError):
    """Raised when key material, a usable key or a passphrase cannot be found."""

    pass


class ExpiredKeyError(SigningError):
    """Raised when the selected secret key is past its validity period."""

    def __init__(self, expired_at: datetime) -> None:
        super().__init__(f"Secret key expired at: {expired_at.isoformat()}")
        self.expired_at = expired_at


class KeyFileTooLargeError(SigningError, OSError):
    """Raised when a configured key file exceeds the size limit."""

    pass


class KeyRingFormatError(SigningError):
    """Raised when key ring material is not valid OpenPGP secret key data."""

    pass


class UnsupportedAlgorithmError(SigningError):
    """Raised for OpenPGP algorithms this implementation cannot handle."""

    pass


class KeyDecryptionError(SigningError):
    """Raised when a secret key cannot be decrypted (usually a wrong passphrase)."""

    pass


class SignatureGenerationError(SigningError):
    """Raised when computing or writing a signature fails."""

    pass


class VersionParseError(SigningError, ValueError):
    """Raised when no version number can be extracted from tool output."""

    pass


class ExternalProcessError(SigningError):
    """Raised when the external signing tool cannot run or exits non-zero."""

    def __init__(self, message: str, *, exit_code: int | None = None) -> None:
        super().__init__(message)
        self.exit_code = exit_code


class AgentError(SigningError):
    """Base class for gpg-agent exchange failures."""

    pass


class AgentConnectionError(AgentError, OSError):
    """Raised when an agent socket does not accept a connection."""

    pass


class AgentProtocolError(AgentError):
    """Raised when the agent answers with something unexpected."""

    pass


class AgentRefusalError(AgentError):
    """Raised when the agent answers ``ERR`` (cancelled, not cached, ...)."""

    def __init__(self, message: str, *, code: int | None = None) -> None:
        super().__init__(message)
        self.code = code
