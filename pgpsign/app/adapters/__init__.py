"""Concrete adapters wiring application ports to built-in implementations."""

from __future__ import annotations

from .embedded_signer import EmbeddedSigner
from .gpg_signer import GpgSigner
from .loaders import AgentPassphraseLoader, EnvironmentLoader, KeyFileLoader

__all__ = [
    "AgentPassphraseLoader",
    "EmbeddedSigner",
    "EnvironmentLoader",
    "GpgSigner",
    "KeyFileLoader",
]
