"""Application layer for pgpsign.

Services orchestrate signing without knowing which backend does the work.
Backends are adapters implementing the port interfaces.
"""

__all__ = [
    "CredentialResolver",
    "ResolvedKey",
    "SignatureLayout",
    "SignedArtifact",
    "SigningService",
]

from pgpsign.app.credentials import CredentialResolver, ResolvedKey
from pgpsign.app.signing_service import SignatureLayout, SignedArtifact, SigningService
