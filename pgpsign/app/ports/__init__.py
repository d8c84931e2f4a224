"""Port interfaces for the pgpsign application layer.

Services and signers depend on these protocols, never on concrete adapters.
"""

__all__ = [
    "CredentialLoaderPort",
    "SignerPort",
]

from pgpsign.app.ports.credentials import CredentialLoaderPort
from pgpsign.app.ports.signer import SignerPort
