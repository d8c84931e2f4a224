"""Minimal OpenPGP implementation: secret key parsing and detached signatures."""

from pgpsign.openpgp.armor import armor, dearmor, is_armored
from pgpsign.openpgp.keys import (
    PrivateKeyHandle,
    SecretKey,
    SecretKeyRing,
    parse_secret_key_rings,
    select_secret_key,
)
from pgpsign.openpgp.signature import (
    DetachedSignature,
    SignatureGenerator,
    issuer_fingerprint_subpacket,
)

__all__ = [
    "DetachedSignature",
    "PrivateKeyHandle",
    "SecretKey",
    "SecretKeyRing",
    "SignatureGenerator",
    "armor",
    "dearmor",
    "is_armored",
    "issuer_fingerprint_subpacket",
    "parse_secret_key_rings",
    "select_secret_key",
]
