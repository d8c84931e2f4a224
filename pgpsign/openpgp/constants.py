"""OpenPGP registry values (RFC 4880 / RFC 9580) used by the packet layer."""

from __future__ import annotations

from enum import IntEnum


class PacketTag(IntEnum):
    SIGNATURE = 2
    SECRET_KEY = 5
    PUBLIC_KEY = 6
    SECRET_SUBKEY = 7
    MARKER = 10
    TRUST = 12
    USER_ID = 13
    PUBLIC_SUBKEY = 14
    USER_ATTRIBUTE = 17
    PADDING = 21


class PublicKeyAlgorithm(IntEnum):
    RSA = 1
    RSA_ENCRYPT_ONLY = 2
    RSA_SIGN_ONLY = 3
    ELGAMAL_ENCRYPT = 16
    DSA = 17
    ECDH = 18
    ECDSA = 19
    ELGAMAL_GENERAL = 20
    EDDSA_LEGACY = 22
    X25519 = 25
    X448 = 26
    ED25519 = 27
    ED448 = 28


class SymmetricAlgorithm(IntEnum):
    PLAINTEXT = 0
    IDEA = 1
    TRIPLEDES = 2
    CAST5 = 3
    BLOWFISH = 4
    AES128 = 7
    AES192 = 8
    AES256 = 9
    TWOFISH = 10
    CAMELLIA128 = 11
    CAMELLIA192 = 12
    CAMELLIA256 = 13


class HashAlgorithm(IntEnum):
    MD5 = 1
    SHA1 = 2
    RIPEMD160 = 3
    SHA256 = 8
    SHA384 = 9
    SHA512 = 10
    SHA224 = 11


class SignatureType(IntEnum):
    BINARY_DOCUMENT = 0x00
    TEXT_DOCUMENT = 0x01
    GENERIC_CERTIFICATION = 0x10
    PERSONA_CERTIFICATION = 0x11
    CASUAL_CERTIFICATION = 0x12
    POSITIVE_CERTIFICATION = 0x13
    SUBKEY_BINDING = 0x18
    PRIMARY_KEY_BINDING = 0x19
    DIRECT_KEY = 0x1F


class SubpacketType(IntEnum):
    SIGNATURE_CREATION_TIME = 2
    KEY_EXPIRATION_TIME = 9
    ISSUER_KEY_ID = 16
    ISSUER_FINGERPRINT = 33


class S2KUsage(IntEnum):
    UNPROTECTED = 0
    AEAD = 253
    SHA1_CHECK = 254
    CHECKSUM = 255


class S2KType(IntEnum):
    SIMPLE = 0
    SALTED = 1
    ITERATED_SALTED = 3
    ARGON2 = 4
    GNU_EXTENSION = 101


class GnuProtectionMode(IntEnum):
    DUMMY = 1
    DIVERT_TO_CARD = 2


# hashlib constructor names
HASH_NAMES: dict[int, str] = {
    HashAlgorithm.MD5: "md5",
    HashAlgorithm.SHA1: "sha1",
    HashAlgorithm.RIPEMD160: "ripemd160",
    HashAlgorithm.SHA256: "sha256",
    HashAlgorithm.SHA384: "sha384",
    HashAlgorithm.SHA512: "sha512",
    HashAlgorithm.SHA224: "sha224",
}

# Cipher block sizes in bytes; needed to read the IV even for ciphers we cannot run.
BLOCK_SIZES: dict[int, int] = {
    SymmetricAlgorithm.IDEA: 8,
    SymmetricAlgorithm.TRIPLEDES: 8,
    SymmetricAlgorithm.CAST5: 8,
    SymmetricAlgorithm.BLOWFISH: 8,
    SymmetricAlgorithm.AES128: 16,
    SymmetricAlgorithm.AES192: 16,
    SymmetricAlgorithm.AES256: 16,
    SymmetricAlgorithm.TWOFISH: 16,
    SymmetricAlgorithm.CAMELLIA128: 16,
    SymmetricAlgorithm.CAMELLIA192: 16,
    SymmetricAlgorithm.CAMELLIA256: 16,
}

SIGNING_ALGORITHMS = frozenset(
    {
        PublicKeyAlgorithm.RSA,
        PublicKeyAlgorithm.RSA_SIGN_ONLY,
        PublicKeyAlgorithm.DSA,
        PublicKeyAlgorithm.ECDSA,
        PublicKeyAlgorithm.EDDSA_LEGACY,
        PublicKeyAlgorithm.ED25519,
        PublicKeyAlgorithm.ED448,
    }
)

# Curve OIDs as they appear in key packets (DER body without tag and length).
OID_NIST_P256 = bytes.fromhex("2A8648CE3D030107")
OID_NIST_P384 = bytes.fromhex("2B81040022")
OID_NIST_P521 = bytes.fromhex("2B81040023")
OID_BRAINPOOL_P256 = bytes.fromhex("2B2403030208010107")
OID_BRAINPOOL_P384 = bytes.fromhex("2B240303020801010B")
OID_BRAINPOOL_P512 = bytes.fromhex("2B240303020801010D")
OID_ED25519_LEGACY = bytes.fromhex("2B06010401DA470F01")
OID_CURVE25519_LEGACY = bytes.fromhex("2B060104019755010501")


def algorithm_name(value: int) -> str:
    """Return a readable name for a public-key algorithm id."""
    try:
        return PublicKeyAlgorithm(value).name
    except ValueError:
        return f"algorithm {value}"
