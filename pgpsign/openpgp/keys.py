"""Transferable secret keys: parsing, S2K derivation and unlocking.

Only version 4 key packets are understood. Secret material is decrypted with
the ``cryptography`` block ciphers in OpenPGP CFB mode and turned into a
``cryptography`` private key object wrapped by :class:`PrivateKeyHandle`.
"""

from __future__ import annotations

import hashlib
import logging
import struct
from dataclasses import dataclass, field
from datetime import datetime, timezone

from cryptography.hazmat.decrepit.ciphers import algorithms as decrepit_algorithms
from cryptography.hazmat.decrepit.ciphers import modes as decrepit_modes
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.asymmetric import dsa, ec, ed448, ed25519, padding, rsa
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, decode_dss_signature
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms

from pgpsign.errors import (
    CredentialNotFoundError,
    KeyDecryptionError,
    KeyRingFormatError,
    UnsupportedAlgorithmError,
)
from pgpsign.openpgp.armor import dearmor, is_armored
from pgpsign.openpgp.constants import (
    BLOCK_SIZES,
    HASH_NAMES,
    OID_BRAINPOOL_P256,
    OID_BRAINPOOL_P384,
    OID_BRAINPOOL_P512,
    OID_ED25519_LEGACY,
    OID_NIST_P256,
    OID_NIST_P384,
    OID_NIST_P521,
    SIGNING_ALGORITHMS,
    GnuProtectionMode,
    HashAlgorithm,
    PacketTag,
    PublicKeyAlgorithm,
    S2KType,
    S2KUsage,
    SignatureType,
    SubpacketType,
    SymmetricAlgorithm,
    algorithm_name,
)
from pgpsign.openpgp.packets import Reader, encode_mpi, iter_packets

logger = logging.getLogger(__name__)

_CIPHERS = {
    SymmetricAlgorithm.TRIPLEDES: (decrepit_algorithms.TripleDES, 24),
    SymmetricAlgorithm.CAST5: (decrepit_algorithms.CAST5, 16),
    SymmetricAlgorithm.BLOWFISH: (decrepit_algorithms.Blowfish, 16),
    SymmetricAlgorithm.AES128: (algorithms.AES, 16),
    SymmetricAlgorithm.AES192: (algorithms.AES, 24),
    SymmetricAlgorithm.AES256: (algorithms.AES, 32),
    SymmetricAlgorithm.CAMELLIA128: (decrepit_algorithms.Camellia, 16),
    SymmetricAlgorithm.CAMELLIA192: (decrepit_algorithms.Camellia, 24),
    SymmetricAlgorithm.CAMELLIA256: (decrepit_algorithms.Camellia, 32),
}

_CURVES = {
    OID_NIST_P256: ec.SECP256R1,
    OID_NIST_P384: ec.SECP384R1,
    OID_NIST_P521: ec.SECP521R1,
    OID_BRAINPOOL_P256: ec.BrainpoolP256R1,
    OID_BRAINPOOL_P384: ec.BrainpoolP384R1,
    OID_BRAINPOOL_P512: ec.BrainpoolP512R1,
}

_SIGNING_HASHES = {
    HashAlgorithm.SHA256: hashes.SHA256,
    HashAlgorithm.SHA384: hashes.SHA384,
    HashAlgorithm.SHA512: hashes.SHA512,
    HashAlgorithm.SHA224: hashes.SHA224,
}

_PRIMARY_SELF_SIGNATURES = frozenset(
    {
        SignatureType.GENERIC_CERTIFICATION,
        SignatureType.PERSONA_CERTIFICATION,
        SignatureType.CASUAL_CERTIFICATION,
        SignatureType.POSITIVE_CERTIFICATION,
        SignatureType.DIRECT_KEY,
    }
)

# Bytes of repeated salt+passphrase fed to the hash per update call.
_S2K_CHUNK = 64 * 1024


def decode_s2k_count(coded: int) -> int:
    """Expand the one-octet iterated S2K count."""
    return (16 + (coded & 15)) << ((coded >> 4) + 6)


def new_hash(algorithm: int):
    name = HASH_NAMES.get(algorithm)
    if name is None:
        raise UnsupportedAlgorithmError(f"Unsupported hash algorithm {algorithm}")
    try:
        return hashlib.new(name)
    except ValueError as exc:
        raise UnsupportedAlgorithmError(f"Hash algorithm {name} is not available") from exc


@dataclass(frozen=True, slots=True)
class S2K:
    """String-to-key specifier protecting secret key material."""

    type: int
    hash_algorithm: int
    salt: bytes = b""
    count: int = 0
    gnu_mode: int | None = None

    @classmethod
    def read(cls, reader: Reader) -> S2K:
        s2k_type = reader.read_byte()
        if s2k_type == S2KType.SIMPLE:
            return cls(s2k_type, reader.read_byte())
        if s2k_type == S2KType.SALTED:
            return cls(s2k_type, reader.read_byte(), reader.read(8))
        if s2k_type == S2KType.ITERATED_SALTED:
            hash_algorithm = reader.read_byte()
            salt = reader.read(8)
            return cls(s2k_type, hash_algorithm, salt, decode_s2k_count(reader.read_byte()))
        if s2k_type == S2KType.GNU_EXTENSION:
            hash_algorithm = reader.read_byte()
            if reader.read(3) != b"GNU":
                raise UnsupportedAlgorithmError("Unknown S2K extension")
            return cls(s2k_type, hash_algorithm, gnu_mode=reader.read_byte())
        raise UnsupportedAlgorithmError(f"Unsupported S2K type {s2k_type}")

    @property
    def is_stub(self) -> bool:
        """True for GnuPG placeholders that carry no private material."""
        return self.type == S2KType.GNU_EXTENSION and self.gnu_mode in (
            GnuProtectionMode.DUMMY,
            GnuProtectionMode.DIVERT_TO_CARD,
        )

    def derive_key(self, passphrase: bytes, key_size: int) -> bytes:
        """Derive ``key_size`` bytes of session key from ``passphrase``.

        When the hash output is shorter than the key, further hash contexts
        are used, each preloaded with one more zero byte than the previous.
        """
        derived = b""
        preload = 0
        while len(derived) < key_size:
            context = new_hash(self.hash_algorithm)
            context.update(b"\x00" * preload)
            if self.type == S2KType.SIMPLE:
                context.update(passphrase)
            elif self.type == S2KType.SALTED:
                context.update(self.salt + passphrase)
            elif self.type == S2KType.ITERATED_SALTED:
                _update_iterated(context, self.salt + passphrase, self.count)
            else:
                raise UnsupportedAlgorithmError(f"Cannot derive a key with S2K type {self.type}")
            derived += context.digest()
            preload += 1
        return derived[:key_size]


def _update_iterated(context, data: bytes, count: int) -> None:
    remaining = max(count, len(data))
    if not data:
        return
    block = data * max(1, _S2K_CHUNK // len(data))
    while remaining >= len(block):
        context.update(block)
        remaining -= len(block)
    repeats, rest = divmod(remaining, len(data))
    context.update(data * repeats + data[:rest])


def cfb_decrypt(algorithm, iv: bytes, ciphertext: bytes) -> bytes:
    """Decrypt OpenPGP CFB without resync, which is plain full-block CFB."""
    decryptor = Cipher(algorithm, decrepit_modes.CFB(iv)).decryptor()
    return decryptor.update(ciphertext) + decryptor.finalize()


@dataclass(slots=True)
class SelfSignature:
    """The parts of a self-signature that matter for key validity."""

    signature_type: int
    created: int | None = None
    key_expiration: int | None = None
    issuer_fingerprint: bytes | None = None
    issuer_key_id: bytes | None = None

    @classmethod
    def parse(cls, body: bytes) -> SelfSignature | None:
        """Parse a v4 signature packet body; other versions yield ``None``."""
        reader = Reader(body)
        if reader.read_byte() != 4:
            return None
        signature = cls(signature_type=reader.read_byte())
        reader.read(2)  # public-key and hash algorithm
        signature._read_subpackets(reader.read(reader.read_uint16()), hashed=True)
        signature._read_subpackets(reader.read(reader.read_uint16()), hashed=False)
        return signature

    def _read_subpackets(self, data: bytes, *, hashed: bool) -> None:
        reader = Reader(data)
        while not reader.at_end():
            first = reader.read_byte()
            if first < 192:
                length = first
            elif first < 255:
                length = ((first - 192) << 8) + reader.read_byte() + 192
            else:
                length = reader.read_uint32()
            if length == 0:
                raise KeyRingFormatError("Empty signature subpacket")
            payload = reader.read(length)
            kind = payload[0] & 0x7F
            value = payload[1:]
            if kind == SubpacketType.ISSUER_KEY_ID and len(value) == 8:
                self.issuer_key_id = value
            elif not hashed:
                continue
            elif kind == SubpacketType.SIGNATURE_CREATION_TIME and len(value) == 4:
                self.created = struct.unpack(">I", value)[0]
            elif kind == SubpacketType.KEY_EXPIRATION_TIME and len(value) == 4:
                self.key_expiration = struct.unpack(">I", value)[0]
            elif kind == SubpacketType.ISSUER_FINGERPRINT and len(value) == 21:
                self.issuer_fingerprint = value[1:]

    def issued_by(self, key: SecretKey) -> bool:
        if self.issuer_fingerprint is not None:
            return self.issuer_fingerprint == key.fingerprint
        if self.issuer_key_id is not None:
            return self.issuer_key_id == key.key_id
        return True


@dataclass(slots=True)
class SecretKey:
    """A version 4 secret key or subkey packet."""

    algorithm: int
    created: int
    public_body: bytes
    public_params: tuple
    secret_data: bytes
    s2k_usage: int = S2KUsage.UNPROTECTED
    symmetric_algorithm: int = SymmetricAlgorithm.PLAINTEXT
    s2k: S2K | None = None
    iv: bytes = b""
    curve_oid: bytes | None = None
    is_subkey: bool = False
    user_ids: list[str] = field(default_factory=list)
    self_signatures: list[SelfSignature] = field(default_factory=list)

    @classmethod
    def from_packet(cls, body: bytes, *, is_subkey: bool = False) -> SecretKey:
        """Parse a secret-key packet body.

        Raises:
            KeyRingFormatError: On truncated or malformed packets
            UnsupportedAlgorithmError: For non-v4 keys, unknown algorithms or
                unsupported protection schemes
        """
        reader = Reader(body)
        version = reader.read_byte()
        if version != 4:
            raise UnsupportedAlgorithmError(f"Unsupported secret key version {version}")
        created = reader.read_uint32()
        algorithm = reader.read_byte()
        public_params, curve_oid = _read_public_params(reader, algorithm)
        public_body = body[: reader.offset]

        usage = reader.read_byte()
        symmetric = SymmetricAlgorithm.PLAINTEXT
        s2k: S2K | None = None
        iv = b""
        if usage in (S2KUsage.SHA1_CHECK, S2KUsage.CHECKSUM):
            symmetric = reader.read_byte()
            s2k = S2K.read(reader)
        elif usage == S2KUsage.AEAD:
            raise UnsupportedAlgorithmError("AEAD protected secret keys are not supported")
        elif usage != S2KUsage.UNPROTECTED:
            # Legacy form: the usage octet is the cipher, key = MD5(passphrase).
            symmetric = usage
            s2k = S2K(S2KType.SIMPLE, HashAlgorithm.MD5)

        if symmetric != SymmetricAlgorithm.PLAINTEXT and not (s2k and s2k.is_stub):
            block_size = BLOCK_SIZES.get(symmetric)
            if block_size is None:
                raise UnsupportedAlgorithmError(f"Unsupported symmetric algorithm {symmetric}")
            iv = reader.read(block_size)

        return cls(
            algorithm=algorithm,
            created=created,
            public_body=public_body,
            public_params=public_params,
            secret_data=reader.remaining(),
            s2k_usage=usage,
            symmetric_algorithm=symmetric,
            s2k=s2k,
            iv=iv,
            curve_oid=curve_oid,
            is_subkey=is_subkey,
        )

    @property
    def fingerprint(self) -> bytes:
        prefix = b"\x99" + struct.pack(">H", len(self.public_body))
        return hashlib.sha1(prefix + self.public_body).digest()

    @property
    def key_id(self) -> bytes:
        return self.fingerprint[-8:]

    @property
    def key_id_int(self) -> int:
        return int.from_bytes(self.key_id, "big")

    @property
    def fingerprint_hex(self) -> str:
        return self.fingerprint.hex().upper()

    @property
    def algorithm_name(self) -> str:
        return algorithm_name(self.algorithm)

    @property
    def creation_time(self) -> datetime:
        return datetime.fromtimestamp(self.created, tz=timezone.utc)

    @property
    def is_encrypted(self) -> bool:
        return self.symmetric_algorithm != SymmetricAlgorithm.PLAINTEXT

    @property
    def has_private_key(self) -> bool:
        if self.s2k is not None and self.s2k.is_stub:
            return False
        return bool(self.secret_data)

    @property
    def can_sign(self) -> bool:
        return self.algorithm in SIGNING_ALGORITHMS

    @property
    def valid_seconds(self) -> int:
        """Validity period from the newest self-signature; 0 means it never expires."""
        wanted = (
            {SignatureType.SUBKEY_BINDING} if self.is_subkey else _PRIMARY_SELF_SIGNATURES
        )
        candidates = [sig for sig in self.self_signatures if sig.signature_type in wanted]
        if not candidates:
            return 0
        newest = max(candidates, key=lambda sig: sig.created or 0)
        return newest.key_expiration or 0

    @property
    def expires_at(self) -> datetime | None:
        if self.valid_seconds <= 0:
            return None
        return datetime.fromtimestamp(self.created + self.valid_seconds, tz=timezone.utc)

    def unlock(self, passphrase: str | None = None) -> PrivateKeyHandle:
        """Decrypt the secret material and build a signing handle.

        Raises:
            CredentialNotFoundError: If the packet carries no private material
                or a passphrase is needed but missing
            KeyDecryptionError: If the integrity check fails (wrong passphrase)
            UnsupportedAlgorithmError: If the cipher or algorithm is unsupported
        """
        if not self.has_private_key:
            raise CredentialNotFoundError("Private key not found in secret key")

        if self.is_encrypted:
            if passphrase is None:
                raise CredentialNotFoundError(
                    "Secret key is encrypted but no key passphrase provided"
                )
            plaintext = self._decrypt(passphrase)
        else:
            plaintext = self.secret_data

        if self.s2k_usage == S2KUsage.SHA1_CHECK:
            material, check = plaintext[:-20], plaintext[-20:]
            valid = len(plaintext) > 20 and hashlib.sha1(material).digest() == check
        else:
            material, check = plaintext[:-2], plaintext[-2:]
            valid = len(plaintext) > 2 and (sum(material) & 0xFFFF) == int.from_bytes(check, "big")
        if not valid:
            if self.is_encrypted:
                raise KeyDecryptionError("Secret key checksum mismatch, wrong passphrase?")
            raise KeyRingFormatError("Secret key checksum mismatch")

        try:
            private_key = _load_private_key(self, Reader(material))
        except (ValueError, TypeError) as exc:
            raise KeyDecryptionError(f"Invalid secret key material: {exc}") from exc
        logger.debug("Unlocked %s key %s", self.algorithm_name, self.fingerprint_hex)
        return PrivateKeyHandle(algorithm=self.algorithm, private_key=private_key)

    def _decrypt(self, passphrase: str) -> bytes:
        cipher = _CIPHERS.get(self.symmetric_algorithm)
        if cipher is None:
            raise UnsupportedAlgorithmError(
                f"Unsupported symmetric algorithm {self.symmetric_algorithm}"
            )
        factory, key_size = cipher
        assert self.s2k is not None
        session_key = self.s2k.derive_key(passphrase.encode("utf-8"), key_size)
        return cfb_decrypt(factory(session_key), self.iv, self.secret_data)


@dataclass(slots=True)
class SecretKeyRing:
    """A primary secret key followed by its subkeys."""

    keys: list[SecretKey]

    @property
    def primary(self) -> SecretKey:
        return self.keys[0]

    def __iter__(self):
        return iter(self.keys)


class PrivateKeyHandle:
    """Decrypted private key able to sign a precomputed digest."""

    def __init__(self, algorithm: int, private_key) -> None:
        self.algorithm = algorithm
        self._private_key = private_key

    def sign(self, digest: bytes, hash_algorithm: int = HashAlgorithm.SHA512) -> bytes:
        """Sign ``digest`` and return the algorithm-specific signature fields.

        Raises:
            UnsupportedAlgorithmError: If the key algorithm cannot sign
        """
        key = self._private_key
        if self.algorithm in (PublicKeyAlgorithm.RSA, PublicKeyAlgorithm.RSA_SIGN_ONLY):
            signature = key.sign(digest, padding.PKCS1v15(), Prehashed(_hash_for(hash_algorithm)))
            return encode_mpi(signature)
        if self.algorithm == PublicKeyAlgorithm.DSA:
            r, s = decode_dss_signature(key.sign(digest, Prehashed(_hash_for(hash_algorithm))))
            return encode_mpi(r) + encode_mpi(s)
        if self.algorithm == PublicKeyAlgorithm.ECDSA:
            der = key.sign(digest, ec.ECDSA(Prehashed(_hash_for(hash_algorithm))))
            r, s = decode_dss_signature(der)
            return encode_mpi(r) + encode_mpi(s)
        if self.algorithm == PublicKeyAlgorithm.EDDSA_LEGACY:
            signature = key.sign(digest)
            return encode_mpi(signature[:32]) + encode_mpi(signature[32:])
        if self.algorithm in (PublicKeyAlgorithm.ED25519, PublicKeyAlgorithm.ED448):
            return key.sign(digest)
        raise UnsupportedAlgorithmError(
            f"Key algorithm {algorithm_name(self.algorithm)} cannot create signatures"
        )


def _hash_for(hash_algorithm: int) -> hashes.HashAlgorithm:
    factory = _SIGNING_HASHES.get(hash_algorithm)
    if factory is None:
        raise UnsupportedAlgorithmError(f"Unsupported signature hash {hash_algorithm}")
    return factory()


def _read_public_params(reader: Reader, algorithm: int) -> tuple[tuple, bytes | None]:
    if algorithm in (
        PublicKeyAlgorithm.RSA,
        PublicKeyAlgorithm.RSA_ENCRYPT_ONLY,
        PublicKeyAlgorithm.RSA_SIGN_ONLY,
    ):
        return (reader.read_mpi(), reader.read_mpi()), None
    if algorithm == PublicKeyAlgorithm.DSA:
        return tuple(reader.read_mpi() for _ in range(4)), None
    if algorithm in (PublicKeyAlgorithm.ELGAMAL_ENCRYPT, PublicKeyAlgorithm.ELGAMAL_GENERAL):
        return tuple(reader.read_mpi() for _ in range(3)), None
    if algorithm in (PublicKeyAlgorithm.ECDSA, PublicKeyAlgorithm.EDDSA_LEGACY):
        oid = reader.read(reader.read_byte())
        return (reader.read_mpi_bytes(),), oid
    if algorithm == PublicKeyAlgorithm.ECDH:
        oid = reader.read(reader.read_byte())
        point = reader.read_mpi_bytes()
        kdf = reader.read(reader.read_byte())
        return (point, kdf), oid
    sizes = {
        PublicKeyAlgorithm.X25519: 32,
        PublicKeyAlgorithm.X448: 56,
        PublicKeyAlgorithm.ED25519: 32,
        PublicKeyAlgorithm.ED448: 57,
    }
    if algorithm in sizes:
        return (reader.read(sizes[algorithm]),), None
    raise UnsupportedAlgorithmError(f"Unsupported public key algorithm {algorithm}")


def _load_private_key(key: SecretKey, reader: Reader):
    algorithm = key.algorithm
    if algorithm in (
        PublicKeyAlgorithm.RSA,
        PublicKeyAlgorithm.RSA_ENCRYPT_ONLY,
        PublicKeyAlgorithm.RSA_SIGN_ONLY,
    ):
        n, e = key.public_params
        d, p, q = reader.read_mpi(), reader.read_mpi(), reader.read_mpi()
        numbers = rsa.RSAPrivateNumbers(
            p=p,
            q=q,
            d=d,
            dmp1=rsa.rsa_crt_dmp1(d, p),
            dmq1=rsa.rsa_crt_dmq1(d, q),
            iqmp=rsa.rsa_crt_iqmp(p, q),
            public_numbers=rsa.RSAPublicNumbers(e, n),
        )
        return numbers.private_key()
    if algorithm == PublicKeyAlgorithm.DSA:
        p, q, g, y = key.public_params
        parameters = dsa.DSAParameterNumbers(p, q, g)
        numbers = dsa.DSAPrivateNumbers(reader.read_mpi(), dsa.DSAPublicNumbers(y, parameters))
        return numbers.private_key()
    if algorithm == PublicKeyAlgorithm.ECDSA:
        curve = _CURVES.get(key.curve_oid or b"")
        if curve is None:
            raise UnsupportedAlgorithmError(f"Unsupported ECDSA curve {(key.curve_oid or b'').hex()}")
        return ec.derive_private_key(reader.read_mpi(), curve())
    if algorithm == PublicKeyAlgorithm.EDDSA_LEGACY:
        if key.curve_oid != OID_ED25519_LEGACY:
            raise UnsupportedAlgorithmError("Unsupported EdDSA curve")
        seed = reader.read_mpi_bytes().rjust(32, b"\x00")
        return ed25519.Ed25519PrivateKey.from_private_bytes(seed)
    if algorithm == PublicKeyAlgorithm.ED25519:
        return ed25519.Ed25519PrivateKey.from_private_bytes(reader.read(32))
    if algorithm == PublicKeyAlgorithm.ED448:
        return ed448.Ed448PrivateKey.from_private_bytes(reader.read(57))
    # Encryption-only algorithms: decrypted for validation, never used to sign.
    return None


def parse_secret_key_rings(material: bytes) -> list[SecretKeyRing]:
    """Parse armored or binary transferable secret keys.

    Several concatenated rings (or armored blocks) are returned in order.
    User IDs attach to the primary key; self-signatures attach to the key
    packet they follow.

    Raises:
        KeyRingFormatError: If the material is malformed, holds public keys
            or holds no secret key at all
    """
    data = dearmor(material) if is_armored(material) else material

    rings: list[SecretKeyRing] = []
    current: SecretKey | None = None
    for packet in iter_packets(data):
        if packet.tag == PacketTag.SECRET_KEY:
            current = SecretKey.from_packet(packet.body)
            rings.append(SecretKeyRing([current]))
        elif packet.tag in (PacketTag.PUBLIC_KEY, PacketTag.PUBLIC_SUBKEY):
            raise KeyRingFormatError("Expected secret key material but found a public key")
        elif not rings:
            if packet.tag in (PacketTag.MARKER, PacketTag.PADDING):
                continue
            raise KeyRingFormatError(f"Unexpected packet (tag {packet.tag}) before secret key")
        elif packet.tag == PacketTag.SECRET_SUBKEY:
            current = SecretKey.from_packet(packet.body, is_subkey=True)
            rings[-1].keys.append(current)
        elif packet.tag == PacketTag.USER_ID:
            current = rings[-1].primary
            current.user_ids.append(packet.body.decode("utf-8", errors="replace"))
        elif packet.tag == PacketTag.USER_ATTRIBUTE:
            current = rings[-1].primary
        elif packet.tag == PacketTag.SIGNATURE and current is not None:
            signature = SelfSignature.parse(packet.body)
            if signature is not None and signature.issued_by(rings[-1].primary):
                current.self_signatures.append(signature)

    if not rings:
        raise KeyRingFormatError("No secret key found in key ring material")
    return rings


def select_secret_key(
    rings: list[SecretKeyRing], fingerprint: bytes | None = None
) -> SecretKey | None:
    """Pick the signing key.

    With ``fingerprint`` the key with exactly that fingerprint is returned,
    whether or not it holds private material. Otherwise the first key in ring
    order with private material wins.
    """
    for ring in rings:
        for key in ring:
            if fingerprint is not None:
                if key.fingerprint == fingerprint:
                    return key
            elif key.has_private_key:
                return key
    return None
