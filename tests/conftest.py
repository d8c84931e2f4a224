"""Pytest configuration and fixtures."""

import gc
import hashlib
import os
import shutil
import socketserver
import stat
import struct
import tempfile
import threading
import time
from collections.abc import Callable, Generator
from dataclasses import dataclass, field
from pathlib import Path

import pytest
from cryptography.hazmat.decrepit.ciphers import algorithms as decrepit_algorithms
from cryptography.hazmat.primitives import hashes, serialization
from cryptography.hazmat.primitives.asymmetric import ec, ed25519, padding, rsa, x25519
from cryptography.hazmat.primitives.asymmetric.utils import Prehashed, encode_dss_signature
from cryptography.hazmat.primitives.ciphers import Cipher, algorithms, modes

from pgpsign.config import Settings
from pgpsign.openpgp.armor import armor, dearmor
from pgpsign.openpgp.constants import (
    OID_ED25519_LEGACY,
    OID_NIST_P256,
    HashAlgorithm,
    PacketTag,
    PublicKeyAlgorithm,
    SignatureType,
    SubpacketType,
    SymmetricAlgorithm,
)
from pgpsign.openpgp.keys import S2K, PrivateKeyHandle, decode_s2k_count
from pgpsign.openpgp.packets import Reader, encode_mpi, iter_packets, write_packet
from pgpsign.openpgp.signature import (
    SignatureGenerator,
    encode_subpacket,
    issuer_fingerprint_subpacket,
)

USER_ID = "Test Signer <signer@example.com>"
PASSPHRASE = "correct horse battery staple"


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for tests."""
    tmpdir = tempfile.mkdtemp()
    try:
        yield Path(tmpdir)
    finally:
        # Force garbage collection to release any file handles
        gc.collect()
        shutil.rmtree(tmpdir, ignore_errors=True)


@pytest.fixture
def sample_files(temp_dir: Path) -> list[Path]:
    """Create a few files to sign."""
    build = temp_dir / "target"
    build.mkdir()
    files = []

    jar = build / "library-1.0.jar"
    jar.write_bytes(b"PK\x03\x04" + bytes(range(256)) * 64)
    files.append(jar)

    pom = build / "library-1.0.pom"
    pom.write_text("<project><artifactId>library</artifactId></project>\n")
    files.append(pom)

    return files


@pytest.fixture
def override_settings(temp_dir: Path) -> Generator[Settings, None, None]:
    """Provide isolated pgpsign settings scoped to tests."""

    import pgpsign.config as config_module

    original_settings = getattr(config_module, "_settings", None)

    config_dir = temp_dir / "appconfig"
    config_dir.mkdir(parents=True, exist_ok=True)

    settings = config_module.Settings(
        _env_file=None,
        config_dir=config_dir,
        agent_socket_locations="",
    )

    config_module._settings = settings

    try:
        yield settings
    finally:
        config_module._settings = original_settings


# ---------------------------------------------------------------------------
# OpenPGP key material
# ---------------------------------------------------------------------------


def cfb_encrypt(algorithm, iv: bytes, plaintext: bytes) -> bytes:
    """OpenPGP CFB encryption (no resync), block by block."""
    encryptor = Cipher(algorithm, modes.ECB()).encryptor()
    block_size = len(iv)
    previous = iv
    ciphertext = b""
    for offset in range(0, len(plaintext), block_size):
        keystream = encryptor.update(previous)
        chunk = bytes(a ^ b for a, b in zip(plaintext[offset : offset + block_size], keystream))
        ciphertext += chunk
        previous = chunk
    return ciphertext


_TEST_CIPHERS = {
    SymmetricAlgorithm.AES128: algorithms.AES,
    SymmetricAlgorithm.CAMELLIA128: decrepit_algorithms.Camellia,
}


def _key_hash_prefix(public_body: bytes) -> bytes:
    return b"\x99" + struct.pack(">H", len(public_body)) + public_body


@dataclass
class TestKey:
    """Generated secret key ring plus what a test needs to check its use."""

    __test__ = False

    algorithm: int
    secret_packets: bytes
    public_packets: bytes
    fingerprint: bytes
    private_key: object
    passphrase: str | None = None
    user_id: str | None = USER_ID
    signing_fingerprint: bytes | None = None

    @property
    def armored(self) -> bytes:
        return armor(self.secret_packets, "PRIVATE KEY BLOCK").encode("ascii")

    @property
    def public_armored(self) -> bytes:
        return armor(self.public_packets, "PUBLIC KEY BLOCK").encode("ascii")

    @property
    def fingerprint_hex(self) -> str:
        return self.fingerprint.hex().upper()

    @property
    def key_id_int(self) -> int:
        return int.from_bytes(self.fingerprint[-8:], "big")


@dataclass
class _KeyParts:
    algorithm: int
    public_params: bytes
    secret_params: bytes
    private_key: object
    created: int

    @property
    def public_body(self) -> bytes:
        return bytes([4]) + struct.pack(">I", self.created) + bytes([self.algorithm]) + self.public_params

    @property
    def fingerprint(self) -> bytes:
        return hashlib.sha1(_key_hash_prefix(self.public_body)).digest()

    def handle(self) -> PrivateKeyHandle:
        return PrivateKeyHandle(self.algorithm, self.private_key)


class KeyRingBuilder:
    """Build transferable secret keys the way GnuPG exports them."""

    def __init__(self) -> None:
        self._rsa: rsa.RSAPrivateKey | None = None

    # -- key generation ----------------------------------------------------

    def _rsa_parts(self, created: int) -> _KeyParts:
        if self._rsa is None:
            self._rsa = rsa.generate_private_key(public_exponent=65537, key_size=2048)
        numbers = self._rsa.private_numbers()
        public = numbers.public_numbers
        secret = (
            encode_mpi(numbers.d)
            + encode_mpi(numbers.p)
            + encode_mpi(numbers.q)
            + encode_mpi(pow(numbers.p, -1, numbers.q))
        )
        return _KeyParts(
            PublicKeyAlgorithm.RSA,
            encode_mpi(public.n) + encode_mpi(public.e),
            secret,
            self._rsa,
            created,
        )

    @staticmethod
    def _eddsa_parts(created: int) -> _KeyParts:
        private_key = ed25519.Ed25519PrivateKey.generate()
        public = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        seed = private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        params = bytes([len(OID_ED25519_LEGACY)]) + OID_ED25519_LEGACY + encode_mpi(b"\x40" + public)
        return _KeyParts(PublicKeyAlgorithm.EDDSA_LEGACY, params, encode_mpi(seed), private_key, created)

    @staticmethod
    def _ed25519_parts(created: int) -> _KeyParts:
        private_key = ed25519.Ed25519PrivateKey.generate()
        public = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        seed = private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        return _KeyParts(PublicKeyAlgorithm.ED25519, public, seed, private_key, created)

    @staticmethod
    def _ecdsa_parts(created: int) -> _KeyParts:
        private_key = ec.generate_private_key(ec.SECP256R1())
        point = private_key.public_key().public_bytes(
            serialization.Encoding.X962, serialization.PublicFormat.UncompressedPoint
        )
        params = bytes([len(OID_NIST_P256)]) + OID_NIST_P256 + encode_mpi(point)
        secret = encode_mpi(private_key.private_numbers().private_value)
        return _KeyParts(PublicKeyAlgorithm.ECDSA, params, secret, private_key, created)

    @staticmethod
    def _x25519_parts(created: int) -> _KeyParts:
        private_key = x25519.X25519PrivateKey.generate()
        public = private_key.public_key().public_bytes(
            serialization.Encoding.Raw, serialization.PublicFormat.Raw
        )
        secret = private_key.private_bytes(
            serialization.Encoding.Raw,
            serialization.PrivateFormat.Raw,
            serialization.NoEncryption(),
        )
        return _KeyParts(PublicKeyAlgorithm.X25519, public, secret, private_key, created)

    # -- packet assembly ---------------------------------------------------

    @staticmethod
    def _secret_body(
        parts: _KeyParts,
        passphrase: str | None,
        cipher: int = SymmetricAlgorithm.AES128,
    ) -> bytes:
        if passphrase is None:
            checksum = struct.pack(">H", sum(parts.secret_params) & 0xFFFF)
            return parts.public_body + b"\x00" + parts.secret_params + checksum

        salt = os.urandom(8)
        count_byte = 0x60
        s2k = S2K(3, HashAlgorithm.SHA256, salt, decode_s2k_count(count_byte))
        session_key = s2k.derive_key(passphrase.encode("utf-8"), 16)
        iv = os.urandom(16)
        plaintext = parts.secret_params + hashlib.sha1(parts.secret_params).digest()
        return (
            parts.public_body
            + bytes([254, cipher, 3, HashAlgorithm.SHA256])
            + salt
            + bytes([count_byte])
            + iv
            + cfb_encrypt(_TEST_CIPHERS[cipher](session_key), iv, plaintext)
        )

    @staticmethod
    def _stub_body(parts: _KeyParts) -> bytes:
        return parts.public_body + bytes([254, 0, 101, 0]) + b"GNU" + bytes([1])

    @staticmethod
    def _self_signature(
        signer: _KeyParts,
        signature_type: int,
        data: bytes,
        expires_in: int | None,
    ) -> bytes:
        extra = [
            issuer_fingerprint_subpacket(signer.fingerprint),
            encode_subpacket(SubpacketType.ISSUER_KEY_ID, signer.fingerprint[-8:]),
        ]
        if expires_in is not None:
            extra.append(
                encode_subpacket(SubpacketType.KEY_EXPIRATION_TIME, struct.pack(">I", expires_in))
            )
        generator = SignatureGenerator(
            signer.handle(),
            signature_type=signature_type,
            hashed_subpackets=extra,
        )
        generator.update(data)
        return generator.finish(created=signer.created).packet

    def _certification(self, parts: _KeyParts, user_id: str, expires_in: int | None) -> bytes:
        encoded = user_id.encode("utf-8")
        data = (
            _key_hash_prefix(parts.public_body)
            + b"\xb4"
            + struct.pack(">I", len(encoded))
            + encoded
        )
        return self._self_signature(
            parts, SignatureType.POSITIVE_CERTIFICATION, data, expires_in
        )

    def _build(
        self,
        parts: _KeyParts,
        *,
        passphrase: str | None,
        user_id: str | None,
        expires_in: int | None,
        cipher: int = SymmetricAlgorithm.AES128,
    ) -> TestKey:
        secret = write_packet(
            PacketTag.SECRET_KEY, self._secret_body(parts, passphrase, cipher)
        )
        public = write_packet(PacketTag.PUBLIC_KEY, parts.public_body)
        if user_id is not None:
            uid_packet = write_packet(PacketTag.USER_ID, user_id.encode("utf-8"))
            certification = self._certification(parts, user_id, expires_in)
            secret += uid_packet + certification
            public += uid_packet + certification
        return TestKey(
            algorithm=parts.algorithm,
            secret_packets=secret,
            public_packets=public,
            fingerprint=parts.fingerprint,
            private_key=parts.private_key,
            passphrase=passphrase,
            user_id=user_id,
            signing_fingerprint=parts.fingerprint,
        )

    # -- public API ----------------------------------------------------------

    def rsa_key(
        self,
        *,
        passphrase: str | None = None,
        user_id: str | None = USER_ID,
        expires_in: int | None = None,
        created: int | None = None,
        cipher: int = SymmetricAlgorithm.AES128,
    ) -> TestKey:
        parts = self._rsa_parts(created or int(time.time()) - 3600)
        return self._build(
            parts,
            passphrase=passphrase,
            user_id=user_id,
            expires_in=expires_in,
            cipher=cipher,
        )

    def eddsa_key(self, **kwargs) -> TestKey:
        created = kwargs.pop("created", None) or int(time.time()) - 3600
        return self._build(self._eddsa_parts(created), **self._defaults(kwargs))

    def ed25519_key(self, **kwargs) -> TestKey:
        created = kwargs.pop("created", None) or int(time.time()) - 3600
        return self._build(self._ed25519_parts(created), **self._defaults(kwargs))

    def ecdsa_key(self, **kwargs) -> TestKey:
        created = kwargs.pop("created", None) or int(time.time()) - 3600
        return self._build(self._ecdsa_parts(created), **self._defaults(kwargs))

    def x25519_key(self, **kwargs) -> TestKey:
        kwargs.setdefault("user_id", None)
        created = kwargs.pop("created", None) or int(time.time()) - 3600
        return self._build(self._x25519_parts(created), **self._defaults(kwargs))

    def stub_primary_key(
        self,
        *,
        passphrase: str | None = None,
        subkey_expires_in: int | None = None,
    ) -> TestKey:
        """GnuPG "dummy" primary (no private part) with an EdDSA signing subkey."""
        created = int(time.time()) - 3600
        primary = self._eddsa_parts(created)
        subkey = self._eddsa_parts(created)

        uid_packet = write_packet(PacketTag.USER_ID, USER_ID.encode("utf-8"))
        certification = self._certification(primary, USER_ID, None)
        binding = self._self_signature(
            primary,
            SignatureType.SUBKEY_BINDING,
            _key_hash_prefix(primary.public_body) + _key_hash_prefix(subkey.public_body),
            subkey_expires_in,
        )

        secret = (
            write_packet(PacketTag.SECRET_KEY, self._stub_body(primary))
            + uid_packet
            + certification
            + write_packet(PacketTag.SECRET_SUBKEY, self._secret_body(subkey, passphrase))
            + binding
        )
        public = (
            write_packet(PacketTag.PUBLIC_KEY, primary.public_body)
            + uid_packet
            + certification
            + write_packet(PacketTag.PUBLIC_SUBKEY, subkey.public_body)
            + binding
        )
        return TestKey(
            algorithm=subkey.algorithm,
            secret_packets=secret,
            public_packets=public,
            fingerprint=primary.fingerprint,
            private_key=subkey.private_key,
            passphrase=passphrase,
            signing_fingerprint=subkey.fingerprint,
        )

    @staticmethod
    def _defaults(kwargs: dict) -> dict:
        return {
            "passphrase": kwargs.get("passphrase"),
            "user_id": kwargs.get("user_id", USER_ID),
            "expires_in": kwargs.get("expires_in"),
            "cipher": kwargs.get("cipher", SymmetricAlgorithm.AES128),
        }


@pytest.fixture(scope="session")
def key_builder() -> KeyRingBuilder:
    """Session-wide key builder (the RSA key is generated once)."""
    return KeyRingBuilder()


# ---------------------------------------------------------------------------
# Signature checking
# ---------------------------------------------------------------------------


@dataclass
class ParsedSignature:
    version: int
    signature_type: int
    algorithm: int
    hash_algorithm: int
    hashed_area: bytes
    unhashed_area: bytes
    left16: bytes
    fields: bytes
    hashed_header: bytes
    subpackets: dict[int, bytes] = field(default_factory=dict)


def parse_signature(armored: str) -> ParsedSignature:
    packets = list(iter_packets(dearmor(armored)))
    assert len(packets) == 1
    assert packets[0].tag == PacketTag.SIGNATURE
    body = packets[0].body
    reader = Reader(body)
    version = reader.read_byte()
    signature_type = reader.read_byte()
    algorithm = reader.read_byte()
    hash_algorithm = reader.read_byte()
    hashed = reader.read(reader.read_uint16())
    header_end = reader.offset
    unhashed = reader.read(reader.read_uint16())
    left16 = reader.read(2)
    parsed = ParsedSignature(
        version,
        signature_type,
        algorithm,
        hash_algorithm,
        hashed,
        unhashed,
        left16,
        reader.remaining(),
        body[:header_end],
    )
    sub_reader = Reader(hashed)
    while not sub_reader.at_end():
        length = sub_reader.read_byte()
        payload = sub_reader.read(length)
        parsed.subpackets[payload[0] & 0x7F] = payload[1:]
    return parsed


def check_signature(armored: str, data: bytes, key: TestKey) -> ParsedSignature:
    """Verify ``armored`` over ``data`` independently of the signing code."""
    parsed = parse_signature(armored)
    assert parsed.version == 4
    assert parsed.signature_type == SignatureType.BINARY_DOCUMENT
    assert parsed.hash_algorithm == HashAlgorithm.SHA512

    digest = hashlib.sha512(
        data
        + parsed.hashed_header
        + b"\x04\xff"
        + struct.pack(">I", len(parsed.hashed_header))
    ).digest()
    assert parsed.left16 == digest[:2]

    public_key = key.private_key.public_key()
    reader = Reader(parsed.fields)
    if parsed.algorithm == PublicKeyAlgorithm.RSA:
        size = (public_key.key_size + 7) // 8
        signature = reader.read_mpi_bytes().rjust(size, b"\x00")
        public_key.verify(signature, digest, padding.PKCS1v15(), Prehashed(hashes.SHA512()))
    elif parsed.algorithm == PublicKeyAlgorithm.EDDSA_LEGACY:
        r = reader.read_mpi_bytes().rjust(32, b"\x00")
        s = reader.read_mpi_bytes().rjust(32, b"\x00")
        public_key.verify(r + s, digest)
    elif parsed.algorithm == PublicKeyAlgorithm.ED25519:
        public_key.verify(reader.read(64), digest)
    elif parsed.algorithm == PublicKeyAlgorithm.ECDSA:
        r, s = reader.read_mpi(), reader.read_mpi()
        public_key.verify(
            encode_dss_signature(r, s), digest, ec.ECDSA(Prehashed(hashes.SHA512()))
        )
    else:
        raise AssertionError(f"unexpected algorithm {parsed.algorithm}")
    return parsed


@pytest.fixture
def verify_signature() -> Callable[[str, bytes, TestKey], ParsedSignature]:
    return check_signature


# ---------------------------------------------------------------------------
# Fake gpg-agent
# ---------------------------------------------------------------------------


class _AgentHandler(socketserver.StreamRequestHandler):
    def handle(self) -> None:
        agent: FakeAgent = self.server.agent  # type: ignore[attr-defined]
        self._reply(agent.greeting)
        for raw in self.rfile:
            line = raw.decode("utf-8").rstrip("\n")
            agent.requests.append(line)
            if line.startswith("OPTION"):
                self._reply(agent.option_reply)
            elif line.startswith("GET_PASSPHRASE"):
                for status in agent.status_lines:
                    self._reply(status)
                if agent.passphrase is not None:
                    self._reply("OK " + agent.passphrase.encode("utf-8").hex().upper())
                else:
                    self._reply(agent.refusal)
                return
            else:
                self._reply("ERR 275 Unknown command")

    def _reply(self, line: str) -> None:
        self.wfile.write(line.encode("utf-8") + b"\n")
        self.wfile.flush()


class FakeAgent:
    """A gpg-agent stand-in answering on a Unix socket from a thread."""

    def __init__(
        self,
        socket_path: Path,
        *,
        passphrase: str | None = None,
        greeting: str = "OK Pleased to meet you",
        option_reply: str = "OK",
        refusal: str = "ERR 67108922 No data <GPG Agent>",
        status_lines: tuple[str, ...] = (),
    ) -> None:
        self.socket_path = socket_path
        self.passphrase = passphrase
        self.greeting = greeting
        self.option_reply = option_reply
        self.refusal = refusal
        self.status_lines = status_lines
        self.requests: list[str] = []
        self._server = socketserver.ThreadingUnixStreamServer(str(socket_path), _AgentHandler)
        self._server.agent = self  # type: ignore[attr-defined]
        self._thread = threading.Thread(target=self._server.serve_forever, daemon=True)

    def start(self) -> "FakeAgent":
        self._thread.start()
        return self

    def stop(self) -> None:
        self._server.shutdown()
        self._server.server_close()

    @property
    def passphrase_requests(self) -> list[str]:
        return [request for request in self.requests if request.startswith("GET_PASSPHRASE")]


class AgentFactory:
    """Start fake agents below a short home directory (socket paths are length limited)."""

    def __init__(self) -> None:
        self.home = Path(tempfile.mkdtemp(prefix="pgpa"))
        self._agents: list[FakeAgent] = []

    def start(self, name: str = "S.gpg-agent", **kwargs) -> FakeAgent:
        agent = FakeAgent(self.home / name, **kwargs).start()
        self._agents.append(agent)
        return agent

    def close(self) -> None:
        for agent in self._agents:
            agent.stop()
        shutil.rmtree(self.home, ignore_errors=True)


@pytest.fixture
def fake_agent() -> Generator[AgentFactory, None, None]:
    factory = AgentFactory()
    try:
        yield factory
    finally:
        factory.close()


# ---------------------------------------------------------------------------
# Fake gpg executable
# ---------------------------------------------------------------------------

_FAKE_GPG = """#!/bin/sh
if [ "$1" = "--version" ]; then
  echo "gpg (GnuPG) {version}"
  echo "libgcrypt 1.8.5"
  exit 0
fi
printf '%s\\n' "$@" > "{args_log}"
output=""
previous=""
for arg in "$@"; do
  if [ "$previous" = "--output" ]; then output="$arg"; fi
  if [ "$arg" = "--passphrase-fd" ]; then cat > "{stdin_log}"; fi
  previous="$arg"
done
if [ -n "{fail}" ]; then
  if [ -n "$output" ]; then echo "-----BEGIN PGP SIGNATURE-----" > "$output"; fi
  echo "gpg: signing failed: No secret key" >&2
  exit 2
fi
(echo "-----BEGIN PGP SIGNATURE-----"; echo fake; echo "-----END PGP SIGNATURE-----") > "$output"
exit 0
"""


@dataclass
class FakeGpg:
    executable: Path
    args_log: Path
    stdin_log: Path

    def recorded_args(self) -> list[str]:
        return self.args_log.read_text().splitlines()


@pytest.fixture
def fake_gpg(temp_dir: Path) -> Callable[..., FakeGpg]:
    """Write a shell script impersonating gpg and recording its input."""
    if os.name == "nt":
        pytest.skip("fake gpg script needs a POSIX shell")

    def make(version: str = "2.2.19", *, fail: bool = False) -> FakeGpg:
        bin_dir = temp_dir / "bin"
        bin_dir.mkdir(exist_ok=True)
        script = bin_dir / "gpg"
        args_log = temp_dir / "gpg-args.txt"
        stdin_log = temp_dir / "gpg-stdin.txt"
        script.write_text(
            _FAKE_GPG.format(
                version=version,
                args_log=args_log,
                stdin_log=stdin_log,
                fail="yes" if fail else "",
            )
        )
        script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return FakeGpg(script, args_log, stdin_log)

    return make
