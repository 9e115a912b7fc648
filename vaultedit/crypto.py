from argon2.low_level import hash_secret_raw, Type
from nacl.bindings import (
    crypto_aead_xchacha20poly1305_ietf_encrypt,
    crypto_aead_xchacha20poly1305_ietf_decrypt,
    crypto_aead_xchacha20poly1305_ietf_KEYBYTES,
    crypto_aead_xchacha20poly1305_ietf_NPUBBYTES,
    crypto_box_SEALBYTES,
)
from nacl.encoding import HexEncoder, RawEncoder
from nacl.exceptions import CryptoError
from nacl.hash import blake2b
from nacl.public import PublicKey, SealedBox
from typing import Optional, Protocol
import os, hmac

from .errors import FormatError

NONCE_SIZE = crypto_aead_xchacha20poly1305_ietf_NPUBBYTES
KEY_SIZE = crypto_aead_xchacha20poly1305_ietf_KEYBYTES

ARGON2_PARAMS = dict(
    time_cost=3,
    memory_cost=256 * 1024,
    parallelism=2,
    hash_len=32,
    type=Type.ID,
)

MAGIC = b"VEDT"
FORMAT_VERSION = 1
KEY_ID_SIZE = 8
HEADER_SIZE = len(MAGIC) + 1 + KEY_ID_SIZE
DIGEST_SIZE = 32


def kdf_argon2id(password_bytes: bytes, salt: bytes) -> bytes:
    """Derive a 32-byte key from the user-supplied passphrase using Argon2id."""
    try:
        return hash_secret_raw(bytes(password_bytes), salt, **ARGON2_PARAMS)
    finally:
        zero_bytes(password_bytes)


def gen_nonce() -> bytes:
    """Return a cryptographically-random 24-byte nonce for XChaCha20-Poly1305."""
    return os.urandom(NONCE_SIZE)


def aead_encrypt(key: bytes, nonce: bytes, plaintext: bytes, ad: bytes) -> bytes:
    """Encrypt `plaintext` with XChaCha20-Poly1305 using the supplied nonce and AD."""
    return crypto_aead_xchacha20poly1305_ietf_encrypt(plaintext, ad, nonce, key)


def aead_decrypt(key: bytes, nonce: bytes, ciphertext: bytes, ad: bytes) -> bytes:
    """Decrypt a ciphertext produced by `aead_encrypt`, raising ValueError on failure."""
    try:
        return crypto_aead_xchacha20poly1305_ietf_decrypt(ciphertext, ad, nonce, key)
    except CryptoError as exc:
        raise ValueError("decryption failed") from exc


def consteq(a: str, b: str) -> bool:
    """Constant-time comparison helper for digests."""
    return hmac.compare_digest(a.encode(), b.encode())


def zero_bytes(b):
    """Best-effort zeroization for mutable buffers that held sensitive information."""
    if isinstance(b, bytearray):
        for i in range(len(b)):
            b[i] = 0
    elif isinstance(b, memoryview) and not b.readonly:
        b[:] = b"\x00" * len(b)


def key_id(public_key: PublicKey) -> bytes:
    """Short identifier of a public key, embedded in every ciphertext header."""
    return blake2b(bytes(public_key), digest_size=KEY_ID_SIZE, encoder=RawEncoder)


class CryptoEngine(Protocol):
    """What the vault workflow needs from a cryptographic backend."""

    def is_encrypted_format(self, data: bytes) -> bool: ...

    def decrypt(self, ciphertext: bytes) -> bytes: ...

    def encrypt(self, plaintext: bytes, recipient: Optional[str]) -> bytes: ...

    def digest(self, data: bytes) -> str: ...


class NaclEngine:
    """
    Curve25519 sealed-box engine backed by a `Keyring`.

    Ciphertext layout: MAGIC | version byte | recipient key id | sealed box.
    A `None` recipient encrypts to the keyring's own identity.
    """

    def __init__(self, keyring):
        self.keyring = keyring

    def is_encrypted_format(self, data: bytes) -> bool:
        if len(data) < HEADER_SIZE + crypto_box_SEALBYTES:
            return False
        return data[:len(MAGIC)] == MAGIC and data[len(MAGIC)] == FORMAT_VERSION

    def decrypt(self, ciphertext: bytes) -> bytes:
        if not self.is_encrypted_format(ciphertext):
            raise FormatError("not a recognised encrypted payload")
        kid = ciphertext[len(MAGIC) + 1:HEADER_SIZE]
        private_key = self.keyring.private_key_for(kid)
        try:
            return SealedBox(private_key).decrypt(ciphertext[HEADER_SIZE:])
        except CryptoError as exc:
            raise FormatError("ciphertext is corrupt or was not sealed for this key") from exc

    def encrypt(self, plaintext: bytes, recipient: Optional[str]) -> bytes:
        public_key = self.keyring.public_key(recipient)
        sealed = SealedBox(public_key).encrypt(plaintext)
        return MAGIC + bytes([FORMAT_VERSION]) + key_id(public_key) + sealed

    def digest(self, data: bytes) -> str:
        return blake2b(data, digest_size=DIGEST_SIZE, encoder=HexEncoder).decode("ascii")

