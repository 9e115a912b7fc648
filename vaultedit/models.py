from pydantic import BaseModel, field_validator
from typing import Optional
import pathlib, re

HEX_PATTERN = re.compile(r"^[0-9a-f]+$")


class VaultIndexRecord(BaseModel):
    """One decrypted vault entry waiting to be re-encrypted to its original location."""
    original_path: pathlib.Path      # where the ciphertext came from
    content_hash: str                # full digest of that ciphertext at decrypt time
    vault_path: pathlib.Path         # plaintext copy inside the vault
    decrypted_at: str = ""

    @field_validator("original_path", "vault_path")
    @classmethod
    def validate_absolute(cls, v: pathlib.Path):
        """Index records only ever hold absolute paths."""
        if not v.is_absolute():
            raise ValueError("path must be absolute")
        return v

    @field_validator("content_hash")
    @classmethod
    def validate_hash(cls, v: str):
        v = v.strip().lower()
        if not HEX_PATTERN.fullmatch(v):
            raise ValueError("content hash must be a non-empty hex string")
        return v


class KeyFile(BaseModel):
    """Secret key file stored in the keyring; the secret is either plain or Argon2id-wrapped."""
    version: int = 1
    public_b64: str
    secret_b64: Optional[str] = None
    kdf_salt_b64: Optional[str] = None
    nonce_b64: Optional[str] = None
    wrapped_secret_b64: Optional[str] = None

    @property
    def protected(self) -> bool:
        return self.wrapped_secret_b64 is not None
