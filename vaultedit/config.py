from pydantic import BaseModel, ConfigDict
from typing import Optional, Tuple
import os, pathlib

DATA_HOME = pathlib.Path.home() / ".local" / "share" / "vaultedit"
CIPHER_SUFFIXES = (".vedt", ".gpg", ".pgp", ".asc", ".enc")


class Settings(BaseModel):
    """Immutable run configuration handed to every component at construction."""
    model_config = ConfigDict(frozen=True)

    vault_root: pathlib.Path
    keyring_dir: pathlib.Path
    recipient: Optional[str] = None      # None encrypts to `identity`
    identity: str = "default"
    interactive: bool = True
    cipher_suffixes: Tuple[str, ...] = CIPHER_SUFFIXES

    @classmethod
    def from_env(cls, **overrides) -> "Settings":
        """Build settings from VAULTEDIT_* variables; non-None overrides win."""
        values = dict(
            vault_root=pathlib.Path(os.environ.get("VAULTEDIT_DIR", DATA_HOME / "vault")).expanduser(),
            keyring_dir=pathlib.Path(os.environ.get("VAULTEDIT_KEYRING", DATA_HOME / "keys")).expanduser(),
            recipient=os.environ.get("VAULTEDIT_RECIPIENT") or None,
            identity=os.environ.get("VAULTEDIT_IDENTITY", "default"),
        )
        values.update({k: v for k, v in overrides.items() if v is not None})
        return cls(**values)
