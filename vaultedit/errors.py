import pathlib
from typing import Optional


class VaultError(Exception):
    """Base class for every error the vault workflow reports to the user."""

    def __init__(self, message: str, path: Optional[pathlib.Path] = None):
        super().__init__(message)
        self.message = message
        self.path = path

    def __str__(self) -> str:
        if self.path is not None:
            return f"{self.message}: {self.path}"
        return self.message


class NotFoundError(VaultError, FileNotFoundError):
    """Input file does not exist."""


class FormatError(VaultError, ValueError):
    """Content is not a recognised encrypted payload (or is corrupt)."""


class KeyUnavailableError(VaultError, LookupError):
    """No usable key for the requested decrypt or encrypt."""


class IndexParseError(VaultError, ValueError):
    """A vault index record is missing a field or cannot be read."""


class ConsistencyError(VaultError):
    """An index record exists without its vault entry."""


class VaultPermissionError(VaultError, PermissionError):
    """Vault directory is a symlink or readable by group/others."""


class VaultIOError(VaultError):
    """A filesystem operation on a vault entry or original file failed."""
