import os, pathlib, stat, tempfile
from typing import Optional
from .errors import ConsistencyError, VaultPermissionError
from .logging import get_logger

LOG = get_logger(False)

NOFOLLOW_FLAG = getattr(os, "O_NOFOLLOW", 0)

def ensure_not_symlink(path: pathlib.Path, label: str):
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        return
    if stat.S_ISLNK(st.st_mode):
        raise VaultPermissionError(f"{label} is a symlink, which is not allowed", path)

def ensure_regular_file(path: pathlib.Path, label: str, allow_missing: bool = False):
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        if allow_missing:
            return
        raise
    if not stat.S_ISREG(st.st_mode):
        raise ConsistencyError(f"{label} is not a regular file", path)
    if st.st_nlink > 1:
        raise ConsistencyError(f"{label} has unexpected hard links", path)

def safe_read_bytes(path: pathlib.Path) -> bytes:
    """
    Open and read a vault file while holding the descriptor, refusing symlinks.
    """
    ensure_regular_file(path, "Vault file")
    flags = os.O_RDONLY
    if NOFOLLOW_FLAG:
        flags |= NOFOLLOW_FLAG
    fd = os.open(path, flags)
    with os.fdopen(fd, "rb") as f:
        data = f.read()
    return data

def write_secure_file(path, data: bytes, mode: int = 0o600):
    """Atomically replace `path` with `data` (temp file + rename), leaving it at `mode`."""
    path = pathlib.Path(path)
    ensure_not_symlink(path.parent, "Parent directory")
    ensure_not_symlink(path, "Target file")
    fd, tmp_path = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as f:
            f.write(data)
            f.flush()
            os.fsync(f.fileno())
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    finally:
        try:
            os.unlink(tmp_path)
        except FileNotFoundError:
            pass

def existing_mode(path: pathlib.Path, default: int = 0o600) -> int:
    """Permission bits of `path`, or `default` when it does not exist."""
    try:
        return stat.S_IMODE(os.stat(path).st_mode)
    except FileNotFoundError:
        return default

def remove_file(path: pathlib.Path) -> bool:
    """Unlink a vault file; returns False if it was already gone."""
    ensure_not_symlink(path, "Vault file")
    try:
        os.unlink(path)
    except FileNotFoundError:
        return False
    return True

def check_vault_permissions(path: pathlib.Path):
    if os.name != "posix":
        return  # only enforce on Linux/Unix
    try:
        st = os.lstat(path)
    except FileNotFoundError:
        # Directory not there yet -> will be created
        return
    if stat.S_ISLNK(st.st_mode):
        raise VaultPermissionError("Vault directory cannot be a symlink", path)
    if not stat.S_ISDIR(st.st_mode):
        raise VaultPermissionError("Vault path is not a directory", path)
    # Group or Others have any permission? -> too open
    if st.st_mode & (stat.S_IRWXG | stat.S_IRWXO):
        raise VaultPermissionError(
            f"Vault directory is too open ({oct(stat.S_IMODE(st.st_mode))}). "
            f"Fix with: chmod 700 {path}",
            path,
        )

def canonicalize_path(path: pathlib.Path) -> pathlib.Path:
    """
    Return an absolute, symlink-resolved version of the provided path.
    Ensures vault operations always operate on canonical paths.
    """
    p = pathlib.Path(path).expanduser()
    return p.resolve(strict=False)

class VaultRoot:
    """
    The vault directory shared by the Decryptor and Encryptor.

    `ensure()` validates an existing directory and creates a missing one with
    mode 0700. An existing directory with group/other bits set is refused,
    never repaired.
    """

    def __init__(self, root: pathlib.Path):
        self.configured = pathlib.Path(root).expanduser()
        self.root: Optional[pathlib.Path] = None

    def ensure(self) -> pathlib.Path:
        check_vault_permissions(self.configured.absolute())
        root = canonicalize_path(self.configured)
        if not root.exists():
            root.mkdir(parents=True, mode=0o700)
            if os.name == "posix":
                os.chmod(root, 0o700)
            LOG.info("vault_created", vault=str(root))
        check_vault_permissions(root)
        self.root = root
        return root
