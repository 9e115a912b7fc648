import base64, binascii, os, pathlib, re
from typing import Callable, Dict, Iterator, Optional, Tuple
from nacl.public import PrivateKey, PublicKey
from pydantic import ValidationError
from .crypto import aead_decrypt, aead_encrypt, gen_nonce, kdf_argon2id, key_id, zero_bytes
from .errors import KeyUnavailableError
from .models import KeyFile
from .storage import ensure_not_symlink, write_secure_file
from .logging import get_logger

LOG = get_logger(False)

def b64e(b: bytes) -> str: return base64.b64encode(b).decode("ascii")
def b64d(s: str) -> bytes: return base64.b64decode(s.encode("ascii"), validate=True)

PUBLIC_SUFFIX = ".pub"
SECRET_SUFFIX = ".key"
SECRET_WRAP_CONTEXT = b"vaultedit-secret"
NAME_PATTERN = re.compile(r"^[A-Za-z0-9._-]{1,64}$")

PassphraseFn = Callable[[str], bytes]


def _no_passphrase(name: str) -> bytes:
    raise KeyUnavailableError(f"secret key '{name}' is passphrase protected and no passphrase source is configured")


def _validate_name(name: str) -> str:
    if not NAME_PATTERN.fullmatch(name) or name.startswith("."):
        raise ValueError("invalid key name: use letters, numbers, dot, underscore, dash only")
    return name


class Keyring:
    """
    Directory of Curve25519 key pairs: `<name>.pub` (base64 public key) and
    `<name>.key` (`KeyFile` JSON, optionally wrapped under a passphrase).
    """

    def __init__(self, root: pathlib.Path, identity: str = "default", passphrase: PassphraseFn = _no_passphrase):
        self.root = pathlib.Path(root).expanduser()
        self.identity = identity
        self.passphrase = passphrase
        self._unlocked: Dict[bytes, PrivateKey] = {}

    def _mkroot(self):
        ensure_not_symlink(self.root, "Keyring directory")
        self.root.mkdir(parents=True, exist_ok=True)
        if os.name == "posix":
            os.chmod(self.root, 0o700)

    def generate(self, name: str, passphrase: Optional[bytes] = None) -> PublicKey:
        """Create a new key pair; refuses to overwrite an existing one."""
        name = _validate_name(name)
        self._mkroot()
        pub_path = self.root / f"{name}{PUBLIC_SUFFIX}"
        key_path = self.root / f"{name}{SECRET_SUFFIX}"
        if pub_path.exists() or key_path.exists():
            raise FileExistsError(f"key '{name}' already exists in {self.root}")

        private_key = PrivateKey.generate()
        public_key = private_key.public_key
        secret = bytearray(bytes(private_key))
        if passphrase:
            salt = os.urandom(16)
            nonce = gen_nonce()
            wrap_key = kdf_argon2id(passphrase, salt)
            keyfile = KeyFile(
                public_b64=b64e(bytes(public_key)),
                kdf_salt_b64=b64e(salt),
                nonce_b64=b64e(nonce),
                wrapped_secret_b64=b64e(aead_encrypt(wrap_key, nonce, bytes(secret), SECRET_WRAP_CONTEXT)),
            )
            zero_bytes(bytearray(wrap_key))
        else:
            keyfile = KeyFile(public_b64=b64e(bytes(public_key)), secret_b64=b64e(bytes(secret)))
        zero_bytes(secret)

        write_secure_file(key_path, keyfile.model_dump_json(indent=2, exclude_none=True).encode())
        write_secure_file(pub_path, (keyfile.public_b64 + "\n").encode("ascii"), mode=0o644)
        LOG.info("key_generated", name=name, keyring=str(self.root), protected=keyfile.protected)
        return public_key

    def public_key(self, recipient: Optional[str] = None) -> PublicKey:
        """
        Resolve a recipient to a public key. `None` means the keyring's own
        identity; otherwise a key name in the keyring or a path to a `.pub` file.
        """
        name = recipient or self.identity
        candidates = []
        if NAME_PATTERN.fullmatch(name):
            candidates.append(self.root / f"{name}{PUBLIC_SUFFIX}")
        if name.endswith(PUBLIC_SUFFIX) or os.sep in name or "/" in name:
            candidates.append(pathlib.Path(name).expanduser())
        for path in candidates:
            if path.is_file():
                return self._read_public(path)
        raise KeyUnavailableError(f"no public key for recipient '{name}'", self.root)

    def _read_public(self, path: pathlib.Path) -> PublicKey:
        try:
            raw = b64d(path.read_text().strip())
            return PublicKey(raw)
        except (OSError, ValueError, binascii.Error, TypeError) as exc:
            raise KeyUnavailableError(f"unreadable public key ({exc})", path) from exc

    def _secret_files(self) -> Iterator[Tuple[str, pathlib.Path, KeyFile]]:
        if not self.root.is_dir():
            return
        for path in sorted(self.root.glob(f"*{SECRET_SUFFIX}")):
            try:
                keyfile = KeyFile.model_validate_json(path.read_text())
            except (OSError, ValidationError) as exc:
                LOG.warning("keyfile_unreadable", path=str(path), error=str(exc))
                continue
            yield path.name[:-len(SECRET_SUFFIX)], path, keyfile

    def private_key_for(self, kid: bytes) -> PrivateKey:
        """Find and unlock the secret key whose public key id is `kid`."""
        if kid in self._unlocked:
            return self._unlocked[kid]
        for name, path, keyfile in self._secret_files():
            try:
                public_key = PublicKey(b64d(keyfile.public_b64))
            except (ValueError, binascii.Error, TypeError):
                continue
            if key_id(public_key) != kid:
                continue
            private_key = self._unlock(name, path, keyfile)
            if private_key.public_key != public_key:
                raise KeyUnavailableError("secret key does not match its public key", path)
            self._unlocked[kid] = private_key
            return private_key
        raise KeyUnavailableError(f"no secret key for key id {kid.hex()}", self.root)

    def _unlock(self, name: str, path: pathlib.Path, keyfile: KeyFile) -> PrivateKey:
        try:
            if not keyfile.protected:
                if keyfile.secret_b64 is None:
                    raise KeyUnavailableError("key file holds no secret key", path)
                return PrivateKey(b64d(keyfile.secret_b64))
            wrap_key = kdf_argon2id(self.passphrase(name), b64d(keyfile.kdf_salt_b64))
            try:
                secret = aead_decrypt(
                    wrap_key,
                    b64d(keyfile.nonce_b64),
                    b64d(keyfile.wrapped_secret_b64),
                    SECRET_WRAP_CONTEXT,
                )
            finally:
                zero_bytes(bytearray(wrap_key))
            return PrivateKey(secret)
        except (ValueError, binascii.Error, TypeError) as exc:
            LOG.error("key_unlock_failed", name=name, path=str(path), error=str(exc))
            raise KeyUnavailableError(f"cannot unlock secret key '{name}' ({exc})", path) from exc
