import pathlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable, List, Optional, Tuple
from .config import Settings
from .errors import FormatError, NotFoundError, VaultError, VaultIOError
from .hashing import ContentHasher
from .index import VaultIndexStore, check_storable, now_timestamp
from .models import VaultIndexRecord
from .prompts import ConfirmationPort
from .storage import remove_file, write_secure_file
from .logging import get_logger

LOG = get_logger(False)


class Disposition(str, Enum):
    DELETE = "delete"
    REGISTER = "register"
    KEEP = "keep"


class Outcome(str, Enum):
    REGISTERED = "registered"
    KEPT = "kept"
    DELETED = "deleted"
    SKIPPED = "skipped"


@dataclass
class DecryptResult:
    input_path: pathlib.Path
    outcome: Outcome
    vault_path: Optional[pathlib.Path] = None
    record: Optional[VaultIndexRecord] = None
    replaced_index: bool = False


@dataclass
class DecryptSummary:
    results: List[DecryptResult] = field(default_factory=list)
    failures: List[Tuple[pathlib.Path, VaultError]] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failures


def vault_entry_name(input_path: pathlib.Path, short_hash: str, suffixes: Iterable[str]) -> str:
    """`<base name minus ciphertext suffix>.<short hash>`."""
    name = input_path.name
    suffix = input_path.suffix
    if suffix and suffix.lower() in suffixes and len(name) > len(suffix):
        name = name[:-len(suffix)]
    return f"{name}.{short_hash}"


class Decryptor:
    """Decrypts ciphertext files into content-addressed vault entries."""

    def __init__(
        self,
        settings: Settings,
        vault_root: pathlib.Path,
        engine,
        store: VaultIndexStore,
        hasher: ContentHasher,
        port: ConfirmationPort,
    ):
        self.settings = settings
        self.vault_root = pathlib.Path(vault_root)
        self.engine = engine
        self.store = store
        self.hasher = hasher
        self.port = port

    def decrypt(self, input_path) -> DecryptResult:
        """
        Decrypt one file into the vault and apply the chosen disposition.

        Raises NotFoundError / FormatError / KeyUnavailableError; never touches
        the input file.
        """
        path = pathlib.Path(input_path).expanduser().absolute()
        if not path.is_file():
            raise NotFoundError("no such file", path)
        path = path.resolve()

        try:
            ciphertext = path.read_bytes()
        except OSError as exc:
            raise NotFoundError(f"cannot read file ({exc.strerror})", path) from exc
        if not self.engine.is_encrypted_format(ciphertext):
            raise FormatError("not a recognised encrypted file", path)

        content_hash = self.hasher.digest(ciphertext)
        name = vault_entry_name(path, self.hasher.short(content_hash), self.settings.cipher_suffixes)
        vault_path = self.vault_root / name
        check_storable(path)
        check_storable(vault_path)

        if vault_path.exists():
            if not self.port.confirm(f"{vault_path} already exists. Overwrite?", default=True):
                self.port.info(f"↷ Skipped {path}")
                LOG.info("decrypt_skipped", path=str(path), vault_path=str(vault_path))
                return DecryptResult(path, Outcome.SKIPPED, vault_path)

        plaintext = self.engine.decrypt(ciphertext)
        write_secure_file(vault_path, plaintext)
        LOG.info("decrypted", path=str(path), vault_path=str(vault_path), hash=content_hash)
        self.port.info(f"✔ Decrypted {path} -> {vault_path}")

        replaced_index = self.store.delete(vault_path)
        if replaced_index:
            self.port.info(f"Removed stale index for {vault_path}")

        choice = self.port.choose(
            f"What should happen to {vault_path}? (delete now / register for re-encryption / keep untracked)",
            [d.value for d in Disposition],
            default=Disposition.REGISTER.value,
        )
        disposition = Disposition(choice)

        if disposition is Disposition.DELETE:
            remove_file(vault_path)
            LOG.info("plaintext_deleted", vault_path=str(vault_path))
            self.port.info(f"✔ Deleted {vault_path}")
            return DecryptResult(path, Outcome.DELETED, vault_path, replaced_index=replaced_index)

        if disposition is Disposition.KEEP:
            return DecryptResult(path, Outcome.KEPT, vault_path, replaced_index=replaced_index)

        record = VaultIndexRecord(
            original_path=path,
            content_hash=content_hash,
            vault_path=vault_path,
            decrypted_at=now_timestamp(),
        )
        self.store.write(record)
        self.port.info(f"✔ Registered {vault_path} for re-encryption")
        return DecryptResult(path, Outcome.REGISTERED, vault_path, record, replaced_index)

    def decrypt_all(self, paths: Iterable) -> DecryptSummary:
        """Run `decrypt` per path; a failure is reported and the next path is tried."""
        summary = DecryptSummary()
        for raw in paths:
            try:
                summary.results.append(self.decrypt(raw))
            except VaultError as exc:
                self._report_failure(raw, exc, summary)
            except OSError as exc:
                where = pathlib.Path(exc.filename or raw)
                error = VaultIOError(f"filesystem error ({exc.strerror or exc})", where)
                self._report_failure(raw, error, summary)
        return summary

    def _report_failure(self, raw, exc: VaultError, summary: DecryptSummary):
        LOG.error("decrypt_failed", path=str(raw), error=str(exc), kind=type(exc).__name__)
        self.port.error(f"Decrypt failed for {raw}: {exc}")
        summary.failures.append((pathlib.Path(raw), exc))
