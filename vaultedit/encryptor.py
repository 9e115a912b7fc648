import pathlib
from dataclasses import dataclass, field
from typing import List, Optional, Tuple
from .config import Settings
from .crypto import consteq
from .errors import ConsistencyError, KeyUnavailableError, VaultError, VaultIOError
from .hashing import ContentHasher
from .index import PendingIndex, VaultIndexStore
from .models import VaultIndexRecord
from .prompts import ConfirmationPort
from .storage import existing_mode, remove_file, safe_read_bytes, write_secure_file
from .logging import get_logger

LOG = get_logger(False)


@dataclass
class EncryptReport:
    pending: int = 0
    encrypted: List[VaultIndexRecord] = field(default_factory=list)
    tampered: List[pathlib.Path] = field(default_factory=list)
    failures: List[Tuple[pathlib.Path, VaultError]] = field(default_factory=list)
    halted_by: Optional[VaultError] = None
    aborted: bool = False

    @property
    def nothing_to_process(self) -> bool:
        return self.pending == 0 and self.halted_by is None

    @property
    def ok(self) -> bool:
        return self.halted_by is None and not self.failures


class _Abort(Exception):
    """User declined a confirmation; the rest of the batch is left pending."""


class Encryptor:
    """
    Re-encrypts every registered vault entry back to its original location.

    A record without its vault entry, or one that cannot be parsed, halts the
    whole batch: later records stay on disk untouched for a future run.
    """

    def __init__(
        self,
        settings: Settings,
        engine,
        store: VaultIndexStore,
        hasher: ContentHasher,
        port: ConfirmationPort,
    ):
        self.settings = settings
        self.engine = engine
        self.store = store
        self.hasher = hasher
        self.port = port

    def process_pending(self) -> EncryptReport:
        report = EncryptReport()
        try:
            pending = list(self.store.list_pending())
        except VaultError as exc:
            return self._halt(report, exc)

        report.pending = len(pending)
        if not pending:
            self.port.info("Nothing to process: no pending index records in the vault")
            LOG.info("encrypt_nothing_pending", vault=str(self.store.root))
            return report

        for item in pending:
            try:
                self._process(item, report)
            except _Abort:
                report.aborted = True
                self.port.info("↷ Aborted; remaining records left pending")
                LOG.info("encrypt_aborted", index=str(item.index_path))
                break
            except (KeyUnavailableError, VaultIOError) as exc:
                LOG.error("encrypt_failed", index=str(item.index_path), error=str(exc))
                self.port.error(f"Encrypt failed for {item.vault_path}: {exc}")
                report.failures.append((item.vault_path, exc))
            except VaultError as exc:
                return self._halt(report, exc)
        return report

    def _halt(self, report: EncryptReport, exc: VaultError) -> EncryptReport:
        LOG.error("encrypt_halted", error=str(exc), kind=type(exc).__name__)
        self.port.error(f"{exc}; stopping, remaining records left pending")
        report.halted_by = exc
        return report

    def _process(self, item: PendingIndex, report: EncryptReport):
        vault_path = item.vault_path
        if not vault_path.is_file():
            raise ConsistencyError(f"index {item.index_path.name} has no matching vault entry", vault_path)
        record = self.store.read(item.index_path)
        original = record.original_path

        if original.exists():
            if not self._unchanged(record):
                report.tampered.append(original)
                self.port.warn(
                    f"{original} changed since it was decrypted (hash mismatch); "
                    "re-encrypting will overwrite those changes"
                )
                LOG.warning("original_modified", original=str(original), expected=record.content_hash)
            if not self.port.confirm(f"Overwrite {original} with re-encrypted {vault_path.name}?", default=True):
                raise _Abort()

        try:
            ciphertext = self.engine.encrypt(safe_read_bytes(vault_path), self.settings.recipient)
            original.parent.mkdir(parents=True, exist_ok=True)
            write_secure_file(original, ciphertext, mode=existing_mode(original))
        except VaultError:
            raise
        except OSError as exc:
            raise VaultIOError(f"cannot write re-encrypted file ({exc.strerror or exc})", original) from exc
        LOG.info("encrypted", vault_path=str(vault_path), original=str(original))
        self.port.info(f"✔ Encrypted {vault_path} -> {original}")
        report.encrypted.append(record)

        if not self.port.confirm(f"Delete plaintext {vault_path} and its index?", default=True):
            raise _Abort()
        try:
            remove_file(vault_path)
            self.store.delete(vault_path)
        except VaultError:
            raise
        except OSError as exc:
            raise VaultIOError(f"cannot remove plaintext ({exc.strerror or exc})", vault_path) from exc
        LOG.info("vault_entry_removed", vault_path=str(vault_path))

    def _unchanged(self, record: VaultIndexRecord) -> bool:
        """Compare the original's current digest with the one captured at decrypt time."""
        try:
            current = self.hasher.digest_file(record.original_path)
        except OSError as exc:
            LOG.warning("original_unreadable", original=str(record.original_path), error=str(exc))
            return False
        return consteq(current, record.content_hash)
