"""
Read-only consistency and security checks for a vaultedit vault.

Covers:
- vault root ownership / permissions / symlinks
- index records that fail to parse or point at a missing vault entry
- originals that changed since decryption (needs a hasher)
- plaintext entries with loose permissions or without an index record
- temp files left behind by interrupted writes

Nothing is modified; `run()` returns a list of `CheckResult`.
"""
from __future__ import annotations

import os
import stat
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional

from .crypto import consteq
from .errors import VaultError
from .index import INDEX_SUFFIX, VaultIndexStore


class Severity(str, Enum):
    OK = "OK"
    WARNING = "WARNING"
    ERROR = "ERROR"


@dataclass
class CheckResult:
    id: str
    severity: Severity
    message: str
    path: Optional[Path] = None
    details: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "severity": self.severity.value,
            "message": self.message,
            "path": str(self.path) if self.path else None,
            "details": self.details or None,
        }


def _mode_bits(path: Path) -> int:
    """Return the permission bits (0o000–0o777) for a path without following symlinks."""
    return stat.S_IMODE(os.lstat(path).st_mode)


def _is_owned_by_current_user(path: Path) -> bool:
    return os.lstat(path).st_uid == os.getuid()


class VaultDoctor:
    def __init__(self, vault_root: Path, hasher=None) -> None:
        self.vault_root = Path(vault_root)
        self.store = VaultIndexStore(self.vault_root)
        self.hasher = hasher

    def run(self) -> List[CheckResult]:
        results = self._check_root()
        if any(r.severity == Severity.ERROR for r in results) and not self.vault_root.is_dir():
            return results

        tracked, index_results = self._check_indexes()
        results.extend(index_results)
        results.extend(self._check_entries(tracked))

        if not any(r.severity != Severity.OK for r in results):
            results.append(
                CheckResult(
                    id="summary_all_good",
                    severity=Severity.OK,
                    message="Vault passed all checks.",
                    path=self.vault_root,
                )
            )
        return results

    def _check_root(self) -> List[CheckResult]:
        p = self.vault_root
        try:
            st = os.lstat(p)
        except FileNotFoundError:
            return [CheckResult("vault_missing", Severity.ERROR, "Vault root does not exist.", p)]

        if stat.S_ISLNK(st.st_mode):
            return [CheckResult("vault_is_symlink", Severity.ERROR, "Vault root is a symlink. This is not allowed.", p)]
        if not stat.S_ISDIR(st.st_mode):
            return [CheckResult("vault_not_dir", Severity.ERROR, "Vault root is not a directory.", p)]

        results: List[CheckResult] = []
        if _is_owned_by_current_user(p):
            results.append(CheckResult("vault_owner_ok", Severity.OK, "Vault root owned by current user.", p))
        else:
            results.append(CheckResult("vault_wrong_owner", Severity.ERROR, "Vault root is not owned by the current user.", p))

        mode = _mode_bits(p)
        if mode & (stat.S_IRWXG | stat.S_IRWXO):
            results.append(
                CheckResult(
                    "permission_mismatch",
                    Severity.ERROR,
                    f"Vault root permissions {oct(mode)} allow group/other access.",
                    p,
                    {"expected": oct(0o700), "actual": oct(mode)},
                )
            )
        else:
            results.append(CheckResult("vault_permissions_ok", Severity.OK, "Vault root is private to its owner.", p))
        return results

    def _check_indexes(self):
        results: List[CheckResult] = []
        tracked = set()
        count = 0
        for index_path in sorted(self.vault_root.glob(f".*{INDEX_SUFFIX}")):
            count += 1
            try:
                vault_path = self.store.vault_path_for(index_path)
                record = self.store.read(index_path)
            except VaultError as exc:
                results.append(CheckResult("index_unparseable", Severity.ERROR, str(exc), index_path))
                continue
            tracked.add(vault_path.name)

            if not vault_path.is_file():
                results.append(
                    CheckResult("index_without_entry", Severity.ERROR, "Index record has no matching vault entry.", index_path)
                )
            if not record.original_path.exists():
                results.append(
                    CheckResult(
                        "original_missing",
                        Severity.WARNING,
                        "Original file is gone; re-encryption will recreate it.",
                        record.original_path,
                    )
                )
            elif self.hasher is not None:
                try:
                    current = self.hasher.digest_file(record.original_path)
                except OSError as exc:
                    current = f"unreadable: {exc.strerror}"
                if not consteq(current, record.content_hash):
                    results.append(
                        CheckResult(
                            "original_modified",
                            Severity.WARNING,
                            "Original changed since it was decrypted.",
                            record.original_path,
                            {"expected": record.content_hash, "actual": current},
                        )
                    )

        if not any(r.severity == Severity.ERROR for r in results):
            results.append(
                CheckResult("index_records_ok", Severity.OK, f"{count} pending index record(s) consistent.", self.vault_root)
            )
        return tracked, results

    def _check_entries(self, tracked) -> List[CheckResult]:
        results: List[CheckResult] = []
        for p in sorted(self.vault_root.iterdir()):
            st = os.lstat(p)
            if p.name.startswith("."):
                if p.name.endswith(".tmp"):
                    results.append(
                        CheckResult("stale_temp_file", Severity.WARNING, "Leftover temp file from an interrupted write.", p)
                    )
                continue
            if stat.S_ISLNK(st.st_mode):
                results.append(CheckResult("entry_is_symlink", Severity.ERROR, "Vault entry is a symlink.", p))
                continue
            if not stat.S_ISREG(st.st_mode):
                continue
            mode = stat.S_IMODE(st.st_mode)
            if mode & (stat.S_IRWXG | stat.S_IRWXO):
                results.append(
                    CheckResult(
                        "permission_mismatch",
                        Severity.ERROR,
                        f"Plaintext entry permissions {oct(mode)} allow group/other access.",
                        p,
                        {"expected": oct(0o600), "actual": oct(mode)},
                    )
                )
            if p.name not in tracked:
                results.append(
                    CheckResult("entry_untracked", Severity.WARNING, "Plaintext entry has no index record.", p)
                )
        return results
