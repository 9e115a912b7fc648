import pathlib, time
from dataclasses import dataclass
from typing import Iterator
from pydantic import ValidationError
from .errors import FormatError, IndexParseError
from .models import VaultIndexRecord
from .storage import ensure_regular_file, remove_file, safe_read_bytes, write_secure_file
from .logging import get_logger

LOG = get_logger(False)

INDEX_PREFIX = "."
INDEX_SUFFIX = ".vaultindex"
TIME_FORMAT = "%Y-%m-%dT%H:%M:%SZ"

# key in the index file -> VaultIndexRecord field
FIELDS = (
    ("PATH", "original_path"),
    ("HASH", "content_hash"),
    ("OUT", "vault_path"),
    ("Time", "decrypted_at"),
)


def now_timestamp() -> str:
    return time.strftime(TIME_FORMAT, time.gmtime())


def check_storable(path: pathlib.Path):
    """Index records are line based; a path with a tab or newline cannot be stored."""
    if "\n" in str(path) or "\t" in str(path):
        raise FormatError("path cannot be stored in an index record (contains a tab or newline)", path)


@dataclass(frozen=True)
class PendingIndex:
    """An index file found in the vault, paired with the entry its name points at."""
    index_path: pathlib.Path
    vault_path: pathlib.Path


class VaultIndexStore:
    """
    Per-entry index records living next to their vault entries.

    The record for `<vault>/<name>` is the hidden file `<vault>/.<name>.vaultindex`
    holding four tab-separated `KEY\\tVALUE` lines.
    """

    def __init__(self, root: pathlib.Path):
        self.root = pathlib.Path(root)

    def index_path_for(self, vault_path: pathlib.Path) -> pathlib.Path:
        vault_path = pathlib.Path(vault_path)
        return vault_path.parent / f"{INDEX_PREFIX}{vault_path.name}{INDEX_SUFFIX}"

    def vault_path_for(self, index_path: pathlib.Path) -> pathlib.Path:
        index_path = pathlib.Path(index_path)
        name = index_path.name
        if not (name.startswith(INDEX_PREFIX) and name.endswith(INDEX_SUFFIX)):
            raise IndexParseError("not a vault index file name", index_path)
        entry = name[len(INDEX_PREFIX):-len(INDEX_SUFFIX)]
        if not entry:
            raise IndexParseError("index file name has no entry part", index_path)
        return index_path.parent / entry

    def exists(self, vault_path: pathlib.Path) -> bool:
        return self.index_path_for(vault_path).exists()

    def list_pending(self) -> Iterator[PendingIndex]:
        """Lazily yield every index file in the vault root; call again for a fresh listing."""
        for index_path in sorted(self.root.glob(f"{INDEX_PREFIX}*{INDEX_SUFFIX}")):
            if not index_path.is_file():
                continue
            yield PendingIndex(index_path, self.vault_path_for(index_path))

    def read(self, index_path: pathlib.Path) -> VaultIndexRecord:
        index_path = pathlib.Path(index_path)
        try:
            ensure_regular_file(index_path, "Index file")
            text = safe_read_bytes(index_path).decode("utf-8")
        except (OSError, UnicodeDecodeError) as exc:
            raise IndexParseError(f"cannot read index record ({exc})", index_path) from exc

        raw = {}
        for line in text.splitlines():
            key, sep, value = line.partition("\t")
            if sep:
                raw[key] = value
        values = {field: raw[key] for key, field in FIELDS if raw.get(key)}
        for key, field in FIELDS[:2]:
            if field not in values:
                raise IndexParseError(f"index record has no {key} field", index_path)
        values.setdefault("vault_path", self.vault_path_for(index_path))
        try:
            return VaultIndexRecord(**values)
        except ValidationError as exc:
            errors = "; ".join(f"{'.'.join(map(str, e['loc']))}: {e['msg']}" for e in exc.errors())
            raise IndexParseError(f"malformed index record ({errors})", index_path) from exc

    def write(self, record: VaultIndexRecord) -> pathlib.Path:
        index_path = self.index_path_for(record.vault_path)
        data = record.model_dump()
        if not data["decrypted_at"]:
            data["decrypted_at"] = now_timestamp()
        lines = []
        for key, field in FIELDS:
            value = str(data[field])
            check_storable(value)
            lines.append(f"{key}\t{value}\n")
        write_secure_file(index_path, "".join(lines).encode("utf-8"))
        LOG.info("index_written", index=str(index_path), original=str(record.original_path))
        return index_path

    def delete(self, vault_path: pathlib.Path) -> bool:
        index_path = self.index_path_for(vault_path)
        removed = remove_file(index_path)
        if removed:
            LOG.info("index_deleted", index=str(index_path))
        return removed
