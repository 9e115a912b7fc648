import os
import tempfile
from pathlib import Path

# Keep the structlog file sink out of the real home directory; must run before
# any vaultedit module is imported.
os.environ["VAULTEDIT_LOG"] = str(Path(tempfile.mkdtemp(prefix="vaultedit-log-")) / "vaultedit.log")

import pytest

from vaultedit.config import Settings
from vaultedit.crypto import NaclEngine
from vaultedit.hashing import ContentHasher
from vaultedit.index import VaultIndexStore
from vaultedit.keyring import Keyring
from vaultedit.storage import VaultRoot


class ScriptedPort:
    """ConfirmationPort that replays queued answers, then falls back to the defaults."""

    def __init__(self, confirms=(), choices=()):
        self.confirms = list(confirms)
        self.choices = list(choices)
        self.questions = []
        self.infos = []
        self.warnings = []
        self.errors = []

    def confirm(self, question, default):
        self.questions.append(question)
        return self.confirms.pop(0) if self.confirms else default

    def choose(self, question, choices, default):
        self.questions.append(question)
        answer = self.choices.pop(0) if self.choices else default
        assert answer in choices
        return answer

    def info(self, message):
        self.infos.append(message)

    def warn(self, message):
        self.warnings.append(message)

    def error(self, message):
        self.errors.append(message)


@pytest.fixture(autouse=True)
def clean_env(monkeypatch):
    for name in ("VAULTEDIT_DIR", "VAULTEDIT_KEYRING", "VAULTEDIT_RECIPIENT", "VAULTEDIT_IDENTITY", "VAULTEDIT_PASSPHRASE"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def fast_kdf(monkeypatch):
    """Cheap Argon2 parameters so passphrase-protected keys unlock quickly in tests."""
    from vaultedit import crypto
    monkeypatch.setitem(crypto.ARGON2_PARAMS, "time_cost", 1)
    monkeypatch.setitem(crypto.ARGON2_PARAMS, "memory_cost", 8 * 1024)
    monkeypatch.setitem(crypto.ARGON2_PARAMS, "parallelism", 1)


@pytest.fixture
def keyring(tmp_path):
    ring = Keyring(tmp_path / "keys")
    ring.generate("default")
    return ring


@pytest.fixture
def engine(keyring):
    return NaclEngine(keyring)


@pytest.fixture
def hasher(engine):
    return ContentHasher(engine)


@pytest.fixture
def vault(tmp_path):
    return VaultRoot(tmp_path / "vault").ensure()


@pytest.fixture
def store(vault):
    return VaultIndexStore(vault)


@pytest.fixture
def settings(tmp_path, vault):
    return Settings(vault_root=vault, keyring_dir=tmp_path / "keys", interactive=False)


@pytest.fixture
def docs(tmp_path):
    d = tmp_path / "docs"
    d.mkdir()
    return d


@pytest.fixture
def make_encrypted(engine, docs):
    """Write `plaintext` encrypted to the default key as docs/<name>."""
    def _make(name="report.vedt", plaintext=b"quarterly numbers\n"):
        path = docs / name
        path.write_bytes(engine.encrypt(plaintext, None))
        return path
    return _make
