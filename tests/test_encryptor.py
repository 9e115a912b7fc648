import os

import pytest

from conftest import ScriptedPort
from vaultedit.config import Settings
from vaultedit.decryptor import Decryptor
from vaultedit.encryptor import Encryptor
from vaultedit.errors import ConsistencyError, IndexParseError, KeyUnavailableError


@pytest.fixture
def decrypt(settings, vault, engine, store, hasher):
    def _decrypt(path):
        return Decryptor(settings, vault, engine, store, hasher, ScriptedPort()).decrypt(path)
    return _decrypt


@pytest.fixture
def encryptor_with(settings, engine, store, hasher):
    def _make(port=None, settings_=None):
        port = port or ScriptedPort()
        return Encryptor(settings_ or settings, engine, store, hasher, port), port
    return _make


def test_nothing_to_process(encryptor_with, vault):
    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert report.nothing_to_process
    assert report.ok
    assert any("Nothing to process" in m for m in port.infos)
    assert list(vault.iterdir()) == []


def test_round_trip_without_edits(decrypt, encryptor_with, make_encrypted, engine, vault):
    source = make_encrypted("report.vedt", b"original text\n")
    result = decrypt(source)

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()
    assert report.ok
    assert port.warnings == []
    assert report.tampered == []
    assert [r.original_path for r in report.encrypted] == [source.resolve()]
    assert engine.decrypt(source.read_bytes()) == b"original text\n"
    assert not result.vault_path.exists()
    assert list(vault.iterdir()) == []


def test_vault_edits_are_encrypted_without_warning(decrypt, encryptor_with, make_encrypted, engine):
    source = make_encrypted()
    result = decrypt(source)
    result.vault_path.write_bytes(b"edited plaintext")

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert report.ok
    assert port.warnings == []
    assert engine.decrypt(source.read_bytes()) == b"edited plaintext"


def test_changed_original_warns_but_proceeds(decrypt, encryptor_with, make_encrypted, engine):
    source = make_encrypted()
    decrypt(source)
    source.write_bytes(engine.encrypt(b"someone else's edit", None))

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert report.tampered == [source.resolve()]
    assert len(port.warnings) == 1
    assert "changed since it was decrypted" in port.warnings[0]
    assert engine.decrypt(source.read_bytes()) == b"quarterly numbers\n"


def test_changed_original_interactive_abort(decrypt, encryptor_with, make_encrypted, engine):
    source = make_encrypted()
    result = decrypt(source)
    replacement = engine.encrypt(b"newer", None)
    source.write_bytes(replacement)

    encryptor, port = encryptor_with(ScriptedPort(confirms=[False]))
    report = encryptor.process_pending()

    assert report.aborted
    assert report.ok
    assert source.read_bytes() == replacement
    assert result.vault_path.exists()


def test_missing_original_is_recreated(decrypt, encryptor_with, make_encrypted, engine):
    source = make_encrypted()
    decrypt(source)
    source.unlink()
    source.parent.rmdir()

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert report.ok
    assert not any("Overwrite" in q for q in port.questions)
    assert engine.decrypt(source.read_bytes()) == b"quarterly numbers\n"


def test_existing_mode_of_original_is_kept(decrypt, encryptor_with, make_encrypted):
    source = make_encrypted()
    os.chmod(source, 0o640)
    decrypt(source)

    encryptor_with()[0].process_pending()
    assert (source.stat().st_mode & 0o777) == 0o640


def test_missing_vault_entry_halts_batch(decrypt, encryptor_with, make_encrypted, store):
    first = decrypt(make_encrypted("a.vedt", b"aaa"))
    second = decrypt(make_encrypted("b.vedt", b"bbb"))
    first.vault_path.unlink()

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert isinstance(report.halted_by, ConsistencyError)
    assert not report.ok
    assert report.encrypted == []
    # the later record is left untouched for a future run
    assert second.vault_path.exists()
    assert store.exists(second.vault_path)
    assert store.exists(first.vault_path)
    assert len(port.errors) == 1


def test_unparseable_record_halts_batch(decrypt, encryptor_with, make_encrypted, store, vault):
    bad = vault / "a.000000"
    bad.write_bytes(b"orphan plaintext")
    store.index_path_for(bad).write_text("HASH\tabc\n")
    later = decrypt(make_encrypted("z.vedt"))

    report = encryptor_with()[0].process_pending()

    assert isinstance(report.halted_by, IndexParseError)
    assert later.vault_path.exists()
    assert store.exists(later.vault_path)


def test_declined_cleanup_aborts_rest(decrypt, encryptor_with, make_encrypted, store, engine):
    first_source = make_encrypted("a.vedt", b"aaa")
    first = decrypt(first_source)
    second = decrypt(make_encrypted("b.vedt", b"bbb"))

    # overwrite a.vedt: yes, delete plaintext: no
    encryptor, port = encryptor_with(ScriptedPort(confirms=[True, False]))
    report = encryptor.process_pending()

    assert report.aborted
    assert len(report.encrypted) == 1
    assert engine.decrypt(first_source.read_bytes()) == b"aaa"
    assert first.vault_path.exists() and store.exists(first.vault_path)
    assert second.vault_path.exists() and store.exists(second.vault_path)


def test_unknown_recipient_fails_that_record_only(decrypt, encryptor_with, make_encrypted, settings, store):
    first = decrypt(make_encrypted("a.vedt", b"aaa"))
    second = decrypt(make_encrypted("b.vedt", b"bbb"))
    bad_settings = Settings(**{**settings.model_dump(), "recipient": "nobody"})

    encryptor, port = encryptor_with(settings_=bad_settings)
    report = encryptor.process_pending()

    assert report.halted_by is None
    assert [type(e) for _, e in report.failures] == [KeyUnavailableError, KeyUnavailableError]
    assert store.exists(first.vault_path)
    assert store.exists(second.vault_path)


def test_encrypt_to_other_recipient(decrypt, encryptor_with, make_encrypted, settings, keyring, tmp_path):
    from vaultedit.crypto import NaclEngine
    from vaultedit.keyring import Keyring

    other = Keyring(tmp_path / "bob")
    other.generate("default")
    (tmp_path / "keys" / "bob.pub").write_bytes((tmp_path / "bob" / "default.pub").read_bytes())

    source = make_encrypted()
    decrypt(source)
    to_bob = Settings(**{**settings.model_dump(), "recipient": "bob"})
    assert encryptor_with(settings_=to_bob)[0].process_pending().ok

    assert NaclEngine(other).decrypt(source.read_bytes()) == b"quarterly numbers\n"


def test_unwritable_original_location_fails_that_record_only(decrypt, encryptor_with, make_encrypted, docs, store):
    from vaultedit.errors import VaultIOError

    (docs / "sub").mkdir()
    nested = decrypt(make_encrypted("sub/x.vedt", b"nested"))
    other = decrypt(make_encrypted("y.vedt", b"other"))
    (docs / "sub" / "x.vedt").unlink()
    (docs / "sub").rmdir()
    (docs / "sub").write_text("now a regular file")

    encryptor, port = encryptor_with()
    report = encryptor.process_pending()

    assert report.halted_by is None
    assert [(p, type(e)) for p, e in report.failures] == [(nested.vault_path, VaultIOError)]
    assert nested.vault_path.exists() and store.exists(nested.vault_path)
    assert not other.vault_path.exists()
    assert len(port.errors) == 1
