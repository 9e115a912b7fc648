from pathlib import Path

import pytest

from vaultedit.errors import (
    ConsistencyError,
    FormatError,
    IndexParseError,
    KeyUnavailableError,
    NotFoundError,
    VaultError,
    VaultIOError,
    VaultPermissionError,
)


@pytest.mark.parametrize(
    "cls, builtin",
    [
        (NotFoundError, FileNotFoundError),
        (VaultPermissionError, PermissionError),
        (FormatError, ValueError),
        (IndexParseError, ValueError),
        (KeyUnavailableError, LookupError),
    ],
)
def test_errors_are_also_builtin_errors(cls, builtin):
    assert issubclass(cls, VaultError)
    assert issubclass(cls, builtin)
    assert isinstance(cls("boom", Path("/x")), builtin)


def test_callers_can_catch_builtins():
    with pytest.raises(FileNotFoundError):
        raise NotFoundError("no such file", Path("/missing"))
    with pytest.raises(PermissionError):
        raise VaultPermissionError("too open", Path("/vault"))


def test_message_carries_path():
    assert str(ConsistencyError("index has no matching vault entry", Path("/v/a"))) == (
        "index has no matching vault entry: /v/a"
    )
    assert str(VaultIOError("cannot write")) == "cannot write"
    assert VaultIOError("cannot write", Path("/v/a")).path == Path("/v/a")
