import typer, getpass, json, os, pathlib
from typing import List, Optional
from .config import Settings
from .crypto import NaclEngine
from .decryptor import Decryptor
from .doctor import Severity, VaultDoctor
from .encryptor import Encryptor
from .errors import VaultError, VaultPermissionError
from .hashing import ContentHasher
from .index import VaultIndexStore
from .keyring import Keyring
from .prompts import NonInteractivePort, TerminalPort
from .storage import VaultRoot
from .logging import get_logger

app = typer.Typer(no_args_is_help=True, help="Decrypt files into a private vault for editing, then re-encrypt them back.")
LOG = get_logger(False)

VaultOpt = typer.Option(None, "--vault", help="Vault directory [env: VAULTEDIT_DIR]")
KeyringOpt = typer.Option(None, "--keyring", help="Keyring directory [env: VAULTEDIT_KEYRING]")
RecipientOpt = typer.Option(None, "--recipient", "-r", help="Key name or .pub file to encrypt to (default: yourself) [env: VAULTEDIT_RECIPIENT]")
YesOpt = typer.Option(False, "--yes", "-y", help="Non-interactive: accept the default answer for every question")


def ask_pw(prompt="Passphrase: ") -> bytes:
    """Prompt the user for a passphrase using getpass and return UTF-8 bytes."""
    pw = getpass.getpass(prompt)
    return pw.encode("utf-8")


def _key_passphrase(name: str) -> bytes:
    env = os.environ.get("VAULTEDIT_PASSPHRASE")
    if env is not None:
        return env.encode("utf-8")
    return ask_pw(f"Passphrase for key '{name}': ")


class _Session:
    """Everything one command run needs, wired from a single Settings."""

    def __init__(self, settings: Settings):
        self.settings = settings
        try:
            self.root = VaultRoot(settings.vault_root).ensure()
        except VaultPermissionError as exc:
            LOG.error("vault_permission_denied", vault=str(settings.vault_root), error=str(exc))
            typer.echo(f"✖ {exc}", err=True)
            raise typer.Exit(2)
        self.keyring = Keyring(settings.keyring_dir, identity=settings.identity, passphrase=_key_passphrase)
        self.engine = NaclEngine(self.keyring)
        self.hasher = ContentHasher(self.engine)
        self.store = VaultIndexStore(self.root)
        self.port = TerminalPort() if settings.interactive else NonInteractivePort()

    def decryptor(self) -> Decryptor:
        return Decryptor(self.settings, self.root, self.engine, self.store, self.hasher, self.port)

    def encryptor(self) -> Encryptor:
        return Encryptor(self.settings, self.engine, self.store, self.hasher, self.port)


def _run_encrypt(session: _Session) -> bool:
    report = session.encryptor().process_pending()
    if report.encrypted:
        typer.echo(f"✔ Re-encrypted {len(report.encrypted)} file(s)", err=True)
    return report.ok


@app.callback()
def main(debug: bool = typer.Option(False, "--debug", help="Log to stderr instead of the log file")):
    if debug:
        get_logger(True)


@app.command()
def decrypt(
    files: List[str] = typer.Argument(..., metavar="FILE", help="One or more encrypted files"),
    then_encrypt: bool = typer.Option(False, "--encrypt", "-e", help="Process pending records after decrypting"),
    yes: bool = YesOpt,
    vault: Optional[pathlib.Path] = VaultOpt,
    keyring: Optional[pathlib.Path] = KeyringOpt,
    recipient: Optional[str] = RecipientOpt,
):
    """Decrypt files into the vault; registered entries are re-encrypted by `encrypt`."""
    settings = Settings.from_env(vault_root=vault, keyring_dir=keyring, recipient=recipient, interactive=not yes)
    session = _Session(settings)
    summary = session.decryptor().decrypt_all(files)
    ok = summary.ok
    if then_encrypt:
        ok = _run_encrypt(session) and ok
    if not ok:
        raise typer.Exit(1)


@app.command()
def encrypt(
    yes: bool = YesOpt,
    vault: Optional[pathlib.Path] = VaultOpt,
    keyring: Optional[pathlib.Path] = KeyringOpt,
    recipient: Optional[str] = RecipientOpt,
):
    """Re-encrypt every registered vault entry to its original location and clean up."""
    settings = Settings.from_env(vault_root=vault, keyring_dir=keyring, recipient=recipient, interactive=not yes)
    if not _run_encrypt(_Session(settings)):
        raise typer.Exit(1)


@app.command()
def pending(vault: Optional[pathlib.Path] = VaultOpt):
    """List vault entries waiting to be re-encrypted."""
    session = _Session(Settings.from_env(vault_root=vault))
    errors = 0
    for item in session.store.list_pending():
        try:
            record = session.store.read(item.index_path)
        except VaultError as exc:
            typer.echo(f"✖ {exc}", err=True)
            errors += 1
            continue
        marker = "" if item.vault_path.is_file() else "\t(missing vault entry)"
        typer.echo(f"{record.vault_path.name}\t{record.original_path}\tdecrypted={record.decrypted_at}{marker}")
    if errors:
        raise typer.Exit(1)


@app.command()
def keygen(
    name: str = typer.Argument("default", help="Key name inside the keyring"),
    protect: bool = typer.Option(True, "--protect/--no-protect", help="Wrap the secret key under a passphrase"),
    keyring: Optional[pathlib.Path] = KeyringOpt,
):
    """Generate a key pair in the keyring."""
    settings = Settings.from_env(keyring_dir=keyring)
    passphrase = None
    if protect:
        passphrase = ask_pw("New key passphrase: ")
        if passphrase != ask_pw("Confirm key passphrase: "):
            typer.echo("✖ Passphrases did not match. Aborting.", err=True)
            raise typer.Exit(1)
    try:
        Keyring(settings.keyring_dir).generate(name, passphrase)
    except (FileExistsError, ValueError, VaultError) as exc:
        LOG.error("keygen_failed", name=name, error=str(exc))
        typer.echo(f"✖ {exc}", err=True)
        raise typer.Exit(1)
    typer.echo(f"✔ Generated key '{name}' in {settings.keyring_dir}")


@app.command()
def doctor(
    vault: Optional[pathlib.Path] = VaultOpt,
    keyring: Optional[pathlib.Path] = KeyringOpt,
    as_json: bool = typer.Option(False, "--json", help="Output results as JSON"),
):
    """Audit vault permissions and index consistency without changing anything."""
    settings = Settings.from_env(vault_root=vault, keyring_dir=keyring)
    root = settings.vault_root.expanduser()
    hasher = ContentHasher(NaclEngine(Keyring(settings.keyring_dir)))
    results = VaultDoctor(root, hasher).run()

    if as_json:
        typer.echo(json.dumps([r.to_dict() for r in results], indent=2))
    else:
        for r in results:
            prefix = {
                Severity.OK: "[OK]     ",
                Severity.WARNING: "[WARN]   ",
                Severity.ERROR: "[ERROR]  ",
            }[r.severity]
            loc = f" ({r.path})" if r.path else ""
            typer.echo(f"{prefix}{r.id}: {r.message}{loc}")
            if r.details:
                typer.echo(f"          details: {r.details}")

    if any(r.severity == Severity.ERROR for r in results):
        raise typer.Exit(1)
