"""
User interaction seam for the Decryptor and Encryptor.

Components never touch the terminal directly; they ask a `ConfirmationPort`
and receive a decision. `NonInteractivePort` answers every question with the
default chosen at the call site.
"""
from typing import Protocol, Sequence
import click
import typer


class ConfirmationPort(Protocol):
    def confirm(self, question: str, default: bool) -> bool: ...

    def choose(self, question: str, choices: Sequence[str], default: str) -> str: ...

    def info(self, message: str) -> None: ...

    def warn(self, message: str) -> None: ...

    def error(self, message: str) -> None: ...


class _EchoMixin:
    def info(self, message: str) -> None:
        typer.echo(message, err=True)

    def warn(self, message: str) -> None:
        typer.echo(f"⚠ {message}", err=True)

    def error(self, message: str) -> None:
        typer.echo(f"✖ {message}", err=True)


class TerminalPort(_EchoMixin):
    """Blocking prompts on the controlling terminal."""

    def confirm(self, question: str, default: bool) -> bool:
        return typer.confirm(question, default=default, err=True)

    def choose(self, question: str, choices: Sequence[str], default: str) -> str:
        return typer.prompt(
            question,
            default=default,
            type=click.Choice(list(choices), case_sensitive=False),
            err=True,
        ).lower()


class NonInteractivePort(_EchoMixin):
    """Takes the default for every decision; messages are still reported."""

    def confirm(self, question: str, default: bool) -> bool:
        return default

    def choose(self, question: str, choices: Sequence[str], default: str) -> str:
        return default
