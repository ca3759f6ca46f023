"""CLI entry point for rip."""

from __future__ import annotations

import logging
from pathlib import Path

import click

from rip.prompt import UserAbort

SHELLS = ("bash", "zsh", "fish")

graveyard_option = click.option(
    "--graveyard",
    type=click.Path(file_okay=False, resolve_path=True),
    default=None,
    help="Directory where deleted files rest (default: $RIP_GRAVEYARD, config, "
    "$XDG_DATA_HOME/graveyard, or a per-user temp dir).",
)


def _open_graveyard(graveyard: str | None):
    """Build a Graveyard session from flag, environment and config."""
    from rip.config import ConfigError, load_config, resolve_graveyard
    from rip.graveyard import Graveyard
    from rip.prompt import StreamConfirmation

    try:
        config = load_config()
    except ConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    root = resolve_graveyard(graveyard, config)
    return Graveyard(
        root,
        StreamConfirmation(),
        allow_fast_path=config["fast_path"],
        big_file_threshold=config["big_file_threshold"],
        inspect_lines=config["inspect"]["lines"],
        inspect_files=config["inspect"]["files"],
    )


def _fail(exc: BaseException) -> click.ClickException:
    return click.ClickException(str(exc))


@click.group()
@click.option("-v", "--verbose", is_flag=True, help="Log what rip is doing to stderr.")
def cli(verbose: bool) -> None:
    """rip: a safe and ergonomic alternative to rm."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )


@cli.command()
@graveyard_option
@click.option("-i", "--inspect", is_flag=True, help="Print some info about each target before burying it.")
@click.argument("targets", nargs=-1, required=True, type=click.Path())
def bury(graveyard: str | None, inspect: bool, targets: tuple[str, ...]) -> None:
    """Move TARGETS to the graveyard."""
    gy = _open_graveyard(graveyard)
    try:
        gy.bury(targets, inspect=inspect)
    except (OSError, ValueError, UserAbort) as exc:
        raise _fail(exc) from exc


@cli.command()
@graveyard_option
@click.option("-s", "--seance", is_flag=True, help="Also restore everything buried from the current directory.")
@click.argument("names", nargs=-1, type=click.Path())
def unbury(graveyard: str | None, seance: bool, names: tuple[str, ...]) -> None:
    """Restore NAMES (graveyard paths), or the last buried file if none are given."""
    gy = _open_graveyard(graveyard)
    try:
        gy.unbury(names, seance=seance)
    except (OSError, ValueError, UserAbort) as exc:
        raise _fail(exc) from exc


@cli.command()
@graveyard_option
def seance(graveyard: str | None) -> None:
    """List files buried from the current directory."""
    gy = _open_graveyard(graveyard)
    try:
        records = gy.seance()
    except (OSError, ValueError) as exc:
        raise _fail(exc) from exc
    if not records:
        click.echo(f"Nothing buried under {gy.seance_path()}", err=True)


@cli.command()
@graveyard_option
@click.option("-y", "--yes", is_flag=True, help="Do not ask for confirmation.")
def decompose(graveyard: str | None, yes: bool) -> None:
    """Permanently delete the graveyard and its record."""
    from rip.prompt import FixedConfirmation

    gy = _open_graveyard(graveyard)
    if yes:
        gy.confirm = FixedConfirmation(True)
    try:
        done = gy.decompose()
    except (OSError, UserAbort) as exc:
        raise _fail(exc) from exc
    if done:
        click.echo(f"Decomposed {gy.root}")


@cli.command("graveyard")
@graveyard_option
@click.option("-s", "--seance", is_flag=True, help="Print the graveyard subdirectory of the current directory.")
def graveyard_cmd(graveyard: str | None, seance: bool) -> None:
    """Print the graveyard path."""
    gy = _open_graveyard(graveyard)
    click.echo(str(gy.seance_path() if seance else gy.root))


@cli.command()
@click.argument("shell", metavar="SHELL")
def completions(shell: str) -> None:
    """Print the shell completion script for SHELL."""
    from click.shell_completion import get_completion_class

    comp_cls = get_completion_class(shell) if shell in SHELLS else None
    if comp_cls is None:
        raise click.ClickException(
            f"Invalid shell specification: {shell}. Available shells: {', '.join(SHELLS)}"
        )
    comp = comp_cls(cli, {}, "rip", "_RIP_COMPLETE")
    click.echo(comp.source())


@cli.command("init-config")
@click.option(
    "--path",
    "config_path",
    type=click.Path(dir_okay=False, resolve_path=True),
    default=None,
    help="Where to write the config (default: $RIP_CONFIG or ~/.config/rip/config.yaml).",
)
def init_config(config_path: str | None) -> None:
    """Write a commented config file with the default settings."""
    from rip.config import CONFIG_TEMPLATE, default_config_path, load_config

    path = Path(config_path) if config_path else default_config_path()
    if path.exists():
        click.echo(f"{path} already exists")
        raise SystemExit(1)

    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(CONFIG_TEMPLATE)
    # Load through the standard path to validate it
    load_config(path)
    click.echo(f"Created {path}")
