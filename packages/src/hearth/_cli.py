"""Command-line entry point.

``hearth [--log-level LEVEL] [--log-format json|text] [--env-file PATH]``
loads :class:`~hearth.Settings` (environment, then the env file), applies
the flag overrides and runs the hub until it is signalled to stop.

Exit codes: ``0`` clean shutdown, ``1`` invalid configuration, ``3`` the
hub crashed.  Typer reports bad flag values itself (usage error, ``2``).
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Annotated, Any, get_args

import typer
from pydantic import ValidationError

from hearth._settings import LoggingSettings

if TYPE_CHECKING:
    from hearth._app import Hub
    from hearth._settings import Settings

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG_ERROR = 1
EXIT_RUNTIME_ERROR = 3

LOG_LEVELS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["level"].annotation,
)
LOG_FORMATS: tuple[str, ...] = get_args(
    LoggingSettings.model_fields["format"].annotation,
)


def _checked(value: str | None, choices: tuple[str, ...], flag: str) -> str | None:
    if value is None or value in choices:
        return value
    msg = f"'{value}' is not one of: {', '.join(choices)}"
    raise typer.BadParameter(msg, param_hint=f"'{flag}'")


def load_settings(
    hub: Hub,
    *,
    env_file: str,
    log_level: str | None = None,
    log_format: str | None = None,
) -> Settings:
    """Build the hub's settings and fold in the logging flags.

    Raises:
        ValidationError: When the environment or env file is invalid.
    """
    settings: Settings = hub._settings_class(_env_file=env_file)  # type: ignore[call-arg]
    overrides: dict[str, Any] = {}
    if log_level is not None:
        overrides["level"] = log_level
    if log_format is not None:
        overrides["format"] = log_format
    if overrides:
        settings.logging = settings.logging.model_copy(update=overrides)
    return settings


def build_cli(hub: Hub) -> typer.Typer:
    """Typer app whose only command runs *hub*."""
    banner = f"{hub._name} v{hub._version}"
    cli = typer.Typer(help=f"{banner}: {hub._description}")

    @cli.callback(invoke_without_command=True)
    def run(
        show_version: Annotated[
            bool,
            typer.Option(
                "--version",
                is_eager=True,
                help="Print the version and exit.",
            ),
        ] = False,
        log_level: Annotated[
            str | None,
            typer.Option("--log-level", help="Log level, e.g. DEBUG or INFO."),
        ] = None,
        log_format: Annotated[
            str | None,
            typer.Option("--log-format", help="Log line format: json or text."),
        ] = None,
        env_file: Annotated[
            str,
            typer.Option("--env-file", help="Env file read after the environment."),
        ] = ".env",
    ) -> None:
        if show_version:
            typer.echo(banner)
            raise typer.Exit(EXIT_OK)

        level = _checked(log_level and log_level.upper(), LOG_LEVELS, "--log-level")
        fmt = _checked(log_format and log_format.lower(), LOG_FORMATS, "--log-format")

        try:
            settings = load_settings(
                hub,
                env_file=env_file,
                log_level=level,
                log_format=fmt,
            )
        except ValidationError as exc:
            typer.echo(f"Invalid configuration:\n{exc}", err=True)
            raise typer.Exit(EXIT_CONFIG_ERROR) from exc

        try:
            with contextlib.suppress(KeyboardInterrupt):
                asyncio.run(hub._run_async(settings=settings))
        except Exception as exc:
            logger.exception("Hub stopped on error")
            typer.echo(f"{banner} crashed: {exc}", err=True)
            raise typer.Exit(EXIT_RUNTIME_ERROR) from exc

    return cli


def main() -> None:
    """``hearth`` console script."""
    from hearth import Hub, __version__

    Hub(version=__version__).cli()
