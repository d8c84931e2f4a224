"""pgpsign CLI application with Typer."""

import logging
from pathlib import Path
from typing import Annotated, NoReturn

import typer

from pgpsign import __version__
from pgpsign.app.adapters.gpg_signer import default_executable
from pgpsign.bootstrap import bootstrap_application, new_signer
from pgpsign.config import Settings, get_settings, set_settings
from pgpsign.errors import SigningError
from pgpsign.gpg.version import detect_gpg_version

app = typer.Typer(
    name="pgpsign",
    help="Create detached OpenPGP signatures with GnuPG or the embedded signer",
    add_completion=False,
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Show version and exit."""
    if value:
        typer.echo(f"pgpsign version {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    if verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
            force=True,
        )


def _prompt_passphrase() -> str:
    return typer.prompt("GPG Passphrase", hide_input=True)


def _apply_overrides(
    *,
    signer: str | None = None,
    key_name: str | None = None,
    homedir: Path | None = None,
    batch: bool = False,
    output_dir: Path | None = None,
) -> Settings:
    settings = get_settings()
    if signer:
        settings.signer = signer
    if key_name:
        settings.keyname = key_name
    if homedir:
        settings.homedir = homedir
    if batch:
        settings.interactive = False
    if output_dir:
        settings.output_dir = output_dir
    set_settings(settings)
    return settings


def _fail(exc: Exception) -> NoReturn:
    typer.secho(f"Error: {exc}", fg=typer.colors.RED, err=True)
    raise typer.Exit(code=1) from exc


@app.callback()
def main(
    version: Annotated[
        bool | None,
        typer.Option("--version", "-V", callback=version_callback, is_eager=True),
    ] = None,
) -> None:
    """pgpsign - detached OpenPGP signatures for build artifacts."""


@app.command("sign")
def sign(
    files: Annotated[list[Path], typer.Argument(help="Files to sign")],
    signer: Annotated[
        str | None,
        typer.Option("--signer", "-s", help="Signer backend: gpg or embedded"),
    ] = None,
    key_name: Annotated[
        str | None,
        typer.Option("--key-name", "-k", help="Key to sign with (gpg --local-user)"),
    ] = None,
    homedir: Annotated[
        Path | None,
        typer.Option("--homedir", help="GnuPG home directory"),
    ] = None,
    batch: Annotated[
        bool,
        typer.Option("--batch", help="Never prompt for a passphrase"),
    ] = False,
    output_dir: Annotated[
        Path | None,
        typer.Option("--output-dir", "-o", help="Write signatures below this directory"),
    ] = None,
    build_dir: Annotated[
        Path | None,
        typer.Option("--build-dir", help="Files directly in here keep their signature beside them"),
    ] = None,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Sign FILES, writing one ASCII-armored .asc signature per file."""
    _configure_logging(verbose)
    settings = _apply_overrides(
        signer=signer,
        key_name=key_name,
        homedir=homedir,
        batch=batch,
        output_dir=output_dir,
    )

    try:
        container = bootstrap_application(
            settings,
            build_dir=build_dir,
            base_dir=Path.cwd(),
            passphrase_prompt=_prompt_passphrase,
        )
        artifacts = container.signing_service.sign_files(files)
    except (SigningError, OSError) as exc:
        _fail(exc)

    for artifact in artifacts:
        typer.secho(f"✅ Signed {artifact.source} -> {artifact.signature}", fg=typer.colors.GREEN)


@app.command("key-info")
def key_info(
    signer: Annotated[
        str | None,
        typer.Option("--signer", "-s", help="Signer backend: gpg or embedded"),
    ] = None,
    key_name: Annotated[
        str | None,
        typer.Option("--key-name", "-k", help="Key to sign with (gpg --local-user)"),
    ] = None,
    batch: Annotated[
        bool,
        typer.Option("--batch", help="Never prompt for a passphrase"),
    ] = False,
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Enable debug logging"),
    ] = False,
) -> None:
    """Show which key the configured signer would use."""
    _configure_logging(verbose)
    settings = _apply_overrides(signer=signer, key_name=key_name, batch=batch)

    try:
        active = new_signer(settings, passphrase_prompt=_prompt_passphrase)
        active.prepare()
        info = active.get_key_info()
    except (SigningError, OSError) as exc:
        _fail(exc)

    typer.echo(f"Signer: {active.signer_name}")
    typer.echo(f"Key: {info}")


@app.command("gpg-version")
def gpg_version(
    executable: Annotated[
        str | None,
        typer.Option("--executable", "-e", help="gpg executable to probe"),
    ] = None,
) -> None:
    """Print the version of the gpg executable."""
    settings = get_settings()
    target = executable or settings.executable or default_executable()
    try:
        version = detect_gpg_version(target, timeout=settings.gpg_timeout_seconds)
    except SigningError as exc:
        _fail(exc)

    typer.echo(f"{target} {version}")


if __name__ == "__main__":
    app()
