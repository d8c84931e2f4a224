"""Application bootstrap wiring settings, signers and services."""

from __future__ import annotations

import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from pgpsign.app import CredentialResolver, SignatureLayout, SigningService
from pgpsign.app.adapters import (
    AgentPassphraseLoader,
    EmbeddedSigner,
    EnvironmentLoader,
    GpgSigner,
    KeyFileLoader,
)
from pgpsign.app.ports import CredentialLoaderPort, SignerPort
from pgpsign.config import Settings, get_settings
from pgpsign.errors import ConfigurationError

logger = logging.getLogger(__name__)

SIGNER_GPG = "gpg"
SIGNER_EMBEDDED = "embedded"


@dataclass
class ApplicationContainer:
    """Aggregates the wired signer and services for the CLI layer."""

    settings: Settings
    signer: SignerPort
    signing_service: SigningService


def _resolve_passphrase(
    settings: Settings,
    environ: Mapping[str, str],
    passphrase_prompt: Callable[[], str] | None,
) -> str | None:
    if settings.passphrase is not None and settings.passphrase.get_secret_value().strip():
        raise ConfigurationError(
            "Do not store passphrase in any file (disk or repository), rely on GnuPG agent "
            f"or provide passphrase in {settings.passphrase_env_name} environment variable."
        )

    passphrase = environ.get(settings.passphrase_env_name)
    if passphrase is not None:
        logger.debug("Passphrase taken from %s", settings.passphrase_env_name)
        return passphrase

    if settings.use_agent:
        return None
    if not settings.interactive:
        raise ConfigurationError("Cannot obtain passphrase in batch mode")
    if passphrase_prompt is None:
        raise ConfigurationError("No passphrase source available and prompting is not set up")
    return passphrase_prompt()


def build_credential_loaders(
    settings: Settings, environ: Mapping[str, str]
) -> list[CredentialLoaderPort]:
    """Create the loader chain: environment, key file, then gpg-agent."""
    loaders: list[CredentialLoaderPort] = [
        EnvironmentLoader(environ),
        KeyFileLoader(settings.get_key_file_path(), fingerprint=settings.key_fingerprint),
    ]
    if settings.use_agent:
        loaders.append(
            AgentPassphraseLoader(
                settings.get_agent_socket_locations(),
                interactive=settings.interactive,
                timeout=settings.agent_timeout_seconds,
                environ=environ,
            )
        )
    return loaders


def new_signer(
    settings: Settings | None = None,
    *,
    environ: Mapping[str, str] | None = None,
    passphrase_prompt: Callable[[], str] | None = None,
) -> SignerPort:
    """Create the signer selected by ``settings.signer``.

    Args:
        settings: Configuration (defaults to the global settings)
        environ: Environment to read passphrase and key material from
        passphrase_prompt: Asks a human for the passphrase when nothing else
            can provide it and prompting is allowed

    Raises:
        ConfigurationError: For unknown signers, a passphrase stored in
            configuration, or no way to obtain a passphrase in batch mode
    """
    active_settings = settings or get_settings()
    active_environ = environ if environ is not None else os.environ

    if active_settings.signer not in (SIGNER_GPG, SIGNER_EMBEDDED):
        raise ConfigurationError(f"Unknown signer: {active_settings.signer}")

    passphrase = _resolve_passphrase(active_settings, active_environ, passphrase_prompt)

    if active_settings.signer == SIGNER_GPG:
        return GpgSigner(
            executable=active_settings.executable,
            homedir=active_settings.homedir,
            keyname=active_settings.keyname,
            passphrase=passphrase,
            use_agent=active_settings.use_agent,
            interactive=active_settings.interactive,
            default_keyring=active_settings.default_keyring,
            secret_keyring=active_settings.secret_keyring,
            public_keyring=active_settings.public_keyring,
            lock_mode=active_settings.lock_mode,
            arguments=active_settings.gpg_arguments,
            timeout=active_settings.gpg_timeout_seconds,
        )

    resolver = CredentialResolver(
        build_credential_loaders(active_settings, active_environ),
        interactive=active_settings.interactive,
        passphrase=passphrase,
    )
    return EmbeddedSigner(resolver)


def bootstrap_application(
    settings: Settings | None = None,
    *,
    build_dir: Path | None = None,
    base_dir: Path | None = None,
    environ: Mapping[str, str] | None = None,
    passphrase_prompt: Callable[[], str] | None = None,
) -> ApplicationContainer:
    """Instantiate the signer and signing service for CLI consumption."""
    active_settings = settings or get_settings()
    signer = new_signer(
        active_settings, environ=environ, passphrase_prompt=passphrase_prompt
    )
    layout = SignatureLayout(
        output_dir=active_settings.output_dir,
        build_dir=build_dir,
        base_dir=base_dir,
    )
    return ApplicationContainer(
        settings=active_settings,
        signer=signer,
        signing_service=SigningService(signer, layout),
    )
