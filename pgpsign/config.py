"""Configuration management with Pydantic and XDG base directory support."""

import os
from pathlib import Path

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_config_home() -> Path:
    """Get XDG_CONFIG_HOME directory, defaulting to ~/.config."""
    xdg_config = os.getenv("XDG_CONFIG_HOME")
    if xdg_config:
        return Path(xdg_config)
    return Path.home() / ".config"


DEFAULT_PASSPHRASE_ENV_NAME = "PGPSIGN_GPG_PASSPHRASE"
DEFAULT_KEY_FILE_NAME = "signing-key.key"
DEFAULT_AGENT_SOCKET_LOCATIONS = ".gnupg/S.gpg-agent"


class Settings(BaseSettings):
    """pgpsign configuration settings.

    Precedence: CLI flag > environment variable > config file > defaults.
    """

    model_config = SettingsConfigDict(
        env_prefix="PGPSIGN_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    signer: str = Field(
        default="gpg",
        description="Signer backend: gpg (GnuPG executable) or embedded (pure Python)",
    )

    interactive: bool = Field(
        default=True,
        description="Allow prompting a human (pinentry, terminal) for passphrases",
    )

    # GnuPG executable settings
    executable: str | None = Field(
        default=None,
        description="Path to the gpg executable (defaults to gpg / gpg.exe on PATH)",
    )

    homedir: Path | None = Field(
        default=None,
        description="GnuPG home directory passed as --homedir",
    )

    keyname: str | None = Field(
        default=None,
        description="Key to sign with, passed to gpg as --local-user",
    )

    use_agent: bool = Field(
        default=True,
        description="Pass --use-agent (or --no-use-agent) to gpg releases before 2.1",
    )

    default_keyring: bool = Field(
        default=True,
        description="Add the default keyrings from the gpg home directory",
    )

    secret_keyring: str | None = Field(
        default=None,
        description="Secret keyring path (obsolete and ignored since gpg 2.1)",
    )

    public_keyring: str | None = Field(
        default=None,
        description="Public keyring path passed as --keyring",
    )

    lock_mode: str | None = Field(
        default=None,
        description="gpg lock mode: once, multiple or never",
    )

    gpg_arguments: list[str] = Field(
        default_factory=list,
        description="Extra arguments passed verbatim to gpg before all others",
    )

    gpg_timeout_seconds: float | None = Field(
        default=300.0,
        gt=0,
        description="Timeout for each gpg invocation (seconds); None disables it",
    )

    # Passphrase handling
    passphrase_env_name: str = Field(
        default=DEFAULT_PASSPHRASE_ENV_NAME,
        description="Environment variable holding the key passphrase",
    )

    passphrase: SecretStr | None = Field(
        default=None,
        description="Refused: passphrases must not be stored in configuration",
    )

    # Embedded signer settings
    key_file_path: Path | None = Field(
        default=None,
        description="Secret key file (relative paths resolve against the config directory)",
    )

    key_fingerprint: str | None = Field(
        default=None,
        description="Fingerprint (40 hex characters) of the key to sign with",
    )

    agent_socket_locations: str = Field(
        default=DEFAULT_AGENT_SOCKET_LOCATIONS,
        description="Comma-separated gpg-agent socket paths, relative to the home directory",
    )

    agent_timeout_seconds: float | None = Field(
        default=None,
        gt=0,
        description="Socket timeout for gpg-agent exchanges (seconds)",
    )

    # Directories
    config_dir: Path | None = Field(
        default=None,
        description="Override config directory (defaults to XDG_CONFIG_HOME/pgpsign)",
    )

    output_dir: Path | None = Field(
        default=None,
        description="Directory receiving signatures instead of next to each file",
    )

    @field_validator("lock_mode")
    @classmethod
    def _normalize_lock_mode(cls, value: str | None) -> str | None:
        if value is None:
            return None
        return value.strip().lower() or None

    def get_config_dir(self) -> Path:
        """Get the config directory (not created; only read from)."""
        if self.config_dir:
            return self.config_dir
        return get_xdg_config_home() / "pgpsign"

    def get_key_file_path(self) -> Path:
        """Return the key file location, resolved against the config directory."""
        base_dir = self.get_config_dir()
        if self.key_file_path is None:
            return base_dir / DEFAULT_KEY_FILE_NAME
        if self.key_file_path.is_absolute():
            return self.key_file_path
        return base_dir / self.key_file_path

    def get_agent_socket_locations(self) -> list[str]:
        """Split the configured socket list, dropping empty entries."""
        return [
            location.strip()
            for location in self.agent_socket_locations.split(",")
            if location.strip()
        ]


# Global settings instance
_settings: Settings | None = None


def get_settings() -> Settings:
    """Get or create the global settings instance."""
    global _settings
    if _settings is None:
        _settings = Settings()
    return _settings


def set_settings(settings: Settings) -> None:
    """Set the global settings instance (useful for testing)."""
    global _settings
    _settings = settings
