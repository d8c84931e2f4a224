"""Signer adapter driving the GnuPG command-line tool."""

from __future__ import annotations

import logging
import os
import shlex
import subprocess
from collections.abc import Callable, Sequence
from pathlib import Path

from pgpsign.errors import ExternalProcessError
from pgpsign.gpg.version import GPG_2_0, GPG_2_1, GpgVersion, detect_gpg_version
from pgpsign.utils.files import atomic_output

logger = logging.getLogger(__name__)

_LOCK_OPTIONS = {
    "once": "--lock-once",
    "multiple": "--lock-multiple",
    "never": "--lock-never",
}


def default_executable() -> str:
    return "gpg.exe" if os.name == "nt" else "gpg"


class GpgSigner:
    """Create detached signatures by running ``gpg --armor --detach-sign``.

    The gpg release is detected once (``prepare``) and decides which options
    are passed: ``--use-agent`` only exists before 2.1, loopback pinentry is
    needed from 2.1 on to feed a passphrase through stdin.
    """

    NAME = "gpg"

    def __init__(
        self,
        *,
        executable: str | None = None,
        homedir: Path | None = None,
        keyname: str | None = None,
        passphrase: str | None = None,
        use_agent: bool = True,
        interactive: bool = True,
        default_keyring: bool = True,
        secret_keyring: str | None = None,
        public_keyring: str | None = None,
        lock_mode: str | None = None,
        arguments: Sequence[str] = (),
        timeout: float | None = None,
        version_probe: Callable[..., GpgVersion] = detect_gpg_version,
    ) -> None:
        self.executable = executable or default_executable()
        self.homedir = homedir
        self.keyname = keyname
        self._passphrase = passphrase
        self.use_agent = use_agent
        self.interactive = interactive
        self.default_keyring = default_keyring
        self.secret_keyring = secret_keyring
        self.public_keyring = public_keyring
        self.lock_mode = lock_mode
        self.arguments = list(arguments)
        self.timeout = timeout
        self._version_probe = version_probe
        self._version: GpgVersion | None = None

    @property
    def signer_name(self) -> str:
        return self.NAME

    @property
    def version(self) -> GpgVersion | None:
        return self._version

    def prepare(self) -> None:
        """Detect the gpg release.

        Raises:
            ExternalProcessError: If gpg cannot be launched
            VersionParseError: If gpg reports no recognizable version
        """
        self._version = self._version_probe(self.executable, timeout=self.timeout)
        logger.debug("Using gpg %s (%s)", self._version, self.executable)

    def get_key_info(self) -> str:
        return self.keyname or "default key"

    def build_command(self, source: Path, destination: Path) -> list[str]:
        """Assemble the gpg argument vector for one signature.

        The passphrase itself is never part of the command; it is written to
        stdin (``--passphrase-fd 0``).
        """
        version = self._version
        if version is None:
            raise RuntimeError("GpgSigner.prepare() must run before building commands")

        command = [self.executable, *self.arguments]

        if self.homedir is not None:
            command += ["--homedir", str(self.homedir)]

        if version.is_before(GPG_2_1):
            command.append("--use-agent" if self.use_agent else "--no-use-agent")

        if self._passphrase is not None:
            if version.is_at_least(GPG_2_0):
                command.append("--batch")
            if version.is_at_least(GPG_2_1):
                command += ["--pinentry-mode", "loopback"]
            command += ["--passphrase-fd", "0"]

        if self.keyname is not None:
            command += ["--local-user", self.keyname]

        command += ["--armor", "--detach-sign"]

        if logger.isEnabledFor(logging.DEBUG):
            command += ["--status-fd", "1"]

        if not self.interactive:
            command += ["--batch", "--no-tty"]
            if self._passphrase is None and version.is_at_least(GPG_2_1):
                # Fail instead of spawning pinentry nobody can answer.
                command += ["--pinentry-mode", "error"]

        if not self.default_keyring:
            command.append("--no-default-keyring")

        if self.secret_keyring:
            if version.is_before(GPG_2_1):
                command += ["--secret-keyring", self.secret_keyring]
            else:
                logger.warning(
                    "'secret_keyring' is an obsolete option and ignored. All secret keys "
                    "are stored in the 'private-keys-v1.d' directory below the GnuPG home directory."
                )

        if self.public_keyring:
            command += ["--keyring", self.public_keyring]

        lock_option = _LOCK_OPTIONS.get((self.lock_mode or "").lower())
        if lock_option is not None:
            command.append(lock_option)

        command += ["--output", str(destination), str(source)]
        return command

    def sign_file(self, source: Path, destination: Path | None = None) -> Path:
        """Sign ``source`` into ``destination`` (default ``<source>.asc``).

        Raises:
            ExternalProcessError: If gpg cannot run, times out or exits non-zero
        """
        if self._version is None:
            self.prepare()

        source = Path(source)
        if destination is None:
            destination = source.with_name(source.name + ".asc")
        destination = Path(destination)

        with atomic_output(destination) as output:
            command = self.build_command(source, output)
            self._run(command)
            if not output.exists():
                raise ExternalProcessError(f"gpg did not write a signature for {source}")

        logger.debug("Signed %s -> %s", source, destination)
        return destination

    def _run(self, command: list[str]) -> None:
        logger.debug("CMD: %s", shlex.join(command))

        stdin_payload: bytes | None = None
        if self._passphrase is not None:
            passphrase = self._passphrase
            if not passphrase.endswith("\n"):
                passphrase += "\n"
            stdin_payload = passphrase.encode("utf-8")

        try:
            completed = subprocess.run(
                command,
                input=stdin_payload,
                capture_output=True,
                timeout=self.timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as exc:
            raise ExternalProcessError(
                f"gpg timed out after {self.timeout} seconds"
            ) from exc
        except OSError as exc:
            raise ExternalProcessError(f"Unable to execute gpg command: {exc}") from exc

        if completed.stdout:
            logger.debug("gpg: %s", completed.stdout.decode("utf-8", errors="replace").rstrip())

        if completed.returncode != 0:
            detail = completed.stderr.decode("utf-8", errors="replace").strip()
            message = f"Exit code: {completed.returncode}"
            if detail:
                message += f": {detail.splitlines()[-1]}"
            raise ExternalProcessError(message, exit_code=completed.returncode)
