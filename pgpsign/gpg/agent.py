"""Minimal client for the gpg-agent passphrase protocol.

The agent speaks a line-oriented Assuan dialect over a Unix domain socket::

    <- OK Pleased to meet you
    -> OPTION ttytype=xterm
    <- OK
    -> GET_PASSPHRASE --no-ask 255684d1 Passphrase+incorrect GnuPG+Key+Passphrase ...
    <- OK 54455354            (hex encoded passphrase)
    <- ERR 67108922 No data   (refusal: cancelled, not cached, ...)

One connection serves exactly one request and is closed afterwards.
"""

from __future__ import annotations

import logging
import os
import socket
from collections.abc import Mapping
from pathlib import Path

from pgpsign.errors import AgentConnectionError, AgentProtocolError, AgentRefusalError

logger = logging.getLogger(__name__)

DEFAULT_ERROR_MESSAGE = "Passphrase incorrect"
DEFAULT_PROMPT = "GnuPG Key Passphrase"
DEFAULT_DESCRIPTION = (
    "Enter passphrase for encrypted GnuPG key {cache_id} to use it for signing artifacts"
)

# Environment variable -> agent option forwarded so pinentry can find the display.
_OPTION_VARIABLES = (
    ("DISPLAY", "display"),
    ("GPG_TTY", "ttyname"),
    ("TERM", "ttytype"),
)


def escape_field(value: str) -> str:
    """Escape a GET_PASSPHRASE argument (``+`` encodes a space)."""
    escaped: list[str] = []
    for char in value:
        if char == " ":
            escaped.append("+")
        elif char in "%+" or ord(char) < 0x20 or ord(char) == 0x7F:
            escaped.append(f"%{ord(char):02X}")
        else:
            escaped.append(char)
    return "".join(escaped)


def _parse_error_code(line: str) -> int | None:
    parts = line.split(maxsplit=2)
    if len(parts) >= 2 and parts[1].isdigit():
        return int(parts[1])
    return None


class AgentClient:
    """Ask a running gpg-agent for a cached (or freshly prompted) passphrase."""

    def __init__(
        self,
        socket_path: Path,
        *,
        timeout: float | None = None,
        environ: Mapping[str, str] | None = None,
    ) -> None:
        self.socket_path = Path(socket_path)
        self.timeout = timeout
        self._environ = environ if environ is not None else os.environ

    def get_passphrase(
        self,
        cache_id: str,
        *,
        no_ask: bool = False,
        error_message: str = DEFAULT_ERROR_MESSAGE,
        prompt: str = DEFAULT_PROMPT,
        description: str | None = None,
    ) -> str:
        """Request the passphrase cached under ``cache_id``.

        Args:
            cache_id: Agent cache key (key ID or fingerprint in hex)
            no_ask: Only answer from the cache, never prompt a human
            error_message: Text pinentry shows after a wrong attempt
            prompt: Pinentry prompt label
            description: Pinentry description (defaults to a generic text)

        Returns:
            The passphrase

        Raises:
            AgentConnectionError: If the socket does not accept a connection
            AgentRefusalError: If the agent answers ``ERR``
            AgentProtocolError: If the agent answers anything unexpected
        """
        if description is None:
            description = DEFAULT_DESCRIPTION.format(cache_id=cache_id)

        fields = [cache_id, error_message, prompt, description]
        request = "GET_PASSPHRASE "
        if no_ask:
            request += "--no-ask "
        request += " ".join(escape_field(field) for field in fields)

        with self._connect() as sock, sock.makefile("rwb") as stream:
            self._expect_ok(stream, "greeting")
            self._send_options(stream)
            logger.debug("Requesting passphrase %s from %s", cache_id, self.socket_path)
            self._send(stream, request)
            response = self._read_response(stream)

        if response.startswith("ERR"):
            raise AgentRefusalError(
                f"gpg-agent refused passphrase request: {response}",
                code=_parse_error_code(response),
            )
        if not response.startswith("OK"):
            raise AgentProtocolError(f"Expected OK but got this instead: {response}")

        payload = response[2:].strip()
        try:
            return bytes.fromhex(payload).decode("utf-8")
        except ValueError as exc:
            raise AgentProtocolError("gpg-agent returned a malformed passphrase payload") from exc

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _connect(self) -> socket.socket:
        sock = socket.socket(socket.AF_UNIX, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)
        try:
            sock.connect(str(self.socket_path))
        except OSError as exc:
            sock.close()
            raise AgentConnectionError(
                f"Cannot connect to gpg-agent at {self.socket_path}: {exc}"
            ) from exc
        return sock

    def _send_options(self, stream) -> None:
        for variable, option in _OPTION_VARIABLES:
            value = self._environ.get(variable)
            if not value:
                continue
            self._send(stream, f"OPTION {option}={value}")
            response = self._read_response(stream)
            if response.startswith("ERR"):
                logger.warning("gpg-agent rejected option %s: %s", option, response)
            elif not response.startswith("OK"):
                raise AgentProtocolError(f"Expected OK but got this instead: {response}")

    def _expect_ok(self, stream, stage: str) -> str:
        response = self._read_response(stream)
        if not response.startswith("OK"):
            raise AgentProtocolError(
                f"Expected OK {stage} but got this instead: {response}"
            )
        return response

    @staticmethod
    def _send(stream, line: str) -> None:
        try:
            stream.write(line.encode("utf-8") + b"\n")
            stream.flush()
        except OSError as exc:
            raise AgentProtocolError(f"Lost connection to gpg-agent: {exc}") from exc

    @staticmethod
    def _read_response(stream) -> str:
        while True:
            try:
                raw = stream.readline()
            except OSError as exc:
                raise AgentProtocolError(f"Lost connection to gpg-agent: {exc}") from exc
            if not raw:
                raise AgentProtocolError("gpg-agent closed the connection unexpectedly")
            line = raw.decode("utf-8", errors="replace").rstrip("\r\n")
            # Comments and status lines may precede the actual answer.
            if line.startswith("#") or line.startswith("S "):
                continue
            return line
