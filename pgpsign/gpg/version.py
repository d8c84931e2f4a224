"""GnuPG version parsing and detection.

Command-line flags accepted by ``gpg`` changed across releases (``--use-agent``
disappeared in 2.1, ``--pinentry-mode`` appeared with it), so the external
signer gates its arguments on the version reported by ``gpg --version``.
"""

from __future__ import annotations

import logging
import re
import subprocess
from collections.abc import Sequence
from functools import total_ordering

from pgpsign.errors import ExternalProcessError, VersionParseError

logger = logging.getLogger(__name__)

_VERSION_PATTERN = re.compile(r"(\d+\.)+\d+")
_BANNER_PATTERN = re.compile(r"gpg2? \([^)]+\) .+")


@total_ordering
class GpgVersion:
    """Dot-separated version number extracted from tool banner text.

    Segments compare pairwise; when one version is a prefix of the other the
    longer one is greater, so ``2.2 < 2.2.0`` and ``2.2 != 2.2.0``.
    """

    __slots__ = ("_segments",)

    def __init__(self, segments: Sequence[int]) -> None:
        self._segments = tuple(int(segment) for segment in segments)

    @classmethod
    def parse(cls, text: str) -> GpgVersion:
        """Parse the first dotted numeric run found in ``text``.

        ``gpg (GnuPG) 2.0.26 (Gpg4win 2.2.3)`` yields ``2.0.26``: the run that
        follows the tool name is the tool's own version.

        Raises:
            VersionParseError: If ``text`` holds no dotted numeric run.
        """
        match = _VERSION_PATTERN.search(text)
        if match is None:
            raise VersionParseError(f"Can't parse version of {text!r}")
        return cls([int(segment) for segment in match.group(0).split(".")])

    @property
    def segments(self) -> tuple[int, ...]:
        return self._segments

    def compare_to(self, other: GpgVersion) -> int:
        """Return -1, 0 or 1 as this version is lower, equal or higher."""
        for mine, theirs in zip(self._segments, other._segments):
            if mine != theirs:
                return -1 if mine < theirs else 1
        length_delta = len(self._segments) - len(other._segments)
        if length_delta == 0:
            return 0
        return -1 if length_delta < 0 else 1

    def is_before(self, other: GpgVersion) -> bool:
        return self.compare_to(other) < 0

    def is_at_least(self, other: GpgVersion) -> bool:
        return self.compare_to(other) >= 0

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, GpgVersion):
            return NotImplemented
        return self.compare_to(other) == 0

    def __lt__(self, other: GpgVersion) -> bool:
        if not isinstance(other, GpgVersion):
            return NotImplemented
        return self.compare_to(other) < 0

    def __hash__(self) -> int:
        return hash(self._segments)

    def __str__(self) -> str:
        return ".".join(str(segment) for segment in self._segments)

    def __repr__(self) -> str:
        return f"GpgVersion('{self}')"


GPG_2_0 = GpgVersion((2, 0))
GPG_2_1 = GpgVersion((2, 1))


def parse_version_output(output: str) -> GpgVersion | None:
    """Return the version from the banner line of ``gpg --version`` output."""
    for line in output.splitlines():
        if _BANNER_PATTERN.fullmatch(line.strip()):
            return GpgVersion.parse(line)
    return None


def detect_gpg_version(executable: str, *, timeout: float | None = None) -> GpgVersion:
    """Run ``<executable> --version`` and parse the reported release.

    Args:
        executable: gpg binary name or path
        timeout: Seconds to wait for the probe (None waits indefinitely)

    Returns:
        The detected version

    Raises:
        ExternalProcessError: If the executable cannot be launched
        VersionParseError: If the output has no gpg banner line
    """
    try:
        completed = subprocess.run(
            [executable, "--version"],
            stdin=subprocess.DEVNULL,
            capture_output=True,
            text=True,
            timeout=timeout,
            check=False,
        )
    except (OSError, subprocess.TimeoutExpired) as exc:
        raise ExternalProcessError(f"Failed to execute {executable}: {exc}") from exc

    version = parse_version_output(completed.stdout or "")
    if version is None:
        raise VersionParseError("Could not determine gpg version")

    logger.debug("Detected gpg version %s via %s", version, executable)
    return version
