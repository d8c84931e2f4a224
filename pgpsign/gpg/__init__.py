"""Integration with the GnuPG tool suite (gpg executable and gpg-agent)."""

from pgpsign.gpg.agent import AgentClient
from pgpsign.gpg.version import GPG_2_0, GPG_2_1, GpgVersion, detect_gpg_version

__all__ = [
    "AgentClient",
    "GPG_2_0",
    "GPG_2_1",
    "GpgVersion",
    "detect_gpg_version",
]
