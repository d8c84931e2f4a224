"""pgpsign - Detached OpenPGP signatures for build artifacts.

Signs files either through the GnuPG executable or with an embedded
OpenPGP implementation fed from environment, key file or gpg-agent.
"""

__version__ = "0.1.0"
__author__ = "pgpsign Contributors"

from pgpsign.config import Settings, get_settings

__all__ = ["Settings", "get_settings", "__version__"]
