"""Batch signing service.

Decides where each signature goes and drives a prepared signer over a list
of files. The signer itself only knows how to sign one file into one path.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable
from pathlib import Path

from pydantic import BaseModel

from pgpsign.app.ports import SignerPort
from pgpsign.utils.files import ensure_dir

logger = logging.getLogger(__name__)

SIGNATURE_EXTENSION = ".asc"


def _absolute(path: Path | None) -> Path | None:
    if path is None:
        return None
    return Path(os.path.abspath(path))


class SignedArtifact(BaseModel):
    """A signed file and the signature written for it."""

    source: Path
    signature: Path
    signer: str


class SignatureLayout:
    """Map files to signature locations.

    By default the signature sits next to the file as ``<file>.asc``. With an
    output directory, files outside the build directory get their signature
    under the output directory instead, keeping the file's path relative to
    the nearest output, build or base directory among its ancestors.
    """

    def __init__(
        self,
        output_dir: Path | None = None,
        build_dir: Path | None = None,
        base_dir: Path | None = None,
    ) -> None:
        self.output_dir = _absolute(output_dir)
        self.build_dir = _absolute(build_dir)
        self.base_dir = _absolute(base_dir)

    def _is_root(self, directory: Path) -> bool:
        return directory in (self.output_dir, self.build_dir, self.base_dir)

    def signature_path_for(self, file: Path) -> Path:
        """Return (and prepare the directory of) the signature path for ``file``."""
        file = _absolute(file)
        assert file is not None
        signature = file.with_name(file.name + SIGNATURE_EXTENSION)

        if self.output_dir is None or signature.parent == self.build_dir:
            return signature

        relative_parts: list[str] = []
        for directory in signature.parents:
            if self._is_root(directory):
                break
            if directory.name:
                relative_parts.insert(0, directory.name)

        target_dir = ensure_dir(self.output_dir.joinpath(*relative_parts))
        return target_dir / signature.name


class SigningService:
    """Sign a batch of files with one prepared signer."""

    def __init__(self, signer: SignerPort, layout: SignatureLayout | None = None) -> None:
        """Initialize signing service.

        Args:
            signer: Backend producing the signatures
            layout: Signature placement (defaults to next to each file)
        """
        self.signer = signer
        self.layout = layout or SignatureLayout()

    def sign_files(self, files: Iterable[Path]) -> list[SignedArtifact]:
        """Prepare the signer once and sign every file.

        Stale signatures at the destination are removed first so a failed
        run never leaves an outdated ``.asc`` behind.

        Raises:
            FileNotFoundError: If a file to sign does not exist
            SigningError: If preparing the signer or signing fails
        """
        paths = [Path(file) for file in files]
        for path in paths:
            if not path.is_file():
                raise FileNotFoundError(f"File to sign not found: {path}")

        self.signer.prepare()
        logger.debug("Signing %d file(s) with %s", len(paths), self.signer.signer_name)

        artifacts: list[SignedArtifact] = []
        for path in paths:
            destination = self.layout.signature_path_for(path)
            if destination.exists():
                destination.unlink()
            signature = self.signer.sign_file(path, destination)
            logger.info("Signed %s -> %s", path, signature)
            artifacts.append(
                SignedArtifact(source=path, signature=signature, signer=self.signer.signer_name)
            )
        return artifacts
