"""Content fingerprinting of a local directory tree.

The fingerprint is a SHA-256 over ``"<file hash>  <relative path>\\n"``
lines sorted by path, so it does not depend on the order the filesystem
enumerates entries. A tree with no regular files (after exclusions)
fingerprints as ``EMPTY``.
"""

from __future__ import annotations

import hashlib
import logging
import os
from pathlib import Path
from typing import Iterable, Optional

EMPTY_FINGERPRINT = "EMPTY"


class ChangeDetector:
    """Compute deterministic fingerprints used to decide whether to upload.

    Usage::

        detector = ChangeDetector()
        digest = detector.fingerprint(Path("/srv/site"), [Path("/srv/site/cache")])
    """

    def __init__(self, buf_size: int = 65536, logger_obj: Optional[logging.Logger] = None) -> None:
        self.buf_size = buf_size
        self.logger = logger_obj or logging.getLogger(__name__)

    def fingerprint(self, root: Path, excluded_subpaths: Iterable[Path] = ()) -> str:
        """Fingerprint every regular file under ``root`` not below an excluded subpath.

        Raises:
            OSError: If the tree cannot be walked or a file cannot be read.
        """
        root = Path(os.path.abspath(root))
        entries = []
        for path in self.iter_files(root, excluded_subpaths):
            relative = path.relative_to(root).as_posix()
            entries.append((relative, self.compute_hash(path)))

        if not entries:
            self.logger.debug(f"No files found in {root} - fingerprint is {EMPTY_FINGERPRINT}")
            return EMPTY_FINGERPRINT

        entries.sort()
        digest = hashlib.sha256()
        for relative, file_hash in entries:
            digest.update(f"{file_hash}  {relative}\n".encode("utf-8", "surrogateescape"))
        result = digest.hexdigest()
        self.logger.debug(f"Fingerprint for {root} ({len(entries)} files): {result}")
        return result

    def iter_files(self, root: Path, excluded_subpaths: Iterable[Path] = ()):
        """Yield regular files below ``root``. Symlinks are neither followed nor included."""
        excluded = [Path(os.path.abspath(p)) for p in excluded_subpaths]
        root = Path(os.path.abspath(root))

        def onerror(exc: OSError) -> None:
            raise exc

        for dirpath, dirnames, filenames in os.walk(root, onerror=onerror):
            current = Path(dirpath)
            # prune excluded directories in-place
            dirnames[:] = sorted(
                d for d in dirnames if not self._is_excluded(current / d, excluded)
            )
            for name in filenames:
                path = current / name
                if self._is_excluded(path, excluded):
                    continue
                if path.is_symlink() or not path.is_file():
                    continue
                yield path

    @staticmethod
    def _is_excluded(path: Path, excluded: list[Path]) -> bool:
        return any(path == ex or ex in path.parents for ex in excluded)

    def compute_hash(self, file_path: Path) -> str:
        """SHA-256 hex digest of file content using streaming reads."""
        sha256 = hashlib.sha256()
        with open(file_path, "rb") as f:
            for block in iter(lambda: f.read(self.buf_size), b""):
                sha256.update(block)
        return sha256.hexdigest()
