"""Raw tree scanner.

Builds an immutable ``RawDirectory`` from a source directory on disk. Only
"is a directory" versus "is a regular file" is modeled; symlinks and special
files are skipped, and the metadata file is excluded at every level.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .errors import SourceNotFound, SourceScanFailed
from .models import RawDirectory, RawFile, RawNode

logger = logging.getLogger(__name__)

DEFAULT_METADATA_FILENAME = "mod.toml"


def scan(root_path: Path | str, metadata_filename: str = DEFAULT_METADATA_FILENAME) -> RawDirectory:
    """Scan ``root_path`` into a raw tree.

    Args:
        root_path: Directory to scan.
        metadata_filename: File name excluded from the tree wherever it appears.

    Returns:
        The root ``RawDirectory``, named after ``root_path``.

    Raises:
        SourceNotFound: If ``root_path`` does not exist or is not a directory.
        SourceScanFailed: If a directory below the root cannot be listed.
    """
    root = Path(root_path)
    if not root.is_dir():
        raise SourceNotFound(f"source directory not found: {root}")
    tree = _scan_directory(root, root.name, metadata_filename)
    logger.debug("Scanned %s", root)
    return tree


def _scan_directory(path: Path, name: str, metadata_filename: str) -> RawDirectory:
    try:
        with os.scandir(path) as entries:
            listed = sorted(entries, key=lambda entry: entry.name)
    except OSError as exc:
        raise SourceScanFailed(f"cannot list {path}: {exc}") from exc

    children: dict[str, RawNode] = {}
    for entry in listed:
        if entry.name == metadata_filename:
            continue
        try:
            if entry.is_dir(follow_symlinks=False):
                children[entry.name] = _scan_directory(Path(entry.path), entry.name, metadata_filename)
            elif entry.is_file(follow_symlinks=False):
                children[entry.name] = RawFile(name=entry.name)
            else:
                logger.debug("Skipping non-regular entry: %s", entry.path)
        except OSError as exc:
            raise SourceScanFailed(f"cannot stat {entry.path}: {exc}") from exc
    return RawDirectory(name=name, children=children)
