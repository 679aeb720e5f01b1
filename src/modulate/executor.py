"""Deployment executor.

Applies an operation list to the working directory. Files are placed with hard
links, never copies, so both the source tree and the working directory point
at the same bytes. A file that occupied a path before any overlay claimed it
is hard-linked into the backup directory first and linked back once no
overlay provides that path any more; the backup directory mirrors the working
directory's relative layout, and the presence of an entry there is the only
"restore this" signal. A pre-existing directory in the way of an overlay file
is moved into the backup directory whole, and a pre-existing file in the way
of an overlay directory is backed up like any other file.

Operations are applied strictly in order and every operation is safe to
re-apply, so a failed run can be resumed from the failing index.
"""

from __future__ import annotations

import errno
import logging
import os
from pathlib import Path
from typing import Callable, Sequence

from .errors import BackupDirUnavailable, FilesystemOperationFailed
from .models import Operation, OperationKind, SourceHandle

logger = logging.getLogger(__name__)

SourceRootResolver = Callable[[SourceHandle], Path]


class DeploymentExecutor:
    def __init__(self, working_dir: Path, backup_dir: Path, resolve_source_root: SourceRootResolver) -> None:
        self.working_dir = working_dir
        self.backup_dir = backup_dir
        self.resolve_source_root = resolve_source_root

    def apply(self, operations: Sequence[Operation], *, start: int = 0) -> int:
        """Apply ``operations[start:]`` in order.

        Args:
            operations: Ordered operations as produced by the diff engine.
            start: Index of the first operation to apply; earlier entries are
                treated as already applied.

        Returns:
            The total number of applied operations, i.e. ``len(operations)``.

        Raises:
            BackupDirUnavailable: If the backup root is missing; nothing is applied.
            FilesystemOperationFailed: If an operation fails. ``completed`` counts
                every operation before it, including the ``start`` prefix.
        """
        self._require_backup_dir()
        for index in range(start, len(operations)):
            operation = operations[index]
            try:
                self._apply(operation)
            except OSError as exc:
                logger.error("Operation %d/%d failed: %s (%s)", index + 1, len(operations), operation, exc)
                raise FilesystemOperationFailed(
                    operation,
                    exc,
                    completed=index,
                    remaining=operations[index:],
                ) from exc
        return len(operations)

    def apply_operation(self, operation: Operation) -> None:
        """Apply a single operation, e.g. to retry one that failed."""
        self._require_backup_dir()
        try:
            self._apply(operation)
        except OSError as exc:
            raise FilesystemOperationFailed(operation, exc) from exc

    def _require_backup_dir(self) -> None:
        if not self.backup_dir.is_dir():
            raise BackupDirUnavailable(f"backup directory not available: {self.backup_dir}")

    # ------------------------------------------------------------------
    # Per-operation effects
    # ------------------------------------------------------------------

    def _apply(self, operation: Operation) -> None:
        working_file = self.working_dir / operation.path
        backup_file = self.backup_dir / operation.path
        kind = operation.kind

        if kind is OperationKind.CREATE_DIR:
            self._create_dir(working_file, backup_file)
        elif kind is OperationKind.REMOVE_DIR:
            self._remove_dir(working_file, backup_file)
        elif kind is OperationKind.CREATE_FILE:
            self._create_file(operation, working_file, backup_file)
        elif kind is OperationKind.REMOVE_FILE:
            self._remove_file(working_file, backup_file)
        elif kind is OperationKind.CHANGE_SOURCE:
            self._change_source(operation, working_file)
        else:
            raise ValueError(f"unsupported operation kind: {kind!r}")

    def _source_file(self, operation: Operation) -> Path:
        if operation.source is None:
            raise ValueError(f"{operation.kind.value} requires a source: {operation.path!r}")
        return self.resolve_source_root(operation.source) / operation.path

    def _create_dir(self, working_file: Path, backup_file: Path) -> None:
        logger.info("Creating dir: %s", working_file)
        if os.path.lexists(working_file) and not _is_real_dir(working_file):
            if not os.path.lexists(backup_file):
                logger.debug(" - Creating backup: %s", backup_file)
                backup_file.parent.mkdir(parents=True, exist_ok=True)
                os.link(working_file, backup_file)
            logger.debug(" - Removing file: %s", working_file)
            working_file.unlink()
        working_file.mkdir(parents=True, exist_ok=True)

    def _remove_dir(self, working_file: Path, backup_file: Path) -> None:
        if not _is_real_dir(working_file):
            logger.warning("Dir already gone: %s", working_file)
        elif any(working_file.iterdir()):
            logger.warning("Leaving non-empty dir in place: %s", working_file)
            return
        else:
            logger.info("Removing dir: %s", working_file)
            working_file.rmdir()
        self._restore_backup(working_file, backup_file)

    def _create_file(self, operation: Operation, working_file: Path, backup_file: Path) -> None:
        source_file = self._source_file(operation)
        logger.info("Creating file with hard link: %s -> %s (%s)", source_file, working_file, operation.source)
        if _is_real_dir(working_file):
            if os.path.lexists(backup_file):
                raise IsADirectoryError(errno.EISDIR, "directory in the way and backup slot taken", str(working_file))
            logger.debug(" - Moving dir to backup: %s", backup_file)
            backup_file.parent.mkdir(parents=True, exist_ok=True)
            os.rename(working_file, backup_file)
        elif os.path.lexists(working_file):
            already_linked = working_file.is_file() and os.path.samefile(working_file, source_file)
            if not already_linked and not os.path.lexists(backup_file):
                logger.debug(" - Creating backup: %s", backup_file)
                backup_file.parent.mkdir(parents=True, exist_ok=True)
                os.link(working_file, backup_file)
            logger.debug(" - Removing file: %s", working_file)
            working_file.unlink()
        working_file.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(" - Creating hard link")
        os.link(source_file, working_file)

    def _remove_file(self, working_file: Path, backup_file: Path) -> None:
        logger.info("Removing file: %s", working_file)
        if os.path.lexists(working_file):
            working_file.unlink()
        else:
            logger.warning("File already gone: %s", working_file)
        self._restore_backup(working_file, backup_file)

    def _restore_backup(self, working_file: Path, backup_file: Path) -> None:
        if not os.path.lexists(backup_file):
            return
        working_file.parent.mkdir(parents=True, exist_ok=True)
        if _is_real_dir(backup_file):
            logger.debug(" - Moving dir back from backup: %s -> %s", backup_file, working_file)
            os.rename(backup_file, working_file)
        else:
            logger.debug(" - Restoring backup with hard link: %s -> %s", backup_file, working_file)
            if not (os.path.lexists(working_file) and os.path.samefile(working_file, backup_file)):
                os.link(backup_file, working_file)
            backup_file.unlink()
        self._prune_backup_parents(backup_file.parent)

    def _change_source(self, operation: Operation, working_file: Path) -> None:
        source_file = self._source_file(operation)
        logger.info("Changing source: %s (%s)", working_file, operation.source)
        if os.path.lexists(working_file):
            logger.debug(" - Removing file: %s", working_file)
            working_file.unlink()
        working_file.parent.mkdir(parents=True, exist_ok=True)
        logger.debug(" - Creating hard link: %s -> %s", working_file, source_file)
        os.link(source_file, working_file)

    def _prune_backup_parents(self, directory: Path) -> None:
        """Remove empty backup directories between ``directory`` and the backup root."""
        while directory != self.backup_dir and self.backup_dir in directory.parents:
            if any(directory.iterdir()):
                return
            directory.rmdir()
            directory = directory.parent


def _is_real_dir(path: Path) -> bool:
    return path.is_dir() and not path.is_symlink()
