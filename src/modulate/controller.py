"""Overlay controller.

Holds the deployed tree and runs merge -> diff -> execute on ``synchronize``.
Registry mutations (adding, activating, reordering mods) are in-memory intent
until ``synchronize`` applies them. The deployed tree is only replaced after
every operation has been applied; a partial failure is remembered as a
``PendingDeployment`` that the next ``synchronize`` (or ``resume``) finishes
before computing a new diff, unless ``abandon`` drops it first.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from uuid import UUID

from .diff import diff, replay
from .errors import BackupDirUnavailable, FilesystemOperationFailed, InvalidModState, WorkingDirNotFound
from .executor import DeploymentExecutor
from .merge import merge
from .models import ConflictPolicy, Operation, ProvenancedDirectory, empty_root, render_tree
from .registry import ModRegistry

logger = logging.getLogger(__name__)


@dataclass
class PendingDeployment:
    """A synchronization whose operations were only partly applied."""

    target: ProvenancedDirectory
    operations: list[Operation]
    completed: int

    @property
    def remaining(self) -> list[Operation]:
        return self.operations[self.completed:]


@dataclass(frozen=True)
class SyncReport:
    operations: list[Operation] = field(default_factory=list)
    resumed: int = 0

    @property
    def applied(self) -> int:
        return len(self.operations) + self.resumed


class OverlayController:
    def __init__(
        self,
        working_dir: Path,
        backup_dir: Path,
        *,
        registry: ModRegistry | None = None,
        conflict_policy: ConflictPolicy = ConflictPolicy.REPLACE,
        deployed_tree: ProvenancedDirectory | None = None,
        pending: PendingDeployment | None = None,
    ) -> None:
        working_dir = Path(working_dir)
        if not working_dir.is_dir():
            raise WorkingDirNotFound(f"working directory not found: {working_dir}")
        try:
            Path(backup_dir).mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            logger.error("Failed to create backup directory")
            raise BackupDirUnavailable(f"couldn't create backup directory {backup_dir}: {exc}") from exc

        self.working_dir = working_dir.resolve()
        self.backup_dir = Path(backup_dir).resolve()
        self.registry = registry if registry is not None else ModRegistry()
        self.conflict_policy = conflict_policy
        self._deployed = deployed_tree if deployed_tree is not None else empty_root()
        self._pending = pending
        self.executor = DeploymentExecutor(self.working_dir, self.backup_dir, self.registry.source_root)

    @property
    def deployed_tree(self) -> ProvenancedDirectory:
        return self._deployed

    @property
    def pending(self) -> PendingDeployment | None:
        return self._pending

    def build_tree(self) -> ProvenancedDirectory:
        """Merge the currently active sources without touching disk."""
        return merge(self.registry.active_sources(), conflict_policy=self.conflict_policy)

    def plan(self) -> list[Operation]:
        """Return the operations the next ``synchronize`` would apply."""
        if self._pending is not None:
            remaining = self._pending.remaining
            return remaining + diff(self._pending.target, self.build_tree())
        return diff(self._deployed, self.build_tree())

    def synchronize(self) -> SyncReport:
        """Bring the working directory in line with the active sources.

        Raises:
            PathTypeConflict: If merging fails under the ``reject`` policy; disk is untouched.
            BackupDirUnavailable: If the backup root vanished; disk is untouched.
            FilesystemOperationFailed: If an operation fails. The completed prefix
                stays applied and is recorded as pending.
        """
        resumed = self.resume().applied if self._pending is not None else 0

        new_tree = self.build_tree()
        operations = diff(self._deployed, new_tree)
        logger.info("Deploying %d operation(s)", len(operations))
        self._execute(new_tree, operations, start=0)
        return SyncReport(operations=operations, resumed=resumed)

    def resume(self) -> SyncReport:
        """Finish a partially applied synchronization, if any."""
        pending = self._pending
        if pending is None:
            return SyncReport()
        logger.info("Resuming deployment at operation %d/%d", pending.completed + 1, len(pending.operations))
        remaining = pending.remaining
        self._execute(pending.target, pending.operations, start=pending.completed)
        return SyncReport(operations=remaining)

    def abandon(self) -> list[Operation]:
        """Drop a partially applied synchronization without finishing it.

        The deployed tree becomes the previous one with the completed operations
        replayed onto it, so the next diff starts from what is on disk. Returns
        the operations that were never applied.
        """
        pending = self._pending
        if pending is None:
            return []
        self._deployed = replay(self._deployed, pending.operations[: pending.completed])
        self._pending = None
        logger.warning("Abandoned deployment with %d unapplied operation(s)", len(pending.remaining))
        return pending.remaining

    def _execute(self, target: ProvenancedDirectory, operations: list[Operation], *, start: int) -> None:
        try:
            self.executor.apply(operations, start=start)
        except FilesystemOperationFailed as exc:
            self._pending = PendingDeployment(target=target, operations=operations, completed=exc.completed)
            raise
        self._deployed = target
        self._pending = None

    def remove_mod(self, mod_uuid: UUID) -> None:
        """Unregister an inactive mod that no longer has files deployed."""
        handle = self.registry.handle_for(mod_uuid)
        trees = [self._deployed] + ([self._pending.target] if self._pending is not None else [])
        if any(handle in tree.sources() for tree in trees):
            raise InvalidModState(f"mod {mod_uuid} still has deployed files; synchronize before removing it")
        self.registry.remove_mod(mod_uuid)

    def render_tree(self) -> str:
        return render_tree(self._deployed, label=self.registry.label)
