"""Persistence of the mod registry and deployed tree between invocations.

In memory, provenance is a process-local ``SourceHandle``; on disk it is the
mod's uuid. Each mod is stored with its metadata and the tree recorded by
its last scan, so loading does not touch the mod directories: a mod whose
directory has gone missing can still be deactivated and undeployed, and only
``rescan`` picks up changes on disk.
"""

from __future__ import annotations

import fcntl
import logging
import os
import tempfile
from contextlib import contextmanager
from datetime import UTC, datetime
from pathlib import Path
from typing import Callable, Iterator, Optional
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError

from .canonical import fingerprint
from .controller import OverlayController, PendingDeployment
from .errors import InvalidModState
from .models import (
    ConflictPolicy,
    ModMetadata,
    Operation,
    OperationKind,
    ProvenancedDirectory,
    ProvenancedFile,
    ProvenancedNode,
    RawDirectory,
    RawFile,
    RawNode,
    SourceHandle,
)
from .registry import ModRegistry

logger = logging.getLogger(__name__)

_LOCK_SUFFIX = ".lock"
STATE_VERSION = 2


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------

class TreeRecord(BaseModel):
    """A provenanced node; directories carry ``children``, files carry ``source``."""

    name: str
    source: Optional[UUID] = None
    children: Optional[dict[str, "TreeRecord"]] = None


class OperationRecord(BaseModel):
    path: str
    kind: OperationKind
    source: Optional[UUID] = None


class PendingRecord(BaseModel):
    target: TreeRecord
    operations: list[OperationRecord]
    completed: int = Field(ge=0)


class ModRecord(BaseModel):
    uuid: UUID
    directory: str
    metadata: ModMetadata
    tree: TreeRecord


class ManagerState(BaseModel):
    version: int = STATE_VERSION
    working_dir: str
    backup_dir: str
    mods: list[ModRecord] = Field(default_factory=list)
    active: list[UUID] = Field(default_factory=list)
    deployed: TreeRecord = Field(default_factory=lambda: TreeRecord(name="root", children={}))
    deployed_fingerprint: str = ""
    pending: Optional[PendingRecord] = None
    updated_at: Optional[datetime] = None


# ---------------------------------------------------------------------------
# Tree and operation conversion
# ---------------------------------------------------------------------------

def tree_to_record(node: ProvenancedNode, uuid_for: Callable[[SourceHandle], UUID]) -> TreeRecord:
    if isinstance(node, ProvenancedFile):
        return TreeRecord(name=node.name, source=uuid_for(node.source))
    return TreeRecord(
        name=node.name,
        children={name: tree_to_record(child, uuid_for) for name, child in node.children.items()},
    )


def raw_tree_to_record(node: RawNode) -> TreeRecord:
    if isinstance(node, RawFile):
        return TreeRecord(name=node.name)
    return TreeRecord(name=node.name, children={name: raw_tree_to_record(child) for name, child in node.children.items()})


def raw_tree_from_record(record: TreeRecord) -> RawNode:
    if record.children is None:
        return RawFile(name=record.name)
    return RawDirectory(
        name=record.name,
        children={name: raw_tree_from_record(child) for name, child in record.children.items()},
    )


def tree_from_record(record: TreeRecord, handle_for: Callable[[UUID], SourceHandle]) -> ProvenancedNode:
    if record.children is None:
        if record.source is None:
            raise ValueError(f"tree entry {record.name!r} has neither children nor source")
        return ProvenancedFile(name=record.name, source=handle_for(record.source))
    return ProvenancedDirectory(
        name=record.name,
        children={name: tree_from_record(child, handle_for) for name, child in record.children.items()},
    )


def _root_from_record(record: TreeRecord, handle_for: Callable[[UUID], SourceHandle]) -> ProvenancedDirectory:
    root = tree_from_record(record, handle_for)
    if not isinstance(root, ProvenancedDirectory):
        raise ValueError("persisted tree root must be a directory")
    return root


def operation_to_record(operation: Operation, uuid_for: Callable[[SourceHandle], UUID]) -> OperationRecord:
    source = uuid_for(operation.source) if operation.source is not None else None
    return OperationRecord(path=operation.path, kind=operation.kind, source=source)


def operation_from_record(record: OperationRecord, handle_for: Callable[[UUID], SourceHandle]) -> Operation:
    source = handle_for(record.source) if record.source is not None else None
    return Operation(path=record.path, kind=record.kind, source=source)


# ---------------------------------------------------------------------------
# File helpers
# ---------------------------------------------------------------------------

def _atomic_write_text(path: Path, content: str) -> None:
    """Write *content* to *path* via a temp file in the same directory and ``os.replace``."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(
        dir=str(path.parent),
        prefix=f".{path.name}.",
        suffix=".tmp",
    )
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as tmp_handle:
            tmp_handle.write(content)
            tmp_handle.flush()
            os.fsync(tmp_handle.fileno())
        os.replace(tmp_path, str(path))
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


# ---------------------------------------------------------------------------
# ManagerStateStore
# ---------------------------------------------------------------------------

class ManagerStateStore:
    """JSON state file for one working directory.

    Callers hold ``session()`` across load, mutation and save so two
    invocations never interleave.
    """

    def __init__(self, path: Path) -> None:
        self.path = path

    @property
    def lock_path(self) -> Path:
        return self.path.with_suffix(self.path.suffix + _LOCK_SUFFIX)

    @contextmanager
    def session(self) -> Iterator[None]:
        """Hold an exclusive ``fcntl`` lock on the state file's sidecar."""
        self.lock_path.parent.mkdir(parents=True, exist_ok=True)
        with self.lock_path.open("a+", encoding="utf-8") as lock_handle:
            fcntl.flock(lock_handle.fileno(), fcntl.LOCK_EX)
            try:
                yield
            finally:
                fcntl.flock(lock_handle.fileno(), fcntl.LOCK_UN)

    def read(self) -> ManagerState | None:
        """Read the persisted state, or ``None`` when no state file exists yet.

        Raises:
            ValueError: If the file is empty, not UTF-8, or fails validation.
        """
        if not self.path.is_file():
            return None
        try:
            text = self.path.read_text(encoding="utf-8")
        except UnicodeDecodeError as exc:
            raise ValueError(f"state file {self.path} contains invalid UTF-8 data") from exc
        if not text.strip():
            raise ValueError(f"state file {self.path} is empty")
        try:
            state = ManagerState.model_validate_json(text)
        except ValidationError as exc:
            raise ValueError(f"state file {self.path} failed validation: {exc}") from exc
        if state.version != STATE_VERSION:
            raise ValueError(f"state file {self.path} has unsupported version {state.version}")
        return state

    def write(self, state: ManagerState) -> None:
        _atomic_write_text(self.path, state.model_dump_json(indent=2))

    # ------------------------------------------------------------------
    # Controller round trip
    # ------------------------------------------------------------------

    def load(
        self,
        working_dir: Path,
        backup_dir: Path,
        *,
        metadata_filename: str = "mod.toml",
        conflict_policy: ConflictPolicy = ConflictPolicy.REPLACE,
    ) -> OverlayController:
        """Rebuild a controller from the state file, or a fresh one if none exists."""
        registry = ModRegistry(metadata_filename=metadata_filename)
        state = self.read()
        if state is None:
            return OverlayController(working_dir, backup_dir, registry=registry, conflict_policy=conflict_policy)

        if Path(state.working_dir) != Path(working_dir).resolve():
            raise ValueError(f"state file {self.path} belongs to working directory {state.working_dir}")

        for record in state.mods:
            if record.metadata.uuid != record.uuid:
                raise InvalidModState(f"mod record {record.uuid} carries metadata for {record.metadata.uuid}")
            tree = raw_tree_from_record(record.tree)
            if not isinstance(tree, RawDirectory):
                raise ValueError(f"recorded tree of mod {record.uuid} must be a directory")
            directory = Path(record.directory)
            if not directory.is_dir():
                logger.warning(
                    "Mod directory missing: %s (%s); only removing its files will work", directory, record.metadata.name
                )
            registry.restore_mod(record.metadata, directory, tree)
        for mod_uuid in state.active:
            registry.activate_mod(mod_uuid)

        deployed = _root_from_record(state.deployed, registry.handle_for)
        pending = None
        if state.pending is not None:
            pending = PendingDeployment(
                target=_root_from_record(state.pending.target, registry.handle_for),
                operations=[operation_from_record(op, registry.handle_for) for op in state.pending.operations],
                completed=state.pending.completed,
            )
        logger.debug("Loaded state for %d mod(s) from %s", len(state.mods), self.path)
        return OverlayController(
            working_dir,
            backup_dir,
            registry=registry,
            conflict_policy=conflict_policy,
            deployed_tree=deployed,
            pending=pending,
        )

    def save(self, controller: OverlayController) -> ManagerState:
        registry = controller.registry
        uuid_for = registry.uuid_for
        mods = [
            ModRecord(uuid=mod.uuid, directory=str(mod.directory), metadata=mod.metadata, tree=raw_tree_to_record(mod.tree))
            for mod in (registry.mod(metadata.uuid) for metadata in registry.active_mods() + registry.inactive_mods())
        ]
        deployed = tree_to_record(controller.deployed_tree, uuid_for)
        pending = None
        if controller.pending is not None:
            pending = PendingRecord(
                target=tree_to_record(controller.pending.target, uuid_for),
                operations=[operation_to_record(op, uuid_for) for op in controller.pending.operations],
                completed=controller.pending.completed,
            )
        state = ManagerState(
            working_dir=str(controller.working_dir),
            backup_dir=str(controller.backup_dir),
            mods=mods,
            active=[metadata.uuid for metadata in registry.active_mods()],
            deployed=deployed,
            deployed_fingerprint=fingerprint(deployed),
            pending=pending,
            updated_at=datetime.now(UTC),
        )
        self.write(state)
        logger.debug("Saved state to %s", self.path)
        return state


def deployed_fingerprint(controller: OverlayController) -> str:
    """Fingerprint of the deployed tree, independent of in-process handles."""
    return fingerprint(tree_to_record(controller.deployed_tree, controller.registry.uuid_for))
