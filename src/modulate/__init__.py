from importlib.metadata import version

from .canonical import fingerprint, to_canonical_json
from .controller import OverlayController, PendingDeployment, SyncReport
from .diff import creation_operations, diff, removal_operations, replay
from .errors import (
    BackupDirUnavailable,
    FilesystemOperationFailed,
    InvalidModOrder,
    InvalidModState,
    InvalidSourceHandle,
    MetadataInvalid,
    MetadataMissing,
    ModulateError,
    PathTypeConflict,
    SourceNotFound,
    SourceScanFailed,
    UnknownMod,
    WorkingDirNotFound,
)
from .executor import DeploymentExecutor
from .merge import merge
from .metadata import load_mod_metadata
from .models import (
    ConflictPolicy,
    Mod,
    ModMetadata,
    Operation,
    OperationKind,
    ProvenancedDirectory,
    ProvenancedFile,
    RawDirectory,
    RawFile,
    SourceHandle,
    empty_root,
)
from .registry import ModRegistry, SourceArena
from .scanner import scan
from .settings import RuntimeSettings
from .state_store import ManagerState, ManagerStateStore


def get_version() -> str:
    try:
        return version("modulate")
    except Exception:
        return "0.0.0"


__all__ = [
    "BackupDirUnavailable",
    "ConflictPolicy",
    "DeploymentExecutor",
    "FilesystemOperationFailed",
    "InvalidModOrder",
    "InvalidModState",
    "InvalidSourceHandle",
    "ManagerState",
    "ManagerStateStore",
    "MetadataInvalid",
    "MetadataMissing",
    "Mod",
    "ModMetadata",
    "ModRegistry",
    "ModulateError",
    "Operation",
    "OperationKind",
    "OverlayController",
    "PathTypeConflict",
    "PendingDeployment",
    "ProvenancedDirectory",
    "ProvenancedFile",
    "RawDirectory",
    "RawFile",
    "RuntimeSettings",
    "SourceArena",
    "SourceHandle",
    "SourceNotFound",
    "SourceScanFailed",
    "SyncReport",
    "UnknownMod",
    "WorkingDirNotFound",
    "creation_operations",
    "diff",
    "empty_root",
    "fingerprint",
    "get_version",
    "load_mod_metadata",
    "merge",
    "removal_operations",
    "replay",
    "scan",
    "to_canonical_json",
]
