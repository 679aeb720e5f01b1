from __future__ import annotations

from typing import TYPE_CHECKING, Sequence

if TYPE_CHECKING:
    from .models import Operation


class ModulateError(Exception):
    """Base class for every error raised by modulate."""


class WorkingDirNotFound(ModulateError):
    pass


class SourceNotFound(ModulateError):
    """Raised when a scan root is missing or is not a directory."""


class SourceScanFailed(ModulateError):
    pass


class MetadataMissing(ModulateError):
    pass


class MetadataInvalid(ModulateError):
    pass


class BackupDirUnavailable(ModulateError):
    """Raised when the backup root cannot be created or has disappeared.

    Deployment never proceeds without a backup directory, since it is the only
    place pre-existing working files are preserved.
    """


class PathTypeConflict(ModulateError):
    def __init__(self, path: str, existing: str, incoming: str) -> None:
        super().__init__(f"path {path!r} is a {existing} in a lower-priority source but a {incoming} in a higher one")
        self.path = path
        self.existing = existing
        self.incoming = incoming


class InvalidSourceHandle(ModulateError):
    pass


class UnknownMod(ModulateError):
    pass


class InvalidModState(ModulateError):
    pass


class InvalidModOrder(ModulateError):
    pass


class FilesystemOperationFailed(ModulateError):
    """Raised when a create/remove/link call fails mid-deployment.

    ``completed`` is the number of operations of the submitted list that were
    fully applied before ``operation`` failed; ``remaining`` starts with the
    failed operation. Nothing is rolled back.
    """

    def __init__(
        self,
        operation: Operation,
        cause: OSError,
        *,
        completed: int = 0,
        remaining: Sequence[Operation] = (),
    ) -> None:
        super().__init__(f"{operation.kind.value} {operation.path!r} failed after {completed} operation(s): {cause}")
        self.operation = operation
        self.cause = cause
        self.completed = completed
        self.remaining = list(remaining) or [operation]
