from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path

from .models import ConflictPolicy


@dataclass(frozen=True)
class RuntimeSettings:
    """Runtime settings loaded from environment with fail-fast validation."""

    working_dir: str = ""
    backup_dir: str = ""
    state_file: str = ".modulate/state.json"
    metadata_filename: str = "mod.toml"
    conflict_policy: str = ConflictPolicy.REPLACE.value

    @classmethod
    def from_env(cls) -> "RuntimeSettings":
        return cls(
            working_dir=os.getenv("MODULATE_WORKING_DIR", ""),
            backup_dir=os.getenv("MODULATE_BACKUP_DIR", ""),
            state_file=os.getenv("MODULATE_STATE_FILE", ".modulate/state.json"),
            metadata_filename=os.getenv("MODULATE_METADATA_FILENAME", "mod.toml"),
            conflict_policy=os.getenv("MODULATE_CONFLICT_POLICY", ConflictPolicy.REPLACE.value),
        ).normalized()

    def normalized(self) -> "RuntimeSettings":
        """Validate and normalize all fields. Raises ValueError on invalid configuration."""
        metadata_filename = self.metadata_filename.strip()
        if not metadata_filename:
            raise ValueError("MODULATE_METADATA_FILENAME must be non-empty")
        if "/" in metadata_filename or "\\" in metadata_filename or metadata_filename in {".", ".."}:
            raise ValueError(f"MODULATE_METADATA_FILENAME must be a bare file name, got: {metadata_filename!r}")

        if not self.state_file.strip():
            raise ValueError("MODULATE_STATE_FILE must be non-empty")

        conflict_policy = self.conflict_policy.strip().lower()
        allowed = {policy.value for policy in ConflictPolicy}
        if conflict_policy not in allowed:
            raise ValueError(f"MODULATE_CONFLICT_POLICY must be one of: {', '.join(sorted(allowed))}")

        return RuntimeSettings(
            working_dir=self.working_dir.strip(),
            backup_dir=self.backup_dir.strip(),
            state_file=self.state_file.strip(),
            metadata_filename=metadata_filename,
            conflict_policy=conflict_policy,
        )

    @property
    def policy(self) -> ConflictPolicy:
        return ConflictPolicy(self.conflict_policy)

    def working_dir_path(self) -> Path:
        if not self.working_dir:
            raise ValueError("MODULATE_WORKING_DIR must be set")
        return Path(self.working_dir)

    def backup_dir_path(self) -> Path:
        """Return the backup root, defaulting to a ``<working_dir>_bak`` sibling."""
        if self.backup_dir:
            return Path(self.backup_dir)
        working_dir = self.working_dir_path()
        return working_dir.parent / f"{working_dir.name}_bak"

    def state_file_path(self, base: Path | None = None) -> Path:
        path = Path(self.state_file)
        if path.is_absolute():
            return path
        return (base if base is not None else Path.cwd()) / path
