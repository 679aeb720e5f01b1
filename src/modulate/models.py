from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Mapping, Union
from uuid import UUID

from pydantic import BaseModel, ConfigDict, field_validator

ROOT_NAME = "root"

SEMVER_RE = re.compile(
    r"^(0|[1-9]\d*)\.(0|[1-9]\d*)\.(0|[1-9]\d*)"
    r"(?:-((?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*)(?:\.(?:0|[1-9]\d*|\d*[a-zA-Z-][0-9a-zA-Z-]*))*))?"
    r"(?:\+([0-9a-zA-Z-]+(?:\.[0-9a-zA-Z-]+)*))?$"
)


class ConflictPolicy(str, Enum):
    """How the merge resolves a path that is a file in one source and a directory in another."""

    REPLACE = "replace"
    KEEP = "keep"
    REJECT = "reject"


class OperationKind(str, Enum):
    CREATE_DIR = "create_dir"
    REMOVE_DIR = "remove_dir"
    CREATE_FILE = "create_file"
    REMOVE_FILE = "remove_file"
    CHANGE_SOURCE = "change_source"


@dataclass(frozen=True, order=True)
class SourceHandle:
    """Generation-checked key into a ``SourceArena``."""

    index: int
    generation: int

    def __str__(self) -> str:
        return f"{self.index}v{self.generation}"


# ---------------------------------------------------------------------------
# Raw trees (one per source, immutable)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class RawFile:
    name: str


@dataclass(frozen=True)
class RawDirectory:
    name: str
    children: Mapping[str, RawNode] = field(default_factory=dict)

    def __post_init__(self) -> None:
        object.__setattr__(self, "children", MappingProxyType(dict(self.children)))


RawNode = Union[RawDirectory, RawFile]


# ---------------------------------------------------------------------------
# Provenanced trees (merge output, deployed state)
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class ProvenancedFile:
    name: str
    source: SourceHandle


@dataclass
class ProvenancedDirectory:
    name: str
    children: dict[str, ProvenancedNode] = field(default_factory=dict)

    def iter_files(self, prefix: str = "") -> list[tuple[str, ProvenancedFile]]:
        """Return ``(path, leaf)`` pairs for every file below this directory, sorted by path."""
        files: list[tuple[str, ProvenancedFile]] = []
        for name in sorted(self.children):
            child = self.children[name]
            path = join_path(prefix, name)
            if isinstance(child, ProvenancedDirectory):
                files.extend(child.iter_files(path))
            else:
                files.append((path, child))
        return files

    def sources(self) -> set[SourceHandle]:
        return {leaf.source for _, leaf in self.iter_files()}


ProvenancedNode = Union[ProvenancedDirectory, ProvenancedFile]


def empty_root() -> ProvenancedDirectory:
    return ProvenancedDirectory(name=ROOT_NAME)


def join_path(parent: str, name: str) -> str:
    return f"{parent}/{name}" if parent else name


def render_tree(node: ProvenancedNode, *, label=str, indent: int = 0) -> str:
    """Render a provenanced tree one entry per line, files suffixed with their source label."""
    pad = "  " * indent
    if isinstance(node, ProvenancedFile):
        return f"{pad}{node.name}: {label(node.source)}"
    lines = [f"{pad}{node.name}"]
    for name in sorted(node.children):
        lines.append(render_tree(node.children[name], label=label, indent=indent + 1))
    return "\n".join(lines)


# ---------------------------------------------------------------------------
# Operations
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Operation:
    path: str
    kind: OperationKind
    source: SourceHandle | None = None

    def __post_init__(self) -> None:
        needs_source = self.kind in (OperationKind.CREATE_FILE, OperationKind.CHANGE_SOURCE)
        if needs_source and self.source is None:
            raise ValueError(f"{self.kind.value} requires a source: {self.path!r}")
        if not needs_source and self.source is not None:
            raise ValueError(f"{self.kind.value} does not take a source: {self.path!r}")

    def __str__(self) -> str:
        suffix = f" <- {self.source}" if self.source is not None else ""
        return f"{self.kind.value} {self.path}{suffix}"


# ---------------------------------------------------------------------------
# Mods
# ---------------------------------------------------------------------------

class ModMetadata(BaseModel):
    """Descriptor read from a mod's metadata file."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    name: str
    version: str
    uuid: UUID

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("name must be non-empty")
        return value

    @field_validator("version")
    @classmethod
    def _version_is_semver(cls, value: str) -> str:
        value = value.strip()
        if not SEMVER_RE.match(value):
            raise ValueError(f"version must be a semantic version (MAJOR.MINOR.PATCH), got: {value!r}")
        return value


@dataclass
class Mod:
    metadata: ModMetadata
    directory: Path
    tree: RawDirectory

    @property
    def uuid(self) -> UUID:
        return self.metadata.uuid

    @property
    def name(self) -> str:
        return self.metadata.name
