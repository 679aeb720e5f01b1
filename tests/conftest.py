from __future__ import annotations

import uuid
from pathlib import Path
from typing import Callable

import pytest

MakeMod = Callable[..., Path]


def write_mod(root: Path, name: str, files: dict[str, str], *, mod_uuid: uuid.UUID | None = None, version: str = "1.0.0") -> Path:
    """Create a mod directory with a ``mod.toml`` descriptor and the given files."""
    directory = root / name
    directory.mkdir(parents=True, exist_ok=True)
    mod_uuid = mod_uuid or uuid.uuid5(uuid.NAMESPACE_URL, f"modulate-test/{name}")
    (directory / "mod.toml").write_text(
        f'name = "{name}"\nversion = "{version}"\nuuid = "{mod_uuid}"\n',
        encoding="utf-8",
    )
    for rel_path, content in files.items():
        path = directory / rel_path
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(content, encoding="utf-8")
    return directory


@pytest.fixture
def make_mod(tmp_path: Path) -> MakeMod:
    mods_root = tmp_path / "mods"

    def _make(name: str, files: dict[str, str], **kwargs) -> Path:  # noqa: ANN003
        return write_mod(mods_root, name, files, **kwargs)

    return _make


@pytest.fixture
def working_dir(tmp_path: Path) -> Path:
    path = tmp_path / "working_dir"
    path.mkdir()
    return path


@pytest.fixture
def backup_dir(tmp_path: Path) -> Path:
    return tmp_path / "bak_dir"


def snapshot_dir(root: Path) -> dict[str, str | None]:
    """Map every entry below ``root`` to its text (files) or ``None`` (directories)."""
    entries: dict[str, str | None] = {}
    for path in sorted(root.rglob("*")):
        rel = path.relative_to(root).as_posix()
        entries[rel] = None if path.is_dir() else path.read_text(encoding="utf-8")
    return entries
