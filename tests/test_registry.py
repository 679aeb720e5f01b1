from __future__ import annotations

import uuid
from pathlib import Path

import pytest

from modulate import (
    InvalidModOrder,
    InvalidModState,
    InvalidSourceHandle,
    MetadataInvalid,
    MetadataMissing,
    ModMetadata,
    ModRegistry,
    RawDirectory,
    RawFile,
    SourceArena,
    SourceNotFound,
    UnknownMod,
    load_mod_metadata,
)


def test_arena_rejects_stale_handle_after_slot_reuse() -> None:
    arena: SourceArena[str] = SourceArena()
    first = arena.insert("first")
    arena.remove(first)
    second = arena.insert("second")

    assert second.index == first.index
    assert second != first
    assert arena.get(second) == "second"
    assert first not in arena
    with pytest.raises(InvalidSourceHandle, match="stale"):
        arena.get(first)
    with pytest.raises(InvalidSourceHandle, match="stale"):
        arena.remove(first)


def test_arena_iterates_live_handles() -> None:
    arena: SourceArena[str] = SourceArena()
    handles = [arena.insert(value) for value in ("a", "b", "c")]
    arena.remove(handles[1])

    assert list(arena) == [handles[0], handles[2]]
    assert len(arena) == 2


def test_metadata_round_trip(make_mod) -> None:  # noqa: ANN001
    mod_uuid = uuid.uuid4()
    directory = make_mod("mod1", {}, mod_uuid=mod_uuid, version="2.1.0-beta.1")

    metadata = load_mod_metadata(directory)

    assert metadata.name == "mod1"
    assert metadata.version == "2.1.0-beta.1"
    assert metadata.uuid == mod_uuid


def test_metadata_missing(tmp_path: Path) -> None:
    with pytest.raises(MetadataMissing):
        load_mod_metadata(tmp_path)


@pytest.mark.parametrize(
    "content",
    [
        "name = \n",
        'name = "m"\nversion = "1.0"\nuuid = "6f1f3b1e-7c1a-4c55-9a55-111111111111"\n',
        'name = "m"\nversion = "1.0.0"\nuuid = "not-a-uuid"\n',
        'name = "  "\nversion = "1.0.0"\nuuid = "6f1f3b1e-7c1a-4c55-9a55-111111111111"\n',
    ],
)
def test_metadata_invalid(tmp_path: Path, content: str) -> None:
    (tmp_path / "mod.toml").write_text(content, encoding="utf-8")
    with pytest.raises(MetadataInvalid):
        load_mod_metadata(tmp_path)


def test_add_mod_starts_inactive_and_activation_appends(make_mod) -> None:  # noqa: ANN001
    registry = ModRegistry()
    mod1 = registry.add_mod(make_mod("mod1", {"a.txt": "a"}))
    mod2 = registry.add_mod(make_mod("mod2", {"b.txt": "b"}))

    assert [m.uuid for m in registry.inactive_mods()] == [mod1, mod2]
    assert registry.active_mods() == []

    registry.activate_mod(mod2)
    registry.activate_mod(mod1)

    assert [m.uuid for m in registry.active_mods()] == [mod2, mod1]
    assert [registry.uuid_for(handle) for handle, _ in registry.active_sources()] == [mod2, mod1]
    assert registry.inactive_mods() == []


def test_add_mod_rejects_duplicates_and_missing_dirs(make_mod, tmp_path: Path) -> None:  # noqa: ANN001
    registry = ModRegistry()
    directory = make_mod("mod1", {})
    registry.add_mod(directory)

    with pytest.raises(InvalidModState, match="already registered"):
        registry.add_mod(directory)
    with pytest.raises(MetadataMissing):
        registry.add_mod(tmp_path / "nowhere")


def test_scan_failure_surfaces_as_source_not_found(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    ghost = ModMetadata(name="ghost", version="1.0.0", uuid=uuid.uuid4())
    monkeypatch.setattr("modulate.registry.load_mod_metadata", lambda directory, filename: ghost)
    registry = ModRegistry()
    with pytest.raises(SourceNotFound):
        registry.add_mod(tmp_path / "nowhere")


def test_activation_state_errors(make_mod) -> None:  # noqa: ANN001
    registry = ModRegistry()
    mod1 = registry.add_mod(make_mod("mod1", {}))

    with pytest.raises(InvalidModState):
        registry.deactivate_mod(mod1)
    registry.activate_mod(mod1)
    with pytest.raises(InvalidModState):
        registry.activate_mod(mod1)
    with pytest.raises(InvalidModState, match="active"):
        registry.remove_mod(mod1)
    with pytest.raises(UnknownMod):
        registry.activate_mod(uuid.uuid4())


def test_reorder_requires_permutation_of_active_mods(make_mod) -> None:  # noqa: ANN001
    registry = ModRegistry()
    mod1 = registry.add_mod(make_mod("mod1", {}))
    mod2 = registry.add_mod(make_mod("mod2", {}))
    mod3 = registry.add_mod(make_mod("mod3", {}))
    registry.activate_mod(mod1)
    registry.activate_mod(mod2)

    for bad_order in ([mod1], [mod1, mod1], [mod1, mod3], [mod1, uuid.uuid4()]):
        with pytest.raises(InvalidModOrder):
            registry.reorder_mods(bad_order)

    registry.reorder_mods([mod2, mod1])
    assert [m.uuid for m in registry.active_mods()] == [mod2, mod1]


def test_removed_mod_handle_is_not_reused(make_mod) -> None:  # noqa: ANN001
    registry = ModRegistry()
    mod1 = registry.add_mod(make_mod("mod1", {}))
    old_handle = registry.handle_for(mod1)
    registry.remove_mod(mod1)
    mod2 = registry.add_mod(make_mod("mod2", {}))

    assert registry.handle_for(mod2) != old_handle
    with pytest.raises(InvalidSourceHandle):
        registry.source_root(old_handle)
    assert registry.label(old_handle).startswith("<removed")


def test_rescan_picks_up_new_files(make_mod) -> None:  # noqa: ANN001
    registry = ModRegistry()
    directory = make_mod("mod1", {"a.txt": "a"})
    mod1 = registry.add_mod(directory)
    handle = registry.handle_for(mod1)
    (directory / "b.txt").write_text("b", encoding="utf-8")

    registry.rescan_mod(mod1)

    assert registry.handle_for(mod1) == handle
    assert set(registry.get(handle).tree.children) == {"a.txt", "b.txt"}


def test_restore_mod_registers_recorded_scan_without_disk(tmp_path: Path) -> None:
    metadata = ModMetadata(name="gone", version="1.0.0", uuid=uuid.uuid4())
    tree = RawDirectory(name="gone", children={"a.txt": RawFile("a.txt")})
    registry = ModRegistry()

    restored = registry.restore_mod(metadata, tmp_path / "gone", tree)

    assert restored == metadata.uuid
    assert registry.mod(restored).tree == tree
    assert [m.uuid for m in registry.inactive_mods()] == [restored]
    with pytest.raises(InvalidModState, match="already registered"):
        registry.restore_mod(metadata, tmp_path / "gone", tree)
