from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Generic, Iterator, Sequence, TypeVar
from uuid import UUID

from .errors import InvalidModOrder, InvalidModState, InvalidSourceHandle, UnknownMod
from .metadata import load_mod_metadata
from .models import Mod, ModMetadata, RawDirectory, SourceHandle
from .scanner import DEFAULT_METADATA_FILENAME, scan

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class _Slot(Generic[T]):
    generation: int
    value: T | None = None


class SourceArena(Generic[T]):
    """Slot map issuing generation-checked handles.

    A slot freed by ``remove`` is reused with a bumped generation, so a handle
    kept past its removal never resolves to the slot's new occupant.
    """

    def __init__(self) -> None:
        self._slots: list[_Slot[T]] = []
        self._free: list[int] = []

    def insert(self, value: T) -> SourceHandle:
        if self._free:
            index = self._free.pop()
            slot = self._slots[index]
            slot.generation += 1
            slot.value = value
        else:
            index = len(self._slots)
            slot = _Slot(generation=0, value=value)
            self._slots.append(slot)
        return SourceHandle(index=index, generation=slot.generation)

    def get(self, handle: SourceHandle) -> T:
        return self._occupied(handle)[1]

    def replace(self, handle: SourceHandle, value: T) -> None:
        self._occupied(handle)[0].value = value

    def remove(self, handle: SourceHandle) -> T:
        slot, value = self._occupied(handle)
        slot.value = None
        self._free.append(handle.index)
        return value

    def __contains__(self, handle: object) -> bool:
        if not isinstance(handle, SourceHandle):
            return False
        try:
            self._occupied(handle)
        except InvalidSourceHandle:
            return False
        return True

    def __len__(self) -> int:
        return sum(1 for slot in self._slots if slot.value is not None)

    def __iter__(self) -> Iterator[SourceHandle]:
        for index, slot in enumerate(self._slots):
            if slot.value is not None:
                yield SourceHandle(index=index, generation=slot.generation)

    def _occupied(self, handle: SourceHandle) -> tuple[_Slot[T], T]:
        if not 0 <= handle.index < len(self._slots):
            raise InvalidSourceHandle(f"unknown source handle: {handle}")
        slot = self._slots[handle.index]
        value = slot.value
        if slot.generation != handle.generation or value is None:
            raise InvalidSourceHandle(f"stale source handle: {handle}")
        return slot, value


class ModRegistry:
    """Registered mods and the priority order of the active ones.

    The active list is kept lowest priority first: activating a mod appends it,
    making it the highest-priority source. Nothing here touches the working
    directory; changes take effect on the next synchronization.
    """

    def __init__(self, *, metadata_filename: str = DEFAULT_METADATA_FILENAME) -> None:
        self.metadata_filename = metadata_filename
        self._arena: SourceArena[Mod] = SourceArena()
        self._by_uuid: dict[UUID, SourceHandle] = {}
        self._active: list[SourceHandle] = []
        self._inactive: list[SourceHandle] = []

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def add_mod(self, directory: Path) -> UUID:
        """Load and scan a mod directory and register it as inactive. Returns its uuid."""
        directory = Path(directory)
        metadata = load_mod_metadata(directory, self.metadata_filename)
        self._require_unregistered(metadata.uuid)
        tree = scan(directory, self.metadata_filename)
        self._register(Mod(metadata=metadata, directory=directory.resolve(), tree=tree))
        logger.info("Added mod: %s (%s)", metadata.name, metadata.uuid)
        return metadata.uuid

    def restore_mod(self, metadata: ModMetadata, directory: Path, tree: RawDirectory) -> UUID:
        """Register a mod (inactive) from a previously recorded scan, without reading disk."""
        self._require_unregistered(metadata.uuid)
        self._register(Mod(metadata=metadata, directory=Path(directory), tree=tree))
        logger.debug("Restored mod: %s (%s)", metadata.name, metadata.uuid)
        return metadata.uuid

    def _require_unregistered(self, mod_uuid: UUID) -> None:
        if mod_uuid in self._by_uuid:
            raise InvalidModState(f"mod already registered: {mod_uuid}")

    def _register(self, mod: Mod) -> None:
        handle = self._arena.insert(mod)
        self._by_uuid[mod.uuid] = handle
        self._inactive.append(handle)

    def remove_mod(self, mod_uuid: UUID) -> None:
        """Unregister an inactive mod."""
        handle = self.handle_for(mod_uuid)
        if handle in self._active:
            raise InvalidModState(f"cannot remove active mod: {mod_uuid}")
        self._inactive.remove(handle)
        del self._by_uuid[mod_uuid]
        mod = self._arena.remove(handle)
        logger.info("Removed mod: %s (%s)", mod.name, mod_uuid)

    def rescan_mod(self, mod_uuid: UUID) -> None:
        """Re-read a mod's metadata and tree from disk, keeping its handle and position."""
        handle = self.handle_for(mod_uuid)
        mod = self._arena.get(handle)
        metadata = load_mod_metadata(mod.directory, self.metadata_filename)
        if metadata.uuid != mod_uuid:
            raise InvalidModState(f"mod at {mod.directory} changed uuid from {mod_uuid} to {metadata.uuid}")
        self._arena.replace(handle, Mod(metadata=metadata, directory=mod.directory, tree=scan(mod.directory, self.metadata_filename)))
        logger.info("Rescanned mod: %s (%s)", metadata.name, mod_uuid)

    # ------------------------------------------------------------------
    # Activation and ordering
    # ------------------------------------------------------------------

    def activate_mod(self, mod_uuid: UUID) -> None:
        handle = self.handle_for(mod_uuid)
        if handle in self._active:
            raise InvalidModState(f"mod already active: {mod_uuid}")
        self._inactive.remove(handle)
        self._active.append(handle)
        logger.info("Activated mod: %s", self._arena.get(handle).name)

    def deactivate_mod(self, mod_uuid: UUID) -> None:
        handle = self.handle_for(mod_uuid)
        if handle not in self._active:
            raise InvalidModState(f"mod not active: {mod_uuid}")
        self._active.remove(handle)
        self._inactive.append(handle)
        logger.info("Deactivated mod: %s", self._arena.get(handle).name)

    def reorder_mods(self, order: Sequence[UUID]) -> None:
        """Replace the active order, lowest priority first.

        ``order`` must name every active mod exactly once.
        """
        if len(order) != len(self._active) or len(set(order)) != len(order):
            raise InvalidModOrder(f"order must list each active mod exactly once: {[str(u) for u in order]}")
        try:
            handles = [self._by_uuid[mod_uuid] for mod_uuid in order]
        except KeyError as exc:
            raise InvalidModOrder(f"order names an unknown mod: {exc.args[0]}") from exc
        if set(handles) != set(self._active):
            raise InvalidModOrder(f"order must be a permutation of the active mods: {[str(u) for u in order]}")
        self._active = handles
        logger.info("Reordered mods: %s", ", ".join(self._arena.get(handle).name for handle in handles))

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def handle_for(self, mod_uuid: UUID) -> SourceHandle:
        try:
            return self._by_uuid[mod_uuid]
        except KeyError:
            raise UnknownMod(f"unknown mod: {mod_uuid}") from None

    def uuid_for(self, handle: SourceHandle) -> UUID:
        return self._arena.get(handle).uuid

    def get(self, handle: SourceHandle) -> Mod:
        return self._arena.get(handle)

    def mod(self, mod_uuid: UUID) -> Mod:
        return self._arena.get(self.handle_for(mod_uuid))

    def source_root(self, handle: SourceHandle) -> Path:
        return self._arena.get(handle).directory

    def is_active(self, mod_uuid: UUID) -> bool:
        return self.handle_for(mod_uuid) in self._active

    def active_mods(self) -> list[ModMetadata]:
        return [self._arena.get(handle).metadata for handle in self._active]

    def inactive_mods(self) -> list[ModMetadata]:
        return [self._arena.get(handle).metadata for handle in self._inactive]

    def active_sources(self) -> list[tuple[SourceHandle, RawDirectory]]:
        """``(handle, raw tree)`` for every active mod, lowest priority first."""
        return [(handle, self._arena.get(handle).tree) for handle in self._active]

    def label(self, handle: SourceHandle) -> str:
        if handle in self._arena:
            return self._arena.get(handle).name
        return f"<removed {handle}>"

    def __len__(self) -> int:
        return len(self._arena)
