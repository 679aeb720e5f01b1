"""Merge engine: fold prioritized raw trees into one provenanced tree."""

from __future__ import annotations

import logging
from typing import Iterable

from .errors import PathTypeConflict
from .models import (
    ConflictPolicy,
    ProvenancedDirectory,
    ProvenancedFile,
    ProvenancedNode,
    RawDirectory,
    RawFile,
    RawNode,
    SourceHandle,
    empty_root,
    join_path,
)

logger = logging.getLogger(__name__)


def provenanced_copy(node: RawNode, source: SourceHandle) -> ProvenancedNode:
    """Deep-copy a raw subtree, tagging every file with ``source``."""
    if isinstance(node, RawFile):
        return ProvenancedFile(name=node.name, source=source)
    return ProvenancedDirectory(
        name=node.name,
        children={name: provenanced_copy(child, source) for name, child in node.children.items()},
    )


def overwrite_with(
    accumulator: ProvenancedDirectory,
    incoming: RawDirectory,
    source: SourceHandle,
    *,
    conflict_policy: ConflictPolicy = ConflictPolicy.REPLACE,
    path: str = "",
) -> None:
    """Overlay ``incoming`` onto ``accumulator`` in place; ``source`` wins every file it provides."""
    children = accumulator.children
    for name, new_node in incoming.children.items():
        child_path = join_path(path, name)
        existing = children.get(name)
        if existing is None:
            children[name] = provenanced_copy(new_node, source)
        elif isinstance(existing, ProvenancedDirectory) and isinstance(new_node, RawDirectory):
            overwrite_with(existing, new_node, source, conflict_policy=conflict_policy, path=child_path)
        elif isinstance(existing, ProvenancedFile) and isinstance(new_node, RawFile):
            children[name] = ProvenancedFile(name=name, source=source)
        else:
            _resolve_type_conflict(children, name, new_node, source, conflict_policy, child_path)


def _resolve_type_conflict(
    children: dict[str, ProvenancedNode],
    name: str,
    new_node: RawNode,
    source: SourceHandle,
    conflict_policy: ConflictPolicy,
    path: str,
) -> None:
    existing_kind = "directory" if isinstance(children[name], ProvenancedDirectory) else "file"
    incoming_kind = "directory" if isinstance(new_node, RawDirectory) else "file"
    if conflict_policy is ConflictPolicy.REJECT:
        raise PathTypeConflict(path, existing_kind, incoming_kind)
    if conflict_policy is ConflictPolicy.KEEP:
        logger.warning("Type conflict at %s: keeping lower-priority %s, ignoring %s from %s", path, existing_kind, incoming_kind, source)
        return
    logger.warning("Type conflict at %s: %s from %s replaces %s", path, incoming_kind, source, existing_kind)
    children[name] = provenanced_copy(new_node, source)


def merge(
    ordered_sources: Iterable[tuple[SourceHandle, RawDirectory]],
    *,
    conflict_policy: ConflictPolicy = ConflictPolicy.REPLACE,
) -> ProvenancedDirectory:
    """Merge sources given lowest priority first into a fresh provenanced tree.

    Args:
        ordered_sources: ``(handle, raw tree)`` pairs; later pairs overwrite earlier ones.
        conflict_policy: Resolution for a path that is a file in one source and a
            directory in another.

    Returns:
        A new root directory that shares no nodes with the inputs.

    Raises:
        PathTypeConflict: If ``conflict_policy`` is ``REJECT`` and a type conflict occurs.
    """
    tree = empty_root()
    logger.info("Calculating virtual tree")
    for handle, raw_tree in ordered_sources:
        logger.debug(" - Adding source: %s", handle)
        overwrite_with(tree, raw_tree, handle, conflict_policy=conflict_policy)
    return tree
