"""Diff engine.

Compares the deployed provenanced tree with a newly merged one and emits the
ordered operations that transform the former into the latter. It is a
name-keyed set difference at each level, not a general tree-edit distance:

1. entries only in the old tree are removed, children before their directory;
2. entries in both trees recurse (directories) or change source (files whose
   provenance differs); an entry that changed type is removed, then created;
3. entries only in the new tree are created, a directory before its children.

Names are visited in sorted order, so the output is deterministic.
"""

from __future__ import annotations

import copy
from typing import Sequence

from .models import (
    Operation,
    OperationKind,
    ProvenancedDirectory,
    ProvenancedFile,
    ProvenancedNode,
    join_path,
)


def diff(old: ProvenancedDirectory, new: ProvenancedDirectory) -> list[Operation]:
    ops: list[Operation] = []
    _diff_directories(old, new, "", ops)
    return ops


def removal_operations(node: ProvenancedNode, path: str) -> list[Operation]:
    """Operations removing ``node`` at ``path`` in post-order."""
    ops: list[Operation] = []
    _emit_removal(node, path, ops)
    return ops


def creation_operations(node: ProvenancedNode, path: str) -> list[Operation]:
    """Operations creating ``node`` at ``path`` in pre-order."""
    ops: list[Operation] = []
    _emit_creation(node, path, ops)
    return ops


def _diff_directories(old: ProvenancedDirectory, new: ProvenancedDirectory, path: str, ops: list[Operation]) -> None:
    old_children = old.children
    new_children = new.children

    for name in sorted(old_children.keys() - new_children.keys()):
        _emit_removal(old_children[name], join_path(path, name), ops)

    for name in sorted(old_children.keys() & new_children.keys()):
        _diff_nodes(old_children[name], new_children[name], join_path(path, name), ops)

    for name in sorted(new_children.keys() - old_children.keys()):
        _emit_creation(new_children[name], join_path(path, name), ops)


def _diff_nodes(old: ProvenancedNode, new: ProvenancedNode, path: str, ops: list[Operation]) -> None:
    if isinstance(old, ProvenancedDirectory) and isinstance(new, ProvenancedDirectory):
        _diff_directories(old, new, path, ops)
    elif isinstance(old, ProvenancedFile) and isinstance(new, ProvenancedFile):
        if old.source != new.source:
            ops.append(Operation(path, OperationKind.CHANGE_SOURCE, new.source))
    else:
        _emit_removal(old, path, ops)
        _emit_creation(new, path, ops)


def _emit_removal(node: ProvenancedNode, path: str, ops: list[Operation]) -> None:
    if isinstance(node, ProvenancedFile):
        ops.append(Operation(path, OperationKind.REMOVE_FILE))
        return
    for name in sorted(node.children):
        _emit_removal(node.children[name], join_path(path, name), ops)
    ops.append(Operation(path, OperationKind.REMOVE_DIR))


def _emit_creation(node: ProvenancedNode, path: str, ops: list[Operation]) -> None:
    if isinstance(node, ProvenancedFile):
        ops.append(Operation(path, OperationKind.CREATE_FILE, node.source))
        return
    ops.append(Operation(path, OperationKind.CREATE_DIR))
    for name in sorted(node.children):
        _emit_creation(node.children[name], join_path(path, name), ops)


def replay(tree: ProvenancedDirectory, operations: Sequence[Operation]) -> ProvenancedDirectory:
    """Return a copy of ``tree`` with ``operations`` applied to it in order.

    Rebuilds the tree that matches disk after only a prefix of a diff was
    executed. Missing parents are created; removing an absent entry is a no-op.
    """
    result = copy.deepcopy(tree)
    for operation in operations:
        parent_path, _, name = operation.path.rpartition("/")
        parent = _directory_at(result, parent_path)
        kind = operation.kind
        if kind is OperationKind.CREATE_DIR:
            if not isinstance(parent.children.get(name), ProvenancedDirectory):
                parent.children[name] = ProvenancedDirectory(name=name)
        elif operation.source is not None:
            parent.children[name] = ProvenancedFile(name=name, source=operation.source)
        else:
            parent.children.pop(name, None)
    return result


def _directory_at(root: ProvenancedDirectory, path: str) -> ProvenancedDirectory:
    node = root
    for name in path.split("/") if path else ():
        child = node.children.get(name)
        if not isinstance(child, ProvenancedDirectory):
            child = ProvenancedDirectory(name=name)
            node.children[name] = child
        node = child
    return node
