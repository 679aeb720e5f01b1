from __future__ import annotations

from pathlib import Path

import pytest

from modulate import (
    ConflictPolicy,
    Operation,
    OperationKind,
    PathTypeConflict,
    ProvenancedDirectory,
    ProvenancedFile,
    RawDirectory,
    RawFile,
    SourceHandle,
    SourceNotFound,
    diff,
    empty_root,
    merge,
    replay,
    scan,
)

A = SourceHandle(index=0, generation=0)
B = SourceHandle(index=1, generation=0)


def raw_dir(name: str, *children: RawDirectory | RawFile) -> RawDirectory:
    return RawDirectory(name=name, children={child.name: child for child in children})


def ops_summary(ops: list[Operation]) -> list[tuple[str, str]]:
    return [(op.kind.value, op.path) for op in ops]


# ---------------------------------------------------------------------------
# Scanner
# ---------------------------------------------------------------------------

def test_scan_excludes_metadata_file_at_every_level(make_mod) -> None:  # noqa: ANN001
    directory = make_mod("mod1", {"a.txt": "a", "nested/b.txt": "b", "nested/mod.toml": "x = 1"})

    tree = scan(directory)

    assert set(tree.children) == {"a.txt", "nested"}
    nested = tree.children["nested"]
    assert isinstance(nested, RawDirectory)
    assert set(nested.children) == {"b.txt"}
    assert isinstance(nested.children["b.txt"], RawFile)


def test_scan_missing_or_file_root_raises(tmp_path: Path) -> None:
    with pytest.raises(SourceNotFound):
        scan(tmp_path / "missing")
    file_path = tmp_path / "plain.txt"
    file_path.write_text("x", encoding="utf-8")
    with pytest.raises(SourceNotFound):
        scan(file_path)


def test_scan_skips_symlinks(make_mod) -> None:  # noqa: ANN001
    directory = make_mod("mod1", {"a.txt": "a"})
    (directory / "link.txt").symlink_to(directory / "a.txt")

    tree = scan(directory)

    assert set(tree.children) == {"a.txt"}


def test_scan_is_deterministic(make_mod) -> None:  # noqa: ANN001
    directory = make_mod("mod1", {"z.txt": "z", "a/b/c.txt": "c", "m.txt": "m"})
    assert scan(directory) == scan(directory)


def test_raw_tree_children_are_read_only() -> None:
    tree = raw_dir("root", RawFile("a"))
    with pytest.raises(TypeError):
        tree.children["b"] = RawFile("b")  # type: ignore[index]


# ---------------------------------------------------------------------------
# Merge
# ---------------------------------------------------------------------------

def test_merge_priority_last_source_wins() -> None:
    tree_a = raw_dir("a", RawFile("x"), RawFile("only_a"))
    tree_b = raw_dir("b", RawFile("x"))

    ab = merge([(A, tree_a), (B, tree_b)])
    ba = merge([(B, tree_b), (A, tree_a)])

    assert ab.children["x"] == ProvenancedFile("x", B)
    assert ab.children["only_a"] == ProvenancedFile("only_a", A)
    assert ba.children["x"] == ProvenancedFile("x", A)


def test_merge_is_idempotent() -> None:
    sources = [
        (A, raw_dir("a", RawFile("a.txt"), raw_dir("common", RawFile("x.txt")))),
        (B, raw_dir("b", RawFile("b.txt"), raw_dir("common", RawFile("x.txt")))),
    ]
    assert merge(sources) == merge(sources)


def test_merge_root_is_synthetic_and_empty_without_sources() -> None:
    tree = merge([])
    assert tree == empty_root()
    assert tree.name == "root"


def test_merge_recurses_into_shared_directories() -> None:
    tree = merge(
        [
            (A, raw_dir("a", raw_dir("common", RawFile("x.txt"), RawFile("a.txt")))),
            (B, raw_dir("b", raw_dir("common", RawFile("x.txt"), RawFile("b.txt")))),
        ]
    )
    common = tree.children["common"]
    assert isinstance(common, ProvenancedDirectory)
    assert common.children == {
        "x.txt": ProvenancedFile("x.txt", B),
        "a.txt": ProvenancedFile("a.txt", A),
        "b.txt": ProvenancedFile("b.txt", B),
    }


def test_merge_does_not_alias_between_results() -> None:
    sources = [(A, raw_dir("a", raw_dir("dir", RawFile("f"))))]
    first = merge(sources)
    second = merge(sources)
    first_dir = first.children["dir"]
    assert isinstance(first_dir, ProvenancedDirectory)
    first_dir.children.clear()
    second_dir = second.children["dir"]
    assert isinstance(second_dir, ProvenancedDirectory)
    assert "f" in second_dir.children


def test_merge_type_conflict_policies() -> None:
    as_file = raw_dir("a", RawFile("thing"))
    as_dir = raw_dir("b", raw_dir("thing", RawFile("inner")))

    replaced = merge([(A, as_file), (B, as_dir)], conflict_policy=ConflictPolicy.REPLACE)
    thing = replaced.children["thing"]
    assert isinstance(thing, ProvenancedDirectory)
    assert thing.children["inner"] == ProvenancedFile("inner", B)

    kept = merge([(A, as_file), (B, as_dir)], conflict_policy=ConflictPolicy.KEEP)
    assert kept.children["thing"] == ProvenancedFile("thing", A)

    with pytest.raises(PathTypeConflict, match="thing"):
        merge([(A, as_file), (B, as_dir)], conflict_policy=ConflictPolicy.REJECT)


# ---------------------------------------------------------------------------
# Diff
# ---------------------------------------------------------------------------

def test_diff_of_identical_trees_is_empty() -> None:
    tree = merge([(A, raw_dir("a", RawFile("a.txt"), raw_dir("d", raw_dir("e", RawFile("f")))))])
    assert diff(tree, tree) == []
    assert diff(empty_root(), empty_root()) == []


def test_diff_creation_is_preorder() -> None:
    new = merge([(A, raw_dir("a", raw_dir("dir", raw_dir("sub", RawFile("file")), RawFile("top"))))])

    ops = diff(empty_root(), new)

    assert ops_summary(ops) == [
        ("create_dir", "dir"),
        ("create_dir", "dir/sub"),
        ("create_file", "dir/sub/file"),
        ("create_file", "dir/top"),
    ]
    assert all(op.source == A for op in ops if op.kind is OperationKind.CREATE_FILE)


def test_diff_removal_is_postorder() -> None:
    old = merge([(A, raw_dir("a", raw_dir("dir", raw_dir("sub", RawFile("file")))))])

    ops = diff(old, empty_root())

    assert ops_summary(ops) == [
        ("remove_file", "dir/sub/file"),
        ("remove_dir", "dir/sub"),
        ("remove_dir", "dir"),
    ]


def test_diff_change_source_only_when_provenance_differs() -> None:
    tree_a = raw_dir("a", RawFile("x"), RawFile("y"))
    tree_b = raw_dir("b", RawFile("x"))
    old = merge([(A, tree_a)])
    new = merge([(A, tree_a), (B, tree_b)])

    assert diff(old, new) == [Operation("x", OperationKind.CHANGE_SOURCE, B)]
    assert diff(new, old) == [Operation("x", OperationKind.CHANGE_SOURCE, A)]


def test_diff_emits_removals_then_updates_then_creations() -> None:
    old = ProvenancedDirectory(
        "root",
        {
            "gone": ProvenancedFile("gone", A),
            "kept": ProvenancedFile("kept", A),
        },
    )
    new = ProvenancedDirectory(
        "root",
        {
            "kept": ProvenancedFile("kept", B),
            "added": ProvenancedFile("added", B),
        },
    )

    assert ops_summary(diff(old, new)) == [
        ("remove_file", "gone"),
        ("change_source", "kept"),
        ("create_file", "added"),
    ]


def test_diff_type_change_removes_then_creates() -> None:
    old = ProvenancedDirectory("root", {"thing": ProvenancedFile("thing", A)})
    new = ProvenancedDirectory(
        "root",
        {"thing": ProvenancedDirectory("thing", {"inner": ProvenancedFile("inner", B)})},
    )

    assert ops_summary(diff(old, new)) == [
        ("remove_file", "thing"),
        ("create_dir", "thing"),
        ("create_file", "thing/inner"),
    ]


def test_replay_of_full_diff_reaches_target_without_mutating_input() -> None:
    old = merge([(A, raw_dir("a", RawFile("gone"), raw_dir("dir", RawFile("kept"))))])
    new = merge([(B, raw_dir("b", raw_dir("dir", RawFile("kept"), raw_dir("sub", RawFile("f")))))])
    before = merge([(A, raw_dir("a", RawFile("gone"), raw_dir("dir", RawFile("kept"))))])

    assert replay(old, diff(old, new)) == new
    assert old == before


def test_replay_of_completed_prefix_leaves_the_rest_to_diff() -> None:
    old = ProvenancedDirectory("root", {"thing": ProvenancedFile("thing", A)})
    new = ProvenancedDirectory(
        "root",
        {"thing": ProvenancedDirectory("thing", {"inner": ProvenancedFile("inner", B)}), "x": ProvenancedFile("x", B)},
    )
    ops = diff(old, new)

    partial = replay(old, ops[:2])

    assert partial == ProvenancedDirectory("root", {"thing": ProvenancedDirectory("thing")})
    assert diff(partial, new) == ops[2:]


def test_operation_requires_source_for_file_placement() -> None:
    with pytest.raises(ValueError):
        Operation("x", OperationKind.CREATE_FILE)
    with pytest.raises(ValueError):
        Operation("x", OperationKind.REMOVE_FILE, A)
