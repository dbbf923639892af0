"""Tests for folder trees inside a source."""

from pathlib import Path

from discovery.folders import build_folder_tree, relative_folder

SOURCE = Path("/media/A")


def _paths(*rels):
    return [str(SOURCE / rel) for rel in rels]


def test_counts_direct_and_nested_media():
    tree = build_folder_tree(
        SOURCE,
        _paths("1.jpg", "2.jpg", "x/3.jpg", "x/y/z/4.jpg"),
        hidden_folders=[],
        root_name="@cafe12",
    )

    assert (tree.path, tree.name, tree.media_count, tree.total_count) == ("", "@cafe12", 2, 4)
    (x,) = tree.children
    assert (x.path, x.media_count, x.total_count) == ("x", 1, 2)
    # y holds no media itself but still links z to the tree
    (y,) = x.children
    assert (y.path, y.media_count, y.total_count) == ("x/y", 0, 1)
    assert y.children[0].path == "x/y/z"


def test_children_sorted_and_hidden_flagged():
    tree = build_folder_tree(
        SOURCE,
        _paths("b/1.jpg", "C/1.jpg", "a/1.jpg"),
        hidden_folders=[str(SOURCE / "b"), "/media/B/b"],
        root_name="@a",
    )

    assert [c.name for c in tree.children] == ["a", "b", "C"]
    assert [c.hidden for c in tree.children] == [False, True, False]
    assert tree.hidden is False


def test_paths_outside_source_are_ignored():
    tree = build_folder_tree(SOURCE, ["/media/B/1.jpg", "/media/A.jpg"], [], root_name="@a")
    assert tree.total_count == 0
    assert tree.children == []


def test_relative_folder():
    assert relative_folder(SOURCE, SOURCE) == ""
    assert relative_folder(SOURCE / "x" / "y", SOURCE) == "x/y"
