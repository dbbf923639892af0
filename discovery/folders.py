"""Folder trees inside one source.

Clients hide sub-folders of a source by path relative to the source folder.
The tree built here is how they discover those paths: it is derived from the
indexed media only, so it never lists folders without media below them, and
it never exposes anything above the source folder.
"""

from __future__ import annotations

import dataclasses
from pathlib import Path, PurePosixPath
from typing import Dict, Iterable, List, Set


@dataclasses.dataclass
class FolderNode:
    path: str  # relative to the source folder, "" for the source itself
    name: str
    media_count: int = 0
    total_count: int = 0
    hidden: bool = False
    children: List["FolderNode"] = dataclasses.field(default_factory=list)


def relative_folder(folder: Path, source_folder: Path) -> str:
    """POSIX-style path of folder below source_folder ("" for the source itself)."""
    parts = folder.relative_to(source_folder).parts
    return str(PurePosixPath(*parts)) if parts else ""


def build_folder_tree(
    source_folder: Path,
    media_paths: Iterable[str],
    hidden_folders: Iterable[str],
    root_name: str,
) -> FolderNode:
    """Nest the folders holding media_paths under a node for source_folder.

    media_count counts files directly in a folder, total_count the whole
    subtree. Folders that hold no media themselves but have media deeper down
    still get a node. Paths outside source_folder are ignored.

    :param source_folder: Absolute folder of the source.
    :param media_paths: Absolute paths of the source's indexed media.
    :param hidden_folders: Absolute folder paths the user has hidden.
    :param root_name: Name shown for the source node (its display name).
    """
    hidden: Set[str] = set()
    for folder in hidden_folders:
        try:
            hidden.add(relative_folder(Path(folder), source_folder))
        except ValueError:
            continue

    root = FolderNode(path="", name=root_name, hidden="" in hidden)
    nodes: Dict[str, FolderNode] = {"": root}

    def node_for(rel: str) -> FolderNode:
        node = nodes.get(rel)
        if node is None:
            posix = PurePosixPath(rel)
            parent_rel = str(posix.parent) if len(posix.parts) > 1 else ""
            parent = node_for(parent_rel)
            node = nodes[rel] = FolderNode(path=rel, name=posix.name, hidden=rel in hidden)
            parent.children.append(node)
        return node

    for media_path in media_paths:
        try:
            rel = relative_folder(Path(media_path).parent, source_folder)
        except ValueError:
            continue
        node_for(rel).media_count += 1

    _sort_and_total(root)
    return root


def _sort_and_total(node: FolderNode) -> int:
    node.children.sort(key=lambda child: child.name.lower())
    node.total_count = node.media_count + sum(_sort_and_total(c) for c in node.children)
    return node.total_count
