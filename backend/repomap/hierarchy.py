# backend/repomap/hierarchy.py
from typing import Dict, Iterable

from .errors import StructuralError
from .schemas import TreeNode

ROOT_NAME = "root"
_NO_PARENT = object()


def base_url(source_url: str) -> str:
    url = source_url.rstrip("/")
    if url.endswith(".git"):
        url = url[: -len(".git")]
    return url


def permalink(source_url: str, branch: str, relative_path: str, is_directory: bool) -> str:
    """
    Browser URL for a path at a branch.
    Files:       <base>/blob/<branch>/<path>
    Directories: <base>/tree/<branch>[/<path>]  (no path for the root)
    """
    base = base_url(source_url)
    if not is_directory:
        return f"{base}/blob/{branch}/{relative_path}"
    link = f"{base}/tree/{branch}"
    if relative_path:
        link += f"/{relative_path}"
    return link


class HierarchyBuilder:
    """Rebuilds a rooted tree from flat node records linked by parent_id."""

    def build(self, nodes: Iterable, source_url: str, branch: str) -> TreeNode:
        root = TreeNode(
            name=ROOT_NAME,
            path="",
            is_directory=True,
            depth=-1,
            permalink=permalink(source_url, branch, "", True),
            children=[],
        )
        # local to this call; keyed by node id, _NO_PARENT for top level
        by_id: Dict[object, TreeNode] = {_NO_PARENT: root}

        # parents always sort before their children
        ordered = sorted(nodes, key=lambda n: (n.depth, n.relative_path))
        for node in ordered:
            tree_node = TreeNode(
                id=node.id,
                name=node.name,
                path=node.relative_path,
                extension=node.extension,
                is_directory=node.is_directory,
                size=node.size_bytes,
                depth=node.depth,
                permalink=permalink(source_url, branch, node.relative_path, node.is_directory),
                children=[] if node.is_directory else None,
            )

            parent_key = _NO_PARENT if node.parent_id is None else node.parent_id
            parent = by_id.get(parent_key)
            if parent is None:
                raise StructuralError(
                    f"Node {node.id} ({node.relative_path}) references unknown parent {node.parent_id}"
                )
            if node.depth != parent.depth + 1:
                raise StructuralError(
                    f"Node {node.id} ({node.relative_path}) has depth {node.depth} "
                    f"under a parent at depth {parent.depth}"
                )
            parent.children.append(tree_node)

            if node.is_directory:
                by_id[node.id] = tree_node

        return root

