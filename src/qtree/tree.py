"""
Order Tree: the ordering structure of a questionnaire.

The Order Tree is a forest of OrderNodes. Each node references an item by
identifier and lists its children in sibling order. It knows nothing about
item content; that lives in the ItemStore.

Nodes are frozen and child lists are tuples, so every edit returns a new
forest that shares all untouched subtrees with the previous one. Only the
spine from the root down to the edited node is rebuilt.

Paths are sequences of identifiers from the top level down to a parent node.
The empty path addresses the top level itself.
"""
from __future__ import annotations

from dataclasses import dataclass, replace
from typing import Iterator, List, Optional, Sequence, Set, Tuple

from qtree.errors import InvalidPath

Forest = Tuple["OrderNode", ...]
Path = Tuple[str, ...]


@dataclass(frozen=True)
class OrderNode:
    """
    One position in the Order Tree.

    Properties:
        link_id: identifier of the Item this node places
        children: child nodes in sibling order
    """

    link_id: str
    children: Tuple["OrderNode", ...] = ()


def _index_of(siblings: Sequence[OrderNode], link_id: str) -> int:
    for i, node in enumerate(siblings):
        if node.link_id == link_id:
            return i
    return -1


def resolve_path(order: Forest, path: Sequence[str]) -> Forest:
    """
    Return the child list addressed by path.

    Raises:
        InvalidPath: if any segment does not name a child of the previous one
    """
    siblings = order
    for depth, segment in enumerate(path):
        i = _index_of(siblings, segment)
        if i < 0:
            raise InvalidPath(
                f"Path segment {segment!r} not found at depth {depth}",
                path=path,
                link_id=segment,
            )
        siblings = siblings[i].children
    return siblings


def _rebuild(order: Forest, path: Sequence[str], new_children: Forest) -> Forest:
    """Return a copy of order where the child list at path is new_children."""
    if not path:
        return new_children
    head, rest = path[0], path[1:]
    i = _index_of(order, head)
    if i < 0:
        raise InvalidPath(f"Path segment {head!r} not found", path=path, link_id=head)
    node = order[i]
    updated = replace(node, children=_rebuild(node.children, rest, new_children))
    return order[:i] + (updated,) + order[i + 1:]


def find_node(order: Forest, path: Sequence[str], link_id: str) -> OrderNode:
    """Return the node link_id directly under path."""
    siblings = resolve_path(order, path)
    i = _index_of(siblings, link_id)
    if i < 0:
        raise InvalidPath(
            f"{link_id!r} is not a child of path {list(path)}",
            path=path,
            link_id=link_id,
        )
    return siblings[i]


def insert_node(order: Forest, path: Sequence[str], node: OrderNode, index: Optional[int] = None) -> Forest:
    """Insert node under path at index. Indices past the end (or None) append."""
    siblings = resolve_path(order, path)
    if index is None or index > len(siblings):
        index = len(siblings)
    if index < 0:
        index = 0
    return _rebuild(order, path, siblings[:index] + (node,) + siblings[index:])


def remove_node(order: Forest, path: Sequence[str], link_id: str) -> Tuple[Forest, OrderNode]:
    """Detach link_id from under path. Returns (new forest, detached node)."""
    siblings = resolve_path(order, path)
    i = _index_of(siblings, link_id)
    if i < 0:
        raise InvalidPath(
            f"{link_id!r} is not a child of path {list(path)}",
            path=path,
            link_id=link_id,
        )
    detached = siblings[i]
    return _rebuild(order, path, siblings[:i] + siblings[i + 1:]), detached


def replace_node(order: Forest, path: Sequence[str], link_id: str, new_node: OrderNode) -> Forest:
    siblings = resolve_path(order, path)
    i = _index_of(siblings, link_id)
    if i < 0:
        raise InvalidPath(
            f"{link_id!r} is not a child of path {list(path)}",
            path=path,
            link_id=link_id,
        )
    return _rebuild(order, path, siblings[:i] + (new_node,) + siblings[i + 1:])


def sibling_index(order: Forest, path: Sequence[str], link_id: str) -> int:
    i = _index_of(resolve_path(order, path), link_id)
    if i < 0:
        raise InvalidPath(f"{link_id!r} is not a child of path {list(path)}", path=path, link_id=link_id)
    return i


def iter_preorder(order: Forest, _path: Path = ()) -> Iterator[Tuple[Path, OrderNode]]:
    """Yield (parent path, node) for every node, parents before children."""
    for node in order:
        yield _path, node
        yield from iter_preorder(node.children, _path + (node.link_id,))


def collect_ids(nodes: Sequence[OrderNode]) -> List[str]:
    """All identifiers in the given subtrees, in pre-order (duplicates kept)."""
    return [node.link_id for _, node in iter_preorder(tuple(nodes))]


def find_parent_path(order: Forest, link_id: str) -> Optional[Path]:
    """Parent path of the first node placing link_id, or None if absent."""
    for path, node in iter_preorder(order):
        if node.link_id == link_id:
            return path
    return None


def rename_nodes(order: Forest, old_id: str, new_id: str) -> Forest:
    """Rewrite every node identifier old_id to new_id."""
    result = []
    for node in order:
        children = rename_nodes(node.children, old_id, new_id)
        link_id = new_id if node.link_id == old_id else node.link_id
        if link_id == node.link_id and children == node.children:
            result.append(node)
        else:
            result.append(OrderNode(link_id=link_id, children=children))
    return tuple(result)


def duplicate_ids(order: Forest) -> Set[str]:
    seen: Set[str] = set()
    dups: Set[str] = set()
    for link_id in collect_ids(order):
        if link_id in seen:
            dups.add(link_id)
        seen.add(link_id)
    return dups
