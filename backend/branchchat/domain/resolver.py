from __future__ import annotations

from dataclasses import dataclass, field
from typing import Callable, Iterable, Mapping, Optional, Union

from branchchat.domain.tree import MessageTree
from branchchat.storage.models import ROOT_ID, MessageRecord

BranchSelections = Mapping[str, int]


@dataclass(frozen=True)
class BranchPoint:
    """A parent with more than one child on the resolved path."""

    parent_id: str
    branches: tuple[str, ...]
    selected_index: int

    @property
    def child_count(self) -> int:
        return len(self.branches)


@dataclass(frozen=True)
class TreeResolution:
    """Linear display path plus the branch points met along it."""

    path: list[MessageRecord] = field(default_factory=list)
    branch_points: list[BranchPoint] = field(default_factory=list)

    @property
    def leaf(self) -> Optional[MessageRecord]:
        return self.path[-1] if self.path else None


def resolve_path(
    source: Union[MessageTree, Iterable[MessageRecord]],
    selections: Optional[BranchSelections] = None,
) -> TreeResolution:
    """Walk from the root, following selected (or newest) children to a leaf.

    A selection that is missing, not an integer, negative or past the end of
    the current children falls back to the last child for that parent only.
    """

    children_of = _children_lookup(source)
    selections = selections or {}
    path: list[MessageRecord] = []
    branch_points: list[BranchPoint] = []
    visited: set[str] = set()
    parent_id = ROOT_ID

    while True:
        children = children_of(parent_id)
        if not children:
            break
        index = _selected_index(selections.get(parent_id), len(children))
        if len(children) > 1:
            branch_points.append(
                BranchPoint(
                    parent_id=parent_id,
                    branches=tuple(child.id for child in children),
                    selected_index=index,
                )
            )
        chosen = children[index]
        if chosen.id in visited:
            break
        visited.add(chosen.id)
        path.append(chosen)
        parent_id = chosen.id

    return TreeResolution(path=path, branch_points=branch_points)


def _selected_index(selected: object, child_count: int) -> int:
    default = child_count - 1
    if not isinstance(selected, int) or isinstance(selected, bool):
        return default
    if 0 <= selected < child_count:
        return selected
    return default


def _children_lookup(
    source: Union[MessageTree, Iterable[MessageRecord]],
) -> Callable[[str], list[MessageRecord]]:
    if isinstance(source, MessageTree):
        return source.children_of

    latest: dict[str, MessageRecord] = {}
    for message in source:
        latest[message.id] = message
    children: dict[str, list[MessageRecord]] = {}
    for message in latest.values():
        if message.deleted:
            continue
        children.setdefault(message.parent_id, []).append(message)
    for siblings in children.values():
        siblings.sort(key=lambda item: item.created_at)
    return lambda parent_id: children.get(parent_id, [])
