"""Diff engine: minimal patch between two render trees.

Nodes are matched by StableId under the same parent.

- same id, same kind, same payload/error: omitted (children still compared)
- same id, changed payload or error: updated
- same id, kind changed (inert <-> placeholder): removed + added
- only in next: added (with parent id and final index)
- only in previous: removed (descendants implied)

Children that survive but change relative order are not expressed as moves:
the longest run that keeps its relative order stays put and every other
child is removed and re-added at its new index.
"""

import logging
from bisect import bisect_left

from ..core.models import (
    AddedNode,
    NavigationDiff,
    RenderNode,
    RenderTree,
    UpdatedNode,
)

logger = logging.getLogger(__name__)


def diff(previous: RenderTree, next_tree: RenderTree) -> NavigationDiff:
    """Compute the navigation diff that turns previous into next_tree.

    Raises:
        DiffIdentityConflict: If either tree contains duplicate StableIds.
    """
    previous.index()
    next_tree.index()

    result = NavigationDiff(
        from_version=previous.version, to_version=next_tree.version
    )
    old_root, new_root = previous.root, next_tree.root
    if old_root.id != new_root.id or old_root.kind != new_root.kind:
        result.removed.append(old_root.id)
        result.added.append(AddedNode(parent_id=None, index=0, node=new_root))
    else:
        _diff_matched(old_root, new_root, result)

    logger.debug(
        f"[DIFF] v{previous.version} -> v{next_tree.version}: "
        f"{len(result.removed)} removed, {len(result.added)} added, "
        f"{len(result.updated)} updated"
    )
    return result


def _diff_matched(old: RenderNode, new: RenderNode, out: NavigationDiff) -> None:
    """Diff two nodes with the same id and kind."""
    if old.payload != new.payload or old.error != new.error:
        out.updated.append(UpdatedNode(id=new.id, payload=new.payload, error=new.error))
    if new.is_placeholder:
        return

    old_children = {child.id: child for child in old.children}
    old_positions = {child.id: i for i, child in enumerate(old.children)}
    matched = [
        child
        for child in new.children
        if child.id in old_children and old_children[child.id].kind == child.kind
    ]
    kept = _longest_ordered_run(
        [child.id for child in matched],
        [old_positions[child.id] for child in matched],
    )

    for child in old.children:
        if child.id not in kept:
            out.removed.append(child.id)
    for index, child in enumerate(new.children):
        if child.id in kept:
            _diff_matched(old_children[child.id], child, out)
        else:
            out.added.append(AddedNode(parent_id=new.id, index=index, node=child))


def _longest_ordered_run(ids: list[str], positions: list[int]) -> set[str]:
    """Ids of the longest subsequence whose old positions are increasing."""
    if not ids:
        return set()
    tails: list[int] = []  # old position ending each candidate run
    tail_idx: list[int] = []  # index into ids for each tail
    prev: list[int] = [-1] * len(ids)
    for i, pos in enumerate(positions):
        j = bisect_left(tails, pos)
        if j == len(tails):
            tails.append(pos)
            tail_idx.append(i)
        else:
            tails[j] = pos
            tail_idx[j] = i
        prev[i] = tail_idx[j - 1] if j > 0 else -1

    kept = set()
    i = tail_idx[-1]
    while i != -1:
        kept.add(ids[i])
        i = prev[i]
    return kept
