from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from rab_items.models import LineItem


@dataclass(frozen=True)
class HierarchyIndex:
    """Parent/descendant lookups for a flat, indent-encoded item sequence.

    Built in one forward pass, so callers rebuild it after each mutation
    instead of rescanning the sequence per query.

    ``parents[i]`` is the nearest preceding position whose indent is exactly
    ``indent - 1`` (``None`` at the top level or when the hierarchy is broken).
    ``block_ends[i]`` is the exclusive end of ``i``'s contiguous descendant
    block, i.e. the first later position with ``indent <= indent[i]``.
    ``previous_siblings[i]`` is the start of the previous block at the same
    depth under the same ancestor chain, if any.
    """

    indents: Tuple[int, ...]
    positions: Dict[str, int]
    parents: Tuple[Optional[int], ...]
    block_ends: Tuple[int, ...]
    previous_siblings: Tuple[Optional[int], ...]

    @classmethod
    def build(cls, items: Sequence[LineItem]) -> "HierarchyIndex":
        size = len(items)
        indents = tuple(max(item.indent, 0) for item in items)
        positions: Dict[str, int] = {}
        parents: List[Optional[int]] = [None] * size
        block_ends: List[int] = [size] * size
        previous_siblings: List[Optional[int]] = [None] * size

        last_at_depth: Dict[int, int] = {}
        open_at_depth: Dict[int, int] = {}
        stack: List[int] = []

        for pos, item in enumerate(items):
            positions[item.id] = pos
            depth = indents[pos]

            if depth > 0:
                parents[pos] = last_at_depth.get(depth - 1)
            last_at_depth[depth] = pos

            previous_siblings[pos] = open_at_depth.get(depth)
            for deeper in [d for d in open_at_depth if d > depth]:
                del open_at_depth[deeper]
            open_at_depth[depth] = pos

            while stack and indents[stack[-1]] >= depth:
                block_ends[stack.pop()] = pos
            stack.append(pos)

        return cls(
            indents=indents,
            positions=positions,
            parents=tuple(parents),
            block_ends=tuple(block_ends),
            previous_siblings=tuple(previous_siblings),
        )

    def __len__(self) -> int:
        return len(self.indents)

    def position_of(self, item_id: str) -> Optional[int]:
        return self.positions.get(item_id)

    def parent_of(self, pos: int) -> Optional[int]:
        return self.parents[pos]

    def is_orphan(self, pos: int) -> bool:
        return self.indents[pos] > 0 and self.parents[pos] is None

    def descendant_range(self, pos: int) -> range:
        return range(pos + 1, self.block_ends[pos])

    def block_range(self, pos: int) -> range:
        """The node itself plus all of its descendants."""
        return range(pos, self.block_ends[pos])

    def next_sibling(self, pos: int) -> Optional[int]:
        end = self.block_ends[pos]
        if end < len(self.indents) and self.indents[end] == self.indents[pos]:
            return end
        return None

    def previous_sibling(self, pos: int) -> Optional[int]:
        return self.previous_siblings[pos]
