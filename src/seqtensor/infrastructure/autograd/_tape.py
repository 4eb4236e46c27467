"""
Append-only operation tape.

The tape stores one entry per recorded operation in forward order and is
consumed in exact reverse by `ComputeGraph.backward()`. It also counts how
many entries reference each weight node, so that scope disposal can tell
which nodes the pending replay still needs.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional

from ._context import Context
from ._weight import WeightNode


@dataclass
class TapeEntry:
    op_name: str
    ctx: Context
    output: WeightNode


class Tape:
    def __init__(self) -> None:
        self._entries: List[TapeEntry] = []
        self._refs: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._entries)

    def __bool__(self) -> bool:
        return bool(self._entries)

    def append(self, entry: TapeEntry) -> None:
        self._entries.append(entry)
        for node in (*entry.ctx.parents, entry.output):
            self._refs[id(node)] = self._refs.get(id(node), 0) + 1

    def references(self, node: WeightNode) -> bool:
        """
        Return True if any pending entry uses `node` as parent or output.
        """
        return id(node) in self._refs

    def last(self) -> Optional[TapeEntry]:
        return self._entries[-1] if self._entries else None

    def entries(self) -> List[TapeEntry]:
        return list(self._entries)

    def reversed(self) -> Iterator[TapeEntry]:
        return reversed(self._entries)

    def clear(self) -> None:
        self._entries.clear()
        self._refs.clear()
