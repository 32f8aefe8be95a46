from collections import defaultdict
from typing import Dict, FrozenSet, Iterable, List, Set

from jobboard.models.entities import Assignment, Cell

BoardSnapshot = Dict[Cell, FrozenSet[str]]


class AssignmentBoard:
    """
    Index of where each resource is staffed: (job, row, date, shift) -> resource ids.

    Drop rules are not checked here; the validator does that before a mutation.
    The only invariant the board keeps is "no duplicate id within a cell".
    """

    def __init__(self, assignments: Iterable[Assignment] = ()):
        self._cells: Dict[Cell, Set[str]] = defaultdict(set)
        self._by_resource: Dict[str, Set[Cell]] = defaultdict(set)
        for a in assignments:
            self.place(a.resource_id, a.cell)

    def place(self, resource_id: str, cell: Cell) -> bool:
        """Returns False when the resource was already in the cell."""
        members = self._cells[cell]
        if resource_id in members:
            return False
        members.add(resource_id)
        self._by_resource[resource_id].add(cell)
        return True

    def remove(self, resource_id: str, cell: Cell) -> bool:
        members = self._cells.get(cell)
        if not members or resource_id not in members:
            return False
        members.discard(resource_id)
        if not members:
            del self._cells[cell]
        cells = self._by_resource[resource_id]
        cells.discard(cell)
        if not cells:
            del self._by_resource[resource_id]
        return True

    def cells_for(self, resource_id: str) -> List[Cell]:
        return sorted(self._by_resource.get(resource_id, ()))

    def members(self, cell: Cell) -> Set[str]:
        return set(self._cells.get(cell, ()))

    def is_placed(self, resource_id: str) -> bool:
        return resource_id in self._by_resource

    def cells_for_job(self, job_id: str) -> List[Cell]:
        return sorted(c for c in self._cells if c.job_id == job_id)

    def resource_ids(self) -> List[str]:
        return sorted(self._by_resource)

    def assignments(self) -> List[Assignment]:
        return sorted(
            (Assignment.of(rid, cell) for cell, members in self._cells.items() for rid in members),
            key=lambda a: (a.cell, a.resource_id),
        )

    def assignments_for(self, resource_id: str) -> List[Assignment]:
        return [Assignment.of(resource_id, c) for c in self.cells_for(resource_id)]

    def snapshot(self) -> BoardSnapshot:
        return {cell: frozenset(members) for cell, members in self._cells.items() if members}

    def restore(self, snapshot: BoardSnapshot) -> None:
        self._cells = defaultdict(set)
        self._by_resource = defaultdict(set)
        for cell, members in snapshot.items():
            for rid in members:
                self.place(rid, cell)
