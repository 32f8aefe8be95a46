from collections import defaultdict
from typing import Dict, List

from jobboard.engine.board import AssignmentBoard
from jobboard.models.entities import Assignment, Cell, ConflictFlag, ConflictKind, Shift


class ConflictDetector:
    """
    Flags resources booked into overlapping (date, shift) slots.

    Advisory only: flags are derived from the board on demand and never stored,
    and an overlap is never prevented.
    """

    def __init__(self, board: AssignmentBoard):
        self.board = board

    def recompute(self, resource_id: str, include_informational: bool = False) -> List[ConflictFlag]:
        by_date: Dict[object, List[Cell]] = defaultdict(list)
        for cell in self.board.cells_for(resource_id):
            by_date[cell.date].append(cell)

        flags: List[ConflictFlag] = []
        for day in sorted(by_date):
            cells = by_date[day]
            shifts = {c.shift for c in cells}

            if shifts == {Shift.DAY, Shift.NIGHT}:
                flags.append(self._flag(resource_id, ConflictKind.DOUBLE_SHIFT, day, cells))

            for shift in sorted(shifts):
                same_shift = [c for c in cells if c.shift == shift]
                if len({c.job_id for c in same_shift}) > 1:
                    flags.append(self._flag(resource_id, ConflictKind.DOUBLE_JOB, day, same_shift))

            if include_informational and shifts == {Shift.NIGHT}:
                flags.append(self._flag(resource_id, ConflictKind.NIGHT_ONLY, day, cells))
        return flags

    def recompute_all(self, include_informational: bool = False) -> Dict[str, List[ConflictFlag]]:
        """Flags for every resource on the board; resources without flags are omitted."""
        result: Dict[str, List[ConflictFlag]] = {}
        for rid in self.board.resource_ids():
            flags = self.recompute(rid, include_informational)
            if flags:
                result[rid] = flags
        return result

    @staticmethod
    def _flag(resource_id: str, kind: ConflictKind, day, cells: List[Cell]) -> ConflictFlag:
        related = tuple(Assignment.of(resource_id, c) for c in sorted(cells))
        return ConflictFlag(resource_id=resource_id, kind=kind, date=day, related_assignments=related)
