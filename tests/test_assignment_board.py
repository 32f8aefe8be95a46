from datetime import date

from jobboard.engine.board import AssignmentBoard
from jobboard.models.entities import Assignment, RowType as R, Shift


class TestAssignmentBoard:
    def test_place_and_lookup(self, board, make_cell):
        cell = make_cell("job-1", R.EQUIPMENT)
        assert board.place("E1", cell)
        assert board.cells_for("E1") == [cell]
        assert board.members(cell) == {"E1"}
        assert board.is_placed("E1")

    def test_no_duplicate_within_cell(self, board, make_cell):
        cell = make_cell("job-1", R.CREW)
        board.place("L1", cell)
        assert not board.place("L1", cell)
        assert board.assignments() == [Assignment.of("L1", cell)]

    def test_same_resource_in_many_cells(self, board, make_cell):
        day = make_cell("job-1", R.CREW)
        night = make_cell("job-2", R.CREW, Shift.NIGHT)
        board.place("L1", night)
        board.place("L1", day)
        assert board.cells_for("L1") == sorted([day, night])

    def test_remove(self, board, make_cell):
        cell = make_cell("job-1", R.CREW)
        board.place("L1", cell)
        assert board.remove("L1", cell)
        assert not board.remove("L1", cell)
        assert board.cells_for("L1") == []
        assert not board.is_placed("L1")
        assert board.members(cell) == set()

    def test_cells_for_job(self, board, make_cell):
        crew = make_cell("job-1", R.CREW)
        trucks = make_cell("job-1", R.TRUCKS, day=date(2024, 1, 9))
        board.place("L1", crew)
        board.place("T1", trucks)
        board.place("T2", make_cell("job-2", R.TRUCKS))
        assert board.cells_for_job("job-1") == [crew, trucks]

    def test_members_is_a_copy(self, board, make_cell):
        cell = make_cell("job-1", R.CREW)
        board.place("L1", cell)
        board.members(cell).add("intruder")
        assert board.members(cell) == {"L1"}

    def test_snapshot_restore(self, board, make_cell):
        cell = make_cell("job-1", R.CREW)
        board.place("L1", cell)
        before = board.snapshot()
        board.place("S1", cell)
        board.remove("L1", cell)
        board.restore(before)
        assert board.snapshot() == before
        assert board.cells_for("S1") == []

    def test_load_from_assignments(self, make_cell):
        cell = make_cell("job-1", R.TRUCKS)
        board = AssignmentBoard([Assignment.of("T1", cell), Assignment.of("T1", cell)])
        assert board.assignments_for("T1") == [Assignment.of("T1", cell)]
