import threading

import pytest

from jobboard.engine.catalog import RuleCatalog, default_catalog
from jobboard.engine.rule_checks import RuleCatalogError
from jobboard.engine.session import SchedulingSession
from jobboard.models.constraints import AttachmentRule
from jobboard.models.entities import ConflictKind, Job, ResourceType as T, RowType as R, Shift
from jobboard.models.events import BoardEvent
from jobboard.models.results import InvariantViolation, ViolationKind
from jobboard.storage.broadcast import InMemoryEventPublisher


class TestProposeDrop:
    def test_drop_single_resource(self, session, make_cell):
        cell = make_cell("job-1", R.CREW)
        result = session.propose_drop("L1", cell)
        assert result.success
        assert result.affected_resource_ids == ["L1"]
        assert session.board.cells_for("L1") == [cell]

    def test_drop_not_allowed_is_returned_not_raised(self, session, make_cell):
        result = session.propose_drop("E1", make_cell("job-1", R.CREW))
        assert not result.success
        assert result.violation.kind == ViolationKind.DROP_NOT_ALLOWED
        assert not session.board.is_placed("E1")

    def test_drop_into_row_job_does_not_expose(self, session, make_cell):
        result = session.propose_drop("E1", make_cell("job-3", R.EQUIPMENT))
        assert result.violation.kind == ViolationKind.DROP_NOT_ALLOWED

    def test_drop_brings_attachments_along(self, session, make_cell):
        session.propose_attach("D1", "T1")
        cell = make_cell("job-1", R.TRUCKS)
        result = session.propose_drop("T1", cell)
        assert result.success
        assert session.board.cells_for("D1") == [cell]

    def test_drop_same_cell_twice_is_noop(self, session, make_cell):
        events = []
        session.add_listener(events.append)
        cell = make_cell("job-1", R.CREW)
        session.propose_drop("L1", cell)
        result = session.propose_drop("L1", cell)
        assert result.success
        assert result.affected_resource_ids == []
        assert len(events) == 1

    def test_conflicts_are_applied_and_flagged(self, session, make_cell):
        """Operator on a day crew and a night crew the same date: both stay, doubleShift is flagged."""
        day = make_cell("job-1", R.CREW)
        night = make_cell("job-2", R.CREW, Shift.NIGHT)
        assert session.propose_drop("O1", day).success
        result = session.propose_drop("O1", night)

        assert result.success
        assert [f.kind for f in session.conflicts_for("O1")] == [ConflictKind.DOUBLE_SHIFT]
        assert ConflictKind.DOUBLE_SHIFT in [f.kind for f in result.conflict_flags]
        assert session.board.cells_for("O1") == [day, night]

    def test_unknown_resource_raises(self, session, make_cell):
        with pytest.raises(InvariantViolation):
            session.propose_drop("ghost", make_cell("job-1", R.CREW))

    def test_unknown_job_raises(self, session, make_cell):
        with pytest.raises(InvariantViolation):
            session.propose_drop("L1", make_cell("job-404", R.CREW))


class TestProposeAttach:
    def test_child_joins_parent_cells(self, session, make_cell):
        cell = make_cell("job-1", R.EQUIPMENT)
        session.propose_drop("E1", cell)
        session.propose_drop("O1", make_cell("job-2", R.CREW))

        result = session.propose_attach("O1", "E1")

        assert result.success
        assert session.board.cells_for("O1") == [cell]
        assert set(result.affected_resource_ids) == {"O1", "E1"}

    def test_child_leaves_board_when_parent_unplaced(self, session, make_cell):
        session.propose_drop("O1", make_cell("job-2", R.CREW))
        session.propose_attach("O1", "E2")
        assert not session.board.is_placed("O1")

    def test_rejected_attach_changes_nothing(self, session, make_cell):
        session.propose_drop("O1", make_cell("job-2", R.CREW))
        before = (session.graph.snapshot(), session.board.snapshot())
        result = session.propose_attach("O1", "T1")
        assert result.violation.kind == ViolationKind.ATTACH_NOT_ALLOWED
        assert (session.graph.snapshot(), session.board.snapshot()) == before

    def test_max_count_holds_over_a_sequence(self, session):
        outcomes = [session.propose_attach(s, "P1").success for s in ("S1", "S2", "S3")]
        session.propose_detach("S1")
        outcomes.append(session.propose_attach("S3", "P1").success)
        outcomes.append(session.propose_attach("S1", "P1").success)

        assert outcomes == [True, True, False, True, False]
        screwmen = [c for c in session.graph.children_of("P1") if session.graph.get(c).type == T.SCREWMAN]
        assert sorted(screwmen) == ["S2", "S3"]

    def test_attach_to_same_parent_twice_is_noop(self, session):
        events = []
        session.add_listener(events.append)
        session.propose_attach("D1", "T1")
        result = session.propose_attach("D1", "T1")
        assert result.success
        assert len(events) == 1


class TestProposeDetach:
    def test_detach_keeps_cells(self, session, make_cell):
        cell = make_cell("job-1", R.TRUCKS)
        session.propose_drop("T1", cell)
        session.propose_attach("D1", "T1")

        result = session.propose_detach("D1")

        assert result.success
        assert session.graph.parent_of("D1") is None
        assert session.board.cells_for("D1") == [cell]

    def test_detach_twice_same_as_once(self, session):
        session.propose_attach("D1", "T1")
        session.propose_detach("D1")
        once = (session.graph.snapshot(), session.board.snapshot())
        assert session.propose_detach("D1").success
        assert (session.graph.snapshot(), session.board.snapshot()) == once


class TestRows:
    def test_disable_row_clears_it(self, session, make_cell):
        cell = make_cell("job-1", R.TRUCKS)
        session.propose_drop("T1", cell)
        result = session.set_row_enabled("job-1", R.TRUCKS, False)

        assert result.affected_resource_ids == ["T1"]
        assert session.board.members(cell) == set()
        assert R.TRUCKS not in session.rows_for("job-1")
        assert session.propose_drop("T1", cell).violation.kind == ViolationKind.DROP_NOT_ALLOWED

    def test_enable_extra_row(self, session, make_cell):
        session.set_row_enabled("job-3", R.EQUIPMENT, True)
        assert session.propose_drop("E1", make_cell("job-3", R.EQUIPMENT)).success

    def test_registered_job_exposes_type_rows(self, resources):
        catalog = default_catalog()
        session = SchedulingSession(catalog, resources=resources)
        session.register_job(Job(id="job-9", job_type="hired"))
        assert session.rows_for("job-9") == (R.FOREMAN, R.CREW)


class TestCatalogReplacement:
    def test_new_rules_apply_to_next_operation(self, session):
        catalog = session.catalog
        stricter = RuleCatalog(
            [r for r in catalog.attachment_rules if r.key != (T.OPERATOR, T.EXCAVATOR)],
            catalog.drop_rules,
            catalog.row_schemas,
        )
        report = session.admin_replace_rule_catalog(stricter)

        assert report.is_valid
        assert session.catalog.version == 2
        assert session.propose_attach("O1", "E1").violation.kind == ViolationKind.ATTACH_NOT_ALLOWED

    def test_invalid_catalog_refused(self, session):
        old = session.catalog
        broken = RuleCatalog(
            list(old.attachment_rules) + [AttachmentRule(T.OPERATOR, T.EXCAVATOR, max_count=3)],
            old.drop_rules,
            old.row_schemas,
        )
        with pytest.raises(RuleCatalogError) as exc_info:
            session.admin_replace_rule_catalog(broken)
        assert "Duplicate" in str(exc_info.value)
        assert session.catalog is old

    def test_existing_attachments_survive_rule_change(self, session):
        session.propose_attach("O1", "E1")
        session.admin_replace_rule_catalog(RuleCatalog([], session.catalog.drop_rules, session.catalog.row_schemas))
        assert session.graph.parent_of("O1") == "E1"


class TestEvents:
    """Committed mutations are emitted and can be replayed elsewhere."""

    def test_rejected_operations_emit_nothing(self, session, make_cell):
        events = []
        session.add_listener(events.append)
        session.propose_drop("E1", make_cell("job-1", R.CREW))
        session.propose_attach("D1", "E1")
        session.propose_detach("D1")
        assert events == []

    def test_event_round_trips_through_json(self, session, make_cell):
        events = []
        session.add_listener(events.append)
        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))
        event = BoardEvent.from_json(events[0].to_json())
        assert event == events[0]

    def test_peer_session_mirrors_board(self, session, resources, jobs, make_cell):
        peer = SchedulingSession(default_catalog(), resources=resources, jobs=jobs, origin="session-b")
        publisher = InMemoryEventPublisher()
        publisher.connect(peer)
        session.add_listener(publisher)

        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))
        session.propose_attach("D1", "T1")
        session.propose_move("T1", make_cell("job-2", R.TRUCKS))
        session.set_row_enabled("job-1", R.TACK, False)

        assert peer.board.snapshot() == session.board.snapshot()
        assert peer.graph.snapshot() == session.graph.snapshot()
        assert R.TACK not in peer.rows_for("job-1")

    def test_replay_registers_unknown_resources(self, session, make_cell):
        events = []
        session.add_listener(events.append)
        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))

        peer = SchedulingSession(default_catalog(), origin="session-b")
        peer.apply_event(events[0])
        assert peer.graph.get("T1").type == T.TRUCK
        assert peer.board.cells_for("T1") == [make_cell("job-1", R.TRUCKS)]

    def test_own_events_are_ignored(self, session, make_cell):
        events = []
        session.add_listener(events.append)
        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))
        session.propose_move("T1", None)
        session.apply_event(events[0])
        assert not session.board.is_placed("T1")

    def test_duplicate_delivery_is_idempotent(self, session, resources, jobs):
        events = []
        session.add_listener(events.append)
        session.propose_attach("D1", "T1")
        session.propose_detach("D1")

        peer = SchedulingSession(default_catalog(), resources=resources, jobs=jobs, origin="session-b")
        for event in events + events:
            peer.apply_event(event)
        assert peer.graph.snapshot() == session.graph.snapshot()

    def test_conflicting_attach_last_write_wins(self, session, resources, jobs):
        events = []
        session.add_listener(events.append)
        peer = SchedulingSession(default_catalog(), resources=resources, jobs=jobs, origin="session-b")
        peer.propose_attach("D1", "T2")

        session.propose_attach("D1", "T1")
        result = peer.apply_event(events[-1])

        assert result.success
        assert result.warnings
        assert peer.graph.parent_of("D1") == "T1"
        assert peer.graph.children_of("T2") == []

    def test_unknown_op_raises(self, session):
        with pytest.raises(InvariantViolation):
            session.apply_event(BoardEvent(op="teleport", payload={}, origin="elsewhere"))

    def test_failing_listener_does_not_block_delivery(self, session, make_cell, caplog):
        """A listener that raises is logged; later listeners still receive the event."""
        delivered = []

        def broken(event):
            raise RuntimeError("broker down")

        session.add_listener(broken)
        session.add_listener(delivered.append)

        result = session.propose_drop("T1", make_cell("job-1", R.TRUCKS))

        assert result.success
        assert session.board.is_placed("T1")
        assert [e.op for e in delivered] == ["drop"]
        assert "failed on drop event" in caplog.text

    def test_listeners_run_outside_session_lock(self, session, make_cell):
        """Another thread can read the board while a listener is still running."""
        finished = []

        def slow_listener(event):
            reader = threading.Thread(target=lambda: finished.append(session.conflicts_for("T1")))
            reader.start()
            reader.join(timeout=2)

        session.add_listener(slow_listener)
        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))

        assert finished == [[]]

    def test_events_delivered_in_commit_order(self, session, make_cell):
        ops = []
        session.add_listener(lambda event: ops.append(event.op))

        session.propose_drop("T1", make_cell("job-1", R.TRUCKS))
        session.propose_attach("D1", "T1")
        session.propose_detach("D1")
        session.set_row_enabled("job-1", R.TACK, False)

        assert ops == ["drop", "attach", "detach", "set_row"]


class TestConcurrency:
    def test_overlapping_chain_moves_stay_consistent(self, session, make_cell):
        cells = [make_cell("job-1", R.TRUCKS), make_cell("job-2", R.TRUCKS)]
        session.propose_drop("T1", cells[0])
        session.propose_attach("D1", "T1")
        errors = []

        def shuffle(offset):
            try:
                for i in range(50):
                    session.propose_move("T1", cells[(i + offset) % 2])
                    session.propose_detach("D1")
                    session.propose_attach("D1", "T1")
            except Exception as exc:  # surfaced below
                errors.append(exc)

        threads = [threading.Thread(target=shuffle, args=(n,)) for n in range(4)]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        assert errors == []
        assert session.graph.parent_of("D1") == "T1"
        assert session.graph.children_of("T1") == ["D1"]
        assert session.board.cells_for("D1") == session.board.cells_for("T1")
        assert len(session.board.cells_for("T1")) == 1
