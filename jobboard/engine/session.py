"""
Scheduling session

Owns one board's attachment graph and assignment index and serializes every
operation against them. Each inbound operation runs validate-then-mutate as a
single critical section, so two chain moves over overlapping subtrees can
never interleave. The rule catalog is read once per operation from a
CatalogHolder; administrative replacement swaps the snapshot without taking
the session lock.

Every committed mutation is queued as a BoardEvent and delivered to the
registered listeners (broadcast, audit) in commit order after the session
lock is released. A failing listener is logged and skipped. `apply_event`
replays events from other sessions and is idempotent per resource id and
operation.
"""

import logging
import threading
import uuid
from collections import deque
from contextlib import contextmanager
from typing import Callable, Dict, Iterable, List, Optional, Tuple, Union

from jobboard.engine.board import AssignmentBoard
from jobboard.engine.catalog import CatalogHolder, RuleCatalog
from jobboard.engine.chain_mover import ChainMover
from jobboard.engine.finalization import check_finalizable
from jobboard.engine.rule_checks import CatalogReport, RuleCatalogError, validate_catalog
from jobboard.engine.validator import validate_attach, validate_move
from jobboard.graph.attachment_graph import AttachmentGraph
from jobboard.graph.conflict_graph import ConflictDetector
from jobboard.models.entities import Assignment, Cell, ConflictFlag, Job, MissingRequirement, Resource, ResourceType, RowType
from jobboard.models.events import BoardEvent, BoardOp, cell_from_dict, cell_to_dict
from jobboard.models.results import InvariantViolation, OperationResult

logger = logging.getLogger(__name__)

Listener = Callable[[BoardEvent], None]


class SchedulingSession:
    def __init__(
        self,
        catalog: Union[RuleCatalog, CatalogHolder],
        resources: Iterable[Resource] = (),
        jobs: Iterable[Job] = (),
        assignments: Iterable[Assignment] = (),
        attachments: Iterable[Tuple[str, str]] = (),
        row_overrides: Iterable[Tuple[str, RowType, bool]] = (),
        max_depth: int = 1,
        origin: Optional[str] = None,
    ):
        self.catalog_holder = catalog if isinstance(catalog, CatalogHolder) else CatalogHolder(catalog)
        self.origin = origin or uuid.uuid4().hex
        self.graph = AttachmentGraph(resources, max_depth=max_depth)
        self.board = AssignmentBoard()
        self.detector = ConflictDetector(self.board)
        self.mover = ChainMover(self.graph, self.board, self.detector)
        self.jobs: Dict[str, Job] = {j.id: j for j in jobs}
        self._row_overrides: Dict[Tuple[str, RowType], bool] = {
            (job_id, row): enabled for job_id, row, enabled in row_overrides
        }
        self._listeners: List[Listener] = []
        self._lock = threading.RLock()
        self._outbox: deque = deque()
        self._dispatch_lock = threading.RLock()

        # persisted state is the source of truth on load: no rule checks
        for child_id, parent_id in attachments:
            child = self.graph.get(child_id)
            child.parent_id = parent_id
            self.graph.get(parent_id).child_ids.append(child_id)
        for a in assignments:
            self.graph.get(a.resource_id)
            self.board.place(a.resource_id, a.cell)

    @property
    def catalog(self) -> RuleCatalog:
        return self.catalog_holder.current

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def _emit(self, op: str, payload: dict) -> BoardEvent:
        """Queue an event for delivery once the current critical section ends."""
        event = BoardEvent(op=op, payload=payload, origin=self.origin)
        self._outbox.append(event)
        return event

    @contextmanager
    def _mutation(self):
        with self._lock:
            yield
        self._dispatch()

    def _dispatch(self) -> None:
        # outbox is filled in commit order; draining FIFO keeps that order
        with self._dispatch_lock:
            while self._outbox:
                event = self._outbox.popleft()
                for listener in list(self._listeners):
                    try:
                        listener(event)
                    except Exception:
                        logger.exception(f"Listener {listener!r} failed on {event.op} event {event.event_id}")

    # registry

    def register_resource(self, resource: Resource) -> Resource:
        with self._lock:
            self.graph.add(resource)
            return self.graph.get(resource.id)

    def register_job(self, job: Job) -> Job:
        with self._lock:
            existing = self.jobs.get(job.id)
            if existing is not None:
                existing.job_type = job.job_type
                existing.name = job.name or existing.name
                return existing
            self.jobs[job.id] = job
            return job

    def get_job(self, job_id: str) -> Job:
        try:
            return self.jobs[job_id]
        except KeyError:
            raise InvariantViolation(f"Unknown job id: {job_id}") from None

    def rows_for(self, job_id: str) -> Tuple[RowType, ...]:
        """Rows the job exposes after per-job row overrides."""
        job = self.get_job(job_id)
        rows = [r for r in self.catalog.rows_for(job) if self._row_overrides.get((job_id, r), True)]
        for row in RowType:
            if self._row_overrides.get((job_id, row)) and row not in rows:
                rows.append(row)
        return tuple(rows)

    # inbound operations

    def propose_drop(self, resource_id: str, cell: Cell) -> OperationResult:
        """Place a resource, together with whatever is attached to it, into a cell."""
        with self._mutation():
            catalog = self.catalog
            resource = self.graph.get(resource_id)
            violation = validate_move(resource_id, cell, self.graph, catalog, self.rows_for(cell.job_id))
            if violation is not None:
                logger.info(f"Drop of {resource_id} into {cell.label()} rejected: {violation.message}")
                return OperationResult.rejected(violation)

            members = self.graph.subtree(resource_id)
            if resource.parent_id is None and all(cell in self.board.cells_for(m) for m in members):
                return OperationResult(success=True, conflict_flags=self.mover.flags_for(members))

            warnings = []
            affected = list(members)
            former_parent = self.graph.detach(resource_id)
            if former_parent is not None:
                warnings.append(f"{resource_id} was detached from {former_parent}")
                affected.append(former_parent)
            for member_id in members:
                self.board.place(member_id, cell)

            self._emit(
                BoardOp.DROP,
                {
                    "resource_id": resource_id,
                    "cell": cell_to_dict(cell),
                    "members": members,
                    "resources": self._describe(members),
                },
            )
            logger.info(f"Dropped {resource_id} ({len(members)} resource(s)) into {cell.label()}")
            return OperationResult(
                success=True,
                affected_resource_ids=affected,
                conflict_flags=self.mover.flags_for(members),
                warnings=warnings,
            )

    def propose_attach(self, child_id: str, parent_id: str) -> OperationResult:
        with self._mutation():
            catalog = self.catalog
            child = self.graph.get(child_id)
            if child.parent_id == parent_id:
                self.graph.get(parent_id)
                return OperationResult(success=True)

            violation = validate_attach(child_id, parent_id, self.graph, catalog)
            if violation is not None:
                logger.info(f"Attach {child_id} -> {parent_id} rejected: {violation.kind.value}")
                return OperationResult.rejected(violation)

            self.graph.attach(child_id, parent_id, catalog)
            members = self._co_locate(child_id, parent_id)
            self._emit(
                BoardOp.ATTACH,
                {
                    "child_id": child_id,
                    "parent_id": parent_id,
                    "resources": self._describe([parent_id] + members),
                },
            )
            logger.info(f"Attached {child_id} to {parent_id}")
            return OperationResult(
                success=True,
                affected_resource_ids=members + [parent_id],
                conflict_flags=self.mover.flags_for(members),
            )

    def propose_detach(self, child_id: str) -> OperationResult:
        """Detaching is never rule-restricted; the child keeps its cells."""
        with self._mutation():
            former_parent = self.graph.detach(child_id)
            if former_parent is None:
                return OperationResult(success=True)
            self._emit(BoardOp.DETACH, {"child_id": child_id})
            logger.info(f"Detached {child_id} from {former_parent}")
            return OperationResult(
                success=True,
                affected_resource_ids=[child_id, former_parent],
                conflict_flags=self.mover.flags_for([child_id]),
            )

    def propose_move(self, root_id: str, destination: Optional[Cell], source: Optional[Cell] = None) -> OperationResult:
        with self._mutation():
            exposed = self.rows_for(destination.job_id) if destination is not None else None
            members = self.graph.subtree(root_id)
            result = self.mover.move(root_id, destination, self.catalog, source=source, exposed_rows=exposed)
            if result.success:
                self._emit(
                    BoardOp.MOVE,
                    {
                        "root_id": root_id,
                        "destination": cell_to_dict(destination),
                        "source": cell_to_dict(source),
                        "members": members,
                        "resources": self._describe(members),
                    },
                )
            return result

    def check_finalizable(self, job_id: str) -> List[MissingRequirement]:
        with self._lock:
            return check_finalizable(job_id, self.rows_for(job_id), self.graph, self.board, self.catalog)

    def finalize_job(self, job_id: str) -> List[MissingRequirement]:
        """Mark the job finalized when nothing is missing; returns what is missing otherwise."""
        with self._mutation():
            missing = self.check_finalizable(job_id)
            job = self.get_job(job_id)
            if missing or job.finalized:
                return missing
            job.finalized = True
            self._emit(BoardOp.FINALIZE, {"job_id": job_id})
            logger.info(f"Job {job_id} finalized")
            return missing

    def set_row_enabled(self, job_id: str, row_type: RowType, enabled: bool) -> OperationResult:
        """Toggle a row for one job. Disabling a row takes its chains off that row."""
        with self._mutation():
            self.get_job(job_id)
            self._row_overrides[(job_id, row_type)] = enabled
            affected = self._clear_row(job_id, row_type) if not enabled else []
            self._emit(BoardOp.SET_ROW, {"job_id": job_id, "row_type": row_type.value, "enabled": enabled})
            logger.info(f"Row {row_type.value} on job {job_id} {'enabled' if enabled else 'disabled'}")
            return OperationResult(
                success=True, affected_resource_ids=affected, conflict_flags=self.mover.flags_for(affected)
            )

    def conflicts_for(self, resource_id: str, include_informational: bool = False) -> List[ConflictFlag]:
        with self._lock:
            self.graph.get(resource_id)
            return self.detector.recompute(resource_id, include_informational)

    def all_conflicts(self, include_informational: bool = False) -> Dict[str, List[ConflictFlag]]:
        with self._lock:
            return self.detector.recompute_all(include_informational)

    def admin_replace_rule_catalog(self, catalog: RuleCatalog) -> CatalogReport:
        """Swap in a new rule snapshot. Catalogs with errors are refused."""
        report = validate_catalog(catalog)
        if not report.is_valid:
            logger.warning(f"Rule catalog replacement refused: {len(report.errors)} error(s)")
            raise RuleCatalogError(report)
        self.catalog_holder.replace(catalog)
        return report

    # replay

    def apply_event(self, event: BoardEvent) -> OperationResult:
        """Replay a mutation committed by another session."""
        if event.origin == self.origin:
            return OperationResult(success=True)

        with self._lock:
            for item in event.payload.get("resources", ()):
                if item["id"] not in self.graph:
                    self.graph.add(Resource(id=item["id"], type=ResourceType(item["type"])))

            handler = {
                BoardOp.DROP: self._replay_drop,
                BoardOp.ATTACH: self._replay_attach,
                BoardOp.DETACH: self._replay_detach,
                BoardOp.MOVE: self._replay_move,
                BoardOp.SET_ROW: self._replay_set_row,
                BoardOp.FINALIZE: self._replay_finalize,
            }.get(event.op)
            if handler is None:
                raise InvariantViolation(f"Unknown board event op: {event.op}")
            return handler(event.payload)

    def _replay_drop(self, payload: dict) -> OperationResult:
        cell = cell_from_dict(payload["cell"])
        self.graph.detach(payload["resource_id"])
        members = payload["members"]
        for member_id in members:
            self.board.place(member_id, cell)
        return OperationResult(success=True, affected_resource_ids=members, conflict_flags=self.mover.flags_for(members))

    def _replay_attach(self, payload: dict) -> OperationResult:
        child_id, parent_id = payload["child_id"], payload["parent_id"]
        child = self.graph.get(child_id)
        if child.parent_id == parent_id:
            return OperationResult(success=True)

        warnings = []
        previous = self.graph.detach(child_id)
        if previous is not None:
            warnings.append(f"{child_id} was attached to {previous} here; last write wins, now on {parent_id}")
            logger.warning(f"Replay conflict: {child_id} moved from {previous} to {parent_id}")

        violation = self.graph.attach(child_id, parent_id, self.catalog)
        if violation is not None:
            if previous is not None:
                self.graph.get(previous).child_ids.append(child_id)
                child.parent_id = previous
            logger.warning(f"Replayed attach {child_id} -> {parent_id} not applicable: {violation.message}")
            return OperationResult(success=False, violation=violation, warnings=warnings)

        members = self._co_locate(child_id, parent_id)
        return OperationResult(
            success=True,
            affected_resource_ids=members + [parent_id],
            conflict_flags=self.mover.flags_for(members),
            warnings=warnings,
        )

    def _replay_detach(self, payload: dict) -> OperationResult:
        child_id = payload["child_id"]
        former_parent = self.graph.detach(child_id)
        if former_parent is None:
            return OperationResult(success=True)
        return OperationResult(success=True, affected_resource_ids=[child_id, former_parent])

    def _replay_move(self, payload: dict) -> OperationResult:
        destination = cell_from_dict(payload["destination"])
        source = cell_from_dict(payload["source"])
        members = [m for m in payload["members"] if m in self.graph]
        self.graph.detach(payload["root_id"])
        for member_id in members:
            vacated = [source] if source is not None else self.board.cells_for(member_id)
            for cell in vacated:
                self.board.remove(member_id, cell)
            if destination is not None:
                self.board.place(member_id, destination)
        return OperationResult(success=True, affected_resource_ids=members, conflict_flags=self.mover.flags_for(members))

    def _replay_set_row(self, payload: dict) -> OperationResult:
        job_id, row_type = payload["job_id"], RowType(payload["row_type"])
        self._row_overrides[(job_id, row_type)] = payload["enabled"]
        affected = self._clear_row(job_id, row_type) if not payload["enabled"] else []
        return OperationResult(success=True, affected_resource_ids=affected)

    def _replay_finalize(self, payload: dict) -> OperationResult:
        job = self.jobs.get(payload["job_id"])
        if job is not None:
            job.finalized = True
        return OperationResult(success=True)

    # helpers

    def _co_locate(self, child_id: str, parent_id: str) -> List[str]:
        """Put the child's chain exactly where its parent is staffed."""
        members = self.graph.subtree(child_id)
        parent_cells = self.board.cells_for(parent_id)
        for member_id in members:
            for cell in self.board.cells_for(member_id):
                if cell not in parent_cells:
                    self.board.remove(member_id, cell)
            for cell in parent_cells:
                self.board.place(member_id, cell)
        return members

    def _clear_row(self, job_id: str, row_type: RowType) -> List[str]:
        affected: List[str] = []
        for cell in self.board.cells_for_job(job_id):
            if cell.row_type != row_type:
                continue
            for rid in sorted(self.board.members(cell)):
                self.board.remove(rid, cell)
                affected.append(rid)
        return affected

    def _describe(self, resource_ids: List[str]) -> List[dict]:
        return [{"id": rid, "type": self.graph.get(rid).type.value} for rid in resource_ids]
