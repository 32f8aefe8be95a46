import logging
from typing import Collection, List, Optional

from jobboard.engine.board import AssignmentBoard
from jobboard.engine.catalog import RuleCatalog
from jobboard.engine.validator import validate_move
from jobboard.graph.attachment_graph import AttachmentGraph
from jobboard.graph.conflict_graph import ConflictDetector
from jobboard.models.entities import Cell, ConflictFlag
from jobboard.models.results import InvariantViolation, OperationResult

logger = logging.getLogger(__name__)


class ChainMover:
    """Moves a resource and everything attached to it as one unit."""

    def __init__(self, graph: AttachmentGraph, board: AssignmentBoard, detector: ConflictDetector):
        self.graph = graph
        self.board = board
        self.detector = detector

    def move(
        self,
        root_id: str,
        destination: Optional[Cell],
        catalog: RuleCatalog,
        source: Optional[Cell] = None,
        exposed_rows: Optional[Collection] = None,
    ) -> OperationResult:
        """
        Relocate the chain rooted at `root_id`.

        `destination=None` takes the chain off the board. When `source` is given
        only that cell is vacated; otherwise every cell the members occupy is.
        If the root is attached to a parent, that edge is dropped as part of the
        move. Either every member moves or nothing changes.
        """
        members = self.graph.subtree(root_id)
        if source is not None and source not in self.board.cells_for(root_id):
            raise InvariantViolation(f"Resource {root_id} is not assigned to {source.label()}")

        if destination is not None:
            violation = validate_move(root_id, destination, self.graph, catalog, exposed_rows)
            if violation is not None:
                logger.info(f"Move of {root_id} rejected: {violation.kind.value} ({violation.message})")
                return OperationResult.rejected(violation)

        graph_before = self.graph.snapshot()
        board_before = self.board.snapshot()
        warnings: List[str] = []
        affected = list(members)
        try:
            former_parent = self.graph.detach(root_id)
            if former_parent is not None:
                warnings.append(f"{root_id} was detached from {former_parent}")
                affected.append(former_parent)
            for member_id in members:
                vacated = [source] if source is not None else self.board.cells_for(member_id)
                for cell in vacated:
                    self.board.remove(member_id, cell)
                if destination is not None:
                    self.board.place(member_id, destination)
        except Exception:
            self.graph.restore(graph_before)
            self.board.restore(board_before)
            raise

        target = destination.label() if destination is not None else "off the board"
        logger.info(f"Moved chain {root_id} ({len(members)} resource(s)) {target}")
        return OperationResult(
            success=True,
            affected_resource_ids=affected,
            conflict_flags=self.flags_for(members),
            warnings=warnings,
        )

    def flags_for(self, resource_ids: List[str]) -> List[ConflictFlag]:
        flags: List[ConflictFlag] = []
        for rid in resource_ids:
            flags.extend(self.detector.recompute(rid, include_informational=True))
        return flags
