from typing import Collection, List

from jobboard.engine.board import AssignmentBoard
from jobboard.engine.catalog import RuleCatalog
from jobboard.graph.attachment_graph import AttachmentGraph
from jobboard.models.entities import MissingRequirement


def check_finalizable(
    job_id: str,
    exposed_rows: Collection,
    graph: AttachmentGraph,
    board: AssignmentBoard,
    catalog: RuleCatalog,
) -> List[MissingRequirement]:
    """
    List the mandatory attachments missing on a job.

    Every resource staffed on one of the job's rows (any date or shift) is
    checked once against the required attachment rules that target its type.
    An empty list means the job may be finalized. Read-only.
    """
    staffed: List[str] = []
    for cell in board.cells_for_job(job_id):
        if cell.row_type not in exposed_rows:
            continue
        for rid in sorted(board.members(cell)):
            if rid not in staffed:
                staffed.append(rid)

    missing: List[MissingRequirement] = []
    for rid in staffed:
        resource = graph.get(rid)
        attached_types = {graph.get(c).type for c in resource.child_ids}
        for source_type in catalog.required_sources(resource.type):
            if source_type not in attached_types:
                missing.append(MissingRequirement(resource_id=rid, missing_source_type=source_type))
    return missing
