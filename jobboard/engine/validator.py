"""
Operation validator

Read-only checks run before any board or graph mutation. Each function
returns None when the operation is allowed and a RuleViolation otherwise;
none of them mutate the graph, the board or the catalog.

Drop rules apply to the resource being dropped. For a chain (a root plus
everything attached to it) the root must be accepted by the destination row,
while an attached member may instead ride on its parent: a driver moving with
its truck only needs the row to accept trucks, as long as the driver is
attached under a rule the catalog still permits.
"""

from typing import Collection, Dict, List, Optional

from jobboard.engine.catalog import RuleCatalog
from jobboard.graph.attachment_graph import AttachmentGraph
from jobboard.models.entities import Cell, Resource
from jobboard.models.results import RuleViolation, ViolationKind


def validate_drop(
    resource: Resource,
    cell: Cell,
    catalog: RuleCatalog,
    exposed_rows: Optional[Collection] = None,
) -> Optional[RuleViolation]:
    """
    Check that `resource` may be dropped into `cell`.

    Args:
        resource: Resource being dropped
        cell: Destination cell
        catalog: Rule snapshot to check against
        exposed_rows: Rows the destination job currently exposes, if known

    Returns:
        None if allowed, DropNotAllowed violation otherwise
    """
    if exposed_rows is not None and cell.row_type not in exposed_rows:
        return RuleViolation(
            ViolationKind.DROP_NOT_ALLOWED,
            f"Job {cell.job_id} has no enabled {cell.row_type.value} row",
            (resource.id,),
        )
    if resource.type not in catalog.allowed_types(cell.row_type):
        return RuleViolation(
            ViolationKind.DROP_NOT_ALLOWED,
            f"{resource.type.value} cannot be dropped into {cell.row_type.value} row",
            (resource.id,),
        )
    return None


def validate_attach(
    child_id: str,
    parent_id: str,
    graph: AttachmentGraph,
    catalog: RuleCatalog,
) -> Optional[RuleViolation]:
    """Type-compatibility pre-check, then the graph's own structural checks."""
    child = graph.get(child_id)
    parent = graph.get(parent_id)
    if child.parent_id != parent_id and not catalog.can_attach(child.type, parent.type):
        return RuleViolation(
            ViolationKind.ATTACH_NOT_ALLOWED,
            f"Cannot attach {child.type.value} to {parent.type.value}",
            (child_id, parent_id),
        )
    return graph.check_attach(child_id, parent_id, catalog)


def validate_move(
    root_id: str,
    destination: Cell,
    graph: AttachmentGraph,
    catalog: RuleCatalog,
    exposed_rows: Optional[Collection] = None,
) -> Optional[RuleViolation]:
    """
    Check that the chain rooted at `root_id` may move into `destination` as a whole.

    Every member is evaluated; the first failure does not short-circuit so the
    violation can name all offending members.

    Returns:
        None if the whole chain is accepted,
        DropNotAllowed if the root itself is rejected,
        PartialChainRejected if only attached members are rejected
    """
    root = graph.get(root_id)
    root_violation = validate_drop(root, destination, catalog, exposed_rows)
    if root_violation is not None:
        return root_violation

    accepted: Dict[str, bool] = {root_id: True}
    rejected: List[str] = []
    for member_id in graph.subtree(root_id)[1:]:
        member = graph.get(member_id)
        ok = validate_drop(member, destination, catalog, exposed_rows) is None
        if not ok and member.parent_id is not None:
            parent = graph.get(member.parent_id)
            ok = accepted.get(parent.id, False) and catalog.can_attach(member.type, parent.type)
        accepted[member_id] = ok
        if not ok:
            rejected.append(member_id)

    if rejected:
        return RuleViolation(
            ViolationKind.PARTIAL_CHAIN_REJECTED,
            f"{len(rejected)} attached resource(s) cannot move into {destination.row_type.value} row",
            tuple(rejected),
        )
    return None
