"""
Attachment graph

Resources live in a flat table keyed by id; parent/child links are id
references. A resource has at most one parent and, per source type, at most
`max_count` children as allowed by the rule catalog. Nesting depth is capped
(default 1: an attached resource does not host attachments of its own).
"""

import logging
from typing import Dict, Iterable, List, Optional, Tuple

from jobboard.engine.catalog import RuleCatalog
from jobboard.models.entities import Resource
from jobboard.models.results import InvariantViolation, RuleViolation, ViolationKind

logger = logging.getLogger(__name__)

GraphSnapshot = Dict[str, Tuple[Optional[str], Tuple[str, ...]]]


class AttachmentGraph:
    def __init__(self, resources: Iterable[Resource] = (), max_depth: int = 1):
        self.max_depth = max_depth
        self._resources: Dict[str, Resource] = {}
        for resource in resources:
            self.add(resource)

    def add(self, resource: Resource) -> None:
        existing = self._resources.get(resource.id)
        if existing is not None:
            if existing.type != resource.type:
                raise InvariantViolation(f"Resource {resource.id} already registered as {existing.type.value}")
            existing.name = resource.name or existing.name
            return
        self._resources[resource.id] = Resource(id=resource.id, type=resource.type, name=resource.name)

    def __contains__(self, resource_id: str) -> bool:
        return resource_id in self._resources

    def get(self, resource_id: str) -> Resource:
        try:
            return self._resources[resource_id]
        except KeyError:
            raise InvariantViolation(f"Unknown resource id: {resource_id}") from None

    def resources(self) -> List[Resource]:
        return list(self._resources.values())

    def parent_of(self, resource_id: str) -> Optional[str]:
        return self.get(resource_id).parent_id

    def children_of(self, resource_id: str) -> List[str]:
        return list(self.get(resource_id).child_ids)

    def subtree(self, root_id: str) -> List[str]:
        """Root plus all descendants, depth-first, root first."""
        ordered: List[str] = []
        stack = [root_id]
        while stack:
            rid = stack.pop()
            ordered.append(rid)
            stack.extend(reversed(self.get(rid).child_ids))
        return ordered

    def _depth(self, resource_id: str) -> int:
        depth = 0
        current = self.get(resource_id)
        while current.parent_id is not None:
            depth += 1
            current = self.get(current.parent_id)
        return depth

    def _height(self, resource_id: str) -> int:
        children = self.get(resource_id).child_ids
        if not children:
            return 0
        return 1 + max(self._height(c) for c in children)

    def check_attach(self, child_id: str, parent_id: str, catalog: RuleCatalog) -> Optional[RuleViolation]:
        """Return the violation `attach` would produce, or None. Never mutates."""
        child = self.get(child_id)
        parent = self.get(parent_id)
        ids = (child_id, parent_id)

        if child.parent_id == parent_id:
            return None
        if child_id == parent_id:
            return RuleViolation(ViolationKind.ATTACH_NOT_ALLOWED, "A resource cannot attach to itself", ids)
        if not catalog.can_attach(child.type, parent.type):
            return RuleViolation(
                ViolationKind.ATTACH_NOT_ALLOWED,
                f"Cannot attach {child.type.value} to {parent.type.value}",
                ids,
            )
        if child.parent_id is not None:
            return RuleViolation(
                ViolationKind.ALREADY_ATTACHED,
                f"{child_id} is already attached to {child.parent_id}; detach it first",
                ids,
            )
        if parent_id in self.subtree(child_id):
            return RuleViolation(ViolationKind.ATTACH_NOT_ALLOWED, "Attachment would create a cycle", ids)
        if self._depth(parent_id) + 1 + self._height(child_id) > self.max_depth:
            return RuleViolation(
                ViolationKind.ATTACH_NOT_ALLOWED,
                f"Attachments cannot be nested deeper than {self.max_depth} level(s)",
                ids,
            )

        limit = catalog.max_count(child.type, parent.type)
        same_type = [c for c in parent.child_ids if self.get(c).type == child.type]
        if len(same_type) >= limit:
            return RuleViolation(
                ViolationKind.MAX_COUNT_EXCEEDED,
                f"Maximum {limit} {child.type.value}(s) already attached to this {parent.type.value}",
                ids,
            )
        return None

    def attach(self, child_id: str, parent_id: str, catalog: RuleCatalog) -> Optional[RuleViolation]:
        violation = self.check_attach(child_id, parent_id, catalog)
        if violation is not None:
            return violation
        child = self.get(child_id)
        if child.parent_id == parent_id:
            return None
        child.parent_id = parent_id
        self.get(parent_id).child_ids.append(child_id)
        logger.debug(f"Attached {child_id} -> {parent_id}")
        return None

    def detach(self, child_id: str) -> Optional[str]:
        """Remove the edge to the parent. Returns the former parent id, if any."""
        child = self.get(child_id)
        parent_id = child.parent_id
        if parent_id is None:
            return None
        parent = self.get(parent_id)
        parent.child_ids = [c for c in parent.child_ids if c != child_id]
        child.parent_id = None
        logger.debug(f"Detached {child_id} from {parent_id}")
        return parent_id

    def snapshot(self) -> GraphSnapshot:
        return {rid: (r.parent_id, tuple(r.child_ids)) for rid, r in self._resources.items()}

    def restore(self, snapshot: GraphSnapshot) -> None:
        for rid, (parent_id, child_ids) in snapshot.items():
            resource = self._resources[rid]
            resource.parent_id = parent_id
            resource.child_ids = list(child_ids)

    def edges(self) -> List[Tuple[str, str]]:
        """(child_id, parent_id) pairs."""
        return [(r.id, r.parent_id) for r in self._resources.values() if r.parent_id is not None]
