"""
Rule catalog

Immutable snapshot of the three rule tables that drive the board:

- AttachmentRule: which resource type may attach to which, how many, and
  whether the attachment is mandatory before finalization.
- DropRule: which resource types a row type accepts.
- RowSchema: which rows a job (by id) or a job type exposes, in order.

Every lookup is total: a missing rule reads as "not allowed" (False, 0 or an
empty set), never as an error. Administrative edits build a new snapshot and
swap it into a CatalogHolder, so readers never observe a half-applied edit.
"""

import logging
import threading
from typing import Dict, FrozenSet, Iterable, Optional, Tuple

from jobboard.models.constraints import AttachmentRule, DropRule, RowSchema
from jobboard.models.entities import EQUIPMENT_TYPES, Job, ResourceType, RowType

logger = logging.getLogger(__name__)

RuleKey = Tuple[ResourceType, ResourceType]


class RuleCatalog:
    def __init__(
        self,
        attachment_rules: Iterable[AttachmentRule] = (),
        drop_rules: Iterable[DropRule] = (),
        row_schemas: Iterable[RowSchema] = (),
        version: int = 1,
    ):
        self.attachment_rules: Tuple[AttachmentRule, ...] = tuple(attachment_rules)
        self.drop_rules: Tuple[DropRule, ...] = tuple(drop_rules)
        self.row_schemas: Tuple[RowSchema, ...] = tuple(row_schemas)
        self.version = version

        # later entries win; duplicates are reported by validate_catalog
        self._attach: Dict[RuleKey, AttachmentRule] = {r.key: r for r in self.attachment_rules}
        self._drop: Dict[RowType, FrozenSet[ResourceType]] = {
            d.row_type: frozenset(d.allowed_types) for d in self.drop_rules
        }
        self._rows: Dict[str, Tuple[RowType, ...]] = {s.job_ref: tuple(s.rows) for s in self.row_schemas}

    def rule(self, source_type: ResourceType, target_type: ResourceType) -> Optional[AttachmentRule]:
        return self._attach.get((source_type, target_type))

    def can_attach(self, source_type: ResourceType, target_type: ResourceType) -> bool:
        rule = self.rule(source_type, target_type)
        return bool(rule and rule.can_attach)

    def max_count(self, source_type: ResourceType, target_type: ResourceType) -> int:
        rule = self.rule(source_type, target_type)
        return rule.max_count if rule else 0

    def is_required(self, source_type: ResourceType, target_type: ResourceType) -> bool:
        rule = self.rule(source_type, target_type)
        return bool(rule and rule.is_required)

    def allowed_types(self, row_type: RowType) -> FrozenSet[ResourceType]:
        return self._drop.get(row_type, frozenset())

    def rows_for(self, job: Job) -> Tuple[RowType, ...]:
        """Rows exposed by a job. A job-id schema overrides the job-type schema."""
        if job.id in self._rows:
            return self._rows[job.id]
        return self._rows.get(job.job_type, ())

    def required_sources(self, target_type: ResourceType) -> Tuple[ResourceType, ...]:
        return tuple(
            r.source_type for r in self._attach.values() if r.target_type == target_type and r.is_required
        )

    def __repr__(self) -> str:
        return (
            f"RuleCatalog(v{self.version}, attachment_rules={len(self.attachment_rules)}, "
            f"drop_rules={len(self.drop_rules)}, row_schemas={len(self.row_schemas)})"
        )


class CatalogHolder:
    """Swap-in point for catalog snapshots. Reads are lock-free."""

    def __init__(self, catalog: RuleCatalog):
        self._catalog = catalog
        self._write_lock = threading.Lock()

    @property
    def current(self) -> RuleCatalog:
        return self._catalog

    def replace(self, catalog: RuleCatalog) -> RuleCatalog:
        """Install a copy of `catalog` under the next version. The argument is left as is."""
        with self._write_lock:
            previous = self._catalog
            installed = RuleCatalog(
                catalog.attachment_rules,
                catalog.drop_rules,
                catalog.row_schemas,
                version=previous.version + 1,
            )
            self._catalog = installed
        logger.info(f"Rule catalog replaced: v{previous.version} -> v{installed.version}")
        return previous


def _operator_rules():
    required = {
        ResourceType.PAVER,
        ResourceType.ROLLER,
        ResourceType.EXCAVATOR,
        ResourceType.SWEEPER,
        ResourceType.MILLING_MACHINE,
        ResourceType.DOZER,
        ResourceType.PAYLOADER,
        ResourceType.SKIDSTEER,
    }
    for equipment in EQUIPMENT_TYPES:
        yield AttachmentRule(
            ResourceType.OPERATOR, equipment, can_attach=True, max_count=1, is_required=equipment in required
        )


def default_catalog() -> RuleCatalog:
    """Rule set used to seed an empty rule store."""
    T = ResourceType
    R = RowType

    attachment_rules = list(_operator_rules()) + [
        AttachmentRule(T.DRIVER, T.TRUCK, max_count=1, is_required=True),
        AttachmentRule(T.PRIVATE_DRIVER, T.TRUCK, max_count=1),
        AttachmentRule(T.LABORER, T.TRUCK, max_count=1),
        AttachmentRule(T.STRIPER, T.TRUCK, max_count=1),
        AttachmentRule(T.FOREMAN, T.TRUCK, max_count=1),
        AttachmentRule(T.SCREWMAN, T.PAVER, max_count=2),
        AttachmentRule(T.LABORER, T.PAVER, max_count=2),
        AttachmentRule(T.FOREMAN, T.PAVER, max_count=1),
        AttachmentRule(T.GROUNDMAN, T.MILLING_MACHINE, max_count=1),
        AttachmentRule(T.LABORER, T.MILLING_MACHINE, max_count=1),
        AttachmentRule(T.LABORER, T.EXCAVATOR, max_count=1),
    ]

    crew = {T.LABORER, T.STRIPER, T.SCREWMAN, T.GROUNDMAN, T.OPERATOR, T.DRIVER}
    drop_rules = [
        DropRule(R.FOREMAN, frozenset({T.FOREMAN})),
        DropRule(R.EQUIPMENT, frozenset(set(EQUIPMENT_TYPES) | {T.OPERATOR})),
        DropRule(R.SWEEPER, frozenset({T.SWEEPER, T.OPERATOR})),
        DropRule(R.TACK, frozenset({T.TRUCK})),
        DropRule(R.MPT, frozenset({T.TRUCK, T.LABORER})),
        DropRule(R.CREW, frozenset(crew)),
        # drivers ride on their trucks
        DropRule(R.TRUCKS, frozenset({T.TRUCK})),
    ]

    core = (R.FOREMAN, R.EQUIPMENT, R.CREW, R.TRUCKS)
    row_schemas = [
        RowSchema("paving", core + (R.TACK, R.MPT)),
        RowSchema("milling", core + (R.SWEEPER,)),
        RowSchema("both", core + (R.SWEEPER, R.TACK, R.MPT)),
        RowSchema("drainage", core),
        RowSchema("concrete", core),
        RowSchema("excavation", core),
        RowSchema("stripping", core),
        RowSchema("other", (R.FOREMAN, R.CREW)),
        RowSchema("hired", (R.FOREMAN, R.CREW)),
    ]
    return RuleCatalog(attachment_rules, drop_rules, row_schemas)
