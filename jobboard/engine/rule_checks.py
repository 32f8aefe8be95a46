"""
Consistency checks for a rule catalog before it is swapped in.

Errors make a catalog unusable (ambiguous or self-contradicting rules);
warnings point at rule sets that are legal but probably incomplete.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import List

from jobboard.engine.catalog import RuleCatalog
from jobboard.models.entities import EQUIPMENT_TYPES, ResourceType, RowType

ESSENTIAL_ROWS = (RowType.FOREMAN, RowType.EQUIPMENT, RowType.CREW, RowType.TRUCKS)
HIGH_MAX_COUNT = 5


@dataclass
class CatalogReport:
    errors: List[str] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)
    suggestions: List[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


class RuleCatalogError(Exception):
    def __init__(self, report: CatalogReport):
        super().__init__("; ".join(report.errors))
        self.report = report


def validate_catalog(catalog: RuleCatalog) -> CatalogReport:
    report = CatalogReport()
    _check_attachment_rules(catalog, report)
    _check_drop_rules(catalog, report)
    _check_cross_references(catalog, report)
    return report


def _check_attachment_rules(catalog: RuleCatalog, report: CatalogReport) -> None:
    rules = catalog.attachment_rules
    for (source, target), count in Counter(r.key for r in rules).items():
        if count > 1:
            report.errors.append(f"Duplicate rules found for {source.value} -> {target.value}")

    for rule in rules:
        pair = f"{rule.source_type.value} -> {rule.target_type.value}"
        if rule.is_required and not rule.can_attach:
            report.errors.append(f"Rule marked as required but canAttach is false: {pair}")
        if rule.max_count > HIGH_MAX_COUNT:
            report.warnings.append(f"High maxCount ({rule.max_count}) for {pair} - verify if intentional")
        if rule.can_attach and rule.max_count == 0:
            report.warnings.append(f"Rule allows attachment but maxCount is 0: {pair}")

    for equipment in EQUIPMENT_TYPES:
        if not catalog.can_attach(ResourceType.OPERATOR, equipment):
            report.warnings.append(f"No operator rule found for {equipment.value} - equipment may not be operable")
            report.suggestions.append(f"Add operator rule for {equipment.value}")

    drivers = (ResourceType.DRIVER, ResourceType.PRIVATE_DRIVER)
    if not any(catalog.can_attach(d, ResourceType.TRUCK) for d in drivers):
        report.warnings.append("No driver rule found for trucks - vehicles may not be drivable")
        report.suggestions.append("Add driver rule for trucks")


def _check_drop_rules(catalog: RuleCatalog, report: CatalogReport) -> None:
    counts = Counter(d.row_type for d in catalog.drop_rules)
    for row_type, count in counts.items():
        if count > 1:
            report.errors.append(f"Multiple drop rules found for row type: {row_type.value}")

    for drop in catalog.drop_rules:
        if not drop.allowed_types:
            report.warnings.append(
                f"Row type {drop.row_type.value} has no allowed resource types - nothing can be dropped here"
            )

    for row_type in ESSENTIAL_ROWS:
        if row_type not in counts:
            report.warnings.append(f"Missing drop rule for essential row type: {row_type.value}")
            report.suggestions.append(f"Add drop rule for {row_type.value} row")


def _check_cross_references(catalog: RuleCatalog, report: CatalogReport) -> None:
    droppable = set()
    for drop in catalog.drop_rules:
        droppable |= set(drop.allowed_types)

    # attached children ride on their parent, so only targets need a row
    for rule in catalog.attachment_rules:
        if rule.can_attach and rule.target_type not in droppable:
            report.warnings.append(
                f"Attachment rule targets {rule.target_type.value} but it is not allowed in any row"
            )
