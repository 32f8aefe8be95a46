from dataclasses import dataclass
from typing import FrozenSet, Tuple

from jobboard.models.entities import ResourceType, RowType


@dataclass(frozen=True)
class AttachmentRule:
    """A `target_type` may hold at most `max_count` attached `source_type` children."""

    source_type: ResourceType
    target_type: ResourceType
    can_attach: bool = True
    max_count: int = 1
    is_required: bool = False

    def __post_init__(self):
        if self.max_count < 0:
            raise ValueError("max_count must be >= 0")

    @property
    def key(self) -> Tuple[ResourceType, ResourceType]:
        return (self.source_type, self.target_type)


@dataclass(frozen=True)
class DropRule:
    row_type: RowType
    allowed_types: FrozenSet[ResourceType]


@dataclass(frozen=True)
class RowSchema:
    # job_ref is either a job type ("paving") or a concrete job id
    job_ref: str
    rows: Tuple[RowType, ...]
