from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from jobboard.models.entities import ConflictFlag


class ViolationKind(str, Enum):
    ATTACH_NOT_ALLOWED = "AttachNotAllowed"
    MAX_COUNT_EXCEEDED = "MaxCountExceeded"
    ALREADY_ATTACHED = "AlreadyAttached"
    DROP_NOT_ALLOWED = "DropNotAllowed"
    PARTIAL_CHAIN_REJECTED = "PartialChainRejected"


@dataclass(frozen=True)
class RuleViolation:
    """Expected business-rule failure. Returned to the caller, never raised."""

    kind: ViolationKind
    message: str
    resource_ids: Tuple[str, ...] = ()

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "message": self.message, "resource_ids": list(self.resource_ids)}


class InvariantViolation(Exception):
    """Programmer error upstream, e.g. referencing an unknown resource id."""


@dataclass
class OperationResult:
    success: bool
    affected_resource_ids: List[str] = field(default_factory=list)
    conflict_flags: List[ConflictFlag] = field(default_factory=list)
    violation: Optional[RuleViolation] = None
    warnings: List[str] = field(default_factory=list)

    @classmethod
    def rejected(cls, violation: RuleViolation) -> "OperationResult":
        return cls(success=False, violation=violation)
