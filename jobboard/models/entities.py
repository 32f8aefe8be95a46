from dataclasses import dataclass, field
from datetime import date
from enum import Enum
from typing import List, Optional, Tuple


class ResourceType(str, Enum):
    # personnel
    OPERATOR = "operator"
    DRIVER = "driver"
    STRIPER = "striper"
    FOREMAN = "foreman"
    LABORER = "laborer"
    PRIVATE_DRIVER = "privateDriver"
    SCREWMAN = "screwman"
    GROUNDMAN = "groundman"
    # equipment
    SKIDSTEER = "skidsteer"
    PAVER = "paver"
    EXCAVATOR = "excavator"
    SWEEPER = "sweeper"
    MILLING_MACHINE = "millingMachine"
    GRADER = "grader"
    DOZER = "dozer"
    PAYLOADER = "payloader"
    ROLLER = "roller"
    EQUIPMENT = "equipment"
    # vehicles
    TRUCK = "truck"


EQUIPMENT_TYPES = (
    ResourceType.SKIDSTEER,
    ResourceType.PAVER,
    ResourceType.EXCAVATOR,
    ResourceType.SWEEPER,
    ResourceType.MILLING_MACHINE,
    ResourceType.GRADER,
    ResourceType.DOZER,
    ResourceType.PAYLOADER,
    ResourceType.ROLLER,
    ResourceType.EQUIPMENT,
)


class RowType(str, Enum):
    FOREMAN = "Forman"
    EQUIPMENT = "Equipment"
    SWEEPER = "Sweeper"
    TACK = "Tack"
    MPT = "MPT"
    CREW = "crew"
    TRUCKS = "trucks"


class Shift(str, Enum):
    DAY = "day"
    NIGHT = "night"


class ConflictKind(str, Enum):
    DOUBLE_SHIFT = "doubleShift"
    DOUBLE_JOB = "doubleJob"
    NIGHT_ONLY = "nightOnly"


@dataclass
class Resource:
    id: str
    type: ResourceType
    name: Optional[str] = None
    parent_id: Optional[str] = None
    child_ids: List[str] = field(default_factory=list)


@dataclass
class Job:
    id: str
    job_type: str
    name: Optional[str] = None
    finalized: bool = False


@dataclass(frozen=True, order=True)
class Cell:
    job_id: str
    row_type: RowType
    date: date
    shift: Shift

    def label(self) -> str:
        return f"{self.job_id}/{self.row_type.value}/{self.date.isoformat()}/{self.shift.value}"


@dataclass(frozen=True)
class Assignment:
    job_id: str
    row_type: RowType
    date: date
    shift: Shift
    resource_id: str

    @property
    def cell(self) -> Cell:
        return Cell(self.job_id, self.row_type, self.date, self.shift)

    @classmethod
    def of(cls, resource_id: str, cell: Cell) -> "Assignment":
        return cls(cell.job_id, cell.row_type, cell.date, cell.shift, resource_id)


@dataclass(frozen=True)
class ConflictFlag:
    resource_id: str
    kind: ConflictKind
    date: date
    related_assignments: Tuple[Assignment, ...]

    @property
    def is_violation(self) -> bool:
        return self.kind != ConflictKind.NIGHT_ONLY


@dataclass(frozen=True)
class MissingRequirement:
    resource_id: str
    missing_source_type: ResourceType
