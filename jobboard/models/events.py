import json
import uuid
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Dict, Optional

from jobboard.models.entities import Cell, RowType, Shift


class BoardOp:
    DROP = "drop"
    ATTACH = "attach"
    DETACH = "detach"
    MOVE = "move"
    SET_ROW = "set_row"
    FINALIZE = "finalize"


def cell_to_dict(cell: Optional[Cell]) -> Optional[Dict[str, str]]:
    if cell is None:
        return None
    return {
        "job_id": cell.job_id,
        "row_type": cell.row_type.value,
        "date": cell.date.isoformat(),
        "shift": cell.shift.value,
    }


def cell_from_dict(data: Optional[Dict[str, str]]) -> Optional[Cell]:
    if data is None:
        return None
    return Cell(
        job_id=data["job_id"],
        row_type=RowType(data["row_type"]),
        date=date.fromisoformat(data["date"]),
        shift=Shift(data["shift"]),
    )


@dataclass(frozen=True)
class BoardEvent:
    """A committed mutation, in a form another session can replay."""

    op: str
    payload: Dict[str, Any]
    origin: str
    event_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    created_at: str = field(default_factory=lambda: datetime.utcnow().isoformat())

    def to_json(self) -> str:
        return json.dumps(
            {
                "event_id": self.event_id,
                "op": self.op,
                "origin": self.origin,
                "created_at": self.created_at,
                "payload": self.payload,
            },
            sort_keys=True,
        )

    @classmethod
    def from_json(cls, raw: str) -> "BoardEvent":
        data = json.loads(raw)
        return cls(
            op=data["op"],
            payload=data["payload"],
            origin=data["origin"],
            event_id=data["event_id"],
            created_at=data["created_at"],
        )
