import datetime
from typing import Dict, List, Optional
import logging
import threading

from fastapi import APIRouter, HTTPException, Depends, Query
from pydantic import BaseModel, Field, field_validator

from jobboard.config.settings import get_settings
from jobboard.engine.catalog import RuleCatalog
from jobboard.engine.rule_checks import CatalogReport, RuleCatalogError, validate_catalog
from jobboard.engine.session import SchedulingSession
from jobboard.models.constraints import AttachmentRule, DropRule, RowSchema
from jobboard.models.entities import (
    Assignment,
    Cell,
    ConflictFlag,
    ConflictKind,
    Job,
    MissingRequirement,
    Resource,
    ResourceType,
    RowType,
    Shift,
)
from jobboard.models.results import OperationResult
from jobboard.storage.broadcast import RedisEventPublisher
from jobboard.storage.database import get_db
from jobboard.storage.repositories import (
    AuditLogRepository,
    AuditTrail,
    BoardRepository,
    JobRepository,
    ResourceRepository,
    RuleRepository,
    load_session,
)
from sqlalchemy.orm import Session

router = APIRouter()
settings = get_settings()
logger = logging.getLogger(__name__)

_session: Optional[SchedulingSession] = None
_session_lock = threading.Lock()


def get_session(db: Session = Depends(get_db)) -> SchedulingSession:
    """The board session, loaded from the database on first use."""
    global _session
    if _session is None:
        with _session_lock:
            if _session is None:
                session = load_session(
                    db,
                    max_depth=settings.max_attachment_depth,
                    origin=settings.session_origin,
                    seed_default_rules=settings.seed_default_rules,
                )
                session.add_listener(AuditTrail())
                if settings.broadcast_enabled:
                    session.add_listener(RedisEventPublisher())
                _session = session
                logger.info(f"Scheduling session {session.origin} loaded with {session.catalog!r}")
    return _session


def reset_session() -> None:
    global _session
    with _session_lock:
        _session = None


# DTOs


class ResourceDTO(BaseModel):
    id: str = Field(..., min_length=1)
    type: ResourceType
    name: Optional[str] = None

    def to_domain(self) -> Resource:
        return Resource(id=self.id, type=self.type, name=self.name)


class JobDTO(BaseModel):
    id: str = Field(..., min_length=1)
    job_type: str = Field(..., min_length=1)
    name: Optional[str] = None
    finalized: bool = False

    def to_domain(self) -> Job:
        return Job(id=self.id, job_type=self.job_type, name=self.name)

    @classmethod
    def from_domain(cls, job: Job) -> "JobDTO":
        return cls(id=job.id, job_type=job.job_type, name=job.name, finalized=job.finalized)


class CellDTO(BaseModel):
    job_id: str = Field(..., min_length=1)
    row_type: RowType
    date: datetime.date
    shift: Shift

    def to_domain(self) -> Cell:
        return Cell(job_id=self.job_id, row_type=self.row_type, date=self.date, shift=self.shift)


class AssignmentDTO(BaseModel):
    job_id: str
    row_type: RowType
    date: datetime.date
    shift: Shift
    resource_id: str

    @classmethod
    def from_domain(cls, a: Assignment) -> "AssignmentDTO":
        return cls(job_id=a.job_id, row_type=a.row_type, date=a.date, shift=a.shift, resource_id=a.resource_id)


class ConflictFlagDTO(BaseModel):
    resource_id: str
    kind: ConflictKind
    date: datetime.date
    related_assignments: List[AssignmentDTO]

    @classmethod
    def from_domain(cls, flag: ConflictFlag) -> "ConflictFlagDTO":
        return cls(
            resource_id=flag.resource_id,
            kind=flag.kind,
            date=flag.date,
            related_assignments=[AssignmentDTO.from_domain(a) for a in flag.related_assignments],
        )


class OperationResponse(BaseModel):
    success: bool
    affected_resource_ids: List[str]
    conflict_flags: List[ConflictFlagDTO]
    warnings: List[str] = []

    @classmethod
    def from_domain(cls, result: OperationResult) -> "OperationResponse":
        return cls(
            success=result.success,
            affected_resource_ids=result.affected_resource_ids,
            conflict_flags=[ConflictFlagDTO.from_domain(f) for f in result.conflict_flags],
            warnings=result.warnings,
        )


class DropRequest(BaseModel):
    resource_id: str
    cell: CellDTO


class AttachRequest(BaseModel):
    child_id: str
    parent_id: str


class DetachRequest(BaseModel):
    child_id: str


class MoveRequest(BaseModel):
    root_id: str
    destination: Optional[CellDTO] = None
    source: Optional[CellDTO] = None


class RowToggleRequest(BaseModel):
    enabled: bool


class MissingRequirementDTO(BaseModel):
    resource_id: str
    missing_source_type: ResourceType

    @classmethod
    def from_domain(cls, m: MissingRequirement) -> "MissingRequirementDTO":
        return cls(resource_id=m.resource_id, missing_source_type=m.missing_source_type)


class FinalizableResponse(BaseModel):
    job_id: str
    finalizable: bool
    finalized: bool
    missing: List[MissingRequirementDTO]


class AttachmentRuleDTO(BaseModel):
    source_type: ResourceType
    target_type: ResourceType
    can_attach: bool = True
    max_count: int = Field(1, ge=0)
    is_required: bool = False


class DropRuleDTO(BaseModel):
    row_type: RowType
    allowed_types: List[ResourceType]


class RowSchemaDTO(BaseModel):
    job_ref: str = Field(..., min_length=1)
    rows: List[RowType] = Field(..., min_length=1)

    @field_validator("rows")
    @classmethod
    def validate_unique_rows(cls, v: List[RowType]):
        """A job exposes each row at most once."""
        if len(set(v)) != len(v):
            raise ValueError("rows must not repeat")
        return v


class CatalogDTO(BaseModel):
    attachment_rules: List[AttachmentRuleDTO]
    drop_rules: List[DropRuleDTO]
    row_schemas: List[RowSchemaDTO]

    def to_domain(self) -> RuleCatalog:
        return RuleCatalog(
            attachment_rules=[AttachmentRule(**r.model_dump()) for r in self.attachment_rules],
            drop_rules=[DropRule(d.row_type, frozenset(d.allowed_types)) for d in self.drop_rules],
            row_schemas=[RowSchema(s.job_ref, tuple(s.rows)) for s in self.row_schemas],
        )

    @classmethod
    def from_domain(cls, catalog: RuleCatalog) -> "CatalogDTO":
        return cls(
            attachment_rules=[
                AttachmentRuleDTO(
                    source_type=r.source_type,
                    target_type=r.target_type,
                    can_attach=r.can_attach,
                    max_count=r.max_count,
                    is_required=r.is_required,
                )
                for r in catalog.attachment_rules
            ],
            drop_rules=[
                DropRuleDTO(row_type=d.row_type, allowed_types=sorted(d.allowed_types, key=lambda t: t.value))
                for d in catalog.drop_rules
            ],
            row_schemas=[RowSchemaDTO(job_ref=s.job_ref, rows=list(s.rows)) for s in catalog.row_schemas],
        )


class CatalogReportDTO(BaseModel):
    is_valid: bool
    errors: List[str]
    warnings: List[str]
    suggestions: List[str]

    @classmethod
    def from_domain(cls, report: CatalogReport) -> "CatalogReportDTO":
        return cls(
            is_valid=report.is_valid,
            errors=report.errors,
            warnings=report.warnings,
            suggestions=report.suggestions,
        )


class CatalogResponse(BaseModel):
    version: int
    catalog: CatalogDTO
    report: Optional[CatalogReportDTO] = None


def _respond(result: OperationResult, db: Session, session: SchedulingSession) -> OperationResponse:
    if not result.success:
        raise HTTPException(status_code=422, detail=result.violation.to_dict())
    BoardRepository(db).sync_resources(session, result.affected_resource_ids)
    return OperationResponse.from_domain(result)


# Registry


@router.post("/resources", response_model=ResourceDTO, summary="Register a resource")
def register_resource(req: ResourceDTO, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    resource = session.register_resource(req.to_domain())
    ResourceRepository(db).save(resource)
    return ResourceDTO(id=resource.id, type=resource.type, name=resource.name)


@router.post("/jobs", response_model=JobDTO, summary="Register a job")
def register_job(req: JobDTO, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    job = session.register_job(req.to_domain())
    JobRepository(db).save(job)
    return JobDTO.from_domain(job)


# Board operations


@router.post("/board/drop", response_model=OperationResponse, summary="Drop a resource into a cell")
def drop(req: DropRequest, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    """
    Assign a resource, with everything attached to it, to (job, row, date, shift).

    **Error Handling:**
    - 404: Unknown resource or job
    - 422: Drop rule violation (`DropNotAllowed`, `PartialChainRejected`)

    Conflicts (double shift, double job) never reject a drop; they are
    returned in `conflict_flags`.
    """
    logger.info(f"Drop request: {req.resource_id} -> {req.cell.job_id}/{req.cell.row_type.value}")
    result = session.propose_drop(req.resource_id, req.cell.to_domain())
    return _respond(result, db, session)


@router.post("/board/attach", response_model=OperationResponse, summary="Attach a resource to another")
def attach(req: AttachRequest, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    """
    Attach `child_id` to `parent_id` (operator onto excavator, driver onto truck).

    **Error Handling:**
    - 404: Unknown resource
    - 422: `AttachNotAllowed`, `MaxCountExceeded` or `AlreadyAttached`
    """
    result = session.propose_attach(req.child_id, req.parent_id)
    return _respond(result, db, session)


@router.post("/board/detach", response_model=OperationResponse, summary="Detach a resource from its parent")
def detach(req: DetachRequest, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    result = session.propose_detach(req.child_id)
    return _respond(result, db, session)


@router.post("/board/move", response_model=OperationResponse, summary="Move a chain of resources")
def move(req: MoveRequest, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    """
    Move a resource and its attachments to another cell, or off the board.

    Omit `destination` to remove the chain from the board. Give `source` to
    vacate only that cell; otherwise every cell the chain occupies is vacated.
    The move is all-or-nothing.
    """
    destination = req.destination.to_domain() if req.destination else None
    source = req.source.to_domain() if req.source else None
    result = session.propose_move(req.root_id, destination, source)
    return _respond(result, db, session)


@router.get("/board/conflicts", response_model=Dict[str, List[ConflictFlagDTO]], summary="All conflicts on the board")
def board_conflicts(
    include_informational: bool = Query(False, description="Include night-only flags"),
    session: SchedulingSession = Depends(get_session),
):
    flags = session.all_conflicts(include_informational)
    return {rid: [ConflictFlagDTO.from_domain(f) for f in fs] for rid, fs in flags.items()}


@router.get("/resources/{resource_id}/conflicts", response_model=List[ConflictFlagDTO], summary="Conflicts for a resource")
def resource_conflicts(
    resource_id: str,
    include_informational: bool = Query(False, description="Include night-only flags"),
    session: SchedulingSession = Depends(get_session),
):
    return [ConflictFlagDTO.from_domain(f) for f in session.conflicts_for(resource_id, include_informational)]


# Jobs


@router.get("/jobs/{job_id}/finalizable", response_model=FinalizableResponse, summary="Check finalization")
def finalizable(job_id: str, session: SchedulingSession = Depends(get_session)):
    missing = session.check_finalizable(job_id)
    return FinalizableResponse(
        job_id=job_id,
        finalizable=not missing,
        finalized=session.get_job(job_id).finalized,
        missing=[MissingRequirementDTO.from_domain(m) for m in missing],
    )


@router.post("/jobs/{job_id}/finalize", response_model=FinalizableResponse, summary="Finalize a job")
def finalize(job_id: str, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    """
    **Error Handling:**
    - 404: Unknown job
    - 409: Required attachments missing; the body lists them
    """
    missing = session.finalize_job(job_id)
    if missing:
        raise HTTPException(
            status_code=409,
            detail={
                "message": f"Job {job_id} has {len(missing)} missing required attachment(s)",
                "missing": [MissingRequirementDTO.from_domain(m).model_dump(mode="json") for m in missing],
            },
        )
    job = session.get_job(job_id)
    JobRepository(db).save(job)
    return FinalizableResponse(job_id=job_id, finalizable=True, finalized=job.finalized, missing=[])


@router.put("/jobs/{job_id}/rows/{row_type}", response_model=OperationResponse, summary="Enable or disable a row")
def toggle_row(
    job_id: str,
    row_type: RowType,
    req: RowToggleRequest,
    db: Session = Depends(get_db),
    session: SchedulingSession = Depends(get_session),
):
    """Disabling a row removes everything staffed on it for that job."""
    result = session.set_row_enabled(job_id, row_type, req.enabled)
    BoardRepository(db).save_row_override(job_id, row_type, req.enabled)
    return _respond(result, db, session)


# Rule administration


@router.get("/admin/catalog", response_model=CatalogResponse, summary="Current rule catalog")
def get_catalog(session: SchedulingSession = Depends(get_session)):
    catalog = session.catalog
    return CatalogResponse(version=catalog.version, catalog=CatalogDTO.from_domain(catalog))


@router.post("/admin/catalog/validate", response_model=CatalogReportDTO, summary="Validate a rule catalog")
def check_catalog(req: CatalogDTO):
    return CatalogReportDTO.from_domain(validate_catalog(req.to_domain()))


@router.put("/admin/catalog", response_model=CatalogResponse, summary="Replace the rule catalog")
def replace_catalog(req: CatalogDTO, db: Session = Depends(get_db), session: SchedulingSession = Depends(get_session)):
    """
    Atomically replace all rule tables.

    **Error Handling:**
    - 400: The catalog has errors (duplicate rules, required-but-not-attachable
      rules, duplicate drop rules); the validation report is returned
    """
    try:
        report = session.admin_replace_rule_catalog(req.to_domain())
    except RuleCatalogError as exc:
        raise HTTPException(status_code=400, detail=CatalogReportDTO.from_domain(exc.report).model_dump())

    catalog = session.catalog
    RuleRepository(db).save_catalog(catalog)
    AuditLogRepository(db).record_action(
        "REPLACE_RULE_CATALOG",
        str(catalog.version),
        {
            "attachment_rules": len(catalog.attachment_rules),
            "drop_rules": len(catalog.drop_rules),
            "row_schemas": len(catalog.row_schemas),
        },
        origin=session.origin,
    )
    return CatalogResponse(
        version=catalog.version,
        catalog=CatalogDTO.from_domain(catalog),
        report=CatalogReportDTO.from_domain(report),
    )
