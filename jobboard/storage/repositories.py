from typing import Iterable, List, Optional, Tuple

from sqlalchemy.orm import Session

from jobboard.engine.catalog import RuleCatalog, default_catalog
from jobboard.engine.session import SchedulingSession
from jobboard.models.constraints import AttachmentRule, DropRule, RowSchema
from jobboard.models.entities import Assignment, Job, Resource, ResourceType, RowType, Shift
from jobboard.models.events import BoardEvent, BoardOp
from jobboard.storage.database import (
    AssignmentModel,
    AttachmentModel,
    AttachmentRuleModel,
    AuditLogModel,
    DropRuleModel,
    JobModel,
    ResourceModel,
    RowOverrideModel,
    RowSchemaModel,
    SessionLocal,
)

AUDIT_ACTIONS = {
    BoardOp.DROP: "ASSIGN_RESOURCE",
    BoardOp.ATTACH: "ATTACH_RESOURCE",
    BoardOp.DETACH: "DETACH_RESOURCE",
    BoardOp.MOVE: "MOVE_ASSIGNMENT_GROUP",
    BoardOp.SET_ROW: "SET_ROW_ENABLED",
    BoardOp.FINALIZE: "FINALIZE_JOB",
}


class ResourceRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_all(self) -> List[Resource]:
        models = self.db.query(ResourceModel).all()
        return [self._model_to_resource(m) for m in models]

    def save(self, resource: Resource) -> None:
        existing = self.db.query(ResourceModel).filter(ResourceModel.id == resource.id).first()
        if existing:
            existing.type = resource.type.value
            existing.name = resource.name
        else:
            self.db.add(ResourceModel(id=resource.id, type=resource.type.value, name=resource.name))
        self.db.commit()

    @staticmethod
    def _model_to_resource(model: ResourceModel) -> Resource:
        return Resource(id=model.id, type=ResourceType(model.type), name=model.name)


class JobRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_all(self) -> List[Job]:
        return [
            Job(id=m.id, job_type=m.job_type, name=m.name, finalized=m.finalized)
            for m in self.db.query(JobModel).all()
        ]

    def save(self, job: Job) -> None:
        existing = self.db.query(JobModel).filter(JobModel.id == job.id).first()
        if existing:
            existing.job_type = job.job_type
            existing.name = job.name
            existing.finalized = job.finalized
        else:
            self.db.add(JobModel(id=job.id, job_type=job.job_type, name=job.name, finalized=job.finalized))
        self.db.commit()


class RuleRepository:
    def __init__(self, db: Session):
        self.db = db

    def load_catalog(self) -> Optional[RuleCatalog]:
        """Current rule tables as a catalog snapshot, or None when nothing is stored."""
        rule_models = self.db.query(AttachmentRuleModel).order_by(AttachmentRuleModel.id).all()
        drop_models = self.db.query(DropRuleModel).order_by(DropRuleModel.id).all()
        row_models = self.db.query(RowSchemaModel).order_by(RowSchemaModel.job_ref, RowSchemaModel.position).all()
        if not rule_models and not drop_models and not row_models:
            return None

        attachment_rules = [
            AttachmentRule(
                source_type=ResourceType(m.source_type),
                target_type=ResourceType(m.target_type),
                can_attach=m.can_attach,
                max_count=m.max_count,
                is_required=m.is_required,
            )
            for m in rule_models
        ]
        drop_rules = [
            DropRule(RowType(m.row_type), frozenset(ResourceType(t) for t in m.allowed_types)) for m in drop_models
        ]
        rows_by_ref: dict = {}
        for m in row_models:
            rows_by_ref.setdefault(m.job_ref, []).append(RowType(m.row_type))
        row_schemas = [RowSchema(ref, tuple(rows)) for ref, rows in rows_by_ref.items()]
        return RuleCatalog(attachment_rules, drop_rules, row_schemas)

    def save_catalog(self, catalog: RuleCatalog) -> None:
        """Replace all three rule tables in one transaction."""
        self.db.query(AttachmentRuleModel).delete()
        self.db.query(DropRuleModel).delete()
        self.db.query(RowSchemaModel).delete()
        for rule in catalog.attachment_rules:
            self.db.add(
                AttachmentRuleModel(
                    source_type=rule.source_type.value,
                    target_type=rule.target_type.value,
                    can_attach=rule.can_attach,
                    max_count=rule.max_count,
                    is_required=rule.is_required,
                )
            )
        for drop in catalog.drop_rules:
            self.db.add(DropRuleModel(row_type=drop.row_type.value, allowed_types=sorted(t.value for t in drop.allowed_types)))
        for schema in catalog.row_schemas:
            for position, row in enumerate(schema.rows):
                self.db.add(RowSchemaModel(job_ref=schema.job_ref, position=position, row_type=row.value))
        self.db.commit()


class BoardRepository:
    def __init__(self, db: Session):
        self.db = db

    def list_assignments(self) -> List[Assignment]:
        return [
            Assignment(
                job_id=m.job_id,
                row_type=RowType(m.row_type),
                date=m.schedule_date,
                shift=Shift(m.shift),
                resource_id=m.resource_id,
            )
            for m in self.db.query(AssignmentModel).all()
        ]

    def list_attachments(self) -> List[Tuple[str, str]]:
        return [(m.child_id, m.parent_id) for m in self.db.query(AttachmentModel).all()]

    def list_row_overrides(self) -> List[Tuple[str, RowType, bool]]:
        return [(m.job_id, RowType(m.row_type), m.enabled) for m in self.db.query(RowOverrideModel).all()]

    def sync_resources(self, session: SchedulingSession, resource_ids: Iterable[str]) -> None:
        """Write the session's current cells and parent edge for each resource."""
        for rid in set(resource_ids):
            self.db.query(AssignmentModel).filter(AssignmentModel.resource_id == rid).delete()
            for a in session.board.assignments_for(rid):
                self.db.add(
                    AssignmentModel(
                        job_id=a.job_id,
                        row_type=a.row_type.value,
                        schedule_date=a.date,
                        shift=a.shift.value,
                        resource_id=rid,
                    )
                )
            self.db.query(AttachmentModel).filter(AttachmentModel.child_id == rid).delete()
            parent_id = session.graph.parent_of(rid)
            if parent_id is not None:
                self.db.add(AttachmentModel(child_id=rid, parent_id=parent_id))
        self.db.commit()

    def save_row_override(self, job_id: str, row_type: RowType, enabled: bool) -> None:
        existing = (
            self.db.query(RowOverrideModel)
            .filter(RowOverrideModel.job_id == job_id, RowOverrideModel.row_type == row_type.value)
            .first()
        )
        if existing:
            existing.enabled = enabled
        else:
            self.db.add(RowOverrideModel(job_id=job_id, row_type=row_type.value, enabled=enabled))
        self.db.commit()


class AuditLogRepository:
    def __init__(self, db: Session):
        self.db = db

    def record(self, event: BoardEvent) -> None:
        action = AUDIT_ACTIONS.get(event.op, event.op.upper())
        if event.op == BoardOp.MOVE and event.payload.get("destination") is None:
            action = "REMOVE_ASSIGNMENT_GROUP"
        entity_id = (
            event.payload.get("resource_id")
            or event.payload.get("child_id")
            or event.payload.get("root_id")
            or event.payload.get("job_id")
        )
        self.record_action(action, entity_id, event.payload, event_id=event.event_id, origin=event.origin)

    def record_action(self, action: str, entity_id: Optional[str], details: dict, event_id: str = "", origin: str = "") -> None:
        self.db.add(
            AuditLogModel(
                event_id=event_id,
                action=action,
                entity_id=entity_id,
                origin=origin,
                change_details=details,
            )
        )
        self.db.commit()

    def list_recent(self, limit: int = 50) -> List[dict]:
        models = self.db.query(AuditLogModel).order_by(AuditLogModel.id.desc()).limit(limit).all()
        return [
            {"action": m.action, "entity_id": m.entity_id, "origin": m.origin, "details": m.change_details}
            for m in models
        ]


def load_session(db: Session, max_depth: int = 1, origin: Optional[str] = None, seed_default_rules: bool = True) -> SchedulingSession:
    """Build a session from stored state. An empty rule store is seeded from the default catalog."""
    rules = RuleRepository(db)
    catalog = rules.load_catalog()
    if catalog is None:
        catalog = default_catalog() if seed_default_rules else RuleCatalog()
        if seed_default_rules:
            rules.save_catalog(catalog)

    board = BoardRepository(db)
    return SchedulingSession(
        catalog,
        resources=ResourceRepository(db).list_all(),
        jobs=JobRepository(db).list_all(),
        assignments=board.list_assignments(),
        attachments=board.list_attachments(),
        row_overrides=board.list_row_overrides(),
        max_depth=max_depth,
        origin=origin,
    )


class AuditTrail:
    """Session listener that writes each committed event to the audit log."""

    def __init__(self, session_factory=None):
        self.session_factory = session_factory or SessionLocal

    def __call__(self, event: BoardEvent) -> None:
        db = self.session_factory()
        try:
            AuditLogRepository(db).record(event)
        finally:
            db.close()
