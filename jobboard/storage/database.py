from sqlalchemy import Boolean, Column, Date, DateTime, Integer, JSON, String, UniqueConstraint, create_engine
from sqlalchemy.orm import declarative_base, sessionmaker
from sqlalchemy.pool import StaticPool
from datetime import datetime
from jobboard.config.settings import get_settings

settings = get_settings()


def _make_engine(url: str):
    if url.startswith("sqlite"):
        # single shared connection so in-memory databases survive across sessions
        return create_engine(url, connect_args={"check_same_thread": False}, poolclass=StaticPool, echo=False)
    return create_engine(url, pool_pre_ping=True, echo=False)


engine = _make_engine(settings.database_url)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


class ResourceModel(Base):
    __tablename__ = "resources"

    id = Column(String, primary_key=True)
    type = Column(String, nullable=False)
    name = Column(String, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class JobModel(Base):
    __tablename__ = "jobs"

    id = Column(String, primary_key=True)
    name = Column(String, nullable=True)
    job_type = Column(String, nullable=False)
    finalized = Column(Boolean, default=False, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)
    updated_at = Column(DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)


class AttachmentRuleModel(Base):
    __tablename__ = "magnet_interaction_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    source_type = Column(String, nullable=False)
    target_type = Column(String, nullable=False)
    can_attach = Column(Boolean, nullable=False, default=True)
    max_count = Column(Integer, nullable=False, default=1)
    is_required = Column(Boolean, nullable=False, default=False)


class DropRuleModel(Base):
    __tablename__ = "drop_rules"

    id = Column(Integer, primary_key=True, autoincrement=True)
    row_type = Column(String, nullable=False)
    allowed_types = Column(JSON, nullable=False)  # List[str]


class RowSchemaModel(Base):
    __tablename__ = "row_schemas"

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_ref = Column(String, nullable=False)  # job type or job id
    position = Column(Integer, nullable=False)
    row_type = Column(String, nullable=False)


class AttachmentModel(Base):
    __tablename__ = "attachments"

    child_id = Column(String, primary_key=True)
    parent_id = Column(String, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow)


class AssignmentModel(Base):
    __tablename__ = "assignments"
    __table_args__ = (UniqueConstraint("job_id", "row_type", "schedule_date", "shift", "resource_id"),)

    id = Column(Integer, primary_key=True, autoincrement=True)
    job_id = Column(String, nullable=False)
    row_type = Column(String, nullable=False)
    schedule_date = Column(Date, nullable=False)
    shift = Column(String, nullable=False)
    resource_id = Column(String, nullable=False, index=True)
    created_at = Column(DateTime, default=datetime.utcnow)


class RowOverrideModel(Base):
    __tablename__ = "row_overrides"

    job_id = Column(String, primary_key=True)
    row_type = Column(String, primary_key=True)
    enabled = Column(Boolean, nullable=False)


class AuditLogModel(Base):
    __tablename__ = "audit_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    event_id = Column(String, nullable=False)
    action = Column(String, nullable=False)
    entity_id = Column(String, nullable=True)
    origin = Column(String, nullable=True)
    change_details = Column(JSON, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow)


def init_db():
    Base.metadata.create_all(bind=engine)


def get_db():
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()
