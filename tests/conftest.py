import os

# must be set before jobboard.config.settings is first imported
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BROADCAST_ENABLED"] = "false"
os.environ.setdefault("DEBUG", "false")

from datetime import date

import pytest

from jobboard.engine.board import AssignmentBoard
from jobboard.engine.catalog import default_catalog
from jobboard.engine.session import SchedulingSession
from jobboard.graph.attachment_graph import AttachmentGraph
from jobboard.models.entities import Cell, Job, Resource, ResourceType, RowType, Shift

MONDAY = date(2024, 1, 8)
TUESDAY = date(2024, 1, 9)


@pytest.fixture
def catalog():
    """Default rule catalog."""
    return default_catalog()


@pytest.fixture
def resources():
    """A small yard: equipment, trucks and crew."""
    T = ResourceType
    return [
        Resource(id="E1", type=T.EXCAVATOR, name="CAT 320"),
        Resource(id="E2", type=T.EXCAVATOR, name="Deere 210"),
        Resource(id="P1", type=T.PAVER, name="Vogele 1900"),
        Resource(id="T1", type=T.TRUCK, name="Truck 101"),
        Resource(id="T2", type=T.TRUCK, name="Truck 102"),
        Resource(id="O1", type=T.OPERATOR, name="Ana"),
        Resource(id="O2", type=T.OPERATOR, name="Ben"),
        Resource(id="D1", type=T.DRIVER, name="Cruz"),
        Resource(id="D2", type=T.DRIVER, name="Dee"),
        Resource(id="S1", type=T.SCREWMAN, name="Eli"),
        Resource(id="S2", type=T.SCREWMAN, name="Fay"),
        Resource(id="S3", type=T.SCREWMAN, name="Gus"),
        Resource(id="L1", type=T.LABORER, name="Hal"),
        Resource(id="F1", type=T.FOREMAN, name="Ivy"),
    ]


@pytest.fixture
def jobs():
    return [
        Job(id="job-1", job_type="paving", name="Main St overlay"),
        Job(id="job-2", job_type="paving", name="Route 9 patch"),
        Job(id="job-3", job_type="other", name="Yard cleanup"),
    ]


@pytest.fixture
def graph(resources):
    return AttachmentGraph(resources)


@pytest.fixture
def board():
    return AssignmentBoard()


@pytest.fixture
def session(catalog, resources, jobs):
    """Session over the default catalog with no assignments."""
    return SchedulingSession(catalog, resources=resources, jobs=jobs, origin="session-a")


@pytest.fixture
def make_cell():
    """Factory for board cells; defaults to Monday day shift."""

    def _make(job_id: str, row_type: RowType, shift: Shift = Shift.DAY, day: date = MONDAY) -> Cell:
        return Cell(job_id=job_id, row_type=row_type, date=day, shift=shift)

    return _make
