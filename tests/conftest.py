"""Pytest configuration and shared fixtures."""
import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.database import Base, build_engine, get_db
from app.models.domain import ChangeRequest, Impact, Approval, Comment, RequestSequence  # noqa: F401
from app.models.audit import AuditEvent  # noqa: F401
from app.models.enums import UserRole
from app.services.authorization import Principal
from app.services.workflow import WorkflowEngine


PROJECT_ID = "proj-mercy-general"


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    # In-memory SQLite for fast tests
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)

    TestingSessionLocal = sessionmaker(bind=engine)
    session = TestingSessionLocal()

    yield session

    session.close()


@pytest.fixture
def file_sessionmaker(tmp_path):
    """File-backed SQLite shared by several sessions or threads."""
    engine = build_engine(f"sqlite:///{tmp_path / 'change_control.db'}")
    Base.metadata.create_all(engine)

    yield sessionmaker(bind=engine, autoflush=False)

    engine.dispose()


@pytest.fixture
def requester():
    return Principal(id="user_123", name="Dana Requester", role=UserRole.CONSULTANT)


@pytest.fixture
def other_consultant():
    return Principal(id="user_456", name="Sam Other", role=UserRole.CONSULTANT)


@pytest.fixture
def approver():
    return Principal(id="lead_1", name="Pat Leadership", role=UserRole.HOSPITAL_LEADERSHIP)


@pytest.fixture
def implementer():
    return Principal(id="staff_1", name="Lee Staff", role=UserRole.HOSPITAL_STAFF)


@pytest.fixture
def admin():
    return Principal(id="admin_1", name="Alex Admin", role=UserRole.ADMIN)


@pytest.fixture
def engine(db_session):
    return WorkflowEngine(db_session)


@pytest.fixture
def sample_change_request(engine, requester):
    """Create a basic change request in draft."""
    return engine.create(PROJECT_ID, requester, {
        "title": "Add additional training module",
        "description": "Request to add clinical documentation training module",
        "category": "training",
        "priority": "high",
        "impact_level": "moderate",
        "justification": "Go-live readiness",
        "estimated_effort": "2 weeks",
        "estimated_cost": "$15,000",
    })


@pytest.fixture
def submitted_change_request(engine, requester, sample_change_request):
    return engine.submit(sample_change_request.id, requester)


@pytest.fixture
def client():
    """HTTP client backed by a shared in-memory database."""
    from app.main import app

    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    # No lifespan: tables already exist on the test engine
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def auth_headers():
    """Identity headers as the gateway would forward them."""
    def build(principal: Principal, projects=None) -> dict:
        headers = {
            "X-User-Id": principal.id,
            "X-User-Name": principal.name,
            "X-User-Role": principal.role.value,
        }
        if projects is not None:
            headers["X-User-Projects"] = ",".join(projects)
        return headers
    return build
