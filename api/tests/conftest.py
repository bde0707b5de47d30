"""Pytest fixtures for API testing."""
import threading
import time
from datetime import date, timedelta

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from app.main import app
from app.core.database import get_db
from app.core.deps import get_dispatcher
from app.core.compliance_runs import create_run
from app.models.base import Base
from app.models.user import User
from app.models.department import Department
from app.models.compliance import ComplianceRecipient
from app.schemas.compliance import ComplianceRunCreate
from app.services.directory import DatabaseDirectory
from app.services.notifications import DeliveryStatus

# In-memory SQLite for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def override_get_db():
    """Override database dependency for testing."""
    try:
        db = TestingSessionLocal()
        yield db
    finally:
        db.close()


class RecordingDispatcher:
    """Notification dispatcher that records calls instead of sending mail."""

    def __init__(self, fail_for=(), raise_for=()):
        self.fail_for = set(fail_for)
        self.raise_for = set(raise_for)
        self.sent = []
        self._lock = threading.Lock()

    def send(self, recipient_email, survey_url, due_date, timeout=None):
        with self._lock:
            self.sent.append((recipient_email, survey_url, due_date))
        if recipient_email in self.raise_for:
            raise RuntimeError("mail gateway unreachable")
        if recipient_email in self.fail_for:
            return DeliveryStatus.FAILED
        return DeliveryStatus.DELIVERED


class SlowDispatcher:
    """Dispatcher that takes longer than any reasonable notification timeout."""

    def __init__(self, delay):
        self.delay = delay

    def send(self, recipient_email, survey_url, due_date, timeout=None):
        time.sleep(self.delay)
        return DeliveryStatus.DELIVERED


class RaisingDirectory:
    """Directory whose backing system is down."""

    def head_of(self, department_id, timeout=None):
        raise ConnectionError("directory service unreachable")

    def get_department(self, department_id):
        raise ConnectionError("directory service unreachable")

    def get_user(self, user_id):
        raise ConnectionError("directory service unreachable")


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    yield db
    db.close()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture(scope="function")
def client(db_session, dispatcher):
    """Test client with database and dispatcher overrides.

    Note: db_session already created tables, so we don't need to create them again.
    """
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    with TestClient(app) as test_client:
        yield test_client

    app.dependency_overrides.clear()


@pytest.fixture
def admin_headers():
    """Acting identity of the compliance administrator (user 1)."""
    return {"X-User-Id": "1"}


@pytest.fixture
def org(db_session):
    """Directory with three staffed departments and one without a head."""
    admin = User(user_id=1, email="admin@example.com", full_name="Compliance Admin")
    alice = User(email="alice@example.com", full_name="Alice Archer")
    bob = User(email="bob@example.com", full_name="Bob Baker")
    carol = User(email="carol@example.com", full_name="Carol Chen")
    db_session.add_all([admin, alice, bob, carol])
    db_session.flush()

    finance = Department(name="Finance", head_user_id=alice.user_id)
    legal = Department(name="Legal", head_user_id=bob.user_id)
    operations = Department(name="Operations", head_user_id=carol.user_id)
    unstaffed = Department(name="Unstaffed", head_user_id=None)
    db_session.add_all([finance, legal, operations, unstaffed])
    db_session.commit()

    return {
        "admin": admin,
        "alice": alice,
        "bob": bob,
        "carol": carol,
        "finance": finance,
        "legal": legal,
        "operations": operations,
        "unstaffed": unstaffed,
    }


@pytest.fixture
def directory(db_session):
    return DatabaseDirectory(db_session)


def sample_questions():
    return [
        {
            "question_text": "Are all contracts stored in the contract register?",
            "question_type": "yesno",
            "is_required": True,
        },
        {
            "question_text": "Rate your department's policy awareness",
            "question_type": "score",
            "max_score": 5,
        },
        {
            "question_text": "How often are access rights reviewed?",
            "question_type": "multiple",
            "options": ["Monthly", "Quarterly", "Never"],
        },
        {
            "question_text": "Anything else to report?",
            "question_type": "text",
            "is_required": False,
        },
    ]


@pytest.fixture
def make_run(db_session, org):
    """Factory creating draft runs targeting staffed departments by default."""
    def _make_run(**overrides):
        data = {
            "title": "Annual contract compliance",
            "description": "Yearly check of contract handling",
            "frequency": "once",
            "start_date": date.today(),
            "due_date": date.today() + timedelta(days=14),
            "questions": sample_questions(),
            "department_ids": [
                org["finance"].department_id,
                org["legal"].department_id,
                org["operations"].department_id,
            ],
        }
        data.update(overrides)
        return create_run(db_session, ComplianceRunCreate(**data), acting_user_id=org["admin"].user_id)
    return _make_run


@pytest.fixture
def recipient_for(db_session):
    """Look up the recipient of a department within a run."""
    def _recipient_for(run_id, department_id) -> ComplianceRecipient:
        db_session.expire_all()
        return db_session.query(ComplianceRecipient).filter(
            ComplianceRecipient.run_id == run_id,
            ComplianceRecipient.department_id == department_id
        ).one()
    return _recipient_for


@pytest.fixture
def make_dispatcher():
    """Build a RecordingDispatcher that fails or raises for given addresses."""
    return RecordingDispatcher


@pytest.fixture
def raising_directory():
    return RaisingDirectory()


@pytest.fixture
def slow_dispatcher():
    return SlowDispatcher(delay=0.5)


@pytest.fixture
def question_payloads():
    return sample_questions()
