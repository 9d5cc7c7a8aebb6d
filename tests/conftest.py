import io
import os
from datetime import timedelta

import pytest
from fastapi.testclient import TestClient
from PIL import Image
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

from examroom.auth_utils import hash_password
from examroom.database import get_session
from examroom.deps import get_drafts, get_storage
from examroom.drafts import MemoryDraftStore
from examroom.main import app
from examroom.models import QUESTION_MCQ, QUESTION_WRITTEN, ROLE_STUDENT, ROLE_TEACHER, Profile, Submission
from examroom.services.exam_service import ExamInput, QuestionInput, create_exam
from examroom.storage import LocalObjectStorage
from examroom.utils import utcnow

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

# StaticPool keeps every session on the same in-memory database
test_engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)

PASSWORD = "secret123"


@pytest.fixture(autouse=True)
def setup_test_db():
    """Fresh tables for every test."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture
def session():
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def storage(tmp_path):
    return LocalObjectStorage(tmp_path / "media", "/media")


@pytest.fixture
def drafts():
    return MemoryDraftStore()


# ============================================================================
# IMAGES
# ============================================================================


def make_image_bytes(width=64, height=48, fmt="PNG", color=(200, 30, 30)) -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", (width, height), color).save(buf, format=fmt)
    return buf.getvalue()


def make_noise_bytes(width, height, fmt="PNG") -> bytes:
    """Random pixels compress badly, which exercises the quality loop."""
    img = Image.frombytes("RGB", (width, height), os.urandom(width * height * 3))
    buf = io.BytesIO()
    img.save(buf, format=fmt)
    return buf.getvalue()


# ============================================================================
# ENTITIES
# ============================================================================


def _create_profile(email, full_name, role) -> Profile:
    with Session(test_engine) as session:
        profile = Profile(
            email=email,
            full_name=full_name,
            role=role,
            password_hash=hash_password(PASSWORD),
        )
        session.add(profile)
        session.commit()
        session.refresh(profile)
        return profile


@pytest.fixture
def teacher():
    return _create_profile("teacher@example.com", "Tina Teacher", ROLE_TEACHER)


@pytest.fixture
def other_teacher():
    return _create_profile("other.teacher@example.com", "Oscar Other", ROLE_TEACHER)


@pytest.fixture
def student():
    return _create_profile("student@example.com", "Sam Student", ROLE_STUDENT)


@pytest.fixture
def other_student():
    return _create_profile("other.student@example.com", "Olive Other", ROLE_STUDENT)


def sample_exam_input(duration_minutes=10) -> ExamInput:
    """Two 1-mark mcq questions and one 3-mark written question."""
    return ExamInput(
        title="Sample exam",
        description="Warm-up",
        duration_minutes=duration_minutes,
        questions=[
            QuestionInput(type=QUESTION_MCQ, question_text="2 + 2 = ?", marks=1, options=["2", "4"], correct_answer="4"),
            QuestionInput(type=QUESTION_MCQ, question_text="x + x = ?", marks=1, options=["x", "2x"], correct_answer="2x"),
            QuestionInput(type=QUESTION_WRITTEN, question_text="Solve 3x + 1 = 10", marks=3, solution="x = 3"),
        ],
    )


@pytest.fixture
def sample_exam(teacher):
    with Session(test_engine) as session:
        return create_exam(session, teacher.id, sample_exam_input(), publish=True)


@pytest.fixture
def expired_submission(sample_exam, student):
    """An in-progress attempt whose time ran out while the student was away."""
    with Session(test_engine) as session:
        submission = Submission(
            exam_id=sample_exam.id,
            student_id=student.id,
            started_at=utcnow() - timedelta(minutes=sample_exam.duration_minutes + 1),
        )
        session.add(submission)
        session.commit()
        session.refresh(submission)
        return submission


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================


@pytest.fixture
def client(storage, drafts):
    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_storage] = lambda: storage
    app.dependency_overrides[get_drafts] = lambda: drafts
    yield TestClient(app)
    app.dependency_overrides.clear()


def login(client, email, password=PASSWORD):
    response = client.post(
        "/auth/login", data={"email": email, "password": password}, follow_redirects=False
    )
    assert response.status_code == 303
    return response


@pytest.fixture
def teacher_client(client, teacher):
    login(client, teacher.email)
    return client


@pytest.fixture
def student_client(client, student):
    login(client, student.email)
    return client
