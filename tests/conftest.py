import sys
from pathlib import Path

import pytest
from sqlmodel import Session, SQLModel, create_engine, text


def _ensure_app_on_path():
    repo_root = Path(__file__).resolve().parent.parent
    if str(repo_root) not in sys.path:
        sys.path.insert(0, str(repo_root))
    return repo_root


_ensure_app_on_path()

# ============================================================================
# IN-MEMORY DATABASE FOR TESTING
# ============================================================================

import asyncio
from datetime import timedelta

import httpx
from sqlalchemy.pool import StaticPool

from app.auth_utils import hash_password
from app.models import (
    ENTITY_TASK,
    ENTITY_TEXT,
    EXAM_TYPE_DELAYED,
    EXAM_TYPE_INSTANT,
    Enrollment,
    Exam,
    ExamEntity,
    ExamAttempt,
    Task,
    TextEntity,
    Topic,
    User,
)
from app.services.repository import SQLModelExamRepository
from app.utils import utcnow

test_engine = create_engine(
    "sqlite:///:memory:",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,  # all connections share the same in-memory database
)


@pytest.fixture(scope="session", autouse=True)
def setup_test_db():
    """Create all tables in the test database once per session."""
    SQLModel.metadata.create_all(test_engine)
    yield
    SQLModel.metadata.drop_all(test_engine)


@pytest.fixture(autouse=True)
def cleanup_db_between_tests():
    """Clean up test data after each test."""
    yield

    # FK-safe order
    with Session(test_engine) as session:
        session.exec(text("DELETE FROM attemptanswer"))
        session.exec(text("DELETE FROM examattempt"))
        session.exec(text("DELETE FROM examentity"))
        session.exec(text("DELETE FROM examtext"))
        session.exec(text("DELETE FROM task"))
        session.exec(text("DELETE FROM exam"))
        session.exec(text("DELETE FROM enrollment"))
        session.exec(text("DELETE FROM topic"))
        session.exec(text('DELETE FROM "user"'))
        session.commit()


# ============================================================================
# EXTERNAL VERIFICATION DOUBLE
# ============================================================================


class FakeVerifier:
    """Stands in for CTFdClient: `solved` holds (challenge_id, email) pairs."""

    def __init__(self):
        self.solved = set()
        self.calls = []
        self.error = None

    async def is_solved_by_email(self, challenge_id: int, email: str) -> bool:
        self.calls.append((challenge_id, email))
        if self.error is not None:
            raise self.error
        return (challenge_id, email) in self.solved


@pytest.fixture
def fake_verifier():
    return FakeVerifier()


# ============================================================================
# FASTAPI APP & TEST CLIENT
# ============================================================================

from app.database import get_session
from app.deps import get_verifier
from app.main import app


@pytest.fixture
def client(fake_verifier):
    """Create test client using httpx AsyncClient with sync wrapper."""

    def override_get_session():
        with Session(test_engine) as session:
            yield session

    app.dependency_overrides[get_session] = override_get_session
    app.dependency_overrides[get_verifier] = lambda: fake_verifier

    loop = asyncio.new_event_loop()
    transport = httpx.ASGITransport(app=app)
    async_client = httpx.AsyncClient(transport=transport, base_url="http://testserver")

    class SyncClientWrapper:
        def __init__(self, async_client, loop):
            self.async_client = async_client
            self.loop = loop

        def get(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.get(*args, **kwargs))

        def post(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.post(*args, **kwargs))

        def put(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.put(*args, **kwargs))

        def delete(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.delete(*args, **kwargs))

        def patch(self, *args, **kwargs):
            return self.loop.run_until_complete(self.async_client.patch(*args, **kwargs))

        def login(self, email: str, password: str):
            response = self.post("/auth/login", json={"email": email, "password": password})
            assert response.status_code == 200, response.text
            return response

    yield SyncClientWrapper(async_client, loop)

    loop.run_until_complete(async_client.aclose())
    loop.close()
    app.dependency_overrides.clear()


@pytest.fixture
def session():
    """Provide a database session for tests."""
    with Session(test_engine) as session:
        yield session


@pytest.fixture
def repo(session):
    return SQLModelExamRepository(session)


# ============================================================================
# ENTITY FIXTURES
# ============================================================================


def _create(obj):
    with Session(test_engine) as session:
        session.add(obj)
        session.commit()
        session.refresh(obj)
        obj_id = obj.id
    with Session(test_engine) as session:
        return session.get(type(obj), obj_id)


def _user(name: str, email: str, password: str, role: str) -> User:
    return _create(User(name=name, email=email, password_hash=hash_password(password), role=role))


@pytest.fixture
def admin_user():
    return _user("Admin User", "admin@example.com", "admin123", "admin")


@pytest.fixture
def teacher_user():
    return _user("Dr. Jane Teacher", "teacher@example.com", "teacher123", "teacher")


@pytest.fixture
def student_user():
    return _user("Alice Student", "alice@example.com", "testpass123", "student")


@pytest.fixture
def outsider_student():
    """A student that is not enrolled in any topic."""
    return _user("Bob Outsider", "bob@example.com", "testpass123", "student")


@pytest.fixture
def topic():
    return _create(Topic(name="Web Security", description="Intro to web exploitation"))


@pytest.fixture
def enrolled_student(student_user, topic):
    _create(Enrollment(topic_id=topic.id, user_id=student_user.id))
    return student_user


def make_task(title: str, configuration: dict, points: int = 10) -> Task:
    return _create(
        Task(
            title=title,
            description=f"{title} description",
            task_type=configuration["name"],
            points=points,
            configuration=configuration,
        )
    )


@pytest.fixture
def single_choice_task():
    return make_task(
        "Capital of France",
        {"name": "single_choice", "options": ["Paris", "Rome", "Berlin"], "correct": 0, "shuffle": False},
    )


@pytest.fixture
def multiple_choice_task():
    return make_task(
        "Pick the vowels",
        {
            "name": "multiple_choice",
            "options": ["A", "B", "C"],
            "correct": [0, 1],
            "shuffle": True,
            "partial_score": True,
        },
    )


@pytest.fixture
def short_text_task():
    return make_task(
        "HTTP default port",
        {"name": "short_text", "auto_grade": True, "case_sensitive": False, "max_chars_count": 10, "answers": ["80"]},
        points=5,
    )


@pytest.fixture
def long_text_task():
    return make_task("Explain XSS", {"name": "long_text", "max_chars_count": 500}, points=20)


@pytest.fixture
def ctfd_task():
    return make_task("Pwn the box", {"name": "ctfd", "task_id": 7}, points=30)


def make_exam(topic_id: int, entities=(), **overrides) -> Exam:
    fields = {
        "topic_id": topic_id,
        "name": "Midterm",
        "description": "Covers the first half",
        "tries_count": 2,
        "duration": 3600,
        "type": EXAM_TYPE_INSTANT,
    }
    fields.update(overrides)
    exam = _create(Exam(**fields))
    with Session(test_engine) as session:
        for index, entity in enumerate(entities):
            is_task = isinstance(entity, Task)
            session.add(
                ExamEntity(
                    exam_id=exam.id,
                    entity_type=ENTITY_TASK if is_task else ENTITY_TEXT,
                    task_id=entity.id if is_task else None,
                    text_id=None if is_task else entity.id,
                    order_index=index,
                )
            )
        session.commit()
    return exam


@pytest.fixture
def exam(topic, single_choice_task, multiple_choice_task, short_text_task, long_text_task):
    """Instant exam with four tasks worth 45 points in total."""
    return make_exam(topic.id, [single_choice_task, multiple_choice_task, short_text_task, long_text_task])


@pytest.fixture
def delayed_exam(topic, single_choice_task):
    return make_exam(topic.id, [single_choice_task], name="Final", type=EXAM_TYPE_DELAYED)


@pytest.fixture
def ctfd_exam(topic, ctfd_task, single_choice_task):
    return make_exam(topic.id, [ctfd_task, single_choice_task], name="CTF practice")


@pytest.fixture
def intro_text():
    return _create(TextEntity(text="<p>Read carefully</p>"))


def make_attempt(exam: Exam, user: User, minutes_ago: int = 5, minutes_left: int = 30) -> ExamAttempt:
    now = utcnow()
    return _create(
        ExamAttempt(
            exam_id=exam.id,
            user_id=user.id,
            started_at=now - timedelta(minutes=minutes_ago),
            ends_at=now + timedelta(minutes=minutes_left),
        )
    )


def expire(attempt_id: int) -> None:
    """Move an attempt's end into the past."""
    with Session(test_engine) as session:
        attempt = session.get(ExamAttempt, attempt_id)
        attempt.ends_at = utcnow() - timedelta(seconds=1)
        session.add(attempt)
        session.commit()
