"""
Shared fixtures: every test gets its own file-backed store under tmp_path.
"""

import os
import tempfile

# Keep the default data directory out of the working tree before config loads
os.environ.setdefault("EXAMLOCK_DATA_DIR", tempfile.mkdtemp(prefix="examlock-tests-"))
os.environ.setdefault("STORAGE_BACKEND", "file")

import pytest
from fastapi.testclient import TestClient

from examlock.core import database as database_module
from examlock.core.config import config
from examlock.core.database import FileDatabase
from examlock.core.errors import PersistenceError
from examlock.models.schemas import Question, Test, TestResult, UserPublic
from examlock.services import auth_service as auth_module
from examlock.services import result_service as result_module
from examlock.services import session_service as session_module
from examlock.services import test_service as test_module
from examlock.services.auth_service import AuthService
from examlock.services.result_service import ResultService
from examlock.services.session_service import SessionService
from examlock.services.test_service import TestService


class RecordingStore:
    """Result sink that keeps every saved result and can fail on demand"""

    def __init__(self, failures: int = 0):
        self.saved = []
        self.failures = failures
        self.calls = 0

    def save(self, result: TestResult) -> str:
        self.calls += 1
        if self.failures > 0:
            self.failures -= 1
            raise PersistenceError("Store unreachable")
        result_id = f"result-{len(self.saved) + 1}"
        self.saved.append(result.model_copy(update={"id": result_id}))
        return result_id


def make_test(questions=None, time_limit=10, department="General", test_id="test-1", title="Geography"):
    if questions is None:
        questions = [
            Question(id="q1", question="Capital of France?", options=["Paris", "Rome", "Berlin"],
                     correct_answer="Paris", points=10),
            Question(id="q2", question="2 + 2 = ?", options=["3", "4", "5"],
                     correct_answer="4", points=10),
        ]
    return Test(
        id=test_id,
        title=title,
        description="Sample test",
        questions=questions,
        time_limit=time_limit,
        department=department
    )


@pytest.fixture
def taker():
    return UserPublic(
        id="user-1",
        email="ada@example.com",
        first_name="Ada",
        last_name="Lovelace",
        department="QA"
    )


@pytest.fixture
def build_test():
    return make_test


@pytest.fixture
def store():
    return RecordingStore()


@pytest.fixture
def failing_store():
    def factory(failures: int = 1):
        return RecordingStore(failures=failures)
    return factory


@pytest.fixture
def db(tmp_path):
    return FileDatabase(data_dir=str(tmp_path / "data"))


@pytest.fixture
def test_service(db):
    return TestService(db_manager=db)


@pytest.fixture
def result_service(db):
    return ResultService(db_manager=db)


@pytest.fixture
def auth_service(db):
    return AuthService(db_manager=db)


@pytest.fixture
def session_service(test_service, auth_service, result_service):
    return SessionService(
        test_service=test_service,
        auth_service=auth_service,
        result_service=result_service
    )


@pytest.fixture
def sample_test(db):
    test = make_test()
    db.insert_test(test)
    return test


@pytest.fixture
def registered_user(auth_service):
    user_id = auth_service.signup(
        email="Grace@Example.com",
        password="secret",
        first_name="Grace",
        last_name="Hopper",
        department="QA"
    )
    return auth_service.get_user(user_id)


@pytest.fixture
def client(monkeypatch, db, test_service, auth_service, result_service, session_service):
    """App client wired to the per-test services through the module singletons"""
    from examlock.main import app

    monkeypatch.setattr(database_module, "_db_manager", db)
    monkeypatch.setattr(test_module, "_test_service", test_service)
    monkeypatch.setattr(auth_module, "_auth_service", auth_service)
    monkeypatch.setattr(result_module, "_result_service", result_service)
    monkeypatch.setattr(session_module, "_session_service", session_service)

    with TestClient(app) as test_client:
        yield test_client


@pytest.fixture
def general_department():
    return config.GENERAL_DEPARTMENT
