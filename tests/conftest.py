from enum import Enum
from pathlib import Path
from typing import Callable, Optional
from uuid import uuid4

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.orm import Session

from app.core.errors import ExternalServiceError
from app.core.security import get_password_hash
from app.db.models import User
from app.db.session import SessionLocal, configure_database, create_tables
from app.services.exercises import seed_exercises
from app.services.llm import GenerationResult, get_llm_client


class FakeScenario(str, Enum):
    FOODS_OK = "FOODS_OK"
    FOODS_UNITS = "FOODS_UNITS"
    FOODS_TRAILING_COMMA = "FOODS_TRAILING_COMMA"
    FOODS_GARBAGE = "FOODS_GARBAGE"
    FOODS_DEEP_NESTING = "FOODS_DEEP_NESTING"
    FOODS_OVERFLOW = "FOODS_OVERFLOW"
    PLANS_OK = "PLANS_OK"
    PLANS_ALTERNATE_KEY = "PLANS_ALTERNATE_KEY"
    PLANS_UNKNOWN_EXERCISES = "PLANS_UNKNOWN_EXERCISES"
    TIMEOUT = "TIMEOUT"
    CRASH = "CRASH"


SCENARIO_FIXTURES = {
    FakeScenario.FOODS_OK: "FOODS_OK.json",
    FakeScenario.FOODS_UNITS: "FOODS_UNITS.txt",
    FakeScenario.FOODS_TRAILING_COMMA: "FOODS_TRAILING_COMMA.txt",
    FakeScenario.FOODS_GARBAGE: "FOODS_GARBAGE.txt",
    FakeScenario.FOODS_DEEP_NESTING: "FOODS_DEEP_NESTING.txt",
    FakeScenario.FOODS_OVERFLOW: "FOODS_OVERFLOW.json",
    FakeScenario.PLANS_OK: "PLANS_OK.json",
    FakeScenario.PLANS_ALTERNATE_KEY: "PLANS_ALTERNATE_KEY.txt",
    FakeScenario.PLANS_UNKNOWN_EXERCISES: "PLANS_UNKNOWN_EXERCISES.json",
}


class FakeGenerativeClient:
    def __init__(self, scenario: FakeScenario, fixture_dir: Path) -> None:
        self.scenario = scenario
        self.fixture_dir = fixture_dir
        self.calls: list[dict] = []

    def generate(
        self,
        prompt: str,
        image_bytes: Optional[bytes] = None,
        image_mime_type: Optional[str] = None,
    ) -> GenerationResult:
        self.calls.append({"prompt": prompt, "image_bytes": image_bytes, "image_mime_type": image_mime_type})
        if self.scenario == FakeScenario.TIMEOUT:
            raise ExternalServiceError("gemini", "fake-model", "simulated timeout")
        if self.scenario == FakeScenario.CRASH:
            raise RuntimeError("simulated crash")
        fixture_name = SCENARIO_FIXTURES.get(self.scenario)
        if not fixture_name:
            raise ValueError("Unknown fake scenario")
        text = (self.fixture_dir / fixture_name).read_text(encoding="utf-8")
        return GenerationResult(text=text, model="fake-model", tokens_in=120, tokens_out=80)


class RecordingLogSink:
    def __init__(self) -> None:
        self.entries: list = []

    def record(self, entry) -> None:
        self.entries.append(entry)


@pytest.fixture(scope="session")
def fixture_dir() -> Path:
    return Path(__file__).resolve().parent / "fixtures" / "llm"


@pytest.fixture(scope="session")
def test_db_path(tmp_path_factory: pytest.TempPathFactory) -> Path:
    db_path = tmp_path_factory.mktemp("db") / "fitlog_test.db"
    configure_database(str(db_path))
    create_tables()
    db = SessionLocal()
    try:
        seed_exercises(db)
    finally:
        db.close()
    return db_path


@pytest.fixture(scope="session")
def app(test_db_path: Path):
    from app.main import app as fastapi_app

    return fastapi_app


@pytest.fixture
def client(app):
    app.dependency_overrides = {}
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides = {}


@pytest.fixture
def db_session(test_db_path: Path):
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def create_user(db_session: Session) -> Callable[[], User]:
    def _create_user() -> User:
        user = User(email=f"user_{uuid4().hex[:10]}@test.com", password_hash=get_password_hash("StrongPass123"))
        db_session.add(user)
        db_session.commit()
        db_session.refresh(user)
        return user

    return _create_user


@pytest.fixture
def auth_token(client: TestClient) -> str:
    email = f"auth_{uuid4().hex[:10]}@test.com"
    password = "StrongPass123"
    signup = client.post("/auth/signup", json={"email": email, "password": password})
    assert signup.status_code == 201
    login = client.post("/auth/login", data={"username": email, "password": password})
    assert login.status_code == 200
    return login.json()["access_token"]


@pytest.fixture
def auth_headers(auth_token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {auth_token}"}


@pytest.fixture
def fake_llm_factory(fixture_dir: Path) -> Callable[[FakeScenario], FakeGenerativeClient]:
    def _factory(scenario: FakeScenario) -> FakeGenerativeClient:
        return FakeGenerativeClient(scenario=scenario, fixture_dir=fixture_dir)

    return _factory


@pytest.fixture
def override_llm(app, fake_llm_factory):
    def _override(scenario: FakeScenario) -> FakeGenerativeClient:
        fake = fake_llm_factory(scenario)
        app.dependency_overrides[get_llm_client] = lambda: fake
        return fake

    return _override


@pytest.fixture
def log_sink() -> RecordingLogSink:
    return RecordingLogSink()


@pytest.fixture
def admin_headers(client: TestClient, monkeypatch) -> dict[str, str]:
    from app.api import auth

    email = f"ops_{uuid4().hex[:10]}@test.com"
    password = "StrongPass123"
    assert client.post("/auth/signup", json={"email": email, "password": password}).status_code == 201
    monkeypatch.setattr(auth, "PROMPT_ADMIN_EMAILS", {email})
    login = client.post("/auth/login", data={"username": email, "password": password})
    return {"Authorization": f"Bearer {login.json()['access_token']}"}
