import os
import sys
from datetime import datetime
from pathlib import Path

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

# Ensure tests use an in-memory SQLite DB and never reach the model service
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ["GEMINI_API_KEY"] = ""

# Ensure the project root is on sys.path so `import hidoc` works when running
# pytest from the repository root.
ROOT_DIR = Path(__file__).resolve().parents[2]
if str(ROOT_DIR) not in sys.path:
    sys.path.insert(0, str(ROOT_DIR))

from hidoc.app import app  # noqa: E402
from hidoc.db.session import Base, get_db  # noqa: E402
from hidoc.services.ai_config import AIConfig  # noqa: E402
from hidoc.services.interpreter import Interpreter, get_interpreter  # noqa: E402
from hidoc.services.normalizer import to_ms  # noqa: E402
from hidoc.services.param_matcher import ParamVectorIndex  # noqa: E402
from hidoc.services.param_targets import seed_loader, seed_param_targets  # noqa: E402
from hidoc.services.prompts import PromptStore  # noqa: E402
from hidoc.utils.exceptions import TransientProviderError  # noqa: E402

FIXED_NOW = datetime(2025, 6, 10, 12, 0, 0)
NOW_MS = to_ms(FIXED_NOW)
TEST_CONFIG = AIConfig(api_key="test-key", model="gemini-test", timeout_s=5.0)

# In-memory SQLite shared across connections
engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture(scope="session", autouse=True)
def create_schema():
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        seed_param_targets(db)
    finally:
        db.close()
    yield
    Base.metadata.drop_all(bind=engine)


def _override_get_db():
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


app.dependency_overrides[get_db] = _override_get_db


class ScriptedLLM:
    """Stand-in for gemini.generate_chat that replays canned outputs.

    Exceptions in the script are raised instead of returned; an exhausted
    script behaves like an unreachable provider.
    """

    def __init__(self, *outputs):
        self.outputs = list(outputs)
        self.calls = []

    async def __call__(self, system, messages, timeout_s=20, **kwargs):
        self.calls.append({"system": system, "messages": messages, "timeout_s": timeout_s})
        if not self.outputs:
            raise TransientProviderError("provider unavailable")
        out = self.outputs.pop(0)
        if isinstance(out, BaseException):
            raise out
        return out


@pytest.fixture
def db():
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture(scope="session")
def param_index():
    return ParamVectorIndex(seed_loader())


@pytest.fixture
def make_interpreter(param_index):
    def _make(*outputs, config=TEST_CONFIG, clock=lambda: FIXED_NOW):
        llm = ScriptedLLM(*outputs)
        interpreter = Interpreter(
            prompts=PromptStore(),
            param_index=param_index,
            config=config,
            clock=clock,
            llm=llm,
        )
        return interpreter, llm

    return _make


@pytest.fixture(autouse=True)
def use_interpreter(param_index):
    """Route the API through a given interpreter for the duration of a test.

    By default the API gets an interpreter whose model is unreachable.
    """

    def _use(interpreter):
        app.dependency_overrides[get_interpreter] = lambda: interpreter
        return interpreter

    _use(Interpreter(
        prompts=PromptStore(),
        param_index=param_index,
        config=TEST_CONFIG,
        clock=lambda: FIXED_NOW,
        llm=ScriptedLLM(),
    ))
    yield _use
    app.dependency_overrides.pop(get_interpreter, None)


@pytest.fixture
def client():
    return TestClient(app)


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def now_ms():
    return NOW_MS


@pytest.fixture
def session_factory():
    return TestingSessionLocal
