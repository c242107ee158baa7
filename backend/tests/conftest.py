import os

# Point the app engine at SQLite before mlchat.core.database is imported.
os.environ.setdefault("DATABASE_URL", "sqlite+pysqlite:///:memory:")
os.environ.setdefault("ENV", "test")

from contextlib import contextmanager

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mlchat.auth.identity import Identity
from mlchat.core.base import Base
from mlchat.core import config as app_config

# Import models so they register with SQLAlchemy metadata.
from mlchat.models.profile import Profile
from mlchat.models.chat_message import ChatMessage  # noqa: F401
from mlchat.models.payment_intent import PaymentIntentRecord  # noqa: F401

from mlchat.core.database import get_db
from mlchat.dependencies.auth import get_current_identity
from mlchat.dependencies.services import get_text_generator
from mlchat.services.generation import GenerationError

USER_A_ID = "11111111-1111-4111-8111-111111111111"
USER_B_ID = "22222222-2222-4222-8222-222222222222"


class FakeGenerator:
    """Records prompts and returns a canned answer (or raises)."""

    def __init__(self, reply: str = "Use list.reverse() or slicing: items[::-1].", error: Exception | None = None):
        self.reply = reply
        self.error = error
        self.calls: list[str] = []

    def generate(self, prompt_text: str, *, request_id: str | None = None) -> str:
        self.calls.append(prompt_text)
        if self.error is not None:
            raise self.error
        return self.reply


@pytest.fixture(scope="session")
def db_engine():
    # In-memory SQLite for fast, isolated tests.
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    return engine


@pytest.fixture()
def db_session(db_engine):
    # The in-memory DB persists across tests (StaticPool); reset schema per test.
    Base.metadata.drop_all(bind=db_engine)
    Base.metadata.create_all(bind=db_engine)

    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=db_engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture(autouse=True)
def _reset_mutable_settings():
    """
    Tests tweak the process-global settings object. Start every test from a known
    baseline (no Stripe, no Supabase secrets, reserve mode) and restore afterwards.
    """
    baseline = {
        "STRIPE_SECRET_KEY": "",
        "STRIPE_WEBHOOK_SECRET": "",
        "SUPABASE_JWT_SECRET": "",
        "SUPABASE_URL": "",
        "SUPABASE_ANON_KEY": "",
        "GEMINI_API_KEY": "",
        "OPENAI_API_KEY": "",
        "GENERATION_PROVIDER": "gemini",
        "GENERATION_MAX_RETRIES": 1,
        "CREDIT_CHARGE_MODE": "reserve",
        "PROFILE_AUTO_PROVISION": True,
        "SIGNUP_CREDITS": 20,
        "CHAT_MAX_INPUT_CHARS": 4000,
    }
    original = {k: getattr(app_config.settings, k) for k in baseline}
    for k, v in baseline.items():
        setattr(app_config.settings, k, v)
    try:
        yield
    finally:
        for k, v in original.items():
            setattr(app_config.settings, k, v)


@pytest.fixture()
def identity_a() -> Identity:
    return Identity.from_supabase(sub=USER_A_ID, email="ada@example.com")


@pytest.fixture()
def identity_b() -> Identity:
    return Identity.from_supabase(sub=USER_B_ID, email="grace@example.com")


@pytest.fixture()
def profiles(db_session):
    """
    Two profiles: user A starts with 3 credits, user B with none.
    """
    profile_a = Profile(id=USER_A_ID, email="ada@example.com", credits=3)
    profile_b = Profile(id=USER_B_ID, email="grace@example.com", credits=0)
    db_session.add_all([profile_a, profile_b])
    db_session.commit()
    db_session.refresh(profile_a)
    db_session.refresh(profile_b)
    return profile_a, profile_b


@pytest.fixture()
def set_credits(db_session):
    def _set(user_id: str, credits: int) -> None:
        db_session.query(Profile).filter(Profile.id == user_id).update({"credits": credits})
        db_session.commit()

    return _set


@pytest.fixture()
def balance_of(db_session):
    def _balance(user_id: str) -> int:
        db_session.expire_all()
        return db_session.query(Profile.credits).filter(Profile.id == user_id).scalar()

    return _balance


@pytest.fixture()
def fake_generator() -> FakeGenerator:
    return FakeGenerator()


@pytest.fixture()
def failing_generator() -> FakeGenerator:
    return FakeGenerator(error=GenerationError("Failed to generate response"))


@pytest.fixture()
def app(db_session, fake_generator):
    from mlchat.main import app as fastapi_app

    def override_get_db():
        yield db_session

    fastapi_app.dependency_overrides[get_db] = override_get_db
    fastapi_app.dependency_overrides[get_text_generator] = lambda: fake_generator
    yield fastapi_app
    fastapi_app.dependency_overrides.clear()


@pytest.fixture()
def client(app, profiles, identity_a):
    """
    Default client authenticated as user A.
    """
    app.dependency_overrides[get_current_identity] = lambda: identity_a
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.pop(get_current_identity, None)


@pytest.fixture()
def client_for(app, profiles):
    """
    Context manager to create a client authenticated as an arbitrary identity.

    Usage:
        with client_for(identity) as c:
            ...
    """

    @contextmanager
    def _client_for(identity: Identity):
        previous = app.dependency_overrides.get(get_current_identity)
        app.dependency_overrides[get_current_identity] = lambda: identity
        with TestClient(app) as c:
            yield c
        # Restore the default client's identity when both are used in one test.
        if previous is not None:
            app.dependency_overrides[get_current_identity] = previous
        else:
            app.dependency_overrides.pop(get_current_identity, None)

    return _client_for


@pytest.fixture()
def anon_client(app):
    """Client with the real bearer-token dependency in place."""
    with TestClient(app) as c:
        yield c
