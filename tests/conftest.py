import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["BCRYPT_ROUNDS"] = "4"
os.environ["SEED_DEMO"] = "false"
os.environ.pop("CACHE_URL", None)

import pytest
from fastapi.testclient import TestClient

import forms
import models
from app import create_app
from cache import MemoryCache
from db import Base, SessionLocal, engine
from schemas import FormDefinition, QuestionItem
from security import hash_password


class FakeTimer:
    def __init__(self) -> None:
        self.now = 1000.0

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSocket:
    """Stands in for a WebSocket: records pushes, refuses them once closed."""

    def __init__(self) -> None:
        self.sent = []
        self.closed = False

    async def send_json(self, message):
        if self.closed:
            raise RuntimeError("socket closed")
        self.sent.append(message)

    async def close(self, code: int = 1000):
        self.closed = True


@pytest.fixture(autouse=True)
def _tables():
    Base.metadata.create_all(bind=engine)
    yield
    Base.metadata.drop_all(bind=engine)


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def timer():
    return FakeTimer()


@pytest.fixture
def cache(timer):
    return MemoryCache(timer=timer)


@pytest.fixture
def client(cache):
    with TestClient(create_app(cache=cache)) as c:
        yield c


def make_user(db, email, password="secret-pass", role="USER", user_name=None, verify=True):
    user = models.User(
        user_name=user_name or email.split("@")[0],
        email=email,
        password=hash_password(password),
        appellation="Mister",
        role=role,
        verify=verify,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


def make_form(db, author, questions, correct, single=True, randomized=False, name="Quiz"):
    definition = FormDefinition(
        form_name=name,
        is_single_choice=single,
        is_randomized=randomized,
        questions=[QuestionItem(question=text, options=options) for text, options in questions],
        correct_answer=correct,
    )
    return forms.create_form(db, {"userId": author.id, "role": author.role}, definition)


def login(client, email, password="secret-pass"):
    response = client.post("/authentication/login", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response


TWO_QUESTIONS = [
    ("First?", ["A", "B"]),
    ("Second?", ["C", "D", "E"]),
]
