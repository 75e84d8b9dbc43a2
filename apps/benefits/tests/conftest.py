"""Test fixtures for the Benefits app."""

from __future__ import annotations

from io import BytesIO
from pathlib import Path

import pytest
from werkzeug.datastructures import FileStorage

from benefits_web import AppConfig, create_app
from benefits_web.accounts import ROLE_MANAGER
from benefits_web.config import MailConfig
from benefits_web.database import create_db_engine, init_schema
from benefits_web.repositories import RequestsRepository, UsersRepository
from benefits_web.storage import FileUploadGateway, LocalObjectStorage

PASSWORD = "correct horse battery"


class DummySMTP:
    """Lightweight SMTP stub used to avoid external calls in tests."""

    sent_messages: list = []

    def __init__(self, *args, **kwargs) -> None:
        self.args = args

    def __enter__(self) -> "DummySMTP":
        return self

    def __exit__(self, *exc_info) -> None:
        return None

    def starttls(self) -> None:
        return None

    def login(self, *_args, **_kwargs) -> None:
        return None

    def send_message(self, message) -> None:
        DummySMTP.sent_messages.append(message)


@pytest.fixture()
def smtp(monkeypatch):
    """Replace :mod:`smtplib` transports with :class:`DummySMTP`."""

    DummySMTP.sent_messages = []
    monkeypatch.setattr("smtplib.SMTP", DummySMTP)
    monkeypatch.setattr("smtplib.SMTP_SSL", DummySMTP)
    return DummySMTP


@pytest.fixture()
def engine(tmp_path: Path):
    engine = create_db_engine(f"sqlite:///{tmp_path / 'benefits.db'}")
    init_schema(engine)
    return engine


@pytest.fixture()
def repo(engine) -> RequestsRepository:
    return RequestsRepository(engine)


@pytest.fixture()
def users_repo(engine) -> UsersRepository:
    return UsersRepository(engine)


@pytest.fixture()
def employee(users_repo):
    return users_repo.create_user("ana@example.com", "Ana Souza", PASSWORD)


@pytest.fixture()
def manager(users_repo):
    return users_repo.create_user(
        "gestor@example.com", "Carlos Lima", PASSWORD, role=ROLE_MANAGER
    )


@pytest.fixture()
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(tmp_path / "storage")


@pytest.fixture()
def gateway(storage) -> FileUploadGateway:
    return FileUploadGateway(storage)


def make_file(name: str, size: int = 1024 * 1024) -> FileStorage:
    """Return an in-memory upload of ``size`` bytes."""

    return FileStorage(stream=BytesIO(b"x" * size), filename=name)


def make_large_file(directory: Path, name: str, size: int) -> FileStorage:
    """Return an upload backed by a sparse file of ``size`` bytes."""

    path = directory / name
    with path.open("wb") as handle:
        handle.truncate(size)
    return FileStorage(stream=path.open("rb"), filename=name)


@pytest.fixture()
def app(tmp_path: Path, smtp):
    """Return a Flask app configured for testing."""

    config = AppConfig(
        database_url=f"sqlite:///{tmp_path / 'app.db'}",
        storage_dir=tmp_path / "app-storage",
        secret_key="testing",
        max_content_length=8 * 1024 * 1024,
        mail=MailConfig(enabled=True, default_sender="beneficios@example.com"),
    )
    application = create_app(config)
    application.config.update(TESTING=True)
    yield application


@pytest.fixture()
def client(app):
    """Return a Flask test client."""

    return app.test_client()


@pytest.fixture()
def app_users(app):
    users = UsersRepository(app.config["DB_ENGINE"])
    return {
        "employee": users.create_user("ana@example.com", "Ana Souza", PASSWORD),
        "other": users.create_user("bruno@example.com", "Bruno Dias", PASSWORD),
        "manager": users.create_user(
            "gestor@example.com", "Carlos Lima", PASSWORD, role=ROLE_MANAGER
        ),
    }


def login(client, email: str, password: str = PASSWORD):
    return client.post("/auth/login", json={"email": email, "password": password})
