"""Benefits requests Flask application factory."""

from __future__ import annotations

import json
from typing import Any, Optional

import click
from flask import Flask, current_app, g, jsonify
from flask_login import LoginManager
from werkzeug.exceptions import HTTPException

from .accounts import ROLE_EMPLOYEE, ROLES, UserAccount
from .config import AppConfig, load_config
from .database import create_db_engine, init_schema
from .repositories import RequestsRepository, UsersRepository
from .storage import FileUploadGateway, LocalObjectStorage

login_manager = LoginManager()


@login_manager.user_loader
def load_user(user_id: str) -> Optional[UserAccount]:
    return get_users_repository().get_user(int(user_id))


@login_manager.unauthorized_handler
def unauthorized():
    return jsonify({"error": "Authentication required."}), 401


def create_app(config: AppConfig | None = None) -> Flask:
    """Build and configure the Benefits Flask application instance.

    Args:
        config: Optional :class:`AppConfig` override. When ``None`` the helper
            loads configuration via :func:`load_config`, which honours the
            ``BENEFITS_*`` environment variables.

    Returns:
        Flask: Initialised application. The SQLAlchemy engine is stored on
        ``app.config['DB_ENGINE']``, the invoice bucket on
        ``app.config['STORAGE']`` and the upload gateway on
        ``app.config['UPLOAD_GATEWAY']``.
    """

    app = Flask(__name__, instance_relative_config=True)
    app_config = config or load_config()
    app.config.update(
        SECRET_KEY=app_config.secret_key,
        MAX_CONTENT_LENGTH=app_config.max_content_length,
        APP_CONFIG=app_config,
    )
    engine = create_db_engine(app_config.database_url)
    init_schema(engine)
    app.config["DB_ENGINE"] = engine
    storage = LocalObjectStorage(app_config.storage_dir)
    app.config["STORAGE"] = storage
    app.config["UPLOAD_GATEWAY"] = FileUploadGateway(
        storage, max_bytes=app_config.max_upload_bytes
    )

    login_manager.init_app(app)

    from .blueprints.auth import auth_bp
    from .blueprints.requests import requests_bp

    app.register_blueprint(auth_bp)
    app.register_blueprint(requests_bp)

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        response = exc.get_response()
        response.data = json.dumps({"error": exc.description})
        response.content_type = "application/json"
        return response

    @app.teardown_appcontext
    def teardown(_: Any) -> None:
        g.pop("requests_repo", None)
        g.pop("users_repo", None)

    @app.cli.command("init-db")
    def init_db_command() -> None:
        """Initialize the database tables."""

        init_schema(engine)
        click.echo("Database initialized.")

    @app.cli.command("create-user")
    @click.option("--email", required=True)
    @click.option("--name", required=True)
    @click.option("--password", required=True)
    @click.option("--role", type=click.Choice(ROLES), default=ROLE_EMPLOYEE)
    def create_user_command(email: str, name: str, password: str, role: str) -> None:
        """Create a requester or manager account."""

        user = UsersRepository(engine).create_user(email, name, password, role)
        click.echo(f"Created {user.role} {user.email} (id {user.id}).")

    app.logger.info("Benefits app ready (storage at %s)", app_config.storage_dir)
    return app


def get_repository() -> RequestsRepository:
    """Return a requests repository cached on :mod:`flask.g`."""

    if not hasattr(g, "requests_repo"):
        g.requests_repo = RequestsRepository(current_app.config["DB_ENGINE"])
    return g.requests_repo


def get_users_repository() -> UsersRepository:
    """Return a users repository cached on :mod:`flask.g`."""

    if not hasattr(g, "users_repo"):
        g.users_repo = UsersRepository(current_app.config["DB_ENGINE"])
    return g.users_repo


__all__ = [
    "create_app",
    "AppConfig",
    "get_repository",
    "get_users_repository",
    "login_manager",
]
