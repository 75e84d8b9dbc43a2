"""Configuration helpers for the Benefits web application."""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from .storage import MAX_UPLOAD_BYTES

_TRUTHY = {"true", "1", "yes", "y"}


@dataclass(slots=True)
class MailConfig:
    """SMTP settings used for notification emails."""

    enabled: bool = False
    server: str = "localhost"
    port: int = 587
    use_tls: bool = True
    use_ssl: bool = False
    username: Optional[str] = None
    password: Optional[str] = None
    default_sender: str = "beneficios@example.com"
    manager_address: Optional[str] = None


@dataclass(slots=True)
class AppConfig:
    """Settings loaded from environment variables."""

    database_url: str
    storage_dir: Path
    secret_key: str
    max_content_length: int
    max_upload_bytes: int = MAX_UPLOAD_BYTES
    mail: MailConfig = field(default_factory=MailConfig)


def _env_flag(name: str, default: str) -> bool:
    return os.getenv(name, default).strip().lower() in _TRUTHY


def load_mail_config() -> MailConfig:
    """Create a :class:`MailConfig` from ``BENEFITS_MAIL_*`` variables."""

    return MailConfig(
        enabled=_env_flag("BENEFITS_MAIL_ENABLED", "false"),
        server=os.getenv("BENEFITS_MAIL_SERVER", "localhost"),
        port=int(os.getenv("BENEFITS_MAIL_PORT", "587")),
        use_tls=_env_flag("BENEFITS_MAIL_USE_TLS", "true"),
        use_ssl=_env_flag("BENEFITS_MAIL_USE_SSL", "false"),
        username=os.getenv("BENEFITS_MAIL_USERNAME"),
        password=os.getenv("BENEFITS_MAIL_PASSWORD"),
        default_sender=os.getenv(
            "BENEFITS_MAIL_DEFAULT_SENDER", "beneficios@example.com"
        ),
        manager_address=os.getenv("BENEFITS_MANAGER_EMAIL"),
    )


def load_config() -> AppConfig:
    """Create an :class:`AppConfig` instance from environment variables."""

    storage_dir = Path(os.getenv("BENEFITS_STORAGE", "instance/storage"))
    storage_dir.mkdir(parents=True, exist_ok=True)
    database = os.getenv(
        "BENEFITS_DATABASE", "sqlite:///" + str(Path("instance/benefits.db"))
    )
    max_upload_bytes = int(os.getenv("BENEFITS_MAX_UPLOAD_BYTES", str(MAX_UPLOAD_BYTES)))
    # Request bodies carry several invoices, so the body limit sits above the
    # per-file limit.
    max_content_length = int(
        os.getenv("BENEFITS_MAX_CONTENT_LENGTH", str(4 * max_upload_bytes))
    )
    secret_key = os.getenv("BENEFITS_SECRET_KEY", "development")
    return AppConfig(
        database_url=database,
        storage_dir=storage_dir,
        secret_key=secret_key,
        max_content_length=max_content_length,
        max_upload_bytes=max_upload_bytes,
        mail=load_mail_config(),
    )
