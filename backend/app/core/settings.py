from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Dict, Optional
from urllib.parse import parse_qsl, urlparse

from dotenv import load_dotenv
from pydantic import BaseModel, Field
from sqlalchemy.engine import URL


BASE_DIR = Path(__file__).resolve().parents[3]
ENV_FILE = BASE_DIR / ".env"
DEFAULT_DATABASE_URL = "sqlite:///./faq_kb.db"


def _load_nonstandard_env_file(path: Path) -> None:
    """
    Deployment .env files may use `key: value` pairs instead of `key=value`.
    This helper normalizes those entries so python-dotenv and os.environ can consume them.
    """
    if not path.exists():
        return

    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        if "=" in line:
            # python-dotenv will process it.
            continue
        if ":" in line:
            key, value = line.split(":", 1)
            key = key.strip()
            value = value.strip()
            if key and value:
                if key not in os.environ:
                    os.environ[key] = value
                key_upper = key.upper()
                if key_upper not in os.environ:
                    os.environ[key_upper] = value


if ENV_FILE.exists():
    _load_nonstandard_env_file(ENV_FILE)
    load_dotenv(ENV_FILE)


def _get_env_value(*keys: str, default: Optional[str] = None) -> Optional[str]:
    for key in keys:
        value = os.getenv(key)
        if value:
            return value.strip()
    return default


def _normalize_mysql_url(raw_url: str, username: Optional[str], password: Optional[str]) -> str:
    if raw_url.startswith("jdbc:"):
        raw_url = raw_url.replace("jdbc:", "", 1)
    if raw_url.startswith("mysql+mysqldb://"):
        raw_url = raw_url.replace("mysql+mysqldb://", "mysql+pymysql://", 1)
    elif raw_url.startswith("mysql://"):
        raw_url = raw_url.replace("mysql://", "mysql+pymysql://", 1)

    parsed = urlparse(raw_url)

    final_username = parsed.username or username
    final_password = parsed.password or password
    if final_username is None or final_password is None:
        raise ValueError(
            "Database credentials are required. Provide username/password via environment variables."
        )

    query: Dict[str, str] = _sanitize_mysql_query_params(dict(parse_qsl(parsed.query)))
    database = parsed.path.lstrip("/") if parsed.path else None
    if not database:
        raise ValueError("Database name missing in MySQL URL.")

    url_object = URL.create(
        drivername="mysql+pymysql",
        username=final_username,
        password=final_password,
        host=parsed.hostname or "localhost",
        port=parsed.port or 3306,
        database=database,
        query=query or None,
    )
    # Keep the real password in the rendered string, SQLAlchemy would otherwise see '***'.
    return url_object.render_as_string(hide_password=False)


def _sanitize_mysql_query_params(params: Dict[str, str]) -> Dict[str, str]:
    sanitized: Dict[str, str] = {}
    truthy = {"1", "true", "yes", "on"}
    for key, value in params.items():
        normalized = key.strip()
        if not normalized:
            continue
        lower_key = normalized.lower()
        cleaned_value = value.strip()

        if lower_key == "characterencoding":
            if cleaned_value:
                sanitized["charset"] = cleaned_value
            continue
        if lower_key == "useunicode":
            continue
        if lower_key == "usessl":
            if cleaned_value.lower() in truthy:
                sanitized["ssl"] = "1"
            continue
        if lower_key == "servertimezone":
            tz = cleaned_value.replace("'", "")
            if tz:
                sanitized["init_command"] = f"SET time_zone = '{tz}'"
            continue

        # CamelCase JDBC options are not understood by pymysql.
        if any(ch.isupper() for ch in normalized):
            continue

        sanitized[normalized] = cleaned_value

    return sanitized


def _resolve_database_url() -> str:
    url = _get_env_value(
        "DATABASE_URL",
        "DB_URL",
        "SQLALCHEMY_DATABASE_URI",
        default=DEFAULT_DATABASE_URL,
    )
    if url.startswith(("mysql", "jdbc:mysql")):
        username = _get_env_value("DATABASE_USERNAME", "DB_USERNAME", "DB_USER")
        password = _get_env_value("DATABASE_PASSWORD", "DB_PASSWORD")
        return _normalize_mysql_url(url, username, password)
    return url


class DatabaseSettings(BaseModel):
    url: str = Field(..., description="SQLAlchemy URL for the knowledge base database")
    echo: bool = Field(default=False)


class SchedulerSettings(BaseModel):
    timezone: str = Field(default="Asia/Shanghai")
    maintenance_interval_seconds: int = Field(default=60, ge=5, le=3600)


class EnrichmentSettings(BaseModel):
    base_url: str = Field(default="", description="OpenAI-compatible API base URL")
    api_key: str = Field(default="")
    model: str = Field(default="")
    timeout_seconds: float = Field(default=60.0, gt=0)
    max_workers: int = Field(default=4, ge=1, le=64)
    stale_after_seconds: int = Field(
        default=600,
        ge=30,
        description="Items stuck in processing longer than this are failed by the maintenance sweep",
    )

    @property
    def configured(self) -> bool:
        return bool(self.base_url and self.api_key and self.model)


class ImportSettings(BaseModel):
    timeout_seconds: int = Field(default=300, ge=1, description="Wall-clock budget of one import job")
    judge_threshold: float = Field(default=3.5, ge=1, le=5)
    max_document_bytes: int = Field(default=4 * 1024 * 1024, ge=1)
    summary_chars: int = Field(default=2000, ge=100)


class AuthSettings(BaseModel):
    secret_key: str = Field(
        default=_get_env_value("AUTH_SECRET_KEY", default="change-this-secret-before-any-deployment"),
        description="Secret key for signing JWT tokens",
    )
    algorithm: str = Field(
        default=_get_env_value("AUTH_ALGORITHM", default="HS256"),
        description="JWT signing algorithm",
    )
    access_token_expires_minutes: int = Field(
        default=int(_get_env_value("AUTH_ACCESS_TOKEN_EXPIRES_MINUTES", default="10080")),
        description="Access token expiry in minutes",
    )


class Settings(BaseModel):
    app_name: str = "faq-knowledge-base"
    environment: str = Field(default=_get_env_value("APP_ENV", default="prod"))
    log_level: str = Field(default=_get_env_value("LOG_LEVEL", default="INFO"))
    database: DatabaseSettings
    scheduler: SchedulerSettings
    enrichment: EnrichmentSettings
    imports: ImportSettings = ImportSettings()
    auth: AuthSettings = AuthSettings()


@lru_cache
def get_settings() -> Settings:
    database = DatabaseSettings(
        url=_resolve_database_url(),
        echo=_get_env_value("DATABASE_ECHO", default="0").lower() in {"1", "true", "yes", "on"},
    )
    scheduler = SchedulerSettings(
        timezone=_get_env_value("APP_TIMEZONE", default="Asia/Shanghai"),
        maintenance_interval_seconds=int(_get_env_value("MAINTENANCE_INTERVAL_SECONDS", default="60")),
    )
    enrichment = EnrichmentSettings(
        base_url=_get_env_value("AI_API_BASE_URL", default=""),
        api_key=_get_env_value("AI_API_KEY", default=""),
        model=_get_env_value("AI_MODEL", default=""),
        timeout_seconds=float(_get_env_value("AI_TIMEOUT", default="60")),
        max_workers=int(_get_env_value("ENRICHMENT_MAX_WORKERS", default="4")),
        stale_after_seconds=int(_get_env_value("ENRICHMENT_STALE_SECONDS", default="600")),
    )
    imports = ImportSettings(
        timeout_seconds=int(_get_env_value("IMPORT_TIMEOUT_SECONDS", default="300")),
        judge_threshold=float(_get_env_value("IMPORT_JUDGE_THRESHOLD", default="3.5")),
    )
    return Settings(database=database, scheduler=scheduler, enrichment=enrichment, imports=imports)
