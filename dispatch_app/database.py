from collections.abc import Generator
from typing import Any

from sqlalchemy import create_engine, text
from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from pydantic_settings import BaseSettings, SettingsConfigDict

from dispatch_app.core.errors import PersistenceError


class DatabaseSettings(BaseSettings):
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "dispatch"
    db_host: str = "db"
    db_port: int = 5432
    database_url: str | None = None
    # Upload handlers and background jobs each hold a connection.
    db_pool_size: int = 10
    db_max_overflow: int = 10
    db_statement_timeout_ms: int = 30000
    db_echo: bool = False

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    @property
    def resolved_database_url(self) -> str:
        if self.database_url:
            return self.database_url
        return (
            "postgresql+psycopg2://"
            f"{self.db_user}:{self.db_password}@"
            f"{self.db_host}:{self.db_port}/{self.db_name}"
        )


def engine_options(url: str, config: DatabaseSettings) -> dict[str, Any]:
    """
    Keyword arguments for ``create_engine``. SQLite (local runs, tests) gets
    cross-thread access and no server-side options; Postgres gets the pool
    limits and a per-connection statement timeout.
    """
    options: dict[str, Any] = {"pool_pre_ping": True, "echo": config.db_echo}
    if make_url(url).get_backend_name() == "sqlite":
        options["connect_args"] = {"check_same_thread": False}
        return options

    options["pool_size"] = config.db_pool_size
    options["max_overflow"] = config.db_max_overflow
    if config.db_statement_timeout_ms > 0:
        options["connect_args"] = {"options": f"-c statement_timeout={config.db_statement_timeout_ms}"}
    return options


db_settings = DatabaseSettings()
DATABASE_URL = db_settings.resolved_database_url

engine = create_engine(DATABASE_URL, **engine_options(DATABASE_URL, db_settings))
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


def check_database_connection() -> bool:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True


def commit_or_raise(db: Session) -> None:
    try:
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        raise PersistenceError(f"Database write failed: {exc.__class__.__name__}") from exc
