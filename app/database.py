import logging
from collections.abc import Generator, Iterator
from contextlib import contextmanager

from sqlalchemy import DateTime, bindparam, create_engine, text
from sqlalchemy.sql.elements import TextClause
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, declarative_base, sessionmaker
from pydantic_settings import BaseSettings, SettingsConfigDict

from app.core.errors import InternalError, ServiceError

logger = logging.getLogger(__name__)


class DatabaseSettings(BaseSettings):
    db_user: str = "postgres"
    db_password: str = "postgres"
    db_name: str = "chamafrete"
    db_host: str = "db"
    db_port: int = 5432
    database_url: str | None = None

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


db_settings = DatabaseSettings()
DATABASE_URL = db_settings.resolved_database_url

engine = create_engine(DATABASE_URL, pool_pre_ping=True)
SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)
Base = declarative_base()


def get_db() -> Generator[Session, None, None]:
    db = SessionLocal()
    try:
        yield db
    finally:
        db.close()


@contextmanager
def transaction(db: Session, label: str) -> Iterator[Session]:
    """Commit on success, roll back on any exception.

    ServiceError subclasses propagate unchanged. Driver errors are logged with
    their detail and surface to callers as a generic InternalError.
    """
    try:
        yield db
        db.commit()
    except ServiceError:
        db.rollback()
        raise
    except SQLAlchemyError as exc:
        db.rollback()
        logger.exception("%s: database failure", label)
        raise InternalError() from exc
    except Exception:
        db.rollback()
        raise


def check_database_connection() -> bool:
    with engine.connect() as connection:
        connection.execute(text("SELECT 1"))
    return True


def text_ts(statement: str, *timestamp_params: str) -> TextClause:
    """``text()`` with the named parameters bound as timezone-aware timestamps.

    Keeps raw SQL comparisons against DateTime columns consistent with what the
    ORM writes, on PostgreSQL and SQLite alike.
    """
    clause = text(statement)
    if timestamp_params:
        clause = clause.bindparams(
            *(bindparam(name, type_=DateTime(timezone=True)) for name in timestamp_params)
        )
    return clause
