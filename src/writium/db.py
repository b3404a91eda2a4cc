"""Relational persistence layer for Writium."""

from __future__ import annotations

from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator
from uuid import uuid4

import structlog
from sqlalchemy import Column, DateTime, Text, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.types import TypeDecorator
from sqlmodel import Field, Session, SQLModel, create_engine

from writium.settings import Settings

logger = structlog.get_logger(__name__)


def new_id() -> str:
    return str(uuid4())


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UTCDateTime(TypeDecorator):
    """Timestamps are written and read back as aware UTC datetimes.

    SQLite keeps no offset, so naive values coming out of it are UTC.
    """

    impl = DateTime
    cache_ok = True

    def __init__(self) -> None:
        super().__init__(timezone=True)

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if value.utcoffset() is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        if value.utcoffset() is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)


class UserRecord(SQLModel, table=True):
    __tablename__ = "users"

    id: str = Field(default_factory=new_id, primary_key=True)
    email: str = Field(index=True)
    display_name: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ProjectRecord(SQLModel, table=True):
    """Project owned by another user; only its owner and team list are consulted."""

    __tablename__ = "projects"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    name: str
    team_members_json: str = Field(default="[]")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ArticleRecord(SQLModel, table=True):
    __tablename__ = "write_articles"

    id: str = Field(default_factory=new_id, primary_key=True)
    user_id: str = Field(foreign_key="users.id", index=True)
    project_id: str | None = Field(default=None, index=True)
    title: str = Field(default="Untitled document", max_length=500)
    content: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    template_id: str | None = None
    references_json: str = Field(default="[]")
    share_token: str | None = Field(default=None, unique=True, index=True)
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)
    updated_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


class ArticleVersionRecord(SQLModel, table=True):
    __tablename__ = "write_article_versions"

    id: str = Field(default_factory=new_id, primary_key=True)
    article_id: str = Field(foreign_key="write_articles.id", index=True)
    title: str
    content: str = Field(default="", sa_column=Column(Text, nullable=False, default=""))
    references_json: str = Field(default="[]")
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime, index=True)


class CommentRecord(SQLModel, table=True):
    __tablename__ = "write_article_comments"

    id: str = Field(default_factory=new_id, primary_key=True)
    article_id: str = Field(foreign_key="write_articles.id", index=True)
    user_id: str = Field(foreign_key="users.id")
    author_display: str | None = Field(default=None, max_length=200)
    content: str = Field(sa_column=Column(Text, nullable=False))
    parent_id: str | None = None
    created_at: datetime = Field(default_factory=utcnow, sa_type=UTCDateTime)


def create_engine_for_url(url: str, statement_timeout_seconds: int = 30) -> Engine:
    parsed = make_url(url)
    connect_args: dict = {}
    if parsed.get_backend_name() == "sqlite":
        if parsed.database and parsed.database != ":memory:":
            Path(parsed.database).parent.mkdir(parents=True, exist_ok=True)
        connect_args = {"check_same_thread": False, "timeout": statement_timeout_seconds}
    elif parsed.get_backend_name() == "postgresql":
        connect_args = {"options": f"-c statement_timeout={statement_timeout_seconds * 1000}"}
    return create_engine(
        url,
        echo=False,
        pool_pre_ping=True,
        connect_args=connect_args,
    )


class Database:
    """Process-scoped handle owning the engine and its connection pool."""

    def __init__(self, engine: Engine) -> None:
        self._engine = engine

    @classmethod
    def from_settings(cls, settings: Settings) -> "Database":
        engine = create_engine_for_url(
            settings.resolved_database_url,
            statement_timeout_seconds=settings.statement_timeout_seconds,
        )
        return cls(engine)

    @property
    def engine(self) -> Engine:
        return self._engine

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Session whose transaction commits on success and rolls back on error."""
        with Session(self._engine, expire_on_commit=False) as session:
            try:
                yield session
                session.commit()
            except Exception:
                session.rollback()
                raise

    def init_schema(self) -> None:
        SQLModel.metadata.create_all(self._engine)
        logger.info("db.schema_ready", url=self._engine.url.render_as_string(hide_password=True))

    def ping(self) -> None:
        with self._engine.connect() as conn:
            conn.execute(text("SELECT 1"))

    def dispose(self) -> None:
        self._engine.dispose()
