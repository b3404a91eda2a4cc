"""Article CRUD, share links and version history orchestration."""

from __future__ import annotations

import secrets

import structlog
from sqlalchemy import delete, func
from sqlmodel import Session, select

from writium.db import ArticleRecord, CommentRecord, Database, utcnow
from writium.errors import NotFoundError
from writium.models import (
    Actor,
    Article,
    ArticleChanges,
    ArticleVersion,
    Page,
    Reference,
    dump_references,
    parse_references,
)
from writium.services.access import AccessControl
from writium.services.users import UserService
from writium.services.versions import VersionStore
from writium.utils import clean_uuid

logger = structlog.get_logger(__name__)

MAX_TITLE_LENGTH = 500
DEFAULT_TITLE = "Untitled document"
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100


def article_from_record(record: ArticleRecord) -> Article:
    return Article(
        id=record.id,
        user_id=record.user_id,
        project_id=record.project_id,
        title=record.title,
        content=record.content or "",
        template_id=record.template_id,
        references_json=parse_references(record.references_json),
        created_at=record.created_at,
        updated_at=record.updated_at,
        share_token=record.share_token,
    )


def apply_changes(record: ArticleRecord, changes: ArticleChanges) -> None:
    if changes.title is not None:
        record.title = changes.title[:MAX_TITLE_LENGTH]
    if changes.content is not None:
        record.content = changes.content
    if changes.clear_template:
        record.template_id = None
    elif changes.template_id is not None:
        record.template_id = changes.template_id
    if changes.references is not None:
        record.references_json = dump_references(changes.references)
    record.updated_at = utcnow()


class ArticleService:
    """Composes access control and the version store into article operations.

    Articles the actor cannot see are reported as missing, never as
    forbidden, so callers cannot discover ids they do not own.
    """

    def __init__(
        self,
        database: Database,
        access: AccessControl | None = None,
        versions: VersionStore | None = None,
    ) -> None:
        self._database = database
        self._access = access or AccessControl(database)
        self._versions = versions or VersionStore(database)

    @property
    def versions(self) -> VersionStore:
        return self._versions

    # Listing & reads -------------------------------------------------------

    def list_articles(
        self,
        actor: Actor,
        *,
        project_id: str | None = None,
        limit: int = DEFAULT_PAGE_SIZE,
        offset: int = 0,
    ) -> tuple[list[Article], Page]:
        limit = max(1, min(limit, MAX_PAGE_SIZE))
        offset = max(offset, 0)
        project_id = clean_uuid(project_id)

        stmt = select(ArticleRecord)
        count_stmt = select(func.count()).select_from(ArticleRecord)
        if project_id is None:
            stmt = stmt.where(ArticleRecord.user_id == actor.id)
            count_stmt = count_stmt.where(ArticleRecord.user_id == actor.id)
        else:
            author_id = self._access.project_author_for(actor.id, actor.email, project_id)
            if author_id is None:
                return [], Page(limit=limit, offset=offset, total=0)
            clause = (ArticleRecord.user_id == author_id, ArticleRecord.project_id == project_id)
            stmt = stmt.where(*clause)
            count_stmt = count_stmt.where(*clause)

        stmt = (
            stmt.order_by(ArticleRecord.updated_at.desc(), ArticleRecord.created_at.desc())
            .offset(offset)
            .limit(limit)
        )
        with self._database.session() as session:
            records = session.exec(stmt).all()
            total = session.exec(count_stmt).one()
        return [article_from_record(record) for record in records], Page(
            limit=limit, offset=offset, total=total
        )

    def find_article(self, article_id: str) -> Article | None:
        """Unscoped lookup for operator tooling; the HTTP layer never calls this."""
        with self._database.session() as session:
            record = session.get(ArticleRecord, article_id)
            return article_from_record(record) if record else None

    def get_article(self, actor: Actor, article_id: str) -> Article:
        with self._database.session() as session:
            if not self._access.check(session, actor.id, actor.email, article_id, "read"):
                raise NotFoundError("Article not found")
            record = session.get(ArticleRecord, article_id)
            return article_from_record(record)

    # Mutations -------------------------------------------------------------

    def create_article(
        self,
        actor: Actor,
        *,
        title: str = DEFAULT_TITLE,
        content: str = "",
        template_id: str | None = None,
        project_id: str | None = None,
        references: list[Reference] | None = None,
    ) -> Article:
        with self._database.session() as session:
            UserService.ensure(session, actor)
            now = utcnow()
            record = ArticleRecord(
                user_id=actor.id,
                project_id=clean_uuid(project_id),
                title=(title or "")[:MAX_TITLE_LENGTH],
                content=content or "",
                template_id=template_id or None,
                references_json=dump_references(references or []),
                created_at=now,
                updated_at=now,
            )
            session.add(record)
            session.flush()
            article = article_from_record(record)
        logger.info("articles.created", article_id=article.id, user_id=actor.id)
        return article

    def update_article(self, actor: Actor, article_id: str, changes: ArticleChanges) -> Article:
        """Snapshot the current state into history, then apply ``changes``."""
        with self._database.session() as session:
            record = self._locked(session, ArticleRecord.id == article_id)
            if record is None or not self._access.check(
                session, actor.id, actor.email, article_id, "write"
            ):
                raise NotFoundError("Article not found")
            if changes.is_empty:
                return article_from_record(record)
            self._versions.snapshot(session, record)
            apply_changes(record, changes)
            session.add(record)
            session.flush()
            article = article_from_record(record)
        logger.info("articles.updated", article_id=article_id, user_id=actor.id)
        return article

    def delete_article(self, actor: Actor, article_id: str) -> None:
        with self._database.session() as session:
            if not AccessControl.owns(session, article_id, actor.id):
                raise NotFoundError("Article not found")
            self._versions.delete_all(session, article_id)
            session.exec(delete(CommentRecord).where(CommentRecord.article_id == article_id))
            session.exec(delete(ArticleRecord).where(ArticleRecord.id == article_id))
        logger.info("articles.deleted", article_id=article_id, user_id=actor.id)

    # Share links -----------------------------------------------------------

    def issue_share_token(self, actor: Actor, article_id: str) -> str:
        token = secrets.token_hex(16)
        with self._database.session() as session:
            record = self._owned(session, actor, article_id)
            record.share_token = token
            session.add(record)
        logger.info("articles.share_issued", article_id=article_id)
        return token

    def revoke_share_token(self, actor: Actor, article_id: str) -> None:
        with self._database.session() as session:
            record = self._owned(session, actor, article_id)
            record.share_token = None
            session.add(record)
        logger.info("articles.share_revoked", article_id=article_id)

    def get_shared(self, token: str) -> Article:
        token = (token or "").strip()
        if not token:
            raise NotFoundError("Share link invalid or expired")
        with self._database.session() as session:
            record = session.exec(
                select(ArticleRecord).where(ArticleRecord.share_token == token)
            ).first()
            if record is None:
                raise NotFoundError("Share link invalid or expired")
            return article_from_record(record)

    def update_shared(self, token: str, changes: ArticleChanges) -> Article:
        """Edit through a share link. These edits are not recorded in history."""
        token = (token or "").strip()
        with self._database.session() as session:
            record = self._locked(session, ArticleRecord.share_token == token) if token else None
            if record is None:
                raise NotFoundError("Share link invalid or expired")
            if not changes.is_empty:
                apply_changes(record, changes)
                session.add(record)
                session.flush()
            article = article_from_record(record)
        if not changes.is_empty:
            logger.info("articles.updated_via_share", article_id=article.id)
        return article

    # Version history -------------------------------------------------------

    def list_versions(self, actor: Actor, article_id: str, limit: int = 50) -> list[ArticleVersion]:
        self._require_owner(actor, article_id)
        return self._versions.list_versions(article_id, limit=limit)

    def get_version(self, actor: Actor, article_id: str, version_id: str) -> ArticleVersion:
        self._require_owner(actor, article_id)
        return self._versions.get_version(article_id, version_id)

    def delete_version(self, actor: Actor, article_id: str, version_id: str) -> None:
        self._require_owner(actor, article_id)
        self._versions.delete_version(article_id, version_id)

    def clear_versions(self, actor: Actor, article_id: str) -> int:
        self._require_owner(actor, article_id)
        return self._versions.clear_versions_except_latest(article_id)

    def restore_version(self, actor: Actor, article_id: str, version_id: str) -> Article:
        with self._database.session() as session:
            record = self._locked(session, ArticleRecord.id == article_id)
            if record is None or not self._access.check(
                session, actor.id, actor.email, article_id, "write"
            ):
                raise NotFoundError("Article not found")
            self._versions.restore(session, record, version_id)
            session.flush()
            return article_from_record(record)

    # Internal helpers -----------------------------------------------------

    @staticmethod
    def _locked(session: Session, *criteria) -> ArticleRecord | None:
        """Row-locked read; refreshes any copy of the row already in ``session``."""
        stmt = (
            select(ArticleRecord)
            .where(*criteria)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        return session.exec(stmt).first()

    @staticmethod
    def _owned(session: Session, actor: Actor, article_id: str) -> ArticleRecord:
        record = session.get(ArticleRecord, article_id)
        if record is None or record.user_id != actor.id:
            raise NotFoundError("Article not found")
        return record

    def _require_owner(self, actor: Actor, article_id: str) -> None:
        if not self._access.is_owner(article_id, actor.id):
            raise NotFoundError("Article not found")
