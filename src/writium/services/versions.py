"""Capped, append-only history of article snapshots."""

from __future__ import annotations

from datetime import timedelta

import structlog
from sqlalchemy import delete, func
from sqlmodel import Session, select

from writium.db import ArticleRecord, ArticleVersionRecord, Database, utcnow
from writium.errors import NotFoundError
from writium.models import ArticleVersion, parse_references

logger = structlog.get_logger(__name__)

MAX_VERSIONS_PER_ARTICLE = 100
MAX_LIST_LIMIT = 100


def version_from_record(record: ArticleVersionRecord) -> ArticleVersion:
    return ArticleVersion(
        id=record.id,
        article_id=record.article_id,
        title=record.title,
        content=record.content or "",
        references_json=parse_references(record.references_json),
        created_at=record.created_at,
    )


class VersionStore:
    def __init__(self, database: Database, max_versions: int = MAX_VERSIONS_PER_ARTICLE) -> None:
        self._database = database
        self._max_versions = max_versions

    @property
    def max_versions(self) -> int:
        return self._max_versions

    def snapshot(self, session: Session, article: ArticleRecord) -> ArticleVersionRecord:
        """Capture ``article`` as it is now, within the caller's transaction."""
        created_at = utcnow()
        newest = session.exec(
            select(func.max(ArticleVersionRecord.created_at)).where(
                ArticleVersionRecord.article_id == article.id
            )
        ).one()
        if newest is not None and created_at <= newest:
            # keep "most recent" a strict order even when the clock stalls
            created_at = newest + timedelta(microseconds=1)
        version = ArticleVersionRecord(
            article_id=article.id,
            title=article.title,
            content=article.content or "",
            references_json=article.references_json or "[]",
            created_at=created_at,
        )
        session.add(version)
        session.flush()
        pruned = self._prune(session, article.id, keep=self._max_versions)
        logger.info("versions.snapshot", article_id=article.id, version_id=version.id, pruned=pruned)
        return version

    def snapshot_before_update(self, article_id: str) -> ArticleVersion:
        with self._database.session() as session:
            article = session.get(ArticleRecord, article_id)
            if article is None:
                raise NotFoundError("Article not found")
            return version_from_record(self.snapshot(session, article))

    def count_versions(self, article_id: str) -> int:
        with self._database.session() as session:
            return self._count(session, article_id)

    def list_versions(self, article_id: str, limit: int = 50) -> list[ArticleVersion]:
        limit = max(1, min(limit, MAX_LIST_LIMIT))
        stmt = (
            select(ArticleVersionRecord)
            .where(ArticleVersionRecord.article_id == article_id)
            .order_by(ArticleVersionRecord.created_at.desc())
            .limit(limit)
        )
        with self._database.session() as session:
            records = session.exec(stmt).all()
        return [version_from_record(record) for record in records]

    def get_version(self, article_id: str, version_id: str) -> ArticleVersion:
        with self._database.session() as session:
            record = self._find(session, article_id, version_id)
            return version_from_record(record)

    def restore(self, session: Session, article: ArticleRecord, version_id: str) -> ArticleRecord:
        """Copy a version onto the live article; no snapshot of the replaced state."""
        version = self._find(session, article.id, version_id)
        article.title = version.title
        article.content = version.content
        article.references_json = version.references_json or "[]"
        article.updated_at = utcnow()
        session.add(article)
        logger.info("versions.restored", article_id=article.id, version_id=version_id)
        return article

    def restore_version(self, article_id: str, version_id: str) -> ArticleRecord:
        with self._database.session() as session:
            article = session.get(ArticleRecord, article_id)
            if article is None:
                raise NotFoundError("Article not found")
            return self.restore(session, article, version_id)

    def delete_version(self, article_id: str, version_id: str) -> None:
        with self._database.session() as session:
            result = session.exec(
                delete(ArticleVersionRecord).where(
                    ArticleVersionRecord.id == version_id,
                    ArticleVersionRecord.article_id == article_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError("Version not found")
        logger.info("versions.deleted", article_id=article_id, version_id=version_id)

    def clear_versions_except_latest(self, article_id: str) -> int:
        with self._database.session() as session:
            removed = self._prune(session, article_id, keep=1)
        logger.info("versions.cleared", article_id=article_id, removed=removed)
        return removed

    def delete_all(self, session: Session, article_id: str) -> None:
        session.exec(delete(ArticleVersionRecord).where(ArticleVersionRecord.article_id == article_id))

    # Internal helpers -----------------------------------------------------

    @staticmethod
    def _count(session: Session, article_id: str) -> int:
        return session.exec(
            select(func.count()).select_from(ArticleVersionRecord).where(
                ArticleVersionRecord.article_id == article_id
            )
        ).one()

    def _prune(self, session: Session, article_id: str, *, keep: int) -> int:
        if self._count(session, article_id) <= keep:
            return 0
        keep_ids = (
            select(ArticleVersionRecord.id)
            .where(ArticleVersionRecord.article_id == article_id)
            .order_by(ArticleVersionRecord.created_at.desc())
            .limit(keep)
        )
        result = session.exec(
            delete(ArticleVersionRecord).where(
                ArticleVersionRecord.article_id == article_id,
                ArticleVersionRecord.id.not_in(keep_ids),
            )
        )
        return result.rowcount or 0

    @staticmethod
    def _find(session: Session, article_id: str, version_id: str) -> ArticleVersionRecord:
        record = session.exec(
            select(ArticleVersionRecord).where(
                ArticleVersionRecord.id == version_id,
                ArticleVersionRecord.article_id == article_id,
            )
        ).first()
        if record is None:
            raise NotFoundError("Version not found")
        return record
