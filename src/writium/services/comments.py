"""Services for owner-only article comments."""

from __future__ import annotations


import structlog
from sqlalchemy import delete
from sqlmodel import select

from writium.db import CommentRecord, Database, utcnow
from writium.errors import ForbiddenError, InvalidRequestError, NotFoundError
from writium.models import Actor, Comment
from writium.services.access import AccessControl
from writium.services.users import MAX_DISPLAY_NAME_LENGTH, UserService
from writium.utils import clean_uuid

logger = structlog.get_logger(__name__)


def comment_from_record(record: CommentRecord) -> Comment:
    return Comment(
        id=record.id,
        article_id=record.article_id,
        user_id=record.user_id,
        author_display=record.author_display,
        content=record.content,
        parent_id=record.parent_id,
        created_at=record.created_at,
    )


class CommentService:
    """Comments are visible to, and postable by, the article owner only.

    The author label is captured when the comment is posted and never follows
    later profile changes. Deleting a comment leaves its replies in storage.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def list_comments(self, actor: Actor, article_id: str) -> list[Comment]:
        stmt = (
            select(CommentRecord)
            .where(CommentRecord.article_id == article_id)
            .order_by(CommentRecord.created_at.asc())
        )
        with self._database.session() as session:
            if not AccessControl.owns(session, article_id, actor.id):
                raise NotFoundError("Article not found")
            records = session.exec(stmt).all()
        return [comment_from_record(record) for record in records]

    def add_comment(
        self,
        actor: Actor,
        article_id: str,
        *,
        content: str,
        parent_id: str | None = None,
        comment_id: str | None = None,
    ) -> Comment:
        body = (content or "").strip()
        parent_id = clean_uuid(parent_id)
        comment_id = clean_uuid(comment_id)
        with self._database.session() as session:
            if not AccessControl.owns(session, article_id, actor.id):
                raise NotFoundError("Article not found")
            if not body:
                raise InvalidRequestError("Comment content cannot be empty")
            if parent_id and self._find(session, article_id, parent_id) is None:
                raise InvalidRequestError("Parent comment not found on this article")
            if comment_id and session.get(CommentRecord, comment_id) is not None:
                raise InvalidRequestError("Comment ID already exists")
            UserService.ensure(session, actor)
            record = CommentRecord(
                article_id=article_id,
                user_id=actor.id,
                author_display=(actor.name or actor.email or "User")[:MAX_DISPLAY_NAME_LENGTH],
                content=body,
                parent_id=parent_id,
                created_at=utcnow(),
            )
            if comment_id:
                record.id = comment_id
            session.add(record)
            session.flush()
            comment = comment_from_record(record)
        logger.info("comments.added", article_id=article_id, comment_id=comment.id)
        return comment

    def delete_comment(self, actor: Actor, article_id: str, comment_id: str) -> None:
        """Allowed for the article owner and for the comment's own author."""
        with self._database.session() as session:
            is_owner = AccessControl.owns(session, article_id, actor.id)
            record = self._find(session, article_id, comment_id)
            if record is None:
                raise NotFoundError("Comment not found")
            if not is_owner and record.user_id != actor.id:
                raise ForbiddenError("Only the article owner or comment author can delete")
            session.exec(
                delete(CommentRecord).where(
                    CommentRecord.id == comment_id, CommentRecord.article_id == article_id
                )
            )
        logger.info("comments.deleted", article_id=article_id, comment_id=comment_id)

    @staticmethod
    def _find(session, article_id: str, comment_id: str) -> CommentRecord | None:
        return session.exec(
            select(CommentRecord).where(
                CommentRecord.id == comment_id, CommentRecord.article_id == article_id
            )
        ).first()
