"""Read/write authorization for articles."""

from __future__ import annotations

import json
from typing import Literal

from sqlmodel import Session, select

from writium.db import ArticleRecord, Database, ProjectRecord

AccessMode = Literal["read", "write"]


def normalize_email(value: str | None) -> str:
    return (value or "").strip().lower()


def team_members(project: ProjectRecord) -> list[str]:
    try:
        members = json.loads(project.team_members_json or "[]")
    except json.JSONDecodeError:
        return []
    if not isinstance(members, list):
        return []
    return [normalize_email(str(member)) for member in members]


def is_team_member(project: ProjectRecord, email: str | None) -> bool:
    email = normalize_email(email)
    return bool(email) and email in team_members(project)


class AccessControl:
    """Decides whether an actor may see or edit an article.

    Owners always pass. Anyone else passes only when the article belongs to a
    project whose team list contains their email. Read and write are not
    distinguished: a collaborator who can read can also edit.
    """

    def __init__(self, database: Database) -> None:
        self._database = database

    def can_access(
        self,
        actor_id: str,
        actor_email: str | None,
        article_id: str,
        mode: AccessMode = "read",
    ) -> bool:
        with self._database.session() as session:
            return self.check(session, actor_id, actor_email, article_id, mode)

    def check(
        self,
        session: Session,
        actor_id: str,
        actor_email: str | None,
        article_id: str,
        mode: AccessMode = "read",
    ) -> bool:
        article = session.get(ArticleRecord, article_id)
        if article is None:
            return False
        if article.user_id == actor_id:
            return True
        if not article.project_id or not normalize_email(actor_email):
            return False
        project = session.get(ProjectRecord, article.project_id)
        if project is None:
            return False
        return is_team_member(project, actor_email)

    def is_owner(self, article_id: str, actor_id: str) -> bool:
        with self._database.session() as session:
            return self.owns(session, article_id, actor_id)

    @staticmethod
    def owns(session: Session, article_id: str, actor_id: str) -> bool:
        stmt = select(ArticleRecord.id).where(
            ArticleRecord.id == article_id, ArticleRecord.user_id == actor_id
        )
        return session.exec(stmt).first() is not None

    def project_author_for(
        self, actor_id: str, actor_email: str | None, project_id: str
    ) -> str | None:
        """Whose articles the actor sees in a project, or ``None`` without access."""
        with self._database.session() as session:
            project = session.get(ProjectRecord, project_id)
            if project is None:
                return None
            if project.user_id == actor_id:
                return actor_id
            if is_team_member(project, actor_email):
                return project.user_id
            return None
