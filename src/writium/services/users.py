"""User and project bookkeeping."""

from __future__ import annotations

import json

import structlog
from sqlalchemy.dialects.postgresql import insert as postgresql_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, select

from writium.db import Database, ProjectRecord, UserRecord, utcnow
from writium.errors import InvalidRequestError, NotFoundError
from writium.models import GUEST_EMAIL, Actor, Project
from writium.services.access import normalize_email, team_members

logger = structlog.get_logger(__name__)

MAX_EMAIL_LENGTH = 255
MAX_DISPLAY_NAME_LENGTH = 200

# dialects with INSERT ... ON CONFLICT DO NOTHING
_UPSERT_INSERTS = {"sqlite": sqlite_insert, "postgresql": postgresql_insert}


class UserService:
    def __init__(self, database: Database) -> None:
        self._database = database

    def ensure_user(self, actor: Actor) -> UserRecord:
        with self._database.session() as session:
            return self.ensure(session, actor)

    @staticmethod
    def ensure(session: Session, actor: Actor) -> UserRecord:
        """Insert the actor's user row unless it already exists.

        Two first requests from the same new actor may race here. The insert
        skips an id that already exists and the row is read back either way.
        """
        record = session.get(UserRecord, actor.id)
        if record is not None:
            return record
        email = actor.email or GUEST_EMAIL
        if email == GUEST_EMAIL:
            email = f"guest-{actor.id}@local"
        values = {
            "id": actor.id,
            "email": email[:MAX_EMAIL_LENGTH],
            "display_name": (actor.name or "Guest")[:MAX_DISPLAY_NAME_LENGTH],
            "created_at": utcnow(),
        }
        insert = _UPSERT_INSERTS.get(session.get_bind().dialect.name)
        if insert is not None:
            stmt = insert(UserRecord).values(**values)
            stmt = stmt.on_conflict_do_nothing(index_elements=["id"])
            created = session.exec(stmt).rowcount == 1
        else:
            created = _insert_in_savepoint(session, values)
        record = session.get(UserRecord, actor.id)
        if created:
            logger.info(
                "users.provisioned", user_id=actor.id, guest=actor.is_guest or not actor.email
            )
        return record


def _insert_in_savepoint(session: Session, values: dict) -> bool:
    try:
        with session.begin_nested():
            session.add(UserRecord(**values))
    except IntegrityError:
        return False
    return True


def _record_to_project(record: ProjectRecord) -> Project:
    return Project(
        id=record.id,
        user_id=record.user_id,
        name=record.name,
        team_members=team_members(record),
        created_at=record.created_at,
    )


class ProjectService:
    """Seeds the project/team data that access control consults."""

    def __init__(self, database: Database) -> None:
        self._database = database

    def create_project(
        self,
        *,
        owner: Actor,
        name: str,
        members: list[str] | None = None,
    ) -> Project:
        name = name.strip()
        if not name:
            raise InvalidRequestError("Project name cannot be empty")
        emails = sorted({normalize_email(member) for member in members or [] if normalize_email(member)})
        with self._database.session() as session:
            UserService.ensure(session, owner)
            record = ProjectRecord(
                user_id=owner.id,
                name=name,
                team_members_json=json.dumps(emails),
                created_at=utcnow(),
            )
            session.add(record)
            session.flush()
            project = _record_to_project(record)
        logger.info("projects.created", project_id=project.id, members=len(emails))
        return project

    def add_member(self, project_id: str, email: str) -> Project:
        email = normalize_email(email)
        if not email:
            raise InvalidRequestError("Member email cannot be empty")
        with self._database.session() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                raise NotFoundError("Project not found")
            members = set(team_members(record))
            members.add(email)
            record.team_members_json = json.dumps(sorted(members))
            session.add(record)
            project = _record_to_project(record)
        logger.info("projects.member_added", project_id=project_id)
        return project

    def get_project(self, project_id: str) -> Project:
        with self._database.session() as session:
            record = session.get(ProjectRecord, project_id)
            if record is None:
                raise NotFoundError("Project not found")
            return _record_to_project(record)

    def list_projects(self, owner_id: str | None = None) -> list[Project]:
        stmt = select(ProjectRecord).order_by(ProjectRecord.created_at.desc())
        if owner_id:
            stmt = stmt.where(ProjectRecord.user_id == owner_id)
        with self._database.session() as session:
            records = session.exec(stmt).all()
        return [_record_to_project(record) for record in records]
