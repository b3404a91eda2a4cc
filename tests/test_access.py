from uuid import uuid4

import pytest

from writium.db import Database, ProjectRecord
from writium.errors import NotFoundError
from writium.models import Actor, ArticleChanges
from writium.services import AccessControl, ArticleService, ProjectService
from writium.settings import Settings


def _database(tmp_path) -> Database:
    database = Database.from_settings(Settings(data_dir=tmp_path))
    database.init_schema()
    return database


def _actor(email: str | None) -> Actor:
    return Actor(id=str(uuid4()), email=email)


def test_owner_and_team_member_matrix(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    member = _actor("b@x.com")
    stranger = _actor("c@x.com")
    project = ProjectService(database).create_project(owner=owner, name="Thesis", members=["B@X.com"])
    articles = ArticleService(database)
    shared = articles.create_article(owner, title="Shared", project_id=project.id)
    private = articles.create_article(owner, title="Private")
    access = AccessControl(database)

    assert access.can_access(owner.id, owner.email, shared.id)
    assert access.can_access(owner.id, None, private.id, "write")
    assert access.can_access(member.id, " B@x.COM ", shared.id, "write")
    assert not access.can_access(member.id, member.email, private.id)
    assert not access.can_access(stranger.id, stranger.email, shared.id)
    assert not access.can_access(member.id, None, shared.id)
    assert not access.can_access(owner.id, owner.email, str(uuid4()))


def test_article_in_missing_project_is_owner_only(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    article = ArticleService(database).create_article(owner, title="Orphan", project_id=str(uuid4()))
    access = AccessControl(database)

    assert access.can_access(owner.id, owner.email, article.id)
    assert not access.can_access(str(uuid4()), "b@x.com", article.id)


def test_malformed_team_list_grants_nothing(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    project = ProjectService(database).create_project(owner=owner, name="Broken")
    with database.session() as session:
        record = session.get(ProjectRecord, project.id)
        record.team_members_json = "{not json"
        session.add(record)
    article = ArticleService(database).create_article(owner, title="T", project_id=project.id)

    assert not AccessControl(database).can_access(str(uuid4()), "b@x.com", article.id)


def test_is_owner(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    article = ArticleService(database).create_article(owner)
    access = AccessControl(database)

    assert access.is_owner(article.id, owner.id)
    assert not access.is_owner(article.id, str(uuid4()))


def test_collaborator_edits_but_cannot_manage_history(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    member = _actor("b@x.com")
    project = ProjectService(database).create_project(owner=owner, name="Team", members=["b@x.com"])
    articles = ArticleService(database)
    article = articles.create_article(owner, title="Draft", project_id=project.id)

    assert articles.get_article(member, article.id).title == "Draft"
    updated = articles.update_article(member, article.id, ArticleChanges(title="Edited by B"))
    assert updated.title == "Edited by B"
    assert updated.user_id == owner.id

    with pytest.raises(NotFoundError):
        articles.list_versions(member, article.id)
    with pytest.raises(NotFoundError):
        articles.clear_versions(member, article.id)
    with pytest.raises(NotFoundError):
        articles.delete_article(member, article.id)
    with pytest.raises(NotFoundError):
        articles.issue_share_token(member, article.id)

    (version,) = articles.list_versions(owner, article.id)
    restored = articles.restore_version(member, article.id, version.id)
    assert restored.title == "Draft"


def test_project_listing_shows_owner_articles_to_members(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _actor("a@x.com")
    member = _actor("b@x.com")
    stranger = _actor("c@x.com")
    project = ProjectService(database).create_project(owner=owner, name="Team", members=["b@x.com"])
    articles = ArticleService(database)
    articles.create_article(owner, title="In project", project_id=project.id)
    articles.create_article(owner, title="Outside")

    items, page = articles.list_articles(member, project_id=project.id)
    assert [item.title for item in items] == ["In project"]
    assert page.total == 1

    items, page = articles.list_articles(stranger, project_id=project.id)
    assert items == []
    assert page.total == 0

    items, _ = articles.list_articles(member)
    assert items == []
