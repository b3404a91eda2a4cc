import threading
from uuid import uuid4

import pytest

from writium.db import Database, UserRecord, utcnow
from writium.errors import InvalidRequestError, NotFoundError
from writium.models import GUEST_EMAIL, Actor, ArticleChanges, Reference
from writium.services import ArticleService, ProjectService, UserService
from writium.services.users import _insert_in_savepoint
from writium.settings import Settings


def _database(tmp_path) -> Database:
    database = Database.from_settings(Settings(data_dir=tmp_path))
    database.init_schema()
    return database


def _owner() -> Actor:
    return Actor(id=str(uuid4()), email="owner@example.com", name="Owner")


def test_create_and_get_article(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    refs = [Reference(type="article", author="A B", title="Paper", year=2020)]

    article = service.create_article(owner, title="Essay", content="<p>x</p>", references=refs)

    fetched = service.get_article(owner, article.id)
    assert fetched.title == "Essay"
    assert fetched.user_id == owner.id
    assert fetched.references_json[0].year == "2020"
    assert fetched.share_token is None


def test_create_ignores_malformed_project_id(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    article = service.create_article(_owner(), project_id="not-a-uuid")
    assert article.project_id is None
    assert article.title == "Untitled document"


def test_title_is_truncated(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner, title="x" * 600)
    assert len(article.title) == 500

    updated = service.update_article(owner, article.id, ArticleChanges(title="y" * 501))
    assert updated.title == "y" * 500


def test_get_missing_or_foreign_article_is_not_found(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    article = service.create_article(_owner())

    with pytest.raises(NotFoundError):
        service.get_article(_owner(), article.id)
    with pytest.raises(NotFoundError):
        service.get_article(_owner(), str(uuid4()))


def test_noop_update_leaves_history_untouched(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner, title="Same")

    unchanged = service.update_article(owner, article.id, ArticleChanges())

    assert unchanged.updated_at == article.updated_at
    assert service.list_versions(owner, article.id) == []


def test_update_applies_only_present_fields(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner, title="T", content="C", template_id="tpl")

    updated = service.update_article(owner, article.id, ArticleChanges(content="C2"))
    assert updated.title == "T"
    assert updated.template_id == "tpl"
    assert updated.content == "C2"

    cleared = service.update_article(owner, article.id, ArticleChanges(clear_template=True))
    assert cleared.template_id is None


def test_delete_article_is_owner_only(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner)
    service.update_article(owner, article.id, ArticleChanges(title="b"))

    with pytest.raises(NotFoundError):
        service.delete_article(_owner(), article.id)
    service.delete_article(owner, article.id)

    assert service.find_article(article.id) is None
    assert service.versions.count_versions(article.id) == 0


def test_listing_is_scoped_ordered_and_paginated(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    first = service.create_article(owner, title="first")
    service.create_article(owner, title="second")
    service.create_article(_owner(), title="someone else")
    service.update_article(owner, first.id, ArticleChanges(content="touched"))

    items, page = service.list_articles(owner)
    assert [item.title for item in items] == ["first", "second"]
    assert page.total == 2

    items, page = service.list_articles(owner, limit=1, offset=1)
    assert [item.title for item in items] == ["second"]
    assert (page.limit, page.offset, page.total) == (1, 1, 2)


def test_non_positive_limit_returns_one_item(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner, title="only")
    service.create_article(owner, title="other")
    for title in ("a", "b"):
        service.update_article(owner, article.id, ArticleChanges(title=title))

    for limit in (0, -5):
        items, page = service.list_articles(owner, limit=limit)
        assert len(items) == 1
        assert page.limit == 1
        assert len(service.list_versions(owner, article.id, limit=limit)) == 1


def test_share_token_flow(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner, title="Shared", content="original")

    token = service.issue_share_token(owner, article.id)
    assert len(token) == 32
    assert service.get_shared(token).id == article.id

    edited = service.update_shared(token, ArticleChanges(title="Edited via link"))
    assert edited.title == "Edited via link"
    assert edited.content == "original"
    assert service.list_versions(owner, article.id) == []

    second = service.issue_share_token(owner, article.id)
    assert second != token
    with pytest.raises(NotFoundError):
        service.get_shared(token)

    service.revoke_share_token(owner, article.id)
    with pytest.raises(NotFoundError):
        service.get_shared(second)
    with pytest.raises(NotFoundError):
        service.update_shared(second, ArticleChanges(title="nope"))
    with pytest.raises(NotFoundError):
        service.get_shared("")


def test_revoke_by_non_owner_is_not_found(tmp_path) -> None:
    service = ArticleService(_database(tmp_path))
    owner = _owner()
    article = service.create_article(owner)
    token = service.issue_share_token(owner, article.id)

    with pytest.raises(NotFoundError):
        service.revoke_share_token(_owner(), article.id)
    assert service.get_shared(token).id == article.id


def test_guest_users_are_provisioned_with_unique_email(tmp_path) -> None:
    database = _database(tmp_path)
    guest = Actor(id=str(uuid4()), email=GUEST_EMAIL, name="Guest")
    ArticleService(database).create_article(guest)

    with database.session() as session:
        record = session.get(UserRecord, guest.id)
        assert record.email == f"guest-{guest.id}@local"
        assert record.display_name == "Guest"

    again = UserService(database).ensure_user(guest)
    assert again.id == guest.id


def test_concurrent_first_requests_provision_one_user(tmp_path) -> None:
    database = _database(tmp_path)
    actor = Actor(id=str(uuid4()), email="new@example.com", name="New")
    results: list[UserRecord] = []
    errors: list[Exception] = []

    def provision() -> None:
        try:
            results.append(UserService(database).ensure_user(actor))
        except Exception as exc:
            errors.append(exc)

    with database.session() as session:
        UserService.ensure(session, actor)
        worker = threading.Thread(target=provision)
        worker.start()
        worker.join(timeout=0.5)
    worker.join()

    assert errors == []
    assert [record.id for record in results] == [actor.id]
    assert results[0].email == "new@example.com"


def test_savepoint_insert_skips_existing_user(tmp_path) -> None:
    database = _database(tmp_path)
    actor = _owner()
    UserService(database).ensure_user(actor)
    values = {"id": actor.id, "email": "dup@example.com", "display_name": "Dup", "created_at": utcnow()}

    with database.session() as session:
        assert _insert_in_savepoint(session, values) is False
        assert session.get(UserRecord, actor.id).email == "owner@example.com"


def test_project_service(tmp_path) -> None:
    database = _database(tmp_path)
    owner = _owner()
    projects = ProjectService(database)

    project = projects.create_project(owner=owner, name=" Thesis ", members=[" B@X.com", "b@x.com", ""])
    assert project.name == "Thesis"
    assert project.team_members == ["b@x.com"]

    project = projects.add_member(project.id, "C@x.com")
    assert project.team_members == ["b@x.com", "c@x.com"]
    assert projects.get_project(project.id).team_members == ["b@x.com", "c@x.com"]
    assert [p.id for p in projects.list_projects(owner_id=owner.id)] == [project.id]

    with pytest.raises(InvalidRequestError):
        projects.create_project(owner=owner, name="  ")
    with pytest.raises(NotFoundError):
        projects.add_member(str(uuid4()), "d@x.com")
