from datetime import datetime, timedelta, timezone
from uuid import uuid4

from writium.db import ArticleRecord, Database, UserRecord
from writium.models import Actor, ArticleChanges
from writium.services import ArticleService
from writium.settings import Settings


def _database(tmp_path) -> Database:
    database = Database.from_settings(Settings(data_dir=tmp_path))
    database.init_schema()
    return database


def test_timestamps_are_stored_and_read_as_utc(tmp_path) -> None:
    database = _database(tmp_path)
    service = ArticleService(database)
    owner = Actor(id=str(uuid4()), email="a@x.com")
    article = service.create_article(owner, title="a")
    service.update_article(owner, article.id, ArticleChanges(title="b"))

    fetched = service.get_article(owner, article.id)
    (version,) = service.list_versions(owner, article.id)
    for stamp in (fetched.created_at, fetched.updated_at, version.created_at):
        assert stamp.utcoffset() == timedelta(0)
    assert fetched.updated_at >= fetched.created_at


def test_naive_and_offset_values_are_normalised_to_utc(tmp_path) -> None:
    database = _database(tmp_path)
    naive_id, offset_id = str(uuid4()), str(uuid4())
    with database.session() as session:
        session.add(UserRecord(id=naive_id, email="n@x.com", created_at=datetime(2024, 1, 1, 12, 0)))
        session.add(
            UserRecord(
                id=offset_id,
                email="o@x.com",
                created_at=datetime(2024, 1, 1, 14, 0, tzinfo=timezone(timedelta(hours=2))),
            )
        )

    with database.session() as session:
        naive = session.get(UserRecord, naive_id)
        offset = session.get(UserRecord, offset_id)
    expected = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    assert naive.created_at == expected
    assert offset.created_at == expected
    assert offset.created_at.utcoffset() == timedelta(0)


def test_locked_read_refreshes_row_already_loaded(tmp_path) -> None:
    database = _database(tmp_path)
    owner = Actor(id=str(uuid4()), email="a@x.com")
    article = ArticleService(database).create_article(owner, title="before")

    with database.session() as session:
        assert session.get(ArticleRecord, article.id).title == "before"
        with database.session() as other:
            record = other.get(ArticleRecord, article.id)
            record.title = "after"
            other.add(record)

        locked = ArticleService._locked(session, ArticleRecord.id == article.id)

    assert locked.title == "after"


def test_stalled_clock_still_orders_versions(tmp_path, monkeypatch) -> None:
    database = _database(tmp_path)
    service = ArticleService(database)
    owner = Actor(id=str(uuid4()), email="a@x.com")
    article = service.create_article(owner, title="a")
    frozen = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)
    monkeypatch.setattr("writium.services.versions.utcnow", lambda: frozen)

    for title in ("b", "c", "d"):
        service.update_article(owner, article.id, ArticleChanges(title=title))

    stamps = [version.created_at for version in service.list_versions(owner, article.id)]
    assert stamps == [frozen + timedelta(microseconds=n) for n in (2, 1, 0)]
