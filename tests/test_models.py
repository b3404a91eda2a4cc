from writium.models import GUEST_EMAIL, Actor, ArticleChanges, Reference, dump_references, parse_references


def test_reference_coerces_scalars_and_ignores_unknown_keys() -> None:
    ref = Reference.model_validate({"title": "T", "year": 1999, "volume": None, "isbn": "x"})
    assert ref.year == "1999"
    assert ref.volume == ""
    assert ref.type == "misc"
    assert not hasattr(ref, "isbn")


def test_parse_references_is_defensive() -> None:
    assert parse_references(None) == []
    assert parse_references("{not json") == []
    assert parse_references('{"title": "not a list"}') == []
    refs = parse_references('[{"title": "Kept"}, 3, "junk", null]')
    assert [ref.title for ref in refs] == ["Kept"]


def test_dump_references_round_trips() -> None:
    refs = [Reference(type="book", title="Emma", author="Jane Austen")]
    assert parse_references(dump_references(refs)) == refs


def test_actor_guest_flag() -> None:
    assert Actor(id="g", email=GUEST_EMAIL).is_guest
    assert not Actor(id="u", email="a@x.com").is_guest


def test_article_changes_is_empty() -> None:
    assert ArticleChanges().is_empty
    assert not ArticleChanges(title="").is_empty
    assert not ArticleChanges(clear_template=True).is_empty
    assert not ArticleChanges(references=[]).is_empty
