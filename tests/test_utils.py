from uuid import uuid4

from writium.utils import clean_uuid, is_uuid, slugify


def test_is_uuid_accepts_canonical_ids() -> None:
    value = str(uuid4())
    assert is_uuid(value)
    assert is_uuid(value.upper())
    assert is_uuid(f"  {value} ")


def test_is_uuid_rejects_other_values() -> None:
    assert not is_uuid("not-a-uuid")
    assert not is_uuid("00000000-0000-0000-0000-000000000000")
    assert not is_uuid(None)
    assert not is_uuid(42)


def test_clean_uuid() -> None:
    value = str(uuid4())
    assert clean_uuid(f" {value}\n") == value
    assert clean_uuid("nope") is None


def test_slugify_basic() -> None:
    assert slugify("Neuro Imaging & Behavior") == "neuro-imaging-behavior"
    assert slugify("Ébauche") == "ebauche"
    assert slugify("***") == "document"
