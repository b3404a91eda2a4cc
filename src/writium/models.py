"""Core data models used throughout the Writium application."""

from __future__ import annotations

import json
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator

REFERENCE_TYPES = ("article", "book", "inproceedings", "misc")
GUEST_EMAIL = "guest@local"


class Reference(BaseModel):
    """A bibliographic citation attached to an article."""

    model_config = ConfigDict(extra="ignore")

    type: str = "misc"
    author: str = ""
    title: str = ""
    year: str = ""
    journal: str = ""
    volume: str = ""
    pages: str = ""
    publisher: str = ""
    doi: str = ""
    url: str = ""
    booktitle: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_scalar(cls, value: Any) -> Any:
        if value is None:
            return ""
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            return str(value)
        return value


def parse_references(raw: Any) -> list[Reference]:
    """Decode a stored or submitted reference list, dropping anything malformed."""
    if isinstance(raw, (str, bytes)):
        try:
            raw = json.loads(raw or "[]")
        except json.JSONDecodeError:
            return []
    if not isinstance(raw, list):
        return []
    references: list[Reference] = []
    for item in raw:
        if not isinstance(item, dict):
            continue
        try:
            references.append(Reference.model_validate(item))
        except ValueError:
            continue
    return references


def dump_references(references: list[Reference]) -> str:
    return json.dumps([ref.model_dump() for ref in references])


class Actor(BaseModel):
    """The authenticated or guest identity making a request."""

    id: str
    email: str | None = None
    name: str | None = None

    @property
    def is_guest(self) -> bool:
        return self.email == GUEST_EMAIL


class Article(BaseModel):
    id: str
    user_id: str
    project_id: str | None = None
    title: str
    content: str = ""
    template_id: str | None = None
    references_json: list[Reference] = Field(default_factory=list)
    created_at: datetime
    updated_at: datetime
    share_token: str | None = None


class ArticleVersion(BaseModel):
    id: str
    article_id: str
    title: str
    content: str = ""
    references_json: list[Reference] = Field(default_factory=list)
    created_at: datetime


class Comment(BaseModel):
    id: str
    article_id: str
    user_id: str
    author_display: str | None = None
    content: str
    parent_id: str | None = None
    created_at: datetime


class Project(BaseModel):
    id: str
    user_id: str
    name: str
    team_members: list[str] = Field(default_factory=list)
    created_at: datetime


class Page(BaseModel):
    limit: int
    offset: int
    total: int


class ArticleChanges(BaseModel):
    """Mutable article fields present in an update; ``None`` means absent."""

    title: str | None = None
    content: str | None = None
    template_id: str | None = None
    clear_template: bool = False
    references: list[Reference] | None = None

    @property
    def is_empty(self) -> bool:
        return (
            self.title is None
            and self.content is None
            and self.template_id is None
            and not self.clear_template
            and self.references is None
        )
