"""Service abstractions for the Writium application."""

from .access import AccessControl, normalize_email
from .articles import ArticleService
from .comments import CommentService
from .docx_export import DOCX_MEDIA_TYPE, DocxExporter
from .users import ProjectService, UserService
from .versions import MAX_VERSIONS_PER_ARTICLE, VersionStore

__all__ = [
    "AccessControl",
    "normalize_email",
    "ArticleService",
    "CommentService",
    "DocxExporter",
    "DOCX_MEDIA_TYPE",
    "ProjectService",
    "UserService",
    "VersionStore",
    "MAX_VERSIONS_PER_ARTICLE",
]
