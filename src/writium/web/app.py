"""FastAPI application exposing the write-articles REST API."""

from __future__ import annotations

import asyncio
import json
from contextlib import asynccontextmanager
from typing import Any, Optional

import structlog
from fastapi import APIRouter, Depends, FastAPI, Header, Query, Request, Response, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError

from writium.db import Database, utcnow
from writium.errors import (
    InvalidRequestError,
    NotAuthenticatedError,
    StorageUnavailableError,
    WritiumError,
    describe_storage_error,
)
from writium.log import configure_logging
from writium.models import GUEST_EMAIL, Actor, ArticleChanges, parse_references
from writium.services import (
    DOCX_MEDIA_TYPE,
    AccessControl,
    ArticleService,
    CommentService,
    DocxExporter,
    VersionStore,
)
from writium.settings import Settings, get_settings
from writium.utils import clean_uuid, is_uuid

API_PREFIX = "/api/write-articles"
APP_VERSION = "1.0.0"

logger = structlog.get_logger(__name__)


def resolve_actor(
    x_user_id: Optional[str] = Header(None),
    x_user_email: Optional[str] = Header(None),
    x_user_name: Optional[str] = Header(None),
    x_guest_id: Optional[str] = Header(None),
) -> Actor | None:
    """Identity forwarded by the fronting proxy, or the browser's guest id."""
    user_id = clean_uuid(x_user_id)
    if user_id:
        return Actor(
            id=user_id,
            email=(x_user_email or "").strip() or None,
            name=(x_user_name or "").strip() or None,
        )
    guest_id = clean_uuid(x_guest_id)
    if guest_id:
        return Actor(id=guest_id, email=GUEST_EMAIL, name="Guest")
    return None


def require_actor(actor: Actor | None = Depends(resolve_actor)) -> Actor:
    if actor is None:
        raise NotAuthenticatedError()
    return actor


def require_ids(*values: str) -> None:
    if not all(is_uuid(value) for value in values):
        raise InvalidRequestError("Invalid ID")


async def read_json_body(request: Request) -> dict[str, Any]:
    raw = await request.body()
    if not raw.strip():
        return {}
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError as exc:
        raise InvalidRequestError("Request body must be JSON", detail=str(exc)) from exc
    return payload if isinstance(payload, dict) else {}


def changes_from_body(body: dict[str, Any]) -> ArticleChanges:
    """Only keys present in the body count as changes."""
    changes = ArticleChanges()
    if "title" in body:
        changes.title = "" if body["title"] is None else str(body["title"])
    if "content" in body:
        changes.content = "" if body["content"] is None else str(body["content"])
    if "template_id" in body:
        if body["template_id"]:
            changes.template_id = str(body["template_id"])
        else:
            changes.clear_template = True
    refs = body.get("references_json", body.get("references"))
    if refs is not None or "references_json" in body or "references" in body:
        changes.references = parse_references(refs)
    return changes


def _error_response(exc: WritiumError) -> JSONResponse:
    content: dict[str, Any] = {"error": exc.message}
    if exc.detail:
        content["message"] = exc.detail
    headers = {"Retry-After": "3"} if isinstance(exc, StorageUnavailableError) else None
    return JSONResponse(status_code=exc.status_code, content=content, headers=headers)


def create_app(settings: Optional[Settings] = None, database: Optional[Database] = None) -> FastAPI:
    """Factory used by uvicorn."""
    settings = settings or get_settings()
    configure_logging(settings.log_level)
    owns_database = database is None
    database = database or Database.from_settings(settings)
    try:
        database.init_schema()
    except OperationalError as exc:
        logger.error("db.init_failed", error=describe_storage_error(exc))

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        if owns_database:
            database.dispose()
            logger.info("db.disposed")

    app = FastAPI(title="Writium", version=APP_VERSION, lifespan=lifespan)
    app.state.settings = settings
    app.state.database = database
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    access = AccessControl(database)
    versions = VersionStore(database)
    articles = ArticleService(database, access=access, versions=versions)
    comments = CommentService(database)
    exporter = DocxExporter()

    # Error mapping ---------------------------------------------------------

    @app.exception_handler(WritiumError)
    async def writium_error_handler(request: Request, exc: WritiumError) -> JSONResponse:
        if exc.status_code >= 500:
            logger.error("api.error", path=request.url.path, error=exc.message)
        return _error_response(exc)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        message = "; ".join(
            f"{'.'.join(str(loc) for loc in error.get('loc', []))}: {error.get('msg')}"
            for error in exc.errors()
        )
        return _error_response(InvalidRequestError("Invalid request", detail=message))

    @app.exception_handler(DBAPIError)
    async def storage_error_handler(request: Request, exc: DBAPIError) -> JSONResponse:
        if not isinstance(exc, OperationalError):
            logger.error("api.db_error", path=request.url.path, error=str(exc.orig or exc))
            return JSONResponse(
                status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
                content={"error": "Internal Server Error", "message": describe_storage_error(exc)},
            )
        message = describe_storage_error(exc)
        logger.error("api.storage_unavailable", path=request.url.path, error=message)
        return _error_response(StorageUnavailableError(detail=message))

    @app.exception_handler(PoolTimeoutError)
    async def pool_timeout_handler(request: Request, exc: PoolTimeoutError) -> JSONResponse:
        logger.error("api.pool_exhausted", path=request.url.path)
        return _error_response(
            StorageUnavailableError(detail="Database is busy: no free connection, retry the request.")
        )

    @app.exception_handler(Exception)
    async def unexpected_error_handler(request: Request, exc: Exception) -> JSONResponse:
        logger.exception("api.unhandled", path=request.url.path)
        return JSONResponse(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            content={"error": "Internal Server Error", "message": str(exc)},
        )

    # Service endpoints -----------------------------------------------------

    @app.get("/health")
    async def health() -> JSONResponse:
        timestamp = utcnow().isoformat().replace("+00:00", "Z")
        try:
            await asyncio.to_thread(database.ping)
        except DBAPIError as exc:
            logger.warning("health.db_unreachable", error=describe_storage_error(exc))
            return JSONResponse(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                content={"status": "error", "timestamp": timestamp, "database": "disconnected"},
            )
        return JSONResponse({"status": "ok", "timestamp": timestamp, "database": "connected"})

    @app.get("/api-info")
    async def api_info() -> dict:
        return {
            "name": "Writium",
            "version": APP_VERSION,
            "endpoints": {"articles": API_PREFIX},
        }

    # Articles ---------------------------------------------------------------

    router = APIRouter()

    @router.post("/export-docx")
    async def export_docx(request: Request) -> Response:
        body = await read_json_body(request)
        payload = await asyncio.to_thread(exporter.render, str(body.get("html") or ""))
        return Response(
            content=payload,
            media_type=DOCX_MEDIA_TYPE,
            headers={"Content-Disposition": 'attachment; filename="document.docx"'},
        )

    @router.get("")
    @router.get("/", include_in_schema=False)
    async def list_articles(
        actor: Actor = Depends(require_actor),
        project_id: Optional[str] = Query(None),
        limit: int = Query(50),
        offset: int = Query(0),
    ) -> dict:
        items, page = await asyncio.to_thread(
            articles.list_articles,
            actor,
            project_id=(project_id or "").strip() or None,
            limit=limit,
            offset=offset,
        )
        return {
            "articles": [item.model_dump(mode="json") for item in items],
            "page": page.model_dump(),
        }

    @router.get("/shared/{token}")
    async def get_shared(token: str) -> dict:
        article = await asyncio.to_thread(articles.get_shared, token)
        return {"article": article.model_dump(mode="json")}

    @router.patch("/shared/{token}")
    async def update_shared(token: str, request: Request) -> dict:
        changes = changes_from_body(await read_json_body(request))
        article = await asyncio.to_thread(articles.update_shared, token, changes)
        return {"article": article.model_dump(mode="json")}

    @router.post("", status_code=status.HTTP_201_CREATED)
    @router.post("/", status_code=status.HTTP_201_CREATED, include_in_schema=False)
    async def create_article(request: Request, actor: Actor = Depends(require_actor)) -> dict:
        body = await read_json_body(request)
        article = await asyncio.to_thread(
            articles.create_article,
            actor,
            title=str(body.get("title") if body.get("title") is not None else "Untitled document"),
            content=str(body.get("content") or ""),
            template_id=str(body["template_id"]) if body.get("template_id") else None,
            project_id=str(body.get("project_id") or "").strip() or None,
            references=parse_references(body.get("references_json", body.get("references", []))),
        )
        return {"article": article.model_dump(mode="json")}

    @router.get("/{article_id}")
    async def get_article(article_id: str, actor: Actor = Depends(require_actor)) -> dict:
        require_ids(article_id)
        article = await asyncio.to_thread(articles.get_article, actor, article_id)
        return {"article": article.model_dump(mode="json")}

    @router.patch("/{article_id}")
    async def update_article(
        article_id: str, request: Request, actor: Actor = Depends(require_actor)
    ) -> dict:
        require_ids(article_id)
        changes = changes_from_body(await read_json_body(request))
        article = await asyncio.to_thread(articles.update_article, actor, article_id, changes)
        return {"article": article.model_dump(mode="json")}

    @router.delete("/{article_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_article(article_id: str, actor: Actor = Depends(require_actor)) -> Response:
        require_ids(article_id)
        await asyncio.to_thread(articles.delete_article, actor, article_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.post("/{article_id}/share")
    async def share_article(article_id: str, actor: Actor = Depends(require_actor)) -> dict:
        require_ids(article_id)
        token = await asyncio.to_thread(articles.issue_share_token, actor, article_id)
        return {"share_token": token, "share_url": settings.share_url(token)}

    @router.delete("/{article_id}/share", status_code=status.HTTP_204_NO_CONTENT)
    async def unshare_article(article_id: str, actor: Actor = Depends(require_actor)) -> Response:
        require_ids(article_id)
        await asyncio.to_thread(articles.revoke_share_token, actor, article_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Versions ---------------------------------------------------------------

    @router.get("/{article_id}/versions")
    async def list_versions(
        article_id: str,
        limit: int = Query(50),
        actor: Actor = Depends(require_actor),
    ) -> dict:
        require_ids(article_id)
        items = await asyncio.to_thread(articles.list_versions, actor, article_id, limit)
        return {"versions": [item.model_dump(mode="json") for item in items]}

    @router.post("/{article_id}/versions/clear", status_code=status.HTTP_204_NO_CONTENT)
    async def clear_versions(article_id: str, actor: Actor = Depends(require_actor)) -> Response:
        require_ids(article_id)
        await asyncio.to_thread(articles.clear_versions, actor, article_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    @router.get("/{article_id}/versions/{version_id}")
    async def get_version(
        article_id: str, version_id: str, actor: Actor = Depends(require_actor)
    ) -> dict:
        require_ids(article_id, version_id)
        version = await asyncio.to_thread(articles.get_version, actor, article_id, version_id)
        return {"version": version.model_dump(mode="json")}

    @router.post("/{article_id}/versions/{version_id}/restore")
    async def restore_version(
        article_id: str, version_id: str, actor: Actor = Depends(require_actor)
    ) -> dict:
        require_ids(article_id, version_id)
        article = await asyncio.to_thread(articles.restore_version, actor, article_id, version_id)
        return {"article": article.model_dump(mode="json")}

    @router.delete("/{article_id}/versions/{version_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_version(
        article_id: str, version_id: str, actor: Actor = Depends(require_actor)
    ) -> Response:
        require_ids(article_id, version_id)
        await asyncio.to_thread(articles.delete_version, actor, article_id, version_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    # Comments ---------------------------------------------------------------

    @router.get("/{article_id}/comments")
    async def list_comments(article_id: str, actor: Actor = Depends(require_actor)) -> dict:
        require_ids(article_id)
        items = await asyncio.to_thread(comments.list_comments, actor, article_id)
        return {"comments": [item.model_dump(mode="json") for item in items]}

    @router.post("/{article_id}/comments", status_code=status.HTTP_201_CREATED)
    async def add_comment(
        article_id: str, request: Request, actor: Actor = Depends(require_actor)
    ) -> dict:
        require_ids(article_id)
        body = await read_json_body(request)
        comment = await asyncio.to_thread(
            comments.add_comment,
            actor,
            article_id,
            content=str(body.get("content") or ""),
            parent_id=body.get("parent_id"),
            comment_id=body.get("id"),
        )
        return {"comment": comment.model_dump(mode="json")}

    @router.delete("/{article_id}/comments/{comment_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_comment(
        article_id: str, comment_id: str, actor: Actor = Depends(require_actor)
    ) -> Response:
        require_ids(article_id, comment_id)
        await asyncio.to_thread(comments.delete_comment, actor, article_id, comment_id)
        return Response(status_code=status.HTTP_204_NO_CONTENT)

    app.include_router(router, prefix=API_PREFIX)
    return app
