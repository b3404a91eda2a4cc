"""Command-line interface for the Writium project."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Optional
from uuid import uuid4

import structlog
import typer
from rich.console import Console
from rich.table import Table
from sqlalchemy.exc import OperationalError

from writium import citations
from writium.db import Database
from writium.errors import WritiumError, describe_storage_error
from writium.log import configure_logging
from writium.models import Actor
from writium.services import ArticleService, DocxExporter, ProjectService, VersionStore
from writium.settings import Settings, get_settings
from writium.utils import is_uuid, slugify

console = Console()
app = typer.Typer(help="Writium – document writing backend")
cite_app = typer.Typer(help="Citation parsing and formatting")
project_app = typer.Typer(help="Projects and team members")
versions_app = typer.Typer(help="Article version history")
app.add_typer(cite_app, name="cite")
app.add_typer(project_app, name="project")
app.add_typer(versions_app, name="versions")
logger = structlog.get_logger(__name__)


@app.callback()
def main() -> None:
    configure_logging(Settings.load().log_level)


def _open_database(settings: Settings) -> Database:
    database = Database.from_settings(settings)
    try:
        database.init_schema()
    except OperationalError as exc:
        message = describe_storage_error(exc)
        logger.error("db.init_failed", error=message)
        console.print(f"[red]{message}[/red]")
        raise typer.Exit(code=1) from exc
    return database


def _require_uuid(value: str, label: str) -> str:
    if not is_uuid(value):
        raise typer.BadParameter(f"{label} must be a UUID.")
    return value.strip()


@app.command("init-db")
def init_db() -> None:
    """Create the database tables if they are missing."""
    settings = get_settings()
    database = _open_database(settings)
    database.dispose()
    console.print(
        f"[green]Database ready:[/green] {database.engine.url.render_as_string(hide_password=True)}"
    )


@app.command()
def config(
    json_output: bool = typer.Option(False, "--json", help="Output settings as JSON"),
) -> None:
    """Display the resolved settings."""
    settings = get_settings()
    if json_output:
        typer.echo(settings.model_dump_json(indent=2))
        return
    table = Table(title="Writium Settings")
    table.add_column("Key")
    table.add_column("Value", overflow="fold")
    for key, value in settings.model_dump().items():
        table.add_row(key, str(value))
    console.print(table)


@app.command()
def doctor() -> None:
    """Environment checks (Python, deps, database)."""
    checks: list[tuple[str, bool, str]] = []
    checks.append(("python>=3.10", sys.version_info >= (3, 10), sys.version.split()[0]))
    for mod in ("fastapi", "sqlmodel", "structlog", "docx", "bs4"):
        try:
            module = __import__(mod)
            ver = getattr(module, "__version__", "unknown")
            checks.append((f"{mod} import", True, ver))
        except ImportError as exc:  # pragma: no cover
            checks.append((f"{mod} import", False, str(exc)))
    settings = get_settings()
    database = Database.from_settings(settings)
    try:
        database.ping()
        checks.append(("database reachable", True, settings.resolved_database_url))
    except OperationalError as exc:
        checks.append(("database reachable", False, describe_storage_error(exc)))
    finally:
        database.dispose()

    passed = True
    for name, ok, note in checks:
        status = "[green]OK[/green]" if ok else "[red]FAIL[/red]"
        console.print(f"{status} {name} ({note})")
        passed = passed and ok
    if not passed:
        raise typer.Exit(code=1)
    console.print("[green]Doctor checks passed.[/green]")


@app.command("export-docx")
def export_docx(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Destination .docx file"),
) -> None:
    """Convert an HTML document into DOCX."""
    html = source.read_text(encoding="utf-8")
    try:
        payload = DocxExporter().render(html)
    except WritiumError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    destination = output or source.with_name(f"{slugify(source.stem)}.docx")
    destination.parent.mkdir(parents=True, exist_ok=True)
    destination.write_bytes(payload)
    console.print(f"[green]Wrote {len(payload)} bytes to {destination}")


@cite_app.command("parse")
def cite_parse(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    json_output: bool = typer.Option(False, "--json", help="Output references as JSON"),
) -> None:
    """Parse BibTeX or RIS text into reference records."""
    refs = citations.parse_citations(source.read_text(encoding="utf-8"))
    if not refs:
        console.print("[yellow]No BibTeX or RIS entries with an author or title were found.")
        raise typer.Exit(code=1)
    if json_output:
        typer.echo(json.dumps([ref.model_dump() for ref in refs], indent=2))
        return
    table = Table(title=f"Parsed references ({len(refs)})")
    table.add_column("#")
    table.add_column("Type")
    table.add_column("Author", overflow="fold")
    table.add_column("Title", overflow="fold")
    table.add_column("Year")
    for index, ref in enumerate(refs, start=1):
        table.add_row(str(index), ref.type, ref.author or "—", ref.title or "—", ref.year or "—")
    console.print(table)


@cite_app.command("convert")
def cite_convert(
    source: Path = typer.Argument(..., exists=True, dir_okay=False, readable=True),
    style: str = typer.Option("apa", "--style", "-s", help="bibtex, apa or ieee", case_sensitive=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Render a BibTeX/RIS file as a reference list."""
    fmt = style.lower()
    if fmt not in citations.STYLES:
        raise typer.BadParameter("Style must be 'bibtex', 'apa' or 'ieee'.")
    refs = citations.parse_citations(source.read_text(encoding="utf-8"))
    if not refs:
        console.print("[yellow]No BibTeX or RIS entries with an author or title were found.")
        raise typer.Exit(code=1)
    _emit(citations.render_reference_list(refs, fmt), output, fmt)


@app.command()
def references(
    article_id: str = typer.Argument(..., help="Article UUID"),
    style: str = typer.Option("apa", "--style", "-s", help="bibtex, apa or ieee", case_sensitive=False),
    output: Optional[Path] = typer.Option(None, "--output", "-o", help="Write to file"),
) -> None:
    """Print the reference list of a stored article."""
    fmt = style.lower()
    if fmt not in citations.STYLES:
        raise typer.BadParameter("Style must be 'bibtex', 'apa' or 'ieee'.")
    article_id = _require_uuid(article_id, "Article ID")
    database = _open_database(get_settings())
    try:
        article = ArticleService(database).find_article(article_id)
    finally:
        database.dispose()
    if article is None:
        console.print("[red]Article not found.[/red]")
        raise typer.Exit(code=1)
    if not article.references_json:
        console.print("[yellow]Article has no references.")
        return
    _emit(citations.render_reference_list(article.references_json, fmt), output, fmt)


def _emit(payload: str, output: Optional[Path], fmt: str) -> None:
    if output:
        output.write_text(payload + "\n", encoding="utf-8")
        console.print(f"[green]Wrote {fmt} references to {output}")
    else:
        typer.echo(payload)


@project_app.command("create")
def project_create(
    name: str = typer.Option(..., help="Project name"),
    owner_id: Optional[str] = typer.Option(None, help="Owner user UUID (generated when omitted)"),
    owner_email: Optional[str] = typer.Option(None, help="Owner email"),
    member: Optional[list[str]] = typer.Option(None, "--member", "-m", help="Team member email"),
) -> None:
    """Create a project whose team members may edit the owner's articles."""
    owner = Actor(
        id=_require_uuid(owner_id, "Owner ID") if owner_id else str(uuid4()),
        email=owner_email,
    )
    database = _open_database(get_settings())
    try:
        project = ProjectService(database).create_project(owner=owner, name=name, members=list(member or []))
    except WritiumError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        database.dispose()
    console.print(f"[green]Created project[/green] {project.id} (owner {project.user_id})")


@project_app.command("add-member")
def project_add_member(
    project_id: str = typer.Argument(..., help="Project UUID"),
    email: str = typer.Argument(..., help="Member email"),
) -> None:
    project_id = _require_uuid(project_id, "Project ID")
    database = _open_database(get_settings())
    try:
        project = ProjectService(database).add_member(project_id, email)
    except WritiumError as exc:
        console.print(f"[red]{exc.message}[/red]")
        raise typer.Exit(code=1) from exc
    finally:
        database.dispose()
    console.print(f"[green]{project.name}[/green]: {len(project.team_members)} member(s)")


@project_app.command("list")
def project_list(owner_id: Optional[str] = typer.Option(None, help="Filter by owner UUID")) -> None:
    database = _open_database(get_settings())
    try:
        projects = ProjectService(database).list_projects(owner_id=owner_id)
    finally:
        database.dispose()
    if not projects:
        console.print("[yellow]No projects found.")
        return
    table = Table(title="Projects")
    table.add_column("ID")
    table.add_column("Name")
    table.add_column("Owner")
    table.add_column("Members", overflow="fold")
    for project in projects:
        table.add_row(project.id, project.name, project.user_id, ", ".join(project.team_members) or "—")
    console.print(table)


@versions_app.command("list")
def versions_list(
    article_id: str = typer.Argument(..., help="Article UUID"),
    limit: int = typer.Option(20, help="Number of versions to show"),
) -> None:
    article_id = _require_uuid(article_id, "Article ID")
    database = _open_database(get_settings())
    try:
        items = VersionStore(database).list_versions(article_id, limit=limit)
    finally:
        database.dispose()
    if not items:
        console.print("[yellow]No versions recorded for this article.")
        return
    table = Table(title="Versions")
    table.add_column("Created")
    table.add_column("ID")
    table.add_column("Title", overflow="fold")
    table.add_column("Refs")
    for version in items:
        table.add_row(
            version.created_at.strftime("%Y-%m-%d %H:%M:%S"),
            version.id,
            version.title,
            str(len(version.references_json)),
        )
    console.print(table)


@versions_app.command("clear")
def versions_clear(article_id: str = typer.Argument(..., help="Article UUID")) -> None:
    """Delete every version except the most recent one."""
    article_id = _require_uuid(article_id, "Article ID")
    database = _open_database(get_settings())
    try:
        removed = VersionStore(database).clear_versions_except_latest(article_id)
    finally:
        database.dispose()
    console.print(f"[green]Removed {removed} version(s).")


@app.command()
def serve(
    host: str = typer.Option("127.0.0.1", help="Host interface"),
    port: int = typer.Option(3002, help="Port to bind"),
    reload: bool = typer.Option(False, help="Enable auto-reload"),
) -> None:
    """Launch the write-articles API."""
    import uvicorn

    uvicorn.run(
        "writium.web.app:create_app",
        host=host,
        port=port,
        reload=reload,
        factory=True,
    )


if __name__ == "__main__":  # pragma: no cover
    app()
