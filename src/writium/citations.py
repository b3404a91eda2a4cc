"""Citation parsing and rendering (BibTeX, RIS, APA, IEEE).

Every function here is pure and total: malformed input produces ``None`` or a
best-effort string instead of raising.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Iterable

from writium.models import Reference

BIBTEX_ENTRY = re.compile(r"@(\w+)\s*\{[^,]*,\s*([\s\S]*)\}")
BIBTEX_MARKER = re.compile(r"@\w+\s*\{")
BIBTEX_SPLIT = re.compile(r"(?=@\w+\s*\{)")
RIS_MARKER = re.compile(r"^TY\s*-\s*", flags=re.MULTILINE)
RIS_LINE = re.compile(r"^([A-Z][A-Z0-9])\s*-\s*(.*?)\s*$")
AUTHOR_SEPARATOR = re.compile(r"\s+and\s+", flags=re.IGNORECASE)
IEEE_AUTHOR_SEPARATOR = re.compile(r"\s+and\s+|;|,", flags=re.IGNORECASE)
DOI_PREFIX = re.compile(r"^https?://(dx\.)?doi\.org/", flags=re.IGNORECASE)
ITALICS = re.compile(r"\*([^*]+)\*")

BIBTEX_TYPES = {
    "article": "article",
    "jour": "article",
    "book": "book",
    "inproceedings": "inproceedings",
    "conference": "inproceedings",
    "misc": "misc",
}
RIS_TYPES = {
    "JOUR": "article",
    "JFULL": "article",
    "EJOUR": "article",
    "BOOK": "book",
    "EBOOK": "book",
    "CHAP": "book",
    "CONF": "inproceedings",
    "CPAPER": "inproceedings",
}
BIBTEX_FIELDS = (
    "author",
    "title",
    "year",
    "journal",
    "volume",
    "pages",
    "publisher",
    "doi",
    "url",
    "booktitle",
)
STYLES = ("bibtex", "apa", "ieee")


@dataclass(slots=True)
class ParsedCitation:
    format: str  # "bibtex" or "refman"
    ref: Reference


def _bibtex_value(body: str, key: str) -> str:
    match = re.search(rf"\b{key}\s*=\s*[{{\"]([^}}\"]*)[\"}}]", body, flags=re.IGNORECASE)
    if not match:
        return ""
    return " ".join(match.group(1).split())


def parse_bibtex(text: str) -> Reference | None:
    """Parse a single ``@type{key, field = {value}, ...}`` entry."""
    stripped = (text or "").strip()
    if not stripped:
        return None
    match = BIBTEX_ENTRY.search(stripped)
    if not match:
        return None
    entry_type = (match.group(1) or "misc").lower()
    body = match.group(2) or ""
    author = _bibtex_value(body, "author")
    title = _bibtex_value(body, "title")
    if not author and not title:
        return None
    return Reference(
        type=BIBTEX_TYPES.get(entry_type, "misc"),
        author=AUTHOR_SEPARATOR.sub(", ", author),
        title=title,
        **{
            field: _bibtex_value(body, field)
            for field in BIBTEX_FIELDS
            if field not in ("author", "title")
        },
    )


def _parse_ris(text: str) -> Reference | None:
    fields: dict[str, list[str]] = {}
    for line in text.splitlines():
        match = RIS_LINE.match(line)
        if match and match.group(2):
            fields.setdefault(match.group(1), []).append(match.group(2))

    def first(tag: str) -> str:
        values = fields.get(tag)
        return values[0] if values else ""

    author = ", ".join(fields.get("AU", []) or fields.get("A1", []))
    title = first("TI") or first("T1")
    if not author and not title:
        return None
    return Reference(
        type=RIS_TYPES.get(first("TY").upper(), "article"),
        author=author,
        title=title,
        year=(first("PY") or first("Y1"))[:4],
        journal=first("JO") or first("JF") or first("T2"),
        volume=first("VL"),
        pages="-".join(part for part in (first("SP"), first("EP")) if part),
        publisher=first("PB"),
        doi=first("DO"),
        url=first("UR"),
        booktitle=first("T3"),
    )


def parse_citation_format(text: str) -> ParsedCitation | None:
    """Detect BibTeX or RIS and return the first usable reference."""
    stripped = (text or "").strip()
    if not stripped:
        return None
    if BIBTEX_MARKER.search(stripped):
        for entry in BIBTEX_SPLIT.split(stripped):
            if not entry.strip():
                continue
            ref = parse_bibtex(entry)
            if ref:
                return ParsedCitation(format="bibtex", ref=ref)
    if RIS_MARKER.search(stripped):
        ref = _parse_ris(stripped)
        if ref:
            return ParsedCitation(format="refman", ref=ref)
    return None


def parse_citations(text: str) -> list[Reference]:
    """Parse every usable entry of a BibTeX blob, or the single RIS record."""
    stripped = (text or "").strip()
    if not stripped:
        return []
    if BIBTEX_MARKER.search(stripped):
        refs = [parse_bibtex(entry) for entry in BIBTEX_SPLIT.split(stripped) if entry.strip()]
        found = [ref for ref in refs if ref]
        if found:
            return found
    parsed = parse_citation_format(stripped)
    return [parsed.ref] if parsed else []


def _escape_bibtex(value: str) -> str:
    return re.sub(r"[{}\"\\]", lambda m: "\\" + m.group(0), value)


def to_bibtex(refs: Iterable[Reference]) -> str:
    entries = []
    for index, ref in enumerate(refs):
        entry_type = (ref.type or "misc").lower()
        key = f"ref{index + 1}{ref.year[-2:]}"
        lines = [
            f"  {field} = {{{_escape_bibtex(value)}}}"
            for field in BIBTEX_FIELDS
            if (value := getattr(ref, field))
        ]
        entries.append(f"@{entry_type}{{{key},\n" + ",\n".join(lines) + "\n}")
    return "\n\n".join(entries)


def _authors(author: str) -> list[str]:
    return [part.strip() for part in AUTHOR_SEPARATOR.split(author or "") if part.strip()]


def _first_author_last_name(author: str) -> str:
    names = _authors(author)
    if not names:
        return "n.d."
    first = names[0]
    if "," in first:
        return first.split(",", 1)[0].strip() or first
    return first.split()[-1]


def _year(ref: Reference) -> str:
    return ref.year.strip() or "n.d."


def format_in_text_apa(ref: Reference) -> str:
    return f"({_first_author_last_name(ref.author)}, {_year(ref)})"


def format_in_text_apa_narrative(ref: Reference) -> str:
    return f"{_first_author_last_name(ref.author)} ({_year(ref)})"


def _apa_author(name: str) -> str:
    name = name.strip()
    if not name:
        return ""
    if "," in name:
        last, rest = (part.strip() for part in name.split(",", 1))
        initials = " ".join(f"{word[0]}." for word in rest.split())
        return f"{last}, {initials}".strip() if last else rest
    words = name.split()
    if len(words) <= 1:
        return name
    initials = " ".join(f"{word[0]}." for word in words[:-1])
    return f"{words[-1]}, {initials}"


def _apa_authors(author: str) -> str:
    authors = [_apa_author(name) for name in _authors(author)]
    if not authors:
        return "N.d."
    if len(authors) == 1:
        return authors[0]
    if len(authors) <= 7:
        return ", ".join(authors[:-1]) + ", & " + authors[-1]
    return f"{authors[0]} et al."


def _link(ref: Reference) -> str:
    doi = ref.doi.strip()
    if doi:
        return f" https://doi.org/{DOI_PREFIX.sub('', doi)}"
    if ref.url.strip():
        return f" {ref.url.strip()}"
    return ""


def format_reference_apa(ref: Reference) -> str:
    authors = _apa_authors(ref.author)
    year = f" ({ref.year.strip()})." if ref.year.strip() else " (n.d.)."
    title = f" {ref.title.strip()}." if ref.title.strip() else ""
    kind = (ref.type or "").lower()
    if kind in ("article", "jour"):
        journal = ref.journal.strip()
        tail = ""
        if journal:
            tail = f" *{journal}*"
            if ref.volume.strip():
                tail += f", *{ref.volume.strip()}*"
            if ref.pages.strip():
                tail += f", {ref.pages.strip()}"
            tail += "."
        return f"{authors}{year}{title}{tail}{_link(ref)}".strip()
    if kind == "book":
        publisher = ref.publisher.strip()
        tail = f" {publisher}." if publisher else ""
        return f"{authors}{year}{title}{tail}{_link(ref)}".strip()
    if kind == "inproceedings":
        venue = (ref.booktitle or ref.journal).strip()
        tail = f" In *{venue}*." if venue else ""
        return f"{authors}{year}{title}{tail}{_link(ref)}".strip()
    return f"{authors}{year}{title}".strip()


def to_reference_list_apa(refs: Iterable[Reference]) -> str:
    return "\n\n".join(format_reference_apa(ref) for ref in refs)


def _ieee_author(name: str) -> str:
    words = name.split()
    if len(words) <= 1:
        return name
    initials = ". ".join(word[0] for word in words[:-1])
    return f"{words[-1]}, {initials}."


def format_reference_ieee(ref: Reference, index: int) -> str:
    names = [part.strip() for part in IEEE_AUTHOR_SEPARATOR.split(ref.author or "") if part.strip()]
    authors = ", ".join(_ieee_author(name) for name in names) if names else "N.d."
    title = f'"{ref.title.strip()}",' if ref.title.strip() else ""
    year = _year(ref)
    if (ref.type or "").lower() in ("article", "jour"):
        tail = f" *{ref.journal.strip()}*" if ref.journal.strip() else ""
        if ref.volume.strip():
            tail += f", vol. {ref.volume.strip()}"
        if ref.pages.strip():
            tail += f", pp. {ref.pages.strip()}"
        tail += f", {year}."
        if ref.doi.strip():
            tail += f" doi: {DOI_PREFIX.sub('', ref.doi.strip())}"
        return f"[{index + 1}] {authors}, {title} {tail}".strip()
    return f"[{index + 1}] {authors}, {title} {year}.".strip()


def to_reference_list_ieee(refs: Iterable[Reference]) -> str:
    return "\n\n".join(format_reference_ieee(ref, index) for index, ref in enumerate(refs))


def markdown_italics_to_html(text: str) -> str:
    return ITALICS.sub(r"<em>\1</em>", text)


def render_reference_list(refs: list[Reference], style: str) -> str:
    style = style.lower()
    if style == "bibtex":
        return to_bibtex(refs)
    if style == "apa":
        return to_reference_list_apa(refs)
    if style == "ieee":
        return to_reference_list_ieee(refs)
    raise ValueError(f"Unknown citation style: {style}")
