"""HTML to DOCX conversion for the editor's export button."""

from __future__ import annotations

from io import BytesIO

import structlog
from bs4 import BeautifulSoup, NavigableString, Tag
from bs4.element import PreformattedString
from docx import Document
from docx.shared import Pt

from writium.errors import InvalidRequestError

logger = structlog.get_logger(__name__)

DOCX_MEDIA_TYPE = "application/vnd.openxmlformats-officedocument.wordprocessingml.document"

INLINE_FORMATS = {
    "strong": "bold",
    "b": "bold",
    "em": "italic",
    "i": "italic",
    "u": "underline",
}
BLOCK_CONTAINERS = {"div", "section", "article", "main", "body", "header", "footer"}


class DocxExporter:
    """Walks editor HTML with BeautifulSoup and emits python-docx elements."""

    def __init__(self, font_name: str = "Times New Roman", font_size: int = 12) -> None:
        self._font_name = font_name
        self._font_size = font_size

    def render(self, html: str) -> bytes:
        html = (html or "").strip()
        if not html:
            raise InvalidRequestError("Missing HTML content")
        doc = Document()
        style = doc.styles["Normal"]
        style.font.name = self._font_name
        style.font.size = Pt(self._font_size)

        soup = BeautifulSoup(html, "html.parser")
        root = soup.body if soup.body else soup
        self._render_children(root, doc)

        buffer = BytesIO()
        doc.save(buffer)
        payload = buffer.getvalue()
        logger.info("docx.rendered", html_chars=len(html), docx_bytes=len(payload))
        return payload

    def _render_children(self, element: Tag, doc) -> None:
        for child in element.children:
            if isinstance(child, PreformattedString):
                continue
            if isinstance(child, NavigableString):
                text = str(child).strip()
                if text:
                    doc.add_paragraph(text)
            elif isinstance(child, Tag):
                self._render_block(child, doc)

    def _render_block(self, element: Tag, doc) -> None:
        name = (element.name or "").lower()
        if name in ("h1", "h2", "h3", "h4", "h5", "h6"):
            doc.add_heading(element.get_text(" ", strip=True), level=int(name[1]))
        elif name == "p":
            self._render_inline(element, doc.add_paragraph())
        elif name in ("ul", "ol"):
            self._render_list(element, doc, numbered=name == "ol")
        elif name == "table":
            self._render_table(element, doc)
        elif name == "blockquote":
            self._render_inline(element, doc.add_paragraph(style="Quote"))
        elif name == "pre":
            paragraph = doc.add_paragraph()
            run = paragraph.add_run(element.get_text())
            run.font.name = "Courier New"
        elif name == "hr":
            doc.add_page_break()
        elif name in BLOCK_CONTAINERS:
            self._render_children(element, doc)
        elif name in ("script", "style", "head", "title", "meta"):
            return
        else:
            self._render_inline(element, doc.add_paragraph())

    def _render_inline(self, element: Tag, paragraph, formats: frozenset[str] = frozenset()) -> None:
        for child in element.children:
            self._render_node(child, paragraph, formats)

    def _render_node(self, node, paragraph, formats: frozenset[str] = frozenset()) -> None:
        if isinstance(node, PreformattedString):
            return
        if isinstance(node, NavigableString):
            text = str(node)
            if not text:
                return
            run = paragraph.add_run(text)
            run.bold = "bold" in formats or None
            run.italic = "italic" in formats or None
            run.underline = "underline" in formats or None
            if "strike" in formats:
                run.font.strike = True
            if "sub" in formats:
                run.font.subscript = True
            if "sup" in formats:
                run.font.superscript = True
            return
        if not isinstance(node, Tag):
            return
        name = (node.name or "").lower()
        if name == "br":
            paragraph.add_run().add_break()
            return
        extra = set(formats)
        if name in INLINE_FORMATS:
            extra.add(INLINE_FORMATS[name])
        elif name in ("s", "strike", "del"):
            extra.add("strike")
        elif name in ("sub", "sup"):
            extra.add(name)
        self._render_inline(node, paragraph, frozenset(extra))

    def _render_list(self, element: Tag, doc, *, numbered: bool, depth: int = 0) -> None:
        style = "List Number" if numbered else "List Bullet"
        if depth:
            style = f"{style} {min(depth + 1, 3)}"
        for item in element.find_all("li", recursive=False):
            paragraph = doc.add_paragraph(style=style)
            for child in item.children:
                if isinstance(child, Tag) and child.name in ("ul", "ol"):
                    self._render_list(child, doc, numbered=child.name == "ol", depth=depth + 1)
                else:
                    self._render_node(child, paragraph)

    def _render_table(self, element: Tag, doc) -> None:
        rows = element.find_all("tr")
        if not rows:
            return
        cols = max(len(row.find_all(["td", "th"])) for row in rows)
        if cols == 0:
            return
        table = doc.add_table(rows=len(rows), cols=cols)
        table.style = "Table Grid"
        for row_idx, row in enumerate(rows):
            for col_idx, cell in enumerate(row.find_all(["td", "th"])):
                paragraph = table.rows[row_idx].cells[col_idx].paragraphs[0]
                formats = frozenset({"bold"}) if cell.name == "th" else frozenset()
                self._render_inline(cell, paragraph, formats)
