"""
Document decoders.

Convert a file into plain-text page units, dispatching on the extension:

    .txt / .md   one page, read as UTF-8
    .pdf         one page per PDF page (PyMuPDF)
    .docx        one page of non-empty paragraphs (python-docx)
    .pptx        one page per slide (python-pptx)
    .xlsx        one page per worksheet, headed "## Sheet: <name>", with
                 tab-separated cells (openpyxl)

Format libraries are imported when a file of that type is decoded.
"""

import logging
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from docrag.errors import DocRagError, DocumentReadError, UnsupportedFormatError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Page:
    """Text of one page, slide or sheet."""

    text: str
    page_number: int = 1


def _decode_text(path: Path) -> list[Page]:
    return [Page(text=path.read_text(encoding="utf-8"))]


def _decode_pdf(path: Path) -> list[Page]:
    import fitz

    with fitz.open(path) as document:
        return [
            Page(text=page.get_text("text") or "", page_number=number)
            for number, page in enumerate(document, start=1)
        ]


def _decode_docx(path: Path) -> list[Page]:
    from docx import Document

    document = Document(str(path))
    paragraphs = [p.text.strip() for p in document.paragraphs if p.text.strip()]
    return [Page(text="\n".join(paragraphs))]


def _decode_pptx(path: Path) -> list[Page]:
    from pptx import Presentation

    presentation = Presentation(str(path))
    pages = []
    for number, slide in enumerate(presentation.slides, start=1):
        texts = [
            shape.text.strip()
            for shape in slide.shapes
            if getattr(shape, "has_text_frame", False) and shape.text.strip()
        ]
        pages.append(Page(text="\n".join(texts), page_number=number))
    return pages


def _decode_xlsx(path: Path) -> list[Page]:
    from openpyxl import load_workbook

    workbook = load_workbook(path, read_only=True, data_only=True)
    try:
        pages = []
        for number, sheet in enumerate(workbook.worksheets, start=1):
            lines = [f"## Sheet: {sheet.title}"]
            for row in sheet.iter_rows(values_only=True):
                if all(cell is None for cell in row):
                    continue
                lines.append("\t".join("" if cell is None else str(cell) for cell in row))
            pages.append(Page(text="\n".join(lines), page_number=number))
        return pages
    finally:
        workbook.close()


DECODERS: dict[str, Callable[[Path], list[Page]]] = {
    ".txt": _decode_text,
    ".md": _decode_text,
    ".pdf": _decode_pdf,
    ".docx": _decode_docx,
    ".pptx": _decode_pptx,
    ".xlsx": _decode_xlsx,
}


def supported_extensions() -> list[str]:
    return sorted(DECODERS)


def decode(path: str | Path) -> list[Page]:
    """
    Extract the text of a document as page units.

    Args:
        path: File to decode

    Returns:
        Pages in document order with 1-based page numbers

    Raises:
        UnsupportedFormatError: If the extension has no decoder
        DocumentReadError: If the file is missing or cannot be decoded
    """
    path = Path(path)
    extension = path.suffix.lower()
    decoder = DECODERS.get(extension)
    if decoder is None:
        raise UnsupportedFormatError(extension)
    if not path.is_file():
        raise DocumentReadError(path, "file not found")

    try:
        pages = decoder(path)
    except DocRagError:
        raise
    except Exception as e:
        raise DocumentReadError(path, str(e)) from e

    logger.info(f"Decoded {path.name}: {len(pages)} page(s)")
    return pages
