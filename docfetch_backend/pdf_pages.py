"""Single-page extraction from PDF documents.

The whole source document is loaded into memory: copying a page needs the
source's cross-reference table, so there is no streaming variant.
"""
from __future__ import annotations

import io
import logging
import re

from pypdf import PdfReader, PdfWriter
from pypdf.errors import PdfReadError

from .errors import DocumentReadError, MalformedPdfError, PageOutOfRangeError, UnsupportedFormatError
from .security import ResolvedFile


logger = logging.getLogger(__name__)

_PDF_SUFFIX_RE = re.compile(r"\.pdf$", re.IGNORECASE)

PDF_MEDIA_TYPE = "application/pdf"


def is_pdf_name(name: str) -> bool:
    return bool(_PDF_SUFFIX_RE.search(name or ""))


def page_filename(display_name: str, page: int) -> str:
    """Name for an extracted page, e.g. ``contract.pdf`` -> ``contract_p3.pdf``."""
    return f"{_PDF_SUFFIX_RE.sub('', display_name)}_p{page}.pdf"


def _open_reader(raw: bytes, display_name: str) -> PdfReader:
    try:
        reader = PdfReader(io.BytesIO(raw))
        if reader.is_encrypted and not reader.decrypt(""):
            raise MalformedPdfError(f"PDF is encrypted: {display_name}")
        # Page tree errors surface lazily; force them here.
        len(reader.pages)
    except PdfReadError as exc:
        raise MalformedPdfError(f"Corrupted or invalid PDF file: {display_name}") from exc
    return reader


def extract_page(resolved: ResolvedFile, page: int) -> bytes:
    """Return a new one-page PDF holding 1-based ``page`` of ``resolved``."""
    if not is_pdf_name(resolved.display_name):
        raise UnsupportedFormatError(f"Page extraction is only available for PDF files: {resolved.display_name}")

    try:
        raw = resolved.absolute_path.read_bytes()
    except OSError as exc:
        raise DocumentReadError(f"File could not be read: {resolved.display_name}") from exc

    reader = _open_reader(raw, resolved.display_name)
    total = len(reader.pages)
    index = page - 1
    if index < 0 or index >= total:
        raise PageOutOfRangeError(page, total)

    writer = PdfWriter()
    writer.add_page(reader.pages[index])
    buf = io.BytesIO()
    writer.write(buf)
    data = buf.getvalue()
    logger.info("Extracted page %d/%d of %s (%d bytes)", page, total, resolved.display_name, len(data))
    return data
