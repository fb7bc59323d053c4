"""Decide how a download request is delivered.

A request resolves to exactly one of three plans, which the server turns into
a response without further branching on request shape:

- FileDelivery: one file sent as-is
- PageDelivery: one page extracted from a PDF, already in memory
- ArchiveDelivery: several items streamed as a ZIP

All validation and page extraction happen here, before any response bytes
are written, so every client error can still become a JSON error response.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Sequence, Union

from .errors import EmptyBatchError, UnsupportedFormatError
from .pdf_pages import PDF_MEDIA_TYPE, extract_page, is_pdf_name, page_filename
from .security import PathResolver, ResolvedFile
from .zip_utils import ArchiveEntry


logger = logging.getLogger(__name__)

OCTET_STREAM = "application/octet-stream"
ZIP_MEDIA_TYPE = "application/zip"


@dataclass(frozen=True)
class RequestedItem:
    raw_path: str
    page: Optional[int] = None


@dataclass(frozen=True)
class PlannedItem:
    resolved: ResolvedFile
    page: Optional[int] = None

    @property
    def is_page_extract(self) -> bool:
        return self.page is not None

    @property
    def filename(self) -> str:
        if self.page is not None:
            return page_filename(self.resolved.display_name, self.page)
        return self.resolved.display_name

    @property
    def media_type(self) -> str:
        if self.is_page_extract or is_pdf_name(self.resolved.display_name):
            return PDF_MEDIA_TYPE
        return OCTET_STREAM


@dataclass(frozen=True)
class FileDelivery:
    path: Path
    filename: str
    media_type: str
    size: int


@dataclass(frozen=True)
class PageDelivery:
    filename: str
    content: bytes
    media_type: str = PDF_MEDIA_TYPE


@dataclass(frozen=True)
class ArchiveDelivery:
    filename: str
    entries: tuple[ArchiveEntry, ...]
    media_type: str = ZIP_MEDIA_TYPE


DeliveryPlan = Union[FileDelivery, PageDelivery, ArchiveDelivery]


def classify(resolved: ResolvedFile, page: Optional[int]) -> PlannedItem:
    """Mark an item for page extraction or raw delivery.

    A positive page on a PDF means extraction. A page on anything else is a
    client error rather than a silent fallback to the whole file.
    """
    if page is None or page <= 0:
        return PlannedItem(resolved=resolved)
    if not is_pdf_name(resolved.display_name):
        raise UnsupportedFormatError(f"Page extraction is only available for PDF files: {resolved.display_name}")
    return PlannedItem(resolved=resolved, page=page)


def unique_names(names: Sequence[str]) -> list[str]:
    """Make archive member names distinct, keeping order.

    ``a.pdf, a.pdf`` becomes ``a.pdf, a (2).pdf``.
    """
    seen: set[str] = set()
    result: list[str] = []
    for name in names:
        candidate = name
        if candidate in seen:
            stem, dot, suffix = name.rpartition(".")
            if not dot or not stem:
                stem, suffix = name, ""
            n = 2
            while True:
                candidate = f"{stem} ({n}).{suffix}" if suffix else f"{stem} ({n})"
                if candidate not in seen:
                    break
                n += 1
        seen.add(candidate)
        result.append(candidate)
    return result


def _single(item: PlannedItem) -> DeliveryPlan:
    if item.page is not None:
        return PageDelivery(filename=item.filename, content=extract_page(item.resolved, item.page))
    return FileDelivery(
        path=item.resolved.absolute_path,
        filename=item.filename,
        media_type=item.media_type,
        size=item.resolved.size_bytes,
    )


def _archive(items: Sequence[PlannedItem], archive_filename: str) -> ArchiveDelivery:
    entries: list[ArchiveEntry] = []
    for item, name in zip(items, unique_names([i.filename for i in items])):
        if item.page is not None:
            entries.append(ArchiveEntry(name=name, data=extract_page(item.resolved, item.page)))
        else:
            entries.append(ArchiveEntry(name=name, path=item.resolved.absolute_path))
    return ArchiveDelivery(filename=archive_filename, entries=tuple(entries))


def plan_delivery(
    items: Sequence[RequestedItem],
    resolver: PathResolver,
    *,
    archive_filename: str = "documents.zip",
) -> DeliveryPlan:
    """Resolve, classify and prepare ``items`` for delivery.

    The first failing item aborts the whole plan; there is no partial batch.
    """
    if not items:
        raise EmptyBatchError()

    planned = [classify(resolver.resolve(item.raw_path), item.page) for item in items]
    logger.info("Planned %d item(s): %s", len(planned), ", ".join(p.filename for p in planned))

    if len(planned) == 1:
        return _single(planned[0])
    return _archive(planned, archive_filename)
