"""Error taxonomy for document delivery.

Every error carries an HTTP status so the server can map it without a lookup
table. Messages are shown to clients; keep them free of resolved filesystem
locations and only echo what the client sent.
"""
from __future__ import annotations


class DeliveryError(Exception):
    """Base exception for all delivery errors."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    @property
    def default_message(self) -> str:
        return "The download could not be prepared."


class InvalidRequestError(DeliveryError):
    """Raised when a request field is missing or malformed."""

    status_code = 400

    @property
    def default_message(self) -> str:
        return "Invalid download request."


class EmptyBatchError(InvalidRequestError):
    """Raised when a batch request names no usable paths."""

    @property
    def default_message(self) -> str:
        return "At least one path is required in 'paths'."


class BatchTooLargeError(InvalidRequestError):
    status_code = 413

    @property
    def default_message(self) -> str:
        return "Too many paths in one request."


class PathContainmentError(DeliveryError):
    """Raised when a path resolves outside the documents root."""

    status_code = 403

    @property
    def default_message(self) -> str:
        return "Path is outside the allowed documents directory."


class DocumentNotFoundError(DeliveryError):
    """Raised when a path does not exist or is not a regular file."""

    status_code = 404

    @property
    def default_message(self) -> str:
        return "File not found."


class UnsupportedFormatError(DeliveryError):
    """Raised when a page is requested from something that is not a PDF."""

    status_code = 400

    @property
    def default_message(self) -> str:
        return "Page extraction is only available for PDF files."


class MalformedPdfError(DeliveryError):
    status_code = 422

    @property
    def default_message(self) -> str:
        return "Invalid or corrupted PDF file."


class PageOutOfRangeError(DeliveryError):
    """Raised when a requested page is outside the document."""

    status_code = 400

    def __init__(self, page: int, total: int) -> None:
        self.page = page
        self.total = total
        super().__init__(f"Page {page} is out of range; the document has {total} page(s) (valid: 1-{total}).")


class DocumentReadError(DeliveryError):
    """Raised when a file passed validation but could not be read."""

    @property
    def default_message(self) -> str:
        return "File could not be read."


class ArchiveStreamError(Exception):
    """Raised inside the archive body stream after headers were sent.

    Not a DeliveryError: it can never become a JSON response, only an
    aborted connection.
    """

    def __init__(self, message: str = "Archive stream aborted.") -> None:
        super().__init__(message)
        self.message = message


class ConfigurationError(DeliveryError):
    @property
    def default_message(self) -> str:
        return "Document storage is not configured."
