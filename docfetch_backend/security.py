from __future__ import annotations

import logging
import os
import re
import stat
import sys
from dataclasses import dataclass
from pathlib import Path

from .config import DeliveryConfig, PathStrategy
from .errors import ConfigurationError, DocumentNotFoundError, InvalidRequestError, PathContainmentError


logger = logging.getLogger(__name__)

_SEPARATORS_RE = re.compile(r"[\\/]")

DEFAULT_DISPLAY_NAME = "file"


@dataclass(frozen=True)
class ResolvedFile:
    absolute_path: Path
    # Last segment of the path the client asked for, not of the resolved path.
    display_name: str
    size_bytes: int


def display_name_for(raw_path: str) -> str:
    """Return the final segment of a client path, splitting on / and \\."""
    parts = _SEPARATORS_RE.split(raw_path or "")
    return parts[-1] or DEFAULT_DISPLAY_NAME


def _normalize_separators(raw_path: str) -> str:
    return raw_path.replace("\\", "/")


def safe_join(base_dir: Path, *parts: str) -> Path:
    """Join paths and ensure the result stays within base_dir.

    Absolute parts replace the base (pathlib semantics) and are then held to
    the same rule, so an absolute path is accepted only if it already lies
    under base_dir. Symlinks are resolved before the check.
    """
    base_dir = base_dir.resolve()
    candidate = base_dir
    for part in parts:
        candidate = candidate / part
    resolved = candidate.resolve()
    if resolved == base_dir:
        return resolved
    try:
        offset = os.path.relpath(resolved, base_dir)
    except ValueError:
        # Different drive on Windows.
        raise PathContainmentError()
    if offset == os.pardir or offset.startswith(os.pardir + os.sep) or base_dir not in resolved.parents:
        raise PathContainmentError()
    return resolved


def rewrite_share_prefix(raw_path: str, share_prefix: str, local_base: Path) -> Path:
    """Map a network-share path onto its local mount.

    The prefix is matched case-insensitively after separators are normalized.
    Paths without the prefix are returned unchanged.
    """
    normalized = _normalize_separators(raw_path)
    prefix = _normalize_separators(share_prefix).rstrip("/")
    if normalized.casefold().startswith(prefix.casefold()):
        remainder = normalized[len(prefix):].lstrip("/")
        return Path(os.path.normpath(os.path.join(str(local_base), remainder)))
    return Path(normalized)


def _stat_regular_file(path: Path, raw_path: str) -> int:
    try:
        st = os.stat(path)
    except OSError:
        raise DocumentNotFoundError(f"File not found: {raw_path}")
    if not stat.S_ISREG(st.st_mode):
        raise DocumentNotFoundError(f"Not a regular file: {raw_path}")
    return st.st_size


class PathResolver:
    """Turn client-supplied logical paths into validated files on disk.

    One resolver serves many requests; it holds only the immutable config.
    """

    def __init__(self, config: DeliveryConfig) -> None:
        self.config = config

    def resolve(self, raw_path: str) -> ResolvedFile:
        if not isinstance(raw_path, str) or not raw_path.strip():
            raise InvalidRequestError("Path must be a non-empty string.")
        if "\x00" in raw_path:
            raise InvalidRequestError("Path contains invalid characters.")
        try:
            raw_path.encode(sys.getfilesystemencoding(), "surrogateescape")
        except UnicodeEncodeError:
            raise InvalidRequestError("Path contains invalid characters.")

        if self.config.strategy is PathStrategy.SHARE_PREFIX:
            path = self._resolve_share_prefix(raw_path)
        else:
            path = self._resolve_confined(raw_path)

        size = _stat_regular_file(path, raw_path)
        logger.debug("Resolved %r to %s (%d bytes)", raw_path, path, size)
        return ResolvedFile(absolute_path=path, display_name=display_name_for(raw_path), size_bytes=size)

    def _resolve_confined(self, raw_path: str) -> Path:
        root = self.config.documents_root
        if root is None:
            raise ConfigurationError()
        if not root.is_dir():
            logger.error("Documents root %s is not a directory", root)
            raise ConfigurationError()
        try:
            return safe_join(root, _normalize_separators(raw_path))
        except PathContainmentError:
            logger.warning("Rejected path outside documents root: %r", raw_path)
            raise PathContainmentError(f"Path is outside the allowed documents directory: {raw_path}")

    def _resolve_share_prefix(self, raw_path: str) -> Path:
        prefix = self.config.share_prefix
        local_base = self.config.share_local_base
        if not prefix or local_base is None:
            raise ConfigurationError()
        return rewrite_share_prefix(raw_path, prefix, local_base)
