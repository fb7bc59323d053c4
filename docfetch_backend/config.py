from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Mapping, Optional

from .errors import ConfigurationError


ENV_PREFIX = "DOCFETCH_"

LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"


class PathStrategy(str, Enum):
    # Resolve under a single documents root and reject anything that escapes it.
    CONFINE = "confine"
    # Legacy: rewrite a network-share prefix to a local mount. No containment check.
    SHARE_PREFIX = "share-prefix"


@dataclass(frozen=True)
class DeliveryConfig:
    strategy: PathStrategy = PathStrategy.CONFINE
    documents_root: Optional[Path] = None
    share_prefix: Optional[str] = None
    share_local_base: Optional[Path] = None

    # Name of the ZIP offered for multi-file downloads.
    archive_filename: str = "documents.zip"

    # Upper bound on entries in one batch request.
    max_batch_items: int = 200

    # Documents are mostly text/PDF; size matters more than CPU here.
    zip_compress_level: int = 9

    # Producer/consumer tuning for streamed archives.
    stream_chunk_bytes: int = 64 * 1024
    stream_queue_depth: int = 8

    cors_origins: tuple[str, ...] = ("*",)
    log_level: str = "INFO"


def _get(environ: Mapping[str, str], name: str) -> Optional[str]:
    raw = environ.get(ENV_PREFIX + name)
    if raw is None or not raw.strip():
        return None
    return raw.strip()


def _get_int(environ: Mapping[str, str], name: str, default: int, *, minimum: int, maximum: Optional[int] = None) -> int:
    raw = _get(environ, name)
    if raw is None:
        return default
    try:
        value = int(raw)
    except ValueError as exc:
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be an integer.") from exc
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ConfigurationError(f"{ENV_PREFIX}{name} must be {bounds}.")
    return value


def load_config(environ: Optional[Mapping[str, str]] = None) -> DeliveryConfig:
    """Build the delivery configuration from environment variables.

    Called once at startup. Missing storage paths are not an error here; the
    resolver reports them per request so the service can still boot.
    """
    if environ is None:
        environ = os.environ

    strategy_raw = (_get(environ, "PATH_STRATEGY") or PathStrategy.CONFINE.value).lower()
    try:
        strategy = PathStrategy(strategy_raw)
    except ValueError as exc:
        choices = ", ".join(s.value for s in PathStrategy)
        raise ConfigurationError(f"{ENV_PREFIX}PATH_STRATEGY must be one of: {choices}.") from exc

    root_raw = _get(environ, "DOCUMENTS_ROOT")
    local_base_raw = _get(environ, "SHARE_LOCAL_BASE")

    origins_raw = _get(environ, "CORS_ORIGINS") or "*"
    origins = tuple(o.strip() for o in origins_raw.split(",") if o.strip())

    log_level = (_get(environ, "LOG_LEVEL") or "INFO").upper()
    if not isinstance(logging.getLevelName(log_level), int):
        raise ConfigurationError(f"{ENV_PREFIX}LOG_LEVEL is not a valid logging level.")

    return DeliveryConfig(
        strategy=strategy,
        documents_root=Path(root_raw).expanduser() if root_raw else None,
        share_prefix=_get(environ, "SHARE_PREFIX"),
        share_local_base=Path(local_base_raw).expanduser() if local_base_raw else None,
        archive_filename=_get(environ, "ARCHIVE_FILENAME") or "documents.zip",
        max_batch_items=_get_int(environ, "MAX_BATCH_ITEMS", 200, minimum=1),
        zip_compress_level=_get_int(environ, "ZIP_COMPRESS_LEVEL", 9, minimum=0, maximum=9),
        stream_chunk_bytes=_get_int(environ, "STREAM_CHUNK_BYTES", 64 * 1024, minimum=1024),
        stream_queue_depth=_get_int(environ, "STREAM_QUEUE_DEPTH", 8, minimum=1),
        cors_origins=origins or ("*",),
        log_level=log_level,
    )


def configure_logging(level: str = "INFO") -> None:
    logging.basicConfig(level=level, format=LOG_FORMAT)
    logging.getLogger("docfetch_backend").setLevel(level)
