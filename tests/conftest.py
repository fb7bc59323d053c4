from __future__ import annotations

from pathlib import Path
from typing import Callable

import pytest
from fastapi.testclient import TestClient
from pypdf import PdfWriter

from docfetch_backend.config import DeliveryConfig
from docfetch_backend.security import PathResolver
from server import app, get_config


def page_width(index: int) -> int:
    """Width of page ``index`` (0-based) in generated PDFs, so pages can be told apart."""
    return 100 + 10 * index


@pytest.fixture()
def documents_root(tmp_path: Path) -> Path:
    root = tmp_path / "docs"
    root.mkdir()
    return root


@pytest.fixture()
def pdf_factory(documents_root: Path) -> Callable[..., Path]:
    def _create(relative: str, pages: int = 3) -> Path:
        path = documents_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        writer = PdfWriter()
        for index in range(pages):
            writer.add_blank_page(width=page_width(index), height=200)
        with path.open("wb") as handle:
            writer.write(handle)
        return path

    return _create


@pytest.fixture()
def text_factory(documents_root: Path) -> Callable[..., Path]:
    def _create(relative: str, text: str = "hello\n") -> Path:
        path = documents_root / relative
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(text, encoding="utf-8")
        return path

    return _create


@pytest.fixture()
def config(documents_root: Path) -> DeliveryConfig:
    return DeliveryConfig(documents_root=documents_root, stream_chunk_bytes=1024, stream_queue_depth=2)


@pytest.fixture()
def resolver(config: DeliveryConfig) -> PathResolver:
    return PathResolver(config)


@pytest.fixture()
def client(config: DeliveryConfig):
    app.dependency_overrides[get_config] = lambda: config
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()
