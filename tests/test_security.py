from __future__ import annotations

import os
from pathlib import Path

import pytest

from docfetch_backend.config import DeliveryConfig, PathStrategy
from docfetch_backend.errors import (
    ConfigurationError,
    DocumentNotFoundError,
    InvalidRequestError,
    PathContainmentError,
)
from docfetch_backend.security import PathResolver, display_name_for, rewrite_share_prefix, safe_join


def test_resolves_relative_path_under_root(resolver: PathResolver, documents_root: Path, text_factory) -> None:
    text_factory("cases/2024/notes.txt", "abc")

    resolved = resolver.resolve("cases/2024/notes.txt")

    assert resolved.absolute_path == (documents_root / "cases/2024/notes.txt").resolve()
    assert resolved.display_name == "notes.txt"
    assert resolved.size_bytes == 3


def test_accepts_absolute_path_inside_root(resolver: PathResolver, documents_root: Path, text_factory) -> None:
    target = text_factory("a.txt")
    resolved = resolver.resolve(str(target))
    assert resolved.absolute_path == target.resolve()


def test_backslashes_are_separators(resolver: PathResolver, text_factory) -> None:
    text_factory("cases/memo.txt")
    resolved = resolver.resolve("cases\\memo.txt")
    assert resolved.display_name == "memo.txt"


def test_resolving_twice_is_stable(resolver: PathResolver, text_factory) -> None:
    text_factory("x/y.txt")
    first = resolver.resolve("x/../x/y.txt")
    second = resolver.resolve("x/../x/y.txt")
    assert first == second


@pytest.mark.parametrize(
    "raw",
    [
        "../../etc/passwd",
        "../outside.txt",
        "cases/../../outside.txt",
        "..\\outside.txt",
        "/etc/passwd",
    ],
)
def test_escapes_are_rejected(resolver: PathResolver, documents_root: Path, raw: str) -> None:
    (documents_root.parent / "outside.txt").write_text("secret", encoding="utf-8")
    with pytest.raises(PathContainmentError) as excinfo:
        resolver.resolve(raw)
    assert str(documents_root) not in excinfo.value.message


@pytest.mark.skipif(not hasattr(os, "symlink"), reason="symlinks unavailable")
def test_symlink_out_of_root_is_rejected(resolver: PathResolver, documents_root: Path) -> None:
    outside = documents_root.parent / "secret.txt"
    outside.write_text("secret", encoding="utf-8")
    (documents_root / "link.txt").symlink_to(outside)

    with pytest.raises(PathContainmentError):
        resolver.resolve("link.txt")


def test_missing_file_is_not_found(resolver: PathResolver) -> None:
    with pytest.raises(DocumentNotFoundError) as excinfo:
        resolver.resolve("nope.pdf")
    assert "nope.pdf" in excinfo.value.message


def test_directory_is_not_a_file(resolver: PathResolver, documents_root: Path) -> None:
    (documents_root / "folder").mkdir()
    with pytest.raises(DocumentNotFoundError):
        resolver.resolve("folder")
    with pytest.raises(DocumentNotFoundError):
        resolver.resolve(".")


@pytest.mark.parametrize("raw", ["", "   ", "a\x00b.txt", "\ud800.pdf"])
def test_malformed_paths_are_request_errors(resolver: PathResolver, raw: str) -> None:
    with pytest.raises(InvalidRequestError):
        resolver.resolve(raw)


def test_missing_root_is_configuration_error(tmp_path: Path) -> None:
    with pytest.raises(ConfigurationError):
        PathResolver(DeliveryConfig()).resolve("a.txt")
    with pytest.raises(ConfigurationError):
        PathResolver(DeliveryConfig(documents_root=tmp_path / "absent")).resolve("a.txt")


def test_display_name_uses_last_segment() -> None:
    assert display_name_for("//server/share/dir\\file.pdf") == "file.pdf"
    assert display_name_for("plain.txt") == "plain.txt"
    assert display_name_for("dir/") == "file"


def test_safe_join_allows_the_base_itself(tmp_path: Path) -> None:
    assert safe_join(tmp_path, ".") == tmp_path.resolve()
    with pytest.raises(PathContainmentError):
        safe_join(tmp_path, "..")


def test_share_prefix_rewrite_is_case_insensitive() -> None:
    rewritten = rewrite_share_prefix(
        "\\\\FILESERVER\\dept\\legal\\2024\\contract.pdf",
        "//fileserver/Dept/Legal",
        Path("/data"),
    )
    assert rewritten == Path("/data/2024/contract.pdf")


def test_share_prefix_leaves_other_paths_alone() -> None:
    assert rewrite_share_prefix("/srv/other.pdf", "//fileserver/x", Path("/data")) == Path("/srv/other.pdf")


def test_share_prefix_strategy_resolves_through_local_base(tmp_path: Path) -> None:
    local = tmp_path / "mount"
    (local / "2024").mkdir(parents=True)
    (local / "2024" / "Contract.pdf").write_bytes(b"%PDF-1.4\n")
    config = DeliveryConfig(
        strategy=PathStrategy.SHARE_PREFIX,
        share_prefix="//fileserver/Dept/Legal",
        share_local_base=local,
    )

    resolved = PathResolver(config).resolve("//FileServer/dept/legal/2024/Contract.pdf")

    assert resolved.absolute_path == local / "2024" / "Contract.pdf"
    assert resolved.display_name == "Contract.pdf"


def test_share_prefix_strategy_needs_both_settings() -> None:
    config = DeliveryConfig(strategy=PathStrategy.SHARE_PREFIX, share_prefix="//fileserver/x")
    with pytest.raises(ConfigurationError):
        PathResolver(config).resolve("//fileserver/x/a.pdf")
