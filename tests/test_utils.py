"""Tests covering the utilities modules and the local file provider."""

from __future__ import annotations

import logging
import logging.handlers
from pathlib import Path
from typing import Iterator

import pytest

from docsync.providers import FileProvider, LocalFileProvider, call_provider
from docsync.services.settings import Settings
from docsync.utils import file_io, logging as logging_utils


def test_read_text_detects_bom_and_normalizes_newlines(tmp_path: Path) -> None:
    target = tmp_path / "utf16.txt"
    target.write_bytes("Line1\r\nLine2".encode("utf-16"))

    assert file_io.read_text(target) == "Line1\nLine2"


def test_read_text_strips_utf8_bom(tmp_path: Path) -> None:
    target = tmp_path / "bom.md"
    target.write_bytes(b"\xef\xbb\xbf# Title\r\n")

    assert file_io.read_text(target) == "# Title\n"


def test_write_text_enforces_newline_policy(tmp_path: Path) -> None:
    target = tmp_path / "output.txt"

    returned = file_io.write_text(target, "Line1\nLine2", newline="\r\n")

    assert returned == target
    assert target.read_bytes() == b"Line1\r\nLine2"


def test_atomic_write_leaves_no_temp_files(tmp_path: Path) -> None:
    target = tmp_path / "nested" / "note.md"

    file_io.write_text(target, "body")
    file_io.write_text(target, "body two")

    assert target.read_text(encoding="utf-8") == "body two"
    assert [entry.name for entry in target.parent.iterdir()] == ["note.md"]


def test_unknown_newline_policy_is_rejected(tmp_path: Path) -> None:
    with pytest.raises(ValueError):
        file_io.write_text(tmp_path / "x.txt", "body", newline="\n\r")


def test_compute_text_digest_changes_with_content() -> None:
    assert file_io.compute_text_digest("hello") != file_io.compute_text_digest("world")
    assert file_io.compute_text_digest("hello") == file_io.compute_text_digest("hello")


@pytest.mark.parametrize(
    ("path", "expected"),
    [
        ("notes/Plan.MD", "md"),
        ("diagram.mmd", "mmd"),
        ("archive.tar.gz", "gz"),
        ("Makefile", ""),
        ("untitled://3.md", "md"),
        (None, ""),
    ],
)
def test_file_extension(path: str | None, expected: str) -> None:
    assert file_io.file_extension(path) == expected


def test_is_untitled() -> None:
    assert file_io.is_untitled("untitled://1")
    assert not file_io.is_untitled("/notes/untitled.md")
    assert not file_io.is_untitled(None)


@pytest.fixture
def file_logging() -> Iterator[None]:
    yield
    logging_utils.teardown_logging()


def _flush_package_handlers() -> None:
    for handler in logging.getLogger(logging_utils.PACKAGE_LOGGER).handlers:
        handler.flush()


def test_package_logger_has_null_handler() -> None:
    handlers = logging.getLogger("docsync").handlers

    assert any(isinstance(handler, logging.NullHandler) for handler in handlers)


def test_setup_logging_writes_package_records(tmp_path: Path, file_logging: None) -> None:
    log_dir = tmp_path / "logs"

    log_path = logging_utils.setup_logging(level=logging.INFO, log_dir=log_dir)

    logging.getLogger("docsync.tests").info("Logging smoke test")
    logging.getLogger("someone.else").warning("Not ours")
    _flush_package_handlers()

    assert log_path == log_dir / "docsync.log"
    assert logging_utils.get_log_path() == log_path
    body = log_path.read_text(encoding="utf-8")
    assert "Logging smoke test" in body
    assert "Not ours" not in body
    assert not any(
        isinstance(handler, logging.handlers.RotatingFileHandler)
        for handler in logging.getLogger().handlers
    )


def test_setup_logging_is_idempotent(tmp_path: Path, file_logging: None) -> None:
    first = logging_utils.setup_logging(log_dir=tmp_path / "a")
    second = logging_utils.setup_logging(log_dir=tmp_path / "b")
    forced = logging_utils.setup_logging(log_dir=tmp_path / "b", force=True)

    assert second == first
    assert forced == tmp_path / "b" / "docsync.log"
    rotating = [
        handler
        for handler in logging.getLogger("docsync").handlers
        if isinstance(handler, logging.handlers.RotatingFileHandler)
    ]
    assert len(rotating) == 1


def test_setup_logging_honours_env_dir(
    monkeypatch: pytest.MonkeyPatch, tmp_path: Path, file_logging: None
) -> None:
    monkeypatch.setenv("DOCSYNC_LOG_DIR", str(tmp_path / "env-logs"))

    log_path = logging_utils.setup_logging()

    assert log_path.parent == tmp_path / "env-logs"


def test_setup_logging_defaults_under_home(isolated_home: Path, file_logging: None) -> None:
    assert logging_utils.setup_logging() == isolated_home / "logs" / "docsync.log"


def test_teardown_removes_the_file_handler(tmp_path: Path) -> None:
    logging_utils.setup_logging(log_dir=tmp_path)

    logging_utils.teardown_logging()

    assert logging_utils.get_log_path() is None
    assert logging.getLogger("docsync").level == logging.NOTSET


def test_configure_from_settings_respects_switches(tmp_path: Path, file_logging: None) -> None:
    assert logging_utils.configure_from_settings(Settings()) is None

    log_path = logging_utils.configure_from_settings(
        Settings(log_to_file=True, debug_logging=True)
    )

    assert log_path is not None and log_path.name == "docsync.log"
    assert logging.getLogger("docsync").level == logging.DEBUG


class TestLocalFileProvider:
    def test_satisfies_protocol(self) -> None:
        assert isinstance(LocalFileProvider(), FileProvider)

    @pytest.mark.asyncio
    async def test_write_then_read(self, tmp_path: Path) -> None:
        provider = LocalFileProvider()
        target = str(tmp_path / "note.md")

        await provider.write_file(target, "line one\r\nline two")

        assert await provider.read_file(target) == "line one\nline two"

    @pytest.mark.asyncio
    async def test_rename_refuses_to_overwrite(self, tmp_path: Path) -> None:
        provider = LocalFileProvider()
        (tmp_path / "a.md").write_text("a", encoding="utf-8")
        (tmp_path / "b.md").write_text("b", encoding="utf-8")

        with pytest.raises(FileExistsError):
            await provider.rename_entry(str(tmp_path / "a.md"), str(tmp_path / "b.md"))

        await provider.rename_entry(str(tmp_path / "a.md"), str(tmp_path / "c.md"))
        assert (tmp_path / "c.md").read_text(encoding="utf-8") == "a"

    @pytest.mark.asyncio
    async def test_missing_file_raises(self, tmp_path: Path) -> None:
        with pytest.raises(FileNotFoundError):
            await LocalFileProvider().read_file(str(tmp_path / "absent.md"))


@pytest.mark.asyncio
async def test_call_provider_accepts_sync_and_async() -> None:
    async def async_double(value: int) -> int:
        return value * 2

    assert await call_provider(lambda value: value + 1, 1) == 2
    assert await call_provider(async_double, 2) == 4
