"""File helpers shared by the local file provider and the draft backend."""

from __future__ import annotations

import codecs
import hashlib
import locale
import os
import tempfile
from pathlib import Path

__all__ = [
    "UNTITLED_SCHEME",
    "read_text",
    "write_text",
    "replace_atomically",
    "compute_text_digest",
    "file_extension",
    "is_untitled",
]

UNTITLED_SCHEME = "untitled://"

_BOM_MAP: dict[bytes, str] = {
    codecs.BOM_UTF8: "utf-8-sig",
    codecs.BOM_UTF32_LE: "utf-32-le",
    codecs.BOM_UTF32_BE: "utf-32-be",
    codecs.BOM_UTF16_LE: "utf-16-le",
    codecs.BOM_UTF16_BE: "utf-16-be",
}


def read_text(
    path: Path | str,
    *,
    encoding: str | None = None,
    errors: str = "strict",
    normalize_newlines: bool = True,
) -> str:
    """Read a text file, sniffing its encoding and normalizing newlines to ``\\n``."""

    raw = Path(path).read_bytes()
    text = raw.decode(encoding or _detect_encoding(raw), errors=errors)
    if text.startswith("\ufeff"):
        text = text[1:]
    return _normalize_newlines(text) if normalize_newlines else text


def write_text(
    path: Path | str,
    content: str,
    *,
    encoding: str = "utf-8",
    newline: str = "\n",
    atomic: bool = True,
) -> Path:
    """Write ``content`` to ``path``; atomic writes go through a sibling temp file."""

    target = Path(path)
    target.parent.mkdir(parents=True, exist_ok=True)
    body = _apply_newline_policy(content, newline)
    if not atomic:
        with target.open("w", encoding=encoding, newline="") as handle:
            handle.write(body)
            handle.flush()
            os.fsync(handle.fileno())
        return target
    return replace_atomically(target, body, encoding=encoding)


def replace_atomically(target: Path, body: str, *, encoding: str = "utf-8") -> Path:
    """Swap ``target`` for a fully written temp file so readers never see partial data."""

    descriptor, tmp_name = tempfile.mkstemp(
        dir=str(target.parent), prefix=f".{target.name}.", suffix=".tmp"
    )
    try:
        with os.fdopen(descriptor, "w", encoding=encoding, newline="") as handle:
            handle.write(body)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, target)
    finally:
        if os.path.exists(tmp_name):  # pragma: no cover - only on failed replace
            try:
                os.unlink(tmp_name)
            except OSError:
                pass
    return target


def compute_text_digest(text: str) -> str:
    """Return a SHA-256 digest for the provided text."""

    return hashlib.sha256(text.encode("utf-8")).hexdigest()


def file_extension(path: str | None) -> str:
    """Lower-cased extension without the dot; empty when there is none."""

    if not path:
        return ""
    if is_untitled(path):
        path = path[len(UNTITLED_SCHEME):]
    return Path(path).suffix.lower().lstrip(".")


def is_untitled(path: str | None) -> bool:
    """Untitled buffers have a placeholder path with no file behind it."""

    return bool(path) and str(path).startswith(UNTITLED_SCHEME)


def _detect_encoding(raw: bytes) -> str:
    for bom, encoding in _BOM_MAP.items():
        if raw.startswith(bom):
            return encoding

    preferred = locale.getpreferredencoding(False) or "utf-8"
    seen: set[str] = set()
    for candidate in ("utf-8", preferred, "latin-1"):
        if not candidate or candidate in seen:
            continue
        seen.add(candidate)
        try:
            raw.decode(candidate)
            return candidate
        except UnicodeDecodeError:
            continue
    return "utf-8"


def _normalize_newlines(text: str) -> str:
    if "\r" not in text:
        return text
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _apply_newline_policy(content: str, newline: str) -> str:
    normalized = _normalize_newlines(content)
    if newline == "\n":
        return normalized
    if newline in ("\r\n", "\r"):
        return normalized.replace("\n", newline)
    raise ValueError(f"Unsupported newline policy: {newline!r}")
