"""Deterministic, collision-free output filenames.

Pure helpers: the only I/O is the existence probe in :func:`resolve_conflict`.
"""

from __future__ import annotations

import os
import re
from datetime import datetime
from urllib.parse import urlsplit

from .config import FILE_EXTENSIONS
from .errors import FilenameConflict

SLUG_MAX_LEN = 80
MAX_CONFLICT_ATTEMPTS = 10_000
TIMESTAMP_FORMAT = "%Y-%m-%d-%H%M%S"

_NON_ALNUM = re.compile(r"[^a-z0-9]+")


def slugify(text: str, max_len: int = SLUG_MAX_LEN) -> str:
    slug = _NON_ALNUM.sub("-", (text or "").lower()).strip("-")
    if len(slug) > max_len:
        slug = slug[:max_len].rstrip("-")
    return slug


def url_slug(url: str) -> str:
    """Slug of the URL host, or ``page`` when there is none."""
    try:
        host = urlsplit(url or "").hostname or ""
    except ValueError:
        return "page"
    return slugify(host) or "page"


def file_extension(fmt: str) -> str:
    return FILE_EXTENSIONS.get(fmt, ".md")


def generate_filename(title: str, fmt: str, timestamp: datetime, source_url: str) -> str:
    slug = slugify(title) or url_slug(source_url)
    return f"{timestamp.strftime(TIMESTAMP_FORMAT)}-{slug}{file_extension(fmt)}"


def _exists(path: str) -> bool:
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    return True


def resolve_conflict(directory: str, filename: str) -> str:
    """Return ``filename`` or the first free ``name-N.ext`` variant in ``directory``.

    Gives up with :class:`FilenameConflict` after a bounded number of probes.
    Stat failures other than "not found" propagate.
    """
    if not _exists(os.path.join(directory, filename)):
        return filename

    stem, ext = os.path.splitext(filename)
    for counter in range(1, MAX_CONFLICT_ATTEMPTS + 1):
        candidate = f"{stem}-{counter}{ext}"
        if not _exists(os.path.join(directory, candidate)):
            return candidate

    raise FilenameConflict(
        f"Too many conflicts for filename: {filename}",
        "Clean up the output directory or choose another one with --output-dir",
        {"directory": directory, "attempts": MAX_CONFLICT_ATTEMPTS},
    )


def output_path(directory: str, title: str, url: str, fmt: str, timestamp: datetime) -> str:
    filename = generate_filename(title, fmt, timestamp, url)
    return os.path.join(directory, resolve_conflict(directory, filename))
