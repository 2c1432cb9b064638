"""Content fingerprints and the stable upload names derived from them."""

from __future__ import annotations

import hashlib
import re
from pathlib import PurePosixPath

_UNSAFE_NAME_CHARS = re.compile(r"[^A-Za-z0-9_-]")

DEFAULT_EXTENSION = "md"


def fingerprint(content: str) -> str:
    """Compute a SHA-256 hash of a string after normalizing line endings.

    Line endings are normalized to ``\\n`` before hashing so that the
    same logical content produces the same hash across platforms.

    Args:
        content: The (already link-rewritten) text to hash. May be empty.

    Returns:
        Hex-encoded SHA-256 digest string.
    """
    normalized = content.replace("\r\n", "\n").replace("\r", "\n")
    return hashlib.sha256(normalized.encode("utf-8")).hexdigest()


def sanitize(name: str) -> str:
    """Replace every character outside ``[A-Za-z0-9_-]`` with ``_``."""
    return _UNSAFE_NAME_CHARS.sub("_", name)


def stable_name(original_name: str, content_hash: str) -> str:
    """Derive the deterministic remote filename for a document.

    The result is ``<sanitized base>_<hash[:8]>.<ext>``.  Directory
    separators in *original_name* are sanitized along with everything
    else, so ``notes/a.md`` and ``work/a.md`` get distinct names.

    Example::

        >>> stable_name("Projects/Road map.md", "3fa9c2d1e0...")
        'Projects_Road_map_3fa9c2d1.md'
    """
    path = PurePosixPath(original_name)
    extension = path.suffix.lstrip(".") or DEFAULT_EXTENSION
    base = str(path.with_suffix("")) if path.suffix else original_name
    return f"{sanitize(base)}_{content_hash[:8]}.{extension}"
