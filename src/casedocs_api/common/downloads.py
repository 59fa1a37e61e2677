"""Download response helpers."""

from __future__ import annotations

import unicodedata
from urllib.parse import quote

__all__ = ["build_content_disposition"]

_UNSAFE_FALLBACK = {'"', "\\", ";", ":", "/"}
_MAX_FILENAME = 255


def build_content_disposition(filename: str | None, *, default: str = "download") -> str:
    """Return an ``attachment`` Content-Disposition value for ``filename``.

    Non-ASCII names get an ASCII ``filename`` fallback plus an RFC 5987
    ``filename*`` parameter.
    """
    visible = "".join(
        ch for ch in (filename or "") if not unicodedata.category(ch).startswith("C")
    ).strip()
    candidate = visible or default

    fallback = "".join(
        ch if 32 <= ord(ch) < 127 and ch not in _UNSAFE_FALLBACK else "_" for ch in candidate
    ).strip("_ ")[:_MAX_FILENAME] or default

    if fallback == candidate:
        return f'attachment; filename="{fallback}"'
    return f"attachment; filename=\"{fallback}\"; filename*=UTF-8''{quote(candidate, safe='')}"
