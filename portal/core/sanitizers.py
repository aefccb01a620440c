from __future__ import annotations

import html
import re
import unicodedata
from typing import Optional

__all__ = ["sanitize_plain_text", "slugify", "escape_like"]

_SLUG_STRIP = re.compile(r"[^a-z0-9]+")


def sanitize_plain_text(value: Optional[str], max_length: Optional[int] = None) -> str:
    """
    Normalize user-provided plain text so it is safe for HTML contexts.

    The text is unescaped first to avoid double-escaping artefacts, then
    escaped again, so the function is idempotent.
    """

    candidate = "" if value is None else str(value)
    if max_length is not None and max_length > 0:
        candidate = candidate[:max_length]

    normalized = html.unescape(candidate.strip())
    if not normalized:
        return ""

    escaped = html.escape(normalized, quote=True)
    # html.escape leaves the forward slash alone.
    return escaped.replace("/", "&#x2F;")


def slugify(value: str) -> str:
    """ASCII slug for news URLs ("Journée de l'étudiant" -> "journee-de-l-etudiant")."""
    ascii_text = (
        unicodedata.normalize("NFKD", value or "").encode("ascii", "ignore").decode("ascii")
    )
    return _SLUG_STRIP.sub("-", ascii_text.lower()).strip("-")


def escape_like(term: str) -> str:
    """Escape LIKE wildcards in a search term (use with `escape="\\\\"`)."""
    return term.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
