from __future__ import annotations

import re
import unicodedata


_EMAIL_RE = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")


def normalize_email(email: str | None) -> str | None:
    """Lowercase + trim an email address. Blank input returns None."""
    if email is None:
        return None
    s = unicodedata.normalize("NFKC", str(email)).strip().lower()
    return s or None


def is_valid_email(email: str | None) -> bool:
    return bool(email) and _EMAIL_RE.match(str(email)) is not None


def normalize_phone(phone: str | None) -> str | None:
    """Keep digits only (and a leading '+').

    "+91 98765-43210" -> "+919876543210". Returns None if no digits remain.
    """
    if phone is None:
        return None
    s = str(phone).strip()
    if not s:
        return None
    digits = "".join(ch for ch in s if ch.isdigit())
    if not digits:
        return None
    return f"+{digits}" if s.startswith("+") else digits


def clean_text(value: str | None) -> str | None:
    """Collapse whitespace; blank strings become None."""
    if value is None:
        return None
    s = " ".join(str(value).split())
    return s or None


def like_pattern(term: str) -> str:
    """Build a case-insensitive substring pattern for `LOWER(col) LIKE ? ESCAPE '\\'`.

    LIKE wildcards in the user's term are escaped so '%' and '_' match literally.
    """
    t = term.strip().lower()
    t = t.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
    return f"%{t}%"
