"""
Text helpers shared by the pipeline stages.

Covers whitespace cleanup, diacritic-insensitive keys, filename
sanitizing, placeholder company names and timestamp parsing.
"""

import re
import unicodedata
from datetime import datetime, timezone
from typing import Any, Optional


PLACEHOLDER_PREFIX = "empresa_"

# Consumer mail providers never identify a company
GENERIC_EMAIL_DOMAINS = frozenset({
    "gmail",
    "hotmail",
    "outlook",
    "live",
    "yahoo",
    "bol",
    "icloud",
    "uol",
    "terra",
    "proton",
    "gmx",
})

OLDEST = datetime.min.replace(tzinfo=timezone.utc)

_WHITESPACE_RE = re.compile(r"\s+")
_TITLE_SPLIT_RE = re.compile(r"[\s._-]+")
_PLACEHOLDER_RE = re.compile(r"^empresa[_\s-]", re.IGNORECASE)
_NON_ALNUM_RE = re.compile(r"[^a-zA-Z0-9]")
_UNSAFE_FILENAME_RE = re.compile(r"[^a-zA-Z0-9_-]")
_REPEATED_UNDERSCORE_RE = re.compile(r"_+")
_DIGITS_RE = re.compile(r"\d+")


def normalize_text(value: Any) -> Optional[str]:
    """Collapse newlines and repeated whitespace; None for blanks or non-strings."""
    if not isinstance(value, str):
        return None
    value = _WHITESPACE_RE.sub(" ", value).strip()
    return value or None


def to_title_case(value: Any) -> str:
    """Split on whitespace, dots, underscores and dashes and capitalize each token."""
    tokens = _TITLE_SPLIT_RE.split(str(value or ""))
    return " ".join(t[:1].upper() + t[1:].lower() for t in tokens if t)


def strip_diacritics(value: str) -> str:
    """Drop combining marks after NFD decomposition (``São`` -> ``Sao``)."""
    decomposed = unicodedata.normalize("NFD", value)
    return "".join(c for c in decomposed if not unicodedata.combining(c))


def normalize_name_key(name: Any) -> Optional[str]:
    """
    Key used to match requester names across companies.

    ``"José  da Silva"`` and ``"jose.dasilva"`` both become
    ``"josedasilva"``. Returns None when nothing alphanumeric is left.
    """
    if not name:
        return None
    key = _NON_ALNUM_RE.sub("", strip_diacritics(str(name))).lower()
    return key or None


def sanitize_filename(name: Any) -> str:
    """Turn a display name into a lower-case, filesystem-safe file key."""
    if not name:
        return "empresa_desconhecida"
    key = _UNSAFE_FILENAME_RE.sub("_", strip_diacritics(str(name)))
    key = _REPEATED_UNDERSCORE_RE.sub("_", key).lower().strip()
    return key or "empresa_desconhecida"


def placeholder_name(company_id: Any) -> str:
    return f"{PLACEHOLDER_PREFIX}{company_id}"


def is_placeholder_name(name: Any) -> bool:
    return bool(_PLACEHOLDER_RE.match(str(name or "")))


def is_generated_placeholder(name: Any) -> bool:
    """Exact ``empresa_<id>`` form produced by ``placeholder_name``."""
    return isinstance(name, str) and name.startswith(PLACEHOLDER_PREFIX)


def guess_company_name_from_email(email: Any) -> Optional[str]:
    """
    Infer a company name from a corporate email address.

    ``joao.costa@audacci.com.br`` gives ``"Audacci"``. Consumer providers,
    malformed addresses and guesses shorter than two characters give None.
    """
    if not email or not isinstance(email, str):
        return None

    parts = email.split("@")
    if len(parts) != 2:
        return None

    label = parts[1].lower().split(".")[0]
    if not label or label in GENERIC_EMAIL_DOMAINS:
        return None

    name = to_title_case(_DIGITS_RE.sub("", label))
    if len(name) < 2:
        return None
    return name


def parse_timestamp(value: Any) -> Optional[datetime]:
    """
    Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are taken as UTC. Unparsable input gives None.
    """
    if not value:
        return None
    if isinstance(value, datetime):
        parsed = value
    else:
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def timestamp_sort_key(value: Any) -> datetime:
    """Sort key for ``created_at``; unparsable timestamps count as the oldest."""
    return parse_timestamp(value) or OLDEST
