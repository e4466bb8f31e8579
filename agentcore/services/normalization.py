import re
import unicodedata
from typing import Optional

DEFAULT_COUNTRY_CODE = "52"

_NON_DIGITS = re.compile(r"\D")
_WHITESPACE = re.compile(r"\s+")


def normalize_phone(phone: Optional[str], country_code: str = DEFAULT_COUNTRY_CODE) -> Optional[str]:
    """Normalize a phone number to an E.164-like ``+<digits>`` form.

    Bare 10-digit numbers get the default country prefix; numbers that already
    start with the country code only gain the ``+``. Idempotent.
    """
    if phone is None:
        return None
    stripped = phone.strip()
    digits = _NON_DIGITS.sub("", stripped)
    if not digits:
        return None
    if stripped.startswith("+"):
        return f"+{digits}"
    if digits.startswith(country_code):
        return f"+{digits}"
    if len(digits) == 10:
        return f"+{country_code}{digits}"
    return f"+{digits}"


def normalize_email(email: Optional[str]) -> Optional[str]:
    if email is None:
        return None
    normalized = email.strip().casefold()
    return normalized or None


def normalize_name(name: Optional[str]) -> str:
    """Lowercase, strip accents and collapse whitespace for fuzzy comparison."""
    if not name:
        return ""
    decomposed = unicodedata.normalize("NFKD", name)
    without_marks = "".join(ch for ch in decomposed if not unicodedata.combining(ch))
    return _WHITESPACE.sub(" ", without_marks).strip().casefold()


def levenshtein(a: str, b: str) -> int:
    if a == b:
        return 0
    if not a:
        return len(b)
    if not b:
        return len(a)
    previous = list(range(len(b) + 1))
    for i, char_a in enumerate(a, start=1):
        current = [i]
        for j, char_b in enumerate(b, start=1):
            cost = 0 if char_a == char_b else 1
            current.append(min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost))
        previous = current
    return previous[-1]


def name_similarity(a: Optional[str], b: Optional[str]) -> float:
    """``1 - distance / max(len)`` over normalized names, in [0, 1]."""
    left = normalize_name(a)
    right = normalize_name(b)
    longest = max(len(left), len(right))
    if longest == 0:
        return 0.0
    return 1.0 - levenshtein(left, right) / longest
