"""
Name canonicalization used for every roster/document equality test.
"""

import re
from typing import Any

_WHITESPACE = re.compile(r"\s+")
_CJK_IDEOGRAPH = re.compile(r"[一-龥]")


def normalize_name(value: Any) -> str:
    """
    Canonical form of a person name for equality comparison.

    Uppercases, drops all whitespace and folds the digit ``0`` onto the
    letter ``O`` (ticket filenames are typed by hand and mix them up).
    The transform is idempotent.
    """
    if value is None:
        return ""
    text = str(value).upper()
    text = _WHITESPACE.sub("", text)
    return text.replace("0", "O").strip()


def contains_ideograph(value: str) -> bool:
    return bool(_CJK_IDEOGRAPH.search(value))


def format_roster_name(value: Any) -> str:
    """
    Display form of a roster name.

    Chinese names are written one character per token ("李雷" -> "李 雷"),
    the way ticket filenames spell them. Other names are only trimmed.
    """
    if value is None:
        return ""
    text = str(value).strip()
    if contains_ideograph(text):
        return " ".join(ch for ch in text if not ch.isspace())
    return text
