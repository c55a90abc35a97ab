"""Text and number transformers."""
import re
from datetime import datetime
from typing import Any, Optional

from unidecode import unidecode

from catalogsync.exceptions import ValidationError

NUMERIC_PATTERN = re.compile(r"^\s*[-+]?(\d+(\.\d*)?|\.\d+)([eE][-+]?\d+)?\s*$")
TAG_PATTERN = re.compile(r"<[^>]*>")
RTF_CONTROL_PATTERN = re.compile(r"\\[a-zA-Z]+-?\d* ?")

GERMAN_FOLDS = (
    ("&", " und "),
    ("ä", "ae"),
    ("ö", "oe"),
    ("ü", "ue"),
    ("ß", "ss"),
)

TRUTHY = ("1", "true", "yes", "ja", "y")

DEFAULT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"


def is_numeric(value: Any) -> bool:
    """True for numbers and numeric strings (bools excluded)."""
    if isinstance(value, bool):
        return False
    if isinstance(value, (int, float)):
        return True
    return isinstance(value, str) and bool(NUMERIC_PATTERN.match(value))


def trim(value):
    return value.strip() if isinstance(value, str) else value


def basename(value):
    """Last path component, accepting backslash separators."""
    if value is None or value == "":
        return value
    path = str(value).replace("\\", "/").rstrip("/")
    return path.rsplit("/", 1)[-1]


def remove_html(value):
    """Strip RTF control words (when present) and HTML tags."""
    if value is None or value == "":
        return value
    text = str(value)
    if "{\\rtf" in text:
        text = RTF_CONTROL_PATTERN.sub(" ", text)
        for char in ("{", "}", "\\"):
            text = text.replace(char, "")
        text = re.sub(r"\s+", " ", text).strip()
    return TAG_PATTERN.sub("", text)


def normalize_title(value) -> str:
    """Trimmed base name of a document title."""
    text = "" if value is None else str(value).strip()
    if text == "":
        return ""
    text = text.replace("\\", "/").replace("//", "/")
    return basename(text)


def slugify(value) -> str:
    """
    URL slug: lowercase, German folding, ASCII transliteration, hyphens.

    ``"Büro & Stühle"`` becomes ``"buero-und-stuehle"``.
    """
    text = "" if value is None else str(value).strip().lower()
    if text == "":
        return ""
    for source, replacement in GERMAN_FOLDS:
        text = text.replace(source, replacement)
    text = unidecode(text)
    text = re.sub(r"[^a-z0-9]+", "-", text.lower())
    return text.strip("-")


def null_if_empty(value):
    if value is not None and not isinstance(value, (str, int, float, bool)):
        return value
    text = "" if value is None else str(value).strip()
    return None if text == "" else value


def to_decimal(value) -> Optional[float]:
    """Locale-independent float conversion (``"12,5"`` → 12.5)."""
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return float(value)
    normalized = str(value).replace(",", ".")
    if not is_numeric(normalized):
        return None
    return float(normalized)


def to_int(value) -> Optional[int]:
    if value is None or value == "":
        return None
    if isinstance(value, bool):
        return int(value)
    if is_numeric(value):
        return int(float(value))
    return None


def bool_to_int(value) -> int:
    if isinstance(value, bool):
        return 1 if value else 0
    if is_numeric(value):
        return 1 if int(float(value)) == 1 else 0
    if isinstance(value, str) and value.strip().lower() in TRUTHY:
        return 1
    return 0


def round_value(value, precision=0) -> Optional[float]:
    if not is_numeric(value):
        return None
    if precision is None or precision == "":
        digits = 0
    elif is_numeric(precision):
        digits = int(float(precision))
    else:
        raise ValidationError(f"round: precision must be a number, got {precision!r}")
    return round(float(value), digits)


def tax_map(value, tolerance=0.01):
    """
    Map a tax percentage to the shop's tax class.

    ~19 → 1, ~7 → 2, ~0 → 0, anything else is rounded to an int.
    """
    if not is_numeric(value):
        return None
    rate = float(value)
    tolerance = float(tolerance)
    if abs(rate - 19.0) <= tolerance:
        return 1
    if abs(rate - 7.0) <= tolerance:
        return 2
    if abs(rate) <= tolerance:
        return 0
    return int(round(rate))


def coalesce(*values):
    """First value that is neither None nor a blank string."""
    for value in values:
        if value is None:
            continue
        if isinstance(value, str) and value.strip() == "":
            continue
        return value
    return None


def concat(*values) -> str:
    parts = []
    for value in values:
        if value is None:
            continue
        if isinstance(value, float) and value.is_integer():
            value = int(value)
        parts.append(str(value))
    return "".join(parts)


def now(fmt: str = DEFAULT_TIMESTAMP_FORMAT) -> str:
    return datetime.now().strftime(fmt)


def now_pipe(value, fmt: str = DEFAULT_TIMESTAMP_FORMAT) -> str:
    """Pipe form of ``now``: the incoming value is replaced by the timestamp."""
    return now(fmt)
