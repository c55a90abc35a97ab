"""Small helpers shared by several modules."""
import re


def normalize_relative_path(path) -> str:
    """
    Normalize a relative media path.

    Backslashes become forward slashes, duplicate slashes collapse,
    ``./`` segments are dropped and leading/trailing slashes removed.

    Args:
        path: Raw path as stored in the source system

    Returns:
        Normalized ``a/b/c`` style path ('' for empty input)
    """
    if path is None:
        return ""
    value = str(path).strip().replace("\\", "/")
    value = re.sub(r"/{2,}", "/", value)
    parts = [p for p in value.split("/") if p not in ("", ".")]
    return "/".join(parts)


def is_blank(value) -> bool:
    """True for None or a whitespace-only string."""
    return value is None or (isinstance(value, str) and value.strip() == "")
