"""Media classification helpers (images and documents)."""
from typing import Optional

from catalogsync.utils import is_blank, normalize_relative_path

ARTICLE_TYPE = "article"
CATEGORY_TYPE = "category"

ARTICLE_CODES = ("article", "artikel", "a")
CATEGORY_CODES = ("category", "kategorie", "warengruppe", "warengruppen", "c", "w")

ARTICLE_SEGMENT = "artikel"
CATEGORY_SEGMENT = "warengruppen"


def _clean(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()


def media_entity_type(type_code=None, article_id=None, category_id=None) -> Optional[str]:
    """
    Decide whether a media record belongs to an article or a category.

    An explicit type code wins; otherwise the first non-empty id decides.
    """
    code = _clean(type_code).lower()
    if code in ARTICLE_CODES:
        return ARTICLE_TYPE
    if code in CATEGORY_CODES:
        return CATEGORY_TYPE
    if not is_blank(_clean(article_id)):
        return ARTICLE_TYPE
    if not is_blank(_clean(category_id)):
        return CATEGORY_TYPE
    return None


def media_entity_id(type_code=None, article_id=None, category_id=None) -> Optional[str]:
    """Id matching the classification of ``media_entity_type``."""
    entity_type = media_entity_type(type_code, article_id, category_id)
    if entity_type == ARTICLE_TYPE:
        return _clean(article_id) or None
    if entity_type == CATEGORY_TYPE:
        return _clean(category_id) or None
    return None


def _segment_after(path, segment: str) -> Optional[str]:
    parts = normalize_relative_path(path).split("/")
    for index, part in enumerate(parts[:-1]):
        if part.lower() == segment and parts[index + 1] != "":
            return parts[index + 1]
    return None


def media_extract_article(path) -> Optional[str]:
    return _segment_after(path, ARTICLE_SEGMENT)


def media_extract_category(path) -> Optional[str]:
    return _segment_after(path, CATEGORY_SEGMENT)


def media_detect_type(path) -> Optional[str]:
    """Classify a relative path by its ``artikel/<id>`` or ``warengruppen/<id>`` segment."""
    if media_extract_article(path) is not None:
        return ARTICLE_TYPE
    if media_extract_category(path) is not None:
        return CATEGORY_TYPE
    return None


def image_guard(value, mime=None):
    """Pass the value only when the mime type is an image type."""
    if is_blank(mime) or not str(mime).strip().lower().startswith("image/"):
        return None
    return value


def document_guard(value, mime=None):
    """Pass the value only when the mime type is not an image type."""
    if not is_blank(mime) and str(mime).strip().lower().startswith("image/"):
        return None
    return value
