"""Transformer registry."""
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from catalogsync.transformer import media, text
from catalogsync.transformer.rtf import rtf_to_html

logger = logging.getLogger(__name__)

DEFAULT_SHOP_NAME = "unserem Shop"
CATEGORY_PATHS_KEY = "__category_paths"


class TransformerRegistry:
    """Registry of available transformers and ``$func`` functions.

    Every function receives positional inputs: for a pipe step the current
    value followed by the step's arguments, for a ``$func.name(...)`` call
    only the evaluated arguments. Functions registered with
    ``needs_context=True`` also receive ``context=`` (the row's evaluation
    context). A ``pipe_form`` replaces the function for pipe steps only.
    """

    def __init__(self, lookups=None, shop_name: str = DEFAULT_SHOP_NAME):
        """
        Initialize registry.

        Args:
            lookups: Lookup store with ``get(name, key)`` used by slug and
                     category resolution functions
            shop_name: Shop name used in default meta descriptions
        """
        self.lookups = lookups
        self.shop_name = shop_name
        self.transformers: Dict[str, Callable] = {}
        self.context_aware = set()
        self.pipe_forms: Dict[str, Callable] = {}

        self.register("trim", text.trim)
        self.register("basename", text.basename)
        self.register("rtf_to_html", rtf_to_html)
        self.register("transform_rtf_to_html", rtf_to_html)
        self.register("remove_html", text.remove_html)
        self.register("normalize_title", text.normalize_title)
        self.register("slugify", text.slugify)
        self.register("null_if_empty", text.null_if_empty)
        self.register("to_decimal", text.to_decimal)
        self.register("to_int", text.to_int)
        self.register("bool_to_int", text.bool_to_int)
        self.register("round", text.round_value)
        self.register("tax_map", text.tax_map)
        self.register("coalesce", text.coalesce)
        self.register("concat", text.concat)
        self.register("now", text.now, pipe_form=text.now_pipe)
        self.register("upper", lambda x: str(x).upper() if x else x)
        self.register("lower", lambda x: str(x).lower() if x else x)

        self.register("media_entity_type", media.media_entity_type)
        self.register("media_entity_id", media.media_entity_id)
        self.register("media_detect_type", media.media_detect_type)
        self.register("media_extract_article", media.media_extract_article)
        self.register("media_extract_category", media.media_extract_category)
        self.register("image_guard", media.image_guard)
        self.register("document_guard", media.document_guard)

        self.register("article_master_flag", self._article_master_flag)
        self.register("article_master_number", self._article_master_number)
        self.register("category_path", self._category_path, needs_context=True)
        self.register("category_slug", self._category_slug, needs_context=True)
        self.register("resolve_category_id", self._resolve_category_id)
        self.register("article_seo_slug", self._article_seo_slug)
        self.register("article_meta_title_default", self._meta_title_default)
        self.register("article_meta_description_default", self._article_meta_description_default)
        self.register("category_meta_title_default", self._category_meta_title_default)
        self.register("category_meta_description_default", self._category_meta_description_default)

    def register(
        self, name: str, func: Callable, needs_context: bool = False, pipe_form: Optional[Callable] = None
    ) -> None:
        """Register (or replace) a function under ``name``."""
        self.transformers[name] = func
        if pipe_form is not None:
            self.pipe_forms[name] = pipe_form
        else:
            self.pipe_forms.pop(name, None)
        if needs_context:
            self.context_aware.add(name)
        else:
            self.context_aware.discard(name)

    def get(self, name: str) -> Optional[Callable]:
        """Get transformer by name."""
        return self.transformers.get(name)

    def has(self, name: str) -> bool:
        return name in self.transformers

    def apply(self, name: str, value: Any, args: Sequence[Any] = (), context: Optional[dict] = None) -> Any:
        """
        Apply a pipe transformation.

        Unknown names pass the value through. A transformer that raises is
        logged and the value is returned unchanged.
        """
        transformer = self.pipe_forms.get(name) or self.get(name)
        if transformer is None:
            logger.debug(f"Unknown transformer '{name}', value passed through")
            return value

        try:
            return self._invoke(name, transformer, [value, *args], context)
        except Exception as e:
            logger.error(f"Transformer '{name}' failed: {e}")
            return value

    def call(self, name: str, args: Sequence[Any] = (), context: Optional[dict] = None) -> Any:
        """Call a ``$func`` function with already evaluated arguments."""
        func = self.get(name)
        if func is None:
            logger.warning(f"Unknown function '$func.{name}'")
            return None

        try:
            return self._invoke(name, func, list(args), context)
        except Exception as e:
            logger.error(f"Function '$func.{name}' failed: {e}")
            return None

    def _invoke(self, name: str, func: Callable, inputs, context):
        if name in self.context_aware:
            return func(*inputs, context=context or {})
        return func(*inputs)

    # ------------------------------------------------------------------
    # Master/variant
    # ------------------------------------------------------------------

    @staticmethod
    def _article_master_flag(value=None) -> int:
        token = "" if value is None else str(value).strip()
        return 1 if token.lower() == "master" else 0

    @staticmethod
    def _article_master_number(value=None):
        token = "" if value is None else str(value).strip()
        if token == "" or token.lower() == "master":
            return None
        return token

    # ------------------------------------------------------------------
    # Category paths
    # ------------------------------------------------------------------

    @staticmethod
    def _category_path(category_id=None, context=None):
        paths = (context or {}).get(CATEGORY_PATHS_KEY) or {}
        key = _lookup_key(category_id)
        if key == "":
            return None
        return paths.get(key)

    @classmethod
    def _category_slug(cls, category_id=None, context=None):
        path = cls._category_path(category_id, context=context)
        if not path:
            return None
        return path.rsplit("/", 1)[-1]

    # ------------------------------------------------------------------
    # Lookup-backed functions
    # ------------------------------------------------------------------

    def _lookup(self, name: str, key):
        if self.lookups is None:
            return None
        return self.lookups.get(name, key)

    def _resolve_category_id(self, value=None) -> int:
        resolved = self._lookup("category_by_afs_id", value)
        return int(resolved) if resolved is not None else 0

    def _article_seo_slug(self, model=None, category=None, name=None, master_model=None) -> str:
        """Existing slug of the model, else ``<category slug>/<slug(name)>``."""
        existing = self._lookup("artikel_slug_by_model", model)
        if existing is not None and str(existing).strip() != "":
            return str(existing).strip()

        category_id = self._resolve_category_id(category)

        master = "" if master_model is None else str(master_model).strip()
        if master != "" and master.lower() != "master":
            master_category = self._lookup("artikel_category_by_model", master)
            if master_category is not None:
                category_id = int(master_category)

        category_slug = ""
        if category_id > 0:
            category_slug = str(self._lookup("category_slug_by_id", category_id) or "").strip()

        base = category_slug.strip("/") or "de"
        article_slug = text.slugify(name)
        if article_slug:
            return f"{base}/{article_slug}"
        return base

    # ------------------------------------------------------------------
    # Default meta texts
    # ------------------------------------------------------------------

    @staticmethod
    def _meta_title_default(name=None) -> str:
        return "" if name is None else str(name).strip()

    def _article_meta_description_default(self, name=None) -> str:
        value = "" if name is None else str(name).strip()
        if value == "":
            return ""
        return (
            f"{value} &Iota; hohe Qualität &#2705; schnelle Lieferung &#2705; "
            f"langlebig &#2705; &#10148; Jetzt bei {self.shop_name} kaufen!"
        )

    @staticmethod
    def _category_meta_title_default(name=None) -> str:
        value = "" if name is None else str(name).strip()
        if value == "":
            return ""
        return f"{value} &Iota; Hier Produktvielfalt entdecken!"

    def _category_meta_description_default(self, name=None) -> str:
        value = "" if name is None else str(name).strip()
        if value == "":
            return ""
        return (
            f"{value} &Iota; breites Sortiment &#2705; schnelle Lieferung &#2705; "
            f"langlebig &#2705; &#10148; Jetzt bei {self.shop_name} kaufen!"
        )


def _lookup_key(value) -> str:
    if value is None:
        return ""
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return str(value).strip()
