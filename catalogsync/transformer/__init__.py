"""
Transformer Module - Named value transformations for mapping expressions

Provides:
- TransformerRegistry: name → function table used by pipe steps and ``$func`` calls
- rtf_to_html: RTF long-text conversion
- slugify: URL slug builder shared with the category path resolver
"""

from .registry import TransformerRegistry, CATEGORY_PATHS_KEY
from .rtf import rtf_to_html
from .text import slugify

__all__ = [
    "TransformerRegistry",
    "CATEGORY_PATHS_KEY",
    "rtf_to_html",
    "slugify",
]
