"""
Builder Module - Mapping expressions and payload construction

Builds target table payloads from source rows with:
- ExpressionEngine: pipe expressions, ``$func`` calls, ``default``/``case``
- FieldBuilder: manifest ``map`` sections → cached column assignments
- PayloadBuilder: evaluation context + assignments → ``{table: {column: value}}``
"""

from .expression import ExpressionEngine
from .field_builder import FieldBuilder, parse_target_path
from .payload_builder import PayloadBuilder, build_context

__all__ = [
    "ExpressionEngine",
    "FieldBuilder",
    "PayloadBuilder",
    "build_context",
    "parse_target_path",
]
