"""
Expression Engine - Compiles and evaluates pipe-chained mapping expressions

Syntax:
- ``AFS.Artikel.Bezeichnung | trim | default:'Unbenannt'``
- References: numbers, quoted strings, ``null``/``~``, ``=literal``,
  ``$func.name(args)`` and dotted context paths
- Transforms: ``name``, ``name(args)`` and ``name:arg``
- Built-in steps handled here: ``case(k->v, else->x)`` and ``default``
"""

import logging
import re
from typing import Any, Dict, List, Optional, Union

from catalogsync.schema.models import CompiledExpression, TransformSegment
from catalogsync.transformer.registry import TransformerRegistry
from catalogsync.transformer.text import is_numeric
from catalogsync.utils import is_blank

logger = logging.getLogger(__name__)

NUMBER_PATTERN = re.compile(r"^[-+]?\d+(\.\d+)?$")
CALL_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*)\((.*)\)$", re.DOTALL)
COLON_PATTERN = re.compile(r"^([a-zA-Z_][a-zA-Z0-9_]*):(.*)$", re.DOTALL)
PATH_PATTERN = re.compile(r"^[A-Za-z_$][\w$]*(\.[\w$-]+)+$")
FUNC_PREFIX = "$func."
ARITHMETIC_OPERATORS = "+-*/"


# ============================================================================
# LEXICAL HELPERS
# ============================================================================


def split_top_level(text: str, separator: str) -> List[str]:
    """
    Split on ``separator`` outside quotes and parentheses.

    Args:
        text: Text to split
        separator: Single separator character

    Returns:
        List of raw (untrimmed) parts
    """
    parts = []
    current = []
    quote = None
    depth = 0

    for char in text:
        if quote:
            current.append(char)
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")" and depth > 0:
            depth -= 1
        elif char == separator and depth == 0:
            parts.append("".join(current))
            current = []
            continue
        current.append(char)

    parts.append("".join(current))
    return parts


def is_quoted(text: str) -> bool:
    return len(text) >= 2 and text[0] == text[-1] and text[0] in ("'", '"')


def parse_number(text: str) -> Union[int, float]:
    return float(text) if "." in text else int(text)


def parse_literal(literal: str) -> Any:
    """Literal text → number, bool, None, unquoted string or the raw text."""
    literal = literal.strip()
    if literal == "":
        return ""
    lowered = literal.lower()
    if lowered == "null" or literal == "~":
        return None
    if lowered == "true":
        return True
    if lowered == "false":
        return False
    if NUMBER_PATTERN.match(literal):
        return parse_number(literal)
    if is_quoted(literal):
        return literal[1:-1]
    return literal


def stringify(value: Any) -> str:
    """String form used by ``case`` comparisons."""
    if value is None:
        return "null"
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    if isinstance(value, (str, int, float)):
        return str(value)
    return ""


def has_operator_outside_quotes(text: str) -> bool:
    quote = None
    for index, char in enumerate(text):
        if quote:
            if char == quote:
                quote = None
            continue
        if char in ("'", '"'):
            quote = char
        elif char in ARITHMETIC_OPERATORS and index > 0:
            return True
    return False


# ============================================================================
# ENGINE
# ============================================================================


class ExpressionEngine:
    """Compiler and evaluator for mapping expressions"""

    def __init__(self, registry: Optional[TransformerRegistry] = None):
        """
        Initialize ExpressionEngine

        Args:
            registry: Transformer registry (a default one is created if omitted)
        """
        self.registry = registry or TransformerRegistry()
        self._cache: Dict[str, CompiledExpression] = {}

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self, expression: Optional[str]) -> CompiledExpression:
        """
        Compile an expression into base reference and transform segments

        Args:
            expression: Raw expression text

        Returns:
            CompiledExpression (``base`` is None for empty expressions)
        """
        source = "" if expression is None else str(expression)
        cached = self._cache.get(source)
        if cached is not None:
            return cached

        stripped = source.strip()
        if stripped == "":
            compiled = CompiledExpression(source=source, base=None)
        else:
            segments = split_top_level(stripped, "|")
            transforms = tuple(
                self._compile_segment(segment.strip())
                for segment in segments[1:]
                if segment.strip() != ""
            )
            compiled = CompiledExpression(source=source, base=segments[0].strip(), transforms=transforms)

        self._cache[source] = compiled
        return compiled

    @staticmethod
    def _compile_segment(segment: str) -> TransformSegment:
        match = CALL_PATTERN.match(segment)
        if match:
            raw_args = match.group(2).strip()
            args = tuple(a.strip() for a in split_top_level(raw_args, ",")) if raw_args else ()
            return TransformSegment(name=match.group(1), args=args, has_parens=True)

        match = COLON_PATTERN.match(segment)
        if match:
            return TransformSegment(name=match.group(1), colon_arg=match.group(2))

        return TransformSegment(name=segment)

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def evaluate(self, expression: Union[str, CompiledExpression, None], context: Dict[str, Any]) -> Any:
        """
        Evaluate an expression against a context

        Args:
            expression: Expression text or a compiled expression
            context: Evaluation context (nested dicts)

        Returns:
            Resulting value (None for empty expressions)
        """
        compiled = expression if isinstance(expression, CompiledExpression) else self.compile(expression)
        if compiled.base is None:
            return None

        value = self.resolve_reference(compiled.base, context)
        for segment in compiled.transforms:
            value = self._apply_segment(segment, value, context)
        return value

    def resolve_reference(self, reference: str, context: Dict[str, Any]) -> Any:
        """Resolve a literal, ``=literal``, ``$func`` call or dotted path."""
        reference = reference.strip()
        if reference == "":
            return None

        if NUMBER_PATTERN.match(reference):
            return parse_number(reference)
        if is_quoted(reference):
            return reference[1:-1]
        if reference.lower() == "null" or reference == "~":
            return None
        if reference.startswith("="):
            return parse_literal(reference[1:])
        if reference.startswith(FUNC_PREFIX):
            return self._call_function(reference[len(FUNC_PREFIX):], context)

        return self.resolve_path(reference, context)

    @staticmethod
    def resolve_path(path: str, context: Dict[str, Any]) -> Any:
        """Walk a dotted path; any missing segment yields None."""
        current: Any = context
        for part in path.split("."):
            if isinstance(current, dict) and part in current:
                current = current[part]
                continue
            return None
        return current

    def _call_function(self, call: str, context: Dict[str, Any]) -> Any:
        match = CALL_PATTERN.match(call.strip())
        if match:
            name = match.group(1)
            raw_args = match.group(2).strip()
            args = [self.evaluate(a.strip(), context) for a in split_top_level(raw_args, ",")] if raw_args else []
        else:
            name, args = call.strip(), []
        return self.registry.call(name, args, context)

    def _apply_segment(self, segment: TransformSegment, value: Any, context: Dict[str, Any]) -> Any:
        name = segment.name.lower()

        if name == "default":
            fallback = segment.colon_arg
            if fallback is None:
                fallback = segment.args[0] if segment.args else ""
            return self._apply_default(value, fallback, context)

        if name == "case":
            arms = segment.args
            if segment.colon_arg is not None:
                arms = tuple(a.strip() for a in split_top_level(segment.colon_arg, ","))
            return self._apply_case(value, arms)

        if segment.colon_arg is not None:
            args = [parse_literal(segment.colon_arg)]
        else:
            args = [self.evaluate(a, context) for a in segment.args]
        return self.registry.apply(segment.name, value, args, context)

    # ------------------------------------------------------------------
    # default / case
    # ------------------------------------------------------------------

    def _apply_default(self, value: Any, fallback: str, context: Dict[str, Any]) -> Any:
        if not is_blank(value):
            return value

        stripped = fallback.strip()
        if stripped == "" or is_quoted(stripped):
            return parse_literal(stripped)

        if not self._is_dynamic(stripped):
            literal = parse_literal(stripped)
            return fallback if isinstance(literal, str) else literal

        if stripped.startswith(FUNC_PREFIX) or PATH_PATTERN.match(stripped):
            return self.evaluate(stripped, context)

        result = self.evaluate_arithmetic(stripped, context)
        if result is None:
            logger.debug(f"Fallback '{stripped}' did not evaluate, using it literally")
            return fallback
        return result

    @staticmethod
    def _is_dynamic(text: str) -> bool:
        if FUNC_PREFIX in text or "(" in text:
            return True
        if PATH_PATTERN.match(text):
            return True
        if NUMBER_PATTERN.match(text):
            return False
        return has_operator_outside_quotes(text)

    def _apply_case(self, value: Any, arms) -> Any:
        value_str = stringify(value)
        else_value = value

        for arm in arms:
            if "->" not in arm:
                continue
            key, result = (part.strip() for part in arm.split("->", 1))
            if key.lower() == "else":
                else_value = parse_literal(result)
                continue
            if self._case_matches(value_str, key):
                return parse_literal(result)

        return else_value

    @staticmethod
    def _case_matches(value_str: str, key: str) -> bool:
        lowered = key.lower()
        if lowered in ("true", "false"):
            truthy = value_str.lower() in ("1", "true")
            return truthy == (lowered == "true")
        return value_str == stringify(parse_literal(key))

    # ------------------------------------------------------------------
    # Arithmetic fallback
    # ------------------------------------------------------------------

    def evaluate_arithmetic(self, text: str, context: Dict[str, Any]) -> Optional[float]:
        """
        Evaluate ``+ - * /`` with parentheses over references.

        Operands are resolved as references; a non-numeric operand or a
        division by zero yields None.
        """
        tokens = self._tokenize(text)
        if not tokens:
            return None
        parser = _ArithmeticParser(tokens, lambda ref: self.resolve_reference(ref, context))
        try:
            result = parser.parse()
        except (ValueError, ZeroDivisionError) as e:
            logger.debug(f"Arithmetic '{text}' failed: {e}")
            return None
        return result

    @staticmethod
    def _tokenize(text: str) -> List[str]:
        tokens = []
        current = []
        quote = None
        depth = 0

        def flush():
            token = "".join(current).strip()
            if token:
                tokens.append(token)
            current.clear()

        for char in text:
            if quote:
                current.append(char)
                if char == quote:
                    quote = None
                continue
            if char in ("'", '"'):
                quote = char
                current.append(char)
            elif char == "(" and "".join(current).strip():
                # call like $func.name( ... ) stays one operand
                depth += 1
                current.append(char)
            elif char == ")" and depth > 0:
                depth -= 1
                current.append(char)
            elif depth > 0:
                current.append(char)
            elif char in ARITHMETIC_OPERATORS + "()":
                flush()
                tokens.append(char)
            else:
                current.append(char)
        flush()
        return tokens


class _ArithmeticParser:
    """Recursive descent over tokens: expr := term (('+'|'-') term)*"""

    def __init__(self, tokens: List[str], resolve):
        self.tokens = tokens
        self.pos = 0
        self.resolve = resolve

    def parse(self) -> float:
        value = self._expr()
        if self.pos != len(self.tokens):
            raise ValueError(f"Unexpected token '{self.tokens[self.pos]}'")
        return value

    def _peek(self) -> Optional[str]:
        return self.tokens[self.pos] if self.pos < len(self.tokens) else None

    def _next(self) -> str:
        token = self._peek()
        if token is None:
            raise ValueError("Unexpected end of expression")
        self.pos += 1
        return token

    def _expr(self) -> float:
        value = self._term()
        while self._peek() in ("+", "-"):
            op = self._next()
            right = self._term()
            value = value + right if op == "+" else value - right
        return value

    def _term(self) -> float:
        value = self._factor()
        while self._peek() in ("*", "/"):
            op = self._next()
            right = self._factor()
            value = value * right if op == "*" else value / right
        return value

    def _factor(self) -> float:
        token = self._next()
        if token == "-":
            return -self._factor()
        if token == "+":
            return self._factor()
        if token == "(":
            value = self._expr()
            if self._next() != ")":
                raise ValueError("Missing ')'")
            return value
        operand = self.resolve(token)
        if isinstance(operand, str):
            operand = operand.replace(",", ".")
        if not is_numeric(operand):
            raise ValueError(f"Operand '{token}' is not numeric")
        return float(operand)
