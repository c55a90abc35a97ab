"""
RTF Converter - Turns RTF long texts into simplified HTML

Supports:
- Removal of non-content groups (font/colour tables, info, pictures, ``{\\*`` groups)
- Symbolic controls (quotes, dashes, bullets, non-breaking space)
- ``\\'HH`` hex escapes decoded with the declared ANSI code page
- ``\\uN`` unicode escapes
- Paragraph/line/tab controls converted to line breaks
"""

import logging
import re

logger = logging.getLogger(__name__)

SKIPPED_GROUPS = (
    "fonttbl",
    "colortbl",
    "stylesheet",
    "info",
    "header",
    "footer",
    "generator",
    "pict",
)

SYMBOLS = (
    ("\\~", " "),
    ("\\_", "-"),
    ("\\emdash", "\u2014"),
    ("\\endash", "\u2013"),
    ("\\lquote", "\u2018"),
    ("\\rquote", "\u2019"),
    ("\\ldblquote", "\u201c"),
    ("\\rdblquote", "\u201d"),
    ("\\bullet", "\u2022"),
)

DEFAULT_CODEPAGE = "cp1252"

CODEPAGE_PATTERN = re.compile(r"\\ansicpg(\d+)", re.IGNORECASE)
HEX_PATTERN = re.compile(r"\\'([0-9a-fA-F]{2})")
UNICODE_PATTERN = re.compile(r"\\u(-?\d+)\??")
CONTROL_PATTERN = re.compile(r"\\[a-zA-Z]+-?\d* ?")


def detect_codepage(rtf: str) -> str:
    """Code page declared by ``\\ansicpgNNNN`` (cp1252 when absent)."""
    match = CODEPAGE_PATTERN.search(rtf)
    if match:
        return f"cp{match.group(1)}"
    return DEFAULT_CODEPAGE


def remove_groups(rtf: str, keywords=SKIPPED_GROUPS) -> str:
    """Drop whole ``{\\keyword ...}`` and ``{\\* ...}`` groups by depth scanning."""
    result = []
    length = len(rtf)
    i = 0

    while i < length:
        char = rtf[i]
        if char == "{" and i + 1 < length and rtf[i + 1] == "\\":
            j = i + 2
            skip = False
            if j < length and rtf[j] == "*":
                skip = True
            else:
                start = j
                while j < length and rtf[j].isascii() and rtf[j].isalpha():
                    j += 1
                keyword = rtf[start:j].lower()
                skip = keyword in keywords

            if skip:
                depth = 1
                k = i + 1
                while k < length:
                    if rtf[k] == "{":
                        depth += 1
                    elif rtf[k] == "}":
                        depth -= 1
                        if depth == 0:
                            break
                    k += 1
                i = k + 1
                continue

        result.append(char)
        i += 1

    return "".join(result)


def replace_symbols(rtf: str) -> str:
    for control, replacement in SYMBOLS:
        rtf = rtf.replace(control, replacement)
    return rtf


def _decode_byte(byte: int, codepage: str) -> str:
    try:
        return bytes([byte]).decode(codepage, errors="replace")
    except LookupError:
        logger.debug(f"Unknown RTF code page {codepage}, falling back to {DEFAULT_CODEPAGE}")
        return bytes([byte]).decode(DEFAULT_CODEPAGE, errors="replace")


def _decode_unicode(match) -> str:
    code = int(match.group(1))
    if code < 0:
        code += 65536
    if code == 0:
        return ""
    try:
        return chr(code)
    except (ValueError, OverflowError):
        return ""


def decode_entities(rtf: str, codepage: str = DEFAULT_CODEPAGE) -> str:
    """Decode hex and unicode escapes."""
    rtf = re.sub(r"\\uc\d+", "", rtf)
    rtf = HEX_PATTERN.sub(lambda m: _decode_byte(int(m.group(1), 16), codepage), rtf)
    return UNICODE_PATTERN.sub(_decode_unicode, rtf)


def finalize_plain_text(text: str) -> str:
    """Collapse whitespace, drop a leading font-name remnant, join lines with <br>."""
    text = re.sub(r"\r\n?", "\n", text)
    text = re.sub(r"[ \t]+\n", "\n", text)
    text = re.sub(r"\n{3,}", "\n\n", text)
    text = re.sub(r"[ \t]{2,}", " ", text)
    text = re.sub(r"^\s*[\w\s\-,.]+;", "", text)
    text = text.strip()
    if text == "":
        return ""

    lines = [line.strip() for line in text.split("\n")]
    return "<br>".join(line for line in lines if line)


def rtf_to_html(value):
    """
    Convert an RTF document (or plain text) to simplified HTML.

    Args:
        value: Raw field content

    Returns:
        Text with ``<br>`` line breaks, '' for empty input, None for None
    """
    if value is None:
        return None

    text = str(value).strip()
    if text == "":
        return ""

    if "{\\rtf" not in text:
        return finalize_plain_text(text)

    codepage = detect_codepage(text)
    rtf = remove_groups(text)
    rtf = replace_symbols(rtf)
    rtf = decode_entities(rtf, codepage)

    rtf = re.sub(r"\\pard?(?![a-zA-Z])", "\n", rtf)
    rtf = re.sub(r"\\line(?![a-zA-Z])", "\n", rtf)
    rtf = re.sub(r"\\tab(?![a-zA-Z])", "\t", rtf)

    rtf = CONTROL_PATTERN.sub(" ", rtf)
    rtf = rtf.replace("\\{", "\x00").replace("\\}", "\x01")
    for char in ("{", "}", "\\"):
        rtf = rtf.replace(char, "")
    rtf = rtf.replace("\x00", "{").replace("\x01", "}")

    return finalize_plain_text(rtf)
