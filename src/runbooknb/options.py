from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable, Dict, Mapping, Optional, Tuple

from .config import DEFAULT_COMMENT_STYLES
from .errors import OptionsSyntaxError

logger = logging.getLogger(__name__)

OPTIONS_TAG = "@options"
DEFAULT_COMMENT_STYLE = "//"

_IDENT_RE = re.compile(r"[A-Za-z_$][\w$]*")
_NUMBER_RE = re.compile(r"[-+]?(\d+\.?\d*|\.\d+)([eE][-+]?\d+)?")
_ESCAPES = {
    "n": "\n",
    "t": "\t",
    "r": "\r",
    "b": "\b",
    "f": "\f",
    "0": "\0",
    "/": "/",
    "\\": "\\",
    '"': '"',
    "'": "'",
}
_KEYWORDS = {"true": True, "false": False, "null": None}


class _LiteralParser:
    """Parser for a JavaScript-style object literal.

    Accepts bare identifier keys, single- or double-quoted strings, numbers,
    true/false/null, nested arrays/objects and trailing commas. Nothing is
    evaluated.
    """

    def __init__(self, text: str):
        self.s = text
        self.i = 0

    def fail(self, msg: str) -> OptionsSyntaxError:
        return OptionsSyntaxError(f"{msg} at position {self.i}", self.i)

    def skip_ws(self) -> None:
        while self.i < len(self.s) and self.s[self.i].isspace():
            self.i += 1

    def peek(self) -> str:
        self.skip_ws()
        return self.s[self.i] if self.i < len(self.s) else ""

    def expect(self, ch: str) -> None:
        if self.peek() != ch:
            raise self.fail(f"Expected {ch!r}")
        self.i += 1

    def parse(self) -> Any:
        value = self.value()
        if self.peek():
            raise self.fail("Unexpected trailing text")
        return value

    def value(self) -> Any:
        ch = self.peek()
        if not ch:
            raise self.fail("Unexpected end of input")
        if ch == "{":
            return self.obj()
        if ch == "[":
            return self.array()
        if ch in "\"'":
            return self.string()
        m = _NUMBER_RE.match(self.s, self.i)
        if m:
            self.i = m.end()
            text = m.group(0)
            if "." in text or "e" in text or "E" in text:
                return float(text)
            return int(text)
        m = _IDENT_RE.match(self.s, self.i)
        if m and m.group(0) in _KEYWORDS:
            self.i = m.end()
            return _KEYWORDS[m.group(0)]
        raise self.fail("Unexpected value")

    def obj(self) -> Dict[str, Any]:
        self.expect("{")
        out: Dict[str, Any] = {}
        while self.peek() != "}":
            key = self.key()
            self.expect(":")
            out[key] = self.value()
            if self.peek() == ",":
                self.i += 1
            elif self.peek() != "}":
                raise self.fail("Expected ',' or '}'")
        self.i += 1
        return out

    def array(self) -> list:
        self.expect("[")
        out = []
        while self.peek() != "]":
            out.append(self.value())
            if self.peek() == ",":
                self.i += 1
            elif self.peek() != "]":
                raise self.fail("Expected ',' or ']'")
        self.i += 1
        return out

    def key(self) -> str:
        ch = self.peek()
        if ch and ch in "\"'":
            return self.string()
        m = _IDENT_RE.match(self.s, self.i) or _NUMBER_RE.match(self.s, self.i)
        if not m:
            raise self.fail("Expected a key")
        self.i = m.end()
        return m.group(0)

    def string(self) -> str:
        quote = self.s[self.i]
        self.i += 1
        buf = []
        while self.i < len(self.s):
            ch = self.s[self.i]
            if ch == "\\":
                if self.i + 1 >= len(self.s):
                    break
                nxt = self.s[self.i + 1]
                if nxt == "u":
                    code = self.s[self.i + 2 : self.i + 6]
                    try:
                        buf.append(chr(int(code, 16)))
                    except ValueError:
                        raise self.fail("Invalid \\u escape")
                    self.i += 6
                    continue
                buf.append(_ESCAPES.get(nxt, nxt))
                self.i += 2
                continue
            if ch == quote:
                self.i += 1
                return "".join(buf)
            buf.append(ch)
            self.i += 1
        raise self.fail("Unterminated string")


def parse_object_literal(text: str) -> Any:
    try:
        return _LiteralParser(text).parse()
    except RecursionError as e:
        raise OptionsSyntaxError("Object literal is nested too deeply") from e


def _decode(payload: str) -> Any:
    try:
        return json.loads(payload)
    except ValueError:
        return parse_object_literal(payload)


def _load_options(payload: str) -> Dict[str, Any]:
    try:
        data = _decode(payload)
    except RecursionError as e:
        raise OptionsSyntaxError("@options value is nested too deeply") from e
    if not isinstance(data, dict):
        raise OptionsSyntaxError(f"Expected an object, got {type(data).__name__}")
    return data


def comment_style_for(
    language: str, comment_styles: Optional[Mapping[str, str]] = None
) -> str:
    styles = DEFAULT_COMMENT_STYLES if comment_styles is None else comment_styles
    return styles.get(language, DEFAULT_COMMENT_STYLE)


def options_prefix(
    language: str, comment_styles: Optional[Mapping[str, str]] = None
) -> str:
    return f"{comment_style_for(language, comment_styles)} {OPTIONS_TAG} "


def parse_options(
    source: str,
    language: str,
    comment_styles: Optional[Mapping[str, str]] = None,
    on_warning: Optional[Callable[[str], None]] = None,
) -> Tuple[Dict[str, Any], str]:
    """Split a leading ``<comment> @options {...}`` line off ``source``.

    Returns (options, source without the header line). Without the header the
    source is returned unchanged. A header that does not parse still gets
    stripped; a warning is logged (and passed to ``on_warning``) and the
    options are empty.
    """
    lines = source.split("\n")
    prefix = options_prefix(language, comment_styles)
    first = lines[0].strip()
    if not first.startswith(prefix):
        return {}, source

    payload = first[len(prefix) :].strip()
    try:
        options = _load_options(payload)
    except OptionsSyntaxError as e:
        style = comment_style_for(language, comment_styles)
        msg = (
            f"Invalid @options syntax in {language} cell. Expected format: "
            f'{style} @options {{"key": "value"}}. Using default options.'
        )
        logger.warning("%s (%s)", msg, e)
        if on_warning is not None:
            on_warning(msg)
        options = {}
    return options, "\n".join(lines[1:])
