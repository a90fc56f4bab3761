from __future__ import annotations

import re

_PATTERNS = [
    # fenced block of exactly three backticks
    re.compile(r"(?<!`)```(?!`)\w*[\s\S]*?```(?!`)"),
    # ATX heading
    re.compile(r"^#{1,6}\s+.+$", re.MULTILINE),
    # bullet
    re.compile(r"^\s*[-*+]\s+.+$", re.MULTILINE),
    # bold
    re.compile(r"\*\*[^*]+\*\*"),
    # horizontal rule
    re.compile(r"^\s*---\s*$", re.MULTILINE),
    # table divider, with or without outer pipes
    re.compile(
        r"^\s*((\|\s*[-:]+\s*)+\||\s*[-:]+\s*(\|\s*[-:]+\s*)+)", re.MULTILINE
    ),
    # table row
    re.compile(r"^\s*\|.*\|.*\|", re.MULTILINE),
]


def contains_markdown_patterns(content: object) -> bool:
    """True if ``content`` looks like markdown and should render as rich text."""
    if not content or not isinstance(content, str):
        return False
    return any(p.search(content) for p in _PATTERNS)
