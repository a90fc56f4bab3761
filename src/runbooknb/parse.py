from __future__ import annotations

import logging
import re
from enum import Enum
from typing import List, Optional

from .model import Cell, CodeCell, MarkupCell, Notebook

logger = logging.getLogger(__name__)

FENCE = "```"
OUTPUT_MARKER = "**Output:**"

_FENCE_LANG_RE = re.compile(r"^```(\w+)\s*$")


class State(Enum):
    OUTSIDE = "outside"
    IN_CODE = "in_code"
    IN_OUTPUT = "in_output"


def is_fence(line: str) -> bool:
    return line.startswith(FENCE)


def is_bare_fence(line: str) -> bool:
    return line.rstrip() == FENCE


def fence_language(line: str) -> str:
    """Language word of an opening fence; "" unless the whole line is fence + word."""
    m = _FENCE_LANG_RE.match(line)
    return m.group(1) if m else ""


def split_lines(text: str) -> List[str]:
    """Lines split on LF only; a CR right before the LF is dropped."""
    lines = text.split("\n")
    if lines[-1] == "":
        lines.pop()
    return [ln[:-1] if ln.endswith("\r") else ln for ln in lines]


def _is_blank(line: str) -> bool:
    return line.strip() == ""


def _markup_cell(
    lines: List[str], *, after_block: bool, before_block: bool
) -> Optional[MarkupCell]:
    # One blank line on each side of a code/output block is the cell separator
    # written by serialize(); it does not belong to the prose.
    body = list(lines)
    if after_block and body and _is_blank(body[0]):
        body.pop(0)
    if before_block and body and _is_blank(body[-1]):
        body.pop()
    if not body:
        return None
    return MarkupCell(text="\n".join(body))


def parse_text(
    text: str, path: str | None = None, workspace_root: str | None = None
) -> Notebook:
    lines = split_lines(text)
    cells: list[Cell] = []

    state = State.OUTSIDE
    markup: list[str] = []
    markup_after_block = False
    code: list[str] = []
    language = ""
    after_block = False

    def flush_markup(before_block: bool) -> None:
        cell = _markup_cell(
            markup, after_block=markup_after_block, before_block=before_block
        )
        if cell is not None:
            cells.append(cell)
        markup.clear()

    idx = 0
    while idx < len(lines):
        line = lines[idx]
        idx += 1

        if state is State.IN_CODE:
            if is_bare_fence(line):
                cells.append(CodeCell(language=language, source="\n".join(code)))
                code = []
                state = State.OUTSIDE
                after_block = True
            else:
                code.append(line)
            continue

        if state is State.IN_OUTPUT:
            # Outputs are regenerated by execution; nothing is kept on load.
            # Exact match: serialized output lines carry trailing spaces.
            if line == FENCE:
                state = State.OUTSIDE
                after_block = True
            continue

        if is_fence(line):
            flush_markup(before_block=True)
            language = fence_language(line)
            code = []
            state = State.IN_CODE
            continue

        if line == OUTPUT_MARKER and idx < len(lines) and is_bare_fence(lines[idx]):
            flush_markup(before_block=True)
            idx += 1  # opening fence of the output block
            state = State.IN_OUTPUT
            continue

        if not markup:
            markup_after_block = after_block
        after_block = False
        markup.append(line)

    if state is State.IN_CODE:
        logger.warning(
            "Unterminated ``` block at end of %s; keeping it as a %s cell",
            path or "document",
            language or "plain",
        )
        cells.append(
            CodeCell(language=language, source="\n".join(code), terminated=False)
        )
    elif state is State.IN_OUTPUT:
        logger.debug("Output block left open at end of %s", path or "document")
    elif markup:
        flush_markup(before_block=False)

    return Notebook(cells=cells, path=path, workspace_root=workspace_root)


def parse_file(path: str, workspace_root: str | None = None) -> Notebook:
    with open(path, "r", encoding="utf-8") as f:
        return parse_text(f.read(), path=path, workspace_root=workspace_root)
