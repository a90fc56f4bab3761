from __future__ import annotations

from .model import Cell, CodeCell, Notebook, Output
from .parse import FENCE, OUTPUT_MARKER

# Markdown hard line break: two trailing spaces.
_HARD_BREAK = "  "


def _protect(line: str) -> str:
    # A bare fence inside an output block would close it on reload.
    if line.rstrip() == FENCE:
        return line + _HARD_BREAK
    return line


def render_output(out: Output) -> str:
    if out.is_error:
        text = f"Error: {out.text}"
        if out.detail:
            text += "\n" + out.detail.rstrip("\n")
        return "\n".join(_protect(p) for p in text.split("\n")) + "\n"
    pieces = out.text.split("\n")
    rendered = "\n".join(
        [p + _HARD_BREAK for p in pieces[:-1]] + [_protect(pieces[-1])]
    )
    # The closing fence must start its own line.
    if not rendered.endswith("\n"):
        rendered += "\n"
    return rendered


def _render_code(cell: CodeCell, include_outputs: bool) -> str:
    parts = [FENCE + cell.language, cell.source.rstrip(), FENCE]
    text = "\n".join(parts)
    if include_outputs and cell.outputs:
        body = "".join(render_output(o) for o in cell.outputs)
        text += f"\n\n{OUTPUT_MARKER}\n{FENCE}\n{body}{FENCE}"
    return text


def render_cell(cell: Cell, include_outputs: bool = True) -> str:
    if isinstance(cell, CodeCell):
        return _render_code(cell, include_outputs)
    return cell.text


def serialize(nb: Notebook, *, include_outputs: bool = True) -> str:
    if not nb.cells:
        return ""
    blocks = [render_cell(c, include_outputs) for c in nb.cells]
    # One blank line between cells
    return "\n\n".join(blocks) + "\n"
