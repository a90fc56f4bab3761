from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Iterator, List, Optional, Tuple, Union

PLAIN = "text/plain"
MARKDOWN = "text/markdown"
ERROR = "application/vnd.code.notebook.error"


@dataclass
class Output:
    """A single captured rendering attached to a code cell.

    mime: render hint; PLAIN or MARKDOWN for captured text, ERROR for errors.
    For error outputs ``text`` is the message, ``ename`` the error name and
    ``detail`` the optional stack/stderr text shown below it.
    """

    text: str
    mime: str = PLAIN
    ename: Optional[str] = None
    detail: Optional[str] = None

    @property
    def is_error(self) -> bool:
        return self.mime == ERROR

    @classmethod
    def error(cls, name: str, message: str, detail: Optional[str] = None) -> "Output":
        return cls(text=message, mime=ERROR, ename=name, detail=detail)


@dataclass
class MarkupCell:
    """Prose between code blocks, kept verbatim (no trailing newline)."""

    text: str
    kind = "markup"


@dataclass
class CodeCell:
    """A fenced block.

    language: the word after the opening fence, "" when absent.
    source: text between the fences with one trailing newline trimmed.
    outputs: captured outputs in capture order; not part of equality since
    they are regenerated by execution rather than read back from disk.
    terminated: False when the document ended before the closing fence.
    """

    language: str
    source: str
    outputs: List[Output] = field(default_factory=list, compare=False)
    terminated: bool = field(default=True, compare=False)
    kind = "code"


Cell = Union[MarkupCell, CodeCell]


@dataclass
class Notebook:
    """A parsed runbook.

    cells: ordered cells in file order; order is both execution order and
    variable visibility order.
    path: optional file path origin.
    workspace_root: directory that ``{{file.md}}`` placeholders resolve
    against; defaults to the directory holding ``path``.
    """

    cells: List[Cell] = field(default_factory=list)
    path: Optional[str] = None
    workspace_root: Optional[str] = None

    def root(self) -> Path:
        if self.workspace_root:
            return Path(self.workspace_root)
        if self.path:
            return Path(self.path).resolve().parent
        return Path(os.getcwd())

    def code_cells(self) -> Iterator[Tuple[int, CodeCell]]:
        for i, c in enumerate(self.cells):
            if isinstance(c, CodeCell):
                yield i, c

    def markup_before(self, position: int) -> Iterator[MarkupCell]:
        """Markup cells strictly before ``position``, in document order."""
        for c in self.cells[: max(position, 0)]:
            if isinstance(c, MarkupCell):
                yield c

    def clear_outputs(self) -> None:
        for _, c in self.code_cells():
            c.outputs = []
