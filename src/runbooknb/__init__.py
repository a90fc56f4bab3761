"""Runbook notebooks: executable Markdown documents.

Parse fenced code blocks out of a Markdown file, run them in order with
``{{placeholder}}`` substitution, and write captured outputs back in place.
"""

__all__ = [
    "Notebook",
    "CodeCell",
    "MarkupCell",
    "Output",
    "OutputStore",
    "parse_text",
    "parse_file",
    "serialize",
    "run_notebook",
]

__version__ = "0.1.0"

from .model import CodeCell, MarkupCell, Notebook, Output  # noqa: E402
from .parse import parse_file, parse_text  # noqa: E402
from .runner import run_notebook  # noqa: E402
from .serialize import serialize  # noqa: E402
from .store import OutputStore  # noqa: E402
