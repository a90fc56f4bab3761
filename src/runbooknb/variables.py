from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional

from .model import Notebook
from .store import OutputStore

logger = logging.getLogger(__name__)

PLACEHOLDER_RE = re.compile(r"\{\{([^}]+)\}\}")
FILE_SUFFIX = ".md"

_VARIABLES_HEADING_RE = re.compile(r"^#{1,6}\s+variables\s*$", re.IGNORECASE)
_DIVIDER_CELL_RE = re.compile(r"^:?-+:?$")
_CELL_SPLIT_RE = re.compile(r"(?<!\\)\|")


def find_placeholders(source: str) -> List[str]:
    return [m.group(1) for m in PLACEHOLDER_RE.finditer(source)]


def is_file_token(token: str) -> bool:
    return token.endswith(FILE_SUFFIX)


def file_not_found_message(token: str) -> str:
    return f"Failed to read file '{token}': File not found: {token}"


def variable_not_found_message(token: str) -> str:
    return (
        f"Variable '{token}' not found. Define it in a VARIABLES table "
        f'or run a cell with @options {{"id": "{token}"}}.'
    )


# ---------- Variable tables ----------


def _is_table_line(line: str) -> bool:
    return "|" in line and line.strip() != ""


def _split_row(line: str) -> List[str]:
    s = line.strip()
    if s.startswith("|"):
        s = s[1:]
    if s.endswith("|") and not s.endswith("\\|"):
        s = s[:-1]
    return [c.strip().replace("\\|", "|") for c in _CELL_SPLIT_RE.split(s)]


def _is_divider(cells: List[str]) -> bool:
    return all(_DIVIDER_CELL_RE.match(c) for c in cells if c) and any(cells)


def parse_variable_table(text: str) -> Dict[str, str]:
    """Collect name -> value pairs from every "Variables" table in ``text``.

    Names are lowercased; a later row for the same name replaces an earlier one.
    """
    out: Dict[str, str] = {}
    lines = text.split("\n")
    idx = 0
    while idx < len(lines):
        if not _VARIABLES_HEADING_RE.match(lines[idx].strip()):
            idx += 1
            continue
        idx += 1
        while idx < len(lines) and lines[idx].strip() == "":
            idx += 1
        if idx >= len(lines) or not _is_table_line(lines[idx]):
            continue
        header = [h.lower() for h in _split_row(lines[idx])]
        idx += 1
        if "name" not in header or "value" not in header:
            logger.debug("Variables table without name/value columns: %s", header)
            continue
        name_col, value_col = header.index("name"), header.index("value")
        while idx < len(lines) and _is_table_line(lines[idx]):
            row = _split_row(lines[idx])
            idx += 1
            if _is_divider(row) or len(row) <= max(name_col, value_col):
                continue
            name = row[name_col]
            if name:
                out[name.lower()] = row[value_col]
    return out


def visible_variables(nb: Optional[Notebook], position: int) -> Dict[str, str]:
    """Variables from tables in markup cells strictly before ``position``."""
    out: Dict[str, str] = {}
    if nb is None:
        return out
    for cell in nb.markup_before(position):
        out.update(parse_variable_table(cell.text))
    return out


# ---------- Workspace files ----------


class WorkspaceFiles:
    """Reads ``{{path.md}}`` includes relative to a workspace root."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def read(self, relative: str) -> Optional[str]:
        """File content, or None when the file does not exist."""
        p = self.root / relative
        if not p.is_file():
            return None
        return p.read_text(encoding="utf-8")


# ---------- Substitution ----------


@dataclass
class Resolution:
    text: str
    errors: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors


def fence_value(value: str) -> str:
    return f"```\n{value}\n```"


class VariableResolver:
    """Resolves ``{{token}}`` placeholders in a cell body.

    Lookup order per token: workspace file (tokens ending in ``.md``), the
    output store, then variable tables visible at the cell's position.
    Unresolved placeholders are left as-is and reported in ``errors``.
    """

    def __init__(self, store: OutputStore, files: Optional[WorkspaceFiles] = None):
        self.store = store
        self.files = files

    def _files_for(self, nb: Optional[Notebook]) -> WorkspaceFiles:
        if self.files is not None:
            return self.files
        if nb is not None:
            return WorkspaceFiles(nb.root())
        return WorkspaceFiles(Path.cwd())

    def resolve(
        self,
        source: str,
        nb: Optional[Notebook] = None,
        position: int = 0,
        *,
        prompt: bool = False,
    ) -> Resolution:
        errors: List[str] = []
        table: Optional[Dict[str, str]] = None
        files = self._files_for(nb)

        def replace(m: re.Match) -> str:
            nonlocal table
            token = m.group(1)
            if is_file_token(token):
                try:
                    content = files.read(token)
                except (OSError, UnicodeDecodeError) as e:
                    errors.append(f"Failed to read file '{token}': {e}")
                    return m.group(0)
                if content is None:
                    errors.append(file_not_found_message(token))
                    return m.group(0)
                return content
            stored = self.store.get(token)
            if stored is not None:
                return fence_value(stored) if prompt else stored
            if table is None:
                table = visible_variables(nb, position)
            value = table.get(token.lower())
            if value is not None:
                return value
            errors.append(variable_not_found_message(token))
            return m.group(0)

        text = PLACEHOLDER_RE.sub(replace, source)
        if errors:
            logger.debug("Unresolved placeholders at cell %d: %s", position, errors)
        return Resolution(text=text, errors=errors)


def resolve(
    source: str,
    nb: Optional[Notebook],
    position: int,
    store: OutputStore,
    *,
    prompt: bool = False,
    files: Optional[WorkspaceFiles] = None,
) -> Resolution:
    return VariableResolver(store, files).resolve(source, nb, position, prompt=prompt)
