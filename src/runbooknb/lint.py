from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Optional, Set, Tuple

from .config import Configuration
from .model import MarkupCell, Notebook
from .options import parse_options
from .variables import (
    WorkspaceFiles,
    file_not_found_message,
    find_placeholders,
    is_file_token,
    parse_variable_table,
)


@dataclass
class LintIssue:
    level: str  # "ERROR" | "WARN"
    message: str


def _first_positions(nb: Notebook, config: Configuration) -> Tuple[Dict[str, int], Dict[str, int]]:
    """Position where each @options id and each table variable first appears."""
    ids: Dict[str, int] = {}
    variables: Dict[str, int] = {}
    for pos, c in enumerate(nb.cells):
        if isinstance(c, MarkupCell):
            for name in parse_variable_table(c.text):
                variables.setdefault(name, pos)
        else:
            options, _ = parse_options(c.source, c.language, config.comment_styles)
            if options.get("id"):
                ids.setdefault(str(options["id"]), pos)
    return ids, variables


def lint_notebook(
    nb: Notebook, config: Optional[Configuration] = None
) -> Tuple[List[LintIssue], List[LintIssue]]:
    config = config or Configuration()
    errors: List[LintIssue] = []
    warns: List[LintIssue] = []

    id_at, var_at = _first_positions(nb, config)
    files = WorkspaceFiles(nb.root())
    seen_ids: Set[str] = set()

    for pos, c in nb.code_cells():
        label = f"Cell {pos} ({c.language or 'no language'})"
        if c.language and c.language not in config.supported_languages:
            warns.append(
                LintIssue("WARN", f"{label}: language '{c.language}' is not supported")
            )
        if not c.terminated:
            errors.append(LintIssue("ERROR", f"{label}: unterminated code fence"))

        bad: List[str] = []
        options, body = parse_options(
            c.source, c.language, config.comment_styles, bad.append
        )
        for msg in bad:
            errors.append(LintIssue("ERROR", f"{label}: {msg}"))

        for token in find_placeholders(body):
            if is_file_token(token):
                try:
                    found = files.read(token) is not None
                except (OSError, UnicodeDecodeError) as e:
                    errors.append(
                        LintIssue("ERROR", f"{label}: Failed to read file '{token}': {e}")
                    )
                    continue
                if not found:
                    errors.append(
                        LintIssue("ERROR", f"{label}: {file_not_found_message(token)}")
                    )
                continue
            if token in seen_ids or var_at.get(token.lower(), pos) < pos:
                continue
            if token in id_at or token.lower() in var_at:
                errors.append(
                    LintIssue(
                        "ERROR",
                        f"{label}: '{token}' is only defined later in the document",
                    )
                )
            else:
                errors.append(
                    LintIssue("ERROR", f"{label}: variable '{token}' is never defined")
                )

        cid = options.get("id")
        if cid:
            cid = str(cid)
            if cid in seen_ids:
                warns.append(
                    LintIssue(
                        "WARN",
                        f"{label}: duplicate id '{cid}' overrides an earlier cell",
                    )
                )
            seen_ids.add(cid)

    return errors, warns
