from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional, Set

from .config import Configuration, load_config
from .executor import CancellationToken, CodeExecutor, Executor, PromptBackend
from .markdown import contains_markdown_patterns
from .model import MARKDOWN, PLAIN, CodeCell, Notebook, Output
from .options import parse_options
from .parse import parse_file
from .serialize import serialize
from .store import OutputStore
from .variables import VariableResolver, WorkspaceFiles

logger = logging.getLogger(__name__)


class CellStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    CANCELLED = "cancelled"
    SKIPPED = "skipped"


@dataclass
class CellResult:
    position: int
    status: CellStatus
    outputs: List[Output] = field(default_factory=list)
    options: Dict[str, Any] = field(default_factory=dict)


@dataclass
class RunResult:
    failed_cells: List[int]
    total_cells: int
    mode: str  # "all" | "cells"
    cancelled_cells: List[int] = field(default_factory=list)
    results: List[CellResult] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


@dataclass
class RunContext:
    """Collaborators shared by every cell of one run."""

    store: OutputStore
    config: Configuration
    executor: Executor
    backend: Optional[PromptBackend] = None
    token: Optional[CancellationToken] = None
    files: Optional[WorkspaceFiles] = None
    warnings: List[str] = field(default_factory=list)

    @property
    def cancelled(self) -> bool:
        return self.token is not None and self.token.cancelled


# ---------- Helpers ----------


def _render_hint(text: str, config: Configuration) -> str:
    if config.enable_markdown_rendering and contains_markdown_patterns(text):
        return MARKDOWN
    return PLAIN


def declared_id(cell: CodeCell, config: Configuration) -> Optional[str]:
    options, _ = parse_options(cell.source, cell.language, config.comment_styles)
    cid = options.get("id")
    return str(cid) if cid is not None and cid != "" else None


def select_positions(
    nb: Notebook, ids: Iterable[str], config: Configuration
) -> Set[int]:
    """Positions of the code cells declaring the given @options ids."""
    wanted = set(ids)
    found: Set[int] = set()
    seen: Set[str] = set()
    for pos, cell in nb.code_cells():
        cid = declared_id(cell, config)
        if cid in wanted:
            found.add(pos)
            seen.add(cid)
    missing = wanted - seen
    if missing:
        raise ValueError(f"No cell declares id: {', '.join(sorted(missing))}")
    return found


def _finish(
    cell: CodeCell,
    position: int,
    status: CellStatus,
    outputs: List[Output],
    options: Dict[str, Any],
) -> CellResult:
    cell.outputs = outputs
    return CellResult(position=position, status=status, outputs=outputs, options=options)


def _cancelled(position: int, options: Dict[str, Any]) -> CellResult:
    logger.info("Cell %d cancelled", position)
    return CellResult(position=position, status=CellStatus.CANCELLED, options=options)


# ---------- Cell execution ----------


def execute_cell(nb: Notebook, position: int, ctx: RunContext) -> CellResult:
    """Run one cell and attach its outputs (or its error) to it.

    Never raises for cell-level problems: substitution errors, non-zero exit
    codes and executor failures become error outputs on the cell. A cancelled
    cell keeps its previous outputs and writes nothing to the store.
    """
    cell = nb.cells[position]
    if not isinstance(cell, CodeCell):
        return CellResult(position=position, status=CellStatus.SKIPPED)
    if ctx.cancelled:
        return _cancelled(position, {})

    options, body = parse_options(
        cell.source, cell.language, ctx.config.comment_styles, ctx.warnings.append
    )
    prompt = ctx.config.is_prompt_language(cell.language)
    logger.debug("Cell %d: language=%r options=%s", position, cell.language, options)

    resolution = VariableResolver(ctx.store, ctx.files).resolve(
        body, nb, position, prompt=prompt
    )
    if not resolution.ok:
        message = "\n".join(resolution.errors)
        logger.info("Cell %d: %d unresolved placeholder(s)", position, len(resolution.errors))
        return _finish(
            cell,
            position,
            CellStatus.FAILED,
            [Output.error("VariableSubstitutionError", message)],
            options,
        )

    if prompt:
        return _run_prompt(cell, position, resolution.text, options, ctx)
    return _run_code(cell, position, resolution.text, options, ctx)


def _run_prompt(
    cell: CodeCell, position: int, prompt: str, options: Dict[str, Any], ctx: RunContext
) -> CellResult:
    if ctx.backend is None:
        err = Output.error(
            "ExecutionError", f"No prompt backend configured for '{cell.language}' cells"
        )
        return _finish(cell, position, CellStatus.FAILED, [err], options)
    try:
        response = ctx.backend.ask(prompt, options, ctx.token)
    except Exception as e:  # noqa: BLE001
        if ctx.cancelled:
            return _cancelled(position, options)
        logger.exception("Prompt cell %d failed", position)
        err = Output.error("ExecutionError", f"Error: {e}")
        return _finish(cell, position, CellStatus.FAILED, [err], options)
    if ctx.cancelled:
        return _cancelled(position, options)

    out = Output(text=response, mime=_render_hint(response, ctx.config))
    if options.get("id"):
        ctx.store.store(str(options["id"]), response.strip())
    return _finish(cell, position, CellStatus.SUCCESS, [out], options)


def _run_code(
    cell: CodeCell, position: int, source: str, options: Dict[str, Any], ctx: RunContext
) -> CellResult:
    try:
        result = ctx.executor.execute(source, cell.language, options, ctx.token)
    except Exception as e:  # noqa: BLE001
        if ctx.cancelled:
            return _cancelled(position, options)
        logger.warning("Cell %d failed to start: %s", position, e)
        err = Output.error("ExecutionError", f"Error: {e}")
        return _finish(cell, position, CellStatus.FAILED, [err], options)
    if result.cancelled or ctx.cancelled:
        return _cancelled(position, options)

    if result.exit_code != 0:
        err = Output.error(
            "ExecutionError",
            f"Command failed with exit code {result.exit_code}",
            result.stderr or result.stdout or "Unknown error",
        )
        return _finish(cell, position, CellStatus.FAILED, [err], options)

    text = result.stdout
    if result.stderr:
        text += "\nSTDERR:\n" + result.stderr
    out = Output(text=text, mime=_render_hint(text, ctx.config))
    if options.get("id"):
        ctx.store.store(str(options["id"]), result.stdout.strip())
    return _finish(cell, position, CellStatus.SUCCESS, [out], options)


# ---------- Notebook execution ----------


def run_notebook(
    nb: Notebook,
    *,
    store: Optional[OutputStore] = None,
    config: Optional[Configuration] = None,
    executor: Optional[Executor] = None,
    backend: Optional[PromptBackend] = None,
    token: Optional[CancellationToken] = None,
    files: Optional[WorkspaceFiles] = None,
    positions: Optional[Set[int]] = None,
) -> RunResult:
    """Execute code cells top to bottom (optionally only ``positions``)."""
    config = config or Configuration()
    ctx = RunContext(
        store=store if store is not None else OutputStore(),
        config=config,
        executor=executor or CodeExecutor(config, cwd=nb.root()),
        backend=backend,
        token=token,
        files=files,
    )
    order = [
        pos for pos, _ in nb.code_cells() if positions is None or pos in positions
    ]

    results: List[CellResult] = []
    for pos in order:
        res = execute_cell(nb, pos, ctx)
        logger.info("Cell %d: %s", pos, res.status.value)
        results.append(res)

    return RunResult(
        failed_cells=[r.position for r in results if r.status is CellStatus.FAILED],
        total_cells=len(order),
        mode="cells" if positions is not None else "all",
        cancelled_cells=[
            r.position for r in results if r.status is CellStatus.CANCELLED
        ],
        results=results,
        warnings=list(ctx.warnings),
    )


def run_file(
    path: str,
    *,
    output_path: Optional[str] = None,
    cells: Optional[List[str]] = None,
    config_path: Optional[str] = None,
    backend: Optional[PromptBackend] = None,
    store: Optional[OutputStore] = None,
) -> int:
    """Run a runbook file and write it back (or to ``output_path``) with outputs."""
    nb = parse_file(path)
    config = load_config(config_path, workspace_root=nb.root())
    positions = select_positions(nb, cells, config) if cells else None
    res = run_notebook(
        nb, store=store, config=config, backend=backend, positions=positions
    )
    target = Path(output_path or path)
    target.write_text(serialize(nb), encoding="utf-8")
    for w in res.warnings:
        print(f"WARN: {w}")
    for pos in res.failed_cells:
        print(f"FAILED: cell {pos}")
    return 1 if res.failed_cells else 0
