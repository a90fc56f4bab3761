from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path

from .config import load_config
from .errors import RunbookError
from .jupyter import export_file_to_ipynb, import_ipynb_file
from .lint import lint_notebook
from .parse import parse_file
from .runner import run_file
from .serialize import serialize
from .variables import visible_variables


def _cmd_lint(path: Path, config_path: str | None) -> int:
    nb = parse_file(str(path))
    errors, warns = lint_notebook(nb, load_config(config_path, workspace_root=nb.root()))
    for w in warns:
        print(f"WARN: {w.message}")
    for e in errors:
        print(f"ERROR: {e.message}")
    if errors:
        return 1
    print("OK: no lint errors")
    return 0


def _cmd_vars(path: Path) -> int:
    nb = parse_file(str(path))
    table = visible_variables(nb, len(nb.cells))
    for name, value in table.items():
        print(f"{name}\t{value}")
    return 0


def _cmd_run(
    path: Path,
    *,
    cells: list[str] | None = None,
    output: str | None = None,
    config_path: str | None = None,
) -> int:
    return run_file(str(path), output_path=output, cells=cells, config_path=config_path)


def _cmd_clean(path: Path, output: str | None) -> int:
    nb = parse_file(str(path))
    nb.clear_outputs()
    target = Path(output) if output else path
    target.write_text(serialize(nb), encoding="utf-8")
    print(f"Cleaned outputs in {target}")
    return 0


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="runbook", description="Runbook notebook CLI")
    parser.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )
    parser.add_argument(
        "--config", help="Path to a runbook.yaml (default: next to the document)"
    )
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_run = sub.add_parser("run", help="Execute a runbook and save its outputs")
    p_run.add_argument("file")
    p_run.add_argument(
        "--cell",
        dest="cells",
        action="append",
        help="@options id of a cell to run (may be repeated)",
    )
    p_run.add_argument(
        "-o", "--output", help="Write the result here instead of in place"
    )

    p_lint = sub.add_parser("lint", help="Lint a runbook")
    p_lint.add_argument("file")

    p_vars = sub.add_parser("vars", help="Print the variables defined in a runbook")
    p_vars.add_argument("file")

    p_clean = sub.add_parser("clean", help="Remove all outputs from a runbook")
    p_clean.add_argument("file")
    p_clean.add_argument("-o", "--output", help="Write here instead of in place")

    p_export = sub.add_parser("export", help="Export a runbook to .ipynb")
    p_export.add_argument("file", help="Input runbook")
    p_export.add_argument("-o", "--output", help="Output .ipynb file (default: stdout)")

    p_import = sub.add_parser("import", help="Import .ipynb to a runbook")
    p_import.add_argument("file", help="Input .ipynb file")
    p_import.add_argument(
        "-o", "--output", help="Output runbook file (default: stdout)"
    )

    args = parser.parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )
    cmd = args.cmd
    path = Path(args.file)
    output = getattr(args, "output", None)

    try:
        if cmd == "run":
            return _cmd_run(
                path, cells=args.cells, output=output, config_path=args.config
            )
        if cmd == "lint":
            return _cmd_lint(path, args.config)
        if cmd == "vars":
            return _cmd_vars(path)
        if cmd == "clean":
            return _cmd_clean(path, output)
        if cmd == "export":
            export_file_to_ipynb(str(path), output)
            return 0
        if cmd == "import":
            import_ipynb_file(str(path), output)
            return 0
    except (RunbookError, ValueError, OSError) as e:
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    parser.error(f"unknown command {cmd}")
    return 2


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
