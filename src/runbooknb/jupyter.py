from __future__ import annotations

from typing import Dict, List, Optional

import nbformat

from .model import MARKDOWN, PLAIN, Cell, CodeCell, MarkupCell, Notebook, Output


def _source_text(body: str) -> str:
    return body if body.endswith("\n") or not body else body + "\n"


def _output_to_nb(out: Output) -> Dict:
    if out.is_error:
        return {
            "output_type": "error",
            "ename": out.ename or "Error",
            "evalue": out.text,
            "traceback": out.detail.splitlines() if out.detail else [],
        }
    if out.mime != PLAIN:
        return {
            "output_type": "display_data",
            "data": {out.mime: out.text},
            "metadata": {},
        }
    return {"output_type": "stream", "name": "stdout", "text": out.text}


def _output_from_nb(jo: Dict) -> Optional[Output]:
    otype = jo.get("output_type")
    if otype == "error":
        tb = jo.get("traceback") or []
        return Output.error(
            str(jo.get("ename") or "Error"),
            str(jo.get("evalue") or ""),
            "\n".join(str(x) for x in tb) or None,
        )
    if otype == "stream":
        text = jo.get("text", "")
        if isinstance(text, list):
            text = "".join(text)
        return Output(text=str(text))
    if otype in ("execute_result", "display_data"):
        data = jo.get("data") or {}
        for mime in (MARKDOWN, PLAIN):
            if mime in data:
                text = data[mime]
                if isinstance(text, list):
                    text = "".join(text)
                return Output(text=str(text), mime=mime)
    return None


def notebook_to_ipynb_dict(nb: Notebook) -> Dict:
    """Convert a runbook to a minimal Jupyter nbformat v4 dict.

    - Markup cells become "markdown" cells.
    - Code cells become "code" cells; the fence language is kept in
      cell.metadata["runbook"]["language"].
    - Plain outputs become "stream" outputs, markdown ones "display_data";
      errors become "error" outputs.
    """

    def _cell_to_nb(i: int, c: Cell) -> Dict:
        cid = f"cell{i + 1}"
        if isinstance(c, MarkupCell):
            return {
                "cell_type": "markdown",
                "id": cid,
                "source": _source_text(c.text),
                "metadata": {},
            }
        return {
            "cell_type": "code",
            "id": cid,
            "source": _source_text(c.source),
            "outputs": [_output_to_nb(o) for o in c.outputs],
            "execution_count": None,
            "metadata": {"runbook": {"language": c.language}},
        }

    languages = [c.language for _, c in nb.code_cells() if c.language]
    language = languages[0] if languages else "bash"
    return {
        "nbformat": 4,
        "nbformat_minor": 5,
        "metadata": {
            "kernelspec": {
                "name": language,
                "display_name": language,
                "language": language,
            },
            "language_info": {"name": language},
        },
        "cells": [_cell_to_nb(i, c) for i, c in enumerate(nb.cells)],
    }


def ipynb_dict_to_notebook(d: Dict, *, path: Optional[str] = None) -> Notebook:
    """Convert a Jupyter nbformat v4 dict to a runbook.

    - 'markdown' and 'raw' cells become markup cells.
    - 'code' cells keep metadata.runbook.language, else the kernel language.
    """
    meta = d.get("metadata", {}) if isinstance(d, dict) else {}
    ks = meta.get("kernelspec", {}) if isinstance(meta, dict) else {}
    default_lang = str(ks.get("language") or ks.get("name") or "")

    cells_in: List[Dict] = d.get("cells", []) if isinstance(d, dict) else []
    cells: List[Cell] = []
    for jc in cells_in:
        if not isinstance(jc, dict):
            continue
        src = jc.get("source", "")
        body = "".join(src) if isinstance(src, list) else str(src)
        body = body.rstrip("\n")
        if jc.get("cell_type") != "code":
            if body:
                cells.append(MarkupCell(text=body))
            continue
        jmeta = jc.get("metadata") or {}
        rb = jmeta.get("runbook") if isinstance(jmeta, dict) else None
        lang = rb.get("language") if isinstance(rb, dict) else None
        language = str(lang if lang is not None else default_lang)
        cell = CodeCell(language=language, source=body)
        for jo in jc.get("outputs") or []:
            out = _output_from_nb(jo) if isinstance(jo, dict) else None
            if out is not None:
                cell.outputs.append(out)
        cells.append(cell)
    return Notebook(cells=cells, path=path)


def export_ipynb_text(nb: Notebook) -> str:
    d = notebook_to_ipynb_dict(nb)
    nbnode = nbformat.from_dict(d)
    s = nbformat.writes(nbnode, version=4)
    if not s.endswith("\n"):
        s += "\n"
    return s


def import_ipynb_text(text: str, *, path: Optional[str] = None) -> Notebook:
    nbnode = nbformat.reads(text, as_version=4)
    return ipynb_dict_to_notebook(nbnode, path=path)


def export_file_to_ipynb(in_path: str, out_path: Optional[str] = None) -> None:
    from .parse import parse_file

    nb = parse_file(in_path)
    text = export_ipynb_text(nb)
    if out_path:
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(text)
    else:
        print(text, end="")


def import_ipynb_file(in_path: str, out_path: Optional[str] = None) -> None:
    from .serialize import serialize

    with open(in_path, "r", encoding="utf-8") as f:
        text = f.read()
    nb = import_ipynb_text(text, path=in_path)
    out_text = serialize(nb)
    if out_path:
        with open(out_path, "w", encoding="utf-8") as f:
            f.write(out_text)
    else:
        print(out_text, end="")
