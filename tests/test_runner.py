import json
import sys
import tempfile
import unittest
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from runbooknb.executor import CancellationToken, ExecutionResult
from runbooknb.model import ERROR, MARKDOWN, PLAIN, Output
from runbooknb.parse import parse_file, parse_text
from runbooknb.runner import CellStatus, run_file, run_notebook
from runbooknb.store import OutputStore

DOC = """## Variables

| Name | Value |
|------|-------|
| who | world |

```bash
# @options {"id": "greet"}
echo hello {{who}}
```

```bash
echo got {{greet}}
```
"""


class EchoExecutor:
    """Returns the resolved source as stdout; scripted results override."""

    def __init__(self, results=None, raises=None):
        self.calls = []
        self.results = results or {}
        self.raises = raises

    def execute(self, source, language, options, token=None):
        self.calls.append((source, language, options))
        if self.raises is not None:
            raise self.raises
        if source in self.results:
            return self.results[source]
        return ExecutionResult(stdout=source + "\n", stderr="", exit_code=0)


class CancellingExecutor:
    def __init__(self, token):
        self.token = token

    def execute(self, source, language, options, token=None):
        self.token.cancel()
        return ExecutionResult("partial", "", -15, cancelled=True)


class FakeBackend:
    def __init__(self, answer="**Done**: ok\n"):
        self.answer = answer
        self.prompts = []

    def ask(self, prompt, options, token=None):
        self.prompts.append((prompt, options))
        return self.answer


class TestRunNotebook(unittest.TestCase):
    def test_cells_share_the_store(self):
        nb = parse_text(DOC)
        store = OutputStore()
        ex = EchoExecutor()
        res = run_notebook(nb, store=store, executor=ex)

        self.assertEqual(res.failed_cells, [])
        self.assertEqual(res.total_cells, 2)
        self.assertEqual(res.mode, "all")
        self.assertEqual(
            [c[0] for c in ex.calls], ["echo hello world", "echo got echo hello world"]
        )
        self.assertEqual(store.get("greet"), "echo hello world")
        self.assertEqual(nb.cells[1].outputs, [Output("echo hello world\n", PLAIN)])

    def test_substitution_failure_does_not_stop_later_cells(self):
        nb = parse_text("```bash\necho {{nope}}\n```\n\n```bash\necho fine\n```\n")
        ex = EchoExecutor()
        res = run_notebook(nb, executor=ex)

        self.assertEqual(res.failed_cells, [0])
        self.assertEqual([c[0] for c in ex.calls], ["echo fine"])
        out = nb.cells[0].outputs[0]
        self.assertEqual(out.mime, ERROR)
        self.assertEqual(out.ename, "VariableSubstitutionError")
        self.assertIn("Variable 'nope' not found", out.text)

    def test_nonzero_exit_is_an_error_output(self):
        nb = parse_text('```bash\n# @options {"id": "x"}\nfalse\n```\n')
        store = OutputStore()
        ex = EchoExecutor({"false": ExecutionResult("", "it broke", 2)})
        res = run_notebook(nb, store=store, executor=ex)

        self.assertEqual(res.results[0].status, CellStatus.FAILED)
        out = nb.cells[0].outputs[0]
        self.assertEqual(out.ename, "ExecutionError")
        self.assertEqual(out.text, "Command failed with exit code 2")
        self.assertEqual(out.detail, "it broke")
        self.assertNotIn("x", store)

    def test_startup_failure(self):
        nb = parse_text("```ruby\nputs 1\n```\n")
        res = run_notebook(nb, executor=EchoExecutor(raises=FileNotFoundError("no ruby")))
        self.assertEqual(res.failed_cells, [0])
        self.assertEqual(nb.cells[0].outputs[0].text, "Error: no ruby")

    def test_stderr_is_appended_and_markdown_hinted(self):
        nb = parse_text("```bash\nreport\n```\n")
        ex = EchoExecutor({"report": ExecutionResult("# Report\n", "warn", 0)})
        run_notebook(nb, executor=ex)
        out = nb.cells[0].outputs[0]
        self.assertEqual(out.text, "# Report\n\nSTDERR:\nwarn")
        self.assertEqual(out.mime, MARKDOWN)

    def test_options_are_passed_and_header_stripped(self):
        nb = parse_text("```python\n# @options {id: 'p', timeout: 3}\nprint(1)\n```\n")
        ex = EchoExecutor()
        run_notebook(nb, executor=ex)
        self.assertEqual(ex.calls, [("print(1)", "python", {"id": "p", "timeout": 3})])

    def test_invalid_options_warns_and_runs(self):
        nb = parse_text("```bash\n# @options {invalid json}\necho ok\n```\n")
        ex = EchoExecutor()
        res = run_notebook(nb, executor=ex)
        self.assertEqual(res.failed_cells, [])
        self.assertEqual(len(res.warnings), 1)
        self.assertEqual(ex.calls[0][0], "echo ok")

    def test_deeply_nested_options_do_not_stop_the_run(self):
        text = (
            "```bash\n# @options " + "[" * 5000 + "\necho first\n```\n\n"
            "```bash\necho second\n```\n"
        )
        nb = parse_text(text)
        ex = EchoExecutor()
        res = run_notebook(nb, executor=ex)
        self.assertEqual(res.failed_cells, [])
        self.assertEqual([c[0] for c in ex.calls], ["echo first", "echo second"])
        self.assertEqual(len(res.warnings), 1)

    def test_selected_positions(self):
        nb = parse_text(DOC)
        store = OutputStore()
        store.store("greet", "earlier run")
        ex = EchoExecutor()
        res = run_notebook(nb, store=store, executor=ex, positions={2})
        self.assertEqual(res.mode, "cells")
        self.assertEqual([c[0] for c in ex.calls], ["echo got earlier run"])


class TestCancellation(unittest.TestCase):
    def test_cancelled_before_start(self):
        nb = parse_text(DOC)
        token = CancellationToken()
        token.cancel()
        ex = EchoExecutor()
        res = run_notebook(nb, executor=ex, token=token)
        self.assertEqual(res.cancelled_cells, [1, 2])
        self.assertEqual(ex.calls, [])

    def test_cancelled_cell_keeps_outputs_and_skips_store(self):
        nb = parse_text('```bash\n# @options {"id": "slow"}\nsleep 10\n```\n')
        previous = [Output("old\n")]
        nb.cells[0].outputs = list(previous)
        store = OutputStore()
        token = CancellationToken()
        res = run_notebook(
            nb, store=store, executor=CancellingExecutor(token), token=token
        )
        self.assertEqual(res.cancelled_cells, [0])
        self.assertEqual(res.failed_cells, [])
        self.assertEqual(nb.cells[0].outputs, previous)
        self.assertEqual(len(store), 0)


class TestPromptCells(unittest.TestCase):
    def test_prompt_gets_fenced_values_and_stores_answer(self):
        text = (
            '```bash\n# @options {"id": "log"}\ntail log\n```\n\n'
            '```copilot\n// @options {"id": "summary", "mode": "ask"}\n'
            "Summarize {{log}}\n```\n"
        )
        nb = parse_text(text)
        store = OutputStore()
        backend = FakeBackend()
        res = run_notebook(nb, store=store, executor=EchoExecutor(), backend=backend)

        self.assertEqual(res.failed_cells, [])
        self.assertEqual(
            backend.prompts,
            [("Summarize ```\ntail log\n```", {"id": "summary", "mode": "ask"})],
        )
        self.assertEqual(store.get("summary"), "**Done**: ok")
        self.assertEqual(nb.cells[1].outputs[0].mime, MARKDOWN)

    def test_prompt_without_backend_fails(self):
        nb = parse_text("```copilot\nhello\n```\n")
        res = run_notebook(nb, executor=EchoExecutor())
        self.assertEqual(res.failed_cells, [0])
        self.assertEqual(nb.cells[0].outputs[0].ename, "ExecutionError")


class TestRunFile(unittest.TestCase):
    def test_run_file_writes_outputs_back(self):
        with tempfile.TemporaryDirectory() as td:
            root = Path(td)
            (root / "runbook.yaml").write_text(
                f"languages:\n  interpreters:\n    python: [{json.dumps(sys.executable)}]\n",
                encoding="utf-8",
            )
            doc = root / "book.md"
            doc.write_text(
                "# Book\n\n```python\n# @options {\"id\": \"n\"}\nprint(6 * 7)\n```\n\n"
                "```python\nprint({{n}} + 1)\n```\n",
                encoding="utf-8",
            )
            rc = run_file(str(doc))
            self.assertEqual(rc, 0)
            text = doc.read_text(encoding="utf-8")
            self.assertIn("**Output:**\n```\n42  \n```", text)
            self.assertIn("**Output:**\n```\n43  \n```", text)
            self.assertEqual(len(parse_file(str(doc)).cells), 3)
            self.assertEqual(list(root.glob("tmp-*")), [])

    def test_run_file_reports_failure(self):
        with tempfile.TemporaryDirectory() as td:
            doc = Path(td) / "book.md"
            out = Path(td) / "out.md"
            doc.write_text("```bash\necho {{missing}}\n```\n", encoding="utf-8")
            rc = run_file(str(doc), output_path=str(out))
            self.assertEqual(rc, 1)
            self.assertIn("Error: Variable 'missing' not found", out.read_text(encoding="utf-8"))
            self.assertEqual(doc.read_text(encoding="utf-8"), "```bash\necho {{missing}}\n```\n")

    def test_unknown_cell_id(self):
        with tempfile.TemporaryDirectory() as td:
            doc = Path(td) / "book.md"
            doc.write_text("```bash\necho 1\n```\n", encoding="utf-8")
            with self.assertRaises(ValueError):
                run_file(str(doc), cells=["nope"])


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
