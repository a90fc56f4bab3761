import sys
import unittest
from pathlib import Path

# Ensure 'src' is on sys.path
sys.path.insert(0, str(Path(__file__).resolve().parents[1] / "src"))

from runbooknb.model import CodeCell, MarkupCell, Notebook, Output
from runbooknb.parse import FENCE, parse_file, parse_text, split_lines
from runbooknb.serialize import render_output, serialize

EXAMPLE = Path(__file__).resolve().parents[1] / "examples" / "minimal.runbook.md"


class TestParseSerialize(unittest.TestCase):
    def test_roundtrip_minimal(self):
        nb1 = parse_file(str(EXAMPLE))
        text = serialize(nb1)
        nb2 = parse_text(text)

        self.assertEqual(nb1.cells, nb2.cells)
        self.assertEqual(text, EXAMPLE.read_text(encoding="utf-8"))

    def test_cell_split(self):
        text = "# Title\n\nSome text\n\n```bash\necho hi\n```\n\nMore\n"
        nb = parse_text(text)
        self.assertEqual(
            nb.cells,
            [
                MarkupCell("# Title\n\nSome text"),
                CodeCell("bash", "echo hi"),
                MarkupCell("More"),
            ],
        )
        self.assertEqual(serialize(nb), text)

    def test_empty_document(self):
        self.assertEqual(parse_text("").cells, [])
        self.assertEqual(serialize(Notebook()), "")

    def test_fence_language(self):
        nb = parse_text("```\nplain\n```\n\n```python extra\nx\n```\n")
        self.assertEqual([c.language for c in nb.cells], ["", ""])
        self.assertEqual(nb.cells[0].source, "plain")

    def test_unterminated_fence_becomes_code_cell(self):
        nb = parse_text("intro\n\n```python\nprint(1)\nprint(2)")
        self.assertEqual(len(nb.cells), 2)
        cell = nb.cells[1]
        self.assertIsInstance(cell, CodeCell)
        self.assertEqual(cell.source, "print(1)\nprint(2)")
        self.assertFalse(cell.terminated)

    def test_outputs_are_written_and_discarded_on_load(self):
        nb = parse_text("```bash\necho hi\n```\n\nafter\n")
        nb.cells[0].outputs = [Output("hi\nthere\n")]
        text = serialize(nb)
        self.assertIn("```\n\n**Output:**\n```\nhi  \nthere  \n```", text)

        nb2 = parse_text(text)
        self.assertEqual(nb2.cells, nb.cells)
        self.assertEqual(nb2.cells[0].outputs, [])
        self.assertEqual(serialize(nb2, include_outputs=False), "```bash\necho hi\n```\n\nafter\n")

    def test_roundtrip_layouts(self):
        layouts = {
            "blank-only markup between blocks": "```bash\nx\n```\n\n\n\n```python\ny\n```\n",
            "two blanks between blocks": "```bash\nx\n```\n\n\n```bash\ny\n```\n",
            "blanks before first fence": "\n\n\n```bash\necho\n```\n",
            "blanks between prose and fence": "text\n\n\n\n```bash\necho\n```\n\nend\n",
            "trailing blanks at end": "```bash\necho\n```\n\n\n",
            "prose without final newline": "just text",
            "crlf": "# T\r\n\r\n```bash\r\necho hi\r\n```\r\n\r\nafter\r\n",
            "stray cr and unicode separator": "a\rb\u2028c\n\n```bash\necho\n```\n",
            "saved output": "```bash\necho\n```\n\n**Output:**\n```\nhi  \n```\n\nafter\n",
        }
        for name, text in layouts.items():
            with self.subTest(layout=name):
                nb1 = parse_text(text)
                saved = serialize(nb1)
                nb2 = parse_text(saved)
                self.assertEqual(nb2.cells, nb1.cells)
                self.assertEqual(serialize(nb2), saved)

    def test_crlf_lines_lose_their_cr(self):
        nb = parse_text("# T\r\n\r\n```bash\r\necho hi\r\n```\r\n")
        self.assertEqual(nb.cells, [MarkupCell("# T"), CodeCell("bash", "echo hi")])

    def test_output_with_inner_fence_stays_in_block(self):
        cases = {
            "fenced answer without final newline": [Output("Here:\n```\ncode\n```")],
            "bare fence only": [Output("```")],
            "fence with trailing newline": [Output("```\ninner\n```\n")],
            "crlf fence": [Output("x\r\n```\r\n")],
            "fence after stray cr": [Output("a\r```")],
            "fence in error detail": [Output.error("ExecutionError", "failed", "```\nboom\n```\n")],
            "fence in error message": [Output.error("ExecutionError", "msg\n```")],
            "several outputs": [Output("```"), Output("more\n```")],
        }
        for name, outputs in cases.items():
            with self.subTest(case=name):
                nb = parse_text("```copilot\nexplain\n```\n\nafter\n")
                nb.cells[0].outputs = outputs
                for out in outputs:
                    body_lines = split_lines(render_output(out))
                    self.assertNotIn(FENCE, body_lines)
                nb2 = parse_text(serialize(nb))
                self.assertEqual(
                    nb2.cells, [CodeCell("copilot", "explain"), MarkupCell("after")]
                )

    def test_fence_in_output_gets_hard_break(self):
        self.assertEqual(render_output(Output("Here:\n```")), "Here:  \n```  \n")
        err = Output.error("ExecutionError", "failed", "```\nboom\n```\n")
        self.assertEqual(render_output(err), "Error: failed\n```  \nboom\n```  \n")

    def test_error_output_rendering(self):
        out = Output.error("ExecutionError", "Command failed with exit code 2", "boom\n")
        self.assertEqual(
            render_output(out), "Error: Command failed with exit code 2\nboom\n"
        )

    def test_trailing_whitespace_trimmed_in_source(self):
        nb = Notebook(cells=[CodeCell("bash", "echo 1\n\n  ")])
        self.assertEqual(serialize(nb), "```bash\necho 1\n```\n")


if __name__ == "__main__":  # pragma: no cover
    unittest.main()
