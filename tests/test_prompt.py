"""Tests for file references and prompt augmentation."""

from textual_acp.prompt import (
    EditorContext,
    SelectionRange,
    augment_prompt,
    build_file_reference,
    prompt_content,
)


class TestFileReference:
    """Tests for build_file_reference()."""

    def test_path_only(self) -> None:
        assert build_file_reference("src/app.py") == "@src/app.py"

    def test_single_line(self) -> None:
        assert build_file_reference("src/app.py", SelectionRange(14, 14)) == "@src/app.py :L14"

    def test_line_range(self) -> None:
        assert build_file_reference("src/app.py", SelectionRange(14, 20)) == "@src/app.py :L14-L20"

    def test_charwise_single_line(self) -> None:
        """Columns are only shown for a characterwise selection on one line."""
        selection = SelectionRange(14, 14, start_col=1, end_col=14, charwise=True)
        assert build_file_reference("src/app.py", selection) == "@src/app.py :L14:C1-C14"

    def test_charwise_multi_line_uses_lines(self) -> None:
        selection = SelectionRange(14, 16, start_col=3, end_col=8, charwise=True)
        assert build_file_reference("src/app.py", selection) == "@src/app.py :L14-L16"

    def test_linewise_ignores_columns(self) -> None:
        selection = SelectionRange(14, 14, start_col=1, end_col=14)
        assert build_file_reference("src/app.py", selection) == "@src/app.py :L14"

    def test_no_path(self) -> None:
        assert build_file_reference(None, SelectionRange(1, 2)) == ""


class TestAugmentPrompt:
    """Tests for augment_prompt()."""

    def test_no_context(self) -> None:
        assert augment_prompt("explain") == "explain"
        assert augment_prompt("explain", EditorContext()) == "explain"

    def test_file_without_selection(self) -> None:
        context = EditorContext(file_path="src/app.py")
        assert augment_prompt("explain", context) == "@src/app.py\n\nexplain"

    def test_selection(self) -> None:
        """A selection adds both references, instructions and the selected text."""
        context = EditorContext(
            file_path="src/app.py",
            selection="x = 1",
            selection_range=SelectionRange(3, 3),
        )
        assert augment_prompt("rename x", context).split("\n") == [
            "@src/app.py",
            "@src/app.py :L3",
            "",
            "Modify ONLY the selected region (L3) referenced above.",
            "Preserve all non-selected lines/characters exactly; do not reformat or adjust surrounding code.",
            "",
            "Selected text:",
            "```",
            "x = 1",
            "```",
            "",
            "rename x",
        ]

    def test_selection_text_without_range(self) -> None:
        """Selected text without a range falls back to the plain reference."""
        context = EditorContext(file_path="a.py", selection="x")
        assert augment_prompt("go", context) == "@a.py\n\ngo"


def test_prompt_content() -> None:
    assert prompt_content("hi") == [{"type": "text", "text": "hi"}]
