"""Editor context and prompt augmentation.

Agents read the referenced files themselves, so a prompt only carries an
``@path`` reference (optionally with a line/column range) and, for a
selection, the selected text plus instructions to leave everything else
untouched.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union

# JSON type for prompt content blocks
JSON = Union[dict[str, "JSON"], list["JSON"], str, int, float, bool, None]


@dataclass(frozen=True)
class SelectionRange:
    """A 1-based line range, with columns for a characterwise selection."""

    start_line: int
    end_line: int
    start_col: int | None = None
    end_col: int | None = None
    charwise: bool = False

    @property
    def target(self) -> str:
        """Range notation without the leading colon: ``L14``, ``L14-L20``, ``L14:C1-C14``."""
        if self.start_line == self.end_line:
            if self.charwise and self.start_col is not None and self.end_col is not None:
                return f"L{self.start_line}:C{self.start_col}-C{self.end_col}"
            return f"L{self.start_line}"
        return f"L{self.start_line}-L{self.end_line}"


@dataclass(frozen=True)
class EditorContext:
    """What the editor knows about the current buffer."""

    file_path: str | None = None
    selection: str | None = None
    selection_range: SelectionRange | None = None


def build_file_reference(file_path: str | None, selection_range: SelectionRange | None = None) -> str:
    """Format ``@path`` plus an optional `` :L<range>`` suffix."""
    if not file_path:
        return ""
    if selection_range is None:
        return f"@{file_path}"
    return f"@{file_path} :{selection_range.target}"


def augment_prompt(prompt: str, context: EditorContext | None = None) -> str:
    """Prefix the prompt with the file reference and selection instructions."""
    if context is None or not context.file_path:
        return prompt

    file_ref = build_file_reference(context.file_path, context.selection_range)

    if context.selection is None or context.selection_range is None:
        return f"{file_ref}\n\n{prompt}"

    return "\n".join(
        [
            build_file_reference(context.file_path),
            file_ref,
            "",
            f"Modify ONLY the selected region ({context.selection_range.target}) referenced above.",
            "Preserve all non-selected lines/characters exactly; do not reformat or adjust surrounding code.",
            "",
            "Selected text:",
            "```",
            context.selection,
            "```",
            "",
            prompt,
        ]
    )


def prompt_content(text: str) -> list[dict[str, JSON]]:
    """Wrap text in the ``session/prompt`` content format."""
    return [{"type": "text", "text": text}]
