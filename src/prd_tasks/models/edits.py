"""
Line-level edit instructions.

Every mutation in the engine is expressed as a list of these. They are
plain data; mutations.apply.apply_edits turns a batch into new text.
"""

from dataclasses import dataclass
from typing import Optional, Tuple


@dataclass(frozen=True)
class LineEdit:
    """
    Replace one whole line.

    ``old_text`` is the content the edit was computed from. When set, the
    edit is rejected if the line no longer has exactly that content.
    """

    line: int
    new_text: str
    old_text: Optional[str] = None

    def to_dict(self) -> dict:
        return {"line": self.line, "new_text": self.new_text}


@dataclass(frozen=True)
class LineInsert:
    """Insert ``lines`` before line index ``line`` (len(lines) appends)."""

    line: int
    lines: Tuple[str, ...]

    def to_dict(self) -> dict:
        return {"line": self.line, "insert": list(self.lines)}
