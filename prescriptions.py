"""
Prescription text convention.

A prescription is stored as one newline separated string. A line starting
with the two-character marker "~~" is discontinued and renders struck
through; toggling adds or removes only that prefix.
"""

from dataclasses import dataclass
from typing import List

from constants import CLINICAL_CONSTANTS

MARKER = CLINICAL_CONSTANTS.DISCONTINUED_MARKER

@dataclass(frozen=True)
class PrescriptionLine:
    text: str
    discontinued: bool = False

def encode(lines: List[PrescriptionLine]) -> str:
    return "\n".join(MARKER + line.text if line.discontinued else line.text for line in lines)

def decode(text: str) -> List[PrescriptionLine]:
    # An empty prescription has no lines, not one empty line
    if not text:
        return []
    lines = []
    for raw in text.split("\n"):
        if raw.startswith(MARKER):
            lines.append(PrescriptionLine(raw[len(MARKER):], discontinued=True))
        else:
            lines.append(PrescriptionLine(raw))
    return lines

def toggle_line(text: str, index: int) -> str:
    """Flips the discontinued marker of one line; raises IndexError for a missing line."""
    raw_lines = text.split("\n") if text else []
    raw = raw_lines[index]
    raw_lines[index] = raw[len(MARKER):] if raw.startswith(MARKER) else MARKER + raw
    return "\n".join(raw_lines)

def active_lines(text: str) -> List[str]:
    """Lines still in force, used to seed the next daily log."""
    return [line.text for line in decode(text) if not line.discontinued and line.text.strip()]
