"""Edit script over an original text.

Detectors in tag mode scan progressively rewritten text, but every
replacement is recorded as an edit against the *original* text:
``(start, end, replacement)`` in original coordinates.  The working text is
re-rendered from the original by applying all edits right-to-left, so no
running offset is ever accumulated by hand.
"""

from __future__ import annotations
from typing import Iterable

Edit = tuple[int, int, str]


def apply_edits(text: str, edits: Iterable[Edit]) -> str:
    """Apply non-overlapping edits right-to-left so pending offsets stay valid."""
    result = text
    for start, end, replacement in sorted(edits, key=lambda e: e[0], reverse=True):
        result = result[:start] + replacement + result[end:]
    return result


class WorkingText:
    """Original text plus the ordered edits applied to it so far."""

    __slots__ = ("original", "_edits", "_text", "_regions")

    def __init__(self, original: str) -> None:
        self.original = original
        self._edits: list[Edit] = []
        self._text = original
        # (work_start, work_end, orig_start, orig_end) for every replacement
        self._regions: list[tuple[int, int, int, int]] = []

    @property
    def text(self) -> str:
        """The current rendering of the working text."""
        return self._text

    @property
    def edits(self) -> list[Edit]:
        return list(self._edits)

    def is_edited(self, start: int, end: int) -> bool:
        """True if [start, end) of the working text touches a replacement."""
        return any(start < we and ws < end for ws, we, _, _ in self._regions)

    def to_original(self, pos: int) -> int:
        """Map a working-text offset outside any replacement to the original."""
        shift = 0
        for ws, we, _, oe in self._regions:
            if we > pos:
                break
            shift = oe - we
        return pos + shift

    def commit(self, edits: Iterable[Edit]) -> None:
        """Add a batch of edits (original coordinates) and re-render."""
        new = sorted(edits, key=lambda e: e[0])
        if not new:
            return
        merged = sorted(self._edits + new, key=lambda e: e[0])
        for (_, prev_end, _), (start, _, _) in zip(merged, merged[1:]):
            if start < prev_end:
                raise ValueError(f"overlapping edit at offset {start}")
        self._edits = merged
        self._text = apply_edits(self.original, merged)

        self._regions = []
        shift = 0
        for start, end, replacement in merged:
            ws = start + shift
            self._regions.append((ws, ws + len(replacement), start, end))
            shift += len(replacement) - (end - start)
