"""Layer 2 — dictionary lookup for place names.

A token (one word, or two adjacent words) is tagged LOCATION only when it
is title-cased, listed in the location deny-list and absent from the
medical allow-list.  All lookups are frozenset membership tests.
"""

from __future__ import annotations
import logging
import re
from typing import Iterable

from .edits import WorkingText
from .lexicon import Lexicon
from .types import Category, EntitySpan, LAYER_DICTIONARY

logger = logging.getLogger(__name__)

_WORD = re.compile(r"[A-Za-z]+")
_TAG = re.compile(r"\[[A-Z]+\]")


def _is_title_case(token: str) -> bool:
    return all(
        part[0].isupper() and not (len(part) > 1 and part.isupper())
        for part in token.split()
    )


class DictionaryDetector:
    """Tags title-cased place names found in the lexicon."""

    __slots__ = ("lexicon",)

    def __init__(self, lexicon: Lexicon) -> None:
        self.lexicon = lexicon

    def _matches(self, token: str) -> bool:
        lower = " ".join(token.split()).lower()
        return (
            _is_title_case(token)
            and lower in self.lexicon.locations
            and lower not in self.lexicon.medical_terms
        )

    def tag(self, working: WorkingText) -> list[EntitySpan]:
        """Tag locations in the working text, skipping regions already tagged."""
        text = working.text
        words = [
            (m.start(), m.end())
            for m in _WORD.finditer(text)
            if not working.is_edited(m.start(), m.end())
        ]

        found: list[tuple[int, int]] = []
        i = 0
        while i < len(words):
            start, end = words[i]
            if i + 1 < len(words):
                next_start, next_end = words[i + 1]
                gap = text[end:next_start]
                if gap and gap.isspace() and self._matches(text[start:next_end]):
                    found.append((start, next_end))
                    i += 2
                    continue
            if self._matches(text[start:end]):
                found.append((start, end))
            i += 1

        spans: list[EntitySpan] = []
        edits = []
        # Descending order, matching the right-to-left application of edits
        for start, end in sorted(found, reverse=True):
            orig_start = working.to_original(start)
            orig_end = working.to_original(end)
            edits.append((orig_start, orig_end, Category.LOCATION.tag))
            spans.append(EntitySpan(
                label=Category.LOCATION,
                surface_text=working.original[orig_start:orig_end],
                start=orig_start,
                end=orig_end,
                layer=LAYER_DICTIONARY,
            ))
        working.commit(edits)
        spans.reverse()
        return spans

    def detect(
        self,
        text: str,
        spans_so_far: Iterable[EntitySpan] = (),
    ) -> tuple[str, list[EntitySpan]]:
        """Tag any locations in ``text``, leaving earlier tags alone.

        ``text`` may be untouched (``spans_so_far`` then index it and are
        tagged first) or the output of ``detect_and_tag``, whose spans index
        the original text: those no longer match ``text`` and only the
        ``[LABEL]`` tags already in it are skipped.  Returns the tagged text
        and the new LOCATION spans in ``text`` offsets.
        """
        working = WorkingText(text)
        # Existing tags are kept verbatim and marked as already redacted
        edits = [(m.start(), m.end(), m.group()) for m in _TAG.finditer(text)]
        for s in spans_so_far:
            if text[s.start:s.end] == s.surface_text and not any(
                s.start < end and start < s.end for start, end, _ in edits
            ):
                edits.append((s.start, s.end, s.label.tag))
        working.commit(edits)
        spans = self.tag(working)
        logger.debug("Dictionary layer: %d locations", len(spans))
        return working.text, spans

    def scan(self, text: str) -> list[EntitySpan]:
        """Collect LOCATION spans over untouched text."""
        return self.tag(WorkingText(text))
