"""Alignment & validation of model-claimed entities.

A candidate from the extraction layer is only accepted if its surface text
can be located in the working text with an exact, case-insensitive,
word-bounded search.  Anything that cannot be located is a hallucination:
it is dropped and counted, never redacted on the model's word alone.
"""

from __future__ import annotations
import logging
import re
from typing import Iterable

from .edits import WorkingText
from .lexicon import Lexicon
from .types import Candidate, EntitySpan, LAYER_MODEL

logger = logging.getLogger(__name__)

MIN_CANDIDATE_LENGTH = 2


def surface_pattern(surface: str) -> re.Pattern:
    """Case-insensitive exact match of ``surface`` not inside a longer word."""
    return re.compile(r"(?<!\w)" + re.escape(surface) + r"(?!\w)", re.IGNORECASE)


def validate(
    candidates: Iterable[Candidate],
    working_text: str | WorkingText,
    lexicon: Lexicon,
) -> tuple[list[EntitySpan], int]:
    """Locate candidates in the working text.

    Returns the accepted spans (one per located occurrence, in original
    offsets) and the number of candidates blocked as hallucinations.
    Candidates found only inside regions an earlier layer already tagged
    are neither accepted nor counted.
    """
    working = (
        working_text if isinstance(working_text, WorkingText)
        else WorkingText(working_text)
    )
    text = working.text

    unique: dict[str, Candidate] = {}
    for c in candidates:
        surface = c.text.strip()
        if len(surface) < MIN_CANDIDATE_LENGTH:
            continue
        unique.setdefault(surface.lower(), Candidate(surface, c.category))

    accepted: list[EntitySpan] = []
    rejected = 0
    # Longer candidates first so "John Smith" wins over "John"
    for candidate in sorted(unique.values(), key=lambda c: -len(c.text)):
        if lexicon.is_medical(candidate.text):
            logger.debug("Skipping medical term from model output (%d chars)", len(candidate.text))
            continue

        pattern = surface_pattern(candidate.text)
        located = False
        for m in pattern.finditer(text):
            if working.is_edited(m.start(), m.end()):
                continue
            located = True
            start = working.to_original(m.start())
            end = working.to_original(m.end())
            span = EntitySpan(
                label=candidate.category,
                surface_text=working.original[start:end],
                start=start,
                end=end,
                layer=LAYER_MODEL,
            )
            if any(span.overlaps(a) for a in accepted):
                continue
            accepted.append(span)

        if not located and not pattern.search(working.original):
            rejected += 1
            logger.debug(
                "Hallucination blocked: %s candidate (%d chars) not in text",
                candidate.category.value, len(candidate.text),
            )

    accepted.sort(key=lambda s: s.start)
    return accepted, rejected
