"""Lexicon store — the medical allow-list and the location deny-list.

Both lists are plain UTF-8 text, one term per line, ``#`` lines ignored.
Terms are lower-cased and held in frozensets, so a Lexicon is immutable
after load and safe to share between threads.
"""

from __future__ import annotations
import logging
from dataclasses import dataclass
from functools import lru_cache
from importlib import resources
from pathlib import Path
from typing import Iterable

from .errors import LexiconError

logger = logging.getLogger(__name__)

MEDICAL_TERMS_FILE = "medical_terms.txt"
LOCATIONS_FILE = "cities.txt"


def parse_terms(content: str) -> frozenset[str]:
    """Parse newline-delimited terms, dropping blanks and comments."""
    terms = set()
    for line in content.splitlines():
        term = " ".join(line.split()).lower()
        if term and not term.startswith("#"):
            terms.add(term)
    return frozenset(terms)


def read_terms(path: str | Path) -> frozenset[str]:
    path = Path(path).expanduser()
    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LexiconError(str(path), str(e)) from e
    return parse_terms(content)


@dataclass(frozen=True, slots=True)
class Lexicon:
    """Read-only term sets used by the dictionary layer and the validator."""
    medical_terms: frozenset[str]
    locations: frozenset[str]

    @classmethod
    def load(cls, medical_path: str | Path, locations_path: str | Path) -> Lexicon:
        """Load both lists from disk.  Unreadable files raise LexiconError."""
        lexicon = cls(
            medical_terms=read_terms(medical_path),
            locations=read_terms(locations_path),
        )
        logger.debug(
            "Lexicon loaded: %d medical terms, %d locations",
            len(lexicon.medical_terms), len(lexicon.locations),
        )
        return lexicon

    @classmethod
    def from_terms(
        cls,
        medical_terms: Iterable[str] = (),
        locations: Iterable[str] = (),
    ) -> Lexicon:
        return cls(
            medical_terms=parse_terms("\n".join(medical_terms)),
            locations=parse_terms("\n".join(locations)),
        )

    def with_allowed(self, extra: Iterable[str]) -> Lexicon:
        """Return a copy whose allow-list also contains ``extra``."""
        extra_terms = parse_terms("\n".join(extra))
        if not extra_terms:
            return self
        return Lexicon(self.medical_terms | extra_terms, self.locations)

    def is_medical(self, term: str) -> bool:
        return " ".join(term.split()).lower() in self.medical_terms

    def is_location(self, term: str) -> bool:
        return " ".join(term.split()).lower() in self.locations


@lru_cache(maxsize=1)
def default_lexicon() -> Lexicon:
    """The bundled word lists, loaded once per process."""
    data = resources.files("medredact") / "data"
    try:
        medical = data.joinpath(MEDICAL_TERMS_FILE).read_text(encoding="utf-8")
        locations = data.joinpath(LOCATIONS_FILE).read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        raise LexiconError(str(data), str(e)) from e
    lexicon = Lexicon(parse_terms(medical), parse_terms(locations))
    logger.debug(
        "Bundled lexicon loaded: %d medical terms, %d locations",
        len(lexicon.medical_terms), len(lexicon.locations),
    )
    return lexicon
