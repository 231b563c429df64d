"""Offline NER extraction with Presidio.

An alternative third layer for hosts without a local language model.  It
produces the same candidates as ``EntityExtractor`` (PERSON / ORG only)
and its output goes through the same validator.  Uses spaCy under the hood.
"""

from __future__ import annotations
import logging
from typing import TYPE_CHECKING

from .types import Candidate, Category

if TYPE_CHECKING:
    from presidio_analyzer import AnalyzerEngine

logger = logging.getLogger(__name__)

# Presidio entity type -> our category
ENTITY_MAP = {
    "PERSON": Category.PERSON,
    "ORGANIZATION": Category.ORG,
    "ORG": Category.ORG,
}


class PresidioExtractor:
    """PERSON / ORG candidates from Presidio's analyzer."""

    def __init__(self, *, language: str = "en", score_threshold: float = 0.35) -> None:
        self.language = language
        self.score_threshold = score_threshold
        self._engine: AnalyzerEngine | None = None

    def _get_engine(self) -> AnalyzerEngine:
        """Build the analyzer on first use; spaCy models are slow to load."""
        if self._engine is None:
            from presidio_analyzer import AnalyzerEngine
            from presidio_analyzer.nlp_engine import NlpEngineProvider

            provider = NlpEngineProvider(nlp_configuration={
                "nlp_engine_name": "spacy",
                "models": [{"lang_code": self.language, "model_name": f"{self.language}_core_web_sm"}],
            })
            self._engine = AnalyzerEngine(
                nlp_engine=provider.create_engine(),
                supported_languages=[self.language],
            )
        return self._engine

    def extract_with_status(self, text: str) -> tuple[list[Candidate], bool]:
        try:
            results = self._get_engine().analyze(
                text=text,
                language=self.language,
                entities=list(ENTITY_MAP),
                score_threshold=self.score_threshold,
            )
        except (ImportError, OSError, ValueError) as e:
            logger.warning("Presidio extraction unavailable, using rules only: %s", e)
            return [], False

        candidates = [
            Candidate(text=text[r.start:r.end], category=ENTITY_MAP[r.entity_type])
            for r in sorted(results, key=lambda r: r.start)
            if r.entity_type in ENTITY_MAP
        ]
        return candidates, True

    def extract(self, text: str) -> list[Candidate]:
        return self.extract_with_status(text)[0]

    def close(self) -> None:
        self._engine = None
