"""Redactor — the main API.  Layered: rules, then dictionary, then model.

Usage:
    from medredact import Redactor, restore

    redactor = Redactor()                      # reusable, thread-safe after init

    result = redactor.redact("Seen 01/15/2024 in Boston.")
    print(result.output_text)                  # "Seen [DATE] in [LOCATION]."

    result = redactor.redact_reversible("Call Dr. Wu at 555-123-4567")
    print(result.output_text)                  # "Call Dr. {{PERSON_0}} at {{PHONE_0}}"
    note = cloud_service(result.output_text)   # only placeholder text leaves
    print(restore(note, result.mapping))
"""

from __future__ import annotations
import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Iterable

from .dictionary import DictionaryDetector
from .edits import WorkingText
from .extraction import Extractor
from .lexicon import Lexicon, default_lexicon
from .patterns import RULES, tag_rules
from .types import (
    Candidate, Category, EntitySpan, LayerMetrics, RedactionResult,
    LAYER_RULES, LAYER_DICTIONARY, LAYER_MODEL,
)
from .validator import validate
from .vault import PlaceholderVault

logger = logging.getLogger(__name__)


@dataclass
class RedactorConfig:
    """Configuration for the Redactor."""
    use_llm: bool = True              # enable Layer 3 (model extraction)
    # Categories to never redact (e.g. keep dates for a timeline)
    skip_categories: set[Category] = field(default_factory=set)
    # Extra terms for the medical allow-list
    allow_list: set[str] = field(default_factory=set)


def _ms(since: float) -> float:
    return round((time.perf_counter() - since) * 1000, 3)


class Redactor:
    """Layered medical PII redactor.

    Layer 1: Deterministic rules (email, phone, address, ZIP, date, ID, insurer, honorific + name)
    Layer 2: Dictionary lookup (place names, shadowed by the medical allow-list)
    Layer 3: Model extraction (PERSON / ORG), validated against the text
    """

    def __init__(
        self,
        config: RedactorConfig | None = None,
        *,
        lexicon: Lexicon | None = None,
        extractor: Extractor | None = None,
    ) -> None:
        self.config = config or RedactorConfig()
        self.lexicon = (lexicon or default_lexicon()).with_allowed(self.config.allow_list)
        self.dictionary = DictionaryDetector(self.lexicon)
        self.extractor = extractor
        self._rules = [r for r in RULES if r.label not in self.config.skip_categories]

    def _llm_requested(self, use_llm: bool | None) -> bool:
        wanted = self.config.use_llm if use_llm is None else use_llm
        return wanted and self.extractor is not None

    def _keep(self, spans: Iterable[EntitySpan]) -> list[EntitySpan]:
        skip = self.config.skip_categories
        return [s for s in spans if s.label not in skip]

    def _extract(self, text: str) -> tuple[list[Candidate], bool]:
        try:
            return self.extractor.extract_with_status(text)
        except Exception as e:
            logger.warning(
                "Extractor %s failed (%s), using rules only: %s",
                type(self.extractor).__name__, type(e).__name__, e,
            )
            return [], False

    @staticmethod
    def _empty(text: str) -> RedactionResult:
        # Nothing to scan, so no model ran
        return RedactionResult(original_text=text, output_text=text)

    # ------------------------------------------------------------------
    # Mode A: tags
    # ------------------------------------------------------------------

    def redact(self, text: str, *, use_llm: bool | None = None) -> RedactionResult:
        """Replace PII with [LABEL] tags.  Irreversible.

        Each layer scans the previous layer's output, so nothing already
        tagged is offered to a later layer.
        """
        if not text.strip():
            return self._empty(text)

        total_start = time.perf_counter()
        working = WorkingText(text)

        # --- Layer 1: Rules ---
        t0 = time.perf_counter()
        rule_spans = tag_rules(working, self._rules)
        l1_ms = _ms(t0)
        logger.debug("Layer 1 (rules): %.3fms, %d entities", l1_ms, len(rule_spans))

        # --- Layer 2: Dictionary ---
        t0 = time.perf_counter()
        loc_spans = []
        if Category.LOCATION not in self.config.skip_categories:
            loc_spans = self.dictionary.tag(working)
        l2_ms = _ms(t0)
        logger.debug("Layer 2 (dictionary): %.3fms, %d entities", l2_ms, len(loc_spans))

        # --- Layer 3: Model (optional) ---
        model_spans: list[EntitySpan] = []
        blocked = 0
        l3_ms = 0.0
        llm_ok = False
        if self._llm_requested(use_llm):
            t0 = time.perf_counter()
            candidates, llm_ok = self._extract(working.text)
            model_spans, blocked = validate(candidates, working, self.lexicon)
            model_spans = self._keep(model_spans)
            working.commit((s.start, s.end, s.label.tag) for s in model_spans)
            l3_ms = _ms(t0)
            logger.debug(
                "Layer 3 (model): %.3fms, %d entities, %d blocked",
                l3_ms, len(model_spans), blocked,
            )

        metrics = LayerMetrics(
            layer1_ms=l1_ms,
            layer2_ms=l2_ms,
            layer3_ms=l3_ms,
            total_ms=_ms(total_start),
            layer1_count=len(rule_spans),
            layer2_count=len(loc_spans),
            layer3_count=len(model_spans),
            hallucinations_blocked=blocked,
            llm_enabled=llm_ok,
        )
        return RedactionResult(
            original_text=text,
            output_text=working.text,
            entities=tuple(rule_spans + loc_spans + model_spans),
            metrics=metrics,
        )

    def redact_fast(self, text: str) -> RedactionResult:
        """Layers 1 + 2 only."""
        return self.redact(text, use_llm=False)

    # ------------------------------------------------------------------
    # Mode B: placeholders
    # ------------------------------------------------------------------

    def redact_reversible(
        self,
        text: str,
        vault: PlaceholderVault | None = None,
        *,
        use_llm: bool | None = None,
    ) -> RedactionResult:
        """Replace PII with {{LABEL_n}} placeholders and return the mapping.

        Every layer reads the untouched original so all spans share one
        coordinate space.  Pass a vault to keep numbering stable across
        several messages of one conversation.
        """
        if not text.strip():
            return self._empty(text)

        total_start = time.perf_counter()

        t0 = time.perf_counter()
        rule_spans = tag_rules(WorkingText(text), self._rules)
        l1_ms = _ms(t0)

        t0 = time.perf_counter()
        loc_spans = []
        if Category.LOCATION not in self.config.skip_categories:
            loc_spans = self.dictionary.scan(text)
        l2_ms = _ms(t0)

        model_spans: list[EntitySpan] = []
        blocked = 0
        l3_ms = 0.0
        llm_ok = False
        if self._llm_requested(use_llm):
            t0 = time.perf_counter()
            candidates, llm_ok = self._extract(text)
            model_spans, blocked = validate(candidates, text, self.lexicon)
            model_spans = self._keep(model_spans)
            l3_ms = _ms(t0)

        accepted = merge_spans(rule_spans + loc_spans + model_spans)
        vault = vault if vault is not None else PlaceholderVault()
        output = vault.place_holders(accepted, text)
        logger.debug(
            "Reversible redaction: %d spans accepted of %d, %d blocked",
            len(accepted), len(rule_spans) + len(loc_spans) + len(model_spans), blocked,
        )

        metrics = LayerMetrics(
            layer1_ms=l1_ms,
            layer2_ms=l2_ms,
            layer3_ms=l3_ms,
            total_ms=_ms(total_start),
            layer1_count=sum(1 for s in accepted if s.layer == LAYER_RULES),
            layer2_count=sum(1 for s in accepted if s.layer == LAYER_DICTIONARY),
            layer3_count=sum(1 for s in accepted if s.layer == LAYER_MODEL),
            hallucinations_blocked=blocked,
            llm_enabled=llm_ok,
        )
        return RedactionResult(
            original_text=text,
            output_text=output,
            entities=tuple(accepted),
            metrics=metrics,
            mapping=vault.dump(),
        )

    # ------------------------------------------------------------------
    # Async wrappers (the model call may block for hundreds of ms)
    # ------------------------------------------------------------------

    async def aredact(self, text: str, *, use_llm: bool | None = None) -> RedactionResult:
        return await asyncio.to_thread(self.redact, text, use_llm=use_llm)

    async def aredact_reversible(
        self,
        text: str,
        vault: PlaceholderVault | None = None,
        *,
        use_llm: bool | None = None,
    ) -> RedactionResult:
        return await asyncio.to_thread(self.redact_reversible, text, vault, use_llm=use_llm)


def merge_spans(spans: list[EntitySpan]) -> list[EntitySpan]:
    """Drop spans overlapping a more trusted one.

    Lower layers win; within a layer the earlier span wins, and on equal
    starts the longer one.  Trust order takes precedence over start order:
    a rule span beats an overlapping model span that starts before it.
    """
    if not spans:
        return []
    ranked = sorted(spans, key=lambda s: (s.layer, s.start, -s.length))
    taken: list[EntitySpan] = []
    for span in ranked:
        if not any(span.overlaps(t) for t in taken):
            taken.append(span)
    return sorted(taken, key=lambda s: s.start)
