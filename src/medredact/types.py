"""Core types."""

from __future__ import annotations
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum


class Category(str, Enum):
    """Closed set of entity labels."""
    EMAIL = "EMAIL"
    PHONE = "PHONE"
    DATE = "DATE"
    ID = "ID"                # SSN / MRN / member numbers
    ZIP = "ZIP"
    ADDRESS = "ADDRESS"
    INSURANCE = "INSURANCE"
    LOCATION = "LOCATION"
    PERSON = "PERSON"
    ORG = "ORG"
    REDACTED = "REDACTED"    # unclassifiable model output

    @property
    def tag(self) -> str:
        return f"[{self.value}]"


# Detection layers, in descending order of trust
LAYER_RULES = 1
LAYER_DICTIONARY = 2
LAYER_MODEL = 3


@dataclass(frozen=True, slots=True)
class EntitySpan:
    """A single detected entity.  Offsets index the original text."""
    label: Category
    surface_text: str
    start: int
    end: int
    layer: int             # 1 = rules, 2 = dictionary, 3 = model

    @property
    def length(self) -> int:
        return self.end - self.start

    def overlaps(self, other: EntitySpan) -> bool:
        return self.start < other.end and other.start < self.end


@dataclass(frozen=True, slots=True)
class Candidate:
    """An unverified (surface text, category) pair claimed by an extractor."""
    text: str
    category: Category


@dataclass(frozen=True, slots=True)
class LayerMetrics:
    """Per-layer timing and counts for one pipeline run."""
    layer1_ms: float = 0.0
    layer2_ms: float = 0.0
    layer3_ms: float = 0.0
    total_ms: float = 0.0
    layer1_count: int = 0
    layer2_count: int = 0
    layer3_count: int = 0
    hallucinations_blocked: int = 0
    llm_enabled: bool = False

    def as_dict(self) -> dict:
        return {
            "layer1_ms": self.layer1_ms,
            "layer2_ms": self.layer2_ms,
            "layer3_ms": self.layer3_ms,
            "total_ms": self.total_ms,
            "counts": {
                "layer1": self.layer1_count,
                "layer2": self.layer2_count,
                "layer3": self.layer3_count,
            },
            "hallucinations_blocked": self.hallucinations_blocked,
            "llm_enabled": self.llm_enabled,
        }


@dataclass(frozen=True, slots=True)
class RedactionResult:
    """Result of a redaction run (tag mode or reversible mode)."""
    original_text: str
    output_text: str                            # tagged or placeholder text
    entities: tuple[EntitySpan, ...] = ()
    metrics: LayerMetrics = field(default_factory=LayerMetrics)
    mapping: dict[str, str] = field(default_factory=dict)  # placeholder → original (reversible only)

    @property
    def hallucinations_blocked(self) -> int:
        return self.metrics.hallucinations_blocked

    @property
    def llm_enabled(self) -> bool:
        return self.metrics.llm_enabled

    @property
    def has_pii(self) -> bool:
        return bool(self.entities)

    @property
    def entity_counts(self) -> dict[str, int]:
        return dict(Counter(e.label.value for e in self.entities))

    @property
    def layer_counts(self) -> dict[int, int]:
        counts = Counter(e.layer for e in self.entities)
        return {layer: counts.get(layer, 0) for layer in (LAYER_RULES, LAYER_DICTIONARY, LAYER_MODEL)}
