"""Layer 1 — deterministic rules for structured PII.

Rules run in a fixed priority order, each one over the output of the
previous one, so an earlier tag can never be re-matched by a later rule
(the address rule consumes its ZIP before the standalone ZIP rule runs).
A rule may name a capture group; only that group is redacted, which is how
the honorific rule keeps "Dr." and tags just the name.
"""

from __future__ import annotations
import re
from dataclasses import dataclass
from typing import Callable, Optional

from .edits import WorkingText
from .errors import PatternError
from .types import Category, EntitySpan, LAYER_RULES


@dataclass(frozen=True, slots=True)
class Rule:
    """A single detection rule."""
    label: Category
    pattern: re.Pattern
    group: int = 0
    accept: Optional[Callable[[re.Match, str], bool]] = None


def _compile(label: Category, source: str, flags: int = 0) -> re.Pattern:
    try:
        return re.compile(source, flags)
    except re.error as e:
        raise PatternError(label.value, str(e)) from e


def _standalone_zip(match: re.Match, text: str) -> bool:
    """Only redact 5-digit runs that start a line, follow a comma or a space."""
    start = match.start()
    return start == 0 or text[start - 1] in ", \n"


_STREET_SUFFIX = (
    r"(?:(?:St|Ave|Blvd|Dr|Ln|Rd|Ct|Pl|Cir)\b\.?"
    r"|(?:Street|Avenue|Boulevard|Drive|Lane|Road|Court|Way|Place|Circle)\b)"
)

_STATES = (
    "AL|AK|AZ|AR|CA|CO|CT|DE|DC|FL|GA|HI|ID|IL|IN|IA|KS|KY|LA|ME|MD|MA|MI|MN|MS"
    "|MO|MT|NE|NV|NH|NJ|NM|NY|NC|ND|OH|OK|OR|PA|RI|SC|SD|TN|TX|UT|VT|VA|WA|WV|WI|WY"
)

_MONTHS = (
    r"(?:Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|Jun(?:e)?|Jul(?:y)?"
    r"|Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

_INSURERS = (
    r"Blue Cross(?: Blue Shield)?|Blue Shield|Aetna|Anthem|Cigna|Humana"
    r"|Kaiser(?: Permanente)?|Medicaid|Medicare|Molina|United ?Healthcare"
    r"|UnitedHealthcare|Centene|Ambetter|Oscar Health|Tricare|TRICARE|Highmark|WellCare"
)

HONORIFICS = (
    "Dr", "Mr", "Mrs", "Ms", "Miss", "Prof", "Nurse", "Patient",
    "Officer", "Detective", "Agent", "Rev", "Fr", "Sr", "Jr",
)


# Priority order matters: see module docstring.
RULES: list[Rule] = [
    Rule(Category.EMAIL, _compile(
        Category.EMAIL,
        r"\b[A-Za-z0-9._%+\-]+@[A-Za-z0-9.\-]+\.[A-Za-z]{2,}\b",
    )),

    # (555) 123-4567, 555.123.4567, +1 555-123-4567
    Rule(Category.PHONE, _compile(
        Category.PHONE,
        r"(?<![\d\-])(?:\+?1[ \-.]?)?(?:\(\d{3}\)|\d{3})[ \-.]?\d{3}[ \-.]?\d{4}(?![\d\-])",
    )),

    # 123 Main St  /  123 Main Street, Boston, MA 02115
    Rule(Category.ADDRESS, _compile(
        Category.ADDRESS,
        r"\b\d{1,6}[ \t]+(?:[A-Z][a-zA-Z]+[ \t]+){1,4}" + _STREET_SUFFIX +
        r"(?:,?[ \t]+(?:[A-Z][a-zA-Z]+[ \t]?){1,3},[ \t]*(?:" + _STATES + r")[ \t]+\d{5}(?:-\d{4})?\b)?",
    )),

    # MA 02115
    Rule(Category.ZIP, _compile(
        Category.ZIP,
        r"\b(?:" + _STATES + r")[ \t]+\d{5}(?:-\d{4})?\b",
    )),

    # Bare ZIP, but not a dose like "10000 units"
    Rule(Category.ZIP, _compile(
        Category.ZIP,
        r"\b\d{5}(?:-\d{4})?\b(?![ \t]*(?i:mg|mcg|g|ml|units?|iu)\b)",
    ), accept=_standalone_zip),

    Rule(Category.DATE, _compile(
        Category.DATE,
        r"\b(?:"
        r"\d{1,2}[/\-]\d{1,2}[/\-]\d{2,4}"
        r"|\d{4}[/\-]\d{1,2}[/\-]\d{1,2}"
        r"|" + _MONTHS + r"\.?[ \t]+\d{1,2}(?:st|nd|rd|th)?,?[ \t]*\d{2,4}"
        r")\b",
        re.IGNORECASE,
    )),

    # SSN, with or without separators
    Rule(Category.ID, _compile(
        Category.ID,
        r"\b\d{3}[\- ]?\d{2}[\- ]?\d{4}\b",
    )),

    # Labelled record numbers; only the value is redacted
    Rule(Category.ID, _compile(
        Category.ID,
        r"\b(?i:MRN|medical record(?: number)?|member id|policy (?:number|no\.?)|account (?:number|no\.?))"
        r"[ \t]*[:#]?[ \t]*((?=[A-Z0-9\-]*\d)[A-Z0-9][A-Z0-9\-]{4,})\b",
    ), group=1),

    Rule(Category.INSURANCE, _compile(
        Category.INSURANCE,
        r"\b(?:" + _INSURERS + r")\b",
    )),

    # Dr. John Smith -> Dr. [PERSON]
    Rule(Category.PERSON, _compile(
        Category.PERSON,
        r"\b(" + "|".join(HONORIFICS) + r")\.?[ \t]+"
        r"([A-Z][a-zA-Z'\-]+(?:[ \t]+[A-Z][a-zA-Z'\-]+)?)",
    ), group=2),
]


def apply_rule(rule: Rule, working: WorkingText) -> list[EntitySpan]:
    """Run one rule over the working text, tag its matches and return spans."""
    text = working.text
    spans: list[EntitySpan] = []
    edits = []
    for m in rule.pattern.finditer(text):
        start, end = m.start(rule.group), m.end(rule.group)
        if start == end or working.is_edited(start, end):
            continue
        if rule.accept is not None and not rule.accept(m, text):
            continue
        orig_start = working.to_original(start)
        orig_end = working.to_original(end)
        edits.append((orig_start, orig_end, rule.label.tag))
        spans.append(EntitySpan(
            label=rule.label,
            surface_text=working.original[orig_start:orig_end],
            start=orig_start,
            end=orig_end,
            layer=LAYER_RULES,
        ))
    working.commit(edits)
    return spans


def tag_rules(working: WorkingText, rules: list[Rule] | None = None) -> list[EntitySpan]:
    """Apply every rule in priority order to ``working``."""
    spans: list[EntitySpan] = []
    for rule in rules if rules is not None else RULES:
        spans.extend(apply_rule(rule, working))
    return spans


def detect_and_tag(text: str) -> tuple[str, list[EntitySpan]]:
    """Tag structured PII.  Returns the tagged text and spans in ``text`` offsets."""
    working = WorkingText(text)
    spans = tag_rules(working)
    return working.text, spans


def scan_rules(text: str) -> list[EntitySpan]:
    """Collect rule spans without producing tagged text."""
    return detect_and_tag(text)[1]
