"""Tests for the layered redactor, both output modes."""

import sys, os
sys.path.insert(0, os.path.join(os.path.dirname(__file__), "..", "src"))

import asyncio

import pytest

from medredact import Redactor, RedactorConfig, PlaceholderVault, restore
from medredact.extraction import EntityExtractor
from medredact.redactor import merge_spans
from medredact.types import (
    Category, EntitySpan, LAYER_DICTIONARY, LAYER_MODEL, LAYER_RULES,
)


class StubBackend:
    def __init__(self, output="NOTHING", error=None):
        self.output = output
        self.error = error
        self.prompts = []

    def generate(self, prompt, options):
        self.prompts.append(prompt)
        if self.error is not None:
            raise self.error
        return self.output


def redactor_with(output="NOTHING", error=None, **config):
    backend = StubBackend(output, error)
    redactor = Redactor(RedactorConfig(**config), extractor=EntityExtractor(backend))
    return redactor, backend


SAMPLE = "Patient John Smith (SSN: 123-45-6789), phone 555-123-4567, seen 01/15/2024 in Boston."
SAMPLE_TAGGED = "Patient [PERSON] (SSN: [ID]), phone [PHONE], seen [DATE] in [LOCATION]."


# ── Tag mode ─────────────────────────────────────────────────────────

def test_sample_rules_and_dictionary():
    result = Redactor().redact(SAMPLE)
    assert result.output_text == SAMPLE_TAGGED
    assert not result.llm_enabled
    assert result.metrics.layer1_count == 4
    assert result.metrics.layer2_count == 1
    assert result.metrics.layer3_count == 0


def test_sample_with_model():
    redactor, backend = redactor_with("John Smith | PERSON")
    result = redactor.redact(SAMPLE)
    assert result.output_text == SAMPLE_TAGGED
    assert result.llm_enabled
    assert result.hallucinations_blocked == 0
    # The model only ever sees text the first two layers already tagged
    assert "555-123-4567" not in backend.prompts[0]
    assert "[PHONE]" in backend.prompts[0]


def test_model_entities_and_hallucination():
    redactor, _ = redactor_with("Mary Jones | PERSON\nMercy General | ORG\nBob Lee | PERSON")
    result = redactor.redact("Referred by Mary Jones from Mercy General.")
    assert result.output_text == "Referred by [PERSON] from [ORG]."
    assert result.hallucinations_blocked == 1
    assert result.metrics.layer3_count == 2
    assert result.layer_counts == {LAYER_RULES: 0, LAYER_DICTIONARY: 0, LAYER_MODEL: 2}


def test_model_failure_degrades_to_rules():
    redactor, _ = redactor_with(error=ConnectionError("refused"))
    result = redactor.redact(SAMPLE)
    assert result.output_text == SAMPLE_TAGGED
    assert not result.llm_enabled
    assert result.metrics.layer3_count == 0


def test_backend_crash_degrades_to_rules():
    redactor, _ = redactor_with(error=RuntimeError("model crashed"))
    result = redactor.redact("Call 555-123-4567")
    assert result.output_text == "Call [PHONE]"
    assert not result.llm_enabled


class BrokenExtractor:
    def extract_with_status(self, text):
        raise ValueError("bad weights")


def test_broken_extractor_degrades_to_rules():
    redactor = Redactor(extractor=BrokenExtractor())
    tagged = redactor.redact(SAMPLE)
    assert tagged.output_text == SAMPLE_TAGGED
    assert not tagged.llm_enabled

    result = redactor.redact_reversible("Call 555-123-4567")
    assert result.output_text == "Call {{PHONE_0}}"
    assert not result.llm_enabled


def test_model_not_called_when_disabled():
    redactor, backend = redactor_with("Mary | PERSON")
    result = redactor.redact_fast("Mary is here")
    assert result.output_text == "Mary is here"
    assert backend.prompts == []

    redactor, backend = redactor_with("Mary | PERSON", use_llm=False)
    assert redactor.redact("Mary is here").output_text == "Mary is here"
    assert backend.prompts == []


def test_model_medical_term_is_kept():
    redactor, _ = redactor_with("Metformin | PERSON")
    result = redactor.redact("Metformin was started.")
    assert result.output_text == "Metformin was started."
    assert result.hallucinations_blocked == 0


def test_tag_mode_is_idempotent():
    redactor, _ = redactor_with("NOTHING")
    once = redactor.redact(SAMPLE).output_text
    again = redactor.redact(once)
    assert again.output_text == once
    assert not again.has_pii


@pytest.mark.parametrize("text", [
    "SSN 123-45-6789.",
    "SSN: 123 45 6789",
    "ssn 123456789 on file",
])
def test_no_partial_ssn_leak(text):
    out = Redactor().redact(text).output_text
    assert "6789" not in out
    assert "123" not in out


def test_entities_index_original_text():
    redactor, _ = redactor_with("Mary Jones | PERSON")
    text = "Mary Jones, 555-123-4567, lives in Boston. Dr. Wu agrees."
    result = redactor.redact(text)
    assert result.output_text == "[PERSON], [PHONE], lives in [LOCATION]. Dr. [PERSON] agrees."
    for e in result.entities:
        assert text[e.start:e.end] == e.surface_text


def test_skip_categories():
    redactor = Redactor(RedactorConfig(skip_categories={Category.DATE, Category.LOCATION}))
    result = redactor.redact("Seen 01/15/2024 in Boston.")
    assert result.output_text == "Seen 01/15/2024 in Boston."


def test_allow_list():
    redactor = Redactor(RedactorConfig(allow_list={"Boston"}))
    assert redactor.redact("Seen in Boston.").output_text == "Seen in Boston."


def test_empty_input():
    redactor, backend = redactor_with("Mary | PERSON")
    result = redactor.redact("   ")
    assert result.output_text == "   "
    assert result.entities == ()
    assert backend.prompts == []
    assert not result.llm_enabled
    assert not redactor.redact_reversible("").llm_enabled


def test_entity_counts():
    result = Redactor().redact("Call 555-123-4567 or 555-987-6543 by 01/15/2024")
    assert result.entity_counts == {"PHONE": 2, "DATE": 1}


def test_async_wrapper():
    result = asyncio.run(Redactor().aredact("Call 555-123-4567"))
    assert result.output_text == "Call [PHONE]"


# ── Reversible mode ──────────────────────────────────────────────────

def test_reversible_sample():
    result = Redactor().redact_reversible(SAMPLE)
    assert result.output_text == (
        "Patient {{PERSON_0}} (SSN: {{ID_0}}), phone {{PHONE_0}}, "
        "seen {{DATE_0}} in {{LOCATION_0}}."
    )
    assert result.mapping["{{PERSON_0}}"] == "John Smith"
    assert result.mapping["{{ID_0}}"] == "123-45-6789"
    assert restore(result.output_text, result.mapping) == SAMPLE


@pytest.mark.parametrize("text", [
    SAMPLE,
    "Lives at 123 Main Street, Boston, MA 02115 now.",
    "Email alice@example.com, MRN: A1234567, Blue Cross Blue Shield.",
    "Referred by Mary Jones from Mercy General. Mary Jones agreed.",
    "No identifiers in this sentence.",
])
def test_reversible_round_trip(text):
    redactor, _ = redactor_with("Mary Jones | PERSON\nMercy General | ORG")
    result = redactor.redact_reversible(text)
    assert restore(result.output_text, result.mapping) == text
    for e in result.entities:
        assert text[e.start:e.end] == e.surface_text


def test_reversible_model_sees_original():
    redactor, backend = redactor_with("NOTHING")
    redactor.redact_reversible("Call 555-123-4567")
    assert "555-123-4567" in backend.prompts[0]


def test_reversible_rule_beats_model_overlap():
    redactor, _ = redactor_with("Main Street | ORG")
    result = redactor.redact_reversible("Lives at 123 Main Street, Boston, MA 02115 now.")
    assert result.output_text == "Lives at {{ADDRESS_0}} now."
    assert [e.label for e in result.entities] == [Category.ADDRESS]
    assert result.mapping == {"{{ADDRESS_0}}": "123 Main Street, Boston, MA 02115"}


def test_reversible_every_occurrence_replaced():
    redactor, _ = redactor_with("Mary | PERSON")
    result = redactor.redact_reversible("Mary called. Mary left.")
    assert result.output_text == "{{PERSON_0}} called. {{PERSON_0}} left."
    assert len(result.mapping) == 1


def test_reversible_hallucination_blocked():
    redactor, _ = redactor_with("Bob Lee | PERSON")
    result = redactor.redact_reversible("Mary called.")
    assert result.output_text == "Mary called."
    assert result.hallucinations_blocked == 1
    assert result.mapping == {}


def test_reversible_shared_vault():
    vault = PlaceholderVault()
    redactor = Redactor()
    first = redactor.redact_reversible("Call 555-123-4567", vault)
    second = redactor.redact_reversible("Again 555-123-4567 or 555-987-6543", vault)
    assert first.output_text == "Call {{PHONE_0}}"
    assert second.output_text == "Again {{PHONE_0}} or {{PHONE_1}}"
    assert second.mapping == vault.dump()


def test_reversible_text_with_literal_token():
    text = "Chart says {{PERSON_0}}; Dr. Wu agreed."
    result = Redactor().redact_reversible(text)
    assert result.output_text == "Chart says {{PERSON_0}}; Dr. {{PERSON_1}} agreed."
    assert result.mapping == {"{{PERSON_1}}": "Wu"}
    assert restore(result.output_text, result.mapping) == text


def test_reversible_async_wrapper():
    result = asyncio.run(Redactor().aredact_reversible("Seen in Boston"))
    assert result.output_text == "Seen in {{LOCATION_0}}"


# ── Span merging ─────────────────────────────────────────────────────

def test_merge_lower_layer_wins():
    rule = EntitySpan(Category.ADDRESS, "x" * 10, 0, 10, LAYER_RULES)
    model = EntitySpan(Category.ORG, "xxx", 5, 8, LAYER_MODEL)
    assert merge_spans([model, rule]) == [rule]


def test_merge_trust_beats_earlier_start():
    model = EntitySpan(Category.PERSON, "x" * 8, 0, 8, LAYER_MODEL)
    rule = EntitySpan(Category.PHONE, "x" * 10, 5, 15, LAYER_RULES)
    assert merge_spans([model, rule]) == [rule]


def test_merge_longer_wins_within_layer():
    short = EntitySpan(Category.PERSON, "John", 0, 4, LAYER_MODEL)
    long = EntitySpan(Category.PERSON, "John Smith", 0, 10, LAYER_MODEL)
    assert merge_spans([short, long]) == [long]


def test_merge_keeps_disjoint_sorted():
    a = EntitySpan(Category.PERSON, "Mary", 10, 14, LAYER_MODEL)
    b = EntitySpan(Category.LOCATION, "Boston", 0, 6, LAYER_DICTIONARY)
    assert merge_spans([a, b]) == [b, a]
    assert merge_spans([]) == []


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
