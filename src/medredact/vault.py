"""Placeholder vault — reversible mapping between PII and placeholder tokens.

Design goals:
  - Category-scoped, zero-based numbering: {{PERSON_0}}, {{PERSON_1}}, {{ORG_0}}
  - Deterministic: the same (label, value) maps to the same token within a vault
  - Literal restoration: plain substring replacement, no offsets, no regex
"""

from __future__ import annotations
import re
from collections import defaultdict
from typing import Iterable

from .edits import apply_edits
from .types import Category, EntitySpan


# Token format: {{LABEL_n}}. The note service is told to echo these verbatim
_TOKEN_FMT = "{{{{{label}_{idx}}}}}"
_TOKEN_PARTS = re.compile(r"\{\{([A-Z]+)_(\d+)\}\}")


def make_token(label: Category | str, idx: int) -> str:
    value = label.value if isinstance(label, Category) else label
    return _TOKEN_FMT.format(label=value, idx=idx)


class PlaceholderVault:
    """Bidirectional PII ↔ placeholder store for one transcript or conversation."""

    __slots__ = ("_pii_to_token", "_token_to_pii", "_counters")

    def __init__(self) -> None:
        self._pii_to_token: dict[tuple[str, str], str] = {}
        self._token_to_pii: dict[str, str] = {}
        self._counters: dict[str, int] = defaultdict(int)

    @classmethod
    def from_mapping(cls, mapping: dict[str, str]) -> PlaceholderVault:
        """Rebuild a vault from a stored token→original mapping."""
        vault = cls()
        for token, original in mapping.items():
            m = _TOKEN_PARTS.fullmatch(token)
            if m is None:
                continue
            label, idx = m.group(1), int(m.group(2))
            vault._pii_to_token[(label, original)] = token
            vault._token_to_pii[token] = original
            vault._counters[label] = max(vault._counters[label], idx + 1)
        return vault

    # ------------------------------------------------------------------
    # Core API
    # ------------------------------------------------------------------

    def get_or_create_token(self, label: Category | str, original: str, *, avoid: str = "") -> str:
        """Return existing token or create the next one for this label.

        Tokens that occur literally in ``avoid`` (the text being redacted)
        are never handed out, so restoring cannot touch pre-existing text.
        """
        value = label.value if isinstance(label, Category) else label
        key = (value, original)
        token = self._pii_to_token.get(key)
        if token is not None and token not in avoid:
            return token

        while True:
            token = make_token(value, self._counters[value])
            self._counters[value] += 1
            if token not in avoid:
                break

        self._pii_to_token[key] = token
        self._token_to_pii[token] = original
        return token

    def place_holders(self, spans: Iterable[EntitySpan], text: str) -> str:
        """Substitute non-overlapping spans of ``text`` with placeholders.

        Counters are assigned by ascending offset so numbering reads left to
        right; substitution happens right-to-left.
        """
        edits = []
        for span in sorted(spans, key=lambda s: s.start):
            token = self.get_or_create_token(span.label, text[span.start:span.end], avoid=text)
            edits.append((span.start, span.end, token))
        return apply_edits(text, edits)

    def restore(self, text: str) -> str:
        return restore(text, self._token_to_pii)

    def lookup_token(self, token: str) -> str | None:
        return self._token_to_pii.get(token)

    # ------------------------------------------------------------------
    # Introspection
    # ------------------------------------------------------------------

    @property
    def size(self) -> int:
        return len(self._token_to_pii)

    def dump(self) -> dict[str, str]:
        """Return a copy of the token→original mapping."""
        return dict(self._token_to_pii)

    def clear(self) -> None:
        self._pii_to_token.clear()
        self._token_to_pii.clear()
        self._counters.clear()


def place_holders(spans: Iterable[EntitySpan], original_text: str) -> tuple[str, dict[str, str]]:
    """One-shot placeholder substitution with a fresh vault."""
    vault = PlaceholderVault()
    return vault.place_holders(spans, original_text), vault.dump()


def restore(text: str, mapping: dict[str, str]) -> str:
    """Replace every placeholder in ``text`` with its original value.

    Tokens missing from ``mapping`` are left as they are.
    """
    result = text
    # Longest tokens first so {{PERSON_1}} never clips {{PERSON_10}}
    for token in sorted(mapping, key=len, reverse=True):
        if token in result:
            result = result.replace(token, mapping[token])
    return result
