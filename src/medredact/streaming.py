"""Streaming restorer — buffers chunks and restores placeholders as they complete.

For streamed note-generation responses where placeholders arrive as fragments:
    {{PER  →  {{PERSON_  →  {{PERSON_0}}

Text is released as soon as it cannot be the start of a placeholder.

Usage:
    restorer = StreamingRestorer(result.mapping)
    for chunk in stream:
        ready_text = restorer.feed(chunk)
        if ready_text:
            yield ready_text
    yield restorer.flush()
"""

from __future__ import annotations
import re

_TOKEN_COMPLETE = re.compile(r"\{\{[A-Z]+_\d+\}\}")


class StreamingRestorer:
    """Buffers streaming chunks and restores complete placeholders."""

    __slots__ = ("_mapping", "_buffer", "_max_token_len")

    def __init__(self, mapping: dict[str, str], *, max_token_len: int = 32) -> None:
        self._mapping = mapping
        self._buffer = ""
        self._max_token_len = max_token_len

    def feed(self, chunk: str) -> str:
        """Feed a chunk, return any text ready to emit."""
        self._buffer += chunk
        return self._drain()

    def flush(self) -> str:
        """Flush the remaining buffer (call at end of stream)."""
        out = self._buffer
        self._buffer = ""
        return _TOKEN_COMPLETE.sub(lambda m: self._mapping.get(m.group(), m.group()), out)

    def _drain(self) -> str:
        out_parts: list[str] = []

        while self._buffer:
            idx = self._buffer.find("{")

            if idx == -1:
                out_parts.append(self._buffer)
                self._buffer = ""
                break

            if idx > 0:
                out_parts.append(self._buffer[:idx])
                self._buffer = self._buffer[idx:]

            # Buffer now starts with "{"
            m = _TOKEN_COMPLETE.match(self._buffer)
            if m:
                token = m.group()
                out_parts.append(self._mapping.get(token, token))
                self._buffer = self._buffer[m.end():]
                continue

            if len(self._buffer) == 1 or (
                self._buffer.startswith("{{") and _could_be_token(self._buffer)
                and len(self._buffer) <= self._max_token_len
            ):
                # Still accumulating a potential placeholder
                break

            out_parts.append("{")
            self._buffer = self._buffer[1:]

        return "".join(out_parts)


def _could_be_token(fragment: str) -> bool:
    """True if ``fragment`` is a prefix of some {{LABEL_n}} placeholder."""
    body = fragment[2:]
    label, sep, rest = body.partition("_")
    if not sep:
        return all(c.isupper() for c in label)
    if not label.isupper() or not label.isalpha():
        return False
    digits = rest.rstrip("}")
    if len(digits) < len(rest):
        # Already closing: "{{PERSON_0}"
        return digits.isdigit()
    return digits == "" or digits.isdigit()
