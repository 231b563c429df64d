"""Conversation middleware — reversible redaction around a cloud round trip.

Usage:

    mw = RedactMiddleware(redactor)

    # Before sending to the note service
    safe_transcript = mw.pre_send(transcript)

    # After receiving the response
    real_note = mw.post_receive(note_text)

Usage with streaming:

    restorer = mw.streaming_restorer()
    for chunk in stream:
        yield restorer.feed(chunk)
    yield restorer.flush()
"""

from __future__ import annotations
from dataclasses import dataclass, field

from .notes import SoapNoteGenerator
from .redactor import Redactor, RedactorConfig
from .streaming import StreamingRestorer
from .types import RedactionResult
from .vault import PlaceholderVault


@dataclass
class RedactMiddleware:
    """Holds one placeholder vault per conversation."""

    redactor: Redactor
    vault: PlaceholderVault = field(default_factory=PlaceholderVault)
    notes: SoapNoteGenerator | None = None
    last_result: RedactionResult | None = None

    @classmethod
    def create(cls, *, config: RedactorConfig | None = None) -> "RedactMiddleware":
        """Rules + dictionary middleware with its own vault."""
        return cls(redactor=Redactor(config))

    def pre_send(self, text: str) -> str:
        """Redact text for the cloud; placeholders stay stable across calls."""
        self.last_result = self.redactor.redact_reversible(text, self.vault)
        return self.last_result.output_text

    def pre_send_messages(self, messages: list[dict], *, content_key: str = "content") -> list[dict]:
        """Redact user messages in chat format.  Does NOT mutate the originals."""
        out: list[dict] = []
        for msg in messages:
            content = msg.get(content_key)
            if msg.get("role") == "user" and isinstance(content, str) and content:
                out.append({**msg, content_key: self.pre_send(content)})
            else:
                out.append(msg)
        return out

    def post_receive(self, text: str) -> str:
        """Restore placeholders in the service's response."""
        return self.vault.restore(text)

    def streaming_restorer(self) -> StreamingRestorer:
        return StreamingRestorer(self.vault.dump())

    def draft_note(self, transcript: str) -> str:
        """Redact, draft a SOAP note in the cloud, restore locally."""
        if self.notes is None:
            raise ValueError("no note generator configured")
        return self.post_receive(self.notes.generate(self.pre_send(transcript)))

    @property
    def mapping(self) -> dict[str, str]:
        return self.vault.dump()

    @property
    def stats(self) -> dict:
        return {
            "vault_size": self.vault.size,
            "last_metrics": self.last_result.metrics.as_dict() if self.last_result else None,
        }
