"""SOAP note drafting through a cloud chat-completions endpoint.

Only placeholder text may be sent.  The system prompt tells the service to
echo every {{LABEL_n}} placeholder verbatim so the note can be restored
locally afterwards.
"""

from __future__ import annotations
import logging
import re
from typing import Any, Iterator

from .errors import RedactorError

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://openrouter.ai/api/v1"
DEFAULT_MODEL = "x-ai/grok-4.1-fast:free"

SYSTEM_PROMPT = """You are an expert medical scribe.
Task: Create a professional SOAP note based on the provided transcript.
Format:
S: Subjective
O: Objective
A: Assessment
P: Plan

Rules:
1. Use the exact placeholders provided in the transcript (e.g., {{PERSON_0}}, {{ORG_1}}) in your output. DO NOT change or hallucinate names.
2. Be concise and professional.
3. Maintain the placeholders exactly as they appear so they can be re-identified later."""

_PLACEHOLDER = re.compile(r"\{\{[A-Z]+_\d+\}\}")


class NoteGenerationError(RedactorError):
    """Raised when the note service fails or returns nothing."""

    def __init__(self, message: str):
        super().__init__(f"Note generation failed: {message}")


def missing_placeholders(sent: str, received: str) -> set[str]:
    """Placeholders present in the transcript but dropped by the service."""
    return set(_PLACEHOLDER.findall(sent)) - set(_PLACEHOLDER.findall(received))


class SoapNoteGenerator:
    """Drafts SOAP notes from placeholder transcripts."""

    def __init__(
        self,
        *,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        model: str = DEFAULT_MODEL,
        temperature: float = 0.2,
        timeout: float = 60.0,
        client: Any = None,
    ) -> None:
        if client is None:
            from openai import OpenAI

            client = OpenAI(api_key=api_key, base_url=base_url, timeout=timeout)
        self.client = client
        self.model = model
        self.temperature = temperature

    def _messages(self, transcript: str) -> list[dict]:
        return [
            {"role": "system", "content": SYSTEM_PROMPT},
            {"role": "user", "content": transcript},
        ]

    def generate(self, transcript: str) -> str:
        """Return the note text, placeholders still in place."""
        import openai

        try:
            response = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(transcript),
                temperature=self.temperature,
            )
        except openai.OpenAIError as e:
            raise NoteGenerationError(str(e)) from e

        content = response.choices[0].message.content if response.choices else None
        if not content:
            raise NoteGenerationError("empty response from note service")

        dropped = missing_placeholders(transcript, content)
        if dropped:
            logger.warning("Note service dropped %d placeholders", len(dropped))
        return content

    def stream(self, transcript: str) -> Iterator[str]:
        """Yield note text chunks as they arrive."""
        import openai

        try:
            stream = self.client.chat.completions.create(
                model=self.model,
                messages=self._messages(transcript),
                temperature=self.temperature,
                stream=True,
            )
            for chunk in stream:
                if chunk.choices and chunk.choices[0].delta.content:
                    yield chunk.choices[0].delta.content
        except openai.OpenAIError as e:
            raise NoteGenerationError(str(e)) from e
