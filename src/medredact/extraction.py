"""Layer 3 — PERSON / ORG extraction with a local language model.

The model is asked for a plain list of ``Entity Text | LABEL`` lines (or
``NOTHING``) using a fixed few-shot prompt and near-deterministic decoding.
Its output is never trusted directly: every candidate goes through
``validator.validate`` before anything is redacted.

Any failure (model unreachable, timeout, empty or unparseable output)
degrades to an empty candidate list so the deterministic layers still run.
"""

from __future__ import annotations
import logging
import re
from dataclasses import dataclass
from typing import Any, Protocol

from .errors import ExtractionError
from .types import Candidate, Category

logger = logging.getLogger(__name__)

NOTHING = "NOTHING"

PROMPT = '''Task: List ONLY the Person Names and Organization Names in the text.
Format: "Entity Text | LABEL"
Rules:
1. PERSON = human names (first, last, or full).
2. ORG = hospitals, clinics, medical centers, companies, institutions.
3. Do not rewrite the sentence.
4. Do NOT include dates, emails, phones, addresses or locations (already redacted).
5. If none found, output NOTHING.

Examples:
Input: "Dr. [PERSON] visited the hospital."
Output:
NOTHING

Input: "Alice went to Mayo Clinic for her appointment."
Output:
Alice | PERSON
Mayo Clinic | ORG

Input: "Give this prescription to Bob Smith at Mercy General."
Output:
Bob Smith | PERSON
Mercy General | ORG

Input: "The patient has hypertension and diabetes."
Output:
NOTHING

'''

DEFAULT_STOP = (
    "Input:",
    "User:",
    "<|endoftext|>",
    "<|im_end|>",
    "<|end|>",
    "\n\n\n",
)

_THINK_BLOCK = re.compile(r"<think>.*?(?:</think>|$)", re.DOTALL | re.IGNORECASE)
_CONTROL_TOKEN = re.compile(r"<\|.*?\|>")
_FENCE = re.compile(r"^[ \t]*```[\w-]*[ \t]*$", re.MULTILINE)
_OUTPUT_PREFIX = re.compile(r"^\s*output:\s*", re.IGNORECASE)


@dataclass(frozen=True)
class DecodingOptions:
    """Sampling parameters for the extraction call."""
    temperature: float = 0.0
    top_k: int = 5
    max_tokens: int = 100
    stop: tuple[str, ...] = DEFAULT_STOP


def build_prompt(text: str) -> str:
    """The full prompt for one transcript."""
    return f'{PROMPT}Input: "{text}"\nOutput:'


def strip_artifacts(raw: str) -> str:
    """Remove reasoning traces, chat-control tokens and code fences."""
    cleaned = _THINK_BLOCK.sub("", raw)
    cleaned = _CONTROL_TOKEN.sub("", cleaned)
    cleaned = _FENCE.sub("", cleaned)
    cleaned = _OUTPUT_PREFIX.sub("", cleaned)
    return cleaned.strip()


def parse_label(raw: str) -> Category:
    """Normalize a model label to the closed category set."""
    label = raw.strip().upper()
    if "PERSON" in label or "NAME" in label:
        return Category.PERSON
    if "ORG" in label or "FACILITY" in label:
        return Category.ORG
    return Category.REDACTED


def parse_output(raw: str) -> list[Candidate]:
    """Parse model output into candidates.

    ``NOTHING`` yields an empty list.  Output that is empty after cleaning,
    or that contains no ``text | label`` line, raises ExtractionError.
    """
    cleaned = strip_artifacts(raw)
    if not cleaned:
        raise ExtractionError("empty model response")
    if cleaned.upper().rstrip(".") == NOTHING:
        return []

    candidates: list[Candidate] = []
    saw_entity_line = False
    for line in cleaned.splitlines():
        line = line.strip().lstrip("-*").strip()
        if "|" not in line:
            continue
        saw_entity_line = True
        surface, _, label = line.partition("|")
        surface = surface.strip().strip('"').strip()
        if not surface or surface.upper() == NOTHING:
            continue
        candidates.append(Candidate(text=surface, category=parse_label(label)))

    if not saw_entity_line and NOTHING not in cleaned.upper().split():
        raise ExtractionError("unparseable model response")
    return candidates


class ModelBackend(Protocol):
    """Anything that can complete a prompt."""

    def generate(self, prompt: str, options: DecodingOptions) -> str: ...


class Extractor(Protocol):
    """What the pipeline needs from the third layer."""

    def extract_with_status(self, text: str) -> tuple[list[Candidate], bool]: ...


class OpenAIBackend:
    """Completion backend for an OpenAI-compatible local inference server.

    Works with llama.cpp's server, Ollama and vLLM.  The client is created
    on first use and released by ``close()``; the caller owns the lifecycle.
    """

    def __init__(
        self,
        *,
        base_url: str = "http://127.0.0.1:8080/v1",
        model: str = "qwen3-0.6b",
        api_key: str = "local",
        timeout: float = 10.0,
    ) -> None:
        self.base_url = base_url
        self.model = model
        self.api_key = api_key
        self.timeout = timeout
        self._client: Any = None

    def _get_client(self) -> Any:
        if self._client is None:
            from openai import OpenAI

            self._client = OpenAI(
                base_url=self.base_url,
                api_key=self.api_key,
                timeout=self.timeout,
                max_retries=0,
            )
        return self._client

    def generate(self, prompt: str, options: DecodingOptions) -> str:
        import openai

        try:
            response = self._get_client().chat.completions.create(
                model=self.model,
                messages=[{"role": "user", "content": prompt}],
                temperature=options.temperature,
                max_tokens=options.max_tokens,
                stop=list(options.stop),
                extra_body={"top_k": options.top_k},
            )
        except openai.OpenAIError as e:
            raise ExtractionError(f"{type(e).__name__}: {e}") from e
        if not response.choices:
            raise ExtractionError("no choices in model response")
        return response.choices[0].message.content or ""

    def close(self) -> None:
        if self._client is not None:
            self._client.close()
            self._client = None


class EntityExtractor:
    """Prompts a model backend and parses its answer into candidates."""

    def __init__(self, backend: ModelBackend, options: DecodingOptions | None = None) -> None:
        self.backend = backend
        self.options = options or DecodingOptions()

    def extract_with_status(self, text: str) -> tuple[list[Candidate], bool]:
        """Return ``(candidates, ok)``; ``ok`` is False when the model failed."""
        try:
            raw = self.backend.generate(build_prompt(text), self.options)
            candidates = parse_output(raw)
        except ExtractionError as e:
            logger.warning("Model extraction unavailable, using rules only: %s", e)
            return [], False
        except Exception as e:
            # Backends are pluggable; none of their failures may block rules-only output
            logger.warning(
                "Model backend failed (%s), using rules only: %s", type(e).__name__, e,
            )
            return [], False
        logger.debug("Model proposed %d candidates", len(candidates))
        return candidates, True

    def extract(self, text: str) -> list[Candidate]:
        return self.extract_with_status(text)[0]

    def close(self) -> None:
        close = getattr(self.backend, "close", None)
        if close is not None:
            close()
