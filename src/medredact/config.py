"""YAML/dict config loader and composition root for medredact.

Supports loading from a YAML file or a plain dict (for embedding in a
larger application config).

Example YAML:

    medredact:
      llm:
        enabled: true
        backend: openai          # "openai", "presidio" or "none"
        base_url: http://127.0.0.1:8080/v1
        model: qwen3-0.6b
        timeout: 10
      lexicon:
        medical_terms: null      # null = bundled list
        locations: null
      allow_list:
        - normal
      skip_categories:
        - DATE
      notes:
        base_url: https://openrouter.ai/api/v1
        model: x-ai/grok-4.1-fast:free
      store:
        path: ~/.medredact/mappings.db
        key: null                # null = generated ~/.medredact/mappings.db.key

Environment overrides: MEDREDACT_LLM_URL, MEDREDACT_LLM_MODEL, MEDREDACT_DB,
MEDREDACT_STORE_KEY, MEDREDACT_NOTES_API_KEY (falls back to OPENROUTER_API_KEY).
"""

from __future__ import annotations
import os
from pathlib import Path
from typing import Any

from .extraction import EntityExtractor, Extractor, OpenAIBackend
from .lexicon import Lexicon, default_lexicon, read_terms
from .middleware import RedactMiddleware
from .notes import DEFAULT_BASE_URL, DEFAULT_MODEL, SoapNoteGenerator
from .redactor import Redactor, RedactorConfig
from .types import Category

DEFAULT_DB = str(Path.home() / ".medredact" / "mappings.db")


def load_config(data: dict[str, Any] | None) -> dict[str, Any]:
    """Normalize a config dict (from YAML or inline)."""
    data = data or {}
    # Support nested under "medredact" key or flat
    if "medredact" in data:
        data = data["medredact"] or {}

    llm = data.get("llm") or {}
    lexicon = data.get("lexicon") or {}
    notes = data.get("notes") or {}
    store = data.get("store") or {}

    return {
        "llm_enabled": llm.get("enabled", True),
        "llm_backend": llm.get("backend", "openai"),
        "llm_base_url": os.environ.get("MEDREDACT_LLM_URL", llm.get("base_url", "http://127.0.0.1:8080/v1")),
        "llm_model": os.environ.get("MEDREDACT_LLM_MODEL", llm.get("model", "qwen3-0.6b")),
        "llm_timeout": float(llm.get("timeout", 10)),
        "medical_terms": lexicon.get("medical_terms"),
        "locations": lexicon.get("locations"),
        "allow_list": set(data.get("allow_list") or []),
        "skip_categories": {Category(c.upper()) for c in data.get("skip_categories") or []},
        "notes_base_url": notes.get("base_url", DEFAULT_BASE_URL),
        "notes_model": notes.get("model", DEFAULT_MODEL),
        "notes_api_key": os.environ.get("MEDREDACT_NOTES_API_KEY", os.environ.get("OPENROUTER_API_KEY", "")),
        "store_path": os.environ.get("MEDREDACT_DB", store.get("path", DEFAULT_DB)),
        "store_key": os.environ.get("MEDREDACT_STORE_KEY", store.get("key")),
    }


def load_from_yaml(path: str | Path) -> dict[str, Any]:
    """Load config from a YAML file."""
    import yaml

    with open(path, encoding="utf-8") as f:
        return load_config(yaml.safe_load(f))


def _normalized(config: dict[str, Any]) -> dict[str, Any]:
    return config if "llm_enabled" in config else load_config(config)


def create_lexicon(config: dict[str, Any]) -> Lexicon:
    cfg = _normalized(config)
    if cfg["medical_terms"] is None and cfg["locations"] is None:
        return default_lexicon()
    bundled = default_lexicon()
    return Lexicon(
        medical_terms=read_terms(cfg["medical_terms"]) if cfg["medical_terms"] else bundled.medical_terms,
        locations=read_terms(cfg["locations"]) if cfg["locations"] else bundled.locations,
    )


def create_extractor(config: dict[str, Any]) -> Extractor | None:
    """Build the third-layer extractor named by the config, if any."""
    cfg = _normalized(config)
    if not cfg["llm_enabled"] or cfg["llm_backend"] == "none":
        return None
    if cfg["llm_backend"] == "presidio":
        from .presidio_layer import PresidioExtractor
        return PresidioExtractor()
    if cfg["llm_backend"] == "openai":
        return EntityExtractor(OpenAIBackend(
            base_url=cfg["llm_base_url"],
            model=cfg["llm_model"],
            timeout=cfg["llm_timeout"],
        ))
    raise ValueError(f"unknown llm backend: {cfg['llm_backend']}")


def create_redactor(config: dict[str, Any], *, extractor: Extractor | None = None) -> Redactor:
    """Create a fully configured redactor from a config dict."""
    cfg = _normalized(config)
    redactor_config = RedactorConfig(
        use_llm=cfg["llm_enabled"],
        skip_categories=cfg["skip_categories"],
        allow_list=cfg["allow_list"],
    )
    return Redactor(
        redactor_config,
        lexicon=create_lexicon(cfg),
        extractor=extractor if extractor is not None else create_extractor(cfg),
    )


def create_middleware(config: dict[str, Any]) -> RedactMiddleware:
    """Create a middleware with a note generator when an API key is set."""
    cfg = _normalized(config)
    notes = None
    if cfg["notes_api_key"]:
        notes = SoapNoteGenerator(
            api_key=cfg["notes_api_key"],
            base_url=cfg["notes_base_url"],
            model=cfg["notes_model"],
        )
    return RedactMiddleware(redactor=create_redactor(cfg), notes=notes)
