"""medredact — layered, hallucination-checked PII redaction for clinical transcripts."""

from .redactor import Redactor, RedactorConfig, merge_spans
from .vault import PlaceholderVault, place_holders, restore
from .lexicon import Lexicon, default_lexicon
from .extraction import EntityExtractor, OpenAIBackend, DecodingOptions
from .middleware import RedactMiddleware
from .streaming import StreamingRestorer
from .store import MappingStore
from .config import create_middleware, create_redactor, load_config, load_from_yaml
from .errors import RedactorError, LexiconError, PatternError, ExtractionError, StoreError
from .types import Category, Candidate, EntitySpan, LayerMetrics, RedactionResult

__all__ = [
    "Redactor", "RedactorConfig", "merge_spans",
    "PlaceholderVault", "place_holders", "restore",
    "Lexicon", "default_lexicon",
    "EntityExtractor", "OpenAIBackend", "DecodingOptions",
    "RedactMiddleware",
    "StreamingRestorer",
    "MappingStore",
    "create_middleware", "create_redactor", "load_config", "load_from_yaml",
    "RedactorError", "LexiconError", "PatternError", "ExtractionError", "StoreError",
    "Category", "Candidate", "EntitySpan", "LayerMetrics", "RedactionResult",
]
__version__ = "0.1.0"
