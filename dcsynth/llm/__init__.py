"""LLM extraction adapters and prompts."""

from .adapter import (
    AnthropicExtractorAdapter,
    LLMExtractorAdapter,
    create_adapter,
    llm_extraction_to_record,
)
from .prompts import EXTRACTION_SCHEMA, LLMExtraction
