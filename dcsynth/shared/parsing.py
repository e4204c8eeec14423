"""
NeuroSynth DCS - Robust LLM Output Parsing
==========================================

Handles markdown-wrapped JSON, preambles, and schema validation.
Normalizes provider responses (raw text or already-decoded objects)
into validated pydantic models at a single boundary.
"""

import json
import re
import logging
from typing import Any, Type, TypeVar, Union
from pydantic import BaseModel, ValidationError

from dcsynth.shared.exceptions import LLMParsingError

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def strip_markdown_fences(text: str) -> str:
    """Remove markdown code fences from text."""
    text = text.strip()
    text = re.sub(r'\A```(?:json|JSON)?[ \t]*\n?', '', text)
    text = re.sub(r'\n?```\Z', '', text)
    return text.strip()


def find_json_boundaries(text: str) -> tuple[int, int]:
    """
    Find the start and end indices of the outermost JSON value in text.

    Objects are preferred; arrays are used when they open first.
    """
    obj_start = text.find('{')
    obj_end = text.rfind('}')
    arr_start = text.find('[')
    arr_end = text.rfind(']')

    if obj_start == -1 and arr_start == -1:
        return -1, -1
    if obj_start == -1:
        return arr_start, arr_end
    if arr_start == -1 or obj_start < arr_start:
        return obj_start, obj_end
    return arr_start, arr_end


def extract_json_string(text: str) -> str:
    """
    Extract JSON string from LLM output.

    Handles:
    - ```json ... ``` blocks
    - Preambles ("Here is the extraction: {...}")
    - Postscripts ("Let me know if...")
    """
    text = strip_markdown_fences(text)
    start_idx, end_idx = find_json_boundaries(text)

    if start_idx == -1 or end_idx == -1:
        raise LLMParsingError("No JSON object/array found in text")

    if end_idx < start_idx:
        raise LLMParsingError("Malformed JSON: end before start")

    return text[start_idx : end_idx + 1]


def extract_and_parse_json(text: str, model_class: Type[T]) -> T:
    """
    Extract JSON from LLM output and validate against a pydantic model.

    Raises:
        LLMParsingError: If parsing or validation fails
    """
    try:
        json_str = extract_json_string(text)
        data = json.loads(json_str)
        return model_class.model_validate(data)

    except json.JSONDecodeError as e:
        logger.warning(f"JSON decode error: {e}")
        raise LLMParsingError(f"Invalid JSON syntax: {str(e)}")
    except ValidationError as e:
        logger.warning(f"Pydantic validation error: {e}")
        raise LLMParsingError(f"Schema validation failed: {str(e)}")


def coerce_structured_payload(payload: Union[str, dict, Any], model_class: Type[T]) -> T:
    """
    Turn whatever a provider returned into a validated model.

    Accepts raw text (possibly fenced or wrapped in prose), a decoded dict,
    or an instance of the model itself.
    """
    if isinstance(payload, model_class):
        return payload
    if isinstance(payload, str):
        return extract_and_parse_json(payload, model_class)
    if isinstance(payload, dict):
        try:
            return model_class.model_validate(payload)
        except ValidationError as e:
            raise LLMParsingError(f"Schema validation failed: {str(e)}")
    raise LLMParsingError(f"Unsupported payload type: {type(payload).__name__}")
