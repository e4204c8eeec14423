"""
NeuroSynth DCS - LLM Extraction Schema & Prompts
================================================

The structured shape an LLM must return for one extraction call, and the
prompts that ask for it.

Usage:
    from dcsynth.llm.prompts import LLMExtraction, EXTRACTION_SCHEMA, build_extraction_prompt

    prompt = build_extraction_prompt(notes_text, focus_fields=["procedures"])
    extraction = LLMExtraction.model_validate(payload)
"""

import datetime
import json
import re
from typing import List, Optional, Sequence, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from dcsynth.core.text_normalizer import parse_date


# =============================================================================
# Schema
# =============================================================================

def _lenient_date(value):
    if value is None or value == "" or isinstance(value, datetime.date):
        return value or None
    return parse_date(str(value))


class _LLMModel(BaseModel):
    model_config = ConfigDict(extra="ignore", populate_by_name=True)


class LLMDemographics(_LLMModel):
    name: Optional[str] = None
    mrn: Optional[str] = None
    age: Optional[int] = None
    sex: Optional[str] = None

    @field_validator("age", mode="before")
    @classmethod
    def parse_age(cls, v):
        if v is None or isinstance(v, int):
            return v
        match = re.search(r"\d{1,3}", str(v))
        return int(match.group(0)) if match else None

    @field_validator("sex", mode="before")
    @classmethod
    def normalize_sex(cls, v):
        if not v:
            return None
        return str(v).strip()[:1].upper()


class LLMDates(_LLMModel):
    admission: Optional[datetime.date] = None
    discharge: Optional[datetime.date] = None
    procedure_dates: List[datetime.date] = Field(default_factory=list)

    @field_validator("admission", "discharge", mode="before")
    @classmethod
    def parse_dates(cls, v):
        return _lenient_date(v)

    @field_validator("procedure_dates", mode="before")
    @classmethod
    def parse_date_list(cls, v):
        return [d for d in (_lenient_date(x) for x in (v or [])) if d is not None]


class LLMPathology(_LLMModel):
    type: Optional[str] = None
    subtype: Optional[str] = None
    location: Optional[str] = None


class LLMProcedure(_LLMModel):
    name: str
    date: Optional[datetime.date] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("date", mode="before")
    @classmethod
    def parse_event_date(cls, v):
        return _lenient_date(v)


class LLMComplication(_LLMModel):
    name: str
    onset_date: Optional[datetime.date] = None
    severity: Optional[str] = None
    resolved: Optional[bool] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("onset_date", mode="before")
    @classmethod
    def parse_onset(cls, v):
        return _lenient_date(v)


class LLMMedication(_LLMModel):
    name: str
    dose: Optional[str] = None
    frequency: Optional[str] = None
    route: Optional[str] = None
    start_date: Optional[datetime.date] = None
    status: Optional[str] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("start_date", mode="before")
    @classmethod
    def parse_start(cls, v):
        return _lenient_date(v)

    @field_validator("dose", "frequency", "route", "status", mode="before")
    @classmethod
    def stringify(cls, v):
        return None if v is None or v == "" else str(v)


class LLMFunctionalScore(_LLMModel):
    type: str
    value: Union[int, str]
    date: Optional[datetime.date] = None
    confidence: Optional[float] = Field(default=None, ge=0.0, le=1.0)

    @field_validator("date", mode="before")
    @classmethod
    def parse_score_date(cls, v):
        return _lenient_date(v)


class LLMExtraction(_LLMModel):
    """Everything an LLM extraction call returns."""
    demographics: LLMDemographics = Field(default_factory=LLMDemographics)
    dates: LLMDates = Field(default_factory=LLMDates)
    pathology: LLMPathology = Field(default_factory=LLMPathology)
    procedures: List[LLMProcedure] = Field(default_factory=list)
    complications: List[LLMComplication] = Field(default_factory=list)
    medications: List[LLMMedication] = Field(default_factory=list)
    functional_scores: List[LLMFunctionalScore] = Field(default_factory=list)
    confidence: float = Field(default=0.8, ge=0.0, le=1.0, description="Overall self-reported confidence")


EXTRACTION_SCHEMA = LLMExtraction.model_json_schema()


# =============================================================================
# Prompts
# =============================================================================

EXTRACTION_SYSTEM_PROMPT = """You are a neurosurgical clinical documentation specialist.

Extract structured data from the hospital notes you are given.

Rules:
1. Only report facts stated in the notes. Never infer or invent values.
2. Use ISO dates (YYYY-MM-DD). Resolve "POD#3" style markers only when the surgery date is stated.
3. Omit negated findings ("no vasospasm") and planned-but-not-performed procedures.
4. Report each clinical event once, even if several notes repeat it.
5. Return a single JSON object matching the schema. No prose, no markdown."""

EXTRACTION_USER_PROMPT = """## Schema
{schema}

## Clinical notes
{notes}
{focus}
Return the JSON object now."""

FOCUS_TEMPLATE = """
## Focus
A previous pass could not find these fields. Look for them carefully:
{fields}
"""


def build_extraction_prompt(
    notes_text: str,
    focus_fields: Sequence[str] = (),
    schema: Optional[dict] = None,
) -> str:
    """Format the user prompt, optionally steering toward missing fields."""
    focus = ""
    if focus_fields:
        focus = FOCUS_TEMPLATE.format(fields="\n".join(f"- {f}" for f in focus_fields))
    return EXTRACTION_USER_PROMPT.format(
        schema=json.dumps(schema or EXTRACTION_SCHEMA, indent=2),
        notes=notes_text,
        focus=focus,
    )
