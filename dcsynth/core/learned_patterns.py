"""
NeuroSynth DCS - Learned Pattern Cache
======================================

Read-only view of extraction patterns learned out-of-band (from clinician
corrections), keyed by pathology + field and shared across requests.

The cache is append-only and copy-on-write: an append builds a new
immutable mapping and swaps the reference, so readers always see a
consistent snapshot without locking.

Usage:
    cache = LearnedPatternCache.from_yaml("learned_patterns.yaml")
    patterns = cache.get("SAH")        # SAH-specific + generic patterns

YAML format:
    patterns:
      - id: sah-hh-grade
        pathology: SAH
        field: pathology.subtype
        pattern: "\\bHH\\s*([1-5])\\b"
        value: "Hunt-Hess {0}"
        confidence: 0.75
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from types import MappingProxyType
from typing import Dict, Iterable, Mapping, Optional, Protocol, Sequence, Tuple, Union

import yaml

from dcsynth.shared.exceptions import PatternStoreError
from dcsynth.shared.models import clamp_confidence

logger = logging.getLogger(__name__)

GENERIC_PATHOLOGY = "*"

SUPPORTED_FIELDS = frozenset({
    "procedures", "complications", "medications",
    "pathology.type", "pathology.subtype", "pathology.location",
    "demographics.mrn", "demographics.name",
})


@dataclass(frozen=True)
class LearnedPattern:
    """
    One learned extraction rule.

    `value` is an optional template; "{0}" is replaced by the first capture
    group. Without a template the first group (or the whole match) is used.
    """
    id: str
    field: str
    pattern: str
    value: Optional[str] = None
    pathology: Optional[str] = None
    confidence: float = 0.7

    def __post_init__(self):
        if self.field not in SUPPORTED_FIELDS:
            raise PatternStoreError(f"Learned pattern {self.id}: unsupported field {self.field!r}")
        try:
            re.compile(self.pattern)
        except re.error as e:
            raise PatternStoreError(f"Learned pattern {self.id}: invalid regex: {e}")
        object.__setattr__(self, "confidence", clamp_confidence(self.confidence))

    @property
    def regex(self) -> re.Pattern:
        return re.compile(self.pattern, re.I)

    @property
    def pathology_key(self) -> str:
        return (self.pathology or GENERIC_PATHOLOGY).lower()

    def render(self, match: re.Match) -> str:
        captured = match.group(1) if match.groups() else match.group(0)
        if self.value:
            return self.value.replace("{0}", captured or "")
        return captured

    @classmethod
    def from_dict(cls, data: Dict) -> "LearnedPattern":
        try:
            return cls(
                id=str(data["id"]),
                field=data["field"],
                pattern=data["pattern"],
                value=data.get("value"),
                pathology=data.get("pathology"),
                confidence=float(data.get("confidence", 0.7)),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise PatternStoreError(f"Invalid learned pattern definition {data!r}: {e}")


class LearnedPatternStore(Protocol):
    """Anything that can supply learned patterns for a pathology."""

    def get(self, pathology: Optional[str]) -> Sequence[LearnedPattern]:
        ...


PatternIndex = Mapping[Tuple[str, str], Tuple[LearnedPattern, ...]]


class LearnedPatternCache:
    """Append-only, copy-on-write pattern cache."""

    def __init__(self, patterns: Iterable[LearnedPattern] = ()):
        self._index: PatternIndex = MappingProxyType({})
        self.extend(patterns)

    def extend(self, patterns: Iterable[LearnedPattern]) -> None:
        """Append patterns, publishing a new snapshot."""
        updated: Dict[Tuple[str, str], Tuple[LearnedPattern, ...]] = dict(self._index)
        added = 0
        for pattern in patterns:
            key = (pattern.pathology_key, pattern.field)
            existing = updated.get(key, ())
            if any(p.id == pattern.id for p in existing):
                continue
            updated[key] = existing + (pattern,)
            added += 1
        self._index = MappingProxyType(updated)
        if added:
            logger.info(f"Learned pattern cache: +{added} patterns ({len(self)} total)")

    def append(self, pattern: LearnedPattern) -> None:
        self.extend([pattern])

    def snapshot(self) -> PatternIndex:
        return self._index

    def get(self, pathology: Optional[str]) -> Tuple[LearnedPattern, ...]:
        """Patterns for the pathology plus generic ones (pathology=None gives generic only)."""
        index = self._index
        keys = {GENERIC_PATHOLOGY}
        if pathology:
            keys.add(pathology.lower())
        return tuple(
            p for (path_key, _), patterns in sorted(index.items())
            if path_key in keys
            for p in patterns
        )

    def get_field(self, pathology: Optional[str], field: str) -> Tuple[LearnedPattern, ...]:
        return tuple(p for p in self.get(pathology) if p.field == field)

    def __len__(self) -> int:
        return sum(len(v) for v in self._index.values())

    @classmethod
    def from_yaml(cls, path: Union[str, Path]) -> "LearnedPatternCache":
        path = Path(path)
        try:
            with open(path, "r", encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except (OSError, yaml.YAMLError) as e:
            raise PatternStoreError(f"Cannot load learned patterns from {path}: {e}")

        entries = data.get("patterns", []) if isinstance(data, dict) else data
        if not isinstance(entries, list):
            raise PatternStoreError(f"{path}: 'patterns' must be a list")
        return cls(LearnedPattern.from_dict(entry) for entry in entries)
