"""
NeuroSynth DCS - Core Module
"""

from .config import ExtractionOptions, MergePriorityTable, PipelineConfig
from .deduplicator import Deduplicator
from .learned_patterns import LearnedPattern, LearnedPatternCache
from .merger import Merger
from .pattern_extractor import PatternExtractor
from .quality_scorer import QualityScorer
from .temporal_resolver import TemporalAnchors, TemporalResolver
from .text_normalizer import TextNormalizer
from .validator import Validator

__all__ = [
    # Configuration
    "ExtractionOptions",
    "MergePriorityTable",
    "PipelineConfig",
    # Stages
    "TextNormalizer",
    "Deduplicator",
    "PatternExtractor",
    "TemporalAnchors",
    "TemporalResolver",
    "Merger",
    "Validator",
    "QualityScorer",
    # Learned patterns
    "LearnedPattern",
    "LearnedPatternCache",
]
