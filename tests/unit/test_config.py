"""
NeuroSynth DCS - Configuration Unit Tests
=========================================

Tests for extraction options, the merge priority table, pipeline
configuration and the learned pattern cache.
"""

from pathlib import Path

import pytest

from dcsynth.core.config import (
    ExtractionOptions,
    MergePriorityTable,
    PipelineConfig,
)
from dcsynth.core.learned_patterns import LearnedPattern, LearnedPatternCache
from dcsynth.shared.enums import Source
from dcsynth.shared.exceptions import ConfigurationError, PatternStoreError


# =============================================================================
# Extraction Options
# =============================================================================

class TestExtractionOptions:
    """Tests for ExtractionOptions."""

    def test_defaults(self):
        options = ExtractionOptions()

        assert options.enable_preprocessing
        assert options.enable_deduplication
        assert options.use_llm is None
        assert options.max_refinement_iterations == 2
        assert options.quality_threshold == 0.7

    def test_from_dict_accepts_camel_case(self):
        options = ExtractionOptions.from_dict({
            "enableDeduplication": False,
            "useLLM": True,
            "qualityThreshold": 0.8,
            "maxRefinementIterations": 0,
            "unknownKey": 1,
        })

        assert options.enable_deduplication is False
        assert options.use_llm is True
        assert options.quality_threshold == 0.8
        assert options.max_refinement_iterations == 0

    def test_from_none(self):
        assert ExtractionOptions.from_dict(None) == ExtractionOptions()

    @pytest.mark.parametrize("kwargs", [
        {"quality_threshold": 1.5},
        {"quality_threshold": -0.1},
        {"max_refinement_iterations": -1},
        {"quality_threshold": "high"},
        {"max_refinement_iterations": "many"},
    ])
    def test_invalid_values(self, kwargs):
        with pytest.raises(ValueError):
            ExtractionOptions(**kwargs)

    def test_numeric_strings_coerced(self):
        options = ExtractionOptions.from_dict({"qualityThreshold": "0.5", "maxRefinementIterations": "1"})

        assert options.quality_threshold == 0.5
        assert options.max_refinement_iterations == 1


# =============================================================================
# Merge Priority
# =============================================================================

class TestMergePriorityTable:
    """Tests for MergePriorityTable."""

    def test_packaged_defaults(self):
        table = MergePriorityTable.default()

        assert table.winner("dates.admission") == Source.PATTERN
        assert table.winner("medications.dose") == Source.PATTERN
        assert table.winner("functional_scores.value") == Source.PATTERN
        assert table.winner("pathology.location") == Source.LLM

    def test_exact_entry_beats_wildcard(self):
        table = MergePriorityTable.from_dict({
            "default": "pattern",
            "pattern": ["dates.*"],
            "llm": ["dates.discharge"],
        })

        assert table.winner("dates.discharge") == Source.LLM
        assert table.winner("dates.admission") == Source.PATTERN
        assert table.winner("pathology.type") == Source.PATTERN

    @pytest.mark.parametrize("data", [
        {"pattern": ["demographics.shoe_size"]},
        {"pattern": ["dates.admission"], "llm": ["dates.admission"]},
        {"default": "merged"},
        {"default": "oracle"},
    ])
    def test_invalid_tables(self, data):
        with pytest.raises(ConfigurationError):
            MergePriorityTable.from_dict(data)

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "priority.yaml"
        path.write_text("default: pattern\nllm:\n  - pathology.*\n")
        table = MergePriorityTable.from_yaml(path)

        assert table.winner("pathology.subtype") == Source.LLM
        assert table.winner("demographics.age") == Source.PATTERN

    def test_missing_yaml(self, tmp_path):
        with pytest.raises(ConfigurationError):
            MergePriorityTable.from_yaml(tmp_path / "missing.yaml")

    def test_non_mapping_yaml(self, tmp_path):
        path = tmp_path / "priority.yaml"
        path.write_text("- dates.*\n")
        with pytest.raises(ConfigurationError):
            MergePriorityTable.from_yaml(path)


# =============================================================================
# Pipeline Config
# =============================================================================

class TestPipelineConfig:
    """Tests for PipelineConfig."""

    def test_minimal_has_no_llm(self):
        assert not PipelineConfig.minimal().llm.enabled

    def test_from_env(self, monkeypatch, tmp_path):
        priority = tmp_path / "priority.yaml"
        priority.write_text("default: pattern\n")
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-test")
        monkeypatch.setenv("DCS_LLM_TIMEOUT", "12")
        monkeypatch.setenv("DCS_MERGE_PRIORITY_PATH", str(priority))
        monkeypatch.setenv("LEARNED_PATTERNS_PATH", "/tmp/patterns.yaml")

        config = PipelineConfig.from_env()

        assert config.llm.enabled
        assert config.llm.timeout_seconds == 12.0
        assert config.merge.priority.default_winner == Source.PATTERN
        assert config.learned_patterns_path == Path("/tmp/patterns.yaml")

    def test_to_dict_hides_api_key(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-secret")
        data = PipelineConfig.from_env().to_dict()

        assert "api_key" not in data["llm"]
        assert "sk-secret" not in str(data)
        assert data["merge"]["priority"]["default"] == "llm"


# =============================================================================
# Learned Patterns
# =============================================================================

class TestLearnedPatternCache:
    """Tests for LearnedPattern / LearnedPatternCache."""

    def test_invalid_field(self):
        with pytest.raises(PatternStoreError):
            LearnedPattern(id="x", field="demographics.age", pattern=r"\d+")

    def test_invalid_regex(self):
        with pytest.raises(PatternStoreError):
            LearnedPattern(id="x", field="procedures", pattern=r"(unclosed")

    def test_get_includes_generic(self):
        cache = LearnedPatternCache([
            LearnedPattern(id="generic", field="procedures", pattern=r"\bfoo\b"),
            LearnedPattern(id="sah", field="pathology.subtype", pattern=r"\bHH\b", pathology="SAH"),
            LearnedPattern(id="tbi", field="pathology.subtype", pattern=r"\bGCS\b", pathology="TBI"),
        ])

        assert {p.id for p in cache.get("sah")} == {"generic", "sah"}
        assert {p.id for p in cache.get(None)} == {"generic"}
        assert [p.id for p in cache.get_field("SAH", "pathology.subtype")] == ["sah"]

    def test_append_is_copy_on_write(self):
        cache = LearnedPatternCache()
        before = cache.snapshot()
        cache.append(LearnedPattern(id="a", field="procedures", pattern=r"\ba\b"))
        cache.append(LearnedPattern(id="a", field="procedures", pattern=r"\ba\b"))

        assert len(before) == 0
        assert len(cache) == 1
        with pytest.raises(TypeError):
            cache.snapshot()[("*", "procedures")] = ()

    def test_render_template(self):
        import re

        pattern = LearnedPattern(id="hh", field="pathology.subtype", pattern=r"\bHH\s*([1-5])\b", value="Hunt-Hess {0}")
        assert pattern.render(re.search(pattern.pattern, "HH 4")) == "Hunt-Hess 4"

    def test_from_yaml(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text(
            "patterns:\n"
            "  - id: fd\n"
            "    field: procedures\n"
            "    pattern: '\\bflow diverter\\b'\n"
            "    value: flow diverter placement\n"
            "    confidence: 0.8\n"
        )
        cache = LearnedPatternCache.from_yaml(path)

        assert len(cache) == 1
        assert cache.get(None)[0].confidence == 0.8

    def test_from_yaml_bad_entry(self, tmp_path):
        path = tmp_path / "patterns.yaml"
        path.write_text("patterns:\n  - id: broken\n")
        with pytest.raises(PatternStoreError):
            LearnedPatternCache.from_yaml(path)
