"""
NeuroSynth DCS - Pipeline Integration Tests
===========================================

End-to-end runs of ClinicalExtractionOrchestrator over small note sets:
deduplication, hybrid merge, LLM failure degradation, refinement and the
terminal states of the state machine.
"""

import pytest

from dcsynth.core.config import LLMConfig, PipelineConfig
from dcsynth.core.learned_patterns import LearnedPattern, LearnedPatternCache
from dcsynth.llm.prompts import LLMExtraction
from dcsynth.pipeline.orchestrator import ClinicalExtractionOrchestrator, extract
from dcsynth.shared.enums import OrchestrationState
from dcsynth.shared.exceptions import InputError, LLMTimeoutError, LLMUnavailableError
from tests.conftest import FixedNarrative, StaticLLMAdapter, assert_confidences_bounded


METADATA_KEYS = {
    "extraction_method", "refinement_iterations", "llm_error", "entity_deduplication_groups",
    "request_id", "terminal_state", "exhausted", "best_iteration", "quality_history",
    "state_history", "note_deduplication", "processing_time_ms", "merge_conflicts",
}


def hybrid_orchestrator(adapter, **kwargs):
    config = PipelineConfig(llm=LLMConfig(api_key="sk-test"))
    return ClinicalExtractionOrchestrator(config=config, adapter=adapter, **kwargs)


# =============================================================================
# Pattern-only Runs
# =============================================================================

class TestPatternOnly:
    """Pattern-only extraction with the LLM disabled."""

    @pytest.mark.asyncio
    async def test_repeated_evd_collapses(self, orchestrator, evd_notes):
        """Four notes repeating one EVD placement produce one procedure."""
        result = await orchestrator.extract(evd_notes)

        assert result.success
        assert result.metadata["note_deduplication"]["near_removed"] == 1
        assert result.metadata["note_deduplication"]["final_count"] == 3

        procedures = result.extracted_data.procedures
        assert len(procedures) == 1
        assert procedures[0].name == "EVD placement"
        assert procedures[0].date.isoformat() == "2025-01-10"

    @pytest.mark.asyncio
    async def test_entity_grouping_without_note_dedup(self, orchestrator, evd_notes):
        result = await orchestrator.extract(evd_notes, {"enableDeduplication": False})

        assert result.metadata["note_deduplication"] is None
        assert len(result.metadata["entity_deduplication_groups"]) == 1
        assert len(result.extracted_data.procedures) == 1

    @pytest.mark.asyncio
    async def test_metadata(self, orchestrator, evd_notes):
        result = await orchestrator.extract(evd_notes, {"qualityThreshold": 0.0})

        assert METADATA_KEYS <= set(result.metadata)
        assert result.metadata["extraction_method"] == "pattern-only"
        assert result.metadata["llm_error"] is None
        assert result.metadata["request_id"]
        assert result.metadata["state_history"] == [
            "init", "extracting", "validating", "building_intelligence", "done",
        ]
        assert result.terminal_state == OrchestrationState.DONE

    @pytest.mark.asyncio
    async def test_full_course(self, orchestrator, sah_course_notes):
        result = await orchestrator.extract(sah_course_notes)
        data = result.to_dict()

        assert data["success"] is True
        assert data["extracted_data"]["pathology"]["type"]["value"] == "SAH"
        assert data["extracted_data"]["dates"]["admission"]["value"] == "2025-01-10"
        assert any(m["name"] == "nimodipine" for m in data["extracted_data"]["medications"])
        assert data["intelligence"]["timeline"]["events"]
        assert_confidences_bounded(data)
        assert all(0.0 <= v <= 1.0 for v in data["quality_metrics"].values())

    @pytest.mark.asyncio
    async def test_repeat_runs_identical(self, orchestrator, sah_course_notes):
        first = await orchestrator.extract(sah_course_notes)
        second = await orchestrator.extract(sah_course_notes)

        assert first.extracted_data.to_dict() == second.extracted_data.to_dict()
        assert first.quality_metrics.to_dict() == second.quality_metrics.to_dict()
        assert first.metadata["request_id"] != second.metadata["request_id"]

    @pytest.mark.asyncio
    async def test_out_of_window_procedure_unresolved(self, orchestrator):
        result = await orchestrator.extract([
            "Admit 2025-01-10 SAH.",
            "Craniotomy on 2024-12-01.",
            "Discharge 2025-01-20.",
        ], {"qualityThreshold": 0.0})

        craniotomy = result.extracted_data.procedures[0]
        assert craniotomy.date_resolved is False
        assert result.validation.warnings

    @pytest.mark.asyncio
    async def test_pod_counts_from_surgery(self, orchestrator):
        """POD#3 after coiling on 2025-01-12 dates to 2025-01-15, not admission + 3."""
        result = await orchestrator.extract([
            "Admit 2025-01-10 SAH.",
            "Aneurysm coiling 2025-01-12.",
            "POD#3 vasospasm noted.",
            "Discharge 2025-01-20.",
        ], {"qualityThreshold": 0.0})

        vasospasm = result.extracted_data.complications[0]
        assert vasospasm.onset_date.isoformat() == "2025-01-15"
        assert vasospasm.date_resolved

    @pytest.mark.asyncio
    @pytest.mark.parametrize("notes", [[], ["   ", "\n"], None])
    async def test_no_usable_notes(self, orchestrator, notes):
        with pytest.raises(InputError):
            await orchestrator.extract(notes)

    @pytest.mark.asyncio
    @pytest.mark.parametrize("options", [
        {"qualityThreshold": 1.5},
        {"maxRefinementIterations": -1},
        {"qualityThreshold": "high"},
        ["useLLM"],
    ])
    async def test_invalid_options(self, orchestrator, options):
        with pytest.raises(InputError):
            await orchestrator.extract(["Admit 2025-01-10."], options)

    @pytest.mark.asyncio
    async def test_shortcut(self):
        result = await extract(["Admit 2025-01-10.", "Discharge 2025-01-20."], config=PipelineConfig.minimal())
        assert result.success


# =============================================================================
# Refinement
# =============================================================================

class TestRefinement:
    """Quality-driven refinement loop."""

    @pytest.mark.asyncio
    async def test_no_improvement_exhausts(self, orchestrator):
        """A refinement that cannot add anything ends FAILED with the best iteration kept."""
        result = await orchestrator.extract(
            ["Admit 2025-01-10.", "Discharge 2025-01-20."],
            {"qualityThreshold": 0.7},
        )

        assert result.success
        assert result.metadata["terminal_state"] == "failed"
        assert result.metadata["exhausted"] is True
        assert result.metadata["refinement_iterations"] == 1
        assert result.metadata["best_iteration"] == 0
        assert result.quality_metrics.overall == pytest.approx(0.6824, abs=1e-3)
        assert "refining" in result.metadata["state_history"]

    @pytest.mark.asyncio
    async def test_zero_iterations(self, orchestrator):
        result = await orchestrator.extract(
            ["Admit 2025-01-10.", "Discharge 2025-01-20."],
            {"qualityThreshold": 0.99, "maxRefinementIterations": 0},
        )

        assert result.metadata["refinement_iterations"] == 0
        assert result.metadata["exhausted"] is True
        assert "refining" not in result.metadata["state_history"]

    @pytest.mark.asyncio
    async def test_learned_pattern_reaches_threshold(self, minimal_config):
        store = LearnedPatternCache([
            LearnedPattern(
                id="fd", field="procedures", pattern=r"\bflow diverter\b",
                value="flow diverter placement", pathology="SAH", confidence=0.8,
            ),
        ])
        orchestrator = ClinicalExtractionOrchestrator(config=minimal_config, pattern_store=store)

        result = await orchestrator.extract(
            ["Admit 2025-01-10 SAH.", "Flow diverter deployed.", "Discharge 2025-01-20."],
            {"qualityThreshold": 0.76},
        )

        assert result.metadata["terminal_state"] == "done"
        assert result.metadata["refinement_iterations"] == 1
        assert result.metadata["best_iteration"] == 1
        assert [p.name for p in result.extracted_data.procedures] == ["flow diverter placement"]
        history = result.metadata["quality_history"]
        assert history[1] > history[0]

    @pytest.mark.asyncio
    async def test_focus_fields_sent_on_refinement(self):
        adapter = StaticLLMAdapter()
        orchestrator = hybrid_orchestrator(adapter)

        await orchestrator.extract(["Admit 2025-01-10.", "Discharge 2025-01-20."], {"qualityThreshold": 0.99})

        assert adapter.calls[0] == ()
        assert "procedures" in adapter.calls[1]


# =============================================================================
# Hybrid Runs
# =============================================================================

class TestHybrid:
    """Pattern + LLM extraction."""

    @pytest.mark.asyncio
    async def test_merge_prefers_pattern_dose(self):
        adapter = StaticLLMAdapter(LLMExtraction.model_validate({
            "dates": {"admission": "2025-01-10"},
            "pathology": {"type": "SAH"},
            "medications": [{"name": "nimodipine", "dose": "10mg", "start_date": "2025-01-11"}],
        }))
        result = await hybrid_orchestrator(adapter).extract(
            ["Admit 2025-01-10 SAH.", "Started nimodipine 5mg on 2025-01-11."],
            {"qualityThreshold": 0.0},
        )

        assert result.metadata["extraction_method"] == "hybrid"
        nimodipine = result.extracted_data.medications[0]
        assert nimodipine.dose == "5 mg"

        conflict = next(c for c in result.extracted_data.merge_conflicts if c.field == "medications.dose")
        assert conflict.chosen_source.value == "pattern"
        recorded = [c for c in result.metadata["merge_conflicts"] if c["field"] == "medications.dose"]
        assert len(recorded) == 1
        assert len(adapter.calls) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("error", [
        LLMTimeoutError("deadline exceeded"),
        LLMUnavailableError("connection refused"),
        RuntimeError("unexpected"),
    ])
    async def test_llm_failure_degrades(self, error):
        result = await hybrid_orchestrator(StaticLLMAdapter(error=error)).extract(
            ["Admit 2025-01-10 SAH.", "Discharge 2025-01-20."],
            {"qualityThreshold": 0.0},
        )

        assert result.success
        assert result.metadata["extraction_method"] == "pattern-only"
        assert result.metadata["llm_error"].startswith(type(error).__name__)
        assert result.extracted_data.admission_date.isoformat() == "2025-01-10"

    @pytest.mark.asyncio
    async def test_llm_requested_without_key(self, orchestrator):
        result = await orchestrator.extract(["Admit 2025-01-10."], {"useLLM": True, "qualityThreshold": 0.0})

        assert result.metadata["extraction_method"] == "pattern-only"
        assert "not configured" in result.metadata["llm_error"]

    @pytest.mark.asyncio
    async def test_llm_disabled_per_request(self):
        adapter = StaticLLMAdapter()
        result = await hybrid_orchestrator(adapter).extract(["Admit 2025-01-10."], {"useLLM": False})

        assert adapter.calls == []
        assert result.metadata["extraction_method"] == "pattern-only"


# =============================================================================
# Narrative Coherence
# =============================================================================

class TestNarrative:
    """Optional narrative coherence scoring."""

    @pytest.mark.asyncio
    async def test_narrative_lowers_quality(self, minimal_config, evd_notes):
        baseline = await ClinicalExtractionOrchestrator(config=minimal_config).extract(evd_notes, {"qualityThreshold": 0.0})
        scored = await ClinicalExtractionOrchestrator(
            config=minimal_config, narrative=FixedNarrative(score=0.2)
        ).extract(evd_notes, {"qualityThreshold": 0.0})

        assert scored.quality_metrics.narrative_coherence == pytest.approx(0.2)
        assert scored.quality_metrics.overall < baseline.quality_metrics.overall

    @pytest.mark.asyncio
    async def test_narrative_failure_ignored(self, minimal_config, evd_notes):
        orchestrator = ClinicalExtractionOrchestrator(
            config=minimal_config, narrative=FixedNarrative(error=RuntimeError("model offline"))
        )
        result = await orchestrator.extract(evd_notes, {"qualityThreshold": 0.0})

        assert result.success
        assert result.quality_metrics.narrative_coherence == 1.0
