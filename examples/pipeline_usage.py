#!/usr/bin/env python3
"""
NeuroSynth DCS Pipeline - Usage Examples
========================================

This script demonstrates the different ways to run the extraction pipeline.
"""

import asyncio
import json
import os
from pathlib import Path

SAH_NOTES = [
    {
        "text": (
            "HPI: 55 year old male presented with subarachnoid hemorrhage. "
            "Admission date: 01/10/2025. Hunt Hess 3, Fisher 3. "
            "Started nimodipine 60 mg PO q4h."
        ),
        "type": "admission",
    },
    {"text": "Underwent coiling on 01/11/2025 of ACoA aneurysm. EVD placed. GCS 13.", "type": "operative"},
    {"text": "POD#4 moderate vasospasm on TCDs. GCS 12.", "type": "progress", "reported_date": "2025-01-15"},
    {"text": "POD#4 moderate vasospasm on TCDs. GCS 12.", "type": "progress", "reported_date": "2025-01-15"},
    {
        "text": "Discharge date: 01/20/2025. Vasospasm resolved. GCS 15. mRS 2. Discharged home on nimodipine.",
        "type": "discharge",
    },
]


async def example_pattern_only():
    """Run without an LLM (no API key needed)."""
    print("\n" + "=" * 60)
    print("EXAMPLE 1: Pattern-only Extraction")
    print("=" * 60)

    from dcsynth.core.config import PipelineConfig
    from dcsynth.pipeline import ClinicalExtractionOrchestrator

    orchestrator = ClinicalExtractionOrchestrator(config=PipelineConfig.minimal())
    result = await orchestrator.extract(SAH_NOTES)

    record = result.extracted_data
    print(f"\nResult:")
    print(f"  Method: {result.metadata['extraction_method']}")
    print(f"  Admission: {record.admission_date}")
    print(f"  Pathology: {record.pathology_type}")
    print(f"  Procedures: {[p.name for p in record.procedures]}")
    print(f"  Medications: {[m.name for m in record.medications]}")
    print(f"  Notes after dedup: {result.metadata['note_deduplication']['final_count']}")
    print(f"  Quality: {result.quality_metrics.overall:.2f}")

    return result


async def example_hybrid():
    """Run pattern + Claude extraction (needs ANTHROPIC_API_KEY)."""
    print("\n" + "=" * 60)
    print("EXAMPLE 2: Hybrid Extraction")
    print("=" * 60)

    from dcsynth.core.config import PipelineConfig
    from dcsynth.pipeline import extract

    if not os.getenv("ANTHROPIC_API_KEY"):
        print("ANTHROPIC_API_KEY not set; skipping")
        return None

    result = await extract(SAH_NOTES, {"useLLM": True}, config=PipelineConfig.from_env())

    print(f"\nResult:")
    print(f"  Method: {result.metadata['extraction_method']}")
    print(f"  LLM error: {result.metadata['llm_error']}")
    for conflict in result.extracted_data.merge_conflicts:
        print(f"  Conflict {conflict.field}: kept {conflict.chosen_value!r} ({conflict.chosen_source.value})")

    return result


async def example_refinement_with_learned_patterns():
    """Let the refinement loop pick up learned patterns from YAML."""
    print("\n" + "=" * 60)
    print("EXAMPLE 3: Refinement With Learned Patterns")
    print("=" * 60)

    from dcsynth.core.config import PipelineConfig
    from dcsynth.core.learned_patterns import LearnedPatternCache
    from dcsynth.pipeline import ClinicalExtractionOrchestrator

    patterns_path = Path("./learned_patterns.yaml")
    patterns_path.write_text(
        "patterns:\n"
        "  - id: flow-diverter\n"
        "    field: procedures\n"
        "    pattern: '\\bflow diverter\\b'\n"
        "    value: flow diverter placement\n"
        "    pathology: SAH\n"
        "    confidence: 0.8\n"
    )

    orchestrator = ClinicalExtractionOrchestrator(
        config=PipelineConfig.minimal(),
        pattern_store=LearnedPatternCache.from_yaml(patterns_path),
    )
    result = await orchestrator.extract(
        ["Admit 2025-01-10 SAH.", "Flow diverter deployed.", "Discharge 2025-01-20."],
        {"qualityThreshold": 0.76},
    )

    print(f"\nResult:")
    print(f"  Terminal state: {result.metadata['terminal_state']}")
    print(f"  Quality history: {result.metadata['quality_history']}")
    print(f"  States: {' -> '.join(result.metadata['state_history'])}")

    return result


async def example_intelligence():
    """Inspect the clinical intelligence bundle."""
    print("\n" + "=" * 60)
    print("EXAMPLE 4: Clinical Intelligence")
    print("=" * 60)

    from dcsynth.core.config import PipelineConfig
    from dcsynth.pipeline import extract

    result = await extract(SAH_NOTES, config=PipelineConfig.minimal())
    bundle = result.intelligence

    print(f"\nTimeline:")
    for event in bundle.timeline.events:
        print(f"  {event.timestamp}  {event.type.value:<18} {event.description}")
    print(f"\nRelationships: {len(bundle.timeline.relationships)}")
    for response in bundle.treatment_responses:
        print(f"  {response.intervention_name} -> {response.target}: {response.response_type.value}")
    if bundle.protocol_compliance:
        print(f"\nSAH protocol compliance: {bundle.protocol_compliance.percentage}%")
    print(f"Functional trajectory: {bundle.functional_evolution.trajectory.value}")

    return result


async def main():
    """Run examples (comment out ones you don't want to run)."""
    from dcsynth.core.logging_config import configure_logging

    configure_logging(json_output=False, log_level="WARNING")

    print("NeuroSynth DCS Pipeline Examples")
    print("=" * 60)

    result = await example_pattern_only()
    # await example_hybrid()
    # await example_refinement_with_learned_patterns()
    # await example_intelligence()

    print("\nFull result:")
    print(json.dumps(result.to_dict()["quality_metrics"], indent=2))


if __name__ == "__main__":
    asyncio.run(main())
