"""
NeuroSynth DCS - Clinical Intelligence
======================================

Derived views over a final record:
- causal_timeline.py: ordered events with causal relationships
- treatment_response.py: intervention/outcome pairs, effectiveness, SAH compliance
- functional_evolution.py: functional score trajectory
- builder.py: assembles the IntelligenceBundle
"""

from .builder import IntelligenceBuilder, IntelligenceBundle
from .causal_timeline import CausalRelationship, CausalTimeline, TimelineEvent, build_causal_timeline
from .functional_evolution import FunctionalEvolution, analyze_functional_evolution
from .treatment_response import (
    ProtocolCompliance,
    TreatmentResponse,
    check_protocol_compliance,
    pair_treatment_responses,
)
