"""
NeuroSynth DCS - Clinical Intelligence Builder
==============================================

Derives the intelligence bundle from a final record: causal timeline,
treatment-response pairs (+ SAH protocol compliance) and functional
status evolution.

Building intelligence never fails a request: any error yields an empty
bundle carrying the error message.

Usage:
    bundle = IntelligenceBuilder().build(record, notes)
    bundle.timeline.events[0].type  # EventType.ADMISSION
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional, Sequence

from dcsynth.core.temporal_resolver import TemporalAnchors, TemporalResolver
from dcsynth.intelligence.causal_timeline import CausalTimeline, build_causal_timeline
from dcsynth.intelligence.functional_evolution import (
    FunctionalEvolution,
    analyze_functional_evolution,
)
from dcsynth.intelligence.treatment_response import (
    ProtocolCompliance,
    TreatmentResponse,
    check_protocol_compliance,
    pair_treatment_responses,
)
from dcsynth.shared.exceptions import IntelligenceBuildError
from dcsynth.shared.models import ClinicalNote, ExtractedRecord

logger = logging.getLogger(__name__)


@dataclass
class IntelligenceBundle:
    timeline: CausalTimeline = field(default_factory=CausalTimeline)
    treatment_responses: List[TreatmentResponse] = field(default_factory=list)
    functional_evolution: FunctionalEvolution = field(default_factory=FunctionalEvolution)
    protocol_compliance: Optional[ProtocolCompliance] = None
    error: Optional[str] = None

    @classmethod
    def empty(cls, error: Optional[str] = None) -> "IntelligenceBundle":
        return cls(error=error)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "timeline": self.timeline.to_dict(),
            "treatment_responses": [r.to_dict() for r in self.treatment_responses],
            "functional_evolution": self.functional_evolution.to_dict(),
            "protocol_compliance": self.protocol_compliance.to_dict() if self.protocol_compliance else None,
            "error": self.error,
        }


class IntelligenceBuilder:
    """Builds the intelligence bundle for one record."""

    def __init__(self, resolver: Optional[TemporalResolver] = None):
        self.resolver = resolver or TemporalResolver()

    @staticmethod
    def _stage(name: str, func: Callable, *args):
        try:
            return func(*args)
        except Exception as e:
            raise IntelligenceBuildError(f"{name} failed: {e}") from e

    def build(
        self,
        record: ExtractedRecord,
        notes: Sequence[ClinicalNote],
        anchors: Optional[TemporalAnchors] = None,
    ) -> IntelligenceBundle:
        try:
            if record is None:
                raise IntelligenceBuildError("No record to build intelligence from")
            anchors = anchors or TemporalAnchors.from_records([record], notes)

            bundle = IntelligenceBundle(
                timeline=self._stage("causal timeline", build_causal_timeline, record),
                treatment_responses=self._stage(
                    "treatment response", pair_treatment_responses, record, notes, self.resolver, anchors
                ),
                functional_evolution=self._stage(
                    "functional evolution", analyze_functional_evolution, record
                ),
                protocol_compliance=self._stage("protocol compliance", check_protocol_compliance, record),
            )
        except IntelligenceBuildError as e:
            logger.exception(f"Intelligence build failed: {e}")
            return IntelligenceBundle.empty(error=str(e))

        logger.info(
            f"Intelligence: {len(bundle.timeline.events)} events, "
            f"{len(bundle.timeline.relationships)} relationships, "
            f"{len(bundle.treatment_responses)} treatment responses, "
            f"trajectory={bundle.functional_evolution.trajectory.value}"
        )
        return bundle
