"""
NeuroSynth DCS - Causal Timeline
================================

Orders dated clinical events and links them with causal relationships.

Events: admission, procedures, complications, medication changes, discharge.
Ordering: by date, ties broken admission < procedure < complication <
medication change < discharge, except that a complication moves ahead of a
same-day procedure or medication that treats it (hydrocephalus before the
EVD). Edges only point forward in that order, so the timeline is a DAG.

Relationships:
    procedure -> complication within 30 days        leads_to   (0.85 if <= 7 days, else 0.7)
    complication -> procedure / medication <= 48 h  triggers   (0.8)
    treatment of a resolved complication -> discharge within 21 days
                                                     responds_to (0.7)
    nimodipine without documented vasospasm          prevents   (no target)

Usage:
    timeline = build_causal_timeline(record)
    timeline.milestones["length_of_stay_days"]
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional

from dcsynth.core.clinical_patterns import TREATMENT_TARGETS
from dcsynth.shared.enums import (
    EventCategory,
    EventType,
    MedicationStatus,
    RelationshipType,
)
from dcsynth.shared.models import ExtractedRecord, pathology_label, serialize_value

logger = logging.getLogger(__name__)

EVENT_PRIORITY = {
    EventType.ADMISSION: 0,
    EventType.PROCEDURE: 1,
    EventType.COMPLICATION: 2,
    EventType.MEDICATION_CHANGE: 3,
    EventType.DISCHARGE: 4,
}

DIAGNOSTIC_PROCEDURES = {"cerebral angiography", "biopsy", "lumbar puncture"}

LEADS_TO_WINDOW_DAYS = 30
LEADS_TO_STRONG_DAYS = 7
TRIGGERS_WINDOW_HOURS = 48
RESPONDS_TO_WINDOW_DAYS = 21


@dataclass
class TimelineEvent:
    id: str
    timestamp: date
    type: EventType
    description: str
    category: EventCategory
    confidence: float
    entity_id: Optional[str] = None
    name: str = ""
    related_event_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "timestamp": self.timestamp.isoformat(),
            "type": self.type.value,
            "description": self.description,
            "category": self.category.value,
            "confidence": round(self.confidence, 4),
            "entity_id": self.entity_id,
            "related_event_ids": list(self.related_event_ids),
        }


@dataclass
class CausalRelationship:
    from_event_id: str
    to_event_id: Optional[str]
    type: RelationshipType
    confidence: float
    gap_hours: Optional[float] = None
    rationale: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "from_event_id": self.from_event_id,
            "to_event_id": self.to_event_id,
            "type": self.type.value,
            "confidence": self.confidence,
            "gap_hours": self.gap_hours,
            "rationale": self.rationale,
        }


@dataclass
class CausalTimeline:
    events: List[TimelineEvent] = field(default_factory=list)
    relationships: List[CausalRelationship] = field(default_factory=list)
    milestones: Dict[str, Any] = field(default_factory=dict)

    def event(self, event_id: str) -> Optional[TimelineEvent]:
        return next((e for e in self.events if e.id == event_id), None)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "events": [e.to_dict() for e in self.events],
            "relationships": [r.to_dict() for r in self.relationships],
            "milestones": {k: serialize_value(v) for k, v in self.milestones.items()},
        }


# =============================================================================
# BUILD
# =============================================================================

def _collect_events(record: ExtractedRecord) -> List[TimelineEvent]:
    events: List[TimelineEvent] = []

    if record.admission_date:
        pathology = record.pathology_type
        description = f"Admitted with {pathology_label(pathology)}" if pathology else "Admitted"
        events.append(TimelineEvent(
            "", record.admission_date, EventType.ADMISSION, description,
            EventCategory.DIAGNOSTIC, record.dates.admission.confidence, name="admission",
        ))

    for p in record.procedures:
        if p.date is None:
            continue
        category = EventCategory.DIAGNOSTIC if p.name in DIAGNOSTIC_PROCEDURES else EventCategory.THERAPEUTIC
        events.append(TimelineEvent(
            "", p.date, EventType.PROCEDURE, p.name, category, p.confidence, entity_id=p.id, name=p.name,
        ))

    for c in record.complications:
        if c.onset_date is None:
            continue
        description = f"{c.severity} {c.name}" if c.severity else c.name
        events.append(TimelineEvent(
            "", c.onset_date, EventType.COMPLICATION, description,
            EventCategory.COMPLICATION, c.confidence, entity_id=c.id, name=c.name,
        ))

    for m in record.medications:
        if m.start_date is None or m.status == MedicationStatus.CONTINUED:
            continue
        verb = "Stopped" if m.status == MedicationStatus.DISCONTINUED else "Started"
        events.append(TimelineEvent(
            "", m.start_date, EventType.MEDICATION_CHANGE, f"{verb} {m.name}",
            EventCategory.THERAPEUTIC, m.confidence, entity_id=m.id, name=m.name,
        ))

    if record.discharge_date:
        events.append(TimelineEvent(
            "", record.discharge_date, EventType.DISCHARGE, "Discharged",
            EventCategory.OUTCOME, record.dates.discharge.confidence, name="discharge",
        ))

    ordered = sorted(
        enumerate(events),
        key=lambda item: (item[1].timestamp, EVENT_PRIORITY[item[1].type], item[0]),
    )
    events = _problems_before_treatment([e for _, e in ordered])
    for i, event in enumerate(events, start=1):
        event.id = f"event_{i:03d}"
    return events


def _treats(intervention: TimelineEvent, complication: TimelineEvent) -> bool:
    targets = TREATMENT_TARGETS.get(intervention.name, [])
    return complication.name.lower() in {t.lower() for t in targets}


def _problems_before_treatment(events: List[TimelineEvent]) -> List[TimelineEvent]:
    """Move a complication ahead of a same-day intervention that treats it."""
    ordered = list(events)
    for complication in [e for e in events if e.type == EventType.COMPLICATION]:
        position = next(i for i, e in enumerate(ordered) if e is complication)
        treating = [
            i for i, e in enumerate(ordered[:position])
            if e.timestamp == complication.timestamp
            and e.type in (EventType.PROCEDURE, EventType.MEDICATION_CHANGE)
            and _treats(e, complication)
        ]
        if treating:
            ordered.insert(treating[0], ordered.pop(position))
    return ordered


def _link(
    source: TimelineEvent,
    target: Optional[TimelineEvent],
    rel_type: RelationshipType,
    confidence: float,
    rationale: str,
) -> CausalRelationship:
    gap = None
    if target is not None:
        gap = float((target.timestamp - source.timestamp).days * 24)
        source.related_event_ids.append(target.id)
    return CausalRelationship(
        from_event_id=source.id,
        to_event_id=target.id if target else None,
        type=rel_type,
        confidence=confidence,
        gap_hours=gap,
        rationale=rationale,
    )


def build_causal_timeline(record: ExtractedRecord) -> CausalTimeline:
    events = _collect_events(record)
    relationships: List[CausalRelationship] = []

    resolved_problems = {c.name.lower() for c in record.complications if c.resolved}

    for i, source in enumerate(events):
        for target in events[i + 1:]:
            days = (target.timestamp - source.timestamp).days

            if source.type == EventType.PROCEDURE and target.type == EventType.COMPLICATION:
                if days <= LEADS_TO_WINDOW_DAYS:
                    confidence = 0.85 if days <= LEADS_TO_STRONG_DAYS else 0.7
                    relationships.append(_link(
                        source, target, RelationshipType.LEADS_TO, confidence,
                        f"{target.name} {days} days after {source.name}",
                    ))

            elif source.type == EventType.COMPLICATION and target.type in (
                EventType.PROCEDURE, EventType.MEDICATION_CHANGE
            ):
                if days * 24 <= TRIGGERS_WINDOW_HOURS:
                    relationships.append(_link(
                        source, target, RelationshipType.TRIGGERS, 0.8,
                        f"{target.name} within {TRIGGERS_WINDOW_HOURS}h of {source.name}",
                    ))

            elif (
                source.type in (EventType.PROCEDURE, EventType.MEDICATION_CHANGE)
                and target.type == EventType.DISCHARGE
                and days <= RESPONDS_TO_WINDOW_DAYS
            ):
                treated = [t for t in TREATMENT_TARGETS.get(source.name, []) if t.lower() in resolved_problems]
                if treated:
                    relationships.append(_link(
                        source, target, RelationshipType.RESPONDS_TO, 0.7,
                        f"{', '.join(treated)} resolved after {source.name} before discharge",
                    ))

    has_vasospasm = any(c.name.lower() == "vasospasm" for c in record.complications)
    if not has_vasospasm:
        for event in events:
            if event.type == EventType.MEDICATION_CHANGE and event.name == "nimodipine":
                relationships.append(_link(
                    event, None, RelationshipType.PREVENTS, 0.7,
                    "Nimodipine prophylaxis; no vasospasm documented",
                ))
                break

    timeline = CausalTimeline(events=events, relationships=relationships, milestones=_milestones(record, events))
    logger.debug(f"Causal timeline: {len(events)} events, {len(relationships)} relationships")
    return timeline


def _milestones(record: ExtractedRecord, events: List[TimelineEvent]) -> Dict[str, Any]:
    def first(event_type: EventType) -> Optional[TimelineEvent]:
        return next((e for e in events if e.type == event_type), None)

    first_procedure = first(EventType.PROCEDURE)
    first_complication = first(EventType.COMPLICATION)

    milestones: Dict[str, Any] = {
        "admission": record.admission_date,
        "first_procedure": first_procedure.timestamp if first_procedure else None,
        "first_procedure_name": first_procedure.name if first_procedure else None,
        "first_complication": first_complication.timestamp if first_complication else None,
        "first_complication_name": first_complication.name if first_complication else None,
        "discharge": record.discharge_date,
        "length_of_stay_days": None,
    }
    if record.admission_date and record.discharge_date:
        milestones["length_of_stay_days"] = (record.discharge_date - record.admission_date).days
    return milestones
