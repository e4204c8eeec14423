"""
NeuroSynth DCS - Functional Status Evolution
============================================

Tracks functional scores over the stay on one 0-100 scale (higher = better).

Normalization:
    KPS 0-100, GCS 3-15                 higher is better
    ECOG 0-5, mRS 0-6, NIHSS 0-42       inverted
    ASIA A-E                            A=0 ... E=4, then scaled

Trajectory: least-squares slope (numpy.polyfit, degree 1) over the
chronological series; |slope| below the threshold is stable, fewer than
two points is insufficient_data.

Usage:
    evolution = analyze_functional_evolution(record)
    evolution.trajectory          # Trajectory.IMPROVING
"""

import logging
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, List, Optional, Sequence

import numpy as np

from dcsynth.shared.enums import ChangeSignificance, ScoreType, Trajectory
from dcsynth.shared.models import ExtractedRecord, FunctionalScore

logger = logging.getLogger(__name__)

# score type -> (min, max, higher_is_better)
SCORE_SCALES = {
    ScoreType.KPS: (0, 100, True),
    ScoreType.ECOG: (0, 5, False),
    ScoreType.MRS: (0, 6, False),
    ScoreType.GCS: (3, 15, True),
    ScoreType.NIHSS: (0, 42, False),
    ScoreType.ASIA: (0, 4, True),
}

ASIA_GRADES = {"A": 0, "B": 1, "C": 2, "D": 3, "E": 4}

DEFAULT_SLOPE_THRESHOLD = 5.0   # normalized points per observation


def normalize_score(score_type: ScoreType, value: Any) -> Optional[float]:
    """Map a raw score onto 0-100 where 100 is the best possible status."""
    if value is None:
        return None
    if score_type == ScoreType.ASIA:
        numeric = ASIA_GRADES.get(str(value).strip().upper())
        if numeric is None:
            return None
    else:
        try:
            numeric = float(value)
        except (TypeError, ValueError):
            return None

    low, high, higher_is_better = SCORE_SCALES[score_type]
    if higher_is_better:
        normalized = (numeric - low) / (high - low) * 100
    else:
        normalized = (high - numeric) / (high - low) * 100
    return float(min(100.0, max(0.0, normalized)))


def change_significance(delta: float) -> ChangeSignificance:
    magnitude = abs(delta)
    if magnitude >= 30:
        return ChangeSignificance.MAJOR
    if magnitude >= 15:
        return ChangeSignificance.MODERATE
    if magnitude >= 5:
        return ChangeSignificance.MINOR
    return ChangeSignificance.MINIMAL


@dataclass
class ScorePoint:
    score_type: ScoreType
    value: Any
    normalized: float
    date: date
    estimated: bool = False
    entity_id: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.score_type.value,
            "value": self.value,
            "normalized": round(self.normalized, 1),
            "date": self.date.isoformat(),
            "estimated": self.estimated,
            "entity_id": self.entity_id,
        }


@dataclass
class ScoreChange:
    score_type: ScoreType
    from_date: date
    to_date: date
    from_value: Any
    to_value: Any
    delta: float
    significance: ChangeSignificance

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.score_type.value,
            "from_date": self.from_date.isoformat(),
            "to_date": self.to_date.isoformat(),
            "from_value": self.from_value,
            "to_value": self.to_value,
            "delta": round(self.delta, 1),
            "significance": self.significance.value,
        }


@dataclass
class FunctionalEvolution:
    points: List[ScorePoint] = field(default_factory=list)
    changes: List[ScoreChange] = field(default_factory=list)
    trajectory: Trajectory = Trajectory.INSUFFICIENT_DATA
    slope: Optional[float] = None
    by_type: Dict[str, Trajectory] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "points": [p.to_dict() for p in self.points],
            "changes": [c.to_dict() for c in self.changes],
            "trajectory": self.trajectory.value,
            "slope": round(self.slope, 3) if self.slope is not None else None,
            "by_type": {k: v.value for k, v in self.by_type.items()},
        }


def trajectory_of(values: Sequence[float], threshold: float = DEFAULT_SLOPE_THRESHOLD):
    """Return (trajectory, slope) for a chronological series."""
    if len(values) < 2:
        return Trajectory.INSUFFICIENT_DATA, None
    x = np.arange(len(values), dtype=float)
    slope = float(np.polyfit(x, np.asarray(values, dtype=float), 1)[0])
    if slope > threshold:
        return Trajectory.IMPROVING, slope
    if slope < -threshold:
        return Trajectory.DECLINING, slope
    return Trajectory.STABLE, slope


def _point(score: FunctionalScore) -> Optional[ScorePoint]:
    if score.date is None:
        return None
    normalized = normalize_score(score.score_type, score.value)
    if normalized is None:
        return None
    return ScorePoint(score.score_type, score.value, normalized, score.date, score.estimated, score.id)


def analyze_functional_evolution(
    record: ExtractedRecord,
    slope_threshold: float = DEFAULT_SLOPE_THRESHOLD,
) -> FunctionalEvolution:
    points = [p for p in (_point(s) for s in record.functional_scores) if p is not None]
    points.sort(key=lambda p: (p.date, p.estimated))

    evolution = FunctionalEvolution(points=points)
    evolution.trajectory, evolution.slope = trajectory_of([p.normalized for p in points], slope_threshold)

    for score_type in ScoreType:
        series = [p for p in points if p.score_type == score_type]
        if not series:
            continue
        evolution.by_type[score_type.value], _ = trajectory_of([p.normalized for p in series], slope_threshold)
        for prev, curr in zip(series, series[1:]):
            delta = curr.normalized - prev.normalized
            evolution.changes.append(ScoreChange(
                score_type=score_type,
                from_date=prev.date,
                to_date=curr.date,
                from_value=prev.value,
                to_value=curr.value,
                delta=delta,
                significance=change_significance(delta),
            ))

    logger.debug(f"Functional evolution: {len(points)} points, trajectory={evolution.trajectory.value}")
    return evolution
