"""
NeuroSynth DCS - Negation, Uncertainty & Temporal Qualifier Detection
=====================================================================

Context cues that post-filter pattern matches:
- NegationDetector: NegEx-style pre/post triggers with pseudo-negations and
  scope terminators ("no vasospasm", "infection was ruled out")
- UncertaintyDetector: hedging cues ("possible", "concern for", "r/o")
- TemporalQualifierDetector: "history of", "resolved", "ongoing", "plan for"

All detectors look only inside the sentence containing the match.

Usage:
    detector = NegationDetector()
    negated, cue = detector.check(text, start, end)
"""

import re
from typing import List, Optional, Set, Tuple

from dcsynth.shared.enums import TemporalQualifier


def _cue_pattern(cues) -> re.Pattern:
    ordered = sorted(cues, key=len, reverse=True)
    return re.compile(r"(?<![\w/])(" + "|".join(re.escape(c) for c in ordered) + r")(?![\w/])", re.I)


def sentence_bounds(text: str, start: int, end: int) -> Tuple[int, int]:
    """Return the [start, end) of the sentence containing text[start:end]."""
    left = start
    while left > 0:
        ch = text[left - 1]
        if ch == "\n" or (ch in ".!?" and (left >= len(text) or text[left].isspace())):
            break
        left -= 1
    right = end
    while right < len(text):
        ch = text[right]
        if ch == "\n" or (ch in ".!?" and (right + 1 >= len(text) or text[right + 1].isspace())):
            break
        right += 1
    return left, right


def _last_words(fragment: str, n: int) -> str:
    words = fragment.split()
    return " ".join(words[-n:]) if words else ""


def _first_words(fragment: str, n: int) -> str:
    words = fragment.split()
    return " ".join(words[:n]) if words else ""


class NegationDetector:
    """
    Detects negated mentions.

    Handles patterns like:
    - "No evidence of vasospasm"
    - "Denies seizure activity"
    - "Infection was ruled out"
    - "No change in hydrocephalus" (pseudo-negation, not negated)
    """

    PRE_TRIGGERS = [
        "no", "not", "without", "denies", "denied", "negative for",
        "absence of", "absent", "no evidence of", "no signs of", "no sign of",
        "ruled out", "rules out", "free of", "never", "did not", "does not",
        "didn't", "doesn't", "not require", "no need for", "declined",
    ]

    POST_TRIGGERS = [
        "was ruled out", "is ruled out", "ruled out", "unlikely",
        "not seen", "not present", "not found", "not identified",
        "was negative", "is negative", "not required", "not needed",
        "deferred", "was not", "were not",
    ]

    PSEUDO_NEGATIONS = [
        "no change", "no changes", "no increase", "no further", "no longer",
        "not only", "not necessarily", "no significant change", "without difficulty",
        "gram negative", "not certain if", "not ruled out",
    ]

    SCOPE_TERMINATORS = [
        "but", "however", "although", "though", "except", "aside from",
        "apart from", "which", "yet", "still", "now",
    ]

    def __init__(self, window_words: int = 6, additional_cues: Optional[List[str]] = None):
        self.window_words = window_words
        pre = list(self.PRE_TRIGGERS) + list(additional_cues or [])
        self._pre = _cue_pattern(pre)
        self._post = _cue_pattern(self.POST_TRIGGERS)
        self._pseudo = _cue_pattern(self.PSEUDO_NEGATIONS)
        self._terminator = _cue_pattern(self.SCOPE_TERMINATORS)

    def _scope_before(self, text: str, sent_start: int, start: int, comma_terminates: bool) -> str:
        fragment = text[sent_start:start]
        cut = 0
        for match in self._terminator.finditer(fragment):
            cut = match.end()
        for sep in (";", ":") + ((",",) if comma_terminates else ()):
            idx = fragment.rfind(sep)
            if idx + 1 > cut:
                cut = idx + 1
        fragment = self._pseudo.sub(" ", fragment[cut:])
        return _last_words(fragment, self.window_words)

    def _scope_after(self, text: str, end: int, sent_end: int) -> str:
        fragment = text[end:sent_end]
        match = self._terminator.search(fragment)
        if match:
            fragment = fragment[:match.start()]
        for sep in (";", ",", ":"):
            idx = fragment.find(sep)
            if idx != -1:
                fragment = fragment[:idx]
        fragment = self._pseudo.sub(" ", fragment)
        return _first_words(fragment, self.window_words)

    def check(
        self,
        text: str,
        start: int,
        end: int,
        comma_terminates: bool = False,
    ) -> Tuple[bool, Optional[str]]:
        """
        Check whether the mention at text[start:end] is negated.

        Args:
            text: Full note text
            start, end: Mention span
            comma_terminates: Treat commas as scope boundaries (procedures,
                medications); lists of findings keep negation across commas

        Returns:
            Tuple of (is_negated, negation_cue)
        """
        sent_start, sent_end = sentence_bounds(text, start, end)

        before = self._scope_before(text, sent_start, start, comma_terminates)
        matches = list(self._pre.finditer(before))
        if matches:
            return True, matches[-1].group(1).lower()

        after = self._scope_after(text, end, sent_end)
        match = self._post.search(after)
        if match:
            return True, match.group(1).lower()

        return False, None


class UncertaintyDetector:
    """Detects hedged mentions ("possible vasospasm", "r/o infection")."""

    CUES = [
        "possible", "possibly", "probable", "probably", "likely", "suspected",
        "suspect", "suspicious for", "concern for", "concerning for",
        "question of", "questionable", "r/o", "rule out", "to rule out",
        "cannot exclude", "cannot rule out", "may have", "versus", "vs",
        "presumed", "differential includes",
    ]

    def __init__(self, window_words: int = 6):
        self.window_words = window_words
        self._pattern = _cue_pattern(self.CUES)

    def check(self, text: str, start: int, end: int) -> Tuple[bool, Optional[str]]:
        sent_start, sent_end = sentence_bounds(text, start, end)
        before = _last_words(text[sent_start:start], self.window_words)
        after = _first_words(text[end:sent_end], 3)
        match = self._pattern.search(before) or self._pattern.search(after)
        if match:
            return True, match.group(1).lower()
        return False, None


class TemporalQualifierDetector:
    """Tags mentions with temporal status cues found near them."""

    CUES = {
        TemporalQualifier.HISTORICAL: [
            "history of", "h/o", "hx of", "prior", "previous", "previously",
            "remote", "in the past", "chronic",
        ],
        TemporalQualifier.RESOLVED: [
            "resolved", "resolving", "resolution of", "cleared", "no longer",
            "recovered", "subsided",
        ],
        TemporalQualifier.ONGOING: [
            "ongoing", "persistent", "persists", "continues", "continued",
            "worsening", "active", "current", "remains", "recurrent",
        ],
        TemporalQualifier.PLANNED: [
            "plan for", "planned", "planning", "scheduled for", "will undergo",
            "to undergo", "consider", "considering", "recommend", "pending",
            "will need", "candidate for",
        ],
        TemporalQualifier.ACUTE: ["acute", "new", "new onset", "sudden", "developed"],
    }

    # Confidence multiplier applied per qualifier
    CONFIDENCE_FACTORS = {
        TemporalQualifier.HISTORICAL: 0.8,
        TemporalQualifier.PLANNED: 0.6,
    }

    def __init__(self, window_words: int = 6):
        self.window_words = window_words
        self._patterns = {q: _cue_pattern(cues) for q, cues in self.CUES.items()}

    def detect(self, text: str, start: int, end: int) -> Set[TemporalQualifier]:
        sent_start, sent_end = sentence_bounds(text, start, end)
        before = _last_words(text[sent_start:start], self.window_words)
        after = _first_words(text[end:sent_end], self.window_words)
        window = f"{before} {after}"

        found = set()
        for qualifier, pattern in self._patterns.items():
            if pattern.search(window):
                found.add(qualifier)

        # Resolution language in the same window outranks "ongoing"
        if TemporalQualifier.RESOLVED in found:
            found.discard(TemporalQualifier.ONGOING)
        return found

    def confidence_factor(self, qualifiers: Set[TemporalQualifier]) -> float:
        factor = 1.0
        for qualifier in qualifiers:
            factor *= self.CONFIDENCE_FACTORS.get(qualifier, 1.0)
        return factor
