"""
NeuroSynth DCS - Clinical Text Normalizer
=========================================

Cleans raw note text before extraction:
- Line endings and bullet glyphs
- Date formats (01/10/2025, Jan 10 2025, 10-Jan-2025, ...) -> ISO 2025-01-10
- Section header aliases (HPI, A/P, Hosp Course, ...) -> canonical headers
- Whitespace runs and blank-line runs

Normalization never aborts a request: if a note cannot be normalized its
original text is kept and the failure is logged.

Usage:
    normalizer = TextNormalizer()
    notes = normalizer.normalize([NoteInput(text="Admit 01/10/2025 ...")])
    notes[0].text  # "Admit 2025-01-10 ..."
"""

import logging
import re
from dataclasses import dataclass
from datetime import date
from typing import Any, Iterable, List, Optional, Sequence, Tuple, Union

from dcsynth.shared.exceptions import InputError
from dcsynth.shared.models import ClinicalNote, NoteInput, parse_iso_date

logger = logging.getLogger(__name__)


# =============================================================================
# DATE PARSING
# =============================================================================

MONTHS = {
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "may": 5, "jun": 6,
    "jul": 7, "aug": 8, "sep": 9, "oct": 10, "nov": 11, "dec": 12,
}

_MONTH_NAME = (
    r"(Jan(?:uary)?|Feb(?:ruary)?|Mar(?:ch)?|Apr(?:il)?|May|June?|July?|"
    r"Aug(?:ust)?|Sep(?:t(?:ember)?)?|Oct(?:ober)?|Nov(?:ember)?|Dec(?:ember)?)"
)

# (pattern, group order) where order names the groups holding year/month/day
DATE_PATTERNS: List[Tuple[re.Pattern, str]] = [
    (re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})\b"), "ymd"),
    (re.compile(r"\b(\d{4})/(\d{1,2})/(\d{1,2})\b"), "ymd"),
    (re.compile(r"\b(\d{1,2})/(\d{1,2})/(\d{4}|\d{2})\b"), "mdy"),
    (re.compile(r"\b(\d{1,2})-(\d{1,2})-(\d{4})\b"), "mdy"),
    (re.compile(r"\b" + _MONTH_NAME + r"\.?\s+(\d{1,2})(?:st|nd|rd|th)?,?\s+(\d{4})\b", re.I), "Mdy"),
    (re.compile(r"\b(\d{1,2})[\s-]" + _MONTH_NAME + r"\.?[\s,-]+(\d{4})\b", re.I), "dMy"),
]


def _year(value: str) -> int:
    year = int(value)
    if year < 100:
        year += 2000 if year < 70 else 1900
    return year


def _build_date(match: re.Match, order: str) -> Optional[date]:
    g = match.groups()
    try:
        if order == "ymd":
            return date(int(g[0]), int(g[1]), int(g[2]))
        if order == "mdy":
            return date(_year(g[2]), int(g[0]), int(g[1]))
        if order == "Mdy":
            return date(int(g[2]), MONTHS[g[0][:3].lower()], int(g[1]))
        if order == "dMy":
            return date(int(g[2]), MONTHS[g[1][:3].lower()], int(g[0]))
    except (ValueError, KeyError):
        return None
    return None


def find_dates(text: str) -> List[Tuple[date, int, int]]:
    """Return (date, start, end) for every non-overlapping date in text."""
    found: List[Tuple[date, int, int]] = []
    taken: List[Tuple[int, int]] = []
    for pattern, order in DATE_PATTERNS:
        for match in pattern.finditer(text):
            start, end = match.span()
            if any(start < t_end and end > t_start for t_start, t_end in taken):
                continue
            parsed = _build_date(match, order)
            if parsed is None:
                continue
            found.append((parsed, start, end))
            taken.append((start, end))
    found.sort(key=lambda item: item[1])
    return found


def parse_date(text: Union[str, date, None]) -> Optional[date]:
    """Parse the first date found in text (any supported format)."""
    if text is None or isinstance(text, date):
        return text
    dates = find_dates(str(text))
    return dates[0][0] if dates else None


# =============================================================================
# SENTENCES & COMPARISON
# =============================================================================

@dataclass
class Sentence:
    text: str
    start: int
    end: int


_SENTENCE_BOUNDARY = re.compile(r"[.!?](?=\s|$)|\n")


def split_sentences(text: str) -> List[Sentence]:
    """Split text into sentences, keeping character offsets."""
    sentences = []
    start = 0
    for match in _SENTENCE_BOUNDARY.finditer(text):
        end = match.end()
        chunk = text[start:end]
        if chunk.strip():
            offset = len(chunk) - len(chunk.lstrip())
            sentences.append(Sentence(chunk.strip(), start + offset, end))
        start = end
    tail = text[start:]
    if tail.strip():
        offset = len(tail) - len(tail.lstrip())
        sentences.append(Sentence(tail.strip(), start + offset, len(text)))
    return sentences


def normalize_for_comparison(text: str) -> str:
    """Lowercase, drop punctuation, collapse whitespace."""
    text = re.sub(r"[^\w\s]", "", text.lower())
    return re.sub(r"\s+", " ", text).strip()


# =============================================================================
# NORMALIZER
# =============================================================================

class TextNormalizer:
    """Canonicalizes note formatting ahead of extraction."""

    HEADER_ALIASES = {
        "hpi": "HISTORY OF PRESENT ILLNESS",
        "history of present illness": "HISTORY OF PRESENT ILLNESS",
        "cc": "CHIEF COMPLAINT",
        "chief complaint": "CHIEF COMPLAINT",
        "pmh": "PAST MEDICAL HISTORY",
        "past medical history": "PAST MEDICAL HISTORY",
        "a/p": "ASSESSMENT AND PLAN",
        "a&p": "ASSESSMENT AND PLAN",
        "assessment/plan": "ASSESSMENT AND PLAN",
        "assessment and plan": "ASSESSMENT AND PLAN",
        "impression": "IMPRESSION",
        "hosp course": "HOSPITAL COURSE",
        "hospital course": "HOSPITAL COURSE",
        "meds": "MEDICATIONS",
        "medications": "MEDICATIONS",
        "d/c meds": "DISCHARGE MEDICATIONS",
        "discharge meds": "DISCHARGE MEDICATIONS",
        "discharge medications": "DISCHARGE MEDICATIONS",
        "op note": "OPERATIVE NOTE",
        "operative note": "OPERATIVE NOTE",
        "pe": "PHYSICAL EXAM",
        "exam": "PHYSICAL EXAM",
        "physical exam": "PHYSICAL EXAM",
        "dispo": "DISPOSITION",
        "disposition": "DISPOSITION",
    }

    BULLET_PATTERN = re.compile(r"^[ \t]*[•◦▪·‣\*][ \t]*", re.M)
    REPORTED_DATE_PATTERN = re.compile(
        r"^\s*(?:date|note date|date of service|dos)\s*:\s*(.+)$", re.I | re.M
    )

    def __init__(self):
        aliases = sorted(self.HEADER_ALIASES, key=len, reverse=True)
        self._header_pattern = re.compile(
            r"^[ \t]*(" + "|".join(re.escape(a) for a in aliases) + r")[ \t]*:[ \t]*\n?",
            re.I | re.M,
        )

    def normalize_text(self, text: str) -> str:
        """Apply all text normalization steps to one note."""
        text = text.replace("\r\n", "\n").replace("\r", "\n")
        text = self.BULLET_PATTERN.sub("- ", text)
        text = self.canonicalize_dates(text)
        text = self._header_pattern.sub(self._canonical_header, text)
        text = re.sub(r"[ \t]+", " ", text)
        text = "\n".join(line.rstrip() for line in text.split("\n"))
        text = re.sub(r"\n{3,}", "\n\n", text)
        return text.strip()

    def _canonical_header(self, match: re.Match) -> str:
        return f"{self.HEADER_ALIASES[match.group(1).lower()]}:\n"

    @staticmethod
    def canonicalize_dates(text: str) -> str:
        """Rewrite every recognized date as ISO YYYY-MM-DD."""
        for parsed, start, end in reversed(find_dates(text)):
            text = text[:start] + parsed.isoformat() + text[end:]
        return text

    def detect_reported_date(self, text: str) -> Optional[date]:
        """Read a leading 'Date:' style header, if present."""
        head = "\n".join(text.split("\n")[:3])
        match = self.REPORTED_DATE_PATTERN.search(head)
        return parse_date(match.group(1)) if match else None

    def normalize(
        self,
        notes: Sequence[NoteInput],
        enabled: bool = True,
    ) -> List[ClinicalNote]:
        """
        Normalize notes into ClinicalNote records.

        Args:
            notes: Validated note inputs
            enabled: When False, text is kept verbatim (ids and dates still assigned)
        """
        results = []
        for index, note in enumerate(notes):
            text = note.text
            if enabled:
                try:
                    text = self.normalize_text(note.text)
                except Exception as e:
                    logger.exception(f"Normalization failed for note {index + 1}, keeping original text: {e}")
                    text = note.text

            reported = note.reported_date or self.detect_reported_date(text)
            results.append(ClinicalNote(
                id=f"note_{index + 1:03d}",
                text=text,
                index=index,
                reported_date=reported,
                note_type=note.type,
                original_text=note.text,
            ))

        logger.debug(f"Normalized {len(results)} notes (preprocessing={'on' if enabled else 'off'})")
        return results


def coerce_notes(raw_notes: Any) -> List[NoteInput]:
    """
    Validate caller input into NoteInput records.

    Accepts NoteInput instances, plain strings, or dicts with a 'text' key.

    Raises:
        InputError: If no usable note text is supplied
    """
    if raw_notes is None or isinstance(raw_notes, (str, bytes)):
        raw_notes = [raw_notes] if raw_notes else []
    if not isinstance(raw_notes, Iterable):
        raise InputError(f"Notes must be a sequence, got {type(raw_notes).__name__}")

    notes: List[NoteInput] = []
    for i, raw in enumerate(raw_notes):
        if isinstance(raw, NoteInput):
            note = raw
        elif isinstance(raw, str):
            note = NoteInput(text=raw)
        elif isinstance(raw, dict):
            note = NoteInput.from_dict(raw)
        else:
            raise InputError(f"Note {i + 1} has unsupported type {type(raw).__name__}")

        if not isinstance(note.text, str):
            raise InputError(f"Note {i + 1} text must be a string")
        if note.reported_date is not None and not isinstance(note.reported_date, date):
            note.reported_date = parse_iso_date(note.reported_date)
        if note.text.strip():
            notes.append(note)

    if not notes:
        raise InputError("No clinical notes with text were provided")
    return notes
