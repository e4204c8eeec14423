"""
NeuroSynth DCS - Clinical Pattern Database
==========================================

Rule tables consumed by the PatternExtractor:
- Synonym tables (procedures, complications, medications, pathologies)
  loaded into FlashText keyword processors, each synonym mapped to its
  canonical name
- Ordered regex rules per scalar field, each with a rule id and a base
  confidence reflecting its specificity
- Context regexes for doses, frequencies, routes, severities and
  medication status

Usage:
    from dcsynth.core.clinical_patterns import canonical_name, build_keyword_processor
    canonical_name(EntityKind.PROCEDURE, "ventriculostomy")  # "EVD placement"
"""

import re
from dataclasses import dataclass
from functools import lru_cache
from typing import Dict, List, Optional, Tuple

from flashtext import KeywordProcessor

from dcsynth.shared.enums import EntityKind, PathologyKind, ScoreType
from dcsynth.shared.models import ConfidenceLevel


# =============================================================================
# RULE TYPES
# =============================================================================

@dataclass(frozen=True)
class PatternRule:
    """One ordered regex rule. The value is taken from group `group`."""
    rule_id: str
    pattern: re.Pattern
    confidence: float
    group: int = 1


def _rule(rule_id: str, pattern: str, confidence: float, flags: int = re.I, group: int = 1) -> PatternRule:
    return PatternRule(rule_id, re.compile(pattern, flags), confidence, group)


# =============================================================================
# SYNONYM TABLES
# =============================================================================

PROCEDURE_SYNONYMS: Dict[str, List[str]] = {
    "aneurysm coiling": [
        "coiling", "coiled", "endovascular coiling", "coil embolization",
        "aneurysm coiling", "stent-assisted coiling",
    ],
    "aneurysm clipping": [
        "clipping", "clipped", "aneurysm clipping", "microsurgical clipping",
    ],
    "craniotomy": ["craniotomy", "crani", "open craniotomy"],
    "craniectomy": [
        "craniectomy", "decompressive craniectomy", "hemicraniectomy",
        "suboccipital craniectomy",
    ],
    "EVD placement": [
        "EVD", "external ventricular drain", "ventriculostomy",
        "ventricular drain", "EVD placement",
    ],
    "lumbar drain placement": ["lumbar drain", "lumbar drain placement"],
    "VP shunt placement": [
        "VP shunt", "VPS", "ventriculoperitoneal shunt", "shunt placement",
        "VP shunt placement",
    ],
    "tumor resection": [
        "tumor resection", "resection", "gross total resection", "GTR",
        "subtotal resection", "STR", "debulking",
    ],
    "biopsy": ["biopsy", "stereotactic biopsy", "needle biopsy"],
    "cranioplasty": ["cranioplasty"],
    "cerebral angiography": [
        "angiogram", "angiography", "cerebral angiogram", "DSA",
        "diagnostic angiogram", "cerebral angiography",
    ],
    "embolization": ["embolization", "onyx embolization", "MMA embolization"],
    "burr hole evacuation": [
        "burr hole", "burr holes", "burr hole evacuation", "burr hole drainage",
    ],
    "laminectomy": ["laminectomy", "decompressive laminectomy", "laminotomy"],
    "spinal fusion": [
        "spinal fusion", "fusion", "ACDF", "anterior cervical discectomy and fusion",
        "TLIF", "PLIF", "posterior spinal fusion",
    ],
    "discectomy": ["discectomy", "microdiscectomy"],
    "lumbar puncture": ["lumbar puncture", "LP"],
    "tracheostomy": ["tracheostomy", "trach"],
}

COMPLICATION_SYNONYMS: Dict[str, List[str]] = {
    "vasospasm": [
        "vasospasm", "cerebral vasospasm", "DCI", "delayed cerebral ischemia",
        "angiographic vasospasm",
    ],
    "hydrocephalus": ["hydrocephalus", "ventriculomegaly", "acute hydrocephalus"],
    "seizure": ["seizure", "seizures", "seizure activity", "convulsion", "convulsions"],
    "infection": [
        "infection", "wound infection", "meningitis", "ventriculitis", "SSI",
        "surgical site infection",
    ],
    "rebleeding": [
        "rebleed", "rebleeding", "re-rupture", "rerupture", "re-hemorrhage",
        "postoperative hemorrhage", "hematoma expansion", "postoperative hematoma",
    ],
    "stroke": ["stroke", "infarct", "infarction", "ischemic stroke"],
    "cerebral edema": ["cerebral edema", "worsening edema", "malignant edema", "brain swelling"],
    "DVT": ["DVT", "deep vein thrombosis", "deep venous thrombosis"],
    "pulmonary embolism": ["pulmonary embolism"],
    "pneumonia": ["pneumonia", "aspiration pneumonia", "PNA", "HAP", "VAP"],
    "UTI": ["UTI", "urinary tract infection"],
    "hyponatremia": ["hyponatremia", "SIADH", "cerebral salt wasting", "CSW"],
    "CSF leak": ["CSF leak", "cerebrospinal fluid leak", "wound leak"],
    "delirium": ["delirium", "encephalopathy"],
}

MEDICATION_SYNONYMS: Dict[str, List[str]] = {
    "nimodipine": ["nimodipine", "nimotop"],
    "levetiracetam": ["levetiracetam", "keppra"],
    "phenytoin": ["phenytoin", "dilantin", "fosphenytoin"],
    "lacosamide": ["lacosamide", "vimpat"],
    "dexamethasone": ["dexamethasone", "decadron"],
    "mannitol": ["mannitol"],
    "hypertonic saline": ["hypertonic saline", "3% saline", "23.4% saline"],
    "aspirin": ["aspirin", "ASA"],
    "clopidogrel": ["clopidogrel", "plavix"],
    "heparin": ["heparin", "heparin drip", "UFH"],
    "enoxaparin": ["enoxaparin", "lovenox"],
    "warfarin": ["warfarin", "coumadin"],
    "apixaban": ["apixaban", "eliquis"],
    "rivaroxaban": ["rivaroxaban", "xarelto"],
    "labetalol": ["labetalol"],
    "nicardipine": ["nicardipine", "cardene", "nicardipine drip"],
    "clevidipine": ["clevidipine", "cleviprex"],
    "metoprolol": ["metoprolol", "lopressor"],
    "atorvastatin": ["atorvastatin", "lipitor"],
    "pantoprazole": ["pantoprazole", "protonix"],
    "acetaminophen": ["acetaminophen", "tylenol"],
    "oxycodone": ["oxycodone"],
    "vancomycin": ["vancomycin", "vanc"],
    "cefazolin": ["cefazolin", "ancef"],
    "ceftriaxone": ["ceftriaxone", "rocephin"],
    "fludrocortisone": ["fludrocortisone", "florinef"],
}

ANTICOAGULANTS = frozenset({
    "heparin", "enoxaparin", "warfarin", "apixaban", "rivaroxaban",
})
ANTIPLATELETS = frozenset({"aspirin", "clopidogrel"})

PATHOLOGY_KEYWORDS: Dict[PathologyKind, List[str]] = {
    PathologyKind.SAH: [
        "subarachnoid hemorrhage", "SAH", "aSAH", "aneurysmal SAH",
        "ruptured aneurysm", "aneurysm",
    ],
    PathologyKind.BRAIN_METASTASIS: [
        "brain metastasis", "brain metastases", "metastatic disease to the brain",
        "brain mets", "metastatic lesion",
    ],
    PathologyKind.BRAIN_TUMOR: [
        "glioblastoma", "GBM", "glioma", "astrocytoma", "oligodendroglioma",
        "meningioma", "brain tumor", "pituitary adenoma", "vestibular schwannoma",
        "mass lesion",
    ],
    PathologyKind.TBI: [
        "traumatic brain injury", "TBI", "contusion", "contusions",
        "epidural hematoma", "EDH", "diffuse axonal injury",
    ],
    PathologyKind.ICH: [
        "intracerebral hemorrhage", "ICH", "intraparenchymal hemorrhage", "IPH",
    ],
    PathologyKind.CHRONIC_SUBDURAL: [
        "chronic subdural hematoma", "cSDH", "subdural hematoma", "SDH",
    ],
    PathologyKind.AVM: ["arteriovenous malformation", "AVM"],
    PathologyKind.HYDROCEPHALUS: [
        "hydrocephalus", "normal pressure hydrocephalus", "NPH",
    ],
    PathologyKind.CSF_LEAK: ["CSF leak", "CSF rhinorrhea", "CSF otorrhea"],
    PathologyKind.SPINE: [
        "spinal stenosis", "cervical myelopathy", "myelopathy", "disc herniation",
        "herniated disc", "radiculopathy", "spondylolisthesis", "spinal cord injury",
        "cauda equina",
    ],
    PathologyKind.SEIZURE: ["epilepsy", "seizure disorder", "status epilepticus"],
}

# Primary vs. commonly-secondary diagnoses when several appear
PATHOLOGY_WEIGHTS: Dict[PathologyKind, float] = {
    PathologyKind.SAH: 1.5,
    PathologyKind.TBI: 1.5,
    PathologyKind.ICH: 1.5,
    PathologyKind.BRAIN_TUMOR: 1.5,
    PathologyKind.BRAIN_METASTASIS: 1.5,
    PathologyKind.AVM: 1.5,
    PathologyKind.CHRONIC_SUBDURAL: 1.2,
    PathologyKind.SPINE: 1.2,
    PathologyKind.CSF_LEAK: 1.0,
    PathologyKind.HYDROCEPHALUS: 0.5,
    PathologyKind.SEIZURE: 0.5,
}

HEMORRHAGIC_PATHOLOGIES = frozenset({
    PathologyKind.SAH, PathologyKind.ICH, PathologyKind.CHRONIC_SUBDURAL,
    PathologyKind.AVM, PathologyKind.TBI,
})

# Intervention -> problem it treats (used by treatment-response pairing)
TREATMENT_TARGETS: Dict[str, List[str]] = {
    "nimodipine": ["vasospasm"],
    "levetiracetam": ["seizure"],
    "phenytoin": ["seizure"],
    "lacosamide": ["seizure"],
    "dexamethasone": ["cerebral edema", "edema"],
    "mannitol": ["cerebral edema", "ICP", "intracranial pressure"],
    "hypertonic saline": ["cerebral edema", "ICP", "hyponatremia", "sodium"],
    "fludrocortisone": ["hyponatremia", "sodium"],
    "vancomycin": ["infection"],
    "cefazolin": ["infection"],
    "ceftriaxone": ["infection", "pneumonia", "UTI"],
    "nicardipine": ["blood pressure", "hypertension"],
    "clevidipine": ["blood pressure", "hypertension"],
    "labetalol": ["blood pressure", "hypertension"],
    "EVD placement": ["hydrocephalus", "ICP", "intracranial pressure"],
    "VP shunt placement": ["hydrocephalus"],
    "lumbar drain placement": ["hydrocephalus", "CSF leak"],
    "aneurysm coiling": ["aneurysm"],
    "aneurysm clipping": ["aneurysm"],
    "tumor resection": ["tumor", "mass"],
    "craniectomy": ["ICP", "intracranial pressure", "cerebral edema"],
    "burr hole evacuation": ["subdural", "hematoma"],
    "cerebral angiography": ["vasospasm", "aneurysm"],
    "embolization": ["AVM", "subdural", "aneurysm"],
    "laminectomy": ["stenosis", "myelopathy", "radiculopathy", "pain"],
    "spinal fusion": ["stenosis", "myelopathy", "radiculopathy", "pain"],
    "discectomy": ["radiculopathy", "pain"],
}

ENTITY_SYNONYMS: Dict[EntityKind, Dict[str, List[str]]] = {
    EntityKind.PROCEDURE: PROCEDURE_SYNONYMS,
    EntityKind.COMPLICATION: COMPLICATION_SYNONYMS,
    EntityKind.MEDICATION: MEDICATION_SYNONYMS,
}


def build_keyword_processor(table: Dict) -> KeywordProcessor:
    """Load a synonym table into a case-insensitive FlashText processor."""
    processor = KeywordProcessor(case_sensitive=False)
    for canonical, synonyms in table.items():
        if isinstance(canonical, PathologyKind):
            clean_name = canonical.value
        else:
            clean_name = canonical
            processor.add_keyword(canonical, canonical)
        for synonym in synonyms:
            processor.add_keyword(synonym, clean_name)
    return processor


@lru_cache(maxsize=None)
def _synonym_lookup(kind: EntityKind) -> Dict[str, str]:
    lookup = {}
    for canonical, synonyms in ENTITY_SYNONYMS.get(kind, {}).items():
        lookup[canonical.lower()] = canonical
        for synonym in synonyms:
            lookup[synonym.lower()] = canonical
    return lookup


def canonical_name(kind: EntityKind, name: str) -> str:
    """
    Map a free-text entity name onto its canonical name.

    Exact synonym hits win; otherwise the longest synonym contained in the
    name is used; otherwise the lowercased, whitespace-collapsed name.
    """
    cleaned = re.sub(r"\s+", " ", (name or "").strip().lower())
    if kind == EntityKind.FUNCTIONAL_SCORE:
        return cleaned.upper()
    lookup = _synonym_lookup(kind)
    if cleaned in lookup:
        return lookup[cleaned]
    for synonym in sorted(lookup, key=len, reverse=True):
        if len(synonym) > 3 and re.search(r"\b" + re.escape(synonym) + r"\b", cleaned):
            return lookup[synonym]
    return cleaned


def is_abbreviation(term: str) -> bool:
    return len(term) <= 4 and term.upper() == term


# =============================================================================
# DEMOGRAPHICS RULES
# =============================================================================

NAME_RULES = [
    _rule("name_label", r"\b(?i:patient\s+name|pt\s+name|name)\s*:\s*([A-Z][a-zA-Z'\-]+(?:[ \t]+[A-Z][a-zA-Z'\-]+){1,3})",
          ConfidenceLevel.CRITICAL, flags=0),
    _rule("name_honorific", r"\b(?:Mr|Mrs|Ms|Miss)\.?\s+([A-Z][a-zA-Z'\-]+)", ConfidenceLevel.LOW, flags=0),
]

MRN_RULES = [
    _rule("mrn_label", r"\b(?:MRN|MR#|medical record (?:number|no\.?))\s*[:#]?\s*([A-Z]{0,3}\d[\d\-]{3,14})\b",
          ConfidenceLevel.CRITICAL),
]

AGE_RULES = [
    _rule("age_label", r"\bage\s*:\s*(\d{1,3})\b", ConfidenceLevel.CRITICAL),
    _rule("age_year_old", r"\b(\d{1,3})[\s-]*(?:year|yr)s?[\s-]*old\b", ConfidenceLevel.HIGH),
    _rule("age_yo", r"\b(\d{1,3})\s*(?:yo|y/o|y\.o\.)(?=\W|$)", ConfidenceLevel.HIGH),
    _rule("age_shorthand", r"\b(\d{1,3})\s?[MF]\b", ConfidenceLevel.MEDIUM, flags=0),
]

SEX_RULES = [
    _rule("sex_label", r"\b(?:sex|gender)\s*:\s*(male|female|m|f)\b", ConfidenceLevel.CRITICAL),
    _rule("sex_word", r"\b(male|female|man|woman|gentleman|lady)\b", ConfidenceLevel.HIGH),
    _rule("sex_shorthand", r"\b\d{1,3}\s?([MF])\b", ConfidenceLevel.MEDIUM, flags=0),
]

SEX_VALUES = {
    "male": "M", "m": "M", "man": "M", "gentleman": "M",
    "female": "F", "f": "F", "woman": "F", "lady": "F",
}

MALE_PRONOUNS = re.compile(r"\b(?:he|him|his)\b", re.I)
FEMALE_PRONOUNS = re.compile(r"\b(?:she|her|hers)\b", re.I)


# =============================================================================
# DATE CUES
# =============================================================================

# Cue followed (within a short window) by a date; (rule_id, cue regex, confidence)
ADMISSION_CUES = [
    _rule("admission_label", r"\b(?:admission date|date of admission|DOA)\s*:?", ConfidenceLevel.CRITICAL, group=0),
    _rule("admission_verb", r"\b(?:admitted|admit|admission|presented)\b(?:\s+(?:on|to\s+\w+\s+on))?", ConfidenceLevel.HIGH, group=0),
]

DISCHARGE_CUES = [
    _rule("discharge_label", r"\b(?:discharge date|date of discharge|DOD)\s*:?", ConfidenceLevel.CRITICAL, group=0),
    _rule("discharge_verb", r"\b(?:discharged|discharge)\b(?:\s+(?:home|to\s+\w+))?(?:\s+on)?", ConfidenceLevel.HIGH, group=0),
]

PROCEDURE_DATE_CUES = [
    _rule("surgery_label", r"\b(?:date of surgery|DOS|surgery date|operative date)\s*:?", ConfidenceLevel.CRITICAL, group=0),
    _rule("surgery_verb", r"\b(?:underwent|taken to (?:the )?OR|surgery|operation)\b[^.\n]{0,40}?\bon\b", ConfidenceLevel.HIGH, group=0),
]

DATE_CUE_WINDOW = 40


# =============================================================================
# PATHOLOGY DETAIL RULES
# =============================================================================

SUBTYPE_RULES = [
    _rule("aneurysm_location",
          r"\b(AComA?|ACoA|ACOM|PComA?|PCoA|PCOM|MCA|ICA|ACA|PICA|basilar tip|basilar|vertebral|ophthalmic)\s+(?:artery\s+)?aneurysm\b",
          ConfidenceLevel.HIGH),
    _rule("hunt_hess", r"\bHunt[\s-]*(?:and[\s-]*)?Hess\s*(?:grade)?\s*:?\s*([IV]{1,3}|[1-5])\b", ConfidenceLevel.HIGH),
    _rule("fisher", r"\b(?:modified\s+)?Fisher\s*(?:grade|scale)?\s*:?\s*([IV]{1,3}|[0-4])\b", ConfidenceLevel.HIGH),
    _rule("wfns", r"\bWFNS\s*(?:grade)?\s*:?\s*([IV]{1,3}|[1-5])\b", ConfidenceLevel.HIGH),
    _rule("who_grade", r"\bWHO\s*(?:grade)?\s*:?\s*([IV]{1,3}|[1-4])\b", ConfidenceLevel.HIGH),
    _rule("tumor_histology",
          r"\b(glioblastoma|anaplastic astrocytoma|astrocytoma|oligodendroglioma|meningioma|ependymoma|"
          r"medulloblastoma|pituitary (?:macro)?adenoma|vestibular schwannoma)\b",
          ConfidenceLevel.MEDIUM),
]

SUBTYPE_LABELS = {
    "aneurysm_location": "{} aneurysm",
    "hunt_hess": "Hunt-Hess {}",
    "fisher": "Fisher {}",
    "wfns": "WFNS {}",
    "who_grade": "WHO grade {}",
    "tumor_histology": "{}",
}

LOCATION_RULES = [
    _rule("lobe",
          r"\b((?:left|right|bilateral)\s+(?:frontal|temporal|parietal|occipital|frontoparietal|temporoparietal|"
          r"parieto-occipital|cerebellar|thalamic|basal ganglia|convexity|hemispheric|insular))\b",
          ConfidenceLevel.HIGH),
    _rule("spine_level", r"\b([CTL]\d{1,2}\s*-\s*[CTLS]\d{1,2})\b", ConfidenceLevel.HIGH, flags=0),
    _rule("region",
          r"\b(posterior fossa|intraventricular|sellar|suprasellar|skull base|cerebellopontine angle|"
          r"brainstem|corpus callosum)\b",
          ConfidenceLevel.MEDIUM),
]


# =============================================================================
# FUNCTIONAL SCORE RULES
# =============================================================================

_SCORE_SEP = r"\s*(?:of|:|=|is|was)?\s*"

SCORE_RULES: Dict[ScoreType, List[PatternRule]] = {
    ScoreType.KPS: [
        _rule("kps", r"\b(?:KPS|Karnofsky(?:\s+performance\s+(?:status|score))?)" + _SCORE_SEP + r"(\d{1,3})\b",
              ConfidenceLevel.CRITICAL),
    ],
    ScoreType.ECOG: [
        _rule("ecog", r"\bECOG(?:\s+PS|\s+performance\s+status)?" + _SCORE_SEP + r"([0-5])\b", ConfidenceLevel.CRITICAL),
    ],
    ScoreType.MRS: [
        _rule("mrs", r"\b(?:mRS|modified\s+Rankin(?:\s+scale)?(?:\s+score)?)" + _SCORE_SEP + r"([0-6])\b",
              ConfidenceLevel.CRITICAL),
    ],
    ScoreType.GCS: [
        _rule("gcs_components", r"\bGCS" + _SCORE_SEP + r"(E\d\s*V(?:\d|T)\s*M\d)\b", ConfidenceLevel.HIGH),
        _rule("gcs", r"\bGCS" + _SCORE_SEP + r"(\d{1,2})\b", ConfidenceLevel.CRITICAL),
    ],
    ScoreType.NIHSS: [
        _rule("nihss", r"\bNIHSS" + _SCORE_SEP + r"(\d{1,2})\b", ConfidenceLevel.CRITICAL),
    ],
    ScoreType.ASIA: [
        _rule("asia", r"\b(?i:ASIA)(?:\s+(?i:grade|score|impairment scale))?\s*:?\s*([A-E])\b",
              ConfidenceLevel.CRITICAL, flags=0),
    ],
}

SCORE_RANGES: Dict[ScoreType, Tuple[int, int]] = {
    ScoreType.KPS: (0, 100),
    ScoreType.ECOG: (0, 5),
    ScoreType.MRS: (0, 6),
    ScoreType.GCS: (3, 15),
    ScoreType.NIHSS: (0, 42),
    ScoreType.ASIA: (0, 4),
}

# Phrase-based estimates when no explicit score of that type exists
SCORE_ESTIMATES: Dict[ScoreType, List[Tuple[re.Pattern, int]]] = {
    ScoreType.KPS: [
        (re.compile(r"\b(?:ambulating independently|independent (?:with|in) (?:all )?ADLs|back to (?:his |her )?baseline)\b", re.I), 80),
        (re.compile(r"\b(?:ambulat\w* with (?:a )?(?:walker|cane|assist\w*)|requires? (?:some |occasional )?assistance)\b", re.I), 60),
        (re.compile(r"\b(?:requires? (?:considerable|significant|maximal|total) assist\w*|wheelchair[- ]bound)\b", re.I), 40),
        (re.compile(r"\b(?:bed[- ]?bound|bedridden)\b", re.I), 30),
    ],
    ScoreType.MRS: [
        (re.compile(r"\b(?:no (?:residual )?(?:deficits|symptoms)|neurologically intact)\b", re.I), 0),
        (re.compile(r"\b(?:ambulat\w* with (?:a )?(?:walker|cane|assist\w*))\b", re.I), 3),
        (re.compile(r"\b(?:unable to (?:walk|ambulate)|non-?ambulatory)\b", re.I), 4),
        (re.compile(r"\b(?:bed[- ]?bound|bedridden)\b", re.I), 5),
    ],
}


# =============================================================================
# MEDICATION CONTEXT
# =============================================================================

DOSE_PATTERN = re.compile(r"\b(\d+(?:\.\d+)?)\s*(mg|mcg|g|units?|mEq|mL)\b", re.I)

FREQUENCY_PATTERN = re.compile(
    r"\b(once daily|twice daily|daily|BID|TID|QID|QHS|QD|q\s?\d{1,2}\s?h(?:ours?|rs?)?|"
    r"every \d{1,2} hours|PRN|as needed)\b",
    re.I,
)

FREQUENCY_CANONICAL = {
    "once daily": "daily", "qd": "daily", "daily": "daily",
    "twice daily": "BID", "bid": "BID", "tid": "TID", "qid": "QID", "qhs": "QHS",
    "prn": "PRN", "as needed": "PRN",
}

ROUTE_PATTERN = re.compile(r"\b(PO|IV|SQ|SC|IM|PR|NG|(?i:per tube|subcutaneous(?:ly)?|intravenous(?:ly)?|by mouth|orally))\b")

ROUTE_CANONICAL = {
    "po": "PO", "by mouth": "PO", "orally": "PO",
    "iv": "IV", "intravenous": "IV", "intravenously": "IV",
    "sq": "SQ", "sc": "SQ", "subcutaneous": "SQ", "subcutaneously": "SQ",
    "im": "IM", "pr": "PR", "ng": "NG", "per tube": "NG",
}

STATUS_PATTERNS = [
    ("discontinued", re.compile(r"\b(?:discontinued|stopped|held|holding|weaned off|tapered off|d/c'?d)\b", re.I)),
    ("started", re.compile(r"\b(?:started|initiated|began|begun|commenced|loaded with|load(?:ed)?)\b", re.I)),
    ("continued", re.compile(r"\b(?:continue[sd]?|remains on|maintained on|on)\b", re.I)),
]

SEVERITY_PATTERN = re.compile(r"\b(mild|moderate|severe|significant|minimal|critical)\b", re.I)

SEVERITY_CANONICAL = {
    "minimal": "mild", "mild": "mild", "moderate": "moderate",
    "significant": "severe", "severe": "severe", "critical": "severe",
}
