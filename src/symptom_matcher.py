# Symptom matching module

"""
Context-aware symptom matcher.

Matches the symptom master list against a clinical note. Explicitly
reported symptoms ("patient reports X, Y and Z") score highest; plain
mentions inside a note section score slightly lower and are dropped when a
negation cue precedes them. Sections that list medications, plans or
allergies are never scanned.

Stateless and DB-agnostic: callers pass plain dicts with the symptom
master columns.
"""

import re

MIN_SYMPTOM_LENGTH = 3
NEGATION_WINDOW = 50

EXPLICIT_CONFIDENCE = 0.98
CONTEXT_CONFIDENCE = 0.92

SKIPPED_SECTIONS = {"medication", "plan", "allergies"}

SECTION_HEADERS = [
    ("chief_complaint", ["chief complaint:", "cc:", "reason for visit:"]),
    ("history", ["history:", "history of present illness:", "hpi:", "past medical history:", "pmh:"]),
    ("symptoms", ["symptoms:", "subjective:", "patient reports:"]),
    ("physical_exam", ["physical exam:", "examination:", "pe:"]),
    ("assessment", ["assessment:", "impression:", "diagnosis:"]),
    ("plan", ["plan:", "treatment plan:", "recommendations:"]),
    ("medication", ["medications:", "meds:", "current medications:"]),
    ("allergies", ["allergies:", "drug allergies:"]),
]

REPORTING_PATTERNS = [
    (re.compile(r"(?:patient|client)\s+(?:reports?|complains of|presents with|states?)\s+([^.\n]+)", re.I),
     "patient_report"),
    (re.compile(r"reports?\s+(?:experiencing|having|with)\s+([^.\n]+)", re.I), "report_experiencing"),
    (re.compile(r"symptoms?\s+(?:include|consist of|are|is)\s+([^.\n]+)", re.I), "symptom_list"),
    (re.compile(r"presents?\s+with\s+([^.\n]+)", re.I), "presents_with"),
]

LIST_SPLIT = re.compile(r",\s*|\s+and\s+|\s+or\s+")

NEGATION_PHRASES = [
    "no ", "not ", "denies", "denied", "negative for", "without",
    "absent", "doesn't have", "does not have", "rules out", "ruled out",
]

REPORTING_PHRASES = [
    "reports", "reported", "complains of", "presents with",
    "experiencing", "having", "endorsed", "stated",
]


def normalize_text(text: str) -> str:
    text = text.lower().replace("\r\n", "\n").replace("\t", " ")
    return re.sub(r"\s+", " ", text).strip()


def identify_sections(note_text: str) -> list:
    """
    Split a normalized note on known section headers. Each header
    occurrence opens a section that runs until the next header.
    Returns [] when the note has no headers.
    """
    starts = []
    for name, patterns in SECTION_HEADERS:
        for pattern in patterns:
            index = note_text.find(pattern)
            while index != -1:
                starts.append((index, name, pattern))
                index = note_text.find(pattern, index + 1)

    starts.sort(key=lambda s: s[0])

    sections = []
    for i, (index, name, pattern) in enumerate(starts):
        start = index + len(pattern)
        end = starts[i + 1][0] if i + 1 < len(starts) else len(note_text)
        sections.append({
            "type": name,
            "text": note_text[start:end].strip(),
            "start_index": start,
            "end_index": end,
        })
    return sections


def extract_explicit_symptoms(note_text: str) -> list:
    lists = []
    for regex, context in REPORTING_PATTERNS:
        for match in regex.finditer(note_text):
            raw = match.group(1)
            if not raw:
                continue
            symptoms = [s.strip() for s in LIST_SPLIT.split(raw) if s.strip()]
            if symptoms:
                lists.append({"context": context, "raw_text": raw, "symptoms": symptoms})
    return lists


def check_for_negation(context: str, symptom: str) -> bool:
    index = context.find(symptom)
    if index == -1:
        return False

    before = context[max(0, index - NEGATION_WINDOW):index]

    for phrase in NEGATION_PHRASES:
        if phrase not in before:
            continue
        # a reporting phrase after the cue ("denies pain but reports anxiety") wins
        neg_index = before.rfind(phrase)
        for report_phrase in REPORTING_PHRASES:
            if before.rfind(report_phrase) > neg_index:
                return False
        return True

    return False


def organize_symptom_matches(matches: list) -> dict:
    organized = {
        "by_symptom_segment": {},
        "by_diagnosis": {},
        "by_category": {},
        "by_diagnosis_code": {},
    }
    for match in matches:
        keys = {
            "by_symptom_segment": match.get("symptom_segment"),
            "by_diagnosis": match.get("diagnosis"),
            "by_category": match.get("diagnostic_category"),
            "by_diagnosis_code": match.get("diagnosis_code"),
        }
        for grouping, key in keys.items():
            organized[grouping].setdefault(key or "Unknown", []).append(match)
    return organized


def _build_match(symptom: dict, confidence: float, match_type: str, section_type: str,
                 position: int, reporting_context=None) -> dict:
    symptom_id = symptom.get("symptom_id")
    return {
        "symptom_id": symptom_id,
        "symptom_segment": symptom.get("symptom_segment"),
        "diagnostic_category": symptom.get("diagnostic_category") or "Unknown",
        "diagnosis": symptom.get("diagnosis") or "Unknown",
        "diagnosis_icd10_code": symptom.get("diagnosis_icd10_code"),
        "diagnosis_code": symptom_id.split(".")[0] if symptom_id else "Unknown",
        "symp_prob": symptom.get("symp_prob") or "Symptom",
        "zcode_hrsn": symptom.get("zcode_hrsn"),
        "confidence": confidence,
        "match_type": match_type,
        "section_type": section_type,
        "reporting_context": reporting_context,
        "position_in_text": position,
        "negated": False,
    }


def refined_symptom_matcher(
    note_text: str,
    symptom_database: list,
    consider_negation: bool = True,
    use_word_boundaries: bool = True,
    detect_section_headers: bool = True,
    min_symptom_length: int = MIN_SYMPTOM_LENGTH,
):
    """
    Match symptom master rows against one note.

    Returns (matches, organized). Each symptom_id matches at most once
    per note.
    """
    if not note_text or not isinstance(note_text, str) or not symptom_database:
        return [], {}

    normalized = normalize_text(note_text)
    sections = identify_sections(normalized) if detect_section_headers else []
    explicit_lists = extract_explicit_symptoms(normalized)

    if not sections:
        sections = [{"type": "default", "text": normalized, "start_index": 0, "end_index": len(normalized)}]

    matches = []
    matched_ids = set()

    for section in sections:
        if section["type"] in SKIPPED_SECTIONS:
            continue

        section_text = section["text"]
        section_type = section["type"]

        for symptom in symptom_database:
            segment = symptom.get("symptom_segment")
            if (not isinstance(segment, str) or len(segment) < min_symptom_length
                    or symptom.get("symptom_id") in matched_ids):
                continue

            needle = segment.lower()

            explicit = None
            for entry in explicit_lists:
                if any(needle in s.lower() or s.lower() in needle for s in entry["symptoms"]):
                    explicit = entry
                    break

            if explicit is not None:
                position = normalized.find(needle)
                matches.append(_build_match(
                    symptom, EXPLICIT_CONFIDENCE, "explicit_symptom_list", section_type,
                    max(position, 0), reporting_context=explicit["context"],
                ))
                matched_ids.add(symptom.get("symptom_id"))
                continue

            if use_word_boundaries:
                found = re.search(r"\b" + re.escape(needle) + r"\b", section_text) is not None
            else:
                found = needle in section_text

            if not found:
                continue

            if consider_negation and check_for_negation(section_text, needle):
                continue

            position = normalized.find(needle, section["start_index"])
            matches.append(_build_match(
                symptom, CONTEXT_CONFIDENCE, "section_context_match", section_type, position,
            ))
            matched_ids.add(symptom.get("symptom_id"))

    return matches, organize_symptom_matches(matches)
