# Symptom extraction module

"""
Symptom Extraction Module
-------------------------
Runs the context-aware symptom matcher over a batch of clinical notes and
attaches the HRSN screening result of each note to every symptom row it
produces.

This module is intentionally stateless and DB-agnostic.
"""

import logging
from collections import defaultdict
from dataclasses import dataclass, field
from datetime import date

from src.hrsn import extract_hrsn_from_note, hrsn_status_columns
from src.symptom_matcher import refined_symptom_matcher

# ==============================
# CONFIG
# ==============================

VERSION_ID = "v3.2"
EXTRACTION_METHOD = "context_aware_matching"

VERSION_INFO = {
    "version": VERSION_ID,
    "name": "Context-Aware Symptom Extractor",
    "description": "Symptom extraction organized by segment, diagnosis, category and ICD-10 code",
    "release_date": "2025-05-19",
    "features": [
        "Reporting phrases such as 'patient reports' mark explicit symptom lists",
        "Negation detection with reporting-phrase overrides",
        "Medication, plan and allergy sections are ignored",
        "Works with structured and unstructured notes",
    ],
    "parameters": {
        "consider_negation": "Drop symptoms preceded by a negation cue (default: True)",
        "use_word_boundaries": "Require symptoms to appear as whole words (default: True)",
        "debug": "Return organization data alongside the rows (default: False)",
    },
}


@dataclass
class ExtractionResult:
    extracted: list
    organization: dict = field(default_factory=dict)
    version: str = VERSION_ID
    total_extracted: int = 0
    failed: list = field(default_factory=list)  # (patient_id, note_id) of notes that raised


# ==============================
# MAIN EXTRACTION FUNCTION
# ==============================

def extract_symptoms(
    notes: list,
    symptom_master: list,
    consider_negation: bool = True,
    use_word_boundaries: bool = True,
    debug: bool = False,
) -> ExtractionResult:
    """
    Extract symptom rows from clinical notes.

    Each note is a dict with at least patient_id and note_text; note_id,
    dos_date, patient_name, provider_id and user_id are carried through
    when present.
    """
    extracted = []
    failed = []
    processed = set()
    organization = defaultdict(lambda: defaultdict(list))

    for index, note in enumerate(notes):
        if not note or not note.get("note_text") or not note.get("patient_id"):
            continue

        patient_id = str(note["patient_id"])
        note_id = str(note.get("note_id") or f"note_{index}")
        note_key = (patient_id, note_id)
        if note_key in processed:
            continue
        processed.add(note_key)

        dos_date = note.get("dos_date") or date.today()

        try:
            matches, organized = refined_symptom_matcher(
                note["note_text"],
                symptom_master,
                consider_negation=consider_negation,
                use_word_boundaries=use_word_boundaries,
            )
            status = hrsn_status_columns(extract_hrsn_from_note(note["note_text"]))
        except Exception as e:
            logging.error(f"❌ Error processing note {note_id} for patient {patient_id}: {e}")
            failed.append(note_key)
            continue

        if debug:
            for grouping, groups in organized.items():
                for key, grouped in groups.items():
                    organization[grouping][key].extend(grouped)

        for match in matches:
            row = {
                "patient_id": patient_id,
                "patient_name": note.get("patient_name"),
                "provider_id": note.get("provider_id"),
                "user_id": note.get("user_id"),
                "note_id": note_id,
                "dos_date": dos_date,
                "symptom_id": match["symptom_id"],
                "symptom_segment": match["symptom_segment"],
                "diagnosis": match["diagnosis"],
                "diagnosis_icd10_code": match["diagnosis_icd10_code"],
                "diagnostic_category": match["diagnostic_category"],
                "symp_prob": match["symp_prob"],
                "zcode_hrsn": match["zcode_hrsn"],
                "confidence": match["confidence"],
                "match_type": match["match_type"],
                "section_type": match["section_type"],
                "position_in_text": match["position_in_text"],
                "extraction_version": VERSION_ID,
                "extraction_method": EXTRACTION_METHOD,
            }
            row.update(status)
            extracted.append(row)

    return ExtractionResult(
        extracted=extracted,
        organization={k: dict(v) for k, v in organization.items()} if debug else {},
        version=VERSION_ID,
        total_extracted=len(extracted),
        failed=failed,
    )


# ==============================
# REPORTING
# ==============================

def _summarize_names(names: list, limit: int = 3) -> str:
    shown = ", ".join(names[:limit])
    if len(names) > limit:
        shown += f" and {len(names) - limit} more"
    return shown


def generate_extraction_report(result: ExtractionResult) -> str:
    lines = [f"# Symptom Extraction Report ({result.version})", "",
             f"Total symptoms extracted: {result.total_extracted}", ""]

    organization = result.organization
    if not organization:
        return "\n".join(lines)

    lines += ["## Symptoms by Segment", ""]
    for segment, matches in organization.get("by_symptom_segment", {}).items():
        match_types = sorted({m["match_type"] for m in matches})
        avg_confidence = sum(m["confidence"] for m in matches) / len(matches)
        lines.append(f'- "{segment}" ({len(matches)} matches)')
        lines.append(f"  - Match types: {', '.join(match_types)}")
        lines.append(f"  - Confidence: {avg_confidence:.2f}")

    lines += ["", "## Symptoms by Diagnosis", ""]
    for diagnosis, matches in organization.get("by_diagnosis", {}).items():
        segments = list(dict.fromkeys(m["symptom_segment"] for m in matches))
        lines.append(f"- {diagnosis}: {len(matches)} matches")
        lines.append(f"  - Symptoms: {_summarize_names(segments)}")

    lines += ["", "## Symptoms by Diagnostic Category", ""]
    for category, matches in organization.get("by_category", {}).items():
        diagnoses = list(dict.fromkeys(m["diagnosis"] for m in matches))
        lines.append(f"- {category}: {len(matches)} matches")
        lines.append(f"  - Diagnoses: {_summarize_names(diagnoses)}")

    return "\n".join(lines)
