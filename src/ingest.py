# Data ingestion module

"""
Upload ingestion: reads clinician CSV / Excel files, works out which column
holds which field, and turns rows into patient and note records.
"""

import hashlib
import logging
import os
import re
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta

import pandas as pd


MIN_NOTE_LENGTH = 10
LONG_TEXT_THRESHOLD = 50
EXCEL_EPOCH = date(1899, 12, 30)
EXCEL_EXTENSIONS = (".xlsx", ".xls")


class UploadError(Exception):
    """Raised when an uploaded file cannot be read or mapped."""


FIELD_CANDIDATES = {
    "patient_id": ["patient_id", "patientid", "patient_identifier", "medical_record_number", "mrn", "patient", "id"],
    "patient_name": ["patient_name", "patientname", "patient name", "name"],
    "note_id": ["note_id", "noteid", "clinical_note_id", "record_id", "encounter_id"],
    "dos_date": ["dos_date", "date_of_service", "service_date", "visitdate", "encounter_date", "notedate", "date"],
    "note_text": ["note_text", "notetext", "clinical_note", "narrative", "note", "text", "content", "findings"],
    "provider_id": ["provider_id", "providerid", "physician_id", "physicianid", "provider", "doctor"],
    "provider_name": ["provider_name", "providername", "physician_name"],
    "age_range": ["age_range", "patient_age", "age_years", "age"],
    "gender": ["gender", "sex", "patient_gender", "patient_sex"],
    "race": ["race", "patient_race", "racial_background"],
    "ethnicity": ["ethnicity", "ethnic_background", "patient_ethnicity"],
    "zip_code": ["zip_code", "zipcode", "postal_code", "patient_zip", "zip"],
    "financial_status": ["financial_status", "socioeconomic_status", "income_level", "financial_stability"],
    "housing_insecurity": ["housing_insecurity", "housing_status", "housing_instability", "housing"],
    "food_insecurity": ["food_insecurity", "food_status", "nutrition_access", "food_stability", "food_access"],
    "veteran_status": ["veteran_status", "military_status", "is_veteran"],
    "education_level": ["education_level", "academic_level", "highest_education", "education"],
    "access_to_transportation": ["access_to_transportation", "transportation_access", "transportation", "transport"],
    "has_a_car": ["has_a_car", "owns_car", "has_vehicle", "car_ownership"],
}

PATIENT_FIELDS = [
    "age_range", "gender", "race", "ethnicity", "zip_code", "financial_status",
    "housing_insecurity", "food_insecurity", "veteran_status", "education_level",
    "access_to_transportation", "has_a_car",
]


@dataclass
class ProcessedUpload:
    patients: list = field(default_factory=list)
    notes: list = field(default_factory=list)
    record_count: int = 0
    patient_count: int = 0
    skipped_rows: int = 0
    field_mapping: dict = field(default_factory=dict)


# ==============================
# FILE READING
# ==============================

def load_upload(path: str) -> pd.DataFrame:
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    try:
        if path.lower().endswith(EXCEL_EXTENSIONS):
            df = pd.read_excel(path, sheet_name=0, dtype=str)
        else:
            df = pd.read_csv(path, dtype=str, keep_default_na=False, skip_blank_lines=True,
                             encoding="utf-8-sig")
    except (ValueError, UnicodeDecodeError, pd.errors.ParserError) as e:
        raise UploadError(f"Could not process file {os.path.basename(path)}: {e}") from e

    df = df.fillna("")
    df.columns = [str(c).lstrip("\ufeff").strip() for c in df.columns]
    df = df.apply(lambda col: col.str.strip())
    # drop rows where every cell is empty
    df = df[(df != "").any(axis=1)].reset_index(drop=True)

    logging.info(f"📄 Loaded {len(df)} rows and {len(df.columns)} columns from {os.path.basename(path)}")
    return df


def file_md5(path: str) -> str:
    hash_obj = hashlib.md5()
    with open(path, "rb") as fh:
        for chunk in iter(lambda: fh.read(65536), b""):
            hash_obj.update(chunk)
    return hash_obj.hexdigest()


# ==============================
# FIELD DETECTION
# ==============================

def _find_matching_column(candidates: list, columns: list, claimed: set):
    available = [c for c in columns if c not in claimed]
    for name in candidates:
        for col in available:
            if col.lower() == name:
                return col
    for name in candidates:
        for col in available:
            if name in col.lower():
                return col
    return None


def detect_fields(columns: list, sample_rows: list = None) -> dict:
    """
    Map logical field names onto the upload's columns: exact
    case-insensitive matches first, then substring matches. Each column is
    claimed by one field at most.
    """
    mapping = {}
    claimed = set()

    # exact matches across every field before any substring guess
    for field_name, candidates in FIELD_CANDIDATES.items():
        for name in candidates:
            exact = next((c for c in columns if c.lower() == name and c not in claimed), None)
            if exact:
                mapping[field_name] = exact
                claimed.add(exact)
                break

    for field_name, candidates in FIELD_CANDIDATES.items():
        if field_name in mapping:
            continue
        match = _find_matching_column(candidates, columns, claimed)
        if match:
            mapping[field_name] = match
            claimed.add(match)

    if "note_text" not in mapping and sample_rows:
        sample = sample_rows[:5]
        best_column, best_length = None, LONG_TEXT_THRESHOLD
        for col in columns:
            if col in claimed:
                continue
            avg_length = sum(len(str(row.get(col) or "")) for row in sample) / len(sample)
            if avg_length > best_length:
                best_column, best_length = col, avg_length
        if best_column:
            mapping["note_text"] = best_column
            logging.info(f"Auto-detected note_text field from content length: {best_column}")

    return mapping


# ==============================
# DATE PARSING
# ==============================

def parse_service_date(value, today: date = None) -> date:
    fallback = today or date.today()

    if value is None:
        return fallback
    if isinstance(value, pd.Timestamp):
        return fallback if pd.isna(value) else value.date()
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value

    text = str(value).strip()
    if not text:
        return fallback

    try:
        if re.fullmatch(r"\d{1,2}/\d{1,2}/\d{4}", text):
            return datetime.strptime(text, "%m/%d/%Y").date()
        if re.fullmatch(r"\d{4}-\d{1,2}-\d{1,2}", text):
            return datetime.strptime(text, "%Y-%m-%d").date()
        if re.fullmatch(r"\d{4}-\d{1,2}-\d{1,2}[ T].*", text):
            return datetime.strptime(text[:10], "%Y-%m-%d").date()
        if re.fullmatch(r"\d+(\.\d+)?", text):
            return EXCEL_EPOCH + timedelta(days=int(float(text)))
    except (ValueError, OverflowError):
        pass

    logging.warning(f"Could not parse date '{text}', using {fallback}")
    return fallback


# ==============================
# ROW PROCESSING
# ==============================

def _cell(row: dict, column):
    if not column:
        return None
    value = row.get(column)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def process_file_data(df: pd.DataFrame, user_id: int = None, field_mapping: dict = None,
                      today: date = None) -> ProcessedUpload:
    """
    Turn upload rows into patient and note records. One patient record per
    patient_id (first row wins); rows with too little note text still
    create the patient but no note.
    """
    rows = df.to_dict(orient="records")
    columns = list(df.columns)
    mapping = field_mapping or detect_fields(columns, rows)

    if not mapping.get("note_text"):
        raise UploadError("Note text field could not be detected. Please provide a field mapping.")
    if not mapping.get("patient_id"):
        logging.warning("Patient ID field not detected. Using row index as patient ID.")
    if not mapping.get("dos_date"):
        logging.warning("Date of Service field not detected. Using current date.")

    mapped_columns = set(mapping.values())
    result = ProcessedUpload(field_mapping=mapping)
    patients_by_id = {}

    for i, row in enumerate(rows):
        patient_id = _cell(row, mapping.get("patient_id")) or f"patient-{i + 1}"
        note_text = _cell(row, mapping.get("note_text")) or ""

        if patient_id not in patients_by_id:
            patient = {
                "patient_id": patient_id,
                "patient_name": _cell(row, mapping.get("patient_name")) or f"Patient {patient_id}",
                "provider_id": _cell(row, mapping.get("provider_id")),
                "provider_name": _cell(row, mapping.get("provider_name")),
                "user_id": user_id,
                "additional_fields": {
                    k: str(v).strip() for k, v in row.items()
                    if k not in mapped_columns and v is not None and str(v).strip()
                },
            }
            for name in PATIENT_FIELDS:
                patient[name] = _cell(row, mapping.get(name))
            patients_by_id[patient_id] = patient
            result.patients.append(patient)

        if len(note_text) < MIN_NOTE_LENGTH:
            result.skipped_rows += 1
            continue

        result.notes.append({
            "patient_id": patient_id,
            "note_id": _cell(row, mapping.get("note_id")),
            "dos_date": parse_service_date(_cell(row, mapping.get("dos_date")), today=today),
            "note_text": note_text,
            "provider_id": _cell(row, mapping.get("provider_id")),
            "user_id": user_id,
        })

    result.record_count = len(result.notes)
    result.patient_count = len(result.patients)

    logging.info(f"Processed {result.record_count} notes for {result.patient_count} patients "
                 f"({result.skipped_rows} rows without usable note text)")
    return result
