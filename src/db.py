# Database module using SQLAlchemy ORM

import hashlib
import logging
import os
import time
from datetime import datetime

import pandas as pd
from sqlalchemy import func
from sqlalchemy.exc import IntegrityError

from src.cache import query_cache
from src.demographics import enhance_records_with_demographics
from src.hrsn import extract_hrsn_from_note, merge_hrsn_data, patient_hrsn_fields
from src.ingest import file_md5, load_upload, parse_service_date, process_file_data
from src.models import (
    get_session,
    ExtractedSymptom,
    FileUpload,
    Note,
    Patient,
    ProcessLog,
    SymptomMaster,
)

# ==============================
# CONFIG
# ==============================

IMPORT_BATCH_SIZE = int(os.getenv("IMPORT_BATCH_SIZE", "200"))
NOTE_BATCH_SIZE = 1000

MASTER_KEY_FIELDS = ("symptom_id", "symptom_segment", "diagnosis", "diagnostic_category")
MASTER_UPDATE_FIELDS = ("diagnosis_icd10_code", "symp_prob", "zcode_hrsn", "hrsn_category")

# master CSV header -> column
MASTER_HEADER_ALIASES = {
    "symptomid": "symptom_id",
    "symptom_id": "symptom_id",
    "symptomsegment": "symptom_segment",
    "symptom_segment": "symptom_segment",
    "diagnosis": "diagnosis",
    "diagnosticcategory": "diagnostic_category",
    "diagnostic_category": "diagnostic_category",
    "sympprob": "symp_prob",
    "symp_prob": "symp_prob",
    "diagnosis_icd-10_code": "diagnosis_icd10_code",
    "diagnosis_icd10_code": "diagnosis_icd10_code",
    "zcode_hrsn": "zcode_hrsn",
    "z_code_hrsn": "zcode_hrsn",
    "hrsn_category": "hrsn_category",
}

PATIENT_COLUMNS = {c.name for c in Patient.__table__.columns} - {"id"}


class DuplicateUploadError(Exception):
    """Raised when the same file content was already imported for a user."""


# ==============================
# SYMPTOM MASTER IMPORT
# ==============================

def load_symptom_master_csv(path: str) -> list:
    if not os.path.exists(path):
        raise FileNotFoundError(f"File not found: {path}")

    df = pd.read_csv(path, dtype=str, keep_default_na=False, encoding="utf-8-sig")
    renamed = {}
    for col in df.columns:
        key = str(col).lstrip("\ufeff").strip().lower()
        if key in MASTER_HEADER_ALIASES:
            renamed[col] = MASTER_HEADER_ALIASES[key]
    df = df.rename(columns=renamed)[list(renamed.values())]

    records = []
    for row in df.to_dict(orient="records"):
        records.append({k: (v.strip() or None) for k, v in row.items()})
    logging.info(f"Parsed {len(records)} total records from {os.path.basename(path)}")
    return records


def master_key(record: dict) -> str:
    return "|".join(str(record.get(f) or "") for f in MASTER_KEY_FIELDS)


def dedupe_master_records(records: list) -> list:
    """Keep the first record for each (symptom_id, segment, diagnosis, category)."""
    unique = {}
    for record in records:
        unique.setdefault(master_key(record), record)
    return list(unique.values())


def import_symptom_master(source, batch_size: int = IMPORT_BATCH_SIZE) -> dict:
    """
    Upsert symptom master rows from a CSV path or a list of dicts: new keys
    are inserted, existing keys get their classification columns updated.
    """
    records = load_symptom_master_csv(source) if isinstance(source, str) else list(source)
    unique = [r for r in dedupe_master_records(records)
              if r.get("symptom_id") and r.get("symptom_segment")]
    stats = {"inserted": 0, "updated": 0, "duplicates": len(records) - len(unique), "errors": 0}
    logging.info(f"Deduplicated {len(records)} records to {len(unique)} unique records")

    session = get_session()
    try:
        existing = {master_key({f: getattr(m, f) for f in MASTER_KEY_FIELDS}): m
                    for m in session.query(SymptomMaster).all()}

        total_batches = (len(unique) + batch_size - 1) // batch_size
        for batch_no, start in enumerate(range(0, len(unique), batch_size), start=1):
            batch = unique[start:start + batch_size]
            inserted = updated = 0
            try:
                for record in batch:
                    key = master_key(record)
                    row = existing.get(key)
                    if row is None:
                        row = SymptomMaster(**{f: record.get(f) for f in MASTER_KEY_FIELDS + MASTER_UPDATE_FIELDS})
                        session.add(row)
                        existing[key] = row
                        inserted += 1
                    else:
                        for f in MASTER_UPDATE_FIELDS:
                            if record.get(f) is not None:
                                setattr(row, f, record[f])
                        updated += 1
                session.commit()
                stats["inserted"] += inserted
                stats["updated"] += updated
                logging.info(f"Batch {batch_no}/{total_batches}: Inserted {inserted}, Updated {updated}")
            except IntegrityError as e:
                session.rollback()
                stats["errors"] += 1
                logging.error(f"❌ Error processing batch {batch_no}: {e}")
                # rebuild the key map; rolled-back rows are gone
                existing = {master_key({f: getattr(m, f) for f in MASTER_KEY_FIELDS}): m
                            for m in session.query(SymptomMaster).all()}

        logging.info(f"✅ Symptom master import complete: {stats}")
        return stats
    finally:
        session.close()


def get_symptom_master(session=None) -> list:
    own_session = session is None
    session = session or get_session()
    try:
        return [
            {
                "symptom_id": m.symptom_id,
                "symptom_segment": m.symptom_segment,
                "diagnosis": m.diagnosis,
                "diagnosis_icd10_code": m.diagnosis_icd10_code,
                "diagnostic_category": m.diagnostic_category,
                "symp_prob": m.symp_prob,
                "zcode_hrsn": m.zcode_hrsn,
                "hrsn_category": m.hrsn_category,
            }
            for m in session.query(SymptomMaster).order_by(SymptomMaster.id).all()
        ]
    finally:
        if own_session:
            session.close()

# ==============================
# PATIENTS AND NOTES
# ==============================

def note_hash(note: dict) -> str:
    key = f"{note.get('user_id')}|{note['patient_id']}|{note['dos_date']}|{note['note_text']}"
    return hashlib.md5(key.encode()).hexdigest()


def fill_hrsn_from_notes(patients: list, notes: list) -> list:
    """
    Screen each patient's notes for HRSN keywords and use the findings for
    HRSN columns the upload left empty.
    """
    findings = {}
    for note in notes:
        found = patient_hrsn_fields(extract_hrsn_from_note(note["note_text"]))
        findings.setdefault(note["patient_id"], {}).update(found)

    return [
        merge_hrsn_data(patient, findings[patient["patient_id"]]) if patient["patient_id"] in findings else patient
        for patient in patients
    ]


def save_patients(patients: list, session) -> dict:
    """
    Insert new patients; for known patients only fill fields that are empty.
    Patients are owned per user: the same patient_id under another user is a
    separate row.
    """
    stats = {"inserted": 0, "updated": 0}
    existing = {}
    for user_id in {p.get("user_id") for p in patients}:
        ids = [p["patient_id"] for p in patients if p.get("user_id") == user_id]
        query = session.query(Patient).filter(Patient.patient_id.in_(ids),
                                              Patient.user_id.is_not_distinct_from(user_id))
        existing.update({(p.patient_id, user_id): p for p in query.all()})

    for record in patients:
        values = {k: v for k, v in record.items() if k in PATIENT_COLUMNS}
        if isinstance(values.get("date_of_birth"), str):
            values["date_of_birth"] = parse_service_date(values["date_of_birth"])

        key = (record["patient_id"], record.get("user_id"))
        patient = existing.get(key)
        if patient is None:
            patient = Patient(**values)
            session.add(patient)
            existing[key] = patient
            stats["inserted"] += 1
            continue

        changed = False
        for k, v in values.items():
            if v not in (None, "", {}) and getattr(patient, k) in (None, ""):
                setattr(patient, k, v)
                changed = True
        stats["updated"] += int(changed)

    session.flush()
    return stats


def save_notes(notes: list, session, batch_size: int = NOTE_BATCH_SIZE) -> dict:
    """Insert notes, skipping any whose content hash is already stored."""
    stats = {"inserted": 0, "skipped": 0}
    seen = set()

    for start in range(0, len(notes), batch_size):
        batch = notes[start:start + batch_size]
        hashes = [note_hash(n) for n in batch]
        existing = {h for (h,) in session.query(Note.note_hash).filter(Note.note_hash.in_(hashes)).all()}

        for note, digest in zip(batch, hashes):
            if digest in existing or digest in seen:
                stats["skipped"] += 1
                continue
            seen.add(digest)
            session.add(Note(
                patient_id=note["patient_id"],
                dos_date=note["dos_date"],
                note_text=note["note_text"],
                provider_id=note.get("provider_id"),
                user_id=note.get("user_id"),
                note_hash=digest,
                processed_flag="FALSE",
            ))
            stats["inserted"] += 1
        session.flush()

    return stats


def _log_process(session, user_id, file_name, outcome, started, expected=None, actual=None,
                 duplicates=0, reason=None):
    ended = datetime.utcnow()
    session.add(ProcessLog(
        user_id=user_id,
        category="file_upload",
        process_type="csv_upload" if not file_name.lower().endswith((".xlsx", ".xls")) else "excel_upload",
        file_name=file_name,
        outcome=outcome,
        processing_time_ms=int((ended - started).total_seconds() * 1000),
        expected_records=expected,
        actual_records=actual,
        duplicates_found=duplicates,
        reason_for_failure=reason,
        start_time=started,
        end_time=ended,
    ))
    session.commit()


def import_upload(path: str, user_id: int = None, overwrite: bool = False,
                  enrich_demographics: bool = False, field_mapping: dict = None) -> dict:
    """
    Import one uploaded CSV / Excel file: dedupe by content hash, map
    fields, store patients and notes, and record the upload.
    """
    started = datetime.utcnow()
    clock = time.monotonic()
    file_name = os.path.basename(path)
    digest = file_md5(path)

    session = get_session()
    try:
        previous = session.query(FileUpload).filter(
            FileUpload.file_hash == digest,
            FileUpload.user_id == user_id,
        ).first()
        if previous and not overwrite:
            raise DuplicateUploadError(f"{file_name} was already imported on {previous.upload_date:%Y-%m-%d}")

        df = load_upload(path)
        processed = process_file_data(df, user_id=user_id, field_mapping=field_mapping)

        patients = fill_hrsn_from_notes(processed.patients, processed.notes)
        if enrich_demographics:
            patients = enhance_records_with_demographics(patients)

        patient_stats = save_patients(patients, session)
        note_stats = save_notes(processed.notes, session)

        session.add(FileUpload(
            file_name=file_name,
            file_type=os.path.splitext(file_name)[1].lstrip(".").lower() or "csv",
            processed_status=True,
            record_count=note_stats["inserted"],
            patient_count=processed.patient_count,
            user_id=user_id,
            file_hash=digest,
            file_size=os.path.getsize(path),
            processing_time_ms=int((time.monotonic() - clock) * 1000),
        ))
        session.commit()

        outcome = "success" if note_stats["skipped"] == 0 else "partial_success"
        _log_process(session, user_id, file_name, outcome, started,
                     expected=processed.record_count, actual=note_stats["inserted"],
                     duplicates=note_stats["skipped"])

        query_cache.invalidate(user_id=user_id)

        summary = {
            "file_name": file_name,
            "file_hash": digest,
            "patients_inserted": patient_stats["inserted"],
            "patients_updated": patient_stats["updated"],
            "notes_inserted": note_stats["inserted"],
            "notes_skipped": note_stats["skipped"],
            "rows_without_notes": processed.skipped_rows,
            "patient_count": processed.patient_count,
            "field_mapping": processed.field_mapping,
        }
        logging.info(f"✅ Import completed: {summary['notes_inserted']} notes, "
                     f"{summary['patient_count']} patients from {file_name}")
        return summary

    except DuplicateUploadError:
        session.rollback()
        raise
    except Exception as e:
        session.rollback()
        logging.error(f"❌ Error importing {file_name}: {e}")
        try:
            _log_process(session, user_id, file_name, "failure", started, reason=str(e))
        except Exception as log_error:
            session.rollback()
            logging.error(f"❌ Could not record failed import: {log_error}")
        raise
    finally:
        session.close()

# ==============================
# QUERIES USING ORM
# ==============================

def get_patient_notes(patient_id: str, user_id: int = None):
    """Notes for one patient, oldest first"""
    session = get_session()
    try:
        query = session.query(Note).filter(Note.patient_id == patient_id)
        if user_id is not None:
            query = query.filter(Note.user_id == user_id)
        return query.order_by(Note.dos_date).all()
    finally:
        session.close()


def get_notes_by_date_range(start_date, end_date, user_id: int = None):
    """Query notes by date-of-service range using ORM"""
    session = get_session()
    try:
        query = session.query(Note).filter(Note.dos_date >= start_date, Note.dos_date <= end_date)
        if user_id is not None:
            query = query.filter(Note.user_id == user_id)
        return query.order_by(Note.dos_date).all()
    finally:
        session.close()


def get_symptom_counts_by_patient(user_id: int = None):
    """Count of extracted symptoms grouped by patient using ORM"""
    session = get_session()
    try:
        query = session.query(
            ExtractedSymptom.patient_id,
            func.count(ExtractedSymptom.id).label('count')
        )
        if user_id is not None:
            query = query.filter(ExtractedSymptom.user_id == user_id)
        return query.group_by(ExtractedSymptom.patient_id).all()
    finally:
        session.close()


def escape_like(value: str) -> str:
    """Escape LIKE wildcards so a search term matches literally."""
    return value.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")


def search_patients(search_type: str = "individual", match_type: str = "exact", patient_id: str = None,
                    patient_name: str = None, provider_name: str = None, user_id: int = None) -> list:
    """
    Individual searches need a patient id or name; population searches
    return every patient matching the optional filters.
    """
    if search_type not in ("individual", "population"):
        raise ValueError(f"Invalid search type: {search_type}")
    if match_type not in ("exact", "partial"):
        raise ValueError(f"Invalid match type: {match_type}")
    if search_type == "individual" and not (patient_id or patient_name):
        raise ValueError("Individual search requires a patient id or patient name")

    def matches(column, value):
        if match_type == "exact":
            return column == value
        return func.lower(column).like(f"%{escape_like(value.lower())}%", escape="\\")

    session = get_session()
    try:
        query = session.query(Patient)
        if user_id is not None:
            query = query.filter(Patient.user_id == user_id)
        if patient_id:
            query = query.filter(matches(Patient.patient_id, patient_id))
        if patient_name:
            query = query.filter(matches(Patient.patient_name, patient_name))
        if provider_name:
            query = query.filter(matches(Patient.provider_name, provider_name))
        return query.order_by(Patient.patient_id).all()
    finally:
        session.close()


def match_scheduled_patients(scheduled: list, user_id: int = None) -> dict:
    """
    Match a schedule (dicts with patient_id / patient_name) against stored
    patients: id+name exact first, then id alone, then partial name.
    """
    results = []

    for entry in scheduled:
        pid = entry.get("patient_id")
        name = entry.get("patient_name")
        result = {"scheduled": entry, "matched": None, "status": "not_found", "confidence": 0.0}

        if pid and name:
            found = search_patients(patient_id=pid, patient_name=name, user_id=user_id)
            if found:
                result.update(matched=found[0], status="found", confidence=1.0)
                results.append(result)
                continue

        if pid:
            found = search_patients(patient_id=pid, user_id=user_id)
            if len(found) == 1:
                result.update(matched=found[0], status="found", confidence=0.8)
                results.append(result)
                continue
            if len(found) > 1:
                result.update(status="multiple_matches")
                results.append(result)
                continue

        if name:
            found = search_patients(match_type="partial", patient_name=name, user_id=user_id)
            if len(found) == 1:
                result.update(matched=found[0], status="found", confidence=0.6)
            elif len(found) > 1:
                result.update(status="multiple_matches")

        results.append(result)

    summary = {
        "total": len(results),
        "found": sum(1 for r in results if r["status"] == "found"),
        "not_found": sum(1 for r in results if r["status"] == "not_found"),
        "multiple_matches": sum(1 for r in results if r["status"] == "multiple_matches"),
    }
    return {"matches": results, "summary": summary}


def get_database_stats(user_id: int = None) -> dict:
    session = get_session()
    try:
        def count(model):
            query = session.query(func.count(model.id))
            if user_id is not None:
                query = query.filter(model.user_id == user_id)
            return query.scalar() or 0

        processed = session.query(func.count(Note.id)).filter(Note.processed_flag == 'TRUE')
        if user_id is not None:
            processed = processed.filter(Note.user_id == user_id)

        return {
            "patients": count(Patient),
            "notes": count(Note),
            "processed_notes": processed.scalar() or 0,
            "extracted_symptoms": count(ExtractedSymptom),
            "uploads": count(FileUpload),
            "symptom_master": session.query(func.count(SymptomMaster.id)).scalar() or 0,
        }
    finally:
        session.close()


def get_patient_records(user_id: int = None) -> list:
    """Patient demographics as plain dicts, for reports and charts."""
    session = get_session()
    try:
        query = session.query(Patient)
        if user_id is not None:
            query = query.filter(Patient.user_id == user_id)
        return [
            {
                "patient_id": p.patient_id,
                "age_range": p.age_range,
                "gender": p.gender,
                "race": p.race,
                "ethnicity": p.ethnicity,
                "zip_code": p.zip_code,
            }
            for p in query.order_by(Patient.patient_id).all()
        ]
    finally:
        session.close()
