# Pivot table module

"""
Value × date pivot tables over extracted symptoms, the input of every
heatmap, bubble and bar chart.

Repeated rows for the same mention are counted once: the dedup key is the
patient, the lower-cased value, the service date and the position of the
mention in the note (plus diagnosis and category for the diagnosis and
category pivots, so one symptom can count toward several diagnoses).
"""

import logging
from collections import Counter, defaultdict

import pandas as pd

from src.cache import cached_query
from src.hrsn import is_hrsn_record
from src.models import get_session, ExtractedSymptom

MAX_ITEMS = 400

PIVOT_COLUMNS = {
    "symptom": "symptom_segment",
    "diagnosis": "diagnosis",
    "category": "diagnostic_category",
    "hrsn": "symptom_segment",
}

RECORD_FIELDS = (
    "patient_id", "dos_date", "symptom_segment", "symptom_id", "diagnosis",
    "diagnosis_icd10_code", "diagnostic_category", "symp_prob", "zcode_hrsn", "position_in_text",
)


def empty_pivot() -> dict:
    return {"columns": [], "rows": [], "data": {}}


def format_date(value) -> str:
    """M/D/YY, e.g. 3/7/25."""
    if not value:
        return "1/1/24"
    try:
        ts = pd.Timestamp(value)
    except (ValueError, TypeError):
        logging.error(f"Error formatting date: {value}")
        return "1/1/24"
    return f"{ts.month}/{ts.day}/{ts.strftime('%y')}"


def _date_sort_key(label: str):
    month, day, year = (int(p) for p in label.split("/"))
    return year, month, day


def _keeps_row(record: dict, pivot_type: str) -> bool:
    if pivot_type == "hrsn":
        return record.get("zcode_hrsn") == "ZCode/HRSN" or record.get("symp_prob") == "Problem"
    return record.get("symp_prob") == "Symptom"


def dedup_key(record: dict, pivot_type: str) -> str:
    value = str(record[PIVOT_COLUMNS[pivot_type]]).lower()
    key = f"{record.get('patient_id')}-{value}-{format_date(record.get('dos_date'))}-{record.get('position_in_text') or 0}"
    if pivot_type in ("diagnosis", "category"):
        key += f"-{record.get('diagnosis') or 'unknown'}-{record.get('diagnostic_category') or 'unknown'}"
    return key


def build_pivot_frame(records: list, pivot_type: str, max_items: int = MAX_ITEMS) -> dict:
    """
    Aggregate symptom records into {"columns": dates, "rows": values,
    "data": {value: {date: count}}}. Only the `max_items` most frequent
    values are kept; every row has an entry for every date.
    """
    if pivot_type not in PIVOT_COLUMNS:
        raise ValueError(f"Invalid pivot type: {pivot_type}")

    column = PIVOT_COLUMNS[pivot_type]
    kept = [
        r for r in records
        if r.get(column) not in (None, "") and _keeps_row(r, pivot_type)
    ]
    if not kept:
        return empty_pivot()

    seen = set()
    unique = []
    for record in kept:
        key = dedup_key(record, pivot_type)
        if key in seen:
            continue
        seen.add(key)
        unique.append(record)

    totals = Counter(r[column] for r in unique)
    top_values = {value for value, _ in totals.most_common(max_items)}

    counts = defaultdict(Counter)
    for record in unique:
        if record[column] in top_values:
            counts[record[column]][format_date(record.get("dos_date"))] += 1

    dates = sorted({format_date(r.get("dos_date")) for r in kept}, key=_date_sort_key)
    rows = [value for value, _ in totals.most_common(max_items)]

    logging.info(f"Aggregated to {len(rows)} unique {pivot_type} values for visualization")
    return {
        "columns": dates,
        "rows": rows,
        "data": {value: {d: counts[value].get(d, 0) for d in dates} for value in rows},
    }


def _query_records(session, user_id=None, patient_id=None) -> list:
    query = session.query(ExtractedSymptom)
    if user_id is not None:
        query = query.filter(ExtractedSymptom.user_id == user_id)
    if patient_id:
        if isinstance(patient_id, (list, tuple, set)):
            query = query.filter(ExtractedSymptom.patient_id.in_(list(patient_id)))
        else:
            query = query.filter(ExtractedSymptom.patient_id == patient_id)
    return [{f: getattr(row, f) for f in RECORD_FIELDS} for row in query.all()]


def generate_pivot_data(pivot_type: str, patient_id=None, user_id: int = None, session=None) -> dict:
    if pivot_type not in PIVOT_COLUMNS:
        raise ValueError(f"Invalid pivot type: {pivot_type}")

    own_session = session is None
    session = session or get_session()
    try:
        records = _query_records(session, user_id=user_id, patient_id=patient_id)
        logging.info(f"Found {len(records)} raw records for {pivot_type} pivot")
        return build_pivot_frame(records, pivot_type)
    finally:
        if own_session:
            session.close()


@cached_query("pivot")
def cached_pivot_data(pivot_type: str, patient_id=None, user_id: int = None) -> dict:
    return generate_pivot_data(pivot_type, patient_id=patient_id, user_id=user_id)


def build_hrsn_pivot(records: list) -> dict:
    """
    {"rows": sorted HRSN codes, "<YYYY-MM-DD>": {code: count}} over every
    record that qualifies as HRSN.
    """
    pivot = {"rows": []}
    counts = defaultdict(Counter)
    for record in records:
        code = record.get("symptom_segment")
        if not code or not is_hrsn_record(record):
            continue
        day = pd.Timestamp(record["dos_date"]).strftime("%Y-%m-%d")
        counts[day][code] += 1

    codes = set()
    for day in sorted(counts):
        pivot[day] = dict(counts[day])
        codes.update(counts[day])
    pivot["rows"] = sorted(codes)
    return pivot


def get_hrsn_pivot(patient_id, user_id: int = None, session=None) -> dict:
    own_session = session is None
    session = session or get_session()
    try:
        records = _query_records(session, user_id=user_id, patient_id=patient_id)
        pivot = build_hrsn_pivot(records)
        if not pivot["rows"]:
            logging.info(f"No HRSN data found for patient {patient_id}")
        return pivot
    finally:
        if own_session:
            session.close()


def pivot_to_dataframe(pivot: dict) -> pd.DataFrame:
    if not pivot.get("rows"):
        return pd.DataFrame()
    df = pd.DataFrame.from_dict(pivot["data"], orient="index")
    return df.reindex(index=pivot["rows"], columns=pivot["columns"]).fillna(0).astype(int)
