# Extracted symptom persistence using SQLAlchemy ORM

import hashlib
import logging
from datetime import datetime

from sqlalchemy.exc import IntegrityError

from src.models import get_session, ExtractedSymptom


COMPOSITE_KEY_FIELDS = (
    "patient_id", "symptom_id", "symptom_segment", "diagnosis",
    "diagnosis_icd10_code", "diagnostic_category", "symp_prob", "zcode_hrsn",
)

EXTRACTED_COLUMNS = {c.name for c in ExtractedSymptom.__table__.columns} - {"id", "created_timestamp"}


def composite_key(row: dict) -> str:
    """Pipe-joined identity of an extracted symptom row; missing values become ''."""
    return "|".join(str(row.get(f) or "") for f in COMPOSITE_KEY_FIELDS)


def mention_id_for(row: dict) -> str:
    # Same mention for the same user on the same day always hashes to the same id
    key = f"{composite_key(row)}|{row.get('dos_date') or ''}|{row.get('position_in_text') or 0}|{row.get('user_id')}"
    return hashlib.md5(key.encode()).hexdigest()[:20]


def _to_model(row: dict, now: datetime) -> ExtractedSymptom:
    values = {k: v for k, v in row.items() if k in EXTRACTED_COLUMNS}
    values["mention_id"] = row.get("mention_id") or mention_id_for(row)
    if values.get("note_id") is not None:
        values["note_id"] = str(values["note_id"])
    return ExtractedSymptom(created_timestamp=now, **values)


# --------------------------------------------------
# MAIN PERSISTENCE FUNCTION (using ORM)
# --------------------------------------------------
def persist_extracted_symptoms(rows: list, batch_size: int = 100, session=None) -> dict:
    """
    Insert extracted symptom rows in batches, skipping mentions that are
    already stored or repeated within `rows`.
    """
    own_session = session is None
    session = session or get_session()
    now = datetime.utcnow()
    stats = {"inserted": 0, "skipped": 0, "batches": 0}

    try:
        pending = []
        seen = set()
        for row in rows:
            mention_id = row.get("mention_id") or mention_id_for(row)
            if mention_id in seen:
                stats["skipped"] += 1
                continue
            seen.add(mention_id)
            pending.append(dict(row, mention_id=mention_id))

        for start in range(0, len(pending), batch_size):
            batch = pending[start:start + batch_size]
            ids = [r["mention_id"] for r in batch]

            existing = {
                m for (m,) in session.query(ExtractedSymptom.mention_id)
                .filter(ExtractedSymptom.mention_id.in_(ids)).all()
            }
            fresh = [r for r in batch if r["mention_id"] not in existing]
            stats["skipped"] += len(batch) - len(fresh)
            stats["batches"] += 1

            if not fresh:
                continue

            try:
                session.add_all([_to_model(r, now) for r in fresh])
                session.commit()
                stats["inserted"] += len(fresh)
            except IntegrityError:
                session.rollback()
                # Another writer got there first; fall back to row-by-row
                for r in fresh:
                    session.add(_to_model(r, now))
                    try:
                        session.commit()
                        stats["inserted"] += 1
                    except IntegrityError:
                        session.rollback()
                        stats["skipped"] += 1

        logging.info(f"✅ Inserted {stats['inserted']} extracted symptoms "
                     f"({stats['skipped']} skipped) in {stats['batches']} batches")
        return stats
    except Exception as e:
        session.rollback()
        logging.error(f"❌ Error inserting extracted symptoms: {e}")
        raise
    finally:
        if own_session:
            session.close()
