# Pipeline runner module using SQLAlchemy ORM

import argparse
import json
import logging
import sys

from sqlalchemy import and_

from src.cache import query_cache
from src.db import get_symptom_master, import_symptom_master, import_upload, DuplicateUploadError
from src.extract import extract_symptoms, generate_extraction_report
from src.features import persist_extracted_symptoms
from src.ingest import UploadError
from src.models import get_session, init_schema, Note, Patient


# --------------------------------------------------
# FETCH UNPROCESSED NOTES (using ORM)
# --------------------------------------------------
def fetch_unprocessed_notes(limit=50, user_id=None, session=None):
    """
    Notes whose processed_flag is not TRUE, oldest first, as plain dicts
    ready for extract_symptoms.
    """
    own_session = session is None
    session = session or get_session()
    try:
        query = (
            session.query(Note, Patient.patient_name)
            .join(Patient, and_(Patient.patient_id == Note.patient_id,
                                Patient.user_id.is_not_distinct_from(Note.user_id)))
            .filter((Note.processed_flag != 'TRUE') | (Note.processed_flag.is_(None)))
        )
        if user_id is not None:
            query = query.filter(Note.user_id == user_id)

        rows = query.order_by(Note.dos_date, Note.id).limit(limit).all()
        return [
            {
                "id": note.id,
                "note_id": str(note.id),
                "patient_id": note.patient_id,
                "patient_name": patient_name,
                "provider_id": note.provider_id,
                "user_id": note.user_id,
                "dos_date": note.dos_date,
                "note_text": note.note_text,
            }
            for note, patient_name in rows
        ]
    finally:
        if own_session:
            session.close()


# --------------------------------------------------
# MARK NOTE AS PROCESSED (using ORM)
# --------------------------------------------------
def mark_processed(note_ids: list, session=None):
    own_session = session is None
    session = session or get_session()
    try:
        session.query(Note).filter(Note.id.in_(note_ids)).update(
            {Note.processed_flag: 'TRUE'}, synchronize_session=False
        )
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        if own_session:
            session.close()


# --------------------------------------------------
# MAIN PIPELINE
# --------------------------------------------------
def process_notes(batch_size=50, user_id=None) -> dict:
    """
    Run symptom extraction over every unprocessed note, batch by batch.
    A note that fails is logged and left unprocessed; the rest of the
    batch carries on.
    """
    summary = {"notes_processed": 0, "notes_failed": 0, "symptoms_inserted": 0, "symptoms_skipped": 0}

    symptom_master = get_symptom_master()
    if not symptom_master:
        logging.warning("⚠️ Symptom master is empty, nothing to match against")
        return summary

    failed_ids = set()
    while True:
        notes = [n for n in fetch_unprocessed_notes(limit=batch_size + len(failed_ids), user_id=user_id)
                 if n["id"] not in failed_ids][:batch_size]
        if not notes:
            break

        logging.info(f"🔄 Processing {len(notes)} notes...")
        done = []
        for note in notes:
            try:
                result = extract_symptoms([note], symptom_master)
                if result.failed:
                    failed_ids.add(note["id"])
                    summary["notes_failed"] += 1
                    continue
                stats = persist_extracted_symptoms(result.extracted)
                summary["symptoms_inserted"] += stats["inserted"]
                summary["symptoms_skipped"] += stats["skipped"]
                done.append(note["id"])
            except Exception as e:
                failed_ids.add(note["id"])
                summary["notes_failed"] += 1
                logging.error(f"❌ Error processing note {note['id']}: {e}")

        if done:
            mark_processed(done)
            summary["notes_processed"] += len(done)

    if summary["notes_processed"]:
        query_cache.invalidate(user_id=user_id)

    if summary["notes_processed"] or summary["notes_failed"]:
        logging.info(f"✅ Extraction complete: {summary}")
    else:
        logging.info("✅ No unprocessed notes found.")
    return summary


# --------------------------------------------------
# CLI
# --------------------------------------------------
def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="bh-pipeline", description="Behavioral health notes pipeline")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("init-db", help="Create database tables")

    master = sub.add_parser("import-master", help="Import the symptom master CSV")
    master.add_argument("path")

    upload = sub.add_parser("upload", help="Import a CSV / Excel file of clinical notes")
    upload.add_argument("path")
    upload.add_argument("--user-id", type=int)
    upload.add_argument("--overwrite", action="store_true")
    upload.add_argument("--demographics", action="store_true", help="Fill missing demographics")

    extract = sub.add_parser("extract", help="Extract symptoms from unprocessed notes")
    extract.add_argument("--batch-size", type=int, default=50)
    extract.add_argument("--user-id", type=int)

    charts = sub.add_parser("charts", help="Render charts to the figures directory")
    charts.add_argument("--user-id", type=int)
    charts.add_argument("--output-dir")
    charts.add_argument("--upload", action="store_true", help="Copy figures to GCS_BUCKET")

    report = sub.add_parser("report", help="Print an extraction report for one note file")
    report.add_argument("path")

    return parser


def main(argv=None) -> int:
    logging.basicConfig(level=logging.INFO)
    args = build_parser().parse_args(argv)

    try:
        if args.command == "init-db":
            init_schema()
            logging.info("✅ Database schema ready")

        elif args.command == "import-master":
            print(json.dumps(import_symptom_master(args.path), indent=2))

        elif args.command == "upload":
            summary = import_upload(args.path, user_id=args.user_id, overwrite=args.overwrite,
                                    enrich_demographics=args.demographics)
            print(json.dumps(summary, indent=2, default=str))

        elif args.command == "extract":
            print(json.dumps(process_notes(batch_size=args.batch_size, user_id=args.user_id), indent=2))

        elif args.command == "charts":
            from src.analytics import generate_all_charts
            for path in generate_all_charts(user_id=args.user_id, output_dir=args.output_dir,
                                            upload=args.upload):
                print(path)

        elif args.command == "report":
            with open(args.path, encoding="utf-8") as fh:
                text = fh.read()
            result = extract_symptoms([{"patient_id": "report", "note_text": text}],
                                      get_symptom_master(), debug=True)
            print(generate_extraction_report(result))

    except (DuplicateUploadError, UploadError, FileNotFoundError) as e:
        logging.error(f"❌ {e}")
        return 1

    return 0


# --------------------------------------------------
# ENTRY POINT
# --------------------------------------------------
if __name__ == "__main__":
    sys.exit(main())
