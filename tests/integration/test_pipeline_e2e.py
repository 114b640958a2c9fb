"""
End-to-end: import, extraction run, persistence and pivots over SQLite.
"""
import os
from datetime import date

import pytest

from src import extract
from src.analytics import generate_all_charts
from src.cache import query_cache
from src.db import get_database_stats, get_symptom_counts_by_patient, import_symptom_master, import_upload
from src.features import persist_extracted_symptoms
from src.models import ExtractedSymptom, Note, get_session
from src.pivot import cached_pivot_data, generate_pivot_data, get_hrsn_pivot
from src.run_pipeline import fetch_unprocessed_notes, main, process_notes
from src.symptom_matcher import refined_symptom_matcher


@pytest.fixture
def loaded(db, symptom_master, notes_csv):
    import_symptom_master(symptom_master)
    import_upload(notes_csv, user_id=1)


def _row(**overrides):
    row = {
        "patient_id": "P1", "note_id": "1", "dos_date": date(2025, 3, 7),
        "symptom_id": "F41.B1", "symptom_segment": "anxiety", "diagnosis": "Generalized Anxiety Disorder",
        "diagnostic_category": "Anxiety Disorders", "symp_prob": "Symptom", "position_in_text": 8,
    }
    row.update(overrides)
    return row


class TestPersistExtractedSymptoms:
    def test_duplicates_skipped(self, db):
        rows = [_row(), _row(), _row(position_in_text=40)]
        assert persist_extracted_symptoms(rows) == {"inserted": 2, "skipped": 1, "batches": 1}
        assert persist_extracted_symptoms(rows) == {"inserted": 0, "skipped": 3, "batches": 1}

    def test_batches(self, db):
        rows = [_row(position_in_text=i) for i in range(5)]
        stats = persist_extracted_symptoms(rows, batch_size=2)
        assert stats == {"inserted": 5, "skipped": 0, "batches": 3}


class TestProcessNotes:
    def test_extraction_run(self, loaded):
        assert len(fetch_unprocessed_notes()) == 3

        summary = process_notes(batch_size=2)
        assert summary["notes_processed"] == 3
        assert summary["notes_failed"] == 0
        assert summary["symptoms_inserted"] == 6

        assert fetch_unprocessed_notes() == []
        assert process_notes()["notes_processed"] == 0

        session = get_session()
        try:
            assert {n.processed_flag for n in session.query(Note).all()} == {"TRUE"}
            homeless = session.query(ExtractedSymptom).filter_by(symptom_segment="homelessness").one()
            assert homeless.patient_id == "P001"
            assert homeless.housing_status == "Yes"
            assert homeless.user_id == 1
        finally:
            session.close()

        assert get_database_stats(user_id=1)["processed_notes"] == 3
        assert dict(get_symptom_counts_by_patient(user_id=1)) == {"P001": 4, "P002": 2}

    def test_empty_master(self, db, notes_csv):
        import_upload(notes_csv)
        assert process_notes()["notes_processed"] == 0
        assert len(fetch_unprocessed_notes()) == 3

    def test_user_filter(self, loaded):
        assert fetch_unprocessed_notes(user_id=2) == []
        assert process_notes(user_id=2)["notes_processed"] == 0

    def test_failed_note_left_for_retry(self, loaded, monkeypatch):
        def matcher(text, master, **kwargs):
            if "homelessness" in text:
                raise RuntimeError("matcher blew up")
            return refined_symptom_matcher(text, master, **kwargs)

        monkeypatch.setattr(extract, "refined_symptom_matcher", matcher)
        summary = process_notes()
        assert summary["notes_processed"] == 2
        assert summary["notes_failed"] == 1

        [pending] = fetch_unprocessed_notes()
        assert "homelessness" in pending["note_text"]

        monkeypatch.setattr(extract, "refined_symptom_matcher", refined_symptom_matcher)
        assert process_notes()["notes_processed"] == 1
        assert fetch_unprocessed_notes() == []

    def test_same_upload_for_two_users(self, loaded, notes_csv):
        import_upload(notes_csv, user_id=2)
        process_notes(user_id=2)

        assert get_database_stats(user_id=2)["notes"] == 3
        assert dict(get_symptom_counts_by_patient(user_id=2)) == {"P001": 4, "P002": 2}
        assert generate_pivot_data("symptom", user_id=2)["data"]["anxiety"] == {"3/7/25": 0, "3/8/25": 2}
        # user 1's notes are untouched by user 2's run
        assert len(fetch_unprocessed_notes(user_id=1)) == 3


class TestPivotsFromDatabase:
    @pytest.fixture(autouse=True)
    def _extracted(self, loaded):
        process_notes()

    def test_symptom_pivot(self):
        pivot = generate_pivot_data("symptom", user_id=1)
        assert pivot["columns"] == ["3/7/25", "3/8/25"]
        assert set(pivot["rows"]) == {"depressed mood", "insomnia", "anxiety"}
        assert pivot["data"]["anxiety"] == {"3/7/25": 0, "3/8/25": 2}
        assert pivot["data"]["depressed mood"] == {"3/7/25": 1, "3/8/25": 0}

    def test_patient_filter(self):
        pivot = generate_pivot_data("symptom", patient_id=["P002"])
        assert set(pivot["rows"]) == {"anxiety", "insomnia"}
        assert pivot["columns"] == ["3/8/25"]

    def test_hrsn_pivots(self):
        assert generate_pivot_data("hrsn")["rows"] == ["homelessness"]
        assert get_hrsn_pivot("P001") == {"rows": ["homelessness"], "2025-03-08": {"homelessness": 1}}
        assert get_hrsn_pivot("P002") == {"rows": []}

    def test_other_user_sees_nothing(self):
        assert generate_pivot_data("diagnosis", user_id=2) == {"columns": [], "rows": [], "data": {}}

    def test_invalid_type(self):
        with pytest.raises(ValueError):
            generate_pivot_data("medication")

    def test_all_charts(self, tmp_path):
        paths = generate_all_charts(user_id=1, output_dir=str(tmp_path))
        # four pivots x three chart kinds, plus the category pie
        assert len(paths) >= 13
        assert all(os.path.dirname(p) == str(tmp_path) and os.path.exists(p) for p in paths)

    def test_cached_until_invalidated(self, notes_csv, tmp_path):
        first = cached_pivot_data("symptom", user_id=1)
        assert query_cache.stats()["size"] == 1
        assert cached_pivot_data("symptom", user_id=1) is first

        extra = tmp_path / "more.csv"
        extra.write_text(
            "patient_id,patient_name,dos_date,note_text\n"
            "P004,Bo Li,2025-03-10,Patient reports depressed mood today.\n",
            encoding="utf-8",
        )
        import_upload(str(extra), user_id=1)
        process_notes(user_id=1)

        refreshed = cached_pivot_data("symptom", user_id=1)
        assert "3/10/25" in refreshed["columns"]


class TestCli:
    def test_commands(self, db, tmp_path, notes_csv, capsys):
        master = tmp_path / "master.csv"
        master.write_text(
            "symptom_id,symptom_segment,diagnosis,diagnostic_category,symp_prob\n"
            "F41.B1,anxiety,Generalized Anxiety Disorder,Anxiety Disorders,Symptom\n",
            encoding="utf-8",
        )
        assert main(["init-db"]) == 0
        assert main(["import-master", str(master)]) == 0
        assert main(["upload", notes_csv, "--user-id", "1"]) == 0
        assert main(["upload", notes_csv, "--user-id", "1"]) == 1
        assert main(["extract"]) == 0

        note = tmp_path / "note.txt"
        note.write_text("Patient reports anxiety.", encoding="utf-8")
        assert main(["report", str(note)]) == 0
        assert "Total symptoms extracted: 1" in capsys.readouterr().out
