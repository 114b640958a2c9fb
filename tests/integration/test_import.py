"""
Integration tests for symptom master and notes upload import.
"""
from datetime import date

import pytest

from src.db import (
    DuplicateUploadError,
    dedupe_master_records,
    get_database_stats,
    get_notes_by_date_range,
    get_patient_notes,
    get_symptom_counts_by_patient,
    get_symptom_master,
    import_symptom_master,
    import_upload,
    load_symptom_master_csv,
    match_scheduled_patients,
    search_patients,
)
from src.ingest import UploadError
from src.models import FileUpload, ProcessLog, get_session


class TestSymptomMaster:
    def test_csv_headers_camel_case_with_bom(self, tmp_path):
        path = tmp_path / "master.csv"
        path.write_text(
            "symptomId,symptomSegment,Diagnosis,diagnosticCategory,sympProb,Diagnosis_ICD-10_Code,ZCode_HRSN\n"
            "F41.B1,anxiety,Generalized Anxiety Disorder,Anxiety Disorders,Symptom,F41.1,No\n",
            encoding="utf-8-sig",
        )
        records = load_symptom_master_csv(str(path))
        assert records == [{
            "symptom_id": "F41.B1", "symptom_segment": "anxiety",
            "diagnosis": "Generalized Anxiety Disorder", "diagnostic_category": "Anxiety Disorders",
            "symp_prob": "Symptom", "diagnosis_icd10_code": "F41.1", "zcode_hrsn": "No",
        }]

    def test_dedupe_keeps_first(self, symptom_master):
        changed = dict(symptom_master[0], symp_prob="Problem")
        unique = dedupe_master_records(symptom_master + [changed])
        assert len(unique) == len(symptom_master)
        assert unique[0]["symp_prob"] == "Symptom"

    def test_upsert(self, db, symptom_master):
        stats = import_symptom_master(symptom_master + [dict(symptom_master[1])])
        assert stats == {"inserted": 4, "updated": 0, "duplicates": 1, "errors": 0}

        symptom_master[1]["zcode_hrsn"] = "ZCode/HRSN"
        stats = import_symptom_master(symptom_master)
        assert stats["inserted"] == 0
        assert stats["updated"] == 4

        stored = {m["symptom_id"]: m for m in get_symptom_master()}
        assert stored["F41.B1"]["zcode_hrsn"] == "ZCode/HRSN"


class TestImportUpload:
    def test_import(self, db, notes_csv):
        summary = import_upload(notes_csv, user_id=1)
        assert summary["patients_inserted"] == 3
        assert summary["notes_inserted"] == 3
        assert summary["rows_without_notes"] == 1
        assert summary["field_mapping"]["note_text"] == "note_text"

        notes = get_patient_notes("P001")
        assert [n.dos_date.isoformat() for n in notes] == ["2025-03-07", "2025-03-08"]
        assert all(n.processed_flag == "FALSE" for n in notes)

        session = get_session()
        try:
            upload = session.query(FileUpload).one()
            assert upload.record_count == 3
            assert upload.file_hash == summary["file_hash"]
            assert session.query(ProcessLog).one().outcome == "success"
        finally:
            session.close()

    def test_duplicate_upload(self, db, notes_csv):
        import_upload(notes_csv, user_id=1)
        with pytest.raises(DuplicateUploadError):
            import_upload(notes_csv, user_id=1)

    def test_overwrite_skips_stored_notes(self, db, notes_csv):
        import_upload(notes_csv, user_id=1)
        summary = import_upload(notes_csv, user_id=1, overwrite=True)
        assert summary["notes_inserted"] == 0
        assert summary["notes_skipped"] == 3
        assert summary["patients_inserted"] == 0

    def test_same_file_other_user(self, db, notes_csv):
        import_upload(notes_csv, user_id=1)
        summary = import_upload(notes_csv, user_id=2)
        assert summary["notes_inserted"] == 3
        assert summary["notes_skipped"] == 0
        assert summary["patients_inserted"] == 3

        [own] = search_patients(patient_id="P001", user_id=2)
        assert own.user_id == 2
        assert len(search_patients(patient_id="P001")) == 2
        assert [n.user_id for n in get_patient_notes("P001", user_id=2)] == [2, 2]
        assert get_database_stats(user_id=1)["patients"] == 3

    def test_demographics_fill_gaps(self, db, notes_csv):
        import_upload(notes_csv, enrich_demographics=True)
        [jane] = search_patients(patient_id="P001")
        [john] = search_patients(patient_id="P002")
        assert jane.gender == "Female"
        assert john.gender
        assert john.zip_code and john.date_of_birth

    def test_failed_import_logged(self, db, tmp_path):
        path = tmp_path / "bad.csv"
        path.write_text("patient_id,gender\nP1,Male\n", encoding="utf-8")
        with pytest.raises(UploadError):
            import_upload(str(path))

        session = get_session()
        try:
            log = session.query(ProcessLog).one()
            assert log.outcome == "failure"
            assert "Note text field" in log.reason_for_failure
        finally:
            session.close()


class TestPatientQueries:
    @pytest.fixture(autouse=True)
    def _loaded(self, db, notes_csv):
        import_upload(notes_csv, user_id=1)

    def test_individual_exact(self):
        [patient] = search_patients(patient_id="P001")
        assert patient.patient_name == "Jane Doe"

    def test_partial_name(self):
        found = search_patients(match_type="partial", patient_name="oe")
        assert [p.patient_id for p in found] == ["P001", "P002", "P003"]

    def test_population_by_provider(self):
        found = search_patients(search_type="population", provider_name="Dr. Jones")
        assert [p.patient_id for p in found] == ["P002", "P003"]

    def test_user_scoping(self):
        assert search_patients(search_type="population", user_id=2) == []

    def test_partial_match_is_literal(self):
        assert search_patients(match_type="partial", patient_name="%") == []
        assert search_patients(match_type="partial", patient_name="J_ne") == []
        [jane] = search_patients(match_type="partial", patient_name="ane d")
        assert jane.patient_id == "P001"

    @pytest.mark.parametrize("kwargs", [
        {"search_type": "individual"},
        {"search_type": "cohort", "patient_id": "P001"},
        {"match_type": "fuzzy", "patient_id": "P001"},
    ])
    def test_invalid_search(self, kwargs):
        with pytest.raises(ValueError):
            search_patients(**kwargs)

    def test_schedule_matching(self):
        result = match_scheduled_patients([
            {"patient_id": "P001", "patient_name": "Jane Doe"},
            {"patient_id": "P002"},
            {"patient_name": "poe"},
            {"patient_name": "doe"},
            {"patient_name": "Nobody"},
        ])
        statuses = [(m["status"], m["confidence"]) for m in result["matches"]]
        assert statuses == [
            ("found", 1.0), ("found", 0.8), ("found", 0.6), ("found", 0.6), ("not_found", 0.0),
        ]
        assert result["summary"] == {"total": 5, "found": 4, "not_found": 1, "multiple_matches": 0}

    def test_schedule_multiple_matches(self):
        result = match_scheduled_patients([{"patient_name": "o"}])
        assert result["matches"][0]["status"] == "multiple_matches"

    def test_hrsn_filled_from_notes(self):
        [jane] = search_patients(patient_id="P001")
        [john] = search_patients(patient_id="P002")
        assert jane.housing_insecurity == "Yes"
        assert john.housing_insecurity is None

    def test_notes_by_date_range(self):
        notes = get_notes_by_date_range(date(2025, 3, 8), date(2025, 3, 31), user_id=1)
        assert sorted(n.patient_id for n in notes) == ["P001", "P002"]
        assert get_notes_by_date_range(date(2025, 3, 8), date(2025, 3, 31), user_id=2) == []

    def test_symptom_counts_empty_before_extraction(self):
        assert get_symptom_counts_by_patient() == []

    def test_stats(self):
        stats = get_database_stats(user_id=1)
        assert stats["patients"] == 3
        assert stats["notes"] == 3
        assert stats["processed_notes"] == 0
