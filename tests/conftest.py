"""
Shared fixtures: every test gets its own SQLite database file.
"""
import pytest

from src.cache import query_cache
from src.models import Base, init_schema


SYMPTOM_MASTER = [
    {
        "symptom_id": "F32.A1", "symptom_segment": "depressed mood",
        "diagnosis": "Major Depressive Disorder", "diagnosis_icd10_code": "F32.9",
        "diagnostic_category": "Depressive Disorders", "symp_prob": "Symptom", "zcode_hrsn": "No",
    },
    {
        "symptom_id": "F41.B1", "symptom_segment": "anxiety",
        "diagnosis": "Generalized Anxiety Disorder", "diagnosis_icd10_code": "F41.1",
        "diagnostic_category": "Anxiety Disorders", "symp_prob": "Symptom", "zcode_hrsn": "No",
    },
    {
        "symptom_id": "F51.A1", "symptom_segment": "insomnia",
        "diagnosis": "Insomnia Disorder", "diagnosis_icd10_code": "G47.00",
        "diagnostic_category": "Sleep-Wake Disorders", "symp_prob": "Symptom", "zcode_hrsn": "No",
    },
    {
        "symptom_id": "Z59.0", "symptom_segment": "homelessness",
        "diagnosis": "Homelessness", "diagnosis_icd10_code": "Z59.0",
        "diagnostic_category": "Housing", "symp_prob": "Problem", "zcode_hrsn": "ZCode/HRSN",
    },
]

NOTES_CSV = (
    "patient_id,patient_name,dos_date,note_text,provider_name,gender\n"
    "P001,Jane Doe,3/7/2025,Patient reports depressed mood and insomnia.,Dr. Smith,Female\n"
    "P001,Jane Doe,3/8/2025,Chief Complaint: anxiety. Currently facing homelessness.,Dr. Smith,Female\n"
    "P002,John Roe,2025-03-08,Client presents with anxiety and insomnia.,Dr. Jones,\n"
    "P003,Ann Poe,2025-03-09,short,Dr. Jones,Female\n"
)


@pytest.fixture
def symptom_master():
    return [dict(row) for row in SYMPTOM_MASTER]


@pytest.fixture
def notes_csv(tmp_path):
    path = tmp_path / "notes.csv"
    path.write_text(NOTES_CSV, encoding="utf-8")
    return str(path)


@pytest.fixture
def db(tmp_path, monkeypatch):
    monkeypatch.setenv("DATABASE_URL", f"sqlite:///{tmp_path / 'test.db'}")
    engine = init_schema()
    query_cache.invalidate()
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()
    query_cache.invalidate()
