"""
Unit tests for HRSN keyword screening and record classification.
"""
import pytest

from src.hrsn import (
    extract_hrsn_from_note,
    hrsn_status_columns,
    is_hrsn_record,
    merge_hrsn_data,
    patient_hrsn_fields,
)


class TestExtractHrsn:
    def test_keyword_hits(self):
        findings = extract_hrsn_from_note("Patient is homeless and unemployed, reports feeling lonely.")
        assert findings["homelessness"] == "Yes"
        assert findings["employment"] == "Yes"
        assert findings["social_connections_isolation"] == "Yes"
        assert "food_insecurity" not in findings

    def test_case_insensitive(self):
        assert extract_hrsn_from_note("Uses the FOOD PANTRY weekly")["food_insecurity"] == "Yes"

    @pytest.mark.parametrize("text", ["", None])
    def test_empty(self, text):
        assert extract_hrsn_from_note(text) == {}


class TestStatusColumns:
    def test_grouped_columns(self):
        status = hrsn_status_columns({"housing_instability": "Yes", "employment": "Yes"})
        assert status["housing_status"] == "Yes"
        assert status["employment_status"] == "Yes"
        assert status["food_status"] is None
        assert set(status) == {
            "housing_status", "food_status", "financial_status", "transportation_needs",
            "has_a_car", "utility_insecurity", "social_isolation", "employment_status",
        }


class TestMerge:
    def test_uploaded_values_win(self):
        merged = merge_hrsn_data({"food_insecurity": "No", "veteran_status": ""},
                                 {"food_insecurity": "Yes", "veteran_status": "Yes"})
        assert merged == {"food_insecurity": "No", "veteran_status": "Yes"}


class TestIsHrsnRecord:
    @pytest.mark.parametrize("row", [
        {"symp_prob": "Problem"},
        {"zcode_hrsn": "ZCode/HRSN"},
        {"diagnosis_icd10_code": "z59.0"},
        {"symptom_id": "Z56.0"},
        {"symptom_segment": "Food insecurity"},
    ])
    def test_hrsn(self, row):
        assert is_hrsn_record(row)

    def test_not_hrsn(self):
        assert not is_hrsn_record({
            "symp_prob": "Symptom", "zcode_hrsn": "No", "diagnosis_icd10_code": "F41.1",
            "symptom_id": "F41.B1", "symptom_segment": "anxiety",
        })


class TestPatientFields:
    def test_findings_to_patient_columns(self):
        fields = patient_hrsn_fields({"homelessness": "Yes", "transportation": "Yes", "stress": "Yes"})
        assert fields == {"housing_insecurity": "Yes", "access_to_transportation": "Yes"}
