"""
Unit tests for the seeded demographic generator.
"""
import re

from src.demographics import (
    AGE_RANGES,
    NORTHEAST_ZIP_CODES,
    SeededRandom,
    enhance_records_with_demographics,
    generate_demographic_report,
    generate_patient_demographics,
)


class TestSeededRandom:
    def test_same_seed_same_sequence(self):
        a, b = SeededRandom("P001"), SeededRandom("P001")
        assert [a.next() for _ in range(5)] == [b.next() for _ in range(5)]

    def test_values_in_unit_interval(self):
        rng = SeededRandom("anything")
        assert all(0 <= rng.next() < 1 for _ in range(100))

    def test_next_int_bounds(self):
        rng = SeededRandom("bounds")
        values = [rng.next_int(1, 12) for _ in range(200)]
        assert min(values) >= 1 and max(values) <= 12

    def test_long_id_wraps_to_32_bits(self):
        rng = SeededRandom("PATIENT-0000000000-ABCDEFGHIJ-0123456789")
        assert rng.seed == 1787132424
        assert rng.next() == 68281 / 233280
        assert rng.seed == 68281

    def test_negative_hash_made_positive(self):
        # this id hashes to -264599895 as a signed 32-bit value
        rng = SeededRandom("MRN-0001-behavioral-health-clinic-north")
        assert rng.seed == 264599895
        assert rng.next() == 92212 / 233280

    def test_short_id_seed(self):
        assert SeededRandom("P001").seed == 2430945


class TestGeneratePatientDemographics:
    def test_deterministic(self):
        assert generate_patient_demographics("P001") == generate_patient_demographics("P001")

    def test_known_patients(self):
        assert generate_patient_demographics("P001") == {
            "age_range": "26-35", "date_of_birth": "09/10/1998", "gender": "Female",
            "race": "White", "ethnicity": "Non-Hispanic", "zip_code": "04009",
        }
        assert generate_patient_demographics("PATIENT-0000000000-ABCDEFGHIJ-0123456789") == {
            "age_range": "26-35", "date_of_birth": "06/02/1992", "gender": "Male",
            "race": "Black or African American", "ethnicity": "Non-Hispanic", "zip_code": "19106",
        }
        assert generate_patient_demographics("MRN-0001-behavioral-health-clinic-north") == {
            "age_range": "26-35", "date_of_birth": "08/25/1991", "gender": "Male",
            "race": "White", "ethnicity": "Hispanic or Latino", "zip_code": "02809",
        }

    def test_valid_values(self):
        demo = generate_patient_demographics("P-12345")
        assert demo["age_range"] in AGE_RANGES
        assert demo["zip_code"] in NORTHEAST_ZIP_CODES
        assert re.fullmatch(r"\d{2}/\d{2}/\d{4}", demo["date_of_birth"])

    def test_birth_year_matches_age_range(self):
        for pid in ("P1", "P2", "P3", "P4", "P5"):
            demo = generate_patient_demographics(pid, reference_year=2024)
            bounds = AGE_RANGES[demo["age_range"]]
            age = 2024 - int(demo["date_of_birth"][-4:])
            assert bounds["min_age"] <= age <= bounds["max_age"]


class TestEnhanceRecords:
    def test_fills_only_empty_fields(self):
        records = [{"patient_id": "P001", "gender": "Female", "race": ""}]
        enhanced = enhance_records_with_demographics(records)
        assert enhanced[0]["gender"] == "Female"
        assert enhanced[0]["race"]
        assert enhanced[0]["zip_code"] in NORTHEAST_ZIP_CODES
        assert records[0]["race"] == ""

    def test_same_patient_consistent(self):
        enhanced = enhance_records_with_demographics([{"patient_id": "P9"}, {"patient_id": "P9"}])
        assert enhanced[0] == enhanced[1]

    def test_records_without_id_untouched(self):
        assert enhance_records_with_demographics([{"note": "x"}]) == [{"note": "x"}]


class TestDemographicReport:
    def test_counts_each_patient_once(self):
        report = generate_demographic_report([
            {"patient_id": "P1", "gender": "Female", "zip_code": "10001"},
            {"patient_id": "P1", "gender": "Female", "zip_code": "10001"},
            {"patient_id": "P2", "gender": "Male"},
        ])
        assert report["total_patients"] == 2
        assert report["total_records"] == 3
        assert report["gender_distribution"] == {"Female": 1, "Male": 1}
        assert report["zip_code_distribution"] == {"10001": 1}
