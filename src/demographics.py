# Demographic generator module

"""
Demographic Generator
---------------------
Fills in missing patient demographics with realistic distributions.
A patient id always produces the same demographics, so every record of a
patient stays consistent across uploads.
"""

from collections import Counter

# ==============================
# DISTRIBUTIONS
# ==============================

AGE_RANGES = {
    "18-25": {"weight": 15, "min_age": 18, "max_age": 25},
    "26-35": {"weight": 25, "min_age": 26, "max_age": 35},
    "36-50": {"weight": 30, "min_age": 36, "max_age": 50},
    "51-65": {"weight": 20, "min_age": 51, "max_age": 65},
    "65+": {"weight": 10, "min_age": 65, "max_age": 85},
}

GENDER_DISTRIBUTION = {
    "Female": 52,
    "Male": 46,
    "Non-binary": 1,
    "Other": 1,
}

RACE_DISTRIBUTION = {
    "White": 60,
    "Black or African American": 18,
    "Hispanic or Latino": 12,
    "Asian": 6,
    "Native American": 2,
    "Pacific Islander": 1,
    "Other": 1,
}

ETHNICITY_DISTRIBUTION = {
    "Non-Hispanic": 82,
    "Hispanic or Latino": 18,
}

NORTHEAST_ZIP_CODES = [
    # New York
    "10001", "10002", "10003", "10009", "10010", "10011", "10016", "10017", "10018", "10019",
    "10021", "10022", "10023", "10024", "10025", "10026", "10027", "10028", "10029", "10030",
    "10451", "10452", "10453", "10454", "10455", "10456", "10457", "10458", "10459", "10460",
    "11201", "11202", "11203", "11204", "11205", "11206", "11207", "11208", "11209", "11210",
    # Massachusetts
    "02101", "02102", "02103", "02104", "02105", "02106", "02107", "02108", "02109", "02110",
    "02111", "02112", "02113", "02114", "02115", "02116", "02117", "02118", "02119", "02120",
    "02121", "02122", "02123", "02124", "02125", "02126", "02127", "02128", "02129", "02130",
    # Connecticut
    "06001", "06002", "06010", "06013", "06016", "06018", "06019", "06020", "06023", "06026",
    "06103", "06104", "06105", "06106", "06107", "06108", "06109", "06110", "06111", "06112",
    # New Jersey
    "07001", "07002", "07003", "07004", "07005", "07006", "07007", "07008", "07009", "07010",
    "07094", "07095", "07096", "07097", "07302", "07304", "07305", "07306", "07307", "07310",
    # Pennsylvania
    "19101", "19102", "19103", "19104", "19106", "19107", "19109", "19111", "19112", "19114",
    "19115", "19116", "19118", "19119", "19120", "19121", "19122", "19123", "19124", "19125",
    # Rhode Island
    "02801", "02802", "02804", "02806", "02807", "02808", "02809", "02812", "02813", "02814",
    # Vermont
    "05001", "05009", "05030", "05031", "05032", "05033", "05034", "05035", "05036", "05037",
    # New Hampshire
    "03031", "03032", "03033", "03034", "03036", "03037", "03038", "03040", "03041", "03042",
    # Maine
    "04001", "04002", "04003", "04005", "04006", "04007", "04008", "04009", "04010", "04011",
]

DEMOGRAPHIC_FIELDS = ("age_range", "date_of_birth", "gender", "race", "ethnicity", "zip_code")

# ==============================
# SEEDED RNG
# ==============================

def _string_hash(value: str) -> int:
    h = 0
    for ch in value:
        h = ((h << 5) - h + ord(ch)) & 0xFFFFFFFF
    # back to signed 32-bit
    if h >= 0x80000000:
        h -= 0x100000000
    return abs(h)


class SeededRandom:
    """Linear congruential generator seeded from a string."""

    MULTIPLIER = 9301
    INCREMENT = 49297
    MODULUS = 233280

    def __init__(self, seed: str):
        self.seed = _string_hash(str(seed))

    def next(self) -> float:
        self.seed = (self.seed * self.MULTIPLIER + self.INCREMENT) % self.MODULUS
        return self.seed / self.MODULUS

    def next_int(self, low: int, high: int) -> int:
        return int(self.next() * (high - low + 1)) + low

    def choice(self, items):
        return items[int(self.next() * len(items))]

    def weighted_choice(self, distribution: dict) -> str:
        total = sum(distribution.values())
        r = self.next() * total
        for item, weight in distribution.items():
            r -= weight
            if r <= 0:
                return item
        return next(iter(distribution))

# ==============================
# GENERATION
# ==============================

def generate_patient_demographics(patient_id: str, reference_year: int = 2024) -> dict:
    rng = SeededRandom(patient_id)

    age_range = rng.weighted_choice({k: v["weight"] for k, v in AGE_RANGES.items()})
    bounds = AGE_RANGES[age_range]
    age = rng.next_int(bounds["min_age"], bounds["max_age"])

    birth_year = reference_year - age
    birth_month = rng.next_int(1, 12)
    birth_day = rng.next_int(1, 28)  # valid in every month

    return {
        "age_range": age_range,
        "date_of_birth": f"{birth_month:02d}/{birth_day:02d}/{birth_year}",
        "gender": rng.weighted_choice(GENDER_DISTRIBUTION),
        "race": rng.weighted_choice(RACE_DISTRIBUTION),
        "ethnicity": rng.weighted_choice(ETHNICITY_DISTRIBUTION),
        "zip_code": rng.choice(NORTHEAST_ZIP_CODES),
    }


def enhance_records_with_demographics(records: list) -> list:
    """
    Fill empty demographic fields on each record. Values already present
    in the record are never overwritten.
    """
    generated = {}
    enhanced = []

    for record in records:
        patient_id = record.get("patient_id")
        if not patient_id:
            enhanced.append(record)
            continue

        if patient_id not in generated:
            generated[patient_id] = generate_patient_demographics(patient_id)
        demographics = generated[patient_id]

        updated = dict(record)
        for field in DEMOGRAPHIC_FIELDS:
            if not updated.get(field):
                updated[field] = demographics[field]
        enhanced.append(updated)

    return enhanced


def generate_demographic_report(records: list) -> dict:
    """Distribution counts per dimension, counting each patient once."""
    seen = set()
    counters = {
        "age_range": Counter(),
        "gender": Counter(),
        "race": Counter(),
        "ethnicity": Counter(),
        "zip_code": Counter(),
    }

    for record in records:
        patient_id = record.get("patient_id")
        if not patient_id or patient_id in seen:
            continue
        seen.add(patient_id)

        for field, counter in counters.items():
            value = record.get(field)
            if value:
                counter[value] += 1

    return {
        "age_range_distribution": dict(counters["age_range"]),
        "gender_distribution": dict(counters["gender"]),
        "race_distribution": dict(counters["race"]),
        "ethnicity_distribution": dict(counters["ethnicity"]),
        "zip_code_distribution": dict(counters["zip_code"]),
        "total_patients": len(seen),
        "total_records": len(records),
    }
