# HRSN extraction module

"""
Health-Related Social Needs (HRSN) detection.

Keyword screening of note text for social-needs indicators, plus the rules
that decide whether an extracted symptom row counts as an HRSN record.
"""

HRSN_CATEGORIES = {
    "financial_status": [
        "financial difficulty", "money problems", "financial stress", "can't afford",
        "unable to pay", "financial hardship", "poverty", "low income", "broke",
        "financial strain", "economic hardship", "debt", "bankruptcy",
    ],
    "transportation": [
        "transportation issues", "no car", "no vehicle", "can't get to", "transportation barriers",
        "no ride", "bus problems", "transportation difficulties", "mobility issues",
        "unable to travel", "no transportation", "transport problems",
    ],
    "has_a_car": [
        "has car", "owns vehicle", "drives own car", "personal vehicle", "own transportation",
        "has vehicle", "car owner", "vehicle available",
    ],
    "access_to_health_care": [
        "no insurance", "can't access healthcare", "healthcare barriers", "no doctor",
        "unable to see doctor", "healthcare access", "medical access", "no medical care",
        "insurance problems", "coverage issues", "uninsured", "underinsured",
    ],
    "clothing": [
        "inadequate clothing", "no warm clothes", "clothing needs", "insufficient clothing",
        "lacks clothing", "clothing problems", "clothes needed", "clothing insecurity",
    ],
    "disabilities": [
        "disability", "disabled", "handicapped", "mobility impairment", "physical limitation",
        "sensory impairment", "cognitive disability", "developmental disability",
        "functional limitation", "accessibility needs",
    ],
    "education": [
        "education problems", "school issues", "learning difficulties", "illiterate",
        "reading problems", "education barriers", "school dropout", "educational needs",
        "literacy issues", "learning disabilities",
    ],
    "employment": [
        "unemployed", "job loss", "employment issues", "work problems", "lost job",
        "no job", "workplace issues", "employment barriers", "job stress",
        "work difficulties", "career problems", "unemployment",
    ],
    "family_and_community_support": [
        "family problems", "no support", "social isolation", "family conflict",
        "lack of support", "community problems", "family issues", "social problems",
        "relationship difficulties", "family stress", "social needs",
    ],
    "food_insecurity": [
        "food insecurity", "hungry", "no food", "can't afford food", "food problems",
        "lack of food", "food access", "nutritional needs", "food assistance",
        "food pantry", "food stamps", "snap benefits", "meal problems",
    ],
    "homelessness": [
        "homeless", "no home", "living on street", "shelter", "homelessness",
        "without housing", "sleeping rough", "no place to live", "transient",
    ],
    "housing_instability": [
        "housing unstable", "temporary housing", "couch surfing", "moving frequently",
        "housing insecurity", "unstable housing", "housing problems", "eviction",
        "housing stress", "temporary shelter",
    ],
    "inadequate_housing": [
        "inadequate housing", "poor housing conditions", "housing inadequate",
        "substandard housing", "housing quality issues", "overcrowded", "unsafe housing",
    ],
    "immigration_migration": [
        "immigrant", "immigration issues", "undocumented",
        "migration problems", "visa issues", "citizenship problems",
    ],
    "incarceration": [
        "incarcerated", "jail", "prison", "criminal justice", "legal problems",
        "court issues", "probation", "parole", "arrest", "detention",
    ],
    "primary_language": [
        "language barriers", "english problems", "language difficulties",
        "interpreter needed", "language issues",
    ],
    "safety_child_abuse": [
        "child abuse", "child neglect", "child safety", "child protection",
        "child endangerment", "child welfare",
    ],
    "safety_intimate_partner_violence": [
        "domestic violence", "intimate partner violence", "domestic abuse",
        "partner abuse", "relationship violence", "ipv", "abusive relationship",
    ],
    "safety_neighborhood_safety": [
        "neighborhood safety", "community safety", "area unsafe", "crime problems",
        "violent neighborhood", "unsafe area", "community violence",
    ],
    "social_connections_isolation": [
        "social isolation", "lonely", "no friends", "isolated",
        "loneliness", "social disconnection",
    ],
    "stress": [
        "stressed", "overwhelmed", "chronic stress", "life stress", "stressful",
    ],
    "substance_use": [
        "substance abuse", "drug use", "alcohol problems", "addiction", "substance use",
        "drinking problems", "drug abuse", "chemical dependency", "substance issues",
    ],
    "utility_insecurity": [
        "utility problems", "no electricity", "no heat", "utility shut off",
        "energy insecurity", "utility bills", "power problems", "heating problems",
    ],
    "veteran_status": [
        "veteran", "military service", "armed forces", "military background",
        "combat veteran", "service member", "military history",
    ],
}

# HRSN finding -> extracted_symptoms status column
STATUS_COLUMNS = {
    "housing_status": ("homelessness", "housing_instability", "inadequate_housing"),
    "food_status": ("food_insecurity",),
    "financial_status": ("financial_status",),
    "transportation_needs": ("transportation",),
    "has_a_car": ("has_a_car",),
    "utility_insecurity": ("utility_insecurity",),
    "social_isolation": ("social_connections_isolation", "family_and_community_support"),
    "employment_status": ("employment",),
}

# HRSN finding -> patients column
PATIENT_COLUMNS = {
    "financial_status": ("financial_status",),
    "housing_insecurity": ("homelessness", "housing_instability", "inadequate_housing"),
    "food_insecurity": ("food_insecurity",),
    "veteran_status": ("veteran_status",),
    "education_level": ("education",),
    "access_to_transportation": ("transportation",),
    "has_a_car": ("has_a_car",),
}

HRSN_ZCODE_MARKERS = {"ZCode/HRSN", "Z-Code", "Z Code", "HRSN", "Yes"}

HRSN_SEGMENT_TERMS = (
    "insecurity", "instability", "homelessness", "transportation",
    "unemployment", "education", "literacy", "poverty",
)


def extract_hrsn_from_note(note_text: str) -> dict:
    """Return {category: "Yes"} for every HRSN category with a keyword hit."""
    if not note_text:
        return {}
    text = note_text.lower()
    return {
        category: "Yes"
        for category, keywords in HRSN_CATEGORIES.items()
        if any(keyword in text for keyword in keywords)
    }


def merge_hrsn_data(csv_values: dict, extracted: dict) -> dict:
    """Extracted findings only fill gaps; uploaded values always win."""
    merged = dict(csv_values)
    for category, value in extracted.items():
        if merged.get(category) in (None, ""):
            merged[category] = value
    return merged


def hrsn_status_columns(findings: dict) -> dict:
    return {
        column: "Yes" if any(findings.get(c) == "Yes" for c in categories) else None
        for column, categories in STATUS_COLUMNS.items()
    }


def patient_hrsn_fields(findings: dict) -> dict:
    """Patient columns with a note-derived "Yes"; columns without a hit are left out."""
    return {
        column: "Yes"
        for column, categories in PATIENT_COLUMNS.items()
        if any(findings.get(c) == "Yes" for c in categories)
    }


def is_hrsn_record(row: dict) -> bool:
    if row.get("symp_prob") == "Problem":
        return True
    if row.get("zcode_hrsn") in HRSN_ZCODE_MARKERS:
        return True
    if (row.get("diagnosis_icd10_code") or "").upper().startswith("Z"):
        return True
    if (row.get("symptom_id") or "").upper().startswith("Z"):
        return True
    segment = (row.get("symptom_segment") or "").lower()
    return any(term in segment for term in HRSN_SEGMENT_TERMS)
