# SQLAlchemy ORM Models

from sqlalchemy import (
    create_engine, Column, String, Integer, Float, Boolean, Date, DateTime, Text,
    UniqueConstraint, JSON
)
from sqlalchemy.orm import declarative_base, sessionmaker
from datetime import datetime
import os

Base = declarative_base()

# ==============================
# DATABASE CONNECTION
# ==============================

def get_database_url():
    """Construct database URL from environment variables or defaults"""
    from urllib.parse import quote_plus

    url = os.getenv("DATABASE_URL")
    if url:
        return url

    host = os.getenv("DB_HOST", "localhost")
    dbname = os.getenv("DB_NAME", "behavioral_health")
    user = os.getenv("DB_USER", "postgres")
    password = os.getenv("DB_PASSWORD", "postgres")
    port = os.getenv("DB_PORT", "5432")

    # URL-encode password to handle special characters like @
    password_encoded = quote_plus(password)

    return f"postgresql://{user}:{password_encoded}@{host}:{port}/{dbname}"

def get_engine():
    """Create SQLAlchemy engine"""
    return create_engine(get_database_url(), echo=False)

def get_session():
    """Create SQLAlchemy session"""
    engine = get_engine()
    Session = sessionmaker(bind=engine)
    return Session()

def init_schema():
    """Create database tables using SQLAlchemy"""
    engine = get_engine()
    Base.metadata.create_all(engine)
    return engine

# ==============================
# ORM MODELS
# ==============================

class Patient(Base):
    __tablename__ = 'patients'
    __table_args__ = (
        UniqueConstraint('patient_id', 'user_id', name='uq_patient_per_user'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), nullable=False)
    patient_name = Column(String(200), nullable=True)
    provider_id = Column(String(64), nullable=True)
    provider_name = Column(String(200), nullable=True)
    user_id = Column(Integer, nullable=True)
    age_range = Column(String(20), nullable=True)
    date_of_birth = Column(Date, nullable=True)
    gender = Column(String(30), nullable=True)
    race = Column(String(60), nullable=True)
    ethnicity = Column(String(60), nullable=True)
    zip_code = Column(String(10), nullable=True)
    financial_status = Column(String(100), nullable=True)
    housing_insecurity = Column(String(100), nullable=True)
    food_insecurity = Column(String(100), nullable=True)
    veteran_status = Column(String(100), nullable=True)
    education_level = Column(String(100), nullable=True)
    access_to_transportation = Column(String(100), nullable=True)
    has_a_car = Column(String(100), nullable=True)
    additional_fields = Column(JSON, nullable=True)

    def __repr__(self):
        return f"<Patient(patient_id='{self.patient_id}', name='{self.patient_name}')>"


class Note(Base):
    __tablename__ = 'notes'

    id = Column(Integer, primary_key=True, autoincrement=True)
    patient_id = Column(String(64), nullable=False)
    dos_date = Column(Date, nullable=False)
    note_text = Column(Text, nullable=False)
    provider_id = Column(String(64), nullable=True)
    user_id = Column(Integer, nullable=True)
    note_hash = Column(String(32), unique=True, nullable=False)
    processed_flag = Column(String(10), default='FALSE', nullable=True)  # Track extraction status

    def __repr__(self):
        return f"<Note(id={self.id}, patient_id='{self.patient_id}', dos_date='{self.dos_date}')>"


class SymptomMaster(Base):
    __tablename__ = 'symptom_master'
    __table_args__ = (
        UniqueConstraint('symptom_id', 'symptom_segment', 'diagnosis', 'diagnostic_category',
                         name='uq_symptom_master_key'),
    )

    id = Column(Integer, primary_key=True, autoincrement=True)
    symptom_id = Column(String(50), nullable=False)
    symptom_segment = Column(Text, nullable=False)
    diagnosis = Column(Text, nullable=True)
    diagnosis_icd10_code = Column(String(50), nullable=True)
    diagnostic_category = Column(Text, nullable=True)
    symp_prob = Column(String(20), nullable=True)
    zcode_hrsn = Column(String(30), nullable=True)
    hrsn_category = Column(String(100), nullable=True)

    def __repr__(self):
        return f"<SymptomMaster(symptom_id='{self.symptom_id}', segment='{self.symptom_segment}')>"


class ExtractedSymptom(Base):
    __tablename__ = 'extracted_symptoms'

    id = Column(Integer, primary_key=True, autoincrement=True)
    mention_id = Column(String(40), unique=True, nullable=False)
    patient_id = Column(String(64), nullable=False)
    patient_name = Column(String(200), nullable=True)
    provider_id = Column(String(64), nullable=True)
    note_id = Column(String(64), nullable=True)
    dos_date = Column(Date, nullable=False)
    symptom_segment = Column(Text, nullable=False)
    symptom_id = Column(String(50), nullable=True)
    diagnosis = Column(Text, nullable=True)
    diagnosis_icd10_code = Column(String(50), nullable=True)
    diagnostic_category = Column(Text, nullable=True)
    symp_prob = Column(String(20), nullable=True)
    zcode_hrsn = Column(String(30), nullable=True)
    confidence = Column(Float, nullable=True)
    match_type = Column(String(50), nullable=True)
    section_type = Column(String(50), nullable=True)
    position_in_text = Column(Integer, nullable=True)
    extraction_version = Column(String(20), nullable=True)
    extraction_method = Column(String(100), nullable=True)
    housing_status = Column(String(10), nullable=True)
    food_status = Column(String(10), nullable=True)
    financial_status = Column(String(10), nullable=True)
    transportation_needs = Column(String(10), nullable=True)
    has_a_car = Column(String(10), nullable=True)
    utility_insecurity = Column(String(10), nullable=True)
    social_isolation = Column(String(10), nullable=True)
    employment_status = Column(String(10), nullable=True)
    user_id = Column(Integer, nullable=True)
    created_timestamp = Column(DateTime, default=datetime.utcnow, nullable=False)

    def __repr__(self):
        return f"<ExtractedSymptom(mention_id='{self.mention_id}', segment='{self.symptom_segment}')>"


class FileUpload(Base):
    __tablename__ = 'file_uploads'

    id = Column(Integer, primary_key=True, autoincrement=True)
    file_name = Column(String(255), nullable=False)
    file_type = Column(String(20), nullable=False)
    upload_date = Column(DateTime, default=datetime.utcnow, nullable=False)
    processed_status = Column(Boolean, default=False)
    record_count = Column(Integer, nullable=True)
    patient_count = Column(Integer, nullable=True)
    user_id = Column(Integer, nullable=True)
    file_hash = Column(String(32), nullable=True)
    file_size = Column(Integer, nullable=True)
    processing_time_ms = Column(Integer, nullable=True)


class ProcessLog(Base):
    __tablename__ = 'process_logs'

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=True)
    category = Column(String(50), nullable=False)  # 'file_upload', 'extraction', ...
    process_type = Column(String(100), nullable=True)
    file_name = Column(String(255), nullable=True)
    outcome = Column(String(20), nullable=False)  # 'success', 'failure', 'partial_success'
    processing_time_ms = Column(Integer, nullable=True)
    expected_records = Column(Integer, nullable=True)
    actual_records = Column(Integer, nullable=True)
    duplicates_found = Column(Integer, default=0)
    reason_for_failure = Column(Text, nullable=True)
    start_time = Column(DateTime, nullable=False)
    end_time = Column(DateTime, nullable=True)
