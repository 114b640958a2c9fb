"""
HTTP API: uploads, extraction runs, pivots, patient search and exports.
"""
import io
import logging
import os
import tempfile
from typing import List, Optional

from fastapi import FastAPI, File, Form, HTTPException, Query, UploadFile
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from src.cache import query_cache
from src.db import (
    DuplicateUploadError,
    get_database_stats,
    get_patient_records,
    import_upload,
    match_scheduled_patients,
    search_patients,
)
from src.demographics import generate_demographic_report
from src.ingest import UploadError
from src.pivot import PIVOT_COLUMNS, cached_pivot_data, get_hrsn_pivot, pivot_to_dataframe
from src.run_pipeline import process_notes

# ==============================
# CONFIG
# ==============================

UPLOAD_DIR = os.getenv("UPLOAD_DIR")
MAX_UPLOAD_BYTES = int(os.getenv("MAX_UPLOAD_BYTES", str(25 * 1024 * 1024)))
ALLOWED_EXTENSIONS = (".csv", ".xlsx", ".xls")

logging.basicConfig(level=logging.INFO)

app = FastAPI(title="Behavioral Health Notes Analytics")


class ScheduledPatient(BaseModel):
    patient_id: Optional[str] = None
    patient_name: Optional[str] = None


class ScheduleRequest(BaseModel):
    patients: List[ScheduledPatient]
    user_id: Optional[int] = None


def _patient_dict(patient) -> dict:
    return {
        "patient_id": patient.patient_id,
        "patient_name": patient.patient_name,
        "provider_id": patient.provider_id,
        "provider_name": patient.provider_name,
        "age_range": patient.age_range,
        "gender": patient.gender,
        "race": patient.race,
        "ethnicity": patient.ethnicity,
        "zip_code": patient.zip_code,
    }


def _check_pivot_type(pivot_type: str):
    if pivot_type not in PIVOT_COLUMNS:
        raise HTTPException(status_code=400, detail=f"Invalid pivot type: {pivot_type}")


@app.get("/health")
def health():
    return {"status": "ok"}


@app.post("/uploads")
async def upload_file(
    file: UploadFile = File(...),
    user_id: Optional[int] = Form(None),
    overwrite: bool = Form(False),
    demographics: bool = Form(False),
):
    """Import a CSV or Excel file of clinical notes."""
    filename = os.path.basename(file.filename or "")
    if not filename.lower().endswith(ALLOWED_EXTENSIONS):
        raise HTTPException(status_code=400, detail="Only CSV and Excel files are accepted")

    content = await file.read()
    if len(content) == 0:
        raise HTTPException(status_code=400, detail="Empty file")
    if len(content) > MAX_UPLOAD_BYTES:
        raise HTTPException(status_code=413, detail="Upload exceeds configured size limit")

    # keep the original name; it is recorded on the upload row
    with tempfile.TemporaryDirectory(dir=UPLOAD_DIR) as tmp:
        path = os.path.join(tmp, filename)
        with open(path, "wb") as fh:
            fh.write(content)
        try:
            return import_upload(path, user_id=user_id, overwrite=overwrite,
                                 enrich_demographics=demographics)
        except DuplicateUploadError as e:
            raise HTTPException(status_code=409, detail=str(e))
        except UploadError as e:
            raise HTTPException(status_code=400, detail=str(e))


@app.post("/extract")
def run_extraction(user_id: Optional[int] = None, batch_size: int = 50):
    return process_notes(batch_size=batch_size, user_id=user_id)


@app.get("/pivot/{pivot_type}")
def get_pivot(pivot_type: str, patient_id: Optional[List[str]] = Query(None), user_id: Optional[int] = None):
    _check_pivot_type(pivot_type)
    return cached_pivot_data(pivot_type, patient_id=patient_id, user_id=user_id)


@app.get("/hrsn/{patient_id}")
def get_patient_hrsn(patient_id: str, user_id: Optional[int] = None):
    return get_hrsn_pivot(patient_id, user_id=user_id)


@app.get("/patients/search")
def patient_search(
    search_type: str = "individual",
    match_type: str = "exact",
    patient_id: Optional[str] = None,
    patient_name: Optional[str] = None,
    provider_name: Optional[str] = None,
    user_id: Optional[int] = None,
):
    try:
        patients = search_patients(search_type=search_type, match_type=match_type, patient_id=patient_id,
                                   patient_name=patient_name, provider_name=provider_name, user_id=user_id)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))
    return {"patients": [_patient_dict(p) for p in patients], "total": len(patients)}


@app.post("/patients/match")
def match_schedule(request: ScheduleRequest):
    scheduled = [{"patient_id": p.patient_id, "patient_name": p.patient_name} for p in request.patients]
    result = match_scheduled_patients(scheduled, user_id=request.user_id)
    for match in result["matches"]:
        if match["matched"] is not None:
            match["matched"] = _patient_dict(match["matched"])
    return result


@app.get("/demographics/report")
def demographics_report(user_id: Optional[int] = None):
    return generate_demographic_report(get_patient_records(user_id=user_id))


@app.get("/stats")
def stats(user_id: Optional[int] = None):
    return {"database": get_database_stats(user_id=user_id), "cache": query_cache.stats()}


@app.get("/export/{pivot_type}.csv")
def export_pivot(pivot_type: str, patient_id: Optional[List[str]] = Query(None), user_id: Optional[int] = None):
    _check_pivot_type(pivot_type)
    df = pivot_to_dataframe(cached_pivot_data(pivot_type, patient_id=patient_id, user_id=user_id))
    df.index.name = "value"

    buffer = io.StringIO()
    df.to_csv(buffer)
    return StreamingResponse(
        iter([buffer.getvalue()]),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{pivot_type}_pivot.csv"'},
    )


if __name__ == "__main__":
    import uvicorn

    uvicorn.run("src.api:app", host="0.0.0.0", port=int(os.getenv("PORT", "8000")))
