# main.py

import logging
import os
from dataclasses import asdict
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

from fastapi import Depends, FastAPI, Header, HTTPException, Query
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field

# Import Data Models & Logic
from constants import VERSION, DoseUnit
from db import DEFAULT_DATABASE_URL, create_db_engine
from models import (
    CareUnit,
    Conduct,
    DailyLog,
    Device,
    FluidBalance,
    Gender,
    LabResult,
    Patient,
    PatientStatus,
    Ventilation,
    VentilationMode,
    VitalSigns,
)
from app import MEDICAL_DISCLAIMER, build_handoff_sheet, build_lab_table, build_patient_chart
from prescriptions import decode, toggle_line
from protocols import FluidBalanceCalculator, VasoactiveDoseCalculator, balance_from_inputs
from safety import classify_temperature, evaluate_trend
from store import PatientStore, StoreResult, StoreStatus

# --- 1. CONFIGURATION & LOGGING ---
logging.basicConfig(level=os.getenv("CARDIOEDAD_LOG_LEVEL", "INFO").upper())
logger = logging.getLogger("cardioedad-api")

# Shared ward passphrase. Unset = gate open (local use).
PASSPHRASE = os.getenv("CARDIOEDAD_PASSPHRASE")
CORS_ORIGINS = [o.strip() for o in os.getenv("CARDIOEDAD_CORS_ORIGINS", "*").split(",") if o.strip()]
DATABASE_URL = os.getenv("CARDIOEDAD_DATABASE_URL", DEFAULT_DATABASE_URL)

app = FastAPI(
    title="CardioEDAD API",
    version=VERSION,
    description="Clinical charting for ICU and ward patients: lab trends, fluid balance, "
                "vasoactive doses and shift handoff.\n\n" + MEDICAL_DISCLAIMER,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

store = PatientStore(create_db_engine(DATABASE_URL))

def get_store() -> PatientStore:
    return store

def require_passphrase(x_passphrase: Optional[str] = Header(None)):
    if PASSPHRASE and x_passphrase != PASSPHRASE:
        raise HTTPException(status_code=401, detail="Incorrect passphrase")

AUTH = [Depends(require_passphrase)]

@app.get("/")
def read_root():
    return {"status": "active", "message": "CardioEDAD API is running"}

@app.get("/health")
def health_check():
    return {"status": "active", "version": VERSION, "module": "cardioedad-charting"}

# --- 2. SCHEMAS ---
TypedValue = Union[str, int, float]

class LabResultModel(BaseModel):
    test_name: str
    value: TypedValue = ""
    unit: str = ""
    reference_range: str = ""

class VitalSignsModel(BaseModel):
    temperature: str = ""
    heart_rate: str = ""
    respiratory_rate: str = ""
    blood_pressure_sys: str = ""
    blood_pressure_dia: str = ""
    oxygen_saturation: str = ""
    capillary_blood_glucose: str = ""

class ConductModel(BaseModel):
    description: str
    verified: bool = False

class FluidBalanceModel(BaseModel):
    intake: float = Field(0.0, ge=0.0, description="ml")
    output: float = Field(0.0, ge=0.0, description="ml")

class FluidBalanceOut(FluidBalanceModel):
    net: float

class DailyLogModel(BaseModel):
    id: str = ""
    date: str = Field(..., description="ISO date, e.g. 2025-03-14")
    vital_signs: VitalSignsModel = Field(default_factory=VitalSignsModel)
    notes: str = ""
    prescriptions: List[str] = Field(default_factory=list)
    conducts: List[ConductModel] = Field(default_factory=list)
    labs: List[LabResultModel] = Field(default_factory=list)
    fluid_balance: Optional[FluidBalanceModel] = None

    class Config:
        json_schema_extra = {
            "example": {
                "date": "2025-03-14",
                "vital_signs": {"temperature": "36.5-37.0", "heart_rate": "88"},
                "labs": [{"test_name": "Sódio", "value": "133", "unit": "mEq/L"}],
                "fluid_balance": {"intake": 2400, "output": 1800},
            }
        }

class DailyLogOut(DailyLogModel):
    fluid_balance: Optional[FluidBalanceOut] = None
    version: Optional[int] = None

class DeviceModel(BaseModel):
    id: str = ""
    name: str
    insertion_date: str

class VentilationModel(BaseModel):
    mode: VentilationMode = VentilationMode.SPONTANEOUS
    fio2: str = "21"
    peep: str = "0"
    rate: str = "0"
    volume: str = "0"
    pressure: str = "0"
    flow: str = ""
    sub_mode: str = ""

class PatientModel(BaseModel):
    name: str
    age: int = Field(0, ge=0, le=130)
    gender: Gender = Gender.MALE
    bed_number: str = ""
    unit: CareUnit = CareUnit.ICU
    status: PatientStatus = PatientStatus.ACTIVE
    admission_date: str = ""
    estimated_weight: Optional[float] = Field(None, gt=0, le=400, description="kg")
    admission_history: str = ""
    personal_history: List[str] = Field(default_factory=list)
    home_medications: List[str] = Field(default_factory=list)
    diagnostic_hypotheses: List[str] = Field(default_factory=list)
    medical_prescription: str = ""
    vasoactive_drugs: str = ""
    sedation_analgesia: str = ""
    devices_list: List[DeviceModel] = Field(default_factory=list)
    ventilation: VentilationModel = Field(default_factory=VentilationModel)

class PatientUpdate(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = Field(None, ge=0, le=130)
    gender: Optional[Gender] = None
    bed_number: Optional[str] = None
    unit: Optional[CareUnit] = None
    status: Optional[PatientStatus] = None
    admission_date: Optional[str] = None
    estimated_weight: Optional[float] = Field(None, gt=0, le=400)
    admission_history: Optional[str] = None
    personal_history: Optional[List[str]] = None
    home_medications: Optional[List[str]] = None
    diagnostic_hypotheses: Optional[List[str]] = None
    medical_prescription: Optional[str] = None
    vasoactive_drugs: Optional[str] = None
    sedation_analgesia: Optional[str] = None
    devices_list: Optional[List[DeviceModel]] = None
    ventilation: Optional[VentilationModel] = None
    expected_version: Optional[int] = None

class AttachmentModel(BaseModel):
    name: str = Field(..., min_length=1)
    url: str = Field(..., min_length=1, description="Where the uploaded file lives")
    content_type: str = Field("", description="MIME type; image/* is shown inline")

class AttachmentOut(BaseModel):
    id: str
    name: str
    type: str
    url: str
    date: str = ""

class PatientOut(PatientModel):
    id: str
    version: Optional[int] = None
    daily_logs: List[DailyLogOut] = Field(default_factory=list)
    attachments: List[AttachmentOut] = Field(default_factory=list)

class TrendRequest(BaseModel):
    test_name: str
    current_value: Optional[TypedValue] = None
    previous_value: Optional[TypedValue] = None

class TrendResponse(BaseModel):
    direction: str
    significance: str

class LabMatrixRequest(BaseModel):
    logs: List[DailyLogModel] = Field(default_factory=list)

class DoseRequest(BaseModel):
    concentration_mass: Optional[TypedValue] = Field(None, description="mg (IU for vasopressin)")
    concentration_volume: Optional[TypedValue] = Field(None, description="ml")
    infusion_rate: Optional[TypedValue] = Field(None, description="ml/h")
    patient_weight_kg: Optional[TypedValue] = None
    unit: Optional[DoseUnit] = None
    drug: Optional[str] = Field(None, description="Picks the unit when 'unit' is not given")

    class Config:
        json_schema_extra = {
            "example": {
                "drug": "Noradrenalina", "concentration_mass": 16, "concentration_volume": 250,
                "infusion_rate": 10, "patient_weight_kg": 80,
            }
        }

class DoseResponse(BaseModel):
    computable: bool
    value: Optional[float]
    rounded: Optional[float]
    unit: DoseUnit
    weight_kg: Optional[float]
    weight_defaulted: bool
    reason: Optional[str]
    display: str
    calculated_at: datetime = Field(default_factory=datetime.now)

class FluidBalanceRequest(BaseModel):
    intake: Optional[TypedValue] = None
    output: Optional[TypedValue] = None
    logs: List[DailyLogModel] = Field(default_factory=list)

class TemperatureRequest(BaseModel):
    text: str

class PrescriptionToggleRequest(BaseModel):
    text: str
    index: int = Field(..., ge=0)

class LabEditRequest(BaseModel):
    test_name: str
    value: Optional[TypedValue] = None
    unit: Optional[str] = None
    expected_version: Optional[int] = None

class ConductVerifyRequest(BaseModel):
    verified: bool = True
    expected_version: Optional[int] = None

# --- 3. CONVERSIONS ---

def _to_log(model: DailyLogModel) -> DailyLog:
    balance = model.fluid_balance
    return DailyLog(
        id=model.id,
        date=model.date,
        vital_signs=VitalSigns(**model.vital_signs.model_dump()),
        notes=model.notes,
        prescriptions=list(model.prescriptions),
        conducts=[Conduct(**c.model_dump()) for c in model.conducts],
        labs=[LabResult(**l.model_dump()) for l in model.labs],
        fluid_balance=FluidBalance(balance.intake, balance.output) if balance else None,
    )

def _to_logs(models: List[DailyLogModel]) -> List[DailyLog]:
    try:
        return [_to_log(m) for m in models]
    except ValueError as e:
        logger.warning(f"Chart Validation Error: {str(e)}")
        raise HTTPException(status_code=422, detail=f"Chart Validation Error: {str(e)}")

def _patient_fields(data: Dict[str, Any]) -> Dict[str, Any]:
    """Pydantic dump -> Patient dataclass field values."""
    fields = dict(data)
    if fields.get("devices_list") is not None:
        fields["devices_list"] = [Device(**d) for d in fields["devices_list"]]
    if fields.get("ventilation") is not None:
        fields["ventilation"] = Ventilation(**fields["ventilation"])
    return fields

def _log_out(log: DailyLog, version: Optional[int] = None) -> Dict[str, Any]:
    data = asdict(log)
    if log.fluid_balance is not None:
        data["fluid_balance"]["net"] = log.fluid_balance.net
    data["version"] = version
    return data

def _patient_out(patient: Patient, version: Optional[int], db: PatientStore) -> Dict[str, Any]:
    data = asdict(patient)
    data["daily_logs"] = [_log_out(l, db.log_version(l.id)) for l in patient.daily_logs]
    data["version"] = version
    return data

def _unwrap(result: StoreResult) -> StoreResult:
    """StoreResult -> HTTP error, or the result itself on success."""
    if result.status == StoreStatus.SUCCESS:
        return result
    if result.status == StoreStatus.NOT_FOUND:
        raise HTTPException(status_code=404, detail=result.message)
    if result.status == StoreStatus.CONFLICT:
        raise HTTPException(status_code=409, detail=result.message)
    logger.error(f"Store failure: {result.message}")
    raise HTTPException(status_code=500, detail=result.message or "Store failure")

# --- 4. CALCULATOR ENDPOINTS ---

@app.post("/calculators/trend", response_model=TrendResponse)
def trend(request: TrendRequest):
    result = evaluate_trend(request.test_name, request.current_value, request.previous_value)
    return {"direction": result.direction.value, "significance": result.significance.value}

@app.post("/calculators/lab-matrix")
def lab_matrix(request: LabMatrixRequest):
    return build_lab_table(_to_logs(request.logs))

@app.post("/calculators/vasoactive-dose", response_model=DoseResponse)
def vasoactive_dose(request: DoseRequest):
    try:
        unit = request.unit
        if unit is None:
            unit = VasoactiveDoseCalculator.convention_for(request.drug or "")
        logger.info(f"Dose request: {request.drug or 'unnamed'} in {unit.value}")
        result = VasoactiveDoseCalculator.calculate(
            request.concentration_mass,
            request.concentration_volume,
            request.infusion_rate,
            request.patient_weight_kg,
            unit,
        )
    except Exception as e:
        logger.error(f"Internal Engine Failure: {str(e)}", exc_info=True)
        raise HTTPException(status_code=500, detail="Internal Calculation Error")
    return {
        "computable": result.computable,
        "value": result.value,
        "rounded": result.rounded,
        "unit": result.unit,
        "weight_kg": result.weight_kg,
        "weight_defaulted": result.weight_defaulted,
        "reason": result.reason,
        "display": result.formatted(),
    }

@app.post("/calculators/fluid-balance")
def fluid_balance(request: FluidBalanceRequest):
    logs = _to_logs(request.logs)
    try:
        day = balance_from_inputs(request.intake, request.output)
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Chart Validation Error: {str(e)}")
    return {
        "intake": day.intake,
        "output": day.output,
        "net": day.net,
        "cumulative_ml": FluidBalanceCalculator.cumulative(logs),
        "recorded_days": FluidBalanceCalculator.recorded_days(logs),
    }

@app.post("/calculators/temperature")
def temperature(request: TemperatureRequest):
    return {"text": request.text, "severity": classify_temperature(request.text).value}

@app.post("/calculators/prescription/toggle")
def toggle_prescription(request: PrescriptionToggleRequest):
    try:
        text = toggle_line(request.text, request.index)
    except IndexError:
        raise HTTPException(status_code=422, detail=f"Prescription has no line {request.index}")
    return {
        "text": text,
        "lines": [{"text": l.text, "discontinued": l.discontinued} for l in decode(text)],
    }

# --- 5. PATIENT ENDPOINTS ---

@app.get("/patients", response_model=List[PatientOut], dependencies=AUTH)
def list_patients(tab: Optional[str] = Query(None, description="UTI, Enfermaria, Arquivo Morto or Finalizados"),
                  db: PatientStore = Depends(get_store)):
    try:
        patients = db.census(tab) if tab else db.list_patients()
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown tab: {tab}")
    return [_patient_out(p, db.get_patient(p.id).version, db) for p in patients]

@app.post("/patients", response_model=PatientOut, status_code=201, dependencies=AUTH)
def create_patient(request: PatientModel, db: PatientStore = Depends(get_store)):
    logger.info(f"Admitting patient to {request.unit.value}, bed {request.bed_number}")
    patient = Patient(id="", **_patient_fields(request.model_dump()))
    result = _unwrap(db.create_patient(patient))
    return _patient_out(result.value, result.version, db)

@app.get("/patients/{patient_id}", response_model=PatientOut, dependencies=AUTH)
def get_patient(patient_id: str, db: PatientStore = Depends(get_store)):
    result = _unwrap(db.get_patient(patient_id))
    return _patient_out(result.value, result.version, db)

@app.patch("/patients/{patient_id}", response_model=PatientOut, dependencies=AUTH)
def update_patient(patient_id: str, request: PatientUpdate, db: PatientStore = Depends(get_store)):
    changes = request.model_dump(exclude_unset=True)
    expected_version = changes.pop("expected_version", None)
    changes = {k: v for k, v in _patient_fields(changes).items() if v is not None}
    result = _unwrap(db.update_patient(patient_id, changes, expected_version))
    return _patient_out(result.value, result.version, db)

@app.delete("/patients/{patient_id}", status_code=204, dependencies=AUTH)
def delete_patient(patient_id: str, db: PatientStore = Depends(get_store)):
    _unwrap(db.delete_patient(patient_id))

@app.get("/patients/{patient_id}/logs/new", response_model=DailyLogOut, dependencies=AUTH)
def new_daily_log(patient_id: str, date: str = Query(..., description="ISO date"),
                  db: PatientStore = Depends(get_store)):
    try:
        result = _unwrap(db.new_daily_log(patient_id, date))
    except ValueError as e:
        raise HTTPException(status_code=422, detail=f"Chart Validation Error: {str(e)}")
    return _log_out(result.value)

@app.post("/patients/{patient_id}/logs", response_model=DailyLogOut, dependencies=AUTH)
def upsert_daily_log(patient_id: str, request: DailyLogModel,
                     expected_version: Optional[int] = Query(None),
                     db: PatientStore = Depends(get_store)):
    log = _to_logs([request])[0]
    result = _unwrap(db.upsert_daily_log(patient_id, log, expected_version))
    return _log_out(result.value, result.version)

@app.delete("/patients/{patient_id}/logs/{log_id}", status_code=204, dependencies=AUTH)
def delete_daily_log(patient_id: str, log_id: str, db: PatientStore = Depends(get_store)):
    _unwrap(db.delete_daily_log(patient_id, log_id))

@app.put("/patients/{patient_id}/logs/{log_id}/labs", response_model=DailyLogOut, dependencies=AUTH)
def set_lab_value(patient_id: str, log_id: str, request: LabEditRequest,
                  db: PatientStore = Depends(get_store)):
    result = _unwrap(db.set_lab_value(
        patient_id, log_id, request.test_name, request.value, request.unit, request.expected_version
    ))
    return _log_out(result.value, result.version)

@app.put("/patients/{patient_id}/logs/{log_id}/conducts/{index}", response_model=DailyLogOut, dependencies=AUTH)
def verify_conduct(patient_id: str, log_id: str, index: int, request: ConductVerifyRequest,
                   db: PatientStore = Depends(get_store)):
    result = _unwrap(db.set_conduct_verified(
        patient_id, log_id, index, request.verified, request.expected_version
    ))
    return _log_out(result.value, result.version)

@app.post("/patients/{patient_id}/attachments", response_model=AttachmentOut, status_code=201, dependencies=AUTH)
def add_attachment(patient_id: str, request: AttachmentModel, db: PatientStore = Depends(get_store)):
    result = _unwrap(db.add_attachment(patient_id, request.name, request.url, request.content_type))
    return asdict(result.value)

@app.delete("/patients/{patient_id}/attachments/{attachment_id}", status_code=204, dependencies=AUTH)
def delete_attachment(patient_id: str, attachment_id: str, db: PatientStore = Depends(get_store)):
    _unwrap(db.delete_attachment(patient_id, attachment_id))

@app.get("/patients/{patient_id}/chart", dependencies=AUTH)
def patient_chart(patient_id: str, db: PatientStore = Depends(get_store)):
    result = _unwrap(db.get_patient(patient_id))
    return build_patient_chart(result.value)

@app.get("/handoff", dependencies=AUTH)
def handoff(tab: str = Query(CareUnit.ICU.value), db: PatientStore = Depends(get_store)):
    try:
        patients = db.census(tab)
    except ValueError:
        raise HTTPException(status_code=422, detail=f"Unknown tab: {tab}")
    return {"tab": tab, "generated_at": datetime.now().isoformat(), "rows": build_handoff_sheet(patients)}

if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
