# records.py
"""
Backend row <-> chart dataclass mapping.

Rows are the SQLModel tables of db.py. Nested structures live in JSON columns
whose keys are camelCase (vital_signs, labs, conducts, fluid_balance,
ventilation, devices_list). Unknown enum values fail fast instead of being guessed.
"""

import logging
from typing import Any, Dict, List, Optional

from db import AttachmentRow, DailyLogRow, PatientRow
from models import (
    Attachment,
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
from safety import parse_clinical_number

logger = logging.getLogger(__name__)

_VITAL_KEYS = {
    "temperature": "temperature",
    "heart_rate": "heartRate",
    "respiratory_rate": "respiratoryRate",
    "blood_pressure_sys": "bloodPressureSys",
    "blood_pressure_dia": "bloodPressureDia",
    "oxygen_saturation": "oxygenSaturation",
    "capillary_blood_glucose": "capillaryBloodGlucose",
}

def _text(value) -> str:
    return "" if value is None or isinstance(value, (dict, list)) else str(value)

# --- DAILY LOGS ---

def vitals_from_json(data: Optional[Dict[str, Any]]) -> VitalSigns:
    data = data or {}
    return VitalSigns(**{field: _text(data.get(key)) for field, key in _VITAL_KEYS.items()})

def vitals_to_json(vitals: VitalSigns) -> Dict[str, str]:
    return {key: getattr(vitals, field) for field, key in _VITAL_KEYS.items()}

def fluid_balance_from_json(data: Optional[Dict[str, Any]]) -> Optional[FluidBalance]:
    if not data:
        return None
    balance = FluidBalance(
        intake=parse_clinical_number(data.get("intake")) or 0.0,
        output=parse_clinical_number(data.get("output")) or 0.0,
    )
    stored_net = parse_clinical_number(data.get("net"))
    if stored_net is not None and stored_net != balance.net:
        logger.debug("Stored net %s disagrees with intake-output %s; recomputed", stored_net, balance.net)
    return balance

def fluid_balance_to_json(balance: Optional[FluidBalance]) -> Optional[Dict[str, float]]:
    if balance is None:
        return None
    return {"intake": balance.intake, "output": balance.output, "net": balance.net}

def log_from_record(row: DailyLogRow) -> DailyLog:
    return DailyLog(
        id=row.id,
        date=row.date,
        vital_signs=vitals_from_json(row.vital_signs),
        notes=_text(row.notes),
        prescriptions=list(row.prescriptions or []),
        conducts=[
            Conduct(description=_text(c.get("description")), verified=bool(c.get("verified", False)))
            for c in row.conducts or []
        ],
        labs=[
            LabResult(
                test_name=_text(l.get("testName")),
                value=l.get("value") if l.get("value") is not None else "",
                unit=_text(l.get("unit")),
                reference_range=_text(l.get("referenceRange")),
            )
            for l in row.labs or []
        ],
        fluid_balance=fluid_balance_from_json(row.fluid_balance),
    )

def log_to_record(log: DailyLog, patient_id: str, row: Optional[DailyLogRow] = None) -> DailyLogRow:
    """Writes the log onto row (a fresh one when not given)."""
    if row is None:
        row = DailyLogRow(id=log.id, patient_id=patient_id, date=log.date)
    row.id = log.id
    row.patient_id = patient_id
    row.date = log.date
    row.vital_signs = vitals_to_json(log.vital_signs)
    row.notes = log.notes
    row.prescriptions = list(log.prescriptions)
    row.conducts = [{"description": c.description, "verified": c.verified} for c in log.conducts]
    row.labs = [
        {"testName": l.test_name, "value": l.value, "unit": l.unit, "referenceRange": l.reference_range}
        for l in log.labs
    ]
    row.fluid_balance = fluid_balance_to_json(log.fluid_balance)
    return row

# --- PATIENTS ---

def ventilation_from_json(data: Optional[Dict[str, Any]]) -> Ventilation:
    if not data:
        return Ventilation()
    return Ventilation(
        mode=VentilationMode(data.get("mode") or VentilationMode.SPONTANEOUS.value),
        fio2=_text(data.get("fio2")),
        peep=_text(data.get("peep")),
        rate=_text(data.get("rate")),
        volume=_text(data.get("volume")),
        pressure=_text(data.get("pressure")),
        flow=_text(data.get("flow")),
        sub_mode=_text(data.get("subMode")),
    )

def ventilation_to_json(v: Ventilation) -> Dict[str, str]:
    return {
        "mode": v.mode.value, "fio2": v.fio2, "peep": v.peep, "rate": v.rate,
        "volume": v.volume, "pressure": v.pressure, "flow": v.flow, "subMode": v.sub_mode,
    }

def attachment_from_record(row: AttachmentRow) -> Attachment:
    return Attachment(
        id=row.id,
        name=row.name,
        type=row.type or "file",
        url=row.url,
        date=row.created_at.isoformat() if row.created_at else "",
    )

def patient_from_record(row: PatientRow,
                        log_rows: Optional[List[DailyLogRow]] = None,
                        attachment_rows: Optional[List[AttachmentRow]] = None) -> Patient:
    weight = parse_clinical_number(row.estimated_weight)
    return Patient(
        id=row.id,
        name=_text(row.name),
        age=int(row.age or 0),
        gender=Gender(row.gender or Gender.MALE.value),
        bed_number=_text(row.bed_number),
        unit=CareUnit(row.unit or CareUnit.ICU.value),
        status=PatientStatus(row.status or PatientStatus.ACTIVE.value),
        admission_date=_text(row.admission_date),
        estimated_weight=weight if weight else None,
        admission_history=_text(row.admission_history),
        personal_history=list(row.personal_history or []),
        home_medications=list(row.home_medications or []),
        diagnostic_hypotheses=list(row.diagnostic_hypotheses or []),
        medical_prescription=_text(row.medical_prescription),
        vasoactive_drugs=_text(row.vasoactive_drugs),
        sedation_analgesia=_text(row.sedation_analgesia),
        devices_list=[
            Device(id=_text(d.get("id")), name=_text(d.get("name")), insertion_date=_text(d.get("insertionDate")))
            for d in row.devices_list or []
        ],
        ventilation=ventilation_from_json(row.ventilation),
        daily_logs=[log_from_record(r) for r in log_rows or []],
        attachments=[attachment_from_record(r) for r in attachment_rows or []],
    )

def patient_to_record(patient: Patient, row: Optional[PatientRow] = None) -> PatientRow:
    """Patient columns only; logs and attachments live in their own tables."""
    if row is None:
        row = PatientRow(id=patient.id)
    row.id = patient.id
    row.name = patient.name
    row.age = patient.age
    row.gender = patient.gender.value
    row.bed_number = patient.bed_number
    row.unit = patient.unit.value
    row.status = patient.status.value
    row.admission_date = patient.admission_date
    row.estimated_weight = patient.estimated_weight
    row.admission_history = patient.admission_history
    row.personal_history = list(patient.personal_history)
    row.home_medications = list(patient.home_medications)
    row.diagnostic_hypotheses = list(patient.diagnostic_hypotheses)
    row.medical_prescription = patient.medical_prescription
    row.vasoactive_drugs = patient.vasoactive_drugs
    row.sedation_analgesia = patient.sedation_analgesia
    row.devices_list = [
        {"id": d.id, "name": d.name, "insertionDate": d.insertion_date} for d in patient.devices_list
    ]
    row.ventilation = ventilation_to_json(patient.ventilation)
    return row
