# --- METADATA & COMPLIANCE ---
from constants import VERSION

__version__ = VERSION
__model_date__ = "2025-11-04"

MEDICAL_DISCLAIMER = """
⚠️ CHARTING AID - NOT A CLINICAL DECISION
• Trend colours and doses are computed from typed values only
• Doses without a charted weight use a 70 kg default (flagged)
• Final responsibility: Treating physician
"""

"""
CardioEDAD: Chart Assembly
==========================
Puts the calculators together into the read-only views the printouts and
the bedside screen render: one patient's chart, and the shift handoff sheet
for a whole unit. No logic of its own beyond ordering and selection.
"""

from dataclasses import asdict
from typing import Any, Dict, List, Optional, Sequence

from constants import LAB_LIBRARY
from core_labs import LabTrendEngine
from models import DailyLog, Patient
from prescriptions import decode
from protocols import FluidBalanceCalculator
from safety import classify_temperature, parse_clinical_number

HANDOFF_PENDING_LIMIT = 5

def build_lab_table(logs: Sequence[DailyLog]) -> Dict[str, Any]:
    """Lab matrix with a trend on every filled cell, ready to render."""
    matrix = LabTrendEngine.build_lab_matrix(logs)
    rows = []
    for test_name in matrix.test_names:
        trends = LabTrendEngine.trend_row(matrix, test_name)
        cells = []
        for cell, trend in zip(matrix.rows[test_name], trends):
            if cell is None:
                cells.append(None)
                continue
            cells.append({
                "log_id": cell.log_id,
                "date": cell.date,
                "value": cell.value,
                "unit": cell.unit,
                "direction": trend.direction.value,
                "significance": trend.significance.value,
            })
        rows.append({
            "test_name": test_name,
            "display_name": LAB_LIBRARY.display_name(test_name),
            "cells": cells,
        })
    return {"dates": matrix.dates, "log_ids": matrix.log_ids, "rows": rows}

def _latest_summary(latest: Optional[DailyLog]) -> Dict[str, Any]:
    if latest is None:
        return {"date": None, "vitals": None, "temperature_severity": None, "pending_conducts": []}
    return {
        "date": latest.date,
        "vitals": asdict(latest.vital_signs),
        "temperature_severity": classify_temperature(latest.vital_signs.temperature).value,
        "pending_conducts": [c.description for c in latest.pending_conducts],
    }

def build_patient_chart(patient: Patient) -> Dict[str, Any]:
    """Everything the single-patient printout needs."""
    return {
        "patient_id": patient.id,
        "name": patient.name,
        "age": patient.age,
        "gender": patient.gender.value,
        "bed_number": patient.bed_number,
        "unit": patient.unit.value,
        "diagnostic_hypotheses": list(patient.diagnostic_hypotheses),
        "labs": build_lab_table(patient.daily_logs),
        "fluid_balance": {
            "cumulative_ml": FluidBalanceCalculator.cumulative(patient.daily_logs),
            "recorded_days": FluidBalanceCalculator.recorded_days(patient.daily_logs),
        },
        "latest": _latest_summary(patient.latest_log),
        "prescription": [
            {"text": line.text, "discontinued": line.discontinued}
            for line in decode(patient.medical_prescription)
        ],
    }

def _bed_key(patient: Patient):
    # Numeric beds in numeric order ("2" before "10"), then the rest by text
    bed = parse_clinical_number(patient.bed_number)
    return (bed is None, bed if bed is not None else 0.0, patient.bed_number)

def _first_line(text: str) -> str:
    return text.split("\n")[0] if text else ""

def build_handoff_sheet(patients: Sequence[Patient]) -> List[Dict[str, Any]]:
    """One row per patient, ordered by bed, for the shift handoff printout."""
    sheet = []
    for patient in sorted(patients, key=_bed_key):
        latest = _latest_summary(patient.latest_log)
        sheet.append({
            "patient_id": patient.id,
            "bed_number": patient.bed_number,
            "name": patient.name,
            "age": patient.age,
            "gender": patient.gender.value,
            "main_hypothesis": patient.diagnostic_hypotheses[0] if patient.diagnostic_hypotheses else "",
            "vasoactive": _first_line(patient.vasoactive_drugs),
            "ventilation_mode": patient.ventilation.mode.value,
            "temperature_severity": latest["temperature_severity"],
            "cumulative_fluid_balance_ml": FluidBalanceCalculator.cumulative(patient.daily_logs),
            "pending_conducts": latest["pending_conducts"][:HANDOFF_PENDING_LIMIT],
        })
    return sheet
