from enum import Enum
from dataclasses import dataclass
VERSION = "1.0.0"

class DoseUnit(Enum):
    MCG_KG_MIN = "mcg/kg/min"
    MCG_KG_H = "mcg/kg/h"
    UNITS_MIN = "units/min"   # Vasopressin (IU), weight independent

@dataclass(frozen=True)
class ReferenceRange:
    test_name: str
    min: float
    max: float
    high_is_bad: bool = False
    low_is_bad: bool = False

class CLINICAL_CONSTANTS:
    # Below this difference two lab values are the same value
    TREND_EPSILON = 0.01

    # SAFETY DEFAULT: used only when the chart has no weight (or zero).
    # Every substitution is logged and flagged on the DoseResult.
    DEFAULT_PATIENT_WEIGHT_KG = 70.0

    HYPOTHERMIA_BELOW = 35.0
    HYPERTHERMIA_ABOVE = 37.8
    WARNING_RANGE = (37.0, 37.7)

    # Prescription lines starting with this are discontinued
    DISCONTINUED_MARKER = "~~"

class LAB_LIBRARY:
    """
    The lab catalogue.
    Keys are the test names exactly as they are written into the charts.
    """
    RANGES = {
        # Electrolytes
        "Sódio": ReferenceRange("Sódio", 135, 145),
        "Potássio": ReferenceRange("Potássio", 3.5, 5.0),
        # Renal
        "Ureia": ReferenceRange("Ureia", 15, 45, high_is_bad=True),
        "Creatinina": ReferenceRange("Creatinina", 0.6, 1.2, high_is_bad=True),
        # Hematology
        "Hemoglobina": ReferenceRange("Hemoglobina", 12, 16, low_is_bad=True),
        "Hematócrito": ReferenceRange("Hematócrito", 36, 48, low_is_bad=True),
        "Leucócitos": ReferenceRange("Leucócitos", 4000, 11000),
        "Plaquetas": ReferenceRange("Plaquetas", 150000, 450000, low_is_bad=True),
        # Inflammatory
        "PCR": ReferenceRange("PCR", 0, 5, high_is_bad=True),
        "Lactato": ReferenceRange("Lactato", 0, 2.0, high_is_bad=True),
        # Coagulation
        "aPTT": ReferenceRange("aPTT", 25, 35),
        "INR": ReferenceRange("INR", 0.8, 1.2, high_is_bad=True),
        # Blood gas
        "pH": ReferenceRange("pH", 7.35, 7.45),
        "pO2": ReferenceRange("pO2", 80, 100, low_is_bad=True),
        "pCO2": ReferenceRange("pCO2", 35, 45),
        "Bicarbonato": ReferenceRange("Bicarbonato", 22, 26),
        "SatO2": ReferenceRange("SatO2", 95, 100, low_is_bad=True),
    }

    # Row order of the lab matrix: electrolytes -> renal -> hematology ->
    # inflammatory -> coagulation -> blood gas
    MANDATORY_ORDER = (
        "Sódio", "Potássio", "Ureia", "Creatinina", "Hemoglobina", "Hematócrito",
        "Leucócitos", "Plaquetas", "PCR", "Lactato", "aPTT", "INR",
        "pH", "pO2", "pCO2", "Bicarbonato", "SatO2",
    )

    STANDARD_UNITS = {
        "Sódio": "mEq/L", "Potássio": "mEq/L", "Ureia": "mg/dL", "Creatinina": "mg/dL",
        "Hemoglobina": "g/dL", "Hematócrito": "%", "Leucócitos": "/mm³", "Plaquetas": "/mm³",
        "PCR": "mg/L", "Lactato": "mmol/L", "aPTT": "s", "INR": "",
        "pH": "", "pO2": "mmHg", "pCO2": "mmHg", "Bicarbonato": "mEq/L", "SatO2": "%",
    }

    ABBREVIATIONS = {
        "Sódio": "Na+", "Potássio": "K+", "Ureia": "Ur", "Creatinina": "Cr",
        "Hemoglobina": "Hb", "Hematócrito": "Ht", "Leucócitos": "Leuco", "Plaquetas": "Plq",
        "PCR": "PCR", "Lactato": "Lac", "aPTT": "aPTT", "INR": "INR", "pH": "pH",
        "pO2": "pO2", "pCO2": "pCO2", "Bicarbonato": "BIC", "SatO2": "Sat",
    }

    @staticmethod
    def get(test_name: str):
        return LAB_LIBRARY.RANGES.get(test_name)

    @staticmethod
    def display_name(test_name: str) -> str:
        return LAB_LIBRARY.ABBREVIATIONS.get(test_name, test_name)

class DRUG_LIBRARY:
    """
    Dose convention per continuous infusion.
    Keys are lower-case and accent-free; see safety.normalize_name.
    """
    CONVENTIONS = {
        "noradrenalina": DoseUnit.MCG_KG_MIN,
        "norepinefrina": DoseUnit.MCG_KG_MIN,
        "norepinephrine": DoseUnit.MCG_KG_MIN,
        "adrenalina": DoseUnit.MCG_KG_MIN,
        "epinefrina": DoseUnit.MCG_KG_MIN,
        "epinephrine": DoseUnit.MCG_KG_MIN,
        "dobutamina": DoseUnit.MCG_KG_MIN,
        "dobutamine": DoseUnit.MCG_KG_MIN,
        "dopamina": DoseUnit.MCG_KG_MIN,
        "dopamine": DoseUnit.MCG_KG_MIN,
        "nitroprussiato": DoseUnit.MCG_KG_MIN,
        "nitroprusside": DoseUnit.MCG_KG_MIN,
        "vasopressina": DoseUnit.UNITS_MIN,
        "vasopressin": DoseUnit.UNITS_MIN,
        "dexmedetomidina": DoseUnit.MCG_KG_H,
        "dexmedetomidine": DoseUnit.MCG_KG_H,
        "fentanil": DoseUnit.MCG_KG_H,
        "fentanyl": DoseUnit.MCG_KG_H,
    }

    DEFAULT = DoseUnit.MCG_KG_MIN
