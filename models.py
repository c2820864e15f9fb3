"""
CardioEDAD: Chart Data Dictionary
=================================
This module defines the chart of a hospitalized patient (ICU or ward):
the daily clinical entries the team writes (Inputs), and the values the
calculators hand back to the renderers (Outputs).

Structural validation lives in __post_init__. Clinical interpretation
(trends, doses, temperature) lives in safety.py, core_labs.py and protocols.py.
"""

from dataclasses import dataclass, field, replace
from datetime import date
from enum import Enum
from typing import Dict, List, Optional, Tuple, Union
from constants import DoseUnit

class InvalidRecordError(ValueError):
    """Raised when a chart entry is structurally impossible (bad date, blank test name)."""
    pass

class LogNotFoundError(KeyError):
    """Raised when an edit addresses a daily log the patient does not have."""
    pass

# --- 1. ENUMS (Standardizing the Inputs) ---

class CareUnit(Enum):
    ICU = "UTI"
    WARD = "Enfermaria"
    ARCHIVE = "Arquivo Morto"

class PatientStatus(Enum):
    ACTIVE = "active"
    COMPLETED = "completed"   # Discharged
    DELETED = "deleted"       # Soft delete, hidden from every listing

class Gender(Enum):
    MALE = "Masculino"
    FEMALE = "Feminino"
    OTHER = "Outro"

class VentilationMode(Enum):
    SPONTANEOUS = "Espontânea"
    OXYGEN_CATHETER = "Cateter/CNAF"
    NON_INVASIVE = "VNI"
    INVASIVE = "VM"

class TrendDirection(Enum):
    UP = "up"
    DOWN = "down"
    FLAT = "flat"
    UNKNOWN = "unknown"

class TrendSignificance(Enum):
    IMPROVING = "improving"
    WORSENING = "worsening"
    NEUTRAL = "neutral"

class TemperatureSeverity(Enum):
    DANGER = "danger"
    WARNING = "warning"
    NORMAL = "normal"

# Free text or number: "5,2", 140, "36.5-37.0"
LabValue = Union[str, int, float]

def _is_blank(value) -> bool:
    return value is None or str(value).strip() == ""

# --- 2. INPUT LAYER (What the Team Writes) ---

@dataclass
class LabResult:
    test_name: str
    value: LabValue = ""
    unit: str = ""
    reference_range: str = ""

    def __post_init__(self):
        if not isinstance(self.test_name, str) or not self.test_name.strip():
            raise InvalidRecordError("Lab result needs a test name")
        self.test_name = self.test_name.strip()

    @property
    def is_blank(self) -> bool:
        return _is_blank(self.value)

@dataclass
class VitalSigns:
    """Kept as typed text: '36.5-37.0' is a legitimate temperature entry."""
    temperature: str = ""              # Celsius
    heart_rate: str = ""               # bpm
    respiratory_rate: str = ""         # bpm
    blood_pressure_sys: str = ""       # mmHg
    blood_pressure_dia: str = ""       # mmHg
    oxygen_saturation: str = ""        # %
    capillary_blood_glucose: str = ""  # mg/dL

@dataclass
class Conduct:
    """A pending or completed action item of the day."""
    description: str
    verified: bool = False

@dataclass(frozen=True)
class FluidBalance:
    """
    ICU fluid balance of one day, in ml.
    net is derived on every read; there is no way to set it.
    """
    intake: float = 0.0
    output: float = 0.0

    def __post_init__(self):
        for name in ("intake", "output"):
            val = getattr(self, name)
            if isinstance(val, bool) or not isinstance(val, (int, float)):
                raise InvalidRecordError(f"Fluid {name} must be numeric, got {type(val)}")
            if val < 0:
                raise InvalidRecordError(f"Fluid {name} cannot be negative: {val}")

    @property
    def net(self) -> float:
        return self.intake - self.output

    def with_intake(self, intake: float) -> "FluidBalance":
        return replace(self, intake=intake)

    def with_output(self, output: float) -> "FluidBalance":
        return replace(self, output=output)

@dataclass
class DailyLog:
    """One clinical entry per patient per calendar date."""
    id: str
    date: str                          # ISO date, "2025-03-14"
    vital_signs: VitalSigns = field(default_factory=VitalSigns)
    notes: str = ""
    prescriptions: List[str] = field(default_factory=list)
    conducts: List[Conduct] = field(default_factory=list)
    labs: List[LabResult] = field(default_factory=list)
    fluid_balance: Optional[FluidBalance] = None   # ICU only

    def __post_init__(self):
        try:
            date.fromisoformat(str(self.date)[:10])
        except ValueError:
            raise InvalidRecordError(f"Invalid log date: {self.date!r}")

    @property
    def calendar_date(self) -> date:
        return date.fromisoformat(str(self.date)[:10])

    @property
    def pending_conducts(self) -> List[Conduct]:
        return [c for c in self.conducts if not c.verified]

    def find_lab(self, test_name: str) -> Optional[LabResult]:
        # Duplicates are not expected; first one wins
        for lab in self.labs:
            if lab.test_name == test_name:
                return lab
        return None

    def with_conduct_verified(self, index: int, verified: bool = True) -> "DailyLog":
        conducts = list(self.conducts)
        conducts[index] = replace(conducts[index], verified=verified)
        return replace(self, conducts=conducts)

    def cleaned(self, keep_fluid_balance: bool = True) -> "DailyLog":
        """Drops the empty rows a form submission carries."""
        return replace(
            self,
            prescriptions=[p for p in self.prescriptions if p.strip()],
            conducts=[c for c in self.conducts if c.description.strip()],
            labs=[l for l in self.labs if not l.is_blank],
            fluid_balance=self.fluid_balance if keep_fluid_balance else None,
        )

@dataclass
class Ventilation:
    mode: VentilationMode = VentilationMode.SPONTANEOUS
    fio2: str = "21"      # %
    peep: str = "0"       # PEEP / EPAP
    rate: str = "0"
    volume: str = "0"     # Tidal volume
    pressure: str = "0"   # Support / inspiratory pressure
    flow: str = ""        # L/min, catheter / high flow only
    sub_mode: str = ""    # VCV / PCV / PSV, invasive only

@dataclass
class Device:
    id: str
    name: str
    insertion_date: str

@dataclass
class Attachment:
    id: str
    name: str
    type: str   # 'image' | 'file'
    url: str
    date: str = ""

@dataclass
class Patient:
    id: str
    name: str
    age: int = 0
    gender: Gender = Gender.MALE
    bed_number: str = ""
    unit: CareUnit = CareUnit.ICU
    status: PatientStatus = PatientStatus.ACTIVE
    admission_date: str = ""
    estimated_weight: Optional[float] = None   # kg

    admission_history: str = ""
    personal_history: List[str] = field(default_factory=list)
    home_medications: List[str] = field(default_factory=list)
    diagnostic_hypotheses: List[str] = field(default_factory=list)
    medical_prescription: str = ""   # Newline separated, see prescriptions.py

    # ICU
    vasoactive_drugs: str = ""
    sedation_analgesia: str = ""
    devices_list: List[Device] = field(default_factory=list)
    ventilation: Ventilation = field(default_factory=Ventilation)

    daily_logs: List[DailyLog] = field(default_factory=list)   # Creation order
    attachments: List[Attachment] = field(default_factory=list)

    @property
    def is_icu(self) -> bool:
        return self.unit == CareUnit.ICU

    @property
    def latest_log(self) -> Optional[DailyLog]:
        if not self.daily_logs:
            return None
        return sorted(self.daily_logs, key=lambda l: l.calendar_date)[-1]

# --- 3. OUTPUT LAYER (What the Renderers Receive) ---

@dataclass(frozen=True)
class TrendResult:
    direction: TrendDirection
    significance: TrendSignificance

    @staticmethod
    def unknown() -> "TrendResult":
        return TrendResult(TrendDirection.UNKNOWN, TrendSignificance.NEUTRAL)

@dataclass(frozen=True)
class DoseResult:
    """
    Outcome of a dose conversion.
    computable=False replaces NaN/Infinity; reason says why.
    """
    computable: bool
    value: Optional[float]
    unit: DoseUnit
    weight_kg: Optional[float] = None
    weight_defaulted: bool = False   # True when the 70 kg safety default was used
    reason: Optional[str] = None

    @property
    def rounded(self) -> Optional[float]:
        return round(self.value, 2) if self.computable else None

    def formatted(self) -> str:
        if not self.computable:
            return "N/C"
        return f"{self.value:.2f} {self.unit.value}"

@dataclass(frozen=True)
class LabCell:
    log_id: str
    date: str
    value: LabValue
    unit: str = ""

@dataclass
class LabMatrix:
    """
    Test-by-date grid. Row order is test_names, column order is dates
    (ascending). rows[test][i] is the cell of column i, or None.
    """
    test_names: List[str]
    dates: List[str]
    log_ids: List[str]
    rows: Dict[str, List[Optional[LabCell]]]

    def cell(self, test_name: str, column: int) -> Optional[LabCell]:
        row = self.rows.get(test_name)
        if row is None or not 0 <= column < len(row):
            return None
        return row[column]

    def cell_value(self, test_name: str, date: str) -> Optional[LabCell]:
        """First column carrying that date."""
        for i, col_date in enumerate(self.dates):
            if col_date == date:
                return self.cell(test_name, i)
        return None

    def value_pairs(self, test_name: str) -> List[Tuple[Optional[LabCell], Optional[LabCell]]]:
        """(current, previous) per column; previous is only the column right before."""
        row = self.rows.get(test_name, [])
        return [(cell, row[i - 1] if i > 0 else None) for i, cell in enumerate(row)]
