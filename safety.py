# safety.py
"""
Clinical signal colouring: lab trend significance and temperature severity.

Everything here degrades to "no opinion" (unknown / neutral / normal)
instead of raising when the chart holds text that is not a number.
"""

import math
import re
import unicodedata
from typing import List, Optional

from constants import CLINICAL_CONSTANTS, LAB_LIBRARY, ReferenceRange
from models import TrendResult, TrendDirection, TrendSignificance, TemperatureSeverity

# A hyphen after a number, spaced or not, separates a range: "36.5-37.0", "36.5 -36.9"
_RANGE_HYPHEN = re.compile(r"(?<=[\d.])\s*-")
# A minus sign only counts when it does not follow a digit
_NUMBER_TOKEN = re.compile(r"(?<![\d.])-?(?:\d+(?:\.\d+)?|\.\d+)")

def _tokens(value) -> List[str]:
    if value is None or isinstance(value, bool):
        return []
    if isinstance(value, (int, float)):
        return [repr(float(value))] if math.isfinite(value) else []
    text = _RANGE_HYPHEN.sub(" ", str(value).replace(",", "."))
    return _NUMBER_TOKEN.findall(text)

def parse_clinical_number(value) -> Optional[float]:
    """
    Lenient parse of a typed value: comma or dot decimals, first number wins.
    "5,2" -> 5.2, "140 mEq/L" -> 140.0, "" -> None, "hemolisado" -> None
    """
    tokens = _tokens(value)
    if not tokens:
        return None
    number = float(tokens[0])
    return number if math.isfinite(number) else None

def extract_numbers(value) -> List[float]:
    """Every number in the text: "36.5-37.0" -> [36.5, 37.0]"""
    return [n for n in (float(t) for t in _tokens(value)) if math.isfinite(n)]

def normalize_name(name: str) -> str:
    """Accent and case insensitive key: 'Noradrenalina ' -> 'noradrenalina'"""
    decomposed = unicodedata.normalize("NFKD", name or "")
    return "".join(c for c in decomposed if not unicodedata.combining(c)).casefold().strip()

# --- TREND EVALUATOR ---

def _side_of_range(value: float, entry: ReferenceRange) -> int:
    if value < entry.min:
        return -1
    if value > entry.max:
        return 1
    return 0

def _distance_from_range(value: float, entry: ReferenceRange) -> float:
    if value < entry.min:
        return entry.min - value
    if value > entry.max:
        return value - entry.max
    return 0.0

def _is_returning_to_normal(entry: ReferenceRange, current: float, previous: float) -> bool:
    # 1. Inside the band
    current_side = _side_of_range(current, entry)
    if current_side == 0:
        return True

    # 2. Still out on the same side, but closer. Overshooting to the other side is not.
    return (current_side == _side_of_range(previous, entry)
            and _distance_from_range(current, entry) < _distance_from_range(previous, entry))

def evaluate_trend(test_name: str, current_value, previous_value) -> TrendResult:
    """
    Direction and clinical colour of a lab value against the previous column.

    - highIsBad tests: rising is worsening.
    - lowIsBad tests: rising is improving.
    - Two-sided tests (Na, K, pH, pCO2, HCO3...): improving only when the value
      is inside the band or approaching it from the same side; any other move
      is worsening.
    """
    current = parse_clinical_number(current_value)
    previous = parse_clinical_number(previous_value)
    if current is None or previous is None:
        return TrendResult.unknown()

    diff = current - previous
    if abs(diff) < CLINICAL_CONSTANTS.TREND_EPSILON:
        return TrendResult(TrendDirection.FLAT, TrendSignificance.NEUTRAL)

    rising = diff > 0
    direction = TrendDirection.UP if rising else TrendDirection.DOWN

    entry = LAB_LIBRARY.get(test_name)
    if entry is None:
        return TrendResult(direction, TrendSignificance.NEUTRAL)

    if entry.high_is_bad:
        bad = rising
    elif entry.low_is_bad:
        bad = not rising
    else:
        bad = not _is_returning_to_normal(entry, current, previous)

    return TrendResult(direction, TrendSignificance.WORSENING if bad else TrendSignificance.IMPROVING)

# --- TEMPERATURE ---

def classify_temperature(temp_text) -> TemperatureSeverity:
    """
    Worst reading wins. Each number in the text is judged on its own,
    so "35.5-39.0" is danger because of the 39.0.
    """
    warning_low, warning_high = CLINICAL_CONSTANTS.WARNING_RANGE
    severity = TemperatureSeverity.NORMAL

    for reading in extract_numbers(temp_text):
        if reading < CLINICAL_CONSTANTS.HYPOTHERMIA_BELOW or reading > CLINICAL_CONSTANTS.HYPERTHERMIA_ABOVE:
            return TemperatureSeverity.DANGER
        if warning_low <= reading <= warning_high:
            severity = TemperatureSeverity.WARNING

    return severity
