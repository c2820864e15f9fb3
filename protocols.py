# protocols.py
import logging
import math
from typing import Iterable, Optional, Union

from constants import CLINICAL_CONSTANTS, DRUG_LIBRARY, DoseUnit
from models import DailyLog, DoseResult, FluidBalance
from safety import normalize_name, parse_clinical_number

logger = logging.getLogger(__name__)

class FluidBalanceCalculator:
    @staticmethod
    def recompute(intake, output) -> float:
        """net = intake - output. Blank or unreadable sides count as 0 ml."""
        intake_ml = parse_clinical_number(intake) or 0.0
        output_ml = parse_clinical_number(output) or 0.0
        return intake_ml - output_ml

    @staticmethod
    def cumulative(logs: Iterable[DailyLog]) -> float:
        """
        Sum of each day's net over the logs that carry a balance.
        Always recomputed from intake/output, never read from a stored total.
        """
        return sum(log.fluid_balance.net for log in logs if log.fluid_balance is not None)

    @staticmethod
    def recorded_days(logs: Iterable[DailyLog]) -> int:
        return sum(1 for log in logs if log.fluid_balance is not None)

class VasoactiveDoseCalculator:
    @staticmethod
    def convention_for(drug_name: str) -> DoseUnit:
        return DRUG_LIBRARY.CONVENTIONS.get(normalize_name(drug_name), DRUG_LIBRARY.DEFAULT)

    @staticmethod
    def _resolve_weight(patient_weight_kg) -> tuple:
        weight = parse_clinical_number(patient_weight_kg)
        if weight is None or weight <= 0:
            # SAFETY DEFAULT: a 70 kg adult is assumed. Flagged on the result.
            logger.warning(
                "Patient weight missing (%r): dosing with default %.0f kg",
                patient_weight_kg, CLINICAL_CONSTANTS.DEFAULT_PATIENT_WEIGHT_KG,
            )
            return CLINICAL_CONSTANTS.DEFAULT_PATIENT_WEIGHT_KG, True
        return weight, False

    @staticmethod
    def calculate(concentration_mass,
                  concentration_volume,
                  infusion_rate,
                  patient_weight_kg=None,
                  unit_convention: Union[DoseUnit, str] = DoseUnit.MCG_KG_MIN) -> DoseResult:
        """
        Pump rate -> delivered dose.
        mass in mg (or IU for vasopressin), volume in ml, rate in ml/h.

        mcg/kg/min = rate * (mass/volume) * 1000 / (weight * 60)
        mcg/kg/h   = rate * (mass/volume) * 1000 / weight
        units/min  = rate * (mass/volume) / 60
        """
        try:
            unit = DoseUnit(unit_convention)
        except ValueError:
            logger.debug("Dose not computable: unknown convention %r", unit_convention)
            return DoseResult(False, None, DRUG_LIBRARY.DEFAULT, reason=f"unknown dose unit {unit_convention!r}")

        def not_computable(reason: str, weight: Optional[float] = None, defaulted: bool = False) -> DoseResult:
            logger.debug("Dose not computable: %s", reason)
            return DoseResult(False, None, unit, weight, defaulted, reason)

        mass = parse_clinical_number(concentration_mass)
        volume = parse_clinical_number(concentration_volume)
        rate = parse_clinical_number(infusion_rate)

        # 1. Inputs must be readable
        if mass is None or volume is None or rate is None:
            return not_computable("mass, volume and rate must be numbers")
        if volume == 0:
            return not_computable("dilution volume is zero")
        if mass < 0 or volume < 0 or rate < 0:
            return not_computable("negative mass, volume or rate")

        concentration = mass / volume   # mg/ml (or IU/ml)

        # 2. Weight independent
        if unit == DoseUnit.UNITS_MIN:
            weight, defaulted = None, False
            dose = (rate * concentration) / 60.0

        # 3. Weight adjusted
        else:
            weight, defaulted = VasoactiveDoseCalculator._resolve_weight(patient_weight_kg)
            mcg_per_hour = rate * concentration * 1000.0
            if unit == DoseUnit.MCG_KG_MIN:
                dose = mcg_per_hour / (weight * 60.0)
            else:
                dose = mcg_per_hour / weight

        # A near-zero volume overflows the concentration
        if not math.isfinite(dose):
            return not_computable("result is not finite", weight, defaulted)

        return DoseResult(True, dose, unit, weight, defaulted)

# Module-level entry points
cumulative_fluid_balance = FluidBalanceCalculator.cumulative
fluid_balance_net = FluidBalanceCalculator.recompute
vasoactive_dose = VasoactiveDoseCalculator.calculate

def balance_from_inputs(intake, output) -> FluidBalance:
    """Builds the day's balance from form text; blanks count as 0 ml."""
    return FluidBalance(
        intake=parse_clinical_number(intake) or 0.0,
        output=parse_clinical_number(output) or 0.0,
    )
