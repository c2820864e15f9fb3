"""
CardioEDAD: Lab Trend Engine
============================
Pivots the sparse lab results of a patient's daily logs into the
test-by-date grid the charts and print views show, and applies single
cell edits back onto a log.

Pure functions: nothing here reads or writes the store.
"""

import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Sequence

from models import (
    DailyLog,
    LabCell,
    LabMatrix,
    LabResult,
    LabValue,
    LogNotFoundError,
    TrendResult,
)
from constants import LAB_LIBRARY
from safety import evaluate_trend, normalize_name

logger = logging.getLogger(__name__)

class LabTrendEngine:
    """
    The Pivot Builder.
    Daily logs -> ordered columns -> ordered rows -> cells.
    """

    @staticmethod
    def sort_logs(logs: Iterable[DailyLog]) -> List[DailyLog]:
        """Ascending by calendar date. sorted() is stable, so same-day logs keep input order."""
        return sorted(logs, key=lambda log: log.calendar_date)

    @staticmethod
    def ordered_test_names(logs: Iterable[DailyLog]) -> List[str]:
        """
        Mandatory tests first, in clinical order, then every other test name
        seen in the logs, alphabetically (accent and case insensitive).
        """
        mandatory = list(LAB_LIBRARY.MANDATORY_ORDER)
        known = set(mandatory)
        extra = set()
        for log in logs:
            for lab in log.labs:
                if lab.test_name not in known:
                    extra.add(lab.test_name)
        return mandatory + sorted(extra, key=lambda name: (normalize_name(name), name))

    @staticmethod
    def build_lab_matrix(logs: Sequence[DailyLog]) -> LabMatrix:
        # 1. Columns: one per log, duplicates dates included
        columns = LabTrendEngine.sort_logs(logs)

        # 2. Rows: never dropped, even when empty
        test_names = LabTrendEngine.ordered_test_names(columns)

        # 3. Cells
        rows = {}
        for test_name in test_names:
            row = []
            for log in columns:
                lab = log.find_lab(test_name)
                row.append(LabCell(log.id, log.date, lab.value, lab.unit) if lab else None)
            rows[test_name] = row

        return LabMatrix(
            test_names=test_names,
            dates=[log.date for log in columns],
            log_ids=[log.id for log in columns],
            rows=rows,
        )

    @staticmethod
    def trend_row(matrix: LabMatrix, test_name: str) -> List[TrendResult]:
        """One trend per column, each against the column immediately to its left."""
        trends = []
        for current, previous in matrix.value_pairs(test_name):
            if current is None:
                trends.append(TrendResult.unknown())
                continue
            trends.append(evaluate_trend(
                test_name,
                current.value,
                previous.value if previous is not None else None,
            ))
        return trends

    @staticmethod
    def _inherited_metadata(logs: Sequence[DailyLog], target: DailyLog, test_name: str) -> tuple:
        """
        (unit, reference_range) of the most recent prior occurrence of the
        test in the patient's other logs, or empty strings when there is none.
        """
        others = [log for log in LabTrendEngine.sort_logs(logs) if log.id != target.id]
        prior = [log for log in others if log.calendar_date <= target.calendar_date]

        for log in reversed(prior):
            lab = log.find_lab(test_name)
            if lab is not None:
                return lab.unit, lab.reference_range
        return "", ""

    @staticmethod
    def set_value(logs: Sequence[DailyLog],
                  log_id: str,
                  test_name: str,
                  new_value: Optional[LabValue],
                  unit: Optional[str] = None) -> DailyLog:
        """
        Applies one cell edit and returns the updated log for the caller to persist.

        - present + empty value -> result removed
        - present + value       -> value (and unit, if given) updated
        - absent + value        -> result appended, unit/range inherited
        - absent + empty value  -> log returned unchanged
        """
        target = next((log for log in logs if log.id == log_id), None)
        if target is None:
            raise LogNotFoundError(log_id)

        test_name = test_name.strip()
        empty = new_value is None or str(new_value).strip() == ""
        labs = list(target.labs)
        index = next((i for i, lab in enumerate(labs) if lab.test_name == test_name), None)

        if index is not None:
            if empty:
                del labs[index]
            else:
                updated_unit = unit if unit is not None else labs[index].unit
                labs[index] = replace(labs[index], value=new_value, unit=updated_unit)
        elif not empty:
            inherited_unit, inherited_range = LabTrendEngine._inherited_metadata(logs, target, test_name)
            labs.append(LabResult(
                test_name=test_name,
                value=new_value,
                unit=unit if unit is not None else inherited_unit,
                reference_range=inherited_range,
            ))
        else:
            logger.debug("Empty edit on absent %s in log %s ignored", test_name, log_id)

        return replace(target, labs=labs)

# Module-level entry points
build_lab_matrix = LabTrendEngine.build_lab_matrix
set_value = LabTrendEngine.set_value
