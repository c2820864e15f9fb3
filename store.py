"""
CardioEDAD: Patient Store
=========================
Repository over the chart tables of db.py (patients, daily_logs,
attachments). One session per operation.

Every write returns a StoreResult instead of raising, and every row carries
a version so a caller holding a stale copy gets CONFLICT rather than
silently overwriting a colleague's edit.
"""

import logging
import uuid
from dataclasses import dataclass, fields, replace
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from sqlmodel import col, select

from db import (
    SCHEMA_VERSION,
    AttachmentRow,
    DailyLogRow,
    PatientRow,
    create_db_engine,
    get_session,
    init_db,
)
from models import (
    CareUnit,
    DailyLog,
    LabValue,
    LogNotFoundError,
    Patient,
    PatientStatus,
)
from records import (
    attachment_from_record,
    log_to_record,
    patient_from_record,
    patient_to_record,
)
from core_labs import LabTrendEngine
from prescriptions import active_lines

logger = logging.getLogger(__name__)

# Census tab for discharged patients, next to the CareUnit tabs
COMPLETED_TAB = "Finalizados"

# Patient fields that are owned by other tables or by the store
_PROTECTED_FIELDS = {"id", "daily_logs", "attachments"}

class StoreStatus(Enum):
    SUCCESS = "success"
    CONFLICT = "conflict"
    NOT_FOUND = "not_found"
    FAILURE = "failure"

@dataclass(frozen=True)
class StoreResult:
    status: StoreStatus
    value: Any = None
    message: str = ""
    version: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.status == StoreStatus.SUCCESS

def _not_found(kind: str, row_id: str) -> StoreResult:
    return StoreResult(StoreStatus.NOT_FOUND, message=f"{kind} {row_id} not found")

class PatientStore:
    def __init__(self, engine=None):
        # No engine: a private in-memory database
        self.engine = engine if engine is not None else create_db_engine("sqlite://")
        init_db(self.engine)

    # --- ROW HELPERS ---

    @staticmethod
    def _check_schema(row):
        if row.schema_version != SCHEMA_VERSION:
            raise ValueError(
                f"Row {row.id} has schema version {row.schema_version}, expected {SCHEMA_VERSION}"
            )

    @staticmethod
    def _bump(row):
        row.version += 1
        row.updated_at = datetime.now()

    @staticmethod
    def _patient_row(session, patient_id: str) -> Optional[PatientRow]:
        row = session.exec(select(PatientRow).where(PatientRow.id == patient_id)).first()
        if row is None or row.status == PatientStatus.DELETED.value:
            return None
        return row

    @staticmethod
    def _log_rows(session, patient_id: str) -> List[DailyLogRow]:
        statement = select(DailyLogRow).where(DailyLogRow.patient_id == patient_id).order_by(col(DailyLogRow.pk))
        return list(session.exec(statement).all())

    @staticmethod
    def _log_row(session, patient_id: str, log_id: str) -> Optional[DailyLogRow]:
        row = session.exec(select(DailyLogRow).where(DailyLogRow.id == log_id)).first()
        return row if row is not None and row.patient_id == patient_id else None

    def _hydrate(self, session, row: PatientRow) -> Patient:
        log_rows = self._log_rows(session, row.id)
        statement = select(AttachmentRow).where(AttachmentRow.patient_id == row.id).order_by(col(AttachmentRow.pk))
        attachment_rows = list(session.exec(statement).all())
        for checked in [row] + log_rows + attachment_rows:
            self._check_schema(checked)
        return patient_from_record(row, log_rows, attachment_rows)

    @staticmethod
    def _conflict(kind: str, row_id: str, expected: int, actual: int) -> StoreResult:
        logger.warning("Version conflict on %s %s: expected %s, stored %s", kind, row_id, expected, actual)
        return StoreResult(
            StoreStatus.CONFLICT,
            message=f"{kind} {row_id} changed since version {expected} (now {actual}); reload and retry",
            version=actual,
        )

    # --- PATIENTS ---

    def list_patients(self, include_deleted: bool = False) -> List[Patient]:
        """Newest admission record first."""
        statement = select(PatientRow).order_by(col(PatientRow.pk).desc())
        if not include_deleted:
            statement = statement.where(PatientRow.status != PatientStatus.DELETED.value)
        with get_session(self.engine) as session:
            return [self._hydrate(session, r) for r in session.exec(statement).all()]

    def census(self, tab: str) -> List[Patient]:
        """'UTI' / 'Enfermaria' / 'Arquivo Morto' list active patients of that unit; 'Finalizados' the discharged."""
        if tab == COMPLETED_TAB:
            return [p for p in self.list_patients() if p.status == PatientStatus.COMPLETED]
        unit = CareUnit(tab)
        return [p for p in self.list_patients() if p.unit == unit and p.status == PatientStatus.ACTIVE]

    def get_patient(self, patient_id: str) -> StoreResult:
        with get_session(self.engine) as session:
            row = self._patient_row(session, patient_id)
            if row is None:
                return _not_found("Patient", patient_id)
            try:
                return StoreResult(StoreStatus.SUCCESS, self._hydrate(session, row), version=row.version)
            except (ValueError, KeyError) as e:
                logger.error("Patient %s could not be loaded: %s", patient_id, e)
                return StoreResult(StoreStatus.FAILURE, message=str(e))

    def create_patient(self, patient: Patient) -> StoreResult:
        patient_id = str(uuid.uuid4())
        with get_session(self.engine) as session:
            session.add(patient_to_record(replace(patient, id=patient_id)))
            session.commit()
        logger.info("Patient %s created (bed %s, %s)", patient_id, patient.bed_number, patient.unit.value)
        return self.get_patient(patient_id)

    def update_patient(self, patient_id: str, changes: Dict[str, Any],
                       expected_version: Optional[int] = None) -> StoreResult:
        """changes are keyed by Patient field name, e.g. {'unit': CareUnit.WARD}."""
        allowed = {f.name for f in fields(Patient)} - _PROTECTED_FIELDS
        unknown = set(changes) - allowed
        if unknown:
            return StoreResult(StoreStatus.FAILURE, message=f"Fields cannot be updated: {sorted(unknown)}")

        with get_session(self.engine) as session:
            row = self._patient_row(session, patient_id)
            if row is None:
                return _not_found("Patient", patient_id)
            if expected_version is not None and expected_version != row.version:
                return self._conflict("Patient", patient_id, expected_version, row.version)
            try:
                patient_to_record(replace(patient_from_record(row), **changes), row)
            except (ValueError, KeyError, TypeError, AttributeError) as e:
                # Uncommitted; closing the session discards the partial write
                return StoreResult(StoreStatus.FAILURE, message=str(e))
            self._bump(row)
            session.add(row)
            session.commit()
        logger.info("Patient %s updated: %s", patient_id, sorted(changes))
        return self.get_patient(patient_id)

    def delete_patient(self, patient_id: str) -> StoreResult:
        """Soft delete: the row stays, every listing hides it."""
        with get_session(self.engine) as session:
            row = self._patient_row(session, patient_id)
            if row is None:
                return _not_found("Patient", patient_id)
            row.status = PatientStatus.DELETED.value
            self._bump(row)
            session.add(row)
            session.commit()
            logger.info("Patient %s soft deleted", patient_id)
            return StoreResult(StoreStatus.SUCCESS, version=row.version)

    # --- DAILY LOGS ---

    def new_daily_log(self, patient_id: str, log_date: str) -> StoreResult:
        """Blank log for the day, seeded with the prescription lines still in force."""
        result = self.get_patient(patient_id)
        if not result.ok:
            return result
        return StoreResult(StoreStatus.SUCCESS, DailyLog(
            id="",
            date=log_date,
            prescriptions=active_lines(result.value.medical_prescription),
        ))

    def log_version(self, log_id: str) -> Optional[int]:
        with get_session(self.engine) as session:
            return session.exec(select(DailyLogRow.version).where(DailyLogRow.id == log_id)).first()

    def upsert_daily_log(self, patient_id: str, log: DailyLog,
                         expected_version: Optional[int] = None) -> StoreResult:
        """
        Replace by id; otherwise replace the patient's log of the same date;
        otherwise insert with a fresh id.
        """
        with get_session(self.engine) as session:
            patient_row = self._patient_row(session, patient_id)
            if patient_row is None:
                return _not_found("Patient", patient_id)

            keep_balance = patient_row.unit == CareUnit.ICU.value
            log = log.cleaned(keep_fluid_balance=keep_balance)

            # 1. Same id
            existing = self._log_row(session, patient_id, log.id) if log.id else None

            # 2. Same calendar date
            if existing is None:
                existing = next(
                    (r for r in self._log_rows(session, patient_id) if r.date[:10] == log.date[:10]),
                    None,
                )

            if existing is not None:
                if expected_version is not None and expected_version != existing.version:
                    return self._conflict("Log", existing.id, expected_version, existing.version)
                saved = replace(log, id=existing.id)
                row = log_to_record(saved, patient_id, existing)
                self._bump(row)
                action = "replaced"
            else:
                saved = replace(log, id=str(uuid.uuid4()))
                row = log_to_record(saved, patient_id)
                action = "inserted"

            session.add(row)
            session.commit()
            logger.info("Log %s (%s) of patient %s %s", saved.id, saved.date, patient_id, action)
            return StoreResult(StoreStatus.SUCCESS, saved, version=row.version)

    def delete_daily_log(self, patient_id: str, log_id: str) -> StoreResult:
        with get_session(self.engine) as session:
            row = self._log_row(session, patient_id, log_id)
            if row is None:
                return _not_found("Log", log_id)
            session.delete(row)
            session.commit()
        logger.info("Log %s of patient %s deleted", log_id, patient_id)
        return StoreResult(StoreStatus.SUCCESS)

    def set_lab_value(self, patient_id: str, log_id: str, test_name: str,
                      value: Optional[LabValue], unit: Optional[str] = None,
                      expected_version: Optional[int] = None) -> StoreResult:
        # Version read before the content: a write in between surfaces as CONFLICT
        if expected_version is None:
            expected_version = self.log_version(log_id)
        result = self.get_patient(patient_id)
        if not result.ok:
            return result
        try:
            updated = LabTrendEngine.set_value(result.value.daily_logs, log_id, test_name, value, unit)
        except LogNotFoundError:
            return _not_found("Log", log_id)
        except ValueError as e:
            return StoreResult(StoreStatus.FAILURE, message=str(e))
        return self.upsert_daily_log(patient_id, updated, expected_version)

    def set_conduct_verified(self, patient_id: str, log_id: str, index: int, verified: bool,
                             expected_version: Optional[int] = None) -> StoreResult:
        if expected_version is None:
            expected_version = self.log_version(log_id)
        result = self.get_patient(patient_id)
        if not result.ok:
            return result
        log = next((l for l in result.value.daily_logs if l.id == log_id), None)
        if log is None:
            return _not_found("Log", log_id)
        if not 0 <= index < len(log.conducts):
            return _not_found("Conduct", f"{index} of log {log_id}")
        return self.upsert_daily_log(patient_id, log.with_conduct_verified(index, verified), expected_version)

    # --- ATTACHMENTS ---

    def add_attachment(self, patient_id: str, name: str, url: str, content_type: str = "") -> StoreResult:
        """Registers an already uploaded file; images are told apart by their MIME type."""
        if not name.strip() or not url.strip():
            return StoreResult(StoreStatus.FAILURE, message="Attachment needs a name and a url")
        with get_session(self.engine) as session:
            if self._patient_row(session, patient_id) is None:
                return _not_found("Patient", patient_id)
            row = AttachmentRow(
                id=str(uuid.uuid4()),
                patient_id=patient_id,
                name=name.strip(),
                type="image" if content_type.startswith("image/") else "file",
                url=url.strip(),
            )
            session.add(row)
            session.commit()
            logger.info("Attachment %s (%s) added to patient %s", row.id, row.type, patient_id)
            return StoreResult(StoreStatus.SUCCESS, attachment_from_record(row))

    def delete_attachment(self, patient_id: str, attachment_id: str) -> StoreResult:
        with get_session(self.engine) as session:
            row = session.exec(select(AttachmentRow).where(AttachmentRow.id == attachment_id)).first()
            if row is None or row.patient_id != patient_id:
                return _not_found("Attachment", attachment_id)
            session.delete(row)
            session.commit()
        logger.info("Attachment %s of patient %s deleted", attachment_id, patient_id)
        return StoreResult(StoreStatus.SUCCESS)
