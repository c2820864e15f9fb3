import os
import tempfile
import unittest
from sqlmodel import select
from db import PatientRow, create_db_engine, get_session
from models import (
    CareUnit, Conduct, DailyLog, FluidBalance, LabResult, Patient, PatientStatus
)
from store import PatientStore, StoreStatus, COMPLETED_TAB

class TestPatientStore(unittest.TestCase):

    def setUp(self):
        """Fresh ward with one ICU admission."""
        self.store = PatientStore()
        result = self.store.create_patient(Patient(
            id="",
            name="José da Silva",
            age=72,
            bed_number="3",
            estimated_weight=78.0,
            medical_prescription="Dipirona 1g EV 6/6h\n~~Ceftriaxona 2g EV\nOmeprazol 40mg EV",
        ))
        self.assertTrue(result.ok)
        self.patient = result.value

    def add_log(self, date, patient_id=None, **kwargs):
        return self.store.upsert_daily_log(patient_id or self.patient.id, DailyLog(id="", date=date, **kwargs))

    # --- PATIENTS ---

    def test_01_create_assigns_id_and_version(self):
        self.assertTrue(self.patient.id)
        self.assertEqual(self.store.get_patient(self.patient.id).version, 1)
        self.assertEqual(self.patient.status, PatientStatus.ACTIVE)

    def test_02_listing_is_newest_first(self):
        second = self.store.create_patient(Patient(id="", name="Maria", bed_number="5")).value
        self.assertEqual([p.id for p in self.store.list_patients()], [second.id, self.patient.id])

    def test_03_update_and_version_conflict(self):
        moved = self.store.update_patient(self.patient.id, {"unit": CareUnit.WARD, "bed_number": "212"}, 1)
        self.assertTrue(moved.ok)
        self.assertEqual(moved.value.unit, CareUnit.WARD)
        self.assertEqual(moved.version, 2)

        # A colleague still holding version 1
        stale = self.store.update_patient(self.patient.id, {"bed_number": "9"}, expected_version=1)
        self.assertEqual(stale.status, StoreStatus.CONFLICT)
        self.assertEqual(stale.version, 2)
        self.assertEqual(self.store.get_patient(self.patient.id).value.bed_number, "212")

    def test_04_protected_and_unknown_fields(self):
        for changes in ({"daily_logs": []}, {"id": "other"}, {"blood_type": "O+"}):
            self.assertEqual(self.store.update_patient(self.patient.id, changes).status, StoreStatus.FAILURE)
        self.assertEqual(
            self.store.update_patient("missing", {"name": "X"}).status, StoreStatus.NOT_FOUND
        )

    def test_05_soft_delete(self):
        self.assertTrue(self.store.delete_patient(self.patient.id).ok)
        self.assertEqual(self.store.get_patient(self.patient.id).status, StoreStatus.NOT_FOUND)
        self.assertEqual(self.store.list_patients(), [])
        hidden = self.store.list_patients(include_deleted=True)
        self.assertEqual(hidden[0].status, PatientStatus.DELETED)
        self.assertEqual(self.store.delete_patient(self.patient.id).status, StoreStatus.NOT_FOUND)

    def test_06_census_tabs(self):
        ward = self.store.create_patient(Patient(id="", name="Ana", unit=CareUnit.WARD)).value
        discharged = self.store.create_patient(Patient(id="", name="Rui", status=PatientStatus.COMPLETED)).value
        self.assertEqual([p.id for p in self.store.census("UTI")], [self.patient.id])
        self.assertEqual([p.id for p in self.store.census("Enfermaria")], [ward.id])
        self.assertEqual([p.id for p in self.store.census(COMPLETED_TAB)], [discharged.id])
        self.assertEqual(self.store.census("Arquivo Morto"), [])
        with self.assertRaises(ValueError):
            self.store.census("Pediatria")

    def test_07_schema_mismatch_fails_fast(self):
        # A row written by an older release
        with get_session(self.store.engine) as session:
            row = session.exec(select(PatientRow).where(PatientRow.id == self.patient.id)).one()
            row.schema_version = 0
            session.add(row)
            session.commit()
        result = self.store.get_patient(self.patient.id)
        self.assertEqual(result.status, StoreStatus.FAILURE)
        self.assertIn("schema version", result.message)

    # --- DAILY LOGS ---

    def test_08_new_log_carries_active_prescription(self):
        log = self.store.new_daily_log(self.patient.id, "2025-03-14").value
        self.assertEqual(log.prescriptions, ["Dipirona 1g EV 6/6h", "Omeprazol 40mg EV"])
        self.assertEqual(log.id, "")
        self.assertEqual(self.store.new_daily_log("missing", "2025-03-14").status, StoreStatus.NOT_FOUND)

    def test_09_upsert_by_date(self):
        """A second submission for the same day replaces the first."""
        first = self.add_log("2025-03-14", notes="Admissão")
        self.assertTrue(first.ok)
        self.assertEqual(first.version, 1)

        again = self.add_log("2025-03-14T18:00:00", notes="Reavaliação")
        self.assertEqual(again.value.id, first.value.id)
        self.assertEqual(again.version, 2)

        other_day = self.add_log("2025-03-15")
        self.assertNotEqual(other_day.value.id, first.value.id)

        logs = self.store.get_patient(self.patient.id).value.daily_logs
        self.assertEqual([l.notes for l in logs], ["Reavaliação", ""])

    def test_10_upsert_by_id_and_conflict(self):
        saved = self.add_log("2025-03-14").value
        moved = self.store.upsert_daily_log(self.patient.id, DailyLog(id=saved.id, date="2025-03-13"), 1)
        self.assertEqual(moved.value.id, saved.id)
        self.assertEqual(moved.value.date, "2025-03-13")

        stale = self.store.upsert_daily_log(self.patient.id, DailyLog(id=saved.id, date="2025-03-13"), 1)
        self.assertEqual(stale.status, StoreStatus.CONFLICT)

    def test_11_form_rows_are_cleaned(self):
        log = self.add_log(
            "2025-03-14",
            labs=[LabResult("Sódio", "138", "mEq/L"), LabResult("Potássio", "")],
            conducts=[Conduct("Solicitar eco"), Conduct("  ")],
            prescriptions=["Dipirona", ""],
        ).value
        self.assertEqual([l.test_name for l in log.labs], ["Sódio"])
        self.assertEqual(len(log.conducts), 1)
        self.assertEqual(log.prescriptions, ["Dipirona"])

    def test_12_fluid_balance_only_in_icu(self):
        ward = self.store.create_patient(Patient(id="", name="Ana", unit=CareUnit.WARD)).value
        ward_log = self.add_log("2025-03-14", ward.id, fluid_balance=FluidBalance(1000, 500)).value
        icu_log = self.add_log("2025-03-14", fluid_balance=FluidBalance(1000, 500)).value
        self.assertIsNone(ward_log.fluid_balance)
        self.assertEqual(icu_log.fluid_balance.net, 500)

    def test_13_lab_cell_edit(self):
        self.add_log("2025-03-14", labs=[LabResult("Lactato", "3.9", "mmol/L", "0.5-2.0")])
        day2 = self.add_log("2025-03-15").value

        result = self.store.set_lab_value(self.patient.id, day2.id, "Lactato", "2,1")
        self.assertTrue(result.ok)
        lab = result.value.find_lab("Lactato")
        self.assertEqual((lab.value, lab.unit, lab.reference_range), ("2,1", "mmol/L", "0.5-2.0"))

        cleared = self.store.set_lab_value(self.patient.id, day2.id, "Lactato", "")
        self.assertIsNone(cleared.value.find_lab("Lactato"))
        self.assertEqual(
            self.store.set_lab_value(self.patient.id, "missing", "Lactato", "1").status, StoreStatus.NOT_FOUND
        )

    def test_14_conduct_verification(self):
        log = self.add_log("2025-03-14", conducts=[Conduct("Trocar CVC"), Conduct("Ecocardiograma")]).value
        result = self.store.set_conduct_verified(self.patient.id, log.id, 1, True)
        self.assertEqual([c.verified for c in result.value.conducts], [False, True])
        self.assertEqual(result.version, 2)
        self.assertEqual(
            self.store.set_conduct_verified(self.patient.id, log.id, 7, True).status, StoreStatus.NOT_FOUND
        )

    def test_15_delete_log(self):
        log = self.add_log("2025-03-14").value
        self.assertTrue(self.store.delete_daily_log(self.patient.id, log.id).ok)
        self.assertEqual(self.store.get_patient(self.patient.id).value.daily_logs, [])
        self.assertEqual(self.store.delete_daily_log(self.patient.id, log.id).status, StoreStatus.NOT_FOUND)
        self.assertEqual(self.add_log("2025-03-14", "missing").status, StoreStatus.NOT_FOUND)

    # --- ATTACHMENTS ---

    def test_16_attachment_type_follows_mime(self):
        photo = self.store.add_attachment(self.patient.id, "rx-torax.png", "https://files/rx.png", "image/png")
        report = self.store.add_attachment(self.patient.id, "laudo.pdf", "https://files/laudo.pdf", "application/pdf")
        unknown = self.store.add_attachment(self.patient.id, "notas", "https://files/notas")
        self.assertTrue(photo.ok)
        self.assertEqual(photo.value.type, "image")
        self.assertEqual(report.value.type, "file")
        self.assertEqual(unknown.value.type, "file")
        self.assertTrue(photo.value.date)

        attachments = self.store.get_patient(self.patient.id).value.attachments
        self.assertEqual([a.name for a in attachments], ["rx-torax.png", "laudo.pdf", "notas"])

    def test_17_attachment_validation(self):
        self.assertEqual(
            self.store.add_attachment(self.patient.id, "laudo.pdf", "  ").status, StoreStatus.FAILURE
        )
        self.assertEqual(
            self.store.add_attachment(self.patient.id, "", "https://files/x").status, StoreStatus.FAILURE
        )
        self.assertEqual(
            self.store.add_attachment("missing", "laudo.pdf", "https://files/x").status, StoreStatus.NOT_FOUND
        )

    def test_18_delete_attachment(self):
        other = self.store.create_patient(Patient(id="", name="Maria")).value
        attachment = self.store.add_attachment(self.patient.id, "eco.jpg", "https://files/eco.jpg", "image/jpeg").value

        # Only through its own patient
        self.assertEqual(
            self.store.delete_attachment(other.id, attachment.id).status, StoreStatus.NOT_FOUND
        )
        self.assertTrue(self.store.delete_attachment(self.patient.id, attachment.id).ok)
        self.assertEqual(self.store.get_patient(self.patient.id).value.attachments, [])
        self.assertEqual(
            self.store.delete_attachment(self.patient.id, attachment.id).status, StoreStatus.NOT_FOUND
        )

    # --- PERSISTENCE ---

    def test_19_chart_survives_a_restart(self):
        """A second store on the same database file sees the whole chart."""
        with tempfile.TemporaryDirectory() as folder:
            url = "sqlite:///" + os.path.join(folder, "cardioedad.db")
            first_engine = create_db_engine(url)
            first = PatientStore(first_engine)
            patient = first.create_patient(Patient(id="", name="Ana", estimated_weight=61.5)).value
            first.upsert_daily_log(patient.id, DailyLog(
                id="", date="2025-03-14",
                labs=[LabResult("Sódio", "133", "mEq/L")],
                fluid_balance=FluidBalance(2400, 1800),
            ))
            first.add_attachment(patient.id, "ecg.png", "https://files/ecg.png", "image/png")
            first_engine.dispose()

            second_engine = create_db_engine(url)
            reloaded = PatientStore(second_engine).get_patient(patient.id)
            second_engine.dispose()

        self.assertTrue(reloaded.ok)
        self.assertEqual(reloaded.value.estimated_weight, 61.5)
        log = reloaded.value.daily_logs[0]
        self.assertEqual(log.find_lab("Sódio").value, "133")
        self.assertEqual(log.fluid_balance.net, 600)
        self.assertEqual(reloaded.value.attachments[0].type, "image")

if __name__ == '__main__':
    unittest.main()
