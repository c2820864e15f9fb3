import os
import unittest
from fastapi.testclient import TestClient

# Importing the service must not create a database file next to the code
os.environ.setdefault("CARDIOEDAD_DATABASE_URL", "sqlite://")

import main
from store import PatientStore

class TestCardioEDADApi(unittest.TestCase):

    def setUp(self):
        """Each test gets an empty store and an open gate."""
        self.store = PatientStore()
        main.app.dependency_overrides[main.get_store] = lambda: self.store
        self.saved_passphrase = main.PASSPHRASE
        main.PASSPHRASE = None
        self.client = TestClient(main.app)

    def tearDown(self):
        main.app.dependency_overrides.clear()
        main.PASSPHRASE = self.saved_passphrase

    def admit(self, **overrides):
        payload = {"name": "José da Silva", "age": 72, "bed_number": "3", "estimated_weight": 78}
        payload.update(overrides)
        response = self.client.post("/patients", json=payload)
        self.assertEqual(response.status_code, 201, response.text)
        return response.json()

    # --- SERVICE ---

    def test_01_health(self):
        response = self.client.get("/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["version"], main.VERSION)

    def test_02_passphrase_gate(self):
        main.PASSPHRASE = "plantao"
        self.assertEqual(self.client.get("/patients").status_code, 401)
        self.assertEqual(self.client.get("/patients", headers={"X-Passphrase": "errada"}).status_code, 401)
        self.assertEqual(self.client.get("/patients", headers={"X-Passphrase": "plantao"}).status_code, 200)
        # Calculators stay open
        self.assertEqual(self.client.post("/calculators/temperature", json={"text": "36.5"}).status_code, 200)

    # --- CALCULATORS ---

    def test_03_trend(self):
        response = self.client.post("/calculators/trend", json={
            "test_name": "Creatinina", "current_value": "1,8", "previous_value": "1.2"
        })
        self.assertEqual(response.json(), {"direction": "up", "significance": "worsening"})

        response = self.client.post("/calculators/trend", json={"test_name": "Sódio", "current_value": 140})
        self.assertEqual(response.json()["direction"], "unknown")

    def test_04_vasoactive_dose(self):
        response = self.client.post("/calculators/vasoactive-dose", json={
            "drug": "Noradrenalina", "concentration_mass": 16, "concentration_volume": 250,
            "infusion_rate": 10, "patient_weight_kg": 80,
        })
        data = response.json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["display"], "0.13 mcg/kg/min")
        self.assertEqual(data["rounded"], 0.13)
        self.assertFalse(data["weight_defaulted"])

    def test_05_dose_guards(self):
        zero = self.client.post("/calculators/vasoactive-dose", json={
            "concentration_mass": 16, "concentration_volume": "0", "infusion_rate": 10, "patient_weight_kg": 80,
        }).json()
        self.assertFalse(zero["computable"])
        self.assertEqual(zero["display"], "N/C")
        self.assertIsNone(zero["value"])

        defaulted = self.client.post("/calculators/vasoactive-dose", json={
            "concentration_mass": 16, "concentration_volume": 250, "infusion_rate": 10,
        }).json()
        self.assertTrue(defaulted["weight_defaulted"])
        self.assertEqual(defaulted["weight_kg"], 70.0)

        vasopressin = self.client.post("/calculators/vasoactive-dose", json={
            "drug": "Vasopressina", "concentration_mass": 20, "concentration_volume": 100, "infusion_rate": 6,
        }).json()
        self.assertEqual(vasopressin["unit"], "units/min")
        self.assertFalse(vasopressin["weight_defaulted"])

    def test_06_fluid_balance(self):
        response = self.client.post("/calculators/fluid-balance", json={
            "intake": "2400", "output": "1800,5",
            "logs": [
                {"date": "2025-03-14", "fluid_balance": {"intake": 2000, "output": 2500}},
                {"date": "2025-03-15"},
            ],
        })
        data = response.json()
        self.assertEqual(data["net"], 599.5)
        self.assertEqual(data["cumulative_ml"], -500)
        self.assertEqual(data["recorded_days"], 1)

        negative = self.client.post("/calculators/fluid-balance", json={
            "logs": [{"date": "2025-03-14", "fluid_balance": {"intake": -1, "output": 0}}],
        })
        self.assertEqual(negative.status_code, 422)

    def test_07_lab_matrix(self):
        response = self.client.post("/calculators/lab-matrix", json={"logs": [
            {"id": "b", "date": "2025-03-15", "labs": [{"test_name": "Lactato", "value": "2,0"}]},
            {"id": "a", "date": "2025-03-14", "labs": [{"test_name": "Lactato", "value": 4.1}]},
        ]})
        data = response.json()
        self.assertEqual(data["log_ids"], ["a", "b"])
        lactate = next(r for r in data["rows"] if r["test_name"] == "Lactato")
        self.assertEqual(lactate["cells"][1]["significance"], "improving")

        bad_date = self.client.post("/calculators/lab-matrix", json={"logs": [{"date": "14/03/2025"}]})
        self.assertEqual(bad_date.status_code, 422)

    def test_08_temperature_and_prescription(self):
        self.assertEqual(
            self.client.post("/calculators/temperature", json={"text": "35.5-39.0"}).json()["severity"], "danger"
        )
        toggled = self.client.post("/calculators/prescription/toggle", json={
            "text": "Dipirona 1g\nOmeprazol 40mg", "index": 1,
        }).json()
        self.assertEqual(toggled["text"], "Dipirona 1g\n~~Omeprazol 40mg")
        self.assertTrue(toggled["lines"][1]["discontinued"])

        missing = self.client.post("/calculators/prescription/toggle", json={"text": "Dipirona", "index": 3})
        self.assertEqual(missing.status_code, 422)

    # --- PATIENTS ---

    def test_09_patient_lifecycle(self):
        patient = self.admit()
        self.assertEqual(patient["unit"], "UTI")
        self.assertEqual(patient["version"], 1)

        fetched = self.client.get(f"/patients/{patient['id']}").json()
        self.assertEqual(fetched["name"], "José da Silva")

        moved = self.client.patch(f"/patients/{patient['id']}", json={"unit": "Enfermaria", "expected_version": 1})
        self.assertEqual(moved.status_code, 200, moved.text)
        self.assertEqual(moved.json()["unit"], "Enfermaria")

        stale = self.client.patch(f"/patients/{patient['id']}", json={"bed_number": "9", "expected_version": 1})
        self.assertEqual(stale.status_code, 409)

        self.assertEqual(self.client.delete(f"/patients/{patient['id']}").status_code, 204)
        self.assertEqual(self.client.get(f"/patients/{patient['id']}").status_code, 404)

    def test_10_census(self):
        self.admit()
        self.admit(name="Ana", unit="Enfermaria")
        self.assertEqual(len(self.client.get("/patients").json()), 2)
        ward = self.client.get("/patients", params={"tab": "Enfermaria"}).json()
        self.assertEqual([p["name"] for p in ward], ["Ana"])
        self.assertEqual(self.client.get("/patients", params={"tab": "Pediatria"}).status_code, 422)

    def test_11_daily_log_flow(self):
        patient = self.admit(medical_prescription="Dipirona 1g\n~~Ceftriaxona 2g")
        pid = patient["id"]

        draft = self.client.get(f"/patients/{pid}/logs/new", params={"date": "2025-03-14"}).json()
        self.assertEqual(draft["prescriptions"], ["Dipirona 1g"])

        draft.update({
            "labs": [{"test_name": "Sódio", "value": "131", "unit": "mEq/L"}],
            "conducts": [{"description": "Repetir eletrólitos"}],
            "fluid_balance": {"intake": 2000, "output": 1500},
        })
        saved = self.client.post(f"/patients/{pid}/logs", json=draft)
        self.assertEqual(saved.status_code, 200, saved.text)
        log = saved.json()
        self.assertEqual(log["fluid_balance"]["net"], 500)
        self.assertEqual(log["version"], 1)

        day2 = self.client.post(f"/patients/{pid}/logs", json={"date": "2025-03-15"}).json()
        edited = self.client.put(
            f"/patients/{pid}/logs/{day2['id']}/labs", json={"test_name": "Sódio", "value": "134"}
        ).json()
        self.assertEqual(edited["labs"][0]["unit"], "mEq/L")

        verified = self.client.put(f"/patients/{pid}/logs/{log['id']}/conducts/0", json={"verified": True}).json()
        self.assertTrue(verified["conducts"][0]["verified"])

        stale = self.client.post(f"/patients/{pid}/logs", params={"expected_version": 1}, json={"date": "2025-03-14"})
        self.assertEqual(stale.status_code, 409)

        chart = self.client.get(f"/patients/{pid}/chart").json()
        sodium = next(r for r in chart["labs"]["rows"] if r["test_name"] == "Sódio")
        self.assertEqual(sodium["cells"][1]["significance"], "improving")
        self.assertEqual(chart["fluid_balance"]["cumulative_ml"], 500)

        self.assertEqual(self.client.delete(f"/patients/{pid}/logs/{day2['id']}").status_code, 204)
        self.assertEqual(self.client.delete(f"/patients/{pid}/logs/{day2['id']}").status_code, 404)

    def test_12_handoff(self):
        self.admit(bed_number="10")
        self.admit(name="Maria", bed_number="2", vasoactive_drugs="Noradrenalina 0,2 mcg/kg/min")
        sheet = self.client.get("/handoff").json()
        self.assertEqual(sheet["tab"], "UTI")
        self.assertEqual([r["bed_number"] for r in sheet["rows"]], ["2", "10"])
        self.assertEqual(sheet["rows"][0]["vasoactive"], "Noradrenalina 0,2 mcg/kg/min")

    def test_13_vanishing_dilution_is_not_computable(self):
        """A nonzero but vanishing volume must not come back as a computable dose without a value."""
        response = self.client.post("/calculators/vasoactive-dose", json={
            "drug": "Noradrenalina", "concentration_mass": 16,
            "concentration_volume": "0." + "0" * 320 + "1",
            "infusion_rate": 10, "patient_weight_kg": 80,
        })
        self.assertEqual(response.status_code, 200)
        data = response.json()
        self.assertFalse(data["computable"])
        self.assertIsNone(data["value"])
        self.assertEqual(data["display"], "N/C")

    def test_14_attachments(self):
        pid = self.admit()["id"]
        photo = self.client.post(f"/patients/{pid}/attachments", json={
            "name": "rx-torax.png", "url": "https://files/rx.png", "content_type": "image/png",
        })
        self.assertEqual(photo.status_code, 201, photo.text)
        self.assertEqual(photo.json()["type"], "image")
        report = self.client.post(f"/patients/{pid}/attachments", json={
            "name": "laudo.pdf", "url": "https://files/laudo.pdf",
        }).json()
        self.assertEqual(report["type"], "file")

        listed = self.client.get(f"/patients/{pid}").json()["attachments"]
        self.assertEqual([a["name"] for a in listed], ["rx-torax.png", "laudo.pdf"])

        self.assertEqual(
            self.client.post(f"/patients/{pid}/attachments", json={"name": "x", "url": ""}).status_code, 422
        )
        self.assertEqual(
            self.client.post("/patients/missing/attachments", json={"name": "x", "url": "u"}).status_code, 404
        )

        path = f"/patients/{pid}/attachments/{photo.json()['id']}"
        self.assertEqual(self.client.delete(path).status_code, 204)
        self.assertEqual(self.client.delete(path).status_code, 404)
        self.assertEqual(len(self.client.get(f"/patients/{pid}").json()["attachments"]), 1)

if __name__ == '__main__':
    unittest.main()
