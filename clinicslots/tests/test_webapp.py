import datetime as dt
import tempfile
import unittest
from unittest import mock

from clinicslots.config import Settings
from clinicslots.ledger import BookingRecord, MemoryLedgerStore, StoreError
from clinicslots.webapp import create_app

MONDAY = dt.date(2024, 1, 8)
FRIDAY = dt.date(2024, 1, 5)


class UnavailableStore(MemoryLedgerStore):
    def insert(self, record: BookingRecord) -> BookingRecord:
        raise StoreError("disk I/O error at /var/lib/clinic.db")


class WebAppTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.settings = Settings(cron_secret="s3cret", report_dir=self.tmp.name, capacity_reimbursement=1)
        self.store = MemoryLedgerStore()
        self.channel = mock.Mock()
        self.app = create_app(self.settings, store=self.store, channel=self.channel, today=lambda: MONDAY)
        self.client = self.app.test_client()

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def book(self, **overrides):
        payload = {
            "request_type": "consultation",
            "date": FRIDAY.isoformat(),
            "patient_id": "V12345678",
            "patient_fields": {
                "patient_given_name": "Maria",
                "patient_family_name": "Rojas",
                "payroll_number": "N77",
                "department": "Maintenance",
            },
        }
        payload.update(overrides)
        return self.client.post("/bookings", json=payload)

    def test_health(self) -> None:
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        self.assertIn("memory", response.get_data(as_text=True))

    def test_booking_flow(self) -> None:
        response = self.book()
        self.assertEqual(response.status_code, 201)
        body = response.get_json()
        self.assertEqual(body["ticket_number"], "C-001")
        self.assertEqual(body["request_date"], "2024-01-05")
        self.assertEqual(body["details"], {"payroll_number": "N77", "department": "Maintenance"})

        duplicate = self.book(request_type="annual_exam")
        self.assertEqual(duplicate.status_code, 409)
        self.assertEqual(duplicate.get_json()["error"], "duplicate_booking")
        self.assertIn("already has an appointment", duplicate.get_json()["message"])

        refund = self.book(request_type="reimbursement")
        self.assertEqual(refund.status_code, 201)
        self.assertEqual(refund.get_json()["ticket_number"], "R-001")

        full = self.book(request_type="reimbursement", patient_id="V2")
        self.assertEqual(full.status_code, 409)
        self.assertEqual(full.get_json()["error"], "capacity_exceeded")
        self.assertIn("no slots left", full.get_json()["message"])

    def test_booking_validation(self) -> None:
        self.assertEqual(self.book(request_type="surgery").status_code, 400)
        self.assertEqual(self.book(date="05/01/2024").status_code, 400)
        self.assertEqual(self.book(patient_id=None).status_code, 400)
        self.assertEqual(self.book(patient_fields=["x"]).status_code, 400)
        self.assertEqual(self.book(date=20240105).status_code, 400)
        self.assertEqual(self.book(request_type=["consultation"]).status_code, 400)
        self.assertEqual(self.client.post("/bookings", json=[1]).status_code, 400)
        self.assertEqual(self.client.post("/bookings", json="consultation").status_code, 400)
        emergency = self.book(request_type="emergency", patient_id=None, patient_fields={"message": "Fall"})
        self.assertEqual(emergency.status_code, 201)
        self.assertIsNone(emergency.get_json()["ticket_number"])

    def test_store_failure_is_generic(self) -> None:
        app = create_app(self.settings, store=UnavailableStore(), channel=self.channel)
        with self.assertLogs("clinicslots.webapp", level="ERROR"):
            response = app.test_client().post(
                "/bookings",
                json={"request_type": "consultation", "date": "2024-01-05", "patient_id": "V1"},
            )
        self.assertEqual(response.status_code, 503)
        body = response.get_json()
        self.assertEqual(body["error"], "store_unavailable")
        self.assertNotIn("clinic.db", body["message"])

    def test_report_endpoints(self) -> None:
        self.book()
        self.book(request_type="emergency", patient_id=None, patient_fields={"message": "Fall"})
        daily = self.client.get("/reports/daily?date=2024-01-05").get_json()
        self.assertEqual(daily["period"], "05/01/2024")
        self.assertEqual(daily["total"], 2)
        self.assertEqual(daily["buckets"]["consultation"][0]["patient_id"], "V12345678")
        self.assertEqual(daily["buckets"]["emergency"][0]["message"], "Fall")

        monthly = self.client.get("/reports/monthly?month=2024-01").get_json()
        self.assertEqual(monthly["total"], 2)
        self.assertEqual(self.client.get("/reports/monthly?month=January").status_code, 400)
        self.assertEqual(self.client.get("/reports/daily").status_code, 400)

    def test_report_shows_registration_time_for_http_bookings(self) -> None:
        self.book()
        self.book(request_type="emergency", patient_id=None, patient_fields={"message": "Fall"})
        buckets = self.client.get("/reports/daily?date=2024-01-05").get_json()["buckets"]
        for row in (buckets["consultation"][0], buckets["emergency"][0]):
            self.assertRegex(row["registered_at"], r"^\d{2}:\d{2}$")

    def test_trigger_requires_secret(self) -> None:
        self.assertEqual(self.client.get("/trigger-report").status_code, 401)
        self.assertEqual(self.client.get("/trigger-report?secret=nope").status_code, 401)
        self.channel.send_file.assert_not_called()

    def test_trigger_on_monday_reports_friday(self) -> None:
        self.book()
        response = self.client.get("/trigger-report?secret=s3cret")
        self.assertEqual(response.status_code, 202)
        path, caption = self.channel.send_file.call_args.args
        self.assertIn("05/01/2024", caption)
        self.assertFalse(path.exists())

    def test_manual_sends(self) -> None:
        response = self.client.post("/reports/daily/send?date=2024-01-05&secret=s3cret")
        self.assertEqual(response.get_json(), {"date": "2024-01-05", "delivered": False})
        self.assertIn("no requests", self.channel.send_text.call_args.args[0])

        self.book()
        response = self.client.post("/reports/monthly/send?month=2024-01&secret=s3cret")
        self.assertTrue(response.get_json()["delivered"])
        self.assertEqual(self.client.post("/reports/monthly/send?month=2024&secret=s3cret").status_code, 400)
        self.assertEqual(self.client.post("/reports/monthly/send?month=2024-01").status_code, 401)


if __name__ == "__main__":
    unittest.main()
