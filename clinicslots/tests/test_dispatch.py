import csv
import datetime as dt
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from clinicslots.dispatch import LoggingChannel, ReportDispatcher, TelegramChannel
from clinicslots.dispatch.render import report_filename, save_csv_report
from clinicslots.dispatch.telegram import send_telegram_message
from clinicslots.ledger import AllocationService, MemoryLedgerStore, ReportAggregator, RequestType

DAY = dt.date(2024, 1, 4)


class ReportDispatcherTestCase(unittest.TestCase):
    def setUp(self) -> None:
        self.tmp = tempfile.TemporaryDirectory()
        self.store = MemoryLedgerStore()
        self.service = AllocationService(self.store)
        self.channel = mock.Mock()
        self.dispatcher = ReportDispatcher(ReportAggregator(self.store), self.channel, self.tmp.name)

    def tearDown(self) -> None:
        self.tmp.cleanup()

    def seed(self) -> None:
        fields = {
            "patient_given_name": "Ana",
            "patient_family_name": "Perez",
            "payroll_number": "N1",
            "department": "Finance",
            "registered_at": "08:10",
        }
        self.service.book_slot(RequestType.CONSULTATION, DAY, "V1", fields).unwrap()
        self.service.book_slot(RequestType.REIMBURSEMENT, DAY, "V1", fields).unwrap()
        self.service.book_slot(RequestType.EMERGENCY, DAY, None, {"message": "Cut hand", "registered_at": "10:00"})

    def test_scheduled_run_without_bookings_sends_nothing(self) -> None:
        self.assertFalse(self.dispatcher.send_daily(DAY))
        self.channel.send_text.assert_not_called()
        self.channel.send_file.assert_not_called()

    def test_manual_run_without_bookings_answers(self) -> None:
        self.assertFalse(self.dispatcher.send_daily(DAY, manual=True))
        text = self.channel.send_text.call_args.args[0]
        self.assertIn("04/01/2024", text)
        self.assertIn("no requests", text)

    def test_report_file_is_sent_then_removed(self) -> None:
        self.seed()
        seen: dict = {}

        def capture(path: Path, caption: str) -> None:
            with open(path, encoding="utf-8", newline="") as fh:
                seen["rows"] = list(csv.reader(fh))
            seen["caption"] = caption
            seen["path"] = path

        self.channel.send_file.side_effect = capture
        self.assertTrue(self.dispatcher.send_daily(DAY))

        self.assertFalse(seen["path"].exists())
        self.assertEqual(seen["path"].name, "Daily_Report_04-01-2024.csv")
        self.assertIn("04/01/2024", seen["caption"])
        rows = seen["rows"]
        self.assertEqual(rows[0], ["Consultations"])
        self.assertIn(["C-001", "Ana", "Perez", "V1", "", "N1", "Finance", "08:10"], rows)
        self.assertIn(["R-001", "Ana", "Perez", "V1", "08:10"], rows)
        self.assertIn(["2024-01-04", "10:00", "Cut hand"], rows)

    def test_file_removed_even_when_delivery_fails(self) -> None:
        self.seed()
        self.channel.send_file.side_effect = RuntimeError("telegram down")
        with self.assertLogs("clinicslots.dispatch.dispatcher", level="ERROR"):
            self.assertFalse(self.dispatcher.send_daily(DAY, manual=True))
        self.assertEqual(list(Path(self.tmp.name).iterdir()), [])
        self.assertIn("could not be generated", self.channel.send_text.call_args.args[0])

    def test_overlapping_dispatches_keep_their_own_files(self) -> None:
        self.seed()
        paths: list[Path] = []
        nested: list[bool] = []

        def deliver(path: Path, caption: str) -> None:
            paths.append(path)
            if len(paths) == 1:
                nested.append(self.dispatcher.send_daily(DAY))
            if not path.exists():
                raise AssertionError(f"{path} removed during upload")

        self.channel.send_file.side_effect = deliver
        self.assertTrue(self.dispatcher.send_daily(DAY))
        self.assertEqual(nested, [True])
        self.assertNotEqual(paths[0], paths[1])
        self.assertEqual(paths[0].name, paths[1].name)
        self.assertEqual(list(Path(self.tmp.name).iterdir()), [])

    def test_monthly_report(self) -> None:
        self.seed()
        self.channel.send_file.side_effect = lambda path, caption: self.assertTrue(path.exists())
        self.assertTrue(self.dispatcher.send_monthly("2024-01"))
        path, caption = self.channel.send_file.call_args.args
        self.assertEqual(path.name, "Monthly_Report_2024-01.csv")
        self.assertIn("2024-01", caption)

    def test_monthly_report_without_bookings(self) -> None:
        self.assertFalse(self.dispatcher.send_monthly("2024-02"))
        self.assertIn("2024-02", self.channel.send_text.call_args.args[0])

    def test_monthly_report_rejects_bad_month(self) -> None:
        with self.assertRaises(ValueError):
            self.dispatcher.send_monthly("2024-2")

    def test_empty_buckets_keep_headers(self) -> None:
        report = ReportAggregator(self.store).monthly("2024-03")
        path = save_csv_report(report, Path(self.tmp.name) / report_filename(report, prefix="Monthly_Report"))
        with open(path, encoding="utf-8", newline="") as fh:
            rows = [row for row in csv.reader(fh) if row]
        self.assertEqual(
            [row[0] for row in rows if len(row) == 1],
            ["Consultations", "Annual exams", "Reimbursements", "Emergencies"],
        )


class ChannelTestCase(unittest.TestCase):
    @mock.patch("clinicslots.dispatch.telegram.send_telegram_message")
    def test_telegram_channel_sends_to_every_chat(self, send_message: mock.Mock) -> None:
        TelegramChannel("token", ("1", "-100")).send_text("hello")
        self.assertEqual(
            [c.kwargs["chat_id"] for c in send_message.call_args_list],
            ["1", "-100"],
        )

    @mock.patch("clinicslots.dispatch.telegram.send_telegram_message")
    def test_telegram_channel_keeps_going_after_a_failing_chat(self, send_message: mock.Mock) -> None:
        send_message.side_effect = [RuntimeError("chat not found"), None]
        with self.assertLogs("clinicslots.dispatch.telegram", level="ERROR"):
            with self.assertRaises(RuntimeError) as ctx:
                TelegramChannel("token", ("1", "-100")).send_text("hello")
        self.assertEqual(
            [c.kwargs["chat_id"] for c in send_message.call_args_list],
            ["1", "-100"],
        )
        self.assertIn("1", str(ctx.exception))
        self.assertNotIn("-100", str(ctx.exception))

    @mock.patch("clinicslots.dispatch.telegram.send_telegram_document")
    def test_telegram_channel_uploads_documents(self, send_document: mock.Mock) -> None:
        TelegramChannel("token", ("1",)).send_file(Path("report.csv"), "caption")
        send_document.assert_called_once_with(
            bot_token="token", chat_id="1", path=Path("report.csv"), caption="caption"
        )

    @mock.patch("clinicslots.dispatch.telegram.httpx.Client")
    def test_send_message_raises_on_api_error(self, client_cls: mock.Mock) -> None:
        client = client_cls.return_value.__enter__.return_value
        client.post.return_value.json.return_value = {"ok": False, "description": "chat not found"}
        with self.assertRaises(RuntimeError):
            send_telegram_message(bot_token="t", chat_id="1", text="hi")
        url = client.post.call_args.args[0]
        self.assertTrue(url.endswith("/bott/sendMessage"))

    def test_logging_channel(self) -> None:
        with self.assertLogs("clinicslots.dispatch.dispatcher", level="INFO"):
            LoggingChannel().send_text("hello")


if __name__ == "__main__":
    unittest.main()
