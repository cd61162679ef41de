"""Reminder selection, the 24 hour resend guard and sending."""

from datetime import date, datetime, timedelta, timezone

import pledges
import reminders
import yahrzeits
from tests.dbcase import DatabaseTestCase

TODAY = date(2024, 6, 1)
NOW = datetime(2024, 6, 1, 9, 0, tzinfo=timezone.utc)


class ReminderTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org = self.make_org()
        self.donor_id = self.make_donor(self.org, email="david@example.com")
        self.sent = []

    def sender(self, to, subject, body):
        self.sent.append((to, subject, body))

    def add_yahrzeit(self, secular_date, **values):
        return yahrzeits.create_yahrzeit(
            self.org,
            self.donor_id,
            {"deceased_name": "Avraham Cohen", "hebrew_date": "25 Iyar", "secular_date": secular_date, **values},
        )

    def test_yahrzeit_due_today_or_at_lead_days(self):
        today_id = self.add_yahrzeit("2001-06-01")
        week_id = self.add_yahrzeit("2001-06-08", contact_email="family@example.com")
        self.add_yahrzeit("2001-06-05")
        self.add_yahrzeit("2001-06-08", reminder_enabled=0)

        due = reminders.due_yahrzeit_reminders(TODAY, 7, self.org, NOW)
        by_id = {r["id"]: r for r in due}
        self.assertEqual(set(by_id), {today_id, week_id})
        self.assertEqual(by_id[today_id]["days_until"], 0)
        self.assertEqual(by_id[week_id]["next_date"], date(2024, 6, 8))
        self.assertEqual(by_id[week_id]["recipient"], "family@example.com")
        self.assertEqual(by_id[today_id]["recipient"], "david@example.com")

    def test_send_stamps_and_guards_resends(self):
        yid = self.add_yahrzeit("2001-06-08")
        run = reminders.send_yahrzeit_reminders(self.sender, TODAY, 7, self.org, NOW)
        self.assertEqual(run, {"sent": 1, "failed": 0, "total": 1})
        to, subject, body = self.sent[0]
        self.assertEqual((to, subject), ("david@example.com", "Yahrzeit reminder: Avraham Cohen"))
        self.assertIn("falls in 7 days, on Saturday, 08 June 2024", body)
        self.assertIsNotNone(yahrzeits.get_yahrzeit(yid)["last_reminder_sent"])

        later = NOW + timedelta(hours=23)
        self.assertEqual(reminders.due_yahrzeit_reminders(TODAY, 7, self.org, later), [])
        next_day = NOW + timedelta(hours=25)
        self.assertEqual(len(reminders.due_yahrzeit_reminders(TODAY, 7, self.org, next_day)), 1)

    def test_missing_address_and_sender_errors_count_as_failed(self):
        no_email = self.make_donor(self.org, phone="0509", first="Sarah", last="Levi")
        yahrzeits.create_yahrzeit(
            self.org, no_email, {"deceased_name": "Rachel", "hebrew_date": "1 Sivan", "secular_date": "2001-06-01"}
        )
        self.add_yahrzeit("2001-06-01")

        def broken(to, subject, body):
            raise ConnectionError("SMTP down")

        run = reminders.send_yahrzeit_reminders(broken, TODAY, 7, self.org, NOW)
        self.assertEqual(run, {"sent": 0, "failed": 2, "total": 2})
        self.assertTrue(all(y["last_reminder_sent"] is None for y in yahrzeits.list_yahrzeits(self.org)))

    def test_pledge_reminders(self):
        open_id = pledges.create_pledge(self.org, self.donor_id, 1000)
        paid_id = pledges.create_pledge(self.org, self.donor_id, 100)
        pledges.record_payment(self.org, 100, pledge_id=paid_id)
        pledges.create_pledge(self.org, self.donor_id, 500, reminder_enabled=False)

        due = reminders.due_pledge_reminders(self.org, NOW)
        self.assertEqual([p["id"] for p in due], [open_id])

        run = reminders.send_pledge_reminders(self.sender, self.org, NOW)
        self.assertEqual(run["sent"], 1)
        self.assertIn("the remaining balance is ILS 1,000.00", self.sent[0][2])
        self.assertEqual(reminders.due_pledge_reminders(self.org, NOW + timedelta(hours=1)), [])

    def test_nothing_is_stamped_when_delivery_fails(self):
        yid = self.add_yahrzeit("2001-06-08")

        def refused(to, subject, body):
            raise ConnectionRefusedError("no SMTP server")

        run = reminders.send_yahrzeit_reminders(refused, TODAY, 7, self.org, NOW)
        self.assertEqual(run, {"sent": 0, "failed": 1, "total": 1})
        self.assertIsNone(yahrzeits.get_yahrzeit(yid)["last_reminder_sent"])
        self.assertEqual(len(reminders.due_yahrzeit_reminders(TODAY, 7, self.org, NOW)), 1)


class CompletionEmailTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org = self.make_org()
        self.donor_id = self.make_donor(self.org, email="david@example.com")
        self.sent = []

    def sender(self, to, subject, body):
        self.sent.append((to, subject, body))

    def test_sent_once_when_the_pledge_completes(self):
        pledge_id = pledges.create_pledge(self.org, self.donor_id, 500)
        pledges.record_payment(self.org, 200, pledge_id=pledge_id)
        self.assertFalse(reminders.send_pledge_completion_email(self.sender, pledge_id, NOW))

        pledges.record_payment(self.org, 300, pledge_id=pledge_id)
        self.assertTrue(reminders.send_pledge_completion_email(self.sender, pledge_id, NOW))
        to, subject, body = self.sent[0]
        self.assertEqual((to, subject), ("david@example.com", "Thank you for completing your pledge"))
        self.assertIn("Paid: ILS 500.00", body)
        self.assertIsNotNone(pledges.get_pledge(pledge_id)["completion_email_sent"])

        self.assertFalse(reminders.send_pledge_completion_email(self.sender, pledge_id, NOW))
        self.assertEqual(len(self.sent), 1)

    def test_batch_skips_donors_without_email(self):
        silent = self.make_donor(self.org, phone="0509", first="Sarah", last="Levi")
        for donor_id in (self.donor_id, silent):
            pledge_id = pledges.create_pledge(self.org, donor_id, 100)
            pledges.record_payment(self.org, 100, pledge_id=pledge_id)

        self.assertEqual([p["donor_id"] for p in reminders.due_completion_emails(self.org)], [self.donor_id])
        run = reminders.send_completion_emails(self.sender, self.org, NOW)
        self.assertEqual(run, {"sent": 1, "failed": 0, "total": 1})
        self.assertEqual(reminders.due_completion_emails(self.org), [])
