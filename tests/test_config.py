"""Configuration, logging setup and shared utilities."""

import io
import json
import logging
import os
import unittest
from datetime import date, datetime
from unittest import mock

import pandas as pd

import donations
import donors
import pledges
import utils
import yahrzeits
from config import load_app_config
from logconfig import JsonLogFormatter
from tests.dbcase import DatabaseTestCase


class ConfigTestCase(unittest.TestCase):

    def test_defaults(self):
        with mock.patch.dict(os.environ, {}, clear=True):
            config = load_app_config("/tmp/donordesk")
        self.assertEqual(str(config.db_file), os.path.join("/tmp/donordesk", "donordesk.db"))
        self.assertEqual((config.default_currency, config.page_size, config.reminder_lead_days), ("ILS", 25, 7))
        self.assertFalse(config.is_production)
        self.assertFalse(config.log_json)

    def test_environment_overrides(self):
        env = {
            "DONORDESK_DB_FILE": "/data/app.db",
            "DONORDESK_ENVIRONMENT": "Production",
            "DONORDESK_DEFAULT_CURRENCY": " usd ",
            "DONORDESK_PAGE_SIZE": "50",
            "DONORDESK_UPCOMING_WINDOW_DAYS": "-3",
            "DONORDESK_LOG_JSON": "yes",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_app_config()
        self.assertEqual(str(config.db_file), "/data/app.db")
        self.assertTrue(config.is_production)
        self.assertEqual(config.default_currency, "USD")
        self.assertEqual(config.page_size, 50)
        self.assertEqual(config.upcoming_window_days, 30)
        self.assertTrue(config.log_json)

    def test_smtp_settings(self):
        env = {
            "DONORDESK_SMTP_HOST": " smtp.example.com ",
            "DONORDESK_SMTP_PORT": "465",
            "DONORDESK_SMTP_FROM": "office@shul.org",
            "DONORDESK_SMTP_STARTTLS": "off",
            "DONORDESK_APP_URL": "https://donors.shul.org/",
        }
        with mock.patch.dict(os.environ, env, clear=True):
            config = load_app_config()
        self.assertEqual((config.smtp_host, config.smtp_port, config.smtp_from), ("smtp.example.com", 465, "office@shul.org"))
        self.assertFalse(config.smtp_starttls)
        self.assertTrue(config.email_enabled)
        self.assertEqual(config.app_url, "https://donors.shul.org")
        with mock.patch.dict(os.environ, {"DONORDESK_SMTP_HOST": "  "}, clear=True):
            self.assertFalse(load_app_config().email_enabled)


class JsonLogFormatterTestCase(unittest.TestCase):

    def test_extras_are_included(self):
        record = logging.LogRecord("donors", logging.INFO, __file__, 1, "Merged %s", ("x",), None)
        record.organization_id = 7
        record.component = "import"
        payload = json.loads(JsonLogFormatter().format(record))
        self.assertEqual(payload["message"], "Merged x")
        self.assertEqual((payload["organization_id"], payload["component"]), (7, "import"))
        self.assertNotIn("user", payload)


class DateAndMoneyTestCase(unittest.TestCase):

    def test_parse_date_value(self):
        self.assertEqual(utils.parse_date_value("2024-01-15T10:00:00+00:00"), date(2024, 1, 15))
        self.assertEqual(utils.parse_date_value(datetime(2024, 1, 15, 8)), date(2024, 1, 15))
        self.assertEqual(utils.parse_date_value("Jan 15 2024"), date(2024, 1, 15))
        self.assertIsNone(utils.parse_date_value("soon"))
        self.assertIsNone(utils.parse_date_value("  "))

    def test_is_iso_date(self):
        self.assertTrue(utils.is_iso_date("2024-02-29"))
        self.assertFalse(utils.is_iso_date("2023-02-29"))
        self.assertFalse(utils.is_iso_date("2024-2-9"))

    def test_add_months(self):
        self.assertEqual(utils.add_months(date(2024, 1, 31), 1), date(2024, 2, 29))
        self.assertEqual(utils.add_months(date(2024, 11, 15), 3), date(2025, 2, 15))

    def test_amounts(self):
        self.assertEqual(utils.to_amount("₪1,200.50"), 1200.5)
        self.assertEqual(utils.to_amount("n/a"), 0.0)
        self.assertEqual(utils.fmt_money(1234.5, "USD"), "USD 1,234.50")

    def test_exports(self):
        csv = utils.rows_to_csv_bytes([{"a": 1, "b": 2}], [("b", "B"), ("c", "C")]).decode("utf-8")
        self.assertEqual(csv.splitlines(), ["B,C", "2,"])
        xlsx = utils.rows_to_xlsx_bytes({"Donors": [{"Phone": "050"}]})
        frame = pd.read_excel(io.BytesIO(xlsx), sheet_name="Donors", dtype=str)
        self.assertEqual(frame.to_dict("records"), [{"Phone": "050"}])


class SampleDataTestCase(DatabaseTestCase):

    def test_insert_sample_data(self):
        org = self.make_org()
        utils.insert_sample_data(org)
        self.assertEqual(len(donors.list_donors(org)), 3)
        self.assertEqual(len(donations.list_donations(org)), 3)
        self.assertEqual(len(pledges.list_pledges(org)), 1)
        rows = yahrzeits.list_yahrzeits(org)
        self.assertEqual(yahrzeits.days_until(rows[0]["secular_date"]), 5)


if __name__ == "__main__":
    unittest.main()
