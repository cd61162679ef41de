"""SMTP delivery and the email-enabled switch."""

import unittest
from pathlib import Path
from unittest import mock

import mailer
from config import AppConfig


def make_config(**values):
    return AppConfig(db_file=Path("unused.db"), **values)


class SmtpSenderTestCase(unittest.TestCase):

    def test_disabled_without_host(self):
        config = make_config(smtp_from="office@shul.org")
        self.assertFalse(config.email_enabled)
        self.assertIsNone(mailer.get_sender(config))
        with self.assertRaises(mailer.EmailNotConfigured):
            mailer.SmtpSender(config)

    @mock.patch("mailer.smtplib.SMTP")
    def test_sends_through_starttls_and_login(self, smtp_class):
        config = make_config(
            smtp_host="smtp.example.com",
            smtp_port=2525,
            smtp_username="office@shul.org",
            smtp_password="secret",
            smtp_from_name="Beth Shalom",
        )
        sender = mailer.get_sender(config)
        sender("david@example.com", "Yahrzeit reminder", "Shalom David")

        smtp_class.assert_called_once_with("smtp.example.com", 2525, timeout=30.0)
        smtp = smtp_class.return_value.__enter__.return_value
        smtp.starttls.assert_called_once()
        smtp.login.assert_called_once_with("office@shul.org", "secret")
        msg = smtp.send_message.call_args[0][0]
        self.assertEqual(msg["To"], "david@example.com")
        self.assertEqual(msg["From"], "Beth Shalom <office@shul.org>")
        self.assertEqual(msg["Subject"], "Yahrzeit reminder")
        self.assertIn("Shalom David", msg.get_payload(0).get_payload(decode=True).decode("utf-8"))

    @mock.patch("mailer.smtplib.SMTP")
    def test_plain_relay_without_login(self, smtp_class):
        config = make_config(smtp_host="relay.local", smtp_from="office@shul.org", smtp_starttls=False)
        mailer.SmtpSender(config)("david@example.com", "Pledge reminder", "Balance due")
        smtp = smtp_class.return_value.__enter__.return_value
        smtp.starttls.assert_not_called()
        smtp.login.assert_not_called()
        smtp.send_message.assert_called_once()


if __name__ == "__main__":
    unittest.main()
