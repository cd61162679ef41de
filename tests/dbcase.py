"""Shared fixture: every test gets a fresh SQLite file in a temp directory."""

import os
import shutil
import tempfile
import unittest

import auth
import db
import donors
import organizations

_ADMIN_HASH = None


class DatabaseTestCase(unittest.TestCase):

    @classmethod
    def setUpClass(cls):
        global _ADMIN_HASH
        if _ADMIN_HASH is None:
            _ADMIN_HASH = auth.hash_password("admin123")

    def setUp(self):
        self._tmp_dir = tempfile.mkdtemp(prefix="donordesk_test_")
        self._old_db_file = db.DB_FILE
        db.DB_FILE = os.path.join(self._tmp_dir, "donordesk.db")
        db.init_db(_ADMIN_HASH)

    def tearDown(self):
        db.DB_FILE = self._old_db_file
        shutil.rmtree(self._tmp_dir, ignore_errors=True)

    # Helper utilities -------------------------------------------------
    def make_org(self, name="Beth Shalom", **values):
        return organizations.create_organization({"name": name, **values})

    def make_donor(self, org_id, phone="0501234567", first="David", last="Cohen", email=None, **values):
        return donors.create_donor(
            org_id, {"phone": phone, "first_name": first, "last_name": last, "email": email, **values}
        )
