"""Login, password changes, identities, scoping and team listing."""

import unittest

import auth
import db
from errors import NotFoundError, PermissionDenied, ValidationError
from tests.dbcase import DatabaseTestCase


class HashingTestCase(unittest.TestCase):

    def test_hash_and_verify(self):
        hashed = auth.hash_password("correct horse")
        self.assertTrue(auth.verify_password("correct horse", hashed))
        self.assertFalse(auth.verify_password("wrong horse", hashed))

    def test_long_passwords_are_truncated_to_72_bytes(self):
        hashed = auth.hash_password("a" * 72 + "tail")
        self.assertTrue(auth.verify_password("a" * 72 + "different", hashed))


class LoginTestCase(DatabaseTestCase):

    def test_default_admin_must_change_password(self):
        self.assertTrue(auth.login(db.DEFAULT_ADMIN_EMAIL.upper(), "admin123"))
        self.assertTrue(auth.must_change_password(db.DEFAULT_ADMIN_EMAIL))
        with self.assertRaises(ValidationError):
            auth.change_password(db.DEFAULT_ADMIN_EMAIL, "short")
        auth.change_password(db.DEFAULT_ADMIN_EMAIL, "a-better-password")
        self.assertFalse(auth.must_change_password(db.DEFAULT_ADMIN_EMAIL))
        self.assertFalse(auth.login(db.DEFAULT_ADMIN_EMAIL, "admin123"))
        self.assertTrue(auth.login(db.DEFAULT_ADMIN_EMAIL, "a-better-password"))

    def test_forced_change_is_per_user(self):
        auth.create_user("rabbi@shul.org", "first-password")
        self.assertFalse(auth.must_change_password("rabbi@shul.org"))

        auth.change_password("rabbi@shul.org", "newpassword1")
        self.assertTrue(auth.must_change_password(db.DEFAULT_ADMIN_EMAIL))
        self.assertTrue(auth.login(db.DEFAULT_ADMIN_EMAIL, "admin123"))

    def test_change_password_for_unknown_user(self):
        with self.assertRaises(NotFoundError):
            auth.change_password("nobody@example.com", "long-enough")

    def test_init_db_is_idempotent(self):
        auth.change_password(db.DEFAULT_ADMIN_EMAIL, "a-better-password")
        db.init_db("ignored")
        self.assertFalse(auth.must_change_password(db.DEFAULT_ADMIN_EMAIL))
        self.assertEqual(len(db.fetch_all("SELECT id FROM users")), 1)

    def test_init_db_upgrades_older_users_table(self):
        db.execute("CREATE TABLE old_users AS SELECT id, email FROM users")
        columns = {r["name"] for r in db.fetch_all("PRAGMA table_info(old_users)")}
        self.assertNotIn("must_change_password", columns)
        db._ensure_column("old_users", "must_change_password", "INTEGER NOT NULL DEFAULT 0")
        row = db.fetch_one("SELECT must_change_password FROM old_users")
        self.assertEqual(row["must_change_password"], 0)

    def test_unknown_user(self):
        self.assertFalse(auth.login("nobody@example.com", "whatever"))

    def test_create_user_validation(self):
        with self.assertRaises(ValidationError) as ctx:
            auth.create_user("nope", "short")
        self.assertEqual(len(ctx.exception.issues), 2)
        with self.assertRaises(ValidationError):
            auth.create_user(db.DEFAULT_ADMIN_EMAIL, "long-enough")


class ScopeTestCase(DatabaseTestCase):

    def setUp(self):
        super().setUp()
        self.org_a = self.make_org("Beth Shalom")
        self.org_b = self.make_org("Ohr Torah")
        self.staff_id = db.execute(
            "INSERT INTO users(email, password_hash, first_name, last_name, created_at) VALUES(?,?,?,?,?)",
            ("staff@example.com", "x", "Rivka", "Stern", db.now_iso()),
        )
        self.role_id = auth.assign_role(self.staff_id, "staff", self.org_a)

    def test_super_admin_sees_everything(self):
        admin = auth.load_identity(db.DEFAULT_ADMIN_EMAIL)
        self.assertTrue(auth.is_super_admin(admin))
        self.assertIsNone(auth.resolve_scope(admin, "all"))
        self.assertEqual(auth.resolve_scope(admin, str(self.org_b)), self.org_b)
        self.assertEqual(sorted(auth.organization_ids(admin)), sorted([self.org_a, self.org_b]))
        self.assertTrue(auth.is_org_admin(admin, self.org_b))

    def test_staff_is_limited_to_their_organization(self):
        staff = auth.load_identity("staff@example.com")
        self.assertEqual(staff.name, "Rivka Stern")
        self.assertEqual(auth.resolve_scope(staff, "all"), self.org_a)
        self.assertEqual(auth.resolve_scope(staff, self.org_a), self.org_a)
        with self.assertRaises(PermissionDenied):
            auth.resolve_scope(staff, self.org_b)
        self.assertFalse(auth.is_org_admin(staff, self.org_a))

    def test_suspended_role_grants_nothing(self):
        auth.set_role_suspended(self.role_id, True)
        staff = auth.load_identity("staff@example.com")
        self.assertEqual(auth.organization_ids(staff), [])
        with self.assertRaises(PermissionDenied):
            auth.resolve_scope(staff, None)

    def test_only_super_admin_is_global(self):
        with self.assertRaises(ValidationError):
            auth.assign_role(self.staff_id, "admin", None)
        with self.assertRaises(ValidationError):
            auth.assign_role(self.staff_id, "owner", self.org_a)

    def test_assign_is_idempotent(self):
        self.assertEqual(auth.assign_role(self.staff_id, "staff", self.org_a), self.role_id)

    def test_team_listing_and_status(self):
        auth.assign_role(self.staff_id, "admin", self.org_b)
        users = auth.list_team_users(self.org_a)
        self.assertEqual([u["email"] for u in users], ["staff@example.com"])
        self.assertEqual(users[0]["status"], "active")
        self.assertEqual(users[0]["role_names"], "staff")

        auth.set_role_suspended(self.role_id, True)
        self.assertEqual(auth.list_team_users(self.org_a)[0]["status"], "suspended")
        everyone = {u["email"]: u for u in auth.list_team_users()}
        self.assertEqual(everyone["staff@example.com"]["status"], "active")
        self.assertEqual(everyone["staff@example.com"]["role_names"], "admin, staff")
        self.assertIn(db.DEFAULT_ADMIN_EMAIL, everyone)

        auth.remove_role(self.role_id)
        self.assertEqual(auth.list_team_users(self.org_a), [])

    def test_update_user(self):
        auth.update_user(self.staff_id, {"position": "Gabbai"})
        self.assertEqual(auth.list_team_users(self.org_a)[0]["position"], "Gabbai")
        auth.update_user(self.staff_id, {"first_name": "Rivka Leah", "phone": None})
        self.assertEqual(auth.list_team_users(self.org_a)[0]["name"], "Rivka Leah Stern")
        with self.assertRaises(NotFoundError):
            auth.update_user(9999, {"position": "Chazzan"})
        with self.assertRaises(ValueError):
            auth.update_user(self.staff_id, {"email": "other@example.com"})


if __name__ == "__main__":
    unittest.main()
