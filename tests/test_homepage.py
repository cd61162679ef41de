"""Home page content tree edits and global / organization storage."""

import json
import unittest

import db
import homepage
from errors import NotFoundError, ValidationError
from tests.dbcase import DatabaseTestCase


class ContentTreeTestCase(unittest.TestCase):

    def setUp(self):
        self.content = homepage.make_default_content()
        self.row_id = self.content["rows"][0]["id"]
        self.col_id = self.content["rows"][0]["columns"][0]["id"]

    def test_default_content(self):
        self.assertEqual(self.content["version"], 1)
        self.assertEqual(len(self.content["rows"]), 1)
        self.assertEqual(self.content["rows"][0]["layout"], "1")

    def test_ensure_content_falls_back_to_default(self):
        for junk in (None, "not json", {"version": 2, "rows": []}, {"version": 1, "rows": "x"}):
            content = homepage.ensure_content(junk)
            self.assertEqual(content["version"], 1)
            self.assertEqual(len(content["rows"]), 1)
        self.assertEqual(homepage.ensure_content(json.dumps(self.content)), self.content)

    def test_edits_do_not_mutate_the_input(self):
        before = json.dumps(self.content, sort_keys=True)
        homepage.add_row(self.content, "3")
        homepage.add_block(self.content, self.row_id, self.col_id, homepage.text_block("Shalom"))
        self.assertEqual(json.dumps(self.content, sort_keys=True), before)

    def test_rows_add_move_remove(self):
        content = homepage.add_row(self.content, "2")
        second = content["rows"][1]["id"]
        self.assertEqual(len(content["rows"][1]["columns"]), 2)
        moved = homepage.move_row(content, second, -1)
        self.assertEqual(moved["rows"][0]["id"], second)
        self.assertEqual(homepage.move_row(moved, second, -5)["rows"][0]["id"], second)
        self.assertEqual([r["id"] for r in homepage.remove_row(moved, second)["rows"]], [self.row_id])
        with self.assertRaises(ValidationError):
            homepage.add_row(self.content, "4")

    def test_change_layout_pads_and_trims_columns(self):
        content = homepage.add_block(self.content, self.row_id, self.col_id, homepage.text_block("Keep me"))
        wide = homepage.change_row_layout(content, self.row_id, "1-2")
        self.assertEqual(len(wide["rows"][0]["columns"]), 2)
        self.assertEqual(wide["rows"][0]["columns"][0]["blocks"][0]["content"], {"en": "Keep me"})
        narrow = homepage.change_row_layout(wide, self.row_id, "1")
        self.assertEqual(len(narrow["rows"][0]["columns"]), 1)
        self.assertEqual(narrow["rows"][0]["columns"][0]["id"], self.col_id)

    def test_block_update_keeps_id_and_type(self):
        block = homepage.image_block("https://example.com/a.png", caption="Sukkah")
        content = homepage.add_block(self.content, self.row_id, self.col_id, block)
        updated = homepage.update_block(
            content, self.row_id, self.col_id, block["id"], {"id": "other", "type": "video", "src": "b.png"}
        )
        _, _, found = homepage.find_block(updated, block["id"])
        self.assertEqual((found["type"], found["src"], found["caption"]), ("image", "b.png", {"en": "Sukkah"}))
        removed = homepage.remove_block(updated, self.row_id, self.col_id, block["id"])
        self.assertIsNone(homepage.find_block(removed, block["id"]))
        with self.assertRaises(NotFoundError):
            homepage.update_block(removed, self.row_id, self.col_id, block["id"], {})
        with self.assertRaises(ValidationError):
            homepage.add_block(self.content, self.row_id, self.col_id, {"id": "x", "type": "table"})

    def test_move_block_between_columns(self):
        content = homepage.add_row(self.content, "2")
        target_row = content["rows"][1]
        target_col = target_row["columns"][1]["id"]
        block = homepage.text_block("Kiddush sponsors")
        content = homepage.add_block(content, self.row_id, self.col_id, block)

        moved = homepage.move_block(content, block["id"], target_row["id"], target_col)
        row, col, found = homepage.find_block(moved, block["id"])
        self.assertEqual((row["id"], col["id"], found["content"]), (target_row["id"], target_col, {"en": "Kiddush sponsors"}))
        self.assertEqual(moved["rows"][0]["columns"][0]["blocks"], [])
        with self.assertRaises(NotFoundError):
            homepage.move_block(moved, "missing", self.row_id, self.col_id)
        with self.assertRaises(NotFoundError):
            homepage.move_block(moved, block["id"], self.row_id, "missing")
        self.assertIsNotNone(homepage.find_block(moved, block["id"]))

    def test_localized(self):
        value = {"en": "Welcome", "he": "ברוכים הבאים"}
        self.assertEqual(homepage.localized(value, "he"), "ברוכים הבאים")
        self.assertEqual(homepage.localized(value, "fr"), "Welcome")
        self.assertEqual(homepage.localized({"he": "שלום"}, "en"), "שלום")
        self.assertEqual(homepage.localized(None, "en", "Home"), "Home")
        self.assertEqual(homepage.set_localized(value, "fr", "Bienvenue")["fr"], "Bienvenue")

    def test_embed_url(self):
        self.assertEqual(homepage.to_embed_url("https://youtu.be/abc123"), "https://www.youtube.com/embed/abc123")
        self.assertEqual(
            homepage.to_embed_url("https://www.youtube.com/watch?v=xyz_9&t=3"), "https://www.youtube.com/embed/xyz_9"
        )
        self.assertEqual(homepage.to_embed_url("https://www.youtube.com/embed/q"), "https://www.youtube.com/embed/q")
        self.assertIsNone(homepage.to_embed_url("https://vimeo.com/1"))


class HomePageStorageTestCase(DatabaseTestCase):

    def test_global_page_is_seeded(self):
        page = homepage.fetch_global_page()
        self.assertEqual(page["title"], {"en": "Welcome"})
        self.assertEqual(page["content"]["rows"], [])

    def test_org_falls_back_to_global_until_cloned(self):
        org = self.make_org()
        self.assertIsNone(homepage.fetch_org_page(org))
        self.assertTrue(homepage.fetch_effective_page(org)["is_global"])

        homepage.save_global_page({"en": "Shalom"}, None, homepage.make_default_content(), user_id=1)
        cloned = homepage.clone_global_to_org(org, user_id=1)
        self.assertEqual(cloned["title"], {"en": "Shalom"})
        self.assertEqual(cloned["organization_id"], org)
        with self.assertRaises(ValidationError):
            homepage.clone_global_to_org(org)

        homepage.save_org_page(org, {"en": "Beth Shalom"}, "https://example.com/hero.jpg", cloned["content"])
        page = homepage.fetch_effective_page(org)
        self.assertEqual((page["title"], page["hero_image_url"]), ({"en": "Beth Shalom"}, "https://example.com/hero.jpg"))
        self.assertEqual(homepage.fetch_global_page()["title"], {"en": "Shalom"})

    def test_save_org_page_without_clone_inserts(self):
        org = self.make_org()
        homepage.save_org_page(org, {"en": "Ours"}, None, homepage.make_default_content())
        self.assertEqual(homepage.fetch_effective_page(org)["title"], {"en": "Ours"})

    def test_clone_without_global_page(self):
        org = self.make_org()
        db.execute("DELETE FROM home_pages")
        with self.assertRaises(NotFoundError):
            homepage.clone_global_to_org(org)


if __name__ == "__main__":
    unittest.main()
