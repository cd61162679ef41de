"""
homepage.py
Block-based home page: content tree edits and global / per-organization storage.

Content document:
    {"version": 1, "rows": [{"id", "layout", "columns": [{"id", "blocks": [...]}]}]}
Every edit returns a new document; the input is never mutated.
"""

from __future__ import annotations

import copy
import json
import logging
import re
import uuid
from typing import Any

import db
from errors import NotFoundError, ValidationError

logger = logging.getLogger(__name__)

CONTENT_VERSION = 1

ROW_LAYOUTS = {
    "1": 1,
    "2": 2,
    "3": 3,
    "1-2": 2,
    "2-1": 2,
}

BLOCK_TYPES = ("text", "image", "video")
CAPTION_POSITIONS = ("top", "bottom", "left", "right")
CAPTION_ALIGNS = ("center", "left", "right")
TEXT_SIZES = ("sm", "md", "lg", "xl")


def new_id() -> str:
    return str(uuid.uuid4())


# ---------- Tree ----------

def layout_to_columns(layout: str) -> int:
    return ROW_LAYOUTS.get(layout, 1)


def make_column() -> dict:
    return {"id": new_id(), "blocks": []}


def make_row(layout: str = "1") -> dict:
    if layout not in ROW_LAYOUTS:
        raise ValidationError(f"Unknown row layout: {layout}")
    return {"id": new_id(), "layout": layout, "columns": [make_column() for _ in range(layout_to_columns(layout))]}


def make_default_content() -> dict:
    return {"version": CONTENT_VERSION, "rows": [make_row("1")]}


def ensure_content(value: Any) -> dict:
    """Return a usable content document; anything unrecognised becomes the default."""
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return make_default_content()
    if not isinstance(value, dict) or value.get("version") != CONTENT_VERSION or not isinstance(value.get("rows"), list):
        return make_default_content()
    return value


def _rows(content: dict) -> list[dict]:
    return copy.deepcopy(ensure_content(content)["rows"])


def _with_rows(rows: list[dict]) -> dict:
    return {"version": CONTENT_VERSION, "rows": rows}


def _row_index(rows: list[dict], row_id: str) -> int:
    for i, row in enumerate(rows):
        if row["id"] == row_id:
            return i
    raise NotFoundError(f"Row {row_id} not found")


def _column(rows: list[dict], row_id: str, column_id: str) -> dict:
    row = rows[_row_index(rows, row_id)]
    for col in row["columns"]:
        if col["id"] == column_id:
            return col
    raise NotFoundError(f"Column {column_id} not found")


def add_row(content: dict, layout: str = "1") -> dict:
    rows = _rows(content)
    rows.append(make_row(layout))
    return _with_rows(rows)


def remove_row(content: dict, row_id: str) -> dict:
    return _with_rows([r for r in _rows(content) if r["id"] != row_id])


def move_row(content: dict, row_id: str, offset: int) -> dict:
    rows = _rows(content)
    i = _row_index(rows, row_id)
    j = min(max(i + offset, 0), len(rows) - 1)
    rows.insert(j, rows.pop(i))
    return _with_rows(rows)


def change_row_layout(content: dict, row_id: str, layout: str) -> dict:
    """Switch a row's layout, dropping trailing columns or padding with empty ones."""
    if layout not in ROW_LAYOUTS:
        raise ValidationError(f"Unknown row layout: {layout}")
    rows = _rows(content)
    row = rows[_row_index(rows, row_id)]
    count = layout_to_columns(layout)
    columns = row["columns"][:count]
    while len(columns) < count:
        columns.append(make_column())
    row["layout"] = layout
    row["columns"] = columns
    return _with_rows(rows)


def add_block(content: dict, row_id: str, column_id: str, block: dict) -> dict:
    if block.get("type") not in BLOCK_TYPES:
        raise ValidationError(f"Unknown block type: {block.get('type')}")
    rows = _rows(content)
    _column(rows, row_id, column_id)["blocks"].append(copy.deepcopy(block))
    return _with_rows(rows)


def remove_block(content: dict, row_id: str, column_id: str, block_id: str) -> dict:
    rows = _rows(content)
    col = _column(rows, row_id, column_id)
    col["blocks"] = [b for b in col["blocks"] if b["id"] != block_id]
    return _with_rows(rows)


def update_block(content: dict, row_id: str, column_id: str, block_id: str, patch: dict) -> dict:
    """Shallow-merge `patch` into a block. id and type never change."""
    rows = _rows(content)
    col = _column(rows, row_id, column_id)
    for i, block in enumerate(col["blocks"]):
        if block["id"] == block_id:
            updated = {**block, **copy.deepcopy(patch)}
            updated["id"], updated["type"] = block["id"], block["type"]
            col["blocks"][i] = updated
            return _with_rows(rows)
    raise NotFoundError(f"Block {block_id} not found")


def find_block(content: dict, block_id: str) -> tuple[dict, dict, dict] | None:
    for row in ensure_content(content)["rows"]:
        for col in row["columns"]:
            for block in col["blocks"]:
                if block["id"] == block_id:
                    return row, col, block
    return None


def move_block(content: dict, block_id: str, row_id: str, column_id: str) -> dict:
    """Move a block to the end of another column (or the same one)."""
    found = find_block(content, block_id)
    if found is None:
        raise NotFoundError(f"Block {block_id} not found")
    from_row, from_col, block = found
    rows = _rows(content)
    _column(rows, row_id, column_id)
    source = _column(rows, from_row["id"], from_col["id"])
    source["blocks"] = [b for b in source["blocks"] if b["id"] != block_id]
    _column(rows, row_id, column_id)["blocks"].append(copy.deepcopy(block))
    return _with_rows(rows)


# ---------- Blocks ----------

def text_block(text: str = "", lang: str = "en", rich: bool = False, size: str = "md", align: str = "left") -> dict:
    return {
        "id": new_id(),
        "type": "text",
        "content": {lang: text} if text else {},
        "editor": {"rich": rich, "size": size, "align": align},
    }


def image_block(
    src: str,
    caption: str = "",
    lang: str = "en",
    caption_position: str = "bottom",
    caption_align: str = "center",
    storage_path: str | None = None,
) -> dict:
    block = {
        "id": new_id(),
        "type": "image",
        "src": src,
        "caption": {lang: caption} if caption else {},
        "captionPosition": caption_position,
        "captionAlign": caption_align,
    }
    if storage_path:
        block["storagePath"] = storage_path
    return block


def video_block(embed_url: str, caption: str = "", lang: str = "en", caption_position: str = "bottom",
                caption_align: str = "center") -> dict:
    return {
        "id": new_id(),
        "type": "video",
        "embedUrl": embed_url,
        "caption": {lang: caption} if caption else {},
        "captionPosition": caption_position,
        "captionAlign": caption_align,
    }


def localized(value: dict | None, lang: str, fallback: str = "") -> str:
    """Text in `lang`, else English, else the first language present."""
    if not value:
        return fallback
    if value.get(lang):
        return value[lang]
    if value.get("en"):
        return value["en"]
    return next(iter(value.values()), fallback)


def set_localized(value: dict | None, lang: str, text: str) -> dict:
    out = dict(value or {})
    out[lang] = text
    return out


_YOUTU_BE = re.compile(r"youtu\.be/([a-zA-Z0-9_-]+)")
_WATCH_V = re.compile(r"[?&]v=([a-zA-Z0-9_-]+)")


def to_embed_url(url: str | None) -> str | None:
    """YouTube share/watch links -> embed URL; existing embed URLs pass through."""
    if not url:
        return None
    short = _YOUTU_BE.search(url)
    if short:
        return f"https://www.youtube.com/embed/{short.group(1)}"
    long = _WATCH_V.search(url)
    if long:
        return f"https://www.youtube.com/embed/{long.group(1)}"
    if "/embed/" in url:
        return url
    return None


# ---------- Storage ----------

def _decode(row) -> dict | None:
    if not row:
        return None
    page = dict(row)
    page["title"] = json.loads(page["title"] or "{}")
    page["content"] = ensure_content(page["content"])
    return page


def fetch_global_page() -> dict | None:
    return _decode(db.fetch_one("SELECT * FROM home_pages WHERE is_global = 1"))


def fetch_org_page(organization_id: int) -> dict | None:
    return _decode(db.fetch_one("SELECT * FROM home_pages WHERE organization_id = ?", (organization_id,)))


def fetch_effective_page(organization_id: int | None) -> dict | None:
    """The organization's own page when it has one, else the global page."""
    if organization_id is not None:
        page = fetch_org_page(organization_id)
        if page:
            return page
    return fetch_global_page()


def _save(existing: dict | None, organization_id: int | None, title: dict, hero_image_url: str | None,
          content: dict, user_id: int | None) -> None:
    payload = (json.dumps(title), hero_image_url, json.dumps(ensure_content(content)), user_id, db.now_iso())
    if existing:
        db.execute(
            "UPDATE home_pages SET title = ?, hero_image_url = ?, content = ?, updated_by = ?, updated_at = ? WHERE id = ?",
            payload + (existing["id"],),
        )
    else:
        db.execute(
            """
            INSERT INTO home_pages(title, hero_image_url, content, updated_by, updated_at, organization_id, is_global)
            VALUES(?,?,?,?,?,?,?)
            """,
            payload + (organization_id, int(organization_id is None)),
        )


def save_global_page(title: dict, hero_image_url: str | None, content: dict, user_id: int | None = None) -> None:
    _save(fetch_global_page(), None, title, hero_image_url, content, user_id)


def save_org_page(organization_id: int, title: dict, hero_image_url: str | None, content: dict,
                  user_id: int | None = None) -> None:
    _save(fetch_org_page(organization_id), organization_id, title, hero_image_url, content, user_id)


def clone_global_to_org(organization_id: int, user_id: int | None = None) -> dict:
    global_page = fetch_global_page()
    if not global_page:
        raise NotFoundError("Global home page not found")
    if fetch_org_page(organization_id):
        raise ValidationError("Organization already has a home page")
    _save(None, organization_id, global_page["title"], global_page["hero_image_url"], global_page["content"], user_id)
    logger.info("Cloned global home page to organization %s", organization_id)
    return fetch_org_page(organization_id)
