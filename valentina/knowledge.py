"""
Inventory knowledge: the product catalog the assistant quotes from.

Items are stored in the ``inventory`` table and mirrored in an in-memory
cache per app. A lookup costs one small aggregate query to notice changes
made by other processes; the rows themselves are only reloaded then.
"""
import json
import logging
import threading
import unicodedata

import pandas as pd
from flask import current_app
from sqlalchemy import func, select

from valentina.models import db, InventoryItem

app_logger = logging.getLogger('app')
error_logger = logging.getLogger('error')


def normalize(text):
    """Lowercases text and strips accents, so 'Válvula' matches 'valvula'."""
    if not text:
        return ""
    decomposed = unicodedata.normalize("NFD", str(text))
    return "".join(ch for ch in decomposed if not unicodedata.combining(ch)).lower()


class KnowledgeCache:
    """
    In-memory copy of the inventory table.

    Each read compares the table's ``(row count, max id)`` with the values
    seen at the last load, so imports and deletes made by another process
    (the dashboard vs. a Celery worker) are picked up on the next lookup.
    """

    def __init__(self):
        self._items = None
        self._signature = None
        self._lock = threading.Lock()

    @staticmethod
    def _table_signature():
        try:
            return tuple(db.session.execute(
                select(func.count(InventoryItem.id), func.max(InventoryItem.id))
            ).one())
        except Exception as e:
            error_logger.error(f"Could not read inventory signature: {e}")
            return None

    def refresh(self):
        signature = self._table_signature()
        try:
            rows = db.session.execute(select(InventoryItem).order_by(InventoryItem.id)).scalars().all()
            items = [{"searchable": row.searchable, "data": row.data} for row in rows]
        except Exception as e:
            error_logger.error(f"Could not load inventory into cache: {e}", exc_info=True)
            items, signature = [], None
        with self._lock:
            self._items = items
            self._signature = signature
        return items

    @property
    def items(self):
        if self._items is None or self._signature is None:
            return self.refresh()
        if self._table_signature() != self._signature:
            app_logger.info("Inventory changed elsewhere; reloading catalog cache.")
            return self.refresh()
        return self._items


def init_knowledge(app):
    app.extensions['knowledge'] = KnowledgeCache()


def get_cache():
    return current_app.extensions['knowledge']


def refresh_knowledge():
    return get_cache().refresh()


def search_catalog(query, limit=5, items=None):
    """
    Scores every inventory item by how many query words it contains and
    returns the best ``limit`` matches as ``{searchable, data, score}``.
    """
    if not query:
        return []
    if items is None:
        items = get_cache().items

    words = normalize(query).split(" ")
    scored = []
    for item in items:
        item_text = normalize(item.get("searchable") or "")
        score = sum(1 for w in words if w in item_text)
        if score > 0:
            scored.append({**item, "score": score})
    scored.sort(key=lambda i: i["score"], reverse=True)
    return scored[:limit]


def read_inventory_csv(source):
    """Parses a CSV with a header row into a list of row dicts (all values as strings)."""
    frame = pd.read_csv(source, dtype=str, keep_default_na=False, encoding="utf-8")
    return frame.to_dict(orient="records")


def import_inventory_csv(source):
    """
    Inserts one inventory item per CSV row, skipping rows whose searchable
    text is already stored. Returns the number of inserted items.
    """
    rows = read_inventory_csv(source)
    existing = set(db.session.execute(select(InventoryItem.searchable)).scalars().all())

    inserted = 0
    try:
        for row in rows:
            searchable = " ".join(str(v) for v in row.values())
            if searchable in existing:
                continue
            existing.add(searchable)
            db.session.add(InventoryItem(searchable=searchable, raw_data=json.dumps(row, ensure_ascii=False)))
            inserted += 1
        db.session.commit()
    except Exception:
        db.session.rollback()
        raise

    app_logger.info(f"Inventory import: {inserted} new items out of {len(rows)} rows.")
    refresh_knowledge()
    return inserted


def delete_inventory_item(index):
    """Deletes the item at ``index`` in id order. Returns False if the index is out of range."""
    ids = db.session.execute(select(InventoryItem.id).order_by(InventoryItem.id)).scalars().all()
    if index < 0 or index >= len(ids):
        return False
    db.session.delete(db.session.get(InventoryItem, ids[index]))
    db.session.commit()
    refresh_knowledge()
    return True
