import datetime
import logging
import os
import sqlite3

from extractors import get_price
from helpers import _html

logger = logging.getLogger(__name__)

DB = os.environ.get("PRICE_DB", "prices.sqlite")

# ── last-known price ledger ────────────────────────────────────────────────
def init_db(db: str = None):
    """Create the `products` table if it doesn't already exist."""
    with sqlite3.connect(db or DB) as conn:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS products (
                url        TEXT PRIMARY KEY,
                chat_id    TEXT,
                title      TEXT,
                price      REAL,
                checked_at TEXT
            )
        """)
        conn.commit()

def _save(url: str,
          chat_id,
          title,
          price: float,
          db: str = None):
    """
    Inserts or replaces the latest price for *url*.
    """
    now = datetime.datetime.now().isoformat(timespec="seconds")
    with sqlite3.connect(db or DB) as conn:
        conn.execute(
            """
            INSERT OR REPLACE INTO products
               (url, chat_id, title, price, checked_at)
            VALUES (?,?,?,?,?)
            """,
            (url, None if chat_id is None else str(chat_id), title, price, now)
        )
        conn.commit()

def _last_price(url: str, db: str = None):
    """Return (price, title) stored for *url*, or (None, None)."""
    with sqlite3.connect(db or DB) as conn:
        row = conn.execute(
            "SELECT price, title FROM products WHERE url = ?", (url,)
        ).fetchone()
    return (row[0], row[1]) if row else (None, None)

# ── price check ─────────────────────────────────────────────────────────────
def change_message(url: str, old: float, new: float, title: str = None) -> str:
    """Chat text announcing a price move."""
    label = f"{title}\n{url}" if title else url
    if new > old:
        return f"⚠️ Price increased!\n{label}\nOld: {old}\nNow: {new}"
    return f"✅ Price dropped!\n{label}\nOld: {old}\nNow: {new}"

def check_price(url: str, last_price=None, fetch=_html) -> dict:
    """
    Fetch the current price and compare it with *last_price*.

    status is one of:
      unavailable  – no price could be extracted (fetch failure included)
      initialized  – first observation, nothing to compare with
      changed      – differs from *last_price* (`old` / `new` set)
      no-change    – same as *last_price*
    """
    if not url:
        raise ValueError("url is required")

    new = get_price(url, fetch=fetch)
    if new is None:
        logger.info(f"Could not detect price for {url}")
        return {"url": url, "status": "unavailable"}

    if last_price is None:
        return {"url": url, "status": "initialized", "price": new}

    if new != last_price:
        return {"url": url, "status": "changed", "old": last_price, "new": new}

    return {"url": url, "status": "no-change", "price": last_price}
