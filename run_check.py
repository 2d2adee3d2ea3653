import csv
import logging
import os
import time

import curl_cffi.requests

from extractors    import get_product_info
from helpers       import _html, send_message
from price_tracker import init_db, _save, _last_price, change_message, check_price

logger = logging.getLogger(__name__)

TARGETS_CSV = os.environ.get("TARGETS_CSV", "targets.csv")

def normalise_header(row):
    """
    Return a copy where keys are stripped + lower-cased,
    e.g. ' Chat_ID '  →  'chat_id'
    """
    return {
        k.strip().lower(): (v.strip() if isinstance(v, str) else v)
        for k, v in row.items()
        if k is not None
    }

def _check_row(url: str, chat_id, notify, fetch, db):
    """Check one product, persist it and notify on a price move."""
    last, title = _last_price(url, db)
    result = check_price(url, last, fetch=fetch)
    status = result["status"]

    if status == "unavailable":
        return result

    if status == "changed":
        # best-effort: pick up a title for the message
        if not title:
            title = get_product_info(url, fetch=fetch).title
        if chat_id:
            text = change_message(url, result["old"], result["new"], title)
            try:
                notify(chat_id, text)
            except (RuntimeError, curl_cffi.requests.RequestsError) as e:
                logger.error(f"[FAIL] notify {chat_id} for {url}: {e}")

    price = result.get("new", result.get("price"))
    _save(url, chat_id, title, price, db)
    logger.info(f"{url} | {status:<11} → {price}")
    return result

def main(path: str = TARGETS_CSV, notify=send_message, fetch=_html, db: str = None, pause: float = 2):
    """Check every row of *path*; returns the per-row result dicts."""
    init_db(db)
    results = []

    with open(path, newline="", encoding="utf-8-sig") as f:
        for raw in csv.DictReader(f):
            row = normalise_header(raw)

            # --- tolerant look-ups --------------------------------------------
            url     = row.get("url") or row.get("link")
            chat_id = row.get("chat_id") or row.get("chat") or row.get("recipient")

            if not url:
                logger.info(f"[SKIP] Missing url in row: {row}")
                continue

            # --- check, save & notify ------------------------------------------
            try:
                results.append(_check_row(url, chat_id, notify, fetch, db))
            except Exception as e:
                logger.error(f"[FAIL] {url}: {e}")
                results.append({"url": url, "status": "failed", "error": str(e)})
                continue

            # gentle pacing
            if pause:
                time.sleep(pause)

    return results

if __name__ == "__main__":
    logging.basicConfig(
        level=logging.INFO,
        format='%(asctime)s - %(levelname)s - %(message)s'
    )
    main()
