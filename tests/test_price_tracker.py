"""Tests for price_tracker (check + ledger) and the run_check script.

Pages come from fake ``fetch`` callables; the SQLite ledger lives in
``tmp_path``; notifications are collected in a list.
"""

from __future__ import annotations

import curl_cffi.requests
import pytest

import run_check
from price_tracker import _last_price, _save, change_message, check_price, init_db


def _page(price: str, title: str = "Electric Kettle") -> str:
    return (
        f"<html><head><title>{title}</title></head>"
        f'<body><span class="price">{price}</span></body></html>'
    )


def _fetch_from(pages: dict):
    def fetch(url: str) -> str:
        return pages[url]
    return fetch


# ---------------------------------------------------------------------------
# change_message
# ---------------------------------------------------------------------------

class TestChangeMessage:
    def test_drop_with_title(self) -> None:
        text = change_message("https://shop.test/k", 1499, 1299, "Kettle")
        assert text.startswith("✅ Price dropped!")
        assert "Kettle\nhttps://shop.test/k" in text
        assert text.endswith("Old: 1499\nNow: 1299")

    def test_increase_without_title(self) -> None:
        text = change_message("https://shop.test/k", 10, 12)
        assert text == "⚠️ Price increased!\nhttps://shop.test/k\nOld: 10\nNow: 12"


# ---------------------------------------------------------------------------
# check_price
# ---------------------------------------------------------------------------

class TestCheckPrice:
    URL = "https://shop.test/kettle"

    def test_initialized(self) -> None:
        result = check_price(self.URL, None, fetch=lambda url: _page("₹1,499"))
        assert result == {"url": self.URL, "status": "initialized", "price": 1499}

    def test_changed(self) -> None:
        result = check_price(self.URL, 1499, fetch=lambda url: _page("₹1,299"))
        assert result == {"url": self.URL, "status": "changed", "old": 1499, "new": 1299}

    def test_no_change(self) -> None:
        result = check_price(self.URL, 1499.0, fetch=lambda url: _page("₹1,499"))
        assert result["status"] == "no-change"
        assert result["price"] == 1499

    def test_unavailable_when_no_price(self) -> None:
        result = check_price(self.URL, 1499, fetch=lambda url: "<html><body>sold out</body></html>")
        assert result == {"url": self.URL, "status": "unavailable"}

    def test_unavailable_when_fetch_fails(self) -> None:
        def fetch(url: str) -> str:
            raise curl_cffi.requests.RequestsError("503")

        assert check_price(self.URL, 1499, fetch=fetch)["status"] == "unavailable"

    def test_url_required(self) -> None:
        with pytest.raises(ValueError):
            check_price("", None, fetch=lambda url: "")


# ---------------------------------------------------------------------------
# SQLite ledger
# ---------------------------------------------------------------------------

class TestLedger:
    def test_save_and_load(self, tmp_path) -> None:
        db = str(tmp_path / "prices.sqlite")
        init_db(db)
        assert _last_price("https://shop.test/a", db) == (None, None)

        _save("https://shop.test/a", 42, "Mug", 349.0, db)
        assert _last_price("https://shop.test/a", db) == (349.0, "Mug")

        _save("https://shop.test/a", 42, "Mug", 299.0, db)
        assert _last_price("https://shop.test/a", db) == (299.0, "Mug")

    def test_init_is_idempotent(self, tmp_path) -> None:
        db = str(tmp_path / "prices.sqlite")
        init_db(db)
        init_db(db)
        assert _last_price("https://shop.test/x", db) == (None, None)


# ---------------------------------------------------------------------------
# run_check.main
# ---------------------------------------------------------------------------

class TestRunCheck:
    URL = "https://shop.test/kettle"

    def _csv(self, tmp_path, body: str) -> str:
        path = tmp_path / "targets.csv"
        path.write_text(body, encoding="utf-8")
        return str(path)

    def test_initialize_then_notify_on_change(self, tmp_path) -> None:
        db = str(tmp_path / "prices.sqlite")
        csv_path = self._csv(tmp_path, f" URL , Chat_ID \n{self.URL},777\n")
        sent = []
        notify = lambda chat_id, text: sent.append((chat_id, text))

        first = run_check.main(csv_path, notify=notify,
                               fetch=_fetch_from({self.URL: _page("₹1,499")}),
                               db=db, pause=0)
        assert [r["status"] for r in first] == ["initialized"]
        assert sent == []
        assert _last_price(self.URL, db) == (1499, None)

        second = run_check.main(csv_path, notify=notify,
                                fetch=_fetch_from({self.URL: _page("₹1,299")}),
                                db=db, pause=0)
        assert [r["status"] for r in second] == ["changed"]
        assert len(sent) == 1
        chat_id, text = sent[0]
        assert chat_id == "777"
        assert "Price dropped!" in text
        assert "Electric Kettle" in text
        assert _last_price(self.URL, db) == (1299, "Electric Kettle")

    def test_rows_without_url_skipped(self, tmp_path) -> None:
        db = str(tmp_path / "prices.sqlite")
        csv_path = self._csv(tmp_path, "url,chat_id\n,5\n")
        results = run_check.main(csv_path, notify=lambda *a: None,
                                 fetch=_fetch_from({}), db=db, pause=0)
        assert results == []

    def test_row_failure_logged_and_skipped(self, tmp_path, caplog) -> None:
        db = str(tmp_path / "prices.sqlite")
        broken = "https://shop.test/broken"
        csv_path = self._csv(tmp_path, f"url,chat_id\n{broken},1\n{self.URL},1\n")

        def fetch(url: str) -> str:
            if url == broken:
                raise UnicodeDecodeError("utf-8", b"\xff", 0, 1, "invalid start byte")
            return _page("₹1,499")

        with caplog.at_level("ERROR", logger="run_check"):
            results = run_check.main(csv_path, notify=lambda *a: None, fetch=fetch, db=db, pause=0)

        assert [r["status"] for r in results] == ["failed", "initialized"]
        assert results[0]["url"] == broken
        assert "[FAIL] https://shop.test/broken" in caplog.text
        assert _last_price(self.URL, db) == (1499, None)
        assert _last_price(broken, db) == (None, None)

    def test_notify_failure_does_not_stop_run(self, tmp_path) -> None:
        db = str(tmp_path / "prices.sqlite")
        other = "https://shop.test/mug"
        csv_path = self._csv(tmp_path, f"url,chat_id\n{self.URL},1\n{other},1\n")
        pages = {self.URL: _page("₹1,499"), other: _page("₹349", "Mug")}
        run_check.main(csv_path, notify=lambda *a: None, fetch=_fetch_from(pages), db=db, pause=0)

        def notify(chat_id, text):
            raise RuntimeError("chat not found")

        pages = {self.URL: _page("₹1,599"), other: _page("₹399", "Mug")}
        results = run_check.main(csv_path, notify=notify, fetch=_fetch_from(pages), db=db, pause=0)

        assert [r["status"] for r in results] == ["changed", "changed"]
        assert _last_price(other, db)[0] == 399
