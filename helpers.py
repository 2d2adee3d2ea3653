# helpers.py  – shared utilities (headers, polite rate-limit, HTTP wrapper,
#               Telegram sink, price-text normaliser)

import logging
import math
import os
import random
import re
import time
import urllib.parse
from collections import defaultdict
from threading import Lock
from typing import Optional

import backoff
import curl_cffi.requests

logger = logging.getLogger(__name__)

# --- Silence backoff library's own logging ---
logging.getLogger("backoff").addHandler(logging.NullHandler())
logging.getLogger("backoff").propagate = False

# ────────────────────────────────── HEADERS ──────────────────────────────────
UA_DESKTOP = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
    "AppleWebKit/537.36 (KHTML, like Gecko) "
    "Chrome/124.0.%d.%d Safari/537.36"
)

HEADERS = {
    "User-Agent": UA_DESKTOP % (
        random.randint(4200, 4299),
        random.randint(60, 99)
    ),
    "Accept": (
        "text/html,application/xhtml+xml,application/xml;"
        "q=0.9,image/avif,image/webp,*/*;q=0.8"
    ),
    "Accept-Language": "en-US,en;q=0.9",
    "Cache-Control":   "no-cache",
    "Pragma":          "no-cache",
    "Upgrade-Insecure-Requests": "1",
    "Sec-Fetch-Dest":  "document",
    "Sec-Fetch-Mode":  "navigate",
    "Sec-Fetch-Site":  "none",
    "Sec-Fetch-User":  "?1",
}

FETCH_TIMEOUT = 20

# ───────────────────────────── rate-limit decorator ──────────────────────────
_RATE_LOCK   = Lock()
_LAST_HIT    = defaultdict(float)    # domain → last request timestamp

PER_DOMAIN_DELAY = {                 # seconds between hits to same domain
    "amazon.in":    3,
    "amazon.com":   3,
    "flipkart.com": 2,
    "myntra.com":   2,
    "walmart.com":  2,
    "target.com":   2,
}

def polite(func):
    """Throttle outbound HTTP so we never hammer one host too fast."""
    def wrapper(url: str, *args, **kwargs):
        dom = urllib.parse.urlparse(url).netloc.split(":")[0].lower()
        base_dom = ".".join(dom.split(".")[-2:])      # strip subdomain

        min_delay = PER_DOMAIN_DELAY.get(base_dom, 1.5)
        with _RATE_LOCK:
            elapsed  = time.time() - _LAST_HIT[base_dom]
            wait_for = max(0, min_delay - elapsed)
            _LAST_HIT[base_dom] = time.time() + wait_for

        if wait_for:
            time.sleep(wait_for + random.uniform(0, 0.75))  # jitter

        return func(url, *args, **kwargs)
    return wrapper

# ──────────────────────────── HTTP helper functions ─────────────────────────
@backoff.on_exception(backoff.expo,
                      curl_cffi.requests.RequestsError,
                      max_tries=3,
                      jitter=backoff.full_jitter)
@polite
def _html(url: str) -> str:
    """Return page HTML with Chrome-124 TLS fingerprint + polite delay.

    Non-2xx answers raise ``curl_cffi.requests.RequestsError`` (HTTPError)
    like any other network failure.
    """
    resp = curl_cffi.requests.get(
        url,
        headers=HEADERS,
        impersonate="chrome124",
        timeout=FETCH_TIMEOUT,
        allow_redirects=True,
        max_redirects=5,
    )
    resp.raise_for_status()
    return resp.text

# ───────────────────────────── Telegram sink ────────────────────────────────
TELEGRAM_API = "https://api.telegram.org/bot{token}/{method}"

def send_message(chat_id, text: str, **options):
    """Deliver *text* to a Telegram chat; returns the API ``result`` payload."""
    token = os.environ.get("TELEGRAM_BOT_TOKEN")
    if not token:
        raise RuntimeError("Missing TELEGRAM_BOT_TOKEN")

    payload = {"chat_id": str(chat_id), "text": text, **options}
    data = curl_cffi.requests.post(
        TELEGRAM_API.format(token=token, method="sendMessage"),
        json=payload,
        timeout=FETCH_TIMEOUT,
    ).json()
    if not data.get("ok"):
        raise RuntimeError(data.get("description") or "Telegram API error")
    return data.get("result")

# ───────────────────────────── price normaliser ─────────────────────────────
CURRENCY_MARKER = r"(?:₹|\$|€|£|(?<![A-Za-z])(?:INR|USD|EUR|GBP|Rs\.|Rs(?=\s))(?![A-Za-z]))"

_MARKER_RE  = re.compile(CURRENCY_MARKER, re.I)
_NUMBER_RE  = re.compile(r"^(?:\d+(?:\.\d*)?|\.\d+)$")
_EURO_RE    = re.compile(r"^\d{1,3}(?:\.\d{3})+,\d{2}$")   # 1.299,00
_THOUSAND_RE = re.compile(r"^\d+\.\d{3}$")                 # 1.299

def normalize_price(txt) -> Optional[float]:
    """
    Strip currency marks, grouping commas and spaces → float.

    '₹1,299' → 1299.0, '1.299' → 1299.0, '1.299,00' → 1299.0,
    '99.99' → 99.99, 'abc' → None.
    """
    if txt is None:
        return None

    s = _MARKER_RE.sub("", str(txt))
    s = re.sub(r"\s+", "", s)            # \s covers NBSP too
    if not s:
        return None

    if _EURO_RE.match(s):
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", "")
        if s.count(".") > 1:
            head, _, tail = s.rpartition(".")
            s = head.replace(".", "") + "." + tail
        elif _THOUSAND_RE.match(s):
            s = s.replace(".", "")

    if not _NUMBER_RE.match(s):
        return None
    value = float(s)
    return value if math.isfinite(value) else None
