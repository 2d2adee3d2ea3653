#  ── extractors.py  – price extraction pipeline ─────────────────────────────
#
#  One parse per call, then an ordered list of strategies; the first one that
#  comes back with a price wins:
#
#    1) selector rules (site tables, then generic)   → resolve_candidates
#    2) JSON-LD Offer / Product.offers               → minimum
#    3) inline script state ("sellingPrice": …)      → minimum
#    4) currency-anchored scan over raw HTML         → resolve_candidates
#    5) currency-anchored scan over visible text     → resolve_candidates
#    6) "Deal Price / Price / MRP" label scan        → first positive match
#
import json
import logging
import math
import re
from collections import Counter
from typing import Iterable, List, NamedTuple, Optional

import curl_cffi.requests
from bs4 import BeautifulSoup, Comment

from helpers import CURRENCY_MARKER, _html, normalize_price
from price_rules import DEFAULT_RULES, PriceRules, rules_for

logger = logging.getLogger(__name__)

INR_MIN_PRICE = 50
MIN_PRICE     = 0.5


class PriceCandidate(NamedTuple):
    value: float
    currency: Optional[str] = None


class ExtractionResult(NamedTuple):
    price: Optional[float]
    title: Optional[str]


class ParsedDocument(NamedTuple):
    html: str
    url: str
    soup: BeautifulSoup
    text: str                       # visible body text
    rules: PriceRules


# ── currency-anchored scanning ──────────────────────────────────────────────
# 1,299 · 1.299,00 · 1,09,900.00 · 999 · 12.50; never stops inside a digit run
PRICE_TOKEN = (
    r"(\d{1,3}(?:,\d{2})*(?:[.,]\d{3})+(?:[.,]\d{1,2})?(?!\d)"
    r"|\d+(?:[.,]\d{1,2})?(?!\d))"
)

CURRENCY_PRICE_RE = re.compile(rf"({CURRENCY_MARKER})\s*{PRICE_TOKEN}", re.I)
LABEL_PRICE_RE = re.compile(
    rf"\b(?:deal\s*price|price|mrp)\b\s*[:\-–]?\s*(?:{CURRENCY_MARKER})?\s*{PRICE_TOKEN}",
    re.I,
)
_INR_HINT_RE = re.compile(r"₹|(?<![A-Za-z])INR(?![A-Za-z])", re.I)

_CURRENCY_CODES = {"₹": "INR", "rs": "INR", "rs.": "INR", "$": "USD", "€": "EUR", "£": "GBP"}


def _currency_code(marker: str) -> str:
    m = marker.strip().lower()
    return _CURRENCY_CODES.get(m, m.upper())


def _add_candidate(pool: List[PriceCandidate], value, currency=None):
    """Append only finite, non-negative numbers."""
    if value is None or not math.isfinite(value) or value < 0:
        return
    pool.append(PriceCandidate(float(value), currency))


def currency_candidates(text: str) -> List[PriceCandidate]:
    """Every '<currency mark> <number>' in *text*, normalised."""
    pool: List[PriceCandidate] = []
    for m in CURRENCY_PRICE_RE.finditer(text or ""):
        _add_candidate(pool, normalize_price(m.group(2)), _currency_code(m.group(1)))
    return pool


def label_price(text: str) -> Optional[float]:
    for m in LABEL_PRICE_RE.finditer(text or ""):
        value = normalize_price(m.group(1))
        if value and value > 0:
            return value
    return None


_HIDDEN_TAGS = ["script", "style", "noscript", "template", "head"]

def visible_text(soup: BeautifulSoup) -> str:
    """Body text with tags, scripts and styles dropped (tree is left untouched)."""
    root = soup.body or soup
    parts = [
        s for s in root.find_all(string=True)
        if not isinstance(s, Comment) and s.find_parent(_HIDDEN_TAGS) is None
    ]
    return " ".join(" ".join(parts).split())


# ── candidate resolution ────────────────────────────────────────────────────
def resolve_candidates(candidates: Iterable[PriceCandidate], context: str = "") -> Optional[float]:
    """
    Pick one price out of a candidate pool.

    Values under the plausibility floor (50 for rupees, 0.5 otherwise) are
    dropped unless nothing else is left; the most frequent survivor wins and
    ties go to the smaller value.
    """
    pool = [c for c in candidates if math.isfinite(c.value) and c.value > 0]
    if not pool:
        return None

    inr = bool(_INR_HINT_RE.search(context or "")) or any(c.currency == "INR" for c in pool)
    floor = INR_MIN_PRICE if inr else MIN_PRICE

    values = [c.value for c in pool if c.value >= floor]
    if not values:
        return min(c.value for c in pool)

    counts = Counter(values)
    return min(counts, key=lambda v: (-counts[v], v))


# ── 1) selector rules ───────────────────────────────────────────────────────
def selector_candidates(soup: BeautifulSoup, url: str, rules: PriceRules = DEFAULT_RULES) -> List[PriceCandidate]:
    pool: List[PriceCandidate] = []

    for rule in rules_for(url, rules):
        el = soup.select_one(rule.selector)
        if el is None:
            continue
        if rule.attr:
            raw = el.get(rule.attr)
        else:
            raw = el.get("content") or el.get_text(" ", strip=True)
        if not raw:
            continue
        _add_candidate(pool, normalize_price(raw))
        pool.extend(currency_candidates(raw))

    hint = soup.select_one(rules.hint_meta)
    if hint is not None and hint.get("content"):
        pool.extend(currency_candidates(hint["content"]))

    return pool


# ── 2) JSON-LD ──────────────────────────────────────────────────────────────
_OFFER_FIELDS = ("price", "lowPrice", "highPrice")


def _ld_nodes(data) -> list:
    """Flatten arrays and @graph wrappers into a flat list of dict nodes."""
    nodes, stack = [], [data]
    while stack:
        n = stack.pop()
        if isinstance(n, list):
            stack.extend(reversed(n))
        elif isinstance(n, dict):
            if "@graph" in n:
                stack.append(n["@graph"])
            nodes.append(n)
    return nodes


def _ld_type(node: dict) -> str:
    t = node.get("@type") or ""
    if isinstance(t, list):
        t = " ".join(str(x) for x in t)
    return str(t).lower()


def _ld_value(raw) -> Optional[float]:
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        return float(raw)
    if isinstance(raw, str):
        return normalize_price(raw)
    return None


def _offer_values(offer, pool: List[PriceCandidate]):
    if not isinstance(offer, dict):
        return
    cur = offer.get("priceCurrency")
    for key in _OFFER_FIELDS:
        value = _ld_value(offer.get(key))
        if value:
            _add_candidate(pool, value, cur if isinstance(cur, str) else None)


def jsonld_candidates(soup: BeautifulSoup) -> List[PriceCandidate]:
    pool: List[PriceCandidate] = []
    for tag in soup.find_all("script", type=re.compile(r"ld\+json", re.I)):
        try:
            data = json.loads(tag.get_text() or "{}")
        except ValueError:
            continue

        for node in _ld_nodes(data):
            kind = _ld_type(node)
            if "offer" in kind:
                _offer_values(node, pool)
            elif "product" in kind:
                offers = node.get("offers") or []
                if not isinstance(offers, list):
                    offers = [offers]
                for off in offers:
                    _offer_values(off, pool)
    return pool


def jsonld_price(soup: BeautifulSoup) -> Optional[float]:
    """Lowest price across every Offer / Product.offers block."""
    values = [c.value for c in jsonld_candidates(soup) if c.value > 0]
    return min(values) if values else None


# ── 3) inline script state ──────────────────────────────────────────────────
_STATE_NUMBER = r"""["']?(\d[\d,]*(?:\.\d+)?)"""
STATE_PRICE_RE = re.compile(
    r"""["']?\b(?:finalPrice|sellingPrice|fsp|salePrice|offerPrice|price)["']?\s*:\s*"""
    rf"""(?:{_STATE_NUMBER}|\{{[^{{}}]*?["']?(?:amount|value)["']?\s*:\s*{_STATE_NUMBER})"""
)
STATE_AMOUNT_RE = re.compile(
    r"""["']?\b(?:amount|value)["']?\s*:\s*["']?(\d{1,3}(?:,\d{3})+(?:\.\d+)?|\d{3,}(?:\.\d+)?)(?![\d,])"""
)


def script_state_candidates(soup: BeautifulSoup) -> List[PriceCandidate]:
    pool: List[PriceCandidate] = []
    for script in soup.find_all("script"):
        body = script.get_text()
        if not body:
            continue
        for m in STATE_PRICE_RE.finditer(body):
            _add_candidate(pool, normalize_price(m.group(1) or m.group(2)))
        for m in STATE_AMOUNT_RE.finditer(body):
            _add_candidate(pool, normalize_price(m.group(1)))
    return pool


def script_state_price(soup: BeautifulSoup) -> Optional[float]:
    """Lowest price-like value found in serialised app state."""
    values = [c.value for c in script_state_candidates(soup) if c.value > 0]
    return min(values) if values else None


# ── pipeline ────────────────────────────────────────────────────────────────
def _selector_stage(doc: ParsedDocument) -> Optional[float]:
    return resolve_candidates(selector_candidates(doc.soup, doc.url, doc.rules), doc.html)

def _jsonld_stage(doc: ParsedDocument) -> Optional[float]:
    return jsonld_price(doc.soup)

def _script_state_stage(doc: ParsedDocument) -> Optional[float]:
    return script_state_price(doc.soup)

def _html_scan_stage(doc: ParsedDocument) -> Optional[float]:
    return resolve_candidates(currency_candidates(doc.html), doc.html)

def _text_scan_stage(doc: ParsedDocument) -> Optional[float]:
    return resolve_candidates(currency_candidates(doc.text), doc.text)

def _label_stage(doc: ParsedDocument) -> Optional[float]:
    return label_price(doc.text)


PIPELINE = (
    ("selector",     _selector_stage),
    ("json-ld",      _jsonld_stage),
    ("script-state", _script_state_stage),
    ("html-scan",    _html_scan_stage),
    ("text-scan",    _text_scan_stage),
    ("label",        _label_stage),
)


def parse_document(html: str, url: str, rules: PriceRules = DEFAULT_RULES) -> ParsedDocument:
    soup = BeautifulSoup(html or "", "lxml")
    return ParsedDocument(html or "", url or "", soup, visible_text(soup), rules)


def run_pipeline(doc: ParsedDocument) -> Optional[float]:
    for name, stage in PIPELINE:
        price = stage(doc)
        if price is not None:
            logger.debug(f"{doc.url}: price {price} via {name}")
            return price
    logger.debug(f"{doc.url}: no price found")
    return None


def extract_title(soup: BeautifulSoup) -> Optional[str]:
    """og:title → <title> → first <h1>; None when all are missing/blank."""
    og = soup.find("meta", {"property": "og:title"})
    if og and og.get("content", "").strip():
        return og["content"].strip()

    for tag in (soup.find("title"), soup.find("h1")):
        if tag is not None:
            text = tag.get_text(" ", strip=True)
            if text:
                return text
    return None


def extract_price(html: str, url: str = "", rules: PriceRules = DEFAULT_RULES) -> Optional[float]:
    """Run the full pipeline over already-fetched HTML."""
    if not html:
        return None
    return run_pipeline(parse_document(html, url, rules))


def extract_product_info(html: str, url: str = "", rules: PriceRules = DEFAULT_RULES) -> ExtractionResult:
    """Price + title from one parse of the same document."""
    if not html:
        return ExtractionResult(None, None)
    doc = parse_document(html, url, rules)
    return ExtractionResult(run_pipeline(doc), extract_title(doc.soup))


# ── entry points (fetch + extract) ──────────────────────────────────────────
def get_price(url: str, fetch=_html, rules: PriceRules = DEFAULT_RULES) -> Optional[float]:
    """Fetch *url* and return its price, or None (fetch failures included)."""
    try:
        html = fetch(url)
    except curl_cffi.requests.RequestsError as e:
        logger.warning(f"get_price fetch failed for {url}: {e}")
        return None
    return extract_price(html, url, rules)


def get_product_info(url: str, fetch=_html, rules: PriceRules = DEFAULT_RULES) -> ExtractionResult:
    """Single fetch, then price pipeline and title over the same parse."""
    try:
        html = fetch(url)
    except curl_cffi.requests.RequestsError as e:
        logger.warning(f"get_product_info fetch failed for {url}: {e}")
        return ExtractionResult(None, None)
    return extract_product_info(html, url, rules)
