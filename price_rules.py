# price_rules.py  – hostname-keyed selector tables for the selector stage
#
# Site tables are matched by substring against the URL hostname, so
# "amazon." covers amazon.in, amazon.com, amazon.co.uk …  Generic rules are
# always tried after every matching site table.

import urllib.parse
from types import MappingProxyType
from typing import Mapping, NamedTuple, Optional, Tuple


class SelectorRule(NamedTuple):
    selector: str
    attr: Optional[str] = None      # read this attribute instead of the text


class PriceRules(NamedTuple):
    sites: Mapping[str, Tuple[SelectorRule, ...]]
    generic: Tuple[SelectorRule, ...]
    hint_meta: str                  # meta tag carrying a secondary price hint


def _rules(*specs) -> Tuple[SelectorRule, ...]:
    """'sel' or ('sel', 'attr') → tuple of SelectorRule."""
    return tuple(
        SelectorRule(*s) if isinstance(s, tuple) else SelectorRule(s)
        for s in specs
    )


# ── site tables ─────────────────────────────────────────────────────────────
SITE_RULES = MappingProxyType({
    "amazon.": _rules(
        "#priceblock_dealprice",
        "#priceblock_ourprice",
        "#priceblock_saleprice",
        "span.a-price.priceToPay .a-offscreen",
        "#corePriceDisplay_desktop_feature_div .a-offscreen",
        "#corePrice_feature_div .a-offscreen",
        ".a-price .a-offscreen",
        ("#twister-plus-price-data-price", "value"),
        ("input[name*='customerVisiblePrice'][name*='amount']", "value"),
    ),
    "flipkart.": _rules(
        "div.Nx9bqj.CxhGGd",
        "._30jeq3._16Jk6d",
        "._30jeq3",
    ),
    "myntra.": _rules(
        "span.pdp-price strong",
        ".pdp-price",
    ),
    "walmart.": _rules(
        "[data-testid='price-value']",
        "[data-automation-id='price-value']",
        "span[itemprop='price']",
        ".price-characteristic",
    ),
    "target.": _rules(
        "[data-test='product-price']",
    ),
    "bestbuy.": _rules(
        ".priceView-customer-price span",
        "[data-testid='customer-price'] span",
    ),
    "ebay.": _rules(
        ".x-price-primary .ux-textspans",
        "#prcIsum",
        "#mm-saleDscPrc",
    ),
    "babylist.": _rules(
        "div[class^='PriceTag-styles__PriceTag__numerals']",
    ),
    "raymourflanigan.": _rules(
        "span.price-sales",
    ),
    "crateandbarrel.": _rules(
        ".price-display",
        "span.price",
    ),
    "lowes.": _rules(
        ("[data-testid='product-price']", "data-price"),
        ".main-price",
    ),
    "homedepot.": _rules(
        ".price-format__main-price",
        "[data-testid='price-format'] span",
    ),
})

# ── generic fallbacks ───────────────────────────────────────────────────────
GENERIC_RULES = _rules(
    ("meta[itemprop='price']", "content"),
    ("meta[property='product:price:amount']", "content"),
    ("meta[property='og:price:amount']", "content"),
    "[itemprop='price']",
    ("[data-price]", "data-price"),
    ("[data-amount]", "data-amount"),
    ".price",
    ".product-price",
    ".productPrice",
    ".sale-price",
    "span[class*='price']",
    "div[class*='price']",
    "#price",
)

HINT_META = "meta[name='twitter:data1']"

DEFAULT_RULES = PriceRules(sites=SITE_RULES, generic=GENERIC_RULES, hint_meta=HINT_META)


def rules_for(url: str, rules: PriceRules = DEFAULT_RULES) -> Tuple[SelectorRule, ...]:
    """Site rules whose key occurs in the hostname, then the generic ones."""
    host = (urllib.parse.urlparse(url or "").hostname or "").lower()
    matched = [
        rule
        for key, site_rules in rules.sites.items()
        if key in host
        for rule in site_rules
    ]
    return tuple(matched) + tuple(rules.generic)
