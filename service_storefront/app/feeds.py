"""
XML documents built from catalog data: sitemaps and the merchant product feed.
"""

import re
import xml.etree.ElementTree as ET
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Optional, Tuple
from urllib.parse import quote


SITEMAP_NS = "http://www.sitemaps.org/schemas/sitemap/0.9"
GOOGLE_NS = "http://base.google.com/ns/1.0"

ET.register_namespace("g", GOOGLE_NS)

# (path, changefreq, priority)
STATIC_PAGES: Tuple[Tuple[str, str, str], ...] = (
    ("/", "daily", "1.0"),
    ("/shop", "daily", "0.9"),
    ("/subscriptions", "daily", "0.9"),
    ("/coupons", "daily", "0.9"),
    ("/about", "monthly", "0.8"),
    ("/contact", "monthly", "0.8"),
    ("/blog", "weekly", "0.8"),
    ("/services", "monthly", "0.7"),
    ("/privacy-policy", "yearly", "0.5"),
    ("/terms", "yearly", "0.5"),
)

SUBSCRIPTION_CATEGORY_SLUGS = {"digital-subscriptions", "الاشتراكات-الرقمية"}
SUBSCRIPTION_NAME_MARKERS = ("subscription", "اشتراك", "رقمي")
DIGITAL_NAME_MARKERS = (
    "subscription", "netflix", "shahid", "osn", "spotify", "youtube",
    "digital", "code", "voucher", "اشتراك", "رقمي", "تفعيل", "كود",
)

_TAGS = re.compile(r"<[^>]*>")
_WHITESPACE = re.compile(r"\s+")
_SIZE_SUFFIX = re.compile(r"-\d+x\d+(\.[^./]+)$")


def _g(tag: str) -> str:
    return f"{{{GOOGLE_NS}}}{tag}"


def _text(parent: ET.Element, tag: str, value: str) -> ET.Element:
    element = ET.SubElement(parent, tag)
    element.text = value
    return element


def _render(root: ET.Element) -> str:
    return '<?xml version="1.0" encoding="UTF-8"?>\n' + ET.tostring(root, encoding="unicode")


def _isoformat(now: Optional[datetime]) -> str:
    return (now or datetime.now(timezone.utc)).isoformat()


def clean_text(value: Any) -> str:
    """Strip HTML tags and collapse whitespace."""
    return _WHITESPACE.sub(" ", _TAGS.sub("", str(value or ""))).strip()


def urlset(entries: Iterable[Tuple[str, str, str, str]]) -> str:
    """Render ``(loc, lastmod, changefreq, priority)`` entries as a sitemap."""
    root = ET.Element("urlset", xmlns=SITEMAP_NS)
    for loc, lastmod, changefreq, priority in entries:
        url = ET.SubElement(root, "url")
        _text(url, "loc", loc)
        _text(url, "lastmod", lastmod)
        _text(url, "changefreq", changefreq)
        _text(url, "priority", priority)
    return _render(root)


def pages_sitemap(site_url: str, now: Optional[datetime] = None) -> str:
    lastmod = _isoformat(now)
    base = site_url.rstrip("/")
    return urlset((f"{base}{path}", lastmod, changefreq, priority) for path, changefreq, priority in STATIC_PAGES)


def categories_sitemap(categories: List[Dict[str, Any]], site_url: str, now: Optional[datetime] = None) -> str:
    """Sitemap of non-empty product categories."""
    lastmod = _isoformat(now)
    base = site_url.rstrip("/")
    return urlset(
        (f"{base}/shop/category/{quote(str(category['slug']), safe='')}", lastmod, "weekly", "0.8")
        for category in categories
        if category.get("slug") and (category.get("count") or 0) > 0
    )


def is_subscription(product: Dict[str, Any]) -> bool:
    for category in product.get("categories") or []:
        if category.get("slug") in SUBSCRIPTION_CATEGORY_SLUGS:
            return True
        name = (category.get("name") or "").lower()
        if any(marker in name for marker in SUBSCRIPTION_NAME_MARKERS):
            return True
    return False


def subscription_products(products: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    return [product for product in products if is_subscription(product)]


def is_digital(product: Dict[str, Any]) -> bool:
    if product.get("virtual") or product.get("downloadable"):
        return True
    name = (product.get("name") or "").lower()
    return any(marker in name for marker in DIGITAL_NAME_MARKERS)


def _price(value: Any) -> Optional[float]:
    try:
        return float(value)
    except (TypeError, ValueError):
        return None


def _image_link(product: Dict[str, Any]) -> Optional[str]:
    images = product.get("images") or []
    src = images[0].get("src") if images else None
    if not src:
        return None
    # Point at the full-size upload rather than a generated thumbnail.
    return _SIZE_SUFFIX.sub(r"\1", src.split("?", 1)[0])


def product_feed(
    products: List[Dict[str, Any]],
    site_url: str,
    *,
    title: str,
    currency: str,
    now: Optional[datetime] = None,
) -> str:
    """Merchant-center RSS feed of published products."""
    base = site_url.rstrip("/")
    rss = ET.Element("rss", version="2.0")
    channel = ET.SubElement(rss, "channel")
    _text(channel, "title", title)
    _text(channel, "link", base)
    if not products:
        _text(channel, "description", "No products available")
        return _render(rss)

    _text(channel, "description", f"{title} product feed")
    _text(channel, "lastBuildDate", _isoformat(now))

    for product in products:
        item = ET.SubElement(channel, "item")
        product_id = product.get("id")
        link = product.get("permalink") or f"{base}/shop/{quote(str(product.get('slug') or product_id), safe='')}"
        description = clean_text(product.get("short_description") or product.get("description") or product.get("name"))

        _text(item, _g("id"), str(product_id))
        _text(item, _g("title"), clean_text(product.get("name"))[:140])
        _text(item, _g("description"), description[:4000])
        _text(item, _g("link"), link)

        image = _image_link(product)
        if image:
            _text(item, _g("image_link"), image)

        price = _price(product.get("regular_price")) or _price(product.get("price")) or 0.0
        _text(item, _g("price"), f"{price:.2f} {currency}")
        sale_price = _price(product.get("sale_price"))
        if sale_price is not None and sale_price < price:
            _text(item, _g("sale_price"), f"{sale_price:.2f} {currency}")

        in_stock = product.get("stock_status") == "instock"
        _text(item, _g("availability"), "in stock" if in_stock else "out of stock")
        _text(item, _g("condition"), "new")
        _text(item, _g("brand"), title)

        shipping = ET.SubElement(item, _g("shipping"))
        _text(shipping, _g("service"), "Digital Delivery" if is_digital(product) else "Standard")
        _text(shipping, _g("price"), f"0.00 {currency}")

    return _render(rss)
