"""Client for the Superbid exchange offer search API."""

from __future__ import annotations

import html
import logging
from typing import List, Optional

import requests
from bs4 import BeautifulSoup

from .models import Listing

logger = logging.getLogger(__name__)

OFFER_URL_TEMPLATE = "https://exchange.superbid.net/leilao/{offer_id}"
UNTITLED = "Untitled"


class SuperbidClient:
    """Fetches one page of offers for a monitor's search URL.

    Only a single attempt is made per call. Any transport or payload problem
    is logged and reported as an empty result.
    """

    def __init__(self,
                 session: requests.Session | None = None,
                 timeout: float | None = None):
        self.session = session or requests.Session()
        self.timeout = timeout
        self.session.headers.update({
            "User-Agent": "AuctionWatch/1.0",
            "Accept": "application/json",
        })

    def fetch(self, url: str) -> List[Listing]:
        try:
            response = self.session.get(url, timeout=self.timeout)
            response.raise_for_status()
            payload = response.json()
        except (requests.RequestException, ValueError) as exc:
            logger.warning("Offer fetch failed for %s: %s", url, exc)
            return []

        if not isinstance(payload, dict):
            logger.warning("Unexpected offer payload from %s: %r", url,
                           type(payload).__name__)
            return []

        offers = payload.get("offers") or []
        if not isinstance(offers, list):
            logger.warning("Offer list missing from %s response", url)
            return []
        logger.info("Fetched %d offers from %s (total reported: %s)",
                    len(offers), url, payload.get("total"))

        listings: List[Listing] = []
        for offer in offers:
            try:
                listings.append(build_listing(offer))
            except (KeyError, TypeError, ValueError) as exc:
                logger.warning("Skipping malformed offer from %s: %s", url, exc)
        return listings

    def close(self) -> None:
        self.session.close()


def build_listing(offer: dict) -> Listing:
    """Map a raw offer object onto a :class:`Listing`."""
    offer_id = str(offer["id"])
    product = _as_dict(offer.get("product"))
    auction = _as_dict(offer.get("auction"))
    seller = _as_dict(offer.get("seller"))
    sub_category = _as_dict(product.get("subCategory"))
    category = _as_dict(sub_category.get("category"))
    offer_description = _as_dict(offer.get("offerDescription"))

    return Listing(
        offer_id=offer_id,
        title=_clean(product.get("shortDesc")) or UNTITLED,
        url=OFFER_URL_TEMPLATE.format(offer_id=offer_id),
        price=_safe_float(offer.get("price")),
        description=html_to_text(product.get("detailedDescription")),
        offer_description=html_to_text(offer_description.get("offerDescription")),
        image_url=_resolve_image(product),
        lot_number=_safe_int(offer.get("lotNumber")),
        end_date=_clean(offer.get("endDate")) or None,
        visits=_safe_int(offer.get("visits")),
        category=_clean(category.get("description")) or None,
        sub_category=_clean(sub_category.get("description")) or None,
        location=_format_location(product.get("location")),
        seller=_clean(seller.get("name")) or None,
        auction_name=_clean(auction.get("desc")) or None,
        auctioneer=_clean(auction.get("auctioneer")) or None,
    )


def html_to_text(value: Optional[str]) -> str:
    """Descriptions arrive as HTML fragments; keep only the readable text."""
    if not value:
        return ""
    if "<" not in value:
        return html.unescape(value).strip()
    soup = BeautifulSoup(value, "html.parser")
    return " ".join(soup.get_text(" ").split())


def _resolve_image(product: dict) -> Optional[str]:
    thumbnail = product.get("thumbnailUrl")
    if thumbnail:
        return thumbnail
    gallery = product.get("galleryJson") or []
    if isinstance(gallery, list):
        for item in gallery:
            if isinstance(item, dict) and item.get("thumbnailUrl"):
                return item["thumbnailUrl"]
    return None


def _format_location(value) -> Optional[str]:
    location = _as_dict(value)
    parts = [_clean(location.get("city")), _clean(location.get("state"))]
    text = " - ".join(part for part in parts if part)
    return text or None


def _as_dict(value) -> dict:
    return value if isinstance(value, dict) else {}


def _clean(value) -> str:
    return str(value).strip() if value is not None else ""


def _safe_float(value, default: float = 0.0) -> float:
    try:
        return float(value) if value is not None else default
    except (TypeError, ValueError):
        return default


def _safe_int(value) -> Optional[int]:
    try:
        return int(value) if value is not None else None
    except (TypeError, ValueError):
        return None
