from types import SimpleNamespace

import requests

from auctionwatch.source import UNTITLED, SuperbidClient, build_listing, html_to_text


class DummyResponse:
    def __init__(self, payload=None, status_code: int = 200, json_error: bool = False):
        self._payload = payload
        self.status_code = status_code
        self._json_error = json_error

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error")

    def json(self):
        if self._json_error:
            raise ValueError("not json")
        return self._payload


class DummySession:
    def __init__(self, response=None, error: Exception | None = None):
        self.headers = {}
        self.calls = []
        self._response = response
        self._error = error

    def get(self, url, timeout=None):
        self.calls.append(SimpleNamespace(url=url, timeout=timeout))
        if self._error:
            raise self._error
        return self._response

    def close(self):
        pass


FULL_OFFER = {
    "id": 98765,
    "lotNumber": 12,
    "price": 1000.0,
    "endDate": "2025-05-01T15:00:00",
    "visits": 321,
    "product": {
        "shortDesc": "Notebook Dell Latitude i5",
        "detailedDescription": "<p>Notebook <b>Dell</b> &amp; carregador</p>",
        "galleryJson": [{"link": "x", "thumbnailUrl": "https://img.example.com/1.jpg"}],
        "subCategory": {
            "description": "Notebooks",
            "category": {"description": "Informática"},
        },
        "location": {"city": "São Paulo", "state": "SP"},
    },
    "auction": {"desc": "Leilão de TI", "auctioneer": "Fulano"},
    "seller": {"name": "Empresa X"},
    "offerDescription": {"offerDescription": "Lote usado"},
}


def test_build_listing_maps_nested_fields():
    listing = build_listing(FULL_OFFER)

    assert listing.offer_id == "98765"
    assert listing.title == "Notebook Dell Latitude i5"
    assert listing.url == "https://exchange.superbid.net/leilao/98765"
    assert listing.price == 1000.0
    assert listing.description == "Notebook Dell & carregador"
    assert listing.offer_description == "Lote usado"
    assert listing.image_url == "https://img.example.com/1.jpg"
    assert listing.lot_number == 12
    assert listing.visits == 321
    assert listing.category == "Informática"
    assert listing.sub_category == "Notebooks"
    assert listing.location == "São Paulo - SP"
    assert listing.seller == "Empresa X"
    assert listing.auction_name == "Leilão de TI"
    assert listing.auctioneer == "Fulano"


def test_build_listing_defaults_missing_fields():
    listing = build_listing({"id": 1, "product": {"location": {"state": "RJ"}}})

    assert listing.title == UNTITLED
    assert listing.price == 0.0
    assert listing.location == "RJ"
    assert listing.image_url is None
    assert listing.category is None
    assert listing.lot_number is None


def test_html_to_text_handles_plain_and_markup():
    assert html_to_text(None) == ""
    assert html_to_text("  plain &amp; simple ") == "plain & simple"
    assert html_to_text("<div>line one<br>line   two</div>") == "line one line two"


def test_fetch_returns_listings_and_skips_malformed_offers():
    session = DummySession(
        DummyResponse({"total": 3, "offers": [FULL_OFFER, {"price": 5}, {"id": 2}]})
    )
    client = SuperbidClient(session=session, timeout=7)

    listings = client.fetch("https://api.example.com/offers")

    assert [listing.offer_id for listing in listings] == ["98765", "2"]
    assert session.calls[0].timeout == 7
    assert session.headers["Accept"] == "application/json"


def test_fetch_returns_empty_on_transport_error(caplog):
    session = DummySession(error=requests.ConnectionError("down"))
    client = SuperbidClient(session=session)

    with caplog.at_level("WARNING"):
        assert client.fetch("https://api.example.com/offers") == []
    assert "Offer fetch failed" in caplog.text


def test_fetch_returns_empty_on_http_error_and_bad_payloads():
    for response in (
        DummyResponse(status_code=503),
        DummyResponse(json_error=True),
        DummyResponse(["not", "a", "dict"]),
        DummyResponse({"offers": "nope"}),
        DummyResponse({"total": 0}),
    ):
        client = SuperbidClient(session=DummySession(response))
        assert client.fetch("https://api.example.com/offers") == []
