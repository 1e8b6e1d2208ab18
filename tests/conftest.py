"""
Shared fixtures for the carrier transport tests.
"""

import json
import os
from typing import Any, Dict, Optional
from unittest.mock import MagicMock

import pytest
import requests

os.environ.setdefault("ClientId", "test-client")
os.environ.setdefault("ClientSecret", "test-secret")
os.environ.setdefault("ApiKey", "test-api-key")
os.environ.setdefault("AWS_DEFAULT_REGION", "eu-west-1")

from carrier_common.ims import ImsClient  # noqa: E402


def make_response(status: int = 200, body: Any = None, text: Optional[str] = None) -> MagicMock:
    """A stand-in for requests.Response."""
    r = MagicMock()
    r.status_code = status
    r.ok = 200 <= status < 400
    r.json.return_value = body
    r.text = text if text is not None else (json.dumps(body) if body is not None else "")
    r.content = r.text.encode("utf-8")

    def raise_for_status():
        if not r.ok:
            raise requests.HTTPError(f"{status} Error", response=r)

    r.raise_for_status.side_effect = raise_for_status
    return r


@pytest.fixture
def response():
    return make_response


@pytest.fixture
def fake_ims():
    """
    Build a MagicMock IMS client whose get() answers from a path -> body dict.
    Unknown paths raise KeyError so a test notices unexpected lookups.
    """
    def _build(routes: Dict[str, Any]) -> MagicMock:
        ims = MagicMock(spec=ImsClient)
        ims.get.side_effect = lambda path, params=None: routes[path]
        return ims
    return _build


@pytest.fixture
def shipment() -> Dict[str, Any]:
    return {
        "id": 501,
        "shipmentNumber": "S-1001",
        "sellerId": 7,
        "termsOfDelivery": "Flex Private",
        "notesOnDelivery": "Leave at the back door",
        "pickUpPointId": None,
        "deliveryAddress": {
            "addressee": "Jens Hansen",
            "streetNameAndNumber": "Nørregade 10",
            "postalCode": "8000",
            "cityTownOrVillage": "Aarhus C",
            "countryCode": "DK",
        },
        "contactPerson": {
            "name": "Jens Hansen",
            "email": "jens@example.dk",
            "mobileNumber": "+4512345678",
            "phoneNumber": None,
        },
        "shippingContainers": [
            {"id": 11, "grossWeight": 2.5},
            {"id": 12, "grossWeight": 4.0},
        ],
    }


@pytest.fixture
def seller() -> Dict[str, Any]:
    return {
        "id": 7,
        "sellerNumber": "SELLER-7",
        "address": {
            "addressee": "Webshop ApS",
            "streetNameAndNumber": "Havnegade 1",
            "postalCode": "5000",
            "cityTownOrVillage": "Odense C",
            "countryCode": "DK",
        },
        "contactPerson": {"name": "Mette", "email": "mette@webshop.dk", "mobileNumber": None, "phoneNumber": "66112233"},
        "dataDocument": None,
    }


@pytest.fixture
def detail() -> Dict[str, Any]:
    return {
        "documentId": 900,
        "shipmentId": 501,
        "contextId": 3,
        "eventId": 4242,
        "deviceName": "packing-station-2",
        "userId": "anna",
    }
