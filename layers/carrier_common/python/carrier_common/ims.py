# layers/carrier_common/python/carrier_common/ims.py
"""
IMS REST client and the lookups shared by the carrier booking functions.

Usage:
    from carrier_common.ims import get_ims, load_setup

    ims = get_ims()
    shipment = ims.get(f"shipments/{shipment_id}")
    setup, seller = load_setup(ims, shipment, "DF", "DFTransport")
"""

import json
import time
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from .config import HTTP_TIMEOUT, IMS_API_URL, IMS_AUTH_URL, ims_credentials, resolved_source
from .http_utils import json_or_none, make_session
from .tokens import TokenCache

logger = logging.getLogger(__name__)

WORK_STATUS_ON_GOING = "ON_GOING"
WORK_STATUS_DONE = "DONE"
WORK_STATUS_FAILED = "FAILED"


class BookingError(RuntimeError):
    """A booking that cannot be completed; reported to the IMS user, not retried."""
    pass


class ImsClient:
    def __init__(self, client_id: str, client_secret: str, api_key: str,
                 api_url: str = IMS_API_URL, auth_url: str = IMS_AUTH_URL,
                 tokens: Optional[TokenCache] = None,
                 session: Optional[requests.Session] = None,
                 auth_session: Optional[requests.Session] = None):
        self.client_id = client_id
        self.client_secret = client_secret
        self.api_url = api_url if api_url.endswith("/") else api_url + "/"
        self.auth_url = auth_url if auth_url.endswith("/") else auth_url + "/"
        self.tokens = tokens or TokenCache()
        self.session = session or make_session({"x-api-key": api_key, "Content-Type": "application/json"})
        self.auth_session = auth_session or make_session()

    # ---------- auth ----------

    def _token_key(self) -> Tuple[str, str]:
        return (self.auth_url, self.client_id)

    def _fetch_token(self) -> Tuple[str, Optional[int]]:
        r = self.auth_session.post(
            f"{self.auth_url}token",
            auth=(self.client_id, self.client_secret),
            data={"grant_type": "client_credentials"},
            timeout=HTTP_TIMEOUT,
        )
        r.raise_for_status()
        data = r.json()
        return f"{data['token_type']} {data['access_token']}", data.get("expires_in")

    def _authorization(self) -> str:
        return self.tokens.get(self._token_key(), self._fetch_token)

    # ---------- requests ----------

    def request(self, method: str, path: str, body: Any = None, params: Optional[Dict[str, Any]] = None) -> Any:
        url = self.api_url + path.lstrip("/")
        r = self.session.request(method, url, json=body, params=params,
                                 headers={"Authorization": self._authorization()},
                                 timeout=HTTP_TIMEOUT)
        if r.status_code == 401:
            # Token revoked before its advertised expiry
            self.tokens.invalidate(self._token_key())
            r = self.session.request(method, url, json=body, params=params,
                                     headers={"Authorization": self._authorization()},
                                     timeout=HTTP_TIMEOUT)
        r.raise_for_status()
        return json_or_none(r)

    def get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        return self.request("GET", path, params=params)

    def post(self, path: str, body: Any = None) -> Any:
        return self.request("POST", path, body)

    def patch(self, path: str, body: Any = None) -> Any:
        return self.request("PATCH", path, body)

    # ---------- documents & messages ----------

    def set_work_status(self, document_id: Any, status: str) -> None:
        self.patch(f"documents/{document_id}", {"workStatus": status})

    def attach(self, document_id: Any, label: Dict[str, Any]) -> None:
        self.post(f"documents/{document_id}/attachments", label)

    def post_message(self, detail: Dict[str, Any], source: str, text: str, message_type: str = "ERROR") -> None:
        """Post a user-visible message on the event that triggered the booking."""
        message = {
            "time": int(time.time() * 1000),
            "source": source,
            "messageType": message_type,
            "messageText": text,
            "deviceName": detail.get("deviceName"),
            "userId": detail.get("userId"),
        }
        self.post(f"events/{detail.get('eventId')}/messages", message)


# ---------------- Cached client ---------------------------------------------

_ims: Optional[ImsClient] = None

def get_ims() -> ImsClient:
    """Get or create the IMS client (cached for the life of the container)."""
    global _ims
    if _ims is None:
        creds = ims_credentials()
        logger.info(f"Creating IMS client: {resolved_source()}")
        _ims = ImsClient(creds["client_id"], creds["client_secret"], creds["api_key"])
    return _ims

def reset_ims() -> None:
    global _ims
    _ims = None


# ---------------- Setup lookups ---------------------------------------------

def parse_data_document(entity: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    raw = (entity or {}).get("dataDocument")
    if not raw:
        return {}
    if isinstance(raw, dict):
        return raw
    try:
        doc = json.loads(raw)
    except json.JSONDecodeError as e:
        raise BookingError(f"Unreadable data document on {(entity or {}).get('id')}: {e}")
    return doc if isinstance(doc, dict) else {}

def lookup_carrier(carriers: List[Dict[str, Any]], carrier_name: str) -> Optional[Dict[str, Any]]:
    for carrier in carriers or []:
        if carrier.get("carrierName") == carrier_name:
            return carrier
    return None

def load_setup(ims: ImsClient, shipment: Dict[str, Any], carrier_name: str,
               extension_name: str) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """
    Resolve the carrier setup for a shipment: the seller's data extension when
    the shipment has a seller, otherwise the default setup on the carrier.

    Returns (setup, seller). seller is None for shipments without a seller.
    """
    seller = None
    if shipment.get("sellerId") is not None:
        seller = ims.get(f"sellers/{shipment['sellerId']}")
        setup = parse_data_document(seller).get(extension_name)
        where = f"seller {seller.get('sellerNumber') or shipment['sellerId']}"
    else:
        carrier = lookup_carrier(ims.get("carriers"), carrier_name)
        if carrier is None:
            raise BookingError(f"No carrier by the name {carrier_name}")
        setup = parse_data_document(carrier).get(extension_name)
        where = f"carrier {carrier_name}"

    if not isinstance(setup, dict):
        raise BookingError(f"No {extension_name} setup found on {where}")
    return setup, seller

def sender_of(ims: ImsClient, seller: Optional[Dict[str, Any]], context_id: Any) -> Tuple[Dict[str, Any], Optional[Dict[str, Any]]]:
    """Sender address and contact person: the seller's, or the IMS context's."""
    owner = seller if seller is not None else ims.get(f"contexts/{context_id}")
    return owner.get("address") or {}, owner.get("contactPerson")
