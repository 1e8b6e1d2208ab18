# df_transport.py
# DF (Danske Fragtmaend) booking for IMS shipments.
# Handlers:
#   initializer      CloudFormation custom resource (carrier + seller data extension)
#   booking_handler  EventBridge shipment-booking event -> DF consignment -> label
#
# Shipping type, product code and payer come from the first instruction in the
# setup whose pattern matches the shipment (see carrier_common.instructions).

import json
import logging
from datetime import date
from typing import Any, Dict, List, Optional, Tuple

import requests

from carrier_common.config import HTTP_TIMEOUT, configure_logging
from carrier_common.custom_resource import handle_custom_resource
from carrier_common.http_utils import json_or_none, make_session
from carrier_common.ims import (
    WORK_STATUS_DONE,
    WORK_STATUS_FAILED,
    WORK_STATUS_ON_GOING,
    BookingError,
    ImsClient,
    get_ims,
    load_setup,
    sender_of,
)
from carrier_common.instructions import InstructionNotFound, select_instruction
from carrier_common.kms_utils import decrypt_setup, mask_secret
from carrier_common.tokens import TokenCache

logger = configure_logging(logging.getLogger())

CARRIER_NAME = "DF"
EXTENSION_NAME = "DFTransport"

INSTRUCTION_FIELDS = ("ShippingType", "ProductCode", "WhoPays")

DATA_SCHEMA = {
    "type": "object",
    "properties": {
        "protocol": {"type": "string"},
        "host": {"type": "string"},
        "clientId": {"type": "string"},
        "clientSecret": {"type": "string"},
        "instructions": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "pattern": {"type": "object"},
                    "attributes": {
                        "type": "object",
                        "properties": {f: {"type": "string"} for f in INSTRUCTION_FIELDS},
                    },
                },
            },
        },
    },
}

# Setup stored on the default carrier at stack creation. host and clientId are
# empty, so shipments without a seller fail with "DF setup is missing host or
# clientId" until an operator fills them in with seeding/seed_carrier_setup.py
# (--carrier DF, no --seller-id). The catch-all instruction books prepaid parcels.
DEFAULT_SETUP = {
    "protocol": "https",
    "host": "",
    "clientId": "",
    "clientSecret": "",
    "instructions": [
        {"pattern": {}, "attributes": {"ShippingType": "Stykgods", "ProductCode": "Pakke", "WhoPays": "Prepaid"}},
    ],
}

# Tokens per (token url, client id); sellers may use different DF accounts
_tokens = TokenCache()

# =============== DF client ===============

class DFClient:
    def __init__(self, setup: Dict[str, Any], tokens: TokenCache = _tokens,
                 session: Optional[requests.Session] = None):
        protocol = setup.get("protocol") or "https"
        host = setup.get("host")
        if not host or not setup.get("clientId"):
            raise BookingError("DF setup is missing host or clientId")
        self.base_url = f"{protocol}://{host}/api/v3/"
        self.token_url = f"{protocol}://{host}/oauth/v2/token"
        self.client_id = setup["clientId"]
        self.client_secret = setup.get("clientSecret") or ""
        self.tokens = tokens
        self.session = session or make_session({"Content-Type": "application/json"})

    def _fetch_token(self) -> Tuple[str, Optional[int]]:
        params = {
            "_format": "json",
            "client_id": self.client_id,
            "client_secret": self.client_secret,
            "grant_type": "client_credentials",
        }
        logger.info(f"Requesting DF token for {self.client_id} ({mask_secret(self.client_secret)})")
        r = self.session.get(self.token_url, params=params, timeout=HTTP_TIMEOUT)
        r.raise_for_status()
        data = r.json()
        return f"Bearer {data['access_token']}", data.get("expires_in")

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        key = (self.token_url, self.client_id)
        r = self._send(method, path, self.tokens.get(key, self._fetch_token), **kwargs)
        if r.status_code == 401:
            self.tokens.invalidate(key)
            r = self._send(method, path, self.tokens.get(key, self._fetch_token), **kwargs)
        return r

    def _send(self, method: str, path: str, token: str, **kwargs) -> requests.Response:
        return self.session.request(method, self.base_url + path, headers={"Authorization": token},
                                    timeout=HTTP_TIMEOUT, **kwargs)

# =============== Mapping ===============

def df_party(address: Dict[str, Any], contact_person: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    party = {
        "Name": address.get("addressee"),
        "Street": address.get("streetNameAndNumber"),
        "ZipCode": address.get("postalCode"),
        "City": address.get("cityTownOrVillage"),
        "CountryCode": address.get("countryCode"),
    }
    if contact_person is not None:
        party["ContactPerson"] = contact_person.get("name")
        party["Email"] = contact_person.get("email")
        party["Phone"] = contact_person.get("mobileNumber") or contact_person.get("phoneNumber")
    return party

def df_goods(shipment: Dict[str, Any]) -> List[Dict[str, Any]]:
    goods = []
    for container in shipment.get("shippingContainers") or []:
        dimensions = container.get("dimensions") or {}
        goods.append({
            "NumberOfItems": 1,
            "Type": container.get("packagingType") or "Kolli",
            "Weight": container.get("grossWeight"),
            "Length": dimensions.get("length"),
            "Width": dimensions.get("width"),
            "Height": dimensions.get("height"),
        })
    return goods

def build_consignment(shipment: Dict[str, Any], attributes: Dict[str, Any],
                      sender_address: Dict[str, Any], sender_contact: Optional[Dict[str, Any]],
                      today: Optional[date] = None) -> Dict[str, Any]:
    consignment = {field: attributes.get(field) for field in INSTRUCTION_FIELDS}
    consignment.update({
        "ConsignmentDate": (today or date.today()).isoformat(),
        "Reference": shipment.get("shipmentNumber"),
        "Sender": df_party(sender_address, sender_contact),
        "Receiver": df_party(shipment.get("deliveryAddress") or {}, shipment.get("contactPerson")),
        "Goods": df_goods(shipment),
    })
    if shipment.get("notesOnDelivery"):
        consignment["DeliveryRemark"] = shipment["notesOnDelivery"]
    if shipment.get("pickUpPointId") is not None:
        consignment["PickUpPointId"] = shipment["pickUpPointId"]
    return consignment

def df_error_text(body: Any) -> str:
    if isinstance(body, dict):
        errors = body.get("errors") or body.get("Errors")
        if isinstance(errors, list) and errors:
            return " ".join(str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors)
        return str(body.get("message") or body.get("Message") or "")
    return str(body or "")

# =============== Booking ===============

def book(ims: ImsClient, detail: Dict[str, Any], df: Optional[DFClient] = None) -> Dict[str, Any]:
    """Book the shipment with DF and return the label attachment."""
    shipment = ims.get(f"shipments/{detail['shipmentId']}")
    number = shipment.get("shipmentNumber")

    setup, seller = load_setup(ims, shipment, CARRIER_NAME, EXTENSION_NAME)

    try:
        attributes = select_instruction(setup.get("instructions") or [], shipment)
    except InstructionNotFound:
        raise BookingError(f"No DF instruction matches shipment {number}. Add an instruction to the DF setup.")

    sender_address, sender_contact = sender_of(ims, seller, detail.get("contextId"))
    consignment = build_consignment(shipment, attributes, sender_address, sender_contact)

    df = df or DFClient(decrypt_setup(setup, ("clientSecret",)))
    r = df.request("POST", "consignments", json=consignment)

    if r.status_code in (400, 422):
        raise BookingError(f"Failed to register shipment {number} with DF. DF says: {df_error_text(json_or_none(r))}")
    if r.status_code >= 500:
        raise BookingError(f"Failed to register shipment {number} with DF due to internal error on their server.")
    r.raise_for_status()

    booked = r.json()
    consignment_number = booked.get("ConsignmentNumber")

    containers = shipment.get("shippingContainers") or []
    for container, barcode in zip(containers, booked.get("Barcodes") or []):
        ims.patch(f"shippingContainers/{container['id']}", {
            "trackingNumber": barcode,
            "trackingUrl": booked.get("TrackAndTraceUrl"),
        })
    ims.patch(f"shipments/{detail['shipmentId']}", {"carriersShipmentNumber": consignment_number})

    lr = df.request("GET", f"consignments/{consignment_number}/label", params={"format": "PDF"})
    if not lr.ok:
        raise BookingError(f"Shipment {number} was booked with DF as {consignment_number} but the label could not be fetched.")

    return {
        "base64EncodedContent": lr.json().get("Label"),
        "fileName": f"SHIPPING_LABEL_{detail['documentId']}.pdf",
    }

# =============== Lambda entry ===============

def initializer(event, _context):
    logger.info(f"Received event: {json.dumps({k: v for k, v in event.items() if k != 'ResponseURL'})}")
    handle_custom_resource(event, get_ims, CARRIER_NAME, EXTENSION_NAME, DATA_SCHEMA, DEFAULT_SETUP)

def booking_handler(event, _context):
    logger.info(f"Received event: {json.dumps(event)}")
    detail = event["detail"]
    document_id = detail["documentId"]

    ims = get_ims()
    ims.set_work_status(document_id, WORK_STATUS_ON_GOING)

    try:
        label = book(ims, detail)
    except BookingError as e:
        logger.warning(f"DF booking failed: {e}")
        # Status before message: the document must end FAILED even if posting fails
        ims.set_work_status(document_id, WORK_STATUS_FAILED)
        ims.post_message(detail, EXTENSION_NAME, str(e))
        return "failed"
    except Exception as e:
        logger.error(f"Unexpected error in df_transport.booking_handler: {str(e)}", exc_info=True)
        try:
            ims.set_work_status(document_id, WORK_STATUS_FAILED)
        except Exception as status_error:
            logger.error(f"Could not mark document {document_id} FAILED: {status_error}", exc_info=True)
        raise e

    ims.attach(document_id, label)
    ims.set_work_status(document_id, WORK_STATUS_DONE)
    return "done"
