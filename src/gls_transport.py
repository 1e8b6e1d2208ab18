# gls_transport.py
# GLS parcel booking for IMS shipments.
# Handlers:
#   initializer      CloudFormation custom resource (carrier + seller data extension)
#   booking_handler  EventBridge shipment-booking event -> GLS CreateShipment -> label

import json
import logging
from datetime import datetime
from typing import Any, Dict, List, Optional

import pycountry

from carrier_common.config import GLS_API_URL, HTTP_TIMEOUT, configure_logging
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
from carrier_common.kms_utils import decrypt_setup

logger = configure_logging(logging.getLogger())

CARRIER_NAME = "GLS"
EXTENSION_NAME = "GLSTransport"
TRACKING_URL = "https://gls-group.eu/DK/da/find-pakke?txtAction=71000&match={}"

DATA_SCHEMA = {
    "type": "object",
    "properties": {
        "userName": {"type": "string"},
        "password": {"type": "string"},
        "contactId": {"type": "string"},
        "customerId": {"type": "string"},
    },
}

# GLS demo account, used for shipments without a seller until replaced
DEFAULT_SETUP = {
    "userName": "2080060960",
    "password": "API1234",
    "contactId": "208a144Uoo",
    "customerId": "2080060960",
}

# termsOfDelivery keyword -> GLS service flag
FLAG_SERVICES = {
    "Flex": "flexDelivery",
    "DirectShop": "directShop",
    "Private": "privateDelivery",
}

# =============== Mapping ===============

def country_number(country_code: Optional[str]) -> Optional[str]:
    """ISO 3166 numeric code for an alpha-2 code, or None if unknown."""
    if not country_code:
        return None
    try:
        country = pycountry.countries.get(alpha_2=country_code.upper())
    except LookupError:
        return None
    return country.numeric if country else None

def create_gls_address(address: Dict[str, Any], contact_person: Optional[Dict[str, Any]]) -> Dict[str, Any]:
    gls_address: Dict[str, Any] = {}
    if contact_person is not None:
        gls_address["contact"] = contact_person.get("name")
        gls_address["email"] = contact_person.get("email")
        gls_address["mobile"] = contact_person.get("mobileNumber")
        gls_address["phone"] = contact_person.get("phoneNumber")
    gls_address["name1"] = address.get("addressee")
    gls_address["street1"] = address.get("streetNameAndNumber")
    gls_address["zipCode"] = address.get("postalCode")
    gls_address["city"] = address.get("cityTownOrVillage")
    # Left out when unknown; GLS rejects the booking if it needs one
    number = country_number(address.get("countryCode"))
    if number:
        gls_address["countryNum"] = number
    return gls_address

def create_gls_services(shipment: Dict[str, Any]) -> Dict[str, Any]:
    services: Dict[str, Any] = {}
    if shipment.get("pickUpPointId") is not None:
        services["shopDelivery"] = shipment["pickUpPointId"]
    contact_person = shipment.get("contactPerson")
    if contact_person is not None:
        services["setNotificationEmail"] = contact_person.get("email")

    terms = shipment.get("termsOfDelivery")
    if terms:
        if "Deposit" in terms:
            services["deposit"] = shipment.get("notesOnDelivery")
        for keyword, flag in FLAG_SERVICES.items():
            if keyword in terms:
                services[flag] = "Y"
    return services

def build_gls_shipment(shipment: Dict[str, Any], setup: Dict[str, Any],
                       sender_address: Dict[str, Any], sender_contact: Optional[Dict[str, Any]],
                       today: Optional[datetime] = None) -> Dict[str, Any]:
    number = shipment.get("shipmentNumber")
    parcels: List[Dict[str, Any]] = [
        {"reference": f"{number} #{i}", "weight": container.get("grossWeight")}
        for i, container in enumerate(shipment.get("shippingContainers") or [], start=1)
    ]
    return {
        "userName": setup.get("userName"),
        "password": setup.get("password"),
        "customerId": setup.get("customerId"),
        "contactid": setup.get("contactId"),
        "shipmentDate": (today or datetime.now()).strftime("%Y%m%d"),
        "reference": number,
        "parcels": parcels,
        "addresses": {
            "delivery": create_gls_address(shipment.get("deliveryAddress") or {}, shipment.get("contactPerson")),
            "alternativeShipper": create_gls_address(sender_address, sender_contact),
        },
        "services": create_gls_services(shipment),
    }

def gls_error_text(body: Optional[Dict[str, Any]]) -> str:
    body = body or {}
    parts = [str(body.get("Message") or "")]
    for errors in (body.get("ModelState") or {}).values():
        parts.append(" ".join(errors) if isinstance(errors, list) else str(errors))
    return " ".join(p for p in parts if p).strip()

# =============== Booking ===============

def book(ims: ImsClient, detail: Dict[str, Any], session=None) -> Dict[str, Any]:
    """Book the shipment with GLS and return the label attachment."""
    shipment = ims.get(f"shipments/{detail['shipmentId']}")
    number = shipment.get("shipmentNumber")

    setup, seller = load_setup(ims, shipment, CARRIER_NAME, EXTENSION_NAME)
    setup = decrypt_setup(setup, ("password",))
    sender_address, sender_contact = sender_of(ims, seller, detail.get("contextId"))

    gls_shipment = build_gls_shipment(shipment, setup, sender_address, sender_contact)

    gls = session or make_session({"Content-Type": "application/json"})
    r = gls.post(f"{GLS_API_URL}CreateShipment", json=gls_shipment, timeout=HTTP_TIMEOUT)

    if r.status_code == 400:
        raise BookingError(f"Failed to register shipment {number} with GLS. GLS says: {gls_error_text(json_or_none(r))}")
    if r.status_code >= 500:
        raise BookingError(f"Failed to register shipment {number} with GLS due to internal error on their server.")
    r.raise_for_status()

    gls_response = r.json()
    containers = shipment.get("shippingContainers") or []
    for container, parcel in zip(containers, gls_response.get("Parcels") or []):
        parcel_number = parcel.get("ParcelNumber")
        ims.patch(f"shippingContainers/{container['id']}", {
            "trackingNumber": parcel_number,
            "trackingUrl": TRACKING_URL.format(parcel_number),
        })

    ims.patch(f"shipments/{detail['shipmentId']}", {"carriersShipmentNumber": gls_response.get("ConsignmentId")})

    return {
        "base64EncodedContent": gls_response.get("PDF"),
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
        logger.warning(f"GLS booking failed: {e}")
        # Status before message: the document must end FAILED even if posting fails
        ims.set_work_status(document_id, WORK_STATUS_FAILED)
        ims.post_message(detail, EXTENSION_NAME, str(e))
        return "failed"
    except Exception as e:
        logger.error(f"Unexpected error in gls_transport.booking_handler: {str(e)}", exc_info=True)
        try:
            ims.set_work_status(document_id, WORK_STATUS_FAILED)
        except Exception as status_error:
            logger.error(f"Could not mark document {document_id} FAILED: {status_error}", exc_info=True)
        raise e

    ims.attach(document_id, label)
    ims.set_work_status(document_id, WORK_STATUS_DONE)
    return "done"
