# layers/carrier_common/python/carrier_common/custom_resource.py
"""
CloudFormation custom resource support for the carrier initializers.

On stack Create the default carrier record and the seller data extension are
registered in the IMS; on Update the data extension schema is refreshed.
"""

import json
import logging
from typing import Any, Dict, Optional

import requests

from .config import HTTP_TIMEOUT
from .ims import ImsClient

logger = logging.getLogger(__name__)

PHYSICAL_RESOURCE_ID = "StaticFiles"


def send_response(event: Dict[str, Any], status: str, reason: str) -> None:
    """Acknowledge the custom resource request through its pre-signed ResponseURL."""
    output = {
        "Status": status,
        "PhysicalResourceId": PHYSICAL_RESOURCE_ID,
        "StackId": event.get("StackId"),
        "RequestId": event.get("RequestId"),
        "LogicalResourceId": event.get("LogicalResourceId"),
        "Reason": reason,
    }
    # Pre-signed S3 URL rejects a Content-Type it was not signed for
    r = requests.put(event["ResponseURL"], data=json.dumps(output),
                     headers={"Content-Type": ""}, timeout=HTTP_TIMEOUT)
    r.raise_for_status()


def find_data_extension(ims: ImsClient, extension_name: str, entity_name: str = "seller") -> Optional[Dict[str, Any]]:
    for ext in ims.get("dataExtensions") or []:
        if ext.get("entityName") == entity_name and ext.get("dataExtensionName") == extension_name:
            return ext
    return None


def provision(ims: ImsClient, request_type: str, carrier_name: str, extension_name: str,
              schema: Dict[str, Any], default_setup: Dict[str, Any]) -> None:
    data_extension = {
        "entityName": "seller",
        "dataExtensionName": extension_name,
        "dataSchema": json.dumps(schema),
    }

    if request_type == "Create":
        # Default setup used for shipments without a seller
        ims.post("carriers", {
            "carrierName": carrier_name,
            "dataDocument": json.dumps({extension_name: default_setup}),
        })
        ims.post("dataExtensions", data_extension)
        logger.info(f"Registered carrier {carrier_name} and data extension {extension_name}")

    elif request_type == "Update":
        existing = find_data_extension(ims, extension_name)
        if existing:
            ims.patch(f"dataExtensions/{existing['id']}", {"dataSchema": data_extension["dataSchema"]})
            logger.info(f"Updated data extension {extension_name} ({existing['id']})")
        else:
            ims.post("dataExtensions", data_extension)
            logger.info(f"Created missing data extension {extension_name}")


def handle_custom_resource(event: Dict[str, Any], ims_factory, carrier_name: str, extension_name: str,
                           schema: Dict[str, Any], default_setup: Dict[str, Any]) -> None:
    """
    Run provisioning for a custom resource event and always acknowledge SUCCESS,
    carrying the error text as Reason when provisioning failed.
    """
    request_type = event.get("RequestType")
    reason = "OK"
    try:
        if request_type in ("Create", "Update"):
            provision(ims_factory(), request_type, carrier_name, extension_name, schema, default_setup)
    except Exception as e:
        logger.error(f"{extension_name} {request_type} failed: {e}", exc_info=True)
        reason = str(e) or e.__class__.__name__
    send_response(event, "SUCCESS", reason)
