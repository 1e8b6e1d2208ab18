# layers/carrier_common/python/carrier_common/kms_utils.py
"""
KMS decryption for secrets kept in carrier setups and function environment.

Carrier passwords and client secrets may be stored either in plaintext or
wrapped as ENCRYPTED(base64_ciphertext). Wrapped values are decrypted with the
encryption context {"app": "carrier-transport"}.

Usage:
    from carrier_common.kms_utils import kms_decrypt_wrapped, decrypt_setup

    secret = kms_decrypt_wrapped(setup["clientSecret"])
    setup = decrypt_setup(setup, ("password",))
"""

import os
import base64
import logging
from typing import Any, Dict, Iterable, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

ENCRYPTION_CONTEXT = {"app": "carrier-transport"}

_kms_client = None


def _get_kms_client():
    """Get or create KMS client (cached)."""
    global _kms_client
    if _kms_client is None:
        region = os.environ.get("AWS_REGION") or os.environ.get("AWS_DEFAULT_REGION") or "eu-west-1"
        _kms_client = boto3.client("kms", region_name=region)
    return _kms_client


def is_wrapped(value: Any) -> bool:
    return isinstance(value, str) and value.startswith("ENCRYPTED(") and value.endswith(")")


def kms_decrypt_wrapped(blob: Optional[str], kms_key_arn: Optional[str] = None) -> str:
    """
    Decrypt an ENCRYPTED(...) value and return it as a UTF-8 string.
    Values that are not wrapped are returned as-is.

    Raises:
        ValueError: If the ciphertext is not valid base64 or KMS refuses it
    """
    if not blob:
        return ""
    if not is_wrapped(blob):
        return blob

    try:
        ciphertext_blob = base64.b64decode(blob[len("ENCRYPTED("):-1])
    except Exception as e:
        raise ValueError(f"Invalid base64 ciphertext: {e}")

    params = {"CiphertextBlob": ciphertext_blob, "EncryptionContext": ENCRYPTION_CONTEXT}
    key_id = kms_key_arn or os.environ.get("KMS_KEY_ARN")
    if key_id:
        params["KeyId"] = key_id

    try:
        response = _get_kms_client().decrypt(**params)
    except ClientError as e:
        error_code = e.response.get("Error", {}).get("Code", "Unknown")
        logger.error(f"[KMS] Decryption failed: {error_code}")
        raise ValueError(f"Failed to decrypt wrapped value: {error_code}")

    return response["Plaintext"].decode("utf-8")


def decrypt_setup(setup: Dict[str, Any], fields: Iterable[str]) -> Dict[str, Any]:
    """Return a copy of setup with the given secret fields decrypted."""
    out = dict(setup)
    for field in fields:
        if is_wrapped(out.get(field)):
            out[field] = kms_decrypt_wrapped(out[field])
    return out


def mask_secret(secret: Optional[str], keep: int = 4) -> str:
    """Mask a secret for logging, e.g. "********abcd"."""
    if not secret:
        return ""
    if len(secret) <= keep:
        return "*" * len(secret)
    return "*" * (len(secret) - keep) + secret[-keep:]
