# config.py
# Strict env-driven configuration for the carrier transport functions.

import os
import logging
from typing import Dict

from .kms_utils import kms_decrypt_wrapped

# ---------------- Errors -----------------------------------------------------

class ConfigError(RuntimeError):
    pass

def _req(name: str) -> str:
    v = os.environ.get(name)
    if not v:
        raise ConfigError(f"Missing required environment variable: {name}")
    return v

# ---------------- Endpoints & tuning ----------------------------------------

IMS_AUTH_URL = os.environ.get("IMS_AUTH_URL", "https://auth.thetis-ims.com/oauth2/")
IMS_API_URL  = os.environ.get("IMS_API_URL", "https://api.thetis-ims.com/2/")
GLS_API_URL  = os.environ.get("GLS_API_URL", "https://api.gls.dk/ws/DK/V1/")

HTTP_TIMEOUT         = int(os.environ.get("HTTP_TIMEOUT", "30"))
TOKEN_EXPIRY_MARGIN  = int(os.environ.get("TOKEN_EXPIRY_MARGIN_SECONDS", "60"))
LOG_LEVEL            = os.environ.get("LOG_LEVEL", "INFO").upper()

# ---------------- Credentials (read lazily) ---------------------------------

def ims_credentials() -> Dict[str, str]:
    """
    IMS API credentials from the function environment.
    ClientSecret may be stored as ENCRYPTED(...) and is decrypted with KMS.
    """
    return {
        "client_id": _req("ClientId"),
        "client_secret": kms_decrypt_wrapped(_req("ClientSecret")),
        "api_key": _req("ApiKey"),
    }

def configure_logging(logger: logging.Logger) -> logging.Logger:
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))
    return logger

def resolved_source() -> Dict[str, str]:
    """For diagnostics/logging."""
    return {"ims_api": IMS_API_URL, "ims_auth": IMS_AUTH_URL, "gls_api": GLS_API_URL}
