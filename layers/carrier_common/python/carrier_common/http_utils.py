# layers/carrier_common/python/carrier_common/http_utils.py
# requests session factory shared by the IMS and carrier clients.

import logging
from typing import Dict, Optional

import requests

logger = logging.getLogger(__name__)

_MAX_LOGGED_BODY = 2000


def _body_text(response: requests.Response) -> str:
    text = response.text or ""
    if len(text) > _MAX_LOGGED_BODY:
        return text[:_MAX_LOGGED_BODY] + "...(truncated)"
    return text


def log_response(response: requests.Response, *args, **kwargs) -> None:
    """Response hook: log every call with its outcome."""
    request = response.request
    # Query strings can carry client secrets (DF token call)
    url = (response.url or "").split("?", 1)[0]
    if response.ok:
        logger.info(f"SUCCESS {request.method} {url} -> {response.status_code}")
        logger.debug(_body_text(response))
    else:
        logger.error(f"FAILURE {request.method} {url} -> {response.status_code} - {_body_text(response)}")


def make_session(headers: Optional[Dict[str, str]] = None) -> requests.Session:
    session = requests.Session()
    if headers:
        session.headers.update(headers)
    session.hooks["response"].append(log_response)
    return session


def json_or_none(response: requests.Response):
    if not response.content:
        return None
    try:
        return response.json()
    except ValueError:
        return None
