"""
Unit tests for the IMS client and setup lookups.
"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from carrier_common import ims as ims_module
from carrier_common.config import ConfigError
from carrier_common.http_utils import log_response
from carrier_common.ims import (
    BookingError,
    ImsClient,
    load_setup,
    lookup_carrier,
    parse_data_document,
    sender_of,
)
from carrier_common.tokens import TokenCache


@pytest.fixture
def session():
    return MagicMock(spec=requests.Session)


@pytest.fixture
def auth_session(response):
    auth = MagicMock(spec=requests.Session)
    auth.post.return_value = response(200, {"token_type": "Bearer", "access_token": "tok-1", "expires_in": 3600})
    return auth


@pytest.fixture
def client(session, auth_session):
    return ImsClient("cid", "secret", "key", api_url="https://ims.test/2", auth_url="https://auth.test/oauth2",
                     tokens=TokenCache(), session=session, auth_session=auth_session)


class TestImsClient:

    def test_fetches_token_with_basic_auth(self, client, session, auth_session, response):
        session.request.return_value = response(200, {"id": 1})

        assert client.get("shipments/1") == {"id": 1}

        args, kwargs = auth_session.post.call_args
        assert args[0] == "https://auth.test/oauth2/token"
        assert kwargs["auth"] == ("cid", "secret")
        assert kwargs["data"] == {"grant_type": "client_credentials"}

        method, url = session.request.call_args.args
        assert (method, url) == ("GET", "https://ims.test/2/shipments/1")
        assert session.request.call_args.kwargs["headers"] == {"Authorization": "Bearer tok-1"}

    def test_token_reused_across_calls(self, client, session, auth_session, response):
        session.request.return_value = response(200, {})

        client.get("a")
        client.patch("b", {"x": 1})

        auth_session.post.assert_called_once()

    def test_leading_slash_in_path(self, client, session, response):
        session.request.return_value = response(200, None)

        assert client.patch("/documents/5", {"workStatus": "DONE"}) is None

        assert session.request.call_args.args[1] == "https://ims.test/2/documents/5"
        assert session.request.call_args.kwargs["json"] == {"workStatus": "DONE"}

    def test_401_refreshes_token_once(self, client, session, auth_session, response):
        session.request.side_effect = [response(401, {"message": "expired"}), response(200, {"ok": True})]
        auth_session.post.side_effect = [
            response(200, {"token_type": "Bearer", "access_token": "old", "expires_in": 3600}),
            response(200, {"token_type": "Bearer", "access_token": "new", "expires_in": 3600}),
        ]

        assert client.get("sellers/1") == {"ok": True}

        second_headers = session.request.call_args_list[1].kwargs["headers"]
        assert second_headers == {"Authorization": "Bearer new"}

    def test_http_error_propagates(self, client, session, response):
        session.request.return_value = response(404, {"message": "not found"})

        with pytest.raises(requests.HTTPError):
            client.get("shipments/404")

    def test_token_failure_propagates(self, client, session, auth_session, response):
        auth_session.post.return_value = response(401, {"error": "invalid_client"})

        with pytest.raises(requests.HTTPError):
            client.get("shipments/1")

        session.request.assert_not_called()

    def test_default_sessions_log_responses(self):
        client = ImsClient("cid", "secret", "key")

        assert log_response in client.session.hooks["response"]
        assert log_response in client.auth_session.hooks["response"]
        assert "x-api-key" not in client.auth_session.headers

    def test_post_message(self, client):
        client.post = MagicMock()
        detail = {"eventId": 77, "deviceName": "dev-1", "userId": "u1"}

        client.post_message(detail, "DFTransport", "Something failed")

        path, message = client.post.call_args.args
        assert path == "events/77/messages"
        assert message["source"] == "DFTransport"
        assert message["messageType"] == "ERROR"
        assert message["messageText"] == "Something failed"
        assert message["deviceName"] == "dev-1"
        assert message["userId"] == "u1"
        assert isinstance(message["time"], int)

    def test_document_helpers(self, client):
        client.patch = MagicMock()
        client.post = MagicMock()

        client.set_work_status(9, "ON_GOING")
        client.attach(9, {"fileName": "x.pdf"})

        client.patch.assert_called_once_with("documents/9", {"workStatus": "ON_GOING"})
        client.post.assert_called_once_with("documents/9/attachments", {"fileName": "x.pdf"})


class TestGetIms:

    def test_missing_credentials_raise_config_error(self, monkeypatch):
        ims_module.reset_ims()
        monkeypatch.delenv("ApiKey", raising=False)

        with pytest.raises(ConfigError):
            ims_module.get_ims()

    def test_client_is_cached(self):
        ims_module.reset_ims()
        try:
            first = ims_module.get_ims()
            assert ims_module.get_ims() is first
        finally:
            ims_module.reset_ims()


class TestLookups:

    def test_lookup_carrier(self):
        carriers = [{"carrierName": "GLS", "id": 1}, {"carrierName": "DF", "id": 2}]

        assert lookup_carrier(carriers, "DF") == {"carrierName": "DF", "id": 2}
        assert lookup_carrier(carriers, "PostNord") is None
        assert lookup_carrier([], "DF") is None

    def test_parse_data_document(self):
        assert parse_data_document({"dataDocument": json.dumps({"DFTransport": {"host": "h"}})}) == {
            "DFTransport": {"host": "h"}
        }
        assert parse_data_document({"dataDocument": None}) == {}
        assert parse_data_document(None) == {}
        assert parse_data_document({"dataDocument": "[1, 2]"}) == {}

    def test_parse_data_document_rejects_garbage(self):
        with pytest.raises(BookingError):
            parse_data_document({"id": 3, "dataDocument": "{not json"})

    def test_load_setup_from_seller(self, fake_ims, seller):
        seller["dataDocument"] = json.dumps({"GLSTransport": {"userName": "u"}})
        ims = fake_ims({"sellers/7": seller})

        setup, found_seller = load_setup(ims, {"sellerId": 7}, "GLS", "GLSTransport")

        assert setup == {"userName": "u"}
        assert found_seller is seller

    def test_load_setup_from_default_carrier(self, fake_ims):
        carriers = [{"carrierName": "GLS", "dataDocument": json.dumps({"GLSTransport": {"userName": "default"}})}]
        ims = fake_ims({"carriers": carriers})

        setup, found_seller = load_setup(ims, {"sellerId": None}, "GLS", "GLSTransport")

        assert setup == {"userName": "default"}
        assert found_seller is None

    def test_load_setup_missing_carrier(self, fake_ims):
        ims = fake_ims({"carriers": []})

        with pytest.raises(BookingError, match="No carrier by the name DF"):
            load_setup(ims, {}, "DF", "DFTransport")

    def test_load_setup_seller_without_extension(self, fake_ims, seller):
        ims = fake_ims({"sellers/7": seller})

        with pytest.raises(BookingError, match="No DFTransport setup found on seller SELLER-7"):
            load_setup(ims, {"sellerId": 7}, "DF", "DFTransport")

    def test_sender_of_seller(self, fake_ims, seller):
        ims = fake_ims({})

        address, contact = sender_of(ims, seller, 3)

        assert address["addressee"] == "Webshop ApS"
        assert contact["name"] == "Mette"
        ims.get.assert_not_called()

    def test_sender_of_context(self, fake_ims):
        ims = fake_ims({"contexts/3": {"address": {"addressee": "Warehouse"}}})

        address, contact = sender_of(ims, None, 3)

        assert address == {"addressee": "Warehouse"}
        assert contact is None
