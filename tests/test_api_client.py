"""Tests for the media server HTTP client"""

import json
from unittest.mock import MagicMock

import pytest
import requests

from mediasync.api.client import TOKEN_HEADER, ApiClient, iter_response_chunks
from mediasync.api.models import UserAction
from mediasync.core.exceptions import ApiError


def make_response(status=200, payload=None, content=None, headers=None):
    response = requests.Response()
    response.status_code = status
    response.url = "http://server/test"
    if payload is not None:
        content = json.dumps(payload).encode("utf-8")
    response._content = content or b""
    response.headers.update(headers or {})
    return response


@pytest.fixture
def session():
    session = MagicMock(spec=requests.Session)
    session.headers = {}
    return session


@pytest.fixture
def client(session, device_config, network_config):
    return ApiClient("http://192.168.1.20:8096/", device_config, network_config,
                     server_id="server-1", session=session)


class TestApiClient:
    """Headers, URL building and error mapping"""

    def test_authorization_header(self, client, session):
        header = session.headers["X-Emby-Authorization"]

        assert header.startswith("MediaBrowser ")
        assert 'DeviceId="device-1"' in header
        assert TOKEN_HEADER not in session.headers

    def test_authentication_info(self, client, session):
        client.set_authentication_info("token-1", "user-1")

        assert session.headers[TOKEN_HEADER] == "token-1"
        assert session.headers["X-Emby-Authorization"].startswith('MediaBrowser UserId="user-1"')

        client.clear_authentication_info()

        assert TOKEN_HEADER not in session.headers
        assert client.access_token is None

    def test_change_server_location(self, client):
        assert client.get_api_url("/System/Info") == "http://192.168.1.20:8096/System/Info"

        client.change_server_location("https://media.example.com/")

        assert client.get_api_url("System/Info") == "https://media.example.com/System/Info"

    def test_public_system_info(self, client, session):
        session.request.return_value = make_response(payload={
            "Id": "server-1", "ServerName": "Home", "LocalAddress": "http://192.168.1.20:8096",
        })

        info = client.get_public_system_info(timeout=2)

        assert info.id == "server-1"
        assert info.server_name == "Home"
        assert session.request.call_args.kwargs["timeout"] == 2

    def test_http_error_carries_status(self, client, session):
        session.request.return_value = make_response(status=404)

        with pytest.raises(ApiError) as exc_info:
            client.get_offline_user("user-1")

        assert exc_info.value.status_code == 404
        assert exc_info.value.is_not_found

    def test_transport_error_has_no_status(self, client, session):
        session.request.side_effect = requests.exceptions.ConnectTimeout("timed out")

        with pytest.raises(ApiError) as exc_info:
            client.get_system_info()

        assert exc_info.value.status_code is None

    def test_invalid_json(self, client, session):
        session.request.return_value = make_response(content=b"<html>")

        with pytest.raises(ApiError):
            client.get_system_info()

    def test_authenticate_requires_token(self, client, session):
        session.request.return_value = make_response(payload={"User": {"Id": "u"}})

        with pytest.raises(ApiError):
            client.authenticate_by_name("alice", "secret")

    def test_authenticate_by_name(self, client, session):
        session.request.return_value = make_response(payload={"User": {"Id": "u"}, "AccessToken": "abc"})

        user, token = client.authenticate_by_name("alice", "secret")

        assert user == {"Id": "u"}
        assert token == "abc"
        assert session.request.call_args.kwargs["json"] == {"Username": "alice", "Pw": "secret"}

    def test_empty_action_batch_rejected(self, client, session):
        with pytest.raises(ValueError):
            client.report_offline_actions([])
        session.request.assert_not_called()

    def test_actions_posted(self, client, session):
        session.request.return_value = make_response(status=204)
        action = UserAction.from_api({"ServerId": "server-1", "ItemId": "i1", "UserId": "u1",
                                      "Type": "PlayedItem", "Date": "2024-01-01T00:00:00Z"})

        client.report_offline_actions([action])

        method, url = session.request.call_args.args
        assert method == "POST"
        assert url.endswith("/Sync/OfflineActions")
        assert session.request.call_args.kwargs["json"][0]["ItemId"] == "i1"

    def test_image_urls(self, client):
        assert client.get_image_url("i1", "Primary", tag="t", max_width=300) == (
            "http://192.168.1.20:8096/Items/i1/Images/Primary?tag=t&maxWidth=300"
        )
        assert client.get_user_image_url("u1") == "http://192.168.1.20:8096/Users/u1/Images/Primary"


class TestIterResponseChunks:

    def test_broken_stream_raises_api_error(self):
        response = MagicMock(spec=requests.Response)
        response.url = "http://server/file"

        def chunks(chunk_size):
            yield b"abc"
            yield b""
            raise requests.exceptions.ChunkedEncodingError("connection reset")

        response.iter_content.side_effect = chunks

        received = []
        with pytest.raises(ApiError):
            for chunk in iter_response_chunks(response):
                received.append(chunk)

        assert received == [b"abc"]


class TestApiErrorClassification:

    @pytest.mark.parametrize("status,not_found,auth", [
        (404, True, False),
        (401, False, True),
        (403, False, True),
        (500, False, False),
        (None, False, False),
    ])
    def test_status_flags(self, status, not_found, auth):
        error = ApiError("failed", status_code=status)

        assert error.is_not_found is not_found
        assert error.is_auth_error is auth
