import json
from unittest.mock import patch

import pytest
import requests

from readsync.relay import create_app
from readsync.transport import ACCEPT_HEADER

from fakes import FakeResponse

ENVELOPE = {
    "serverUrl": "https://sync.example.com/",
    "endpoint": "/syncs/progress",
    "method": "PUT",
    "headers": {"X-Auth-User": "reader", "X-Auth-Key": "key"},
    "body": {"document": "abc", "progress": "6", "percentage": 0.06},
}


@pytest.fixture
def client():
    app = create_app()
    app.config["TESTING"] = True
    return app.test_client()


@pytest.mark.unit
class TestRelay:

    def test_forwards_envelope_and_mirrors_response(self, client):
        upstream = FakeResponse(200, {"document": "abc", "timestamp": 1700000000})
        with patch("readsync.relay.requests.request", return_value=upstream) as request:
            response = client.post("/api/kosync", json=ENVELOPE)

        assert response.status_code == 200
        assert response.get_json() == {"document": "abc", "timestamp": 1700000000}
        args, kwargs = request.call_args
        assert args == ("PUT", "https://sync.example.com/syncs/progress")
        assert kwargs["headers"]["X-Auth-User"] == "reader"
        assert kwargs["headers"]["Accept"] == ACCEPT_HEADER
        assert json.loads(kwargs["data"]) == ENVELOPE["body"]

    def test_mirrors_error_status(self, client):
        upstream = FakeResponse(401, {"message": "Unauthorized"})
        with patch("readsync.relay.requests.request", return_value=upstream):
            response = client.post("/api/kosync", json=dict(ENVELOPE, method="GET", body=None))

        assert response.status_code == 401
        assert response.get_json() == {"message": "Unauthorized"}

    def test_get_without_body_sends_no_data(self, client):
        envelope = {"serverUrl": "https://sync.example.com", "endpoint": "/users/auth", "method": "GET", "headers": {}}
        with patch("readsync.relay.requests.request", return_value=FakeResponse(200, {"authorized": "OK"})) as request:
            client.post("/api/kosync", json=envelope)
        assert request.call_args.kwargs["data"] is None

    @pytest.mark.parametrize("method", ["get", "put", "patch", "delete"])
    def test_only_post_is_allowed(self, client, method):
        response = getattr(client, method)("/api/kosync")
        assert response.status_code == 405
        assert response.get_json() == {"error": "Method Not Allowed"}

    @pytest.mark.parametrize("envelope", [
        {"endpoint": "/users/auth"},
        {"serverUrl": "https://sync.example.com"},
        {},
    ])
    def test_missing_fields(self, client, envelope):
        with patch("readsync.relay.requests.request") as request:
            response = client.post("/api/kosync", json=envelope)
        assert response.status_code == 400
        assert response.get_json() == {"error": "serverUrl and endpoint are required"}
        request.assert_not_called()

    def test_non_json_upstream(self, client):
        upstream = FakeResponse(200, None, text="<html>", headers={"content-type": "text/html"})
        with patch("readsync.relay.requests.request", return_value=upstream):
            response = client.post("/api/kosync", json=ENVELOPE)
        assert response.status_code == 500
        assert response.get_json()["error"] == "Proxy request failed"

    def test_network_failure(self, client):
        with patch("readsync.relay.requests.request", side_effect=requests.exceptions.ConnectionError("refused")):
            response = client.post("/api/kosync", json=ENVELOPE)
        assert response.status_code == 500
        assert response.get_json() == {"error": "Proxy request failed", "details": "refused"}
