"""Shared fixtures: settings, a fake gateway and an in-memory state store."""
import json

import httpx
import jwt
import pytest

from gateway_bridge.db import Base
from gateway_bridge.gateway_client import GatewayClient
from gateway_bridge.settings import Settings
from gateway_bridge.state import StateStore

GATEWAY_URL = "https://gw.example.com"


def make_token(iss=GATEWAY_URL):
    """Build a "Bearer <JWT>" header carrying an issuer claim."""
    return "Bearer " + jwt.encode({"iss": iss, "sub": "user"}, "gateway-secret", algorithm="HS256")


class FakeGateway:
    """httpx MockTransport handler imitating the things REST API."""

    def __init__(self, things=None, properties=None, down=()):
        self.things = things or []
        self.properties = properties or {}
        self.down = set(down)
        self.requests = []

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if any(path.startswith(d) for d in self.down):
            return httpx.Response(503)
        if request.method == "GET" and path == "/things":
            return httpx.Response(200, json=self.things)
        if request.method == "GET" and path.endswith("/properties"):
            device_id = path[: -len("/properties")]
            if device_id in self.properties:
                return httpx.Response(200, json=self.properties[device_id])
            return httpx.Response(404)
        if request.method in ("PUT", "POST"):
            return httpx.Response(200, json=json.loads(request.content or b"{}"))
        return httpx.Response(404)

    def writes(self):
        return [(r.method, r.url.path, json.loads(r.content)) for r in self.requests if r.method in ("PUT", "POST")]


LAMP = {
    "href": "/things/zb-lamp",
    "title": "Desk Lamp",
    "@type": ["Light", "OnOffSwitch"],
    "properties": {"on": {"type": "boolean"}, "level": {"type": "integer"}},
}
PLUG = {
    "href": "/things/zb-plug",
    "title": "Plug",
    "@type": ["OnOffSwitch"],
    "properties": {"on": {"type": "boolean"}},
}
DOOR = {
    "href": "/things/zb-door",
    "title": "Front Door",
    "@type": ["Lock"],
    "properties": {"locked": {"type": "string"}},
}
SENSOR = {
    "href": "/things/zb-temp",
    "title": "Thermometer",
    "@type": ["TemperatureSensor"],
    "properties": {"temperature": {"type": "number"}},
}


@pytest.fixture
def settings():
    return Settings(_env_file=None, GATEWAY_URL=None, DB_URL="sqlite://", REPORT_STATE_ENABLED=False)


@pytest.fixture
def fake_gateway():
    return FakeGateway(
        things=[LAMP, PLUG, DOOR, SENSOR],
        properties={
            "/things/zb-lamp": {"on": True, "level": 42.6},
            "/things/zb-plug": {"on": False},
            "/things/zb-door": {"locked": "locked"},
        },
    )


@pytest.fixture
def gateway(fake_gateway):
    return GatewayClient(timeout=2.0, transport=httpx.MockTransport(fake_gateway))


@pytest.fixture
def store():
    s = StateStore("sqlite://")
    Base.metadata.create_all(s.engine)
    return s


@pytest.fixture
def token():
    return make_token()


@pytest.fixture
def token_factory():
    return make_token
