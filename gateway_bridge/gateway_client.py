import logging
import httpx
from typing import Any, Dict, List, Optional

from .errors import UpstreamUnavailable
from .schemas import GatewayRequest, Thing

log = logging.getLogger("gateway")


class GatewayClient:
    """REST client for the things gateway.

    The caller's authorization header is forwarded verbatim on every call.
    """

    def __init__(self, timeout: float = 8.0, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.timeout = timeout
        self.transport = transport

    def _headers(self, token: str) -> Dict[str, str]:
        return {"Accept": "application/json", "Content-Type": "application/json", "Authorization": token}

    async def _request(self, method: str, url: str, token: str, body: Optional[Dict[str, Any]] = None):
        try:
            async with httpx.AsyncClient(transport=self.transport) as c:
                r = await c.request(method, url, headers=self._headers(token), json=body, timeout=self.timeout)
                r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"{method} {url} failed", f"HTTP {e.response.status_code}",
                                      status_code=e.response.status_code)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"{method} {url} failed", repr(e))
        log.debug("%s %s -> %s", method, url, r.status_code)
        if not r.content:
            return None
        try:
            return r.json()
        except ValueError as e:
            raise UpstreamUnavailable(f"{method} {url} returned invalid JSON", str(e))

    async def list_devices(self, url_base: str, token: str) -> List[Thing]:
        data = await self._request("GET", f"{url_base}/things", token)
        if not isinstance(data, list):
            raise UpstreamUnavailable(f"GET {url_base}/things returned no device list")
        things = []
        for raw in data:
            try:
                things.append(Thing.model_validate(raw))
            except ValueError as e:
                log.warning("Skipping malformed thing %r: %s", raw, e)
        return things

    async def get_device_properties(self, url_base: str, device_id: str, token: str) -> Dict[str, Any]:
        data = await self._request("GET", f"{url_base}{device_id}/properties", token)
        return data or {}

    async def set_device_property(self, url_base: str, device_id: str, name: str, value: Any, token: str):
        return await self._request("PUT", f"{url_base}{device_id}/properties/{name}", token, {name: value})

    async def invoke_action(self, url_base: str, device_id: str, action: str, body: Dict[str, Any], token: str):
        return await self._request("POST", f"{url_base}{device_id}/actions/{action}", token, body)

    async def send(self, url_base: str, device_id: str, request: GatewayRequest, token: str):
        return await self._request(request.method, f"{url_base}{device_id}/{request.path}", token, request.body)
