"""Home Graph API client for request-sync and report-state calls.

Credentials come from a service-account key file when one is configured,
otherwise from Application Default Credentials. Tokens are refreshed in a
worker thread since google-auth's transport is blocking.
"""
import asyncio, logging, uuid
import httpx
import google.auth
import google.auth.exceptions
from google.auth.transport.requests import Request
from google.oauth2 import service_account
from typing import Any, Dict, Optional

from .errors import UpstreamUnavailable

log = logging.getLogger("homegraph")

HOMEGRAPH_SCOPE = "https://www.googleapis.com/auth/homegraph"


class HomeGraphClient:
    def __init__(self, base_url: str, agent_user_id: str, credentials=None,
                 credentials_file: Optional[str] = None, timeout: float = 8.0,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url.rstrip("/")
        self.agent_user_id = agent_user_id
        self.credentials = credentials
        self.credentials_file = credentials_file
        self.timeout = timeout
        self.transport = transport

    def _load_credentials(self):
        if self.credentials_file:
            return service_account.Credentials.from_service_account_file(
                self.credentials_file, scopes=[HOMEGRAPH_SCOPE])
        creds, _ = google.auth.default(scopes=[HOMEGRAPH_SCOPE])
        return creds

    async def _token(self) -> str:
        try:
            if self.credentials is None:
                self.credentials = self._load_credentials()
            if not self.credentials.valid:
                await asyncio.to_thread(self.credentials.refresh, Request())
        except (google.auth.exceptions.GoogleAuthError, OSError, ValueError) as e:
            raise UpstreamUnavailable("Unable to obtain Home Graph credentials", str(e))
        return self.credentials.token

    async def _post(self, path: str, body: Dict[str, Any]) -> Dict[str, Any]:
        token = await self._token()
        url = f"{self.base_url}/{path}"
        try:
            async with httpx.AsyncClient(transport=self.transport) as c:
                r = await c.post(url, json=body, timeout=self.timeout,
                                 headers={"Authorization": f"Bearer {token}"})
                r.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailable(f"POST {url} failed", e.response.text, status_code=e.response.status_code)
        except httpx.HTTPError as e:
            raise UpstreamUnavailable(f"POST {url} failed", repr(e))
        try:
            return r.json() if r.content else {}
        except ValueError as e:
            raise UpstreamUnavailable(f"POST {url} returned a non-JSON body", str(e))

    async def request_sync(self) -> Dict[str, Any]:
        log.info("Request SYNC for user %s", self.agent_user_id)
        data = await self._post("devices:requestSync", {"agentUserId": self.agent_user_id})
        log.info("Request sync response: %s", data)
        return data

    async def report_state(self, device_id: str, state: Dict[str, Any]) -> Dict[str, Any]:
        body = {
            "requestId": uuid.uuid4().hex,
            "agentUserId": self.agent_user_id,
            "payload": {"devices": {"states": {device_id: state}}},
        }
        data = await self._post("devices:reportStateAndNotification", body)
        log.info("Report state response for %s: %s", device_id, data)
        return data
