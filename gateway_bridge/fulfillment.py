"""Smart-home fulfillment: SYNC, QUERY, EXECUTE and DISCONNECT intents.

Each intent is a stateless translation over the gateway API. Batch intents
fan out one task per device and collect a tagged outcome per device, so a
failing device never aborts the rest of the batch.
"""
import asyncio, logging
from typing import Any, Dict, List, Mapping, Optional

from .credentials import credentials_from_header
from .errors import BridgeError, InvalidCredentials
from .gateway_client import GatewayClient
from .mappings import (
    command_to_gateway, parse_command, properties_to_state,
    thing_to_device, washer_device,
)
from .schemas import CustomData, DeviceOutcome
from .settings import Settings
from .state import StateStore
from . import washer

log = logging.getLogger("fulfillment")

SYNC = "action.devices.SYNC"
QUERY = "action.devices.QUERY"
EXECUTE = "action.devices.EXECUTE"
DISCONNECT = "action.devices.DISCONNECT"


def error_response(request_id: str, error_code: str) -> Dict[str, Any]:
    return {"requestId": request_id, "payload": {"errorCode": error_code, "status": "ERROR"}}


class SmartHomeFulfillment:
    def __init__(self, settings: Settings, gateway: GatewayClient, store: StateStore):
        self.settings = settings
        self.gateway = gateway
        self.store = store
        self._handlers = {
            SYNC: self.on_sync,
            QUERY: self.on_query,
            EXECUTE: self.on_execute,
            DISCONNECT: self.on_disconnect,
        }

    async def handle(self, body: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        request_id = body.get("requestId", "")
        intent = body["inputs"][0]
        name = intent.get("intent")
        handler = self._handlers.get(name)
        if handler is None:
            log.warning("Unsupported intent %s (request %s)", name, request_id)
            return error_response(request_id, "notSupported")
        try:
            return await handler(request_id, intent.get("payload") or {}, headers)
        except BridgeError as e:
            log.error("%s %s failed: %s", name, request_id, e)
            return error_response(request_id, e.error_code)

    def _is_washer(self, device_id: str) -> bool:
        return bool(self.settings.WASHER_DEVICE_ID) and device_id == self.settings.WASHER_DEVICE_ID

    def _url_base(self, custom: CustomData, fallback: Optional[str] = None) -> str:
        url = custom.urlBase or fallback or self.settings.GATEWAY_URL
        if not url:
            raise InvalidCredentials("No gateway URL in custom data")
        return url.rstrip("/")

    async def on_sync(self, request_id: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        creds = credentials_from_header(headers.get("authorization"), self.settings.GATEWAY_URL)
        things = await self.gateway.list_devices(creds.urlBase, creds.authorization)

        devices: List[Dict[str, Any]] = []
        for thing in things:
            try:
                device = thing_to_device(thing, creds, self.settings.AGENT_USER_ID)
            except ValueError as e:
                log.warning("Could not translate %s: %s", thing.href, e)
                continue
            if device is None:
                log.debug("Skipping unsupported thing %s %s", thing.href, thing.types)
                continue
            devices.append(device.model_dump(exclude_none=True))

        if self.settings.WASHER_DEVICE_ID:
            washer_dev = washer_device(self.settings.WASHER_DEVICE_ID, self.settings.WASHER_LOCAL_ID, creds)
            devices.append(washer_dev.model_dump(exclude_none=True))

        log.info("SYNC %s: %d devices", request_id, len(devices))
        return {
            "requestId": request_id,
            "payload": {"agentUserId": self.settings.AGENT_USER_ID, "devices": devices},
        }

    async def _query_device(self, device: Dict[str, Any]) -> DeviceOutcome:
        device_id = device.get("id", "")
        try:
            if self._is_washer(device_id):
                state = self.store.get(device_id) or washer.initial_state()
            else:
                custom = CustomData.from_device(device)
                props = await self.gateway.get_device_properties(
                    self._url_base(custom), device_id, custom.authorization)
                state = properties_to_state(props)
        except BridgeError as e:
            log.warning("QUERY %s failed: %s", device_id, e)
            return DeviceOutcome.failure(device_id, e.error_code, str(e))
        return DeviceOutcome.success(device_id, state)

    async def on_query(self, request_id: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        outcomes = await asyncio.gather(*(self._query_device(d) for d in payload.get("devices", [])))
        devices = {}
        for o in outcomes:
            if o.ok:
                devices[o.device_id] = {**o.states, "online": True, "status": "SUCCESS"}
            else:
                devices[o.device_id] = {"status": "ERROR", "errorCode": o.error_code}
        return {"requestId": request_id, "payload": {"devices": devices}}

    async def _execute_device(self, device: Dict[str, Any], executions: List[Dict[str, Any]],
                              fallback_url: Optional[str]) -> DeviceOutcome:
        device_id = device.get("id", "")
        try:
            custom = CustomData.from_device(device)
            for execution in executions:
                command = parse_command(execution)
                if self._is_washer(device_id):
                    current = self.store.get(device_id) or washer.initial_state()
                    await self.store.put(device_id, washer.apply_command(current, command))
                    continue
                await self.gateway.send(self._url_base(custom, fallback_url), device_id,
                                        command_to_gateway(command), custom.authorization)
        except BridgeError as e:
            log.error("Unable to update %s: %s", device_id, e)
            return DeviceOutcome.failure(device_id, e.error_code, str(e))
        return DeviceOutcome.success(device_id)

    async def on_execute(self, request_id: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        creds = credentials_from_header(headers.get("authorization"), self.settings.GATEWAY_URL)

        tasks = []
        for command in payload.get("commands", []):
            for device in command.get("devices", []):
                tasks.append(self._execute_device(device, command.get("execution", []), creds.urlBase))
        outcomes = await asyncio.gather(*tasks)

        succeeded: List[str] = []
        failed: Dict[str, DeviceOutcome] = {}
        for o in outcomes:
            if not o.ok:
                failed[o.device_id] = o
            elif o.device_id not in succeeded:
                succeeded.append(o.device_id)
        # a device failing in any command group is reported as failed
        succeeded = [d for d in succeeded if d not in failed]

        commands = []
        if succeeded:
            commands.append({"ids": succeeded, "status": "SUCCESS", "states": {"online": True}})
        for o in failed.values():
            commands.append({"ids": [o.device_id], "status": "ERROR", "errorCode": o.error_code})
        return {"requestId": request_id, "payload": {"commands": commands}}

    async def on_disconnect(self, request_id: str, payload: Dict[str, Any], headers: Mapping[str, str]) -> Dict[str, Any]:
        log.info("User account unlinked from Google Assistant (request %s)", request_id)
        return {}
