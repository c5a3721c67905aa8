"""Local execution agent: IDENTIFY, REACHABLE_DEVICES and EXECUTE intents.

Devices found by a UDP scan are driven directly over the LAN; devices
behind the gateway are reached through the gateway acting as a proxy.
Every EXECUTE also mirrors the command to the gateway's REST API so the
gateway's own model stays in sync with the LAN device.
"""
import asyncio, logging
import httpx
import orjson
from typing import Any, Dict, List, Optional

from .errors import BridgeError, DownstreamDeliveryFailure, InvalidCredentials, LocalHandlerError
from .gateway_client import GatewayClient
from .mappings import command_to_gateway, command_to_local_payload, command_to_state, parse_command
from .schemas import CustomData, DeviceOutcome
from .settings import Settings

log = logging.getLogger("local")

IDENTIFY = "action.devices.IDENTIFY"
REACHABLE_DEVICES = "action.devices.REACHABLE_DEVICES"
EXECUTE = "action.devices.EXECUTE"

PROXY_DEVICE_ID = "hub"

# per-device lifecycle
UNIDENTIFIED = "UNIDENTIFIED"
IDENTIFIED = "IDENTIFIED"
REACHABLE = "REACHABLE-QUERIED"
EXECUTING = "EXECUTING"


class LocalExecutionApp:
    def __init__(self, settings: Settings, gateway: GatewayClient,
                 lan_transport: Optional[httpx.AsyncBaseTransport] = None):
        self.settings = settings
        self.gateway = gateway
        self.lan_transport = lan_transport
        self.addresses: Dict[str, str] = {}
        self.lifecycle: Dict[str, str] = {}
        self._handlers = {
            IDENTIFY: self.identify,
            REACHABLE_DEVICES: self.reachable_devices,
            EXECUTE: self.execute,
        }

    def status(self, device_id: str) -> str:
        return self.lifecycle.get(device_id, UNIDENTIFIED)

    async def handle(self, request: Dict[str, Any]) -> Dict[str, Any]:
        request_id = request.get("requestId", "")
        name = request["inputs"][0].get("intent")
        handler = self._handlers.get(name)
        if handler is None:
            raise LocalHandlerError(request_id, "invalid_request", f"Unsupported intent {name}")
        result = handler(request)
        if asyncio.iscoroutine(result):
            result = await result
        return result

    def identify(self, request: Dict[str, Any]) -> Dict[str, Any]:
        log.debug("IDENTIFY intent: %s", request)
        request_id = request.get("requestId", "")
        device = request["inputs"][0].get("payload", {}).get("device", {})
        udp_scan = device.get("udpScanData")
        mdns_scan = device.get("mdnsScanData")
        address = device.get("ipAddress")

        if udp_scan:
            try:
                verification_id = bytes.fromhex(udp_scan.get("data", "")).decode()
            except (ValueError, AttributeError) as e:
                raise LocalHandlerError(request_id, "invalid_request", f"Invalid scan data: {e}")
            device_id = self.settings.WASHER_DEVICE_ID
            discovered = {"id": device_id, "verificationId": verification_id}
        elif mdns_scan and self._is_gateway_service(mdns_scan):
            device_id = PROXY_DEVICE_ID
            discovered = {"id": device_id, "isProxy": True, "isLocalOnly": True}
        else:
            raise LocalHandlerError(request_id, "invalid_request", "Invalid scan data")

        if address:
            self.addresses[device_id] = address
        self.lifecycle[device_id] = IDENTIFIED
        response = {"intent": IDENTIFY, "requestId": request_id, "payload": {"device": discovered}}
        log.debug("IDENTIFY response: %s", response)
        return response

    def _is_gateway_service(self, mdns_scan: Dict[str, Any]) -> bool:
        marker = self.settings.MDNS_SERVICE_TYPE
        return mdns_scan.get("type") == marker or str(mdns_scan.get("serviceName", "")).endswith(marker)

    def reachable_devices(self, request: Dict[str, Any]) -> Dict[str, Any]:
        log.debug("Handling REACHABLE intent: %s", request)
        proxy_id = request["inputs"][0].get("payload", {}).get("device", {}).get("id")
        prefix = self.settings.GATEWAY_ID_PREFIX

        reachable = [d["id"] for d in request.get("devices") or [] if str(d.get("id", "")).startswith(prefix)]
        for device_id in reachable:
            if proxy_id in self.addresses:
                self.addresses[device_id] = self.addresses[proxy_id]
            self.lifecycle[device_id] = REACHABLE
        return {
            "intent": REACHABLE_DEVICES,
            "requestId": request.get("requestId", ""),
            "payload": {"devices": [{"verificationId": d} for d in reachable]},
        }

    def _gateway_id(self, device_id: str) -> str:
        if device_id == self.settings.WASHER_DEVICE_ID:
            return self.settings.WASHER_GATEWAY_ID
        return device_id

    async def _send_lan(self, device_id: str, payload: Dict[str, Any]):
        address = self.addresses.get(device_id)
        if not address:
            raise DownstreamDeliveryFailure(f"No local address for {device_id}")
        url = f"http://{address}:{self.settings.LAN_DEVICE_PORT}/"
        log.debug("Sending request to the smart home device %s: %s", device_id, payload)
        try:
            async with httpx.AsyncClient(transport=self.lan_transport) as c:
                r = await c.post(url, content=orjson.dumps(payload), timeout=self.settings.UPSTREAM_TIMEOUT,
                                 headers={"Content-Type": "application/json"})
                r.raise_for_status()
        except httpx.HTTPError as e:
            raise DownstreamDeliveryFailure(f"Command delivery to {device_id} failed", repr(e))

    async def _mirror(self, custom: CustomData, device_id: str, command) -> bool:
        url_base = custom.urlBase or self.settings.GATEWAY_URL
        try:
            if not url_base:
                raise InvalidCredentials("No gateway URL for mirror call")
            await self.gateway.send(url_base.rstrip("/"), self._gateway_id(device_id),
                                    command_to_gateway(command), custom.authorization)
        except BridgeError as e:
            log.warning("error calling gateway for %s: %s", device_id, e)
            return False
        log.debug("called gateway successfully for %s", device_id)
        return True

    async def _execute_device(self, device: Dict[str, Any], executions: List[Dict[str, Any]]) -> DeviceOutcome:
        device_id = device.get("id", "")
        states: Dict[str, Any] = {"online": True}
        try:
            custom = CustomData.from_device(device)
            self.lifecycle[device_id] = EXECUTING
            for execution in executions:
                command = parse_command(execution)
                # the LAN delivery decides success; the gateway mirror is best effort
                delivered, mirrored = await asyncio.gather(
                    self._send_lan(device_id, command_to_local_payload(command)),
                    self._mirror(custom, device_id, command),
                    return_exceptions=True,
                )
                for result in (delivered, mirrored):
                    if isinstance(result, BaseException):
                        raise result
                states.update(command_to_state(command))
                log.debug("Command successfully sent to %s (gateway mirrored: %s)", device_id, mirrored)
        except BridgeError as e:
            log.warning("An error occurred sending the command to %s: %s", device_id, e)
            return DeviceOutcome.failure(device_id, e.error_code, str(e))
        return DeviceOutcome.success(device_id, states)

    async def execute(self, request: Dict[str, Any]) -> Dict[str, Any]:
        log.debug("EXECUTE intent: %s", request)
        request_id = request.get("requestId", "")
        tasks = []
        for command in request["inputs"][0].get("payload", {}).get("commands", []):
            for device in command.get("devices", []):
                tasks.append(self._execute_device(device, command.get("execution", [])))

        results = await asyncio.gather(*tasks, return_exceptions=True)
        commands = []
        for r in results:
            if isinstance(r, BaseException):
                raise LocalHandlerError(request_id, "invalid_request", str(r))
            if r.ok:
                commands.append({"ids": [r.device_id], "status": "SUCCESS", "states": r.states})
            else:
                commands.append({"ids": [r.device_id], "status": "ERROR", "errorCode": r.error_code,
                                 "debugString": r.reason})
        return {"requestId": request_id, "payload": {"commands": commands}}
