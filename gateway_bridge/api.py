import logging
from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import JSONResponse, PlainTextResponse
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional

from .discovery import discover_udp, identify_request
from .errors import BridgeError, LocalHandlerError

log = logging.getLogger("api")

router = APIRouter()

class IntentInput(BaseModel):
    intent: str
    payload: Dict[str, Any] = Field(default_factory=dict)

class IntentRequest(BaseModel):
    requestId: str = ""
    inputs: List[IntentInput] = Field(min_length=1)
    devices: Optional[List[Dict[str, Any]]] = None

class WasherStateBody(BaseModel):
    on: bool = False
    isRunning: bool = False
    isPaused: bool = False

@router.post("/smarthome")
async def smarthome(req: IntentRequest, request: Request):
    fulfillment = request.app.state.fulfillment
    body = req.model_dump(exclude_unset=True)
    return await fulfillment.handle(body, request.headers)

@router.post("/requestsync")
async def request_sync(request: Request):
    try:
        return await request.app.state.homegraph.request_sync()
    except BridgeError as e:
        log.error("Request sync failed: %s", e)
        return PlainTextResponse(f"Error requesting sync: {e}", status_code=500)

@router.post("/updateState")
async def update_state(body: WasherStateBody, request: Request):
    settings = request.app.state.settings
    if not settings.WASHER_DEVICE_ID:
        raise HTTPException(404, "No virtual washer configured")
    await request.app.state.store.put(settings.WASHER_DEVICE_ID, body.model_dump())
    return PlainTextResponse("", status_code=200)

@router.post("/local")
async def local_intent(req: IntentRequest, request: Request):
    body = req.model_dump(exclude_unset=True)
    try:
        return await request.app.state.local_app.handle(body)
    except LocalHandlerError as e:
        log.warning("Local intent %s failed: %s", e.request_id, e)
        return JSONResponse({"requestId": e.request_id, "payload": {"errorCode": e.error_code, "status": "ERROR",
                                                                   "debugString": str(e)}}, status_code=400)

@router.post("/local/scan")
async def local_scan(request: Request, timeout: float = 3.0):
    """Broadcast a UDP discovery scan and IDENTIFY every device that answers."""
    settings = request.app.state.settings
    local_app = request.app.state.local_app
    records = await discover_udp(settings.DISCOVERY_PACKET, settings.DISCOVERY_PORT_OUT,
                                 settings.DISCOVERY_PORT_IN, timeout=timeout)
    out = []
    for record in records:
        try:
            out.append(local_app.identify(identify_request(record)))
        except LocalHandlerError as e:
            log.warning("Ignoring scan reply from %s: %s", record.get("ipAddress"), e)
    return out
