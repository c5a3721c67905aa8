from dataclasses import dataclass, field
from typing import Any, ClassVar, Dict, List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field, ValidationError

from .errors import InvalidCredentials

TYPE_LIGHT = "action.devices.types.LIGHT"
TYPE_LOCK = "action.devices.types.LOCK"
TYPE_WASHER = "action.devices.types.WASHER"

TRAIT_ON_OFF = "action.devices.traits.OnOff"
TRAIT_BRIGHTNESS = "action.devices.traits.Brightness"
TRAIT_LOCK_UNLOCK = "action.devices.traits.LockUnlock"
TRAIT_START_STOP = "action.devices.traits.StartStop"


class Thing(BaseModel):
    """A device as listed by the gateway's /things endpoint."""
    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    href: str
    title: str = ""
    types: List[str] = Field(default_factory=list, alias="@type")
    properties: Dict[str, Any] = Field(default_factory=dict)


class CustomData(BaseModel):
    """Gateway credentials round-tripped by the platform between SYNC and later intents."""

    authorization: str
    urlBase: Optional[str] = None

    @classmethod
    def from_device(cls, device: Dict[str, Any]) -> "CustomData":
        raw = device.get("customData") or {}
        if not isinstance(raw, dict) or not raw.get("authorization"):
            raise InvalidCredentials("no token supplied in custom data", device.get("id"))
        try:
            return cls(authorization=str(raw["authorization"]), urlBase=raw.get("urlBase"))
        except ValidationError as e:
            raise InvalidCredentials("invalid custom data", f"{device.get('id')}: {e.error_count()} errors")


class DeviceName(BaseModel):
    defaultNames: List[str]
    name: str
    nicknames: List[str]


class PlatformDevice(BaseModel):
    id: str
    type: str
    traits: List[str]
    name: DeviceName
    customData: Optional[Dict[str, Any]] = None
    otherDeviceIds: List[Dict[str, str]] = Field(default_factory=list)
    willReportState: bool = False
    attributes: Optional[Dict[str, Any]] = None


# Execution commands, one model per platform verb

class OnOff(BaseModel):
    verb: ClassVar[str] = "action.devices.commands.OnOff"
    on: bool


class StartStop(BaseModel):
    verb: ClassVar[str] = "action.devices.commands.StartStop"
    start: bool


class PauseUnpause(BaseModel):
    verb: ClassVar[str] = "action.devices.commands.PauseUnpause"
    pause: bool


class BrightnessAbsolute(BaseModel):
    verb: ClassVar[str] = "action.devices.commands.BrightnessAbsolute"
    brightness: int


class LockUnlock(BaseModel):
    verb: ClassVar[str] = "action.devices.commands.LockUnlock"
    lock: bool
    followUpToken: Optional[str] = None


Command = Union[OnOff, StartStop, PauseUnpause, BrightnessAbsolute, LockUnlock]

COMMAND_TYPES = {c.verb: c for c in (OnOff, StartStop, PauseUnpause, BrightnessAbsolute, LockUnlock)}


@dataclass(frozen=True)
class GatewayRequest:
    method: str
    path: str
    body: Dict[str, Any]


@dataclass
class DeviceOutcome:
    """Result of running one device's commands."""
    device_id: str
    ok: bool
    states: Dict[str, Any] = field(default_factory=dict)
    error_code: Optional[str] = None
    reason: Optional[str] = None

    @classmethod
    def success(cls, device_id: str, states: Optional[Dict[str, Any]] = None) -> "DeviceOutcome":
        return cls(device_id=device_id, ok=True, states=states or {})

    @classmethod
    def failure(cls, device_id: str, error_code: str, reason: str) -> "DeviceOutcome":
        return cls(device_id=device_id, ok=False, error_code=error_code, reason=reason)
