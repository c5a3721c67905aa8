# Maps gateway things to platform devices and platform commands to gateway
# property writes / action calls.
from typing import Any, Callable, Dict, Optional
from pydantic import ValidationError

from .errors import InvalidCommandParams, MalformedGatewayData, UnsupportedCommand
from .schemas import (
    COMMAND_TYPES, TRAIT_BRIGHTNESS, TRAIT_LOCK_UNLOCK, TRAIT_ON_OFF, TRAIT_START_STOP,
    TYPE_LIGHT, TYPE_LOCK, TYPE_WASHER, BrightnessAbsolute, Command, CustomData, DeviceName,
    GatewayRequest, LockUnlock, OnOff, PauseUnpause, PlatformDevice, StartStop, Thing,
)

LIGHT_TAGS = {"Light", "OnOffSwitch"}
LOCK_TAGS = {"Lock"}

BRIGHTNESS_MIN = 0
BRIGHTNESS_MAX = 100


def _name_block(title: str) -> DeviceName:
    return DeviceName(defaultNames=[title], name=title, nicknames=[title])


def thing_to_device(thing: Thing, custom_data: CustomData, agent_user_id: str) -> Optional[PlatformDevice]:
    """Translate a gateway thing into a SYNC device, or None when unsupported.

    A lock is never also exposed as a light.
    """
    tags = set(thing.types)
    if tags & LOCK_TAGS:
        device_type, traits = TYPE_LOCK, [TRAIT_LOCK_UNLOCK]
    elif tags & LIGHT_TAGS:
        device_type, traits = TYPE_LIGHT, [TRAIT_ON_OFF]
        # a "level" property means the light is dimmable
        if "level" in thing.properties:
            traits.append(TRAIT_BRIGHTNESS)
    else:
        return None

    title = thing.title or thing.href
    return PlatformDevice(
        id=thing.href,
        type=device_type,
        traits=traits,
        name=_name_block(title),
        customData=custom_data.model_dump(),
        otherDeviceIds=[{"deviceId": thing.href}, {"deviceId": agent_user_id}],
        willReportState=False,
    )


def washer_device(device_id: str, local_id: str, custom_data: CustomData) -> PlatformDevice:
    return PlatformDevice(
        id=device_id,
        type=TYPE_WASHER,
        traits=[TRAIT_ON_OFF, TRAIT_START_STOP],
        name=_name_block("Washer"),
        customData=custom_data.model_dump(),
        otherDeviceIds=[{"deviceId": local_id}],
        willReportState=True,
        attributes={"pausable": True},
    )


def parse_command(execution: Dict[str, Any]) -> Command:
    verb = execution.get("command")
    model = COMMAND_TYPES.get(verb)
    if model is None:
        raise UnsupportedCommand(str(verb))
    try:
        return model.model_validate(execution.get("params") or {})
    except ValidationError as e:
        raise InvalidCommandParams(f"Invalid params for {verb}", str(e))


def _put(name: str, value: Any) -> GatewayRequest:
    return GatewayRequest("PUT", f"properties/{name}", {name: value})


def _action(name: str) -> GatewayRequest:
    return GatewayRequest("POST", f"actions/{name}", {name: {"input": {}}})


def clamp_brightness(value: int) -> int:
    return max(BRIGHTNESS_MIN, min(BRIGHTNESS_MAX, int(value)))


# verb -> (gateway request, LAN device payload, reported platform state)
COMMAND_MAP: Dict[type, Dict[str, Callable[[Any], Any]]] = {
    OnOff: {
        "gateway": lambda c: _put("on", c.on),
        "local": lambda c: {"on": c.on},
        "state": lambda c: {"on": c.on},
    },
    StartStop: {
        "gateway": lambda c: _put("isRunning", c.start),
        "local": lambda c: {"isRunning": c.start},
        "state": lambda c: {"isRunning": c.start},
    },
    PauseUnpause: {
        "gateway": lambda c: _put("isPaused", c.pause),
        "local": lambda c: {"isPaused": c.pause},
        "state": lambda c: {"isPaused": c.pause},
    },
    BrightnessAbsolute: {
        "gateway": lambda c: _put("level", clamp_brightness(c.brightness)),
        "local": lambda c: {"brightness": clamp_brightness(c.brightness)},
        "state": lambda c: {"brightness": clamp_brightness(c.brightness)},
    },
    LockUnlock: {
        "gateway": lambda c: _action("lock" if c.lock else "unlock"),
        "local": lambda c: {"isLocked": c.lock},
        "state": lambda c: {"isLocked": c.lock, "isJammed": False},
    },
}


def _lookup(command: Any, kind: str) -> Any:
    entry = COMMAND_MAP.get(type(command))
    if entry is None:
        raise UnsupportedCommand(getattr(command, "verb", type(command).__name__))
    return entry[kind](command)


def command_to_gateway(command: Command) -> GatewayRequest:
    return _lookup(command, "gateway")


def command_to_local_payload(command: Command) -> Dict[str, Any]:
    return _lookup(command, "local")


def command_to_state(command: Command) -> Dict[str, Any]:
    return _lookup(command, "state")


def properties_to_state(raw: Dict[str, Any]) -> Dict[str, Any]:
    """Translate raw gateway properties into QUERY state; absent keys stay absent."""
    if not isinstance(raw, dict):
        raise MalformedGatewayData("Gateway properties are not an object", type(raw).__name__)
    state: Dict[str, Any] = {}
    if "level" in raw and raw["level"] is not None:
        try:
            state["brightness"] = int(round(float(raw["level"])))
        except (TypeError, ValueError, OverflowError):
            raise MalformedGatewayData("Gateway level is not a number", repr(raw["level"]))
    if "locked" in raw:
        state["isLocked"] = raw["locked"] == "locked"
        state["isJammed"] = raw["locked"] == "jammed"
    if "on" in raw:
        state["on"] = raw["on"]
    return state
