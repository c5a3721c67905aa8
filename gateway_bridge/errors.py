"""Error types shared by the webhook handlers and the local agent.

Every error carries the platform ``error_code`` reported back to Google
when the failure surfaces in a response.
"""
from typing import Optional


class BridgeError(Exception):
    """Base exception for all bridge errors."""

    error_code = "hardError"

    def __init__(self, message: str, details: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.details = details

    def __str__(self) -> str:
        if self.details:
            return f"{self.message}: {self.details}"
        return self.message


class InvalidCredentials(BridgeError):
    """Bearer token missing or not shaped like a JWT with an issuer."""

    error_code = "authFailure"


class UpstreamUnavailable(BridgeError):
    """Gateway unreachable, timed out or answered with a non-2xx status."""

    error_code = "deviceOffline"

    def __init__(self, message: str, details: Optional[str] = None, status_code: Optional[int] = None):
        super().__init__(message, details)
        self.status_code = status_code


class UnsupportedCommand(BridgeError):
    """Platform verb with no gateway property or action."""

    error_code = "functionNotSupported"

    def __init__(self, command: str):
        super().__init__(f"Unsupported execution command: {command}")
        self.command = command


class DownstreamDeliveryFailure(BridgeError):
    """Command could not be delivered to a device over the LAN."""

    error_code = "deviceNotReady"


class LocalHandlerError(BridgeError):
    """Failure of a whole local-execution intent."""

    def __init__(self, request_id: str, error_code: str, message: str):
        super().__init__(message)
        self.request_id = request_id
        self.error_code = error_code


class InvalidCommandParams(BridgeError):
    """Known verb whose params are missing or of the wrong type."""

    error_code = "protocolError"


class MalformedGatewayData(BridgeError):
    """Gateway answered 2xx with a body the bridge cannot translate."""

    error_code = "hardError"
