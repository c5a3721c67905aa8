from typing import Optional
from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Static gateway base URL; when unset the token's issuer claim is used.
    GATEWAY_URL: Optional[str] = None
    AGENT_USER_ID: str = "123"
    UPSTREAM_TIMEOUT: float = 8.0
    DB_URL: str = "sqlite:///./data/bridge.db"
    LOG_LEVEL: str = "INFO"

    HOMEGRAPH_URL: str = "https://homegraph.googleapis.com/v1"
    HOMEGRAPH_CREDENTIALS: Optional[str] = None
    REPORT_STATE_ENABLED: bool = True

    WASHER_DEVICE_ID: str = "washer"
    WASHER_LOCAL_ID: str = "deviceid123"
    WASHER_GATEWAY_ID: str = "/things/zb-500b91400001e9d1"

    LAN_DEVICE_PORT: int = 3388
    GATEWAY_ID_PREFIX: str = "/things/zb"
    MDNS_SERVICE_TYPE: str = "_webthing._tcp.local"
    DISCOVERY_PACKET: str = "HelloLocalHomeSDK"
    DISCOVERY_PORT_OUT: int = 3312
    DISCOVERY_PORT_IN: int = 3311

class VirtualDeviceSettings(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIRTUAL_", env_file=".env", extra="ignore")

    DEVICE_ID: str = "deviceid123"
    REPORT_STATE_URL: Optional[str] = None
    DISCOVERY_PACKET: str = "HelloLocalHomeSDK"
    DISCOVERY_PORT_OUT: int = 3312
    DISCOVERY_PORT_IN: int = 3311
    HOST: str = "0.0.0.0"
    HTTP_PORT: int = 3388

settings = Settings()
