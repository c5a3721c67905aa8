"""Virtual washer: HTTP command endpoint plus UDP discovery responder.

Run with::

    python -m gateway_bridge.virtual_device --device-id deviceid123 \\
        --discovery-packet HelloLocalHomeSDK --discovery-port-in 3311 \\
        --discovery-port-out 3312 --report-state-url http://localhost:8787/updateState
"""
import argparse, asyncio, logging
import orjson
import uvicorn
from fastapi import FastAPI, Request
from fastapi.responses import PlainTextResponse

from .settings import VirtualDeviceSettings
from .washer import Washer

log = logging.getLogger("virtual_device")


class DiscoveryResponder(asyncio.DatagramProtocol):
    """Answers the magic discovery packet with the device id."""

    def __init__(self, device_id: str, packet: str, reply_port: int):
        self.device_id = device_id
        self.packet = packet
        self.reply_port = reply_port
        self.transport = None

    def connection_made(self, transport):
        self.transport = transport

    def datagram_received(self, data: bytes, addr):
        log.info("Got [%s] from %s", data.decode(errors="replace"), addr[0])
        if data != self.packet.encode():
            log.info("The received message is not the same as expected magic string [%s]", self.packet)
            return
        self.transport.sendto(self.device_id.encode(), (addr[0], self.reply_port))
        log.info("Done sending [%s] to %s:%s", self.device_id, addr[0], self.reply_port)

    def error_received(self, exc):
        log.error("UDP Server error: %s", exc)


def create_app(washer: Washer) -> FastAPI:
    app = FastAPI(title="Virtual Washer", version="0.1.0")
    app.state.washer = washer

    @app.post("/", response_class=PlainTextResponse)
    async def overwrite_state(request: Request):
        body = await request.json()
        log.info(orjson.dumps(body, option=orjson.OPT_INDENT_2).decode())
        washer.state = body if isinstance(body, dict) else {}
        return "OK"

    @app.get("/")
    def current_state():
        return washer.state

    return app


async def serve(cfg: VirtualDeviceSettings):
    washer = Washer(cfg.REPORT_STATE_URL)
    loop = asyncio.get_running_loop()
    transport, _ = await loop.create_datagram_endpoint(
        lambda: DiscoveryResponder(cfg.DEVICE_ID, cfg.DISCOVERY_PACKET, cfg.DISCOVERY_PORT_IN),
        local_addr=("0.0.0.0", cfg.DISCOVERY_PORT_OUT), allow_broadcast=True)
    log.info("UDP Server listening on %s", cfg.DISCOVERY_PORT_OUT)
    washer.report_state_soon()
    server = uvicorn.Server(uvicorn.Config(create_app(washer), host=cfg.HOST, port=cfg.HTTP_PORT))
    try:
        await server.serve()
    finally:
        transport.close()


def parse_args(argv=None) -> VirtualDeviceSettings:
    defaults = VirtualDeviceSettings()
    p = argparse.ArgumentParser(description="Virtual washer device")
    p.add_argument("--device-id", default=defaults.DEVICE_ID, help="Local device id.")
    p.add_argument("--report-state-url", default=defaults.REPORT_STATE_URL, help="URL for cloud Report State endpoint.")
    p.add_argument("--discovery-packet", default=defaults.DISCOVERY_PACKET, help="Data packet to expect in UDP broadcasts.")
    p.add_argument("--discovery-port-out", type=int, default=defaults.DISCOVERY_PORT_OUT, help="Port to listen for UDP broadcasts.")
    p.add_argument("--discovery-port-in", type=int, default=defaults.DISCOVERY_PORT_IN, help="Port to respond to UDP broadcasts.")
    p.add_argument("--http-port", type=int, default=defaults.HTTP_PORT)
    p.add_argument("--host", default=defaults.HOST)
    args = p.parse_args(argv)
    return defaults.model_copy(update={
        "DEVICE_ID": args.device_id,
        "REPORT_STATE_URL": args.report_state_url,
        "DISCOVERY_PACKET": args.discovery_packet,
        "DISCOVERY_PORT_OUT": args.discovery_port_out,
        "DISCOVERY_PORT_IN": args.discovery_port_in,
        "HTTP_PORT": args.http_port,
        "HOST": args.host,
    })


def main(argv=None):
    logging.basicConfig(level=logging.INFO)
    asyncio.run(serve(parse_args(argv)))


if __name__ == "__main__":
    main()
