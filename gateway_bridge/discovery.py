"""UDP broadcast discovery of local devices.

A scan broadcasts the magic packet to the devices' listening port and
collects every reply sent back to the reply port. Each reply becomes a
scan record shaped like the platform's ``udpScanData`` so it can be fed
straight into an IDENTIFY request.
"""
import asyncio, logging, uuid
from typing import Any, Dict, List, Optional, Tuple

log = logging.getLogger("discovery")


class _ScanProtocol(asyncio.DatagramProtocol):
    def __init__(self):
        self.replies: List[Tuple[bytes, str]] = []

    def datagram_received(self, data: bytes, addr):
        log.info("Got [%r] from %s", data, addr[0])
        self.replies.append((data, addr[0]))

    def error_received(self, exc):
        log.error("UDP scan error: %s", exc)


async def discover_udp(packet: str, port_out: int, port_in: int, timeout: float = 3.0,
                       broadcast: str = "255.255.255.255") -> List[Dict[str, Any]]:
    """Broadcast ``packet`` to ``port_out`` and gather replies arriving on ``port_in``.

    Args:
        packet: Magic discovery string the devices expect.
        port_out: Port devices listen on for broadcasts.
        port_in: Port devices send their reply to.
        timeout: Seconds to wait for replies.
        broadcast: Destination address of the scan.

    Returns:
        One ``{"data": <hex>, "ipAddress": <ip>}`` record per reply.
    """
    loop = asyncio.get_running_loop()
    transport, protocol = await loop.create_datagram_endpoint(
        _ScanProtocol, local_addr=("0.0.0.0", port_in), allow_broadcast=True)
    try:
        transport.sendto(packet.encode(), (broadcast, port_out))
        await asyncio.sleep(timeout)
    finally:
        transport.close()

    records = [{"data": data.hex(), "ipAddress": ip} for data, ip in protocol.replies]
    log.info("UDP scan found %d device(s)", len(records))
    return records


def identify_request(record: Dict[str, Any], request_id: Optional[str] = None) -> Dict[str, Any]:
    """Wrap a scan record into an IDENTIFY intent request."""
    return {
        "requestId": request_id or uuid.uuid4().hex,
        "inputs": [{
            "intent": "action.devices.IDENTIFY",
            "payload": {
                "device": {
                    "udpScanData": {"data": record["data"]},
                    "ipAddress": record.get("ipAddress"),
                },
            },
        }],
    }
