import io
import json
import logging
import time
from typing import Any, Optional

from . import config
from .protocol import (
    HANDSHAKE_PACKET_ID,
    PING_PACKET_ID,
    PONG_PACKET_ID,
    STATE_STATUS,
    STATUS_REQUEST_PACKET_ID,
    STATUS_RESPONSE_PACKET_ID,
    Connection,
    InvalidPayloadSize,
    ProtocolError,
    UnexpectedPacketId,
    build_handshake,
    flatten_component,
    read_exact,
    read_long,
    read_packet,
    read_varint,
    write_long,
    write_packet,
)
from .results import EndpointResult
from .versions import DEFAULT_CATALOG, VersionCatalog

MAX_STATUS_JSON_LENGTH = 32767
# Packet id plus a 3-byte JSON length prefix around the largest document
MAX_STATUS_FRAME_LENGTH = MAX_STATUS_JSON_LENGTH + 4
# Packet id plus the echoed long
MAX_PONG_FRAME_LENGTH = 9
PARSE_ERROR_VERSION = "Parse Error"


def _as_int(value: Any, default: int) -> int:
    if isinstance(value, bool):
        return default
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return int(value)
    return default


def parse_status(address: str, port: int, payload: str, ping_ms: int) -> EndpointResult:
    """Turn a status JSON document into an online EndpointResult."""
    try:
        data = json.loads(payload)
    except ValueError:
        data = None
    if not isinstance(data, dict):
        return EndpointResult(address, port, online=True, version=PARSE_ERROR_VERSION, ping_ms=ping_ms)

    version = data.get('version')
    version = version if isinstance(version, dict) else {}
    players = data.get('players')
    players = players if isinstance(players, dict) else {}

    name = version.get('name')
    return EndpointResult(
        address,
        port,
        online=True,
        version=name if isinstance(name, str) else "Unknown",
        players_online=_as_int(players.get('online'), 0),
        players_max=_as_int(players.get('max'), 0),
        motd=flatten_component(data.get('description', "")),
        ping_ms=ping_ms,
        protocol=_as_int(version.get('protocol'), -1),
    )


class StatusProber:
    """
    Unauthenticated server list ping: handshake, status request, ping/pong.

    Never raises for network or protocol trouble; the endpoint is reported
    offline instead.
    """

    def __init__(self, catalog: Optional[VersionCatalog] = None,
                 connect_timeout: float = config.CONNECT_TIMEOUT,
                 read_timeout: float = config.STATUS_READ_TIMEOUT,
                 logger: Optional[logging.Logger] = None):
        self.catalog = catalog or DEFAULT_CATALOG
        self.connect_timeout = connect_timeout
        self.read_timeout = read_timeout
        self.logger = logger or logging.getLogger(__name__)

    def probe_status(self, address: str, port: int) -> EndpointResult:
        try:
            return self._query(address, port)
        except (OSError, OverflowError, ProtocolError) as e:
            self.logger.debug(f"{address}:{port} offline: {e}")
            return EndpointResult.offline(address, port)

    def _query(self, address: str, port: int) -> EndpointResult:
        with Connection.open(address, port, self.connect_timeout, self.read_timeout) as conn:
            handshake = build_handshake(self.catalog.latest, address, port, STATE_STATUS)
            write_packet(conn, HANDSHAKE_PACKET_ID, handshake)
            write_packet(conn, STATUS_REQUEST_PACKET_ID)

            packet_id, body = read_packet(conn, MAX_STATUS_FRAME_LENGTH)
            if packet_id != STATUS_RESPONSE_PACKET_ID:
                raise UnexpectedPacketId(f"Invalid packet ID: {packet_id}")
            json_length = read_varint(body)
            if json_length <= 0 or json_length > MAX_STATUS_JSON_LENGTH:
                raise InvalidPayloadSize(f"Invalid JSON length: {json_length}")
            raw = read_exact(body, json_length)

            sent_at = time.monotonic()
            ping = io.BytesIO()
            write_long(ping, int(time.time() * 1000))
            write_packet(conn, PING_PACKET_ID, ping.getvalue())
            packet_id, body = read_packet(conn, MAX_PONG_FRAME_LENGTH)
            if packet_id != PONG_PACKET_ID:
                raise UnexpectedPacketId(f"Expected pong, got packet ID {packet_id}")
            read_long(body)
            ping_ms = int((time.monotonic() - sent_at) * 1000)

        try:
            payload = raw.decode('utf-8')
        except UnicodeDecodeError:
            self.logger.debug(f"{address}:{port} sent non UTF-8 status")
            return EndpointResult(address, port, online=True, version=PARSE_ERROR_VERSION, ping_ms=ping_ms)
        return parse_status(address, port, payload, ping_ms)


_default_prober = None


def probe_status(address: str, port: int) -> EndpointResult:
    """Probe one endpoint with the default settings."""
    global _default_prober
    if _default_prober is None:
        _default_prober = StatusProber()
    return _default_prober.probe_status(address, port)
