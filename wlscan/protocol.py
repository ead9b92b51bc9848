import io
import socket
import struct
import time
from typing import Any, BinaryIO, Optional, Tuple

# ===============================
# Protocol constants
# ===============================
HANDSHAKE_PACKET_ID = 0x00
STATUS_REQUEST_PACKET_ID = 0x00
STATUS_RESPONSE_PACKET_ID = 0x00
PING_PACKET_ID = 0x01
PONG_PACKET_ID = 0x01
LOGIN_START_PACKET_ID = 0x00
DISCONNECT_PACKET_ID = 0x00
ENCRYPTION_REQUEST_PACKET_ID = 0x01
LOGIN_SUCCESS_PACKET_ID = 0x02
SET_COMPRESSION_PACKET_ID = 0x03

# Protocol states
STATE_STATUS = 1
STATE_LOGIN = 2

VARINT_MAX_BYTES = 5
VARINT_MAX_VALUE = 0xFFFFFFFF
# Largest frame a 3-byte VarInt length can announce
MAX_PACKET_LENGTH = 2097151


class ProtocolError(Exception):
    pass


class MalformedVarInt(ProtocolError):
    pass


class UnexpectedPacketId(ProtocolError):
    pass


class InvalidPayloadSize(ProtocolError):
    pass


def pack_varint(value: int) -> bytes:
    """Pack an unsigned 32-bit integer as a VarInt."""
    if value < 0 or value > VARINT_MAX_VALUE:
        raise MalformedVarInt(f"VarInt out of range: {value}")
    data = bytearray()
    while True:
        byte = value & 0x7F
        value >>= 7
        if value != 0:
            byte |= 0x80
        data.append(byte)
        if value == 0:
            break
    return bytes(data)


def pack_string(text: str) -> bytes:
    """Pack a string with its UTF-8 byte length as prefix."""
    encoded = text.encode('utf-8')
    return pack_varint(len(encoded)) + encoded


def read_exact(stream: BinaryIO, num_bytes: int) -> bytes:
    """Read exactly num_bytes from stream."""
    data = b''
    while len(data) < num_bytes:
        chunk = stream.read(num_bytes - len(data))
        if not chunk:
            raise ProtocolError("Connection closed")
        data += chunk
    return data


def write_varint(stream: BinaryIO, value: int) -> None:
    stream.write(pack_varint(value))


def read_varint(stream: BinaryIO) -> int:
    """Read a VarInt, refusing anything longer than five bytes."""
    value = 0
    for position in range(VARINT_MAX_BYTES):
        byte = read_exact(stream, 1)[0]
        value |= (byte & 0x7F) << (7 * position)
        if (byte & 0x80) == 0:
            if value > VARINT_MAX_VALUE:
                raise MalformedVarInt("VarInt exceeds 32 bits")
            return value
    raise MalformedVarInt("VarInt is too big")


def write_string(stream: BinaryIO, text: str) -> None:
    stream.write(pack_string(text))


def read_string(stream: BinaryIO, max_length: int = MAX_PACKET_LENGTH) -> str:
    length = read_varint(stream)
    if length > max_length:
        raise InvalidPayloadSize(f"String length {length} exceeds {max_length}")
    raw = read_exact(stream, length)
    try:
        return raw.decode('utf-8')
    except UnicodeDecodeError as e:
        raise ProtocolError(f"Invalid UTF-8 string: {e}") from e


def write_ushort(stream: BinaryIO, value: int) -> None:
    stream.write(struct.pack('>H', value))


def read_ushort(stream: BinaryIO) -> int:
    return struct.unpack('>H', read_exact(stream, 2))[0]


def write_long(stream: BinaryIO, value: int) -> None:
    stream.write(struct.pack('>q', value))


def read_long(stream: BinaryIO) -> int:
    return struct.unpack('>q', read_exact(stream, 8))[0]


def write_packet(stream: BinaryIO, packet_id: int, data: bytes = b'') -> None:
    """
    Frame and send a packet as a single write.

    Frame = VarInt(len(packet_id + data)) + VarInt(packet_id) + data
    """
    buffer = io.BytesIO()
    write_varint(buffer, packet_id)
    buffer.write(data)
    payload = buffer.getvalue()
    stream.write(pack_varint(len(payload)) + payload)


def read_packet(stream: BinaryIO, max_length: int = MAX_PACKET_LENGTH) -> Tuple[int, io.BytesIO]:
    """Read one frame and return (packet_id, body stream)."""
    length = read_varint(stream)
    if length <= 0 or length > max_length:
        raise InvalidPayloadSize(f"Invalid packet length: {length}")
    body = io.BytesIO(read_exact(stream, length))
    packet_id = read_varint(body)
    return packet_id, body


def build_handshake(protocol_version: int, host: str, port: int, next_state: int) -> bytes:
    """Serialize a Handshake body."""
    buffer = io.BytesIO()
    write_varint(buffer, protocol_version)
    write_string(buffer, host)
    write_ushort(buffer, port)
    write_varint(buffer, next_state)
    return buffer.getvalue()


def flatten_component(component: Any) -> str:
    """
    Recursively flatten a chat component into plain text.

    A dict contributes its own ``text`` followed by every entry of ``extra``
    in order; lists are concatenated; strings are returned unchanged.
    """
    if isinstance(component, str):
        return component
    if isinstance(component, list):
        return "".join(flatten_component(part) for part in component)
    if isinstance(component, dict):
        parts = []
        text = component.get('text')
        if isinstance(text, str):
            parts.append(text)
        extra = component.get('extra')
        if isinstance(extra, list):
            parts.append(flatten_component(extra))
        return "".join(parts)
    if component is None:
        return ""
    return str(component)


class Connection:
    """
    Blocking socket wrapped in the read/write interface the codec expects.

    ``timeout`` bounds the whole exchange, not each ``recv``: every read and
    write gets only what is left of it, and ``socket.timeout`` is raised
    once it is spent.
    """

    def __init__(self, sock: socket.socket, timeout: Optional[float] = None):
        self.socket = sock
        self.deadline = None if timeout is None else time.monotonic() + timeout

    @classmethod
    def open(cls, host: str, port: int, connect_timeout: float, read_timeout: float) -> 'Connection':
        sock = socket.create_connection((host, port), timeout=connect_timeout)
        return cls(sock, read_timeout)

    def _arm(self) -> None:
        if self.deadline is None:
            return
        remaining = self.deadline - time.monotonic()
        if remaining <= 0:
            raise socket.timeout("Exchange deadline exceeded")
        self.socket.settimeout(remaining)

    def read(self, num_bytes: int) -> bytes:
        self._arm()
        return self.socket.recv(num_bytes)

    def write(self, data: bytes) -> None:
        self._arm()
        self.socket.sendall(data)

    def close(self) -> None:
        try:
            self.socket.close()
        except OSError:
            pass

    def __enter__(self) -> 'Connection':
        return self

    def __exit__(self, *exc_info) -> None:
        self.close()
