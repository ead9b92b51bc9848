import io
import json
import pathlib
import socketserver
import sys
import threading

import pytest

ROOT = pathlib.Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from wlscan import protocol


def status_json(name="1.20.1", proto=763, online=3, maximum=20, description="Hi §cthere"):
    return json.dumps({
        "version": {"name": name, "protocol": proto},
        "players": {"online": online, "max": maximum},
        "description": description,
    })


class FakeServerHandler(socketserver.StreamRequestHandler):
    """Speaks just enough of the handshake/status/login exchange for the probes."""

    def handle(self):
        server = self.server
        try:
            _, body = protocol.read_packet(self.rfile)
            proto = protocol.read_varint(body)
            protocol.read_string(body)
            protocol.read_ushort(body)
            next_state = protocol.read_varint(body)
            server.handshakes.append((proto, next_state))

            if next_state == protocol.STATE_STATUS:
                protocol.read_packet(self.rfile)
                if server.status_reply is not None:
                    self.wfile.write(server.status_reply)
                    self.drip()
                    return
                protocol.write_packet(self.wfile, 0x00, protocol.pack_string(server.status))
                packet_id, ping = protocol.read_packet(self.rfile)
                protocol.write_packet(self.wfile, packet_id, ping.read())
            else:
                _, login = protocol.read_packet(self.rfile)
                server.login_starts.append((proto, login.read()))
                reply = server.login_reply(proto)
                if isinstance(reply, bytes):
                    self.wfile.write(reply)
                    self.drip()
                elif reply is not None:
                    packet_id, data = reply
                    protocol.write_packet(self.wfile, packet_id, data)
        except (OSError, protocol.ProtocolError):
            pass

    def drip(self):
        """Trickle one byte per interval until the client hangs up."""
        server = self.server
        if server.drip_interval is None:
            return
        while not server.stopped.wait(server.drip_interval):
            self.wfile.write(b" ")


class FakeMinecraftServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True

    def __init__(self):
        super().__init__(("127.0.0.1", 0), FakeServerHandler)
        self.status = status_json()
        self.status_reply = None
        self.handshakes = []
        self.login_starts = []
        self.login_reply = lambda proto: None
        self.drip_interval = None
        self.stopped = threading.Event()

    @property
    def port(self):
        return self.server_address[1]

    def disconnect_with(self, reason, accepted_protocol=None):
        """Reply to Login Start with a Disconnect; other protocols get an outdated notice."""
        def reply(proto):
            if accepted_protocol is not None and proto != accepted_protocol:
                return 0x00, protocol.pack_string(json.dumps({"translate": "multiplayer.disconnect.outdated_client"}))
            return 0x00, protocol.pack_string(reason)
        self.login_reply = reply


@pytest.fixture
def mc_server():
    server = FakeMinecraftServer()
    thread = threading.Thread(target=server.serve_forever, daemon=True)
    thread.start()
    try:
        yield server
    finally:
        server.stopped.set()
        server.shutdown()
        server.server_close()


@pytest.fixture
def closed_port():
    """A loopback port with nothing listening on it."""
    server = socketserver.TCPServer(("127.0.0.1", 0), socketserver.BaseRequestHandler)
    port = server.server_address[1]
    server.server_close()
    return port


def frame(packet_id, data=b""):
    buffer = io.BytesIO()
    protocol.write_packet(buffer, packet_id, data)
    return buffer.getvalue()
