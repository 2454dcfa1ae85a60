import socket
import socketserver
import struct
import tempfile
import threading
from pathlib import Path

import nonebot
import pytest
import ujson

nonebot.init(
    driver="~fastapi",
    mcs={
        "timeout": 1,
        "dns_timeout": 1,
        "stats_file": str(Path(tempfile.mkdtemp()) / "stats.json"),
    },
)
nonebot.load_plugin("nonebot_plugin_mcstatus")

RAKNET_MAGIC = bytes.fromhex("00ffff00fefefefefdfdfdfd12345678")


def pack_varint(value: int) -> bytes:
    out = b""
    while True:
        byte = value & 0x7F
        value >>= 7
        out += struct.pack("B", byte | (0x80 if value else 0))
        if not value:
            return out


def read_varint(rfile) -> int:
    value = 0
    for i in range(5):
        byte = rfile.read(1)[0]
        value |= (byte & 0x7F) << 7 * i
        if not byte & 0x80:
            break
    return value


class JavaStatusHandler(socketserver.BaseRequestHandler):
    def handle(self):
        rfile = self.request.makefile("rb")
        handshake = rfile.read(read_varint(rfile))
        self.server.handshakes.append(handshake)
        rfile.read(read_varint(rfile))

        if self.server.reply is not None:
            body = self.server.reply
        else:
            payload = ujson.dumps(self.server.status).encode("utf8")
            body = pack_varint(0) + pack_varint(len(payload)) + payload
        self.request.sendall(pack_varint(len(body)) + body)


class BedrockStatusHandler(socketserver.BaseRequestHandler):
    def handle(self):
        data, sock = self.request
        self.server.pings.append(data)
        server_id = self.server.server_id.encode("utf8")
        reply = (
            b"\x1c"
            + data[1:9]
            + struct.pack(">q", 0x1234)
            + RAKNET_MAGIC
            + struct.pack(">H", len(server_id))
            + server_id
        )
        sock.sendto(reply, self.client_address)


class _TCPServer(socketserver.ThreadingTCPServer):
    daemon_threads = True
    allow_reuse_address = True


@pytest.fixture
def java_server():
    """启动一个返回固定状态的 Java 版服务器，返回 (server, port)"""
    servers = []

    def start(status: dict | None = None, reply: bytes | None = None):
        server = _TCPServer(("127.0.0.1", 0), JavaStatusHandler)
        server.status = status or {}
        server.reply = reply
        server.handshakes = []
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server, server.server_address[1]

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def bedrock_server():
    servers = []

    def start(server_id: str):
        server = socketserver.UDPServer(("127.0.0.1", 0), BedrockStatusHandler)
        server.server_id = server_id
        server.pings = []
        threading.Thread(target=server.serve_forever, daemon=True).start()
        servers.append(server)
        return server, server.server_address[1]

    yield start

    for server in servers:
        server.shutdown()
        server.server_close()


@pytest.fixture
def silent_port():
    """一个接受连接但永远不应答的端口"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    sock.listen(8)
    yield sock.getsockname()[1]
    sock.close()


@pytest.fixture
def closed_port():
    """一个没有进程监听的端口"""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port
