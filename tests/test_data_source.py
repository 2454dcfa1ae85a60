import socket

import pytest

from nonebot_plugin_mcstatus import data_source
from nonebot_plugin_mcstatus.data_source import MineStat
from nonebot_plugin_mcstatus.models import ConnStatus, ProbeError

from .conftest import pack_varint


def test_java_status(java_server):
    server, port = java_server(
        {
            "version": {"name": "Paper 1.18.2", "protocol": 758},
            "players": {"online": 5, "max": 20},
            "description": {"text": "Hi", "color": "green"},
            "favicon": "data:image/png;base64,AAAA",
        }
    )
    status = MineStat("127.0.0.1", port, timeout=2, refer="mc.example.com").json_query()

    assert status.players.online == 5
    assert status.players.max == 20
    assert status.version_name == "Paper 1.18.2"
    assert status.protocol_version == 758
    assert status.motd.raw == "§aHi§r"
    assert status.motd.clean == "Hi"
    assert "Hi" in status.motd.html
    assert status.favicon == "data:image/png;base64,AAAA"
    assert status.software is None
    assert isinstance(status.latency, int)

    handshake = server.handshakes[0]
    assert handshake[0] == 0x00
    assert b"mc.example.com" in handshake
    assert handshake[-1] == 0x01


def test_java_forge_software(java_server):
    _, port = java_server(
        {
            "version": {"name": "1.12.2", "protocol": 340},
            "players": {"online": 0, "max": 10},
            "description": "A Forge server",
            "modinfo": {"type": "FML", "modList": []},
        }
    )
    status = MineStat("127.0.0.1", port, timeout=2).json_query()

    assert status.software == "Forge"
    assert status.motd.raw == "A Forge server"


def test_java_connection_refused(closed_port):
    with pytest.raises(ProbeError) as exc_info:
        MineStat("127.0.0.1", closed_port, timeout=2).json_query()

    assert exc_info.value.cause is ConnStatus.REFUSED
    assert "refused" in exc_info.value.message


def test_java_connect_timeout(monkeypatch):
    def _connect(self, sock):
        raise TimeoutError

    monkeypatch.setattr(MineStat, "_connect", _connect)
    with pytest.raises(ProbeError) as exc_info:
        MineStat("203.0.113.1", 25565, timeout=1).json_query()

    assert exc_info.value.cause is ConnStatus.TIMEOUT
    assert exc_info.value.message.startswith("Timed out")


def test_java_handshake_timeout(silent_port):
    with pytest.raises(ProbeError) as exc_info:
        MineStat("127.0.0.1", silent_port, timeout=0.5).json_query()

    assert exc_info.value.cause is ConnStatus.TIMEOUT
    assert exc_info.value.message == "Timed out while retrieving server status"


def test_java_unexpected_packet(java_server):
    _, port = java_server(reply=pack_varint(0x1A) + pack_varint(2) + b"{}")

    with pytest.raises(ProbeError) as exc_info:
        MineStat("127.0.0.1", port, timeout=2).json_query()

    assert exc_info.value.cause is ConnStatus.UNKNOWN
    assert "0x1a" in exc_info.value.message


def test_java_invalid_json(java_server):
    _, port = java_server(reply=pack_varint(0) + pack_varint(5) + b"nope!")

    with pytest.raises(ProbeError) as exc_info:
        MineStat("127.0.0.1", port, timeout=2).json_query()

    assert exc_info.value.cause is ConnStatus.UNKNOWN
    assert exc_info.value.message == "Server returned an invalid status payload"


def test_bedrock_status(bedrock_server):
    server, port = bedrock_server(
        "MCPE;§bDedicated Server;594;1.20.10;3;10;13253860892328930865;Bedrock level;Survival;1;19132;19133;"
    )
    status = MineStat("127.0.0.1", port, timeout=2).bedrock_raknet_query()

    assert status.players.online == 3
    assert status.players.max == 10
    assert status.version_name == "1.20.10"
    assert status.protocol_version == 594
    assert status.edition == "MCPE"
    assert status.gamemode == "Survival"
    assert status.map == "Bedrock level"
    assert status.motd.raw == "§bDedicated Server\nBedrock level"
    assert status.motd.clean == "Dedicated Server\nBedrock level"
    assert server.pings[0][0] == 0x01


def test_bedrock_invalid_payload(bedrock_server):
    _, port = bedrock_server("MCPE;only two")

    with pytest.raises(ProbeError) as exc_info:
        MineStat("127.0.0.1", port, timeout=2).bedrock_raknet_query()

    assert exc_info.value.cause is ConnStatus.UNKNOWN


def test_bedrock_timeout():
    # 绑定但从不应答的 UDP 端口
    sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    sock.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(ProbeError) as exc_info:
            MineStat("127.0.0.1", sock.getsockname()[1], timeout=0.3).bedrock_raknet_query()
    finally:
        sock.close()

    assert exc_info.value.cause is ConnStatus.TIMEOUT


def test_pack_varint():
    assert MineStat._pack_varint(0) == b"\x00"
    assert MineStat._pack_varint(127) == b"\x7f"
    assert MineStat._pack_varint(128) == b"\x80\x01"
    assert MineStat._pack_varint(25565) == b"\xdd\xc7\x01"


class _TrackedSocketModule:
    """代替 data_source 中的 socket 模块，记录创建的每个套接字"""

    def __init__(self):
        self.created = []

    def __getattr__(self, name):
        return getattr(socket, name)

    def socket(self, *args, **kwargs):
        sock = socket.socket(*args, **kwargs)
        self.created.append(sock)
        return sock


@pytest.fixture
def tracked_sockets(monkeypatch):
    tracker = _TrackedSocketModule()
    monkeypatch.setattr(data_source, "socket", tracker)
    return tracker.created


def _assert_all_closed(created):
    assert created
    assert all(sock.fileno() == -1 for sock in created)


def test_java_closes_socket_on_success(java_server, tracked_sockets):
    _, port = java_server({"version": {"name": "1.20.1", "protocol": 763}})
    MineStat("127.0.0.1", port, timeout=2).json_query()

    _assert_all_closed(tracked_sockets)


def test_java_closes_socket_on_invalid_payload(java_server, tracked_sockets):
    _, port = java_server(reply=pack_varint(0) + pack_varint(5) + b"nope!")
    with pytest.raises(ProbeError):
        MineStat("127.0.0.1", port, timeout=2).json_query()

    _assert_all_closed(tracked_sockets)


def test_java_closes_socket_on_timeout(silent_port, tracked_sockets):
    with pytest.raises(ProbeError):
        MineStat("127.0.0.1", silent_port, timeout=0.3).json_query()

    _assert_all_closed(tracked_sockets)


def test_java_closes_socket_on_refusal(closed_port, tracked_sockets):
    with pytest.raises(ProbeError):
        MineStat("127.0.0.1", closed_port, timeout=2).json_query()

    _assert_all_closed(tracked_sockets)


def test_bedrock_closes_socket_on_success(bedrock_server, tracked_sockets):
    _, port = bedrock_server("MCPE;Server;594;1.20.10;0;10;1;;Survival;1;")
    MineStat("127.0.0.1", port, timeout=2).bedrock_raknet_query()

    _assert_all_closed(tracked_sockets)


def test_bedrock_closes_socket_on_timeout(tracked_sockets):
    listener = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    listener.bind(("127.0.0.1", 0))
    try:
        with pytest.raises(ProbeError):
            MineStat("127.0.0.1", listener.getsockname()[1], timeout=0.3).bedrock_raknet_query()
    finally:
        listener.close()

    _assert_all_closed(tracked_sockets)
