# minestat.py - A Minecraft server status checker
# Copyright (C) 2016-2023 Lloyd Dilley, Felix Ern (MindSolve)
# http://www.dilley.me/
#
# This program is free software; you can redistribute it and/or modify
# it under the terms of the GNU General Public License as published by
# the Free Software Foundation; either version 3 of the License, or
# (at your option) any later version.
#
# This program is distributed in the hope that it will be useful,
# but WITHOUT ANY WARRANTY; without even the implied warranty of
# MERCHANTABILITY or FITNESS FOR A PARTICULAR PURPOSE. See the
# GNU General Public License for more details.
#
# You should have received a copy of the GNU General Public License along
# with this program; if not, write to the Free Software Foundation, Inc.,
# 51 Franklin Street, Fifth Floor, Boston, MA 02110-1301 USA.
#
# 由于 wiki.vg 站点已关闭，现在你可以在
# https://minecraft.wiki/w/Minecraft_Wiki:Projects/wiki.vg_merge#Project_pages
# 找到原始内容的副本

import io
import socket
import struct
from time import perf_counter, time

import ujson

from .models import BedrockStatus, ConnStatus, JavaStatus, Motd, Players, ProbeError
from .motd import motd_strip_formatting, motd_to_legacy, parse_motd2html

RAKNET_MAGIC = bytes(
    [
        0x00,
        0xFF,
        0xFF,
        0x00,
        0xFE,
        0xFE,
        0xFE,
        0xFE,
        0xFD,
        0xFD,
        0xFD,
        0xFD,
        0x12,
        0x34,
        0x56,
        0x78,
    ]
)


class MineStat:
    DEFAULT_TIMEOUT = 5
    """默认超时时间（秒），连接与握手各自独立计时"""
    PING_PROTOCOL = 47
    """握手包中声明的协议版本，服务器会忽略它并返回自己的版本"""

    def __init__(
        self,
        address: str,
        port: int,
        timeout: float = DEFAULT_TIMEOUT,
        refer: str | None = None,
    ) -> None:
        """
        Minecraft 状态检查器，支持 Java 版 (SLP 1.7+) 和基岩版 (RakNet)

        :param address: 已解析的 IPv4 地址。
        :param port: 服务器端口。
        :param timeout: 每个阶段的超时时间。默认为 5 秒。
        :param refer: 握手包中发送的服务器地址。默认使用 address。
        """
        self.address: str = address
        """Minecraft 服务器的 IP 地址"""
        self.port: int = port
        """Minecraft 服务器接受连接的端口号"""
        self.timeout: float = timeout
        """套接字超时"""
        self.refer: str = address if refer is None else refer
        """握手包中的服务器地址"""
        self.latency: int | None = None
        """TCP 连接建立所用的时间（毫秒）"""
        self._deadline: float = 0

    def _connect(self, sock: socket.socket) -> None:
        start_time = perf_counter()
        sock.connect((self.address, self.port))
        self.latency = round((perf_counter() - start_time) * 1000)

    def _remaining(self) -> float:
        remaining = self._deadline - perf_counter()
        if remaining <= 0:
            raise TimeoutError
        return remaining

    def json_query(self) -> JavaStatus:
        """
        Method for querying a modern (MC Java >= 1.7) server with the SLP protocol.
        This protocol is based on encoded JSON, see the documentation at wiki.vg below
        for a full packet description.

        See https://wiki.vg/Server_List_Ping#Current

        :raises ProbeError: on timeout, refusal or an undecodable reply
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        sock.settimeout(self.timeout)

        try:
            try:
                self._connect(sock)
            except TimeoutError:
                raise ProbeError(
                    ConnStatus.TIMEOUT,
                    f"Timed out while connecting to {self.address}:{self.port}",
                ) from None
            except ConnectionRefusedError:
                raise ProbeError(
                    ConnStatus.REFUSED,
                    f"Connection refused by {self.address}:{self.port}",
                ) from None
            except OSError as e:
                raise ProbeError(ConnStatus.CONNFAIL, e.strerror or str(e)) from None

            # The handshake gets its own budget, shared by every send and receive
            self._deadline = perf_counter() + self.timeout
            try:
                payload_raw = self._handshake(sock)
            except TimeoutError:
                raise ProbeError(
                    ConnStatus.TIMEOUT, "Timed out while retrieving server status"
                ) from None
            except (ConnectionResetError, ConnectionAbortedError):
                raise ProbeError(
                    ConnStatus.UNKNOWN,
                    "Server closed the connection before sending a status response",
                ) from None
            except OSError as e:
                raise ProbeError(ConnStatus.CONNFAIL, e.strerror or str(e)) from None
        finally:
            sock.close()

        return self.__parse_json_payload(payload_raw)

    def _handshake(self, sock: socket.socket) -> bytearray:
        refer = self.refer.encode("utf8")

        # Construct Handshake packet
        req_data = bytearray([0x00])
        # Add protocol version
        req_data += self._pack_varint(self.PING_PROTOCOL)
        # Add server address length
        req_data += self._pack_varint(len(refer))
        # Server address. Encoded with UTF8
        req_data += refer
        # Server port
        req_data += struct.pack(">H", self.port)
        # Next packet state (1 for status, 2 for login)
        req_data += bytearray([0x01])

        # Prepend full packet length
        req_data = self._pack_varint(len(req_data)) + req_data

        sock.settimeout(self._remaining())
        sock.sendall(req_data)

        # Now send empty "Request" packet
        # varint len, 0x00
        sock.sendall(bytearray([0x01, 0x00]))

        # Receive answer: full packet length as varint
        packet_len = self._unpack_varint(sock)

        # Check if full packet length seems acceptable
        if packet_len < 3:
            raise ProbeError(ConnStatus.UNKNOWN, "Status response packet is too short")

        # Receive actual packet id
        packet_id = self._unpack_varint(sock)

        # Anything else than 0x00 is not a status response, usually a disconnect
        if packet_id != 0:
            raise ProbeError(
                ConnStatus.UNKNOWN,
                f"Expected status response packet 0x00, received 0x{packet_id:02x}",
            )

        # Receive & unpack payload length
        content_len = self._unpack_varint(sock)

        # Receive full payload
        return self._recv_exact(sock, content_len)

    def __parse_json_payload(self, payload_raw: bytes | bytearray) -> JavaStatus:
        """
        Helper method for parsing the modern JSON-based SLP protocol.

        :param payload_raw: The raw SLP payload, without header and string length
        """
        try:
            payload_obj = ujson.loads(payload_raw.decode("utf8"))
        except (UnicodeDecodeError, ujson.JSONDecodeError):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server returned an invalid status payload"
            ) from None
        if not isinstance(payload_obj, dict):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server returned an invalid status payload"
            )

        version = payload_obj.get("version") or {}
        players = payload_obj.get("players") or {}
        try:
            current_players = int(players.get("online", 0))
            max_players = int(players.get("max", 0))
            protocol_version = int(version.get("protocol", -1))
        except (TypeError, ValueError):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server returned an invalid player count"
            ) from None

        # The motd might be a string directly, not a json object
        description = payload_obj.get("description", "")
        raw_motd = motd_to_legacy(description)
        motd = Motd(
            raw=raw_motd,
            clean=motd_strip_formatting(raw_motd),
            html=parse_motd2html(description),
        )

        # Forge announces itself with one of these blocks, vanilla reports nothing
        software = payload_obj.get("software")
        if not isinstance(software, str) or not software:
            software = (
                "Forge"
                if "forgeData" in payload_obj or "modinfo" in payload_obj
                else None
            )

        favicon = payload_obj.get("favicon")

        return JavaStatus(
            motd=motd,
            players=Players(online=current_players, max=max_players),
            version_name=str(version.get("name", "")),
            protocol_version=protocol_version,
            favicon=favicon if isinstance(favicon, str) and favicon else None,
            software=software,
            latency=self.latency or 0,
        )

    def bedrock_raknet_query(self) -> BedrockStatus:
        """
        用于查询基岩版服务器（Minecraft PE、Windows 10 或教育版）的方法。
        该协议基于 RakNet 协议，只发送一次 Unconnected Ping 并等待一次应答。

        详见 https://wiki.vg/Raknet_Protocol#Unconnected_Ping

        :raises ProbeError: 超时、拒绝连接或应答无法解析
        """
        sock = socket.socket(socket.AF_INET, socket.SOCK_DGRAM, socket.IPPROTO_UDP)
        sock.settimeout(self.timeout)

        # Construct the `Unconnected_Ping` packet
        # Packet ID - 0x01
        req_data = bytearray([0x01])
        # current unix timestamp in ms as signed long (64-bit) BE-encoded
        req_data += struct.pack(">q", int(time() * 1000))
        # RakNet MAGIC (0x00ffff00fefefefefdfdfdfd12345678)
        req_data += RAKNET_MAGIC
        # Client GUID - as signed long (64-bit)
        req_data += struct.pack(">q", 0x02)

        # response packet:
        # byte - 0x1C - Unconnected Pong
        # long - timestamp
        # long - server GUID
        # 16 byte - magic
        # short - Server ID string length
        # string - Server ID string
        try:
            sock.connect((self.address, self.port))
            sock.send(req_data)
            response_buffer = sock.recv(4096)
        except TimeoutError:
            raise ProbeError(
                ConnStatus.TIMEOUT,
                f"Timed out while waiting for a reply from {self.address}:{self.port}",
            ) from None
        except ConnectionRefusedError:
            raise ProbeError(
                ConnStatus.REFUSED,
                f"Connection refused by {self.address}:{self.port}",
            ) from None
        except (ConnectionResetError, ConnectionAbortedError):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server closed the connection unexpectedly"
            ) from None
        except OSError as e:
            raise ProbeError(ConnStatus.CONNFAIL, e.strerror or str(e)) from None
        finally:
            sock.close()

        response_stream = io.BytesIO(response_buffer)

        # Response packet ID should always be 0x1c
        packet_id = response_stream.read(1)
        if packet_id != b"\x1c":
            raise ProbeError(
                ConnStatus.UNKNOWN,
                f"Expected unconnected pong packet 0x1c, received 0x{packet_id.hex() or '00'}",
            )

        # Skip response timestamp and server GUID
        response_stream.read(16)

        if response_stream.read(16) != RAKNET_MAGIC:
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server replied with an invalid RakNet magic"
            )

        try:
            (id_length,) = struct.unpack(">H", response_stream.read(2))
            response_id_string = response_stream.read(id_length).decode("utf8")
        except (struct.error, UnicodeDecodeError):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server returned an invalid bedrock status payload"
            ) from None

        return self.__parse_bedrock_payload(response_id_string)

    def __parse_bedrock_payload(self, payload_str: str) -> BedrockStatus:
        motd_index = [
            "edition",
            "motd_1",
            "protocol_version",
            "version",
            "current_players",
            "max_players",
            "server_uid",
            "motd_2",
            "gamemode",
            "gamemode_numeric",
            "port_ipv4",
            "port_ipv6",
        ]
        payload = dict(zip(motd_index, payload_str.split(";")))

        try:
            protocol_version = int(payload["protocol_version"])
            current_players = int(payload["current_players"])
            max_players = int(payload["max_players"])
        except (KeyError, ValueError):
            raise ProbeError(
                ConnStatus.UNKNOWN, "Server returned an invalid bedrock status payload"
            ) from None

        # 旧版 Bedrock 服务器不会返回第二行 MOTD 和游戏模式
        second_line = payload.get("motd_2") or None
        raw_motd = payload["motd_1"]
        if second_line:
            raw_motd += "\n" + second_line

        return BedrockStatus(
            motd=Motd(
                raw=raw_motd,
                clean=motd_strip_formatting(raw_motd),
                html=parse_motd2html(raw_motd),
            ),
            players=Players(online=current_players, max=max_players),
            version_name=payload["version"],
            protocol_version=protocol_version,
            edition=payload["edition"] or None,
            gamemode=payload.get("gamemode") or None,
            map=second_line,
        )

    def _unpack_varint(self, sock: socket.socket) -> int:
        """Small helper method for unpacking an int from an varint (streamed from socket)."""
        data = 0
        for i in range(5):
            byte = self._recv_exact(sock, 1)[0]
            data |= (byte & 0x7F) << 7 * i

            if not byte & 0x80:
                return data

        raise ProbeError(ConnStatus.UNKNOWN, "VarInt is too big")

    @staticmethod
    def _pack_varint(data: int) -> bytes:
        """Small helper method for packing a varint from an int."""
        ordinal = b""

        while True:
            byte = data & 0x7F
            data >>= 7
            ordinal += struct.pack("B", byte | (0x80 if data > 0 else 0))

            if data == 0:
                break

        return ordinal

    def _recv_exact(self, sock: socket.socket, size: int) -> bytearray:
        """
        Helper function for receiving a specific amount of data before the handshake deadline.
        Throws a ConnectionAbortedError if the connection was closed while waiting for data.

        :param sock: Open socket to receive data from
        :param size: Amount of bytes of data to receive
        :return: bytearray with the received data
        """
        data = bytearray()

        while len(data) < size:
            sock.settimeout(self._remaining())
            if temp_data := sock.recv(size - len(data)):
                data += temp_data
            else:
                raise ConnectionAbortedError

        return data
