import asyncio
import re
import socket
import time
import traceback

import dns.asyncresolver
import dns.exception
import idna
from nonebot import logger

from .configs import API_VERSION, dns_timeout, timeout
from .data_source import MineStat
from .models import (
    AddressSpec,
    BedrockStatus,
    Debug,
    Edition,
    ErrorInfo,
    JavaStatus,
    ParseError,
    ResolutionError,
    ResolutionResult,
    StatusError,
    StatusReport,
)
from .motd import is_animated_motd

VERSION_PATTERN = re.compile(r"^([^0-9]+)?\s*([0-9.\-]+.*)$")


def handle_exception(e: BaseException) -> str:
    error_message = str(e) or e.__class__.__name__
    logger.error(traceback.format_exc())
    return error_message


def parse_address(address: str, edition: Edition) -> AddressSpec:
    """
    解析服务器地址（可选端口）。

    支持 `host`、`host:port`、`[IPv6]`、`[IPv6]:port`，以及全角冒号分隔的端口。
    含有多个冒号且没有方括号的地址视为裸 IPv6 地址，不会被拆分。

    :params address: 服务器地址，可能包含端口。
    :params edition: 服务器版本，决定默认端口。

    :returns: AddressSpec
    :raises ParseError: 端口不是 1-65535 之间的整数，或主机名为空
    """
    address = address.strip().replace("：", ":")

    if match := re.fullmatch(r"\[([^\]]*)\](?::(.*))?", address):
        host, port_part = match[1], match[2]
    elif address.count(":") > 1:
        host, port_part = address, None
    elif ":" in address:
        host, _, port_part = address.rpartition(":")
    else:
        host, port_part = address, None

    if port_part is None:
        port = edition.default_port
    elif port_part.isascii() and port_part.isdigit() and 1 <= int(port_part) <= 65535:
        port = int(port_part)
    else:
        raise ParseError(
            ParseError.INVALID_PORT,
            "Invalid port number. Must be between 1 and 65535",
        )

    if not host:
        raise ParseError(ParseError.INVALID_HOST, "Invalid server address")

    return AddressSpec(
        host=host, port=port, edition=edition, explicit_port=port_part is not None
    )


def fallback_address(address: str, edition: Edition) -> tuple[str, int]:
    """地址无法解析时，报告中回显的 ip 与端口"""
    address = address.strip().replace("：", ":")
    if match := re.fullmatch(r"\[([^\]]*)\](?::(.*))?", address):
        ip, port_part = match[1] or address, match[2]
    else:
        pieces = address.split(":")
        ip, port_part = pieces[0] or address, pieces[1] if len(pieces) > 1 else None
    try:
        port = int(port_part or 0)
    except ValueError:
        port = 0
    return ip, port if port > 0 else edition.default_port


def is_domain(address: str) -> bool:
    """
    判断给定的地址是否为域名。

    :params address: 需要验证的地址。

    :returns: 如果地址为域名则返回True，否则返回False。
    """
    try:
        punycode_address = encode_host(address, strict=True)
    except idna.IDNAError:
        return False

    domain_pattern = re.compile(
        r"^(?!-)(?:[A-Za-z0-9-]{1,63}\.)+(?:[A-Za-z]{2,}|xn--[A-Za-z0-9-]{2,})\.?$|^(localhost)$"
    )
    return bool(domain_pattern.match(punycode_address))


def is_ipv4(address: str) -> bool:
    """
    判断给定的地址是否为IPv4地址。

    :params address: 需要验证的地址。

    :returns: 如果地址为IPv4地址则返回True，否则返回False。
    """
    ipv4_pattern = re.compile(r"^\d{1,3}\.\d{1,3}\.\d{1,3}\.\d{1,3}$")
    if not ipv4_pattern.match(address):
        return False

    parts = address.split(".")
    return all(part.isdigit() and 0 <= int(part) <= 255 for part in parts)


def encode_host(host: str, strict: bool = False) -> str:
    """将国际化域名转换为 punycode，非域名原样返回"""
    try:
        return idna.encode(host, uts46=True).decode("utf-8")
    except idna.IDNAError:
        if strict:
            raise
        return host


def _get_resolver(lifetime: float) -> dns.asyncresolver.Resolver:
    resolver = dns.asyncresolver.Resolver()
    resolver.timeout = lifetime
    resolver.lifetime = lifetime
    return resolver


async def resolve_srv(domain: str, lifetime: float = dns_timeout) -> tuple[str, int] | None:
    """
    查询 `_minecraft._tcp.<domain>` SRV 记录

    SRV 记录不存在、查询超时或没有可用的 DNS 服务器都不算错误，返回 None。

    :returns: (目标主机, 端口) 或 None
    """
    try:
        srv_response = await _get_resolver(lifetime).resolve(
            f"_minecraft._tcp.{encode_host(domain)}", "SRV"
        )
    except dns.exception.DNSException as e:
        logger.debug(f"SRV lookup for {domain} failed: {e.__class__.__name__}")
        return None

    for rdata in srv_response:
        target = str(rdata.target).rstrip(".")  # type: ignore
        port = int(rdata.port)  # type: ignore
        # "." 或端口 0 表示该服务在此域名下不可用
        if target and port:
            return target, port
    return None


async def resolve_a(domain: str, lifetime: float = dns_timeout) -> str | None:
    """查询 A 记录，返回第一个 IPv4 地址"""
    try:
        response = await _get_resolver(lifetime).resolve(encode_host(domain), "A")
    except dns.exception.DNSException as e:
        logger.debug(f"A lookup for {domain} failed: {e.__class__.__name__}")
        return None

    for rdata in response:
        return str(rdata.address)  # type: ignore
    return None


async def resolve_system(host: str, lifetime: float = dns_timeout) -> str | None:
    """
    通过系统解析器查询 IPv4 地址

    覆盖 DNS 查询不到的名称，例如 `localhost`、hosts 文件中的条目以及容器网络中的单标签主机名。
    """
    loop = asyncio.get_running_loop()
    try:
        addresses = await asyncio.wait_for(
            loop.getaddrinfo(
                encode_host(host), None, family=socket.AF_INET, type=socket.SOCK_STREAM
            ),
            lifetime,
        )
    except (OSError, ValueError, asyncio.TimeoutError) as e:
        logger.debug(f"System lookup for {host} failed: {e.__class__.__name__}")
        return None

    for _, _, _, _, sockaddr in addresses:
        return sockaddr[0]
    return None


async def resolve_address(spec: AddressSpec) -> ResolutionResult:
    """
    将地址解析为 IPv4 地址。

    Java 版先尝试 SRV 记录，命中时使用记录中的主机与端口；基岩版不查询 SRV。
    A 记录查询不到时再交给系统解析器。

    :params spec: 已解析的地址。

    :returns: ResolutionResult
    :raises ResolutionError: 主机名无法解析为 IPv4 地址
    """
    host, port = spec.host, spec.port
    srv_target = None

    if spec.edition is Edition.JAVA and not is_ipv4(host) and is_domain(host):
        if srv := await resolve_srv(host):
            srv_target, port = srv
            host = srv_target
            logger.debug(f"SRV record of {spec.host} points to {host}:{port}")

    if is_ipv4(host):
        resolved_ip = host
    elif ":" in host:
        # IPv6 地址，只支持 IPv4
        raise ResolutionError()
    elif not (resolved_ip := await resolve_a(host) or await resolve_system(host)):
        raise ResolutionError()

    return ResolutionResult(
        resolved_ip=resolved_ip,
        effective_port=port,
        srv_used=srv_target is not None,
        srv_target=srv_target,
    )


async def probe_server(
    spec: AddressSpec, resolution: ResolutionResult
) -> JavaStatus | BedrockStatus:
    """
    在线程中执行对应版本的状态查询。

    :raises ProbeError: 超时、拒绝连接或应答无法解析
    """
    ms = MineStat(
        resolution.resolved_ip,
        resolution.effective_port,
        timeout,
        refer=encode_host(resolution.srv_target or spec.host),
    )
    if spec.edition is Edition.JAVA:
        return await asyncio.to_thread(ms.json_query)
    return await asyncio.to_thread(ms.bedrock_raknet_query)


def split_version(version_name: str) -> tuple[str, str]:
    """
    从版本字符串中拆出服务端软件名与版本号，例如 `Paper 1.18.2`。

    :returns: (软件名, 版本号)，无法匹配时软件名为空，版本号为原字符串
    """
    if not (match := VERSION_PATTERN.match(version_name)):
        return "", version_name
    software = match[1].strip() if match[1] else ""
    version = match[2].strip() if match[2] else version_name
    return software, version


def _debug(edition: Edition, **kwargs) -> Debug:
    now = int(time.time())
    return Debug(
        bedrock=edition is Edition.BEDROCK,
        cachetime=now,
        cacheexpire=now,
        apiversion=API_VERSION,
        **kwargs,
    )


def offline_report(
    edition: Edition, message: str, ip: str, port: int, srv: bool = False
) -> StatusReport:
    """构建离线报告，所有可选字段均省略"""
    return StatusReport(
        ip=ip,
        port=port,
        online=False,
        debug=_debug(edition, srv=srv, error=ErrorInfo(message=message)),
    )


def build_report(
    address: str,
    resolution: ResolutionResult,
    status: JavaStatus | BedrockStatus,
) -> StatusReport:
    """
    将查询结果整理为对外的报告。

    :params address: 用户请求的原始地址。
    :params resolution: 解析结果。
    :params status: 查询结果。
    """
    animated = is_animated_motd(status.motd.raw)

    if isinstance(status, BedrockStatus):
        return StatusReport(
            ip=resolution.resolved_ip,
            port=resolution.effective_port,
            online=True,
            motd=status.motd,
            players=status.players,
            version=status.version_name,
            hostname=address,
            gamemode=status.gamemode,
            map=status.map,
            protocol=status.protocol_version,
            eula_blocked=False,
            debug=_debug(Edition.BEDROCK, animatedmotd=animated),
        )

    parsed_software, parsed_version = split_version(status.version_name)
    return StatusReport(
        ip=resolution.resolved_ip,
        port=resolution.effective_port,
        online=True,
        latency=status.latency,
        motd=status.motd,
        players=status.players,
        version=parsed_version,
        software=status.software or parsed_software,
        srv_record=resolution.srv_used,
        hostname=address,
        icon=status.favicon,
        protocol=status.protocol_version,
        eula_blocked=False,
        debug=_debug(
            Edition.JAVA,
            ping=True,
            srv=resolution.srv_used,
            animatedmotd=animated,
        ),
    )


async def get_status(address: str, edition: Edition) -> StatusReport:
    """
    查询服务器状态：解析地址 → 解析 DNS → 查询 → 整理结果。

    任何失败都会转换为 `online=False` 的报告，本函数不会抛出异常。

    :params address: 用户请求的地址，`host` 或 `host:port`。
    :params edition: 服务器版本。
    """
    try:
        spec = parse_address(address, edition)
    except ParseError as e:
        ip, port = fallback_address(address, edition)
        return offline_report(edition, e.message, ip, port)

    ip, port, srv = spec.host, spec.port, False
    try:
        resolution = await resolve_address(spec)
        ip, port, srv = (
            resolution.resolved_ip,
            resolution.effective_port,
            resolution.srv_used,
        )
        status = await probe_server(spec, resolution)
        return build_report(address, resolution, status)
    except StatusError as e:
        logger.info(f"{edition} {address} is offline: {e.message}")
        return offline_report(edition, e.message, ip, port, srv)
    except Exception as e:
        return offline_report(edition, handle_exception(e), ip, port, srv)
