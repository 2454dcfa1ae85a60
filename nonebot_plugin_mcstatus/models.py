from enum import Enum

from pydantic import BaseModel, ConfigDict, Field


class Edition(Enum):
    """服务器版本，值为该版本的默认端口"""

    def __str__(self) -> str:
        return str(self.name)

    JAVA = 25565
    """Java 版，TCP"""

    BEDROCK = 19132
    """基岩版，UDP (RakNet)"""

    @property
    def default_port(self) -> int:
        return self.value


class ConnStatus(Enum):
    """
    探测失败的分类
    - `SUCCESS`：请求和响应解析正常
    - `CONNFAIL`：无法建立套接字连接
    - `TIMEOUT`：连接或握手超时
    - `REFUSED`：目标端口拒绝连接
    - `UNKNOWN`：连接已建立，但服务器的响应无法解析
    """

    def __str__(self) -> str:
        return str(self.name)

    SUCCESS = 0
    CONNFAIL = -1
    TIMEOUT = -2
    UNKNOWN = -3
    REFUSED = -4


class StatusError(Exception):
    """所有可预期失败的基类，`message` 会原样写入报告的 debug.error"""

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message


class ParseError(StatusError):
    INVALID_PORT = "InvalidPort"
    INVALID_HOST = "InvalidHost"

    def __init__(self, kind: str, message: str) -> None:
        super().__init__(message)
        self.kind = kind


class ResolutionError(StatusError):
    def __init__(self, message: str = "Failed to resolve hostname") -> None:
        super().__init__(message)


class ProbeError(StatusError):
    def __init__(self, cause: ConnStatus, message: str) -> None:
        super().__init__(message)
        self.cause = cause


class AddressSpec(BaseModel):
    model_config = ConfigDict(frozen=True)

    host: str = Field(min_length=1)
    port: int = Field(ge=1, le=65535)
    edition: Edition
    explicit_port: bool = False
    """输入中是否显式给出了端口"""


class ResolutionResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    resolved_ip: str
    effective_port: int = Field(ge=1, le=65535)
    srv_used: bool = False
    srv_target: str | None = None
    """SRV 记录指向的主机名，握手时作为服务器地址发送"""


class Motd(BaseModel):
    raw: str = ""
    clean: str = ""
    html: str = ""


class Players(BaseModel):
    online: int = 0
    max: int = 0


class JavaStatus(BaseModel):
    motd: Motd
    players: Players
    version_name: str = ""
    protocol_version: int = -1
    favicon: str | None = None
    software: str | None = None
    latency: int = 0


class BedrockStatus(BaseModel):
    motd: Motd
    players: Players
    version_name: str = ""
    protocol_version: int = -1
    edition: str | None = None
    gamemode: str | None = None
    map: str | None = None


class ErrorInfo(BaseModel):
    message: str


class Debug(BaseModel):
    ping: bool = False
    query: bool = False
    bedrock: bool = False
    srv: bool = False
    animatedmotd: bool = False
    cachehit: bool = False
    cachetime: int = 0
    cacheexpire: int = 0
    apiversion: int = 3
    error: ErrorInfo | None = None


class StatusReport(BaseModel):
    """对外返回的唯一结构，失败时 `online` 为 False 且仅保留 ip/port/debug"""

    model_config = ConfigDict(populate_by_name=True)

    ip: str
    port: int
    online: bool = False
    latency: int | None = None
    motd: Motd | None = None
    players: Players | None = None
    version: str | None = None
    software: str | None = None
    srv_record: bool | None = Field(default=None, alias="srvRecord")
    hostname: str | None = None
    icon: str | None = None
    gamemode: str | None = None
    map: str | None = None
    protocol: int | None = None
    eula_blocked: bool | None = None
    debug: Debug = Field(default_factory=Debug)

    def to_json(self) -> dict:
        return self.model_dump(by_alias=True, exclude_none=True)
