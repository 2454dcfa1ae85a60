from nonebot.plugin import get_plugin_config
from pydantic import BaseModel, Field


class ScopedConfig(BaseModel):
    timeout: float = Field(default=5)
    """TCP 连接、握手以及 UDP 查询各自的超时时间（秒）"""
    dns_timeout: float = Field(default=5)
    """单次 DNS 查询（SRV 或 A 记录）的超时时间（秒）"""
    rate_limit_window_ms: int = Field(default=60000)
    """速率限制窗口长度（毫秒）"""
    rate_limit_max: int = Field(default=100)
    """每个窗口内单个客户端允许的请求数"""
    trust_proxy: bool = Field(default=False)
    """是否信任 X-Forwarded-For 头中的客户端地址"""
    cors_origins: list[str] = Field(default_factory=lambda: ["*"])
    """允许跨域的来源"""
    stats_file: str = Field(default="data/mcstatus/stats.json")
    """调用次数统计文件"""
    log_file: str | None = Field(default=None)
    """请求日志文件，为空时只输出到控制台"""
    log_rotation: str = Field(default="00:00")
    """日志文件轮转条件，参见 loguru 的 rotation 参数"""
    log_retention: str = Field(default="14 days")
    """日志文件保留时长"""
    timezone: str = Field(default="Asia/Shanghai")
    """请求日志所使用的时区"""


class Config(BaseModel):
    mcs: ScopedConfig = Field(default_factory=ScopedConfig)
    """MCStatus API Config"""


config: ScopedConfig = get_plugin_config(Config).mcs
