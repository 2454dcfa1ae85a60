import math
import time
from collections.abc import Callable
from dataclasses import dataclass

from cachetools import TTLCache


@dataclass
class RateLimitResult:
    allowed: bool
    limit: int
    remaining: int
    reset_after: float
    """距离窗口重置的秒数"""

    def headers(self) -> dict[str, str]:
        headers = {
            "RateLimit-Limit": str(self.limit),
            "RateLimit-Remaining": str(self.remaining),
            "RateLimit-Reset": str(math.ceil(self.reset_after)),
        }
        if not self.allowed:
            headers["Retry-After"] = headers["RateLimit-Reset"]
        return headers


class RateLimiter:
    """
    固定窗口速率限制

    每个客户端的窗口在第一次请求时开始，窗口过期后由 TTLCache 自动清除。
    """

    def __init__(
        self,
        window_ms: int,
        max_requests: int,
        maxsize: int = 100_000,
        timer: Callable[[], float] = time.monotonic,
    ) -> None:
        self.window = window_ms / 1000
        self.max_requests = max_requests
        self.timer = timer
        # 计数在原列表上修改，不会刷新条目的过期时间
        self._hits: TTLCache[str, list] = TTLCache(
            maxsize=maxsize, ttl=self.window, timer=timer
        )

    def hit(self, key: str) -> RateLimitResult:
        now = self.timer()
        entry = self._hits.get(key)
        if entry is None:
            entry = [0, now + self.window]
            self._hits[key] = entry
        entry[0] += 1

        return RateLimitResult(
            allowed=entry[0] <= self.max_requests,
            limit=self.max_requests,
            remaining=max(self.max_requests - entry[0], 0),
            reset_after=max(entry[1] - now, 0),
        )
