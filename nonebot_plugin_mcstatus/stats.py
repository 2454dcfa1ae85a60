import os
from datetime import datetime, timezone
from typing import Protocol

import ujson
from nonebot import logger

from .models import Edition


class CallCounter(Protocol):
    """调用次数统计，由路由注入，查询流程本身不会访问它"""

    def record(self, edition: Edition) -> None: ...

    def snapshot(self) -> dict: ...


class JsonCallCounter:
    """
    以 JSON 文件保存的调用次数统计

    :param path: 统计文件路径，目录不存在时会在第一次写入时创建
    """

    def __init__(self, path: str) -> None:
        self.path = path
        self.data = {
            "total": 0,
            "java": 0,
            "bedrock": 0,
            "since": datetime.now(timezone.utc).isoformat(timespec="seconds"),
        }
        self._load()

    def _load(self) -> None:
        if not os.path.exists(self.path):
            return
        try:
            with open(self.path, encoding="utf-8") as f:
                stored = ujson.loads(f.read())
        except (OSError, ujson.JSONDecodeError) as e:
            logger.warning(f"Ignoring unreadable stats file {self.path}: {e}")
            return
        if isinstance(stored, dict):
            self.data.update(
                {key: stored[key] for key in self.data if key in stored}
            )

    def _save(self) -> None:
        directory = os.path.dirname(self.path)
        if directory:
            os.makedirs(directory, exist_ok=True)
        tmp_path = f"{self.path}.tmp"
        with open(tmp_path, "w", encoding="utf-8") as f:
            f.write(ujson.dumps(self.data, indent=2))
        os.replace(tmp_path, self.path)

    def record(self, edition: Edition) -> None:
        self.data["total"] += 1
        self.data[edition.name.lower()] += 1
        try:
            self._save()
        except OSError as e:
            logger.error(f"Failed to write stats file {self.path}: {e}")

    def snapshot(self) -> dict:
        return dict(self.data)
