import os

from .config import config as plugin_config


def readFile(file: str) -> str:
    with open(
        os.path.join(os.path.dirname(__file__), file), encoding="utf-8"
    ) as f:
        return f.read()


timeout = plugin_config.timeout
dns_timeout = plugin_config.dns_timeout
API_VERSION = 3
VERSION = "0.1.0"
