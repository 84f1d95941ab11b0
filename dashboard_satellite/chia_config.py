"""
读取 Chia 节点自身的 config.yaml

解析守护进程地址以及客户端证书路径。
"""

import logging
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_DIRECTORY = Path.home() / ".chia" / "mainnet" / "config"


class ChiaConfig:
    def __init__(self, config_directory: Optional[str] = None):
        self.config_directory = Path(config_directory).expanduser() if config_directory else DEFAULT_CONFIG_DIRECTORY
        self.config: Dict[str, Any] = {}

    @property
    def root_directory(self) -> Path:
        return self.config_directory.parent

    @property
    def config_file_path(self) -> Path:
        return self.config_directory / "config.yaml"

    def load(self) -> Dict[str, Any]:
        with open(self.config_file_path, "r", encoding="utf-8") as f:
            self.config = yaml.safe_load(f) or {}
        logger.info(f"Loaded chia config from {self.config_file_path}")
        return self.config

    @property
    def daemon_address(self) -> str:
        host = self.config.get("self_hostname", "localhost")
        port = self.config.get("daemon_port", 55400)
        return f"wss://{host}:{port}"

    def _resolve(self, relative: str) -> Path:
        path = Path(relative)
        return path if path.is_absolute() else self.root_directory / path

    @property
    def daemon_ssl_cert_file(self) -> Path:
        daemon_ssl = self.config.get("daemon_ssl") or {}
        return self._resolve(daemon_ssl.get("private_crt", "config/ssl/daemon/private_daemon.crt"))

    @property
    def daemon_ssl_key_file(self) -> Path:
        daemon_ssl = self.config.get("daemon_ssl") or {}
        return self._resolve(daemon_ssl.get("private_key", "config/ssl/daemon/private_daemon.key"))
