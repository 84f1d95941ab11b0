"""
配置加载模块

从 config.yaml 加载配置，支持 Pydantic 验证和环境变量覆盖。
YAML 中使用 camelCase 键名，代码中使用 snake_case 属性。
"""

import os
from enum import Enum
from pathlib import Path
from typing import List, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .models import ServiceKind

DEFAULT_CORE_URL = "https://dashboard.netman.digital"
MAXIMUM_FARMING_INFOS_CEILING = 100


class UpdateMode(str, Enum):
    """上报节流模式"""
    FAST = "fast"
    REGULAR = "regular"
    SLOW = "slow"


_UPDATE_INTERVALS = {
    UpdateMode.FAST: 10,
    UpdateMode.REGULAR: 20,
    UpdateMode.SLOW: 60,
}


def get_update_interval(mode: UpdateMode) -> int:
    """返回节流窗口（秒）"""
    return _UPDATE_INTERVALS.get(mode, _UPDATE_INTERVALS[UpdateMode.REGULAR])


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class LoggingConfig(_CamelModel):
    """日志配置"""
    level: str = "INFO"
    file: Optional[str] = None


class ApiConfig(_CamelModel):
    """本地状态 API 配置"""
    enabled: bool = False
    listen: str = "127.0.0.1:9119"
    token: Optional[str] = None

    @property
    def host(self) -> str:
        """获取监听主机"""
        return self.listen.split(":")[0]

    @property
    def port(self) -> int:
        """获取监听端口"""
        return int(self.listen.split(":")[1])


class SatelliteConfig(_CamelModel):
    """卫星进程配置（完整配置）"""

    api_key: Optional[str] = Field(default=None, description="Dashboard API Key")
    node_id: str = Field(default="", description="节点标识，出现在通知中")
    chia_config_directory: Optional[str] = Field(default=None, description="Chia config 目录")
    chia_daemon_address: Optional[str] = Field(default=None, description="守护进程地址覆盖")
    excluded_services: List[str] = Field(default_factory=list, description="不监控的服务")
    chia_dashboard_core_url: str = DEFAULT_CORE_URL

    response_time_sample_size: int = Field(default=100, ge=1)
    maximum_farming_infos: int = Field(default=20, ge=1)
    update_mode: UpdateMode = UpdateMode.REGULAR
    enable_compatibility_mode: Optional[bool] = None

    initial_wait_time_in_minutes: float = Field(default=5, ge=0)
    summary_report_interval: float = Field(default=60, ge=0, description="分钟，0 表示关闭")
    notify_timeout_in_minutes: float = Field(default=3, ge=0)
    stats_interval_seconds: float = Field(default=20, gt=0)
    running_services_interval_seconds: float = Field(default=60, gt=0)

    email_notifications_enabled: bool = False
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    sender_email: Optional[str] = None
    sender_password: Optional[str] = None
    recipient_email: Optional[str] = None

    line_notifications_enabled: bool = False
    line_notify_access_token: Optional[str] = None

    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)

    @field_validator("maximum_farming_infos")
    @classmethod
    def _cap_farming_infos(cls, value: int) -> int:
        return min(value, MAXIMUM_FARMING_INFOS_CEILING)

    @field_validator("update_mode", mode="before")
    @classmethod
    def _fallback_update_mode(cls, value):
        # 未知模式按 regular 处理
        if isinstance(value, UpdateMode):
            return value
        if value not in [m.value for m in UpdateMode]:
            return UpdateMode.REGULAR
        return value

    @property
    def compatibility_mode(self) -> bool:
        """未显式配置时，非默认 Dashboard 地址启用兼容模式"""
        if self.enable_compatibility_mode is not None:
            return self.enable_compatibility_mode
        return self.chia_dashboard_core_url != DEFAULT_CORE_URL

    @property
    def update_interval(self) -> int:
        return get_update_interval(self.update_mode)

    @property
    def enabled_services(self) -> List[ServiceKind]:
        """按固定顺序返回启用的服务（未知名称忽略）"""
        excluded = set(self.excluded_services or [])
        return [kind for kind in ServiceKind if kind.value not in excluded]


def default_config_path() -> Path:
    return Path.home() / ".config" / "chia-dashboard-satellite" / "config.yaml"


def load_config(config_path: Optional[str] = None) -> SatelliteConfig:
    """
    加载配置文件

    优先级：
    1. 参数指定的路径
    2. 环境变量 DASHBOARD_SATELLITE_CONFIG
    3. 默认路径 ~/.config/chia-dashboard-satellite/config.yaml

    Raises:
        FileNotFoundError: 配置文件不存在
    """
    if config_path is None:
        config_path = os.environ.get("DASHBOARD_SATELLITE_CONFIG", str(default_config_path()))

    config_file = Path(config_path).expanduser()
    if not config_file.exists():
        raise FileNotFoundError(f"Config file not found: {config_file}")

    with open(config_file, "r", encoding="utf-8") as f:
        raw_config = yaml.safe_load(f) or {}

    return SatelliteConfig(**raw_config)


# 全局配置实例（延迟加载）
_config: Optional[SatelliteConfig] = None


def get_config(config_path: Optional[str] = None) -> SatelliteConfig:
    """获取全局配置实例（单例模式）"""
    global _config
    if _config is None:
        _config = load_config(config_path)
    return _config


def reset_config():
    """重置配置（主要用于测试）"""
    global _config
    _config = None
