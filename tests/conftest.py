"""
测试公共夹具

- config: 关闭初始等待与兼容模式的默认配置
- context: 记录每次上报内容的聚合上下文
- daemon: AsyncMock 构造的守护进程客户端
"""

import logging
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock, MagicMock

import pytest

# 添加项目路径到 sys.path
sys.path.insert(0, str(Path(__file__).parent.parent))

from dashboard_satellite.config import SatelliteConfig, reset_config
from dashboard_satellite.context import AggregationContext


@pytest.fixture(scope="session", autouse=True)
def setup_logging():
    logging.basicConfig(level=logging.DEBUG)


@pytest.fixture(autouse=True)
def _reset_global_config():
    yield
    reset_config()


@pytest.fixture
def config():
    return SatelliteConfig(
        node_id="node-1",
        initial_wait_time_in_minutes=0,
        enable_compatibility_mode=False,
    )


@pytest.fixture
def sent():
    """上报内容记录"""
    return []


@pytest.fixture
def notifier():
    notifier = MagicMock()
    notifier.notify = AsyncMock()
    return notifier


@pytest.fixture
def context(config, sent, notifier):
    async def transmit(payload):
        sent.append(payload)

    ctx = AggregationContext(config, transmit, notifier=notifier)
    yield ctx
    ctx.close()


@pytest.fixture
def daemon():
    daemon = MagicMock()
    daemon.connected = True
    daemon.is_running = AsyncMock(return_value=True)
    daemon.get_blockchain_state = AsyncMock(return_value={})
    daemon.get_connections = AsyncMock(return_value=[])
    daemon.get_wallets = AsyncMock(return_value=[])
    daemon.get_wallet_balance = AsyncMock(return_value={})
    daemon.get_wallet_sync_status = AsyncMock(return_value={})
    daemon.get_wallet_height = AsyncMock(return_value=None)
    daemon.get_farmed_amount = AsyncMock(return_value={})
    daemon.get_logged_in_fingerprint = AsyncMock(return_value=None)
    daemon.get_public_keys = AsyncMock(return_value=[])
    daemon.log_in = AsyncMock()
    daemon.get_plots = AsyncMock(return_value=[])
    return daemon


class FakeClock:
    """可手动推进的时钟"""

    def __init__(self, start=None):
        self.now = start or datetime(2024, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now = self.now + timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock():
    return FakeClock()
