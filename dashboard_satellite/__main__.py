"""
主程序入口

使用方式:
    dashboard-satellite --config /path/to/config.yaml
    或
    python -m dashboard_satellite

启动后并发运行：
1. 启动流程 + 定时轮询循环
2. 本地状态接口（可选）
"""

import argparse
import asyncio
import logging
import sys
import uuid
from pathlib import Path
from typing import Optional

import uvicorn

from . import __version__
from .api import create_app
from .chia_config import ChiaConfig
from .config import SatelliteConfig, get_config
from .context import AggregationContext
from .controller import SatelliteController
from .daemon import DaemonClient
from .notifications import Notifier
from .publisher import DashboardPublisher

logger = logging.getLogger(__name__)

DAEMON_RECONNECT_SECONDS = 1
DAEMON_STARTUP_GRACE_SECONDS = 5


def setup_logging(config: SatelliteConfig):
    """配置日志"""
    log_format = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    level = getattr(logging, config.logging.level.upper(), logging.INFO)

    logging.basicConfig(
        level=level,
        format=log_format,
        handlers=[logging.StreamHandler(sys.stdout)]
    )

    if config.logging.file:
        log_path = Path(config.logging.file).expanduser()
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(str(log_path), encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(log_format))
        logging.getLogger().addHandler(file_handler)

    # 降低第三方库日志级别
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("aiohttp").setLevel(logging.WARNING)
    logging.getLogger("uvicorn").setLevel(logging.INFO)
    logging.getLogger("uvicorn.access").setLevel(logging.WARNING)


def create_daemon_client(config: SatelliteConfig) -> DaemonClient:
    """根据 Chia 节点配置创建守护进程客户端"""
    chia_config = ChiaConfig(config.chia_config_directory)
    chia_config.load()
    return DaemonClient(
        address=config.chia_daemon_address or chia_config.daemon_address,
        cert_file=str(chia_config.daemon_ssl_cert_file),
        key_file=str(chia_config.daemon_ssl_key_file),
    )


async def connect_daemon(daemon: DaemonClient):
    """连接守护进程，直到成功；首次不可达时额外等待服务启动"""
    was_waiting = False
    while True:
        try:
            await daemon.connect()
            break
        except (OSError, ConnectionError, asyncio.TimeoutError) as e:
            if not was_waiting:
                logger.info(f"Waiting for daemon to be reachable ({e})")
            was_waiting = True
            await asyncio.sleep(DAEMON_RECONNECT_SECONDS)

    if was_waiting:
        await asyncio.sleep(DAEMON_STARTUP_GRACE_SECONDS)


async def run_api_server(context: AggregationContext, daemon: DaemonClient):
    """运行本地状态接口"""
    config = context.config
    app = create_app(context, daemon)

    server_config = uvicorn.Config(
        app=app,
        host=config.api.host,
        port=config.api.port,
        log_level="info",
        access_log=False
    )
    server = uvicorn.Server(server_config)
    await server.serve()


async def main(config_path: Optional[str] = None):
    """主函数：启动所有任务"""
    config = get_config(config_path)
    setup_logging(config)
    logger.info("=" * 60)
    logger.info(f"Dashboard Satellite v{__version__}")
    logger.info("=" * 60)
    logger.info(f"Dashboard: {config.chia_dashboard_core_url} (update mode: {config.update_mode.value})")

    origin_id = config.node_id or uuid.uuid4().hex
    publisher = DashboardPublisher(config.chia_dashboard_core_url, config.api_key)

    async def transmit(payload):
        await publisher.publish(origin_id, payload)

    context = AggregationContext(config, transmit, notifier=Notifier(config))
    daemon = create_daemon_client(config)
    controller = SatelliteController(context, daemon)

    try:
        await connect_daemon(daemon)

        tasks = [controller.run()]
        if config.api.enabled:
            logger.info(f"Local API listening on {config.api.listen}")
            tasks.append(run_api_server(context, daemon))
        await asyncio.gather(*tasks)
    except asyncio.CancelledError:
        logger.info("Tasks cancelled, shutting down...")
    except Exception as e:
        logger.error(f"Fatal error: {e}", exc_info=True)
        raise
    finally:
        context.close()
        await controller.stop()
        await context.drain()
        await daemon.close()
        await publisher.close()


def cli():
    """命令行入口"""
    parser = argparse.ArgumentParser(prog="dashboard-satellite", description="Chia Dashboard Satellite")
    parser.add_argument("--config", "-c", help="配置文件路径")
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    args = parser.parse_args()

    try:
        asyncio.run(main(args.config))
    except KeyboardInterrupt:
        print("\nShutdown requested, exiting...")
        sys.exit(0)
    except (FileNotFoundError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        print("Please create a config file, see README.md", file=sys.stderr)
        sys.exit(1)


if __name__ == "__main__":
    cli()
