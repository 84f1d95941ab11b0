"""
本地状态接口

- GET /v1/health: 无需认证
- GET /v1/snapshot: 所有服务的当前快照
- GET /v1/services: 各服务启用/运行状态
"""

import logging
from typing import Optional

from fastapi import Depends, FastAPI, Header, HTTPException

from . import __version__
from .context import AggregationContext
from .models import ServiceKind

logger = logging.getLogger(__name__)


def create_app(context: AggregationContext, daemon=None) -> FastAPI:
    """
    创建 FastAPI 应用实例

    Args:
        context: 聚合上下文
        daemon: 守护进程客户端（用于报告连接状态）
    """
    app = FastAPI(
        title="Dashboard Satellite",
        version=__version__,
        description="Chia 节点监控卫星本地状态接口",
    )

    def verify_token(authorization: Optional[str] = Header(None)) -> bool:
        """
        验证 Token

        Raises:
            HTTPException: Token 缺失或无效时返回 401
        """
        if not authorization:
            raise HTTPException(status_code=401, detail="Missing authorization header")

        parts = authorization.split()
        if len(parts) != 2 or parts[0].lower() != "bearer":
            raise HTTPException(status_code=401, detail="Invalid authorization header format")

        if parts[1] != context.config.api.token:
            raise HTTPException(status_code=401, detail="Invalid token")

        return True

    @app.get("/v1/health")
    async def health():
        return {
            "status": "ok",
            "version": __version__,
            "daemonConnected": bool(daemon is not None and daemon.connected),
            "transmissions": context.dispatcher.transmissions,
        }

    @app.get("/v1/snapshot")
    async def snapshot(authorized: bool = Depends(verify_token)):
        return {kind.value: context.store.get(kind) for kind in ServiceKind if context.store.has(kind)}

    @app.get("/v1/services")
    async def services(authorized: bool = Depends(verify_token)):
        return {
            kind.value: {"enabled": state.enabled, "running": state.running}
            for kind, state in context.runtime.items()
        }

    return app
