"""
Chia 守护进程客户端

通过 WebSocket（客户端证书）连接守护进程：
- 请求/响应：按 request_id 关联
- 推送事件：按 (origin, command) 分发给订阅的处理函数
"""

import asyncio
import json
import logging
import ssl
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple

import aiohttp

from .models import ServiceKind

logger = logging.getLogger(__name__)

DAEMON_DESTINATION = "daemon"
UI_SERVICE = "wallet_ui"
LEGACY_PLOTTER_SERVICE = "chia plots create"

EventHandler = Callable[[Any], Awaitable[None]]


class DaemonError(Exception):
    """守护进程返回 success: false"""


class DaemonEvent:
    """推送事件：(origin, command) 以及从 data 中取出负载的键"""
    BLOCKCHAIN_STATE = ("chia_full_node", "get_blockchain_state", "blockchain_state")
    CONNECTIONS = ("chia_full_node", "get_connections", "connections")
    NEW_SIGNAGE_POINT = ("chia_farmer", "new_signage_point", "signage_point")
    NEW_FARMING_INFO = ("chia_farmer", "new_farming_info", "farming_info")
    PLOTTING_QUEUE = ("chia_plotter", "state_changed", "queue")


class DaemonClient:
    """守护进程 WebSocket 客户端"""

    def __init__(
        self,
        address: str,
        cert_file: Optional[str] = None,
        key_file: Optional[str] = None,
        origin: str = "chia-dashboard-satellite",
        timeout: float = 120.0,
    ):
        self.address = address
        self.cert_file = cert_file
        self.key_file = key_file
        self.origin = origin
        self.timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._ws: Optional[aiohttp.ClientWebSocketResponse] = None
        self._reader_task: Optional[asyncio.Task] = None
        self._pending: Dict[str, asyncio.Future] = {}
        self._handlers: Dict[Tuple[str, str], List[Tuple[str, EventHandler]]] = {}

    @property
    def connected(self) -> bool:
        return self._ws is not None and not self._ws.closed

    def _ssl_context(self) -> ssl.SSLContext:
        context = ssl.create_default_context()
        # 守护进程使用节点自签名 CA
        context.check_hostname = False
        context.verify_mode = ssl.CERT_NONE
        if self.cert_file and self.key_file:
            context.load_cert_chain(str(self.cert_file), str(self.key_file))
        return context

    async def connect(self):
        """
        建立连接并注册为 UI 服务以接收推送

        Raises:
            OSError: 连接失败
        """
        session = aiohttp.ClientSession(connector=aiohttp.TCPConnector(ssl=self._ssl_context()))
        try:
            self._ws = await session.ws_connect(self.address, max_msg_size=0, heartbeat=30)
        except (aiohttp.ClientError, asyncio.TimeoutError, ssl.SSLError, OSError) as e:
            await session.close()
            raise OSError(f"Connection to daemon failed: {e}") from e

        self._session = session
        self._reader_task = asyncio.get_running_loop().create_task(self._read_loop())
        for service in (UI_SERVICE, LEGACY_PLOTTER_SERVICE):
            await self.request(DAEMON_DESTINATION, "register_service", {"service": service}, origin=service)
        logger.info(f"Connected to daemon at {self.address}")

    async def close(self):
        if self._reader_task is not None:
            self._reader_task.cancel()
            self._reader_task = None
        if self._ws is not None:
            await self._ws.close()
            self._ws = None
        if self._session is not None:
            await self._session.close()
            self._session = None

    # -------------------------------------------------------------------------
    # 推送订阅
    # -------------------------------------------------------------------------

    def on(self, event: Tuple[str, str, str], handler: EventHandler):
        origin, command, key = event
        self._handlers.setdefault((origin, command), []).append((key, handler))

    async def _read_loop(self):
        try:
            async for msg in self._ws:
                if msg.type == aiohttp.WSMsgType.TEXT:
                    await self._handle_message(json.loads(msg.data))
                elif msg.type in (aiohttp.WSMsgType.CLOSED, aiohttp.WSMsgType.ERROR):
                    break
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Daemon connection error: {e}")
        finally:
            for future in self._pending.values():
                if not future.done():
                    future.set_exception(ConnectionError("Daemon connection closed"))
            self._pending.clear()
            logger.warning("Daemon connection closed")

    async def _handle_message(self, message: Dict[str, Any]):
        future = self._pending.pop(message.get("request_id"), None)
        if future is not None:
            if not future.done():
                future.set_result(message.get("data") or {})
            return

        handlers = self._handlers.get((message.get("origin"), message.get("command")), [])
        data = message.get("data") or {}
        for key, handler in handlers:
            await handler(data.get(key))

    # -------------------------------------------------------------------------
    # 请求/响应
    # -------------------------------------------------------------------------

    async def request(
        self,
        destination: str,
        command: str,
        data: Optional[Dict[str, Any]] = None,
        origin: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        发送请求并等待响应

        Raises:
            ConnectionError: 未连接或连接中断
            DaemonError: 响应 success 为 false
            asyncio.TimeoutError: 超时
        """
        if not self.connected:
            raise ConnectionError("Not connected to daemon")
        request_id = uuid.uuid4().hex
        future = asyncio.get_running_loop().create_future()
        self._pending[request_id] = future
        await self._ws.send_json({
            "command": command,
            "ack": False,
            "data": data or {},
            "request_id": request_id,
            "destination": destination,
            "origin": origin or self.origin,
        })
        try:
            response = await asyncio.wait_for(future, timeout=self.timeout)
        finally:
            self._pending.pop(request_id, None)
        if response.get("success") is False:
            raise DaemonError(response.get("error") or f"{command} failed")
        return response

    # -------------------------------------------------------------------------
    # 各服务轮询接口
    # -------------------------------------------------------------------------

    async def is_running(self, kind: ServiceKind) -> bool:
        response = await self.request(DAEMON_DESTINATION, "is_running", {"service": kind.daemon_service})
        return bool(response.get("is_running"))

    async def get_blockchain_state(self) -> Dict[str, Any]:
        response = await self.request(ServiceKind.FULL_NODE.daemon_service, "get_blockchain_state")
        return response.get("blockchain_state") or {}

    async def get_connections(self, kind: ServiceKind) -> List[Dict[str, Any]]:
        response = await self.request(kind.daemon_service, "get_connections")
        return response.get("connections") or []

    async def get_wallets(self) -> List[Dict[str, Any]]:
        response = await self.request(ServiceKind.WALLET.daemon_service, "get_wallets")
        return response.get("wallets") or []

    async def get_wallet_balance(self, wallet_id: int) -> Dict[str, Any]:
        response = await self.request(ServiceKind.WALLET.daemon_service, "get_wallet_balance", {"wallet_id": wallet_id})
        return response.get("wallet_balance") or {}

    async def get_wallet_sync_status(self) -> Dict[str, Any]:
        return await self.request(ServiceKind.WALLET.daemon_service, "get_sync_status")

    async def get_wallet_height(self) -> Optional[int]:
        response = await self.request(ServiceKind.WALLET.daemon_service, "get_height_info")
        return response.get("height")

    async def get_farmed_amount(self) -> Dict[str, Any]:
        return await self.request(ServiceKind.WALLET.daemon_service, "get_farmed_amount")

    async def get_logged_in_fingerprint(self) -> Optional[int]:
        response = await self.request(ServiceKind.WALLET.daemon_service, "get_logged_in_fingerprint")
        return response.get("fingerprint")

    async def get_public_keys(self) -> List[int]:
        response = await self.request(ServiceKind.WALLET.daemon_service, "get_public_keys")
        return response.get("public_key_fingerprints") or []

    async def log_in(self, fingerprint: Optional[int]):
        await self.request(ServiceKind.WALLET.daemon_service, "log_in", {"fingerprint": fingerprint})

    async def get_plots(self) -> List[Dict[str, Any]]:
        response = await self.request(ServiceKind.HARVESTER.daemon_service, "get_plots")
        return response.get("plots") or []
