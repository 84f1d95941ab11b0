"""
节流合并上报

状态机：
    IDLE --request--> 立即发送, WINDOW_OPEN
    WINDOW_OPEN --request--> PENDING_TRAILING
    PENDING_TRAILING --request--> PENDING_TRAILING
    窗口结束: PENDING_TRAILING -> 发送并重新开窗 (WINDOW_OPEN)
              WINDOW_OPEN -> IDLE

窗口内的更新都已合并进 PendingDelta，发送时一次性取出并清空；
发送过程中产生的新差量进入下一批。
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, Set

from .models import Payload
from .store import PendingDelta

logger = logging.getLogger(__name__)


class DispatcherState(str, Enum):
    IDLE = "idle"
    WINDOW_OPEN = "window_open"
    PENDING_TRAILING = "pending_trailing"


class CoalescingDispatcher:
    """带 leading + trailing 语义的节流发送器"""

    def __init__(
        self,
        pending: PendingDelta,
        transmit: Callable[[Payload], Awaitable[None]],
        window: float,
    ):
        self._pending = pending
        self._transmit = transmit
        self.window = window
        self._state = DispatcherState.IDLE
        self._timer: Optional[asyncio.TimerHandle] = None
        self._in_flight: Set[asyncio.Task] = set()
        self.transmissions = 0

    @property
    def state(self) -> DispatcherState:
        return self._state

    def request(self):
        """请求一次上报（必须在事件循环中调用）"""
        if self._state == DispatcherState.IDLE:
            self._flush()
            self._open_window()
        elif self._state == DispatcherState.WINDOW_OPEN:
            self._state = DispatcherState.PENDING_TRAILING

    def _open_window(self):
        loop = asyncio.get_running_loop()
        self._state = DispatcherState.WINDOW_OPEN
        self._timer = loop.call_later(self.window, self._on_window_closed)

    def _on_window_closed(self):
        self._timer = None
        if self._state == DispatcherState.PENDING_TRAILING:
            self._flush()
            self._open_window()
        else:
            self._state = DispatcherState.IDLE

    def _flush(self):
        payload = self._pending.take()
        if not payload:
            logger.debug("Nothing pending, skipping transmission")
            return
        self.transmissions += 1
        task = asyncio.get_running_loop().create_task(self._send(payload))
        self._in_flight.add(task)
        task.add_done_callback(self._in_flight.discard)

    async def _send(self, payload: Payload):
        try:
            await self._transmit(payload)
            logger.debug(f"Transmitted update for {', '.join(payload.keys())}")
        except Exception as e:
            # 尽力而为：不重试，下一次发送会携带更新的状态
            logger.error(f"Failed to transmit stats update: {e}")

    async def drain(self):
        """等待所有进行中的发送完成"""
        if self._in_flight:
            await asyncio.gather(*list(self._in_flight), return_exceptions=True)

    def close(self):
        if self._timer is not None:
            self._timer.cancel()
            self._timer = None
        self._state = DispatcherState.IDLE
