"""
聚合上下文

启动时创建一次，显式传给所有组件；持有快照存储、待发送差量、
节流发送器、服务运行状态以及通知出口。
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Set

from .config import SatelliteConfig
from .dispatcher import CoalescingDispatcher
from .models import Partial, Payload, ServiceKind, Snapshot
from .store import PendingDelta, SnapshotStore

logger = logging.getLogger(__name__)


@dataclass
class ServiceRuntimeState:
    enabled: bool
    running: bool = False


class AggregationContext:
    """聚合层共享状态"""

    def __init__(
        self,
        config: SatelliteConfig,
        transmit: Callable[[Payload], Awaitable[None]],
        notifier=None,
    ):
        self.config = config
        self.compatibility_mode = config.compatibility_mode
        self.pending = PendingDelta()
        self.store = SnapshotStore(self.pending)
        self.dispatcher = CoalescingDispatcher(self.pending, transmit, config.update_interval)
        self.notifier = notifier

        enabled = set(config.enabled_services)
        self.runtime: Dict[ServiceKind, ServiceRuntimeState] = {
            kind: ServiceRuntimeState(enabled=kind in enabled) for kind in ServiceKind
        }
        self._tasks: Set[asyncio.Task] = set()

    def prime(self):
        """
        启动时调用一次

        - Plotter 只在有任务时才有状态，先清掉上次运行残留
        - 被排除的服务删除快照
        """
        self.pending.tombstone(ServiceKind.PLOTTER)
        for kind, state in self.runtime.items():
            if not state.enabled:
                self.store.delete(kind)
        logger.info(
            f"Enabled services: {', '.join(k.value for k in self.enabled_services) or 'none'} "
            f"(compatibility mode: {self.compatibility_mode})"
        )

    # -------------------------------------------------------------------------
    # 运行状态
    # -------------------------------------------------------------------------

    @property
    def enabled_services(self):
        return [kind for kind, state in self.runtime.items() if state.enabled]

    def is_enabled(self, kind: ServiceKind) -> bool:
        return self.runtime[kind].enabled

    def is_running(self, kind: ServiceKind) -> bool:
        return self.runtime[kind].running

    def set_running(self, kind: ServiceKind, running: bool):
        self.runtime[kind].running = running

    # -------------------------------------------------------------------------
    # 快照提交
    # -------------------------------------------------------------------------

    def commit(self, kind: ServiceKind, snapshot: Snapshot, partial: Optional[Partial], dispatch: bool = True):
        """
        原子地写入快照并登记差量

        兼容模式下每次都以完整快照替换待发送内容；
        否则 partial 为 None 表示无变化，不触发发送。
        """
        self.store.set(kind, snapshot)
        if self.compatibility_mode:
            self.pending.enqueue(kind, snapshot, replace=True)
        elif partial is not None:
            self.pending.enqueue(kind, partial)
        else:
            return
        if dispatch:
            self.dispatcher.request()

    def delete(self, kind: ServiceKind):
        """删除快照并立即请求发送 tombstone"""
        self.store.delete(kind)
        self.dispatcher.request()

    # -------------------------------------------------------------------------
    # 通知（fire-and-forget）
    # -------------------------------------------------------------------------

    def notify(self, message: str):
        if self.notifier is None:
            return
        task = asyncio.get_running_loop().create_task(self.notifier.notify(message))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    async def drain(self):
        """等待进行中的发送与通知完成"""
        await self.dispatcher.drain()
        if self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def close(self):
        self.dispatcher.close()
