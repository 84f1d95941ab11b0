"""
聚合器基类与单消费者任务队列

同一服务的推送事件与轮询都经由该服务的 KindWorker 串行执行，
保证快照只有一条线性历史；不同服务之间可以并发。
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..context import AggregationContext
from ..models import SNAPSHOT_MODELS, Partial, ServiceKind, StatsModel

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


class KindWorker:
    """单消费者任务队列"""

    def __init__(self, name: str):
        self.name = name
        self._queue: Optional[asyncio.Queue] = None
        self._task: Optional[asyncio.Task] = None
        self._once: Dict[str, asyncio.Future] = {}

    def start(self):
        if self._task is not None and not self._task.done():
            return
        self._queue = asyncio.Queue()
        self._task = asyncio.get_running_loop().create_task(self._run(), name=f"worker-{self.name}")

    async def stop(self):
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None

    def submit(self, handler: Handler, *args) -> asyncio.Future:
        """排队执行 handler，返回其结果的 Future"""
        self.start()
        future = asyncio.get_running_loop().create_future()
        self._queue.put_nowait((handler, args, future))
        return future

    def submit_once(self, key: str, handler: Handler, *args) -> asyncio.Future:
        """同一 key 已在排队或执行中时复用其 Future，不重复排队"""
        existing = self._once.get(key)
        if existing is not None and not existing.done():
            logger.debug(f"{self.name}: {key} still in progress, skipping")
            return existing
        future = self.submit(handler, *args)
        self._once[key] = future
        return future

    async def _run(self):
        while True:
            handler, args, future = await self._queue.get()
            try:
                result = await handler(*args)
                if not future.done():
                    future.set_result(result)
            except Exception as e:
                if not future.done():
                    future.set_exception(e)
            finally:
                self._queue.task_done()

    async def join(self):
        if self._queue is not None:
            await self._queue.join()


class BaseAggregator:
    """
    聚合器基类

    子类把服务的原始数据转换为快照字段，并决定交给差量引擎的内容。
    """

    kind: ServiceKind

    def __init__(self, context: AggregationContext, daemon):
        self.context = context
        self.daemon = daemon
        self.worker = KindWorker(self.kind.value)

    @property
    def enabled(self) -> bool:
        return self.context.is_enabled(self.kind)

    @property
    def running(self) -> bool:
        return self.context.is_running(self.kind)

    def load(self) -> StatsModel:
        """从快照存储读取当前快照并解析为结构化模型"""
        return SNAPSHOT_MODELS[self.kind].model_validate(self.context.store.get(self.kind))

    def commit(self, stats: StatsModel, partial: Optional[Partial], dispatch: bool = True):
        self.context.commit(self.kind, stats.dump(), partial, dispatch=dispatch)

    async def update(self):
        """一次轮询；默认无操作"""

    async def remove_snapshot(self):
        """服务停止：删除快照并发送 tombstone（经由任务队列，排在进行中的轮询之后）"""
        if self.context.store.has(self.kind):
            self.context.delete(self.kind)

    def poll(self) -> asyncio.Future:
        """经由任务队列执行一次轮询，未完成的轮询不会重复排队"""
        return self.worker.submit_once("poll", self.update)

    def event_handler(self, handler: Handler) -> Handler:
        """包装推送事件处理函数：排队执行，异常只记录日志"""
        async def guarded(data):
            try:
                await handler(data)
            except Exception as e:
                logger.error(f"{self.kind.value} event handler failed: {e}", exc_info=True)

        async def enqueue(data):
            self.worker.submit(guarded, data)

        return enqueue
