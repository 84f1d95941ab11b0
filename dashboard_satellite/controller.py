"""
启动与轮询控制

启动流程（每一步都重试直到成功）：
1. 初始等待（节点刚启动时服务尚未就绪）
2. 检测各服务运行状态
3. 轮询 Wallet / Harvester / Farmer
4. 轮询 Full Node
5. 汇总报告

之后运行三个独立的定时循环：统计轮询、运行状态检测、汇总报告。
"""

import asyncio
import logging
from enum import Enum
from typing import Awaitable, Callable, Dict

from .aggregators import (
    FarmerAggregator,
    FullNodeAggregator,
    HarvesterAggregator,
    PlotterAggregator,
    WalletAggregator,
)
from .aggregators.base import BaseAggregator
from .context import AggregationContext
from .daemon import DaemonEvent
from .models import ServiceKind
from .notifications import summary_report

logger = logging.getLogger(__name__)

RETRY_INTERVAL_SECONDS = 1.0


class StepState(str, Enum):
    NOT_STARTED = "not_started"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"


async def try_until_succeeded(
    step: Callable[[], Awaitable[None]],
    name: str = "step",
    interval: float = RETRY_INTERVAL_SECONDS,
) -> StepState:
    """反复执行 step 直到不抛异常，固定间隔，不限次数"""
    state = StepState.NOT_STARTED
    while True:
        try:
            await step()
            state = StepState.SUCCEEDED
            if name:
                logger.debug(f"{name} succeeded")
            return state
        except asyncio.CancelledError:
            raise
        except Exception as e:
            state = StepState.RETRYING
            logger.warning(f"{name} failed, retrying in {interval:g}s: {e}")
            await asyncio.sleep(interval)


class SatelliteController:
    """持有全部聚合器，负责订阅推送、启动与定时任务"""

    def __init__(self, context: AggregationContext, daemon, retry_interval: float = RETRY_INTERVAL_SECONDS):
        self.context = context
        self.daemon = daemon
        self.retry_interval = retry_interval
        self.full_node = FullNodeAggregator(context, daemon)
        self.wallet = WalletAggregator(context, daemon)
        self.farmer = FarmerAggregator(context, daemon)
        self.harvester = HarvesterAggregator(context, daemon)
        self.plotter = PlotterAggregator(context, daemon)
        self.step_states: Dict[str, StepState] = {}

    @property
    def aggregators(self) -> Dict[ServiceKind, BaseAggregator]:
        return {
            ServiceKind.FULL_NODE: self.full_node,
            ServiceKind.WALLET: self.wallet,
            ServiceKind.FARMER: self.farmer,
            ServiceKind.HARVESTER: self.harvester,
            ServiceKind.PLOTTER: self.plotter,
        }

    def subscribe(self):
        """按启用的服务订阅守护进程推送"""
        if self.context.is_enabled(ServiceKind.FULL_NODE):
            self.daemon.on(DaemonEvent.BLOCKCHAIN_STATE, self.full_node.event_handler(self.full_node.on_blockchain_state))
            self.daemon.on(DaemonEvent.CONNECTIONS, self.full_node.event_handler(self.full_node.on_connections))
        if self.context.is_enabled(ServiceKind.FARMER):
            self.daemon.on(DaemonEvent.NEW_SIGNAGE_POINT, self.farmer.event_handler(self.farmer.on_new_signage_point))
            self.daemon.on(DaemonEvent.NEW_FARMING_INFO, self.farmer.event_handler(self.farmer.on_new_farming_info))
        if self.context.is_enabled(ServiceKind.PLOTTER):
            self.daemon.on(DaemonEvent.PLOTTING_QUEUE, self.plotter.event_handler(self.plotter.on_plotting_queue))

    # -------------------------------------------------------------------------
    # 单次步骤
    # -------------------------------------------------------------------------

    async def _check_running(self, kind: ServiceKind) -> bool:
        running = await self.daemon.is_running(kind)
        # 没有私钥的钱包无法登录，视为未运行
        if running and kind == ServiceKind.WALLET and not self.wallet.logged_in:
            if await self.wallet.has_public_keys():
                await self.wallet.ensure_logged_in()
            else:
                running = False
        return running

    async def update_running_services(self):
        """并发检测各服务是否在运行；停止的服务删除快照"""
        kinds = [kind for kind in self.context.enabled_services if kind != ServiceKind.PLOTTER]
        results = await asyncio.gather(*(self._check_running(kind) for kind in kinds))

        for kind, running in zip(kinds, results):
            was_running = self.context.is_running(kind)
            self.context.set_running(kind, running)

            if was_running != running:
                logger.info(f"Service {kind.value} is {'running' if running else 'not running'}")
            if was_running and not running:
                if kind == ServiceKind.WALLET:
                    self.wallet.reset()
                aggregator = self.aggregators[kind]
                await aggregator.worker.submit(aggregator.remove_snapshot)

    async def update_stats(self):
        """并发轮询 Wallet / Harvester / Farmer"""
        results = await asyncio.gather(
            self.wallet.poll(),
            self.harvester.poll(),
            self.farmer.poll(),
            return_exceptions=True,
        )
        errors = [r for r in results if isinstance(r, Exception)]
        if errors:
            raise errors[0]

    async def update_full_node_stats(self):
        await self.full_node.poll()

    async def update_summary_report(self):
        snapshots = {kind: self.context.store.get(kind) for kind in ServiceKind}
        message = summary_report(self.context.config.node_id, snapshots, self.context.enabled_services)
        self.context.notify(message)

    # -------------------------------------------------------------------------
    # 启动与定时循环
    # -------------------------------------------------------------------------

    async def _step(self, name: str, step: Callable[[], Awaitable[None]]):
        self.step_states[name] = StepState.NOT_STARTED
        self.step_states[name] = await try_until_succeeded(step, name=name, interval=self.retry_interval)

    async def bootstrap(self):
        config = self.context.config
        if config.initial_wait_time_in_minutes > 0:
            logger.info(f"Waiting {config.initial_wait_time_in_minutes:g} min before the first update")
            await asyncio.sleep(config.initial_wait_time_in_minutes * 60)

        await self._step("running services", self.update_running_services)
        await self._step("stats", self.update_stats)
        await self._step("full node stats", self.update_full_node_stats)
        await self._step("summary report", self.update_summary_report)
        logger.info("Initial update finished")

    async def _run_periodic(self, name: str, interval: float, step: Callable[[], Awaitable[None]]):
        logger.info(f"Starting {name} loop (interval={interval:g}s)")
        while True:
            await asyncio.sleep(interval)
            try:
                await step()
            except asyncio.CancelledError:
                logger.info(f"{name} loop cancelled")
                raise
            except Exception as e:
                logger.error(f"{name} loop error: {e}", exc_info=True)

    async def run(self):
        """启动后运行所有定时循环，直到被取消"""
        config = self.context.config
        self.context.prime()
        self.subscribe()
        await self.bootstrap()

        loops = [
            self._run_periodic("stats", config.stats_interval_seconds, self.update_stats),
            self._run_periodic("running services", config.running_services_interval_seconds, self.update_running_services),
        ]
        if config.summary_report_interval > 0:
            loops.append(
                self._run_periodic("summary report", config.summary_report_interval * 60, self.update_summary_report)
            )
        await asyncio.gather(*loops)

    async def stop(self):
        for aggregator in self.aggregators.values():
            await aggregator.worker.stop()
