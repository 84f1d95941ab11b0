"""
Farmer 聚合器

由两个推送事件驱动：
- new_signage_point: 创建/重置 FarmingEvent，只登记差量不主动触发发送
- new_farming_info: 累加计数、记录 Harvester 响应时间并上报

定时重新评估：最近 30 分钟平均通过过滤数、plot 总数、新证明通知、
通过过滤超时通知。
"""

import logging
from datetime import timedelta
from typing import Any, Dict, Optional, Tuple

from ..buffers import FarmingEventBuffer, ResponseTimeWindow
from ..diff import diff
from ..models import ServiceKind
from ..notifications import new_proof_message, passed_filter_timeout_message
from ..units import utc_now
from .base import BaseAggregator

logger = logging.getLogger(__name__)

PASSED_FILTER_WINDOW = timedelta(minutes=30)


class FarmerAggregator(BaseAggregator):
    kind = ServiceKind.FARMER

    def __init__(self, context, daemon, clock=utc_now):
        super().__init__(context, daemon)
        config = context.config
        self.clock = clock
        self.farming_events = FarmingEventBuffer(config.maximum_farming_infos)
        self.response_times = ResponseTimeWindow(config.response_time_sample_size)
        self.last_proof_count = 0
        self._timeout_notified_for: Optional[Tuple[str, str]] = None

    async def on_new_signage_point(self, signage_point: Optional[Dict[str, Any]]):
        if not signage_point:
            return
        self.farming_events.on_signage_point(
            signage_point.get("challenge_hash"),
            signage_point.get("challenge_chain_sp"),
            self.clock(),
        )
        stats = self.load()
        stats.farming_infos = self.farming_events.to_api()
        # 只登记差量，由节流器决定何时发送
        self.commit(stats, {"farmingInfos": [info.dump() for info in stats.farming_infos]}, dispatch=False)

    async def on_new_farming_info(self, farming_info: Optional[Dict[str, Any]]):
        if not farming_info:
            return
        now = self.clock()
        event, created = self.farming_events.on_farming_info(
            farming_info.get("challenge_hash"),
            farming_info.get("signage_point"),
            proofs=farming_info.get("proofs") or 0,
            passed_filter=farming_info.get("passed_filter") or 0,
            total_plots=farming_info.get("total_plots") or 0,
            now=now,
        )
        if not created:
            elapsed = now - event.received_at
            self.response_times.add(elapsed / timedelta(milliseconds=1))

        stats = self.load()
        prior = stats.dump()
        stats.farming_infos = self.farming_events.to_api()
        stats.average_harvester_response_time = self.response_times.mean
        stats.worst_harvester_response_time = self.response_times.worst
        self.commit(stats, diff(prior, stats.dump()))

    async def update(self):
        """定时重新评估"""
        if not self.enabled:
            return
        now = self.clock()
        stats = self.load()
        prior = stats.dump()

        stats.farming_infos = self.farming_events.to_api()
        recent = self.farming_events.received_since(now - PASSED_FILTER_WINDOW)
        stats.avg_passed_filter = sum(e.passed_filter for e in recent) / len(recent) if recent else 0
        latest = self.farming_events.latest
        stats.total_plot_count = latest.total_plots if latest else 0

        total_proofs = self.farming_events.total_proofs()
        new_proofs = total_proofs - self.last_proof_count
        if new_proofs > 0:
            logger.info(f"Found {new_proofs} new proof(s)")
            self.context.notify(new_proof_message(self.context.config.node_id, new_proofs))
        self.last_proof_count = total_proofs

        self._check_passed_filter_timeout(now)

        self.commit(stats, diff(prior, stats.dump()))

    def _check_passed_filter_timeout(self, now):
        """最新事件超过阈值仍无通过过滤时通知（同一事件只通知一次）"""
        latest = self.farming_events.latest
        if latest is None or latest.key == self._timeout_notified_for:
            return
        timeout = timedelta(minutes=self.context.config.notify_timeout_in_minutes)
        if now - latest.received_at >= timeout and latest.passed_filter == 0:
            self._timeout_notified_for = latest.key
            minutes = self.context.config.notify_timeout_in_minutes
            logger.warning(f"No passed filter events in the last {minutes:g} minutes")
            self.context.notify(passed_filter_timeout_message(self.context.config.node_id, minutes))
