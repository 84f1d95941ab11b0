"""
Plotter 聚合器

推送事件携带完整队列：
- deleted 或 FINISHED 的任务从表中移除（连同日志）
- 其余任务 upsert：状态、k 值、日志（log 整体替换 / log_new 追加）、进度
- 插入或状态变化后重新排序；有任何变化时上报 jobs
"""

import logging
from typing import Any, Dict, List, Optional, Union

from ..buffers import PlotterJobTable
from ..models import PlotterState, ServiceKind
from ..units import job_progress, update_started_at, utc_now
from .base import BaseAggregator

logger = logging.getLogger(__name__)


def parse_plotter_state(value: Optional[str]) -> Optional[Union[PlotterState, str]]:
    """已知状态转为枚举；REMOVING 等其它状态保留原始字符串"""
    if not value:
        return None
    try:
        return PlotterState(value)
    except ValueError:
        logger.debug(f"Unrecognised plotter job state: {value}")
        return value


class PlotterAggregator(BaseAggregator):
    kind = ServiceKind.PLOTTER

    def __init__(self, context, daemon, clock=utc_now):
        super().__init__(context, daemon)
        self.clock = clock
        self.jobs = PlotterJobTable()

    async def on_plotting_queue(self, queue: Optional[List[Dict[str, Any]]]):
        if not queue:
            return
        now = self.clock()
        updated = False
        needs_sort = False

        for job in queue:
            job_id = job.get("id")
            if job.get("deleted") or job.get("state") == PlotterState.FINISHED.value:
                if self.jobs.remove(job_id):
                    updated = True
                continue

            existing = self.jobs.get(job_id)
            if existing is None:
                existing = self.jobs.add(job_id)
                updated = needs_sort = True

            state = parse_plotter_state(job.get("state"))
            if existing.state != state:
                update_started_at(existing, job.get("state"), now)
                existing.state = state
                updated = needs_sort = True
            if existing.k_size != job.get("size"):
                existing.k_size = job.get("size")
                updated = needs_sort = True

            if job.get("log"):
                self.jobs.replace_log(job_id, job["log"])
            elif job.get("log_new"):
                self.jobs.append_log(job_id, job["log_new"])

            progress = job_progress(job, self.jobs.log(job_id))
            if existing.progress != progress:
                existing.progress = progress
                updated = True

        if needs_sort:
            self.jobs.sort()
        if updated:
            stats = self.load()
            stats.jobs = self.jobs.to_api()
            self.commit(stats, {"jobs": [job.dump() for job in stats.jobs]})
            logger.debug(f"Plotter queue updated: {len(self.jobs)} job(s)")
