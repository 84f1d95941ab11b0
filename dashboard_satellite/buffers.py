"""
有界事件缓冲区

- FarmingEventBuffer: 按 (challenge, signagePoint) 去重、按 receivedAt 倒序、容量受限
- ResponseTimeWindow: Harvester 响应时间滑动窗口（最新在前）
- PlotterJobTable: 按 id 索引的 Plotter 任务表及其日志缓冲
"""

from collections import deque
from dataclasses import dataclass
from datetime import datetime
from typing import Deque, Dict, List, Optional, Tuple, Union

from .models import FarmingInfo, PlotterJobInfo, PlotterState
from .units import to_iso


@dataclass
class FarmingEvent:
    challenge: str
    signage_point: str
    received_at: datetime
    last_updated: datetime
    proofs: int = 0
    passed_filter: int = 0
    total_plots: int = 0

    @property
    def key(self) -> Tuple[str, str]:
        return (self.challenge, self.signage_point)

    def to_api(self) -> FarmingInfo:
        return FarmingInfo(
            proofs=self.proofs,
            passed_filter=self.passed_filter,
            total_plots=self.total_plots,
            received_at=to_iso(self.received_at),
            last_updated=to_iso(self.last_updated),
        )


class FarmingEventBuffer:
    """
    Farming 事件环形缓冲

    不变量：
    - (challenge, signagePoint) 唯一
    - 长度不超过 capacity
    - 每次插入或计数更新后按 receivedAt 倒序
    """

    def __init__(self, capacity: int):
        self.capacity = capacity
        self._events: List[FarmingEvent] = []

    def find(self, challenge: str, signage_point: str) -> Optional[FarmingEvent]:
        for event in self._events:
            if event.challenge == challenge and event.signage_point == signage_point:
                return event
        return None

    def on_signage_point(self, challenge: str, signage_point: str, now: datetime) -> Tuple[FarmingEvent, bool]:
        """
        新的 signage point：创建或重置对应事件

        重复的 signage point（如链重组）按新事件处理，计数清零，
        因为 Harvester 需要重新扫描。

        Returns:
            (事件, 是否新建)
        """
        event = self.find(challenge, signage_point)
        created = event is None
        if created:
            event = FarmingEvent(challenge, signage_point, received_at=now, last_updated=now)
            self._events.insert(0, event)
        event.received_at = now
        event.proofs = 0
        event.passed_filter = 0
        event.total_plots = 0
        event.last_updated = now
        self._normalize()
        return event, created

    def on_farming_info(
        self,
        challenge: str,
        signage_point: str,
        proofs: int,
        passed_filter: int,
        total_plots: int,
        now: datetime,
    ) -> Tuple[FarmingEvent, bool]:
        """
        新的 farming info：累加到对应事件（不存在则创建）

        Returns:
            (事件, 是否新建)
        """
        event = self.find(challenge, signage_point)
        created = event is None
        if created:
            event = FarmingEvent(challenge, signage_point, received_at=now, last_updated=now)
            self._events.insert(0, event)
        event.proofs += proofs
        event.passed_filter += passed_filter
        event.total_plots += total_plots
        event.last_updated = now
        self._normalize()
        return event, created

    def _normalize(self):
        # sort() 是稳定排序，同一时间戳的事件保持插入顺序
        self._events.sort(key=lambda e: e.received_at, reverse=True)
        del self._events[self.capacity:]

    @property
    def events(self) -> List[FarmingEvent]:
        return list(self._events)

    @property
    def latest(self) -> Optional[FarmingEvent]:
        return self._events[0] if self._events else None

    def received_since(self, since: datetime) -> List[FarmingEvent]:
        return [e for e in self._events if e.received_at >= since]

    def total_proofs(self) -> int:
        return sum(e.proofs for e in self._events)

    def to_api(self) -> List[FarmingInfo]:
        return [e.to_api() for e in self._events]

    def __len__(self) -> int:
        return len(self._events)


class ResponseTimeWindow:
    """固定容量的响应时间样本窗口（毫秒，最新在前）"""

    def __init__(self, size: int):
        self._samples: Deque[float] = deque(maxlen=size)

    def add(self, milliseconds: float):
        self._samples.appendleft(milliseconds)

    @property
    def samples(self) -> List[float]:
        return list(self._samples)

    @property
    def mean(self) -> Optional[float]:
        if not self._samples:
            return None
        return sum(self._samples) / len(self._samples)

    @property
    def worst(self) -> Optional[float]:
        if not self._samples:
            return None
        return max(self._samples)

    def __len__(self) -> int:
        return len(self._samples)


@dataclass
class PlotterJob:
    id: str
    state: Optional[Union[PlotterState, str]] = None
    k_size: Optional[int] = None
    progress: Optional[float] = None
    started_at: Optional[datetime] = None

    def to_api(self) -> PlotterJobInfo:
        return PlotterJobInfo(
            id=self.id,
            state=self.state,
            k_size=self.k_size,
            progress=self.progress,
            started_at=to_iso(self.started_at) if self.started_at else None,
        )


class PlotterJobTable:
    """Plotter 任务表；FINISHED 任务不会留在表中"""

    def __init__(self):
        self._jobs: List[PlotterJob] = []
        self._logs: Dict[str, str] = {}

    def get(self, job_id: str) -> Optional[PlotterJob]:
        for job in self._jobs:
            if job.id == job_id:
                return job
        return None

    def add(self, job_id: str) -> PlotterJob:
        job = PlotterJob(id=job_id)
        self._jobs.append(job)
        return job

    def remove(self, job_id: str) -> bool:
        """移除任务及其日志，返回是否存在过"""
        before = len(self._jobs)
        self._jobs = [job for job in self._jobs if job.id != job_id]
        self._logs.pop(job_id, None)
        return len(self._jobs) != before

    def replace_log(self, job_id: str, log: str):
        self._logs[job_id] = log

    def append_log(self, job_id: str, log_new: str):
        self._logs[job_id] = f"{self._logs.get(job_id, '')}{log_new}"

    def log(self, job_id: str) -> str:
        return self._logs.get(job_id, "")

    def sort(self):
        """RUNNING 在前；两个 RUNNING 之间进度高者在前；其余保持相对顺序"""
        def sort_key(job: PlotterJob):
            if job.state == PlotterState.RUNNING:
                return (0, -(job.progress or 0))
            return (1, 0)

        self._jobs.sort(key=sort_key)

    @property
    def jobs(self) -> List[PlotterJob]:
        return list(self._jobs)

    def to_api(self) -> List[PlotterJobInfo]:
        return [job.to_api() for job in self._jobs]

    def __len__(self) -> int:
        return len(self._jobs)
