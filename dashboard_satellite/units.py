"""
单位换算与纯函数工具

- 容量（字节 -> GiB）、金额（mojo -> XCH）换算，使用 Decimal 避免浮点误差
- 时间戳格式化
- Plotter 任务进度估算
"""

import re
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Mapping, Optional, Union

GIB = Decimal(1024 ** 3)
MOJO_PER_CHIA = Decimal(10 ** 12)

Number = Union[int, float, str, Decimal]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def to_iso(dt: datetime) -> str:
    """格式化为 2024-01-01T00:00:00.000Z"""
    dt = dt.astimezone(timezone.utc)
    return dt.strftime("%Y-%m-%dT%H:%M:%S.") + f"{dt.microsecond // 1000:03d}Z"


def decimal_to_str(value: Decimal) -> str:
    """去掉多余的 0，且不使用科学计数法"""
    if value == 0:
        return "0"
    return format(value.normalize(), "f")


class Capacity:
    """存储容量"""

    def __init__(self, size_in_bytes: Number):
        self.size_in_bytes = Decimal(size_in_bytes or 0)

    @classmethod
    def from_bytes(cls, size_in_bytes: Number) -> "Capacity":
        return cls(size_in_bytes)

    @property
    def capacity_in_gib(self) -> Decimal:
        return self.size_in_bytes / GIB

    def __str__(self) -> str:
        return decimal_to_str(self.capacity_in_gib)


def chia_amount_from_mojo(mojo: Number) -> str:
    """mojo -> XCH 字符串"""
    return decimal_to_str(Decimal(mojo or 0) / MOJO_PER_CHIA)


def effective_plot_size_in_bytes(k_size: int) -> int:
    """
    按 k 值估算 plot 的有效大小

    与 chia 的 _expected_plot_size 一致：((2 * k) + 1) * 2^(k - 1)
    """
    return ((2 * k_size) + 1) * (2 ** (k_size - 1))


# =============================================================================
# Plotter 进度
# =============================================================================

# 四个阶段在总耗时中的大致占比
_PHASE_WEIGHTS = (0.42, 0.18, 0.36, 0.04)
_PHASE_RE = re.compile(r"Starting phase (\d)/4")
# 各阶段内的步骤标记及步骤数
_PHASE_STEPS = (
    (re.compile(r"Computing table \d"), 7),
    (re.compile(r"Backpropagating on table \d"), 6),
    (re.compile(r"Compressing tables \d"), 6),
    (re.compile(r"Writing C2 table"), 1),
)
_FINISHED_RE = re.compile(r"Renamed final file|Copied final file")


def job_progress(job: Mapping[str, Any], log: Optional[str]) -> float:
    """
    根据任务状态和累计日志估算进度（0-1）

    SUBMITTED 为 0，FINISHED 为 1；RUNNING 时按日志中的阶段标记计算。
    """
    state = job.get("state")
    if state == "FINISHED":
        return 1.0
    if state == "SUBMITTED" or not log:
        return 0.0
    if _FINISHED_RE.search(log):
        return 1.0

    phases = [int(m) for m in _PHASE_RE.findall(log)]
    if not phases:
        return 0.0
    phase = min(max(phases), 4)

    # 已完成阶段
    progress = sum(_PHASE_WEIGHTS[:phase - 1])

    # 当前阶段内的步骤
    phase_log = log[log.rfind(f"Starting phase {phase}/4"):]
    step_re, total_steps = _PHASE_STEPS[phase - 1]
    done_steps = min(len(step_re.findall(phase_log)), total_steps)
    progress += _PHASE_WEIGHTS[phase - 1] * done_steps / total_steps

    return round(min(progress, 1.0), 4)


def update_started_at(existing_job, new_state: Optional[str], now: datetime):
    """任务首次进入 RUNNING 时记录开始时间，之后不再覆盖"""
    if new_state == "RUNNING" and existing_job.started_at is None:
        existing_job.started_at = now
