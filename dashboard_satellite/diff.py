"""
差量计算模块

- diff: 对比新旧快照，返回只包含变化字段的 Partial（无变化返回 None）
- merge: 将新的 Partial 深度合并到待发送的 Partial 中

规则：
- 标量按相等比较
- 字典递归比较，只输出变化的子键
- 列表不做逐元素比较，只要有差异就整体替换
"""

from collections.abc import Mapping
from typing import Any, Optional

from pydantic import BaseModel

from .models import Partial, Snapshot


def _as_mapping(value: Any) -> Any:
    if isinstance(value, BaseModel):
        return value.model_dump(by_alias=True, exclude_unset=True, mode="json")
    return value


def diff(prior: Optional[Snapshot], new: Snapshot) -> Optional[Partial]:
    """
    计算 prior -> new 的最小差量

    Args:
        prior: 上一次的完整快照（None 视为空）
        new: 新的完整快照

    Returns:
        Partial 字典；完全相同时返回 None
    """
    prior = _as_mapping(prior) or {}
    new = _as_mapping(new) or {}

    partial = {}
    for key, value in new.items():
        if key not in prior:
            partial[key] = value
            continue
        old_value = prior[key]
        if isinstance(value, Mapping) and isinstance(old_value, Mapping):
            nested = diff(old_value, value)
            if nested is not None:
                partial[key] = nested
        elif old_value != value:
            # 列表整体替换
            partial[key] = value

    return partial or None


def merge(pending: Optional[Partial], incoming: Partial) -> Partial:
    """
    将 incoming 深度合并到 pending，返回新字典（不修改入参）

    列表值以 incoming 为准，避免多次合并后列表内容错乱。
    """
    if pending is None:
        return _deep_copy(incoming)

    merged = dict(pending)
    for key, value in incoming.items():
        old_value = merged.get(key)
        if isinstance(value, Mapping) and isinstance(old_value, Mapping):
            merged[key] = merge(old_value, value)
        else:
            merged[key] = _deep_copy(value)
    return merged


def _deep_copy(value: Any) -> Any:
    if isinstance(value, Mapping):
        return {k: _deep_copy(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_deep_copy(v) for v in value]
    return value
