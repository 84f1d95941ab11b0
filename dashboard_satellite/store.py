"""
内存状态存储

管理：
- SnapshotStore: 每个服务最后一次的完整快照
- PendingDelta: 等待上报的合并差量（None 表示删除）

所有方法都是同步的：在单事件循环内，一次调用即一次原子更新。
"""

import copy
import logging
from typing import Dict, Optional

from .diff import merge
from .models import Partial, Payload, ServiceKind, Snapshot

logger = logging.getLogger(__name__)


class PendingDelta:
    """待发送差量：{kind: Partial | None(tombstone)}"""

    def __init__(self):
        self._entries: Dict[ServiceKind, Optional[Partial]] = {}

    def enqueue(self, kind: ServiceKind, partial: Partial, replace: bool = False):
        """合并（或在兼容模式下整体替换）一个服务的差量"""
        if replace:
            self._entries[kind] = copy.deepcopy(partial)
            return
        self._entries[kind] = merge(self._entries.get(kind), partial)

    def tombstone(self, kind: ServiceKind):
        self._entries[kind] = None

    def get(self, kind: ServiceKind) -> Optional[Partial]:
        return self._entries.get(kind)

    def is_tombstoned(self, kind: ServiceKind) -> bool:
        return kind in self._entries and self._entries[kind] is None

    def take(self) -> Payload:
        """取出全部待发送差量并清空（原子操作）"""
        entries, self._entries = self._entries, {}
        return {kind.value: partial for kind, partial in entries.items()}

    def __contains__(self, kind: ServiceKind) -> bool:
        return kind in self._entries

    def __len__(self) -> int:
        return len(self._entries)


class SnapshotStore:
    """每个服务最后一次的完整快照"""

    def __init__(self, pending: PendingDelta):
        self._snapshots: Dict[ServiceKind, Snapshot] = {}
        self._pending = pending

    def get(self, kind: ServiceKind) -> Snapshot:
        """获取快照副本，不存在时返回空字典"""
        return copy.deepcopy(self._snapshots.get(kind, {}))

    def set(self, kind: ServiceKind, snapshot: Snapshot):
        self._snapshots[kind] = copy.deepcopy(snapshot)

    def has(self, kind: ServiceKind) -> bool:
        return kind in self._snapshots

    def delete(self, kind: ServiceKind):
        """删除快照，并在待发送差量中写入 tombstone"""
        self._snapshots.pop(kind, None)
        self._pending.tombstone(kind)
        logger.debug(f"Snapshot deleted for {kind.value}")

    def all(self) -> Dict[str, Snapshot]:
        return {kind.value: copy.deepcopy(snapshot) for kind, snapshot in self._snapshots.items()}
