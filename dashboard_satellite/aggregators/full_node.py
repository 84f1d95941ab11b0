"""
Full Node 聚合器

字段：
- blockchainState: difficulty / spaceInGib / syncStatus（逐字段差量）
- fullNodeConnectionsCount: 对端为 full node 的连接数

同步状态由未同步变为已同步（或相反）时各通知一次。
"""

import logging
from typing import Any, Dict, List, Optional

from ..diff import diff
from ..models import BlockchainState, FullNodeStats, NodeType, ServiceKind, SyncStatus
from ..notifications import full_node_synced_message, full_node_unsynced_message
from ..units import Capacity
from .base import BaseAggregator

logger = logging.getLogger(__name__)


def relevant_blockchain_state(raw: Optional[Dict[str, Any]]) -> Optional[BlockchainState]:
    """从守护进程返回的 blockchain_state 中提取关心的字段"""
    if not raw:
        return None
    sync = raw.get("sync") or {}
    peak = raw.get("peak") or {}
    peak_height = peak.get("height")
    return BlockchainState(
        difficulty=raw.get("difficulty"),
        space_in_gib=str(Capacity.from_bytes(raw.get("space") or 0)),
        sync_status=SyncStatus(
            synced=sync.get("synced"),
            syncing=sync.get("sync_mode"),
            synced_height=peak_height,
            tip_height=sync.get("sync_tip_height") or peak_height,
        ),
    )


def count_connections(connections: Optional[List[Dict[str, Any]]], node_type: NodeType) -> int:
    return sum(1 for conn in (connections or []) if conn.get("type") == node_type.value)


class FullNodeAggregator(BaseAggregator):
    kind = ServiceKind.FULL_NODE

    async def on_blockchain_state(self, raw: Optional[Dict[str, Any]]):
        """推送：新的链状态"""
        new_state = relevant_blockchain_state(raw)
        if new_state is None:
            return
        stats = self.load()
        prior = stats.dump()
        was_synced = _synced(stats)
        stats.blockchain_state = new_state
        self.commit(stats, diff(prior, stats.dump()))
        self._notify_sync_transition(was_synced, _synced(stats))

    async def on_connections(self, connections: Optional[List[Dict[str, Any]]]):
        """推送：连接列表变化"""
        if connections is None:
            return
        stats = self.load()
        prior = stats.dump()
        stats.full_node_connections_count = count_connections(connections, NodeType.FULL_NODE)
        self.commit(stats, diff(prior, stats.dump()))

    async def update(self):
        """轮询：链状态 + 连接数"""
        if not self.running:
            return
        new_state = relevant_blockchain_state(await self.daemon.get_blockchain_state())
        connections = await self.daemon.get_connections(self.kind)

        stats = self.load()
        prior = stats.dump()
        was_synced = _synced(stats)
        if new_state is not None:
            stats.blockchain_state = new_state
        stats.full_node_connections_count = count_connections(connections, NodeType.FULL_NODE)
        self.commit(stats, diff(prior, stats.dump()))
        self._notify_sync_transition(was_synced, _synced(stats))

    def _notify_sync_transition(self, was_synced: Optional[bool], is_synced: Optional[bool]):
        if was_synced is False and is_synced is True:
            logger.info("Full node synced")
            self.context.notify(full_node_synced_message(self.context.config.node_id))
        elif was_synced is True and is_synced is False:
            logger.warning("Full node lost sync")
            self.context.notify(full_node_unsynced_message(self.context.config.node_id))


def _synced(stats: FullNodeStats) -> Optional[bool]:
    if stats.blockchain_state is None or stats.blockchain_state.sync_status is None:
        return None
    return stats.blockchain_state.sync_status.synced
