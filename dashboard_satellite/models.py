"""
数据模型定义

包括：
- 服务种类与守护进程常量
- 每个服务快照的结构声明（Pydantic，camelCase 字段名即上报格式）
"""

from enum import Enum
from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, ConfigDict
from pydantic.alias_generators import to_camel


class ServiceKind(str, Enum):
    """被监控的服务种类（固定集合）"""
    FULL_NODE = "fullNode"
    WALLET = "wallet"
    FARMER = "farmer"
    HARVESTER = "harvester"
    PLOTTER = "plotter"

    @property
    def daemon_service(self) -> str:
        """守护进程中的服务名"""
        return DAEMON_SERVICE_NAMES[self]


DAEMON_SERVICE_NAMES = {
    ServiceKind.FULL_NODE: "chia_full_node",
    ServiceKind.WALLET: "chia_wallet",
    ServiceKind.FARMER: "chia_farmer",
    ServiceKind.HARVESTER: "chia_harvester",
    ServiceKind.PLOTTER: "chia_plotter",
}


class NodeType(int, Enum):
    """连接对端类型（与 chia 协议一致）"""
    FULL_NODE = 1
    HARVESTER = 2
    FARMER = 3
    TIMELORD = 4
    INTRODUCER = 5
    WALLET = 6


class PlotterState(str, Enum):
    RUNNING = "RUNNING"
    FINISHED = "FINISHED"
    SUBMITTED = "SUBMITTED"


# 快照：上报格式的嵌套字典；Partial 同构但只含变化字段
Snapshot = Dict[str, Any]
Partial = Dict[str, Any]
# PendingDelta 中的 None 表示删除（tombstone）
PendingEntry = Optional[Partial]
Payload = Dict[str, Union[Partial, None]]


class StatsModel(BaseModel):
    """快照结构基类：按 camelCase 别名导出，仅导出显式设置的字段"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def dump(self) -> Snapshot:
        return self.model_dump(by_alias=True, exclude_unset=True, mode="json")


# =============================================================================
# Full Node
# =============================================================================

class SyncStatus(StatsModel):
    synced: Optional[bool] = None
    syncing: Optional[bool] = None
    synced_height: Optional[int] = None
    tip_height: Optional[int] = None


class BlockchainState(StatsModel):
    difficulty: Optional[int] = None
    space_in_gib: Optional[str] = None
    sync_status: Optional[SyncStatus] = None


class FullNodeStats(StatsModel):
    blockchain_state: Optional[BlockchainState] = None
    full_node_connections_count: Optional[int] = None


# =============================================================================
# Wallet
# =============================================================================

class WalletBalance(StatsModel):
    unconfirmed: str


class WalletInfo(StatsModel):
    id: int
    name: Optional[str] = None
    type: Optional[int] = None
    balance: WalletBalance


class WalletSyncStatus(StatsModel):
    synced: Optional[bool] = None
    syncing: Optional[bool] = None
    synced_height: Optional[int] = None


class FarmedAmount(StatsModel):
    last_height_farmed: Optional[int] = None


class WalletStats(StatsModel):
    wallets: Optional[List[WalletInfo]] = None
    sync_status: Optional[WalletSyncStatus] = None
    farmed_amount: Optional[FarmedAmount] = None
    fingerprint: Optional[int] = None


# =============================================================================
# Farmer
# =============================================================================

class FarmingInfo(StatsModel):
    proofs: int = 0
    passed_filter: int = 0
    total_plots: int = 0
    received_at: str
    last_updated: str


class FarmerStats(StatsModel):
    farming_infos: Optional[List[FarmingInfo]] = None
    average_harvester_response_time: Optional[float] = None
    worst_harvester_response_time: Optional[float] = None
    avg_passed_filter: Optional[float] = None
    total_plot_count: Optional[int] = None


# =============================================================================
# Harvester
# =============================================================================

class PlotPoolStats(StatsModel):
    count: int = 0
    raw_capacity_in_gib: str = "0"
    effective_capacity_in_gib: str = "0"
    # 兼容模式下的别名字段，等于 effectiveCapacityInGib
    capacity_in_gib: Optional[str] = None


class HarvesterStats(StatsModel):
    og_plots: Optional[PlotPoolStats] = None
    nft_plots: Optional[PlotPoolStats] = None
    plot_count: Optional[int] = None
    total_raw_plot_capacity_in_gib: Optional[str] = None
    total_effective_plot_capacity_in_gib: Optional[str] = None
    total_capacity_in_gib: Optional[str] = None
    farmer_connections_count: Optional[int] = None


# =============================================================================
# Plotter
# =============================================================================

class PlotterJobInfo(StatsModel):
    id: str
    state: Optional[Union[PlotterState, str]] = None
    k_size: Optional[int] = None
    progress: Optional[float] = None
    started_at: Optional[str] = None


class PlotterStats(StatsModel):
    jobs: List[PlotterJobInfo] = []


SNAPSHOT_MODELS = {
    ServiceKind.FULL_NODE: FullNodeStats,
    ServiceKind.WALLET: WalletStats,
    ServiceKind.FARMER: FarmerStats,
    ServiceKind.HARVESTER: HarvesterStats,
    ServiceKind.PLOTTER: PlotterStats,
}
