"""
Harvester 聚合器

把 plot 分为两类：
- OG: 有 pool_public_key
- NFT: 有 pool_contract_puzzle_hash

每类统计 count / 原始容量 / 有效容量，分别三字段比较；
再汇总总数与总容量逐字段比较；另外统计 farmer 连接数。
"""

import logging
from decimal import Decimal
from typing import Any, Dict, List, Optional

from ..models import NodeType, PlotPoolStats, ServiceKind
from ..units import Capacity, decimal_to_str, effective_plot_size_in_bytes
from .base import BaseAggregator
from .full_node import count_connections

logger = logging.getLogger(__name__)


def plot_pool_stats(plots: List[Dict[str, Any]], compatibility_mode: bool = False) -> PlotPoolStats:
    raw = sum((Capacity.from_bytes(plot.get("file_size") or 0).capacity_in_gib for plot in plots), Decimal(0))
    effective = sum(
        (Capacity.from_bytes(effective_plot_size_in_bytes(plot["size"])).capacity_in_gib for plot in plots),
        Decimal(0),
    )
    stats = PlotPoolStats(
        count=len(plots),
        raw_capacity_in_gib=decimal_to_str(raw),
        effective_capacity_in_gib=decimal_to_str(effective),
    )
    if compatibility_mode:
        stats.capacity_in_gib = stats.effective_capacity_in_gib
    return stats


def plot_pool_partial(old: Optional[PlotPoolStats], new: PlotPoolStats) -> Optional[Dict[str, Any]]:
    """三字段比较器；首次出现时返回完整统计"""
    if old is None:
        return new.dump()
    partial = {}
    if old.count != new.count:
        partial["count"] = new.count
    if old.raw_capacity_in_gib != new.raw_capacity_in_gib:
        partial["rawCapacityInGib"] = new.raw_capacity_in_gib
    if old.effective_capacity_in_gib != new.effective_capacity_in_gib:
        partial["effectiveCapacityInGib"] = new.effective_capacity_in_gib
        if new.capacity_in_gib is not None:
            partial["capacityInGib"] = new.capacity_in_gib
    return partial or None


class HarvesterAggregator(BaseAggregator):
    kind = ServiceKind.HARVESTER

    async def update(self):
        if not self.running:
            return
        compatibility_mode = self.context.compatibility_mode
        plots = await self.daemon.get_plots() or []
        stats = self.load()
        partial = {}

        og_plots = plot_pool_stats([p for p in plots if p.get("pool_public_key") is not None], compatibility_mode)
        og_partial = plot_pool_partial(stats.og_plots, og_plots)
        if og_partial is not None:
            partial["ogPlots"] = og_partial
        stats.og_plots = og_plots

        nft_plots = plot_pool_stats(
            [p for p in plots if p.get("pool_contract_puzzle_hash") is not None], compatibility_mode
        )
        nft_partial = plot_pool_partial(stats.nft_plots, nft_plots)
        if nft_partial is not None:
            partial["nftPlots"] = nft_partial
        stats.nft_plots = nft_plots

        plot_count = og_plots.count + nft_plots.count
        total_raw = decimal_to_str(Decimal(og_plots.raw_capacity_in_gib) + Decimal(nft_plots.raw_capacity_in_gib))
        total_effective = decimal_to_str(
            Decimal(og_plots.effective_capacity_in_gib) + Decimal(nft_plots.effective_capacity_in_gib)
        )
        if stats.plot_count != plot_count:
            stats.plot_count = plot_count
            partial["plotCount"] = plot_count
        if stats.total_raw_plot_capacity_in_gib != total_raw:
            stats.total_raw_plot_capacity_in_gib = total_raw
            partial["totalRawPlotCapacityInGib"] = total_raw
        if stats.total_effective_plot_capacity_in_gib != total_effective:
            stats.total_effective_plot_capacity_in_gib = total_effective
            partial["totalEffectivePlotCapacityInGib"] = total_effective
            if compatibility_mode:
                stats.total_capacity_in_gib = total_effective
                partial["totalCapacityInGib"] = total_effective

        connections = await self.daemon.get_connections(self.kind)
        farmer_connections = count_connections(connections, NodeType.FARMER)
        if stats.farmer_connections_count != farmer_connections:
            stats.farmer_connections_count = farmer_connections
            partial["farmerConnectionsCount"] = farmer_connections

        self.commit(stats, partial or None)
