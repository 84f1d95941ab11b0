"""
服务聚合器模块

每个服务一个聚合器，把推送事件或轮询结果转换为快照与差量
"""

from .base import BaseAggregator, KindWorker
from .farmer import FarmerAggregator
from .full_node import FullNodeAggregator
from .harvester import HarvesterAggregator
from .plotter import PlotterAggregator
from .wallet import WalletAggregator

__all__ = [
    "BaseAggregator",
    "KindWorker",
    "FarmerAggregator",
    "FullNodeAggregator",
    "HarvesterAggregator",
    "PlotterAggregator",
    "WalletAggregator",
]
