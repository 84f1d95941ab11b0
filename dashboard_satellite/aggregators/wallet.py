"""
Wallet 聚合器

轮询前需要先登录钱包（幂等）。钱包列表与顺序相关，
按长度和逐个 (id, name, type, 未确认余额) 比较，有差异则整体上报。
"""

import asyncio
import logging
from typing import List

from ..diff import diff
from ..models import FarmedAmount, ServiceKind, WalletBalance, WalletInfo, WalletSyncStatus
from ..units import chia_amount_from_mojo
from .base import BaseAggregator

logger = logging.getLogger(__name__)


def wallets_differ(wallets: List[WalletInfo], new_wallets: List[WalletInfo]) -> bool:
    if len(wallets) != len(new_wallets):
        return True
    for wallet, new_wallet in zip(wallets, new_wallets):
        if (
            wallet.id != new_wallet.id
            or wallet.name != new_wallet.name
            or wallet.type != new_wallet.type
            or wallet.balance.unconfirmed != new_wallet.balance.unconfirmed
        ):
            return True
    return False


class WalletAggregator(BaseAggregator):
    kind = ServiceKind.WALLET

    def __init__(self, context, daemon):
        super().__init__(context, daemon)
        self.logged_in = False

    async def ensure_logged_in(self):
        """登录当前指纹对应的钱包；已登录时直接返回"""
        if self.logged_in:
            return
        fingerprint = await self.daemon.get_logged_in_fingerprint()
        await self.daemon.log_in(fingerprint)
        self.logged_in = True
        logger.info(f"Wallet logged in (fingerprint {fingerprint})")

    async def has_public_keys(self) -> bool:
        return len(await self.daemon.get_public_keys() or []) > 0

    async def _fetch_wallet(self, wallet) -> WalletInfo:
        balance = await self.daemon.get_wallet_balance(wallet["id"]) or {}
        return WalletInfo(
            id=wallet["id"],
            name=wallet.get("name"),
            type=wallet.get("type"),
            balance=WalletBalance(
                unconfirmed=chia_amount_from_mojo(balance.get("unconfirmed_wallet_balance", 0)),
            ),
        )

    async def update(self):
        if not self.running:
            return
        stats = self.load()
        partial = {}

        wallets = await self.daemon.get_wallets() or []
        new_wallets = list(await asyncio.gather(*(self._fetch_wallet(w) for w in wallets)))
        if stats.wallets is None or wallets_differ(stats.wallets, new_wallets):
            partial["wallets"] = [w.dump() for w in new_wallets]
        stats.wallets = new_wallets

        sync_status = await self.daemon.get_wallet_sync_status() or {}
        synced_height = await self.daemon.get_wallet_height()
        new_sync_status = WalletSyncStatus(
            synced=sync_status.get("synced"),
            syncing=sync_status.get("syncing"),
            synced_height=synced_height,
        )
        sync_partial = diff(stats.sync_status.dump() if stats.sync_status else None, new_sync_status.dump())
        if sync_partial is not None:
            partial["syncStatus"] = sync_partial
        stats.sync_status = new_sync_status

        farmed = await self.daemon.get_farmed_amount() or {}
        farmed_amount = FarmedAmount(last_height_farmed=farmed.get("last_height_farmed"))
        if stats.farmed_amount is None or stats.farmed_amount.last_height_farmed != farmed_amount.last_height_farmed:
            partial["farmedAmount"] = farmed_amount.dump()
        stats.farmed_amount = farmed_amount

        fingerprint = await self.daemon.get_logged_in_fingerprint()
        if stats.fingerprint != fingerprint:
            partial["fingerprint"] = fingerprint
        stats.fingerprint = fingerprint

        self.commit(stats, partial or None)

    def reset(self):
        """服务停止后需要重新登录"""
        self.logged_in = False
