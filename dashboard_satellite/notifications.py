"""
通知模块

- 消息构造：同步/失去同步、新证明、通过过滤超时、定时汇总
- Notifier: 发送到已启用的通道（邮件、LINE Notify），失败只记录日志，不重试
"""

import asyncio
import logging
import smtplib
from decimal import Decimal
from email.message import EmailMessage
from typing import Dict

import httpx

from .config import SatelliteConfig
from .models import ServiceKind, Snapshot

logger = logging.getLogger(__name__)

LINE_NOTIFY_URL = "https://notify-api.line.me/api/notify"
EMAIL_SUBJECT = "Notification >> Chia-Dashboard-Satellite"
GIB_PER_PIB = Decimal(1024 ** 2)


def _with_node(node_id: str, body: str) -> str:
    return f"{node_id}\n{body}" if node_id else body


def full_node_synced_message(node_id: str) -> str:
    return _with_node(node_id, "<Full Node>\n- The Full Node has synced successfully!")


def full_node_unsynced_message(node_id: str) -> str:
    return _with_node(node_id, "<Full Node>\n- The Full Node has become unsynced!")


def new_proof_message(node_id: str, count: int) -> str:
    plural = "s" if count > 1 else ""
    return _with_node(node_id, f"<Farmer>\n- New proof found: {count} proof{plural}")


def passed_filter_timeout_message(node_id: str, minutes: float) -> str:
    return _with_node(node_id, f"<Farmer>\n- No passed filter events in the last {minutes:g} minutes.")


def summary_report(node_id: str, snapshots: Dict[ServiceKind, Snapshot], enabled) -> str:
    """
    生成定时汇总报告

    Args:
        node_id: 节点标识
        snapshots: {kind: 快照}
        enabled: 已启用的服务集合
    """
    sections = []

    if ServiceKind.FULL_NODE in enabled:
        full_node = snapshots.get(ServiceKind.FULL_NODE) or {}
        sync_status = (full_node.get("blockchainState") or {}).get("syncStatus") or {}
        sections.append(
            "<Full Node>\n"
            f"- Synced: {'Yes' if sync_status.get('synced') else 'No'}\n"
            f"- Blockchain Synced Height: {sync_status.get('syncedHeight') or 'N/A'}\n"
            f"- Peer Connections: {full_node.get('fullNodeConnectionsCount') or 0}"
        )

    if ServiceKind.HARVESTER in enabled:
        harvester = snapshots.get(ServiceKind.HARVESTER) or {}
        capacity_in_gib = Decimal(harvester.get("totalEffectivePlotCapacityInGib") or 0)
        sections.append(
            "<Harvester>\n"
            f"- Total Capacity (PiB): {capacity_in_gib / GIB_PER_PIB:,.3f}\n"
            f"- Plot Count: {harvester.get('plotCount') or 0:,}"
        )

    if ServiceKind.FARMER in enabled:
        farmer = snapshots.get(ServiceKind.FARMER) or {}
        farming_infos = farmer.get("farmingInfos") or []
        latest = farming_infos[0] if farming_infos else {}
        sections.append(
            "<Farmer>\n"
            f"- Total Plots: {latest.get('totalPlots', 0)}\n"
            f"- Recent plot passed filter: {latest.get('passedFilter', 0)}\n"
            f"- Last 30 mins average passed filter: {farmer.get('avgPassedFilter') or 0:g}"
        )

    return _with_node(node_id, "\n\n".join(sections))


class Notifier:
    """通知发送器"""

    def __init__(self, config: SatelliteConfig, timeout: float = 10.0):
        self.config = config
        self.timeout = timeout

    async def notify(self, message: str):
        """发送到所有已启用的通道；任何失败都不会向上抛出"""
        if self.config.email_notifications_enabled:
            await self._send_email(message)
        if self.config.line_notifications_enabled:
            await self._send_line(message)

    async def _send_email(self, message: str):
        try:
            await asyncio.to_thread(self._send_email_sync, message)
            logger.info(f"Email sent to {self.config.recipient_email}")
        except Exception as e:
            logger.error(f"Error sending email: {e}")

    def _send_email_sync(self, message: str):
        config = self.config
        if not config.smtp_host or not config.recipient_email:
            raise ValueError("smtpHost and recipientEmail are required for email notifications")

        email = EmailMessage()
        email["Subject"] = EMAIL_SUBJECT
        email["From"] = config.sender_email
        email["To"] = config.recipient_email
        email.set_content(message)

        with smtplib.SMTP(config.smtp_host, config.smtp_port, timeout=self.timeout) as smtp:
            smtp.starttls()
            if config.sender_email and config.sender_password:
                smtp.login(config.sender_email, config.sender_password)
            smtp.send_message(email)

    async def _send_line(self, message: str):
        token = self.config.line_notify_access_token
        if not token:
            logger.warning("LINE Notify access token is not set")
            return
        try:
            async with httpx.AsyncClient(timeout=self.timeout) as client:
                response = await client.post(
                    LINE_NOTIFY_URL,
                    headers={"Authorization": f"Bearer {token}"},
                    data={"message": message},
                )
                response.raise_for_status()
            logger.info("LINE notification sent")
        except Exception as e:
            logger.error(f"Error sending LINE notification: {e}")
