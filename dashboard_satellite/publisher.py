"""
Dashboard 上报客户端

把合并后的差量（或兼容模式下的完整快照）发送到 Dashboard。
"""

import logging
from typing import Optional

import httpx

from .models import Payload

logger = logging.getLogger(__name__)


class DashboardPublisher:
    """PATCH {core_url}/api/satellite"""

    def __init__(self, core_url: str, api_key: Optional[str], timeout: float = 30.0):
        self.url = f"{core_url.rstrip('/')}/api/satellite"
        self.api_key = api_key
        self._client = httpx.AsyncClient(timeout=timeout)

    async def publish(self, origin_id: str, payload: Payload):
        """
        上报一次状态

        Raises:
            httpx.HTTPError: 网络错误或非 2xx 响应
        """
        headers = {"X-Origin": origin_id}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        response = await self._client.patch(self.url, json={"data": payload}, headers=headers)
        response.raise_for_status()

    async def close(self):
        await self._client.aclose()
