"""
测试节流合并上报

窗口设为 50ms，避免测试等待过久
"""

import asyncio

import pytest

from dashboard_satellite.dispatcher import CoalescingDispatcher, DispatcherState
from dashboard_satellite.models import ServiceKind
from dashboard_satellite.store import PendingDelta, SnapshotStore

WINDOW = 0.05


def make_dispatcher(sent, window=WINDOW, fail=False):
    pending = PendingDelta()

    async def transmit(payload):
        if fail:
            raise RuntimeError("collector unavailable")
        sent.append(payload)

    return pending, CoalescingDispatcher(pending, transmit, window)


class TestCoalescingDispatcher:

    @pytest.mark.asyncio
    async def test_leading_and_single_trailing_transmission(self):
        sent = []
        pending, dispatcher = make_dispatcher(sent)

        pending.enqueue(ServiceKind.FARMER, {"a": 1})
        dispatcher.request()
        assert dispatcher.state == DispatcherState.WINDOW_OPEN

        pending.enqueue(ServiceKind.FARMER, {"b": 2})
        dispatcher.request()
        pending.enqueue(ServiceKind.FARMER, {"a": 3})
        dispatcher.request()
        pending.enqueue(ServiceKind.WALLET, {"fingerprint": 1})
        dispatcher.request()
        assert dispatcher.state == DispatcherState.PENDING_TRAILING

        await asyncio.sleep(WINDOW * 1.6)
        await dispatcher.drain()

        assert dispatcher.transmissions == 2
        assert sent == [
            {"farmer": {"a": 1}},
            {"farmer": {"a": 3, "b": 2}, "wallet": {"fingerprint": 1}},
        ]

        # 尾随发送后重新开窗，窗口内无请求则回到 IDLE
        await asyncio.sleep(WINDOW * 1.6)
        assert dispatcher.state == DispatcherState.IDLE
        dispatcher.close()

    @pytest.mark.asyncio
    async def test_window_without_requests_returns_to_idle(self):
        sent = []
        pending, dispatcher = make_dispatcher(sent)
        pending.enqueue(ServiceKind.HARVESTER, {"plotCount": 1})
        dispatcher.request()

        await asyncio.sleep(WINDOW * 1.6)
        await dispatcher.drain()

        assert dispatcher.state == DispatcherState.IDLE
        assert dispatcher.transmissions == 1

    @pytest.mark.asyncio
    async def test_empty_pending_does_not_transmit(self):
        sent = []
        _, dispatcher = make_dispatcher(sent)
        dispatcher.request()
        await dispatcher.drain()
        assert sent == []
        assert dispatcher.transmissions == 0
        dispatcher.close()

    @pytest.mark.asyncio
    async def test_tombstone_mid_window_is_sent_on_trailing_edge(self):
        sent = []
        pending, dispatcher = make_dispatcher(sent)
        store = SnapshotStore(pending)

        store.set(ServiceKind.HARVESTER, {"plotCount": 1})
        pending.enqueue(ServiceKind.HARVESTER, {"plotCount": 1})
        dispatcher.request()

        pending.enqueue(ServiceKind.HARVESTER, {"plotCount": 2})
        store.delete(ServiceKind.HARVESTER)
        dispatcher.request()

        await asyncio.sleep(WINDOW * 1.6)
        await dispatcher.drain()

        assert sent[-1] == {"harvester": None}
        dispatcher.close()

    @pytest.mark.asyncio
    async def test_transmit_failure_is_logged_not_raised(self, caplog):
        sent = []
        pending, dispatcher = make_dispatcher(sent, fail=True)
        pending.enqueue(ServiceKind.WALLET, {"fingerprint": 1})
        dispatcher.request()
        await dispatcher.drain()

        assert "Failed to transmit" in caplog.text
        assert len(pending) == 0
        dispatcher.close()
