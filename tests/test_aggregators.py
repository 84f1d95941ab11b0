"""
测试各服务聚合器

上下文的窗口为 20s：第一次提交立即上报（记录在 sent 中），
之后的差量留在 context.pending 里，便于逐步检查。
"""

import asyncio

import pytest

from dashboard_satellite.aggregators import (
    FarmerAggregator,
    FullNodeAggregator,
    HarvesterAggregator,
    KindWorker,
    PlotterAggregator,
    WalletAggregator,
)
from dashboard_satellite.config import SatelliteConfig
from dashboard_satellite.context import AggregationContext
from dashboard_satellite.models import ServiceKind
from dashboard_satellite.notifications import (
    full_node_synced_message,
    full_node_unsynced_message,
    new_proof_message,
    passed_filter_timeout_message,
)

GIB = 1024 ** 3


def blockchain_state(synced, height, tip=0, space=2 * GIB):
    return {
        "difficulty": 100,
        "space": space,
        "sync": {"synced": synced, "sync_mode": not synced, "sync_tip_height": tip},
        "peak": {"height": height},
    }


class TestKindWorker:

    @pytest.mark.asyncio
    async def test_submit_once_coalesces_pending_work(self):
        worker = KindWorker("test")
        release = asyncio.Event()
        calls = []

        async def slow():
            calls.append(1)
            await release.wait()
            return "done"

        first = worker.submit_once("poll", slow)
        second = worker.submit_once("poll", slow)
        assert first is second

        release.set()
        assert await first == "done"
        assert calls == [1]
        await worker.stop()

    @pytest.mark.asyncio
    async def test_handlers_run_in_order(self):
        worker = KindWorker("test")
        order = []

        async def record(value):
            await asyncio.sleep(0)
            order.append(value)

        futures = [worker.submit(record, i) for i in range(5)]
        await asyncio.gather(*futures)
        assert order == [0, 1, 2, 3, 4]
        await worker.stop()


class TestFullNodeAggregator:

    @pytest.mark.asyncio
    async def test_blockchain_state_partial(self, context, daemon, sent):
        aggregator = FullNodeAggregator(context, daemon)

        await aggregator.on_blockchain_state(blockchain_state(False, 100, tip=200))
        await context.drain()
        assert sent[0]["fullNode"] == {
            "blockchainState": {
                "difficulty": 100,
                "spaceInGib": "2",
                "syncStatus": {"synced": False, "syncing": True, "syncedHeight": 100, "tipHeight": 200},
            }
        }

        await aggregator.on_blockchain_state(blockchain_state(True, 200))
        assert context.pending.get(ServiceKind.FULL_NODE) == {
            "blockchainState": {"syncStatus": {"synced": True, "syncing": False, "syncedHeight": 200}}
        }

    @pytest.mark.asyncio
    async def test_sync_transition_notifies_once(self, context, daemon, notifier):
        aggregator = FullNodeAggregator(context, daemon)

        await aggregator.on_blockchain_state(blockchain_state(False, 100))
        notifier.notify.assert_not_called()

        await aggregator.on_blockchain_state(blockchain_state(True, 101))
        await aggregator.on_blockchain_state(blockchain_state(True, 102))
        notifier.notify.assert_called_once_with(full_node_synced_message("node-1"))

        await aggregator.on_blockchain_state(blockchain_state(False, 102))
        assert notifier.notify.call_args_list[-1].args == (full_node_unsynced_message("node-1"),)
        await context.drain()

    @pytest.mark.asyncio
    async def test_missing_payload_is_ignored(self, context, daemon, sent):
        aggregator = FullNodeAggregator(context, daemon)
        await aggregator.on_blockchain_state(None)
        await aggregator.on_connections(None)
        assert not context.store.has(ServiceKind.FULL_NODE)
        assert sent == []

    @pytest.mark.asyncio
    async def test_connections_count_full_nodes_only(self, context, daemon):
        aggregator = FullNodeAggregator(context, daemon)
        await aggregator.on_connections([{"type": 1}, {"type": 1}, {"type": 3}])
        assert context.store.get(ServiceKind.FULL_NODE)["fullNodeConnectionsCount"] == 2
        await context.drain()

    @pytest.mark.asyncio
    async def test_poll_skipped_when_not_running(self, context, daemon):
        aggregator = FullNodeAggregator(context, daemon)
        await aggregator.update()
        daemon.get_blockchain_state.assert_not_called()


class TestWalletAggregator:

    @pytest.fixture
    def wallet_daemon(self, daemon):
        daemon.get_wallets.return_value = [{"id": 1, "name": "Chia Wallet", "type": 0}]
        daemon.get_wallet_balance.return_value = {"unconfirmed_wallet_balance": 1500000000000}
        daemon.get_wallet_sync_status.return_value = {"synced": True, "syncing": False}
        daemon.get_wallet_height.return_value = 100
        daemon.get_farmed_amount.return_value = {"last_height_farmed": 50}
        daemon.get_logged_in_fingerprint.return_value = 123
        return daemon

    @pytest.mark.asyncio
    async def test_update_and_minimal_partials(self, context, wallet_daemon, sent):
        context.set_running(ServiceKind.WALLET, True)
        aggregator = WalletAggregator(context, wallet_daemon)

        await aggregator.update()
        await context.drain()
        assert sent[0]["wallet"] == {
            "wallets": [{"id": 1, "name": "Chia Wallet", "type": 0, "balance": {"unconfirmed": "1.5"}}],
            "syncStatus": {"synced": True, "syncing": False, "syncedHeight": 100},
            "farmedAmount": {"lastHeightFarmed": 50},
            "fingerprint": 123,
        }

        await aggregator.update()
        assert ServiceKind.WALLET not in context.pending

        wallet_daemon.get_wallet_height.return_value = 101
        await aggregator.update()
        assert context.pending.get(ServiceKind.WALLET) == {"syncStatus": {"syncedHeight": 101}}

    @pytest.mark.asyncio
    async def test_balance_change_replaces_wallet_list(self, context, wallet_daemon):
        context.set_running(ServiceKind.WALLET, True)
        aggregator = WalletAggregator(context, wallet_daemon)
        await aggregator.update()

        wallet_daemon.get_wallet_balance.return_value = {"unconfirmed_wallet_balance": 2000000000000}
        await aggregator.update()
        assert context.pending.get(ServiceKind.WALLET) == {
            "wallets": [{"id": 1, "name": "Chia Wallet", "type": 0, "balance": {"unconfirmed": "2"}}],
        }
        await context.drain()

    @pytest.mark.asyncio
    async def test_log_in_is_idempotent(self, context, wallet_daemon):
        aggregator = WalletAggregator(context, wallet_daemon)
        await aggregator.ensure_logged_in()
        await aggregator.ensure_logged_in()
        wallet_daemon.log_in.assert_called_once_with(123)

        aggregator.reset()
        await aggregator.ensure_logged_in()
        assert wallet_daemon.log_in.call_count == 2


class TestFarmerAggregator:

    @pytest.mark.asyncio
    async def test_signage_point_does_not_dispatch(self, context, daemon, clock):
        aggregator = FarmerAggregator(context, daemon, clock=clock)
        await aggregator.on_new_signage_point({"challenge_hash": "c1", "challenge_chain_sp": "s1"})

        assert context.dispatcher.transmissions == 0
        infos = context.pending.get(ServiceKind.FARMER)["farmingInfos"]
        assert infos[0]["proofs"] == 0
        assert infos[0]["receivedAt"] == "2024-01-01T00:00:00.000Z"

    @pytest.mark.asyncio
    async def test_response_time_only_for_existing_key(self, context, daemon, clock, sent):
        aggregator = FarmerAggregator(context, daemon, clock=clock)
        await aggregator.on_new_signage_point({"challenge_hash": "c1", "challenge_chain_sp": "s1"})

        clock.advance(milliseconds=500)
        await aggregator.on_new_farming_info({
            "challenge_hash": "c1", "signage_point": "s1",
            "proofs": 0, "passed_filter": 2, "total_plots": 10,
        })
        assert aggregator.response_times.samples == [500.0]

        await aggregator.on_new_farming_info({
            "challenge_hash": "c2", "signage_point": "s2",
            "proofs": 0, "passed_filter": 1, "total_plots": 10,
        })
        assert aggregator.response_times.samples == [500.0]

        await context.drain()
        farmer = sent[0]["farmer"]
        assert farmer["averageHarvesterResponseTime"] == 500.0
        assert farmer["worstHarvesterResponseTime"] == 500.0
        assert farmer["farmingInfos"][0]["passedFilter"] == 2

    @pytest.mark.asyncio
    async def test_first_farming_info_reports_unknown_response_time(self, context, daemon, clock, sent):
        aggregator = FarmerAggregator(context, daemon, clock=clock)
        await aggregator.on_new_farming_info({
            "challenge_hash": "c1", "signage_point": "s1",
            "proofs": 0, "passed_filter": 1, "total_plots": 10,
        })
        await context.drain()
        assert sent[0]["farmer"]["averageHarvesterResponseTime"] is None
        assert sent[0]["farmer"]["worstHarvesterResponseTime"] is None

    @pytest.mark.asyncio
    async def test_update_stats_and_new_proof_notification(self, context, daemon, clock, notifier):
        aggregator = FarmerAggregator(context, daemon, clock=clock)
        await aggregator.on_new_signage_point({"challenge_hash": "c1", "challenge_chain_sp": "s1"})
        await aggregator.on_new_farming_info({
            "challenge_hash": "c1", "signage_point": "s1",
            "proofs": 2, "passed_filter": 4, "total_plots": 10,
        })
        clock.advance(seconds=10)
        await aggregator.on_new_signage_point({"challenge_hash": "c2", "challenge_chain_sp": "s2"})
        await aggregator.on_new_farming_info({
            "challenge_hash": "c2", "signage_point": "s2",
            "proofs": 0, "passed_filter": 2, "total_plots": 12,
        })

        await aggregator.update()

        snapshot = context.store.get(ServiceKind.FARMER)
        assert snapshot["avgPassedFilter"] == 3
        assert snapshot["totalPlotCount"] == 12
        notifier.notify.assert_called_once_with(new_proof_message("node-1", 2))

        await aggregator.update()
        assert notifier.notify.call_count == 1
        await context.drain()

    @pytest.mark.asyncio
    async def test_passed_filter_timeout_notifies_once(self, context, daemon, clock, notifier):
        aggregator = FarmerAggregator(context, daemon, clock=clock)
        await aggregator.on_new_signage_point({"challenge_hash": "c1", "challenge_chain_sp": "s1"})

        clock.advance(minutes=1)
        await aggregator.update()
        notifier.notify.assert_not_called()

        clock.advance(minutes=3)
        await aggregator.update()
        await aggregator.update()
        notifier.notify.assert_called_once_with(passed_filter_timeout_message("node-1", 3))
        await context.drain()


class TestHarvesterAggregator:

    PLOTS = [
        {"file_size": 100 * GIB, "size": 32, "pool_public_key": "0xabc", "pool_contract_puzzle_hash": None},
        {"file_size": 100 * GIB, "size": 32, "pool_public_key": None, "pool_contract_puzzle_hash": "0xdef"},
    ]

    @pytest.mark.asyncio
    async def test_update_reports_pools_and_totals(self, context, daemon, sent):
        context.set_running(ServiceKind.HARVESTER, True)
        daemon.get_plots.return_value = self.PLOTS
        daemon.get_connections.return_value = [{"type": 3}, {"type": 1}]
        aggregator = HarvesterAggregator(context, daemon)

        await aggregator.update()
        await context.drain()

        pool = {"count": 1, "rawCapacityInGib": "100", "effectiveCapacityInGib": "130"}
        assert sent[0]["harvester"] == {
            "ogPlots": pool,
            "nftPlots": pool,
            "plotCount": 2,
            "totalRawPlotCapacityInGib": "200",
            "totalEffectivePlotCapacityInGib": "260",
            "farmerConnectionsCount": 1,
        }

        daemon.get_plots.return_value = self.PLOTS[:1]
        await aggregator.update()
        assert context.pending.get(ServiceKind.HARVESTER) == {
            "nftPlots": {"count": 0, "rawCapacityInGib": "0", "effectiveCapacityInGib": "0"},
            "plotCount": 1,
            "totalRawPlotCapacityInGib": "100",
            "totalEffectivePlotCapacityInGib": "130",
        }

    @pytest.mark.asyncio
    async def test_compatibility_mode_sends_full_snapshot(self, daemon, sent):
        config = SatelliteConfig(enable_compatibility_mode=True)

        async def transmit(payload):
            sent.append(payload)

        context = AggregationContext(config, transmit)
        context.set_running(ServiceKind.HARVESTER, True)
        daemon.get_plots.return_value = self.PLOTS
        aggregator = HarvesterAggregator(context, daemon)

        await aggregator.update()
        await aggregator.update()

        harvester = context.pending.get(ServiceKind.HARVESTER)
        assert harvester == context.store.get(ServiceKind.HARVESTER)
        assert harvester["totalCapacityInGib"] == "260"
        assert harvester["ogPlots"]["capacityInGib"] == "130"
        await context.drain()
        context.close()


class TestPlotterAggregator:

    @pytest.mark.asyncio
    async def test_queue_upsert_sort_and_removal(self, context, daemon, clock, sent):
        aggregator = PlotterAggregator(context, daemon, clock=clock)

        await aggregator.on_plotting_queue([
            {"id": "1", "state": "SUBMITTED", "size": 32, "deleted": False},
            {"id": "2", "state": "RUNNING", "size": 32, "deleted": False,
             "log": "Starting phase 1/4\nComputing table 1\n"},
        ])
        await context.drain()

        jobs = sent[0]["plotter"]["jobs"]
        assert [job["id"] for job in jobs] == ["2", "1"]
        assert jobs[0]["startedAt"] == "2024-01-01T00:00:00.000Z"
        assert jobs[0]["progress"] == 0.06
        assert jobs[1]["progress"] == 0

        await aggregator.on_plotting_queue([
            {"id": "2", "state": "RUNNING", "size": 32, "log_new": "Computing table 2\n"},
        ])
        jobs = context.pending.get(ServiceKind.PLOTTER)["jobs"]
        assert jobs[0]["progress"] == 0.12

        await aggregator.on_plotting_queue([{"id": "2", "state": "FINISHED", "size": 32}])
        jobs = context.pending.get(ServiceKind.PLOTTER)["jobs"]
        assert [job["id"] for job in jobs] == ["1"]
        assert aggregator.jobs.log("2") == ""

    @pytest.mark.asyncio
    async def test_unchanged_queue_does_not_commit(self, context, daemon, clock):
        aggregator = PlotterAggregator(context, daemon, clock=clock)
        queue = [{"id": "1", "state": "SUBMITTED", "size": 32}]
        await aggregator.on_plotting_queue(queue)
        await context.drain()

        await aggregator.on_plotting_queue(queue)
        assert ServiceKind.PLOTTER not in context.pending


class TestEventHandler:

    @pytest.mark.asyncio
    async def test_handler_errors_are_logged(self, context, daemon, caplog):
        aggregator = FullNodeAggregator(context, daemon)

        async def broken(data):
            raise ValueError("bad payload")

        enqueue = aggregator.event_handler(broken)
        await enqueue({})
        await aggregator.worker.join()

        assert "event handler failed" in caplog.text
        await aggregator.worker.stop()


class TestPlotterStates:

    @pytest.mark.asyncio
    async def test_unrecognised_state_does_not_drop_queue(self, context, daemon, clock, sent):
        aggregator = PlotterAggregator(context, daemon, clock=clock)

        await aggregator.on_plotting_queue([
            {"id": "a", "state": "RUNNING", "size": 32, "log": "Starting phase 1/4\n"},
            {"id": "b", "state": "REMOVING", "size": 32},
        ])
        await context.drain()

        jobs = sent[0]["plotter"]["jobs"]
        assert [job["id"] for job in jobs] == ["a", "b"]
        assert jobs[0]["state"] == "RUNNING"
        assert jobs[1]["state"] == "REMOVING"
        assert jobs[1]["progress"] == 0
