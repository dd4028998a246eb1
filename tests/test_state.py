import asyncio

from cdplayer.state import Poller, StateNotifier


class TestStateNotifier:
    def test_publish_bumps_version_and_notifies(self):
        notifier = StateNotifier()
        calls = []
        notifier.subscribe(lambda: calls.append(notifier.version))

        notifier.publish()
        notifier.publish()

        assert calls == [1, 2]
        assert notifier.version == 2

    def test_unsubscribe(self):
        notifier = StateNotifier()
        calls = []
        unsubscribe = notifier.subscribe(lambda: calls.append(1))
        unsubscribe()
        unsubscribe()
        notifier.publish()
        assert calls == []

    def test_failing_listener_does_not_block_others(self):
        notifier = StateNotifier()
        calls = []

        def broken():
            raise RuntimeError("boom")

        notifier.subscribe(broken)
        notifier.subscribe(lambda: calls.append(1))
        notifier.publish()
        assert calls == [1]


class TestPoller:
    def test_start_refreshes_immediately_then_on_interval(self):
        calls = []

        async def refresh():
            calls.append(asyncio.get_running_loop().time())

        async def scenario():
            poller = Poller(refresh, interval=0.05, fast_interval=0.01)
            poller.start()
            assert poller.running
            await asyncio.sleep(0.18)
            poller.stop()
            assert not poller.running

        asyncio.run(scenario())
        assert 3 <= len(calls) <= 5

    def test_start_is_idempotent(self):
        calls = []

        async def refresh():
            calls.append(1)

        async def scenario():
            poller = Poller(refresh, interval=10)
            poller.start()
            poller.start()
            await asyncio.sleep(0.01)
            poller.stop()

        asyncio.run(scenario())
        assert calls == [1]

    def test_fast_overlay_expires_after_ceiling(self):
        calls = []

        async def refresh():
            calls.append(1)

        async def scenario():
            poller = Poller(refresh, interval=10, fast_interval=0.01)
            poller.start_fast(ceiling=0.05)
            assert poller.fast_active
            await asyncio.sleep(0.15)
            assert not poller.fast_active
            count = len(calls)
            await asyncio.sleep(0.05)
            assert len(calls) == count
            poller.stop()

        asyncio.run(scenario())
        assert len(calls) >= 2

    def test_ceiling_callback_runs_only_on_expiry(self):
        expired = []

        async def refresh():
            pass

        async def scenario():
            poller = Poller(refresh, interval=10, fast_interval=0.01,
                            on_ceiling=lambda: expired.append(1))
            poller.start_fast(ceiling=0.03)
            await asyncio.sleep(0.1)
            assert expired == [1]
            poller.start_fast(ceiling=0.03)
            poller.stop_fast()
            await asyncio.sleep(0.05)
            poller.stop()

        asyncio.run(scenario())
        assert expired == [1]

    def test_stop_fast_returns_to_slow_interval(self):
        calls = []

        async def refresh():
            calls.append(1)

        async def scenario():
            poller = Poller(refresh, interval=10, fast_interval=0.01)
            poller.start_fast()
            await asyncio.sleep(0.05)
            poller.stop_fast()
            await asyncio.sleep(0.005)
            count = len(calls)
            await asyncio.sleep(0.05)
            assert len(calls) == count
            assert not poller.fast_active

        asyncio.run(scenario())

    def test_refresh_errors_are_logged_not_raised(self):
        async def refresh():
            raise RuntimeError("boom")

        async def scenario():
            poller = Poller(refresh)
            task = poller.trigger()
            await task
            assert task.exception() is None

        asyncio.run(scenario())
