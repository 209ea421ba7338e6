import asyncio

import pytest

from labplatform.orchestrator import ProvisioningRunner


class TestProvisioningRunner:
    @pytest.mark.asyncio
    async def test_submit_while_active_queues_one_follow_up(self):
        runner = ProvisioningRunner()
        gate = asyncio.Event()
        calls = []

        async def job():
            calls.append(1)
            await gate.wait()

        assert runner.submit("req-1", job)
        assert not runner.submit("req-1", job)
        assert not runner.submit("req-1", job)
        assert runner.is_active("req-1")
        await asyncio.sleep(0)
        assert calls == [1]

        gate.set()
        await runner.drain()

        assert calls == [1, 1]
        assert not runner.is_active("req-1")
        assert runner.active_count == 0

    @pytest.mark.asyncio
    async def test_cancelling_shutdown_drops_queued_runs(self):
        runner = ProvisioningRunner()
        calls = []

        async def job():
            calls.append(1)
            await asyncio.sleep(10)

        runner.submit("req-1", job)
        runner.submit("req-1", job)
        await asyncio.sleep(0)
        await runner.shutdown(cancel=True)

        assert calls == [1]
        assert runner.active_count == 0

    @pytest.mark.asyncio
    async def test_key_can_run_again_after_completion(self):
        runner = ProvisioningRunner()
        calls = []

        async def job():
            calls.append(1)

        runner.submit("req-1", job)
        await runner.drain()
        runner.submit("req-1", job)
        await runner.drain()

        assert len(calls) == 2

    @pytest.mark.asyncio
    async def test_concurrency_bounded(self):
        runner = ProvisioningRunner(max_concurrency=2)
        running = 0
        peak = 0

        async def job():
            nonlocal running, peak
            running += 1
            peak = max(peak, running)
            await asyncio.sleep(0.01)
            running -= 1

        for i in range(6):
            runner.submit(f"req-{i}", job)
        await runner.drain()

        assert peak == 2

    @pytest.mark.asyncio
    async def test_crash_is_contained(self):
        runner = ProvisioningRunner()

        async def job():
            raise RuntimeError("boom")

        runner.submit("req-1", job)
        await runner.drain()

        assert runner.active_count == 0

    @pytest.mark.asyncio
    async def test_submitter_cancellation_does_not_abort_run(self):
        runner = ProvisioningRunner()
        finished = asyncio.Event()

        async def job():
            await asyncio.sleep(0.01)
            finished.set()

        async def submitter():
            runner.submit("req-1", job)
            await asyncio.sleep(10)

        task = asyncio.create_task(submitter())
        await asyncio.sleep(0)
        task.cancel()
        await runner.drain()

        assert finished.is_set()

    @pytest.mark.asyncio
    async def test_shutdown_rejects_new_work(self):
        runner = ProvisioningRunner()
        await runner.shutdown()

        async def job():
            return None

        with pytest.raises(RuntimeError):
            runner.submit("req-1", job)
