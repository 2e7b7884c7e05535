from unittest.mock import AsyncMock, Mock

import pytest

from services.worker.BaseWorker import BaseWorker, build_consumer_name
from services.worker.StageService import StageOutcome
from shared.models.ingestion import FetchJob
from shared.queue.WorkQueue import QueueMessage


class TestBaseWorker:
    @pytest.fixture
    def queue(self):
        queue = AsyncMock()
        queue.stream = "drive_fetch:0"
        queue.read.return_value = []
        queue.reclaim_stale.return_value = []
        return queue

    @pytest.fixture
    def stage(self):
        stage = Mock()
        stage.process_job = AsyncMock(return_value=StageOutcome.COMPLETED)
        return stage

    @pytest.fixture
    def worker(self, helper_config, queue, stage):
        return BaseWorker(helper_config=helper_config, queue=queue, stage=stage, consumer_name="fetch-worker-test")

    def _message(self, message_id: str = "1-0") -> QueueMessage:
        return QueueMessage(message_id=message_id, job=FetchJob(user_id="u", file_id="f"))

    def test_consumer_name_is_unique_per_process(self):
        name = build_consumer_name("fetch")
        assert name.startswith("fetch-worker-")
        assert name.split("-")[-1].isdigit()

    async def test_resolved_job_is_acknowledged(self, worker, queue, stage):
        assert await worker.handle_message(self._message()) is True
        stage.process_job.assert_awaited_once()
        queue.ack.assert_awaited_once_with("1-0")

    @pytest.mark.parametrize("outcome", [StageOutcome.SKIPPED, StageOutcome.RETRY_SCHEDULED, StageOutcome.FAILED])
    async def test_every_resolved_outcome_is_acknowledged(self, worker, queue, stage, outcome):
        stage.process_job.return_value = outcome
        assert await worker.handle_message(self._message()) is True
        queue.ack.assert_awaited_once_with("1-0")

    async def test_invalid_message_is_dropped(self, worker, queue, stage):
        message = QueueMessage(message_id="2-0", job=None, error="Empty message payload.")
        assert await worker.handle_message(message) is True
        stage.process_job.assert_not_awaited()
        queue.ack.assert_awaited_once_with("2-0")

    async def test_unhandled_error_leaves_message_pending(self, worker, queue, stage):
        stage.process_job.side_effect = RuntimeError("database gone")
        assert await worker.handle_message(self._message()) is False
        queue.ack.assert_not_awaited()

    async def test_run_once_promotes_reclaims_and_reads(self, worker, queue):
        queue.reclaim_stale.return_value = [self._message("0-1")]
        queue.read.return_value = [self._message("5-0")]

        assert await worker.run_once() == 2

        queue.promote_due_jobs.assert_awaited_once()
        queue.reclaim_stale.assert_awaited_once_with("fetch-worker-test", 60000, 10)
        queue.read.assert_awaited_once_with("fetch-worker-test", count=1, block_ms=2000)
        assert [call.args[0] for call in queue.ack.await_args_list] == ["0-1", "5-0"]

    async def test_reclaim_can_be_disabled(self, monkeypatch, helper_config, queue, stage):
        monkeypatch.setenv("QUEUE_RECLAIM_BATCH", "0")
        worker = BaseWorker(helper_config=helper_config, queue=queue, stage=stage, consumer_name="c")
        await worker.run_once()
        queue.reclaim_stale.assert_not_awaited()

    async def test_run_forever_stops_and_survives_loop_errors(self, monkeypatch, helper_config, queue, stage):
        monkeypatch.setenv("WORKER_ERROR_COOLDOWN", "0")
        worker = BaseWorker(helper_config=helper_config, queue=queue, stage=stage, consumer_name="c")
        calls = {"n": 0}

        async def flaky_promote():
            calls["n"] += 1
            if calls["n"] == 1:
                raise ConnectionError("redis restarting")
            worker.stop()
            return 0

        queue.promote_due_jobs.side_effect = flaky_promote
        await worker.run_forever()

        queue.ensure_group.assert_awaited_once()
        assert calls["n"] == 2
