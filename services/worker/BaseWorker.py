"""Consumer loop shared by the stage workers."""

import asyncio
import os
import socket

from services.worker.StageService import StageService
from shared.helper.HelperConfig import HelperConfig
from shared.queue.WorkQueue import QueueMessage, WorkQueue


def build_consumer_name(prefix: str) -> str:
    return f"{prefix}-worker-{socket.gethostname()}-{os.getpid()}"


class BaseWorker:
    """Polls one stream and hands each job to a stage.

    A loop pass promotes due delayed jobs, reclaims entries left pending by
    crashed consumers, then block-reads one new message. A message is
    acknowledged once the stage resolved it (completed, skipped, retry
    scheduled or failed). If the stage raises, the message stays pending and is
    reclaimed after QUEUE_RECLAIM_IDLE_MS.
    """

    def __init__(self, helper_config: HelperConfig, queue: WorkQueue, stage: StageService, consumer_name: str):
        self.logging = helper_config.get_logger()
        self._queue = queue
        self._stage = stage
        self.consumer_name = consumer_name
        self.block_ms = int(helper_config.get_number_val("QUEUE_BLOCK_MS", default=2000, minimum=0))
        self.reclaim_idle_ms = int(helper_config.get_number_val("QUEUE_RECLAIM_IDLE_MS", default=60000, minimum=1))
        self.reclaim_batch = int(helper_config.get_number_val("QUEUE_RECLAIM_BATCH", default=10, minimum=0))
        self.error_cooldown = float(helper_config.get_number_val("WORKER_ERROR_COOLDOWN", default=5, minimum=0))
        self._stopping = False

    def stop(self) -> None:
        self._stopping = True

    async def handle_message(self, message: QueueMessage) -> bool:
        """Process a single message.

        Returns:
            bool: True if the message was acknowledged.
        """
        if message.job is None:
            self.logging.warning("[%s] Dropping invalid message %s: %s", self.consumer_name, message.message_id, message.error)
            await self._queue.ack(message.message_id)
            return True

        try:
            outcome = await self._stage.process_job(message.job)
        except Exception as e:
            self.logging.error(
                "[%s] Unhandled error on message %s (file %s), leaving it pending for reclaim: %s",
                self.consumer_name, message.message_id, message.job.file_id, e,
            )
            return False

        await self._queue.ack(message.message_id)
        self.logging.info("[%s] Acknowledged %s (%s).", self.consumer_name, message.message_id, outcome.value, color="green")
        return True

    async def run_once(self) -> int:
        """Run one loop pass.

        Returns:
            int: Number of messages handled.
        """
        await self._queue.promote_due_jobs()

        messages: list[QueueMessage] = []
        if self.reclaim_batch:
            messages.extend(await self._queue.reclaim_stale(self.consumer_name, self.reclaim_idle_ms, self.reclaim_batch))
        messages.extend(await self._queue.read(self.consumer_name, count=1, block_ms=self.block_ms))

        for message in messages:
            await self.handle_message(message)
        return len(messages)

    async def run_forever(self) -> None:
        await self._queue.ensure_group()
        self.logging.info("[%s] Listening on stream %s", self.consumer_name, self._queue.stream)
        while not self._stopping:
            try:
                await self.run_once()
            except Exception as e:
                self.logging.error("[%s] Main loop error: %s. Cooling down for %.0fs.", self.consumer_name, e, self.error_cooldown)
                await asyncio.sleep(self.error_cooldown)
        self.logging.info("[%s] Stopped.", self.consumer_name)
