"""Redis stream work queue with consumer groups and durable delayed jobs.

One stream per job type, one consumer group per stream. Delivery is
at-least-once: a message stays in the group's pending list until it is
acknowledged, and entries idle for too long are reclaimed by another consumer.
Delayed retries are kept in a sorted set next to the stream, scored by the
epoch time at which they become due.
"""

import json
import time
from dataclasses import dataclass

import redis.asyncio as aioredis
from pydantic import ValidationError
from redis.exceptions import ResponseError

from shared.helper.HelperConfig import HelperConfig
from shared.models.ingestion import FetchJob, QueueJob, VectorizeJob


FETCH_STREAM = "drive_fetch:0"
FETCH_GROUP = "drive-fetch-workers"
VECTORIZE_STREAM = "drive_vectorize:0"
VECTORIZE_GROUP = "drive-vectorize-workers"

PROMOTE_BATCH_SIZE = 100


@dataclass(frozen=True)
class QueueMessage:
    """A message read from the stream.

    ``job`` is None when the payload failed validation; ``error`` then holds the reason.
    """

    message_id: str
    job: QueueJob | None
    error: str | None = None
    fields: dict | None = None


def create_redis(helper_config: HelperConfig) -> aioredis.Redis:
    """Build the shared async Redis client from REDIS_URL."""
    return aioredis.from_url(
        helper_config.get_string_val("REDIS_URL"),
        decode_responses=True,
        socket_connect_timeout=5,
    )


class WorkQueue:
    def __init__(self, helper_config: HelperConfig, redis: aioredis.Redis, stream: str, group: str, job_model: type[QueueJob]):
        self.logging = helper_config.get_logger()
        self._redis = redis
        self.stream = stream
        self.group = group
        self.job_model = job_model
        self.delayed_key = f"{stream}:delayed"
        self._job_type = job_model.model_fields["job_type"].default

    ##########################################
    ################ GROUPS ##################
    ##########################################

    async def ensure_group(self) -> None:
        """Create the consumer group (and the stream) if it does not exist yet."""
        try:
            await self._redis.xgroup_create(self.stream, self.group, id="0", mkstream=True)
            self.logging.info("Created consumer group '%s' on stream '%s'.", self.group, self.stream)
        except ResponseError as e:
            if "BUSYGROUP" not in str(e):
                raise
            self.logging.debug("Consumer group '%s' already exists on stream '%s'.", self.group, self.stream)

    ##########################################
    ############### PRODUCERS ################
    ##########################################

    async def enqueue(self, job: QueueJob) -> str:
        """Append a job to the stream.

        Returns:
            str: The stream entry ID.
        """
        self._check_job_type(job)
        message_id = await self._redis.xadd(self.stream, job.to_fields())
        self.logging.debug("Enqueued %s job for file %s (user %s) as %s.", self._job_type, job.file_id, job.user_id, message_id)
        return message_id

    async def enqueue_delayed(self, job: QueueJob, delay_seconds: float) -> None:
        """Schedule a job to be appended to the stream after ``delay_seconds``."""
        self._check_job_type(job)
        due_at = time.time() + delay_seconds
        member = json.dumps(job.to_fields(), sort_keys=True)
        await self._redis.zadd(self.delayed_key, {member: due_at})
        self.logging.info("Scheduled %s job for file %s in %.0fs.", self._job_type, job.file_id, delay_seconds)

    async def promote_due_jobs(self, now: float | None = None) -> int:
        """Move due delayed jobs into the stream.

        Only the caller whose ZREM removes an entry appends it, so concurrent
        workers never promote the same job twice.

        Returns:
            int: Number of jobs promoted by this caller.
        """
        now = time.time() if now is None else now
        members = await self._redis.zrangebyscore(self.delayed_key, "-inf", now, start=0, num=PROMOTE_BATCH_SIZE)
        promoted = 0
        for member in members:
            if not await self._redis.zrem(self.delayed_key, member):
                continue
            try:
                fields = json.loads(member)
            except json.JSONDecodeError:
                self.logging.warning("Dropping malformed delayed job on %s: %r", self.delayed_key, member)
                continue
            await self._redis.xadd(self.stream, fields)
            promoted += 1
        if promoted:
            self.logging.info("Promoted %d delayed job(s) to stream '%s'.", promoted, self.stream)
        return promoted

    ##########################################
    ############### CONSUMERS ################
    ##########################################

    async def read(self, consumer: str, count: int = 1, block_ms: int = 2000) -> list[QueueMessage]:
        """Block-read new messages for ``consumer``.

        Returns:
            list[QueueMessage]: Possibly empty when the block timeout elapsed.
        """
        try:
            response = await self._redis.xreadgroup(self.group, consumer, {self.stream: ">"}, count=count, block=block_ms)
        except ResponseError as e:
            if "NOGROUP" not in str(e):
                raise
            self.logging.warning("Consumer group '%s' missing on '%s', recreating.", self.group, self.stream)
            await self.ensure_group()
            return []
        messages: list[QueueMessage] = []
        for _stream, entries in response or []:
            for message_id, fields in entries:
                messages.append(self.parse_message(message_id, fields))
        return messages

    async def reclaim_stale(self, consumer: str, min_idle_ms: int, count: int = 10) -> list[QueueMessage]:
        """Take over entries that another consumer read but never acknowledged."""
        response = await self._redis.xautoclaim(self.stream, self.group, consumer, min_idle_time=min_idle_ms, start_id="0-0", count=count)
        entries = response[1] if response and len(response) > 1 else []
        messages = [self.parse_message(message_id, fields) for message_id, fields in entries]
        if messages:
            self.logging.warning("Reclaimed %d stale message(s) from '%s'.", len(messages), self.stream)
        return messages

    async def ack(self, message_id: str) -> None:
        await self._redis.xack(self.stream, self.group, message_id)

    async def pending_count(self) -> int:
        summary = await self._redis.xpending(self.stream, self.group)
        return int(summary.get("pending", 0)) if summary else 0

    ##########################################
    ################ HELPERS #################
    ##########################################

    def parse_message(self, message_id: str, fields: dict | None) -> QueueMessage:
        """Validate a raw stream entry into this queue's job model."""
        if not fields:
            return QueueMessage(message_id=message_id, job=None, error="Empty message payload.", fields=fields)
        job_type = fields.get("job_type")
        if job_type != self._job_type:
            return QueueMessage(
                message_id=message_id,
                job=None,
                error=f"Unexpected job_type {job_type!r} on stream '{self.stream}', expected '{self._job_type}'.",
                fields=fields,
            )
        try:
            job = self.job_model.model_validate(fields)
        except ValidationError as e:
            return QueueMessage(message_id=message_id, job=None, error=f"Invalid job payload: {e}", fields=fields)
        return QueueMessage(message_id=message_id, job=job, fields=fields)

    def _check_job_type(self, job: QueueJob) -> None:
        if not isinstance(job, self.job_model):
            raise TypeError(f"Queue '{self.stream}' accepts {self.job_model.__name__}, got {type(job).__name__}.")


##########################################
############# QUEUE FACTORY ##############
##########################################

def create_fetch_queue(helper_config: HelperConfig, redis: aioredis.Redis) -> WorkQueue:
    return WorkQueue(helper_config, redis, FETCH_STREAM, FETCH_GROUP, FetchJob)


def create_vectorize_queue(helper_config: HelperConfig, redis: aioredis.Redis) -> WorkQueue:
    return WorkQueue(helper_config, redis, VECTORIZE_STREAM, VECTORIZE_GROUP, VectorizeJob)


async def enqueue_fetch(queue: WorkQueue, user_id: str, file_id: str) -> str:
    return await queue.enqueue(FetchJob(user_id=user_id, file_id=file_id))


async def enqueue_vectorize(queue: WorkQueue, user_id: str, file_id: str) -> str:
    return await queue.enqueue(VectorizeJob(user_id=user_id, file_id=file_id))
