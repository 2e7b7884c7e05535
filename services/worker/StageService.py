"""Common job flow of a pipeline stage: guard, run, resolve failures."""

from abc import ABC, abstractmethod
from enum import Enum

from shared.db.IngestionRepository import IngestionRepository
from shared.db.models import DriveFile
from shared.helper.HelperConfig import HelperConfig
from shared.models.ingestion import IngestionPhase, QueueJob
from shared.pipeline.errors import ClassifiedError, Err, Ok, Result, classify_exception
from shared.pipeline.retry import MAX_RETRIES, decide_retry
from shared.queue.WorkQueue import WorkQueue


class StageOutcome(str, Enum):
    COMPLETED = "completed"
    SKIPPED = "skipped"
    RETRY_SCHEDULED = "retry_scheduled"
    FAILED = "failed"


class StageService(ABC):
    """Base class of the fetch and vectorize stages.

    A job is only worked on while its file is in one of the stage's entry
    phases. Every exception raised by ``_execute`` is classified exactly once;
    transient errors within the retry budget re-enqueue the job after a
    backoff, everything else marks the file as failed.
    """

    def __init__(self, helper_config: HelperConfig, repository: IngestionRepository, retry_queue: WorkQueue):
        self.logging = helper_config.get_logger()
        self._repository = repository
        self._retry_queue = retry_queue

    ##########################################
    ################ GETTER ##################
    ##########################################

    @abstractmethod
    def get_stage_name(self) -> str:
        pass

    @abstractmethod
    def _get_entry_phases(self) -> frozenset[IngestionPhase]:
        pass

    @abstractmethod
    def _get_active_phase(self) -> IngestionPhase:
        pass

    ##########################################
    ################ STAGE ###################
    ##########################################

    @abstractmethod
    async def _execute(self, job: QueueJob, file: DriveFile, log_prefix: str) -> None:
        """Run the stage body. Raise on any failure."""
        pass

    async def _handle_out_of_phase(self, job: QueueJob, file: DriveFile, log_prefix: str) -> None:
        """Called for jobs whose file is not in an entry phase. Default: nothing to do."""
        self.logging.info("%s File is in phase '%s', skipping duplicate %s job.", log_prefix, file.ingestion_phase, self.get_stage_name())

    async def process_job(self, job: QueueJob) -> StageOutcome:
        """Process one job end to end.

        Returns:
            StageOutcome: What happened to the file.
        """
        log_prefix = f"[{self.get_stage_name()}][{job.file_id}]"
        file = await self._repository.get_file(job.user_id, job.file_id)
        if file is None:
            self.logging.warning("%s No file record for user %s, skipping.", log_prefix, job.user_id)
            return StageOutcome.SKIPPED

        log_prefix = f"[{self.get_stage_name()}][{file.name or job.file_id}]"
        if IngestionPhase(file.ingestion_phase) not in self._get_entry_phases():
            await self._handle_out_of_phase(job, file, log_prefix)
            return StageOutcome.SKIPPED

        self.logging.info("%s Starting %s (phase %s, retries %d).", log_prefix, self.get_stage_name(), file.ingestion_phase, file.retry_count)
        file = await self._repository.set_phase(job.user_id, job.file_id, self._get_active_phase())

        result = await self._run(job, file, log_prefix)
        if isinstance(result, Ok):
            return StageOutcome.COMPLETED
        return await self._resolve_failure(job, file, result.error, log_prefix)

    async def _run(self, job: QueueJob, file: DriveFile, log_prefix: str) -> Result[None]:
        try:
            await self._execute(job, file, log_prefix)
        except Exception as e:
            error = classify_exception(e)
            self.logging.debug("%s %s classified as %s.", log_prefix, type(e).__name__, error.kind.value)
            return Err(error)
        return Ok(None)

    async def _resolve_failure(self, job: QueueJob, file: DriveFile, error: ClassifiedError, log_prefix: str) -> StageOutcome:
        decision = decide_retry(error, file.retry_count or 0)
        if not decision.retry:
            self.logging.error(
                "%s Terminal failure (%s, retries %d). Error: %s",
                log_prefix, error.kind.value, file.retry_count or 0, error.message,
            )
            await self._repository.mark_failed(job.user_id, job.file_id, error.message)
            return StageOutcome.FAILED

        self.logging.warning(
            "%s Retryable failure. Attempt %d/%d in %ds. Error: %s",
            log_prefix, decision.attempt, MAX_RETRIES, decision.delay_seconds, error.message,
        )
        await self._repository.record_retry(job.user_id, job.file_id, error.message)
        await self._retry_queue.enqueue_delayed(job.requeued(), decision.delay_seconds)
        return StageOutcome.RETRY_SCHEDULED
