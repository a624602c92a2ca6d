"""Material ingestion.

Responsibilities:
- Create the material row (status processing) and return immediately
- Run one IngestionWorker per upload as a detached, supervised task
- Upload to the extraction service, poll until ready, stream the text
- Persist partial text snapshots so readers can follow progress

Outcomes:
- completed: full text stored
- timeout: poll budget exhausted, row kept with a message for retry
- anything else: the row is deleted (no failure record is kept)
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass

import structlog

from livequiz.config.app_config import IngestionConfig
from livequiz.core.errors import (
    IngestionTimeoutError,
    PoolSaturatedError,
    RemoteFailureError,
    StateConflictError,
)
from livequiz.db.materials_repository import (
    MaterialRecord,
    MaterialStatus,
    complete_material,
    delete_material,
    get_material,
    insert_material,
    mark_material_timeout,
    reset_material_for_retry,
    update_material_text,
)
from livequiz.llm.extraction import ExtractionClient, RemoteFile

logger = structlog.get_logger(__name__)

TIMEOUT_MESSAGE = "Processing timed out, please retry"
INTERRUPTED_MESSAGE = "Processing was interrupted, please retry"


@dataclass
class IngestionJob:
    """Everything a worker needs to process one upload."""

    material_id: str
    session_id: str
    filename: str
    mime_type: str
    data: bytes


class IngestionWorker:
    """Drives one material from processing to a terminal state.

    The worker is the only writer of its material row.
    """

    def __init__(self, job: IngestionJob, extractor: ExtractionClient, config: IngestionConfig):
        self.job = job
        self._extractor = extractor
        self._config = config
        self._log = logger.bind(material_id=job.material_id, session_id=job.session_id)

    async def run(self) -> MaterialStatus | None:
        """Process the upload.

        Returns:
            The terminal status, or None if the row was deleted
        """
        job = self.job
        self._log.info("ingestion.started", filename=job.filename, size=len(job.data))

        try:
            remote = await asyncio.to_thread(
                self._extractor.upload, job.data, job.mime_type, job.filename
            )
            remote = await self._wait_until_ready(remote)
            text = await asyncio.to_thread(self._extract_text, remote.handle)
        except IngestionTimeoutError as e:
            mark_material_timeout(job.material_id, TIMEOUT_MESSAGE)
            self._log.warning("ingestion.timeout", reason=str(e))
            return "timeout"
        except asyncio.CancelledError:
            mark_material_timeout(job.material_id, INTERRUPTED_MESSAGE)
            self._log.warning("ingestion.cancelled")
            raise
        except Exception as e:
            self._log.error("ingestion.failed", error=str(e), error_type=type(e).__name__)
            delete_material(job.material_id)
            return None

        if not complete_material(job.material_id, text):
            self._log.warning("ingestion.row_missing_on_complete")
            return None

        self._log.info("ingestion.completed", chars=len(text))
        return "completed"

    async def _wait_until_ready(self, remote: RemoteFile) -> RemoteFile:
        """Poll the remote file until it leaves in_progress.

        Raises:
            RemoteFailureError: If the service reports the file failed
            IngestionTimeoutError: If max_poll_attempts polls were not enough
        """
        attempts = 0
        while remote.state == "in_progress" and attempts < self._config.max_poll_attempts:
            self._log.debug(
                "ingestion.poll",
                attempt=attempts + 1,
                max_attempts=self._config.max_poll_attempts,
            )
            await asyncio.sleep(self._config.poll_interval)
            remote = await asyncio.to_thread(self._extractor.get_status, remote.handle)
            attempts += 1

        if remote.state == "failed":
            raise RemoteFailureError(
                f"Extraction service failed to process file: {remote.error or 'unknown error'}"
            )

        if remote.state == "in_progress":
            raise IngestionTimeoutError(
                f"File still processing after {attempts} polls"
            )

        return remote

    def _extract_text(self, handle: str) -> str:
        """Stream extracted text, writing a snapshot every snapshot_chars characters.

        Runs in a worker thread.
        """
        parts: list[str] = []
        length = 0
        last_snapshot = 0

        for chunk in self._extractor.extract_text(handle, self.job.mime_type):
            parts.append(chunk)
            length += len(chunk)
            if length - last_snapshot >= self._config.snapshot_chars:
                update_material_text(self.job.material_id, "".join(parts))
                last_snapshot = length

        text = "".join(parts)
        if not text.strip():
            raise RemoteFailureError("No text could be extracted from the file")
        return text


class IngestionPool:
    """Bounded pool of detached ingestion workers.

    At most max_concurrent_jobs workers run at once; at most
    max_pending_jobs are tracked (running or waiting) before new uploads
    are refused.
    """

    def __init__(self, extractor: ExtractionClient, config: IngestionConfig | None = None):
        self._extractor = extractor
        self._config = config or IngestionConfig()
        self._semaphore = asyncio.Semaphore(self._config.max_concurrent_jobs)
        self._tasks: set[asyncio.Task] = set()
        self._closed = False

    @property
    def pending(self) -> int:
        """Number of tracked jobs (running or waiting for a slot)."""
        return len(self._tasks)

    async def accept(
        self,
        material_id: str,
        session_id: str,
        filename: str,
        data: bytes,
        mime_type: str,
    ) -> MaterialRecord:
        """Create the material row and start ingestion in the background.

        Returns:
            The new material (status processing)

        Raises:
            PoolSaturatedError: If the pool is full or shutting down
        """
        self._check_capacity()

        record = insert_material(material_id, session_id, filename, mime_type)
        self._spawn(IngestionJob(material_id, session_id, filename, mime_type, data))
        return record

    async def retry(self, material_id: str, data: bytes) -> MaterialRecord:
        """Re-run ingestion for a material that timed out.

        Raises:
            StateConflictError: If the material is missing or not in timeout
            PoolSaturatedError: If the pool is full or shutting down
        """
        self._check_capacity()

        record = get_material(material_id)
        if record is None or not reset_material_for_retry(material_id):
            raise StateConflictError(
                f"Material {material_id} cannot be retried (only timed-out materials can)"
            )

        self._spawn(
            IngestionJob(material_id, record.session_id, record.filename, record.mime_type, data)
        )
        return get_material(material_id) or record

    def _check_capacity(self) -> None:
        if self._closed:
            raise PoolSaturatedError("Ingestion pool is shutting down")
        if len(self._tasks) >= self._config.max_pending_jobs:
            raise PoolSaturatedError(
                f"Too many uploads in progress ({len(self._tasks)}), try again later"
            )

    def _spawn(self, job: IngestionJob) -> None:
        task = asyncio.create_task(self._run(job), name=f"ingest-{job.material_id}")
        self._tasks.add(task)
        task.add_done_callback(self._on_done)

    async def _run(self, job: IngestionJob) -> MaterialStatus | None:
        try:
            await self._semaphore.acquire()
        except asyncio.CancelledError:
            # Cancelled while queued: the worker never ran, so settle the row here.
            mark_material_timeout(job.material_id, INTERRUPTED_MESSAGE)
            logger.warning("ingestion.cancelled_while_queued", material_id=job.material_id)
            raise

        try:
            return await IngestionWorker(job, self._extractor, self._config).run()
        finally:
            self._semaphore.release()

    def _on_done(self, task: asyncio.Task) -> None:
        """Supervisor: untrack the task and report anything that escaped the worker."""
        self._tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error(
                "ingestion.unhandled_error",
                task=task.get_name(),
                error=str(exc),
                error_type=type(exc).__name__,
            )

    async def join(self) -> None:
        """Wait until every tracked job has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def shutdown(self, timeout: float | None = None) -> None:
        """Stop accepting jobs, wait for running ones, cancel stragglers."""
        self._closed = True
        if not self._tasks:
            return

        timeout = self._config.shutdown_timeout if timeout is None else timeout
        _, still_running = await asyncio.wait(list(self._tasks), timeout=timeout)
        for task in still_running:
            task.cancel()
        if still_running:
            await asyncio.gather(*still_running, return_exceptions=True)

        logger.info("ingestion.pool_shutdown", cancelled=len(still_running))
