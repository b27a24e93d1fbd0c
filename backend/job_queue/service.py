"""
Durable job queue: the simpler at-least-once delivery path.

Jobs are read without locking, so only one worker process may drain a
queue. Attempts are counted before delivery starts; a job that fails on
its `max_attempts`-th attempt is marked FAILED and never picked up again.
"""
from dataclasses import dataclass, asdict
from typing import Any, Dict, Optional

from loguru import logger
from sqlalchemy.ext.asyncio import async_sessionmaker

from database.connection import transaction
from database.repository import QueueRepository, SystemConfigRepository
from downloaders.base import DownloadResult
from downloaders.chain import DownloadEngineChain
from errors import ChainExhaustedError, EngineNotFoundError
from notifier.notifier import Notifier
from utils.polling import PeriodicWorker

AUTO_DOWNLOAD_KEY = "AUTO_DOWNLOAD"


@dataclass
class QueuePayload:
    url: str
    username: str
    channel_id: str
    role_id: Optional[str] = None
    source_server: Optional[str] = None
    message: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "QueuePayload":
        return cls(
            url=data["url"],
            username=data["username"],
            channel_id=data["channel_id"],
            role_id=data.get("role_id"),
            source_server=data.get("source_server"),
            message=data.get("message"),
        )


@dataclass
class QueueRunResult:
    done: int = 0
    retrying: int = 0
    failed: int = 0


class JobQueueService:
    """Enqueue jobs and drain them in small batches"""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        chain: DownloadEngineChain,
        notifier: Notifier,
        batch_size: int = 5,
        max_attempts: int = 3,
    ):
        self.session_factory = session_factory
        self.chain = chain
        self.notifier = notifier
        self.batch_size = batch_size
        self.max_attempts = max_attempts

    async def enqueue(self, payload: QueuePayload) -> int:
        async with transaction(self.session_factory) as session:
            job = await QueueRepository(session).enqueue(payload.to_dict())
            return job.id

    async def process_queue(self) -> QueueRunResult:
        """Process one batch of PENDING jobs, oldest first"""
        result = QueueRunResult()

        async with transaction(self.session_factory) as session:
            jobs = [(job.id, job.payload) for job in await QueueRepository(session).get_pending(self.batch_size)]
            auto_download = await SystemConfigRepository(session).get(AUTO_DOWNLOAD_KEY) != "false"

        for job_id, payload in jobs:
            outcome = await self._process_job(job_id, payload, auto_download)
            setattr(result, outcome, getattr(result, outcome) + 1)

        if jobs:
            logger.info(
                f"Queue batch: {result.done} done, {result.retrying} to retry, {result.failed} failed"
            )
        return result

    async def _process_job(self, job_id: int, raw_payload: Dict[str, Any], auto_download: bool) -> str:
        async with transaction(self.session_factory) as session:
            attempts = await QueueRepository(session).increment_attempts(job_id)

        try:
            payload = QueuePayload.from_dict(raw_payload)
            media = await self._download(job_id, payload.url) if auto_download else None
            await self.notifier.notify(
                payload.channel_id,
                self._render(payload, media),
                media=media,
                role_id=payload.role_id,
                correlation_id=f"job-{job_id}",
            )
        except Exception as e:
            logger.error(f"Job {job_id} failed on attempt {attempts}/{self.max_attempts}: {e}")
            async with transaction(self.session_factory) as session:
                repo = QueueRepository(session)
                if attempts >= self.max_attempts:
                    await repo.mark_failed(job_id, str(e))
                    logger.warning(f"Job {job_id} moved to FAILED after {attempts} attempts")
                    return "failed"
                await repo.record_error(job_id, str(e))
            return "retrying"

        async with transaction(self.session_factory) as session:
            await QueueRepository(session).mark_done(job_id)
        logger.info(f"Job {job_id} done")
        return "done"

    async def _download(self, job_id: int, url: str) -> Optional[DownloadResult]:
        try:
            return await self.chain.download(url)
        except (ChainExhaustedError, EngineNotFoundError) as e:
            logger.warning(f"Download failed for job {job_id}, falling back to link: {e}")
            return None

    @staticmethod
    def _render(payload: QueuePayload, media: Optional[DownloadResult]) -> str:
        message = payload.message or f"🎥 **New Post by @{payload.username}!**"
        if media is None or not media.urls:
            message += f"\n<{payload.url}>"
        if payload.source_server:
            message += f"\n*via {payload.source_server}*"
        return message


class QueueWorker(PeriodicWorker):
    """Drains the job queue on a fixed interval"""

    name = "Queue worker"

    def __init__(self, service: JobQueueService, interval: float = 5.0):
        super().__init__(interval)
        self.service = service
        self.last_result: Optional[QueueRunResult] = None

    async def _run_tick(self):
        self.last_result = await self.service.process_queue()
