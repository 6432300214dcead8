from typing import Optional

from domain.interfaces import PrintQueueClient
from domain.models import Job, QueuedJob
from services.job_lifecycle import JobLifecycle


class LocalQueueClient(PrintQueueClient):
    """
    In-process client for when the agent runs next to the job store
    (local development, tests).
    """

    def __init__(self, lifecycle: JobLifecycle):
        self.lifecycle = lifecycle

    @staticmethod
    def _queued(job: Optional[Job]) -> Optional[QueuedJob]:
        if job is None:
            return None
        return QueuedJob(id=job.id, shape=job.shape, status=job.status, paid_at=job.paid_at)

    async def peek_next(self) -> Optional[QueuedJob]:
        return self._queued(await self.lifecycle.peek_next())

    async def in_flight(self) -> Optional[QueuedJob]:
        return self._queued(await self.lifecycle.in_flight())

    async def fetch_mesh(self, job_id: str) -> str:
        job = await self.lifecycle.get(job_id)
        return job.mesh_data

    async def begin_printing(self, job_id: str) -> None:
        await self.lifecycle.begin_printing(job_id)

    async def complete(self, job_id: str) -> None:
        await self.lifecycle.complete(job_id)

    async def fail(self, job_id: str, reason: str) -> None:
        await self.lifecycle.fail(job_id, reason)
