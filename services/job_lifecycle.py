import asyncio
import json
from datetime import datetime
from typing import Awaitable, Callable, Dict, FrozenSet, List, Optional, TypeVar
from uuid import uuid4

import structlog

from core.config import LifecycleConfig
from core.exceptions import InvalidTransitionError, JobNotFoundError, StoreUnavailableError
from core.telemetry import tracer
from domain.interfaces import JobStore
from domain.models import Job, JobStatus, ShapeDescriptor, utcnow

logger = structlog.get_logger()

R = TypeVar("R")

QUEUE_KEY = "queue"

# event -> statuses it may be applied to
TRANSITIONS: Dict[str, FrozenSet[JobStatus]] = {
    "confirm_payment": frozenset({JobStatus.PENDING_PAYMENT}),
    "begin_printing": frozenset({JobStatus.PAID}),
    "complete": frozenset({JobStatus.PRINTING}),
    "fail": frozenset(status for status in JobStatus if not status.is_terminal),
}


def job_key(job_id: str) -> str:
    return f"job:{job_id}"


def new_job_id() -> str:
    return uuid4().hex[:8]


def _load_queue(raw: Optional[str]) -> List[str]:
    return json.loads(raw) if raw else []


class JobLifecycle:
    """
    State machine over Job documents and the queue document.

    pending_payment -> paid -> printing -> completed, and any non-terminal
    status -> failed. A job id is in the queue exactly while the job is
    paid or printing.
    """

    def __init__(
        self,
        store: JobStore,
        config: Optional[LifecycleConfig] = None,
        clock: Callable[[], datetime] = utcnow,
        id_factory: Callable[[], str] = new_job_id,
    ):
        self.store = store
        self.config = config or LifecycleConfig()
        self.clock = clock
        self.id_factory = id_factory

    async def _call(self, operation: Awaitable[R]) -> R:
        """Runs a store operation under the configured timeout."""
        try:
            return await asyncio.wait_for(operation, timeout=self.config.store_timeout)
        except asyncio.TimeoutError as e:
            raise StoreUnavailableError("Job store operation timed out", original_error=e)

    # --- Reads ---

    async def get(self, job_id: str) -> Job:
        raw = await self._call(self.store.get(job_key(job_id)))
        if raw is None:
            raise JobNotFoundError(f"Job {job_id} not found")
        return Job.from_document(raw)

    async def read_queue(self) -> List[str]:
        return _load_queue(await self._call(self.store.get(QUEUE_KEY)))

    async def queue_position(self, job_id: str) -> Optional[int]:
        """1-based position in the queue, None if not queued."""
        queue = await self.read_queue()
        return queue.index(job_id) + 1 if job_id in queue else None

    async def queued_jobs(self) -> List[Job]:
        """Paid jobs waiting for the printer, in queue order."""
        jobs = []
        for job_id in await self.read_queue():
            raw = await self._call(self.store.get(job_key(job_id)))
            if raw is None:
                continue
            job = Job.from_document(raw)
            if job.status == JobStatus.PAID:
                jobs.append(job)
        return jobs

    async def _head(self) -> Optional[Job]:
        """
        First paid or printing job in the queue. Entries whose job is missing
        or in an unexpected status are logged and skipped (left in place).
        """
        for job_id in await self.read_queue():
            raw = await self._call(self.store.get(job_key(job_id)))
            if raw is None:
                logger.error("queue_entry_missing_job", job_id=job_id)
                continue

            job = Job.from_document(raw)
            if job.status in (JobStatus.PAID, JobStatus.PRINTING):
                return job

            logger.error("queue_entry_unexpected_status", job_id=job_id, status=job.status.value)
        return None

    async def peek_next(self) -> Optional[Job]:
        """
        Returns the job the print agent should start next, or None.
        A printing job ahead of everything else means one is already in flight.
        """
        job = await self._head()
        if job is None or job.status != JobStatus.PAID:
            return None
        return job

    async def in_flight(self) -> Optional[Job]:
        """The printing job at the head of the queue, if any."""
        job = await self._head()
        if job is None or job.status != JobStatus.PRINTING:
            return None
        return job

    # --- Transitions ---

    async def create(self, prompt: str, shape: ShapeDescriptor, mesh_data: str) -> Job:
        with tracer.start_as_current_span("job.create"):
            job = Job(
                id=self.id_factory(),
                prompt=prompt,
                shape=shape,
                mesh_data=mesh_data,
                status=JobStatus.PENDING_PAYMENT,
                created_at=self.clock(),
            )
            await self._call(self.store.put(job_key(job.id), job.to_document(), ttl=self.config.retention))
            logger.info("job_created", job_id=job.id, kind=shape.kind.value)
            return job

    async def confirm_payment(self, job_id: str, payment_ref: str) -> Job:
        """
        Marks a job paid and appends it to the queue. Repeating the call with
        the same payment reference only re-runs the enqueue, so a confirmation
        whose queue write failed can be retried.
        """
        with tracer.start_as_current_span("job.confirm_payment"):
            current = await self.get(job_id)
            if current.status == JobStatus.PAID and current.payment_ref == payment_ref:
                await self._enqueue(job_id)
                logger.info("payment_confirmation_replayed", job_id=job_id, payment_ref=payment_ref)
                return current

            now = self.clock()

            def apply(job: Job) -> None:
                job.status = JobStatus.PAID
                job.payment_ref = payment_ref
                job.paid_at = now

            job = await self._transition(job_id, "confirm_payment", apply)
            await self._enqueue(job_id)
            logger.info("job_paid", job_id=job_id, payment_ref=payment_ref)
            return job

    async def begin_printing(self, job_id: str) -> Job:
        with tracer.start_as_current_span("job.begin_printing"):

            def apply(job: Job) -> None:
                job.status = JobStatus.PRINTING

            job = await self._transition(job_id, "begin_printing", apply)
            logger.info("job_printing", job_id=job_id)
            return job

    async def complete(self, job_id: str) -> Job:
        """Completing an already completed job only re-runs the dequeue."""
        with tracer.start_as_current_span("job.complete"):
            current = await self.get(job_id)
            if current.status == JobStatus.COMPLETED:
                await self._dequeue(job_id)
                return current

            now = self.clock()

            def apply(job: Job) -> None:
                job.status = JobStatus.COMPLETED
                job.printed_at = now

            job = await self._transition(job_id, "complete", apply)
            await self._dequeue(job_id)
            logger.info("job_completed", job_id=job_id)
            return job

    async def fail(self, job_id: str, reason: str) -> Job:
        """
        Moves a job to failed and takes it off the queue.
        Failing an already failed job changes nothing.
        """
        with tracer.start_as_current_span("job.fail"):
            job = await self.get(job_id)
            if job.status == JobStatus.FAILED:
                await self._dequeue(job_id)
                return job

            now = self.clock()

            def apply(job: Job) -> None:
                job.status = JobStatus.FAILED
                job.failure_reason = reason
                job.failed_at = now

            job = await self._transition(job_id, "fail", apply)
            await self._dequeue(job_id)
            logger.warning("job_failed", job_id=job_id, reason=reason)
            return job

    async def _transition(self, job_id: str, event: str, apply: Callable[[Job], None]) -> Job:
        allowed = TRANSITIONS[event]

        def mutate(raw: Optional[str]) -> str:
            if raw is None:
                raise JobNotFoundError(f"Job {job_id} not found")
            job = Job.from_document(raw)
            if job.status not in allowed:
                raise InvalidTransitionError(job_id, job.status.value, event)
            apply(job)
            return job.to_document()

        try:
            return Job.from_document(await self._call(self.store.update(job_key(job_id), mutate)))
        except InvalidTransitionError as e:
            logger.warning("invalid_transition", job_id=job_id, status=e.status, transition=event)
            raise

    async def _enqueue(self, job_id: str) -> None:
        def mutate(raw: Optional[str]) -> str:
            queue = _load_queue(raw)
            if job_id not in queue:
                queue.append(job_id)
            return json.dumps(queue)

        await self._call(self.store.update(QUEUE_KEY, mutate))

    async def _dequeue(self, job_id: str) -> None:
        def mutate(raw: Optional[str]) -> str:
            return json.dumps([queued for queued in _load_queue(raw) if queued != job_id])

        await self._call(self.store.update(QUEUE_KEY, mutate))

