import asyncio
import signal
from enum import Enum
from typing import Optional, Tuple

import structlog

from connections.cloud_queue_client import CloudQueueClient
from connections.moonraker_controller import MoonrakerController
from core.config import AgentConfig, AgentSettings
from core.dependencies import get_toolpath_generator
from core.exceptions import (
    InvalidTransitionError,
    JobNotFoundError,
    PrintQueueError,
    StoreUnavailableError,
    ToolpathError,
    UpstreamUnavailableError,
)
from core.logging import configure_logging
from domain.interfaces import PrinterController, PrintQueueClient, ToolpathGenerator
from domain.models import PrinterStatus, QueuedJob

logger = structlog.get_logger()

# Errors that mean "try again next tick"
TRANSIENT_ERRORS = (UpstreamUnavailableError, StoreUnavailableError)


class TickOutcome(str, Enum):
    UNREACHABLE = "unreachable"  # printer or queue could not be reached
    NOT_READY = "not_ready"
    BUSY = "busy"
    IDLE = "idle"  # nothing to print
    STARTED = "started"
    COMPLETED = "completed"
    FAILED = "failed"


class PrintAgent:
    """
    Drains the print queue onto a single printer, one job at a time.

    A failure report the queue could not take is retried before anything
    else. Then each tick checks the printer. While a tracked job is on the
    printer, ticks only watch it until the controller reports it finished;
    a job found printing at the queue head (left by a restart) is adopted
    and watched the same way. Otherwise an idle, ready printer gets the next
    paid job.
    """

    def __init__(
        self,
        queue: PrintQueueClient,
        printer: PrinterController,
        toolpath: ToolpathGenerator,
        config: Optional[AgentConfig] = None,
    ):
        self.queue = queue
        self.printer = printer
        self.toolpath = toolpath
        self.config = config or AgentConfig()

        self.current_job_id: Optional[str] = None
        # (job_id, reason) of a failure the queue has not recorded yet
        self.pending_failure: Optional[Tuple[str, str]] = None
        self.shutdown_event = asyncio.Event()

    @property
    def poll_interval(self) -> float:
        return self.config.poll_interval

    def set_poll_interval(self, seconds: float) -> None:
        if seconds <= 0:
            raise ValueError("Poll interval must be positive")
        logger.info("poll_interval_changed", old=self.config.poll_interval, new=seconds)
        self.config.poll_interval = seconds

    def filename_for(self, job_id: str) -> str:
        return f"{self.config.file_prefix}{job_id}.gcode"

    async def start(self):
        """
        Main loop with Graceful Shutdown.
        """
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            loop.add_signal_handler(sig, self.stop)

        logger.info("print_agent_started", poll_interval=self.poll_interval)
        await self.check_printer()
        await self.run()
        logger.info("print_agent_stopped")

    def stop(self):
        logger.warning("print_agent_stopping")
        self.shutdown_event.set()

    async def check_printer(self) -> Optional[PrinterStatus]:
        try:
            status = await self.printer.get_status()
        except UpstreamUnavailableError as e:
            logger.warning("printer_not_reachable", error=str(e))
            return None
        logger.info("printer_connected", ready=status.ready, print_state=status.print_state)
        return status

    async def run(self, max_ticks: Optional[int] = None):
        """
        Ticks until stopped (or ``max_ticks`` ran), waiting ``poll_interval``
        between ticks. The interval is read fresh before every wait.
        """
        ticks = 0
        while not self.shutdown_event.is_set():
            try:
                await self.tick()
            except Exception as e:
                logger.exception("tick_crashed", error=str(e))

            ticks += 1
            if max_ticks is not None and ticks >= max_ticks:
                break

            try:
                await asyncio.wait_for(self.shutdown_event.wait(), timeout=self.poll_interval)
            except asyncio.TimeoutError:
                pass

    async def tick(self) -> TickOutcome:
        if self.pending_failure is not None:
            return await self._retry_failure()

        try:
            status = await self.printer.get_status()
        except UpstreamUnavailableError as e:
            logger.warning("printer_not_reachable", error=str(e))
            return TickOutcome.UNREACHABLE

        if self.current_job_id is None:
            try:
                adopted = await self.queue.in_flight()
            except TRANSIENT_ERRORS as e:
                logger.warning("queue_not_reachable", error=str(e))
                return TickOutcome.UNREACHABLE
            if adopted is not None:
                logger.warning("adopting_in_flight_job", job_id=adopted.id, print_state=status.print_state)
                self.current_job_id = adopted.id

        if self.current_job_id is not None:
            return await self._watch_current(status, self.current_job_id)

        if status.printing:
            logger.info("printer_busy", print_state=status.print_state)
            return TickOutcome.BUSY

        if not status.ready:
            logger.info("printer_not_ready")
            return TickOutcome.NOT_READY

        try:
            job = await self.queue.peek_next()
        except TRANSIENT_ERRORS as e:
            logger.warning("queue_not_reachable", error=str(e))
            return TickOutcome.UNREACHABLE

        if job is None:
            return TickOutcome.IDLE

        return await self._process(job)

    async def _watch_current(self, status: PrinterStatus, job_id: str) -> TickOutcome:
        if status.printing:
            return TickOutcome.BUSY

        try:
            if status.print_state == "complete":
                await self.queue.complete(job_id)
                logger.info("print_finished", job_id=job_id)
                outcome = TickOutcome.COMPLETED
            else:
                reason = status.message or f"printer reported '{status.print_state}'"
                await self.queue.fail(job_id, f"print did not finish: {reason}")
                logger.error("print_lost", job_id=job_id, print_state=status.print_state)
                outcome = TickOutcome.FAILED
        except TRANSIENT_ERRORS as e:
            logger.warning("report_deferred", job_id=job_id, error=str(e))
            return TickOutcome.UNREACHABLE
        except (JobNotFoundError, InvalidTransitionError) as e:
            # Someone else already moved the job on, stop tracking it
            logger.error("tracked_job_out_of_sync", job_id=job_id, error=str(e))
            outcome = TickOutcome.FAILED

        self.current_job_id = None
        return outcome

    async def _process(self, job: QueuedJob) -> TickOutcome:
        job_logger = logger.bind(job_id=job.id, kind=job.shape.kind.value)
        job_logger.info("processing_job")

        try:
            mesh_text = await self.queue.fetch_mesh(job.id)
        except TRANSIENT_ERRORS as e:
            job_logger.warning("mesh_download_failed", error=str(e))
            return TickOutcome.UNREACHABLE
        except JobNotFoundError:
            job_logger.error("queued_job_vanished")
            return TickOutcome.IDLE

        filename = self.filename_for(job.id)

        # 1. Toolpath + transfer: any failure here fails the job
        try:
            gcode = await self.toolpath.mesh_to_toolpath(mesh_text, job)
            if not await self.printer.upload(filename, gcode):
                raise UpstreamUnavailableError(f"Printer did not accept {filename}")
        except (ToolpathError, UpstreamUnavailableError) as e:
            return await self._fail(job.id, f"upload failed: {e.message}")

        # 2. Mark as printing in the lifecycle
        try:
            await self.queue.begin_printing(job.id)
        except TRANSIENT_ERRORS as e:
            job_logger.warning("begin_printing_deferred", error=str(e))
            return TickOutcome.UNREACHABLE
        except (JobNotFoundError, InvalidTransitionError) as e:
            job_logger.error("begin_printing_rejected", error=str(e))
            return TickOutcome.IDLE

        # 3. Start the physical print
        try:
            started = await self.printer.start_print(filename)
        except UpstreamUnavailableError as e:
            return await self._fail(job.id, f"start failed: {e.message}")
        if not started:
            return await self._fail(job.id, f"start failed: printer refused {filename}")

        self.current_job_id = job.id
        job_logger.info("print_started", filename=filename)
        return TickOutcome.STARTED

    async def _fail(self, job_id: str, reason: str) -> TickOutcome:
        try:
            await self.queue.fail(job_id, reason)
            logger.error("job_failed", job_id=job_id, reason=reason)
        except TRANSIENT_ERRORS as e:
            # Retried at the start of every tick until the queue takes it
            logger.warning("job_fail_deferred", job_id=job_id, reason=reason, error=str(e))
            self.pending_failure = (job_id, reason)
        except PrintQueueError as e:
            logger.error("job_fail_not_recorded", job_id=job_id, reason=reason, error=str(e))
        return TickOutcome.FAILED

    async def _retry_failure(self) -> TickOutcome:
        job_id, reason = self.pending_failure
        try:
            await self.queue.fail(job_id, reason)
        except TRANSIENT_ERRORS as e:
            logger.warning("job_fail_deferred", job_id=job_id, reason=reason, error=str(e))
            return TickOutcome.UNREACHABLE
        except PrintQueueError as e:
            logger.error("job_fail_not_recorded", job_id=job_id, reason=reason, error=str(e))
        else:
            logger.error("job_failed", job_id=job_id, reason=reason)

        self.pending_failure = None
        return TickOutcome.FAILED


async def main(settings: AgentSettings):
    configure_logging(json_logs=(settings.ENV == "production"), log_level=settings.LOG_LEVEL, service="print-agent")
    logger.info("print_agent_config", printer=settings.printer_url, cloud_api=settings.CLOUD_API_URL)

    queue = CloudQueueClient(settings.CLOUD_API_URL, timeout=settings.REQUEST_TIMEOUT)
    printer = MoonrakerController(settings.printer_url, timeout=settings.REQUEST_TIMEOUT)
    agent = PrintAgent(queue, printer, get_toolpath_generator(settings), settings.agent_config())

    try:
        await agent.start()
    finally:
        await queue.aclose()
        await printer.aclose()


if __name__ == "__main__":
    asyncio.run(main(AgentSettings()))
