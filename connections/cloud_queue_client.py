from typing import Optional

import httpx
import structlog

from core.exceptions import InvalidTransitionError, JobNotFoundError, UpstreamUnavailableError
from domain.interfaces import PrintQueueClient
from domain.models import QueuedJob

logger = structlog.get_logger()


class CloudQueueClient(PrintQueueClient):
    """
    Drives the job lifecycle through the public HTTP API.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, job_id: str = "", event: str = "", **kwargs) -> httpx.Response:
        try:
            resp = await self.client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise UpstreamUnavailableError(f"Cloud API unreachable: {e}", original_error=e)

        if resp.status_code == 404:
            raise JobNotFoundError(f"Job {job_id} not found")
        if resp.status_code == 409:
            logger.warning("cloud_rejected_transition", job_id=job_id, transition=event, body=resp.text)
            raise InvalidTransitionError(job_id, "in a conflicting state", event)
        if resp.status_code >= 400:
            raise UpstreamUnavailableError(f"Cloud API answered {resp.status_code} for {path}")
        return resp

    async def _queued(self, path: str) -> Optional[QueuedJob]:
        resp = await self._request("GET", path)
        data = resp.json().get("job")
        return QueuedJob.model_validate(data) if data else None

    async def peek_next(self) -> Optional[QueuedJob]:
        return await self._queued("/api/queue/next")

    async def in_flight(self) -> Optional[QueuedJob]:
        return await self._queued("/api/queue/current")

    async def fetch_mesh(self, job_id: str) -> str:
        resp = await self._request("GET", f"/api/order/{job_id}/stl", job_id=job_id)
        return resp.text

    async def begin_printing(self, job_id: str) -> None:
        await self._request("POST", f"/api/order/{job_id}/printing", job_id=job_id, event="begin_printing")

    async def complete(self, job_id: str) -> None:
        await self._request("POST", f"/api/order/{job_id}/complete", job_id=job_id, event="complete")

    async def fail(self, job_id: str, reason: str) -> None:
        await self._request(
            "POST", f"/api/order/{job_id}/fail", job_id=job_id, event="fail", json={"reason": reason}
        )

    async def aclose(self) -> None:
        await self.client.aclose()
