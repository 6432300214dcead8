from typing import Any, Dict, Optional

import httpx
import structlog

from core.exceptions import UpstreamUnavailableError
from domain.interfaces import PrinterController
from domain.models import PrinterStatus

logger = structlog.get_logger()


class MoonrakerController(PrinterController):
    """
    Talks to a Klipper printer through the Moonraker HTTP API.
    """

    def __init__(self, base_url: str, timeout: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.base_url = base_url.rstrip("/")
        self.client = client or httpx.AsyncClient(base_url=self.base_url, timeout=timeout)

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            resp = await self.client.request(method, path, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except httpx.HTTPStatusError as e:
            raise UpstreamUnavailableError(
                f"Printer answered {e.response.status_code} for {path}", original_error=e
            )
        except (httpx.HTTPError, ValueError) as e:
            raise UpstreamUnavailableError(f"Printer unreachable at {self.base_url}: {e}", original_error=e)

    async def get_status(self) -> PrinterStatus:
        info = await self._request("GET", "/printer/info")
        query = await self._request("GET", "/printer/objects/query?print_stats")

        print_stats = (query.get("result") or {}).get("status", {}).get("print_stats", {})
        return PrinterStatus(
            ready=(info.get("result") or {}).get("state") == "ready",
            print_state=print_stats.get("state") or "unknown",
            message=print_stats.get("message") or None,
        )

    async def upload(self, filename: str, content: str) -> bool:
        logger.info("uploading_toolpath", filename=filename, size_bytes=len(content))
        result = await self._request(
            "POST",
            "/server/files/upload",
            files={"file": (filename, content.encode("utf-8"), "text/plain")},
        )
        return (result.get("result") or {}).get("item", {}).get("path") == filename

    async def start_print(self, filename: str) -> bool:
        result = await self._request("POST", "/printer/print/start", params={"filename": filename})
        return result.get("result") == "ok"

    async def aclose(self) -> None:
        await self.client.aclose()
