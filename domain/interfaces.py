from abc import ABC, abstractmethod
from datetime import timedelta
from typing import Callable, Optional

from domain.models import PrinterStatus, QueuedJob

Mutation = Callable[[Optional[str]], str]


class JobStore(ABC):
    """
    Key-value store holding job documents and the queue document.
    Only per-key read/write atomicity is assumed.
    """

    @abstractmethod
    async def get(self, key: str) -> Optional[str]:
        """Returns the stored value, or None if absent or expired"""
        pass

    @abstractmethod
    async def put(self, key: str, value: str, ttl: Optional[timedelta] = None) -> None:
        pass

    @abstractmethod
    async def update(self, key: str, mutate: Mutation) -> str:
        """
        Read-modify-write of a single key. ``mutate`` receives the current value
        (None if absent) and returns the new one; exceptions it raises abort the
        write and propagate. The key keeps its existing TTL.
        """
        pass


class PrinterController(ABC):
    @abstractmethod
    async def get_status(self) -> PrinterStatus:
        """Raises UpstreamUnavailableError when the controller can't be reached"""
        pass

    @abstractmethod
    async def upload(self, filename: str, content: str) -> bool:
        """Transfers a toolpath file, returns True if the controller accepted it"""
        pass

    @abstractmethod
    async def start_print(self, filename: str) -> bool:
        pass


class ToolpathGenerator(ABC):
    @abstractmethod
    async def mesh_to_toolpath(self, mesh_text: str, job: QueuedJob) -> str:
        """Returns machine instructions (gcode) for the mesh"""
        pass


class PrintQueueClient(ABC):
    """What the print agent needs from the job lifecycle."""

    @abstractmethod
    async def peek_next(self) -> Optional[QueuedJob]:
        pass

    @abstractmethod
    async def in_flight(self) -> Optional[QueuedJob]:
        """The job left printing at the head of the queue, e.g. by an agent restart"""
        pass

    @abstractmethod
    async def fetch_mesh(self, job_id: str) -> str:
        pass

    @abstractmethod
    async def begin_printing(self, job_id: str) -> None:
        pass

    @abstractmethod
    async def complete(self, job_id: str) -> None:
        pass

    @abstractmethod
    async def fail(self, job_id: str, reason: str) -> None:
        pass
