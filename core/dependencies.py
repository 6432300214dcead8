import shlex

from connections.in_memory_store import InMemoryJobStore
from connections.redis_store import RedisJobStore
from connections.slicer_toolpath import SlicerCliToolpathGenerator, UnavailableToolpathGenerator
from core.config import AgentSettings, ProductionSettings, Settings
from domain.interfaces import JobStore, ToolpathGenerator


def get_store(settings: Settings) -> JobStore:
    """
    Dependency Factory: Returns the job store backend based on ENV.
    """
    if isinstance(settings, ProductionSettings):
        return RedisJobStore.from_url(settings.REDIS_URL)

    return InMemoryJobStore()


def get_toolpath_generator(settings: AgentSettings) -> ToolpathGenerator:
    """
    Dependency Factory: Returns the slicer strategy, or one that refuses
    every job when no slicer is configured.
    """
    if settings.SLICER_COMMAND:
        return SlicerCliToolpathGenerator(shlex.split(settings.SLICER_COMMAND))

    return UnavailableToolpathGenerator()
