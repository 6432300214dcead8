import asyncio
import tempfile
from pathlib import Path
from typing import List

import structlog

from core.exceptions import ToolpathError
from domain.interfaces import ToolpathGenerator
from domain.models import QueuedJob

logger = structlog.get_logger()


class SlicerCliToolpathGenerator(ToolpathGenerator):
    """
    Runs an external slicer (PrusaSlicer, CuraEngine, ...) on the mesh.
    ``command`` is an argv list where ``{input}`` and ``{output}`` are
    replaced by the STL and gcode paths.
    """

    def __init__(self, command: List[str], timeout: float = 300.0):
        if not command:
            raise ValueError("Slicer command must not be empty")
        self.command = command
        self.timeout = timeout

    async def mesh_to_toolpath(self, mesh_text: str, job: QueuedJob) -> str:
        with tempfile.TemporaryDirectory(prefix=f"slice_{job.id}_") as workdir:
            input_path = Path(workdir) / f"{job.id}.stl"
            output_path = Path(workdir) / f"{job.id}.gcode"
            input_path.write_text(mesh_text)

            argv = [arg.format(input=input_path, output=output_path) for arg in self.command]
            logger.info("slicer_started", job_id=job.id, command=argv[0])

            try:
                proc = await asyncio.create_subprocess_exec(
                    *argv, stdout=asyncio.subprocess.PIPE, stderr=asyncio.subprocess.PIPE
                )
            except OSError as e:
                raise ToolpathError(f"Could not run slicer {argv[0]}: {e}", original_error=e)

            try:
                _, stderr = await asyncio.wait_for(proc.communicate(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                proc.kill()
                await proc.wait()
                raise ToolpathError(f"Slicer timed out after {self.timeout}s", original_error=e)

            if proc.returncode != 0:
                tail = stderr.decode(errors="replace").strip()[-500:]
                raise ToolpathError(f"Slicer exited with {proc.returncode}: {tail}")

            if not output_path.exists():
                raise ToolpathError("Slicer finished without writing a toolpath")

            gcode = output_path.read_text()
            logger.info("slicer_finished", job_id=job.id, size_bytes=len(gcode))
            return gcode


class UnavailableToolpathGenerator(ToolpathGenerator):
    """
    Used when no slicer is configured. Refuses every job so nothing
    that doesn't match the ordered shape is ever sent to the printer.
    """

    async def mesh_to_toolpath(self, mesh_text: str, job: QueuedJob) -> str:
        raise ToolpathError("No slicer configured (set SLICER_COMMAND)")
