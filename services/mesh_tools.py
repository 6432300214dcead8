import io

import structlog
import trimesh

from domain.models import MeshStats

logger = structlog.get_logger()


class MeshInspector:
    """Loads generated STL text with trimesh and reports what a slicer will see."""

    def inspect(self, mesh_text: str) -> MeshStats:
        mesh = trimesh.load_mesh(io.BytesIO(mesh_text.encode("utf-8")), file_type="stl")

        if not isinstance(mesh, trimesh.Trimesh) or mesh.is_empty:
            logger.error("invalid_mesh_type", type=type(mesh).__name__)
            raise ValueError("Invalid mesh data")

        stats = MeshStats(
            triangles=len(mesh.faces),
            vertices=len(mesh.vertices),
            is_watertight=bool(mesh.is_watertight),
            is_winding_consistent=bool(mesh.is_winding_consistent),
            volume_cm3=float(mesh.volume) / 1000,
            bounds=mesh.bounds.tolist(),
        )
        logger.debug("mesh_inspected", triangles=stats.triangles, watertight=stats.is_watertight)
        return stats
