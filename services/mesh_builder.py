"""
Procedural mesh generation for the supported primitives.

Every shape is tessellated into oriented triangles (outward normal + three
vertices, millimeters) and serialized as a single ASCII STL solid. The
functions here are pure and hold no state, so they are safe to call from
any number of request handlers at once.
"""

import math
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Mapping, Optional, Tuple

import structlog

from core.exceptions import InvalidDimensionError, UnsupportedShapeKindError
from domain.models import ShapeDescriptor, ShapeKind

logger = structlog.get_logger()

Vec3 = Tuple[float, float, float]

DEFAULT_LINEAR_MM = 50.0
DEFAULT_RADIUS_MM = 25.0

# Dimensions each kind reads, with the value used when one is absent
DIMENSION_DEFAULTS: Dict[ShapeKind, Dict[str, float]] = {
    ShapeKind.CUBE: {"width": DEFAULT_LINEAR_MM, "height": DEFAULT_LINEAR_MM, "depth": DEFAULT_LINEAR_MM},
    ShapeKind.CYLINDER: {"radius": DEFAULT_RADIUS_MM, "height": DEFAULT_LINEAR_MM},
    ShapeKind.SPHERE: {"radius": DEFAULT_RADIUS_MM},
    ShapeKind.CONE: {"radius": DEFAULT_RADIUS_MM, "height": DEFAULT_LINEAR_MM},
    # A 25mm tube around a 25mm major radius closes the hole; keep a real ring
    ShapeKind.TORUS: {"radius": 30.0, "width": 10.0},
}

CYLINDER_SEGMENTS = 24
CONE_SEGMENTS = 24
SPHERE_RINGS = 12
SPHERE_SEGMENTS = 16
TORUS_RINGS = 16
TORUS_SEGMENTS = 24

SOLID_NAME = "model"

# Kinds that are not supported are replaced by this shape
FALLBACK_SHAPE = ShapeDescriptor(kind=ShapeKind.CUBE)


@dataclass(frozen=True)
class Facet:
    normal: Vec3
    vertices: Tuple[Vec3, Vec3, Vec3]


@dataclass
class Mesh:
    name: str = SOLID_NAME
    facets: List[Facet] = field(default_factory=list)

    @property
    def triangle_count(self) -> int:
        return len(self.facets)

    def add(self, normal: Vec3, a: Vec3, b: Vec3, c: Vec3) -> None:
        """
        Appends a triangle, flipping its winding if needed so that the
        right-hand rule agrees with the given outward normal.
        """
        edge1 = _sub(b, a)
        edge2 = _sub(c, a)
        if _dot(_cross(edge1, edge2), normal) < 0:
            b, c = c, b
        self.facets.append(Facet(normal=normal, vertices=(a, b, c)))

    def to_stl(self) -> str:
        lines = [f"solid {self.name}"]
        for facet in self.facets:
            lines.append(f"  facet normal {_fmt_vec(facet.normal)}")
            lines.append("    outer loop")
            for vertex in facet.vertices:
                lines.append(f"      vertex {_fmt_vec(vertex)}")
            lines.append("    endloop")
            lines.append("  endfacet")
        lines.append(f"endsolid {self.name}")
        return "\n".join(lines) + "\n"


# --- Vector helpers ---


def _sub(a: Vec3, b: Vec3) -> Vec3:
    return (a[0] - b[0], a[1] - b[1], a[2] - b[2])


def _dot(a: Vec3, b: Vec3) -> float:
    return a[0] * b[0] + a[1] * b[1] + a[2] * b[2]


def _cross(a: Vec3, b: Vec3) -> Vec3:
    return (
        a[1] * b[2] - a[2] * b[1],
        a[2] * b[0] - a[0] * b[2],
        a[0] * b[1] - a[1] * b[0],
    )


def _unit(a: Vec3) -> Vec3:
    length = math.sqrt(_dot(a, a))
    return (a[0] / length, a[1] / length, a[2] / length)


def _fmt(value: float) -> str:
    # + 0.0 folds -0.0 into 0.0
    return f"{value + 0.0:e}"


def _fmt_vec(v: Vec3) -> str:
    return f"{_fmt(v[0])} {_fmt(v[1])} {_fmt(v[2])}"


def _circle(segments: int) -> List[Tuple[float, float]]:
    """(cos, sin) pairs around a full turn; index with % segments to close the loop."""
    return [(math.cos(2 * math.pi * i / segments), math.sin(2 * math.pi * i / segments)) for i in range(segments)]


# --- Shape handling ---


def coerce_kind(kind: object) -> ShapeKind:
    if isinstance(kind, ShapeKind):
        return kind
    try:
        return ShapeKind(str(kind).strip().lower())
    except ValueError:
        raise UnsupportedShapeKindError(kind)


def coerce_shape(kind: object, dimensions: Optional[Mapping[str, float]] = None) -> ShapeDescriptor:
    """
    Builds a ShapeDescriptor from loose input. Unsupported kinds (text, custom,
    AI placeholders, anything else) are replaced by the default cube.
    """
    try:
        return ShapeDescriptor(kind=coerce_kind(kind), dimensions=dict(dimensions or {}))
    except UnsupportedShapeKindError as e:
        logger.warning("unsupported_shape_kind", kind=str(kind), fallback=FALLBACK_SHAPE.kind.value, error=str(e))
        return FALLBACK_SHAPE


def resolve_dimensions(shape: ShapeDescriptor) -> Dict[str, float]:
    """
    Returns every dimension the shape's kind uses. Absent ones get the default;
    present ones must be positive and finite.
    """
    resolved = {}
    for name, default in DIMENSION_DEFAULTS[shape.kind].items():
        value = shape.dimensions.get(name)
        if value is None:
            resolved[name] = default
            continue
        if isinstance(value, bool) or not isinstance(value, (int, float)):
            raise InvalidDimensionError(name, value)
        if not math.isfinite(value) or value <= 0:
            raise InvalidDimensionError(name, value)
        resolved[name] = float(value)
    return resolved


def _cube(dims: Dict[str, float]) -> Mesh:
    w = dims["width"] / 2
    h = dims["height"] / 2
    d = dims["depth"] / 2
    mesh = Mesh()

    # Bottom
    mesh.add((0, -1, 0), (-w, -h, -d), (w, -h, -d), (w, -h, d))
    mesh.add((0, -1, 0), (-w, -h, -d), (w, -h, d), (-w, -h, d))
    # Top
    mesh.add((0, 1, 0), (-w, h, -d), (w, h, d), (w, h, -d))
    mesh.add((0, 1, 0), (-w, h, -d), (-w, h, d), (w, h, d))
    # Front
    mesh.add((0, 0, 1), (-w, -h, d), (w, -h, d), (w, h, d))
    mesh.add((0, 0, 1), (-w, -h, d), (w, h, d), (-w, h, d))
    # Back
    mesh.add((0, 0, -1), (-w, -h, -d), (w, h, -d), (w, -h, -d))
    mesh.add((0, 0, -1), (-w, -h, -d), (-w, h, -d), (w, h, -d))
    # Right
    mesh.add((1, 0, 0), (w, -h, -d), (w, h, -d), (w, h, d))
    mesh.add((1, 0, 0), (w, -h, -d), (w, h, d), (w, -h, d))
    # Left
    mesh.add((-1, 0, 0), (-w, -h, -d), (-w, h, d), (-w, h, -d))
    mesh.add((-1, 0, 0), (-w, -h, -d), (-w, -h, d), (-w, h, d))
    return mesh


def _cylinder(dims: Dict[str, float], segments: int = CYLINDER_SEGMENTS) -> Mesh:
    r = dims["radius"]
    h = dims["height"] / 2
    circle = _circle(segments)
    mesh = Mesh()

    for i in range(segments):
        c1, s1 = circle[i]
        c2, s2 = circle[(i + 1) % segments]
        x1, z1 = c1 * r, s1 * r
        x2, z2 = c2 * r, s2 * r
        mid = 2 * math.pi * (i + 0.5) / segments
        side = (math.cos(mid), 0.0, math.sin(mid))

        mesh.add(side, (x1, -h, z1), (x2, -h, z2), (x2, h, z2))
        mesh.add(side, (x1, -h, z1), (x2, h, z2), (x1, h, z1))
        mesh.add((0, 1, 0), (0, h, 0), (x1, h, z1), (x2, h, z2))
        mesh.add((0, -1, 0), (0, -h, 0), (x2, -h, z2), (x1, -h, z1))
    return mesh


def _sphere(dims: Dict[str, float], rings: int = SPHERE_RINGS, segments: int = SPHERE_SEGMENTS) -> Mesh:
    r = dims["radius"]
    circle = _circle(segments)
    mesh = Mesh()

    def latitude(i: int) -> Tuple[float, float]:
        # Exact poles so every fan triangle shares the same apex vertex
        if i == 0:
            return 0.0, 1.0
        if i == rings:
            return 0.0, -1.0
        phi = math.pi * i / rings
        return math.sin(phi), math.cos(phi)

    def point(ring: int, seg: int) -> Vec3:
        sin_phi, cos_phi = latitude(ring)
        cos_t, sin_t = circle[seg % segments]
        return (sin_phi * cos_t * r, cos_phi * r, sin_phi * sin_t * r)

    for i in range(rings):
        for j in range(segments):
            p1 = point(i, j)
            p2 = point(i, j + 1)
            p3 = point(i + 1, j + 1)
            p4 = point(i + 1, j)
            normal = (p1[0] / r, p1[1] / r, p1[2] / r)

            # Polar rings collapse to a single fan triangle
            if i > 0:
                mesh.add(normal, p1, p2, p3)
            if i < rings - 1:
                mesh.add(normal, p1, p3, p4)
    return mesh


def _cone(dims: Dict[str, float], segments: int = CONE_SEGMENTS) -> Mesh:
    r = dims["radius"]
    h = dims["height"]
    circle = _circle(segments)
    apex = (0.0, h, 0.0)
    mesh = Mesh()

    for i in range(segments):
        c1, s1 = circle[i]
        c2, s2 = circle[(i + 1) % segments]
        x1, z1 = c1 * r, s1 * r
        x2, z2 = c2 * r, s2 * r
        mid = 2 * math.pi * (i + 0.5) / segments
        side = _unit((h * math.cos(mid), r, h * math.sin(mid)))

        mesh.add(side, (x1, 0.0, z1), (x2, 0.0, z2), apex)
        mesh.add((0, -1, 0), (0.0, 0.0, 0.0), (x2, 0.0, z2), (x1, 0.0, z1))
    return mesh


def _torus(dims: Dict[str, float], rings: int = TORUS_RINGS, segments: int = TORUS_SEGMENTS) -> Mesh:
    major = dims["radius"]
    tube = dims["width"] / 2
    around = _circle(rings)
    section = _circle(segments)
    mesh = Mesh()

    def point(i: int, j: int) -> Vec3:
        cos_u, sin_u = around[i % rings]
        cos_v, sin_v = section[j % segments]
        return ((major + tube * cos_v) * cos_u, tube * sin_v, (major + tube * cos_v) * sin_u)

    for i in range(rings):
        u = 2 * math.pi * (i + 0.5) / rings
        for j in range(segments):
            v = 2 * math.pi * (j + 0.5) / segments
            normal = (math.cos(v) * math.cos(u), math.sin(v), math.cos(v) * math.sin(u))

            p1 = point(i, j)
            p2 = point(i + 1, j)
            p3 = point(i + 1, j + 1)
            p4 = point(i, j + 1)
            mesh.add(normal, p1, p2, p3)
            mesh.add(normal, p1, p3, p4)
    return mesh


_BUILDERS: Dict[ShapeKind, Callable[[Dict[str, float]], Mesh]] = {
    ShapeKind.CUBE: _cube,
    ShapeKind.CYLINDER: _cylinder,
    ShapeKind.SPHERE: _sphere,
    ShapeKind.CONE: _cone,
    ShapeKind.TORUS: _torus,
}


def tessellate(shape: ShapeDescriptor) -> Mesh:
    dims = resolve_dimensions(shape)
    return _BUILDERS[shape.kind](dims)


def build(shape: ShapeDescriptor) -> str:
    """
    Returns the ASCII STL text for ``shape``.
    Raises InvalidDimensionError for explicit non-positive or non-finite dimensions.
    """
    return tessellate(shape).to_stl()


def parse_stl(text: str) -> Mesh:
    """
    Parses ASCII STL text back into facets. Raises ValueError if the
    solid/endsolid framing or a facet block is malformed.
    """
    lines = [line.strip() for line in text.strip().splitlines() if line.strip()]
    if not lines or not lines[0].startswith("solid"):
        raise ValueError("Missing 'solid' header")
    if not lines[-1].startswith("endsolid"):
        raise ValueError("Missing 'endsolid' footer")

    name = lines[0][len("solid") :].strip()
    if lines[-1][len("endsolid") :].strip() != name:
        raise ValueError("Solid name does not match endsolid name")

    mesh = Mesh(name=name)
    normal: Optional[Vec3] = None
    vertices: List[Vec3] = []

    for line in lines[1:-1]:
        parts = line.split()
        keyword = parts[0]
        if keyword == "facet":
            if len(parts) != 5 or parts[1] != "normal":
                raise ValueError(f"Malformed facet line: {line}")
            normal = (float(parts[2]), float(parts[3]), float(parts[4]))
            vertices = []
        elif keyword == "vertex":
            if len(parts) != 4:
                raise ValueError(f"Malformed vertex line: {line}")
            vertices.append((float(parts[1]), float(parts[2]), float(parts[3])))
        elif keyword == "endfacet":
            if normal is None or len(vertices) != 3:
                raise ValueError("Facet does not have a normal and exactly three vertices")
            mesh.facets.append(Facet(normal=normal, vertices=(vertices[0], vertices[1], vertices[2])))
            normal = None
        elif line not in ("outer loop", "endloop"):
            raise ValueError(f"Unexpected line: {line}")

    return mesh


# --- Estimation ---


def volume_cm3(shape: ShapeDescriptor) -> float:
    """Closed-form volume of the ideal solid, in cubic centimeters."""
    dims = resolve_dimensions(shape)
    kind = shape.kind

    if kind == ShapeKind.CUBE:
        volume_mm3 = dims["width"] * dims["height"] * dims["depth"]
    elif kind == ShapeKind.CYLINDER:
        volume_mm3 = math.pi * dims["radius"] ** 2 * dims["height"]
    elif kind == ShapeKind.SPHERE:
        volume_mm3 = (4 / 3) * math.pi * dims["radius"] ** 3
    elif kind == ShapeKind.CONE:
        volume_mm3 = (1 / 3) * math.pi * dims["radius"] ** 2 * dims["height"]
    else:
        volume_mm3 = 2 * math.pi**2 * dims["radius"] * (dims["width"] / 2) ** 2

    return volume_mm3 / 1000


def estimated_minutes(volume: float) -> int:
    """Print time from volume (cm³): 1.5 min per cm³, never under 5 minutes."""
    # Round half up
    return max(5, math.floor(volume * 1.5 + 0.5))
